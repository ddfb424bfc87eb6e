"""Flask Backend for the Talent Agency Chat API"""
import logging
import os
from typing import Optional

from dotenv import find_dotenv, load_dotenv
from flask import Flask, jsonify, request
from flask_cors import CORS
from pydantic import ValidationError

from talent_insights.async_runner import BackgroundLoop
from talent_insights.config import load_settings
from talent_insights.langgraph_orchestrator import ChatPipelineOrchestrator
from talent_insights.models import ChatRequest

logger = logging.getLogger(__name__)


def build_orchestrator(runner: BackgroundLoop) -> ChatPipelineOrchestrator:
    """Build the orchestrator from settings and open its database pool"""
    settings = load_settings(os.getenv("TALENT_SETTINGS", "config/settings.yaml"))
    if not settings.llm.api_key:
        raise ValueError("OPENAI_API_KEY environment variable required")

    orchestrator = ChatPipelineOrchestrator(settings)
    runner.run(orchestrator.store.open())
    return orchestrator


def create_app(orchestrator: Optional[ChatPipelineOrchestrator] = None,
               runner: Optional[BackgroundLoop] = None) -> Flask:
    app = Flask(__name__)
    CORS(app)

    runner = runner or BackgroundLoop()
    orchestrator = orchestrator or build_orchestrator(runner)

    @app.route('/api/chat', methods=['POST'])
    def chat():
        """Answer the last message of a conversation"""
        data = request.get_json(silent=True)
        if not isinstance(data, dict) or not data.get('messages'):
            return jsonify({"error": "Messages array required"}), 400

        try:
            chat_request = ChatRequest.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Malformed chat request: {e}")
            return jsonify({"error": "Messages array required"}), 400

        try:
            response = runner.run(orchestrator.handle_chat(chat_request.messages))
        except Exception as e:
            logger.error(f"Chat API error: {str(e)}")
            return jsonify({
                "error": "Internal server error",
                "details": str(e)
            }), 500

        return jsonify(response.to_payload())

    @app.route('/api/chat', methods=['GET'])
    def chat_method_not_allowed():
        return jsonify({"error": "Method not allowed"}), 405

    @app.route('/api/health', methods=['GET'])
    def health():
        return jsonify({"status": "ok"})

    return app


if __name__ == '__main__':
    load_dotenv(find_dotenv())
    logging.basicConfig(level=logging.INFO)
    app = create_app()
    app.run(debug=True, port=5000, threaded=True)
