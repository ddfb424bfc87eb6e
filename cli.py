"""Command Line Interface for the talent agency chat pipeline"""
import argparse
import base64
import logging
import os
import sys
import time
from typing import List

from dotenv import find_dotenv, load_dotenv

from talent_insights.async_runner import BackgroundLoop
from talent_insights.config import load_settings
from talent_insights.langgraph_orchestrator import ChatPipelineOrchestrator
from talent_insights.models import ChatMessage, ChatResponse

load_dotenv(find_dotenv())

logger = logging.getLogger(__name__)

PNG_MAGIC = b"\x89PNG"


def main():
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        description="Talent agency chat with analytics charts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Examples:
        %(prog)s "Show me a bar chart of followers by sport"
        %(prog)s "Pie chart of influencers per sport" -o charts

        Interactive mode:
        %(prog)s -i """)

    parser.add_argument(
        "message",
        nargs="?",
        help="Chat message to send"
    )
    parser.add_argument(
        "--config", "-c",
        default="config/settings.yaml",
        help="Settings file (default: config/settings.yaml)"
    )
    parser.add_argument(
        "--api-key",
        help="OpenAI-compatible API key (or set OPENAI_API_KEY env variable)"
    )
    parser.add_argument(
        "--api-base",
        help="Custom OpenAI-compatible API base URL"
    )
    parser.add_argument(
        "--output-dir", "-o",
        default="outputs",
        help="Directory for chart images (default: outputs)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )
    parser.add_argument(
        "--interactive", "-i",
        action="store_true",
        help="Interactive mode for multi-turn conversations"
    )

    args = parser.parse_args()

    settings = load_settings(args.config)
    if args.api_key:
        settings.llm.api_key = args.api_key
    if args.api_base:
        settings.llm.api_base = args.api_base
    if not settings.llm.api_key:
        print("Error: API key required. Set OPENAI_API_KEY environment variable or use --api-key")
        sys.exit(1)

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)

    runner = BackgroundLoop()
    orchestrator = None
    try:
        print("\n Initializing talent chat pipeline...")
        print(f"   Model: {settings.llm.model}")
        print(f"   Charts: {args.output_dir}")

        orchestrator = ChatPipelineOrchestrator(settings)
        runner.run(orchestrator.store.open())

        if args.interactive:
            run_interactive(orchestrator, runner, args.output_dir)
        else:
            if not args.message:
                print("Error: Message required in non-interactive mode. Use -i for interactive mode.")
                sys.exit(1)

            print(f"\n Processing message: {args.message}\n")
            messages = [ChatMessage(role="user", content=args.message)]
            response = runner.run(orchestrator.handle_chat(messages))
            display_response(response, args.output_dir)
    except Exception as e:
        print(f"\n Unexpected error: {str(e)}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)
    finally:
        if orchestrator is not None:
            try:
                runner.run(orchestrator.store.close())
            except Exception as e:
                logger.warning(f"Failed to close database pool: {e}")
        runner.stop()


def run_interactive(orchestrator: ChatPipelineOrchestrator, runner: BackgroundLoop, output_dir: str):
    """Multi-turn loop; the full history is sent with every message"""
    print("\n Interactive Mode - Type 'exit' or 'quit' to end session\n")
    history: List[ChatMessage] = []

    while True:
        try:
            message = input("You: ").strip()

            if message.lower() in ['exit', 'quit', 'q']:
                print("\nGoodbye!")
                break

            if not message:
                continue

            print()
            history.append(ChatMessage(role="user", content=message))
            response = runner.run(orchestrator.handle_chat(history))
            history.append(ChatMessage(role="assistant", content=response.content))

            display_response(response, output_dir)

        except KeyboardInterrupt:
            print("\n\nSession ended")
            break
        except Exception as e:
            print(f"\nError: {str(e)}\n")


def save_chart_image(chart_image: str, output_dir: str) -> str:
    """Decode a base64 chart payload and write it as .png or .svg"""
    data = base64.b64decode(chart_image)
    extension = "png" if data.startswith(PNG_MAGIC) else "svg"
    os.makedirs(output_dir, exist_ok=True)
    path = os.path.join(output_dir, f"chart_{int(time.time() * 1000)}.{extension}")
    with open(path, "wb") as f:
        f.write(data)
    return path


def display_response(response: ChatResponse, output_dir: str):
    """Display a chat response (factored out for reuse)"""
    metadata = response.metadata or {}

    print(f"\n{'='*60}")
    if metadata.get("graphError"):
        print(" ERROR!!")
    else:
        print(" RESPONSE")
    print(f"{'='*60}\n")

    print(f"{response.content}\n")

    if metadata.get("type") == "graph":
        path = save_chart_image(metadata["chartImage"], output_dir)
        print(f"Chart saved: {path}")
        print(f"   Chart type: {metadata.get('chartType')}")
        print(f"   Title: {metadata.get('title')}")
    elif metadata.get("noData"):
        print("No rows matched this request.")

    print(f"\n{'='*60}\n")


if __name__ == "__main__":
    main()
