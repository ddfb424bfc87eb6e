"""LangGraph workflow for the chat analytics pipeline"""
import logging
import time
from typing import List, Literal, Optional, TypedDict

import pandas as pd
from langchain_openai import ChatOpenAI
from langfuse import Langfuse
from langfuse.langchain import CallbackHandler as LangfuseCallbackHandler
from langgraph.graph import END, StateGraph

from talent_insights.answer_responder import AnswerResponder, RetrievalProvider
from talent_insights.chart_mapper import ChartDataMapper
from talent_insights.chart_renderer import ChartRenderer
from talent_insights.config import Settings
from talent_insights.database_manager import ReadOnlyStore
from talent_insights.exceptions import ChartRenderError, ChartSpecError, QueryRejectedError
from talent_insights.intent_classifier import IntentClassifier
from talent_insights.models import ChartSpec, ChatMessage, ChatResponse, QueryPlan
from talent_insights.sql_safety import ensure_read_only_sql
from talent_insights.sql_synthesizer import (
    DATABASE_SCHEMA, LLMSqlSynthesizer, SqlSynthesizer, TieredSqlSynthesizer
)
from talent_insights.text_chart import render_text_chart

logger = logging.getLogger(__name__)


class ChatPipelineState(TypedDict, total=False):
    messages: List[ChatMessage]
    user_message: str
    status: str
    current_step: str
    plan: Optional[QueryPlan]
    sql_query: Optional[str]
    result_data: Optional[pd.DataFrame]
    chart_spec: Optional[ChartSpec]
    chart_image: Optional[str]
    text_chart: Optional[str]
    error_message: Optional[str]
    response: Optional[ChatResponse]


class ChatPipelineOrchestrator:
    """Sequences classify → synthesize → validate → execute → map → render"""

    def __init__(
        self,
        settings: Settings,
        store: Optional[ReadOnlyStore] = None,
        classifier: Optional[IntentClassifier] = None,
        synthesizer: Optional[SqlSynthesizer] = None,
        responder: Optional[AnswerResponder] = None,
        mapper: Optional[ChartDataMapper] = None,
        renderer: Optional[ChartRenderer] = None,
        retrieval: Optional[RetrievalProvider] = None
    ):
        """Initialize orchestrator; any component not given is built from settings

        Args:
            settings: Loaded application settings
            store: Read-only database access
            classifier: Intent classifier
            synthesizer: SQL synthesizer (templates + LLM by default)
            responder: Answer path for non-graph messages
            mapper: Result-to-chart mapper
            renderer: Chart renderer
            retrieval: Optional ranked-match search used by the default responder
        """
        self.settings = settings

        self.langfuse = None
        self.callbacks = []
        if settings.tracing.enabled:
            self.langfuse = Langfuse()
            self.callbacks = [LangfuseCallbackHandler()]

        llm = settings.llm
        self.store = store or ReadOnlyStore(settings.database)
        self.classifier = classifier or IntentClassifier(
            self._build_llm(llm.classifier_temperature, llm.classifier_max_tokens)
        )
        self.synthesizer = synthesizer or TieredSqlSynthesizer(
            LLMSqlSynthesizer(self._build_llm(llm.sql_temperature, llm.sql_max_tokens))
        )
        self.responder = responder or AnswerResponder(
            self._build_llm(llm.answer_temperature, llm.answer_max_tokens),
            self.store,
            retrieval=retrieval,
            context_window=llm.context_window,
        )
        self.mapper = mapper or ChartDataMapper()
        self.renderer = renderer or ChartRenderer(settings.chart)

        self.graph = self._build_graph()
        logger.info("Chat pipeline orchestrator initialized")

    def _build_llm(self, temperature: float, max_tokens: int) -> ChatOpenAI:
        llm_kwargs = {
            "model": self.settings.llm.model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "api_key": self.settings.llm.api_key,
            "callbacks": self.callbacks,
        }
        if self.settings.llm.api_base:
            llm_kwargs["base_url"] = self.settings.llm.api_base
        return ChatOpenAI(**llm_kwargs)

    def _build_graph(self):
        """Build the LangGraph workflow

        Returns:
            Compiled StateGraph
        """
        workflow = StateGraph(ChatPipelineState)

        workflow.add_node("classify", self._classify_node)
        workflow.add_node("answer", self._answer_node)
        workflow.add_node("synthesize", self._synthesize_node)
        workflow.add_node("validate", self._validate_node)
        workflow.add_node("execute", self._execute_node)
        workflow.add_node("map_chart", self._map_chart_node)
        workflow.add_node("render_chart", self._render_chart_node)
        workflow.add_node("finalize_rendered", self._finalize_rendered_node)
        workflow.add_node("finalize_text_fallback", self._finalize_text_fallback_node)
        workflow.add_node("finalize_no_data", self._finalize_no_data_node)
        workflow.add_node("finalize_error", self._finalize_error_node)

        workflow.set_entry_point("classify")

        workflow.add_conditional_edges(
            "classify",
            self._route_after_classify,
            {
                "graph": "synthesize",
                "answer": "answer"
            }
        )
        for node, next_node in (("synthesize", "validate"),
                                ("validate", "execute"),
                                ("execute", "map_chart")):
            workflow.add_conditional_edges(
                node,
                self._route_on_error,
                {
                    "continue": next_node,
                    "error": "finalize_error"
                }
            )
        workflow.add_conditional_edges(
            "map_chart",
            self._route_after_mapping,
            {
                "continue": "render_chart",
                "no_data": "finalize_no_data",
                "error": "finalize_error"
            }
        )
        workflow.add_conditional_edges(
            "render_chart",
            self._route_after_render,
            {
                "rendered": "finalize_rendered",
                "text_fallback": "finalize_text_fallback"
            }
        )

        workflow.add_edge("answer", END)
        for node in ("finalize_rendered", "finalize_text_fallback",
                     "finalize_no_data", "finalize_error"):
            workflow.add_edge(node, END)

        return workflow.compile()

    async def handle_chat(self, messages: List[ChatMessage]) -> ChatResponse:
        """Run one chat request through the workflow

        Args:
            messages: Conversation so far; the last message is answered

        Returns:
            ChatResponse for the terminal state the request reached

        Raises:
            ChartRenderError: If even the text chart could not be produced
        """
        start_time = time.time()
        user_message = messages[-1].content if messages else ""
        logger.info(f"Processing chat message: {user_message}")

        initial_state: ChatPipelineState = {
            "messages": messages,
            "user_message": user_message,
            "status": "pending",
            "current_step": "initialized",
        }

        if self.langfuse is None:
            final_state = await self.graph.ainvoke(initial_state)
        else:
            with self.langfuse.start_as_current_span(
                name="chat_pipeline_request", input={"message": user_message}
            ) as span:
                final_state = await self.graph.ainvoke(
                    initial_state, config={"callbacks": self.callbacks}
                )
                span.update(output={
                    "status": final_state.get("status"),
                    "sql_query": final_state.get("sql_query"),
                    "error": final_state.get("error_message"),
                })

        logger.info(
            f"Request finished with status '{final_state.get('status')}' "
            f"in {time.time() - start_time:.2f}s"
        )
        return final_state["response"]

    async def _classify_node(self, state: ChatPipelineState) -> dict:
        """Classify the last message; fails soft to 'other'"""
        plan = await self.classifier.classify(state["user_message"])
        return {"plan": plan, "current_step": "classified"}

    async def _answer_node(self, state: ChatPipelineState) -> dict:
        logger.info("Not a graph request, answering directly")
        response = await self.responder.respond(state["messages"])
        return {"response": response, "status": "answered", "current_step": "completed"}

    async def _synthesize_node(self, state: ChatPipelineState) -> dict:
        logger.info("Generating SQL...")
        try:
            sql = await self.synthesizer.synthesize(
                state["plan"], DATABASE_SCHEMA, state["user_message"]
            )
        except Exception as e:
            logger.error(f"SQL generation failed: {str(e)}")
            return {"status": "error", "error_message": str(e), "current_step": "synthesize"}
        return {"sql_query": sql, "current_step": "synthesized"}

    def _validate_node(self, state: ChatPipelineState) -> dict:
        try:
            ensure_read_only_sql(state["sql_query"])
        except QueryRejectedError as e:
            logger.warning(f"Unsafe query rejected: {e.details.get('sql')}")
            return {"status": "error", "error_message": e.message, "current_step": "validate"}
        return {"current_step": "validated"}

    async def _execute_node(self, state: ChatPipelineState) -> dict:
        logger.info("Executing query...")
        try:
            df = await self.store.execute(state["sql_query"])
        except Exception as e:
            logger.error(f"Query execution failed: {str(e)}")
            return {"status": "error", "error_message": str(e), "current_step": "execute"}
        return {"result_data": df, "current_step": "executed"}

    def _map_chart_node(self, state: ChatPipelineState) -> dict:
        try:
            spec = self.mapper.map(state["result_data"], state["plan"])
        except Exception as e:
            logger.error(f"Chart mapping failed: {str(e)}")
            return {"status": "error", "error_message": str(e), "current_step": "map_chart"}
        if spec.is_empty:
            return {"chart_spec": spec, "status": "no_data", "current_step": "mapped"}
        return {"chart_spec": spec, "current_step": "mapped"}

    async def _render_chart_node(self, state: ChatPipelineState) -> dict:
        spec = state["chart_spec"]
        try:
            rendered = await self.renderer.render(spec)
            return {"chart_image": rendered.payload, "status": "rendered", "current_step": "rendered"}
        except (ChartRenderError, ChartSpecError) as e:
            logger.error(f"Chart generation failed, using text chart: {str(e)}")

        try:
            text = render_text_chart(spec)
        except Exception as e:
            raise ChartRenderError(f"Text chart fallback failed: {e}") from e
        return {"text_chart": text, "status": "text_fallback", "current_step": "rendered"}

    def _finalize_rendered_node(self, state: ChatPipelineState) -> dict:
        plan = state["plan"]
        response = ChatResponse(
            content=f"Here is the {plan.graph_type} chart you requested:",
            metadata={
                "type": "graph",
                "chartImage": state["chart_image"],
                "chartType": plan.graph_type,
                "title": plan.title_suggestion,
            },
        )
        logger.info("Workflow completed with a rendered chart")
        return {"response": response, "current_step": "completed"}

    def _finalize_text_fallback_node(self, state: ChatPipelineState) -> dict:
        plan = state["plan"]
        response = ChatResponse(
            content=(
                "I couldn't generate a visual chart due to a rendering problem, "
                f"but here's your data:\n\n{state['text_chart']}"
            ),
            metadata={
                "type": "text_chart",
                "chartType": plan.graph_type,
                "title": plan.title_suggestion,
                "chartError": True,
            },
        )
        return {"response": response, "current_step": "completed"}

    def _finalize_no_data_node(self, state: ChatPipelineState) -> dict:
        response = ChatResponse(
            content=(
                "I couldn't find data to generate a graph for your request. "
                "Please try a different query or ensure data exists."
            ),
            metadata={"noData": True},
        )
        return {"response": response, "current_step": "completed"}

    def _finalize_error_node(self, state: ChatPipelineState) -> dict:
        message = state.get("error_message") or "Unknown error occurred"
        logger.error(f"Workflow failed at {state.get('current_step')}: {message}")
        response = ChatResponse(
            content=(
                f"Sorry, I encountered an error while generating the graph: {message}. "
                "Please try a different query or check the system configuration."
            ),
            metadata={"graphError": True, "errorMessage": message},
        )
        return {"response": response, "status": "error", "current_step": "failed"}

    def _route_after_classify(self, state: ChatPipelineState) -> Literal["graph", "answer"]:
        plan = state.get("plan")
        if plan is not None and plan.is_graph_request:
            return "graph"
        return "answer"

    def _route_on_error(self, state: ChatPipelineState) -> Literal["continue", "error"]:
        if state.get("status") == "error":
            return "error"
        return "continue"

    def _route_after_mapping(self, state: ChatPipelineState) -> Literal["continue", "no_data", "error"]:
        if state.get("status") == "error":
            return "error"
        if state.get("status") == "no_data":
            return "no_data"
        return "continue"

    def _route_after_render(self, state: ChatPipelineState) -> Literal["rendered", "text_fallback"]:
        if state.get("status") == "rendered":
            return "rendered"
        return "text_fallback"
