"""Tests for the LangGraph chat pipeline"""
import base64
import json

import pandas as pd
import pytest
from unittest.mock import AsyncMock, Mock, patch
from langchain_core.messages import AIMessage

from talent_insights.chart_mapper import ChartDataMapper
from talent_insights.config import ChartSettings, Settings
from talent_insights.exceptions import ChartRenderError, ChartSpecError, QueryExecutionError, SynthesisError
from talent_insights.langgraph_orchestrator import ChatPipelineOrchestrator
from talent_insights.models import ChatMessage, ChatResponse, QueryPlan, RenderedChart


SPORT_PLAN = QueryPlan(
    intent="graph_request",
    graph_type="bar",
    entity_type="sport",
    metric="follower_count",
    comparison="comparison",
    title_suggestion="Followers by Sport"
)


@pytest.fixture
def sport_rows():
    return pd.DataFrame({
        "sport": ["Soccer", "Tennis"],
        "follower_count": [1500, 800]
    })


@pytest.fixture
def components(sport_rows):
    """Mocked pipeline stages; mapper is the real one"""
    classifier = Mock()
    classifier.classify = AsyncMock(return_value=SPORT_PLAN)

    synthesizer = Mock()
    synthesizer.synthesize = AsyncMock(return_value="SELECT sport, follower_count FROM users")

    store = Mock()
    store.execute = AsyncMock(return_value=sport_rows)

    responder = Mock()
    responder.respond = AsyncMock(return_value=ChatResponse(
        content="🔥 Top Pick: @ace", metadata={"responseType": "generated"}
    ))

    renderer = Mock()
    renderer.render = AsyncMock(return_value=RenderedChart(
        payload="aW1hZ2U=", media_type="image/png", backend="canvas"
    ))

    return {
        "classifier": classifier,
        "synthesizer": synthesizer,
        "store": store,
        "responder": responder,
        "mapper": ChartDataMapper(),
        "renderer": renderer,
    }


@pytest.fixture
def orchestrator(components):
    return ChatPipelineOrchestrator(Settings(), **components)


def user_says(text):
    return [ChatMessage(role="user", content=text)]


class TestChatPipelineOrchestrator:
    """Test suite for ChatPipelineOrchestrator"""

    @patch("talent_insights.langgraph_orchestrator.ChatOpenAI")
    def test_initialization_builds_models(self, mock_openai):
        """Three chat models with their own temperature and token limits"""
        settings = Settings()
        settings.llm.api_key = "test-key"
        settings.llm.api_base = "https://api.example.com/v1"
        orchestrator = ChatPipelineOrchestrator(settings, store=Mock())

        assert orchestrator.graph is not None
        assert mock_openai.call_count == 3
        temperatures = sorted(c.kwargs["temperature"] for c in mock_openai.call_args_list)
        assert temperatures == [0.0, 0.0, 0.3]
        assert all(c.kwargs["base_url"] == "https://api.example.com/v1"
                   for c in mock_openai.call_args_list)
        assert orchestrator.langfuse is None

    @pytest.mark.asyncio
    async def test_bar_chart_by_sport_renders(self, orchestrator, components):
        response = await orchestrator.handle_chat(user_says("Show me a bar chart of followers by sport"))

        assert response.content == "Here is the bar chart you requested:"
        assert response.metadata == {
            "type": "graph",
            "chartImage": "aW1hZ2U=",
            "chartType": "bar",
            "title": "Followers by Sport"
        }
        spec = components["renderer"].render.call_args[0][0]
        assert spec.labels == ["Soccer", "Tennis"]
        assert spec.datasets[0].data == [1500, 800]

    @pytest.mark.asyncio
    async def test_other_intent_skips_synthesis(self, orchestrator, components):
        components["classifier"].classify.return_value = QueryPlan.other()
        messages = user_says("Find influencers for a dog food brand")

        response = await orchestrator.handle_chat(messages)

        assert response.metadata == {"responseType": "generated"}
        components["responder"].respond.assert_awaited_once_with(messages)
        components["synthesizer"].synthesize.assert_not_awaited()
        components["store"].execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unsafe_sql_never_executes(self, orchestrator, components):
        components["synthesizer"].synthesize.return_value = "DROP TABLE users;"

        response = await orchestrator.handle_chat(user_says("DROP TABLE users;"))

        assert response.metadata["graphError"] is True
        assert response.metadata["errorMessage"] == "Generated query failed read-only validation"
        assert response.content.startswith("Sorry, I encountered an error while generating the graph:")
        components["store"].execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_result_is_no_data(self, orchestrator, components):
        components["store"].execute.return_value = pd.DataFrame(columns=["sport", "follower_count"])

        response = await orchestrator.handle_chat(user_says("bar chart of followers by sport"))

        assert response.metadata == {"noData": True}
        assert response.content.startswith("I couldn't find data to generate a graph")
        components["renderer"].render.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_synthesis_failure(self, orchestrator, components):
        components["synthesizer"].synthesize.side_effect = SynthesisError("model timed out")

        response = await orchestrator.handle_chat(user_says("bar chart"))

        assert response.metadata == {"graphError": True, "errorMessage": "model timed out"}
        components["store"].execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_execution_failure(self, orchestrator, components):
        components["store"].execute.side_effect = QueryExecutionError('relation "userz" does not exist')

        response = await orchestrator.handle_chat(user_says("bar chart"))

        assert response.metadata["graphError"] is True
        assert "userz" in response.metadata["errorMessage"]

    @pytest.mark.asyncio
    async def test_mapping_failure(self, orchestrator, components):
        components["store"].execute.return_value = pd.DataFrame({"sport": ["Soccer"]})

        response = await orchestrator.handle_chat(user_says("bar chart"))

        assert response.metadata["graphError"] is True
        components["renderer"].render.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_render_failure_uses_text_chart(self, orchestrator, components):
        components["renderer"].render.side_effect = ChartRenderError("All chart renderers failed")

        response = await orchestrator.handle_chat(user_says("bar chart"))

        assert response.metadata == {
            "type": "text_chart",
            "chartType": "bar",
            "title": "Followers by Sport",
            "chartError": True
        }
        assert "here's your data:\n\n📊 **Followers by Sport** (bar)" in response.content

    @pytest.mark.asyncio
    async def test_invalid_spec_uses_text_chart(self, orchestrator, components):
        components["renderer"].render.side_effect = ChartSpecError("Invalid chart data: mismatch")

        response = await orchestrator.handle_chat(user_says("bar chart"))
        assert response.metadata["type"] == "text_chart"

    @pytest.mark.asyncio
    async def test_text_chart_failure_propagates(self, orchestrator, components):
        components["renderer"].render.side_effect = ChartRenderError("All chart renderers failed")

        with patch("talent_insights.langgraph_orchestrator.render_text_chart",
                   side_effect=ValueError("bad glyph")):
            with pytest.raises(ChartRenderError, match="bad glyph"):
                await orchestrator.handle_chat(user_says("bar chart"))

    @pytest.mark.asyncio
    async def test_last_message_is_classified(self, orchestrator, components):
        messages = [
            ChatMessage(role="user", content="hello"),
            ChatMessage(role="assistant", content="hi"),
            ChatMessage(role="user", content="pie chart of sports")
        ]
        await orchestrator.handle_chat(messages)

        components["classifier"].classify.assert_awaited_once_with("pie chart of sports")
        plan_arg, _, message_arg = components["synthesizer"].synthesize.call_args[0]
        assert plan_arg == SPORT_PLAN
        assert message_arg == "pie chart of sports"


def model_reply(payload):
    return AIMessage(content=payload if isinstance(payload, str) else json.dumps(payload))


class TestEndToEnd:
    """Real pipeline stages; only the chat model and the database are stubbed"""

    @pytest.fixture
    def llm(self):
        llm = Mock()
        llm.ainvoke = AsyncMock()
        return llm

    @pytest.fixture
    def store(self, sport_rows):
        store = Mock()
        store.execute = AsyncMock(return_value=sport_rows)
        return store

    @pytest.fixture
    def pipeline(self, llm, store):
        settings = Settings(chart=ChartSettings(width=400, height=300, dpi=50))
        with patch("talent_insights.langgraph_orchestrator.ChatOpenAI", return_value=llm):
            return ChatPipelineOrchestrator(settings, store=store)

    @pytest.mark.asyncio
    async def test_template_query_renders_png(self, pipeline, llm, store):
        llm.ainvoke.return_value = model_reply({
            "intent": "graph_request",
            "graph_type": "bar",
            "entity_type": "sport",
            "metric": "follower_count",
            "comparison": "comparison",
            "time_period": "none",
            "title_suggestion": "Followers by Sport"
        })

        response = await pipeline.handle_chat(user_says("Show me a bar chart of followers by sport"))

        assert response.content == "Here is the bar chart you requested:"
        assert response.metadata["type"] == "graph"
        assert response.metadata["title"] == "Followers by Sport"
        image = base64.b64decode(response.metadata["chartImage"])
        assert image.startswith(b"\x89PNG")

        sql = store.execute.call_args[0][0]
        assert sql.startswith("SELECT sport, SUM(follower_count)")
        llm.ainvoke.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_model_written_query_renders_png(self, pipeline, llm, store):
        store.execute.return_value = pd.DataFrame({
            "title": ["Match day fuel", "Serve drills"],
            "engagement": [0.12, 0.08]
        })
        llm.ainvoke.side_effect = [
            model_reply({
                "intent": "graph_request",
                "graph_type": "pie",
                "entity_type": "post",
                "metric": "engagement",
                "comparison": "distribution",
                "time_period": "yearly",
                "title_suggestion": "Engagement by Post"
            }),
            model_reply("SELECT title, likes * 1.0 / view_count AS engagement FROM posts LIMIT 2"),
        ]

        response = await pipeline.handle_chat(user_says("pie chart of post engagement"))

        assert response.metadata["chartType"] == "pie"
        assert base64.b64decode(response.metadata["chartImage"]).startswith(b"\x89PNG")
        store.execute.assert_awaited_once_with(
            "SELECT title, likes * 1.0 / view_count AS engagement FROM posts LIMIT 2"
        )

    @pytest.mark.asyncio
    async def test_unsafe_model_query_never_reaches_database(self, pipeline, llm, store):
        llm.ainvoke.side_effect = [
            model_reply({"intent": "graph_request", "entity_type": "post", "metric": "engagement"}),
            model_reply("DELETE FROM posts"),
        ]

        response = await pipeline.handle_chat(user_says("chart of engagement"))

        assert response.metadata["graphError"] is True
        store.execute.assert_not_awaited()
