"""Tests for SQL synthesis"""
import pytest
from unittest.mock import AsyncMock, Mock
from langchain_core.messages import AIMessage

from talent_insights.exceptions import SynthesisError
from talent_insights.models import QueryFilter, QueryPlan
from talent_insights.sql_safety import validate_read_only_sql
from talent_insights.sql_synthesizer import (
    DATABASE_SCHEMA,
    QUERY_TEMPLATES,
    LLMSqlSynthesizer,
    TemplateSqlSynthesizer,
    TieredSqlSynthesizer
)


@pytest.fixture
def mock_llm():
    llm = Mock()
    llm.ainvoke = AsyncMock(return_value=AIMessage(
        content="  SELECT username, follower_count FROM users WHERE sport = 'Tennis'  \n"
    ))
    return llm


@pytest.fixture
def sport_plan():
    return QueryPlan(intent="graph_request", entity_type="sport", metric="follower_count")


class TestTemplateSqlSynthesizer:
    """Test the allow-listed templates"""

    def test_all_templates_pass_read_only_check(self, sport_plan):
        for template in QUERY_TEMPLATES:
            assert validate_read_only_sql(template.render(sport_plan)), template.name

    def test_sport_follower_template(self, sport_plan):
        sql = TemplateSqlSynthesizer().match(sport_plan)
        assert "GROUP BY sport" in sql
        assert sql.endswith("LIMIT 20")

    @pytest.mark.parametrize("entity_type,metric,comparison,expected", [
        ("sport", "influencer_count", "comparison", "SELECT sport, COUNT(*) AS influencer_count"),
        ("sport", "other", "distribution", "SELECT sport, COUNT(*) AS influencer_count"),
        ("influencer", "view_count", "comparison", "SELECT u.username, SUM(p.view_count)"),
        ("influencer", "post_count", "comparison", "SELECT u.username, COUNT(p.post_id) AS post_count"),
        ("post", "view_count", "none", "SELECT title, view_count FROM posts"),
        ("post", "likes", "none", "SELECT title, likes FROM posts"),
    ])
    def test_template_per_entity_and_metric(self, entity_type, metric, comparison, expected):
        plan = QueryPlan(intent="graph_request", entity_type=entity_type,
                         metric=metric, comparison=comparison)
        sql = TemplateSqlSynthesizer().match(plan)

        assert sql.startswith(expected)
        assert validate_read_only_sql(sql)

    @pytest.mark.parametrize("entity_type,metric", [
        ("post", "view_count"),
        ("post", "likes"),
        ("influencer", "follower_count"),
    ])
    def test_trends_go_to_the_model(self, entity_type, metric):
        """Trends need posts.created_at, which the read-only check rejects"""
        plan = QueryPlan(intent="graph_request", graph_type="line", entity_type=entity_type,
                         metric=metric, comparison="trend", time_period="monthly")
        assert TemplateSqlSynthesizer().match(plan) is None

    def test_limit_is_bounded(self):
        plan = QueryPlan(intent="graph_request", entity_type="influencer",
                         metric="follower_count", filter=QueryFilter(limit=5000))
        assert TemplateSqlSynthesizer().match(plan).endswith("LIMIT 100")

    def test_requested_limit_used(self):
        plan = QueryPlan(intent="graph_request", entity_type="influencer",
                         metric="follower_count", filter=QueryFilter(limit=5))
        assert TemplateSqlSynthesizer().match(plan).endswith("LIMIT 5")

    def test_text_filter_skips_templates(self):
        plan = QueryPlan(intent="graph_request", entity_type="sport", metric="follower_count",
                         filter=QueryFilter(keyword="protein"))
        assert TemplateSqlSynthesizer().match(plan) is None

    @pytest.mark.asyncio
    async def test_no_match_raises(self):
        plan = QueryPlan(intent="graph_request", entity_type="post", metric="engagement")
        with pytest.raises(SynthesisError):
            await TemplateSqlSynthesizer().synthesize(plan, DATABASE_SCHEMA, "posts by engagement")


class TestLLMSqlSynthesizer:
    """Test free-form SQL generation"""

    @pytest.mark.asyncio
    async def test_returns_stripped_model_text(self, mock_llm, sport_plan):
        synthesizer = LLMSqlSynthesizer(mock_llm)
        sql = await synthesizer.synthesize(sport_plan, DATABASE_SCHEMA, "followers by sport")
        assert sql == "SELECT username, follower_count FROM users WHERE sport = 'Tennis'"

    @pytest.mark.asyncio
    async def test_prompt_carries_plan_and_schema(self, mock_llm):
        plan = QueryPlan(intent="graph_request", entity_type="post", metric="view_count",
                         filter=QueryFilter(influencer="jdoe"))
        await LLMSqlSynthesizer(mock_llm).synthesize(plan, DATABASE_SCHEMA, "views for jdoe")

        system, user = mock_llm.ainvoke.call_args[0][0]
        assert "CREATE TABLE public.users" in system.content
        assert "Entity Type: post" in user.content
        assert "Time Period: all_time" in user.content
        assert '"influencer": "jdoe"' in user.content
        assert 'Generate SQL query for: "views for jdoe"' in user.content

    @pytest.mark.asyncio
    async def test_model_error_wrapped(self, mock_llm, sport_plan):
        mock_llm.ainvoke.side_effect = TimeoutError("model timed out")
        with pytest.raises(SynthesisError, match="model timed out"):
            await LLMSqlSynthesizer(mock_llm).synthesize(sport_plan, DATABASE_SCHEMA, "x")

    @pytest.mark.asyncio
    async def test_empty_output_raises(self, mock_llm, sport_plan):
        mock_llm.ainvoke.return_value = AIMessage(content="   ")
        with pytest.raises(SynthesisError):
            await LLMSqlSynthesizer(mock_llm).synthesize(sport_plan, DATABASE_SCHEMA, "x")

    @pytest.mark.asyncio
    async def test_unsafe_output_passed_through(self, mock_llm, sport_plan):
        """Safety is checked by the validator, not here"""
        mock_llm.ainvoke.return_value = AIMessage(content="DROP TABLE users;")
        sql = await LLMSqlSynthesizer(mock_llm).synthesize(sport_plan, DATABASE_SCHEMA, "x")
        assert sql == "DROP TABLE users;"


class TestTieredSqlSynthesizer:

    @pytest.mark.asyncio
    async def test_template_wins(self, sport_plan):
        llm_synthesizer = Mock()
        llm_synthesizer.synthesize = AsyncMock()
        sql = await TieredSqlSynthesizer(llm_synthesizer).synthesize(sport_plan, DATABASE_SCHEMA, "x")

        assert sql.startswith("SELECT sport")
        llm_synthesizer.synthesize.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_falls_back_to_model(self):
        plan = QueryPlan(intent="graph_request", entity_type="post", metric="engagement")
        llm_synthesizer = Mock()
        llm_synthesizer.synthesize = AsyncMock(return_value="SELECT title FROM posts")

        sql = await TieredSqlSynthesizer(llm_synthesizer).synthesize(plan, DATABASE_SCHEMA, "x")
        assert sql == "SELECT title FROM posts"
        llm_synthesizer.synthesize.assert_awaited_once_with(plan, DATABASE_SCHEMA, "x")
