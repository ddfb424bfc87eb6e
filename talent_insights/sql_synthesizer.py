"""SQL synthesis from query plans: allow-listed templates first, LLM second"""
import json
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.prompts import ChatPromptTemplate

from talent_insights.exceptions import SynthesisError
from talent_insights.models import QueryPlan

logger = logging.getLogger(__name__)

DATABASE_SCHEMA = """
CREATE TABLE public.users (
    user_id UUID PRIMARY KEY,
    name TEXT NOT NULL,
    username TEXT UNIQUE NOT NULL,
    sport TEXT,
    follower_count INTEGER,
    platforms TEXT
);

CREATE TABLE public.posts (
    post_id UUID PRIMARY KEY,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    view_count INTEGER,
    likes INTEGER,
    user_id UUID NOT NULL,
    created_at TIMESTAMPTZ,
    FOREIGN KEY (user_id) REFERENCES users(user_id)
);
"""

DEFAULT_LIMIT = 20
MAX_LIMIT = 100


class SqlSynthesizer(Protocol):
    async def synthesize(self, plan: QueryPlan, schema: str, original_message: str) -> str:
        ...


@dataclass(frozen=True)
class QueryTemplate:
    """A fixed query used when the plan fields match exactly"""
    name: str
    matches: Callable[[QueryPlan], bool]
    sql: str

    def render(self, plan: QueryPlan) -> str:
        return self.sql.format(limit=_bounded_limit(plan))


def _bounded_limit(plan: QueryPlan) -> int:
    limit = plan.filter.limit if plan.filter and plan.filter.limit else DEFAULT_LIMIT
    return max(1, min(limit, MAX_LIMIT))


def _has_text_filter(plan: QueryPlan) -> bool:
    return bool(plan.filter and (plan.filter.influencer or plan.filter.keyword))


QUERY_TEMPLATES: List[QueryTemplate] = [
    QueryTemplate(
        name="sport_follower_count",
        matches=lambda p: p.entity_type == "sport" and p.metric == "follower_count",
        sql=(
            "SELECT sport, SUM(follower_count) AS follower_count FROM users "
            "WHERE sport IS NOT NULL GROUP BY sport "
            "ORDER BY follower_count DESC LIMIT {limit}"
        ),
    ),
    QueryTemplate(
        name="influencer_follower_count",
        matches=lambda p: (
            p.entity_type == "influencer" and p.metric == "follower_count"
            and p.comparison != "trend"
        ),
        sql=(
            "SELECT username, follower_count FROM users "
            "WHERE follower_count IS NOT NULL "
            "ORDER BY follower_count DESC LIMIT {limit}"
        ),
    ),
    QueryTemplate(
        name="sport_distribution",
        matches=lambda p: p.entity_type == "sport" and (
            p.comparison == "distribution" or p.metric == "influencer_count"
        ),
        sql=(
            "SELECT sport, COUNT(*) AS influencer_count FROM users "
            "WHERE sport IS NOT NULL GROUP BY sport "
            "ORDER BY influencer_count DESC LIMIT {limit}"
        ),
    ),
    QueryTemplate(
        name="influencer_view_count",
        matches=lambda p: (
            p.entity_type == "influencer" and p.metric in ("view_count", "performance")
            and p.comparison != "trend"
        ),
        sql=(
            "SELECT u.username, SUM(p.view_count) AS view_count "
            "FROM users u JOIN posts p ON p.user_id = u.user_id "
            "GROUP BY u.username ORDER BY view_count DESC LIMIT {limit}"
        ),
    ),
    QueryTemplate(
        name="influencer_post_count",
        matches=lambda p: p.entity_type == "influencer" and p.metric == "post_count",
        sql=(
            "SELECT u.username, COUNT(p.post_id) AS post_count "
            "FROM users u LEFT JOIN posts p ON p.user_id = u.user_id "
            "GROUP BY u.username ORDER BY post_count DESC LIMIT {limit}"
        ),
    ),
    QueryTemplate(
        name="post_view_count",
        matches=lambda p: (
            p.entity_type == "post" and p.metric == "view_count" and p.comparison != "trend"
        ),
        sql=(
            "SELECT title, view_count FROM posts "
            "WHERE view_count IS NOT NULL "
            "ORDER BY view_count DESC LIMIT {limit}"
        ),
    ),
    QueryTemplate(
        name="post_likes",
        matches=lambda p: (
            p.entity_type == "post" and p.metric == "likes" and p.comparison != "trend"
        ),
        sql=(
            "SELECT title, likes FROM posts "
            "WHERE likes IS NOT NULL "
            "ORDER BY likes DESC LIMIT {limit}"
        ),
    ),
]


class TemplateSqlSynthesizer:
    """Builds SQL from the allow-listed templates only"""

    def __init__(self, templates: Optional[List[QueryTemplate]] = None):
        self.templates = QUERY_TEMPLATES if templates is None else templates

    def match(self, plan: QueryPlan) -> Optional[str]:
        """Return rendered SQL for the first matching template, if any"""
        if _has_text_filter(plan):
            return None
        for template in self.templates:
            if template.matches(plan):
                logger.info(f"Using query template '{template.name}'")
                return template.render(plan)
        return None

    async def synthesize(self, plan: QueryPlan, schema: str, original_message: str) -> str:
        sql = self.match(plan)
        if sql is None:
            raise SynthesisError("No query template matches this request")
        return sql


class LLMSqlSynthesizer:
    """Asks the chat model for a single read-only PostgreSQL SELECT"""

    def __init__(self, llm: BaseChatModel):
        self.llm = llm
        self.prompt = ChatPromptTemplate.from_messages([
            ("system", """You are a SQL query generator. Based on the following database schema and user's request for graph data, generate a PostgreSQL SELECT query.
The query must be read-only (no INSERT, UPDATE, DELETE, DROP, CREATE, ALTER, TRUNCATE, GRANT, REVOKE).
The output should be ONLY the SQL query, no explanations or markdown fences.

Database Schema:
{schema}"""),
            ("user", """User's Graph Request Details:
Entity Type: {entity_type}
Metric: {metric}
Chart Type: {graph_type}
Comparison: {comparison}
Time Period: {time_period}
{filter_line}
{group_by_line}

Generate SQL query for: "{message}"
SQL:""")
        ])

    async def synthesize(self, plan: QueryPlan, schema: str, original_message: str) -> str:
        """Generate SQL for the plan

        Args:
            plan: Parsed query plan
            schema: Database schema description shown to the model
            original_message: The user's chat message

        Returns:
            The model's SQL text, stripped of surrounding whitespace only

        Raises:
            SynthesisError: If the model call fails or returns nothing
        """
        filter_line = ""
        if plan.filter:
            filter_line = f"Filter: {json.dumps(plan.filter.model_dump(exclude_none=True))}"
        group_by_line = f"Group By: {plan.group_by}" if plan.group_by else ""

        messages = self.prompt.format_messages(
            schema=schema,
            entity_type=plan.entity_type,
            metric=plan.metric,
            graph_type=plan.graph_type,
            comparison=plan.comparison,
            time_period="all_time" if plan.time_period == "none" else plan.time_period,
            filter_line=filter_line,
            group_by_line=group_by_line,
            message=original_message,
        )

        try:
            response = await self.llm.ainvoke(messages)
        except Exception as e:
            raise SynthesisError(str(e)) from e

        sql = response.content.strip() if isinstance(response.content, str) else ""
        if not sql:
            raise SynthesisError("Model returned an empty SQL query")

        logger.info(f"Generated SQL: {sql}")
        return sql


class TieredSqlSynthesizer:
    """Template allow-list first, free-form generation as the fallback"""

    def __init__(self, llm_synthesizer: SqlSynthesizer,
                 template_synthesizer: Optional[TemplateSqlSynthesizer] = None):
        self.templates = template_synthesizer or TemplateSqlSynthesizer()
        self.llm_synthesizer = llm_synthesizer

    async def synthesize(self, plan: QueryPlan, schema: str, original_message: str) -> str:
        sql = self.templates.match(plan)
        if sql is not None:
            return sql
        return await self.llm_synthesizer.synthesize(plan, schema, original_message)
