"""Intent classification and query plan extraction for chat messages"""
import json
import re
import logging
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.prompts import ChatPromptTemplate
from pydantic import ValidationError
from talent_insights.models import QueryPlan

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)

# Literal braces are doubled for ChatPromptTemplate
CLASSIFIER_SYSTEM_PROMPT = """Based on the user message, determine if the user is asking for a data visualization (like a graph or chart).
If the user explicitly asks for a graph or chart, respond with a JSON object indicating "graph_request" intent and extract relevant details.
If the user is NOT asking for a graph or chart, respond with a JSON object indicating "other" intent.

Respond ONLY with the JSON object. Do not include any other text or explanations.

JSON format for 'graph_request' intent:
{{
  "intent": "graph_request",
  "graph_type": "bar" | "line" | "pie" | "doughnut" | "area" | "scatter",
  "entity_type": "sport" | "influencer" | "post" | "other",
  "metric": "performance" | "engagement" | "sentiment" | "follower_count" | "view_count" | "likes" | "other",
  "comparison": "comparison" | "trend" | "distribution" | "correlation" | null,
  "time_period": "weekly" | "monthly" | "all_time" | null,
  "group_by": "sport" | "username" | null,
  "filter": {{
    "influencer": "username_if_specified" | null,
    "keyword": "keyword_if_specified" | null,
    "limit": number_if_specified | null
  }},
  "title_suggestion": "Suggested title for the graph",
  "chart_options": {{
    "theme": "light" | "dark" | null,
    "show_legend": boolean | null,
    "show_grid": boolean | null
  }}
}}

JSON format for 'other' intent:
{{"intent": "other"}}

Examples:
User: "Make me a bar graph of the performance of different sports"
AI: {{"intent": "graph_request", "graph_type": "bar", "entity_type": "sport", "metric": "performance", "comparison": "comparison", "group_by": "sport", "filter": null, "title_suggestion": "Performance of Different Sports", "chart_options": {{"theme": "light", "show_legend": true, "show_grid": true}}}}

User: "Show me a line chart of follower growth trends"
AI: {{"intent": "graph_request", "graph_type": "line", "entity_type": "influencer", "metric": "follower_count", "comparison": "trend", "time_period": "monthly", "title_suggestion": "Follower Growth Trends", "chart_options": {{"theme": "light", "show_legend": true, "show_grid": true}}}}

User: "Create a pie chart showing the distribution of sports"
AI: {{"intent": "graph_request", "graph_type": "pie", "entity_type": "sport", "metric": "performance", "comparison": "distribution", "title_suggestion": "Sports Distribution", "chart_options": {{"theme": "light", "show_legend": true, "show_grid": false}}}}

User: "Compare the performance of posts by @influencerA with 'running' as opposed to their median"
AI: {{"intent": "graph_request", "graph_type": "bar", "entity_type": "post", "metric": "performance", "comparison": "comparison", "group_by": null, "filter": {{"influencer": "influencerA", "keyword": "running"}}, "title_suggestion": "Engagement of @influencerA's 'running' posts vs. Median", "chart_options": {{"theme": "light", "show_legend": true, "show_grid": true}}}}

User: "Show me the top 5 influencers by follower count as a doughnut chart"
AI: {{"intent": "graph_request", "graph_type": "doughnut", "entity_type": "influencer", "metric": "follower_count", "comparison": "distribution", "group_by": "username", "filter": {{"limit": 5}}, "title_suggestion": "Top 5 Influencers by Follower Count", "chart_options": {{"theme": "light", "show_legend": true, "show_grid": false}}}}

User: "Who is the best influencer for dog food?"
AI: {{"intent": "other"}}"""


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if any"""
    match = _FENCE_PATTERN.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def parse_query_plan(raw_text: str) -> QueryPlan:
    """Parse a model response into a QueryPlan, falling back to 'other'

    Args:
        raw_text: Raw text returned by the model

    Returns:
        Parsed QueryPlan, or QueryPlan.other() when the text is not a JSON
        object of the expected shape
    """
    text = strip_code_fences(raw_text or "")

    if not (text.startswith("{") and text.endswith("}")):
        logger.warning(f"Intent response is not a JSON object, falling back. Raw response: {raw_text!r}")
        return QueryPlan.other()

    try:
        return QueryPlan.model_validate(json.loads(text))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Intent response could not be parsed, falling back: {e}")
        return QueryPlan.other()


class IntentClassifier:
    """Classifies chat messages into graph requests or everything else"""

    def __init__(self, llm: BaseChatModel):
        """
        Args:
            llm: Chat model configured for deterministic output (temperature 0)
        """
        self.llm = llm
        self.prompt = ChatPromptTemplate.from_messages([
            ("system", CLASSIFIER_SYSTEM_PROMPT),
            ("user", 'User message: "{message}"\nAI: ')
        ])

    async def classify(self, message: str) -> QueryPlan:
        """Classify a message; never raises"""
        raw_text = ""
        try:
            response = await self.llm.ainvoke(self.prompt.format_messages(message=message))
            raw_text = response.content if isinstance(response.content, str) else str(response.content)
        except Exception as e:
            logger.error(f"Intent classification call failed: {str(e)}")
            return QueryPlan.other()

        plan = parse_query_plan(raw_text)
        logger.info(f"Intent classified as '{plan.intent}' (graph_type={plan.graph_type})")
        return plan
