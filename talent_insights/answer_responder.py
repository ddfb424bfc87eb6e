"""Answers for chat messages that are not graph requests"""
import json
import logging
import re
from datetime import datetime, timezone
from typing import List, Optional, Protocol

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from talent_insights.database_manager import ReadOnlyStore
from talent_insights.models import ChatMessage, ChatResponse
from talent_insights.token_budget import calculate_context_percentage, fit_records_to_budget

logger = logging.getLogger(__name__)

CHECK_POSTS_PATTERN = re.compile(r"\[CHECK_POSTS: @(\w+)\]")

SYSTEM_PROMPT = """You are a ruthless ROI-focused matchmaker for brands and influencers. Your ONLY goal is to answer one question:
"Which influencer will make this brand the most money per dollar spent?"

### Rules:
1. Lead with commercial relevance
2. Only show data that impacts ROI
3. Never suggest more than 3 options initially
4. Flag any red flags immediately
5. Do not make up any posts or any influencers.
6. Only mention posts and users present in the data given below.
7. If you need an influencer's recent posts, reply with [CHECK_POSTS: @username] and nothing else.

### Response Format:
🔥 Top Pick: @username
📌 Key Post: "[excerpt]"
💵 ROI Justification: [1 sentence]
⚠️ Caveats: [if any]"""


class RetrievalProvider(Protocol):
    """Ranked-match search over post content (vector index lives elsewhere)"""

    async def search(self, query: str) -> str:
        ...


def search_fallback_message(query: str) -> str:
    return (
        f'I encountered an issue searching for content related to "{query}". '
        "Let me try a different approach.\n\n"
        "Based on our available influencer data, I can help you find relevant creators. "
        "Try being more specific about:\n"
        "• The sport or activity you're interested in\n"
        "• The type of content you're looking for\n"
        "• Any specific brands or products mentioned\n\n"
        'For example: "fitness influencers who post about protein supplements" '
        'or "soccer players reviewing cleats"'
    )


def to_langchain_messages(messages: List[ChatMessage]) -> List[BaseMessage]:
    converted = []
    for message in messages:
        if message.role == "assistant":
            converted.append(AIMessage(content=message.content))
        elif message.role == "system":
            converted.append(SystemMessage(content=message.content))
        else:
            converted.append(HumanMessage(content=message.content))
    return converted


class AnswerResponder:
    """Retrieval answer when a provider is configured, LLM answer otherwise"""

    def __init__(
        self,
        llm: BaseChatModel,
        store: ReadOnlyStore,
        retrieval: Optional[RetrievalProvider] = None,
        context_window: int = 64000
    ):
        self.llm = llm
        self.store = store
        self.retrieval = retrieval
        self.context_window = context_window
        self.roster_token_budget = context_window // 2

    async def respond(self, messages: List[ChatMessage]) -> ChatResponse:
        query = messages[-1].content if messages else ""

        if self.retrieval is not None:
            try:
                content = await self.retrieval.search(query)
                return ChatResponse(content=content, metadata={
                    "responseType": "enhanced_vector_search",
                    "searchQuery": query,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                })
            except Exception as e:
                logger.error(f"Retrieval search failed: {str(e)}")
                return ChatResponse(content=search_fallback_message(query), metadata={
                    "responseType": "vector_search_fallback",
                    "originalQuery": query,
                    "error": "Vector search unavailable",
                })

        return await self._generated_answer(messages)

    async def _load_roster(self) -> List[dict]:
        df = await self.store.run_allowed("GET_ALL_INFLUENCERS")
        records = json.loads(df.to_json(orient="records", date_format="iso", default_handler=str))
        return fit_records_to_budget(records, self.roster_token_budget)

    async def _generated_answer(self, messages: List[ChatMessage]) -> ChatResponse:
        influencers = await self._load_roster()
        system = SystemMessage(
            content=f"{SYSTEM_PROMPT}\n\nAvailable influencers: {json.dumps(influencers, default=str)}"
        )
        usage = calculate_context_percentage(system.content, self.context_window)
        logger.info(f"System prompt uses {usage['tokens']} tokens ({usage['percentage']:.1f}% of context)")
        if not usage["fits"]:
            logger.warning(f"System prompt does not fit the context window ({usage['tokens']}/{self.context_window} tokens)")
        response = await self.llm.ainvoke([system] + to_langchain_messages(messages))
        text = response.content if isinstance(response.content, str) else str(response.content)

        match = CHECK_POSTS_PATTERN.search(text)
        if match:
            return await self._influencer_posts(match.group(1), influencers)

        return ChatResponse(content=text, metadata={"responseType": "generated"})

    async def _influencer_posts(self, username: str, influencers: List[dict]) -> ChatResponse:
        influencer = next((i for i in influencers if i.get("username") == username), None)
        if influencer is None:
            return ChatResponse(content=f"@{username} not found in our system.")

        posts = await self.store.run_allowed(
            "GET_USER_POSTS", {"user_id": influencer["user_id"], "limit": 2}
        )
        if posts.empty:
            content = f"No posts found for @{username}"
        else:
            content = "\n\n".join(
                f'📝 "{post["title"]}"\n{str(post["content"])[:100]}...'
                for post in posts.to_dict(orient="records")
            )
        return ChatResponse(content=content, metadata={"influencerId": influencer["user_id"]})
