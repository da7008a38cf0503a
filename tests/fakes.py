"""Test doubles for the chat model and context repository."""

import asyncio

from langchain_core.messages import AIMessage

from risk_coach.errors import CoachError, ErrorKind


class FakeChatModel:
    """Stands in for a chat model; records every call and echoes the question."""

    def __init__(self, error: Exception | None = None, delay: float = 0.0, content=None):
        self.error = error
        self.delay = delay
        self.content = content
        self.calls: list[tuple[list, dict | None]] = []

    async def ainvoke(self, messages, config=None):
        self.calls.append((list(messages), config))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        content = self.content if self.content is not None else f"Answer to: {messages[-1].content}"
        return AIMessage(
            content=content,
            usage_metadata={"input_tokens": 120, "output_tokens": 30, "total_tokens": 150},
        )


class FakeRepository:
    """In-memory ContextRepository with per-method failure injection."""

    def __init__(self, profile=None, positions=None, sentiment=None, news=None, fail_on=None, delay=0.0):
        self.profile = profile or {}
        self.positions = positions or []
        self.sentiment = sentiment or []
        self.news = news or []
        self.fail_on = fail_on
        self.delay = delay
        self.calls: list[str] = []
        self.cancelled: list[str] = []

    async def _answer(self, name, value):
        self.calls.append(name)
        if self.delay:
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                self.cancelled.append(name)
                raise
        if self.fail_on == name:
            raise CoachError(ErrorKind.RETRIEVAL, f"Failed to load {name}")
        return value

    async def get_financial_profile(self, user_id):
        return await self._answer("financial_profile", self.profile)

    async def get_portfolio_positions(self, user_id):
        return await self._answer("portfolio_positions", self.positions)

    async def get_news_sentiment(self, user_id):
        return await self._answer("news_sentiment", self.sentiment)

    async def get_personalized_news(self, user_id):
        return await self._answer("personalized_news", self.news)

    async def get_market_context(self):
        return await self._answer("market_context", {})


