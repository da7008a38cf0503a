import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from .errors import CoachError, ErrorKind

logger = logging.getLogger("riskcoach.repository")


def create_engine(database_url: str) -> AsyncEngine:
    """Create the async engine used for all context reads."""
    return create_async_engine(
        database_url,
        pool_size=20,
        max_overflow=0,
        pool_recycle=30,
        pool_pre_ping=True,
        connect_args={"timeout": 2} if database_url.startswith("postgresql+asyncpg") else {},
    )


class ContextRepository:
    """Read-only access to the pre-aggregated financial views for a user.

    Each query checks out its own connection from the engine pool so the
    coach can run them concurrently. Missing rows are never an error.
    """

    NEWS_SENTIMENT_LIMIT = 10
    PERSONALIZED_NEWS_LIMIT = 5

    def __init__(self, engine: AsyncEngine):
        self._engine = engine

    async def _fetch(self, name: str, sql: str, **params: Any) -> list[dict]:
        """Run a read query with unified error handling."""
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(text(sql), params)
                return [dict(row) for row in result.mappings().all()]
        except (SQLAlchemyError, OSError) as e:
            logger.error("Context query %s failed: %s", name, e)
            raise CoachError(ErrorKind.RETRIEVAL, f"Failed to load {name}") from e

    async def get_financial_profile(self, user_id: str) -> dict:
        rows = await self._fetch(
            "financial profile",
            "SELECT * FROM user_financial_profile WHERE user_id = :user_id",
            user_id=user_id,
        )
        return rows[0] if rows else {}

    async def get_portfolio_positions(self, user_id: str) -> list[dict]:
        # Holdings joined with fundamentals and technicals upstream
        return await self._fetch(
            "portfolio positions",
            "SELECT * FROM vw_portfolio_insights WHERE user_id = :user_id",
            user_id=user_id,
        )

    async def get_news_sentiment(self, user_id: str) -> list[dict]:
        """Most recent sentiment items for symbols the user holds."""
        return await self._fetch(
            "news sentiment",
            """
            SELECT ns.*, na.title, na.published_at
            FROM news_sentiment ns
            JOIN news_articles na ON ns.article_id = na.id
            JOIN portfolio_positions pp ON ns.symbol = pp.symbol
            WHERE pp.user_id = :user_id
            ORDER BY na.published_at DESC
            LIMIT :limit
            """,
            user_id=user_id,
            limit=self.NEWS_SENTIMENT_LIMIT,
        )

    async def get_personalized_news(self, user_id: str) -> list[dict]:
        # Ranking happens in the feed view; keep its order
        return await self._fetch(
            "personalized news",
            "SELECT * FROM vw_user_news_feed_api WHERE user_id = :user_id LIMIT :limit",
            user_id=user_id,
            limit=self.PERSONALIZED_NEWS_LIMIT,
        )

    async def get_market_context(self) -> dict:
        """Broad market context (indices, volatility). Nothing is tracked yet."""
        return {}


@dataclass
class FinancialContext:
    """Everything the coach knows about a user for one question."""

    financial_profile: dict = field(default_factory=dict)
    portfolio_positions: list[dict] = field(default_factory=list)
    news_sentiment: list[dict] = field(default_factory=list)
    personalized_news: list[dict] = field(default_factory=list)
    market_context: dict = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (
            self.financial_profile
            or self.portfolio_positions
            or self.news_sentiment
            or self.personalized_news
            or self.market_context
        )
