"""Shared test fixtures for risk coach tests."""

import pytest

from risk_coach.coach import RiskCoach
from risk_coach.memory import ChatHistoryStore

from .fakes import FakeChatModel, FakeRepository


@pytest.fixture
def history_store():
    """In-memory ChatHistoryStore (no Redis)."""
    return ChatHistoryStore()


@pytest.fixture
def repository():
    return FakeRepository(
        profile={"user_id": "u1", "risk_tolerance": "MODERATE", "monthly_income": 85000},
        positions=[{"symbol": "ADANIGREEN", "allocation_pct": 42.5, "market_cap_category": "LARGE"}],
        sentiment=[{"symbol": "ADANIGREEN", "sentiment_label": "NEGATIVE", "title": "Probe widens"}],
        news=[{"title": "Markets slip on global cues", "relevance_score": 0.91}],
    )


@pytest.fixture
def llm():
    return FakeChatModel()


@pytest.fixture
def coach(repository, history_store, llm):
    return RiskCoach(repository, history_store, llm)
