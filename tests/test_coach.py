"""Tests for the RiskCoach orchestrator."""

import asyncio
import logging
from datetime import timedelta

import pytest
from langchain_core.messages import AIMessage, HumanMessage

from risk_coach.coach import RiskCoach
from risk_coach.errors import CoachError, ErrorKind
from risk_coach.memory import ChatHistoryStore, Role, Turn
from risk_coach.prompts.system import ACKNOWLEDGEMENT

from .fakes import FakeChatModel, FakeRepository

QUESTION = "Why is my portfolio risky?"


class TestAsk:
    async def test_returns_answer_and_records_exchange(self, coach, history_store):
        answer = await coach.ask("u1", QUESTION)
        assert answer == f"Answer to: {QUESTION}"
        assert await history_store.get_history("u1") == [
            Turn(Role.USER, QUESTION),
            Turn(Role.MODEL, answer),
        ]

    async def test_fetches_all_context(self, coach, repository):
        await coach.ask("u1", QUESTION)
        assert sorted(repository.calls) == [
            "financial_profile",
            "market_context",
            "news_sentiment",
            "personalized_news",
            "portfolio_positions",
        ]

    async def test_model_receives_seed_history_and_question(self, coach, llm):
        await coach.ask("u1", "First question")
        await coach.ask("u1", "Second question")

        messages, _ = llm.calls[1]
        assert isinstance(messages[0], HumanMessage)
        assert "ADANIGREEN" in messages[0].content
        assert messages[1] == AIMessage(content=ACKNOWLEDGEMENT)
        assert [m.content for m in messages[2:]] == [
            "First question",
            "Answer to: First question",
            "Second question",
        ]

    async def test_run_config_carries_correlation_id(self, coach, llm):
        await coach.ask("u1", QUESTION, correlation_id="cid-123")
        _, config = llm.calls[0]
        assert config["metadata"]["correlation_id"] == "cid-123"
        assert "u1" not in config["metadata"]["user_key"]
        assert "riskcoach" in config["tags"]

    async def test_empty_context_still_answers(self, history_store, llm):
        coach = RiskCoach(FakeRepository(), history_store, llm)
        answer = await coach.ask("u1", QUESTION)
        assert answer
        assert len(await history_store.get_history("u1")) == 2

    async def test_empty_context_is_logged(self, history_store, llm, caplog):
        coach = RiskCoach(FakeRepository(), history_store, llm)
        with caplog.at_level(logging.INFO, logger="riskcoach.coach"):
            await coach.ask("u1", QUESTION, correlation_id="cid-empty")
        assert "No financial context found cid=cid-empty" in caplog.text

    async def test_interval_values_reach_the_model(self, history_store, llm):
        repository = FakeRepository(positions=[{"symbol": "TCS", "holding_period": timedelta(days=30)}])
        coach = RiskCoach(repository, history_store, llm)
        answer = await coach.ask("u1", QUESTION)
        assert answer == f"Answer to: {QUESTION}"
        messages, _ = llm.calls[0]
        assert '"holding_period": "30 days, 0:00:00"' in messages[0].content
        assert len(await history_store.get_history("u1")) == 2

    async def test_history_keeps_last_ten_exchanges(self, coach, history_store):
        for i in range(1, 26):
            await coach.ask("u1", f"question {i}")
        history = await history_store.get_history("u1")
        assert len(history) == 20
        assert history[0] == Turn(Role.USER, "question 16")
        assert history[-1].text == "Answer to: question 25"


class TestValidation:
    @pytest.mark.parametrize(
        "user_id,question",
        [(None, QUESTION), ("", QUESTION), ("   ", QUESTION), ("u1", None), ("u1", ""), ("u1", " \n")],
    )
    async def test_missing_input_rejected(self, coach, repository, llm, history_store, user_id, question):
        with pytest.raises(CoachError) as exc_info:
            await coach.ask(user_id, question)
        assert exc_info.value.kind is ErrorKind.VALIDATION
        assert exc_info.value.status_code == 400
        assert repository.calls == []
        assert llm.calls == []
        assert len(history_store) == 0

    async def test_clear_requires_user_id(self, coach):
        with pytest.raises(CoachError) as exc_info:
            await coach.clear_history("")
        assert exc_info.value.kind is ErrorKind.VALIDATION


class TestFailures:
    @pytest.mark.parametrize(
        "source",
        ["financial_profile", "portfolio_positions", "news_sentiment", "personalized_news", "market_context"],
    )
    async def test_retrieval_failure_leaves_history_untouched(self, history_store, llm, source):
        await history_store.append_exchange("u1", "earlier", "reply")
        coach = RiskCoach(FakeRepository(fail_on=source), history_store, llm)

        with pytest.raises(CoachError) as exc_info:
            await coach.ask("u1", QUESTION)

        assert exc_info.value.kind is ErrorKind.RETRIEVAL
        assert llm.calls == []
        assert len(await history_store.get_history("u1")) == 2

    async def test_unexpected_retrieval_error_is_wrapped(self, history_store, llm):
        class BrokenRepository(FakeRepository):
            async def get_portfolio_positions(self, user_id):
                raise OSError("connection reset")

        coach = RiskCoach(BrokenRepository(), history_store, llm)
        with pytest.raises(CoachError) as exc_info:
            await coach.ask("u1", QUESTION)
        assert exc_info.value.kind is ErrorKind.RETRIEVAL

    async def test_context_timeout(self, history_store, llm):
        coach = RiskCoach(FakeRepository(delay=0.5), history_store, llm, context_timeout_seconds=0.01)
        with pytest.raises(CoachError) as exc_info:
            await coach.ask("u1", QUESTION)
        assert exc_info.value.kind is ErrorKind.RETRIEVAL
        assert await history_store.get_history("u1") == []

    async def test_model_failure_leaves_history_untouched(self, repository, history_store):
        llm = FakeChatModel(error=RuntimeError("429 quota exceeded: {'raw': 'payload'}"))
        coach = RiskCoach(repository, history_store, llm)

        with pytest.raises(CoachError) as exc_info:
            await coach.ask("u1", QUESTION)

        assert exc_info.value.kind is ErrorKind.MODEL_INVOCATION
        assert "payload" not in str(exc_info.value)
        assert await history_store.get_history("u1") == []

    async def test_model_timeout(self, repository, history_store):
        coach = RiskCoach(repository, history_store, FakeChatModel(delay=0.5), model_timeout_seconds=0.01)
        with pytest.raises(CoachError) as exc_info:
            await coach.ask("u1", QUESTION)
        assert exc_info.value.kind is ErrorKind.MODEL_INVOCATION
        assert await history_store.get_history("u1") == []

    async def test_empty_answer_is_a_model_error(self, repository, history_store):
        coach = RiskCoach(repository, history_store, FakeChatModel(content="   "))
        with pytest.raises(CoachError) as exc_info:
            await coach.ask("u1", QUESTION)
        assert exc_info.value.kind is ErrorKind.MODEL_INVOCATION
        assert await history_store.get_history("u1") == []

    async def test_cancellation_leaves_history_untouched(self, repository, history_store):
        coach = RiskCoach(repository, history_store, FakeChatModel(delay=1))
        task = asyncio.create_task(coach.ask("u1", QUESTION))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert await history_store.get_history("u1") == []

    async def test_cancellation_during_context_fetch(self, history_store, llm):
        repository = FakeRepository(delay=1)
        coach = RiskCoach(repository, history_store, llm)
        task = asyncio.create_task(coach.ask("u1", QUESTION))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert len(repository.calls) == 5
        assert sorted(repository.cancelled) == sorted(repository.calls)
        assert llm.calls == []
        assert await history_store.get_history("u1") == []


class TestHistoryOperations:
    async def test_clear_history(self, coach, history_store):
        await coach.ask("u1", QUESTION)
        await coach.clear_history("u1")
        assert await coach.get_history("u1") == []

    async def test_clear_unknown_user(self, coach):
        await coach.clear_history("never-seen")
        assert await coach.get_history("never-seen") == []


class TestConcurrency:
    async def test_distinct_users_do_not_interleave(self, repository):
        store = ChatHistoryStore()
        coach = RiskCoach(repository, store, FakeChatModel(delay=0.01))

        async def converse(user_id):
            for i in range(5):
                await coach.ask(user_id, f"{user_id} question {i}")

        await asyncio.gather(converse("alice"), converse("bob"))

        for user_id in ("alice", "bob"):
            history = await store.get_history(user_id)
            assert len(history) == 10
            assert all(t.text.startswith((f"{user_id} ", f"Answer to: {user_id} ")) for t in history)
            assert [t.role for t in history] == [Role.USER, Role.MODEL] * 5

    async def test_same_user_calls_are_serialized(self, repository):
        store = ChatHistoryStore()
        llm = FakeChatModel(delay=0.01)
        coach = RiskCoach(repository, store, llm)

        await asyncio.gather(*(coach.ask("u1", f"q{i}") for i in range(4)))

        history = await store.get_history("u1")
        assert len(history) == 8
        for question, answer in zip(history[::2], history[1::2]):
            assert question.role is Role.USER
            assert answer.text == f"Answer to: {question.text}"
        # Each call saw every exchange committed before it
        assert [len(messages) for messages, _ in llm.calls] == [3, 5, 7, 9]

    async def test_different_users_run_in_parallel(self, repository):
        coach = RiskCoach(repository, ChatHistoryStore(), FakeChatModel(delay=0.2))
        loop = asyncio.get_running_loop()
        start = loop.time()
        await asyncio.gather(coach.ask("alice", QUESTION), coach.ask("bob", QUESTION))
        assert loop.time() - start < 0.39
