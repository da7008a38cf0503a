import asyncio
import logging
import time

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage

from .errors import CoachError, ErrorKind
from .llm import response_text
from .memory import ChatHistoryStore, Turn
from .memory.chat_history import chat_key
from .observability import calculate_cost, extract_usage, get_run_config
from .observability.cost import DEFAULT_MODEL
from .prompts.system import build_seed_messages
from .repository import ContextRepository, FinancialContext

logger = logging.getLogger("riskcoach.coach")


def _is_blank(value) -> bool:
    return not isinstance(value, str) or not value.strip()


class RiskCoach:
    """Answers risk questions for a user from fresh context plus chat history.

    Every ``ask`` is one pipeline: fetch context, compose the seed, call the
    model, commit the exchange. History is only written after the model
    answers, so a failure anywhere leaves it untouched. Calls for the same
    user are serialized; different users never wait on each other.
    """

    def __init__(
        self,
        repository: ContextRepository,
        history: ChatHistoryStore,
        llm: BaseChatModel,
        *,
        model_name: str = DEFAULT_MODEL,
        context_timeout_seconds: float = 10.0,
        model_timeout_seconds: float = 60.0,
    ):
        self._repository = repository
        self._history = history
        self._llm = llm
        self._model_name = model_name
        self._context_timeout = context_timeout_seconds
        self._model_timeout = model_timeout_seconds

    async def ask(self, user_id: str, question: str, *, correlation_id: str | None = None) -> str:
        if _is_blank(user_id) or _is_blank(question):
            raise CoachError(ErrorKind.VALIDATION, "userId and question are required")

        async with self._history.lock(user_id):
            context = await self._load_context(user_id, correlation_id)
            history = await self._history.get_history(user_id)

            messages = build_seed_messages(context, history)
            messages.append(HumanMessage(content=question))

            answer = await self._invoke(messages, user_id, correlation_id, history_turns=len(history))
            await self._history.append_exchange(user_id, question, answer)

        return answer

    async def clear_history(self, user_id: str, *, correlation_id: str | None = None) -> None:
        if _is_blank(user_id):
            raise CoachError(ErrorKind.VALIDATION, "userId is required")

        async with self._history.lock(user_id):
            await self._history.clear_history(user_id)
        logger.info("Chat history cleared cid=%s", correlation_id)

    async def get_history(self, user_id: str) -> list[Turn]:
        if _is_blank(user_id):
            raise CoachError(ErrorKind.VALIDATION, "userId is required")
        return await self._history.get_history(user_id)

    async def _load_context(self, user_id: str, correlation_id: str | None) -> FinancialContext:
        """Run all context reads concurrently; the first failure aborts the rest."""
        repo = self._repository
        tasks = [
            asyncio.ensure_future(repo.get_financial_profile(user_id)),
            asyncio.ensure_future(repo.get_portfolio_positions(user_id)),
            asyncio.ensure_future(repo.get_news_sentiment(user_id)),
            asyncio.ensure_future(repo.get_personalized_news(user_id)),
            asyncio.ensure_future(repo.get_market_context()),
        ]
        try:
            profile, positions, sentiment, news, market = await asyncio.wait_for(
                asyncio.gather(*tasks), timeout=self._context_timeout
            )
        except asyncio.TimeoutError as e:
            logger.error("Context fetch timed out cid=%s after %.1fs", correlation_id, self._context_timeout)
            raise CoachError(ErrorKind.RETRIEVAL, "Timed out loading financial context") from e
        except CoachError:
            raise
        except Exception as e:
            logger.error("Context fetch failed cid=%s: %s", correlation_id, e)
            raise CoachError(ErrorKind.RETRIEVAL, "Failed to load financial context") from e
        finally:
            pending = [t for t in tasks if not t.done()]
            for t in pending:
                t.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        context = FinancialContext(
            financial_profile=profile,
            portfolio_positions=positions,
            news_sentiment=sentiment,
            personalized_news=news,
            market_context=market,
        )
        if context.is_empty:
            logger.info("No financial context found cid=%s", correlation_id)
        else:
            logger.debug(
                "Context loaded cid=%s positions=%d sentiment=%d news=%d",
                correlation_id,
                len(positions),
                len(sentiment),
                len(news),
            )
        return context

    async def _invoke(self, messages: list, user_id: str, correlation_id: str | None, *, history_turns: int) -> str:
        run_config = get_run_config(
            correlation_id=correlation_id,
            user_key=chat_key(user_id),
            tags=["chat"],
            metadata={"history_turns": history_turns, "message_count": len(messages)},
        )
        run_id = run_config["metadata"]["run_id"]
        start_time = time.monotonic()

        try:
            reply = await asyncio.wait_for(
                self._llm.ainvoke(messages, config=run_config),
                timeout=self._model_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("Model call timed out cid=%s run_id=%s", correlation_id, run_id)
            raise CoachError(ErrorKind.MODEL_INVOCATION, "Model call timed out") from e
        except Exception as e:
            elapsed = time.monotonic() - start_time
            logger.error(
                "Model call failed cid=%s run_id=%s latency=%.2fs: %s", correlation_id, run_id, elapsed, e
            )
            raise CoachError(ErrorKind.MODEL_INVOCATION, "Model call failed") from e

        text = response_text(reply)
        if not text:
            logger.error("Model returned an empty answer cid=%s run_id=%s", correlation_id, run_id)
            raise CoachError(ErrorKind.MODEL_INVOCATION, "Model returned an empty response")

        elapsed = time.monotonic() - start_time
        usage = extract_usage(reply)
        cost = calculate_cost(usage["input_tokens"], usage["output_tokens"], model=self._model_name)
        logger.info(
            "coach cid=%s run_id=%s latency=%.2fs tokens=%d cost_usd=%.6f",
            correlation_id,
            run_id,
            elapsed,
            usage["total_tokens"],
            cost["total_cost_usd"],
        )
        return text
