import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import redis.asyncio as aioredis
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .coach import RiskCoach
from .config import Settings
from .errors import CoachError
from .llm import create_llm
from .memory import ChatHistoryStore
from .observability import configure_tracing
from .repository import ContextRepository, create_engine

settings = Settings.from_env()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("riskcoach")

GENERIC_ERROR_MESSAGE = "Something went wrong"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire the coach to its database, history store and model."""
    engine = create_engine(settings.database_url)

    redis_client = None
    if settings.redis_url:
        redis_client = aioredis.from_url(settings.redis_url, decode_responses=False)
        logger.info(
            "Chat history store: redis (%s)",
            settings.redis_url.split("@")[-1] if "@" in settings.redis_url else "local",
        )
    else:
        logger.info("REDIS_URL not set, using in-memory chat history")

    history = ChatHistoryStore(redis_client=redis_client, ttl_seconds=settings.history_ttl_seconds)
    app.state.coach = RiskCoach(
        ContextRepository(engine),
        history,
        create_llm(settings),
        model_name=settings.llm_model,
        context_timeout_seconds=settings.context_timeout_seconds,
        model_timeout_seconds=settings.llm_timeout_seconds,
    )
    app.state.history_backend = "redis" if history.is_persistent else "in-memory"
    app.state.tracing = configure_tracing()
    logger.info("LangSmith tracing: %s", "enabled" if app.state.tracing else "disabled")

    yield

    await engine.dispose()
    if redis_client is not None:
        await redis_client.aclose()


app = FastAPI(title="Aarthik Kavach Risk Coach", version="0.1.0", lifespan=lifespan)


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(default=None, alias="userId")
    question: Optional[str] = None


class ClearChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(default=None, alias="userId")


def _envelope(message: str, data: dict | None = None, success: bool = True) -> dict:
    return {"success": success, "message": message, "data": data or {}, "error": {}}


def get_coach(request: Request) -> RiskCoach:
    return request.app.state.coach


def _correlation_id(request: Request) -> str | None:
    return getattr(request.state, "correlation_id", None)


@app.middleware("http")
async def correlation_middleware(request: Request, call_next):
    """Attach a correlation ID to the request and log one access line."""
    correlation_id = request.headers.get("x-correlation-id") or str(uuid.uuid4())
    request.state.correlation_id = correlation_id

    start_time = time.monotonic()
    response = await call_next(request)
    elapsed_ms = (time.monotonic() - start_time) * 1000

    response.headers["X-Correlation-ID"] = correlation_id
    logger.info(
        "%s %s %d %.1fms cid=%s",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
        correlation_id,
    )
    return response


@app.exception_handler(CoachError)
async def coach_error_handler(request: Request, exc: CoachError):
    if exc.is_internal:
        logger.error(
            "Request failed cid=%s kind=%s: %s", _correlation_id(request), exc.kind.value, exc
        )
        message = GENERIC_ERROR_MESSAGE
    else:
        message = str(exc)
    return JSONResponse(status_code=exc.status_code, content=_envelope(message, success=False))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content=_envelope("Invalid request body", success=False))


@app.exception_handler(Exception)
async def generic_error_handler(request: Request, exc: Exception):
    # Starlette runs this handler outside the http middleware, so the response
    # carries no X-Correlation-ID header; the cid is still in the log line.
    logger.exception("Unhandled error cid=%s", _correlation_id(request))
    return JSONResponse(status_code=500, content=_envelope(GENERIC_ERROR_MESSAGE, success=False))


@app.get("/health")
async def health(request: Request):
    return {
        "status": "ok",
        "tracing": getattr(request.app.state, "tracing", False),
        "chat_history": getattr(request.app.state, "history_backend", "uninitialized"),
    }


@app.get("/api/info")
async def info():
    return _envelope("API is live")


@app.post("/api/risk-coach/chat")
async def chat(body: ChatRequest, request: Request, coach: RiskCoach = Depends(get_coach)):
    response = await coach.ask(body.user_id, body.question, correlation_id=_correlation_id(request))
    return _envelope("Successfully fetched AI response", {"response": response})


@app.post("/api/risk-coach/clear-chat")
async def clear_chat(body: ClearChatRequest, request: Request, coach: RiskCoach = Depends(get_coach)):
    await coach.clear_history(body.user_id, correlation_id=_correlation_id(request))
    return _envelope("Chat history cleared")


@app.get("/api/risk-coach/history/{user_id}")
async def chat_history(user_id: str, coach: RiskCoach = Depends(get_coach)):
    """Return the stored conversation for a user, oldest first."""
    history = await coach.get_history(user_id)
    return _envelope("Chat history fetched", {"history": [turn.to_dict() for turn in history]})


def run() -> None:
    uvicorn.run("risk_coach.main:app", host="0.0.0.0", port=settings.port)
