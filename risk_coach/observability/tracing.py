"""LangSmith tracing configuration.

Tracing is automatically enabled when these env vars are set:
  LANGCHAIN_TRACING_V2=true
  LANGCHAIN_API_KEY=<key>
  LANGCHAIN_PROJECT=<project>

get_run_config builds the per-call run configuration so each model call
is searchable by correlation ID and (hashed) user.
"""

from __future__ import annotations

import os
import uuid

_TRACING_ENABLED: bool | None = None


def configure_tracing() -> bool:
    """Check if LangSmith tracing is properly configured.

    Returns True if tracing is active, False otherwise.
    Called once at startup to log status.
    """
    global _TRACING_ENABLED
    enabled = os.getenv("LANGCHAIN_TRACING_V2", "").lower() == "true"
    has_key = bool(os.getenv("LANGCHAIN_API_KEY"))
    _TRACING_ENABLED = enabled and has_key
    return _TRACING_ENABLED


def get_run_config(
    *,
    correlation_id: str | None = None,
    user_key: str | None = None,
    tags: list[str] | None = None,
    metadata: dict | None = None,
) -> dict:
    """Build a LangChain RunnableConfig with LangSmith metadata.

    Args:
        correlation_id: Request correlation ID from the HTTP boundary.
        user_key: Hashed user key; raw user IDs are never traced.
        tags: Filterable tags (e.g. ["chat"]).
        metadata: Arbitrary key-value pairs attached to the trace.

    Returns:
        A config dict compatible with llm.ainvoke(..., config=config).
    """
    run_id = uuid.uuid4()

    config: dict = {
        "run_id": run_id,
        "run_name": "riskcoach-chat",
    }

    all_tags = ["riskcoach"]
    if tags:
        all_tags.extend(tags)
    config["tags"] = all_tags

    all_metadata = {"run_id": str(run_id)}
    if correlation_id:
        all_metadata["correlation_id"] = correlation_id
    if user_key:
        all_metadata["user_key"] = user_key
    if metadata:
        all_metadata.update(metadata)
    config["metadata"] = all_metadata

    return config
