"""Bounded per-user chat history for the risk coach.

Each user keeps at most MAX_HISTORY_TURNS turns, appended in
(question, answer) pairs and trimmed oldest-first. The store is an
in-process dict by default, or a Redis list per user when a client is
supplied.

Entries that sit idle longer than the TTL are dropped, so users who
never come back do not accumulate forever.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncContextManager, Callable

from redis.exceptions import RedisError

from ..config import DEFAULT_HISTORY_TTL_SECONDS
from ..errors import CoachError, ErrorKind
from .locks import KeyedLock

logger = logging.getLogger("riskcoach.memory.chat_history")

# 10 exchanges (user + model)
MAX_HISTORY_TURNS = 20


class Role(str, Enum):
    USER = "user"
    MODEL = "model"


@dataclass(frozen=True)
class Turn:
    role: Role
    text: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.text}

    @classmethod
    def from_dict(cls, data: dict) -> "Turn":
        return cls(role=Role(data["role"]), text=data["content"])


@dataclass
class _Entry:
    turns: list[Turn] = field(default_factory=list)
    touched: float = 0.0


def chat_key(user_id: str) -> str:
    """Hash the user ID to create a stable, non-reversible chat history key."""
    return f"riskcoach:chat:{hashlib.sha256(user_id.encode()).hexdigest()[:16]}"


class ChatHistoryStore:
    """Chat history keyed by user, optionally backed by Redis."""

    def __init__(
        self,
        redis_client=None,
        ttl_seconds: int = DEFAULT_HISTORY_TTL_SECONDS,
        max_turns: int = MAX_HISTORY_TURNS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._redis = redis_client
        self._ttl = ttl_seconds
        self._max_turns = max_turns
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._locks = KeyedLock()

    @property
    def is_persistent(self) -> bool:
        return self._redis is not None

    def lock(self, user_id: str) -> AsyncContextManager[None]:
        """Hold the user's lock; other users are not blocked."""
        return self._locks.hold(chat_key(user_id))

    async def get_history(self, user_id: str) -> list[Turn]:
        """Return the user's turns, oldest first."""
        key = chat_key(user_id)

        if self._redis:
            try:
                raw_turns = await self._redis.lrange(key, 0, -1)
            except (RedisError, OSError) as e:
                logger.error("Redis get_history failed for %s: %s", key, e)
                raise CoachError(ErrorKind.STATE, "Chat history is unavailable") from e
            return [
                Turn.from_dict(json.loads(t if isinstance(t, str) else t.decode()))
                for t in raw_turns
            ]

        entry = self._entries.get(key)
        if entry is None or self._expired(entry):
            return []
        return list(entry.turns)

    async def append_exchange(self, user_id: str, question: str, answer: str) -> None:
        """Append a question and its answer as one unit, then trim."""
        key = chat_key(user_id)
        pair = [Turn(Role.USER, question), Turn(Role.MODEL, answer)]

        if self._redis:
            try:
                pipe = self._redis.pipeline(transaction=True)
                for turn in pair:
                    pipe.rpush(key, json.dumps(turn.to_dict()))
                pipe.ltrim(key, -self._max_turns, -1)
                pipe.expire(key, self._ttl)
                await pipe.execute()
            except (RedisError, OSError) as e:
                logger.error("Redis append failed for %s: %s", key, e)
                raise CoachError(ErrorKind.STATE, "Chat history is unavailable") from e
            return

        self._prune_expired()
        entry = self._entries.setdefault(key, _Entry())
        turns = entry.turns + pair
        if len(turns) > self._max_turns:
            turns = turns[-self._max_turns:]
        entry.turns = turns
        entry.touched = self._clock()

    async def clear_history(self, user_id: str) -> None:
        """Clear the entire chat history for a user."""
        key = chat_key(user_id)
        self._entries.pop(key, None)

        if self._redis:
            try:
                await self._redis.delete(key)
            except (RedisError, OSError) as e:
                logger.error("Redis clear_history failed for %s: %s", key, e)
                raise CoachError(ErrorKind.STATE, "Chat history is unavailable") from e

    def _expired(self, entry: _Entry) -> bool:
        return self._clock() - entry.touched > self._ttl

    def _prune_expired(self) -> None:
        stale = [key for key, entry in self._entries.items() if self._expired(entry)]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.info("Evicted %d idle chat histories", len(stale))

    def __len__(self) -> int:
        return len(self._entries)
