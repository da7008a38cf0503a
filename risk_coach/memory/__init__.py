from .chat_history import MAX_HISTORY_TURNS, ChatHistoryStore, Role, Turn
from .locks import KeyedLock

__all__ = ["ChatHistoryStore", "KeyedLock", "MAX_HISTORY_TURNS", "Role", "Turn"]
