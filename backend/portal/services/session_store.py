"""Per-user server-side state kept in process memory.

Holds workflow state (the ids a user has been offered, results of the last
hold edit) and short-lived caches live here. State is lost on restart and is
not shared between worker processes.
"""
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import structlog

logger = structlog.get_logger()


@dataclass
class UserSession:
    """State belonging to one user."""
    valid_ids: List[str] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)


class SessionStore:
    """Maps a user key to that user's :class:`UserSession`."""

    def __init__(self):
        self._sessions: Dict[str, UserSession] = {}

    def get(self, user_key) -> UserSession:
        key = str(user_key)
        if key not in self._sessions:
            self._sessions[key] = UserSession()
        return self._sessions[key]

    def clear(self, user_key) -> None:
        self._sessions.pop(str(user_key), None)

    def clear_all(self) -> None:
        self._sessions.clear()


class TTLCache:
    """Small key/value cache with per-entry expiry."""

    def __init__(self, default_ttl: int = 600):
        self.default_ttl = default_ttl
        self._items: Dict[str, Tuple[float, Any]] = {}

    def get(self, key: str) -> Optional[Any]:
        item = self._items.get(key)
        if item is None:
            return None
        expires, value = item
        if expires < time.monotonic():
            del self._items[key]
            return None
        return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        self._items[key] = (time.monotonic() + (ttl if ttl is not None else self.default_ttl), value)

    def delete(self, key: str) -> None:
        self._items.pop(key, None)

    def clear(self) -> None:
        self._items.clear()


# Global instances
session_store = SessionStore()
ils_cache = TTLCache()
