"""Small key-value store with optional per-key expiry.

The price catalog snapshot and the pending onboarding conversations both live
in a store handed to the service that owns them, so each service instance (and
each test) gets its own state.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple


class StateStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None: ...

    def expire(self, key: str) -> None: ...


class MemoryStore:
    """In-process store; an entry is live while ``clock() < expiry``."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, Optional[float]]] = {}

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        value, expiry = entry
        if expiry is not None and self._clock() >= expiry:
            del self._entries[key]
            return default
        return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        expiry = self._clock() + ttl if ttl else None
        self._entries[key] = (value, expiry)

    def expire(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
