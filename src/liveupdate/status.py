"""TTL-bounded key/value store for state shared with the UI collaborator.

An instance is created by the host and injected where it is needed; there is
no module-level session object.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any


class TTLStore:
    """Values expire ``ttl_seconds`` after they were last set."""

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self._ttl = ttl_seconds
        self._clock = clock
        self._items: dict[str, tuple[float, Any]] = {}

    def set(self, key: str, value: Any) -> None:
        self._items[key] = (self._clock() + self._ttl, value)

    def get(self, key: str, default: Any = None) -> Any:
        item = self._items.get(key)
        if item is None:
            return default
        expires_at, value = item
        if expires_at <= self._clock():
            del self._items[key]
            return default
        return value

    def pop(self, key: str, default: Any = None) -> Any:
        value = self.get(key, default)
        self._items.pop(key, None)
        return value

    def purge(self) -> int:
        """Drop expired entries and return how many were removed."""
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._items.items() if expires_at <= now]
        for key in expired:
            del self._items[key]
        return len(expired)

    def __len__(self) -> int:
        self.purge()
        return len(self._items)
