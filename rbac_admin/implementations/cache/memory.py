"""
Process-local cache backend.

Entries live in a dict and expire on read. Each worker process keeps its
own copy, so an invalidation in one worker does not reach the others; use
the Redis backend when running more than one process.
"""

from __future__ import annotations

import fnmatch
import time
from datetime import timedelta
from typing import Any


class MemoryCacheBackend:
    def __init__(self, default_ttl: int = 60):
        self.default_ttl = default_ttl
        # key -> (value, monotonic deadline or None)
        self._entries: dict[str, tuple[Any, float | None]] = {}

    async def connect(self) -> None:
        return None

    async def disconnect(self) -> None:
        self._entries.clear()

    def _deadline(self, ttl: int | timedelta | None) -> float | None:
        seconds = ttl.total_seconds() if isinstance(ttl, timedelta) else ttl
        if seconds is None:
            seconds = self.default_ttl
        return time.monotonic() + seconds if seconds else None

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, deadline = entry
        if deadline is not None and time.monotonic() >= deadline:
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: Any, ttl: int | timedelta | None = None) -> bool:
        self._entries[key] = (value, self._deadline(ttl))
        return True

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def delete_pattern(self, pattern: str) -> int:
        """Drop every key matching a glob ``pattern``."""
        doomed = fnmatch.filter(list(self._entries), pattern)
        for key in doomed:
            del self._entries[key]
        return len(doomed)
