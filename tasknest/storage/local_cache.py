from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Optional, Tuple


class LocalCache:
    """In-process stand-in for RedisCache when Redis is disabled.

    Mirrors the async surface of :class:`RedisCache`; entries carry a deadline
    on ``clock`` and are dropped lazily once it passes.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[Tuple[str, float]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry[1] <= self._clock():
            del self._entries[key]
            return None
        return entry

    def verify_connection(self) -> None:
        return None

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live(key)
            return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + max(1, int(ttl_seconds)))

    async def delete(self, key: str) -> int:
        with self._lock:
            return 1 if self._entries.pop(key, None) is not None else 0

    async def incr_window(self, key: str, window_seconds: int) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                deadline = self._clock() + max(1, int(window_seconds))
                count = 1
            else:
                count = int(entry[0]) + 1
                deadline = entry[1]
            self._entries[key] = (str(count), deadline)
            return count

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()
