"""Process-wide upstream throttling and response caching."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

from feedrank.errors import FetchError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window request limiter keyed by source kind.

    Safe to share across worker threads. ``acquire`` blocks until a slot is
    free in the current window, up to ``max_wait`` seconds, then raises
    FetchError.
    """

    def __init__(
        self,
        requests: int = 100,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if requests < 1:
            raise ValueError("requests must be at least 1")
        self._requests = requests
        self._window = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._windows: dict[str, tuple[float, int]] = {}  # key -> (reset_at, used)

    def _try_acquire(self, key: str) -> float:
        """Take a slot and return 0, or return seconds until the window resets."""
        with self._lock:
            now = self._clock()
            reset_at, used = self._windows.get(key, (now + self._window, 0))
            if now >= reset_at:
                reset_at, used = now + self._window, 0
            if used < self._requests:
                self._windows[key] = (reset_at, used + 1)
                return 0.0
            self._windows[key] = (reset_at, used)
            return reset_at - now

    def acquire(self, key: str, max_wait: float) -> None:
        waited = 0.0
        while True:
            delay = self._try_acquire(key)
            if delay <= 0:
                return
            if waited + delay > max_wait:
                raise FetchError(
                    f"Rate limit for '{key}' exhausted; next slot in {delay:.1f}s"
                )
            logger.warning("Rate limit reached for %s, waiting %.1fs", key, delay)
            self._sleep(delay)
            waited += delay

    def usage(self, key: str) -> int:
        """Requests consumed in the current window for ``key``."""
        with self._lock:
            reset_at, used = self._windows.get(key, (0.0, 0))
            return used if self._clock() < reset_at else 0


class ResponseCache:
    """TTL cache for successful upstream responses. Thread-safe."""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[float, Any]] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry[0] > self._clock():
                self.hits += 1
                return entry[1]
            if entry is not None:
                del self._entries[key]
            self.misses += 1
            return None

    def set(self, key: str, value: Any) -> None:
        if self._ttl <= 0:
            return
        with self._lock:
            self._entries[key] = (self._clock() + self._ttl, value)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("Response cache cleared")

    def stats(self) -> dict[str, float]:
        with self._lock:
            lookups = self.hits + self.misses
            return {
                "size": len(self._entries),
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": self.hits / lookups if lookups else 0.0,
            }
