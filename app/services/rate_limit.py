from __future__ import annotations

import math
import time
import threading
from collections import deque
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Deque

from app.core.config import get_settings


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int = 0


class RateLimiter:
    """Sliding-window limiter keyed by an arbitrary string (client ip, email, ...)."""

    def __init__(self, max_requests: int, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.max_requests = int(max(1, max_requests))
        self.window_seconds = float(max(1, window_seconds))
        self._clock = clock
        self._lock = threading.Lock()
        self._hits: dict[str, Deque[float]] = {}
        self._last_sweep = self._clock()

    def _prune(self, hits: Deque[float], now: float) -> None:
        # Drop hits that fell out of the window
        while hits and now - hits[0] >= self.window_seconds:
            hits.popleft()

    def _sweep(self, now: float) -> None:
        """Forget keys with no hit left in the window, at most once per window."""
        if now - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now
        for key in list(self._hits):
            hits = self._hits[key]
            self._prune(hits, now)
            if not hits:
                del self._hits[key]

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._hits)

    def hit(self, key: str) -> RateLimitResult:
        with self._lock:
            now = self._clock()
            self._sweep(now)
            hits = self._hits.setdefault(key, deque())
            self._prune(hits, now)
            if len(hits) >= self.max_requests:
                wait = self.window_seconds - (now - hits[0])
                return RateLimitResult(
                    allowed=False,
                    limit=self.max_requests,
                    remaining=0,
                    retry_after=max(1, math.ceil(wait)),
                )
            hits.append(now)
            return RateLimitResult(allowed=True, limit=self.max_requests, remaining=self.max_requests - len(hits))

    def undo(self, key: str) -> None:
        """Give back the most recent hit, e.g. when the request succeeded."""
        with self._lock:
            hits = self._hits.get(key)
            if hits:
                hits.pop()
            if not hits:
                self._hits.pop(key, None)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


@dataclass
class RateLimiters:
    login: RateLimiter
    verify: RateLimiter
    refresh: RateLimiter
    api: RateLimiter


@lru_cache
def get_rate_limiters() -> RateLimiters:
    s = get_settings()
    return RateLimiters(
        login=RateLimiter(s.login_rate_limit_max, s.login_rate_limit_window_seconds),
        verify=RateLimiter(s.verify_rate_limit_max, s.verify_rate_limit_window_seconds),
        refresh=RateLimiter(s.refresh_rate_limit_max, s.refresh_rate_limit_window_seconds),
        api=RateLimiter(s.api_rate_limit_max, s.api_rate_limit_window_seconds),
    )
