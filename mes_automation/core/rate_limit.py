"""In-memory per-caller rate limiting (sliding log of hit timestamps)."""

from __future__ import annotations

import math
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Callable


@dataclass
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: int = 0

    def headers(self) -> dict[str, str]:
        out = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(math.ceil(self.reset_at))),
        }
        if not self.allowed:
            out["Retry-After"] = str(self.retry_after)
        return out


class RateLimiter(ABC):
    """Counts hits per key. A shared-store implementation can replace the in-process one."""

    @abstractmethod
    def hit(self, key: str) -> RateLimitDecision:
        raise NotImplementedError

    def reset(self, key: str | None = None) -> None:
        raise NotImplementedError


class SlidingWindowRateLimiter(RateLimiter):
    """Allow at most ``limit`` hits per key within any rolling ``window_sec``.

    State lives in process memory and is lost on restart. Under several
    worker processes each one enforces its own limit.
    """

    def __init__(self, *, limit: int, window_sec: float, clock: Callable[[], float] = time.time) -> None:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_sec <= 0:
            raise ValueError("window_sec must be > 0")
        self.limit = limit
        self.window_sec = float(window_sec)
        self._clock = clock
        self._lock = threading.Lock()
        self._hits: dict[str, deque[float]] = {}
        self._last_sweep = clock()

    def hit(self, key: str) -> RateLimitDecision:
        now = self._clock()
        cutoff = now - self.window_sec
        with self._lock:
            if now - self._last_sweep >= self.window_sec:
                self._sweep(cutoff)
                self._last_sweep = now
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if len(hits) >= self.limit:
                reset_at = hits[0] + self.window_sec
                retry_after = max(1, int(math.ceil(reset_at - now)))
                return RateLimitDecision(
                    allowed=False,
                    limit=self.limit,
                    remaining=0,
                    reset_at=reset_at,
                    retry_after=retry_after,
                )
            hits.append(now)
            return RateLimitDecision(
                allowed=True,
                limit=self.limit,
                remaining=self.limit - len(hits),
                reset_at=hits[0] + self.window_sec,
            )

    def _sweep(self, cutoff: float) -> None:
        # Keys whose newest hit has left the window hold nothing worth keeping.
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in stale:
            del self._hits[key]

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)
