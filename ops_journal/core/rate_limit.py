"""Rate limiting keyed by (identity, source).

The limiter is injected rather than held in a module-level map, so the storage
can be swapped: in-memory for a single instance, a shared store when several
API instances run behind a load balancer.
"""

import time
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass


class RateLimitStore(ABC):
    """Storage backend for sliding-window hit counters."""

    @abstractmethod
    async def hit(self, key: str, window_seconds: float) -> int:
        """Record a hit for ``key`` and return the hits inside the window."""

    @abstractmethod
    async def reset(self, key: str) -> None:
        """Forget all hits for ``key``."""


class InMemoryRateLimitStore(RateLimitStore):
    """Sliding-window counters kept in process memory.

    Keys whose hits have all aged out of the window are swept at most once per
    window, so memory tracks the active (identity, source) pairs only.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._hits)

    async def hit(self, key: str, window_seconds: float) -> int:
        now = self._clock()
        cutoff = now - window_seconds
        if now - self._last_sweep >= window_seconds:
            self._sweep(cutoff)
            self._last_sweep = now

        hits = self._hits.setdefault(key, deque())
        while hits and hits[0] <= cutoff:
            hits.popleft()
        hits.append(now)
        return len(hits)

    async def reset(self, key: str) -> None:
        self._hits.pop(key, None)

    def _sweep(self, cutoff: float) -> None:
        expired = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in expired:
            del self._hits[key]


@dataclass
class RateLimitDecision:
    allowed: bool
    hits: int
    limit: int
    retry_after_seconds: float


class RateLimiter:
    """Allow at most ``limit`` hits per ``period_seconds`` for each key."""

    def __init__(self, store: RateLimitStore, limit: int, period_seconds: float):
        self._store = store
        self.limit = limit
        self.period_seconds = period_seconds

    @staticmethod
    def key_for(identity: str, source: str) -> str:
        return f"{identity}|{source}"

    async def hit(self, identity: str, source: str) -> RateLimitDecision:
        hits = await self._store.hit(self.key_for(identity, source), self.period_seconds)
        allowed = hits <= self.limit
        return RateLimitDecision(
            allowed=allowed,
            hits=hits,
            limit=self.limit,
            retry_after_seconds=0.0 if allowed else self.period_seconds,
        )

    async def reset(self, identity: str, source: str) -> None:
        await self._store.reset(self.key_for(identity, source))
