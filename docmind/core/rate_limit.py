# docmind/core/rate_limit.py
import asyncio
import math
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional

from docmind.core.errors import RateLimited


@dataclass
class RateLimitState:
    limit: int
    remaining: int
    reset: int  # unix seconds when the oldest counted request leaves the window


class RateLimiter:
    """
    Sliding-window request counter per identity, in process memory.

    `limit` requests are allowed in any `window_seconds` span. Counts are not
    shared between processes. Identities with no request inside the window
    are dropped once per window.
    """

    def __init__(self, limit: int, window_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = asyncio.Lock()
        self._last_sweep = clock()

    def _prune(self, hits: Deque[float], now: float) -> None:
        while hits and hits[0] <= now - self.window_seconds:
            hits.popleft()

    def _sweep(self, now: float) -> None:
        idle = [
            identity
            for identity, hits in self._hits.items()
            if not hits or hits[-1] <= now - self.window_seconds
        ]
        for identity in idle:
            del self._hits[identity]
        self._last_sweep = now

    async def check(self, identity: str) -> RateLimitState:
        """Count one request for `identity`; raises RateLimited when over the limit."""
        async with self._lock:
            now = self._clock()
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(now)
            hits = self._hits[identity]
            self._prune(hits, now)

            if len(hits) >= self.limit:
                retry_after = max(1, math.ceil(hits[0] + self.window_seconds - now))
                raise RateLimited(retry_after=retry_after, limit=self.limit)

            hits.append(now)
            reset_in = hits[0] + self.window_seconds - now
            return RateLimitState(
                limit=self.limit,
                remaining=self.limit - len(hits),
                reset=int(time.time() + reset_in),
            )

    def reset(self, identity: Optional[str] = None) -> None:
        if identity is None:
            self._hits.clear()
        else:
            self._hits.pop(identity, None)
