"""
Per-identity token bucket admission limiter.

Each identity (client address) owns a bucket holding up to `capacity`
tokens. Tokens refill continuously at capacity / refill_seconds per second,
and every admitted request spends one. Buckets are created on first sight
and removed by a periodic sweep once idle for `idle_seconds`.
"""

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict
import anyio
from app.core.logger import setup_logger

logger = setup_logger("PatchServer.RateLimit")


@dataclass
class Bucket:
    tokens: float
    last_refill: float


@dataclass(frozen=True)
class Decision:
    allowed: bool
    retry_after: float = 0.0


class RateLimiter:
    def __init__(
        self,
        capacity: int = 10,
        refill_seconds: float = 60.0,
        idle_seconds: float = 300.0,
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity <= 0 or refill_seconds <= 0:
            raise ValueError("capacity and refill_seconds must be positive")
        self.capacity = capacity
        self.refill_seconds = refill_seconds
        self.idle_seconds = idle_seconds
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._buckets: Dict[str, Bucket] = {}
        # Request handlers may run on worker threads, so a real lock is needed.
        # Nothing under it does I/O.
        self._lock = threading.Lock()

    def acquire(self, identity: str) -> Decision:
        """Refill, then atomically try to spend one token for identity."""
        with self._lock:
            now = self._clock()
            bucket = self._buckets.get(identity)
            if bucket is None:
                bucket = Bucket(tokens=float(self.capacity), last_refill=now)
                self._buckets[identity] = bucket
            else:
                elapsed = max(0.0, now - bucket.last_refill)
                refilled = elapsed * self.capacity / self.refill_seconds
                bucket.tokens = min(float(self.capacity), bucket.tokens + refilled)
                bucket.last_refill = now

            if bucket.tokens >= 1.0:
                bucket.tokens -= 1.0
                return Decision(allowed=True)

            retry_after = (1.0 - bucket.tokens) * self.refill_seconds / self.capacity

        logger.info(f"Rate limit exceeded for {identity}")
        return Decision(allowed=False, retry_after=retry_after)

    def sweep(self) -> int:
        """Drop buckets idle longer than idle_seconds. Returns how many were removed."""
        with self._lock:
            now = self._clock()
            stale = [key for key, bucket in self._buckets.items()
                     if now - bucket.last_refill > self.idle_seconds]
            for key in stale:
                del self._buckets[key]
        if stale:
            logger.debug(f"Swept {len(stale)} idle rate-limit buckets")
        return len(stale)

    async def run_sweeper(self):
        """Periodic sweep loop. Runs until its task group is cancelled."""
        while True:
            await anyio.sleep(self.sweep_interval)
            self.sweep()


def retry_after_header(decision: Decision) -> str:
    return str(max(1, math.ceil(decision.retry_after)))
