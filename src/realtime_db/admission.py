"""
In-process token bucket rate gate.

Notes:
- Per-process only: running several worker processes multiplies the effective quota.
- Buckets are keyed by tenant; each starts full and refills continuously at
  ``points / duration_sec`` tokens per second up to ``points``.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Dict


@dataclass
class _Bucket:
    tokens: float
    last_refill: float


class TokenBucketGate:
    """RateGate implementation: ``points`` operations per ``duration_sec`` per tenant."""

    def __init__(
        self,
        points: int = 5,
        duration_sec: float = 1.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if points < 1:
            raise ValueError("points must be >= 1")
        if duration_sec <= 0:
            raise ValueError("duration_sec must be > 0")
        self._capacity = float(points)
        self._rate = points / duration_sec
        self._clock = clock
        self._buckets: Dict[str, _Bucket] = {}
        self._lock = asyncio.Lock()

    @property
    def capacity(self) -> int:
        return int(self._capacity)

    def _refill(self, bucket: _Bucket, now: float) -> None:
        elapsed = max(0.0, now - bucket.last_refill)
        bucket.tokens = min(self._capacity, bucket.tokens + elapsed * self._rate)
        bucket.last_refill = now

    async def is_rate_limited(self, tenant_id: str, cost: int = 1) -> bool:
        """Consume ``cost`` tokens for ``tenant_id`` unless the bucket is short.

        A cost above the bucket capacity can never be admitted.
        """
        if cost < 1:
            raise ValueError("cost must be >= 1")
        if not tenant_id:
            raise ValueError("tenant_id must be a non-empty string")
        if cost > self._capacity:
            return True

        async with self._lock:
            now = self._clock()
            bucket = self._buckets.get(tenant_id)
            if bucket is None:
                bucket = self._buckets[tenant_id] = _Bucket(tokens=self._capacity, last_refill=now)
            else:
                self._refill(bucket, now)

            if bucket.tokens >= cost:
                bucket.tokens -= cost
                return False
            return True

    async def available(self, tenant_id: str) -> float:
        """Tokens currently available to ``tenant_id``."""
        async with self._lock:
            bucket = self._buckets.get(tenant_id)
            if bucket is None:
                return self._capacity
            self._refill(bucket, self._clock())
            return bucket.tokens
