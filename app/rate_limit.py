"""In-memory token bucket rate limiting keyed by client address."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from starlette.requests import Request


@dataclass(slots=True)
class TokenBucket:
    tokens: float
    last_refill_ms: float


class TokenBucketLimiter:
    """Per-key token buckets refilled continuously over time.

    Buckets live for the lifetime of the process; nothing is persisted or
    shared between workers.
    """

    def __init__(
        self,
        capacity: int,
        refill_per_ms: float,
        *,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("Rate limit capacity must be at least 1")
        self.capacity = capacity
        self.refill_per_ms = refill_per_ms
        self._clock = clock or (lambda: time.monotonic() * 1000)
        self._buckets: dict[str, TokenBucket] = {}

    def _bucket(self, key: str) -> TokenBucket:
        now = self._clock()
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = TokenBucket(tokens=float(self.capacity), last_refill_ms=now)
            self._buckets[key] = bucket
            return bucket

        elapsed = now - bucket.last_refill_ms
        if elapsed > 0:
            bucket.tokens = min(
                float(self.capacity), bucket.tokens + elapsed * self.refill_per_ms
            )
            bucket.last_refill_ms = now
        return bucket

    def is_limited(self, key: str) -> bool:
        """Consume a token for ``key``, returning ``True`` when none remain."""

        bucket = self._bucket(key)
        if bucket.tokens < 1:
            return True
        bucket.tokens -= 1
        return False


def client_key(request: Request) -> str:
    """Return the address used to key rate limit buckets for a request."""

    forwarded_for = request.headers.get("x-forwarded-for") or ""
    first_hop = forwarded_for.split(",", 1)[0].strip()
    if first_hop:
        return first_hop
    real_ip = (request.headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip
    if request.client and request.client.host:
        return request.client.host
    return "unknown"
