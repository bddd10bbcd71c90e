"""Token bucket limiter tests."""

from __future__ import annotations

import pytest

from app.rate_limit import TokenBucketLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_bucket_allows_capacity_then_limits() -> None:
    """Thirty searches pass immediately and the thirty-first is rejected."""

    clock = FakeClock()
    limiter = TokenBucketLimiter(30, 30 / 60_000, clock=clock)

    results = [limiter.is_limited("1.2.3.4") for _ in range(31)]

    assert results[:30] == [False] * 30
    assert results[30] is True


def test_bucket_refills_over_time() -> None:
    clock = FakeClock()
    limiter = TokenBucketLimiter(30, 30 / 60_000, clock=clock)
    for _ in range(30):
        limiter.is_limited("client")

    clock.now += 2_000  # one token every two seconds
    assert limiter.is_limited("client") is False
    assert limiter.is_limited("client") is True


def test_bucket_never_exceeds_capacity() -> None:
    clock = FakeClock()
    limiter = TokenBucketLimiter(2, 1.0, clock=clock)
    limiter.is_limited("client")

    clock.now += 1_000_000
    assert limiter.is_limited("client") is False
    assert limiter.is_limited("client") is False
    assert limiter.is_limited("client") is True


def test_buckets_are_independent_per_key() -> None:
    clock = FakeClock()
    limiter = TokenBucketLimiter(1, 0.0, clock=clock)

    assert limiter.is_limited("a") is False
    assert limiter.is_limited("a") is True
    assert limiter.is_limited("b") is False


def test_capacity_must_be_positive() -> None:
    with pytest.raises(ValueError):
        TokenBucketLimiter(0, 1.0)
