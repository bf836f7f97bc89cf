"""Tests for the token-bucket rate limiter."""

from timekeeper.cloud.rate_limit import RateLimiter


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_burst_then_refill():
    clock = FakeClock()
    limiter = RateLimiter(rps=1.0, burst=2, clock=clock)

    assert limiter.allow("a") == (True, 0.0)
    assert limiter.allow("a") == (True, 0.0)
    allowed, retry_after = limiter.allow("a")
    assert not allowed
    assert retry_after == 1.0

    clock.now = 1.0
    assert limiter.allow("a")[0]


def test_keys_are_independent():
    limiter = RateLimiter(rps=1.0, burst=1, clock=FakeClock())
    assert limiter.allow("a")[0]
    assert not limiter.allow("a")[0]
    assert limiter.allow("b")[0]


def test_refill_is_capped_at_burst():
    clock = FakeClock()
    limiter = RateLimiter(rps=10.0, burst=2, clock=clock)
    limiter.allow("a")

    clock.now = 100.0
    results = [limiter.allow("a")[0] for _ in range(3)]
    assert results == [True, True, False]


def test_evicts_least_recently_used():
    limiter = RateLimiter(rps=0.001, burst=1, max_entries=2, clock=FakeClock())
    limiter.allow("a")
    limiter.allow("b")
    limiter.allow("c")

    # "a" was evicted and starts over with a full bucket
    assert limiter.allow("a")[0]
    assert not limiter.allow("c")[0]
