"""Unit tests for per-client rate limiting."""

from patcher.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class TestRateLimiter:
    """Test token bucket admission."""

    def test_ten_requests_allowed_then_rejected(self):
        limiter = RateLimiter(clock=FakeClock())

        results = [limiter.allow('10.0.0.1') for _ in range(11)]

        assert results == [True] * 10 + [False]

    def test_refill_allows_further_requests(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        for _ in range(10):
            limiter.allow('10.0.0.1')
        assert limiter.allow('10.0.0.1') is False

        clock.now += 6.0

        assert limiter.allow('10.0.0.1') is True
        assert limiter.allow('10.0.0.1') is False

    def test_full_refill_after_one_minute(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        for _ in range(10):
            limiter.allow('10.0.0.1')

        clock.now += 60.0

        assert [limiter.allow('10.0.0.1') for _ in range(11)] == [True] * 10 + [False]

    def test_identities_have_independent_buckets(self):
        limiter = RateLimiter(clock=FakeClock())
        for _ in range(10):
            limiter.allow('10.0.0.1')

        assert limiter.allow('10.0.0.1') is False
        assert limiter.allow('10.0.0.2') is True
        assert len(limiter) == 2

    def test_custom_capacity(self):
        limiter = RateLimiter(capacity=2, period_seconds=1, clock=FakeClock())

        assert [limiter.allow('a') for _ in range(3)] == [True, True, False]


class TestEvictIdle:
    """Test eviction of idle identities."""

    def test_evicts_refilled_idle_buckets(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        limiter.allow('idle')

        clock.now += 600.0

        assert limiter.evict_idle(600.0) == 1
        assert len(limiter) == 0

    def test_keeps_recently_used_buckets(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        limiter.allow('busy')

        clock.now += 30.0

        assert limiter.evict_idle(600.0) == 0
        assert len(limiter) == 1

    def test_eviction_does_not_grant_extra_requests(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        for _ in range(10):
            limiter.allow('client')

        assert limiter.evict_idle(0.0) == 0
        assert limiter.allow('client') is False
