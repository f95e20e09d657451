"""Tests for the sliding window rate limiter."""

from contest_ledger.uploads.rate_limit import SlidingWindowRateLimiter

from tests.conftest import FakeMonotonic


class TestSlidingWindowRateLimiter:
    def test_admits_up_to_limit(self):
        limiter = SlidingWindowRateLimiter(limit=3, window_seconds=60, clock=FakeMonotonic())

        results = [limiter.hit("1.2.3.4") for _ in range(3)]

        assert all(r.allowed for r in results)
        assert [r.remaining for r in results] == [2, 1, 0]

    def test_denies_over_limit_with_retry_hint(self):
        clock = FakeMonotonic()
        limiter = SlidingWindowRateLimiter(limit=2, window_seconds=60, clock=clock)
        limiter.hit("1.2.3.4")
        clock.advance(10)
        limiter.hit("1.2.3.4")

        result = limiter.hit("1.2.3.4")

        assert result.allowed is False
        assert result.retry_after == 50

    def test_window_slides(self):
        clock = FakeMonotonic()
        limiter = SlidingWindowRateLimiter(limit=2, window_seconds=60, clock=clock)
        limiter.hit("k")
        clock.advance(30)
        limiter.hit("k")
        assert limiter.allow("k") is False

        clock.advance(31)

        assert limiter.allow("k") is True
        assert limiter.allow("k") is False

    def test_denied_requests_are_not_counted(self):
        clock = FakeMonotonic()
        limiter = SlidingWindowRateLimiter(limit=1, window_seconds=60, clock=clock)
        limiter.hit("k")
        for _ in range(10):
            clock.advance(1)
            assert limiter.allow("k") is False

        clock.advance(50)

        assert limiter.allow("k") is True

    def test_keys_are_independent(self):
        limiter = SlidingWindowRateLimiter(limit=1, window_seconds=60, clock=FakeMonotonic())

        assert limiter.allow("a") is True
        assert limiter.allow("b") is True
        assert limiter.allow("a") is False

    def test_idle_keys_are_pruned(self):
        clock = FakeMonotonic()
        limiter = SlidingWindowRateLimiter(limit=5, window_seconds=10, clock=clock, max_keys=2)
        limiter.hit("a")
        limiter.hit("b")
        clock.advance(11)

        limiter.hit("c")

        assert set(limiter._hits) == {"c"}
