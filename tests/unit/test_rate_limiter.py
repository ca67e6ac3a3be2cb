"""Tests for the async rate limiter and the retry decorator."""
import asyncio

import pytest

from soundtrail.errors import ProviderRequestError, RetryableProviderError
from soundtrail.rate_limiter import RateLimiter
from soundtrail.retry_helper import retry_with_backoff


class FakeClock:
    """Virtual time: sleeping advances the clock instantly."""

    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def time(self):
        return self.now

    async def sleep(self, delay):
        self.sleeps.append(round(delay, 6))
        self.now += delay
        await asyncio.sleep(0)


def make_limiter(rps=2.0):
    clock = FakeClock()
    return RateLimiter(rps, name="test", clock=clock.time, sleep=clock.sleep), clock


class TestRateLimiter:

    def test_spacing_between_sequential_calls(self):
        limiter, clock = make_limiter(rps=2.0)
        starts = []

        async def run():
            for _ in range(3):
                await limiter.throttle(lambda: starts.append(clock.now))

        asyncio.run(run())

        assert clock.sleeps == [0.5, 0.5]
        assert starts == [100.0, 100.5, 101.0]
        stats = limiter.get_stats()
        assert stats["total_calls"] == 3
        assert stats["total_waits"] == 2
        assert stats["total_wait_time"] == pytest.approx(1.0)
        assert stats["avg_wait_time"] == pytest.approx(0.5)

    def test_no_wait_when_enough_time_passed(self):
        limiter, clock = make_limiter(rps=1.0)

        async def run():
            await limiter.throttle(lambda: None)
            clock.now += 5
            await limiter.throttle(lambda: None)

        asyncio.run(run())
        assert clock.sleeps == []

    def test_concurrent_callers_run_one_at_a_time_in_order(self):
        limiter, clock = make_limiter(rps=10.0)
        trace = []

        async def call(i):
            trace.append(f"start {i}")
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            trace.append(f"end {i}")
            return i

        async def run():
            return await asyncio.gather(*(limiter.throttle(call, i) for i in range(3)))

        results = asyncio.run(run())

        assert results == [0, 1, 2]
        assert trace == ["start 0", "end 0", "start 1", "end 1", "start 2", "end 2"]
        assert len(clock.sleeps) == 2

    def test_exceptions_pass_through_and_release_the_slot(self):
        limiter, _ = make_limiter()

        def boom():
            raise ValueError("provider down")

        async def run():
            with pytest.raises(ValueError, match="provider down"):
                await limiter.throttle(boom)
            return await limiter.throttle(lambda: "ok")

        assert asyncio.run(run()) == "ok"

    def test_usable_across_event_loops(self):
        limiter, _ = make_limiter()
        assert asyncio.run(limiter.throttle(lambda: 1)) == 1
        assert asyncio.run(limiter.throttle(lambda: 2)) == 2

    def test_reset(self):
        limiter, clock = make_limiter()
        asyncio.run(limiter.throttle(lambda: None))
        limiter.reset()
        asyncio.run(limiter.throttle(lambda: None))
        assert clock.sleeps == []
        assert limiter.total_calls == 1

    def test_rejects_non_positive_rate(self):
        with pytest.raises(ValueError):
            RateLimiter(0)


class TestRetryWithBackoff:

    def _flaky(self, failures, error=RetryableProviderError):
        calls = {"n": 0}

        def fetch():
            calls["n"] += 1
            if calls["n"] <= failures:
                raise error(f"failure {calls['n']}")
            return "data"

        return fetch, calls

    def test_succeeds_after_retries(self):
        sleeps = []
        fetch, calls = self._flaky(2)
        wrapped = retry_with_backoff(max_retries=3, sleep=sleeps.append)(fetch)

        assert wrapped() == "data"
        assert calls["n"] == 3
        assert sleeps == [1.0, 2.0]

    def test_gives_up_after_max_retries(self):
        sleeps = []
        fetch, calls = self._flaky(10)
        wrapped = retry_with_backoff(max_retries=3, sleep=sleeps.append)(fetch)

        with pytest.raises(RetryableProviderError, match="failure 4"):
            wrapped()
        assert calls["n"] == 4
        assert sleeps == [1.0, 2.0, 4.0]

    def test_delay_is_capped(self):
        sleeps = []
        fetch, _ = self._flaky(3)
        wrapped = retry_with_backoff(
            max_retries=3, initial_delay=10, backoff_multiplier=10, max_delay=15, sleep=sleeps.append,
        )(fetch)
        wrapped()
        assert sleeps == [10, 15, 15]

    def test_non_retryable_errors_propagate_immediately(self):
        sleeps = []
        fetch, calls = self._flaky(1, error=ProviderRequestError)
        wrapped = retry_with_backoff(max_retries=3, sleep=sleeps.append)(fetch)

        with pytest.raises(ProviderRequestError):
            wrapped()
        assert calls["n"] == 1
        assert sleeps == []

    def test_zero_retries(self):
        fetch, calls = self._flaky(1)
        with pytest.raises(RetryableProviderError):
            retry_with_backoff(max_retries=0, sleep=lambda d: None)(fetch)()
        assert calls["n"] == 1

    def test_negative_retries_rejected(self):
        with pytest.raises(ValueError):
            retry_with_backoff(max_retries=-1)

    def test_preserves_function_name(self):
        @retry_with_backoff()
        def fetch_artist():
            return None

        assert fetch_artist.__name__ == "fetch_artist"
