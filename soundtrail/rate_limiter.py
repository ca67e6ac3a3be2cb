"""
Rate Limiter - serializes calls to one provider and spaces them out

One limiter exists per provider. Callers queue on an asyncio lock, which
wakes waiters in FIFO order, so at most one call per provider is in flight
and consecutive call starts are at least 1/requests_per_second apart.
"""
import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Async minimum-spacing limiter

    Usage:
        limiter = RateLimiter(requests_per_second=1.0, name="musicbrainz")
        data = await limiter.throttle(fetch_artist, "Radiohead")
    """

    def __init__(
        self,
        requests_per_second: float = 1.0,
        name: str = "provider",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            requests_per_second: Maximum call starts per second
            name: Label used in log lines
            clock: Monotonic clock (injectable for tests)
            sleep: Async sleep (injectable for tests)
        """
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")

        self.name = name
        self.min_interval = 1.0 / requests_per_second
        self._clock = clock
        self._sleep = sleep
        self._last_call: Optional[float] = None
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None
        self.total_calls = 0
        self.total_waits = 0
        self.total_wait_time = 0.0

        logger.debug(
            f"Rate limiter '{name}': max {requests_per_second} calls/sec "
            f"(min {self.min_interval:.3f}s between calls)"
        )

    def _get_lock(self) -> asyncio.Lock:
        # asyncio.Lock binds to the loop it is first used on
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    async def _wait_turn(self) -> None:
        if self._last_call is not None:
            elapsed = self._clock() - self._last_call
            if elapsed < self.min_interval:
                delay = self.min_interval - elapsed
                self.total_waits += 1
                self.total_wait_time += delay
                await self._sleep(delay)
        self._last_call = self._clock()

    async def throttle(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """
        Run `func` once it is this caller's turn.

        `func` may be a plain callable or return an awaitable; its result (or
        exception) is passed straight through.
        """
        async with self._get_lock():
            await self._wait_turn()
            self.total_calls += 1
            result = func(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
            return result

    def reset(self) -> None:
        """Forget the last call time and counters"""
        self._last_call = None
        self.total_calls = 0
        self.total_waits = 0
        self.total_wait_time = 0.0

    def get_stats(self) -> dict:
        return {
            'name': self.name,
            'total_calls': self.total_calls,
            'total_waits': self.total_waits,
            'total_wait_time': self.total_wait_time,
            'avg_wait_time': self.total_wait_time / self.total_waits if self.total_waits else 0.0,
        }
