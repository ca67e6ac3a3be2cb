"""
Retry Helper - exponential backoff for provider HTTP calls

Wrapped calls run inside worker threads (see providers.base), so the
blocking sleep between attempts never stalls the event loop.
"""
import logging
import time
from functools import wraps
from typing import Callable, Tuple, Type

from .errors import RetryableProviderError

logger = logging.getLogger(__name__)


def retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    backoff_multiplier: float = 2.0,
    max_delay: float = 30.0,
    exceptions: Tuple[Type[Exception], ...] = (RetryableProviderError,),
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Decorator that retries a function with exponential backoff

    With the defaults a failing call is attempted four times, waiting
    1s, 2s and 4s in between.

    Args:
        max_retries: Maximum number of retry attempts after the first call
        initial_delay: Delay in seconds before the first retry
        backoff_multiplier: Multiplier applied to the delay after each retry
        max_delay: Upper bound for a single delay
        exceptions: Exception types that trigger a retry; anything else propagates
        sleep: Sleep function (injectable for tests)

    Example:
        @retry_with_backoff(max_retries=3)
        def fetch():
            return session.get(url, timeout=10)
    """
    if max_retries < 0:
        raise ValueError("max_retries must be >= 0")

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            delay = initial_delay
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_retries:
                        logger.warning(f"{func.__name__} failed after {max_retries} retries: {e}")
                        raise
                    logger.debug(
                        f"{func.__name__} failed (attempt {attempt + 1}/{max_retries + 1}), "
                        f"retrying in {delay:.1f}s: {e}"
                    )
                    sleep(delay)
                    delay = min(delay * backoff_multiplier, max_delay)

        return wrapper
    return decorator
