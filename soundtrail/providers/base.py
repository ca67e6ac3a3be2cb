"""
Shared plumbing for metadata providers.

Every provider owns a requests.Session, a RateLimiter and a retrying fetch
function. Blocking HTTP runs in a worker thread via asyncio.to_thread so the
event loop keeps serving the other in-flight classifications.

Provider methods never raise for "not found" or transport failures; they
return one of Found / NotFound / ProviderError and let the classifier
decide what to do next.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import requests

from ..errors import ProviderRequestError, RetryableProviderError
from ..logging_utils import redact
from ..rate_limiter import RateLimiter
from ..retry_helper import retry_with_backoff

logger = logging.getLogger(__name__)

MAX_TAGS = 3


@dataclass
class ArtistRef:
    """An artist resolved by the lookup provider."""
    name: str
    mbid: Optional[str] = None


@dataclass
class Found:
    tags: List[str] = field(default_factory=list)
    external_id: Optional[str] = None
    name: Optional[str] = None


@dataclass
class NotFound:
    reason: str = "Artist not found"


@dataclass
class ProviderError:
    message: str


ProviderResult = Union[Found, NotFound, ProviderError]


class BaseProvider:
    """HTTP + rate limit + retry scaffolding shared by all providers"""

    name = "provider"

    def __init__(
        self,
        requests_per_second: float = 1.0,
        timeout_seconds: float = 10,
        max_retries: int = 3,
        user_agent: Optional[str] = None,
        session: Optional[requests.Session] = None,
        rate_limiter: Optional[RateLimiter] = None,
        retry_delay: float = 1.0,
    ):
        """
        Args:
            requests_per_second: Provider's published request budget
            timeout_seconds: Per-request timeout
            max_retries: Retries for timeouts, connection errors, 429 and 5xx
            user_agent: User-Agent header sent with every request
            session: Pre-built session (tests inject a mock)
            rate_limiter: Pre-built limiter (tests inject a fast one)
            retry_delay: Initial backoff delay in seconds
        """
        self.timeout = timeout_seconds
        self.session = session or requests.Session()
        if user_agent:
            self.session.headers.update({'User-Agent': user_agent})
        self.rate_limiter = rate_limiter or RateLimiter(requests_per_second, name=self.name)
        self._fetch = retry_with_backoff(
            max_retries=max_retries,
            initial_delay=retry_delay,
        )(self._get_json)

    @classmethod
    def from_config(cls, settings: Dict[str, Any], **kwargs) -> "BaseProvider":
        """Build from a `providers.<name>` config block"""
        return cls(
            requests_per_second=settings.get('requests_per_second', 1.0),
            timeout_seconds=settings.get('timeout_seconds', 10),
            max_retries=settings.get('max_retries', 3),
            **kwargs,
        )

    def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            raise RetryableProviderError(f"{self.name}: {type(e).__name__}: {redact(e)}") from e
        except requests.exceptions.RequestException as e:
            raise ProviderRequestError(f"{self.name}: request failed: {redact(e)}") from e

        status = response.status_code
        if status == 429 or status >= 500:
            raise RetryableProviderError(f"{self.name}: HTTP {status}")
        if not 200 <= status < 300:
            raise ProviderRequestError(f"{self.name}: HTTP {status}")

        try:
            return response.json()
        except ValueError as e:
            raise ProviderRequestError(f"{self.name}: malformed JSON response") from e

    async def _request(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Rate-limited, retried GET returning decoded JSON."""
        return await self.rate_limiter.throttle(asyncio.to_thread, self._fetch, url, params)

    def close(self) -> None:
        self.session.close()
