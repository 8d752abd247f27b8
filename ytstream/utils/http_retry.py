import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, TypeVar
from urllib.parse import urlparse

from ytstream.config.settings import config
from ytstream.core.errors import RequestError
from ytstream.infra.http import LANG_US, UA_CHROME

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Capped linear backoff, not exponential: attempt ``n`` waits
    ``min(n * backoff_inc, backoff_max)``.
    ``retries`` counts the attempts after the first one.
    """
    retries: int
    backoff_inc: float
    backoff_max: float

    @classmethod
    def for_api(cls) -> "RetryPolicy":
        return cls(config.retry.max_retries, config.retry.backoff_inc, config.retry.backoff_max)

    @classmethod
    def for_download(cls) -> "RetryPolicy":
        return cls(config.download.max_retries, config.download.backoff_inc, config.download.backoff_max)

    def delay(self, attempt: int) -> float:
        return min(attempt * self.backoff_inc, self.backoff_max)


def is_transient(error: BaseException) -> bool:
    return isinstance(error, RequestError) and error.transient


async def retry_async(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    should_retry: Callable[[BaseException], bool] = is_transient,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``func`` until it succeeds, the error is permanent, or retries run out"""
    attempt = 0
    while True:
        try:
            return await func()
        except Exception as e:
            if attempt >= policy.retries or not should_retry(e):
                raise
            attempt += 1
            wait = policy.delay(attempt)
            logger.debug(f"Retrying in {wait:.1f}s ({attempt}/{policy.retries}): {e}")
            await sleep(wait)


def media_headers(url: str, page_url: Optional[str] = None, byte_range: Optional[str] = None) -> Dict[str, str]:
    """Headers for media requests against the CDN"""
    parsed = urlparse(url)
    headers = {
        "User-Agent": UA_CHROME,
        "Accept": "*/*",
        "Accept-Language": LANG_US,
        "Accept-Encoding": "identity",
        "Connection": "keep-alive",
        "Referer": page_url or f"{parsed.scheme}://{parsed.netloc}/",
    }
    if byte_range:
        headers["Range"] = byte_range
    return headers
