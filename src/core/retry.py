"""
Bounded retries with exponential backoff and jitter.

`fetch_with_retry` is the policy; `HttpClient` applies it to GET requests.
The sampler reuses the same policy around scrapers that do not retry on their
own.

Backoff before retry k (k >= 1):

    delay = base_backoff_seconds * 2 ** (k - 1)
    delay = delay * (1 ± U(0, 0.2))
"""

import random
import time
from collections.abc import Callable
from typing import TypeVar

import requests
import structlog

from .errors import TransientFetchError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

JITTER_RATIO = 0.2
DEFAULT_USER_AGENT = "ccu-monitor/1.0 (+https://example.local)"


def backoff_delay(attempt: int, base_backoff_seconds: float) -> float:
    """Un-jittered delay before retry number `attempt` (1-based)"""
    return base_backoff_seconds * 2 ** (attempt - 1)


def with_jitter(delay: float, ratio: float = JITTER_RATIO) -> float:
    """Shift a delay up or down by a uniform fraction in [0, ratio]"""
    jitter = random.uniform(0, ratio) * delay
    return delay + jitter if random.random() < 0.5 else delay - jitter


def fetch_with_retry(
    operation: Callable[[], T],
    max_attempts: int,
    base_backoff_seconds: float = 1.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    description: str = "operation",
) -> T:
    """Run `operation` up to `max_attempts` times

    Args:
        operation: Zero-argument callable to run
        max_attempts: Total attempts, first try included (>= 1)
        base_backoff_seconds: Delay before the first retry
        retry_on: Exception types that trigger a retry; anything else propagates at once
        description: Label used in log events

    Returns:
        The first successful result

    Raises:
        The last observed error once every attempt has failed
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    attempt = 0
    while True:
        attempt += 1
        try:
            return operation()
        except retry_on as e:
            if attempt >= max_attempts:
                logger.warning(
                    "All attempts failed",
                    operation=description,
                    attempts=attempt,
                    error=str(e),
                )
                raise

            delay = with_jitter(backoff_delay(attempt, base_backoff_seconds))
            logger.debug(
                "Attempt failed, backing off",
                operation=description,
                attempt=attempt,
                max_attempts=max_attempts,
                delay_sec=round(delay, 3),
                error=str(e),
            )
            time.sleep(delay)


class HttpClient:
    """requests session with a timeout and the retry policy applied to GET"""

    def __init__(
        self,
        timeout_seconds: float = 15.0,
        retry_attempts: int = 2,
        retry_backoff_seconds: float = 1.0,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        self.timeout_seconds = timeout_seconds
        self.retry_attempts = retry_attempts
        self.retry_backoff_seconds = retry_backoff_seconds

        self.session = requests.Session()
        self.session.headers.update({"User-Agent": user_agent})

    def _get_once(self, url: str, **kwargs) -> requests.Response:
        try:
            response = self.session.get(url, timeout=self.timeout_seconds, **kwargs)
            response.raise_for_status()
            return response
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise TransientFetchError(f"HTTP {status} for {url}", url=url, status_code=status) from e
        except requests.RequestException as e:
            raise TransientFetchError(f"Request to {url} failed: {e}", url=url) from e

    def get(self, url: str, **kwargs) -> requests.Response:
        """GET with `1 + retry_attempts` total attempts"""
        return fetch_with_retry(
            lambda: self._get_once(url, **kwargs),
            max_attempts=1 + self.retry_attempts,
            base_backoff_seconds=self.retry_backoff_seconds,
            retry_on=(TransientFetchError,),
            description=f"GET {url}",
        )

    def get_text(self, url: str, **kwargs) -> str:
        return self.get(url, **kwargs).text

    def close(self):
        self.session.close()
