"""Shared HTTP plumbing for provider clients.

Provider clients are blocking (``requests``) and are driven from async code
through ``asyncio.to_thread``, so the rate limiter here is thread-safe
rather than asyncio-aware.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from functools import wraps
from typing import Any, ParamSpec, TypeVar

import requests

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

DEFAULT_MAX_REQUESTS_PER_SECOND = 5
DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_BASE_DELAY = 0.5
DEFAULT_TIMEOUT_SECONDS = 10.0
# Upper bound on a server-requested Retry-After wait.
MAX_RETRY_AFTER_SECONDS = 30.0
RETRY_STATUS_CODES = (429, 500, 502, 503, 504)

USER_AGENT = "cardano-portfolio-tracker/0.1"


class RateLimiter:
    """Spaces requests at least ``1 / max_requests_per_second`` apart.

    Safe to share between worker threads.
    """

    def __init__(self, max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND) -> None:
        self._min_interval = 1.0 / max_requests_per_second
        self._next_slot = 0.0
        self._lock = threading.Lock()

    def acquire(self) -> None:
        """Block until this caller's request slot comes up."""
        with self._lock:
            now = time.monotonic()
            slot = max(now, self._next_slot)
            self._next_slot = slot + self._min_interval
        if slot > now:
            time.sleep(slot - now)


class ProviderError(Exception):
    """Base exception for external data provider failures."""


class ProviderResponseError(ProviderError):
    """Raised for non-retryable HTTP errors or malformed payloads."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderTransientError(ProviderError):
    """Raised for retryable failures (429/5xx, timeouts, connection errors)."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class RetryError(ProviderError):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, message: str, last_exception: Exception | None = None) -> None:
        super().__init__(message)
        self.last_exception = last_exception

    def __str__(self) -> str:
        base = super().__str__()
        if self.last_exception is not None:
            return f"{base}: {self.last_exception}"
        return base


def _retry_after(response: requests.Response) -> float | None:
    raw = response.headers.get("Retry-After") if response.headers else None
    try:
        return min(float(raw), MAX_RETRY_AFTER_SECONDS) if raw is not None else None
    except (TypeError, ValueError):
        return None


def with_retry(
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_RETRY_BASE_DELAY,
    retry_on: tuple[type[Exception], ...] = (ProviderTransientError,),
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Retry a blocking call with exponential backoff.

    A ``retry_after`` hint on the raised error extends the wait when it is
    longer than the backoff.

    Raises:
        RetryError: Once ``max_retries + 1`` attempts have failed.
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            last_exception: Exception | None = None

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except retry_on as e:
                    last_exception = e
                    if attempt == max_retries:
                        break

                    delay = max(base_delay * (2**attempt), getattr(e, "retry_after", None) or 0.0)
                    logger.warning(
                        "Attempt %d/%d failed: %s. Retrying in %.1f seconds...",
                        attempt + 1,
                        max_retries + 1,
                        e,
                        delay,
                    )
                    time.sleep(delay)

            raise RetryError(
                f"All {max_retries + 1} attempts failed for {func.__name__}",
                last_exception=last_exception,
            )

        return wrapper

    return decorator


class JsonHttpClient:
    """Small JSON-over-HTTP client on top of ``requests.Session``.

    Blocking; async callers go through ``asyncio.to_thread``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        headers: dict[str, str] | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._rate_limiter = RateLimiter(max_requests_per_second)
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": USER_AGENT, "Accept": "application/json"})
        if headers:
            self._session.headers.update(headers)

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _send_once(self, method: str, path: str, **kwargs: Any) -> Any:
        self._rate_limiter.acquire()
        try:
            response = self._session.request(method, self._url(path), timeout=self._timeout, **kwargs)
        except (requests.Timeout, requests.ConnectionError) as e:
            raise ProviderTransientError(f"{method} {path}: {e}") from e
        except requests.RequestException as e:
            raise ProviderResponseError(f"{method} {path}: {e}") from e

        if response.status_code in RETRY_STATUS_CODES:
            raise ProviderTransientError(
                f"{method} {path}: HTTP {response.status_code}", retry_after=_retry_after(response)
            )
        if not response.ok:
            raise ProviderResponseError(
                f"{method} {path}: HTTP {response.status_code} {response.text[:200]}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise ProviderResponseError(f"{method} {path}: invalid JSON body") from e

    def request_json(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send a request and decode its JSON body, retrying transient failures.

        Raises:
            ProviderResponseError: On non-retryable HTTP errors or bad JSON.
            RetryError: When transient failures persist past the retry budget.
        """

        @with_retry(max_retries=self._max_retries, base_delay=self._retry_base_delay)
        def _send() -> Any:
            return self._send_once(method, path, **kwargs)

        return _send()

    def get_json(self, path: str, params: dict[str, str] | None = None) -> Any:
        return self.request_json("GET", path, params=params)

    def post_json(self, path: str, body: Any) -> Any:
        return self.request_json("POST", path, json=body)

    def close(self) -> None:
        self._session.close()
