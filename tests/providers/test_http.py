"""Tests for the shared provider HTTP layer."""

import threading
import time
from unittest.mock import MagicMock, call, patch

import pytest
import requests

from cardano_portfolio_tracker.providers.http import (
    JsonHttpClient,
    ProviderResponseError,
    ProviderTransientError,
    RateLimiter,
    RetryError,
    with_retry,
)


def _response(status: int, body: object = None, text: str = "", headers: dict | None = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.ok = 200 <= status < 300
    response.text = text
    response.json.return_value = body
    response.headers = headers or {}
    return response


class TestRateLimiter:
    """Tests for RateLimiter."""

    def test_first_call_does_not_wait(self) -> None:
        limiter = RateLimiter(max_requests_per_second=10)
        start = time.monotonic()
        limiter.acquire()

        assert time.monotonic() - start < 0.05

    def test_enforces_interval(self) -> None:
        limiter = RateLimiter(max_requests_per_second=10)

        limiter.acquire()
        start = time.monotonic()
        limiter.acquire()

        assert time.monotonic() - start >= 0.08

    def test_shared_between_threads(self) -> None:
        """Concurrent callers are spaced out, not released together."""
        limiter = RateLimiter(max_requests_per_second=20)
        start = time.monotonic()

        threads = [threading.Thread(target=limiter.acquire) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        # Slots at 0, 50, 100 and 150 ms.
        assert time.monotonic() - start >= 0.14


class TestWithRetry:
    """Tests for retry decorator."""

    def test_success_after_transient_failures(self) -> None:
        call_count = 0

        @with_retry(max_retries=3, base_delay=0.01)
        def succeed_eventually() -> str:
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise ProviderTransientError("busy")
            return "success"

        assert succeed_eventually() == "success"
        assert call_count == 3

    def test_exhausted_retries_raise_retry_error(self) -> None:
        @with_retry(max_retries=2, base_delay=0.01)
        def always_fail() -> None:
            raise ProviderTransientError("HTTP 503")

        with pytest.raises(RetryError) as exc_info:
            always_fail()

        assert isinstance(exc_info.value.last_exception, ProviderTransientError)
        assert "HTTP 503" in str(exc_info.value)

    def test_non_transient_errors_are_not_retried(self) -> None:
        call_count = 0

        @with_retry(max_retries=3, base_delay=0.01)
        def bad_request() -> None:
            nonlocal call_count
            call_count += 1
            raise ProviderResponseError("HTTP 400", status_code=400)

        with pytest.raises(ProviderResponseError):
            bad_request()
        assert call_count == 1


class TestJsonHttpClient:
    """Tests for JsonHttpClient."""

    def _client(self, session: MagicMock) -> JsonHttpClient:
        return JsonHttpClient(
            "https://api.test/v1/",
            max_retries=1,
            retry_base_delay=0.01,
            max_requests_per_second=1000,
            session=session,
        )

    def test_get_json_builds_url(self) -> None:
        session = MagicMock()
        session.headers = {}
        session.request.return_value = _response(200, {"ok": True})

        assert self._client(session).get_json("/Ticker", params={"pair": "ADAUSD"}) == {"ok": True}
        session.request.assert_called_once_with(
            "GET", "https://api.test/v1/Ticker", timeout=10.0, params={"pair": "ADAUSD"}
        )

    def test_retries_retryable_status(self) -> None:
        session = MagicMock()
        session.headers = {}
        session.request.side_effect = [_response(503), _response(200, [1, 2])]

        assert self._client(session).post_json("account_info", {"x": 1}) == [1, 2]
        assert session.request.call_count == 2

    def test_connection_errors_exhaust_into_retry_error(self) -> None:
        session = MagicMock()
        session.headers = {}
        session.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(RetryError):
            self._client(session).get_json("x")
        assert session.request.call_count == 2

    def test_client_error_is_not_retried(self) -> None:
        session = MagicMock()
        session.headers = {}
        session.request.return_value = _response(404, text="not found")

        with pytest.raises(ProviderResponseError) as exc_info:
            self._client(session).get_json("x")
        assert exc_info.value.status_code == 404
        assert session.request.call_count == 1

    def test_invalid_json(self) -> None:
        session = MagicMock()
        session.headers = {}
        response = _response(200)
        response.json.side_effect = ValueError("no json")
        session.request.return_value = response

        with pytest.raises(ProviderResponseError, match="invalid JSON"):
            self._client(session).get_json("x")

    def test_honours_retry_after(self) -> None:
        session = MagicMock()
        session.headers = {}
        session.request.side_effect = [
            _response(429, headers={"Retry-After": "2"}),
            _response(200, {"ok": True}),
        ]

        with patch("cardano_portfolio_tracker.providers.http.time.sleep") as sleep:
            assert self._client(session).get_json("x") == {"ok": True}

        assert call(2.0) in sleep.call_args_list
