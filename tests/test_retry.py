"""Tests for retry_with_backoff."""

from __future__ import annotations

import httpx
import pytest

from orderbridge.tools.retry import _compute_delay, retry_with_backoff


def _status_error(status: int, headers: dict | None = None) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://shop.test/orders.json")
    response = httpx.Response(status, headers=headers, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


class TestRetryWithBackoff:
    def test_success_first_try(self):
        sleeps = []

        @retry_with_backoff(sleep=sleeps.append)
        def call():
            return "ok"

        assert call() == "ok"
        assert sleeps == []

    def test_retries_retryable_status(self):
        attempts = []
        sleeps = []

        @retry_with_backoff(max_retries=2, sleep=sleeps.append)
        def call():
            attempts.append(1)
            if len(attempts) < 3:
                raise _status_error(503)
            return "ok"

        assert call() == "ok"
        assert len(attempts) == 3
        assert len(sleeps) == 2

    def test_gives_up_after_max_retries(self):
        attempts = []

        @retry_with_backoff(max_retries=2, sleep=lambda _: None)
        def call():
            attempts.append(1)
            raise _status_error(429)

        with pytest.raises(httpx.HTTPStatusError):
            call()
        assert len(attempts) == 3

    def test_does_not_retry_client_errors(self):
        attempts = []

        @retry_with_backoff(sleep=lambda _: None)
        def call():
            attempts.append(1)
            raise _status_error(404)

        with pytest.raises(httpx.HTTPStatusError):
            call()
        assert len(attempts) == 1

    def test_retries_transport_errors(self):
        attempts = []

        @retry_with_backoff(max_retries=1, sleep=lambda _: None)
        def call():
            attempts.append(1)
            raise httpx.ConnectError("refused")

        with pytest.raises(httpx.ConnectError):
            call()
        assert len(attempts) == 2


class TestComputeDelay:
    def test_retry_after_honoured(self):
        response = httpx.Response(429, headers={"Retry-After": "2"})
        assert _compute_delay(0, 0.5, 5.0, 0.3, response) == 2.0

    def test_retry_after_capped(self):
        response = httpx.Response(429, headers={"Retry-After": "120"})
        assert _compute_delay(0, 0.5, 5.0, 0.3, response) == 5.0

    def test_exponential_within_jitter(self):
        for attempt in range(4):
            base = min(0.5 * 2**attempt, 5.0)
            delay = _compute_delay(attempt, 0.5, 5.0, 0.3)
            assert base * 0.7 - 1e-9 <= delay <= base * 1.3 + 1e-9
