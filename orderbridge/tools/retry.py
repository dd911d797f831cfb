"""Bounded backoff for idempotent order-platform reads.

Only reads go through here. A failed write is surfaced to the webhook
caller instead, and the provider's redelivery retries the whole flow.
"""

from __future__ import annotations

import functools
import logging
import random
import time
from typing import Any, Callable

import httpx

logger = logging.getLogger(__name__)

# Throttling and gateway failures worth another attempt
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

_MIN_DELAY = 0.05


def _retry_reason(exc: httpx.HTTPError) -> str | None:
    """Why ``exc`` is worth retrying, or None when it is not."""
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return f"HTTP {status}" if status in RETRYABLE_STATUS_CODES else None
    if isinstance(exc, httpx.TransportError):
        return type(exc).__name__
    return None


def retry_with_backoff(
    max_retries: int = 2,
    base_delay: float = 0.5,
    max_delay: float = 5.0,
    jitter: float = 0.3,
    sleep: Callable[[float], None] = time.sleep,
) -> Callable:
    """Decorator: call again after a short wait on retryable httpx errors.

    The caller is holding an inbound webhook open, so the defaults allow at
    most three attempts and a few seconds in total.
    """

    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 0
            while True:
                try:
                    return fn(*args, **kwargs)
                except httpx.HTTPError as e:
                    reason = _retry_reason(e)
                    if reason is None or attempt >= max_retries:
                        raise
                    response = e.response if isinstance(e, httpx.HTTPStatusError) else None
                    delay = _compute_delay(attempt, base_delay, max_delay, jitter, response)
                    attempt += 1
                    logger.warning(
                        "%s failed (%s), attempt %d of %d in %.2fs",
                        fn.__name__,
                        reason,
                        attempt + 1,
                        max_retries + 1,
                        delay,
                    )
                    sleep(delay)

        return wrapper

    return decorator


def _compute_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    jitter: float,
    response: httpx.Response | None = None,
) -> float:
    """Seconds to wait before the next attempt.

    A numeric Retry-After wins (capped at ``max_delay``); otherwise the delay
    doubles per attempt with +/- ``jitter`` spread.
    """
    header = response.headers.get("Retry-After") if response is not None else None
    if header:
        try:
            return min(float(header), max_delay)
        except ValueError:
            logger.debug("Ignoring non-numeric Retry-After %r", header)

    backoff = min(max_delay, base_delay * 2**attempt)
    spread = backoff * jitter
    return max(_MIN_DELAY, backoff + random.uniform(-spread, spread))
