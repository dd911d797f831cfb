"""Admin API access token cache with single-flight refresh."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

logger = logging.getLogger(__name__)

# Tokens from the client-credentials grant live ~24h; refresh an hour early
DEFAULT_TOKEN_TTL_SECONDS = 23 * 60 * 60


class TokenCache:
    """Holds one access token and its expiry.

    ``fetch`` is called to obtain a new token when the cached one is missing
    or expired. Concurrent callers that find the token expired wait on one
    lock, so only one refresh is in flight per expiry window; the others
    reuse its result.
    """

    def __init__(
        self,
        fetch: Callable[[], str],
        ttl_seconds: float = DEFAULT_TOKEN_TTL_SECONDS,
        clock: Callable[[], float] | None = None,
    ):
        self._fetch = fetch
        self._ttl = ttl_seconds
        self._clock = clock or time.time
        self._token: str | None = None
        self._expires_at = 0.0
        self._lock = threading.Lock()

    @property
    def expires_at(self) -> float:
        return self._expires_at

    def get_or_refresh(self, now: float | None = None) -> str:
        """Return the cached token, refreshing it first if it has expired."""
        now = self._clock() if now is None else now
        token = self._token
        if token and now < self._expires_at:
            return token

        with self._lock:
            # Another caller may have refreshed while we waited
            if self._token and now < self._expires_at:
                return self._token
            token = self._fetch()
            self._token = token
            self._expires_at = now + self._ttl
            logger.info("Access token refreshed, valid for %.0fs", self._ttl)
            return token

    def invalidate(self) -> None:
        """Drop the cached token so the next call refreshes."""
        with self._lock:
            self._token = None
            self._expires_at = 0.0
