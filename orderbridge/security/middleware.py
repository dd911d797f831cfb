"""Rate limiting for the webhook endpoints.

Webhook routes are public: each handler verifies its own signature. The
limiter only caps floods per client IP before any body is read or any
signature computed.
"""

from __future__ import annotations

import ipaddress
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from orderbridge.config import Settings, get_settings, parse_networks

logger = logging.getLogger(__name__)


def _client_ip_key(trusted_proxies: str):
    """Key function: client IP, from X-Forwarded-For only when the peer is a trusted proxy."""
    networks = parse_networks(trusted_proxies)

    def _is_trusted(peer: str) -> bool:
        try:
            address = ipaddress.ip_address(peer)
        except ValueError:
            return False
        return any(address in network for network in networks)

    def _get_client_ip(request: Request) -> str:
        peer = get_remote_address(request)
        if networks and _is_trusted(peer):
            forwarded = request.headers.get("x-forwarded-for")
            if forwarded:
                return forwarded.split(",")[0].strip()
        return peer

    return _get_client_ip


def build_limiter(settings: Settings) -> Limiter:
    """Per-IP limiter applying WEBHOOK_RATE_LIMIT to every route."""
    return Limiter(
        key_func=_client_ip_key(settings.trusted_proxies),
        default_limits=[settings.webhook_rate_limit],
    )


def _rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """Handle rate limit exceeded errors."""
    retry_after = getattr(exc, "retry_after", 60)
    logger.warning("Rate limit exceeded for %s on %s", request.client, request.url.path)
    return JSONResponse(
        {"error": "Rate limit exceeded", "retry_after": retry_after},
        status_code=429,
        headers={"Retry-After": str(retry_after)},
    )


def install_security_middleware(app: FastAPI, settings: Settings | None = None) -> None:
    """Install rate limiting on the FastAPI app.

    Call this AFTER all routes are registered but BEFORE the app starts.
    """
    settings = settings or get_settings()
    app.state.limiter = build_limiter(settings)
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)
    logger.info("Rate limit installed: %s per client", settings.webhook_rate_limit)
