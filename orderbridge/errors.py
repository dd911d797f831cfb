"""Exception hierarchy for the bridge.

Every application-level failure derives from BridgeError so the HTTP layer
can translate it with a single handler. Messages are for logs; the handler
returns only the fixed ``public_message`` to the caller.
"""

from __future__ import annotations

from typing import Any


class BridgeError(Exception):
    """Base for all bridge exceptions."""

    status_code = 500
    error_code = "BRIDGE_ERROR"
    public_message = "Internal error"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConfigurationError(BridgeError):
    """A required secret, URL or credential is not configured."""

    status_code = 500
    error_code = "CONFIGURATION_ERROR"
    public_message = "Service misconfigured"


class ValidationError(BridgeError):
    """Inbound body is not valid JSON or lacks a required field."""

    status_code = 400
    error_code = "VALIDATION_ERROR"
    public_message = "Bad request"


class AuthenticationError(BridgeError):
    """Signature on an inbound delivery did not verify."""

    status_code = 401
    error_code = "AUTHENTICATION_ERROR"
    public_message = "Invalid signature"


class NotFoundError(BridgeError):
    """Referenced order does not exist on the order platform."""

    status_code = 404
    error_code = "NOT_FOUND"
    public_message = "Order not found"


class ConflictError(BridgeError):
    """Another delivery currently holds the lease for this order."""

    status_code = 409
    error_code = "CONFLICT"
    public_message = "Order busy, retry later"


class UpstreamError(BridgeError):
    """A collaborator (order platform, shipping, dispatcher, email) failed."""

    status_code = 502
    error_code = "UPSTREAM_ERROR"
    public_message = "Callback failed"

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        status: int | None = None,
    ):
        super().__init__(message, details)
        self.status = status
