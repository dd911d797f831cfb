"""Signature verification for inbound deliveries — constant-time HMAC.

Two schemes:
- ProCard callbacks: HMAC-SHA512 hex over ``merchant;order;amount;currency``.
  The same scheme (with a trailing description field) signs our outbound
  purchase requests, so both directions share ``sign_fields``.
- Shopify webhooks: base64 HMAC-SHA256 over the raw body.

Security contract:
- All comparisons use hmac.compare_digest()
- A missing secret raises ConfigurationError instead of reporting an invalid
  signature; misconfiguration and a forged request need different responses
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import math
from decimal import Decimal
from typing import Any, Mapping

from orderbridge.errors import ConfigurationError

logger = logging.getLogger(__name__)


def _format_number(n: float) -> str:
    """Shortest round-trip decimal string, formatted the way the signer does.

    Plain positional notation for 1e-6 <= |n| < 1e21, otherwise ``d.ddde+N``.
    Integral values carry no fractional part.
    """
    if n == 0:
        return "0"
    d = Decimal(repr(n))
    if 1e-6 <= abs(n) < 1e21:
        s = format(d, "f")
        if "." in s:
            s = s.rstrip("0").rstrip(".")
        return s
    sign, digits, exponent = d.as_tuple()
    head = str(digits[0])
    tail = "".join(str(x) for x in digits[1:]).rstrip("0")
    exp = len(digits) - 1 + exponent
    mantissa = f"{head}.{tail}" if tail else head
    return f"{'-' if sign else ''}{mantissa}e{'+' if exp >= 0 else '-'}{abs(exp)}"


def normalize_amount(amount: Any) -> str:
    """Normalize an amount for signing.

    Parses as a number; non-finite or unparseable values become ``"0"``.
    ``1500.00``, ``1500`` and ``"1500"`` all normalize to ``"1500"``.
    """
    if amount is None:
        return "0"
    if isinstance(amount, bool):
        return "1" if amount else "0"
    if isinstance(amount, str):
        text = amount.strip()
        if not text:
            return "0"
        if "_" in text:
            return "0"
        try:
            n = float(text)
        except ValueError:
            return "0"
    else:
        try:
            n = float(amount)
        except (TypeError, ValueError, OverflowError):
            return "0"
    if not math.isfinite(n):
        return "0"
    return _format_number(n)


def field_text(value: Any) -> str:
    """Coerce a payload field to its string form; falsy values become ''.

    Non-finite floats also become ''.
    """
    if value is None or value is False or value == "":
        return ""
    if value is True:
        return "true"
    if isinstance(value, (int, float)):
        if value == 0 or (isinstance(value, float) and not math.isfinite(value)):
            return ""
        return _format_number(float(value)) if isinstance(value, float) else str(value)
    return str(value)


def sign_fields(fields: list[str], secret: str) -> str:
    """HMAC-SHA512 hex digest of the ``;``-joined fields."""
    if not secret:
        raise ConfigurationError("Missing PROCARD_SECRET")
    to_sign = ";".join(fields)
    return hmac.new(
        secret.encode("utf-8"),
        to_sign.encode("utf-8"),
        hashlib.sha512,
    ).hexdigest()


def callback_signing_fields(body: Mapping[str, Any]) -> list[str]:
    """Canonical callback fields in signing order, amount normalized."""
    return [
        field_text(body.get("merchantAccount")),
        field_text(body.get("orderReference")),
        normalize_amount(body.get("amount")),
        field_text(body.get("currency")),
    ]


def verify_callback_signature(body: Mapping[str, Any], secret: str) -> bool:
    """Verify a ProCard callback's ``merchantSignature``.

    Args:
        body: Parsed callback JSON
        secret: Shared ProCard secret

    Returns:
        True if the signature matches

    Raises:
        ConfigurationError: if ``secret`` is empty
    """
    if not secret:
        raise ConfigurationError("Missing PROCARD_SECRET")

    merchant, reference, amount, currency = callback_signing_fields(body)
    signature = field_text(body.get("merchantSignature"))

    if not merchant or not reference or not currency or not signature:
        logger.warning("Callback missing signed fields (reference=%r)", reference)
        return False

    expected = sign_fields([merchant, reference, amount, currency], secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


def verify_shopify(body: bytes, signature_header: str | None, secret: str) -> bool:
    """Verify Shopify webhook HMAC-SHA256 signature.

    Shopify sends: X-Shopify-Hmac-SHA256 header (base64-encoded HMAC-SHA256).

    Raises:
        ConfigurationError: if ``secret`` is empty
    """
    if not secret:
        raise ConfigurationError("Missing SHOPIFY_WEBHOOK_SECRET")
    if not signature_header:
        return False

    computed = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    computed_b64 = base64.b64encode(computed).decode("utf-8")

    return hmac.compare_digest(computed_b64.encode("utf-8"), signature_header.encode("utf-8"))
