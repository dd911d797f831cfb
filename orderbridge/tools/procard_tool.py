"""ProCard payment dispatcher — signed Purchase requests for payment links."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from orderbridge.config import Settings
from orderbridge.errors import UpstreamError
from orderbridge.webhooks.payloads import OrderEvent
from orderbridge.webhooks.verification import normalize_amount, sign_fields

logger = logging.getLogger(__name__)

# Fields covered by the request signature, in signing order
SIGNED_REQUEST_FIELDS = ("merchant_id", "order_id", "amount", "currency_iso", "description")


def sign_request(request: dict[str, Any], secret: str) -> str:
    """Signature for a purchase request; the amount is normalized first."""
    fields = [
        normalize_amount(request[name]) if name == "amount" else str(request[name])
        for name in SIGNED_REQUEST_FIELDS
    ]
    return sign_fields(fields, secret)


def build_purchase_request(order: OrderEvent, settings: Settings) -> dict[str, Any]:
    """Build and sign the dispatcher Purchase request for ``order``."""
    address = order.shipping_address
    reference = order.reference
    request: dict[str, Any] = {
        "operation": "Purchase",
        "merchant_id": settings.procard_merchant_id,
        "order_id": reference,
        "amount": int(order.total) if float(order.total).is_integer() else order.total,
        "currency_iso": settings.procard_currency,
        "description": f"{settings.procard_description_prefix} {reference}",
        "add_params": {
            "shopifyOrderId": order.id,
            "shopifyOrderName": order.name,
        },
        "approve_url": settings.procard_approve_url,
        "decline_url": settings.procard_decline_url,
        "cancel_url": settings.procard_cancel_url,
        "callback_url": settings.procard_callback_url,
        "redirect": 0,
        "client_first_name": (address.first_name if address else "") or order.customer_first_name,
        "client_last_name": (address.last_name if address else "") or order.customer_last_name,
        "email": order.email,
        "phone": order.phone or (address.phone if address else ""),
    }
    request["signature"] = sign_request(request, settings.procard_secret)
    return request


class ProCardClient:
    """Dispatcher client. One call: create a payment link."""

    def __init__(self, settings: Settings, http: httpx.Client | None = None):
        settings.require(
            "procard_secret",
            "procard_dispatcher_url",
            "procard_merchant_id",
            "procard_callback_url",
            "procard_approve_url",
            "procard_decline_url",
            "procard_cancel_url",
        )
        self._settings = settings
        self._http = http or httpx.Client(timeout=settings.http_timeout_seconds)

    def create_payment_link(self, order: OrderEvent) -> str:
        """Request a payment URL for ``order``.

        Raises:
            UpstreamError: transport error, non-2xx, non-zero ``result`` or no ``url``
        """
        request = build_purchase_request(order, self._settings)
        details = {"step": "dispatcher", "order_id": order.id}
        try:
            response = self._http.post(self._settings.procard_dispatcher_url, json=request)
        except httpx.HTTPError as e:
            raise UpstreamError("Dispatcher unreachable", details=details) from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if not response.is_success:
            logger.error("Dispatcher error (order=%s, status=%d)", order.id, response.status_code)
            raise UpstreamError("Dispatcher error", details=details, status=response.status_code)

        result = data.get("result") if isinstance(data, dict) else None
        if isinstance(result, bool) or result != 0 or not data.get("url"):
            logger.error("Unexpected dispatcher response (order=%s): %r", order.id, data)
            raise UpstreamError("Bad dispatcher response", details=details, status=response.status_code)

        return str(data["url"])
