"""Payment link email — Shopify invoice or SendGrid plain text.

EMAIL_PROVIDER selects the channel:
- ``shopify``: ``orderInvoiceSend``; the store's notification template renders
  the ``procard_payment_url`` note attribute
- ``sendgrid``: a plain-text message with the link through the v3 mail API
"""

from __future__ import annotations

import logging

import httpx

from orderbridge.config import Settings
from orderbridge.errors import ConfigurationError, UpstreamError
from orderbridge.tools.shopify_tool import ShopifyClient
from orderbridge.webhooks.payloads import OrderEvent

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"

_BODY_TEMPLATE = (
    "Hello,\n\n"
    "Use this link to pay for order {order_name}:\n"
    "{payment_url}\n\n"
    "Your order is processed once the payment is confirmed.\n\n"
    "Thank you,\n{sender}"
)


class PaymentLinkMailer:
    """Delivers the payment link to the customer."""

    def __init__(
        self,
        settings: Settings,
        shopify: ShopifyClient,
        http: httpx.Client | None = None,
    ):
        if settings.email_provider not in ("shopify", "sendgrid"):
            raise ConfigurationError(
                f"Unknown EMAIL_PROVIDER {settings.email_provider!r}",
                details={"email_provider": settings.email_provider},
            )
        self._settings = settings
        self._shopify = shopify
        self._http = http or httpx.Client(timeout=settings.http_timeout_seconds)

    def send(self, order: OrderEvent, payment_url: str) -> bool:
        """Send the link. Returns False when skipped.

        Raises:
            UpstreamError: provider call failed
        """
        if self._settings.email_provider == "shopify":
            self._shopify.send_invoice(order.numeric_id)
            return True
        return self._send_sendgrid(order, payment_url)

    def _send_sendgrid(self, order: OrderEvent, payment_url: str) -> bool:
        api_key = self._settings.sendgrid_api_key
        sender = self._settings.sendgrid_from
        if not api_key or not sender:
            logger.warning("SendGrid not configured; skipping email for order %s", order.id)
            return False
        if not order.email:
            logger.info("Order %s has no email; skipping payment link email", order.id)
            return False

        order_name = order.name or f"#{order.reference}"
        sender_name = self._settings.sendgrid_from_name or sender
        message = {
            "personalizations": [{"to": [{"email": order.email}]}],
            "from": {"email": sender, "name": sender_name},
            "subject": f"Payment link - {order_name}",
            "content": [
                {
                    "type": "text/plain",
                    "value": _BODY_TEMPLATE.format(
                        order_name=order_name, payment_url=payment_url, sender=sender_name
                    ),
                }
            ],
        }
        try:
            response = self._http.post(
                SENDGRID_URL,
                json=message,
                headers={"Authorization": f"Bearer {api_key}"},
            )
        except httpx.HTTPError as e:
            raise UpstreamError("SendGrid unreachable", details={"step": "email", "order_id": order.id}) from e

        if not response.is_success:
            logger.error(
                "SendGrid send failed (order=%s, status=%d): %s",
                order.id,
                response.status_code,
                response.text[:500],
            )
            raise UpstreamError(
                "SendGrid send failed",
                details={"step": "email", "order_id": order.id},
                status=response.status_code,
            )
        logger.info("Payment link emailed for order %s", order.id)
        return True
