"""Payment link issuance for newly created manual-payment orders.

On ``orders/create`` for an order paid through a manual gateway: request a
ProCard payment link, store it on the order with the ``procard_link_sent``
tag, then email it. Dispatcher or platform failures are logged and broadcast
and the webhook is still acknowledged; Shopify's own redelivery is the only
retry. Email failures never undo the stored link.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Iterable

import httpx

from orderbridge.config import Settings
from orderbridge.errors import UpstreamError
from orderbridge.events import broadcaster
from orderbridge.tools.email_tool import PaymentLinkMailer
from orderbridge.tools.procard_tool import ProCardClient
from orderbridge.tools.shopify_tool import ShopifyClient
from orderbridge.webhooks.idempotency import TAG_LINK_SENT
from orderbridge.webhooks.payloads import OrderEvent, parse_order, parse_tags

logger = logging.getLogger(__name__)

PAYMENT_URL_ATTRIBUTE = "procard_payment_url"


class LinkOutcome(str, enum.Enum):
    ISSUED = "issued"
    INELIGIBLE = "ineligible"
    ALREADY_SENT = "already_sent"
    FAILED = "failed"


@dataclass
class LinkResult:
    outcome: LinkOutcome
    order_id: str
    payment_url: str = ""
    emailed: bool = False


def is_manual_payment(order: OrderEvent, gateway_names: Iterable[str]) -> bool:
    """True when any of the order's gateways is on the manual allow-list.

    Case-insensitive exact match.
    """
    allowed = {name.strip().lower() for name in gateway_names}
    return any(name.lower() in allowed for name in order.payment_gateway_names)


class PaymentLinkIssuer:
    """Creates and delivers ProCard payment links for new orders."""

    def __init__(
        self,
        settings: Settings,
        shopify: ShopifyClient | None = None,
        procard: ProCardClient | None = None,
        mailer: PaymentLinkMailer | None = None,
        http: httpx.Client | None = None,
    ):
        self._settings = settings
        self._http = http
        self._shopify = shopify
        self._procard = procard
        self._mailer = mailer

    @property
    def shopify(self) -> ShopifyClient:
        if self._shopify is None:
            self._shopify = ShopifyClient(self._settings, http=self._http)
        return self._shopify

    @property
    def procard(self) -> ProCardClient:
        if self._procard is None:
            self._procard = ProCardClient(self._settings, http=self._http)
        return self._procard

    @property
    def mailer(self) -> PaymentLinkMailer:
        if self._mailer is None:
            self._mailer = PaymentLinkMailer(self._settings, self.shopify, http=self._http)
        return self._mailer

    def issue(self, payload: dict[str, Any]) -> LinkResult:
        """Handle one ``orders/create`` payload.

        Raises:
            ValidationError: payload has no order id
            ConfigurationError: dispatcher or platform settings missing
        """
        order = parse_order(payload)

        if not is_manual_payment(order, self._settings.manual_gateway_names):
            logger.info(
                "Order %s not a manual payment (%s), no link",
                order.id,
                ", ".join(order.payment_gateway_names) or "no gateway",
            )
            return LinkResult(LinkOutcome.INELIGIBLE, order.id)

        if TAG_LINK_SENT in order.tags:
            logger.info("Order %s already has a payment link, skipping", order.id)
            return LinkResult(LinkOutcome.ALREADY_SENT, order.id)

        # Build the clients up front so missing settings surface as a 500
        procard = self.procard
        shopify = self.shopify
        mailer = self.mailer

        try:
            payment_url = procard.create_payment_link(order)
            self._persist(shopify, order, payment_url)
        except UpstreamError as e:
            logger.error("Create payment link failed for order %s: %s", order.id, e.message)
            broadcaster.broadcast(
                {
                    "type": "payment_link_failed",
                    "order_id": order.id,
                    "order_reference": order.reference,
                    "error": e.message,
                    "status": e.status,
                    "step": e.details.get("step", "dispatcher"),
                }
            )
            return LinkResult(LinkOutcome.FAILED, order.id)

        result = LinkResult(LinkOutcome.ISSUED, order.id, payment_url=payment_url)
        try:
            result.emailed = mailer.send(order, payment_url)
        except UpstreamError as e:
            logger.error("Payment link email failed for order %s: %s", order.id, e.message)
            broadcaster.broadcast(
                {"type": "payment_link_email_failed", "order_id": order.id, "error": e.message}
            )

        broadcaster.broadcast(
            {
                "type": "payment_link_issued",
                "order_id": order.id,
                "order_reference": order.reference,
                "emailed": result.emailed,
            }
        )
        logger.info("Payment link issued for order %s (emailed=%s)", order.id, result.emailed)
        return result

    def _persist(self, shopify: ShopifyClient, order: OrderEvent, payment_url: str) -> None:
        tags = parse_tags(order.tags + [TAG_LINK_SENT])
        attributes = {**order.note_attributes, PAYMENT_URL_ATTRIBUTE: payment_url}
        try:
            shopify.update_order(order.numeric_id, tags=tags, note_attributes=attributes)
        except UpstreamError as e:
            e.details.setdefault("step", "persist_link")
            raise
