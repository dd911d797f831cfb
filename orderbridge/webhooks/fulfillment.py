"""Fulfilled-order shipping — hands ``orders/fulfilled`` orders to PostOffice.

Shares the ``sent_to_postoffice`` sentinel with callback reconciliation, so
an order already submitted by an approved payment is not submitted again.
"""

from __future__ import annotations

import enum
import logging
from typing import Any

import httpx

from orderbridge.config import Settings
from orderbridge.errors import UpstreamError
from orderbridge.events import broadcaster
from orderbridge.tools.postoffice_tool import PostOfficeClient
from orderbridge.tools.shopify_tool import ShopifyClient
from orderbridge.webhooks.idempotency import TAG_SENT_TO_POSTOFFICE, IdempotencyStore, OrderTagLedger
from orderbridge.webhooks.payloads import parse_order

logger = logging.getLogger(__name__)


class ShipOutcome(str, enum.Enum):
    SHIPPED = "shipped"
    ALREADY_SHIPPED = "already_shipped"
    SKIPPED = "skipped"


class FulfillmentShipper:
    def __init__(
        self,
        settings: Settings,
        postoffice: PostOfficeClient | None = None,
        ledger: IdempotencyStore | None = None,
        http: httpx.Client | None = None,
    ):
        self._settings = settings
        self._http = http
        self._postoffice = postoffice
        self._ledger = ledger

    @property
    def postoffice(self) -> PostOfficeClient:
        if self._postoffice is None:
            self._postoffice = PostOfficeClient(self._settings, http=self._http)
        return self._postoffice

    @property
    def ledger(self) -> IdempotencyStore:
        if self._ledger is None:
            self._ledger = OrderTagLedger(ShopifyClient(self._settings, http=self._http))
        return self._ledger

    def ship(self, payload: dict[str, Any]) -> ShipOutcome:
        """Submit a fulfilled order unless it was already submitted.

        Raises:
            ConfigurationError: PostOffice or platform settings missing
            UpstreamError: the bulk insert failed
        """
        order = parse_order(payload)
        postoffice = self.postoffice
        ledger = self.ledger

        if TAG_SENT_TO_POSTOFFICE in order.tags:
            logger.info("Order %s already sent to PostOffice, skipping", order.id)
            return ShipOutcome.ALREADY_SHIPPED

        if not postoffice.submit(order, exchangeable=False):
            return ShipOutcome.SKIPPED

        broadcaster.broadcast(
            {"type": "shipment_submitted", "order_id": order.id, "source": "fulfillment"}
        )
        try:
            ledger.add_marker(order.numeric_id, TAG_SENT_TO_POSTOFFICE)
        except UpstreamError as e:
            # Not raised: a 502 triggers redelivery and a second shipment
            logger.error(
                "Order %s shipped but sentinel tag not written: %s", order.id, e.message
            )
        return ShipOutcome.SHIPPED
