"""Payment callback reconciliation.

One approved ProCard callback drives an order to "paid and handed to the
shipping intake":

1. verify the callback signature (AuthenticationError, no side effects)
2. ignore anything but ``Approved`` (acknowledged, no work)
3. locate the order by its number (NotFoundError)
4. mark it paid unless the platform already reports it paid
5. submit it to PostOffice unless ``sent_to_postoffice`` is already tagged,
   then tag ``sent_to_postoffice`` and ``paid_procard``

Steps 4 and 5 are not transactional. Each is guarded on its own (financial
status, sentinel tag), so a redelivery after a crash between them resumes at
step 5. Upstream failures in 4 or 5 propagate; the 502 makes the provider
redeliver.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from orderbridge.config import Settings
from orderbridge.errors import AuthenticationError, NotFoundError, UpstreamError, ValidationError
from orderbridge.events import broadcaster
from orderbridge.tools.postoffice_tool import PostOfficeClient
from orderbridge.tools.shopify_tool import ShopifyClient
from orderbridge.webhooks.idempotency import (
    TAG_PAID_PROCARD,
    TAG_SENT_TO_POSTOFFICE,
    IdempotencyStore,
    OrderLease,
    OrderTagLedger,
)
from orderbridge.webhooks.payloads import parse_callback, parse_order
from orderbridge.webhooks.verification import verify_callback_signature

logger = logging.getLogger(__name__)


class Outcome(str, enum.Enum):
    RECONCILED = "reconciled"
    IGNORED = "ignored"


@dataclass
class ReconcileResult:
    outcome: Outcome
    order_reference: str
    order_id: str = ""
    marked_paid: bool = False
    shipped: bool = False
    already_shipped: bool = False


class CallbackReconciler:
    """Applies verified payment callbacks to orders.

    Collaborators are built on first use so a declined callback never needs
    shipping or platform configuration. Tests inject them directly.
    """

    def __init__(
        self,
        settings: Settings,
        shopify: ShopifyClient | None = None,
        postoffice: PostOfficeClient | None = None,
        ledger: IdempotencyStore | None = None,
        lease: OrderLease | None = None,
        http: httpx.Client | None = None,
    ):
        self._settings = settings
        self._http = http
        self._shopify = shopify
        self._postoffice = postoffice
        self._ledger = ledger
        self._lease = lease or OrderLease(None)

    @property
    def shopify(self) -> ShopifyClient:
        if self._shopify is None:
            self._shopify = ShopifyClient(self._settings, http=self._http)
        return self._shopify

    @property
    def postoffice(self) -> PostOfficeClient:
        if self._postoffice is None:
            self._postoffice = PostOfficeClient(self._settings, http=self._http)
        return self._postoffice

    @property
    def ledger(self) -> IdempotencyStore:
        if self._ledger is None:
            self._ledger = OrderTagLedger(self.shopify)
        return self._ledger

    def reconcile(self, body: dict[str, Any]) -> ReconcileResult:
        """Run one callback through verify, filter, locate, pay, ship.

        Raises:
            ValidationError: no ``orderReference``
            ConfigurationError: secret or a collaborator setting missing
            AuthenticationError: signature mismatch
            NotFoundError: no order with that number
            UpstreamError: mark-paid, lookup, shipping or tag write failed
            ConflictError: another delivery holds this order's lease
        """
        callback = parse_callback(body)
        if not callback.order_reference:
            raise ValidationError("Missing orderReference")

        if not verify_callback_signature(body, self._settings.procard_secret):
            logger.warning("Invalid callback signature (reference=%s)", callback.order_reference)
            raise AuthenticationError(
                "Invalid signature", details={"order_reference": callback.order_reference}
            )

        if not callback.approved:
            logger.info(
                "Callback for %s with status %r, nothing to do",
                callback.order_reference,
                callback.transaction_status,
            )
            return ReconcileResult(Outcome.IGNORED, callback.order_reference)

        found = self.shopify.find_order_by_number(callback.order_reference)
        if not found or not found.get("id"):
            raise NotFoundError(
                "Order not found", details={"order_reference": callback.order_reference}
            )
        order_id = str(found["id"])
        result = ReconcileResult(Outcome.RECONCILED, callback.order_reference, order_id=order_id)

        with self._lease.hold(order_id):
            result.marked_paid = self._reconcile_payment(order_id, found)
            self._reconcile_shipping(order_id, result)

        logger.info(
            "Callback reconciled (order=%s, reference=%s, marked_paid=%s, shipped=%s)",
            order_id,
            callback.order_reference,
            result.marked_paid,
            result.shipped,
        )
        broadcaster.broadcast(
            {
                "type": "callback_reconciled",
                "order_id": order_id,
                "order_reference": callback.order_reference,
                "marked_paid": result.marked_paid,
                "shipped": result.shipped,
            }
        )
        return result

    def _reconcile_payment(self, order_id: str, found: dict[str, Any]) -> bool:
        status = str(found.get("financial_status") or "").lower()
        if status == "paid":
            logger.info("Order %s already paid, skipping mark-paid", order_id)
            return False
        try:
            self.shopify.mark_paid(order_id)
        except UpstreamError as e:
            e.details.setdefault("step", "mark_paid")
            e.details.setdefault("order_id", order_id)
            logger.error("Mark-paid failed for order %s: %s", order_id, e.message)
            raise
        return True

    def _reconcile_shipping(self, order_id: str, result: ReconcileResult) -> None:
        if self.ledger.has_marker(order_id, TAG_SENT_TO_POSTOFFICE):
            logger.info("Order %s already sent to PostOffice, skipping", order_id)
            result.already_shipped = True
            return

        try:
            order = parse_order(self.shopify.get_order(order_id))
            result.shipped = self.postoffice.submit(order, exchangeable=True)
            if result.shipped:
                self.ledger.add_marker(order_id, TAG_SENT_TO_POSTOFFICE, TAG_PAID_PROCARD)
                broadcaster.broadcast(
                    {
                        "type": "shipment_submitted",
                        "order_id": order_id,
                        "source": "callback",
                    }
                )
            else:
                self.ledger.add_marker(order_id, TAG_PAID_PROCARD)
        except UpstreamError as e:
            e.details.setdefault("step", "shipping")
            e.details.setdefault("order_id", order_id)
            logger.error("Shipping step failed for order %s: %s", order_id, e.message)
            raise
