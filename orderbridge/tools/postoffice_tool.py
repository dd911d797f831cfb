"""PostOffice shipping intake — order to parcel projection and bulk insert."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from orderbridge.config import Settings
from orderbridge.errors import UpstreamError
from orderbridge.tools.redirects import post_with_redirects
from orderbridge.webhooks.payloads import OrderEvent, ShippingAddress

logger = logging.getLogger(__name__)

DEFAULT_COUNTRY_ID = 1

# Country code or name (upper-cased) -> PostOffice CountryId
_COUNTRY_IDS: dict[str, int] = {
    "XK": 1,
    "KOSOVO": 1,
    "AL": 2,
    "ALBANIA": 2,
    "MK": 3,
    "NM": 3,
    "NORTH MACEDONIA": 3,
    "MACEDONIA": 3,
}


def country_id(address: ShippingAddress) -> int:
    """PostOffice CountryId for an address, Kosovo when unknown."""
    return _COUNTRY_IDS.get(address.country_code.strip().upper(), DEFAULT_COUNTRY_ID)


def package_description(order: OrderEvent) -> str:
    """``"<title> x<qty>"`` per line item, comma separated."""
    parts = [f"{item.title} x{item.quantity}".strip() for item in order.line_items]
    return ", ".join(p for p in parts if p)


def build_shipment(order: OrderEvent, settings: Settings, exchangeable: bool) -> dict[str, Any]:
    """Project an order into one bulk-insert entry.

    Optional text fields are omitted rather than sent empty.
    """
    address = order.shipping_address or ShippingAddress()
    shipment: dict[str, Any] = {
        "FirstName": address.first_name,
        "LastName": address.last_name,
        "Address": address.address1,
        "AddressDetails": address.address2,
        "Phone": address.phone or order.phone,
        **settings.package_dimensions,
        "Openable": True,
        "Fragile": False,
        "Declared": False,
        "Exchangeable": exchangeable,
        "Invoice": False,
        "OrderPrice": order.total,
        "OrderDescription": order.note,
        "PackageDescription": package_description(order),
        "Refid": order.reference,
        "SectionId": -1,
        "SellerId": -1,
        "UserId": -1,
        "CountryId": country_id(address),
        "CityLabel": address.city,
        "OrdersRealPrice": order.total,
    }
    for optional in ("AddressDetails", "OrderDescription", "PackageDescription", "Refid"):
        if not shipment[optional]:
            del shipment[optional]
    return shipment


class PostOfficeClient:
    """Bulk-insert client for the shipping intake."""

    def __init__(self, settings: Settings, http: httpx.Client | None = None):
        settings.require("postoffice_base_url", "postoffice_token")
        self._settings = settings
        self._http = http or httpx.Client(timeout=settings.http_timeout_seconds)

    def submit(self, order: OrderEvent, exchangeable: bool) -> bool:
        """Submit one order. Returns False when the address is incomplete.

        Raises:
            UpstreamError: on a transport error or a non-2xx final response
        """
        address = order.shipping_address
        if address is None or not address.is_complete:
            logger.error(
                "Skipping PostOffice: missing shipping fields %s (order=%s, number=%s)",
                address.missing_fields() if address else ["shipping_address"],
                order.id,
                order.order_number,
            )
            return False

        body = [build_shipment(order, self._settings, exchangeable)]
        url = self._settings.bulk_insert_url
        try:
            response = post_with_redirects(
                self._http,
                url,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self._settings.postoffice_token}",
                },
                content=json.dumps(body),
                max_redirects=self._settings.postoffice_max_redirects,
            )
        except httpx.HTTPError as e:
            logger.error("Error calling PostOffice bulk-insert for order %s: %s", order.id, e)
            raise UpstreamError(
                "PostOffice bulk-insert failed",
                details={"step": "shipping", "order_id": order.id},
            ) from e

        if not response.is_success:
            logger.error(
                "PostOffice bulk-insert failed (order=%s, status=%d, url=%s): %s",
                order.id,
                response.status_code,
                response.url,
                response.text[:500],
            )
            raise UpstreamError(
                response.text or "PostOffice bulk-insert failed",
                details={"step": "shipping", "order_id": order.id},
                status=response.status_code,
            )

        logger.info("Order %s submitted to PostOffice (ref=%s)", order.id, order.reference)
        return True
