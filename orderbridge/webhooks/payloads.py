"""Inbound payload parsing — raw JSON to typed, validated records.

Two shapes arrive here:
- ProCard payment callbacks (``CallbackPayload``)
- Shopify order webhooks and REST order records (``OrderEvent``)

Field probing and fallback order live in this module only, so the flows
downstream never reach into raw dicts.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any

from orderbridge.config import parse_number_or
from orderbridge.errors import ValidationError
from orderbridge.webhooks.verification import field_text

# Transaction status that means the payment went through
APPROVED_STATUS = "Approved"

# Order total candidates, first finite value wins
_TOTAL_PRICE_PATHS: tuple[tuple[str, ...], ...] = (
    ("current_total_price",),
    ("total_price",),
    ("current_total_price_set", "shop_money", "amount"),
    ("total_price_set", "shop_money", "amount"),
)

# Country code candidates on a shipping address
_COUNTRY_KEYS = ("country_code", "countryCodeV2", "country_code_v2", "country")


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON")


def load_json_object(body: bytes) -> dict[str, Any]:
    """Decode a request body that must be a JSON object.

    ``NaN`` and ``Infinity`` literals are rejected like any other bad JSON.
    """
    try:
        payload = json.loads(body, parse_constant=_reject_constant)
    except ValueError as e:  # JSONDecodeError, UnicodeDecodeError, constants
        raise ValidationError("Bad JSON") from e
    if not isinstance(payload, dict):
        raise ValidationError("Bad JSON", details={"type": type(payload).__name__})
    return payload


def _dig(data: Any, path: tuple[str, ...]) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


@dataclass
class CallbackPayload:
    """A ProCard payment callback."""

    merchant_account: str
    order_reference: str
    amount: Any
    currency: str
    merchant_signature: str
    transaction_status: str
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def approved(self) -> bool:
        return self.transaction_status == APPROVED_STATUS


def parse_callback(payload: dict[str, Any]) -> CallbackPayload:
    """Parse a decoded callback body. Does not check the signature."""
    return CallbackPayload(
        merchant_account=field_text(payload.get("merchantAccount")),
        order_reference=field_text(payload.get("orderReference")),
        amount=payload.get("amount"),
        currency=field_text(payload.get("currency")),
        merchant_signature=field_text(payload.get("merchantSignature")),
        transaction_status=field_text(payload.get("transactionStatus")),
        raw=payload,
    )


@dataclass
class ShippingAddress:
    first_name: str = ""
    last_name: str = ""
    address1: str = ""
    address2: str = ""
    city: str = ""
    country_code: str = ""
    phone: str = ""

    @property
    def is_complete(self) -> bool:
        """True when the shipping intake has enough to create a parcel."""
        return bool(self.address1 and self.city and self.first_name and self.last_name)

    def missing_fields(self) -> list[str]:
        return [
            name
            for name in ("address1", "city", "first_name", "last_name")
            if not getattr(self, name)
        ]


@dataclass
class LineItem:
    title: str
    quantity: int = 1


@dataclass
class OrderEvent:
    """An order as delivered by the platform webhook or REST API."""

    id: str
    order_number: str = ""
    name: str = ""
    email: str = ""
    phone: str = ""
    currency: str = ""
    total: float = 0.0
    financial_status: str = ""
    tags: list[str] = field(default_factory=list)
    payment_gateway_names: list[str] = field(default_factory=list)
    shipping_address: ShippingAddress | None = None
    line_items: list[LineItem] = field(default_factory=list)
    note: str = ""
    note_attributes: dict[str, str] = field(default_factory=dict)
    customer_first_name: str = ""
    customer_last_name: str = ""
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def reference(self) -> str:
        """Merchant-facing order reference: order number, then name, then id."""
        return self.order_number or self.name or self.id

    @property
    def numeric_id(self) -> str:
        """Numeric id, with any ``gid://shopify/Order/`` prefix stripped."""
        return self.id.rsplit("/", 1)[-1]


def order_total(payload: dict[str, Any]) -> float:
    """First finite total among the known price fields, else 0."""
    for path in _TOTAL_PRICE_PATHS:
        value = _dig(payload, path)
        if value is None or isinstance(value, bool):
            continue
        n = parse_number_or(value, math.nan)
        if not math.isnan(n):
            return n
    return 0.0


def parse_tags(value: Any) -> list[str]:
    """Split a tag field into distinct tags, preserving first-seen order.

    Accepts the REST form (``"a, b"``) or the GraphQL form (a list).
    """
    if value is None:
        return []
    items = value if isinstance(value, (list, tuple)) else str(value).split(",")
    tags: list[str] = []
    for item in items:
        tag = _text(item)
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def _parse_address(data: Any) -> ShippingAddress | None:
    if not isinstance(data, dict):
        return None
    country = ""
    for key in _COUNTRY_KEYS:
        country = _text(data.get(key))
        if country:
            break
    return ShippingAddress(
        first_name=_text(data.get("first_name")),
        last_name=_text(data.get("last_name")),
        address1=_text(data.get("address1")),
        address2=_text(data.get("address2")),
        city=_text(data.get("city")),
        country_code=country,
        phone=_text(data.get("phone")),
    )


def _parse_line_items(items: Any) -> list[LineItem]:
    if not isinstance(items, list):
        return []
    parsed = []
    for item in items:
        if not isinstance(item, dict):
            continue
        quantity = item.get("quantity")
        parsed.append(
            LineItem(
                title=_text(item.get("title")),
                quantity=int(quantity) if isinstance(quantity, (int, float)) else 1,
            )
        )
    return parsed


def _parse_note_attributes(items: Any) -> dict[str, str]:
    # REST uses {name, value}; GraphQL customAttributes use {key, value}
    if not isinstance(items, list):
        return {}
    attributes = {}
    for item in items:
        if not isinstance(item, dict):
            continue
        key = _text(item.get("name") or item.get("key"))
        if key:
            attributes[key] = _text(item.get("value"))
    return attributes


def parse_order(payload: dict[str, Any]) -> OrderEvent:
    """Parse an order payload into an OrderEvent.

    Raises:
        ValidationError: if the payload carries no order id
    """
    order_id = field_text(payload.get("id"))
    if not order_id:
        raise ValidationError("Order payload has no id")

    customer = payload.get("customer") if isinstance(payload.get("customer"), dict) else {}
    gateways = payload.get("payment_gateway_names") or []
    if not isinstance(gateways, list):
        gateways = [gateways]

    return OrderEvent(
        id=order_id,
        order_number=field_text(payload.get("order_number")),
        name=_text(payload.get("name")),
        email=_text(payload.get("email")),
        phone=_text(payload.get("phone")),
        currency=_text(payload.get("currency")),
        total=order_total(payload),
        financial_status=_text(payload.get("financial_status")).lower(),
        tags=parse_tags(payload.get("tags")),
        payment_gateway_names=[_text(g) for g in gateways if g is not None],
        shipping_address=_parse_address(payload.get("shipping_address")),
        line_items=_parse_line_items(payload.get("line_items")),
        note=_text(payload.get("note")),
        note_attributes=_parse_note_attributes(payload.get("note_attributes")),
        customer_first_name=_text(customer.get("first_name")),
        customer_last_name=_text(customer.get("last_name")),
        raw=payload,
    )
