"""Shared fixtures for the order bridge test suite."""

from __future__ import annotations

import copy
from typing import Any
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from orderbridge.config import Settings, get_settings
from orderbridge.webhooks.payloads import parse_tags
from orderbridge.webhooks.verification import callback_signing_fields, sign_fields

PROCARD_SECRET = "procard-test-secret"
SHOPIFY_SECRET = "shopify-test-secret"


@pytest.fixture()
def settings() -> Settings:
    """Fully configured settings; no .env is read."""
    return Settings(
        _env_file=None,
        procard_secret=PROCARD_SECRET,
        procard_dispatcher_url="https://dispatcher.test/api/purchase",
        procard_merchant_id="merchant_1",
        procard_approve_url="https://shop.test/pay/approved",
        procard_decline_url="https://shop.test/pay/declined",
        procard_cancel_url="https://shop.test/pay/cancelled",
        procard_callback_url="https://bridge.test/webhooks/procard/callback",
        postoffice_base_url="https://postoffice.test",
        postoffice_token="po-token",
        shopify_store_domain="bridge-test.myshopify.com",
        shopify_admin_access_token="shpat_test",
        shopify_webhook_secret=SHOPIFY_SECRET,
        redis_url="",
    )


@pytest.fixture()
def order_record() -> dict[str, Any]:
    """REST order record for order #1001."""
    return {
        "id": 9001,
        "order_number": 1001,
        "name": "#1001",
        "email": "ana@example.com",
        "phone": "+38344111222",
        "currency": "EUR",
        "total_price": "1500.00",
        "financial_status": "pending",
        "tags": "",
        "payment_gateway_names": ["manual"],
        "shipping_address": {
            "first_name": "Ana",
            "last_name": "Krasniqi",
            "address1": "Rr. Nena Tereze 1",
            "address2": "",
            "city": "Prishtina",
            "country_code": "XK",
            "phone": "+38344111222",
        },
        "line_items": [{"title": "Tee", "quantity": 2}],
        "note": "",
        "note_attributes": [],
        "customer": {"first_name": "Ana", "last_name": "Krasniqi"},
    }


class FakeShopify:
    """In-memory order platform holding a single order."""

    def __init__(self, order: dict[str, Any]):
        self.order = copy.deepcopy(order)

    def find_order_by_number(self, order_number: str) -> dict[str, Any] | None:
        if str(self.order["order_number"]) != str(order_number):
            return None
        return {
            key: self.order[key] for key in ("id", "name", "tags", "financial_status")
        }

    def get_order(self, order_id: str) -> dict[str, Any]:
        return copy.deepcopy(self.order)

    def get_tags(self, order_id: str) -> str:
        return self.order["tags"]

    def set_tags(self, order_id: str, tags: list[str]) -> None:
        self.order["tags"] = ", ".join(tags)

    def mark_paid(self, order_id: str) -> None:
        self.order["financial_status"] = "paid"

    def update_order(self, order_id, tags=None, note_attributes=None) -> None:
        if tags is not None:
            self.order["tags"] = ", ".join(parse_tags(tags))
        if note_attributes is not None:
            self.order["note_attributes"] = [
                {"name": k, "value": v} for k, v in note_attributes.items()
            ]

    def send_invoice(self, order_id: str) -> None:
        pass


@pytest.fixture()
def shopify(order_record) -> MagicMock:
    """Call-recording mock wrapping a FakeShopify."""
    fake = FakeShopify(order_record)
    mock = MagicMock(wraps=fake)
    mock.fake = fake
    return mock


@pytest.fixture()
def postoffice() -> MagicMock:
    mock = MagicMock()
    mock.submit.return_value = True
    return mock


@pytest.fixture()
def make_callback(settings):
    """Factory for callback bodies signed with the test secret."""

    def _make(
        reference: str = "1001",
        status: str = "Approved",
        amount: Any = 1500.0,
        **overrides: Any,
    ) -> dict[str, Any]:
        body = {
            "merchantAccount": settings.procard_merchant_id,
            "orderReference": reference,
            "amount": amount,
            "currency": settings.procard_currency,
            "transactionStatus": status,
        }
        body["merchantSignature"] = sign_fields(
            callback_signing_fields(body), settings.procard_secret
        )
        body.update(overrides)
        return body

    return _make


@pytest.fixture()
def app(settings):
    """App built from test settings."""
    from orderbridge.serve import create_app

    application = create_app(settings)
    application.dependency_overrides[get_settings] = lambda: settings
    return application


@pytest.fixture()
def client(app):
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
