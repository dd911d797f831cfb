"""Shopify Admin API client — order lookup, tags, payment state, invoices.

REST for reads and tag writes (the tag string round-trips cleanly there),
GraphQL for mutations REST no longer offers (mark-as-paid, invoice send,
note attributes). Idempotent reads are retried with backoff; writes are not.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from orderbridge.config import Settings
from orderbridge.errors import UpstreamError
from orderbridge.tools.retry import retry_with_backoff
from orderbridge.tools.token_cache import TokenCache

logger = logging.getLogger(__name__)

_ORDER_GID = "gid://shopify/Order/{}"

MARK_PAID_MUTATION = """
mutation orderMarkAsPaid($input: OrderMarkAsPaidInput!) {
  orderMarkAsPaid(input: $input) {
    order { id displayFinancialStatus }
    userErrors { field message }
  }
}
"""

ORDER_UPDATE_MUTATION = """
mutation UpdateOrder($input: OrderInput!) {
  orderUpdate(input: $input) {
    order { id tags }
    userErrors { field message }
  }
}
"""

INVOICE_SEND_MUTATION = """
mutation OrderInvoiceSend($orderId: ID!, $email: EmailInput) {
  orderInvoiceSend(id: $orderId, email: $email) {
    order { id }
    userErrors { message }
  }
}
"""


def order_gid(order_id: str | int) -> str:
    """GraphQL global id for a numeric order id."""
    return _ORDER_GID.format(str(order_id).rsplit("/", 1)[-1])


class ShopifyClient:
    """Thin Shopify Admin API client bound to one store."""

    def __init__(
        self,
        settings: Settings,
        http: httpx.Client | None = None,
        token_cache: TokenCache | None = None,
    ):
        settings.require("shopify_store_domain")
        self._settings = settings
        self._http = http or httpx.Client(timeout=settings.http_timeout_seconds)
        self._base = (
            f"https://{settings.shopify_store_domain}/admin/api/{settings.shopify_api_version}"
        )
        if settings.shopify_admin_access_token:
            self._tokens = None
        else:
            settings.require("shopify_api_key", "shopify_api_secret")
            self._tokens = token_cache or TokenCache(self._fetch_access_token)

    # -- auth ---------------------------------------------------------------

    def _fetch_access_token(self) -> str:
        """Client-credentials grant against the store's OAuth endpoint."""
        url = f"https://{self._settings.shopify_store_domain}/admin/oauth/access_token"
        try:
            response = self._http.post(
                url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self._settings.shopify_api_key,
                    "client_secret": self._settings.shopify_api_secret,
                },
            )
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamError("Failed to generate admin token", details={"step": "token"}) from e
        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise UpstreamError(
                "Failed to generate admin token",
                details={"step": "token", "status": response.status_code},
                status=response.status_code,
            )
        return token

    def _access_token(self) -> str:
        if self._tokens is None:
            return self._settings.shopify_admin_access_token
        return self._tokens.get_or_refresh()

    def _headers(self) -> dict[str, str]:
        return {
            "X-Shopify-Access-Token": self._access_token(),
            "Content-Type": "application/json",
        }

    # -- transport ----------------------------------------------------------

    @retry_with_backoff()
    def _get(self, path: str) -> httpx.Response:
        response = self._http.get(f"{self._base}{path}", headers=self._headers())
        response.raise_for_status()
        return response

    def _send(self, method: str, path: str, body: Any) -> httpx.Response:
        response = self._http.request(
            method, f"{self._base}{path}", headers=self._headers(), json=body
        )
        response.raise_for_status()
        return response

    def rest(self, path: str, method: str = "GET", body: Any = None) -> dict[str, Any] | None:
        """Call a REST endpoint and return decoded JSON (None for an empty body).

        Raises:
            UpstreamError: on any transport error or non-2xx response
        """
        try:
            if method == "GET":
                response = self._get(path)
            else:
                response = self._send(method, path, body)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error("Shopify REST error %s %s -> %d", method, path, status)
            raise UpstreamError(
                f"Shopify REST failed: {status}",
                details={"path": path, "method": method},
                status=status,
            ) from e
        except httpx.HTTPError as e:
            logger.error("Shopify REST transport error %s %s: %s", method, path, e)
            raise UpstreamError(
                f"Shopify REST failed: {type(e).__name__}",
                details={"path": path, "method": method},
            ) from e
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            logger.error("Shopify REST %s %s returned a non-JSON body", method, path)
            raise UpstreamError(
                "Shopify REST returned a non-JSON body",
                details={"path": path, "method": method},
                status=response.status_code,
            ) from e

    def graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Execute a GraphQL Admin API request and return its ``data``."""
        result = self.rest(
            "/graphql.json", method="POST", body={"query": query, "variables": variables or {}}
        ) or {}
        if result.get("errors"):
            raise UpstreamError(
                "Shopify GraphQL failed", details={"errors": result["errors"]}
            )
        return result.get("data") or {}

    def _mutate(self, query: str, variables: dict[str, Any], field: str) -> dict[str, Any]:
        payload = self.graphql(query, variables).get(field) or {}
        errors = payload.get("userErrors") or []
        if errors:
            message = ", ".join(str(e.get("message")) for e in errors)
            logger.error("Shopify %s userErrors: %s", field, message)
            raise UpstreamError(message, details={"mutation": field, "userErrors": errors})
        return payload

    # -- orders -------------------------------------------------------------

    def find_order_by_number(self, order_number: str) -> dict[str, Any] | None:
        """Find an order by its display number (``#1001``); None if absent."""
        name = quote(f"#{order_number}", safe="")
        result = self.rest(
            f"/orders.json?status=any&limit=1&fields=id,name,tags,financial_status&name={name}"
        ) or {}
        orders = result.get("orders") or []
        return orders[0] if orders else None

    def get_order(self, order_id: str | int) -> dict[str, Any]:
        """Full REST record for an order."""
        result = self.rest(f"/orders/{order_id}.json") or {}
        order = result.get("order")
        if not order:
            raise UpstreamError("Order missing from response", details={"order_id": str(order_id)})
        return order

    def get_tags(self, order_id: str | int) -> str:
        """Raw comma-separated tag string for an order."""
        result = self.rest(f"/orders/{order_id}.json?fields=id,tags") or {}
        return str((result.get("order") or {}).get("tags") or "")

    def set_tags(self, order_id: str | int, tags: list[str]) -> None:
        """Replace the order's tag set."""
        self.rest(
            f"/orders/{order_id}.json",
            method="PUT",
            body={"order": {"id": int(order_id), "tags": ", ".join(tags)}},
        )

    def mark_paid(self, order_id: str | int) -> None:
        """Record a manual payment for the order's outstanding balance."""
        self._mutate(MARK_PAID_MUTATION, {"input": {"id": order_gid(order_id)}}, "orderMarkAsPaid")
        logger.info("Order %s marked as paid", order_id)

    def update_order(
        self,
        order_id: str | int,
        tags: list[str] | None = None,
        note_attributes: dict[str, str] | None = None,
    ) -> None:
        """Set tags and/or note attributes through ``orderUpdate``.

        Both fields replace the stored value, so callers pass the full set.
        """
        order_input: dict[str, Any] = {"id": order_gid(order_id)}
        if tags is not None:
            order_input["tags"] = tags
        if note_attributes is not None:
            order_input["customAttributes"] = [
                {"key": k, "value": v} for k, v in note_attributes.items()
            ]
        self._mutate(ORDER_UPDATE_MUTATION, {"input": order_input}, "orderUpdate")

    def send_invoice(self, order_id: str | int) -> None:
        """Send the order invoice email using the store's notification template."""
        self._mutate(
            INVOICE_SEND_MUTATION,
            {"orderId": order_gid(order_id), "email": None},
            "orderInvoiceSend",
        )
        logger.info("Invoice email sent for order %s", order_id)
