"""Webhook HTTP handlers — FastAPI routes for inbound deliveries.

Each handler:
1. Reads the raw body (needed for HMAC verification)
2. Verifies the provider signature
3. Runs the flow in the threadpool; a client disconnect does not stop it
4. Maps BridgeError subclasses to status codes via one exception handler

Security contract:
- Never return error details to the caller, only a fixed message
- Unhandled Shopify topics and ineligible orders get 200 with no body;
  anything else makes Shopify redeliver
- Log every delivery for the audit trail
"""

from __future__ import annotations

import asyncio
import hmac
import json
import logging
import queue
import time
from functools import lru_cache
from typing import AsyncIterator

from fastapi import Depends, FastAPI, Request
from fastapi.responses import PlainTextResponse, Response, StreamingResponse
from starlette.concurrency import run_in_threadpool

from orderbridge.config import Settings, get_settings
from orderbridge.errors import AuthenticationError, BridgeError, ValidationError
from orderbridge.events import broadcaster
from orderbridge.webhooks.fulfillment import FulfillmentShipper
from orderbridge.webhooks.idempotency import OrderLease
from orderbridge.webhooks.payloads import load_json_object
from orderbridge.webhooks.payment_links import PaymentLinkIssuer
from orderbridge.webhooks.reconciler import CallbackReconciler
from orderbridge.webhooks.verification import verify_shopify

logger = logging.getLogger(__name__)

# Webhook receive counter for monitoring (simple in-memory)
_webhook_counts: dict[str, int] = {}

_EVENT_POLL_SECONDS = 0.5
_KEEPALIVE_SECONDS = 15.0


def _log_webhook(provider: str, event_type: str, webhook_id: str, status: str) -> None:
    """Audit log for webhook activity."""
    _webhook_counts[provider] = _webhook_counts.get(provider, 0) + 1
    logger.info(
        "WEBHOOK_AUDIT provider=%s event=%s id=%s status=%s count=%d",
        provider,
        event_type,
        webhook_id,
        status,
        _webhook_counts[provider],
    )


def normalize_topic(topic: str) -> str:
    """``ORDERS_CREATE`` and ``orders/create`` both become ``orders/create``."""
    topic = topic.strip()
    if "/" in topic:
        return topic.lower()
    return topic.lower().replace("_", "/", 1)


@lru_cache(maxsize=4)
def _order_lease(redis_url: str, ttl_seconds: int) -> OrderLease:
    return OrderLease.from_url(redis_url, ttl_seconds)


def get_reconciler(settings: Settings = Depends(get_settings)) -> CallbackReconciler:
    lease = _order_lease(settings.redis_url, settings.order_lease_ttl_seconds)
    return CallbackReconciler(settings, lease=lease)


def get_link_issuer(settings: Settings = Depends(get_settings)) -> PaymentLinkIssuer:
    return PaymentLinkIssuer(settings)


def get_fulfillment_shipper(settings: Settings = Depends(get_settings)) -> FulfillmentShipper:
    return FulfillmentShipper(settings)


async def _bridge_error_handler(request: Request, exc: BridgeError) -> PlainTextResponse:
    logger.debug("%s on %s: %s %s", exc.error_code, request.url.path, exc.message, exc.details)
    return PlainTextResponse(exc.public_message, status_code=exc.status_code)


async def _handle_procard_callback(request: Request, reconciler: CallbackReconciler) -> Response:
    start = time.time()
    body = await request.body()
    reference = "unknown"
    try:
        payload = load_json_object(body)
        reference = str(payload.get("orderReference") or "unknown")
        result = await run_in_threadpool(reconciler.reconcile, payload)
    except BridgeError as e:
        _log_webhook("procard", "callback", reference, e.error_code.lower())
        raise

    _log_webhook("procard", "callback", reference, result.outcome.value)
    logger.debug("Callback processed in %.1fms: %s", (time.time() - start) * 1000, reference)
    return PlainTextResponse("OK", status_code=200)


async def _handle_shopify(
    request: Request,
    path_topic: str,
    settings: Settings,
    issuer: PaymentLinkIssuer,
    shipper: FulfillmentShipper,
) -> Response:
    body = await request.body()
    headers = {k.lower(): v for k, v in request.headers.items()}
    topic = normalize_topic(headers.get("x-shopify-topic") or path_topic)
    webhook_id = headers.get("x-shopify-webhook-id", "")

    try:
        signature = headers.get("x-shopify-hmac-sha256")
        if not verify_shopify(body, signature, settings.shopify_webhook_secret):
            raise AuthenticationError("Invalid Shopify signature", details={"topic": topic})

        if topic in ("orders/create", "orders/fulfilled"):
            payload = load_json_object(body)
            try:
                if topic == "orders/create":
                    status = (await run_in_threadpool(issuer.issue, payload)).outcome.value
                else:
                    status = (await run_in_threadpool(shipper.ship, payload)).value
            except ValidationError as e:
                logger.warning("Unusable %s payload acknowledged: %s", topic, e.message)
                status = "invalid"
        else:
            status = "ignored"
    except BridgeError as e:
        _log_webhook("shopify", topic or "unknown", webhook_id, e.error_code.lower())
        raise

    _log_webhook("shopify", topic, webhook_id, status)
    return Response(status_code=200)


async def event_stream(
    request: Request, sub_id: str, events: queue.Queue, limit: int | None = None
) -> AsyncIterator[str]:
    """Server-Sent Events frames for broadcast events.

    Sends a keepalive comment while idle and unsubscribes when the client
    goes away or ``limit`` events have been sent.
    """
    sent = 0
    idle = 0.0
    try:
        while limit is None or sent < limit:
            if await request.is_disconnected():
                break
            try:
                event = events.get_nowait()
            except queue.Empty:
                await asyncio.sleep(_EVENT_POLL_SECONDS)
                idle += _EVENT_POLL_SECONDS
                if idle >= _KEEPALIVE_SECONDS:
                    idle = 0.0
                    yield ": keepalive\n\n"
                continue
            idle = 0.0
            sent += 1
            name = event.get("type", "message")
            yield f"event: {name}\ndata: {json.dumps(event, default=str)}\n\n"
    finally:
        broadcaster.unsubscribe(sub_id)


def _check_events_token(request: Request, token: str) -> None:
    supplied = request.headers.get("authorization", "")
    if not hmac.compare_digest(supplied.encode("utf-8"), f"Bearer {token}".encode("utf-8")):
        raise AuthenticationError("Invalid events token")


def register_webhook_routes(app: FastAPI) -> None:
    """Register webhook, event stream, status and health routes on the FastAPI app."""
    app.add_exception_handler(BridgeError, _bridge_error_handler)

    @app.post("/webhooks/procard/callback")
    async def procard_callback(
        request: Request, reconciler: CallbackReconciler = Depends(get_reconciler)
    ):
        """Receive ProCard payment callbacks (signature-verified)."""
        return await _handle_procard_callback(request, reconciler)

    @app.post("/webhooks/shopify")
    async def shopify_webhook(
        request: Request,
        settings: Settings = Depends(get_settings),
        issuer: PaymentLinkIssuer = Depends(get_link_issuer),
        shipper: FulfillmentShipper = Depends(get_fulfillment_shipper),
    ):
        """Receive Shopify webhooks (signature-verified)."""
        return await _handle_shopify(request, "", settings, issuer, shipper)

    @app.post("/webhooks/shopify/{topic:path}")
    async def shopify_webhook_with_topic(
        request: Request,
        topic: str,
        settings: Settings = Depends(get_settings),
        issuer: PaymentLinkIssuer = Depends(get_link_issuer),
        shipper: FulfillmentShipper = Depends(get_fulfillment_shipper),
    ):
        """Receive Shopify webhooks with topic subpath."""
        return await _handle_shopify(request, topic, settings, issuer, shipper)

    @app.get("/webhooks/status")
    async def webhook_status():
        """Webhook receive counts."""
        return {"counts": dict(_webhook_counts)}

    @app.get("/webhooks/events")
    async def webhook_events(
        request: Request,
        limit: int | None = None,
        settings: Settings = Depends(get_settings),
    ):
        """Stream flow events to an operator holding EVENTS_TOKEN (404 when unset)."""
        if not settings.events_token:
            return Response(status_code=404)
        _check_events_token(request, settings.events_token)
        sub_id, events = broadcaster.subscribe()
        return StreamingResponse(
            event_stream(request, sub_id, events, limit), media_type="text/event-stream"
        )

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    logger.info("Webhook routes registered: /webhooks/{procard/callback,shopify,events}")
