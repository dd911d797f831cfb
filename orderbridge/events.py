"""Event broadcasting for operational monitoring.

Flows report outcomes (payment link issued or failed, shipment submitted,
callback reconciled) here. Subscribers get their own bounded queue; a slow
subscriber loses its oldest events rather than blocking a webhook.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
import uuid
from typing import Any

logger = logging.getLogger(__name__)

_QUEUE_SIZE = 500


class EventBroadcaster:
    """Singleton that fans out events to all subscribers."""

    _instance: EventBroadcaster | None = None

    def __new__(cls) -> EventBroadcaster:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._subscribers: dict[str, queue.Queue] = {}
            cls._instance._lock = threading.Lock()
        return cls._instance

    def subscribe(self) -> tuple[str, queue.Queue]:
        """Register a new subscriber. Returns (subscriber_id, queue)."""
        sub_id = str(uuid.uuid4())[:8]
        q: queue.Queue = queue.Queue(maxsize=_QUEUE_SIZE)
        with self._lock:
            self._subscribers[sub_id] = q
        logger.info("Event subscriber connected: %s (total: %d)", sub_id, len(self._subscribers))
        return sub_id, q

    def unsubscribe(self, sub_id: str) -> None:
        """Remove a subscriber."""
        with self._lock:
            self._subscribers.pop(sub_id, None)
        logger.info("Event subscriber disconnected: %s (total: %d)", sub_id, len(self._subscribers))

    def broadcast(self, event: dict[str, Any]) -> None:
        """Send an event to all subscribers (non-blocking)."""
        event["timestamp"] = time.time()
        logger.debug("Event %s", event.get("type"))
        with self._lock:
            subscribers = list(self._subscribers.values())
        for q in subscribers:
            try:
                q.put_nowait(event)
            except queue.Full:
                # Drop oldest event to make room
                try:
                    q.get_nowait()
                    q.put_nowait(event)
                except (queue.Empty, queue.Full):
                    pass


broadcaster = EventBroadcaster()
