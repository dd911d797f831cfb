"""Order idempotency — sentinel tags on the order record.

A side effect that must not repeat (mark paid, ship, send link) is guarded
by a sentinel tag: check the tag before acting, add it after success. The
gate is read-decide-act-write and is not atomic. Two concurrent deliveries
can both act, and a failed tag write after a successful side effect means
the next delivery acts again. Collaborators are expected to tolerate that.

``OrderLease`` narrows the concurrent window with a Redis lease per order
when REDIS_URL is configured. Redis outages fail open (proceed unleased).
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from typing import Iterable, Iterator, Protocol

import redis

from orderbridge.errors import ConflictError
from orderbridge.webhooks.payloads import parse_tags

logger = logging.getLogger(__name__)

# Sentinel tags
TAG_SENT_TO_POSTOFFICE = "sent_to_postoffice"
TAG_PAID_PROCARD = "paid_procard"
TAG_LINK_SENT = "procard_link_sent"

_LEASE_PREFIX = "orderbridge:lease"


class TagBackend(Protocol):
    """Order platform capability the ledger needs."""

    def get_tags(self, order_id: str) -> str: ...

    def set_tags(self, order_id: str, tags: list[str]) -> None: ...


class IdempotencyStore(Protocol):
    """Keyed marker store: has this side effect already happened?"""

    def has_marker(self, order_id: str, marker: str) -> bool: ...

    def add_marker(self, order_id: str, *markers: str) -> list[str]: ...


class OrderTagLedger:
    """IdempotencyStore backed by the order's own tag set."""

    def __init__(self, backend: TagBackend):
        self._backend = backend

    def read_tags(self, order_id: str) -> list[str]:
        """Current tags, distinct, in stored order."""
        return parse_tags(self._backend.get_tags(order_id))

    def write_tags(self, order_id: str, tags: Iterable[str]) -> None:
        self._backend.set_tags(order_id, parse_tags(list(tags)))

    def add_tags(self, order_id: str, new_tags: Iterable[str]) -> list[str]:
        """Union ``new_tags`` into the stored set and return the result.

        Existing order is kept and new tags are appended. Skips the write when
        nothing changes.
        """
        current = self.read_tags(order_id)
        merged = parse_tags(current + list(new_tags))
        if merged != current:
            self.write_tags(order_id, merged)
            logger.info("Order %s tags now: %s", order_id, ", ".join(merged))
        return merged

    def has_marker(self, order_id: str, marker: str) -> bool:
        return marker in self.read_tags(order_id)

    def add_marker(self, order_id: str, *markers: str) -> list[str]:
        return self.add_tags(order_id, markers)


class OrderLease:
    """Per-order mutual exclusion via Redis SET NX EX.

    A lease that is not released (crash) expires after ``ttl_seconds``.
    """

    def __init__(self, client: redis.Redis | None, ttl_seconds: int = 60):
        self._redis = client
        self._ttl = ttl_seconds

    @classmethod
    def from_url(cls, redis_url: str, ttl_seconds: int = 60) -> OrderLease:
        """Lease backed by ``redis_url``; an empty URL disables leasing."""
        if not redis_url:
            return cls(None, ttl_seconds)
        return cls(redis.from_url(redis_url, decode_responses=True), ttl_seconds)

    @contextmanager
    def hold(self, order_id: str) -> Iterator[None]:
        """Hold the lease for ``order_id`` for the duration of the block.

        Raises:
            ConflictError: if another delivery holds the lease
        """
        if self._redis is None:
            yield
            return

        key = f"{_LEASE_PREFIX}:{order_id}"
        owner = uuid.uuid4().hex
        available = True
        try:
            # SET NX returns None when the key already exists
            acquired = self._redis.set(key, owner, nx=True, ex=self._ttl)
        except redis.RedisError:
            logger.warning(
                "Redis unavailable for order lease, proceeding unleased: %s",
                order_id,
                exc_info=True,
            )
            available = acquired = False

        if not available:
            yield
            return
        if not acquired:
            logger.info("Order %s lease held by another delivery", order_id)
            raise ConflictError("Order lease held", details={"order_id": order_id})

        try:
            yield
        finally:
            self._release(key, owner)

    def _release(self, key: str, owner: str) -> None:
        try:
            if self._redis.get(key) == owner:
                self._redis.delete(key)
        except redis.RedisError:
            logger.warning("Failed to release order lease %s", key, exc_info=True)
