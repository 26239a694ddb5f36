"""Subscription registry: request id <-> connection edges.

Two mirrored indexes so either side can be cleaned up without a scan:
- ``_subscribers``: request_id -> set of connections
- ``_subscriptions``: connection -> set of request ids

Invariant: ``c in _subscribers[r]`` iff ``r in _subscriptions[c]``.
Every registered connection has an entry in ``_subscriptions``, possibly
empty. Empty subscriber sets are removed.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from jobrelay.realtime.connection import Connection

logger = logging.getLogger(__name__)


class SubscriptionRegistry:
    def __init__(self) -> None:
        self._subscribers: dict[str, set[Connection]] = {}
        self._subscriptions: dict[Connection, set[str]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._subscriptions)

    def register(self, connection: Connection) -> None:
        with self._lock:
            self._subscriptions.setdefault(connection, set())
            total = len(self._subscriptions)
        logger.info("Connection registered: %s (total: %d)", connection.id, total)

    def subscribe(self, connection: Connection, request_id: str) -> bool:
        """Add the edge. Returns False if it already existed."""
        with self._lock:
            request_ids = self._subscriptions.setdefault(connection, set())
            if request_id in request_ids:
                return False
            request_ids.add(request_id)
            self._subscribers.setdefault(request_id, set()).add(connection)
        logger.debug("Connection %s subscribed to %s", connection.id, request_id)
        return True

    def unsubscribe_all(self, connection: Connection) -> set[str]:
        """Drop the connection and every edge touching it."""
        with self._lock:
            request_ids = self._subscriptions.pop(connection, set())
            for request_id in request_ids:
                self._discard_subscriber(request_id, connection)
            total = len(self._subscriptions)
        logger.info("Connection unregistered: %s (total: %d)", connection.id, total)
        return request_ids

    def release(self, request_id: str) -> int:
        """Drop every edge for ``request_id``. Returns how many were removed."""
        with self._lock:
            connections = self._subscribers.pop(request_id, set())
            for connection in connections:
                request_ids = self._subscriptions.get(connection)
                if request_ids is not None:
                    request_ids.discard(request_id)
        return len(connections)

    def subscribers_of(self, request_id: str) -> set[Connection]:
        with self._lock:
            return set(self._subscribers.get(request_id, ()))

    def subscriptions_of(self, connection: Connection) -> set[str]:
        with self._lock:
            return set(self._subscriptions.get(connection, ()))

    def connections(self) -> list[Connection]:
        with self._lock:
            return list(self._subscriptions)

    def _discard_subscriber(self, request_id: str, connection: Connection) -> None:
        connections = self._subscribers.get(request_id)
        if connections is None:
            return
        connections.discard(connection)
        if not connections:
            del self._subscribers[request_id]
