"""Broadcast dispatcher: delivers job events to subscribers.

Delivery rules:
- Events for a request id go to that request's subscribers only
- With no subscribers, the event falls back to every open connection so a
  client that connected but has not subscribed yet still sees it. Each
  fallback is counted and logged, since it can reach unrelated clients
- Closed connections are skipped, not pruned; they leave the registry on
  their own close event
- Enqueueing never blocks (see ``Connection.send``)
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from jobrelay.realtime.connection import Connection
    from jobrelay.realtime.registry import SubscriptionRegistry

logger = logging.getLogger(__name__)


class BroadcastDispatcher:
    def __init__(self, registry: SubscriptionRegistry) -> None:
        self._registry = registry
        self.fallback_broadcasts = 0
        self.events_published = 0

    def publish(self, request_id: str, event: dict[str, Any]) -> int:
        """Deliver ``event`` for ``request_id``. Returns the number of recipients."""
        message = json.dumps(event, default=str)
        self.events_published += 1

        targets = self._registry.subscribers_of(request_id)
        if not targets:
            targets = self._registry.connections()
            self.fallback_broadcasts += 1
            logger.info(
                "No subscribers for %s; fallback %s to %d connection(s) (fallbacks: %d)",
                request_id, event.get("type"), len(targets), self.fallback_broadcasts,
            )

        delivered = 0
        for connection in targets:
            if connection.send(message):
                delivered += 1
        return delivered

    def publish_final(self, request_id: str, event: dict[str, Any]) -> int:
        """Publish a terminal event and release the request's subscriptions."""
        delivered = self.publish(request_id, event)
        released = self._registry.release(request_id)
        logger.debug("Released %d subscription(s) for %s", released, request_id)
        return delivered

    def send(self, connection: Connection, event: dict[str, Any]) -> bool:
        """Direct message to a single connection (welcome, snapshots)."""
        return connection.send(json.dumps(event, default=str))
