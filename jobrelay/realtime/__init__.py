"""Realtime job events over WebSocket.

Subscribers register interest per request id; job events are pushed to
them as they happen.
"""

from .connection import Connection  # noqa: F401
from .dispatcher import BroadcastDispatcher  # noqa: F401
from .manager import ConnectionManager, router  # noqa: F401
from .registry import SubscriptionRegistry  # noqa: F401
