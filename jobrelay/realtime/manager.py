"""WebSocket connection lifecycle and the ``/ws`` route.

Protocol (JSON text frames):
- server -> client: welcome, job_state, job_completed, job_timeout
- client -> server: subscribe{request_id}, identify{user_id}

Malformed client messages are dropped silently; they never close the
connection.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, WebSocket

from jobrelay.realtime.connection import Connection

if TYPE_CHECKING:
    from jobrelay.jobs.store import JobStore
    from jobrelay.realtime.dispatcher import BroadcastDispatcher
    from jobrelay.realtime.registry import SubscriptionRegistry

logger = logging.getLogger(__name__)

router = APIRouter()

WELCOME = {"type": "welcome", "message": "connected"}


class ConnectionManager:
    """Drives the registry from connect / message / close events."""

    def __init__(
        self,
        registry: SubscriptionRegistry,
        dispatcher: BroadcastDispatcher,
        store: JobStore,
        *,
        queue_size: int = 500,
    ) -> None:
        self._registry = registry
        self._dispatcher = dispatcher
        self._store = store
        self._queue_size = queue_size

    async def serve(self, websocket: WebSocket) -> None:
        await websocket.accept()
        connection = Connection(websocket, queue_size=self._queue_size)
        self._registry.register(connection)
        writer = asyncio.create_task(connection.pump(), name=f"ws-writer-{connection.id}")
        self._dispatcher.send(connection, WELCOME)

        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                self.handle_message(connection, _frame_text(message))
        finally:
            self._registry.unsubscribe_all(connection)
            connection.close()
            writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await writer

    def handle_message(self, connection: Connection, raw: str | None) -> None:
        payload = _parse(raw)
        if payload is None:
            logger.debug("Dropping malformed message from %s", connection.id)
            return

        kind = payload.get("type")
        if kind == "subscribe":
            request_id = payload.get("request_id")
            if not _is_id(request_id):
                logger.debug("Dropping subscribe without request_id from %s", connection.id)
                return
            self.subscribe(connection, request_id)
        elif kind == "identify":
            user_id = payload.get("user_id")
            if not _is_id(user_id):
                return
            connection.user_id = user_id
            logger.debug("Connection %s identified as %s", connection.id, user_id)
        else:
            logger.debug("Dropping unknown message type %r from %s", kind, connection.id)

    def subscribe(self, connection: Connection, request_id: str) -> None:
        """Add the edge, then replay the job's current state if it is known."""
        self._registry.subscribe(connection, request_id)
        job = self._store.peek(request_id)
        if job is not None:
            self._dispatcher.send(connection, {"type": "job_state", **job.to_api()})


@router.websocket("/ws")
async def ws_jobs(websocket: WebSocket):
    """Realtime job events."""
    await websocket.app.state.connections.serve(websocket)


def _frame_text(message: dict[str, Any]) -> str | None:
    text = message.get("text")
    if text is not None:
        return text
    data = message.get("bytes")
    if data is None:
        return None
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return None


def _parse(raw: str | None) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None
    return payload if isinstance(payload, dict) else None


def _is_id(value: Any) -> bool:
    return isinstance(value, str) and bool(value)
