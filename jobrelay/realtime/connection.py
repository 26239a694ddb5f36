"""A live WebSocket peer with a bounded outbound queue.

Sends never block the caller: messages go onto a per-connection queue that
a writer task drains. A full queue drops its oldest message to make room,
so a slow or dead peer only loses its own backlog.
"""

from __future__ import annotations

import asyncio
import logging
import uuid

from starlette.websockets import WebSocket

logger = logging.getLogger(__name__)


class Connection:
    """One connected client."""

    def __init__(self, websocket: WebSocket, *, queue_size: int = 500) -> None:
        self.id = uuid.uuid4().hex[:8]
        self.websocket = websocket
        self.user_id: str | None = None
        self.dropped = 0
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self._open = True

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, user_id={self.user_id!r}, open={self._open})"

    @property
    def is_open(self) -> bool:
        return self._open

    def send(self, message: str) -> bool:
        """Queue a serialized message. Returns False if the connection is closed."""
        if not self._open:
            return False
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            try:
                self._queue.get_nowait()
                self._queue.put_nowait(message)
            except (asyncio.QueueEmpty, asyncio.QueueFull):
                pass
            self.dropped += 1
        return True

    def close(self) -> None:
        self._open = False

    async def pump(self) -> None:
        """Writer loop: drain the queue onto the socket until it fails or is cancelled."""
        try:
            while True:
                message = await self._queue.get()
                await self.websocket.send_text(message)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.debug("Connection %s stopped writing: %s", self.id, exc)
            self._open = False
