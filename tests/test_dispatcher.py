"""Tests for event delivery and the per-connection outbound queue."""

from __future__ import annotations

import asyncio
import json

import pytest

from jobrelay.realtime.connection import Connection
from jobrelay.realtime.dispatcher import BroadcastDispatcher
from jobrelay.realtime.registry import SubscriptionRegistry

EVENT = {
    "type": "job_completed",
    "request_id": "B",
    "status": "completed",
    "response": "R",
    "response_markdown": True,
}


@pytest.fixture
def registry() -> SubscriptionRegistry:
    return SubscriptionRegistry()


@pytest.fixture
def dispatcher(registry) -> BroadcastDispatcher:
    return BroadcastDispatcher(registry)


class TestPublish:
    def test_delivers_only_to_subscribers(self, registry, dispatcher, make_connection):
        on_a, on_b = make_connection("a"), make_connection("b")
        for conn in (on_a, on_b):
            registry.register(conn)
        registry.subscribe(on_a, "A")
        registry.subscribe(on_b, "B")

        delivered = dispatcher.publish("B", EVENT)

        assert delivered == 1
        assert on_b.messages == [EVENT]
        assert on_a.messages == []
        assert dispatcher.fallback_broadcasts == 0

    def test_falls_back_to_all_without_subscribers(self, registry, dispatcher, make_connection):
        idle, busy = make_connection("idle"), make_connection("busy")
        for conn in (idle, busy):
            registry.register(conn)
        registry.subscribe(busy, "A")

        delivered = dispatcher.publish("B", EVENT)

        assert delivered == 2
        assert idle.messages == [EVENT]
        assert busy.messages == [EVENT]
        assert dispatcher.fallback_broadcasts == 1

    def test_skips_closed_connections(self, registry, dispatcher, make_connection):
        live, dead = make_connection("live"), make_connection("dead", open=False)
        for conn in (live, dead):
            registry.register(conn)
            registry.subscribe(conn, "B")

        assert dispatcher.publish("B", EVENT) == 1
        assert live.messages == [EVENT]
        # stale connections are pruned by their own close, not here
        assert dead in registry.subscribers_of("B")

    def test_no_connections_at_all(self, dispatcher):
        assert dispatcher.publish("B", EVENT) == 0
        assert dispatcher.events_published == 1

    def test_publish_final_releases_subscriptions(self, registry, dispatcher, make_connection):
        conn = make_connection()
        registry.register(conn)
        registry.subscribe(conn, "B")

        dispatcher.publish_final("B", EVENT)

        assert conn.messages == [EVENT]
        assert registry.subscribers_of("B") == set()
        assert registry.subscriptions_of(conn) == set()

    def test_send_targets_one_connection(self, registry, dispatcher, make_connection):
        a, b = make_connection("a"), make_connection("b")
        for conn in (a, b):
            registry.register(conn)

        assert dispatcher.send(a, {"type": "welcome", "message": "connected"}) is True
        assert a.messages == [{"type": "welcome", "message": "connected"}]
        assert b.messages == []


class _FakeWebSocket:
    def __init__(self, *, fail: bool = False) -> None:
        self.sent: list[str] = []
        self.fail = fail

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)


class TestConnection:
    @pytest.mark.asyncio
    async def test_pump_writes_in_order(self):
        ws = _FakeWebSocket()
        conn = Connection(ws, queue_size=10)
        writer = asyncio.create_task(conn.pump())

        conn.send(json.dumps({"n": 1}))
        conn.send(json.dumps({"n": 2}))
        await asyncio.sleep(0.01)
        writer.cancel()

        assert [json.loads(m)["n"] for m in ws.sent] == [1, 2]

    @pytest.mark.asyncio
    async def test_full_queue_drops_oldest(self):
        conn = Connection(_FakeWebSocket(), queue_size=2)

        for n in range(3):
            assert conn.send(str(n)) is True

        assert conn.dropped == 1
        assert [conn._queue.get_nowait() for _ in range(2)] == ["1", "2"]

    @pytest.mark.asyncio
    async def test_write_failure_closes_connection(self):
        conn = Connection(_FakeWebSocket(fail=True))
        writer = asyncio.create_task(conn.pump())

        conn.send("x")
        await asyncio.sleep(0.01)

        assert writer.done()
        assert conn.is_open is False
        assert conn.send("y") is False

    def test_closed_connection_refuses_messages(self):
        conn = Connection(_FakeWebSocket())
        conn.close()
        assert conn.send("x") is False
