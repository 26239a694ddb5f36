"""Tests for per-job processing deadlines."""

from __future__ import annotations

import asyncio

import pytest

from jobrelay.jobs.models import JobStatus
from jobrelay.jobs.store import JobStore
from jobrelay.jobs.timeouts import TimeoutScheduler
from jobrelay.realtime.dispatcher import BroadcastDispatcher
from jobrelay.realtime.registry import SubscriptionRegistry

MESSAGE = "Processing exceeded the time limit"


@pytest.fixture
def registry() -> SubscriptionRegistry:
    return SubscriptionRegistry()


@pytest.fixture
def dispatcher(registry) -> BroadcastDispatcher:
    return BroadcastDispatcher(registry)


@pytest.fixture
def scheduler(dispatcher) -> TimeoutScheduler:
    return TimeoutScheduler(dispatcher, message=MESSAGE)


class TestArmDisarm:
    @pytest.mark.asyncio
    async def test_fires_after_duration(self, scheduler):
        fired: list[str] = []

        async def on_expire(request_id):
            fired.append(request_id)
            return None

        scheduler.arm("req-1", 0.01, on_expire)
        assert scheduler.is_armed("req-1")

        await asyncio.sleep(0.05)
        assert fired == ["req-1"]
        assert not scheduler.is_armed("req-1")

    @pytest.mark.asyncio
    async def test_rearm_replaces_previous_timer(self, scheduler):
        fired: list[str] = []

        async def on_expire(request_id):
            fired.append(request_id)
            return None

        scheduler.arm("req-1", 0.02, on_expire)
        scheduler.arm("req-1", 0.02, on_expire)
        assert scheduler.armed_count == 1

        await asyncio.sleep(0.08)
        assert fired == ["req-1"]

    @pytest.mark.asyncio
    async def test_disarm_prevents_firing(self, scheduler):
        fired: list[str] = []

        async def on_expire(request_id):
            fired.append(request_id)
            return None

        scheduler.arm("req-1", 0.01, on_expire)
        assert scheduler.disarm("req-1") is True

        await asyncio.sleep(0.03)
        assert fired == []

    def test_disarm_without_timer_is_safe(self, scheduler):
        assert scheduler.disarm("nothing") is False

    @pytest.mark.asyncio
    async def test_shutdown_cancels_everything(self, scheduler):
        async def on_expire(request_id):
            raise AssertionError("should not fire")

        scheduler.arm("a", 10, on_expire)
        scheduler.arm("b", 10, on_expire)

        await scheduler.shutdown()
        assert scheduler.armed_count == 0

    @pytest.mark.asyncio
    async def test_expire_failure_is_logged_not_raised(self, scheduler, caplog):
        async def on_expire(request_id):
            raise RuntimeError("boom")

        scheduler.arm("req-1", 0.0, on_expire)
        await asyncio.sleep(0.02)
        assert "Timeout handling failed for req-1" in caplog.text


class TestWithStore:
    @pytest.mark.asyncio
    async def test_timeout_transitions_and_notifies(self, scheduler, registry, make_connection):
        store = JobStore(scheduler, timeout_seconds=0.01)
        subscriber = make_connection("sub")
        registry.register(subscriber)
        registry.subscribe(subscriber, "req-1")

        await store.create("req-1")
        await store.mark_processing("req-1")
        await asyncio.sleep(0.05)

        assert store.get("req-1").status is JobStatus.TIMED_OUT
        assert subscriber.messages == [
            {"type": "job_timeout", "request_id": "req-1", "message": MESSAGE}
        ]
        # terminal event releases the subscription edges
        assert registry.subscribers_of("req-1") == set()

    @pytest.mark.asyncio
    async def test_completed_job_never_times_out(self, scheduler, registry, make_connection):
        store = JobStore(scheduler, timeout_seconds=0.01)
        subscriber = make_connection("sub")
        registry.register(subscriber)
        registry.subscribe(subscriber, "req-1")

        await store.create("req-1")
        await store.mark_processing("req-1")
        await store.complete("req-1", "R")
        await asyncio.sleep(0.05)

        assert store.get("req-1").status is JobStatus.COMPLETED
        assert subscriber.messages == []

    @pytest.mark.asyncio
    async def test_fired_timer_and_callback_race(self, scheduler, registry, make_connection):
        """Timer already past its sleep when the callback lands: the store decides."""
        store = JobStore(scheduler, timeout_seconds=0.0)
        subscriber = make_connection("sub")
        registry.register(subscriber)
        registry.subscribe(subscriber, "req-1")

        await store.create("req-1")
        await store.mark_processing("req-1")

        # hold the store so the fired timer queues on the lock
        await store._lock.acquire()
        await asyncio.sleep(0.01)
        assert not scheduler.is_armed("req-1")
        store._lock.release()

        job, applied = await store.complete("req-1", "R")
        await asyncio.sleep(0.01)

        assert applied is False
        assert job.status is JobStatus.TIMED_OUT
        assert store.get("req-1").response is None
        assert [m["type"] for m in subscriber.messages] == ["job_timeout"]
