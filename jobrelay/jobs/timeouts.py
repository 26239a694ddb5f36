"""Per-job processing deadlines.

One asyncio task per request id. Arming is decoupled from job creation:
a job may stay pending indefinitely and only starts its clock once the
worker confirms processing has begun.

Race contract:
- Re-arming cancels the previous timer first (never stacks)
- Once a timer's sleep has elapsed it drops out of the handle map, so a
  later disarm() cannot cancel it mid-flight; the store's status
  check-and-set is then the only arbiter between timer and callback
- Timeouts are never retried
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from jobrelay.jobs.models import Job
    from jobrelay.realtime.dispatcher import BroadcastDispatcher

logger = logging.getLogger(__name__)

ExpireCallback = Callable[[str], Awaitable["Job | None"]]


class TimeoutScheduler:
    """Arms and disarms a single cancellable deadline per job."""

    def __init__(self, dispatcher: BroadcastDispatcher, *, message: str) -> None:
        self._dispatcher = dispatcher
        self._message = message
        self._timers: dict[str, asyncio.Task] = {}
        self._firing: set[asyncio.Task] = set()

    @property
    def armed_count(self) -> int:
        return len(self._timers)

    def is_armed(self, request_id: str) -> bool:
        return request_id in self._timers

    def arm(self, request_id: str, duration: float, on_expire: ExpireCallback) -> None:
        """Start (or restart) the deadline for ``request_id``."""
        self.disarm(request_id)
        task = asyncio.get_running_loop().create_task(
            self._run(request_id, duration, on_expire),
            name=f"job-timeout-{request_id}",
        )
        self._timers[request_id] = task

    def disarm(self, request_id: str) -> bool:
        """Cancel the outstanding timer, if any. Returns True if one was cancelled."""
        task = self._timers.pop(request_id, None)
        if task is None:
            return False
        task.cancel()
        return True

    async def shutdown(self) -> None:
        tasks = list(self._timers.values()) + list(self._firing)
        self._timers.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, request_id: str, duration: float, on_expire: ExpireCallback) -> None:
        await asyncio.sleep(duration)

        task = asyncio.current_task()
        if self._timers.get(request_id) is task:
            del self._timers[request_id]
        self._firing.add(task)
        task.add_done_callback(self._firing.discard)

        try:
            job = await on_expire(request_id)
            if job is None:
                logger.debug("Deadline for %s fired after job left processing", request_id)
                return
            logger.warning("Request %s timed out", request_id)
            self._dispatcher.publish_final(
                request_id,
                {"type": "job_timeout", "request_id": request_id, "message": self._message},
            )
        except Exception:
            logger.exception("Timeout handling failed for %s", request_id)
