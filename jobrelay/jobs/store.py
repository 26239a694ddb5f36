"""In-memory job store: sole owner and mutator of job records.

Concurrency contract:
- Every read-modify-write runs under one asyncio.Lock, so concurrent
  callbacks for the same request id observe the terminal-state guard as if
  serialized
- Terminal jobs (completed, timed_out) are never mutated again
- Leaving ``processing`` by any path disarms the job's timer inside the
  same locked section
- Readers get copies; stored records never escape the store
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import uuid
from typing import TYPE_CHECKING, Any

from jobrelay.errors import AlreadyTerminalError, NotFoundError, ValidationError
from jobrelay.jobs.models import Job, JobStatus, utcnow

if TYPE_CHECKING:
    from jobrelay.jobs.timeouts import TimeoutScheduler

logger = logging.getLogger(__name__)


class JobStore:
    """Holds job records and applies status transitions."""

    def __init__(self, scheduler: TimeoutScheduler, *, timeout_seconds: float) -> None:
        self._scheduler = scheduler
        self._timeout_seconds = timeout_seconds
        self._jobs: dict[str, Job] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._jobs

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, request_id: str) -> Job:
        """Return a snapshot of the job or raise NotFoundError."""
        job = self._jobs.get(request_id)
        if job is None:
            raise NotFoundError()
        return dataclasses.replace(job)

    def peek(self, request_id: str) -> Job | None:
        job = self._jobs.get(request_id)
        return dataclasses.replace(job) if job is not None else None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def create(self, request_id: str | None = None) -> Job:
        """Insert a new pending job. No deadline is armed yet."""
        async with self._lock:
            if request_id is None:
                request_id = uuid.uuid4().hex
            elif request_id in self._jobs:
                raise ValidationError("request_id already exists")

            now = utcnow()
            job = Job(request_id=request_id, created_at=now, updated_at=now)
            self._jobs[request_id] = job
            logger.info("Job created: %s", request_id)
            return dataclasses.replace(job)

    async def mark_processing(self, request_id: str) -> Job:
        """Move a pending job to processing and arm its deadline.

        Raises:
            NotFoundError: unknown request id
            AlreadyTerminalError: job already completed or timed out
        """
        async with self._lock:
            job = self._jobs.get(request_id)
            if job is None:
                raise NotFoundError()
            if job.is_terminal:
                raise AlreadyTerminalError(request_id)
            if job.status is JobStatus.PROCESSING:
                return dataclasses.replace(job)

            job.status = JobStatus.PROCESSING
            job.updated_at = utcnow()
            self._scheduler.arm(request_id, self._timeout_seconds, self.expire)
            logger.info("Job processing: %s (deadline %.0fs)", request_id, self._timeout_seconds)
            return dataclasses.replace(job)

    async def complete(
        self,
        request_id: str,
        response: Any = None,
        *,
        status: JobStatus = JobStatus.COMPLETED,
        analysis: Any = None,
        error: Any = None,
    ) -> tuple[Job, bool]:
        """Apply a worker's final report.

        Unknown ids are recorded on the fly: workers may report jobs whose
        id they generated themselves.

        Returns:
            (snapshot, applied). ``applied`` is False when the job was
            already terminal, in which case nothing changed.
        """
        if not status.is_terminal:
            raise ValidationError("status must be terminal")

        async with self._lock:
            job = self._jobs.get(request_id)
            if job is not None and job.is_terminal:
                return dataclasses.replace(job), False

            self._scheduler.disarm(request_id)
            now = utcnow()
            if job is None:
                job = Job(request_id=request_id, created_at=now)
                self._jobs[request_id] = job

            job.status = status
            job.response = response
            job.analysis = analysis
            job.error = error
            job.updated_at = now
            logger.info("Job %s: %s", status.value, request_id)
            return dataclasses.replace(job), True

    async def expire(self, request_id: str) -> Job | None:
        """Deadline check-and-set: processing -> timed_out.

        Returns the timed-out snapshot, or None when the job already left
        ``processing`` (the other side of the race won).
        """
        async with self._lock:
            job = self._jobs.get(request_id)
            if job is None or job.status is not JobStatus.PROCESSING:
                return None
            self._scheduler.disarm(request_id)
            job.status = JobStatus.TIMED_OUT
            job.updated_at = utcnow()
            return dataclasses.replace(job)
