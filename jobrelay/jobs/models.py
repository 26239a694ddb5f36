"""Job record and status enum."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):  # noqa: UP042
    """Lifecycle states of a job.

    Transitions only move forward along
    ``pending -> processing -> {completed | timed_out}``.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.TIMED_OUT)


@dataclass(slots=True)
class Job:
    """A tracked unit of external asynchronous work.

    Attributes
    ----------
    request_id : str
        Opaque unique identifier, caller- or server-generated.
    status : JobStatus
        Current lifecycle state.
    response : Any
        Opaque payload reported by the worker, ``None`` until completed.
    analysis : Any
        Optional secondary payload reported by the worker.
    error : Any
        Optional error detail reported by the worker.
    created_at : datetime
        Creation time (UTC).
    updated_at : datetime
        Time of the last transition (UTC).
    """

    request_id: str
    status: JobStatus = JobStatus.PENDING
    response: Any = None
    analysis: Any = None
    error: Any = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_api(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "status": self.status.value,
            "response": self.response,
            "analysis": self.analysis,
            "error": self.error,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
