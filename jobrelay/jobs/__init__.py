"""Job state machine: records, store and processing deadlines."""

from .models import Job, JobStatus  # noqa: F401
from .store import JobStore  # noqa: F401
from .timeouts import TimeoutScheduler  # noqa: F401
