"""Job graph, queue, journal and retry helpers."""

from ..errors import NonRetriableError
from .graph import ALL_JOBS, EDGES, emits
from .journal import JobJournal
from .queue import JobContext, JobGraphError, JobQueue, JobSpec
from .retry import retry_with_backoff

__all__ = [
    "ALL_JOBS",
    "EDGES",
    "emits",
    "JobJournal",
    "JobContext",
    "JobGraphError",
    "JobQueue",
    "JobSpec",
    "NonRetriableError",
    "retry_with_backoff",
]
