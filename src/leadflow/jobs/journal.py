"""Durable job journal backed by the ``jobs`` table."""

import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import JobRecord, JobStatus, utcnow
from ..models.database import get_db_session

logger = logging.getLogger(__name__)

MAX_ERROR_CHARS = 2000


class JobJournal:
    """Records every job, its attempts, checkpoints and outcome.

    Args:
        session_factory: Async session factory bound to the pipeline database.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    def _session(self):
        return get_db_session(self._session_factory)

    async def create(
        self,
        name: str,
        payload: Optional[dict[str, Any]] = None,
        parent_id: Optional[str] = None,
    ) -> JobRecord:
        async with self._session() as session:
            record = JobRecord(
                name=name,
                payload=dict(payload or {}),
                status=JobStatus.PENDING,
                attempts=0,
                checkpoints={},
                parent_id=parent_id,
            )
            session.add(record)
        return record

    async def get(self, job_id: str) -> Optional[JobRecord]:
        async with self._session() as session:
            return await session.get(JobRecord, job_id)

    async def mark_running(self, job_id: str) -> int:
        """Start a new attempt and return its 1-based number."""
        async with self._session() as session:
            record = await session.get(JobRecord, job_id)
            record.status = JobStatus.RUNNING
            record.attempts = (record.attempts or 0) + 1
            record.started_at = utcnow()
            return record.attempts

    async def save_checkpoint(self, job_id: str, step: str, result: Any) -> None:
        """Persist the result of a completed step."""
        async with self._session() as session:
            record = await session.get(JobRecord, job_id)
            # Reassign so the JSON column registers the change
            checkpoints = dict(record.checkpoints or {})
            checkpoints[step] = result
            record.checkpoints = checkpoints

    async def mark_succeeded(self, job_id: str, result: Optional[dict[str, Any]]) -> None:
        async with self._session() as session:
            record = await session.get(JobRecord, job_id)
            record.status = JobStatus.SUCCEEDED
            record.result = result
            record.last_error = None
            record.finished_at = utcnow()

    async def mark_failed(self, job_id: str, error: str) -> None:
        async with self._session() as session:
            record = await session.get(JobRecord, job_id)
            record.status = JobStatus.FAILED
            record.last_error = error[:MAX_ERROR_CHARS]
            record.finished_at = utcnow()

    async def unfinished(self) -> list[JobRecord]:
        """Jobs that were pending or mid-run when the last worker stopped."""
        async with self._session() as session:
            result = await session.execute(
                select(JobRecord)
                .where(JobRecord.status.in_([JobStatus.PENDING, JobStatus.RUNNING]))
                .order_by(JobRecord.created_at)
            )
            return list(result.scalars().all())

    async def children(self, job_id: str) -> list[JobRecord]:
        """Jobs emitted by the given job."""
        async with self._session() as session:
            result = await session.execute(
                select(JobRecord)
                .where(JobRecord.parent_id == job_id)
                .order_by(JobRecord.created_at)
            )
            return list(result.scalars().all())
