"""In-process job queue with per-job concurrency caps and a durable journal.

Jobs are named units of work registered as ``JobSpec``. Enqueueing writes the
job to the journal and schedules it on the event loop. A job waits on its
name's semaphore when that name has a concurrency cap, runs its handler with
bounded retries, and records the outcome. Handlers split their work into
``JobContext.step`` calls: a completed step's result is checkpointed, so a
retried or recovered job resumes after its last completed step.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from ..config import ConfigError
from ..errors import NonRetriableError
from ..logging_utils import job_log_context
from ..models import JobRecord
from .journal import JobJournal
from .retry import retry_with_backoff

logger = logging.getLogger(__name__)


class JobGraphError(Exception):
    """Raised when a job is unknown or emitted along an undeclared edge."""

    pass


def _entity_ids(payload: Optional[dict[str, Any]]) -> dict[str, Any]:
    """Entity ids in a job payload, for the log context."""
    return {
        key: value
        for key, value in (payload or {}).items()
        if key in ("lead_id", "query_id", "campaign_id", "company_id") and value
    }


Handler = Callable[["JobContext"], Awaitable[Any]]
FailureHook = Callable[["JobContext", BaseException], Awaitable[None]]


@dataclass
class JobSpec:
    """Registration of one named job.

    Attributes:
        name: Job name, e.g. ``lead.enrich``.
        handler: Coroutine function receiving the ``JobContext``.
        concurrency: Maximum concurrent runs of this job in the process.
        retries: Retries after the first attempt.
        emits: Job names this job may enqueue.
        on_failure: Hook run once retries are exhausted.
    """

    name: str
    handler: Handler
    concurrency: Optional[int] = None
    retries: int = 2
    emits: frozenset[str] = field(default_factory=frozenset)
    on_failure: Optional[FailureHook] = None


class JobContext:
    """Per-run view of a job handed to its handler."""

    def __init__(self, queue: "JobQueue", spec: JobSpec, record: JobRecord) -> None:
        self._queue = queue
        self._spec = spec
        self.job_id = record.id
        self.name = record.name
        self.payload: dict[str, Any] = dict(record.payload or {})
        self.attempt = record.attempts or 0
        self._checkpoints: dict[str, Any] = dict(record.checkpoints or {})
        self.logger = logging.getLogger(f"leadflow.jobs.{spec.name}")

    def completed(self, step_name: str) -> bool:
        return step_name in self._checkpoints

    async def step(self, step_name: str, fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """Run a step once; later attempts get the stored result back.

        Step results are stored as JSON, so steps return ids, plain dicts
        and lists rather than ORM objects.
        """
        if step_name in self._checkpoints:
            self.logger.debug("Step already completed, skipping", extra={"step": step_name})
            return self._checkpoints[step_name]

        result = await fn(*args, **kwargs)
        self._checkpoints[step_name] = result
        await self._queue.journal.save_checkpoint(self.job_id, step_name, result)
        return result

    async def emit(self, name: str, payload: dict[str, Any]) -> str:
        """Enqueue a child job along one of this job's declared edges.

        Raises:
            JobGraphError: If ``name`` is not a declared edge of this job.
        """
        if name not in self._spec.emits:
            raise JobGraphError(f"{self._spec.name} may not emit {name}")
        return await self._queue.enqueue(name, payload, parent_id=self.job_id)


class JobQueue:
    """Schedules journaled jobs on the running event loop.

    Args:
        journal: Durable record of every job.
        retry_delay: Base backoff delay between attempts, in seconds.
        sleep: Awaitable sleep used between retries, injectable for tests.
    """

    def __init__(
        self,
        journal: JobJournal,
        retry_delay: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.journal = journal
        self._retry_delay = retry_delay
        self._sleep = sleep
        self._specs: dict[str, JobSpec] = {}
        self._semaphores: dict[str, asyncio.Semaphore] = {}
        self._tasks: set[asyncio.Task] = set()
        self.failed_jobs: list[str] = []

    def register(self, spec: JobSpec) -> None:
        self._specs[spec.name] = spec
        if spec.concurrency:
            self._semaphores[spec.name] = asyncio.Semaphore(spec.concurrency)

    @property
    def job_names(self) -> list[str]:
        return sorted(self._specs)

    def spec(self, name: str) -> JobSpec:
        try:
            return self._specs[name]
        except KeyError:
            raise JobGraphError(f"Unknown job {name!r}") from None

    async def enqueue(
        self,
        name: str,
        payload: Optional[dict[str, Any]] = None,
        parent_id: Optional[str] = None,
    ) -> str:
        """Journal a job and schedule it.

        Returns:
            The job id.
        """
        spec = self.spec(name)
        record = await self.journal.create(name, payload, parent_id=parent_id)
        self._schedule(spec, record)
        logger.debug(
            "Job enqueued",
            extra={"job_id": record.id, "job_name": name, "parent_id": parent_id},
        )
        return record.id

    def _schedule(self, spec: JobSpec, record: JobRecord) -> None:
        task = asyncio.create_task(self._run(spec, record), name=f"{spec.name}:{record.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, spec: JobSpec, record: JobRecord) -> None:
        semaphore = self._semaphores.get(spec.name)
        if semaphore is None:
            await self._execute(spec, record)
            return
        async with semaphore:
            await self._execute(spec, record)

    async def _execute(self, spec: JobSpec, record: JobRecord) -> None:
        with job_log_context(job_id=record.id, job_name=spec.name, **_entity_ids(record.payload)):
            await self._attempt_job(spec, record)

    async def _attempt_job(self, spec: JobSpec, record: JobRecord) -> None:
        ctx = JobContext(self, spec, record)

        async def attempt() -> Any:
            ctx.attempt = await self.journal.mark_running(record.id)
            return await spec.handler(ctx)

        try:
            result = await retry_with_backoff(
                attempt,
                max_retries=spec.retries,
                base_delay=self._retry_delay,
                give_up_on=(NonRetriableError, ConfigError),
                sleep=self._sleep,
                log=ctx.logger,
            )
        except Exception as e:
            ctx.logger.error(
                "Job failed: %s", e, exc_info=True, extra={"attempts": ctx.attempt}
            )
            await self.journal.mark_failed(record.id, f"{type(e).__name__}: {e}")
            self.failed_jobs.append(record.id)
            if spec.on_failure is not None:
                try:
                    await spec.on_failure(ctx, e)
                except Exception:
                    ctx.logger.exception("Failure hook raised")
            return

        if result is not None and not isinstance(result, dict):
            result = {"value": result}
        await self.journal.mark_succeeded(record.id, result)
        ctx.logger.info("Job succeeded", extra={"attempts": ctx.attempt})

    async def drain(self) -> None:
        """Wait until no job (including jobs emitted meanwhile) is running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def recover(self) -> int:
        """Re-schedule jobs left pending or running by a previous worker.

        Returns:
            Number of jobs re-scheduled.
        """
        count = 0
        for record in await self.journal.unfinished():
            spec = self._specs.get(record.name)
            if spec is None:
                logger.warning(
                    "Skipping unfinished job with unknown name",
                    extra={"job_id": record.id, "job_name": record.name},
                )
                continue
            self._schedule(spec, record)
            count += 1
        if count:
            logger.info("Recovered unfinished jobs", extra={"job_count": count})
        return count

    async def run(self, name: str, payload: Optional[dict[str, Any]] = None) -> JobRecord:
        """Enqueue a job, wait for it and everything it emitted, return its record."""
        job_id = await self.enqueue(name, payload)
        await self.drain()
        return await self.journal.get(job_id)
