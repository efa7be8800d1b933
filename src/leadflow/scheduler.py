"""Time-triggered entry points of the pipeline.

Each cron entry only enqueues a job; the job queue does the work, so a
scheduled run gets the same retries, caps and journal as a manual one.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from .jobs import JobQueue
from .jobs import graph

logger = logging.getLogger(__name__)

# (job name, cron fields)
SCHEDULE: tuple[tuple[str, dict[str, str]], ...] = (
    (graph.QUERIES_GENERATE, {"hour": "8", "minute": "30"}),
    (graph.DISCOVERY_SCHEDULE, {"hour": "9", "minute": "0"}),
    (graph.DIGEST_SEND, {"hour": "18", "minute": "0"}),
    (graph.ANALYTICS_SYNC, {"minute": "0"}),
)


async def enqueue_scheduled(queue: JobQueue, name: str) -> None:
    """Called by APScheduler."""
    job_id = await queue.enqueue(name, {})
    logger.info("Scheduled job enqueued", extra={"job_name": name, "job_id": job_id})


def create_scheduler(queue: JobQueue, timezone: Optional[str] = None) -> AsyncIOScheduler:
    """Build a scheduler with one cron job per time-triggered entry point.

    Args:
        queue: Queue the jobs are enqueued on.
        timezone: Timezone of the cron expressions. Defaults to UTC.

    Returns:
        The scheduler, not started.
    """
    timezone = timezone or "UTC"
    scheduler = AsyncIOScheduler(timezone=timezone)
    for name, fields in SCHEDULE:
        scheduler.add_job(
            enqueue_scheduled,
            CronTrigger(timezone=timezone, **fields),
            args=[queue, name],
            id=name,
            name=name,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        logger.debug("Cron job added", extra={"job_name": name, **fields})
    return scheduler
