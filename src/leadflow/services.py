"""Process wiring: builds every collaborator once and registers the job graph.

Nothing in the pipeline reaches for a global client. ``build_services``
constructs the store, the AI contracts, the collaborator clients and the
stages, then registers one handler per job name on the queue. Tests pass
fakes for any collaborator.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .ai import CampaignDecider, EmailExtractor, PersonaDeriver, QueryWriter, SequenceWriter
from .config import Config, config
from .jobs import JobContext, JobJournal, JobQueue, JobSpec, emits
from .jobs import graph
from .pipeline import (
    AnalyticsSync,
    CampaignCreator,
    CampaignRouter,
    DigestComposer,
    DiscoveryRunner,
    EnrichmentWorker,
    LeadActions,
    QueryGenerator,
    WebsetPoller,
)
from .store import PipelineStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a worker process needs, built once."""

    settings: Config
    store: PipelineStore
    queue: JobQueue
    query_generator: QueryGenerator
    discovery: DiscoveryRunner
    enrichment: EnrichmentWorker
    router: CampaignRouter
    campaign_creator: CampaignCreator
    analytics: AnalyticsSync
    digest: DigestComposer
    actions: LeadActions


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Optional[Config] = None,
    discovery_provider: Any = None,
    outbound: Any = None,
    ai_client: Any = None,
    notifier: Any = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Services:
    """Construct the pipeline and register its jobs.

    Collaborators default to the real clients configured from ``settings``.
    They are created lazily enough that a missing key only fails when the
    collaborator is first called.

    Args:
        session_factory: Session factory for the pipeline database.
        settings: Configuration. Defaults to the module-level ``config``.
        discovery_provider: Discovery provider client.
        outbound: Outbound platform client.
        ai_client: OpenAI client shared by every AI contract.
        notifier: Digest notification channel.
        sleep: Sleep used by the poller and the retry backoff.
    """
    settings = settings or config

    if discovery_provider is None:
        from .integrations.exa import ExaWebsetsClient

        discovery_provider = ExaWebsetsClient(
            api_key=settings.EXA_API_KEY, base_url=settings.EXA_BASE_URL
        )
    if outbound is None:
        from .integrations.instantly import InstantlyClient

        outbound = InstantlyClient(
            api_key=settings.INSTANTLY_API_KEY,
            base_url=settings.INSTANTLY_BASE_URL,
            daily_limit=settings.CAMPAIGN_DAILY_LIMIT,
            timezone=settings.SEND_WINDOW_TIMEZONE,
        )
    if ai_client is None:
        from .integrations.openai_client import OpenAIClient

        ai_client = OpenAIClient(
            api_key=settings.OPENAI_API_KEY,
            model=settings.OPENAI_MODEL,
            timeout_seconds=settings.OPENAI_TIMEOUT_SECONDS,
        )
    if notifier is None:
        from .integrations.sendgrid import SendGridNotifier

        notifier = SendGridNotifier(
            api_key=settings.SENDGRID_API_KEY,
            from_email=settings.SENDGRID_FROM_EMAIL,
            from_name=settings.SENDGRID_FROM_NAME,
        )

    store = PipelineStore(session_factory)
    queue = JobQueue(
        JobJournal(session_factory),
        retry_delay=settings.RETRY_DELAY_SECONDS,
        sleep=sleep,
    )

    creator = CampaignCreator(
        store,
        SequenceWriter(ai_client, model=settings.OPENAI_COPY_MODEL),
        outbound,
        default_max_leads=settings.CAMPAIGN_DEFAULT_MAX_LEADS,
        fallback_sender=settings.INSTANTLY_SENDER_EMAIL or None,
        name_prefix=settings.CAMPAIGN_NAME_PREFIX,
    )
    router = CampaignRouter(
        store,
        CampaignDecider(ai_client, model=settings.OPENAI_ROUTING_MODEL),
        creator,
        outbound,
        default_min_fit_score=settings.AUTOPILOT_DEFAULT_MIN_FIT_SCORE,
    )
    services = Services(
        settings=settings,
        store=store,
        queue=queue,
        query_generator=QueryGenerator(
            store, QueryWriter(ai_client, model=settings.OPENAI_RESEARCH_MODEL)
        ),
        discovery=DiscoveryRunner(
            store,
            discovery_provider,
            WebsetPoller(
                discovery_provider,
                interval=settings.DISCOVERY_POLL_INTERVAL_SECONDS,
                max_attempts=settings.DISCOVERY_MAX_POLL_ATTEMPTS,
                sleep=sleep,
            ),
            result_count=settings.DISCOVERY_RESULT_COUNT,
        ),
        enrichment=EnrichmentWorker(
            store,
            PersonaDeriver(ai_client, model=settings.OPENAI_RESEARCH_MODEL),
            EmailExtractor(ai_client, model=settings.OPENAI_EXTRACTION_MODEL),
            router,
        ),
        router=router,
        campaign_creator=creator,
        analytics=AnalyticsSync(store, outbound),
        digest=DigestComposer(
            store,
            outbound,
            notifier,
            recipients=settings.DIGEST_RECIPIENTS,
            app_url=settings.APP_URL,
        ),
        actions=LeadActions(store, queue, router, outbound),
    )
    register_jobs(services)
    return services


def register_jobs(services: Services) -> None:
    """Register one handler per job name, with its caps and edges."""
    settings = services.settings
    queue = services.queue

    async def generate_queries(ctx: JobContext) -> dict[str, Any]:
        report = await services.query_generator.run(
            ctx.payload.get("company_id"), step=ctx.step
        )
        return report.to_dict()

    async def schedule_discovery(ctx: JobContext) -> dict[str, Any]:
        query_ids = await ctx.step("pick-queries", services.discovery.scheduled_queries)
        for query_id in query_ids:
            await ctx.step(
                f"enqueue-run:{query_id}",
                ctx.emit,
                graph.DISCOVERY_RUN,
                {"query_id": query_id},
            )
        return {"query_ids": query_ids}

    async def run_discovery(ctx: JobContext) -> dict[str, Any]:
        async def enqueue_enrichment(lead_id: str) -> str:
            return await ctx.emit(graph.LEAD_ENRICH, {"lead_id": lead_id})

        return await services.discovery.run(
            ctx.payload["query_id"],
            step=ctx.step,
            enqueue_enrichment=enqueue_enrichment,
        )

    async def discovery_failed(ctx: JobContext, error: BaseException) -> None:
        await services.discovery.handle_failure(ctx.payload["query_id"], error)

    async def enrich_lead(ctx: JobContext) -> dict[str, Any]:
        return await services.enrichment.run(ctx.payload["lead_id"], step=ctx.step)

    async def enrichment_failed(ctx: JobContext, error: BaseException) -> None:
        await services.enrichment.handle_failure(ctx.payload["lead_id"], error)

    async def confirm_routing(ctx: JobContext) -> dict[str, Any]:
        return await services.router.attach(
            ctx.payload["lead_id"],
            ctx.payload.get("campaign_id"),
            step=ctx.step,
        )

    async def sync_analytics(ctx: JobContext) -> dict[str, Any]:
        return await services.analytics.sync()

    async def send_digest(ctx: JobContext) -> dict[str, Any]:
        summary = await services.digest.send()
        return summary.to_dict()

    retries = settings.JOB_MAX_RETRIES
    specs = [
        JobSpec(graph.QUERIES_GENERATE, generate_queries, retries=retries),
        JobSpec(graph.DISCOVERY_SCHEDULE, schedule_discovery, retries=retries),
        JobSpec(
            graph.DISCOVERY_RUN,
            run_discovery,
            retries=retries,
            on_failure=discovery_failed,
        ),
        JobSpec(
            graph.LEAD_ENRICH,
            enrich_lead,
            concurrency=settings.ENRICHMENT_CONCURRENCY,
            retries=retries,
            on_failure=enrichment_failed,
        ),
        JobSpec(
            graph.LEAD_CONFIRM_ROUTING,
            confirm_routing,
            concurrency=settings.ATTACHMENT_CONCURRENCY,
            retries=retries,
        ),
        JobSpec(graph.ANALYTICS_SYNC, sync_analytics, retries=retries),
        JobSpec(graph.DIGEST_SEND, send_digest, retries=retries),
    ]
    for spec in specs:
        spec.emits = emits(spec.name)
        queue.register(spec)

    logger.debug("Jobs registered", extra={"jobs": queue.job_names})
