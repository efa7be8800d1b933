"""Discovery stage: run a query against the discovery provider.

A run submits the query as a webset, waits for it with the bounded poller,
then fetches every result, drops contacts that are already known and inserts
the rest as pending leads. Enrichment is requested only after the whole
batch is inserted, once per new lead.

Timeouts and provider-side failures are terminal: the run and the query are
marked ``failed`` and the job is not retried. Any other error that outlasts
the job retries reaches ``handle_failure``, which fails the query and its open
run the same way.
"""

import logging
from typing import Any, Awaitable, Callable, Optional, Protocol, Sequence
from urllib.parse import urlparse

from ..errors import DiscoveryFailedError, DiscoveryTimeoutError, EntityNotFoundError
from ..integrations.exa import (
    DEFAULT_ENRICHMENTS,
    DEFAULT_RESULT_COUNT,
    EMAIL_ENRICHMENT_DESCRIPTION,
    FOLLOWER_ENRICHMENT_DESCRIPTION,
    WebsetItem,
    WebsetStatus,
)
from ..models import (
    DiscoveryRunStatus,
    EnrichmentStatus,
    LeadCampaignStatus,
    Query,
    QueryStatus,
    utcnow,
)
from ..store import PipelineStore
from ..utils import clean_email, parse_count
from .poller import PollOutcome, WebsetPoller
from .steps import StepRunner, run_directly

logger = logging.getLogger(__name__)

# Checked in order; the first domain the host belongs to wins
PLATFORM_DOMAINS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("tiktok", ("tiktok.com",)),
    ("instagram", ("instagram.com",)),
    ("youtube", ("youtube.com", "youtu.be")),
    ("twitter", ("twitter.com", "x.com")),
    ("linkedin", ("linkedin.com",)),
)

EMAIL_ENRICHMENT_KEYS = (EMAIL_ENRICHMENT_DESCRIPTION, "email_address", "contact_email")
FOLLOWER_ENRICHMENT_KEYS = ("followers", "follower_count", FOLLOWER_ENRICHMENT_DESCRIPTION)


class DiscoveryProvider(Protocol):
    async def submit(
        self,
        query: str,
        count: int = ...,
        criteria: Sequence[str] = ...,
        enrichments: Sequence[dict[str, str]] = ...,
    ) -> str: ...

    async def poll_status(self, webset_id: str) -> WebsetStatus: ...

    async def list_results(self, webset_id: str) -> list[WebsetItem]: ...


def detect_platform(url: Optional[str]) -> Optional[str]:
    """Map a profile URL to its platform, None when the host is not known."""
    if not url:
        return None
    if "://" not in url:
        url = f"//{url}"
    host = (urlparse(url).hostname or "").lower()
    if not host:
        return None
    for platform, domains in PLATFORM_DOMAINS:
        for domain in domains:
            if host == domain or host.endswith(f".{domain}"):
                return platform
    return None


def _email_candidates(enrichments: Any):
    if isinstance(enrichments, dict):
        yield enrichments.get("email")
        for key in EMAIL_ENRICHMENT_KEYS:
            value = enrichments.get(key)
            if isinstance(value, dict):
                yield value.get("value")
                result = value.get("result")
                if isinstance(result, list) and result:
                    yield result[0]
            else:
                yield value
    elif isinstance(enrichments, list):
        for entry in enrichments:
            if not isinstance(entry, dict):
                continue
            if entry.get("format") != "email" and entry.get("description") != EMAIL_ENRICHMENT_DESCRIPTION:
                continue
            result = entry.get("result")
            if isinstance(result, list) and result:
                yield result[0]
            elif isinstance(result, str):
                yield result


def extract_email_from_enrichments(enrichments: Any) -> Optional[str]:
    """Find an email in the provider's enrichment results.

    Accepts a direct ``email`` string, a list of enrichment objects whose
    format is ``email``, or a dict keyed by the enrichment description (or
    ``email_address`` / ``contact_email``). The first valid address wins.
    """
    for candidate in _email_candidates(enrichments):
        email = clean_email(candidate)
        if email:
            return email
    return None


def parse_follower_count(enrichments: Any) -> Optional[int]:
    """Read the follower/subscriber count enrichment, if present."""
    if isinstance(enrichments, dict):
        for key in FOLLOWER_ENRICHMENT_KEYS:
            count = parse_count(enrichments.get(key))
            if count is not None:
                return count
    elif isinstance(enrichments, list):
        for entry in enrichments:
            if not isinstance(entry, dict):
                continue
            if entry.get("format") == "number" or entry.get("description") == FOLLOWER_ENRICHMENT_DESCRIPTION:
                count = parse_count(entry.get("result"))
                if count is not None:
                    return count
    return None


def lead_fields_from_item(item: WebsetItem) -> dict[str, Any]:
    """Lead column values extracted from one webset item."""
    return {
        "url": item.url,
        "name": item.title,
        "email": extract_email_from_enrichments(item.enrichments),
        "platform": detect_platform(item.url),
        "follower_count": parse_follower_count(item.enrichments),
        "raw_data": item.raw or None,
    }


def dedupe_candidates(
    candidates: list[dict[str, Any]],
    known_urls: set[str],
    known_emails: set[str],
) -> list[dict[str, Any]]:
    """Drop candidates whose URL or email is known or repeated in the batch."""
    seen_urls = set(known_urls)
    seen_emails = set(known_emails)
    fresh = []
    for candidate in candidates:
        url = candidate["url"]
        email = candidate.get("email")
        if url in seen_urls or (email and email in seen_emails):
            continue
        seen_urls.add(url)
        if email:
            seen_emails.add(email)
        fresh.append(candidate)
    return fresh


class DiscoveryRunner:
    """Runs one query end to end and materializes its new leads.

    Args:
        store: Pipeline store.
        provider: Discovery provider client.
        poller: Bounded poller over the same provider.
        result_count: Results requested per search.
    """

    def __init__(
        self,
        store: PipelineStore,
        provider: DiscoveryProvider,
        poller: WebsetPoller,
        result_count: int = DEFAULT_RESULT_COUNT,
    ) -> None:
        self.store = store
        self.provider = provider
        self.poller = poller
        self.result_count = result_count

    async def scheduled_queries(self) -> list[str]:
        """Query ids for this cycle: the newest pending query of each company."""
        query_ids = []
        for company in await self.store.list_companies():
            query = await self.store.latest_pending_query(company.id)
            if query is None:
                logger.info("No pending query for company", extra={"company_id": company.id})
                continue
            query_ids.append(query.id)
        return query_ids

    async def run(
        self,
        query_id: str,
        step: StepRunner = run_directly,
        enqueue_enrichment: Optional[Callable[[str], Awaitable[Any]]] = None,
    ) -> dict[str, Any]:
        """Execute a query.

        Args:
            query_id: Query to run, whatever its status.
            step: Step runner; inside a job this checkpoints each step.
            enqueue_enrichment: Called once per newly inserted lead id.

        Returns:
            ``{"query_id", "run_id", "webset_id", "items_found", "lead_ids"}``.

        Raises:
            EntityNotFoundError: If the query does not exist.
            DiscoveryTimeoutError: If the webset outlived the poll ceiling.
            DiscoveryFailedError: If the provider failed the webset.
        """
        query = await self.store.get_query(query_id)
        if query is None:
            raise EntityNotFoundError(f"Query {query_id} not found")

        started = await step("start-run", self._start_run, query)
        run_id, webset_id = started["run_id"], started["webset_id"]
        log_extra = {"query_id": query.id, "run_id": run_id, "webset_id": webset_id}

        async def record_progress(status: WebsetStatus) -> None:
            await self.store.update_run_progress(run_id, status.found)

        result = await self.poller.wait(webset_id, on_progress=record_progress)
        if result.outcome != PollOutcome.IDLE:
            if result.outcome == PollOutcome.TIMED_OUT:
                message = f"Webset {webset_id} still running after {result.attempts} polls"
                error: Exception = DiscoveryTimeoutError(message)
            else:
                status = result.last_status.status if result.last_status else "failed"
                message = f"Webset {webset_id} ended with status {status}"
                error = DiscoveryFailedError(message)
            await self._fail(query.id, run_id, message, result.items_found)
            logger.error("Discovery run failed", extra={**log_extra, "reason": message})
            raise error

        lead_ids = await step("collect-leads", self._collect_leads, query, run_id, webset_id)
        items_found = await step(
            "finish-run", self._finish_run, query.id, run_id, result.items_found
        )

        if enqueue_enrichment is not None:
            for lead_id in lead_ids:
                await step(f"enqueue-enrichment:{lead_id}", enqueue_enrichment, lead_id)

        logger.info(
            "Discovery run completed",
            extra={**log_extra, "items_found": items_found, "new_leads": len(lead_ids)},
        )
        return {
            "query_id": query.id,
            "run_id": run_id,
            "webset_id": webset_id,
            "items_found": items_found,
            "lead_ids": lead_ids,
        }

    async def _start_run(self, query: Query) -> dict[str, str]:
        await self.store.set_query_status(query.id, QueryStatus.RUNNING)
        webset_id = await self.provider.submit(
            query.query,
            count=self.result_count,
            criteria=list(query.criteria or []),
            enrichments=DEFAULT_ENRICHMENTS,
        )
        run = await self.store.create_discovery_run(query.id, webset_id)
        logger.info(
            "Discovery run started",
            extra={"query_id": query.id, "run_id": run.id, "webset_id": webset_id},
        )
        return {"run_id": run.id, "webset_id": webset_id}

    async def _fail(self, query_id: str, run_id: str, message: str, items_found: int) -> None:
        await self.store.finish_discovery_run(
            run_id,
            DiscoveryRunStatus.FAILED,
            items_found=items_found,
            error_message=message,
        )
        await self.store.set_query_status(query_id, QueryStatus.FAILED)

    async def handle_failure(self, query_id: str, error: BaseException) -> None:
        """Mark a query whose run exhausted its retries as ``failed``.

        Any run of the query left ``running`` is finished as ``failed`` with
        the error, so the outcome is visible without the job journal.
        """
        message = f"{type(error).__name__}: {error}"
        closed = await self.store.fail_running_runs(query_id, message)
        await self.store.set_query_status(query_id, QueryStatus.FAILED)
        logger.error(
            "Discovery gave up",
            extra={"query_id": query_id, "open_runs": closed, "reason": message},
        )

    async def _collect_leads(self, query: Query, run_id: str, webset_id: str) -> list[str]:
        """Fetch all results, then insert the leads that are not known yet.

        Leads this run already inserted before a retried attempt are kept in
        the returned ids, so each of them still gets its enrichment job.
        """
        items = await self.provider.list_results(webset_id)
        candidates = [lead_fields_from_item(item) for item in items if item.url]

        known_urls, known_emails = await self.store.existing_lead_keys(
            [c["url"] for c in candidates],
            [c["email"] for c in candidates if c.get("email")],
        )
        fresh = dedupe_candidates(candidates, known_urls, known_emails)

        lead_ids = [lead.id for lead in await self.store.leads_for_run(run_id)]
        for fields in fresh:
            lead = await self.store.insert_lead(
                company_id=query.company_id,
                query_id=query.id,
                discovery_run_id=run_id,
                enrichment_status=EnrichmentStatus.PENDING,
                campaign_status=LeadCampaignStatus.PENDING,
                **fields,
            )
            if lead is not None:
                lead_ids.append(lead.id)

        logger.info(
            "Leads collected",
            extra={
                "query_id": query.id,
                "run_id": run_id,
                "items": len(items),
                "duplicates": len(candidates) - len(lead_ids),
                "new_leads": len(lead_ids),
            },
        )
        return lead_ids

    async def _finish_run(self, query_id: str, run_id: str, items_found: int) -> int:
        await self.store.finish_discovery_run(
            run_id, DiscoveryRunStatus.COMPLETED, items_found=items_found
        )
        await self.store.set_query_status(query_id, QueryStatus.COMPLETED, last_run_at=utcnow())
        return items_found
