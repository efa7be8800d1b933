"""Tests for the discovery stage: submission, polling outcomes and lead dedup."""

import pytest

from leadflow.errors import DiscoveryFailedError, DiscoveryTimeoutError, EntityNotFoundError
from leadflow.integrations.exa import DEFAULT_ENRICHMENTS, WebsetStatus
from leadflow.models import DiscoveryRunStatus, EnrichmentStatus, LeadCampaignStatus, QueryStatus
from leadflow.pipeline import DiscoveryRunner, WebsetPoller
from leadflow.store import PipelineStore

from fakes import CheckpointSteps, FakeDiscoveryProvider, RecordingSleep, seed_lead, webset_item


class FlakyInsertStore(PipelineStore):
    """Store whose n-th lead insert fails once, like a dropped connection."""

    def __init__(self, session_factory, fail_on: int) -> None:
        super().__init__(session_factory)
        self.fail_on = fail_on
        self.inserts = 0

    async def insert_lead(self, **fields):
        self.inserts += 1
        if self.inserts == self.fail_on:
            raise RuntimeError("connection reset during insert")
        return await super().insert_lead(**fields)


class EnqueueRecorder:
    def __init__(self) -> None:
        self.lead_ids: list[str] = []

    async def __call__(self, lead_id: str) -> str:
        self.lead_ids.append(lead_id)
        return f"job-{lead_id}"


def make_runner(store, provider, max_attempts: int = 5) -> DiscoveryRunner:
    poller = WebsetPoller(provider, interval=5.0, max_attempts=max_attempts, sleep=RecordingSleep())
    return DiscoveryRunner(store, provider, poller, result_count=25)


@pytest.fixture
async def query(store, company):
    return await store.create_query(
        company.id, "acting coaches on tiktok", ["posts weekly"], rationale="seed"
    )


class TestSuccessfulRun:
    """Tests for runs whose webset goes idle."""

    @pytest.mark.asyncio
    async def test_duplicates_by_email_are_suppressed(self, store, company, query):
        """25 results, 3 sharing an email with known leads: 22 inserted and enqueued."""
        for n in range(3):
            await seed_lead(
                store,
                company.id,
                url=f"https://www.instagram.com/known{n}",
                email=f"known{n}@example.com",
            )
        items = [
            webset_item(
                f"https://www.tiktok.com/@creator{n}",
                title=f"Creator {n}",
                email=f"KNOWN{n}@example.com" if n < 3 else f"creator{n}@example.com",
                followers="1.5k",
            )
            for n in range(25)
        ]
        provider = FakeDiscoveryProvider(
            statuses=[WebsetStatus("running", found=10), WebsetStatus("idle", found=25)],
            items=items,
        )
        enqueue = EnqueueRecorder()

        result = await make_runner(store, provider).run(query.id, enqueue_enrichment=enqueue)

        assert len(result["lead_ids"]) == 22
        assert enqueue.lead_ids == result["lead_ids"]
        assert result["items_found"] == 25

        leads = await store.leads_for_query(query.id)
        assert len(leads) == 22
        assert {lead.url for lead in leads} == {f"https://www.tiktok.com/@creator{n}" for n in range(3, 25)}
        lead = leads[0]
        assert lead.platform == "tiktok"
        assert lead.follower_count == 1500
        assert lead.enrichment_status == EnrichmentStatus.PENDING
        assert lead.campaign_status == LeadCampaignStatus.PENDING
        assert lead.discovery_run_id == result["run_id"]
        assert lead.raw_data is not None

    @pytest.mark.asyncio
    async def test_run_and_query_are_completed(self, store, query):
        provider = FakeDiscoveryProvider(items=[webset_item("https://www.youtube.com/@one")])

        result = await make_runner(store, provider).run(query.id)

        run = await store.get_discovery_run(result["run_id"])
        refreshed = await store.get_query(query.id)
        assert run.status == DiscoveryRunStatus.COMPLETED
        assert run.items_found == 1
        assert run.external_id == result["webset_id"]
        assert run.completed_at is not None
        assert refreshed.status == QueryStatus.COMPLETED
        assert refreshed.last_run_at is not None

    @pytest.mark.asyncio
    async def test_submission_carries_count_criteria_and_enrichments(self, store, query):
        provider = FakeDiscoveryProvider()

        await make_runner(store, provider).run(query.id)

        assert provider.submitted == [
            {
                "query": "acting coaches on tiktok",
                "count": 25,
                "criteria": ["posts weekly"],
                "enrichments": list(DEFAULT_ENRICHMENTS),
            }
        ]

    @pytest.mark.asyncio
    async def test_known_url_and_batch_repeats_are_suppressed(self, store, company, query):
        await seed_lead(store, company.id, url="https://www.tiktok.com/@known")
        provider = FakeDiscoveryProvider(
            items=[
                webset_item("https://www.tiktok.com/@known"),
                webset_item("https://www.tiktok.com/@fresh", email="fresh@example.com"),
                webset_item("https://www.tiktok.com/@fresh"),
                webset_item("https://www.tiktok.com/@other", email="FRESH@example.com"),
                webset_item(""),
            ]
        )

        result = await make_runner(store, provider).run(query.id)

        assert len(result["lead_ids"]) == 1
        lead = await store.get_lead(result["lead_ids"][0])
        assert lead.url == "https://www.tiktok.com/@fresh"
        assert lead.email == "fresh@example.com"

    @pytest.mark.asyncio
    async def test_rerun_inserts_nothing_new(self, store, query):
        provider = FakeDiscoveryProvider(items=[webset_item("https://x.com/repeat")])
        runner = make_runner(store, provider)

        first = await runner.run(query.id)
        second = await runner.run(query.id)

        assert len(first["lead_ids"]) == 1
        assert second["lead_ids"] == []
        assert len(await store.leads_for_query(query.id)) == 1


class TestFailedRun:
    """Tests for timeouts and provider failures."""

    @pytest.mark.asyncio
    async def test_timeout_fails_run_and_query(self, store, query):
        """Polling past the ceiling: both failed, no leads, no enrichment."""
        provider = FakeDiscoveryProvider(
            statuses=[WebsetStatus("running", found=4)],
            items=[webset_item("https://www.tiktok.com/@never")],
        )
        enqueue = EnqueueRecorder()

        with pytest.raises(DiscoveryTimeoutError):
            await make_runner(store, provider, max_attempts=3).run(
                query.id, enqueue_enrichment=enqueue
            )

        refreshed = await store.get_query(query.id)
        assert refreshed.status == QueryStatus.FAILED
        assert len(provider.polls) == 3
        assert provider.listed == []
        assert enqueue.lead_ids == []
        assert await store.leads_for_query(query.id) == []

    @pytest.mark.asyncio
    async def test_timeout_records_progress_and_reason(self, store, query):
        provider = FakeDiscoveryProvider(statuses=[WebsetStatus("running", found=4)])
        runner = make_runner(store, provider, max_attempts=2)

        with pytest.raises(DiscoveryTimeoutError):
            await runner.run(query.id)

        async with store.session() as session:
            from sqlalchemy import select
            from leadflow.models import DiscoveryRun

            result = await session.execute(
                select(DiscoveryRun).where(DiscoveryRun.query_id == query.id)
            )
            run = result.scalars().one()
        assert run.status == DiscoveryRunStatus.FAILED
        assert run.items_found == 4
        assert "still running after 2 polls" in run.error_message

    @pytest.mark.asyncio
    async def test_provider_failure(self, store, query):
        provider = FakeDiscoveryProvider(statuses=[WebsetStatus("failed")])

        with pytest.raises(DiscoveryFailedError, match="ended with status failed"):
            await make_runner(store, provider).run(query.id)

        assert (await store.get_query(query.id)).status == QueryStatus.FAILED

    @pytest.mark.asyncio
    async def test_unknown_query(self, store):
        with pytest.raises(EntityNotFoundError):
            await make_runner(store, FakeDiscoveryProvider()).run("missing")


class TestScheduledQueries:
    """Tests for picking the queries of a discovery cycle."""

    @pytest.mark.asyncio
    async def test_newest_pending_query_per_company(self, store, company, autopilot_company):
        await store.create_query(company.id, "older", [])
        newest = await store.create_query(company.id, "newest", [])
        done = await store.create_query(autopilot_company.id, "done", [])
        await store.set_query_status(done.id, QueryStatus.COMPLETED)

        runner = make_runner(store, FakeDiscoveryProvider())

        assert await runner.scheduled_queries() == [newest.id]


class TestRetriedRun:
    """Tests for a run resumed after a failed attempt."""

    @pytest.mark.asyncio
    async def test_partial_insert_still_enqueues_every_lead(self, session_factory, company):
        """Third insert fails; the retry enqueues all five leads exactly once."""
        store = FlakyInsertStore(session_factory, fail_on=3)
        query = await store.create_query(company.id, "voice coaches", [])
        provider = FakeDiscoveryProvider(
            items=[webset_item(f"https://www.tiktok.com/@coach{n}") for n in range(5)]
        )
        runner = make_runner(store, provider)
        steps = CheckpointSteps()
        enqueue = EnqueueRecorder()

        with pytest.raises(RuntimeError):
            await runner.run(query.id, step=steps, enqueue_enrichment=enqueue)
        assert enqueue.lead_ids == []

        result = await runner.run(query.id, step=steps, enqueue_enrichment=enqueue)

        leads = await store.leads_for_query(query.id)
        assert len(leads) == 5
        assert len(provider.submitted) == 1
        assert sorted(result["lead_ids"]) == sorted(lead.id for lead in leads)
        assert sorted(enqueue.lead_ids) == sorted(lead.id for lead in leads)
        assert (await store.get_query(query.id)).status == QueryStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_handle_failure_closes_open_runs(self, store, query):
        run = await store.create_discovery_run(query.id, "webset_9")
        await store.set_query_status(query.id, QueryStatus.RUNNING)
        runner = make_runner(store, FakeDiscoveryProvider())

        await runner.handle_failure(query.id, RuntimeError("API error 502"))

        refreshed = await store.get_discovery_run(run.id)
        assert refreshed.status == DiscoveryRunStatus.FAILED
        assert refreshed.completed_at is not None
        assert refreshed.error_message == "RuntimeError: API error 502"
        assert (await store.get_query(query.id)).status == QueryStatus.FAILED
