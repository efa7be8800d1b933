"""Tests for operator actions on leads, queries and campaigns."""

import pytest

from leadflow.errors import EntityNotFoundError, LeadActionError
from leadflow.jobs import graph
from leadflow.models import CampaignStatus, EnrichmentStatus, LeadCampaignStatus, QueryStatus
from leadflow.pipeline import LeadActions
from leadflow.pipeline.actions import MANUAL_SKIP_REASON

from fakes import ScriptedAIClient, Stages, seed_campaign, seed_enriched_lead, seed_lead


class RecordingQueue:
    def __init__(self):
        self.enqueued = []

    async def enqueue(self, name, payload=None, parent_id=None):
        self.enqueued.append((name, payload))
        return f"job-{len(self.enqueued)}"


@pytest.fixture
def queue():
    return RecordingQueue()


def make_actions(store, queue, outbound, ai=None):
    router = Stages(store, ai or ScriptedAIClient(), outbound).router
    return LeadActions(store, queue, router, outbound)


async def routed_lead(store, company_id):
    campaign = await seed_campaign(store, company_id)
    lead = await seed_enriched_lead(store, company_id)
    await store.attach_lead_to_campaign(lead.id, campaign.id)
    return lead, campaign


class TestSkipAndUnskip:
    """Tests for manual skipping."""

    @pytest.mark.asyncio
    async def test_skip_clears_suggestion(self, store, company, queue, outbound):
        campaign = await seed_campaign(store, company.id)
        lead = await seed_enriched_lead(store, company.id)
        await store.set_suggested_campaign(lead.id, campaign.id, "fits")

        await make_actions(store, queue, outbound).skip_lead(lead.id)

        refreshed = await store.get_lead(lead.id)
        assert refreshed.campaign_status == LeadCampaignStatus.SKIPPED
        assert refreshed.skip_reason == MANUAL_SKIP_REASON
        assert refreshed.suggested_campaign_id is None

    @pytest.mark.asyncio
    async def test_unskip_repairs_stuck_enrichment(self, store, company, queue, outbound):
        lead = await seed_lead(
            store,
            company.id,
            enrichment_status=EnrichmentStatus.ENRICHING,
            campaign_status=LeadCampaignStatus.SKIPPED,
            fit_score=7,
            skip_reason="No email address found",
        )

        updated = await make_actions(store, queue, outbound).unskip_lead(lead.id)

        assert updated.campaign_status == LeadCampaignStatus.PENDING
        assert updated.enrichment_status == EnrichmentStatus.ENRICHED
        assert updated.skip_reason is None

    @pytest.mark.asyncio
    async def test_unskip_keeps_enriching_without_persona(self, store, company, queue, outbound):
        lead = await seed_lead(
            store,
            company.id,
            enrichment_status=EnrichmentStatus.ENRICHING,
            campaign_status=LeadCampaignStatus.SKIPPED,
        )

        updated = await make_actions(store, queue, outbound).unskip_lead(lead.id)

        assert updated.enrichment_status == EnrichmentStatus.ENRICHING

    @pytest.mark.asyncio
    @pytest.mark.parametrize("action", ["skip_lead", "unskip_lead", "re_enrich_lead"])
    async def test_routed_lead_is_refused(self, store, company, queue, outbound, action):
        lead, campaign = await routed_lead(store, company.id)

        with pytest.raises(LeadActionError, match="already routed"):
            await getattr(make_actions(store, queue, outbound), action)(lead.id)

        refreshed = await store.get_lead(lead.id)
        assert refreshed.campaign_status == LeadCampaignStatus.ROUTED
        assert refreshed.campaign_id == campaign.id
        assert queue.enqueued == []

    @pytest.mark.asyncio
    async def test_unknown_lead(self, store, queue, outbound):
        with pytest.raises(EntityNotFoundError):
            await make_actions(store, queue, outbound).skip_lead("missing")


class TestReEnrich:
    @pytest.mark.asyncio
    async def test_resets_state_and_enqueues(self, store, company, queue, outbound):
        lead = await seed_enriched_lead(
            store,
            company.id,
            campaign_status=LeadCampaignStatus.SKIPPED,
            skip_reason="Not a creator",
        )

        job_id = await make_actions(store, queue, outbound).re_enrich_lead(lead.id)

        refreshed = await store.get_lead(lead.id)
        assert job_id == "job-1"
        assert queue.enqueued == [(graph.LEAD_ENRICH, {"lead_id": lead.id})]
        assert refreshed.enrichment_status == EnrichmentStatus.PENDING
        assert refreshed.campaign_status == LeadCampaignStatus.PENDING
        assert refreshed.skip_reason is None


class TestRoutingActions:
    """Tests for on-demand suggestions and confirmations."""

    @pytest.mark.asyncio
    async def test_suggest_campaign_never_attaches(self, store, autopilot_company, queue, outbound):
        campaign = await seed_campaign(store, autopilot_company.id)
        lead = await seed_enriched_lead(store, autopilot_company.id, fit_score=10)
        ai = ScriptedAIClient(
            routes=[{"action": "add_to_existing", "campaignId": campaign.id, "reason": "fits"}]
        )

        outcome = await make_actions(store, queue, outbound, ai).suggest_campaign(lead.id)

        refreshed = await store.get_lead(lead.id)
        assert outcome["attached"] is False
        assert refreshed.suggested_campaign_id == campaign.id
        assert refreshed.campaign_status == LeadCampaignStatus.PENDING
        assert outbound.added == []

    @pytest.mark.asyncio
    async def test_suggest_requires_enriched_lead_with_email(self, store, company, queue, outbound):
        pending = await seed_lead(store, company.id, email="raw@example.com")
        no_email = await seed_enriched_lead(store, company.id, email=None)
        actions = make_actions(store, queue, outbound)

        with pytest.raises(LeadActionError, match="enriched first"):
            await actions.suggest_campaign(pending.id)
        with pytest.raises(LeadActionError, match="no email"):
            await actions.suggest_campaign(no_email.id)

    @pytest.mark.asyncio
    async def test_confirm_routing_is_enqueued(self, store, company, queue, outbound):
        campaign = await seed_campaign(store, company.id)
        lead = await seed_enriched_lead(store, company.id)
        await store.set_suggested_campaign(lead.id, campaign.id, "fits")
        actions = make_actions(store, queue, outbound)

        await actions.request_confirm_routing(lead.id)
        await actions.request_confirm_routing(lead.id, campaign.id)

        assert queue.enqueued == [
            (graph.LEAD_CONFIRM_ROUTING, {"lead_id": lead.id}),
            (graph.LEAD_CONFIRM_ROUTING, {"lead_id": lead.id, "campaign_id": campaign.id}),
        ]
        assert outbound.added == []

    @pytest.mark.asyncio
    async def test_confirm_without_target_is_refused(self, store, company, queue, outbound):
        lead = await seed_enriched_lead(store, company.id)

        with pytest.raises(LeadActionError, match="no suggested campaign"):
            await make_actions(store, queue, outbound).request_confirm_routing(lead.id)


class TestQueryAndCampaignActions:
    @pytest.mark.asyncio
    async def test_run_query_enqueues_any_status(self, store, company, queue, outbound):
        query = await store.create_query(company.id, "podcast hosts", [])
        await store.set_query_status(query.id, QueryStatus.FAILED)

        await make_actions(store, queue, outbound).run_query(query.id)

        assert queue.enqueued == [(graph.DISCOVERY_RUN, {"query_id": query.id})]

    @pytest.mark.asyncio
    async def test_run_unknown_query(self, store, queue, outbound):
        with pytest.raises(EntityNotFoundError):
            await make_actions(store, queue, outbound).run_query("missing")

    @pytest.mark.asyncio
    async def test_pause_campaign(self, store, company, queue, outbound):
        campaign = await seed_campaign(store, company.id)

        await make_actions(store, queue, outbound).pause_campaign(campaign.id)

        assert outbound.paused == [campaign.external_id]
        assert (await store.get_campaign(campaign.id)).status == CampaignStatus.PAUSED

    @pytest.mark.asyncio
    async def test_list_sending_identities(self, store, queue, outbound):
        identities = await make_actions(store, queue, outbound).list_sending_identities()

        assert identities == [{"email": "founder@acme.test", "status": 1}]
