"""Tests for store-level dedup and lead state transitions."""

import pytest

from leadflow.models import EnrichmentStatus, LeadCampaignStatus
from leadflow.store import normalize_email

from fakes import seed_campaign, seed_enriched_lead, seed_lead


class TestLeadUniqueness:
    """Tests for the url/email unique indexes."""

    @pytest.mark.asyncio
    async def test_duplicate_url_is_rejected(self, store, company):
        first = await seed_lead(store, company.id, url="https://www.tiktok.com/@jane")
        second = await seed_lead(store, company.id, url="https://www.tiktok.com/@jane")

        assert first is not None
        assert second is None

    @pytest.mark.asyncio
    async def test_duplicate_email_is_rejected_case_insensitively(self, store, company):
        await seed_lead(store, company.id, email="jane@example.com")
        duplicate = await seed_lead(store, company.id, email="  JANE@example.com")

        assert duplicate is None

    @pytest.mark.asyncio
    async def test_many_leads_without_email(self, store, company):
        first = await seed_lead(store, company.id)
        second = await seed_lead(store, company.id)

        assert first is not None and second is not None

    @pytest.mark.asyncio
    async def test_existing_lead_keys(self, store, company):
        await seed_lead(store, company.id, url="https://x.com/a", email="a@example.com")

        urls, emails = await store.existing_lead_keys(
            ["https://x.com/a", "https://x.com/b"], ["A@example.com", "b@example.com"]
        )

        assert urls == {"https://x.com/a"}
        assert emails == {"a@example.com"}

    def test_normalize_email(self):
        assert normalize_email(" Jane@Example.COM ") == "jane@example.com"
        assert normalize_email("") is None
        assert normalize_email(None) is None


class TestInstructionFlag:
    @pytest.mark.asyncio
    async def test_query_is_saved_once_per_instruction(self, store, company):
        instruction = await store.create_instruction(company.id, "Find coaches")

        first = await store.create_query(company.id, "coaches", [], instruction_id=instruction.id)
        second = await store.create_query(company.id, "coaches 2", [], instruction_id=instruction.id)

        assert first is not None
        assert second is None
        assert (await store.get_instruction(instruction.id)).query_generated is True

    @pytest.mark.asyncio
    async def test_relationships_are_loaded_with_their_rows(self, store, company):
        instruction = await store.create_instruction(company.id, "Find coaches")

        loaded_company = await store.get_company(company.id)
        loaded_instruction = await store.get_instruction(instruction.id)

        assert [i.id for i in loaded_company.instructions] == [instruction.id]
        assert loaded_instruction.company.id == company.id


class TestLeadTransitions:
    """Tests for the conditional updates guarding lead status."""

    @pytest.mark.asyncio
    async def test_attach_requires_enriched_lead_with_email(self, store, company):
        campaign = await seed_campaign(store, company.id)
        pending = await seed_lead(store, company.id, email="p@example.com")
        no_email = await seed_enriched_lead(store, company.id, email=None)

        assert await store.attach_lead_to_campaign(pending.id, campaign.id) is False
        assert await store.attach_lead_to_campaign(no_email.id, campaign.id) is False
        assert (await store.get_campaign(campaign.id)).leads_count == 0

    @pytest.mark.asyncio
    async def test_attach_happens_once_and_counts_once(self, store, company):
        campaign = await seed_campaign(store, company.id)
        lead = await seed_enriched_lead(store, company.id)

        assert await store.attach_lead_to_campaign(lead.id, campaign.id) is True
        assert await store.attach_lead_to_campaign(lead.id, campaign.id) is False

        refreshed = await store.get_lead(lead.id)
        assert refreshed.campaign_status == LeadCampaignStatus.ROUTED
        assert refreshed.campaign_id == campaign.id
        assert refreshed.campaign_routed_at is not None
        assert (await store.get_campaign(campaign.id)).leads_count == 1

    @pytest.mark.asyncio
    async def test_routed_lead_cannot_be_skipped_or_resuggested(self, store, company):
        campaign = await seed_campaign(store, company.id)
        other = await seed_campaign(store, company.id, name="leadflow - Other")
        lead = await seed_enriched_lead(store, company.id)
        await store.attach_lead_to_campaign(lead.id, campaign.id)

        assert await store.mark_lead_skipped(lead.id, "late skip") is False
        assert await store.set_suggested_campaign(lead.id, other.id, "late") is False
        assert await store.unskip_lead(lead.id) is None
        assert await store.reset_lead_for_enrichment(lead.id) is None
        assert (await store.get_lead(lead.id)).campaign_status == LeadCampaignStatus.ROUTED

    @pytest.mark.asyncio
    async def test_enrichment_failure_only_from_pending_or_enriching(self, store, company):
        pending = await seed_lead(store, company.id)
        enriched = await seed_enriched_lead(store, company.id)

        assert await store.mark_enrichment_failed(pending.id, "boom") is True
        assert await store.mark_enrichment_failed(enriched.id, "boom") is False
        assert (await store.get_lead(pending.id)).enrichment_status == EnrichmentStatus.FAILED
        assert (await store.get_lead(enriched.id)).enrichment_status == EnrichmentStatus.ENRICHED

    @pytest.mark.asyncio
    async def test_save_enrichment_keeps_discovery_email(self, store, company):
        lead = await seed_lead(store, company.id, email="found@example.com")

        saved = await store.save_enrichment(lead.id, {"fit_score": 9, "unknown": "x"}, "other@example.com")

        assert saved.email == "found@example.com"
        assert saved.fit_score == 9
        assert saved.enrichment_status == EnrichmentStatus.ENRICHED


class TestQueryYield:
    @pytest.mark.asyncio
    async def test_recent_queries_with_yield(self, store, company):
        empty = await store.create_query(company.id, "empty", [])
        busy = await store.create_query(company.id, "busy", [])
        await seed_lead(store, company.id, query_id=busy.id)

        rows = await store.recent_queries_with_yield(company.id)

        counts = {query.id: count for query, count in rows}
        assert counts == {empty.id: 0, busy.id: 1}
