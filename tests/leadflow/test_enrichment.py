"""Tests for the enrichment stage."""

import pytest

from leadflow.ai import AIResponseError
from leadflow.errors import EntityNotFoundError
from leadflow.models import EnrichmentStatus, LeadCampaignStatus
from leadflow.pipeline.enrichment import NO_EMAIL_REASON, raw_lead_payload

from fakes import (
    CheckpointSteps,
    ScriptedAIClient,
    Stages,
    persona_answer,
    seed_campaign,
    seed_enriched_lead,
    seed_lead,
)


def add_to(campaign, reason: str = "Persona matches") -> dict:
    return {"action": "add_to_existing", "campaignId": campaign.id, "reason": reason}


class TestEmailResolution:
    """Tests for the three-source email lookup."""

    @pytest.mark.asyncio
    async def test_no_email_anywhere_skips_without_routing(self, store, company, outbound):
        """Discovery, persona and extraction all come up empty: skipped, never routed."""
        lead = await seed_lead(store, company.id, raw_data={"bio": "Acting coach in LA"})
        ai = ScriptedAIClient(personas=[persona_answer(email=None)])

        result = await Stages(store, ai, outbound).worker.run(lead.id)

        refreshed = await store.get_lead(lead.id)
        assert result["skipped"] is True
        assert refreshed.enrichment_status == EnrichmentStatus.ENRICHED
        assert refreshed.campaign_status == LeadCampaignStatus.SKIPPED
        assert refreshed.skip_reason == NO_EMAIL_REASON
        assert refreshed.email is None
        assert ai.calls_for("route") == []
        # No "@" in the raw payload, so the extraction model is not asked
        assert ai.calls_for("email") == []

    @pytest.mark.asyncio
    async def test_discovery_email_wins(self, store, company, outbound):
        campaign = await seed_campaign(store, company.id)
        lead = await seed_lead(store, company.id, email="found@example.com")
        ai = ScriptedAIClient(
            personas=[persona_answer(email="other@example.com")],
            routes=[add_to(campaign)],
        )

        result = await Stages(store, ai, outbound).worker.run(lead.id)

        refreshed = await store.get_lead(lead.id)
        assert result["email"] == "found@example.com"
        assert refreshed.email == "found@example.com"
        assert refreshed.suggested_campaign_id == campaign.id
        assert refreshed.campaign_status == LeadCampaignStatus.PENDING
        assert result["routing"]["action"] == "add_to_existing"

    @pytest.mark.asyncio
    async def test_persona_email_is_used_when_discovery_had_none(self, store, company, outbound):
        campaign = await seed_campaign(store, company.id)
        lead = await seed_lead(store, company.id)
        ai = ScriptedAIClient(
            personas=[persona_answer(email="Jane@Studio.test")],
            routes=[add_to(campaign)],
        )

        await Stages(store, ai, outbound).worker.run(lead.id)

        refreshed = await store.get_lead(lead.id)
        assert refreshed.email == "jane@studio.test"
        assert ai.calls_for("email") == []

    @pytest.mark.asyncio
    async def test_extraction_pass_is_last_resort(self, store, company, outbound):
        campaign = await seed_campaign(store, company.id)
        lead = await seed_lead(
            store, company.id, raw_data={"bio": "Bookings: Jane@Studio.test"}
        )
        ai = ScriptedAIClient(
            personas=[persona_answer(email=None)],
            emails=[{"email": "Jane@Studio.test"}],
            routes=[add_to(campaign)],
        )

        result = await Stages(store, ai, outbound).worker.run(lead.id)

        assert result["email"] == "jane@studio.test"
        assert len(ai.calls_for("email")) == 1
        assert (await store.get_lead(lead.id)).email == "jane@studio.test"

    @pytest.mark.asyncio
    async def test_email_owned_by_another_lead_skips(self, store, company, outbound):
        owner = await seed_enriched_lead(store, company.id, email="taken@example.com")
        lead = await seed_lead(store, company.id)
        ai = ScriptedAIClient(personas=[persona_answer(email="taken@example.com")])

        result = await Stages(store, ai, outbound).worker.run(lead.id)

        refreshed = await store.get_lead(lead.id)
        assert result["skipped"] is True
        assert refreshed.email is None
        assert refreshed.campaign_status == LeadCampaignStatus.SKIPPED
        assert refreshed.skip_reason == f"Email already belongs to lead {owner.id}"


class TestPersona:
    """Tests for persona persistence."""

    @pytest.mark.asyncio
    async def test_malformed_fields_fall_back_to_defaults(self, store, company, outbound):
        lead = await seed_lead(store, company.id)
        ai = ScriptedAIClient(
            personas=[
                {
                    "category": None,
                    "full_name": "",
                    "total_audience": "12k",
                    "expertise": "acting, voice",
                    "fit_score": "eleven",
                }
            ]
        )

        await Stages(store, ai, outbound).worker.run(lead.id)

        refreshed = await store.get_lead(lead.id)
        assert refreshed.category == "other"
        assert refreshed.full_name == "Unknown"
        assert refreshed.total_audience == 12000
        assert refreshed.expertise == ["acting", "voice"]
        assert refreshed.fit_score == 5
        assert refreshed.enriched_at is not None

    @pytest.mark.asyncio
    async def test_persona_prompt_carries_raw_payload_and_company(self, store, company, outbound):
        lead = await seed_lead(
            store, company.id, url="https://www.tiktok.com/@coachjane", follower_count=4200
        )
        ai = ScriptedAIClient(personas=[persona_answer()])

        await Stages(store, ai, outbound).worker.run(lead.id)

        prompt = ai.calls_for("persona")[0]["prompt"]
        assert "https://www.tiktok.com/@coachjane" in prompt
        assert "Acme Studio" in prompt
        assert ai.calls_for("persona")[0]["model"] == "research-model"

    def test_raw_lead_payload(self):
        from leadflow.models import Lead

        lead = Lead(url="https://x.com/jane", name="Jane", raw_data={"id": "1"})
        payload = raw_lead_payload(lead)

        assert payload["url"] == "https://x.com/jane"
        assert payload["enrichment_data"] == {"id": "1"}


class TestFailures:
    """Tests for persona failures and the terminal failure hook."""

    @pytest.mark.asyncio
    async def test_persona_without_json_raises_and_leaves_lead_enriching(
        self, store, company, outbound
    ):
        lead = await seed_lead(store, company.id)
        ai = ScriptedAIClient(personas=["Sorry, I could not find anything."])
        stages = Stages(store, ai, outbound)

        with pytest.raises(AIResponseError):
            await stages.worker.run(lead.id)

        assert (await store.get_lead(lead.id)).enrichment_status == EnrichmentStatus.ENRICHING

        await stages.worker.handle_failure(lead.id, AIResponseError("no JSON"))
        assert (await store.get_lead(lead.id)).enrichment_status == EnrichmentStatus.FAILED

    @pytest.mark.asyncio
    async def test_failure_hook_leaves_enriched_lead_alone(self, store, company, outbound):
        lead = await seed_enriched_lead(store, company.id)
        stages = Stages(store, ScriptedAIClient(), outbound)

        await stages.worker.handle_failure(lead.id, RuntimeError("routing failed"))

        assert (await store.get_lead(lead.id)).enrichment_status == EnrichmentStatus.ENRICHED

    @pytest.mark.asyncio
    async def test_unknown_lead(self, store, outbound):
        with pytest.raises(EntityNotFoundError):
            await Stages(store, ScriptedAIClient(), outbound).worker.run("missing")

    @pytest.mark.asyncio
    async def test_retry_resumes_after_persona_checkpoint(self, store, company, outbound):
        """A routing failure does not re-run the persona model on retry."""
        campaign = await seed_campaign(store, company.id)
        lead = await seed_lead(store, company.id, email="jane@example.com")
        ai = ScriptedAIClient(
            personas=[persona_answer()],
            routes=[RuntimeError("routing model down"), add_to(campaign)],
        )
        worker = Stages(store, ai, outbound).worker
        steps = CheckpointSteps()

        with pytest.raises(RuntimeError):
            await worker.run(lead.id, step=steps)
        await worker.run(lead.id, step=steps)

        assert len(ai.calls_for("persona")) == 1
        assert len(ai.calls_for("route")) == 2
        assert steps.executed.count("derive-persona") == 1
        assert (await store.get_lead(lead.id)).suggested_campaign_id == campaign.id
