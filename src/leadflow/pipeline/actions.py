"""Operator actions on leads, queries and campaigns.

These are the on-demand entry points a dashboard or the CLI calls. Anything
that talks to an external collaborator for a lead is enqueued as a job so
it gets the same retries and journal as scheduled work.
"""

import logging
from typing import Any, Optional, Protocol

from ..errors import EntityNotFoundError, LeadActionError
from ..jobs.graph import DISCOVERY_RUN, LEAD_CONFIRM_ROUTING, LEAD_ENRICH
from ..models import CampaignStatus, EnrichmentStatus, Lead, LeadCampaignStatus
from ..store import PipelineStore
from .router import CampaignRouter

logger = logging.getLogger(__name__)

MANUAL_SKIP_REASON = "Manually skipped"


class Enqueuer(Protocol):
    async def enqueue(
        self, name: str, payload: Optional[dict[str, Any]] = ..., parent_id: Optional[str] = ...
    ) -> str: ...


class CampaignControl(Protocol):
    async def pause(self, external_campaign_id: str) -> None: ...

    async def list_sending_identities(self) -> list[dict[str, Any]]: ...


class LeadActions:
    """Manual lead, query and campaign operations.

    Args:
        store: Pipeline store.
        queue: Job queue used for actions that run as jobs.
        router: Campaign router, for on-demand suggestions.
        outbound: Outbound platform client.
    """

    def __init__(
        self,
        store: PipelineStore,
        queue: Enqueuer,
        router: CampaignRouter,
        outbound: CampaignControl,
    ) -> None:
        self.store = store
        self.queue = queue
        self.router = router
        self.outbound = outbound

    async def _lead(self, lead_id: str) -> Lead:
        lead = await self.store.get_lead(lead_id)
        if lead is None:
            raise EntityNotFoundError(f"Lead {lead_id} not found")
        return lead

    @staticmethod
    def _refuse_routed(lead: Lead, action: str) -> None:
        if lead.campaign_status == LeadCampaignStatus.ROUTED:
            raise LeadActionError(f"Cannot {action} lead {lead.id}: it is already routed")

    async def skip_lead(self, lead_id: str, reason: str = MANUAL_SKIP_REASON) -> None:
        lead = await self._lead(lead_id)
        self._refuse_routed(lead, "skip")
        if not await self.store.mark_lead_skipped(lead.id, reason or MANUAL_SKIP_REASON):
            raise LeadActionError(f"Lead {lead.id} was routed before it could be skipped")
        logger.info("Lead skipped manually", extra={"lead_id": lead.id})

    async def unskip_lead(self, lead_id: str) -> Lead:
        """Return a lead to ``pending`` and repair a stuck ``enriching`` status."""
        lead = await self._lead(lead_id)
        self._refuse_routed(lead, "unskip")
        updated = await self.store.unskip_lead(lead.id)
        if updated is None:
            raise LeadActionError(f"Lead {lead.id} was routed before it could be unskipped")
        logger.info(
            "Lead unskipped",
            extra={"lead_id": lead.id, "enrichment_status": updated.enrichment_status.value},
        )
        return updated

    async def re_enrich_lead(self, lead_id: str) -> str:
        """Reset a lead's enrichment and campaign state and enqueue enrichment.

        Returns:
            The enrichment job id.
        """
        lead = await self._lead(lead_id)
        self._refuse_routed(lead, "re-enrich")
        if await self.store.reset_lead_for_enrichment(lead.id) is None:
            raise LeadActionError(f"Lead {lead.id} was routed before it could be reset")
        job_id = await self.queue.enqueue(LEAD_ENRICH, {"lead_id": lead.id})
        logger.info("Lead re-enrichment requested", extra={"lead_id": lead.id, "job_id": job_id})
        return job_id

    async def suggest_campaign(self, lead_id: str) -> dict[str, Any]:
        """Ask the router for a suggestion; never attaches automatically."""
        lead = await self._lead(lead_id)
        self._refuse_routed(lead, "suggest a campaign for")
        if lead.enrichment_status != EnrichmentStatus.ENRICHED:
            raise LeadActionError(f"Lead {lead.id} must be enriched first")
        if not lead.email:
            raise LeadActionError(f"Lead {lead.id} has no email address")
        return await self.router.route(lead.id, manual=True)

    async def request_confirm_routing(
        self, lead_id: str, campaign_id: Optional[str] = None
    ) -> str:
        """Enqueue the binding attachment of a lead to its suggested campaign.

        Returns:
            The confirmation job id.
        """
        lead = await self._lead(lead_id)
        self._refuse_routed(lead, "confirm routing for")
        if not (campaign_id or lead.suggested_campaign_id):
            raise LeadActionError(f"Lead {lead.id} has no suggested campaign")
        payload: dict[str, Any] = {"lead_id": lead.id}
        if campaign_id:
            payload["campaign_id"] = campaign_id
        return await self.queue.enqueue(LEAD_CONFIRM_ROUTING, payload)

    async def run_query(self, query_id: str) -> str:
        """Enqueue a discovery run for any query, whatever its status."""
        query = await self.store.get_query(query_id)
        if query is None:
            raise EntityNotFoundError(f"Query {query_id} not found")
        return await self.queue.enqueue(DISCOVERY_RUN, {"query_id": query.id})

    async def pause_campaign(self, campaign_id: str) -> None:
        campaign = await self.store.get_campaign(campaign_id)
        if campaign is None:
            raise EntityNotFoundError(f"Campaign {campaign_id} not found")
        await self.outbound.pause(campaign.external_id)
        await self.store.set_campaign_status(campaign.id, CampaignStatus.PAUSED)
        logger.info("Campaign paused", extra={"campaign_id": campaign.id})

    async def list_sending_identities(self) -> list[dict[str, Any]]:
        return await self.outbound.list_sending_identities()
