"""Campaign routing: suggestion, autopilot check and binding attachment.

Routing an enriched lead asks the decider for one action. A ``create_new``
answer materializes the campaign first, then the suggestion is stored on the
lead, which stays ``pending``. The binding attachment (outbound platform call,
``routed`` status, campaign counter) only happens through ``attach``: either
right away when autopilot allows it, or later when a human confirms.
"""

import logging
from typing import Any, Optional, Protocol

from ..ai.campaign_decider import CampaignDecider
from ..errors import AttachmentError, EntityNotFoundError
from ..integrations.instantly import LeadContact
from ..models import Campaign, Company, EnrichmentStatus, Lead, LeadCampaignStatus
from ..store import PipelineStore
from .campaign_creator import CampaignCreator
from .steps import StepRunner, prefixed, run_directly

logger = logging.getLogger(__name__)

NO_EMAIL_REASON = "Lead has no email address"
DEFAULT_SKIP_REASON = "Skipped by router"


class LeadSink(Protocol):
    async def add_lead(self, external_campaign_id: str, contact: LeadContact) -> None: ...


def autopilot_threshold(company: Company, default_min_fit_score: int) -> int:
    if company.autopilot_min_fit_score is None:
        return default_min_fit_score
    return company.autopilot_min_fit_score


def autopilot_allows(
    company: Company,
    fit_score: Optional[int],
    campaign: Optional[Campaign],
    default_min_fit_score: int = 7,
) -> bool:
    """Whether a suggestion may be confirmed without a human.

    All of these must hold: autopilot is on, the fit score reaches the
    company's threshold, and the campaign is active, accepting leads and
    under capacity.
    """
    if not company.autopilot_enabled:
        return False
    if fit_score is None or fit_score < autopilot_threshold(company, default_min_fit_score):
        return False
    return campaign is not None and campaign.can_auto_attach


def contact_for(lead: Lead) -> LeadContact:
    """Contact pushed to the outbound platform for a lead."""
    name = lead.full_name if lead.full_name and lead.full_name != "Unknown" else lead.name
    parts = (name or "").split()
    return LeadContact(
        email=lead.email,
        first_name=lead.first_name,
        last_name=" ".join(parts[1:]),
        lead_url=lead.url or "",
    )


class CampaignRouter:
    """Decides and binds campaigns for enriched leads.

    Args:
        store: Pipeline store.
        decider: Routing-decision AI contract.
        creator: Campaign creation sub-flow.
        outbound: Outbound platform client.
        default_min_fit_score: Autopilot threshold for companies without one.
    """

    def __init__(
        self,
        store: PipelineStore,
        decider: CampaignDecider,
        creator: CampaignCreator,
        outbound: LeadSink,
        default_min_fit_score: int = 7,
    ) -> None:
        self.store = store
        self.decider = decider
        self.creator = creator
        self.outbound = outbound
        self.default_min_fit_score = default_min_fit_score

    async def route(
        self,
        lead_id: str,
        step: StepRunner = run_directly,
        manual: bool = False,
    ) -> dict[str, Any]:
        """Produce a campaign suggestion for a lead and run the autopilot check.

        Args:
            lead_id: Enriched lead to route.
            step: Step runner; inside a job this checkpoints each step.
            manual: Requested by a person. Skip is never offered and the
                suggestion is never confirmed automatically.

        Returns:
            ``{"lead_id", "action", "campaign_id", "reason", "attached"}``.
        """
        lead = await self.store.get_lead(lead_id)
        if lead is None:
            raise EntityNotFoundError(f"Lead {lead_id} not found")

        outcome: dict[str, Any] = {
            "lead_id": lead.id,
            "action": None,
            "campaign_id": None,
            "reason": None,
            "attached": False,
        }
        if lead.campaign_status == LeadCampaignStatus.ROUTED:
            logger.info("Lead already routed", extra={"lead_id": lead.id})
            return {**outcome, "action": "already_routed", "campaign_id": lead.campaign_id}

        if not lead.email:
            await step("mark-skipped", self.store.mark_lead_skipped, lead.id, NO_EMAIL_REASON)
            return {**outcome, "action": "skip", "reason": NO_EMAIL_REASON}

        company = await self.store.get_company(lead.company_id)
        if company is None:
            raise EntityNotFoundError(f"Company {lead.company_id} not found")

        auto_mode = bool(company.autopilot_enabled) and not manual
        decision = await step("decide-campaign", self._decide, lead, company, auto_mode)
        action = decision["action"]
        reason = decision.get("reason") or ""

        if action == "skip":
            reason = reason or DEFAULT_SKIP_REASON
            await step("mark-skipped", self.store.mark_lead_skipped, lead.id, reason)
            logger.info("Lead skipped by router", extra={"lead_id": lead.id})
            return {**outcome, "action": action, "reason": reason}

        if action == "create_new":
            campaign_id = await self.creator.create(
                company.id,
                decision["suggested_name"],
                decision["suggested_persona"],
                step=prefixed(step, "create-campaign"),
            )
        else:
            campaign_id = decision["campaign_id"]

        await step(
            "set-suggested-campaign",
            self.store.set_suggested_campaign,
            lead.id,
            campaign_id,
            reason,
        )
        outcome.update(action=action, campaign_id=campaign_id, reason=reason)
        logger.info(
            "Campaign suggested",
            extra={"lead_id": lead.id, "campaign_id": campaign_id, "action": action},
        )

        if manual:
            return outcome

        campaign = await self.store.get_campaign(campaign_id)
        if autopilot_allows(company, lead.fit_score, campaign, self.default_min_fit_score):
            result = await self.attach(lead.id, campaign_id, step=prefixed(step, "auto"))
            outcome["attached"] = result["attached"]
        elif company.autopilot_enabled:
            logger.info(
                "Autopilot left suggestion pending",
                extra={
                    "lead_id": lead.id,
                    "campaign_id": campaign_id,
                    "fit_score": lead.fit_score,
                },
            )
        return outcome

    async def _decide(self, lead: Lead, company: Company, auto_mode: bool) -> dict[str, Any]:
        campaigns = await self.store.campaigns_for_company(company.id, eligible_only=True)
        decision = await self.decider.decide(
            lead.to_dict(), campaigns, company.context(), auto_mode
        )
        return decision.model_dump()

    async def attach(
        self,
        lead_id: str,
        campaign_id: Optional[str] = None,
        step: StepRunner = run_directly,
    ) -> dict[str, Any]:
        """Bind a lead to a campaign (the "confirm routing" action).

        Calling it for a lead that is already routed does nothing: no
        outbound call and no counter change.

        Args:
            lead_id: Lead to attach.
            campaign_id: Target campaign; defaults to the lead's suggestion.
            step: Step runner.

        Returns:
            ``{"lead_id", "campaign_id", "attached", "already_routed"}``.

        Raises:
            EntityNotFoundError: If the lead or campaign does not exist.
            AttachmentError: If the lead has no target campaign, is not
                enriched, or has no email.
        """
        lead = await self.store.get_lead(lead_id)
        if lead is None:
            raise EntityNotFoundError(f"Lead {lead_id} not found")

        if lead.campaign_status == LeadCampaignStatus.ROUTED:
            logger.info(
                "Lead already routed, attachment skipped",
                extra={"lead_id": lead.id, "campaign_id": lead.campaign_id},
            )
            return {
                "lead_id": lead.id,
                "campaign_id": lead.campaign_id,
                "attached": False,
                "already_routed": True,
            }

        campaign_id = campaign_id or lead.suggested_campaign_id
        if not campaign_id:
            raise AttachmentError(f"Lead {lead.id} has no suggested campaign")
        if lead.enrichment_status != EnrichmentStatus.ENRICHED:
            raise AttachmentError(
                f"Lead {lead.id} is {lead.enrichment_status.value}, not enriched"
            )
        if not lead.email:
            raise AttachmentError(f"Lead {lead.id} has no email address")

        campaign = await self.store.get_campaign(campaign_id)
        if campaign is None:
            raise EntityNotFoundError(f"Campaign {campaign_id} not found")

        await step("add-to-outbound", self._add_to_outbound, lead, campaign)
        attached = await step(
            "mark-routed", self.store.attach_lead_to_campaign, lead.id, campaign.id
        )
        if attached:
            logger.info(
                "Lead routed to campaign",
                extra={"lead_id": lead.id, "campaign_id": campaign.id},
            )
        else:
            logger.warning(
                "Lead changed state before it could be routed",
                extra={"lead_id": lead.id, "campaign_id": campaign.id},
            )
        return {
            "lead_id": lead.id,
            "campaign_id": campaign.id,
            "attached": bool(attached),
            "already_routed": False,
        }

    async def _add_to_outbound(self, lead: Lead, campaign: Campaign) -> str:
        await self.outbound.add_lead(campaign.external_id, contact_for(lead))
        return campaign.external_id
