"""Campaign creation sub-flow used by the router.

Creating a campaign means writing its email sequence, registering it with the
outbound platform, persisting it locally as a draft and activating it. It only
becomes ``active``, and so eligible for routing, once the platform has
activated it. The router only stores a suggestion that references the
campaign once all four steps have completed.
"""

import logging
from typing import Any, Optional, Protocol, Sequence

from ..ai.copywriter import SequenceWriter
from ..ai.schemas import EmailStep
from ..config import ConfigError
from ..errors import CampaignCreationError, EntityNotFoundError
from ..models import CampaignStatus
from ..store import PipelineStore
from .steps import StepRunner, run_directly

logger = logging.getLogger(__name__)

DEFAULT_NAME_PREFIX = "leadflow"


class CampaignRegistry(Protocol):
    async def create_campaign(
        self,
        name: str,
        sending_emails: Sequence[str],
        steps: Sequence[Any],
        stop_on_reply: bool = ...,
    ) -> str: ...

    async def activate(self, external_campaign_id: str) -> None: ...


def campaign_display_name(prefix: Optional[str], suggested_name: str) -> str:
    """Name shown on the outbound platform, e.g. ``leadflow - Fitness Creators``."""
    suggested_name = suggested_name.strip()
    if not prefix:
        return suggested_name
    return f"{prefix} - {suggested_name}"


class CampaignCreator:
    """Generates, registers, persists and activates a campaign.

    Args:
        store: Pipeline store.
        writer: Email sequence writer.
        outbound: Outbound platform client.
        default_max_leads: Capacity given to new campaigns.
        fallback_sender: Sending identity used when the company has none.
        name_prefix: Prefix of campaign display names.
    """

    def __init__(
        self,
        store: PipelineStore,
        writer: SequenceWriter,
        outbound: CampaignRegistry,
        default_max_leads: int = 500,
        fallback_sender: Optional[str] = None,
        name_prefix: Optional[str] = DEFAULT_NAME_PREFIX,
    ) -> None:
        self.store = store
        self.writer = writer
        self.outbound = outbound
        self.default_max_leads = default_max_leads
        self.fallback_sender = fallback_sender
        self.name_prefix = name_prefix

    async def create(
        self,
        company_id: str,
        suggested_name: str,
        persona: str,
        step: StepRunner = run_directly,
    ) -> str:
        """Create an active campaign for a persona.

        Returns:
            The local campaign id.

        Raises:
            EntityNotFoundError: If the company does not exist.
            ConfigError: If no sending identity is configured.
            CampaignCreationError: If activation failed; the campaign is left
                as ``draft`` and a retry activates it.
        """
        company = await self.store.get_company(company_id)
        if company is None:
            raise EntityNotFoundError(f"Company {company_id} not found")

        name = campaign_display_name(self.name_prefix, suggested_name)
        steps = await step(
            "generate-sequence",
            self._generate_sequence,
            company.context(),
            persona,
            company.default_sequence_length,
            company.email_prompt,
            company.calendar_link,
        )
        senders = list(company.sending_emails or [])
        if not senders and self.fallback_sender:
            senders = [self.fallback_sender]

        external_id = await step("register-campaign", self._register, name, senders, steps)
        campaign_id = await step(
            "persist-campaign",
            self._persist,
            company.id,
            external_id,
            name,
            persona,
            steps,
        )
        await step("activate-campaign", self._activate, campaign_id, external_id)

        logger.info(
            "Campaign created",
            extra={
                "company_id": company.id,
                "campaign_id": campaign_id,
                "external_id": external_id,
                "step_count": len(steps),
            },
        )
        return campaign_id

    async def _generate_sequence(
        self,
        company: dict[str, Any],
        persona: str,
        sequence_length: Optional[int],
        custom_prompt: Optional[str],
        calendar_link: Optional[str],
    ) -> list[dict[str, Any]]:
        steps = await self.writer.generate(
            company,
            persona,
            sequence_length=sequence_length,
            custom_prompt=custom_prompt,
            calendar_link=calendar_link,
        )
        return [s.model_dump() for s in steps]

    async def _register(
        self, name: str, senders: list[str], steps: list[dict[str, Any]]
    ) -> str:
        if not senders:
            raise ConfigError(
                "No sending identity: set the company's sending emails "
                "or INSTANTLY_SENDER_EMAIL"
            )
        return await self.outbound.create_campaign(
            name, senders, [EmailStep.model_validate(s) for s in steps]
        )

    async def _persist(
        self,
        company_id: str,
        external_id: str,
        name: str,
        persona: str,
        steps: list[dict[str, Any]],
    ) -> str:
        existing = await self.store.campaign_by_external_id(external_id)
        if existing is not None:
            return existing.id
        campaign = await self.store.create_campaign(
            company_id,
            external_id,
            name,
            persona,
            [EmailStep.model_validate(s) for s in steps],
            max_leads=self.default_max_leads,
            status=CampaignStatus.DRAFT,
        )
        return campaign.id

    async def _activate(self, campaign_id: str, external_id: str) -> str:
        try:
            await self.outbound.activate(external_id)
        except Exception as e:
            raise CampaignCreationError(
                f"Campaign {campaign_id} registered but not activated: {e}"
            ) from e
        await self.store.set_campaign_status(campaign_id, CampaignStatus.ACTIVE)
        return campaign_id
