"""Enrichment stage: persona, email resolution, then routing.

Each lead goes through these checkpointed steps:

1. mark the lead ``enriching``
2. derive the persona with the research model
3. resolve an email: discovery email, then persona email, then the
   extraction model over the raw payload
4. persist the persona and mark the lead ``enriched``
5. skip the lead when no email was found, otherwise route it

A persona failure that survives the job's retries moves the lead to
``failed`` through ``handle_failure``, which keeps it re-enrichable.
"""

import logging
from typing import Any, Optional

from ..ai.email_extractor import EmailExtractor
from ..ai.persona import PersonaDeriver
from ..errors import EntityNotFoundError
from ..models import Company, Lead
from ..store import PERSONA_FIELDS, PipelineStore
from .router import CampaignRouter
from .steps import StepRunner, prefixed, run_directly

logger = logging.getLogger(__name__)

NO_EMAIL_REASON = "No email address found"


def raw_lead_payload(lead: Lead) -> dict[str, Any]:
    """Everything discovery knows about a lead, as handed to the persona model."""
    return {
        "name": lead.name,
        "url": lead.url,
        "email": lead.email,
        "platform": lead.platform,
        "follower_count": lead.follower_count,
        "enrichment_data": lead.raw_data,
    }


class EnrichmentWorker:
    """Enriches one lead and hands it to the router.

    Args:
        store: Pipeline store.
        persona_deriver: Persona-derivation AI contract.
        email_extractor: Email-extraction AI contract.
        router: Campaign router invoked once the lead has an email.
    """

    def __init__(
        self,
        store: PipelineStore,
        persona_deriver: PersonaDeriver,
        email_extractor: EmailExtractor,
        router: CampaignRouter,
    ) -> None:
        self.store = store
        self.persona_deriver = persona_deriver
        self.email_extractor = email_extractor
        self.router = router

    async def run(self, lead_id: str, step: StepRunner = run_directly) -> dict[str, Any]:
        """Enrich a lead.

        Returns:
            ``{"lead_id", "email", "fit_score", "skipped", "routing"}``.

        Raises:
            EntityNotFoundError: If the lead or its company does not exist.
        """
        lead = await self.store.get_lead(lead_id)
        if lead is None:
            raise EntityNotFoundError(f"Lead {lead_id} not found")

        company = await self.store.get_company(lead.company_id)
        if company is None:
            await self.store.mark_enrichment_failed(lead.id, "company not found")
            raise EntityNotFoundError(f"Company {lead.company_id} not found")

        await step("mark-enriching", self.store.mark_enriching, lead.id)
        persona = await step("derive-persona", self._derive_persona, lead, company)
        email = await step("resolve-email", self._resolve_email, lead, persona)
        saved = await step("save-enrichment", self._save, lead.id, persona, email)

        result: dict[str, Any] = {
            "lead_id": lead.id,
            "email": saved["email"],
            "fit_score": persona.get("fit_score"),
            "skipped": False,
            "routing": None,
        }

        if not saved["email"]:
            reason = NO_EMAIL_REASON
            if saved.get("duplicate_of"):
                reason = f"Email already belongs to lead {saved['duplicate_of']}"
            await step("skip-no-email", self.store.mark_lead_skipped, lead.id, reason)
            logger.info("Lead skipped, no usable email", extra={"lead_id": lead.id})
            result["skipped"] = True
            return result

        result["routing"] = await self.router.route(lead.id, step=prefixed(step, "route"))
        return result

    async def _derive_persona(self, lead: Lead, company: Company) -> dict[str, Any]:
        persona = await self.persona_deriver.derive(raw_lead_payload(lead), company.context())
        return persona.model_dump()

    async def _resolve_email(self, lead: Lead, persona: dict[str, Any]) -> Optional[str]:
        if lead.email:
            return lead.email
        if persona.get("email"):
            logger.debug("Email taken from persona", extra={"lead_id": lead.id})
            return persona["email"]
        email = await self.email_extractor.extract(lead.raw_data)
        if email:
            logger.debug("Email taken from extraction pass", extra={"lead_id": lead.id})
        return email

    async def _save(
        self, lead_id: str, persona: dict[str, Any], email: Optional[str]
    ) -> dict[str, Any]:
        fields = {name: persona[name] for name in PERSONA_FIELDS if name in persona}
        duplicate_of = None
        if email:
            owner = await self.store.email_owner(email)
            if owner and owner != lead_id:
                duplicate_of = owner
                email = None

        lead = await self.store.save_enrichment(lead_id, fields, email)
        logger.info(
            "Lead enriched",
            extra={
                "lead_id": lead_id,
                "category": fields.get("category"),
                "fit_score": fields.get("fit_score"),
                "has_email": bool(lead.email),
            },
        )
        return {"email": lead.email, "duplicate_of": duplicate_of}

    async def handle_failure(self, lead_id: str, error: BaseException) -> None:
        """Mark a lead whose enrichment exhausted its retries as ``failed``."""
        await self.store.mark_enrichment_failed(lead_id, f"{type(error).__name__}: {error}")
