"""Data access and state transitions for the lead pipeline.

Every pipeline component reads and writes entities through ``PipelineStore``.
Each method opens its own short transaction from the injected session
factory, so state changes are point updates keyed by entity id and no lock
is held across external calls.

Transitions that must not happen twice (flagging an instruction, routing a
lead) are conditional ``UPDATE ... WHERE`` statements whose row count tells
the caller whether this invocation won.
"""

import logging
from datetime import date, datetime
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import (
    Campaign,
    CampaignEmail,
    CampaignStatus,
    Company,
    DailyDigest,
    DiscoveryRun,
    DiscoveryRunStatus,
    EnrichmentStatus,
    Instruction,
    Lead,
    LeadCampaignStatus,
    Query,
    QueryStatus,
    utcnow,
)
from .models.database import get_db_session

logger = logging.getLogger(__name__)

# Persona fields written by the enrichment worker
PERSONA_FIELDS = (
    "category",
    "full_name",
    "title",
    "bio",
    "expertise",
    "social_links",
    "total_audience",
    "content_types",
    "fit_score",
    "fit_reason",
)


def normalize_email(email: Optional[str]) -> Optional[str]:
    """Lower-case and trim an email; blank values become None."""
    if not email:
        return None
    email = email.strip().lower()
    return email or None


class PipelineStore:
    """Relational store facade used by every pipeline stage.

    Args:
        session_factory: Async session factory bound to the pipeline database.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    def session(self):
        """Open a transactional session (commit on success, rollback on error)."""
        return get_db_session(self._session_factory)

    # ------------------------------------------------------------------
    # Companies and instructions
    # ------------------------------------------------------------------

    async def create_company(self, name: str, **fields: Any) -> Company:
        async with self.session() as session:
            company = Company(name=name, **fields)
            session.add(company)
        return company

    async def get_company(self, company_id: str) -> Optional[Company]:
        async with self.session() as session:
            return await session.get(Company, company_id)

    async def list_companies(self) -> list[Company]:
        async with self.session() as session:
            result = await session.execute(select(Company).order_by(Company.created_at))
            return list(result.scalars().all())

    async def create_instruction(self, company_id: str, content: str) -> Instruction:
        async with self.session() as session:
            instruction = Instruction(company_id=company_id, content=content)
            session.add(instruction)
        return instruction

    async def get_instruction(self, instruction_id: str) -> Optional[Instruction]:
        async with self.session() as session:
            return await session.get(Instruction, instruction_id)

    async def pending_instructions(self, company_id: str) -> list[Instruction]:
        """Unprocessed instructions for a company, oldest first."""
        async with self.session() as session:
            result = await session.execute(
                select(Instruction)
                .where(
                    Instruction.company_id == company_id,
                    Instruction.query_generated.is_(False),
                )
                .order_by(Instruction.created_at, Instruction.id)
            )
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def create_query(
        self,
        company_id: str,
        query: str,
        criteria: Sequence[str],
        rationale: Optional[str] = None,
        instruction_id: Optional[str] = None,
    ) -> Optional[Query]:
        """Persist a generated query and flag its instruction in one transaction.

        Returns:
            The new query, or None when the instruction had already been
            processed by another run (nothing is written in that case).
        """
        async with self.session() as session:
            if instruction_id is not None:
                flagged = await session.execute(
                    update(Instruction)
                    .where(
                        Instruction.id == instruction_id,
                        Instruction.query_generated.is_(False),
                    )
                    .values(query_generated=True)
                )
                if flagged.rowcount == 0:
                    logger.info(
                        "Instruction already processed, query not saved",
                        extra={"instruction_id": instruction_id},
                    )
                    return None

            record = Query(
                company_id=company_id,
                query=query,
                criteria=list(criteria),
                generation_rationale=rationale,
                source_instruction_id=instruction_id,
                status=QueryStatus.PENDING,
                is_active=True,
            )
            session.add(record)
        return record

    async def get_query(self, query_id: str) -> Optional[Query]:
        async with self.session() as session:
            return await session.get(Query, query_id)

    async def recent_queries_with_yield(
        self, company_id: str, limit: int = 20
    ) -> list[tuple[Query, int]]:
        """Most recent queries of a company with the number of leads each found."""
        async with self.session() as session:
            lead_count = func.count(Lead.id)
            result = await session.execute(
                select(Query, lead_count)
                .outerjoin(Lead, Lead.query_id == Query.id)
                .where(Query.company_id == company_id)
                .group_by(Query.id)
                .order_by(Query.created_at.desc())
                .limit(limit)
            )
            return [(row[0], int(row[1] or 0)) for row in result.all()]

    async def latest_pending_query(self, company_id: str) -> Optional[Query]:
        """The most recently created pending, active query of a company."""
        async with self.session() as session:
            result = await session.execute(
                select(Query)
                .where(
                    Query.company_id == company_id,
                    Query.status == QueryStatus.PENDING,
                    Query.is_active.is_(True),
                )
                .order_by(Query.created_at.desc())
                .limit(1)
            )
            return result.scalars().first()

    async def set_query_status(
        self,
        query_id: str,
        status: QueryStatus,
        last_run_at: Optional[datetime] = None,
    ) -> None:
        values: dict[str, Any] = {"status": status}
        if last_run_at is not None:
            values["last_run_at"] = last_run_at
        async with self.session() as session:
            await session.execute(update(Query).where(Query.id == query_id).values(**values))

    # ------------------------------------------------------------------
    # Discovery runs
    # ------------------------------------------------------------------

    async def create_discovery_run(self, query_id: str, external_id: str) -> DiscoveryRun:
        async with self.session() as session:
            run = DiscoveryRun(
                query_id=query_id,
                external_id=external_id,
                status=DiscoveryRunStatus.RUNNING,
                items_found=0,
                started_at=utcnow(),
            )
            session.add(run)
        return run

    async def get_discovery_run(self, run_id: str) -> Optional[DiscoveryRun]:
        async with self.session() as session:
            return await session.get(DiscoveryRun, run_id)

    async def update_run_progress(self, run_id: str, items_found: int) -> None:
        async with self.session() as session:
            await session.execute(
                update(DiscoveryRun)
                .where(DiscoveryRun.id == run_id)
                .values(items_found=items_found)
            )

    async def finish_discovery_run(
        self,
        run_id: str,
        status: DiscoveryRunStatus,
        items_found: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> None:
        values: dict[str, Any] = {"status": status, "completed_at": utcnow()}
        if items_found is not None:
            values["items_found"] = items_found
        if error_message is not None:
            values["error_message"] = error_message[:2000]
        async with self.session() as session:
            await session.execute(
                update(DiscoveryRun).where(DiscoveryRun.id == run_id).values(**values)
            )

    async def fail_running_runs(self, query_id: str, error_message: str) -> int:
        """Finish every still-running discovery run of a query as failed."""
        async with self.session() as session:
            result = await session.execute(
                update(DiscoveryRun)
                .where(
                    DiscoveryRun.query_id == query_id,
                    DiscoveryRun.status == DiscoveryRunStatus.RUNNING,
                )
                .values(
                    status=DiscoveryRunStatus.FAILED,
                    completed_at=utcnow(),
                    error_message=error_message[:2000],
                )
            )
            return result.rowcount

    # ------------------------------------------------------------------
    # Leads
    # ------------------------------------------------------------------

    async def get_lead(self, lead_id: str) -> Optional[Lead]:
        async with self.session() as session:
            return await session.get(Lead, lead_id)

    async def existing_lead_keys(
        self, urls: Iterable[str], emails: Iterable[str]
    ) -> tuple[set[str], set[str]]:
        """Return which of the given URLs and emails already belong to a lead."""
        urls = [u for u in set(urls) if u]
        emails = [e for e in {normalize_email(e) for e in emails} if e]
        found_urls: set[str] = set()
        found_emails: set[str] = set()
        async with self.session() as session:
            if urls:
                result = await session.execute(select(Lead.url).where(Lead.url.in_(urls)))
                found_urls = set(result.scalars().all())
            if emails:
                result = await session.execute(
                    select(Lead.email).where(Lead.email.in_(emails))
                )
                found_emails = {e for e in result.scalars().all() if e}
        return found_urls, found_emails

    async def insert_lead(self, **fields: Any) -> Optional[Lead]:
        """Insert one lead in its own transaction.

        Returns:
            The persisted lead, or None when the unique url/email index
            rejected it because a concurrent run inserted the same contact.
        """
        fields["email"] = normalize_email(fields.get("email"))
        lead = Lead(**fields)
        try:
            async with self.session() as session:
                session.add(lead)
        except IntegrityError:
            logger.info(
                "Duplicate lead suppressed by unique index",
                extra={"url": fields.get("url"), "email": fields.get("email")},
            )
            return None
        return lead

    async def email_owner(self, email: str) -> Optional[str]:
        """Id of the lead that already holds this email, if any."""
        email = normalize_email(email)
        if not email:
            return None
        async with self.session() as session:
            result = await session.execute(select(Lead.id).where(Lead.email == email))
            return result.scalars().first()

    async def mark_enriching(self, lead_id: str) -> None:
        async with self.session() as session:
            await session.execute(
                update(Lead)
                .where(Lead.id == lead_id)
                .values(enrichment_status=EnrichmentStatus.ENRICHING)
            )

    async def save_enrichment(
        self,
        lead_id: str,
        persona: dict[str, Any],
        email: Optional[str],
    ) -> Lead:
        """Persist persona fields and mark the lead enriched.

        The email is written only when the lead had none at discovery time.

        Raises:
            LookupError: If the lead does not exist.
        """
        async with self.session() as session:
            lead = await session.get(Lead, lead_id)
            if lead is None:
                raise LookupError(f"Lead {lead_id} not found")
            for name in PERSONA_FIELDS:
                if name in persona:
                    setattr(lead, name, persona[name])
            lead.enrichment_status = EnrichmentStatus.ENRICHED
            lead.enriched_at = utcnow()
            if lead.email is None and email:
                lead.email = normalize_email(email)
        return lead

    async def mark_enrichment_failed(self, lead_id: str, reason: str = "") -> bool:
        """Move a lead that is still pending/enriching to ``failed``."""
        async with self.session() as session:
            result = await session.execute(
                update(Lead)
                .where(
                    Lead.id == lead_id,
                    Lead.enrichment_status.in_(
                        [EnrichmentStatus.PENDING, EnrichmentStatus.ENRICHING]
                    ),
                )
                .values(enrichment_status=EnrichmentStatus.FAILED)
            )
        if result.rowcount:
            logger.warning(
                "Lead enrichment failed",
                extra={"lead_id": lead_id, "reason": reason[:500]},
            )
        return bool(result.rowcount)

    async def mark_lead_skipped(self, lead_id: str, reason: str) -> bool:
        """Skip a lead that has not been routed, clearing any suggestion."""
        async with self.session() as session:
            result = await session.execute(
                update(Lead)
                .where(
                    Lead.id == lead_id,
                    Lead.campaign_status != LeadCampaignStatus.ROUTED,
                )
                .values(
                    campaign_status=LeadCampaignStatus.SKIPPED,
                    skip_reason=reason,
                    suggested_campaign_id=None,
                    suggested_campaign_reason=None,
                )
            )
        return bool(result.rowcount)

    async def set_suggested_campaign(
        self, lead_id: str, campaign_id: str, reason: str
    ) -> bool:
        """Store the router's suggestion; the lead stays ``pending``."""
        async with self.session() as session:
            result = await session.execute(
                update(Lead)
                .where(
                    Lead.id == lead_id,
                    Lead.campaign_status != LeadCampaignStatus.ROUTED,
                )
                .values(
                    campaign_status=LeadCampaignStatus.PENDING,
                    suggested_campaign_id=campaign_id,
                    suggested_campaign_reason=reason,
                    skip_reason=None,
                )
            )
        return bool(result.rowcount)

    async def attach_lead_to_campaign(self, lead_id: str, campaign_id: str) -> bool:
        """Bind a lead to a campaign and count it, at most once.

        The lead row is updated only when it is enriched, has an email and is
        not yet routed; the campaign counter moves in the same transaction and
        only when that update won.

        Returns:
            True when this call performed the attachment.
        """
        async with self.session() as session:
            result = await session.execute(
                update(Lead)
                .where(
                    Lead.id == lead_id,
                    Lead.campaign_status != LeadCampaignStatus.ROUTED,
                    Lead.enrichment_status == EnrichmentStatus.ENRICHED,
                    Lead.email.is_not(None),
                )
                .values(
                    campaign_status=LeadCampaignStatus.ROUTED,
                    campaign_id=campaign_id,
                    campaign_routed_at=utcnow(),
                    skip_reason=None,
                )
            )
            if result.rowcount == 0:
                return False
            await session.execute(
                update(Campaign)
                .where(Campaign.id == campaign_id)
                .values(leads_count=Campaign.leads_count + 1)
            )
        return True

    async def unskip_lead(self, lead_id: str) -> Optional[Lead]:
        """Return a skipped lead to ``pending`` and repair a stuck enrichment."""
        async with self.session() as session:
            lead = await session.get(Lead, lead_id)
            if lead is None or lead.campaign_status == LeadCampaignStatus.ROUTED:
                return None
            lead.campaign_status = LeadCampaignStatus.PENDING
            lead.skip_reason = None
            lead.suggested_campaign_id = None
            lead.suggested_campaign_reason = None
            if (
                lead.enrichment_status == EnrichmentStatus.ENRICHING
                and lead.fit_score is not None
            ):
                lead.enrichment_status = EnrichmentStatus.ENRICHED
        return lead

    async def reset_lead_for_enrichment(self, lead_id: str) -> Optional[Lead]:
        """Reset enrichment and campaign state ahead of a re-enrichment."""
        async with self.session() as session:
            lead = await session.get(Lead, lead_id)
            if lead is None or lead.campaign_status == LeadCampaignStatus.ROUTED:
                return None
            lead.enrichment_status = EnrichmentStatus.PENDING
            lead.campaign_status = LeadCampaignStatus.PENDING
            lead.skip_reason = None
            lead.suggested_campaign_id = None
            lead.suggested_campaign_reason = None
        return lead

    async def leads_created_between(self, start: datetime, end: datetime) -> list[Lead]:
        async with self.session() as session:
            result = await session.execute(
                select(Lead)
                .where(Lead.created_at >= start, Lead.created_at < end)
                .order_by(Lead.created_at)
            )
            return list(result.scalars().all())

    async def leads_for_run(self, run_id: str) -> list[Lead]:
        async with self.session() as session:
            result = await session.execute(
                select(Lead)
                .where(Lead.discovery_run_id == run_id)
                .order_by(Lead.created_at)
            )
            return list(result.scalars().all())

    async def leads_for_query(self, query_id: str) -> list[Lead]:
        async with self.session() as session:
            result = await session.execute(
                select(Lead).where(Lead.query_id == query_id).order_by(Lead.created_at)
            )
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Campaigns
    # ------------------------------------------------------------------

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        async with self.session() as session:
            return await session.get(Campaign, campaign_id)

    async def campaigns_for_company(
        self, company_id: str, eligible_only: bool = False
    ) -> list[Campaign]:
        """Campaigns of a company; ``eligible_only`` keeps active, lead-accepting ones."""
        stmt = select(Campaign).where(Campaign.company_id == company_id)
        if eligible_only:
            stmt = stmt.where(
                Campaign.status == CampaignStatus.ACTIVE,
                Campaign.is_accepting_leads.is_(True),
            )
        async with self.session() as session:
            result = await session.execute(stmt.order_by(Campaign.created_at))
            return list(result.scalars().all())

    async def list_campaigns(self, status: Optional[CampaignStatus] = None) -> list[Campaign]:
        stmt = select(Campaign)
        if status is not None:
            stmt = stmt.where(Campaign.status == status)
        async with self.session() as session:
            result = await session.execute(stmt.order_by(Campaign.created_at.desc()))
            return list(result.scalars().all())

    async def create_campaign(
        self,
        company_id: str,
        external_id: str,
        name: str,
        persona: Optional[str],
        steps: Sequence[Any],
        max_leads: int = 500,
        status: CampaignStatus = CampaignStatus.ACTIVE,
    ) -> Campaign:
        """Persist a campaign and its email steps in one transaction.

        Args:
            steps: Objects with ``subject``, ``body`` and ``delay_days``,
                ordered by step index.
        """
        async with self.session() as session:
            campaign = Campaign(
                company_id=company_id,
                external_id=external_id,
                name=name,
                persona=persona,
                status=status,
                is_accepting_leads=True,
                max_leads=max_leads,
                leads_count=0,
                emails_sent=0,
                opens=0,
                replies=0,
            )
            session.add(campaign)
            await session.flush()
            for index, step in enumerate(steps):
                session.add(
                    CampaignEmail(
                        campaign_id=campaign.id,
                        step=index,
                        subject=step.subject,
                        body=step.body,
                        delay_days=0 if index == 0 else step.delay_days,
                    )
                )
        return campaign

    async def campaign_by_external_id(self, external_id: str) -> Optional[Campaign]:
        async with self.session() as session:
            result = await session.execute(
                select(Campaign).where(Campaign.external_id == external_id)
            )
            return result.scalars().first()

    async def campaign_emails(self, campaign_id: str) -> list[CampaignEmail]:
        async with self.session() as session:
            result = await session.execute(
                select(CampaignEmail)
                .where(CampaignEmail.campaign_id == campaign_id)
                .order_by(CampaignEmail.step)
            )
            return list(result.scalars().all())

    async def set_campaign_status(self, campaign_id: str, status: CampaignStatus) -> None:
        async with self.session() as session:
            await session.execute(
                update(Campaign).where(Campaign.id == campaign_id).values(status=status)
            )

    async def update_campaign_stats(
        self,
        campaign_id: str,
        emails_sent: int,
        opens: int,
        replies: int,
        bounces: int = 0,
    ) -> None:
        """Overwrite analytics counters with the outbound platform's numbers."""
        async with self.session() as session:
            await session.execute(
                update(Campaign)
                .where(Campaign.id == campaign_id)
                .values(
                    emails_sent=emails_sent,
                    opens=opens,
                    replies=replies,
                    bounces=bounces,
                    analytics_synced_at=utcnow(),
                )
            )

    # ------------------------------------------------------------------
    # Digests
    # ------------------------------------------------------------------

    async def save_daily_digest(self, digest_date: date, **values: Any) -> DailyDigest:
        """Insert or overwrite the digest row for a day."""
        async with self.session() as session:
            result = await session.execute(
                select(DailyDigest).where(DailyDigest.digest_date == digest_date)
            )
            digest = result.scalars().first()
            if digest is None:
                digest = DailyDigest(digest_date=digest_date)
                session.add(digest)
            for key, value in values.items():
                setattr(digest, key, value)
        return digest

    async def get_daily_digest(self, digest_date: date) -> Optional[DailyDigest]:
        async with self.session() as session:
            result = await session.execute(
                select(DailyDigest).where(DailyDigest.digest_date == digest_date)
            )
            return result.scalars().first()
