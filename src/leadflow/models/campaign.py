"""Campaign and CampaignEmail SQLAlchemy models."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from . import Base, utcnow


class CampaignStatus(str, Enum):
    """Status of an outreach campaign."""

    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class Campaign(Base):
    """SQLAlchemy model representing an outreach sequence on the outbound platform.

    ``emails_sent``, ``opens``, ``replies`` and ``bounces`` mirror the outbound
    platform, which is authoritative; ``leads_count`` is incremented locally
    on every binding attachment.

    Attributes:
        id: Unique identifier for the campaign (UUID).
        company_id: Owning company.
        external_id: Campaign id on the outbound platform.
        name: Display name.
        persona: Persona label the campaign targets.
        status: draft, active, paused or completed.
        is_accepting_leads: Whether new leads may be attached.
        max_leads: Capacity for automatic attachment.
        leads_count: Leads attached so far.
    """

    __tablename__ = "campaigns"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    company_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    external_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="Campaign id on the outbound platform"
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    persona: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[CampaignStatus] = mapped_column(
        SQLEnum(CampaignStatus, name="campaign_status"),
        nullable=False,
        default=CampaignStatus.DRAFT,
        index=True,
    )
    is_accepting_leads: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    max_leads: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=500,
        comment="Advisory capacity checked before automatic attachment"
    )

    # Counters
    leads_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    emails_sent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    opens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    replies: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    bounces: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    analytics_synced_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow
    )

    def __repr__(self) -> str:
        """Return string representation of the campaign."""
        return (
            f"<Campaign(id={self.id!r}, name={self.name!r}, "
            f"status={self.status.value!r})>"
        )

    def to_dict(self) -> dict:
        """Convert campaign to dictionary representation.

        Returns:
            Dictionary with all campaign fields and derived rates.
        """
        return {
            "id": self.id,
            "company_id": self.company_id,
            "external_id": self.external_id,
            "name": self.name,
            "persona": self.persona,
            "status": self.status.value,
            "is_accepting_leads": self.is_accepting_leads,
            "max_leads": self.max_leads,
            "leads_count": self.leads_count,
            "emails_sent": self.emails_sent,
            "opens": self.opens,
            "replies": self.replies,
            "bounces": self.bounces,
            "open_rate": self.open_rate,
            "reply_rate": self.reply_rate,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    @property
    def open_rate(self) -> float:
        """Opens per email sent, 0 when nothing was sent."""
        if not self.emails_sent:
            return 0.0
        return self.opens / self.emails_sent

    @property
    def reply_rate(self) -> float:
        """Replies per email sent, 0 when nothing was sent."""
        if not self.emails_sent:
            return 0.0
        return self.replies / self.emails_sent

    @property
    def has_capacity(self) -> bool:
        """Check if the campaign is under its lead capacity."""
        return (self.leads_count or 0) < (self.max_leads or 0)

    @property
    def can_auto_attach(self) -> bool:
        """Check if a lead may be attached without a human.

        Returns:
            True when the campaign is active, accepting leads and under capacity.
        """
        return (
            self.status == CampaignStatus.ACTIVE
            and self.is_accepting_leads
            and self.has_capacity
        )


class CampaignEmail(Base):
    """One step of a campaign's generated email sequence (write-once)."""

    __tablename__ = "campaign_emails"
    __table_args__ = (
        UniqueConstraint("campaign_id", "step", name="uq_campaign_emails_step"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    campaign_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="0 = initial email"
    )
    subject: Mapped[str] = mapped_column(Text, nullable=False, default="")
    body: Mapped[str] = mapped_column(Text, nullable=False)
    delay_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow
    )

    def __repr__(self) -> str:
        return f"<CampaignEmail(campaign_id={self.campaign_id!r}, step={self.step})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "campaign_id": self.campaign_id,
            "step": self.step,
            "subject": self.subject,
            "body": self.body,
            "delay_days": self.delay_days,
        }
