"""Lead SQLAlchemy model for discovered candidate contacts."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from . import Base, utcnow


class EnrichmentStatus(str, Enum):
    """Enrichment axis of a lead."""

    PENDING = "pending"
    ENRICHING = "enriching"
    ENRICHED = "enriched"
    FAILED = "failed"


class LeadCampaignStatus(str, Enum):
    """Campaign axis of a lead."""

    PENDING = "pending"
    ROUTED = "routed"
    SKIPPED = "skipped"


class Lead(Base):
    """SQLAlchemy model representing a discovered lead.

    A lead moves along two independent axes: ``enrichment_status``
    (pending -> enriching -> enriched | failed) and ``campaign_status``
    (pending -> routed | skipped). A routed lead always has ``campaign_id``
    and ``campaign_routed_at`` set, and only enriched leads with an email
    are ever routed.

    Attributes:
        id: Unique identifier for the lead (UUID).
        company_id: Company whose query discovered the lead.
        query_id: Query that discovered the lead.
        discovery_run_id: Discovery run that produced the lead.
        url: Source profile URL, unique across all leads.
        name: Display name at discovery time.
        email: Contact email, unique across all leads when set.
        platform: Platform detected from the URL (tiktok, youtube, ...).
        follower_count: Audience size reported by the discovery provider.
        raw_data: Raw provider payload handed to the enrichment AI.
        category: Persona category (influencer, coach, podcast, ...).
        full_name: Full name from enrichment.
        title: Professional title.
        bio: Short biography.
        expertise: Expertise tags.
        social_links: Social profile URLs keyed by platform.
        total_audience: Total audience across platforms.
        content_types: Kinds of content the lead produces.
        fit_score: 1-10 fit for the company's outreach.
        fit_reason: Rationale for the fit score.
        suggested_campaign_id: Router's non-binding recommendation.
        suggested_campaign_reason: Router's reasoning.
        skip_reason: Why the lead was skipped.
        campaign_id: Campaign the lead is attached to once routed.
    """

    __tablename__ = "leads"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )

    # Provenance
    company_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    query_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("queries.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    discovery_run_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("discovery_runs.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Discovery data; url and email are the dedup keys
    url: Mapped[str] = mapped_column(
        String(2048),
        nullable=False,
        unique=True,
        comment="Source profile URL, natural dedup key"
    )
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
        comment="Contact email, lower-cased"
    )
    platform: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    follower_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    raw_data: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
        comment="Raw discovery payload"
    )

    # Enrichment fields
    enrichment_status: Mapped[EnrichmentStatus] = mapped_column(
        SQLEnum(EnrichmentStatus, name="enrichment_status"),
        nullable=False,
        default=EnrichmentStatus.PENDING,
        index=True,
    )
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expertise: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    social_links: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    total_audience: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    content_types: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    fit_score: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="1-10 fit for the company's outreach"
    )
    fit_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    enriched_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Campaign routing
    campaign_status: Mapped[LeadCampaignStatus] = mapped_column(
        SQLEnum(LeadCampaignStatus, name="lead_campaign_status"),
        nullable=False,
        default=LeadCampaignStatus.PENDING,
        index=True,
    )
    suggested_campaign_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("campaigns.id", ondelete="SET NULL"),
        nullable=True,
    )
    suggested_campaign_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    skip_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    campaign_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("campaigns.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    campaign_routed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow
    )

    @property
    def first_name(self) -> str:
        """First word of the best known name, or an empty string."""
        name = self.full_name if self.full_name and self.full_name != "Unknown" else self.name
        return name.split()[0] if name and name.split() else ""

    def __repr__(self) -> str:
        """Return string representation of the lead."""
        return (
            f"<Lead(id={self.id!r}, url={self.url!r}, "
            f"enrichment={self.enrichment_status.value!r}, "
            f"campaign={self.campaign_status.value!r})>"
        )

    def to_dict(self) -> dict:
        """Convert lead to dictionary representation.

        Returns:
            Dictionary with all lead fields except the raw payload.
        """
        return {
            "id": self.id,
            "company_id": self.company_id,
            "query_id": self.query_id,
            "discovery_run_id": self.discovery_run_id,
            "url": self.url,
            "name": self.name,
            "email": self.email,
            "platform": self.platform,
            "follower_count": self.follower_count,
            "enrichment_status": self.enrichment_status.value,
            "category": self.category,
            "full_name": self.full_name,
            "title": self.title,
            "bio": self.bio,
            "expertise": self.expertise,
            "social_links": self.social_links,
            "total_audience": self.total_audience,
            "content_types": self.content_types,
            "fit_score": self.fit_score,
            "fit_reason": self.fit_reason,
            "enriched_at": self.enriched_at.isoformat() if self.enriched_at else None,
            "campaign_status": self.campaign_status.value,
            "suggested_campaign_id": self.suggested_campaign_id,
            "suggested_campaign_reason": self.suggested_campaign_reason,
            "skip_reason": self.skip_reason,
            "campaign_id": self.campaign_id,
            "campaign_routed_at": (
                self.campaign_routed_at.isoformat() if self.campaign_routed_at else None
            ),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
