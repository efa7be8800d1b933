"""Company (tenant) and Instruction SQLAlchemy models."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from . import Base, utcnow


class Company(Base):
    """SQLAlchemy model representing a tenant running outbound campaigns.

    Attributes:
        id: Unique identifier for the company (UUID).
        name: Company name used in prompts and campaign copy.
        website: Company website, given to the AI for research.
        description: What the company does (targeting description).
        target_audience: Who the company wants to reach.
        agent_notes: Free-form notes passed to the query writer.
        sending_emails: Sending identities registered on the outbound platform.
        default_sequence_length: Number of emails per generated sequence (1-3).
        email_prompt: Custom copywriting prompt; None falls back to the default.
        calendar_link: Booking link rendered into the last follow-up.
        autopilot_enabled: Whether routing suggestions may be confirmed automatically.
        autopilot_min_fit_score: Minimum fit score for an automatic confirmation.
    """

    __tablename__ = "companies"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    website: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
        comment="Targeting description: what the company sells"
    )
    target_audience: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
        comment="Audience description used for discovery and fit scoring"
    )
    agent_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Outreach settings
    sending_emails: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        comment="Sending identities on the outbound platform"
    )
    default_sequence_length: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=2,
        comment="Emails per generated sequence (1-3)"
    )
    email_prompt: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Custom email-copy prompt; NULL uses the system default"
    )
    calendar_link: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Autopilot
    autopilot_enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Confirm routing suggestions without a human"
    )
    autopilot_min_fit_score: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Minimum fit score for autopilot attachment (default 7)"
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

    instructions: Mapped[list["Instruction"]] = relationship(
        "Instruction",
        back_populates="company",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        """Return string representation of the company."""
        return f"<Company(id={self.id!r}, name={self.name!r})>"

    def to_dict(self) -> dict:
        """Convert company to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "website": self.website,
            "description": self.description,
            "target_audience": self.target_audience,
            "agent_notes": self.agent_notes,
            "sending_emails": self.sending_emails,
            "default_sequence_length": self.default_sequence_length,
            "email_prompt": self.email_prompt,
            "calendar_link": self.calendar_link,
            "autopilot_enabled": self.autopilot_enabled,
            "autopilot_min_fit_score": self.autopilot_min_fit_score,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def context(self) -> dict:
        """Company context handed to AI prompts."""
        return {
            "name": self.name,
            "website": self.website or "",
            "description": self.description,
            "target_audience": self.target_audience,
            "agent_notes": self.agent_notes or "",
        }


class Instruction(Base):
    """A user-supplied natural-language targeting directive.

    The ``query_generated`` flag flips to True exactly once, when the query
    generator has persisted a query for it.
    """

    __tablename__ = "instructions"

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
    content: Mapped[str] = mapped_column(Text, nullable=False)
    query_generated: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        index=True,
        comment="Set once a query has been generated from this instruction"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow
    )

    company: Mapped["Company"] = relationship(
        "Company", back_populates="instructions", lazy="selectin"
    )

    def __repr__(self) -> str:
        return (
            f"<Instruction(id={self.id!r}, company_id={self.company_id!r}, "
            f"query_generated={self.query_generated!r})>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "content": self.content,
            "query_generated": self.query_generated,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
