"""Query and DiscoveryRun SQLAlchemy models."""

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
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from . import Base, utcnow


class QueryStatus(str, Enum):
    """Lifecycle of a search query."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class DiscoveryRunStatus(str, Enum):
    """Status of one submission to the discovery provider."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Query(Base):
    """A structured search directive produced by the query generator.

    A query without ``source_instruction_id`` is an exploration query.

    Attributes:
        id: Unique identifier (UUID).
        company_id: Owning company.
        query: Search text submitted to the discovery provider.
        criteria: Optional list of criteria strings.
        source_instruction_id: Instruction this query was generated for.
        generation_rationale: Why the AI chose this query.
        status: pending -> running -> completed | failed.
        is_active: Inactive queries are never picked by the scheduled cycle.
        last_run_at: When the last discovery run for this query completed.
    """

    __tablename__ = "queries"

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
    query: Mapped[str] = mapped_column(Text, nullable=False)
    criteria: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        comment="Criteria filters sent with the search"
    )
    source_instruction_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("instructions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    generation_rationale: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[QueryStatus] = mapped_column(
        SQLEnum(QueryStatus, name="query_status"),
        nullable=False,
        default=QueryStatus.PENDING,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
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
    def is_exploration(self) -> bool:
        """True when the query was not generated from an instruction."""
        return self.source_instruction_id is None

    def __repr__(self) -> str:
        return f"<Query(id={self.id!r}, status={self.status.value!r})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "query": self.query,
            "criteria": self.criteria,
            "source_instruction_id": self.source_instruction_id,
            "generation_rationale": self.generation_rationale,
            "status": self.status.value,
            "is_active": self.is_active,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class DiscoveryRun(Base):
    """One external search submission (a webset) for one query execution.

    Historical runs are kept for audit; ``items_found`` is updated on every
    poll so progress can be reported while the run is still going.
    """

    __tablename__ = "discovery_runs"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    query_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("queries.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    external_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Webset id at the discovery provider"
    )
    status: Mapped[DiscoveryRunStatus] = mapped_column(
        SQLEnum(DiscoveryRunStatus, name="discovery_run_status"),
        nullable=False,
        default=DiscoveryRunStatus.RUNNING,
        index=True,
    )
    items_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<DiscoveryRun(id={self.id!r}, query_id={self.query_id!r}, "
            f"status={self.status.value!r}, items_found={self.items_found})>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "query_id": self.query_id,
            "external_id": self.external_id,
            "status": self.status.value,
            "items_found": self.items_found,
            "error_message": self.error_message,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
