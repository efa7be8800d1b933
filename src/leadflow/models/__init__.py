"""Lead Pipeline Database Models.

This module contains SQLAlchemy models for the lead pipeline.
"""

from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp, as stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Import models to register them with Base metadata
from .company import Company, Instruction
from .query import Query, QueryStatus, DiscoveryRun, DiscoveryRunStatus
from .lead import Lead, EnrichmentStatus, LeadCampaignStatus
from .campaign import Campaign, CampaignStatus, CampaignEmail
from .digest import DailyDigest
from .job import JobRecord, JobStatus

# Import database utilities
from .database import (
    DatabaseManager,
    get_db_session,
    create_test_engine,
    create_session_factory,
    normalize_database_url,
)

__all__ = [
    # Base class
    "Base",
    "utcnow",
    # Models
    "Company",
    "Instruction",
    "Query",
    "QueryStatus",
    "DiscoveryRun",
    "DiscoveryRunStatus",
    "Lead",
    "EnrichmentStatus",
    "LeadCampaignStatus",
    "Campaign",
    "CampaignStatus",
    "CampaignEmail",
    "DailyDigest",
    "JobRecord",
    "JobStatus",
    # Database utilities
    "DatabaseManager",
    "get_db_session",
    "create_test_engine",
    "create_session_factory",
    "normalize_database_url",
]
