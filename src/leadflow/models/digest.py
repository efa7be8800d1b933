"""DailyDigest SQLAlchemy model."""

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import Date, DateTime, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from . import Base, utcnow


class DailyDigest(Base):
    """Record of the daily pipeline summary, one row per calendar day."""

    __tablename__ = "daily_digests"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    digest_date: Mapped[date] = mapped_column(Date, nullable=False, unique=True)
    leads_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    leads_with_email: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    emails_sent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    opens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    replies: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    recipients: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    body: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow
    )

    def __repr__(self) -> str:
        return f"<DailyDigest(date={self.digest_date!s}, leads_found={self.leads_found})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "digest_date": self.digest_date.isoformat(),
            "leads_found": self.leads_found,
            "leads_with_email": self.leads_with_email,
            "emails_sent": self.emails_sent,
            "opens": self.opens,
            "replies": self.replies,
            "recipients": self.recipients,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
        }
