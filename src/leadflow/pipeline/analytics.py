"""Campaign analytics sync and the daily digest.

The outbound platform is authoritative for sent/open/reply counters; both
the hourly sync and the digest overwrite the local counters with its
numbers. A campaign whose analytics cannot be fetched is logged and skipped.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Optional, Protocol, Sequence

from ..config import ConfigError
from ..integrations.instantly import CampaignAnalytics
from ..models import Campaign, CampaignStatus, utcnow
from ..store import PipelineStore

logger = logging.getLogger(__name__)

DEFAULT_APP_URL = "http://localhost:3200"


class AnalyticsSource(Protocol):
    async def get_analytics(self, external_campaign_id: str) -> CampaignAnalytics: ...


class Notifier(Protocol):
    async def send(self, recipients: Sequence[str], subject: str, body: str) -> None: ...


class AnalyticsSync:
    """Pulls counters for every active campaign into the store."""

    def __init__(self, store: PipelineStore, outbound: AnalyticsSource) -> None:
        self.store = store
        self.outbound = outbound

    async def sync_campaign(self, campaign: Campaign) -> CampaignAnalytics:
        analytics = await self.outbound.get_analytics(campaign.external_id)
        await self.store.update_campaign_stats(
            campaign.id,
            emails_sent=analytics.sent,
            opens=analytics.opened,
            replies=analytics.replied,
            bounces=analytics.bounced,
        )
        return analytics

    async def sync(self) -> dict[str, Any]:
        """Sync all active campaigns.

        Returns:
            ``{"synced": [...ids], "failed": [...ids]}``.
        """
        campaigns = await self.store.list_campaigns(status=CampaignStatus.ACTIVE)
        synced: list[str] = []
        failed: list[str] = []
        for campaign in campaigns:
            try:
                await self.sync_campaign(campaign)
            except Exception:
                logger.error(
                    "Analytics sync failed for campaign",
                    exc_info=True,
                    extra={"campaign_id": campaign.id, "external_id": campaign.external_id},
                )
                failed.append(campaign.id)
                continue
            synced.append(campaign.id)

        logger.info(
            "Campaign analytics synced",
            extra={"synced": len(synced), "failed": len(failed)},
        )
        return {"synced": synced, "failed": failed}


@dataclass
class DigestSummary:
    """Figures of one day's digest."""

    digest_date: date
    leads_found: int = 0
    leads_with_email: int = 0
    emails_sent: int = 0
    opens: int = 0
    replies: int = 0
    stale_campaigns: list[str] = field(default_factory=list)

    @property
    def subject(self) -> str:
        return f"leadflow Daily Digest - {self.digest_date.isoformat()}"

    def to_text(self, app_url: str) -> str:
        """Plain-text body of the digest email."""
        lines = [
            "leadflow Daily Digest",
            "",
            f"Here's your daily summary for {self.digest_date.isoformat()}:",
            "",
            "Leads",
            f"- {self.leads_found} new leads discovered",
            f"- {self.leads_with_email} with verified emails",
            "",
            "Campaigns",
            f"- {self.emails_sent} emails sent",
            f"- {self.opens} opens",
            f"- {self.replies} replies",
        ]
        if self.stale_campaigns:
            lines.append(
                f"- {len(self.stale_campaigns)} campaign(s) reported from the last sync"
            )
        lines.extend(["", f"View Dashboard: {app_url}"])
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "digest_date": self.digest_date.isoformat(),
            "leads_found": self.leads_found,
            "leads_with_email": self.leads_with_email,
            "emails_sent": self.emails_sent,
            "opens": self.opens,
            "replies": self.replies,
            "stale_campaigns": self.stale_campaigns,
        }


class DigestComposer:
    """Builds and delivers the daily digest.

    Args:
        store: Pipeline store.
        outbound: Outbound platform client used for live analytics.
        notifier: Notification channel.
        recipients: Digest recipients.
        app_url: Dashboard link included in the body.
        clock: Returns the current naive UTC time.
    """

    def __init__(
        self,
        store: PipelineStore,
        outbound: AnalyticsSource,
        notifier: Notifier,
        recipients: Sequence[str],
        app_url: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.sync = AnalyticsSync(store, outbound)
        self.notifier = notifier
        self.recipients = list(recipients)
        self.app_url = app_url or DEFAULT_APP_URL
        self.clock = clock

    async def compose(self) -> DigestSummary:
        """Collect today's lead counts and cross-campaign totals.

        Totals cover every campaign. Live analytics are used and stored; a
        campaign whose fetch fails contributes its stored counters instead.
        """
        today = self.clock().date()
        start = datetime.combine(today, time.min)
        leads = await self.store.leads_created_between(start, start + timedelta(days=1))

        summary = DigestSummary(
            digest_date=today,
            leads_found=len(leads),
            leads_with_email=sum(1 for lead in leads if lead.email),
        )
        for campaign in await self.store.list_campaigns():
            try:
                analytics = await self.sync.sync_campaign(campaign)
                sent, opens, replies = analytics.sent, analytics.opened, analytics.replied
            except Exception:
                logger.warning(
                    "Live analytics unavailable, using stored counters",
                    exc_info=True,
                    extra={"campaign_id": campaign.id},
                )
                summary.stale_campaigns.append(campaign.id)
                sent, opens, replies = campaign.emails_sent, campaign.opens, campaign.replies
            summary.emails_sent += sent or 0
            summary.opens += opens or 0
            summary.replies += replies or 0
        return summary

    async def send(self) -> DigestSummary:
        """Compose, deliver and record today's digest.

        Raises:
            ConfigError: If no recipients are configured.
            NotificationError: If the notification channel rejects the email.
        """
        if not self.recipients:
            raise ConfigError("DIGEST_RECIPIENTS is required to send the daily digest")

        summary = await self.compose()
        body = summary.to_text(self.app_url)
        await self.notifier.send(self.recipients, summary.subject, body)
        await self.store.save_daily_digest(
            summary.digest_date,
            leads_found=summary.leads_found,
            leads_with_email=summary.leads_with_email,
            emails_sent=summary.emails_sent,
            opens=summary.opens,
            replies=summary.replies,
            recipients=self.recipients,
            body=body,
            sent_at=self.clock(),
        )
        logger.info(
            "Daily digest sent",
            extra={**summary.to_dict(), "recipient_count": len(self.recipients)},
        )
        return summary
