"""Instantly v2 client: the outbound email platform.

Campaigns are created with their full email sequence and a weekday send
window, leads are added one contact at a time, and analytics are read back
as the authoritative sent/open/reply/bounce counters.
"""

import asyncio
import functools
import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import requests

from ..config import ConfigError, config
from .http import build_session

logger = logging.getLogger(__name__)

# Constants
DEFAULT_TIMEOUT_SECONDS = 30
SEND_WINDOW_FROM = "09:00"
SEND_WINDOW_TO = "17:00"
# Instantly numbers days from 0 = Sunday; mail goes out Monday to Friday
SEND_DAYS = {"0": False, "1": True, "2": True, "3": True, "4": True, "5": True, "6": False}
MINUTES_PER_DAY = 24 * 60


class InstantlyError(Exception):
    """Base exception for Instantly client errors."""

    pass


class InstantlyAuthError(InstantlyError):
    """Raised when API authentication fails."""

    pass


class InstantlyRateLimitError(InstantlyError):
    """Raised when API rate limit is exceeded after transport retries."""

    pass


class InstantlyNotFoundError(InstantlyError):
    """Raised when the campaign or resource does not exist."""

    pass


@dataclass
class SequenceStep:
    """One email of a sequence as sent to the platform."""

    subject: str
    body: str
    delay_days: int = 0


@dataclass
class LeadContact:
    """Contact details pushed to the platform when a lead is attached."""

    email: str
    first_name: str = ""
    last_name: str = ""
    company_name: str = ""
    lead_url: str = ""


@dataclass
class CampaignAnalytics:
    """Performance counters for one campaign."""

    sent: int = 0
    opened: int = 0
    replied: int = 0
    bounced: int = 0


def build_sequences(steps: Sequence[Any]) -> list[dict[str, Any]]:
    """Convert steps into Instantly's ``sequences`` payload.

    Step 0 is sent immediately; later steps carry their delay converted from
    days to minutes.
    """
    return [
        {
            "steps": [
                {
                    "type": "email",
                    "delay": 0 if index == 0 else int(step.delay_days) * MINUTES_PER_DAY,
                    "variants": [{"subject": step.subject, "body": step.body}],
                }
                for index, step in enumerate(steps)
            ]
        }
    ]


def parse_analytics(payload: Any) -> CampaignAnalytics:
    """Read counters from an analytics payload, defaulting missing ones to 0.

    The endpoint answers either with one object or with a list holding one
    object per campaign.
    """
    if isinstance(payload, list):
        payload = payload[0] if payload else {}
    if not isinstance(payload, dict):
        payload = {}

    def _count(*keys: str) -> int:
        for key in keys:
            value = payload.get(key)
            if value is not None:
                try:
                    return int(value)
                except (TypeError, ValueError):
                    return 0
        return 0

    return CampaignAnalytics(
        sent=_count("sent", "emails_sent_count"),
        opened=_count("opened", "open_count"),
        replied=_count("replied", "reply_count"),
        bounced=_count("bounced", "bounced_count"),
    )


class InstantlyClient:
    """Client for the Instantly v2 REST API.

    Attributes:
        base_url: API base URL.
        timeout_seconds: Request timeout in seconds.
        daily_limit: Daily send limit applied to new campaigns.
        timezone: Time zone of the weekday send window.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        daily_limit: Optional[int] = None,
        timezone: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._api_key = api_key if api_key is not None else config.INSTANTLY_API_KEY
        self.base_url = (base_url or config.INSTANTLY_BASE_URL).rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.daily_limit = daily_limit or config.CAMPAIGN_DAILY_LIMIT
        self.timezone = timezone or config.SEND_WINDOW_TIMEZONE
        self._session = session

    def _get_session(self) -> requests.Session:
        if self._session is None:
            self._session = build_session()
        return self._session

    def _headers(self) -> dict[str, str]:
        if not self._api_key:
            raise ConfigError("INSTANTLY_API_KEY is required for campaign operations")
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def _request_sync(
        self,
        method: str,
        path: str,
        json_body: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        """Make a synchronous API request.

        Raises:
            ConfigError: If no API key is configured.
            InstantlyAuthError: If authentication fails.
            InstantlyNotFoundError: If the resource does not exist.
            InstantlyRateLimitError: If rate limiting persists after retries.
            InstantlyError: On any other failure.
        """
        url = f"{self.base_url}{path}"
        headers = self._headers()
        try:
            response = self._get_session().request(
                method,
                url,
                headers=headers,
                json=json_body,
                params=params,
                timeout=self.timeout_seconds,
            )
        except requests.exceptions.RequestException as e:
            raise InstantlyError(f"Request failed: {e}") from e

        if response.status_code in (401, 403):
            raise InstantlyAuthError("Invalid Instantly API key or unauthorized access")
        if response.status_code == 404:
            raise InstantlyNotFoundError(f"Resource not found: {path}")
        if response.status_code == 429:
            raise InstantlyRateLimitError("Instantly API rate limit exceeded")
        if response.status_code >= 400:
            raise InstantlyError(
                f"Instantly API error: {response.status_code} - {response.text[:500]}"
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise InstantlyError(f"Invalid JSON from {path}") from e

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, functools.partial(self._request_sync, method, path, **kwargs)
        )

    async def create_campaign(
        self,
        name: str,
        sending_emails: Sequence[str],
        steps: Sequence[Any],
        stop_on_reply: bool = True,
    ) -> str:
        """Register a campaign with its sequence and send window.

        Args:
            name: Campaign display name.
            sending_emails: Sending identities (email accounts) to rotate.
            steps: Objects with ``subject``, ``body`` and ``delay_days``.
            stop_on_reply: Stop the sequence for a lead once they reply.

        Returns:
            The external campaign id.
        """
        body = {
            "name": name,
            "campaign_schedule": {
                "schedules": [
                    {
                        "name": "Default Schedule",
                        "timing": {"from": SEND_WINDOW_FROM, "to": SEND_WINDOW_TO},
                        "days": dict(SEND_DAYS),
                        "timezone": self.timezone,
                    }
                ]
            },
            "sequences": build_sequences(steps),
            "email_list": list(sending_emails),
            "daily_limit": self.daily_limit,
            "stop_on_reply": stop_on_reply,
            "text_only": False,
            "link_tracking": True,
            "open_tracking": True,
        }
        payload = await self._request("POST", "/campaigns", json_body=body)
        external_id = payload.get("id") if isinstance(payload, dict) else None
        if not external_id:
            raise InstantlyError("Campaign creation returned no id")

        logger.info(
            "Instantly campaign created",
            extra={"external_id": external_id, "step_count": len(steps)},
        )
        return external_id

    async def add_lead(self, external_campaign_id: str, contact: LeadContact) -> None:
        """Add one contact to a campaign."""
        body = {
            "campaign_id": external_campaign_id,
            "leads": [
                {
                    "email": contact.email,
                    "first_name": contact.first_name or "",
                    "last_name": contact.last_name or "",
                    "company_name": contact.company_name or "",
                    "lead_url": contact.lead_url or "",
                }
            ],
        }
        await self._request("POST", "/leads", json_body=body)
        logger.info(
            "Lead added to Instantly campaign",
            extra={"external_id": external_campaign_id},
        )

    async def activate(self, external_campaign_id: str) -> None:
        await self._request(
            "POST", f"/campaigns/{external_campaign_id}/activate", json_body={}
        )

    async def pause(self, external_campaign_id: str) -> None:
        await self._request(
            "POST", f"/campaigns/{external_campaign_id}/pause", json_body={}
        )

    async def get_analytics(self, external_campaign_id: str) -> CampaignAnalytics:
        """Fetch sent/opened/replied/bounced counters for a campaign."""
        payload = await self._request(
            "GET",
            "/campaigns/analytics",
            params={"campaign_id": external_campaign_id},
        )
        return parse_analytics(payload)

    async def list_sending_identities(self) -> list[dict[str, Any]]:
        """List the email accounts available for sending."""
        payload = await self._request("GET", "/accounts")
        if isinstance(payload, dict):
            return list(payload.get("items") or [])
        return list(payload or [])
