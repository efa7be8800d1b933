"""Exa Websets client for lead discovery.

A webset is a long-running search job on the Exa side: it is created with a
query, optional criteria and enrichment hints, moves through ``running`` until
it goes ``idle``, and then exposes its items through a cursor-paginated list.

Usage:
    >>> client = ExaWebsetsClient()
    >>> webset_id = await client.submit("fitness coaches on tiktok", count=25)
    >>> status = await client.poll_status(webset_id)
    >>> items = await client.list_results(webset_id)
"""

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import requests

from ..config import ConfigError, config
from .http import build_session

logger = logging.getLogger(__name__)

# Constants
DEFAULT_TIMEOUT_SECONDS = 30
DEFAULT_RESULT_COUNT = 25
ITEMS_PAGE_SIZE = 100

EMAIL_ENRICHMENT_DESCRIPTION = "Find the email address for this person or creator"
FOLLOWER_ENRICHMENT_DESCRIPTION = "Extract the follower or subscriber count if visible"

DEFAULT_ENRICHMENTS: tuple[dict[str, str], ...] = (
    {"description": EMAIL_ENRICHMENT_DESCRIPTION, "format": "email"},
    {"description": FOLLOWER_ENRICHMENT_DESCRIPTION, "format": "number"},
)

# Webset/search states reported as terminal failures
FAILED_STATES = frozenset({"failed", "canceled", "cancelled"})


class ExaError(Exception):
    """Base exception for Exa client errors."""

    pass


class ExaAuthError(ExaError):
    """Raised when API authentication fails."""

    pass


class ExaRateLimitError(ExaError):
    """Raised when API rate limit is exceeded after transport retries."""

    pass


class ExaNotFoundError(ExaError):
    """Raised when the requested webset does not exist."""

    pass


@dataclass
class WebsetStatus:
    """Progress snapshot of a webset.

    Attributes:
        status: Webset status (``running``, ``idle``, ``failed``...).
        found: Items found so far.
        analyzed: Items analyzed so far.
        completion: Completion percentage reported by the provider.
    """

    status: str
    found: int = 0
    analyzed: int = 0
    completion: float = 0.0

    @property
    def is_idle(self) -> bool:
        return self.status == "idle"

    @property
    def is_failed(self) -> bool:
        return self.status in FAILED_STATES


@dataclass
class WebsetItem:
    """One discovered result of a webset.

    Attributes:
        id: Provider item id.
        url: Canonical profile URL.
        title: Display name or page title.
        enrichments: Raw enrichment results as returned by the provider.
        raw: The full provider payload for the item.
    """

    id: str
    url: str
    title: Optional[str] = None
    enrichments: Any = None
    raw: dict[str, Any] = field(default_factory=dict)


def parse_status(payload: dict[str, Any]) -> WebsetStatus:
    """Build a WebsetStatus from a ``GET /websets/{id}`` payload.

    Progress is read from the first search. A canceled search is reported as
    a failed webset.
    """
    status = str(payload.get("status") or "running").lower()
    searches = payload.get("searches") or []
    search = searches[0] if searches else {}
    progress = search.get("progress") or {}

    search_status = str(search.get("status") or "").lower()
    if search_status in FAILED_STATES:
        status = "failed"

    return WebsetStatus(
        status=status,
        found=int(progress.get("found") or 0),
        analyzed=int(progress.get("analyzed") or 0),
        completion=float(progress.get("completion") or 0.0),
    )


def parse_item(payload: dict[str, Any]) -> WebsetItem:
    """Build a WebsetItem from one entry of ``GET /websets/{id}/items``."""
    properties = payload.get("properties") or {}
    person = properties.get("person") or {}
    title = (
        properties.get("title")
        or properties.get("name")
        or person.get("name")
        or None
    )
    url = properties.get("url") or ""
    return WebsetItem(
        id=str(payload.get("id") or ""),
        url=str(url),
        title=title,
        enrichments=payload.get("enrichments"),
        raw=payload,
    )


class ExaWebsetsClient:
    """Client for the Exa Websets REST API.

    Requests are synchronous ``requests`` calls executed in the default
    thread pool so the event loop is never blocked. 429 and 5xx responses
    are retried at the transport layer.

    Attributes:
        base_url: Websets API base URL.
        timeout_seconds: Request timeout in seconds.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        """Initialize the Exa client.

        Args:
            api_key: Exa API key. Defaults to EXA_API_KEY.
            base_url: API base URL. Defaults to EXA_BASE_URL.
            timeout_seconds: Request timeout in seconds. Defaults to 30.
            session: Optional pre-built session (tests).
        """
        self._api_key = api_key if api_key is not None else config.EXA_API_KEY
        self.base_url = (base_url or config.EXA_BASE_URL).rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._session = session

    def _get_session(self) -> requests.Session:
        if self._session is None:
            self._session = build_session()
        return self._session

    def _headers(self) -> dict[str, str]:
        if not self._api_key:
            raise ConfigError("EXA_API_KEY is required for lead discovery")
        return {
            "x-api-key": self._api_key,
            "Content-Type": "application/json",
        }

    def _request_sync(
        self,
        method: str,
        path: str,
        json_body: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Make a synchronous API request.

        Raises:
            ConfigError: If no API key is configured.
            ExaAuthError: If authentication fails.
            ExaNotFoundError: If the resource does not exist.
            ExaRateLimitError: If rate limiting persists after retries.
            ExaError: On any other failure.
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
            raise ExaError(f"Request failed: {e}") from e

        if response.status_code in (401, 403):
            raise ExaAuthError("Invalid Exa API key or unauthorized access")
        if response.status_code == 404:
            raise ExaNotFoundError(f"Resource not found: {path}")
        if response.status_code == 429:
            raise ExaRateLimitError("Exa API rate limit exceeded")
        if response.status_code >= 400:
            raise ExaError(f"API error {response.status_code}: {response.text[:500]}")

        try:
            return response.json()
        except ValueError as e:
            raise ExaError(f"Invalid JSON from {path}") from e

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, functools.partial(self._request_sync, method, path, **kwargs)
        )

    async def submit(
        self,
        query: str,
        count: int = DEFAULT_RESULT_COUNT,
        criteria: Sequence[str] = (),
        enrichments: Sequence[dict[str, str]] = DEFAULT_ENRICHMENTS,
    ) -> str:
        """Create a webset for a search query.

        Args:
            query: Natural-language search query.
            count: Number of results requested.
            criteria: Optional criteria each result must satisfy.
            enrichments: Enrichment hints, ``{"description", "format"}`` dicts.

        Returns:
            The webset id.
        """
        search: dict[str, Any] = {"query": query, "count": count}
        if criteria:
            search["criteria"] = [{"description": c} for c in criteria]

        body: dict[str, Any] = {"search": search}
        if enrichments:
            body["enrichments"] = [dict(e) for e in enrichments]

        payload = await self._request("POST", "/websets", json_body=body)
        webset_id = payload.get("id")
        if not webset_id:
            raise ExaError("Webset creation returned no id")

        logger.info(
            "Webset submitted",
            extra={"webset_id": webset_id, "count": count, "criteria": len(criteria)},
        )
        return webset_id

    async def poll_status(self, webset_id: str) -> WebsetStatus:
        """Fetch the current status and progress of a webset."""
        payload = await self._request("GET", f"/websets/{webset_id}")
        return parse_status(payload)

    async def list_results(self, webset_id: str) -> list[WebsetItem]:
        """Fetch every item of a webset, following the pagination cursor."""
        items: list[WebsetItem] = []
        cursor: Optional[str] = None

        while True:
            params: dict[str, Any] = {"limit": ITEMS_PAGE_SIZE}
            if cursor:
                params["cursor"] = cursor
            page = await self._request(
                "GET", f"/websets/{webset_id}/items", params=params
            )
            items.extend(parse_item(entry) for entry in page.get("data") or [])

            cursor = page.get("nextCursor")
            if not page.get("hasMore") or not cursor:
                break

        logger.debug(
            "Webset items fetched",
            extra={"webset_id": webset_id, "item_count": len(items)},
        )
        return items
