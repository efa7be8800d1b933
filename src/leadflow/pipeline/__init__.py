"""Lead pipeline stages.

- ``QueryGenerator``: instructions (or exploration) -> queries
- ``DiscoveryRunner``: query -> deduplicated leads, via ``WebsetPoller``
- ``EnrichmentWorker``: lead -> persona and email, then routing
- ``CampaignRouter``: suggestion, autopilot check and attachment
- ``CampaignCreator``: sequence -> registered, active campaign
- ``AnalyticsSync`` / ``DigestComposer``: counters and the daily digest
- ``LeadActions``: operator actions
"""

from .actions import LeadActions
from .analytics import AnalyticsSync, DigestComposer, DigestSummary
from .campaign_creator import CampaignCreator
from .discovery import (
    DiscoveryRunner,
    detect_platform,
    extract_email_from_enrichments,
    parse_follower_count,
)
from .enrichment import EnrichmentWorker
from .poller import PollOutcome, PollResult, WebsetPoller
from .query_generator import GenerationReport, QueryGenerator
from .router import CampaignRouter, autopilot_allows
from .steps import prefixed, run_directly

__all__ = [
    "LeadActions",
    "AnalyticsSync",
    "DigestComposer",
    "DigestSummary",
    "CampaignCreator",
    "DiscoveryRunner",
    "detect_platform",
    "extract_email_from_enrichments",
    "parse_follower_count",
    "EnrichmentWorker",
    "PollOutcome",
    "PollResult",
    "WebsetPoller",
    "GenerationReport",
    "QueryGenerator",
    "CampaignRouter",
    "autopilot_allows",
    "prefixed",
    "run_directly",
]
