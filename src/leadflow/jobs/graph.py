"""Job names and the directed edges between them.

Payloads carry ids only:

    queries.generate      {company_id?}
    discovery.schedule    {}
    discovery.run         {query_id}
    lead.enrich           {lead_id}
    lead.confirm_routing  {lead_id, campaign_id?}
    analytics.sync        {}
    digest.send           {}

Routing and campaign creation are checkpointed steps of ``lead.enrich``;
human confirmation enters the graph through ``lead.confirm_routing``.
"""

QUERIES_GENERATE = "queries.generate"
DISCOVERY_SCHEDULE = "discovery.schedule"
DISCOVERY_RUN = "discovery.run"
LEAD_ENRICH = "lead.enrich"
LEAD_CONFIRM_ROUTING = "lead.confirm_routing"
ANALYTICS_SYNC = "analytics.sync"
DIGEST_SEND = "digest.send"

ALL_JOBS = (
    QUERIES_GENERATE,
    DISCOVERY_SCHEDULE,
    DISCOVERY_RUN,
    LEAD_ENRICH,
    LEAD_CONFIRM_ROUTING,
    ANALYTICS_SYNC,
    DIGEST_SEND,
)

EDGES: dict[str, frozenset[str]] = {
    DISCOVERY_SCHEDULE: frozenset({DISCOVERY_RUN}),
    DISCOVERY_RUN: frozenset({LEAD_ENRICH}),
}


def emits(name: str) -> frozenset[str]:
    """Jobs that ``name`` may enqueue."""
    return EDGES.get(name, frozenset())
