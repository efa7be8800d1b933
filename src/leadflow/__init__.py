"""leadflow: cold-outbound lead discovery, enrichment and campaign routing.

The pipeline turns targeting instructions into search queries, runs them
against a discovery provider, enriches every new lead with an AI-derived
persona and routes it to an outreach campaign on the outbound platform.
"""

__version__ = "0.4.0"
