"""AI contracts of the lead pipeline.

Each contract wraps one model call behind a typed input/output:

- ``QueryWriter``: instruction (or exploration) -> ``GeneratedQuery``
- ``PersonaDeriver``: raw discovery payload -> ``LeadPersona``
- ``EmailExtractor``: raw payload -> email or None
- ``CampaignDecider``: lead + campaigns -> ``RoutingDecision``
- ``SequenceWriter``: persona -> list of ``EmailStep``
"""

from ..integrations.openai_client import AIResponseError, parse_json_payload
from .campaign_decider import CampaignDecider
from .copywriter import DEFAULT_EMAIL_PROMPT, SequenceWriter
from .email_extractor import EmailExtractor
from .persona import PersonaDeriver
from .query_writer import QueryWriter
from .schemas import (
    AddToExisting,
    CreateNew,
    EmailSequence,
    EmailStep,
    GeneratedQuery,
    LeadPersona,
    RoutingDecision,
    Skip,
)

__all__ = [
    "AIResponseError",
    "parse_json_payload",
    "CampaignDecider",
    "SequenceWriter",
    "DEFAULT_EMAIL_PROMPT",
    "EmailExtractor",
    "PersonaDeriver",
    "QueryWriter",
    "AddToExisting",
    "CreateNew",
    "Skip",
    "RoutingDecision",
    "EmailSequence",
    "EmailStep",
    "GeneratedQuery",
    "LeadPersona",
]
