"""Persona derivation for discovered leads."""

import json
import logging
from typing import Any, Optional

from ..config import config
from ..integrations.openai_client import OpenAIClient, parse_json_payload
from .schemas import LeadPersona

logger = logging.getLogger(__name__)

MAX_RAW_PAYLOAD_CHARS = 5000

PERSONA_SYSTEM_PROMPT = """You enrich leads found through web searches for a company that wants to contact them.

Read all the raw data you are given, then use web search to fill the gaps:
1. Work out who the lead is.
2. Find a contact email (check the raw data first, then their website and socials).
3. Find their social profiles and audience sizes.
4. Describe the content they create.
5. Score how well they fit the company's outreach.

Be thorough but concise."""


def build_persona_prompt(raw_lead: dict[str, Any], company: dict[str, Any]) -> str:
    """Assemble the user prompt from the raw lead payload and company context."""
    raw = json.dumps(raw_lead, indent=2, default=str)[:MAX_RAW_PAYLOAD_CHARS]
    name = company.get("name", "")
    return f"""Enrich this lead:

**Raw Lead Data:**
{raw}

**Company Context (who wants to reach them):**
- Company: {name}
- What they do: {company.get('description', '')}
- Target audience: {company.get('target_audience', '')}

Return JSON with these fields:
- category: what they are (influencer, coach, blog, agency, podcast or anything else that fits)
- full_name: their actual name
- title: professional title (e.g. "Acting Coach", "Podcast Host")
- bio: 2-3 sentence summary
- expertise: array of expertise areas
- social_links: object of social profile URLs
- total_audience: total followers/subscribers across platforms (number)
- content_types: array of content they create
- fit_score: 1-10 fit for {name}
- fit_reason: short explanation of the score
- email: contact email, null only if it truly cannot be found

Return ONLY valid JSON."""


class PersonaDeriver:
    """Derives a ``LeadPersona`` from raw discovery data."""

    def __init__(self, client: OpenAIClient, model: Optional[str] = None) -> None:
        self._client = client
        self._model = model or config.OPENAI_RESEARCH_MODEL

    async def derive(self, raw_lead: dict[str, Any], company: dict[str, Any]) -> LeadPersona:
        """Run the persona model and repair its answer field by field.

        Raises:
            AIResponseError: If the answer holds no JSON object at all.
        """
        text = await self._client.research(
            build_persona_prompt(raw_lead, company),
            instructions=PERSONA_SYSTEM_PROMPT,
            model=self._model,
        )
        persona = LeadPersona.model_validate(parse_json_payload(text))
        logger.debug(
            "Persona derived",
            extra={"category": persona.category, "fit_score": persona.fit_score},
        )
        return persona
