"""Search-query writer: turns instructions (or nothing) into discovery queries.

Two modes:
1. FOCUSED: one query that answers a specific user instruction.
2. EXPLORATION: no instruction pending, so find an angle that none of the
   company's past queries covered.
"""

import logging
from typing import Optional, Sequence

from ..config import config
from ..integrations.openai_client import OpenAIClient, parse_json_payload
from .schemas import GeneratedQuery, parse_generated_query

logger = logging.getLogger(__name__)

MAX_PAST_QUERIES = 20

_JSON_SHAPE = """Return ONLY valid JSON:
{
  "query": "the search query string",
  "criteria": ["criterion 1", "criterion 2", "criterion 3"],
  "rationale": "..."
}"""

FOCUSED_SYSTEM_PROMPT = f"""You write search queries that find outreach leads through a web-scale people search.

Use web search to study the company's site and the audience segment named in the instruction, and to see how creators in that niche present themselves.

The user gave a specific instruction. Write ONE query that targets exactly what it asks for. Results should be people with a social presence (TikTok, Instagram, YouTube, Twitter, LinkedIn) and reachable contact details.

The rationale must explain how the query addresses the instruction.

{_JSON_SHAPE}"""

EXPLORATION_SYSTEM_PROMPT = f"""You write one search query per day that finds outreach leads through a web-scale people search.

There is no new instruction from the user. Use web search to study the company and its space, then explore a lead segment the company has not tried yet.

Compare against the past queries and pick a materially different angle: another platform (TikTok, YouTube, Instagram, Twitter, LinkedIn, podcasts, blogs), another audience segment, another content type or another geography.

The rationale must name the new angle and why it differs from every past query.

{_JSON_SHAPE}"""


def _company_block(company: dict) -> str:
    lines = [
        "**Company Profile:**",
        f"Name: {company.get('name', '')}",
        f"Website: {company.get('website', '')}",
        f"Description: {company.get('description', '')}",
        f"Target Audience: {company.get('target_audience', '')}",
    ]
    if company.get("agent_notes"):
        lines.append(f"Notes: {company['agent_notes']}")
    return "\n".join(lines)


def format_past_queries(past_queries: Sequence[tuple[str, Optional[int]]]) -> str:
    """Render past queries with their lead yield, newest first."""
    if not past_queries:
        return "No past queries yet, this is the first one."
    return "\n".join(
        f'{index}. "{query}" (found {count if count is not None else "?"} leads)'
        for index, (query, count) in enumerate(past_queries[:MAX_PAST_QUERIES], start=1)
    )


def build_focused_prompt(company: dict, instruction: str) -> str:
    return (
        f"{_company_block(company)}\n\n"
        f"**USER'S SPECIFIC INSTRUCTION:**\n\"{instruction}\"\n\n"
        "Research the company and the segment first, then write ONE precise "
        "query for what the user asks."
    )


def build_exploration_prompt(
    company: dict, past_queries: Sequence[tuple[str, Optional[int]]]
) -> str:
    return (
        f"{_company_block(company)}\n\n"
        "**Past Queries (do not repeat, find something new):**\n"
        f"{format_past_queries(past_queries)}\n\n"
        "Research the space, then write ONE query for a clearly different angle."
    )


class QueryWriter:
    """Generates one discovery query per call with the research model."""

    def __init__(self, client: OpenAIClient, model: Optional[str] = None) -> None:
        self._client = client
        self._model = model or config.OPENAI_RESEARCH_MODEL

    async def _generate(self, system_prompt: str, user_prompt: str) -> GeneratedQuery:
        text = await self._client.research(
            user_prompt, instructions=system_prompt, model=self._model
        )
        return parse_generated_query(parse_json_payload(text))

    async def focused(self, company: dict, instruction: str) -> GeneratedQuery:
        """Write a query answering one instruction."""
        query = await self._generate(
            FOCUSED_SYSTEM_PROMPT, build_focused_prompt(company, instruction)
        )
        logger.info("Focused query generated", extra={"query": query.query})
        return query

    async def explore(
        self,
        company: dict,
        past_queries: Sequence[tuple[str, Optional[int]]],
    ) -> GeneratedQuery:
        """Write a query for an angle none of ``past_queries`` covered."""
        query = await self._generate(
            EXPLORATION_SYSTEM_PROMPT, build_exploration_prompt(company, past_queries)
        )
        logger.info(
            "Exploration query generated",
            extra={"query": query.query, "past_query_count": len(past_queries)},
        )
        return query
