"""Routing decision: which campaign an enriched lead belongs to.

Given the lead's persona, the company's active campaigns (with live rates)
and the operating mode, the model answers ``add_to_existing``,
``create_new`` or, in auto mode only, ``skip``.
"""

import json
import logging
from typing import Any, Optional, Sequence, Union

from ..config import config
from ..errors import RoutingDecisionError
from ..integrations.openai_client import OpenAIClient
from ..models import Campaign, CampaignStatus
from .schemas import AddToExisting, CreateNew, Skip, parse_routing_decision

logger = logging.getLogger(__name__)

ROUTING_TEMPERATURE = 0.3


def build_system_prompt(auto_mode: bool) -> str:
    """System prompt listing the actions available in the given mode."""
    actions = [
        "1. add_to_existing: add to an existing active campaign that fits this lead's persona",
        "2. create_new: no campaign fits, suggest creating a new one",
    ]
    if auto_mode:
        actions.append(
            "3. skip: the lead is not worth emailing (low fit score, irrelevant...)"
        )

    guidelines = [
        "- Match leads to campaigns by persona, category and platform alignment",
        "- Prefer campaigns that are active, accepting leads and under capacity (max_leads)",
        "- Avoid campaigns with very low reply rates (<1%) unless they are still new "
        "and have sent too few emails to judge",
    ]
    if auto_mode:
        guidelines.append("- A lead with fit_score <= 3 should usually be skipped")
    else:
        guidelines.append(
            "- NEVER skip. Always propose an existing campaign or a new one; "
            "a human decides whether to skip"
        )
    guidelines.append(
        "- For a new campaign, give a clear persona and a descriptive campaign name"
    )
    guidelines.append("- Keep the reason to 1-2 sentences")

    shapes = [
        '{ "action": "add_to_existing", "campaignId": "<id>", "reason": "..." }',
        '{ "action": "create_new", "suggestedName": "...", "suggestedPersona": "...", "reason": "..." }',
    ]
    if auto_mode:
        shapes.append('{ "action": "skip", "reason": "..." }')

    return (
        "You route newly enriched leads for an outbound email system.\n\n"
        "Choose one action:\n"
        + "\n".join(actions)
        + "\n\nGuidelines:\n"
        + "\n".join(guidelines)
        + "\n\nReturn ONLY valid JSON matching one of these shapes:\n"
        + "\n".join(shapes)
    )


def eligible_campaigns(campaigns: Sequence[Campaign]) -> list[Campaign]:
    """Campaigns a lead may be routed into: active and accepting leads."""
    return [
        c for c in campaigns
        if c.status == CampaignStatus.ACTIVE and c.is_accepting_leads
    ]


def summarize_campaigns(campaigns: Sequence[Campaign]) -> list[dict[str, Any]]:
    return [
        {
            "id": c.id,
            "name": c.name,
            "persona": c.persona,
            "leads_count": c.leads_count,
            "max_leads": c.max_leads,
            "emails_sent": c.emails_sent,
            "open_rate": f"{c.open_rate * 100:.1f}%",
            "reply_rate": f"{c.reply_rate * 100:.1f}%",
        }
        for c in campaigns
    ]


def build_user_prompt(
    lead: dict[str, Any],
    summaries: list[dict[str, Any]],
    company: dict[str, Any],
) -> str:
    expertise = ", ".join(lead.get("expertise") or []) or "N/A"
    content_types = ", ".join(lead.get("content_types") or []) or "N/A"
    audience = lead.get("total_audience")
    campaigns_text = (
        json.dumps(summaries, indent=2) if summaries else "No active campaigns exist yet."
    )
    return f"""Route this lead to a campaign.

**Lead:**
- Name: {lead.get('full_name') or 'Unknown'}
- Email: {lead.get('email')}
- Category: {lead.get('category') or 'unknown'}
- Platform: {lead.get('platform') or 'unknown'}
- Bio: {lead.get('bio') or 'N/A'}
- Expertise: {expertise}
- Audience: {f'{audience:,}' if audience else 'Unknown'}
- Content Types: {content_types}
- Fit Score: {lead.get('fit_score') or 'N/A'}/10
- Fit Reason: {lead.get('fit_reason') or 'N/A'}

**Company:** {company.get('name', '')}
- Description: {company.get('description', '')}
- Target Audience: {company.get('target_audience', '')}

**Available Campaigns ({len(summaries)}):**
{campaigns_text}"""


class CampaignDecider:
    """Asks the routing model for a decision and enforces the mode rules."""

    def __init__(self, client: OpenAIClient, model: Optional[str] = None) -> None:
        self._client = client
        self._model = model or config.OPENAI_ROUTING_MODEL

    async def decide(
        self,
        lead: dict[str, Any],
        campaigns: Sequence[Campaign],
        company: dict[str, Any],
        auto_mode: bool,
    ) -> Union[AddToExisting, CreateNew, Skip]:
        """Return one routing decision for an enriched lead.

        Args:
            lead: Lead persona fields plus ``email`` and ``platform``.
            campaigns: The company's campaigns; only eligible ones are offered.
            company: Company context.
            auto_mode: Whether ``skip`` is an allowed answer.

        Raises:
            RoutingDecisionError: If the answer skips outside auto mode or
                names a campaign that was not offered.
            AIResponseError: If the answer is not a valid decision.
        """
        offered = eligible_campaigns(campaigns)
        answer = await self._client.complete_json(
            [
                {"role": "system", "content": build_system_prompt(auto_mode)},
                {
                    "role": "user",
                    "content": build_user_prompt(lead, summarize_campaigns(offered), company),
                },
            ],
            model=self._model,
            temperature=ROUTING_TEMPERATURE,
        )
        decision = parse_routing_decision(answer)

        if isinstance(decision, Skip) and not auto_mode:
            raise RoutingDecisionError("Skip is not allowed outside auto mode")
        if isinstance(decision, AddToExisting) and decision.campaign_id not in {
            c.id for c in offered
        }:
            raise RoutingDecisionError(
                f"Decision names unknown campaign {decision.campaign_id}"
            )

        logger.info(
            "Routing decision made",
            extra={"action": decision.action, "auto_mode": auto_mode},
        )
        return decision
