"""Email sequence generation for new campaigns.

The writer guarantees the sequence shape whatever the model returns: the
initial email has no delay, every follow-up carries a delay in days, and
only the last follow-up may carry the booking link.
"""

import logging
import re
from typing import Any, Optional

from ..config import config
from ..integrations.openai_client import AIResponseError, OpenAIClient
from .schemas import EmailStep, parse_email_sequence

logger = logging.getLogger(__name__)

MIN_SEQUENCE_LENGTH = 1
MAX_SEQUENCE_LENGTH = 3
DEFAULT_SEQUENCE_LENGTH = 2
# Delay in days of follow-up 1 and follow-up 2
DEFAULT_FOLLOW_UP_DELAYS = (3, 4)
CALENDAR_PLACEHOLDER = "{{calendar_link}}"
COPY_TEMPERATURE = 0.7

_PLACEHOLDER_RE = re.compile(r"[ \t]*\{\{\s*calendar_link\s*\}\}")

DEFAULT_EMAIL_PROMPT = """You write outbound email sequences for a company founder. The voice is a founder who built the product and knows its users: calm, direct and specific.

Keep it short and concrete. Lean on the proof points in the company context (user counts, time saved, measurable results, links to social proof). Never mention revenue, fundraising or valuation.

Tone:
- Confident and plain-spoken
- Conversational, still professional
- No hype, jargon or exclamation marks
- No em dashes; use commas or periods
- Avoid words like exciting, thrilled, empower, streamline, leverage
- No generic flattery

Format:
- {{first_name}} is the only personalization variable
- Plain text, no HTML, no bullet points
- Paragraphs of 1 to 3 sentences
- Sign off with the sender's first name, never a placeholder
- Follow-up subjects are empty strings so they thread

Sequence:

INITIAL EMAIL
- Open with "Hey {{first_name}},"
- The first sentence references something specific to the persona
- Introduce the sender and product in 1 to 2 sentences
- Add a proof point if one is available
- Close with a soft ask such as "Open to a quick look?"
- No calendar link
- 120 to 150 words

FOLLOW-UP 1 (+3 days)
- A new angle on the value, 50 to 80 words
- End with a light ask for a chat
- No calendar link

FOLLOW-UP 2 (+4 days)
- Brief and final, 50 to 80 words, respectful
- Include {{calendar_link}} so they can book a time

Never write "I hope this finds you well", "I'm reaching out from" or a {{company_name}} variable."""


def clamp_sequence_length(value: Optional[int]) -> int:
    """Company sequence length bounded to 1..3, default 2."""
    if not value:
        return DEFAULT_SEQUENCE_LENGTH
    return max(MIN_SEQUENCE_LENGTH, min(MAX_SEQUENCE_LENGTH, int(value)))


def build_json_instruction(length: int) -> str:
    if length == 1:
        return (
            "\n\nReturn ONLY the initial email as JSON:\n"
            '{ "initial": { "subject": "...", "body": "..." } }'
        )
    shape = ['"initial": { "subject": "...", "body": "..." }']
    for index in range(1, length):
        shape.append(
            f'"followUp{index}": {{ "subject": "", "body": "...", '
            f'"delayDays": {DEFAULT_FOLLOW_UP_DELAYS[index - 1]} }}'
        )
    return (
        f"\nIMPORTANT: Only the LAST follow-up (followUp{length - 1}) may contain "
        f"{CALENDAR_PLACEHOLDER}, and it must contain it."
        f"\n\nReturn JSON with the initial email and {length - 1} follow-up(s):\n"
        "{ " + ", ".join(shape) + " }"
    )


def build_user_prompt(company: dict[str, Any], persona: str, length: int) -> str:
    return f"""Write a {length}-email outreach sequence.

Sender: {company.get('name', '')}
Product: {company.get('description', '')}
Audience: {company.get('target_audience', '')}
Persona: {persona}
CTA: a quick chat

The opener must be specific to this persona, not generic."""


def finalize_steps(
    steps: list[EmailStep],
    length: int,
    calendar_link: Optional[str],
) -> list[EmailStep]:
    """Apply delay and booking-link rules to the first ``length`` steps.

    Raises:
        AIResponseError: If fewer steps than requested were generated.
    """
    if len(steps) < length:
        raise AIResponseError(
            f"Expected {length} emails in the sequence, got {len(steps)}"
        )

    finalized: list[EmailStep] = []
    last_index = length - 1
    for index, step in enumerate(steps[:length]):
        if index == 0:
            delay = 0
        else:
            delay = step.delay_days or DEFAULT_FOLLOW_UP_DELAYS[index - 1]

        subject = _PLACEHOLDER_RE.sub("", step.subject).strip()
        body = step.body
        if index > 0 and index == last_index:
            body = _PLACEHOLDER_RE.sub(
                f" {calendar_link}" if calendar_link else "", body
            )
        else:
            body = _PLACEHOLDER_RE.sub("", body)

        finalized.append(
            EmailStep(subject=subject, body=body.strip(), delay_days=delay)
        )
    return finalized


class SequenceWriter:
    """Generates a campaign's email sequence with the copy model."""

    def __init__(self, client: OpenAIClient, model: Optional[str] = None) -> None:
        self._client = client
        self._model = model or config.OPENAI_COPY_MODEL

    async def generate(
        self,
        company: dict[str, Any],
        persona: str,
        sequence_length: Optional[int] = None,
        custom_prompt: Optional[str] = None,
        calendar_link: Optional[str] = None,
    ) -> list[EmailStep]:
        """Write the sequence for a persona.

        Args:
            company: Company context.
            persona: Persona the campaign targets.
            sequence_length: Requested number of emails (clamped to 1..3).
            custom_prompt: Company prompt replacing ``DEFAULT_EMAIL_PROMPT``.
            calendar_link: Booking link rendered into the last follow-up.

        Returns:
            Ordered steps, index 0 being the initial email.
        """
        length = clamp_sequence_length(sequence_length)
        system_prompt = (custom_prompt or DEFAULT_EMAIL_PROMPT) + build_json_instruction(length)

        answer = await self._client.complete_json(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": build_user_prompt(company, persona, length)},
            ],
            model=self._model,
            temperature=COPY_TEMPERATURE,
        )
        steps = finalize_steps(parse_email_sequence(answer).steps, length, calendar_link)
        logger.info(
            "Email sequence generated",
            extra={"step_count": len(steps), "custom_prompt": bool(custom_prompt)},
        )
        return steps
