"""Lightweight email extraction from raw discovery payloads."""

import json
import logging
from typing import Any, Optional

from ..config import config
from ..integrations.openai_client import AIResponseError, OpenAIClient
from ..utils import clean_email

logger = logging.getLogger(__name__)

MAX_PAYLOAD_CHARS = 3000

EXTRACTION_PROMPT = (
    "Extract the most relevant contact email address from this data. "
    'Return JSON: { "email": "found@email.com" } or { "email": null } if none '
    "is present. Prefer personal or business addresses over generic support ones."
)


class EmailExtractor:
    """Pulls one contact email out of an arbitrary payload with a fast model."""

    def __init__(self, client: OpenAIClient, model: Optional[str] = None) -> None:
        self._client = client
        self._model = model or config.OPENAI_EXTRACTION_MODEL

    async def extract(self, payload: Any) -> Optional[str]:
        """Return a validated, lower-cased email or None.

        No model call is made when the serialized payload contains no ``@``.
        """
        if not payload:
            return None
        text = payload if isinstance(payload, str) else json.dumps(payload, default=str)
        if "@" not in text:
            return None

        try:
            result = await self._client.complete_json(
                [
                    {"role": "system", "content": EXTRACTION_PROMPT},
                    {"role": "user", "content": text[:MAX_PAYLOAD_CHARS]},
                ],
                model=self._model,
                temperature=0,
                max_tokens=200,
            )
        except AIResponseError:
            logger.warning("Email extraction returned no usable JSON")
            return None

        return clean_email(result.get("email"))
