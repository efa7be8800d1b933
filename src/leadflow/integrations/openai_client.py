"""OpenAI client wrapper shared by every AI contract.

The synchronous ``openai.OpenAI`` client is run in the default executor so
AI calls never block the event loop. Chat completions back the JSON-shaped
contracts; the Responses API with the web search tool backs lead research.
"""

import asyncio
import json
import logging
import re
from typing import Any, Optional

from openai import OpenAI

from ..config import ConfigError, config

logger = logging.getLogger(__name__)

# Constants
DEFAULT_MAX_TOKENS = 4096
WEB_SEARCH_TOOL = {"type": "web_search_preview"}

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


class AIResponseError(Exception):
    """Raised when a model answer is empty or cannot be used."""

    pass


def parse_json_payload(text: Optional[str]) -> dict[str, Any]:
    """Extract the JSON object from a model answer.

    Handles answers wrapped in Markdown code fences and answers with prose
    around a single ``{...}`` block.

    Raises:
        AIResponseError: If no JSON object can be recovered.
    """
    if not text or not text.strip():
        raise AIResponseError("Empty model response")

    candidates = [text.strip()]
    fenced = _FENCE_RE.search(text)
    if fenced:
        candidates.insert(0, fenced.group(1).strip())
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start : end + 1])

    for candidate in candidates:
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value

    raise AIResponseError(f"No JSON object in model response: {text[:200]!r}")


class OpenAIClient:
    """Async facade over the OpenAI SDK.

    Attributes:
        model: Default chat model.
        timeout_seconds: Request timeout in seconds.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout_seconds: Optional[int] = None,
        client: Optional[Any] = None,
    ) -> None:
        """Initialize the wrapper.

        Args:
            api_key: OpenAI API key. Defaults to OPENAI_API_KEY.
            model: Default chat model. Defaults to OPENAI_MODEL.
            timeout_seconds: Request timeout. Defaults to OPENAI_TIMEOUT_SECONDS.
            client: Pre-built SDK client (tests).
        """
        self._api_key = api_key if api_key is not None else config.OPENAI_API_KEY
        self.model = model or config.OPENAI_MODEL
        self.timeout_seconds = timeout_seconds or config.OPENAI_TIMEOUT_SECONDS
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            if not self._api_key:
                raise ConfigError("OPENAI_API_KEY is required for AI generation")
            self._client = OpenAI(api_key=self._api_key, timeout=self.timeout_seconds)
        return self._client

    async def complete(
        self,
        messages: list[dict[str, str]],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        response_format: Optional[dict[str, str]] = None,
    ) -> str:
        """Run a chat completion and return the assistant text.

        Raises:
            AIResponseError: If the answer has no content.
        """
        client = self._get_client()
        kwargs: dict[str, Any] = {
            "model": model or self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if response_format:
            kwargs["response_format"] = response_format

        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(
            None, lambda: client.chat.completions.create(**kwargs)
        )

        choices = getattr(response, "choices", None) or []
        content = choices[0].message.content if choices else None
        if not content:
            raise AIResponseError("Empty content in completion response")

        logger.debug(
            "Completion finished",
            extra={"model": kwargs["model"], "message_count": len(messages)},
        )
        return content

    async def complete_json(
        self,
        messages: list[dict[str, str]],
        model: Optional[str] = None,
        temperature: float = 0.3,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> dict[str, Any]:
        """Run a chat completion in JSON mode and parse the object it returns."""
        content = await self.complete(
            messages,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            response_format={"type": "json_object"},
        )
        return parse_json_payload(content)

    async def research(
        self,
        prompt: str,
        instructions: Optional[str] = None,
        model: Optional[str] = None,
    ) -> str:
        """Answer a prompt with the web search tool enabled.

        Raises:
            AIResponseError: If the answer has no text.
        """
        client = self._get_client()
        kwargs: dict[str, Any] = {
            "model": model or config.OPENAI_RESEARCH_MODEL,
            "input": prompt,
            "tools": [dict(WEB_SEARCH_TOOL)],
        }
        if instructions:
            kwargs["instructions"] = instructions

        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(
            None, lambda: client.responses.create(**kwargs)
        )

        text = getattr(response, "output_text", None)
        if not text:
            raise AIResponseError("Empty output from research response")
        return text
