"""Anthropic-backed idea generator.

Constructed once at startup and injected into the idea service, so tests can
swap in a double with the same ``generate`` coroutine.
"""

import json
import logging
from typing import Optional

import anthropic
from anthropic import AsyncAnthropic
from pydantic import ValidationError

from backend.ai.prompts import IDEA_GENERATION_SYSTEM, build_idea_messages
from backend.errors import ConfigurationError, UpstreamError
from backend.models import GeneratedIdea

logger = logging.getLogger(__name__)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code block, if present."""
    text = text.strip()
    if text.startswith("```"):
        text = text.split("```")[1]
        if text.startswith("json"):
            text = text[4:]
        text = text.strip()
    return text


def parse_generated_idea(response_text: str) -> GeneratedIdea:
    """Decode and validate the model's JSON reply.

    Raises:
        UpstreamError: If the reply is not JSON or misses required fields.
    """
    try:
        parsed = json.loads(strip_code_fences(response_text))
    except json.JSONDecodeError:
        raise UpstreamError("AI response could not be parsed. Please try again.")
    if not isinstance(parsed, dict):
        raise UpstreamError("AI response was not a JSON object. Please try again.")
    try:
        return GeneratedIdea.model_validate(parsed)
    except ValidationError as e:
        logger.warning("Generated idea failed validation: %s", e.errors())
        raise UpstreamError("AI response was missing required fields. Please try again.")


class IdeaGenerator:
    def __init__(self, api_key: Optional[str], model: str, timeout: float = 30.0, max_tokens: int = 2000):
        self._api_key = api_key
        self._model = model
        self._timeout = timeout
        self._max_tokens = max_tokens
        self._client: Optional[AsyncAnthropic] = None

    def _get_client(self) -> AsyncAnthropic:
        if self._client is None:
            if not self._api_key:
                raise ConfigurationError("ANTHROPIC_API_KEY not configured")
            self._client = AsyncAnthropic(api_key=self._api_key, timeout=self._timeout, max_retries=1)
        return self._client

    async def generate(self, focus: Optional[str] = None) -> GeneratedIdea:
        client = self._get_client()
        try:
            response = await client.messages.create(
                model=self._model,
                max_tokens=self._max_tokens,
                system=IDEA_GENERATION_SYSTEM,
                messages=build_idea_messages(focus),
                temperature=0.9,
            )
        except anthropic.APITimeoutError:
            raise UpstreamError("Idea generation timed out. Please try again.")
        except anthropic.APIError as e:
            logger.error("Anthropic request failed: %s", e)
            raise UpstreamError("Idea generation failed. Please try again.")

        return parse_generated_idea(response.content[0].text)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
