"""
Text-completion collaborator.

The analyst needs one capability from a language model:

    async generate(prompt: str) -> str

OpenAICompletionClient provides it over the OpenAI chat completions API using
the async SDK client, so the event loop is never blocked while a completion is
in flight. Any SDK failure (quota, network, timeout) or an empty answer is
surfaced as CompletionError; retry and backoff for transient failures are the
SDK's concern (max_retries), not the analyst's.

Model output is often wrapped in Markdown code fences. parse_model_json strips
them and parses the remainder, raising ModelResponseParseError labelled with
what was being parsed ("Failed to parse plan: ...").

Usage:
    client = get_completion_client(get_settings())
    if client is not None:
        text = await client.generate("Return a JSON array of plan steps")
        plan = parse_model_json(text, "plan")
"""

import json
import logging
import re
from typing import Any, Optional, Protocol

from openai import AsyncOpenAI, OpenAIError

from marketing_analyst.core.config import Settings
from marketing_analyst.core.exceptions import CompletionError, ModelResponseParseError

logger = logging.getLogger(__name__)


FENCE_PATTERN = re.compile(r'```(?:json)?', re.IGNORECASE)

SYSTEM_PROMPT: str = (
    'You are a senior marketing analyst. Answer only with the JSON requested, '
    'without commentary.'
)


class TextCompletionClient(Protocol):
    """Anything that turns a prompt into raw model text."""

    async def generate(self, prompt: str) -> str:
        ...


# =============================================================================
# OpenAI Client
# =============================================================================


class OpenAICompletionClient:
    """
    Completion client backed by openai.AsyncOpenAI chat completions.

    Args:
        api_key: OpenAI API key
        model: Chat model identifier
        temperature: Sampling temperature
        max_tokens: Output token cap
        timeout: Request timeout in seconds
        base_url: Optional OpenAI-compatible endpoint
        client: Pre-built AsyncOpenAI (tests)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = 'gpt-4o-mini',
        temperature: float = 0.2,
        max_tokens: int = 4096,
        timeout: float = 60.0,
        base_url: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = client or AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
        )

    async def generate(self, prompt: str) -> str:
        """
        Send one prompt and return the model's text.

        Raises:
            CompletionError: If the API call fails or returns no text
        """
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {'role': 'system', 'content': SYSTEM_PROMPT},
                    {'role': 'user', 'content': prompt},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except OpenAIError as e:
            raise CompletionError(f"Completion request failed: {e}") from e

        if not response.choices:
            raise CompletionError('Completion response contained no choices')

        text = response.choices[0].message.content
        if not text:
            raise CompletionError('Completion choice contained no text output')
        return text


def get_completion_client(settings: Settings) -> Optional[OpenAICompletionClient]:
    """
    Build the configured completion client.

    Returns:
        OpenAICompletionClient, or None when no API key is configured
    """
    if not settings.openai_api_key:
        return None
    return OpenAICompletionClient(
        api_key=settings.openai_api_key,
        model=settings.llm_model,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
        timeout=settings.llm_timeout_seconds,
        base_url=settings.openai_base_url,
    )


# =============================================================================
# Output Parsing
# =============================================================================


def strip_code_fences(text: str) -> str:
    """Remove ```json / ``` fences and surrounding whitespace."""
    return FENCE_PATTERN.sub('', text).strip()


def parse_model_json(text: Any, label: str) -> Any:
    """
    Parse model output as JSON after stripping Markdown fences.

    Args:
        text: Raw model output
        label: What is being parsed, used in the error message

    Raises:
        ModelResponseParseError: "Failed to parse <label>: <reason>"
    """
    if not isinstance(text, str):
        raise ModelResponseParseError(label, f"expected text, got {type(text).__name__}")
    cleaned = strip_code_fences(text)
    if not cleaned:
        raise ModelResponseParseError(label, 'empty response')
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ModelResponseParseError(label, str(e)) from e
