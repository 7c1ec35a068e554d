"""Structured text generation backends.

Every pipeline stage asks for JSON matching a schema and gets a dict
back. Two backends:
1. Google Gemini (default — native JSON mode with a response schema)
2. Anthropic Claude (schema embedded in the prompt, fences stripped)
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Protocol

import anthropic
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from postforge.config import AISectionConfig
from postforge.errors import ConfigurationError, PostforgeError, RateLimitExceeded

logger = logging.getLogger(__name__)


class LLMError(PostforgeError):
    """Base error for LLM calls."""


class GenerativeTextService(Protocol):
    async def generate(self, prompt: str, schema: dict[str, Any], *, label: str = "") -> Any:
        """Return the parsed JSON response for ``prompt``."""
        ...


# ---------------------------------------------------------------------------
# Model name mapping
# ---------------------------------------------------------------------------

_MODEL_MAP: dict[str, str] = {
    "sonnet": "claude-sonnet-4-6",
    "haiku": "claude-haiku-4-5-20251001",
    "opus": "claude-opus-4-6",
    "flash": "gemini-2.5-flash",
    "pro": "gemini-2.5-pro",
}

DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"
DEFAULT_CLAUDE_MODEL = "claude-sonnet-4-6"


def _resolve_model(model: str | None, default: str) -> str:
    """Resolve a short model name to an API model ID."""
    if model is None:
        return default
    return _MODEL_MAP.get(model, model)


# ---------------------------------------------------------------------------
# JSON output helpers
# ---------------------------------------------------------------------------

_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)


def strip_json_fences(text: str) -> str:
    """Strip markdown code fences from LLM JSON output.

    Handles the tendency to wrap JSON in ```json ... ``` blocks.
    """
    text = text.strip()
    match = _JSON_FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    # Raw JSON: use whichever delimiter appears first
    candidates: list[tuple[int, str, str]] = []
    brace_start = text.find("{")
    bracket_start = text.find("[")
    if brace_start != -1:
        candidates.append((brace_start, "{", "}"))
    if bracket_start != -1:
        candidates.append((bracket_start, "[", "]"))
    candidates.sort()

    for start, _start_char, end_char in candidates:
        end = text.rfind(end_char)
        if end > start:
            return text[start : end + 1]

    return text


def parse_json(text: str, *, label: str = "") -> Any:
    """Parse LLM output as JSON, raising LLMError on garbage."""
    try:
        return json.loads(strip_json_fences(text))
    except json.JSONDecodeError as exc:
        raise LLMError(f"Response is not valid JSON (label={label}): {exc}") from exc


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------


class GeminiTextService:
    """JSON-mode text generation via the google-genai async client."""

    def __init__(self, api_key: str, *, model: str | None = None, client: Any = None) -> None:
        if not api_key and client is None:
            raise ConfigurationError("GEMINI_API_KEY not set")
        self.model = _resolve_model(model, DEFAULT_GEMINI_MODEL)
        self._client = client or genai.Client(api_key=api_key)

    async def generate(self, prompt: str, schema: dict[str, Any], *, label: str = "") -> Any:
        logger.debug("Calling Gemini model=%s (%s)", self.model, label)
        try:
            response = await self._client.aio.models.generate_content(
                model=self.model,
                contents=prompt,
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=schema,
                ),
            )
        except genai_errors.APIError as exc:
            if exc.code == 429:
                raise RateLimitExceeded(f"Gemini quota exceeded (label={label}): {exc}") from exc
            raise LLMError(f"Gemini call failed (label={label}): {exc}") from exc

        text = (response.text or "").strip()
        if not text:
            raise LLMError(f"Gemini returned empty response (label={label})")
        return parse_json(text, label=label)


# ---------------------------------------------------------------------------
# Claude
# ---------------------------------------------------------------------------


class ClaudeTextService:
    """Text generation via the Anthropic async API with fenced-JSON parsing."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str | None = None,
        timeout: int = 120,
        client: Any = None,
    ) -> None:
        if not api_key and client is None:
            raise ConfigurationError("ANTHROPIC_API_KEY not set")
        self.model = _resolve_model(model, DEFAULT_CLAUDE_MODEL)
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout)

    async def generate(self, prompt: str, schema: dict[str, Any], *, label: str = "") -> Any:
        logger.debug("Calling Anthropic API model=%s (%s)", self.model, label)
        system = (
            "Respond with JSON only, no prose. The JSON must match this schema:\n"
            + json.dumps(schema, ensure_ascii=False)
        )
        try:
            response = await self._client.messages.create(
                model=self.model,
                max_tokens=16384,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.RateLimitError as exc:
            raise RateLimitExceeded(f"Anthropic rate limit (label={label}): {exc}") from exc
        except anthropic.APIError as exc:
            raise LLMError(f"Anthropic API failed (label={label}): {exc}") from exc

        text = "".join(block.text for block in response.content if block.type == "text").strip()
        if not text:
            raise LLMError(f"Anthropic API returned empty response (label={label})")
        return parse_json(text, label=label)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_text_service(config: AISectionConfig) -> GenerativeTextService:
    """Create the configured text backend.

    Raises:
        ConfigurationError: If the provider is unknown or has no API key.
    """
    provider = config.provider.lower()
    if provider == "gemini":
        return GeminiTextService(config.gemini_api_key, model=config.text_model)
    if provider in ("anthropic", "claude"):
        return ClaudeTextService(
            config.anthropic_api_key, model=config.text_model, timeout=config.timeout
        )
    raise ConfigurationError(f"Unknown AI provider: {config.provider!r}")
