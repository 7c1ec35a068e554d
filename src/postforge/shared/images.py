"""Image generation for section illustrations.

Uses Google Gemini's image generation capability via the google-genai SDK
and returns raw image bytes; callers decide where the file lives.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from postforge.errors import ConfigurationError, PostforgeError, RateLimitExceeded

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash-image"

STYLE_PREFIX = (
    "Clean editorial illustration for a blog article. Natural light, "
    "balanced composition, realistic detail. "
    "No text, no logos, no UI elements. -- "
)


class ImageGenerationError(PostforgeError):
    """The image backend returned no usable image."""


class GenerativeImageService(Protocol):
    async def generate(self, prompt: str) -> bytes:
        """Return encoded image bytes for ``prompt``."""
        ...


class GeminiImageService:
    """Generate images via Google Gemini."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str | None = None,
        aspect_ratio: str = "16:9",
        client: Any = None,
    ) -> None:
        if not api_key and client is None:
            raise ConfigurationError("GEMINI_API_KEY not set")
        self.model = model or DEFAULT_MODEL
        self.aspect_ratio = aspect_ratio
        self._client = client or genai.Client(api_key=api_key)

    async def generate(self, prompt: str) -> bytes:
        """Generate an image from a text prompt.

        Raises:
            RateLimitExceeded: On quota errors (retryable).
            ImageGenerationError: On any other failure or an empty response.
        """
        try:
            response = await self._client.aio.models.generate_content(
                model=self.model,
                contents=STYLE_PREFIX + prompt,
                config=types.GenerateContentConfig(
                    response_modalities=["TEXT", "IMAGE"],
                    image_config=types.ImageConfig(aspect_ratio=self.aspect_ratio),
                ),
            )
        except genai_errors.APIError as exc:
            if exc.code == 429:
                raise RateLimitExceeded(f"Image quota exceeded: {exc}") from exc
            raise ImageGenerationError(f"Image generation failed: {exc}") from exc

        for part in response.parts or []:
            if part.inline_data is not None and part.inline_data.data:
                return part.inline_data.data

        logger.warning("No image data in response for prompt: %s", prompt[:80])
        raise ImageGenerationError("No image data in response")
