"""Pixabay stock image search."""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from postforge.errors import ConfigurationError, PostforgeError

logger = logging.getLogger(__name__)

PIXABAY_API_URL = "https://pixabay.com/api/"


class StockImageNotFound(PostforgeError):
    """No keyword produced a usable image."""


class StockImageSearch(Protocol):
    async def search(self, keywords: list[str]) -> str:
        """Return the URL of the first matching image."""
        ...

    async def download(self, url: str) -> bytes:
        ...


class PixabayClient:
    """Search Pixabay keyword by keyword until one yields a photo."""

    def __init__(
        self,
        api_key: str,
        *,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("PIXABAY_API_KEY not set")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def _search_one(self, client: httpx.AsyncClient, keyword: str) -> str | None:
        try:
            r = await client.get(
                PIXABAY_API_URL,
                params={
                    "key": self.api_key,
                    "q": keyword,
                    "image_type": "photo",
                    "orientation": "horizontal",
                    "safesearch": "true",
                    "per_page": 3,
                },
            )
            r.raise_for_status()
            hits = r.json().get("hits") or []
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Pixabay search failed for %r: %s", keyword, exc)
            return None
        if not hits:
            logger.debug("No Pixabay image for %r", keyword)
            return None
        return hits[0].get("largeImageURL")

    async def search(self, keywords: list[str]) -> str:
        """Try each keyword in order and return the first image URL.

        Raises:
            ValueError: If no keywords are given.
            StockImageNotFound: If every keyword came up empty.
        """
        if not keywords:
            raise ValueError("No keywords given")
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for keyword in keywords:
                url = await self._search_one(client, keyword)
                if url:
                    return url
        raise StockImageNotFound(f"No image found for: {', '.join(keywords)}")

    async def download(self, url: str) -> bytes:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            r = await client.get(url)
            r.raise_for_status()
            return r.content
