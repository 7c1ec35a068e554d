"""SearxNG metasearch client.

Used for related-link and related-video lookups. A SearxNG instance
exposes ``/search?format=json`` and returns a flat result list.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx
from pydantic import BaseModel

from postforge.errors import ConfigurationError, PostforgeError

logger = logging.getLogger(__name__)


class SearchError(PostforgeError):
    """The search backend failed or returned garbage."""


class SearchResult(BaseModel):
    url: str
    title: str = ""
    content: str = ""


class WebSearchService(Protocol):
    async def search(self, query: str, engine: str = "google", n: int = 10) -> list[SearchResult]:
        ...


class SearxngClient:
    """Async client for a SearxNG instance."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url:
            raise ConfigurationError("SEARXNG_URL not set")
        self.base_url = base_url.rstrip("/")
        if not self.base_url.endswith("/search"):
            self.base_url += "/search"
        self.timeout = timeout
        self._transport = transport

    async def search(self, query: str, engine: str = "google", n: int = 10) -> list[SearchResult]:
        """Run a query against a single engine.

        Raises:
            SearchError: On HTTP or decoding failures.
        """
        params = {"q": query, "format": "json", "num_results": str(n), "engines": engine}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.get(self.base_url, params=params)
                r.raise_for_status()
                data = r.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise SearchError(f"SearxNG search failed for {query!r}: {exc}") from exc

        results = [SearchResult.model_validate(item) for item in data.get("results", []) if item.get("url")]
        logger.debug("SearxNG %s %r -> %d results", engine, query, len(results))
        return results[:n]
