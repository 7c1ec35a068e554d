"""WordPress publishing via the REST API with an application password."""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import Any

import httpx

from postforge.config import Visibility, WordPressAccount
from postforge.errors import PublishFailed
from postforge.pipeline.models import PublishDocument, PublishResult
from postforge.publishers.base import Platform, PlatformPublisher

logger = logging.getLogger(__name__)


class WordPressPublisher(PlatformPublisher):
    """Publish posts and media through ``/wp-json/wp/v2``.

    Tags and the category are looked up by name and created when
    missing. A failed tag or category never blocks the post itself.
    """

    platform = Platform.WORDPRESS
    supports_image_upload = True

    def __init__(
        self,
        account_name: str,
        account: WordPressAccount,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(account_name)
        self.account = account
        self.api_base = f"{account.url.rstrip('/')}/wp-json/wp/v2"
        self._client = httpx.AsyncClient(
            auth=(account.username, account.app_password),
            timeout=timeout,
            transport=transport,
        )
        # Remembered media ids for uploaded URLs (used for featured_media)
        self._media_ids: dict[str, int] = {}

    @property
    def post_status(self) -> str:
        return "private" if self.account.default_visibility == Visibility.PRIVATE else "publish"

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        r = await self._client.request(method, f"{self.api_base}{path}", **kwargs)
        r.raise_for_status()
        return r.json()

    # ── Media ────────────────────────────────────────────────────

    async def upload_image(self, path: Path) -> str:
        content_type = mimetypes.guess_type(path.name)[0] or "image/png"
        data = await self._request(
            "POST",
            "/media",
            content=path.read_bytes(),
            headers={
                "Content-Type": content_type,
                "Content-Disposition": f'attachment; filename="{path.name}"',
            },
        )
        url = data["source_url"]
        self._media_ids[url] = int(data["id"])
        logger.debug("Uploaded %s to WordPress media %s", path.name, data["id"])
        return url

    # ── Taxonomy ─────────────────────────────────────────────────

    async def _get_or_create_term(self, taxonomy: str, name: str) -> int:
        found = await self._request("GET", f"/{taxonomy}", params={"search": name, "per_page": 100})
        for term in found:
            if str(term.get("name", "")).strip().lower() == name.strip().lower():
                return int(term["id"])
        created = await self._request("POST", f"/{taxonomy}", json={"name": name})
        return int(created["id"])

    async def get_or_create_tag(self, name: str) -> int:
        return await self._get_or_create_term("tags", name)

    async def get_or_create_category(self, name: str) -> int:
        return await self._get_or_create_term("categories", name)

    async def _term_ids(self, document: PublishDocument) -> tuple[list[int], list[int]]:
        tag_ids: list[int] = []
        for tag in document.tags:
            try:
                tag_ids.append(await self.get_or_create_tag(tag))
            except (httpx.HTTPError, KeyError, ValueError) as exc:
                logger.warning("Could not create WordPress tag %r: %s", tag, exc)

        category_ids: list[int] = []
        if document.category:
            try:
                category_ids.append(await self.get_or_create_category(document.category))
            except (httpx.HTTPError, KeyError, ValueError) as exc:
                logger.warning("Could not create WordPress category %r: %s", document.category, exc)
        return tag_ids, category_ids

    # ── Posts ────────────────────────────────────────────────────

    async def publish(self, document: PublishDocument) -> PublishResult:
        tag_ids, category_ids = await self._term_ids(document)
        body: dict[str, Any] = {
            "title": document.title,
            "content": document.html,
            "status": self.post_status,
            "tags": tag_ids,
            "categories": category_ids,
        }
        if document.thumbnail_url and document.thumbnail_url in self._media_ids:
            body["featured_media"] = self._media_ids[document.thumbnail_url]

        try:
            data = await self._request("POST", "/posts", json=body)
        except httpx.HTTPError as exc:
            raise PublishFailed(self.platform, str(exc)) from exc
        return PublishResult(url=data.get("link", ""), post_id=str(data.get("id", "")))

    async def aclose(self) -> None:
        await self._client.aclose()
