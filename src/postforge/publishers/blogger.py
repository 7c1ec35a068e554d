"""Google Blogger publishing via the v3 REST API with an OAuth bearer token."""

from __future__ import annotations

import logging
import time

import httpx

from postforge.config import BloggerAccount, Visibility
from postforge.errors import ConfigurationError, PublishFailed
from postforge.pipeline.models import PublishDocument, PublishResult
from postforge.publishers.base import Platform, PlatformPublisher

logger = logging.getLogger(__name__)

BLOGGER_API = "https://www.googleapis.com/blogger/v3"
TOKEN_URL = "https://oauth2.googleapis.com/token"


class BloggerPublisher(PlatformPublisher):
    """Publish posts to one Blogger blog.

    Blogger has no media endpoint, so section images go to the asset
    store. Private accounts publish as drafts.
    """

    platform = Platform.BLOGGER
    supports_image_upload = False

    def __init__(
        self,
        account_name: str,
        account: BloggerAccount,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(account_name)
        self.account = account
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._access_token = account.access_token
        # Unknown expiry: a configured static token is trusted until a 401
        self._expires_at = float("inf") if account.access_token else 0.0

    @property
    def is_draft(self) -> bool:
        return self.account.default_visibility == Visibility.PRIVATE

    async def _refresh_token(self) -> None:
        if not (self.account.refresh_token and self.account.client_id and self.account.client_secret):
            raise ConfigurationError(
                f"Blogger account {self.account_name!r} has no usable refresh token"
            )
        r = await self._client.post(
            TOKEN_URL,
            data={
                "client_id": self.account.client_id,
                "client_secret": self.account.client_secret,
                "refresh_token": self.account.refresh_token,
                "grant_type": "refresh_token",
            },
        )
        r.raise_for_status()
        data = r.json()
        self._access_token = data["access_token"]
        self._expires_at = time.time() + int(data.get("expires_in", 3600)) - 60
        logger.debug("Refreshed Blogger token for %s", self.account_name)

    async def _token(self) -> str:
        if not self._access_token or time.time() >= self._expires_at:
            await self._refresh_token()
        return self._access_token

    async def prepare(self) -> None:
        await self._token()

    async def _post(self, document: PublishDocument) -> httpx.Response:
        url = f"{BLOGGER_API}/blogs/{self.account.blog_id}/posts/"
        body = {"kind": "blogger#post", "title": document.title, "content": document.html}
        if document.tags:
            body["labels"] = document.tags
        params = {"isDraft": "true"} if self.is_draft else None
        return await self._client.post(
            url,
            json=body,
            params=params,
            headers={"Authorization": f"Bearer {await self._token()}"},
        )

    async def publish(self, document: PublishDocument) -> PublishResult:
        try:
            r = await self._post(document)
            if r.status_code == 401 and self.account.refresh_token:
                await self._refresh_token()
                r = await self._post(document)
            r.raise_for_status()
        except httpx.HTTPError as exc:
            raise PublishFailed(self.platform, str(exc)) from exc
        data = r.json()
        return PublishResult(url=data.get("url", ""), post_id=str(data.get("id", "")))

    async def aclose(self) -> None:
        await self._client.aclose()
