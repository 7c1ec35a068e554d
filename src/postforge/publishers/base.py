"""Base class for platform-specific publishing."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from enum import StrEnum
from pathlib import Path

from postforge.pipeline.models import PublishDocument, PublishResult


class Platform(StrEnum):
    """Supported publishing targets."""

    TISTORY = "tistory"
    WORDPRESS = "wordpress"
    BLOGGER = "blogger"


class PlatformPublisher(ABC):
    """Base class for platform-specific publishing.

    One instance is built per configured account and reused across jobs.
    """

    platform: Platform
    supports_image_upload: bool = True

    def __init__(self, account_name: str) -> None:
        self.account_name = account_name

    async def prepare(self) -> None:
        """Make the account ready to publish. Safe to call repeatedly."""

    @abstractmethod
    async def publish(self, document: PublishDocument) -> PublishResult:
        """Create the post and return its public URL."""

    async def upload_image(self, path: Path) -> str:
        """Upload an image to the platform and return a reference for the post body."""
        raise NotImplementedError(f"{self.platform} does not host images")

    async def upload_images(self, paths: list[Path]) -> list[str | Exception]:
        """Upload several images.

        Returns one entry per path, in order: the body reference, or the
        exception that upload raised. Publishers that cannot upload
        concurrently override this.
        """
        results = await asyncio.gather(
            *(self.upload_image(path) for path in paths), return_exceptions=True
        )
        for result in results:
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result
        return list(results)

    async def aclose(self) -> None:
        """Release clients and sessions."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.account_name!r}>"
