"""Asset storage for images that the target platform cannot host itself.

Every key is prefixed with the owning job id so a failed job's uploads
can be removed in one ``delete_by_prefix`` call.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import uuid
from pathlib import Path
from typing import Any, Protocol

import boto3
from botocore.client import Config
from pydantic import BaseModel

from postforge.config import StorageSectionConfig
from postforge.errors import ConfigurationError

logger = logging.getLogger(__name__)


class AssetMeta(BaseModel):
    """Where an uploaded asset belongs and how to serve it."""

    job_id: str
    filename: str
    content_type: str = "image/png"

    @property
    def key(self) -> str:
        suffix = Path(self.filename).suffix or ".png"
        return f"{self.job_id}/{uuid.uuid4().hex}{suffix}"


class AssetStore(Protocol):
    async def upload(self, data: bytes, meta: AssetMeta) -> str:
        """Store ``data`` and return its public URL."""
        ...

    async def delete_by_prefix(self, prefix: str) -> int:
        """Delete every object under ``prefix/``; returns the count removed."""
        ...

    async def list(self, prefix: str) -> list[str]:
        ...


class LocalAssetStore:
    """Filesystem-backed store, served from a static base URL or file:// paths."""

    def __init__(self, root: Path, public_base: str = "") -> None:
        self.root = Path(root)
        self.public_base = public_base.rstrip("/")

    def _url(self, key: str) -> str:
        if self.public_base:
            return f"{self.public_base}/{key}"
        return (self.root / key).resolve().as_uri()

    async def upload(self, data: bytes, meta: AssetMeta) -> str:
        key = meta.key
        path = self.root / key
        path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_bytes, data)
        logger.debug("Stored asset %s (%d bytes)", key, len(data))
        return self._url(key)

    async def delete_by_prefix(self, prefix: str) -> int:
        directory = self.root / prefix.strip("/")
        if not directory.is_dir():
            return 0
        count = sum(1 for p in directory.rglob("*") if p.is_file())
        await asyncio.to_thread(shutil.rmtree, directory)
        return count

    async def list(self, prefix: str) -> list[str]:
        directory = self.root / prefix.strip("/")
        if not directory.is_dir():
            return []
        return sorted(
            p.relative_to(self.root).as_posix() for p in directory.rglob("*") if p.is_file()
        )


class S3AssetStore:
    """S3-compatible bucket (AWS S3, DigitalOcean Spaces, GCS interop)."""

    def __init__(self, config: StorageSectionConfig, client: Any = None) -> None:
        if not config.bucket:
            raise ConfigurationError("S3 bucket is not set")
        self.bucket = config.bucket
        self.public_base = (
            config.public_base.rstrip("/")
            or f"https://{config.bucket}.s3.amazonaws.com"
        )
        self._client = client or boto3.client(
            "s3",
            region_name=config.region or None,
            endpoint_url=config.endpoint or None,
            aws_access_key_id=config.access_key or None,
            aws_secret_access_key=config.secret_key or None,
            config=Config(signature_version="s3v4"),
        )

    async def upload(self, data: bytes, meta: AssetMeta) -> str:
        key = meta.key
        await asyncio.to_thread(
            self._client.put_object,
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ACL="public-read",
            ContentType=meta.content_type,
        )
        return f"{self.public_base}/{key}"

    async def list(self, prefix: str) -> list[str]:
        return await asyncio.to_thread(self._list_keys, prefix)

    def _list_keys(self, prefix: str) -> list[str]:
        keys: list[str] = []
        paginator = self._client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=f"{prefix.strip('/')}/"):
            keys.extend(obj["Key"] for obj in page.get("Contents", []))
        return keys

    async def delete_by_prefix(self, prefix: str) -> int:
        keys = await self.list(prefix)
        # delete_objects accepts at most 1000 keys per call
        for start in range(0, len(keys), 1000):
            batch = keys[start : start + 1000]
            await asyncio.to_thread(
                self._client.delete_objects,
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
            )
        return len(keys)


def create_asset_store(config: StorageSectionConfig, data_dir: Path) -> AssetStore:
    """Build the configured asset store."""
    if config.backend == "s3":
        return S3AssetStore(config)
    return LocalAssetStore(data_dir / "assets", public_base=config.public_base)
