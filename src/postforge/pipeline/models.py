"""Content pipeline models.

Outline and draft shapes mirror the JSON the text backend is asked to
return. A Section is created when the draft arrives, filled in by the
enrichment and upload stages, and read exactly once by assembly.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


# ── Generation outputs ──────────────────────────────────────────


class OutlineSection(BaseModel):
    index: int = 0
    title: str
    summary: str = ""
    length: str = ""


class Outline(BaseModel):
    title: str = ""
    sections: list[OutlineSection] = Field(default_factory=list)


class DraftSection(BaseModel):
    html: str


class SeoBlock(BaseModel):
    description: str = ""
    keywords: list[str] = Field(default_factory=list)


class ThumbnailText(BaseModel):
    lines: list[str] = Field(default_factory=list)


class BlogDraft(BaseModel):
    """Body-expansion output: section HTML plus post-level metadata."""

    title: str = ""
    sections: list[DraftSection] = Field(default_factory=list)
    seo: SeoBlock | None = None
    tags: list[str] = Field(default_factory=list)
    thumbnail_text: ThumbnailText | None = None


class ContentBrief(BaseModel):
    """What the operator asked for."""

    title: str
    content: str = ""
    category: str = ""
    labels: list[str] = Field(default_factory=list)


# ── Section enrichment ──────────────────────────────────────────


class RelatedLink(BaseModel):
    name: str
    url: str


class RelatedVideo(BaseModel):
    title: str
    video_id: str
    url: str


class Section(BaseModel):
    """One content section as it moves through enrichment and upload."""

    index: int
    html: str
    image_path: Path | None = None
    uploaded_image_url: str | None = None
    links: list[RelatedLink] = Field(default_factory=list)
    videos: list[RelatedVideo] = Field(default_factory=list)
    ad_html: str | None = None


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Degraded:
    reason: str


# ── Publishing ──────────────────────────────────────────────────


class PublishDocument(BaseModel):
    """A fully assembled post ready for a platform."""

    title: str
    html: str
    tags: list[str] = Field(default_factory=list)
    category: str = ""
    thumbnail_url: str | None = None


class PublishResult(BaseModel):
    url: str
    post_id: str = ""
