"""Render enriched sections into one platform-specific HTML document.

Pure: no I/O, no logging. Output order is thumbnail, SEO metadata, then
for each section in index order its body, ad, related links, image and
video embeds.
"""

from __future__ import annotations

import json

from postforge.pipeline.models import SeoBlock, Section
from postforge.publishers.base import Platform
from postforge.shared.html import escape_attr

THUMBNAIL_TEMPLATE = (
    '<div class="thumbnail-container" style="text-align: center; margin-bottom: 20px;">\n'
    "{inner}\n"
    "</div>"
)
THUMBNAIL_IMG = (
    '<img src="{url}" alt="thumbnail" style="max-width: 100%; height: auto; '
    'border-radius: 8px; box-shadow: 0 4px 8px rgba(0,0,0,0.1);" />'
)
SECTION_IMG = '<img src="{url}" alt="section image" style="width: 100%; height: auto; margin: 10px 0;" />'
LINK_TEMPLATE = (
    '<a href="{url}" target="_blank" rel="noopener noreferrer" style="display: block; '
    'margin: 4px 0; color: #007bff; text-decoration: none; font-size: 14px; padding: 2px 0;">'
    "🔗 {name}</a>"
)
VIDEO_TEMPLATE = (
    '<div class="youtube-embed" style="margin: 20px 0; text-align: center;">\n'
    '<iframe width="560" height="315" src="https://www.youtube.com/embed/{video_id}" '
    'title="YouTube video player" frameborder="0" allow="accelerometer; autoplay; '
    'clipboard-write; encrypted-media; gyroscope; picture-in-picture; web-share" '
    'referrerpolicy="strict-origin-when-cross-origin" allowfullscreen></iframe>\n'
    "</div>"
)


def render_thumbnail(thumbnail: str | None, platform: Platform) -> str:
    if not thumbnail:
        return ""
    if platform == Platform.TISTORY:
        # Tistory hands back a ready-made embed code
        inner = thumbnail
    else:
        inner = THUMBNAIL_IMG.format(url=escape_attr(thumbnail))
    return THUMBNAIL_TEMPLATE.format(inner=inner)


def render_seo(title: str, seo: SeoBlock | None) -> str:
    """JSON-LD Article metadata, or "" when there is nothing to say."""
    if seo is None or not (seo.description or seo.keywords):
        return ""
    data = {
        "@context": "https://schema.org",
        "@type": "Article",
        "headline": title,
        "description": seo.description,
        "keywords": ", ".join(seo.keywords),
    }
    payload = json.dumps(data, ensure_ascii=False).replace("</", "<\\/")
    return f'<script type="application/ld+json">{payload}</script>'


def render_image(section: Section, platform: Platform) -> str:
    if not section.uploaded_image_url:
        return ""
    if platform == Platform.TISTORY:
        return section.uploaded_image_url
    return SECTION_IMG.format(url=escape_attr(section.uploaded_image_url))


def render_section(section: Section, platform: Platform) -> str:
    parts = [section.html]
    if section.ad_html:
        parts.append(section.ad_html)
    for link in section.links:
        parts.append(LINK_TEMPLATE.format(url=escape_attr(link.url), name=escape_attr(link.name)))
    image = render_image(section, platform)
    if image:
        parts.append(image)
    for video in section.videos:
        parts.append(VIDEO_TEMPLATE.format(video_id=escape_attr(video.video_id)))
    return "\n".join(parts)


def assemble_document(
    sections: list[Section],
    platform: Platform,
    *,
    title: str = "",
    thumbnail: str | None = None,
    seo: SeoBlock | None = None,
) -> str:
    """Build the final post HTML.

    Args:
        sections: Enriched sections; rendered in ``index`` order whatever
            order they arrive in.
        platform: Target platform; decides image and thumbnail markup.
        title: Post title, used in the SEO block.
        thumbnail: Uploaded thumbnail URL (or Tistory embed code).
        seo: Optional SEO metadata.
    """
    blocks = [render_thumbnail(thumbnail, platform), render_seo(title, seo)]
    blocks.extend(render_section(s, platform) for s in sorted(sections, key=lambda s: s.index))
    return "\n".join(block for block in blocks if block)
