"""Tests for HTML document assembly."""

import json

from postforge.pipeline.assembly import assemble_document, render_seo
from postforge.pipeline.models import RelatedLink, RelatedVideo, SeoBlock, Section
from postforge.publishers.base import Platform


def _section(index: int, **kwargs) -> Section:
    return Section(index=index, html=f"<p>body {index}</p>", **kwargs)


class TestAssembleDocument:
    def test_sections_rendered_in_index_order(self):
        sections = [_section(2), _section(0), _section(1)]
        html = assemble_document(sections, Platform.WORDPRESS)
        assert html.index("body 0") < html.index("body 1") < html.index("body 2")

    def test_section_part_order(self):
        section = _section(
            1,
            ad_html="<div>AD</div>",
            links=[RelatedLink(name="Docs", url="https://docs.example.com")],
            uploaded_image_url="https://cdn.example.com/J/a.png",
            videos=[RelatedVideo(title="v", video_id="abc123", url="https://youtu.be/abc123")],
        )
        html = assemble_document([section], Platform.BLOGGER)

        positions = [
            html.index("body 1"),
            html.index("AD"),
            html.index("https://docs.example.com"),
            html.index("https://cdn.example.com/J/a.png"),
            html.index("youtube.com/embed/abc123"),
        ]
        assert positions == sorted(positions)
        assert "🔗 Docs" in html

    def test_thumbnail_and_seo_lead(self):
        html = assemble_document(
            [_section(0)],
            Platform.WORDPRESS,
            title="My Post",
            thumbnail="https://cdn.example.com/J/thumb.png",
            seo=SeoBlock(description="about things", keywords=["a", "b"]),
        )
        assert html.index("thumbnail-container") < html.index("application/ld+json")
        assert html.index("application/ld+json") < html.index("body 0")
        assert '<img src="https://cdn.example.com/J/thumb.png"' in html

    def test_tistory_embed_codes_inserted_raw(self):
        embed = "[##_Image|kage@abc/img.png|CDM|1.3|{}_##]"
        html = assemble_document(
            [_section(0, uploaded_image_url=embed)], Platform.TISTORY, thumbnail=embed
        )
        assert html.count(embed) == 2
        assert "<img" not in html

    def test_escapes_urls(self):
        section = _section(0, links=[RelatedLink(name='A "quoted" <b>', url="https://x.com/?a=1&b=2")])
        html = assemble_document([section], Platform.WORDPRESS)
        assert "a=1&amp;b=2" in html
        assert "&quot;quoted&quot; &lt;b&gt;" in html

    def test_empty_parts_omitted(self):
        html = assemble_document([_section(0)], Platform.WORDPRESS)
        assert html == "<p>body 0</p>"


class TestRenderSeo:
    def test_empty_when_nothing_to_say(self):
        assert render_seo("T", None) == ""
        assert render_seo("T", SeoBlock()) == ""

    def test_json_ld_payload(self):
        block = render_seo("제목", SeoBlock(description="desc </script>", keywords=["k1", "k2"]))
        payload = block.removeprefix('<script type="application/ld+json">').removesuffix("</script>")
        data = json.loads(payload)
        assert data["headline"] == "제목"
        assert data["keywords"] == "k1, k2"
        assert "</script>" not in payload
