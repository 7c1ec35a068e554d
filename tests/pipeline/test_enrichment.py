"""Tests for per-section enrichment and the fan-out that applies it."""

import asyncio
from pathlib import Path

from fakes import FakeImages, FakeSearch, FakeSink, FakeText, instant_executor, no_sleep

from postforge.config import ImageStrategy, PipelineSectionConfig
from postforge.integrations.searxng import SearchResult
from postforge.jobs.models import LogLevel
from postforge.pipeline.assembly import LINK_TEMPLATE, assemble_document
from postforge.pipeline.enrichment import (
    AD_WRAPPER,
    YOUTUBE_EXCLUSION,
    SectionEnricher,
    SectionFanOut,
    ad_snippet,
    extract_video_id,
)
from postforge.pipeline.models import Degraded, Ok, Section
from postforge.publishers.base import Platform
from postforge.shared.limiter import RateLimitedRetryExecutor, RateLimiter, RetryPolicy

_LINKS = [
    SearchResult(url="https://docs.python.org/3/", title="Python docs", content="Reference"),
    SearchResult(url="https://realpython.com/", title="Real Python", content="Tutorials"),
]
_VIDEOS = [SearchResult(url="https://www.youtube.com/watch?v=abc123&t=5", title="Intro video")]


def _text(**overrides) -> FakeText:
    responses = {
        "image-prompt": lambda prompt: {"prompt": "broken" if "BROKEN" in prompt else "a desk"},
        "stock-keywords": {"keywords": ["desk", "laptop"]},
        "link-keyword": {"keyword": "python basics"},
        "pick-link": {"index": 2},
        "link-title": {"link_title": "Learn Python"},
        "video-keyword": {"keyword": "python intro"},
        "pick-video": {"index": 1},
    }
    responses.update(overrides)
    return FakeText(responses)


class SelectiveImages(FakeImages):
    async def generate(self, prompt: str) -> bytes:
        self.prompts.append(prompt)
        if prompt == "broken":
            raise RuntimeError("safety filter")
        return self.data


def _enricher(
    text: FakeText | None = None,
    *,
    settings: PipelineSectionConfig | None = None,
    images=None,
    search=None,
    stock=None,
    text_executor=None,
) -> SectionEnricher:
    return SectionEnricher(
        text=text or _text(),
        settings=settings or PipelineSectionConfig(),
        text_executor=text_executor or instant_executor(),
        image_executor=instant_executor(),
        images=images if images is not None else SelectiveImages(),
        search=search if search is not None else FakeSearch({"google": _LINKS, "youtube": _VIDEOS}),
        stock=stock,
    )


def _sections(*bodies: str) -> list[Section]:
    return [Section(index=i, html=f"<p>{body}</p>") for i, body in enumerate(bodies)]


class CountingExecutor(RateLimitedRetryExecutor):
    def __init__(self) -> None:
        super().__init__(RateLimiter(10, 0.0, sleep=no_sleep), RetryPolicy(max_attempts=1), sleep=no_sleep)
        self.runs = 0

    async def run(self, operation, *, on_retry=None):
        self.runs += 1
        return await super().run(operation, on_retry=on_retry)


class TestHelpers:
    def test_extract_video_id(self):
        assert extract_video_id("https://www.youtube.com/watch?v=abc123&t=5") == "abc123"
        assert extract_video_id("https://youtu.be/xyz789?si=1") == "xyz789"
        assert extract_video_id("https://example.com/video") == ""

    def test_first_section_never_gets_ad(self):
        settings = PipelineSectionConfig(ad_enabled=True, ad_script="<script>ad()</script>")
        assert ad_snippet(0, settings) is None
        assert ad_snippet(1, settings) == AD_WRAPPER.format(script="<script>ad()</script>")

    def test_ads_need_script(self):
        settings = PipelineSectionConfig(ad_enabled=True, ad_script="  ")
        assert ad_snippet(2, settings) is None


class TestImage:
    def test_ai_image_written_to_work_dir(self, tmp_path: Path):
        section = _sections("a desk setup")[0]
        result = asyncio.run(_enricher().image(section, tmp_path))

        assert isinstance(result, Ok)
        assert result.value == tmp_path / "section-0.png"
        assert result.value.read_bytes() == b"\x89PNG fake"

    def test_no_image_strategy(self, tmp_path: Path):
        text = _text()
        enricher = _enricher(text, settings=PipelineSectionConfig(image_type=ImageStrategy.NONE))
        result = asyncio.run(enricher.image(_sections("x")[0], tmp_path))
        assert result == Ok(None)
        assert text.calls == []

    def test_stock_image(self, tmp_path: Path):
        class Stock:
            async def search(self, keywords: list[str]) -> str:
                assert keywords == ["desk", "laptop"]
                return "https://pixabay.example/desk.jpg"

            async def download(self, url: str) -> bytes:
                return b"JPEG"

        enricher = _enricher(
            settings=PipelineSectionConfig(image_type=ImageStrategy.STOCK), stock=Stock()
        )
        result = asyncio.run(enricher.image(_sections("x")[0], tmp_path))
        assert isinstance(result, Ok)
        assert result.value.read_bytes() == b"JPEG"

    def test_generation_error_degrades(self, tmp_path: Path):
        result = asyncio.run(_enricher().image(_sections("BROKEN")[0], tmp_path))
        assert result == Degraded("safety filter")


class TestLinkAndVideo:
    def test_link_excludes_youtube_and_uses_pick(self):
        search = FakeSearch({"google": _LINKS})
        result = asyncio.run(_enricher(search=search).link(_sections("python")[0]))

        assert isinstance(result, Ok)
        assert [(link.name, link.url) for link in result.value] == [
            ("Learn Python", "https://realpython.com/")
        ]
        query, engine = search.queries[0]
        assert engine == "google"
        assert query == f"python basics {YOUTUBE_EXCLUSION}"

    def test_bad_pick_falls_back_to_first(self):
        text = _text(**{"pick-link": {"index": 99}, "link-title": RuntimeError("down")})
        result = asyncio.run(_enricher(text).link(_sections("python")[0]))
        assert result.value[0].url == "https://docs.python.org/3/"
        assert result.value[0].name == "Python docs"

    def test_link_disabled(self):
        text = _text()
        enricher = _enricher(text, settings=PipelineSectionConfig(link_enabled=False))
        assert asyncio.run(enricher.link(_sections("x")[0])) == Ok([])
        assert "link-keyword" not in text.calls

    def test_video(self):
        result = asyncio.run(_enricher().video(_sections("python")[0]))
        assert isinstance(result, Ok)
        assert result.value[0].video_id == "abc123"

    def test_video_without_id_degrades(self):
        search = FakeSearch({"youtube": [SearchResult(url="https://vimeo.com/1", title="v")]})
        result = asyncio.run(_enricher(search=search).video(_sections("x")[0]))
        assert isinstance(result, Degraded)
        assert "no video id" in result.reason

    def test_every_text_call_goes_through_executor(self):
        text = _text()
        executor = CountingExecutor()
        enricher = _enricher(text, text_executor=executor)

        asyncio.run(enricher.link(_sections("python")[0]))
        asyncio.run(enricher.video(_sections("python")[0]))

        assert text.calls == ["link-keyword", "pick-link", "link-title", "video-keyword", "pick-video"]
        assert executor.runs == len(text.calls)


class TestFanOut:
    def test_failure_isolated_to_one_section(self, tmp_path: Path):
        sink = FakeSink()
        sections = _sections("fine one", "BROKEN two", "fine three")

        problems = asyncio.run(SectionFanOut(_enricher(), sink).run("J", sections, tmp_path))

        assert [(p.section_index, p.field) for p in problems] == [(1, "image")]
        errors = sink.messages(LogLevel.ERROR)
        assert errors == ["Section 1 image enrichment failed: safety filter"]
        assert sections[1].image_path is None
        # Other enrichments of the failed section still land
        assert sections[1].links and sections[1].videos
        assert sections[0].image_path is not None
        assert sections[2].image_path is not None

    def test_ads_follow_every_section_but_first(self, tmp_path: Path):
        settings = PipelineSectionConfig(
            image_type=ImageStrategy.NONE,
            link_enabled=False,
            youtube_enabled=False,
            ad_enabled=True,
            ad_script="<script>ad()</script>",
        )
        sections = _sections("a", "b", "c")
        asyncio.run(
            SectionFanOut(_enricher(settings=settings), FakeSink()).run("J", sections, tmp_path)
        )

        assert sections[0].ad_html is None
        assert sections[1].ad_html is not None and "ad()" in sections[1].ad_html
        assert sections[2].ad_html is not None

    def test_unexpected_exception_becomes_degraded(self, tmp_path: Path):
        enricher = _enricher(settings=PipelineSectionConfig(image_type=ImageStrategy.NONE))

        async def explode(section: Section):
            raise KeyError("surprise")

        enricher.video = explode  # type: ignore[method-assign]
        sink = FakeSink()
        sections = _sections("x")

        problems = asyncio.run(SectionFanOut(enricher, sink).run("J", sections, tmp_path))

        assert [p.field for p in problems] == ["video"]
        assert len(sink.messages(LogLevel.ERROR)) == 1
        assert sections[0].links

    def test_failed_link_leaves_other_sections_intact(self, tmp_path: Path):
        def keyword(prompt: str) -> dict:
            if "topic 2" in prompt:
                raise RuntimeError("search backend down")
            return {"keyword": "python basics"}

        settings = PipelineSectionConfig(image_type=ImageStrategy.NONE, youtube_enabled=False)
        sink = FakeSink()
        sections = _sections(*(f"topic {i}" for i in range(5)))
        sections.reverse()

        problems = asyncio.run(
            SectionFanOut(_enricher(_text(**{"link-keyword": keyword}), settings=settings), sink).run(
                "J", sections, tmp_path
            )
        )
        html = assemble_document(sections, Platform.WORDPRESS, title="Topics")

        assert [(p.section_index, p.field) for p in problems] == [(2, "link")]
        assert sink.messages(LogLevel.ERROR) == ["Section 2 link enrichment failed: search backend down"]
        starts = [html.index(f"<p>topic {i}</p>") for i in range(5)]
        assert starts == sorted(starts)
        anchor = LINK_TEMPLATE.format(url="https://realpython.com/", name="Learn Python")
        blocks = [html[start:end] for start, end in zip(starts, starts[1:] + [len(html)])]
        assert [anchor in block for block in blocks] == [True, True, False, True, True]
