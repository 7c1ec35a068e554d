"""Per-section enrichment: image, related link, related video, ad.

Every enrichment of every section runs independently. Each returns
``Ok(value)`` or ``Degraded(reason)``; a degraded enrichment writes one
error line to the job log and leaves its field empty. Nothing raised
inside an enricher escapes the fan-out.
"""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import Any, Protocol

from postforge.config import ImageStrategy, PipelineSectionConfig
from postforge.errors import SectionDegraded
from postforge.integrations.pixabay import StockImageSearch
from postforge.integrations.searxng import SearchResult, WebSearchService
from postforge.jobs.models import LogLevel
from postforge.pipeline import prompts
from postforge.pipeline.models import Degraded, Ok, RelatedLink, RelatedVideo, Section
from postforge.shared.html import extract_text
from postforge.shared.images import GenerativeImageService
from postforge.shared.limiter import RateLimitedRetryExecutor
from postforge.shared.llm import GenerativeTextService

logger = logging.getLogger(__name__)

YOUTUBE_EXCLUSION = "-site:youtube.com -site:youtu.be"
AD_WRAPPER = '<div class="ad-section" style="margin: 20px 0; text-align: center;">\n{script}\n</div>'

_VIDEO_ID_PATTERNS = (
    re.compile(r"[?&]v=([^&#]+)"),
    re.compile(r"youtu\.be/([^?&#]+)"),
)

# Text excerpt fed to keyword/pick prompts
_PROMPT_TEXT_LIMIT = 3000


class JobLogSink(Protocol):
    def append_log(self, job_id: str, message: str, level: LogLevel | str = LogLevel.INFO) -> None:
        ...


def extract_video_id(url: str) -> str:
    """Pull the YouTube video id out of a watch or short URL ("" if none)."""
    for pattern in _VIDEO_ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return ""


def ad_snippet(section_index: int, settings: PipelineSectionConfig) -> str | None:
    """Ad markup for a section, or None. The first section never carries an ad."""
    if section_index == 0 or not settings.ads_active:
        return None
    return AD_WRAPPER.format(script=settings.ad_script)


async def _log(sink: JobLogSink, job_id: str, message: str, level: LogLevel = LogLevel.INFO) -> None:
    await asyncio.to_thread(sink.append_log, job_id, message, level)


class SectionEnricher:
    """The four per-section enrichments, each failure-isolated."""

    def __init__(
        self,
        *,
        text: GenerativeTextService,
        settings: PipelineSectionConfig,
        text_executor: RateLimitedRetryExecutor,
        image_executor: RateLimitedRetryExecutor,
        images: GenerativeImageService | None = None,
        search: WebSearchService | None = None,
        stock: StockImageSearch | None = None,
    ) -> None:
        self.text = text
        self.settings = settings
        self.text_executor = text_executor
        self.image_executor = image_executor
        self.images = images
        self.search = search
        self.stock = stock

    async def _ask(self, prompt: str, schema: dict[str, Any], label: str) -> Any:
        return await self.text_executor.run(
            lambda: self.text.generate(prompt, schema, label=label)
        )

    # ── Image ────────────────────────────────────────────────────

    async def image(self, section: Section, work_dir: Path) -> Ok[Path | None] | Degraded:
        strategy = self.settings.image_type
        if strategy == ImageStrategy.NONE:
            return Ok(None)
        text = extract_text(section.html, limit=_PROMPT_TEXT_LIMIT)
        try:
            if strategy == ImageStrategy.AI:
                if self.images is None:
                    return Degraded("image generation is not configured")
                answer = await self._ask(prompts.image_prompt(text), prompts.IMAGE_PROMPT_SCHEMA, "image-prompt")
                image_prompt = str(answer.get("prompt", "")).strip()
                if not image_prompt:
                    return Degraded("empty image prompt")
                data = await self.image_executor.run(lambda: self.images.generate(image_prompt))
            else:
                if self.stock is None:
                    return Degraded("stock image search is not configured")
                answer = await self._ask(
                    prompts.stock_keywords_prompt(text), prompts.KEYWORDS_SCHEMA, "stock-keywords"
                )
                keywords = [str(k) for k in answer.get("keywords", []) if str(k).strip()]
                url = await self.stock.search(keywords)
                data = await self.stock.download(url)
        except Exception as exc:
            return Degraded(str(exc) or type(exc).__name__)

        path = work_dir / f"section-{section.index}.png"
        await asyncio.to_thread(path.write_bytes, data)
        return Ok(path)

    # ── Related link ─────────────────────────────────────────────

    async def _pick(self, text: str, candidates: list[SearchResult], kind: str) -> SearchResult:
        """Let the model choose a candidate; fall back to the first one."""
        try:
            answer = await self._ask(
                prompts.pick_prompt(text, candidates, kind=kind), prompts.PICK_SCHEMA, f"pick-{kind}"
            )
            index = int(answer["index"]) - 1
        except Exception as exc:
            logger.debug("Ranking %s candidates failed, using first: %s", kind, exc)
            return candidates[0]
        if 0 <= index < len(candidates):
            return candidates[index]
        return candidates[0]

    async def link(self, section: Section) -> Ok[list[RelatedLink]] | Degraded:
        if not self.settings.link_enabled or self.search is None:
            return Ok([])
        text = extract_text(section.html, limit=_PROMPT_TEXT_LIMIT)
        language = self.settings.language
        try:
            answer = await self._ask(
                prompts.link_keyword_prompt(text, language=language), prompts.KEYWORD_SCHEMA, "link-keyword"
            )
            keyword = str(answer.get("keyword", "")).strip()
            if not keyword:
                return Ok([])
            results = await self.search.search(f"{keyword} {YOUTUBE_EXCLUSION}", "google", 10)
            if not results:
                return Ok([])
            best = await self._pick(text, results, "link")
            name = await self._link_title(best)
        except Exception as exc:
            return Degraded(str(exc) or type(exc).__name__)
        return Ok([RelatedLink(name=name, url=best.url)])

    async def _link_title(self, result: SearchResult) -> str:
        try:
            answer = await self._ask(
                prompts.link_title_prompt(result.title, result.content, language=self.settings.language),
                prompts.LINK_TITLE_SCHEMA,
                "link-title",
            )
            title = str(answer.get("link_title", "")).strip()
        except Exception as exc:
            logger.debug("Link title rewrite failed: %s", exc)
            title = ""
        return title or result.title or result.url

    # ── Related video ────────────────────────────────────────────

    async def video(self, section: Section) -> Ok[list[RelatedVideo]] | Degraded:
        if not self.settings.youtube_enabled or self.search is None:
            return Ok([])
        text = extract_text(section.html, limit=_PROMPT_TEXT_LIMIT)
        try:
            answer = await self._ask(
                prompts.video_keyword_prompt(text, language=self.settings.language),
                prompts.KEYWORD_SCHEMA,
                "video-keyword",
            )
            keyword = str(answer.get("keyword", "")).strip()
            if not keyword:
                return Ok([])
            results = await self.search.search(keyword, "youtube", 10)
            if not results:
                return Ok([])
            best = await self._pick(text, results, "video")
        except Exception as exc:
            return Degraded(str(exc) or type(exc).__name__)
        video_id = extract_video_id(best.url)
        if not video_id:
            return Degraded(f"no video id in {best.url}")
        return Ok([RelatedVideo(title=best.title, video_id=video_id, url=best.url)])

    # ── Ad ───────────────────────────────────────────────────────

    async def ad(self, section: Section) -> Ok[str | None] | Degraded:
        return Ok(ad_snippet(section.index, self.settings))


class SectionFanOut:
    """Run every enrichment of every section concurrently and apply the results."""

    def __init__(self, enricher: SectionEnricher, log_sink: JobLogSink) -> None:
        self.enricher = enricher
        self.log_sink = log_sink

    async def run(self, job_id: str, sections: list[Section], work_dir: Path) -> list[SectionDegraded]:
        """Enrich ``sections`` in place.

        Returns:
            One SectionDegraded per failed enrichment, in section order.
        """
        per_section = await asyncio.gather(
            *(self._enrich(job_id, section, work_dir) for section in sections)
        )
        return [problem for problems in per_section for problem in problems]

    async def _enrich(self, job_id: str, section: Section, work_dir: Path) -> list[SectionDegraded]:
        outcomes = await asyncio.gather(
            self.enricher.image(section, work_dir),
            self.enricher.link(section),
            self.enricher.video(section),
            self.enricher.ad(section),
            return_exceptions=True,
        )
        image, link, video, ad = (
            Degraded(str(o) or type(o).__name__) if isinstance(o, Exception) else o
            for o in outcomes
        )

        problems: list[SectionDegraded] = []
        for field, outcome in (("image", image), ("link", link), ("video", video), ("ad", ad)):
            if isinstance(outcome, Degraded):
                problem = SectionDegraded(section.index, field, outcome.reason)
                problems.append(problem)
                logger.warning("Job %s: %s", job_id, problem)
                await _log(
                    self.log_sink,
                    job_id,
                    f"Section {section.index} {field} enrichment failed: {outcome.reason}",
                    LogLevel.ERROR,
                )

        if isinstance(image, Ok):
            section.image_path = image.value
        if isinstance(link, Ok):
            section.links = link.value
        if isinstance(video, Ok):
            section.videos = video.value
        if isinstance(ad, Ok):
            section.ad_html = ad.value
        return problems
