"""The content pipeline: outline → body → enrichment → upload → assembly → publish.

Outline and body generation are sequential and fatal on failure.
Enrichment and uploads fan out per section and degrade per section.
Assembly is pure. If anything from enrichment onward raises, every
asset uploaded under the job's prefix is deleted before the error
propagates to the scheduler.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from postforge.config import PipelineSectionConfig
from postforge.errors import GenerationFailed, PublishFailed, UploadDegraded
from postforge.integrations.storage import AssetMeta, AssetStore
from postforge.jobs.models import LogLevel, PipelineResult
from postforge.pipeline import prompts
from postforge.pipeline.assembly import assemble_document
from postforge.pipeline.enrichment import JobLogSink, SectionFanOut
from postforge.pipeline.models import (
    BlogDraft,
    ContentBrief,
    Outline,
    PublishDocument,
    Section,
)
from postforge.pipeline.thumbnail import render_thumbnail
from postforge.publishers.base import PlatformPublisher
from postforge.shared.limiter import RateLimitedRetryExecutor
from postforge.shared.llm import GenerativeTextService

logger = logging.getLogger(__name__)


class ContentPipeline:
    """Generate, enrich, assemble and publish one blog post."""

    def __init__(
        self,
        *,
        text: GenerativeTextService,
        fan_out: SectionFanOut,
        assets: AssetStore,
        log_sink: JobLogSink,
        settings: PipelineSectionConfig,
        text_executor: RateLimitedRetryExecutor,
        work_root: Path | None = None,
    ) -> None:
        self.text = text
        self.fan_out = fan_out
        self.assets = assets
        self.log_sink = log_sink
        self.settings = settings
        self.text_executor = text_executor
        self.work_root = work_root

    async def _log(self, job_id: str, message: str, level: LogLevel = LogLevel.INFO) -> None:
        await asyncio.to_thread(self.log_sink.append_log, job_id, message, level)

    async def _generate(self, stage: str, prompt: str, schema: dict[str, Any]) -> Any:
        try:
            return await self.text_executor.run(
                lambda: self.text.generate(prompt, schema, label=stage)
            )
        except Exception as exc:
            raise GenerationFailed(stage, str(exc) or type(exc).__name__) from exc

    # ── Stages 1-2: generation ───────────────────────────────────

    async def generate_outline(self, brief: ContentBrief) -> Outline:
        data = await self._generate(
            "outline",
            prompts.outline_prompt(brief.title, brief.content, language=self.settings.language),
            prompts.OUTLINE_SCHEMA,
        )
        try:
            outline = Outline.model_validate(data)
        except ValidationError as exc:
            raise GenerationFailed("outline", f"malformed response: {exc}") from exc
        if not outline.sections:
            raise GenerationFailed("outline", "no sections returned")
        if not outline.title:
            outline.title = brief.title
        return outline

    async def expand_body(self, outline: Outline) -> BlogDraft:
        data = await self._generate(
            "body",
            prompts.body_prompt(outline, language=self.settings.language),
            prompts.BODY_SCHEMA,
        )
        try:
            draft = BlogDraft.model_validate(data)
        except ValidationError as exc:
            raise GenerationFailed("body", f"malformed response: {exc}") from exc
        if not draft.sections:
            raise GenerationFailed("body", "no sections returned")
        if not draft.title:
            draft.title = outline.title
        return draft

    async def _make_thumbnail(self, job_id: str, draft: BlogDraft, work_dir: Path) -> Path | None:
        if not self.settings.thumbnail_enabled or draft.thumbnail_text is None:
            return None
        try:
            return await asyncio.to_thread(
                render_thumbnail,
                draft.thumbnail_text.lines,
                work_dir / "thumbnail.png",
                self.settings,
            )
        except Exception as exc:
            logger.warning("Thumbnail rendering failed for job %s: %s", job_id, exc)
            await self._log(job_id, f"Thumbnail skipped: {exc}", LogLevel.WARN)
            return None

    # ── Stage 4: uploads ─────────────────────────────────────────

    async def _store_asset(self, job_id: str, path: Path) -> str:
        data = await asyncio.to_thread(path.read_bytes)
        return await self.assets.upload(data, AssetMeta(job_id=job_id, filename=path.name))

    async def _upload(self, job_id: str, path: Path, publisher: PlatformPublisher) -> str:
        if publisher.supports_image_upload:
            return await publisher.upload_image(path)
        return await self._store_asset(job_id, path)

    async def _upload_many(
        self, job_id: str, paths: list[Path], publisher: PlatformPublisher
    ) -> list[str | Exception]:
        """One result per path: the image reference or the upload error."""
        if publisher.supports_image_upload:
            return await publisher.upload_images(paths)
        results = await asyncio.gather(
            *(self._store_asset(job_id, path) for path in paths), return_exceptions=True
        )
        for result in results:
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result
        return list(results)

    async def upload_assets(
        self,
        job_id: str,
        sections: list[Section],
        thumbnail_path: Path | None,
        publisher: PlatformPublisher,
    ) -> str | None:
        """Upload section images, then the thumbnail; returns the thumbnail reference.

        Platform-hosted images go through the publisher as one batch.
        A failed image upload degrades its section only.
        """
        pending = [(s, s.image_path) for s in sections if s.image_path is not None]
        outcomes = await self._upload_many(job_id, [path for _, path in pending], publisher)

        failed = 0
        for (section, _), outcome in zip(pending, outcomes, strict=True):
            if isinstance(outcome, Exception):
                failed += 1
                problem = UploadDegraded(section.index, str(outcome) or type(outcome).__name__)
                logger.warning("Job %s: %s", job_id, problem)
                await self._log(
                    job_id, f"Section {section.index} image upload failed: {problem.reason}", LogLevel.ERROR
                )
            else:
                section.uploaded_image_url = outcome
        if pending:
            await self._log(job_id, f"Uploaded {len(pending) - failed}/{len(pending)} section images")

        if thumbnail_path is None:
            return None
        try:
            return await self._upload(job_id, thumbnail_path, publisher)
        except Exception as exc:
            logger.warning("Thumbnail upload failed for job %s: %s", job_id, exc)
            await self._log(job_id, f"Thumbnail upload failed: {exc}", LogLevel.WARN)
            return None

    # ── Compensation ─────────────────────────────────────────────

    async def _compensate(self, job_id: str) -> None:
        try:
            removed = await self.assets.delete_by_prefix(job_id)
        except Exception as exc:
            logger.error("Asset cleanup failed for job %s: %s", job_id, exc, exc_info=True)
            await self._log(job_id, f"Failed to remove uploaded assets: {exc}", LogLevel.ERROR)
            return
        await self._log(job_id, f"Removed {removed} uploaded asset(s) for job")

    # ── Entry point ──────────────────────────────────────────────

    async def run(
        self, job_id: str, brief: ContentBrief, publisher: PlatformPublisher
    ) -> PipelineResult:
        """Run every stage for one job.

        Raises:
            GenerationFailed: Outline or body generation failed.
            PublishFailed: The platform rejected the post.
        """
        work_dir = Path(tempfile.mkdtemp(prefix=f"postforge-{job_id}-", dir=self.work_root))
        try:
            await self._log(job_id, "Generating outline")
            outline = await self.generate_outline(brief)
            await self._log(job_id, f"Outline ready: {len(outline.sections)} sections")

            draft = await self.expand_body(outline)
            sections = [Section(index=i, html=s.html) for i, s in enumerate(draft.sections)]
            await self._log(job_id, f"Body ready: {len(sections)} sections")

            try:
                return await self._finish(job_id, brief, draft, sections, publisher, work_dir)
            except Exception:
                await self._compensate(job_id)
                raise
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

    async def _finish(
        self,
        job_id: str,
        brief: ContentBrief,
        draft: BlogDraft,
        sections: list[Section],
        publisher: PlatformPublisher,
        work_dir: Path,
    ) -> PipelineResult:
        thumbnail_path = await self._make_thumbnail(job_id, draft, work_dir)

        await self._log(job_id, "Enriching sections")
        problems = await self.fan_out.run(job_id, sections, work_dir)
        await self._log(job_id, f"Sections enriched ({len(problems)} degraded)")

        thumbnail = await self.upload_assets(job_id, sections, thumbnail_path, publisher)

        html = assemble_document(
            sections, publisher.platform, title=draft.title, thumbnail=thumbnail, seo=draft.seo
        )
        tags = draft.tags or brief.labels
        document = PublishDocument(
            title=draft.title,
            html=html,
            tags=tags,
            category=brief.category,
            thumbnail_url=thumbnail,
        )

        await self._log(job_id, f"Publishing to {publisher.platform} ({publisher.account_name})")
        try:
            published = await publisher.publish(document)
        except PublishFailed:
            raise
        except Exception as exc:
            raise PublishFailed(publisher.platform, str(exc) or type(exc).__name__) from exc

        await self._log(job_id, f"Published: {published.url}")
        return PipelineResult(
            result_msg=f"Published '{draft.title}' to {publisher.platform}",
            result_url=published.url,
            details={
                "published_title": draft.title,
                "published_tags": tags,
                "degraded_sections": len(problems),
            },
        )
