"""Processor for informational blog post jobs."""

from __future__ import annotations

import asyncio
import logging

from pydantic import BaseModel, Field, ValidationError

from postforge.errors import ConfigurationError
from postforge.jobs.models import JobTargetType, PipelineResult
from postforge.jobs.registry import JobProcessor
from postforge.jobs.store import JobStore
from postforge.pipeline.content import ContentPipeline
from postforge.pipeline.models import ContentBrief
from postforge.publishers import AccountRef, PublishDispatcher

logger = logging.getLogger(__name__)


class InfoBlogPayload(BaseModel):
    """Payload stored on a ``blog-info-posting`` job."""

    title: str
    content: str = ""
    category: str = ""
    labels: list[str] = Field(default_factory=list)
    account: AccountRef = Field(default_factory=AccountRef)

    def to_brief(self) -> ContentBrief:
        return ContentBrief(
            title=self.title, content=self.content, category=self.category, labels=self.labels
        )


class InfoBlogProcessor(JobProcessor):
    """Generate a post with the content pipeline and publish it to the job's account."""

    target_type = JobTargetType.INFO_BLOG_POST

    def __init__(
        self, store: JobStore, dispatcher: PublishDispatcher, pipeline: ContentPipeline
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.pipeline = pipeline

    async def process(self, job_id: str) -> PipelineResult:
        job = await asyncio.to_thread(self.store.require, job_id)
        try:
            payload = InfoBlogPayload.model_validate(job.payload)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid blog post payload: {exc}") from exc

        publisher = self.dispatcher.select(payload.account)
        await asyncio.to_thread(
            self.store.append_log, job_id, f"Preparing {publisher.platform} account {publisher.account_name}"
        )
        await publisher.prepare()

        result = await self.pipeline.run(job_id, payload.to_brief(), publisher)
        if result.details:
            await asyncio.to_thread(self.store.update_payload, job_id, result.details)
        return result
