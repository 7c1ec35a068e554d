"""Processor for topic-idea jobs.

One generative call turns a broad topic into ``limit`` title + brief
pairs. The ideas are saved on the job and written to a JSON file so
they can be reviewed and enqueued as blog post jobs.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from postforge.errors import ConfigurationError, GenerationFailed
from postforge.jobs.models import JobTargetType, PipelineResult
from postforge.jobs.registry import JobProcessor
from postforge.jobs.store import JobStore
from postforge.pipeline import prompts
from postforge.shared.limiter import RateLimitedRetryExecutor
from postforge.shared.llm import GenerativeTextService

logger = logging.getLogger(__name__)


class TopicPayload(BaseModel):
    topic: str = Field(min_length=1)
    limit: int = Field(default=10, ge=1, le=100)


class TopicResult(BaseModel):
    title: str
    content: str = ""


class TopicProcessor(JobProcessor):
    """Draft a batch of blog topic ideas."""

    target_type = JobTargetType.GENERATE_TOPIC

    def __init__(
        self,
        store: JobStore,
        text: GenerativeTextService,
        executor: RateLimitedRetryExecutor,
        output_dir: Path,
        *,
        language: str = "Korean",
    ) -> None:
        self.store = store
        self.text = text
        self.executor = executor
        self.output_dir = output_dir
        self.language = language

    async def generate(self, topic: str, limit: int) -> list[TopicResult]:
        prompt = prompts.topics_prompt(topic, limit, language=self.language)
        try:
            data = await self.executor.run(
                lambda: self.text.generate(prompt, prompts.TOPICS_SCHEMA, label="topics")
            )
            topics = [TopicResult.model_validate(item) for item in data.get("titles", [])]
        except (ValidationError, AttributeError) as exc:
            raise GenerationFailed("topics", f"malformed response: {exc}") from exc
        except Exception as exc:
            raise GenerationFailed("topics", str(exc) or type(exc).__name__) from exc
        return topics[:limit]

    def _write(self, job_id: str, topic: str, topics: list[TopicResult]) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / f"topics-{job_id}.json"
        data = {"topic": topic, "topics": [t.model_dump() for t in topics]}
        path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        return path

    async def process(self, job_id: str) -> PipelineResult:
        job = await asyncio.to_thread(self.store.require, job_id)
        try:
            payload = TopicPayload.model_validate(job.payload)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid topic payload: {exc}") from exc

        await asyncio.to_thread(
            self.store.append_log, job_id, f"Generating {payload.limit} topics for {payload.topic!r}"
        )
        topics = await self.generate(payload.topic, payload.limit)
        if not topics:
            raise GenerationFailed("topics", "no topics returned")

        path = await asyncio.to_thread(self._write, job_id, payload.topic, topics)
        await asyncio.to_thread(
            self.store.update_payload,
            job_id,
            {"topics": [t.model_dump() for t in topics], "output_file": str(path)},
        )
        logger.info("Saved %d topics for job %s to %s", len(topics), job_id, path)
        return PipelineResult(
            result_msg=f"Generated {len(topics)} topics",
            result_url=path.resolve().as_uri(),
        )
