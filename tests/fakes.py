"""In-memory collaborators shared by the test suite."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from postforge.integrations.searxng import SearchResult
from postforge.integrations.storage import AssetMeta
from postforge.jobs.models import JobTargetType, LogLevel, PipelineResult
from postforge.jobs.registry import JobProcessor
from postforge.pipeline.models import PublishDocument, PublishResult
from postforge.publishers.base import Platform, PlatformPublisher
from postforge.shared.limiter import RateLimitedRetryExecutor, RateLimiter, RetryPolicy


async def no_sleep(_seconds: float) -> None:
    return None


def instant_executor(max_attempts: int = 1, label: str = "test") -> RateLimitedRetryExecutor:
    """Executor with no spacing and no backoff delay."""
    return RateLimitedRetryExecutor(
        RateLimiter(10, 0.0, sleep=no_sleep),
        RetryPolicy(max_attempts=max_attempts),
        sleep=no_sleep,
        label=label,
    )


class FakeText:
    """Text backend answering by call label.

    A response may be a value, an exception instance (raised), or a
    callable taking the prompt.
    """

    def __init__(self, responses: dict[str, Any] | None = None) -> None:
        self.responses = dict(responses or {})
        self.calls: list[str] = []
        self.prompts: list[str] = []

    async def generate(self, prompt: str, schema: dict[str, Any], *, label: str = "") -> Any:
        self.calls.append(label)
        self.prompts.append(prompt)
        if label not in self.responses:
            raise RuntimeError(f"no scripted response for {label}")
        response = self.responses[label]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(prompt)
        return response


class FakeImages:
    def __init__(self, data: bytes = b"\x89PNG fake", error: Exception | None = None) -> None:
        self.data = data
        self.error = error
        self.prompts: list[str] = []

    async def generate(self, prompt: str) -> bytes:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.data


class FakeSearch:
    def __init__(self, results: dict[str, list[SearchResult]] | None = None) -> None:
        self.results = results or {}
        self.queries: list[tuple[str, str]] = []

    async def search(self, query: str, engine: str = "google", n: int = 10) -> list[SearchResult]:
        self.queries.append((query, engine))
        return self.results.get(engine, [])[:n]


class FakeSink:
    """Collects job log lines in memory."""

    def __init__(self) -> None:
        self.entries: list[tuple[str, str, LogLevel]] = []

    def append_log(self, job_id: str, message: str, level: LogLevel | str = LogLevel.INFO) -> None:
        self.entries.append((job_id, message, LogLevel(level)))

    def messages(self, level: LogLevel | None = None) -> list[str]:
        return [m for _, m, lvl in self.entries if level is None or lvl == level]


class MemoryAssetStore:
    """Asset store keeping objects in a dict keyed by ``job/uuid.ext``."""

    def __init__(self, fail_uploads: bool = False) -> None:
        self.objects: dict[str, bytes] = {}
        self.fail_uploads = fail_uploads

    async def upload(self, data: bytes, meta: AssetMeta) -> str:
        if self.fail_uploads:
            raise OSError("bucket unavailable")
        key = meta.key
        self.objects[key] = data
        return f"https://cdn.example.com/{key}"

    async def delete_by_prefix(self, prefix: str) -> int:
        keys = [k for k in self.objects if k.startswith(f"{prefix}/")]
        for key in keys:
            del self.objects[key]
        return len(keys)

    async def list(self, prefix: str) -> list[str]:
        return sorted(k for k in self.objects if k.startswith(f"{prefix}/"))


class FakePublisher(PlatformPublisher):
    """Publisher that records what it was asked to do."""

    def __init__(
        self,
        account_name: str = "main",
        *,
        platform: Platform = Platform.WORDPRESS,
        supports_image_upload: bool = False,
        publish_error: Exception | None = None,
        url: str = "https://blog.example.com/posts/1",
    ) -> None:
        super().__init__(account_name)
        self.platform = platform
        self.supports_image_upload = supports_image_upload
        self.publish_error = publish_error
        self.url = url
        self.prepared = 0
        self.uploaded: list[Path] = []
        self.batches: list[list[str]] = []
        self.documents: list[PublishDocument] = []
        self.closed = False

    async def prepare(self) -> None:
        self.prepared += 1

    async def upload_image(self, path: Path) -> str:
        self.uploaded.append(path)
        return f"https://media.example.com/{path.name}"

    async def upload_images(self, paths: list[Path]) -> list[str | Exception]:
        self.batches.append([p.name for p in paths])
        return await super().upload_images(paths)

    async def publish(self, document: PublishDocument) -> PublishResult:
        self.documents.append(document)
        if self.publish_error is not None:
            raise self.publish_error
        return PublishResult(url=self.url, post_id="1")

    async def aclose(self) -> None:
        self.closed = True


class RecordingProcessor(JobProcessor):
    """Processor returning a fixed result or raising a fixed error."""

    def __init__(
        self,
        target_type: JobTargetType = JobTargetType.INFO_BLOG_POST,
        *,
        error: Exception | None = None,
        result: PipelineResult | None = None,
        on_process: Any = None,
    ) -> None:
        self.target_type = target_type
        self.error = error
        self.result = result or PipelineResult(result_msg="done", result_url="https://x/1")
        self.on_process = on_process
        self.processed: list[str] = []

    async def process(self, job_id: str) -> PipelineResult:
        self.processed.append(job_id)
        if self.on_process is not None:
            await self.on_process(job_id)
        if self.error is not None:
            raise self.error
        return self.result
