"""Wire configuration into a runnable scheduler.

Collaborators that need credentials are only built when something
uses them, so operator commands work without any API keys.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from postforge.config import ImageStrategy, PostforgeConfig
from postforge.errors import ConfigurationError
from postforge.integrations.pixabay import PixabayClient
from postforge.integrations.searxng import SearxngClient
from postforge.integrations.storage import create_asset_store
from postforge.jobs.registry import ProcessorRegistry
from postforge.jobs.scheduler import JobQueueScheduler
from postforge.jobs.service import JobService
from postforge.jobs.store import JobStore
from postforge.pipeline.content import ContentPipeline
from postforge.pipeline.enrichment import SectionEnricher, SectionFanOut
from postforge.processors.info_blog import InfoBlogProcessor
from postforge.processors.topic import TopicProcessor
from postforge.publishers import PublishDispatcher
from postforge.shared.images import GeminiImageService
from postforge.shared.limiter import RateLimitedRetryExecutor, RetryPolicy, limiter_for
from postforge.shared.llm import create_text_service

logger = logging.getLogger(__name__)


def open_store(config: PostforgeConfig) -> JobStore:
    return JobStore(config.scheduler.db_path)


def build_executors(config: PostforgeConfig) -> dict[str, RateLimitedRetryExecutor]:
    """One executor per resource class, sharing process-wide limiters."""
    limits = config.limits
    policy = RetryPolicy(
        max_attempts=limits.max_attempts,
        base_delay=limits.base_delay,
        max_delay=limits.max_delay,
    )
    return {
        name: RateLimitedRetryExecutor(
            limiter_for(name, limits.max_concurrent, limits.min_interval), policy, label=name
        )
        for name in ("text", "image")
    }


@dataclass
class Worker:
    """Everything the worker loop owns."""

    store: JobStore
    scheduler: JobQueueScheduler
    service: JobService
    dispatcher: PublishDispatcher

    async def aclose(self) -> None:
        await self.dispatcher.aclose()


def build_worker(config: PostforgeConfig) -> Worker:
    """Build the store, processors, registry and scheduler from config.

    Raises:
        ConfigurationError: If the text backend has no credentials.
    """
    data_dir = config.scheduler.data_path
    store = open_store(config)
    executors = build_executors(config)
    text = create_text_service(config.ai)

    pipeline_cfg = config.pipeline
    images = None
    if pipeline_cfg.image_type == ImageStrategy.AI:
        if not config.ai.gemini_api_key:
            raise ConfigurationError("image_type = 'ai' needs GEMINI_API_KEY")
        images = GeminiImageService(config.ai.gemini_api_key, model=config.ai.image_model)

    stock = None
    if pipeline_cfg.image_type == ImageStrategy.STOCK:
        stock = PixabayClient(config.search.pixabay_api_key, timeout=config.search.timeout)

    search = None
    if config.search.searxng_url:
        search = SearxngClient(config.search.searxng_url, timeout=config.search.timeout)
    elif pipeline_cfg.link_enabled or pipeline_cfg.youtube_enabled:
        logger.warning("SEARXNG_URL not set; related links and videos are disabled")

    enricher = SectionEnricher(
        text=text,
        settings=pipeline_cfg,
        text_executor=executors["text"],
        image_executor=executors["image"],
        images=images,
        search=search,
        stock=stock,
    )
    pipeline = ContentPipeline(
        text=text,
        fan_out=SectionFanOut(enricher, store),
        assets=create_asset_store(config.storage, data_dir),
        log_sink=store,
        settings=pipeline_cfg,
        text_executor=executors["text"],
    )
    dispatcher = PublishDispatcher(config.accounts, profile_root=data_dir / "browser-profiles")

    registry = ProcessorRegistry(
        [
            InfoBlogProcessor(store, dispatcher, pipeline),
            TopicProcessor(
                store,
                text,
                executors["text"],
                data_dir / "topics",
                language=pipeline_cfg.language,
            ),
        ]
    )
    scheduler = JobQueueScheduler(store, registry, poll_interval=config.scheduler.poll_interval)
    return Worker(
        store=store,
        scheduler=scheduler,
        service=JobService(store, scheduler),
        dispatcher=dispatcher,
    )
