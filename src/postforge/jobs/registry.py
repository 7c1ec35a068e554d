"""Processor registry — maps a job to the handler that runs it."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable

from postforge.errors import ConfigurationError
from postforge.jobs.models import Job, JobTargetType, PipelineResult

logger = logging.getLogger(__name__)


class JobProcessor(ABC):
    """Base class for job-type handlers."""

    target_type: JobTargetType

    def can_process(self, job: Job) -> bool:
        return job.target_type == self.target_type

    @abstractmethod
    async def process(self, job_id: str) -> PipelineResult:
        """Run the job to completion or raise."""


class ProcessorRegistry:
    """Ordered, immutable list of processors resolved once at startup."""

    def __init__(self, processors: Iterable[JobProcessor]) -> None:
        self._processors = tuple(processors)
        seen: set[JobTargetType] = set()
        for processor in self._processors:
            if processor.target_type in seen:
                raise ConfigurationError(
                    f"Duplicate processor for job type {processor.target_type}"
                )
            seen.add(processor.target_type)
        logger.debug("Registered processors: %s", ", ".join(sorted(seen)))

    def __len__(self) -> int:
        return len(self._processors)

    def resolve(self, job: Job) -> JobProcessor | None:
        """Return the first processor that accepts the job, or None."""
        for processor in self._processors:
            if processor.can_process(job):
                return processor
        return None
