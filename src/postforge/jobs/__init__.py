"""Job engine — durable queue, scheduler, processor registry and control plane.

The scheduler claims at most one job at a time from the SQLite-backed
JobStore, dispatches it to the processor registered for its target type,
and records the outcome. Operator actions go through JobService.
"""

from postforge.jobs.models import (
    Job,
    JobLog,
    JobStatus,
    JobTargetType,
    LogLevel,
    PipelineResult,
)
from postforge.jobs.registry import JobProcessor, ProcessorRegistry
from postforge.jobs.scheduler import JobQueueScheduler
from postforge.jobs.service import BulkResult, JobService, JobUpdate
from postforge.jobs.store import JobStore

__all__ = [
    "BulkResult",
    "Job",
    "JobLog",
    "JobProcessor",
    "JobQueueScheduler",
    "JobService",
    "JobStatus",
    "JobStore",
    "JobTargetType",
    "JobUpdate",
    "LogLevel",
    "PipelineResult",
    "ProcessorRegistry",
]
