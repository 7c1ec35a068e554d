"""Job domain models — pure Pydantic v2 data types.

A Job is one unit of queued work (a blog post to generate and publish,
a batch of topic ideas to draft). JobLog rows are its append-only,
operator-visible progress trail.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


class JobStatus(StrEnum):
    """Lifecycle status of a job."""

    PENDING = "pending"
    REQUESTED = "request"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobTargetType(StrEnum):
    """Which processor handles a job."""

    INFO_BLOG_POST = "blog-info-posting"
    GENERATE_TOPIC = "generate-topic"


class LogLevel(StrEnum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class Job(BaseModel):
    """A durable queued unit of work."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    target_type: JobTargetType
    status: JobStatus = JobStatus.REQUESTED
    priority: int = 1
    subject: str = ""
    desc: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)
    scheduled_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    result_msg: str | None = None
    result_url: str | None = None
    error_msg: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class JobLog(BaseModel):
    """One append-only progress entry for a job."""

    id: int
    job_id: str
    message: str
    level: LogLevel = LogLevel.INFO
    created_at: datetime


class PipelineResult(BaseModel):
    """Outcome a processor hands back to the scheduler on success."""

    result_msg: str
    result_url: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
