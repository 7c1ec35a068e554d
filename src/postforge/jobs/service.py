"""Operator control plane for the job queue.

Everything an operator can do to a job outside the scheduler lives
here: enqueue, retry, delete, edit, list and read logs. Actions that
would fight a running job are rejected with JobStateError.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from postforge.errors import JobNotFound, JobStateError
from postforge.jobs.models import Job, JobLog, JobStatus, JobTargetType, LogLevel, utcnow
from postforge.jobs.store import JobStore

if TYPE_CHECKING:
    from postforge.jobs.scheduler import JobQueueScheduler

logger = logging.getLogger(__name__)

MSG_REGISTERED = "Job registered"
MSG_RETRY = "Job will be retried"
MSG_DEFERRED = "Another job is processing; retry left for the next tick"


class JobUpdate(BaseModel):
    """Operator-editable fields; unset fields are left alone."""

    scheduled_at: datetime | None = None
    status: JobStatus | None = None
    subject: str | None = None
    desc: str | None = None


class BulkResult(BaseModel):
    """Outcome of a bulk retry or delete."""

    success_count: int = 0
    failed_count: int = 0
    errors: list[dict[str, str]] = Field(default_factory=list)


class JobService:
    """Operator actions on jobs."""

    def __init__(self, store: JobStore, scheduler: JobQueueScheduler | None = None) -> None:
        self.store = store
        self.scheduler = scheduler

    # ── Enqueue ──────────────────────────────────────────────────

    def enqueue(
        self,
        target_type: JobTargetType,
        *,
        subject: str,
        desc: str = "",
        payload: dict[str, Any] | None = None,
        priority: int = 1,
        scheduled_at: datetime | None = None,
        status: JobStatus = JobStatus.REQUESTED,
    ) -> Job:
        """Create a job in ``request`` (or ``pending``) status."""
        if status not in (JobStatus.REQUESTED, JobStatus.PENDING):
            raise JobStateError(f"New jobs must be request or pending, not {status}")
        job = Job(
            target_type=target_type,
            status=status,
            priority=priority,
            subject=subject,
            desc=desc,
            payload=payload or {},
            scheduled_at=scheduled_at or utcnow(),
        )
        self.store.create(job)
        self.store.append_log(job.id, MSG_REGISTERED)
        logger.info("Enqueued job %s (%s): %s", job.id, target_type, subject)
        return job

    def enqueue_info_post(
        self,
        *,
        title: str,
        content: str = "",
        account: dict[str, str],
        category: str = "",
        labels: list[str] | None = None,
        priority: int = 1,
        scheduled_at: datetime | None = None,
        status: JobStatus = JobStatus.REQUESTED,
    ) -> Job:
        """Queue a blog post to be generated and published."""
        payload = {
            "title": title,
            "content": content,
            "category": category,
            "labels": labels or [],
            "account": account,
        }
        return self.enqueue(
            JobTargetType.INFO_BLOG_POST,
            subject=f"[Blog] {title}",
            desc=content,
            payload=payload,
            priority=priority,
            scheduled_at=scheduled_at,
            status=status,
        )

    def enqueue_topic(
        self,
        topic: str,
        *,
        limit: int = 10,
        priority: int = 1,
        scheduled_at: datetime | None = None,
    ) -> Job:
        """Queue a batch of topic ideas to be drafted."""
        return self.enqueue(
            JobTargetType.GENERATE_TOPIC,
            subject=f"[Topics] {topic}",
            desc=f"{limit} topic ideas for {topic}",
            payload={"topic": topic, "limit": limit},
            priority=priority,
            scheduled_at=scheduled_at,
        )

    # ── Retry ────────────────────────────────────────────────────

    async def retry(self, job_id: str, *, dispatch_now: bool = False) -> Job:
        """Put a job back in the queue, optionally running it right away.

        With ``dispatch_now`` the job only runs if no other job is
        processing; otherwise it stays queued for the scheduler.

        Raises:
            JobNotFound: If the job does not exist.
            JobStateError: If the job is currently processing.
        """
        job = self.store.require(job_id)
        if job.status == JobStatus.PROCESSING:
            raise JobStateError(f"Job {job_id} is processing and cannot be retried")
        self.store.reset_for_retry(job_id)
        self.store.append_log(job_id, MSG_RETRY)
        job = self.store.require(job_id)
        if dispatch_now and self.scheduler is not None:
            if await self.scheduler.process_job(job):
                job = self.store.require(job_id)
            else:
                self.store.append_log(job_id, MSG_DEFERRED)
        return job

    def bulk_retry(self, job_ids: Iterable[str]) -> BulkResult:
        """Retry every failed job in ``job_ids``; others are reported.

        Raises:
            ValueError: If no ids are given.
            JobNotFound: If none of the ids exist.
        """
        ids = list(job_ids)
        if not ids:
            raise ValueError("No job ids given")

        jobs = [job for job in (self.store.get(i) for i in ids) if job is not None]
        if not jobs:
            raise JobNotFound(", ".join(ids))

        result = BulkResult()
        found = {job.id for job in jobs}
        for missing in ids:
            if missing not in found:
                result.failed_count += 1
                result.errors.append({"job_id": missing, "error": "not found"})

        for job in jobs:
            if job.status != JobStatus.FAILED:
                result.failed_count += 1
                result.errors.append(
                    {"job_id": job.id, "error": f"only failed jobs can be retried ({job.status})"}
                )
                continue
            try:
                self.store.reset_for_retry(job.id)
                self.store.append_log(job.id, MSG_RETRY)
                result.success_count += 1
            except Exception as exc:
                logger.warning("Retry of job %s failed: %s", job.id, exc)
                result.failed_count += 1
                result.errors.append({"job_id": job.id, "error": str(exc)})
        return result

    # ── Delete ───────────────────────────────────────────────────

    def delete(self, job_id: str) -> None:
        """Delete a job and its logs.

        Raises:
            JobNotFound: If the job does not exist.
            JobStateError: If the job is processing.
        """
        job = self.store.require(job_id)
        if job.status == JobStatus.PROCESSING:
            raise JobStateError(f"Job {job_id} is processing and cannot be deleted")
        self.store.delete(job_id)
        logger.info("Deleted job %s", job_id)

    def bulk_delete(self, job_ids: Iterable[str]) -> BulkResult:
        """Delete every non-processing job in ``job_ids``."""
        ids = list(job_ids)
        if not ids:
            raise ValueError("No job ids given")

        result = BulkResult()
        for job_id in ids:
            job = self.store.get(job_id)
            if job is None:
                result.failed_count += 1
                result.errors.append({"job_id": job_id, "error": "not found"})
                continue
            if job.status == JobStatus.PROCESSING:
                result.failed_count += 1
                result.errors.append({"job_id": job_id, "error": "job is processing"})
                continue
            self.store.delete(job_id)
            result.success_count += 1
        return result

    # ── Edit ─────────────────────────────────────────────────────

    def update(self, job_id: str, changes: JobUpdate) -> list[str]:
        """Apply operator edits and return the names of updated fields.

        Raises:
            ValueError: If ``changes`` sets nothing.
            JobNotFound: If the job does not exist.
            JobStateError: If the job is processing or the status edit
                would move a job into or out of processing.
        """
        fields = changes.model_dump(exclude_none=True)
        if not fields:
            raise ValueError("Nothing to update")

        job = self.store.require(job_id)
        if job.status == JobStatus.PROCESSING:
            raise JobStateError(f"Job {job_id} is processing and cannot be edited")
        if fields.get("status") == JobStatus.PROCESSING:
            raise JobStateError("Only the scheduler can set a job to processing")

        self.store.update_fields(job_id, **fields)
        return sorted(fields)

    def request_to_pending(self, job_id: str) -> Job:
        """Hold a requested job so the scheduler skips it."""
        return self._transition(job_id, JobStatus.REQUESTED, JobStatus.PENDING)

    def pending_to_request(self, job_id: str) -> Job:
        """Release a pending job back to the scheduler."""
        return self._transition(job_id, JobStatus.PENDING, JobStatus.REQUESTED)

    def _transition(self, job_id: str, expected: JobStatus, target: JobStatus) -> Job:
        job = self.store.require(job_id)
        if job.status != expected:
            raise JobStateError(f"Job {job_id} is {job.status}, expected {expected}")
        self.store.set_status(job_id, target)
        return self.store.require(job_id)

    # ── Read ─────────────────────────────────────────────────────

    def get(self, job_id: str) -> Job:
        return self.store.require(job_id)

    def list(
        self,
        status: JobStatus | None = None,
        target_type: JobTargetType | None = None,
        search: str | None = None,
    ) -> list[Job]:
        return self.store.list(status=status, target_type=target_type, search=search)

    def logs(self, job_id: str, *, latest_only: bool = False) -> list[JobLog]:
        """Log entries for a job, most recent first."""
        self.store.require(job_id)
        if latest_only:
            latest = self.store.latest_log(job_id)
            return [latest] if latest else []
        return self.store.logs(job_id)

    def append_log(self, job_id: str, message: str, level: LogLevel = LogLevel.INFO) -> None:
        self.store.append_log(job_id, message, level)
