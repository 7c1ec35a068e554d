"""Tests for JobStore — SQLite-backed job queue persistence."""

import sqlite3
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from postforge.errors import JobNotFound
from postforge.jobs.models import (
    Job,
    JobStatus,
    JobTargetType,
    LogLevel,
    PipelineResult,
)
from postforge.jobs.store import JobStore


def _make_job(
    subject: str = "[Blog] Test",
    status: JobStatus = JobStatus.REQUESTED,
    priority: int = 1,
    scheduled_at: datetime | None = None,
    **kwargs: object,
) -> Job:
    """Helper to build a Job with sensible defaults."""
    return Job(
        target_type=JobTargetType.INFO_BLOG_POST,
        status=status,
        priority=priority,
        subject=subject,
        scheduled_at=scheduled_at or datetime.now(tz=UTC) - timedelta(minutes=1),
        **kwargs,  # type: ignore[arg-type]
    )


class TestCreateAndGet:
    def test_round_trips_fields(self, store: JobStore):
        job = _make_job(desc="notes", payload={"title": "제목", "labels": ["a"]})
        store.create(job)

        fetched = store.get(job.id)
        assert fetched is not None
        assert fetched.subject == "[Blog] Test"
        assert fetched.desc == "notes"
        assert fetched.payload == {"title": "제목", "labels": ["a"]}
        assert fetched.status == JobStatus.REQUESTED
        assert fetched.scheduled_at.tzinfo is not None

    def test_get_missing_returns_none(self, store: JobStore):
        assert store.get("nope") is None

    def test_require_missing_raises(self, store: JobStore):
        with pytest.raises(JobNotFound):
            store.require("nope")

    def test_persists_across_instances(self, tmp_path: Path):
        db = tmp_path / "jobs.db"
        job = _make_job()
        JobStore(db).create(job)
        assert JobStore(db).get(job.id) is not None


class TestClaim:
    def test_claims_requested_job(self, store: JobStore):
        job = store.create(_make_job())
        assert store.claim(job.id) is True

        fetched = store.require(job.id)
        assert fetched.status == JobStatus.PROCESSING
        assert fetched.started_at is not None

    def test_second_claim_loses(self, store: JobStore):
        job = store.create(_make_job())
        assert store.claim(job.id) is True
        assert store.claim(job.id) is False

    def test_pending_job_cannot_be_claimed(self, store: JobStore):
        job = store.create(_make_job(status=JobStatus.PENDING))
        assert store.claim(job.id) is False
        assert store.require(job.id).status == JobStatus.PENDING


class TestOutcome:
    def test_complete_records_result(self, store: JobStore):
        job = store.create(_make_job())
        store.claim(job.id)
        store.complete(job.id, PipelineResult(result_msg="ok", result_url="https://x/1"))

        fetched = store.require(job.id)
        assert fetched.status == JobStatus.COMPLETED
        assert fetched.result_msg == "ok"
        assert fetched.result_url == "https://x/1"
        assert fetched.completed_at is not None

    def test_fail_records_error(self, store: JobStore):
        job = store.create(_make_job())
        store.fail(job.id, "boom")
        fetched = store.require(job.id)
        assert fetched.status == JobStatus.FAILED
        assert fetched.error_msg == "boom"

    def test_reset_for_retry_clears_outcome(self, store: JobStore):
        job = store.create(_make_job())
        store.claim(job.id)
        store.fail(job.id, "boom")
        store.reset_for_retry(job.id)

        fetched = store.require(job.id)
        assert fetched.status == JobStatus.REQUESTED
        assert fetched.error_msg is None
        assert fetched.started_at is None
        assert fetched.completed_at is None

    def test_reset_missing_raises(self, store: JobStore):
        with pytest.raises(JobNotFound):
            store.reset_for_retry("nope")


class TestNextDue:
    def test_returns_none_when_empty(self, store: JobStore):
        assert store.next_due() is None

    def test_skips_future_jobs(self, store: JobStore):
        store.create(_make_job(scheduled_at=datetime.now(tz=UTC) + timedelta(hours=1)))
        assert store.next_due() is None

    def test_skips_pending_jobs(self, store: JobStore):
        store.create(_make_job(status=JobStatus.PENDING))
        assert store.next_due() is None

    def test_higher_priority_first(self, store: JobStore):
        now = datetime.now(tz=UTC)
        low = store.create(_make_job(subject="low", priority=1, scheduled_at=now - timedelta(hours=2)))
        high = store.create(_make_job(subject="high", priority=5, scheduled_at=now - timedelta(minutes=1)))
        assert store.next_due().id == high.id
        store.claim(high.id)
        assert store.next_due().id == low.id

    def test_earlier_schedule_breaks_ties(self, store: JobStore):
        now = datetime.now(tz=UTC)
        later = store.create(_make_job(subject="later", scheduled_at=now - timedelta(minutes=1)))
        earlier = store.create(_make_job(subject="earlier", scheduled_at=now - timedelta(hours=1)))
        assert store.next_due().id == earlier.id
        assert later.id != earlier.id


class TestEdits:
    def test_update_fields(self, store: JobStore):
        job = store.create(_make_job())
        when = datetime(2030, 1, 1, tzinfo=UTC)
        store.update_fields(job.id, subject="New", scheduled_at=when, status=JobStatus.PENDING)

        fetched = store.require(job.id)
        assert fetched.subject == "New"
        assert fetched.scheduled_at == when
        assert fetched.status == JobStatus.PENDING

    def test_update_rejects_non_editable_field(self, store: JobStore):
        job = store.create(_make_job())
        with pytest.raises(ValueError, match="not editable"):
            store.update_fields(job.id, error_msg="x")

    def test_update_payload_merges(self, store: JobStore):
        job = store.create(_make_job(payload={"title": "T", "content": "C"}))
        updated = store.update_payload(job.id, {"published_title": "Final"})
        assert updated.payload == {"title": "T", "content": "C", "published_title": "Final"}
        assert store.require(job.id).payload["published_title"] == "Final"


class TestListAndCount:
    def test_filters_by_status_and_type(self, store: JobStore):
        a = store.create(_make_job(subject="a"))
        store.create(_make_job(subject="b", status=JobStatus.PENDING))
        store.create(
            Job(target_type=JobTargetType.GENERATE_TOPIC, subject="c")
        )

        requested = store.list(status=JobStatus.REQUESTED)
        assert {j.subject for j in requested} == {"a", "c"}
        posts = store.list(status=JobStatus.REQUESTED, target_type=JobTargetType.INFO_BLOG_POST)
        assert [j.id for j in posts] == [a.id]

    def test_search_is_case_insensitive(self, store: JobStore):
        store.create(_make_job(subject="[Blog] Python Tips"))
        store.create(_make_job(subject="[Blog] Rust"))
        assert [j.subject for j in store.list(search="python")] == ["[Blog] Python Tips"]

    def test_rejects_unknown_order(self, store: JobStore):
        with pytest.raises(ValueError):
            store.list(order_by="desc; DROP TABLE jobs")

    def test_count_and_processing_ids(self, store: JobStore):
        job = store.create(_make_job())
        store.create(_make_job())
        store.claim(job.id)
        assert store.count(JobStatus.PROCESSING) == 1
        assert store.count(JobStatus.REQUESTED) == 1
        assert store.processing_ids() == [job.id]


class TestLogs:
    def test_logs_most_recent_first(self, store: JobStore):
        job = store.create(_make_job())
        store.append_log(job.id, "first")
        store.append_log(job.id, "second", LogLevel.ERROR)

        logs = store.logs(job.id)
        assert [entry.message for entry in logs] == ["second", "first"]
        assert logs[0].level == LogLevel.ERROR
        assert store.latest_log(job.id).message == "second"

    def test_latest_log_none_when_empty(self, store: JobStore):
        job = store.create(_make_job())
        assert store.latest_log(job.id) is None

    def test_log_requires_existing_job(self, store: JobStore):
        with pytest.raises(sqlite3.IntegrityError):
            store.append_log("nope", "orphan")

    def test_delete_cascades_logs(self, store: JobStore):
        job = store.create(_make_job())
        store.append_log(job.id, "hello")
        store.delete(job.id)
        assert store.get(job.id) is None
        assert store.logs(job.id) == []

    def test_delete_missing_raises(self, store: JobStore):
        with pytest.raises(JobNotFound):
            store.delete("nope")
