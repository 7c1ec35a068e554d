"""SQLite-backed durable store for jobs and their logs.

One connection per operation; WAL journal so the worker loop and
operator commands can share the same file. The claim is a conditional
UPDATE, so two schedulers racing on the same row cannot both win.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from postforge.errors import JobNotFound
from postforge.jobs.models import (
    Job,
    JobLog,
    JobStatus,
    JobTargetType,
    LogLevel,
    PipelineResult,
    utcnow,
)

logger = logging.getLogger(__name__)

DB_FILENAME = "postforge.db"

# Alias to avoid shadowing by JobStore.list method
_list = list

EDITABLE_FIELDS = frozenset({"scheduled_at", "status", "subject", "desc"})

SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    target_type TEXT NOT NULL,
    status TEXT NOT NULL,
    priority INTEGER NOT NULL DEFAULT 1,
    subject TEXT NOT NULL DEFAULT '',
    "desc" TEXT NOT NULL DEFAULT '',
    payload TEXT NOT NULL DEFAULT '{}',
    scheduled_at TEXT NOT NULL,
    started_at TEXT,
    completed_at TEXT,
    result_msg TEXT,
    result_url TEXT,
    error_msg TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS job_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id TEXT NOT NULL REFERENCES jobs(id) ON DELETE CASCADE,
    message TEXT NOT NULL,
    level TEXT NOT NULL DEFAULT 'info',
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_jobs_due ON jobs(status, priority, scheduled_at);
CREATE INDEX IF NOT EXISTS idx_job_logs_job ON job_logs(job_id, id);
"""


def _ts(value: datetime | None) -> str | None:
    """Normalize a datetime to a sortable UTC ISO string."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class JobStore:
    """Durable CRUD store for jobs and the append-only job log.

    Also serves as the ``JobLogSink`` for the pipeline via ``append_log``.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA)

    # ── Private helpers ──────────────────────────────────────────

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute("PRAGMA busy_timeout=5000")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> Job:
        return Job(
            id=row["id"],
            target_type=JobTargetType(row["target_type"]),
            status=JobStatus(row["status"]),
            priority=row["priority"],
            subject=row["subject"],
            desc=row["desc"],
            payload=json.loads(row["payload"] or "{}"),
            scheduled_at=_dt(row["scheduled_at"]),
            started_at=_dt(row["started_at"]),
            completed_at=_dt(row["completed_at"]),
            result_msg=row["result_msg"],
            result_url=row["result_url"],
            error_msg=row["error_msg"],
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    @staticmethod
    def _row_to_log(row: sqlite3.Row) -> JobLog:
        return JobLog(
            id=row["id"],
            job_id=row["job_id"],
            message=row["message"],
            level=LogLevel(row["level"]),
            created_at=_dt(row["created_at"]),
        )

    def _update(self, job_id: str, assignments: dict[str, Any], where: str = "") -> int:
        assignments = {**assignments, "updated_at": _ts(utcnow())}
        columns = ", ".join(f'"{name}" = ?' for name in assignments)
        sql = f"UPDATE jobs SET {columns} WHERE id = ?{where}"
        with self._connect() as conn:
            cursor = conn.execute(sql, (*assignments.values(), job_id))
            return cursor.rowcount

    # ── Write operations ─────────────────────────────────────────

    def create(self, job: Job) -> Job:
        """Insert a new job and return it."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO jobs (
                    id, target_type, status, priority, subject, "desc", payload,
                    scheduled_at, started_at, completed_at, result_msg, result_url,
                    error_msg, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job.id,
                    job.target_type.value,
                    job.status.value,
                    job.priority,
                    job.subject,
                    job.desc,
                    json.dumps(job.payload, ensure_ascii=False),
                    _ts(job.scheduled_at),
                    _ts(job.started_at),
                    _ts(job.completed_at),
                    job.result_msg,
                    job.result_url,
                    job.error_msg,
                    _ts(job.created_at),
                    _ts(job.updated_at),
                ),
            )
        logger.debug("Created job %s (%s)", job.id, job.target_type)
        return job

    def claim(self, job_id: str, now: datetime | None = None) -> bool:
        """Atomically move a requested job to processing.

        Returns False when the job is no longer in ``request`` status,
        e.g. another worker claimed it first.
        """
        rows = self._update(
            job_id,
            {"status": JobStatus.PROCESSING.value, "started_at": _ts(now or utcnow())},
            where=" AND status = 'request'",
        )
        return rows == 1

    def complete(self, job_id: str, result: PipelineResult) -> None:
        """Mark a job completed with its result message and URL."""
        self._update(
            job_id,
            {
                "status": JobStatus.COMPLETED.value,
                "completed_at": _ts(utcnow()),
                "result_msg": result.result_msg,
                "result_url": result.result_url,
                "error_msg": None,
            },
        )

    def fail(self, job_id: str, error_msg: str) -> None:
        """Mark a job failed with the given reason."""
        self._update(
            job_id,
            {
                "status": JobStatus.FAILED.value,
                "completed_at": _ts(utcnow()),
                "error_msg": error_msg,
            },
        )

    def reset_for_retry(self, job_id: str) -> None:
        """Put a job back into the queue and clear its previous outcome."""
        rows = self._update(
            job_id,
            {
                "status": JobStatus.REQUESTED.value,
                "started_at": None,
                "completed_at": None,
                "result_msg": None,
                "result_url": None,
                "error_msg": None,
            },
        )
        if rows == 0:
            raise JobNotFound(job_id)

    def set_status(self, job_id: str, status: JobStatus) -> None:
        if self._update(job_id, {"status": JobStatus(status).value}) == 0:
            raise JobNotFound(job_id)

    def update_fields(self, job_id: str, **fields: Any) -> None:
        """Update operator-editable fields (scheduled_at, status, subject, desc).

        Raises:
            ValueError: If a field is not editable.
            JobNotFound: If the job does not exist.
        """
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not editable: {sorted(unknown)}")
        assignments: dict[str, Any] = {}
        for name, value in fields.items():
            if name == "scheduled_at":
                value = _ts(value)
            elif name == "status":
                value = JobStatus(value).value
            assignments[name] = value
        if self._update(job_id, assignments) == 0:
            raise JobNotFound(job_id)

    def update_payload(self, job_id: str, patch: dict[str, Any]) -> Job:
        """Merge ``patch`` into the job's payload and return the updated job."""
        job = self.require(job_id)
        payload = {**job.payload, **patch}
        self._update(job_id, {"payload": json.dumps(payload, ensure_ascii=False)})
        return job.model_copy(update={"payload": payload})

    def delete(self, job_id: str) -> None:
        """Delete a job; its logs go with it."""
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
            if cursor.rowcount == 0:
                raise JobNotFound(job_id)

    # ── Read operations ──────────────────────────────────────────

    def get(self, job_id: str) -> Job | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return self._row_to_job(row) if row else None

    def require(self, job_id: str) -> Job:
        """Like ``get`` but raises JobNotFound."""
        job = self.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def list(
        self,
        status: JobStatus | None = None,
        target_type: JobTargetType | None = None,
        search: str | None = None,
        *,
        order_by: str = "updated_at",
        descending: bool = True,
    ) -> list[Job]:
        """List jobs with optional filters.

        ``search`` is a case-insensitive substring match over subject,
        desc and result message.
        """
        if order_by not in ("updated_at", "created_at", "scheduled_at", "priority"):
            raise ValueError(f"Cannot order by {order_by!r}")
        clauses: _list[str] = []
        params: _list[Any] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(JobStatus(status).value)
        if target_type is not None:
            clauses.append("target_type = ?")
            params.append(JobTargetType(target_type).value)
        if search:
            clauses.append(
                "(LOWER(subject) LIKE ? OR LOWER(\"desc\") LIKE ? "
                "OR LOWER(COALESCE(result_msg, '')) LIKE ?)"
            )
            needle = f"%{search.lower()}%"
            params.extend([needle, needle, needle])
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        direction = "DESC" if descending else "ASC"
        sql = f"SELECT * FROM jobs {where} ORDER BY {order_by} {direction}, id"
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_job(r) for r in rows]

    def count(self, status: JobStatus) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM jobs WHERE status = ?", (JobStatus(status).value,)
            ).fetchone()
        return int(row[0])

    def processing_ids(self) -> _list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id FROM jobs WHERE status = ?", (JobStatus.PROCESSING.value,)
            ).fetchall()
        return [r["id"] for r in rows]

    def next_due(self, now: datetime | None = None) -> Job | None:
        """Return the highest-priority requested job whose time has come."""
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM jobs
                WHERE status = ? AND scheduled_at <= ?
                ORDER BY priority DESC, scheduled_at ASC
                LIMIT 1
                """,
                (JobStatus.REQUESTED.value, _ts(now or utcnow())),
            ).fetchone()
        return self._row_to_job(row) if row else None

    # ── Job log ──────────────────────────────────────────────────

    def append_log(self, job_id: str, message: str, level: LogLevel | str = LogLevel.INFO) -> None:
        """Append one progress entry to a job's log."""
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO job_logs (job_id, message, level, created_at) VALUES (?, ?, ?, ?)",
                (job_id, message, LogLevel(level).value, _ts(utcnow())),
            )

    def logs(self, job_id: str) -> _list[JobLog]:
        """All log entries for a job, most recent first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM job_logs WHERE job_id = ? ORDER BY id DESC", (job_id,)
            ).fetchall()
        return [self._row_to_log(r) for r in rows]

    def latest_log(self, job_id: str) -> JobLog | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM job_logs WHERE job_id = ? ORDER BY id DESC LIMIT 1", (job_id,)
            ).fetchone()
        return self._row_to_log(row) if row else None
