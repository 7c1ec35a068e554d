"""CLI interface for postforge."""

import asyncio
import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from postforge.app import build_worker, open_store
from postforge.config import ImageStrategy, PostforgeConfig, load_config, merge_cli_overrides
from postforge.errors import PostforgeError
from postforge.jobs.models import Job, JobStatus, JobTargetType, LogLevel
from postforge.jobs.service import BulkResult, JobService, JobUpdate
from postforge.publishers import AccountRef

app = typer.Typer(
    name="postforge",
    help="Queue, generate and publish blog posts.",
)
jobs_app = typer.Typer(help="Inspect and manage queued jobs.")
app.add_typer(jobs_app, name="jobs")

console = Console()

_STATUS_STYLE = {
    JobStatus.PENDING: "dim",
    JobStatus.REQUESTED: "cyan",
    JobStatus.PROCESSING: "yellow",
    JobStatus.COMPLETED: "green",
    JobStatus.FAILED: "red",
}
_LEVEL_STYLE = {LogLevel.INFO: "", LogLevel.WARN: "yellow", LogLevel.ERROR: "red"}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        from postforge import __version__

        console.print(f"postforge {__version__}")
        raise typer.Exit()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.callback()
def main(
    ctx: typer.Context,
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to a .postforge.toml file."),
    ] = None,
    data_dir: Annotated[
        Optional[str],
        typer.Option("--data-dir", help="Directory for the job database and artifacts."),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Enable debug logging."),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """Postforge - blog content job queue and publishing pipeline."""
    _setup_logging(verbose)
    ctx.obj = {"config_path": config_path, "data_dir": data_dir}


@contextmanager
def _errors() -> Iterator[None]:
    """Turn domain errors into a red message and exit code 1."""
    try:
        yield
    except (PostforgeError, ValueError) as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc


def _config(ctx: typer.Context, **overrides: object) -> PostforgeConfig:
    obj = ctx.obj or {}
    config = load_config(obj.get("config_path"))
    return merge_cli_overrides(config, data_dir=obj.get("data_dir"), **overrides)


def _service(ctx: typer.Context) -> JobService:
    return JobService(open_store(_config(ctx)))


def _parse_when(value: str | None) -> datetime | None:
    """Parse an ISO timestamp; naive values are local time."""
    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise ValueError(f"Not an ISO timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed.astimezone(timezone.utc)


def _fmt_time(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.astimezone().strftime("%Y-%m-%d %H:%M")


def _status(status: JobStatus) -> str:
    style = _STATUS_STYLE.get(status, "")
    return f"[{style}]{status}[/{style}]" if style else str(status)


def _print_bulk(action: str, result: BulkResult) -> None:
    console.print(
        f"{action}: [green]{result.success_count} ok[/green], "
        f"[red]{result.failed_count} failed[/red]"
    )
    for error in result.errors:
        console.print(f"  {error['job_id']}: {escape(error['error'])}")


# ── Worker ───────────────────────────────────────────────────────


@app.command()
def worker(
    ctx: typer.Context,
    once: Annotated[
        bool,
        typer.Option("--once", help="Run a single scheduler tick and exit."),
    ] = False,
    poll_interval: Annotated[
        Optional[float],
        typer.Option("--poll-interval", help="Seconds between scheduler ticks."),
    ] = None,
    image_type: Annotated[
        Optional[ImageStrategy],
        typer.Option("--image-type", help="Section image strategy: ai, stock or none."),
    ] = None,
) -> None:
    """Run the scheduler loop until interrupted."""
    with _errors():
        config = _config(ctx, poll_interval=poll_interval, image_type=image_type)
        built = build_worker(config)

    async def _run() -> None:
        try:
            await built.scheduler.run(max_ticks=1 if once else None)
        finally:
            await built.aclose()

    console.print(f"Worker started, database at {config.scheduler.db_path}")
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("Worker stopped.")


# ── Enqueue ──────────────────────────────────────────────────────


@app.command("enqueue-post")
def enqueue_post(
    ctx: typer.Context,
    title: Annotated[str, typer.Argument(help="Post title.")],
    account: Annotated[
        str,
        typer.Option("--account", "-a", help="Target account as platform:name."),
    ],
    content: Annotated[
        str,
        typer.Option("--content", help="Notes or source material for the post."),
    ] = "",
    category: Annotated[str, typer.Option("--category", help="Blog category.")] = "",
    labels: Annotated[
        Optional[list[str]],
        typer.Option("--label", "-l", help="Tag to attach; repeatable."),
    ] = None,
    priority: Annotated[int, typer.Option("--priority", help="Higher runs first.")] = 1,
    at: Annotated[
        Optional[str],
        typer.Option("--at", help="Earliest run time (ISO 8601)."),
    ] = None,
    pending: Annotated[
        bool,
        typer.Option("--pending", help="Hold the job until released."),
    ] = False,
) -> None:
    """Queue a blog post for generation and publishing."""
    with _errors():
        ref = AccountRef.parse(account)
        job = _service(ctx).enqueue_info_post(
            title=title,
            content=content,
            account=ref.model_dump(exclude_none=True),
            category=category,
            labels=labels,
            priority=priority,
            scheduled_at=_parse_when(at),
            status=JobStatus.PENDING if pending else JobStatus.REQUESTED,
        )
    console.print(f"[green]Queued[/green] {job.id} ({job.status})")


@app.command("enqueue-topic")
def enqueue_topic(
    ctx: typer.Context,
    topic: Annotated[str, typer.Argument(help="Broad subject to brainstorm.")],
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", min=1, max=100, help="Number of ideas."),
    ] = 10,
    priority: Annotated[int, typer.Option("--priority", help="Higher runs first.")] = 1,
) -> None:
    """Queue a batch of topic ideas."""
    with _errors():
        job = _service(ctx).enqueue_topic(topic, limit=limit, priority=priority)
    console.print(f"[green]Queued[/green] {job.id} ({job.status})")


# ── Jobs ─────────────────────────────────────────────────────────


@jobs_app.command("list")
def list_jobs(
    ctx: typer.Context,
    status: Annotated[
        Optional[JobStatus],
        typer.Option("--status", "-s", help="Only jobs in this status."),
    ] = None,
    target_type: Annotated[
        Optional[JobTargetType],
        typer.Option("--type", "-t", help="Only jobs of this type."),
    ] = None,
    search: Annotated[
        Optional[str],
        typer.Option("--search", help="Substring of subject or description."),
    ] = None,
) -> None:
    """List jobs, newest first."""
    with _errors():
        jobs = _service(ctx).list(status=status, target_type=target_type, search=search)

    if not jobs:
        console.print("[yellow]No jobs found.[/yellow]")
        return

    table = Table(title=f"Jobs ({len(jobs)})")
    table.add_column("ID", style="bold", no_wrap=True)
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Pri", justify="right")
    table.add_column("Subject")
    table.add_column("Scheduled")
    table.add_column("Result")
    for job in jobs:
        table.add_row(
            job.id,
            str(job.target_type),
            _status(job.status),
            str(job.priority),
            escape(job.subject),
            _fmt_time(job.scheduled_at),
            escape(job.result_url or job.error_msg or ""),
        )
    console.print(table)


def _print_job(job: Job) -> None:
    console.print(f"[bold]{escape(job.subject)}[/bold]  ({job.id})")
    console.print(f"  Type:       {job.target_type}")
    console.print(f"  Status:     {_status(job.status)}")
    console.print(f"  Priority:   {job.priority}")
    console.print(f"  Scheduled:  {_fmt_time(job.scheduled_at)}")
    console.print(f"  Started:    {_fmt_time(job.started_at)}")
    console.print(f"  Completed:  {_fmt_time(job.completed_at)}")
    if job.result_msg:
        console.print(f"  Result:     {job.result_msg}")
    if job.result_url:
        console.print(f"  URL:        {job.result_url}")
    if job.error_msg:
        console.print(f"  [red]Error:[/red]      {escape(job.error_msg)}")
    if job.payload:
        console.print("  Payload:")
        console.print_json(json.dumps(job.payload, ensure_ascii=False, default=str))


@jobs_app.command("show")
def show_job(
    ctx: typer.Context,
    job_id: Annotated[str, typer.Argument(help="Job id.")],
) -> None:
    """Show one job in detail."""
    with _errors():
        job = _service(ctx).get(job_id)
    _print_job(job)


@jobs_app.command("logs")
def job_logs(
    ctx: typer.Context,
    job_id: Annotated[str, typer.Argument(help="Job id.")],
    latest: Annotated[
        bool,
        typer.Option("--latest", help="Only the most recent entry."),
    ] = False,
) -> None:
    """Show a job's log, most recent first."""
    with _errors():
        entries = _service(ctx).logs(job_id, latest_only=latest)

    if not entries:
        console.print("[yellow]No log entries.[/yellow]")
        return

    table = Table(title=f"Log for {job_id}")
    table.add_column("Time", no_wrap=True)
    table.add_column("Level")
    table.add_column("Message")
    for entry in entries:
        style = _LEVEL_STYLE.get(entry.level, "")
        level = f"[{style}]{entry.level}[/{style}]" if style else str(entry.level)
        table.add_row(_fmt_time(entry.created_at), level, escape(entry.message))
    console.print(table)


@jobs_app.command("retry")
def retry_job(
    ctx: typer.Context,
    job_id: Annotated[str, typer.Argument(help="Job id.")],
    now: Annotated[
        bool,
        typer.Option("--now", help="Run the job immediately in this process."),
    ] = False,
) -> None:
    """Put a job back in the queue."""
    with _errors():
        if not now:
            job = asyncio.run(_service(ctx).retry(job_id))
        else:
            built = build_worker(_config(ctx))

            async def _run() -> Job:
                try:
                    return await built.service.retry(job_id, dispatch_now=True)
                finally:
                    await built.aclose()

            job = asyncio.run(_run())
    console.print(f"Job {job.id} is now {_status(job.status)}")


@jobs_app.command("bulk-retry")
def bulk_retry(
    ctx: typer.Context,
    job_ids: Annotated[list[str], typer.Argument(help="Job ids.")],
) -> None:
    """Retry every failed job among the given ids."""
    with _errors():
        result = _service(ctx).bulk_retry(job_ids)
    _print_bulk("Retried", result)


@jobs_app.command("delete")
def delete_job(
    ctx: typer.Context,
    job_id: Annotated[str, typer.Argument(help="Job id.")],
) -> None:
    """Delete a job and its log."""
    with _errors():
        _service(ctx).delete(job_id)
    console.print(f"Deleted {job_id}")


@jobs_app.command("bulk-delete")
def bulk_delete(
    ctx: typer.Context,
    job_ids: Annotated[list[str], typer.Argument(help="Job ids.")],
) -> None:
    """Delete every non-processing job among the given ids."""
    with _errors():
        result = _service(ctx).bulk_delete(job_ids)
    _print_bulk("Deleted", result)


@jobs_app.command("edit")
def edit_job(
    ctx: typer.Context,
    job_id: Annotated[str, typer.Argument(help="Job id.")],
    at: Annotated[
        Optional[str],
        typer.Option("--at", help="New scheduled time (ISO 8601)."),
    ] = None,
    status: Annotated[
        Optional[JobStatus],
        typer.Option("--status", help="New status."),
    ] = None,
    subject: Annotated[Optional[str], typer.Option("--subject", help="New subject.")] = None,
    desc: Annotated[Optional[str], typer.Option("--desc", help="New description.")] = None,
) -> None:
    """Edit a job that is not processing."""
    with _errors():
        changes = JobUpdate(
            scheduled_at=_parse_when(at), status=status, subject=subject, desc=desc
        )
        updated = _service(ctx).update(job_id, changes)
    console.print(f"Updated {job_id}: {', '.join(updated)}")


@jobs_app.command("hold")
def hold_job(
    ctx: typer.Context,
    job_id: Annotated[str, typer.Argument(help="Job id.")],
) -> None:
    """Move a requested job to pending."""
    with _errors():
        job = _service(ctx).request_to_pending(job_id)
    console.print(f"Job {job.id} is now {_status(job.status)}")


@jobs_app.command("release")
def release_job(
    ctx: typer.Context,
    job_id: Annotated[str, typer.Argument(help="Job id.")],
) -> None:
    """Move a pending job back to requested."""
    with _errors():
        job = _service(ctx).pending_to_request(job_id)
    console.print(f"Job {job.id} is now {_status(job.status)}")


if __name__ == "__main__":
    app()
