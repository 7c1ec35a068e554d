"""Job queue scheduler — single-flight polling loop.

At most one job is processing at any time. Each tick either finds a
job already running (and does nothing) or claims the next due job and
runs it to completion on the loop. The scheduler is the only place a
running job's outcome is written back.
"""

from __future__ import annotations

import asyncio
import logging

from postforge.errors import InterruptedByRestart
from postforge.jobs.models import Job, JobStatus, LogLevel, utcnow
from postforge.jobs.registry import ProcessorRegistry
from postforge.jobs.store import JobStore

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 10.0


class JobQueueScheduler:
    """Poll the store, claim one due job at a time, and record its outcome."""

    def __init__(
        self,
        store: JobStore,
        registry: ProcessorRegistry,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.store = store
        self.registry = registry
        self.poll_interval = poll_interval

    async def recover_interrupted(self) -> int:
        """Fail every job left in processing by a previous run.

        Returns:
            Number of jobs recovered. Errors are logged, not raised.
        """
        try:
            job_ids = await asyncio.to_thread(self.store.processing_ids)
        except Exception:
            logger.exception("Could not list interrupted jobs")
            return 0

        reason = str(InterruptedByRestart())
        recovered = 0
        for job_id in job_ids:
            try:
                await asyncio.to_thread(self.store.fail, job_id, reason)
                await asyncio.to_thread(self.store.append_log, job_id, reason, LogLevel.ERROR)
                recovered += 1
            except Exception:
                logger.exception("Could not recover interrupted job %s", job_id)
        if recovered:
            logger.warning("Marked %d interrupted job(s) as failed", recovered)
        return recovered

    async def tick(self) -> str | None:
        """Run one scheduling step.

        Returns:
            The id of the job that was processed, or None.
        """
        if await self._busy():
            logger.debug("A job is already processing; skipping tick")
            return None

        job = await asyncio.to_thread(self.store.next_due, utcnow())
        if job is None:
            return None

        await self.process_job(job)
        return job.id

    async def _busy(self) -> bool:
        return await asyncio.to_thread(self.store.count, JobStatus.PROCESSING) > 0

    async def process_job(self, job: Job) -> bool:
        """Claim and run a single job, persisting success or failure.

        Nothing is started while another job is processing.

        Returns:
            False if the job was not run (slot busy or claim lost).
            Processor errors are recorded on the job, never raised.
        """
        if await self._busy():
            logger.info("Job %s deferred; another job is processing", job.id)
            return False

        processor = self.registry.resolve(job)
        if processor is None:
            reason = f"No valid processor for job type {job.target_type}"
            logger.error("%s (job %s)", reason, job.id)
            await asyncio.to_thread(self.store.fail, job.id, reason)
            await asyncio.to_thread(self.store.append_log, job.id, reason, LogLevel.ERROR)
            return True

        claimed = await asyncio.to_thread(self.store.claim, job.id, utcnow())
        if not claimed:
            logger.debug("Job %s was claimed elsewhere; skipping", job.id)
            return False

        logger.info("Processing job %s (%s)", job.id, job.target_type)
        try:
            result = await processor.process(job.id)
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.error("Job %s failed: %s", job.id, message, exc_info=True)
            await asyncio.to_thread(
                self.store.append_log, job.id, f"Job failed: {message}", LogLevel.ERROR
            )
            await asyncio.to_thread(self.store.fail, job.id, message)
            return True

        await asyncio.to_thread(self.store.complete, job.id, result)
        logger.info("Job %s completed: %s", job.id, result.result_msg)
        return True

    async def run(
        self,
        stop_event: asyncio.Event | None = None,
        *,
        max_ticks: int | None = None,
    ) -> None:
        """Recover once, then tick every ``poll_interval`` seconds.

        Args:
            stop_event: Set to stop the loop after the current tick.
            max_ticks: Stop after this many ticks (used by ``--once``).
        """
        stop_event = stop_event or asyncio.Event()
        await self.recover_interrupted()

        ticks = 0
        while not stop_event.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("Scheduler tick failed")
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval)
            except TimeoutError:
                pass
