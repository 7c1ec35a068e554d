"""Exception taxonomy shared across the job engine and content pipeline.

Job-level failures propagate up to the scheduler, which is the single
place a job is marked failed. Section-level failures are converted to
``Degraded`` results where they occur and never reach the scheduler.
"""

from __future__ import annotations

INTERRUPTED_REASON = "interrupted by restart"


class PostforgeError(Exception):
    """Base error for postforge."""


class ConfigurationError(PostforgeError):
    """Missing processor, unknown account, or invalid settings. Not retryable."""


class JobNotFound(PostforgeError, KeyError):
    """Raised when a job id does not exist in the store."""

    def __init__(self, job_id: str) -> None:
        super().__init__(job_id)
        self.job_id = job_id

    def __str__(self) -> str:
        return f"Job not found: {self.job_id}"


class JobStateError(PostforgeError):
    """An operator action is not allowed in the job's current status."""


class GenerationFailed(PostforgeError):
    """Outline or body generation failed. Fatal for the job."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"{stage} generation failed: {message}")
        self.stage = stage


class SectionDegraded(PostforgeError):
    """One enrichment of one section failed. Never fatal."""

    def __init__(self, section_index: int, field: str, reason: str) -> None:
        super().__init__(f"section {section_index} {field}: {reason}")
        self.section_index = section_index
        self.field = field
        self.reason = reason


class UploadDegraded(PostforgeError):
    """An asset upload failed; the section is published without it."""

    def __init__(self, section_index: int, reason: str) -> None:
        super().__init__(f"section {section_index} upload: {reason}")
        self.section_index = section_index
        self.reason = reason


class RateLimitExceeded(PostforgeError):
    """A backend rejected a call for quota reasons. Retryable via backoff."""


class PublishFailed(PostforgeError):
    """The target platform rejected or failed the publish call."""

    def __init__(self, platform: str, message: str) -> None:
        super().__init__(f"{platform} publish failed: {message}")
        self.platform = platform


class InterruptedByRestart(PostforgeError):
    """Synthetic failure recorded for jobs found processing at startup."""

    def __init__(self) -> None:
        super().__init__(INTERRUPTED_REASON)
