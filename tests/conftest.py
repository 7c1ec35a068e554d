"""Shared fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from postforge.jobs.store import JobStore


@pytest.fixture
def store(tmp_path: Path) -> JobStore:
    return JobStore(tmp_path / "jobs.db")


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep host configuration out of tests."""
    for var in (
        "POSTFORGE_DATA_DIR",
        "POSTFORGE_POLL_INTERVAL",
        "POSTFORGE_AI_PROVIDER",
        "POSTFORGE_STORAGE_BACKEND",
        "POSTFORGE_AD_ENABLED",
        "GEMINI_API_KEY",
        "ANTHROPIC_API_KEY",
        "SEARXNG_URL",
        "PIXABAY_API_KEY",
        "S3_BUCKET",
        "S3_ENDPOINT",
        "S3_REGION",
        "S3_ACCESS_KEY",
        "S3_SECRET_KEY",
        "S3_PUBLIC_BASE",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("postforge.config.CONFIG_SEARCH_PATHS", [Path(".")])
