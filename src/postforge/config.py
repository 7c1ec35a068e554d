"""Unified configuration loaded from .postforge.toml, env vars, and CLI flags.

Loading order: defaults → TOML file → env vars → CLI flags.
"""

from __future__ import annotations

import logging
import os
import tomllib
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, model_validator

from postforge.errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".postforge.toml"
CONFIG_SEARCH_PATHS = [
    Path("."),
    Path.home() / ".config" / "postforge",
]


class ImageStrategy(StrEnum):
    """How section images are sourced."""

    AI = "ai"
    STOCK = "stock"
    NONE = "none"


class Visibility(StrEnum):
    """Default visibility of posts created on an account."""

    PUBLIC = "public"
    PRIVATE = "private"


class SchedulerConfig(BaseModel):
    """[scheduler] section."""

    poll_interval: float = 10.0
    data_dir: str = "./.postforge"

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()

    @property
    def db_path(self) -> Path:
        return self.data_path / "postforge.db"


class AISectionConfig(BaseModel):
    """[ai] section."""

    provider: str = "gemini"
    gemini_api_key: str = ""
    anthropic_api_key: str = ""
    text_model: str | None = None
    image_model: str | None = None
    timeout: int = 120


class PipelineSectionConfig(BaseModel):
    """[pipeline] section."""

    language: str = "Korean"
    image_type: ImageStrategy = ImageStrategy.AI
    link_enabled: bool = True
    youtube_enabled: bool = True
    ad_enabled: bool = False
    ad_script: str = ""
    thumbnail_enabled: bool = True
    thumbnail_background: str = "#1f2937"
    thumbnail_text_color: str = "#ffffff"
    thumbnail_font: str = ""

    @property
    def ads_active(self) -> bool:
        return self.ad_enabled and bool(self.ad_script.strip())


class LimitsConfig(BaseModel):
    """[limits] section — admission and backoff for generative calls."""

    max_concurrent: int = Field(default=3, ge=1)
    min_interval: float = Field(default=1.0, ge=0)
    max_attempts: int = Field(default=6, ge=1)
    base_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=60.0, ge=0)


class SearchSectionConfig(BaseModel):
    """[search] section."""

    searxng_url: str = ""
    pixabay_api_key: str = ""
    timeout: float = 15.0


class StorageSectionConfig(BaseModel):
    """[storage] section."""

    backend: str = "local"
    bucket: str = ""
    endpoint: str = ""
    region: str = ""
    access_key: str = ""
    secret_key: str = ""
    public_base: str = ""


class WordPressAccount(BaseModel):
    """A single named WordPress target (e.g. [accounts.wordpress.main])."""

    url: str
    username: str
    app_password: str
    default_visibility: Visibility = Visibility.PUBLIC

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.username and self.app_password)


class BloggerAccount(BaseModel):
    """A single named Blogger target."""

    blog_id: str
    access_token: str = ""
    refresh_token: str = ""
    client_id: str = ""
    client_secret: str = ""
    default_visibility: Visibility = Visibility.PUBLIC

    @property
    def is_configured(self) -> bool:
        return bool(self.blog_id and (self.access_token or self.refresh_token))


class TistoryAccount(BaseModel):
    """A single named Tistory target driven through a browser."""

    blog_name: str
    login_id: str = ""
    login_password: str = ""
    default_visibility: Visibility = Visibility.PUBLIC
    headless: bool = True
    profile_dir: str = ""

    @property
    def blog_url(self) -> str:
        return f"https://{self.blog_name}.tistory.com"


class AccountsConfig(BaseModel):
    """[accounts] section with named targets per platform."""

    wordpress: dict[str, WordPressAccount] = Field(default_factory=dict)
    blogger: dict[str, BloggerAccount] = Field(default_factory=dict)
    tistory: dict[str, TistoryAccount] = Field(default_factory=dict)


class PostforgeConfig(BaseModel):
    """Top-level configuration model."""

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    ai: AISectionConfig = Field(default_factory=AISectionConfig)
    pipeline: PipelineSectionConfig = Field(default_factory=PipelineSectionConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    search: SearchSectionConfig = Field(default_factory=SearchSectionConfig)
    storage: StorageSectionConfig = Field(default_factory=StorageSectionConfig)
    accounts: AccountsConfig = Field(default_factory=AccountsConfig)

    @model_validator(mode="after")
    def _check_storage_backend(self) -> PostforgeConfig:
        if self.storage.backend not in ("local", "s3"):
            raise ValueError(f"Unknown storage backend: {self.storage.backend!r}")
        return self


def load_config(path: str | Path | None = None) -> PostforgeConfig:
    """Load configuration from a TOML file.

    Search order:
    1. Explicit path (if provided)
    2. .postforge.toml in CWD
    3. ~/.config/postforge/.postforge.toml

    Then overlay environment variables.

    Args:
        path: Explicit path to a TOML file.

    Returns:
        Merged PostforgeConfig.

    Raises:
        ConfigurationError: If the merged values fail validation.
    """
    data: dict[str, Any] = {}

    if path is not None:
        toml_path = Path(path)
        if toml_path.exists():
            data = _load_toml(toml_path)
        else:
            logger.warning("Config file not found: %s", toml_path)
    else:
        for search_dir in CONFIG_SEARCH_PATHS:
            candidate = search_dir / CONFIG_FILENAME
            if candidate.exists():
                data = _load_toml(candidate)
                logger.info("Loaded config from %s", candidate)
                break

    try:
        config = PostforgeConfig.model_validate(data) if data else PostforgeConfig()
        return _apply_env_vars(config)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


def merge_cli_overrides(config: PostforgeConfig, **cli_kwargs: object) -> PostforgeConfig:
    """Overlay explicitly-set CLI flags onto the config.

    Only overrides values where the CLI flag was explicitly provided
    (i.e., not None).
    """
    data = config.model_dump()

    mapping: dict[str, tuple[str, str]] = {
        "data_dir": ("scheduler", "data_dir"),
        "poll_interval": ("scheduler", "poll_interval"),
        "image_type": ("pipeline", "image_type"),
        "provider": ("ai", "provider"),
    }

    for key, value in cli_kwargs.items():
        if value is None:
            continue
        if key in mapping:
            section, field = mapping[key]
            data[section][field] = value

    return PostforgeConfig.model_validate(data)


def _load_toml(path: Path) -> dict[str, Any]:
    """Load a TOML file and return the data dict."""
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (tomllib.TOMLDecodeError, OSError) as exc:
        logger.warning("Failed to parse %s: %s", path, exc)
        return {}


def _apply_env_vars(config: PostforgeConfig) -> PostforgeConfig:
    """Apply environment variable overrides to config."""
    data = config.model_dump()

    env_mapping: dict[str, tuple[str, str]] = {
        "POSTFORGE_DATA_DIR": ("scheduler", "data_dir"),
        "POSTFORGE_POLL_INTERVAL": ("scheduler", "poll_interval"),
        "POSTFORGE_AI_PROVIDER": ("ai", "provider"),
        "GEMINI_API_KEY": ("ai", "gemini_api_key"),
        "ANTHROPIC_API_KEY": ("ai", "anthropic_api_key"),
        "SEARXNG_URL": ("search", "searxng_url"),
        "PIXABAY_API_KEY": ("search", "pixabay_api_key"),
        "POSTFORGE_STORAGE_BACKEND": ("storage", "backend"),
        "S3_BUCKET": ("storage", "bucket"),
        "S3_ENDPOINT": ("storage", "endpoint"),
        "S3_REGION": ("storage", "region"),
        "S3_ACCESS_KEY": ("storage", "access_key"),
        "S3_SECRET_KEY": ("storage", "secret_key"),
        "S3_PUBLIC_BASE": ("storage", "public_base"),
    }

    changed = False
    for env_var, (section, field) in env_mapping.items():
        value = os.environ.get(env_var)
        if value is not None:
            data[section][field] = value
            changed = True

    ad_enabled = os.environ.get("POSTFORGE_AD_ENABLED")
    if ad_enabled is not None:
        data["pipeline"]["ad_enabled"] = ad_enabled.strip().lower() in ("1", "true", "yes")
        changed = True

    if not changed:
        return config
    return PostforgeConfig.model_validate(data)
