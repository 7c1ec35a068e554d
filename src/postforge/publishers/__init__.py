"""Publisher factory and per-account cache."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel

from postforge.config import AccountsConfig
from postforge.errors import ConfigurationError
from postforge.publishers.base import Platform, PlatformPublisher

logger = logging.getLogger(__name__)


class AccountRef(BaseModel):
    """Which configured account a job publishes to. Exactly one field is set."""

    tistory: str | None = None
    wordpress: str | None = None
    blogger: str | None = None

    def resolve(self) -> tuple[Platform, str]:
        """Return (platform, account name).

        Raises:
            ConfigurationError: If zero or several accounts are set.
        """
        chosen = [
            (Platform(field), name)
            for field, name in (
                ("tistory", self.tistory),
                ("wordpress", self.wordpress),
                ("blogger", self.blogger),
            )
            if name
        ]
        if not chosen:
            raise ConfigurationError("No blog account selected for this job")
        if len(chosen) > 1:
            raise ConfigurationError(
                f"Several blog accounts selected: {', '.join(f'{p}:{n}' for p, n in chosen)}"
            )
        return chosen[0]

    @classmethod
    def parse(cls, value: str) -> AccountRef:
        """Parse ``platform:name`` as typed on the command line."""
        platform, sep, name = value.partition(":")
        if not sep or not name:
            raise ConfigurationError(f"Account must look like platform:name, got {value!r}")
        try:
            return cls(**{Platform(platform.strip().lower()).value: name.strip()})
        except ValueError as exc:
            raise ConfigurationError(f"Unknown platform: {platform!r}") from exc


def create_publisher(
    platform: Platform | str,
    account_name: str,
    accounts: AccountsConfig,
    *,
    profile_root: Path,
) -> PlatformPublisher:
    """Create a publisher for one configured account.

    Raises:
        ConfigurationError: If the account is not configured.
    """
    if isinstance(platform, str):
        platform = Platform(platform)

    from postforge.publishers.blogger import BloggerPublisher
    from postforge.publishers.tistory import TistoryPublisher
    from postforge.publishers.wordpress import WordPressPublisher

    if platform == Platform.WORDPRESS and account_name in accounts.wordpress:
        return WordPressPublisher(account_name, accounts.wordpress[account_name])
    if platform == Platform.BLOGGER and account_name in accounts.blogger:
        return BloggerPublisher(account_name, accounts.blogger[account_name])
    if platform == Platform.TISTORY and account_name in accounts.tistory:
        return TistoryPublisher(
            account_name, accounts.tistory[account_name], profile_root=profile_root
        )

    raise ConfigurationError(f"Unknown {platform} account: {account_name!r}")


class PublishDispatcher:
    """Hands out one cached publisher per account."""

    def __init__(self, accounts: AccountsConfig, *, profile_root: Path) -> None:
        self.accounts = accounts
        self.profile_root = profile_root
        self._cache: dict[tuple[Platform, str], PlatformPublisher] = {}

    def select(self, ref: AccountRef) -> PlatformPublisher:
        platform, name = ref.resolve()
        key = (platform, name)
        publisher = self._cache.get(key)
        if publisher is None:
            publisher = create_publisher(platform, name, self.accounts, profile_root=self.profile_root)
            self._cache[key] = publisher
            logger.debug("Created %r", publisher)
        return publisher

    async def aclose(self) -> None:
        for publisher in self._cache.values():
            try:
                await publisher.aclose()
            except Exception:
                logger.warning("Error closing %r", publisher, exc_info=True)
        self._cache.clear()


__all__ = [
    "AccountRef",
    "Platform",
    "PlatformPublisher",
    "PublishDispatcher",
    "create_publisher",
]
