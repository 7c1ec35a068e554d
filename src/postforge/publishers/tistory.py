"""Tistory publishing by driving the blog editor in a real browser.

Tistory has no usable write API, so every operation opens a
``BrowserSession`` on a persistent per-account profile (which keeps the
login cookie), does its work, and closes the browser on every exit path.
Chromium allows one browser per profile, so sessions of one publisher
never overlap and a batch of images is uploaded in a single session.
Interactive login challenges are handed to an injected solver.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from pathlib import Path
from typing import Any

from playwright.async_api import BrowserContext, Page, async_playwright
from playwright.async_api import Error as PlaywrightError

from postforge.config import TistoryAccount, Visibility
from postforge.errors import ConfigurationError, PublishFailed
from postforge.pipeline.models import PublishDocument, PublishResult
from postforge.publishers.base import Platform, PlatformPublisher

logger = logging.getLogger(__name__)

ChallengeSolver = Callable[[Page], Awaitable[None]]
SessionFactory = Callable[[Path, bool], AbstractAsyncContextManager[Page]]

SELECTOR_TIMEOUT = 10_000
NAVIGATION_TIMEOUT = 60_000

_EMBED_RE = re.compile(r"\[##_Image\|.*?_##\]", re.DOTALL)
_IMG_SRC_RE = re.compile(r'<img[^>]+src="([^"]+)"')

_VISIBILITY_RADIO = {
    Visibility.PUBLIC: "#open20",
    Visibility.PRIVATE: "#open0",
}


class BrowserSession:
    """Async context manager around a persistent Chromium profile; yields its page."""

    def __init__(self, profile_dir: Path, *, headless: bool = True) -> None:
        self.profile_dir = profile_dir
        self.headless = headless
        self._playwright: Any = None
        self.context: BrowserContext | None = None

    async def __aenter__(self) -> Page:
        self.profile_dir.mkdir(parents=True, exist_ok=True)
        self._playwright = await async_playwright().start()
        try:
            self.context = await self._playwright.chromium.launch_persistent_context(
                str(self.profile_dir), headless=self.headless
            )
            if self.context.pages:
                return self.context.pages[0]
            return await self.context.new_page()
        except BaseException:
            if self.context is not None:
                await self.context.close()
            await self._playwright.stop()
            raise

    async def __aexit__(self, *exc_info: object) -> None:
        try:
            if self.context is not None:
                await self.context.close()
        except PlaywrightError as exc:
            logger.warning("Error closing browser session: %s", exc)
        finally:
            await self._playwright.stop()


class TistoryPublisher(PlatformPublisher):
    """Publish to a Tistory blog through its web editor."""

    platform = Platform.TISTORY
    supports_image_upload = True

    def __init__(
        self,
        account_name: str,
        account: TistoryAccount,
        *,
        profile_root: Path,
        challenge_solver: ChallengeSolver | None = None,
        session_factory: SessionFactory | None = None,
    ) -> None:
        super().__init__(account_name)
        self.account = account
        self.profile_dir = Path(account.profile_dir) if account.profile_dir else profile_root / account_name
        self.challenge_solver = challenge_solver
        self._session_factory: SessionFactory = session_factory or (
            lambda path, headless: BrowserSession(path, headless=headless)
        )
        self._session_lock = asyncio.Lock()
        self._prepared = False

    @property
    def new_post_url(self) -> str:
        return f"{self.account.blog_url}/manage/newpost"

    @asynccontextmanager
    async def _page(self) -> AsyncIterator[Page]:
        """Open the account's browser; waits for any other session to close first."""
        async with self._session_lock:
            async with self._session_factory(self.profile_dir, self.account.headless) as page:
                yield page

    # ── Login ────────────────────────────────────────────────────

    async def _is_logged_in(self, page: Page) -> bool:
        await page.goto(self.new_post_url, wait_until="networkidle", timeout=NAVIGATION_TIMEOUT)
        return "/manage/" in page.url

    async def _login(self, page: Page) -> None:
        if not (self.account.login_id and self.account.login_password):
            raise ConfigurationError(
                f"Tistory account {self.account_name!r} is logged out and has no credentials"
            )
        await page.click(".btn_login.link_kakao_id", timeout=SELECTOR_TIMEOUT)
        await page.wait_for_url("**/accounts.kakao.com/**", timeout=15_000)
        await page.fill('input[name="loginId"]', self.account.login_id, timeout=SELECTOR_TIMEOUT)
        await page.fill('input[name="password"]', self.account.login_password, timeout=SELECTOR_TIMEOUT)
        await page.click('button[type="submit"]', timeout=SELECTOR_TIMEOUT)

        try:
            await page.wait_for_url("**.tistory.com/**", timeout=15_000)
        except PlaywrightError:
            if self.challenge_solver is None:
                raise
            logger.info("Tistory login for %s needs a challenge; delegating", self.account_name)
            await self.challenge_solver(page)
            await page.wait_for_url("**.tistory.com/**", timeout=NAVIGATION_TIMEOUT)

    async def _ensure_login(self, page: Page) -> None:
        if await self._is_logged_in(page):
            return
        await self._login(page)
        if not await self._is_logged_in(page):
            raise PublishFailed(self.platform, "login did not reach the editor")

    async def prepare(self) -> None:
        """Open a session and make sure the profile is logged in. Idempotent."""
        if self._prepared:
            return
        async with self._page() as page:
            await self._ensure_login(page)
        self._prepared = True
        logger.info("Tistory account %s is ready", self.account_name)

    # ── Editor helpers ───────────────────────────────────────────

    async def _switch_to_html(self, page: Page) -> None:
        await page.click("#editor-mode-layer-btn-open", timeout=SELECTOR_TIMEOUT)
        await page.click("#editor-mode-html", timeout=SELECTOR_TIMEOUT)

    async def _clear_editor(self, page: Page) -> None:
        await page.click(".CodeMirror-code", timeout=SELECTOR_TIMEOUT)
        await page.keyboard.press("Control+A")
        await page.keyboard.press("Backspace")

    async def _open_editor(self, page: Page) -> None:
        await self._ensure_login(page)
        await self._switch_to_html(page)

    async def _attach(self, page: Page, path: Path) -> str:
        """Attach one image in an open editor and return its embed code."""
        await page.click("#attach-layer-btn", timeout=SELECTOR_TIMEOUT)
        await page.set_input_files("#attach-image", str(path), timeout=SELECTOR_TIMEOUT)
        await page.wait_for_timeout(3000)
        text = await page.inner_text(".CodeMirror-code")
        await self._clear_editor(page)

        match = _EMBED_RE.search(text)
        if match:
            return match.group(0)
        match = _IMG_SRC_RE.search(text)
        if match:
            return f'<img src="{match.group(1)}" alt="" />'
        raise PublishFailed(self.platform, f"no embed code after uploading {path.name}")

    # ── Operations ───────────────────────────────────────────────

    async def upload_images(self, paths: list[Path]) -> list[str | Exception]:
        """Attach every image in one editor session; one result per path."""
        if not paths:
            return []
        results: list[str | Exception] = []
        try:
            async with self._page() as page:
                await self._open_editor(page)
                for path in paths:
                    try:
                        results.append(await self._attach(page, path))
                    except (PlaywrightError, PublishFailed) as exc:
                        logger.warning("Tistory upload of %s failed: %s", path.name, exc)
                        results.append(
                            exc if isinstance(exc, PublishFailed) else PublishFailed(self.platform, str(exc))
                        )
        except (PlaywrightError, PublishFailed) as exc:
            logger.warning("Tistory upload session failed: %s", exc)
            failure = exc if isinstance(exc, PublishFailed) else PublishFailed(self.platform, str(exc))
            results.extend(failure for _ in paths[len(results):])
        return results

    async def upload_image(self, path: Path) -> str:
        """Attach an image in the editor and return Tistory's embed code."""
        (result,) = await self.upload_images([path])
        if isinstance(result, Exception):
            raise result
        return result

    async def publish(self, document: PublishDocument) -> PublishResult:
        try:
            async with self._page() as page:
                await self._open_editor(page)
                await self._fill_post(page, document)
                await self._submit(page)
                url = await self._find_post_url(page, document.title)
        except PlaywrightError as exc:
            raise PublishFailed(self.platform, str(exc)) from exc
        if not url:
            raise PublishFailed(self.platform, "post URL not found after publishing")
        return PublishResult(url=url)

    async def _fill_post(self, page: Page, document: PublishDocument) -> None:
        if document.category:
            await self._select_category(page, document.category)
        await page.fill("#post-title-inp", document.title, timeout=SELECTOR_TIMEOUT)
        await self._clear_editor(page)
        await page.keyboard.insert_text(document.html)
        await page.click("#tagText", timeout=SELECTOR_TIMEOUT)
        for tag in document.tags:
            await page.fill("#tagText", tag)
            await page.keyboard.press("Enter")

    async def _select_category(self, page: Page, category: str) -> None:
        try:
            await page.click("#category-btn", timeout=SELECTOR_TIMEOUT)
            await page.get_by_role("option", name=category).first.click(timeout=SELECTOR_TIMEOUT)
        except PlaywrightError as exc:
            logger.warning("Tistory category %r not selectable: %s", category, exc)

    async def _submit(self, page: Page) -> None:
        await page.click("#publish-layer-btn", timeout=SELECTOR_TIMEOUT)
        await page.wait_for_selector(".ReactModal__Content.editor_layer", timeout=SELECTOR_TIMEOUT)
        radio = _VISIBILITY_RADIO.get(self.account.default_visibility, "#open20")
        await page.check(radio, timeout=SELECTOR_TIMEOUT)
        await page.click("#publish-btn", timeout=SELECTOR_TIMEOUT)
        await page.wait_for_timeout(3000)

    async def _find_post_url(self, page: Page, title: str) -> str | None:
        await page.goto(f"{self.account.blog_url}/manage/posts/", wait_until="networkidle")
        links = page.locator(".wrap_list .list_post .post_cont .tit_post a")
        for i in range(await links.count()):
            link = links.nth(i)
            text = " ".join((await link.inner_text()).split())
            if title and title in text:
                return await link.get_attribute("href")
        return None
