"""Playwright page driver owned by exactly one workflow run.

The driver exposes the handful of page capabilities the workflows need
(navigate, wait, click, type, read, region screenshot, download capture) and
turns Playwright timeouts into NavigationError so workflows never see
Playwright exception types.
"""

import asyncio
from pathlib import Path
from typing import Callable, Iterable, Optional, Set

from loguru import logger
from playwright.async_api import Browser, BrowserContext, Download, Page, Response, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..errors import NavigationError
from .sanitize import mask_sensitive_in_logs


class DownloadCapture:
    """Listener for an artifact the page produces asynchronously.

    Attach before triggering the action that causes the download, then call
    wait(). Both real downloads and intercepted `data:text/plain` responses
    count; the first one accepted by the predicate wins.
    """

    def __init__(self, page: Page, predicate: Callable[[str], bool], session_id: str = "N/A"):
        self._page = page
        self._predicate = predicate
        self._session_id = session_id
        self._result: asyncio.Future = asyncio.get_running_loop().create_future()
        self._readers: Set[asyncio.Task] = set()
        self._attached = False

    def attach(self) -> "DownloadCapture":
        self._page.on("download", self._on_download)
        self._page.on("response", self._on_response)
        self._attached = True
        return self

    def detach(self):
        if not self._attached:
            return
        self._page.remove_listener("download", self._on_download)
        self._page.remove_listener("response", self._on_response)
        self._attached = False

    def _on_download(self, download: Download):
        if self._result.done() or not self._predicate(download.suggested_filename):
            return
        logger.debug(f"[{self._session_id}] Download started: {download.suggested_filename}")
        self._spawn(self._read_download(download))

    def _on_response(self, response: Response):
        if self._result.done() or not response.url.startswith("data:text/plain"):
            return
        if not self._predicate(response.url):
            return
        self._spawn(self._read_response(response))

    def _spawn(self, coro):
        task = asyncio.ensure_future(coro)
        self._readers.add(task)
        task.add_done_callback(self._readers.discard)

    async def _read_download(self, download: Download):
        try:
            path = await download.path()
            self._resolve(Path(path).read_bytes())
        except Exception as e:
            logger.warning(f"[{self._session_id}] Could not read download: {e}")

    async def _read_response(self, response: Response):
        try:
            self._resolve(await response.body())
        except Exception as e:
            logger.warning(f"[{self._session_id}] Could not read intercepted response: {e}")

    def _resolve(self, data: bytes):
        if not self._result.done():
            self._result.set_result(data)

    async def wait(self, settle_seconds: float) -> Optional[bytes]:
        """
        Wait up to settle_seconds for the artifact

        Returns:
            Artifact bytes, or None if nothing arrived within the window
        """
        try:
            return await asyncio.wait_for(asyncio.shield(self._result), settle_seconds)
        except asyncio.TimeoutError:
            return None
        finally:
            self.detach()
            for task in list(self._readers):
                task.cancel()


class PageDriver:
    """Browser page capability for one workflow run.

    A driver is never shared between workflows or sessions.
    """

    def __init__(
        self,
        session_id: str = "N/A",
        headless: bool = False,
        slow_mo_ms: int = 0,
        default_timeout_ms: int = 30000,
    ):
        """
        Args:
            session_id: Owning session, used as the log prefix
            headless: Launch Chromium without a window
            slow_mo_ms: Playwright slow-motion delay per action
            default_timeout_ms: Timeout for waits that don't pass their own
        """
        self.session_id = session_id
        self.headless = headless
        self.slow_mo_ms = slow_mo_ms
        self.default_timeout_ms = default_timeout_ms

        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self._playwright = None

    def _log_action(self, action: str, **details):
        """Debug-log a page action (values masked)"""
        detail_text = ", ".join(f"{k}={v}" for k, v in details.items())
        logger.debug(f"[{self.session_id}] {action} {mask_sensitive_in_logs(detail_text)}")

    def _require_page(self) -> Page:
        if not self.page:
            raise ValueError("Browser not started")
        return self.page

    async def start(self):
        """Launch Chromium and open a fresh page"""
        self._playwright = await async_playwright().start()
        self.browser = await self._playwright.chromium.launch(
            headless=self.headless,
            slow_mo=self.slow_mo_ms,
        )
        self.context = await self.browser.new_context(accept_downloads=True)
        self.page = await self.context.new_page()
        self.page.set_default_timeout(self.default_timeout_ms)

        mode = "headless" if self.headless else "headed"
        logger.info(f"[{self.session_id}] Browser started in {mode} mode")

    async def close(self):
        """Close page, context, browser and Playwright; safe to call twice"""
        try:
            if self.context:
                await self.context.close()
            if self.browser:
                await self.browser.close()
            if self._playwright:
                await self._playwright.stop()
            logger.info(f"[{self.session_id}] Browser closed")
        except Exception as e:
            logger.debug(f"[{self.session_id}] Error closing browser: {e}")
        finally:
            self.page = None
            self.context = None
            self.browser = None
            self._playwright = None

    @property
    def is_started(self) -> bool:
        return self.page is not None

    async def navigate(self, url: str, timeout_ms: Optional[int] = None):
        page = self._require_page()
        self._log_action("navigate", url=url)
        try:
            await page.goto(url, timeout=timeout_ms or self.default_timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationError(f"Timed out loading {url}") from e

    async def title(self) -> str:
        return await self._require_page().title()

    async def wait_for(self, selector: str, timeout_ms: Optional[int] = None, visible: bool = True):
        """Wait for an element; raises NavigationError when it doesn't appear"""
        page = self._require_page()
        state = "visible" if visible else "attached"
        try:
            await page.wait_for_selector(selector, state=state, timeout=timeout_ms or self.default_timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationError(f"Element {selector} did not appear") from e

    async def wait_for_any(self, selectors: Iterable[str], timeout_ms: Optional[int] = None) -> str:
        """
        Wait until any one of several elements becomes visible

        Returns:
            The selector that became visible first
        """
        page = self._require_page()
        timeout = timeout_ms or self.default_timeout_ms
        waiters = {
            asyncio.ensure_future(page.wait_for_selector(selector, state="visible", timeout=timeout)): selector
            for selector in selectors
        }
        pending = set(waiters)
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    if task.exception() is None:
                        return waiters[task]
        finally:
            for task in pending:
                task.cancel()
        raise NavigationError(f"None of {', '.join(waiters.values())} appeared")

    async def hover(self, selector: str, timeout_ms: Optional[int] = None):
        page = self._require_page()
        self._log_action("hover", selector=selector)
        try:
            await page.hover(selector, timeout=timeout_ms or self.default_timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationError(f"Could not hover {selector}") from e

    async def click(self, selector: str, timeout_ms: Optional[int] = None):
        page = self._require_page()
        self._log_action("click", selector=selector)
        try:
            await page.click(selector, timeout=timeout_ms or self.default_timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationError(f"Could not click {selector}") from e

    async def type_text(self, selector: str, text: str):
        page = self._require_page()
        self._log_action("type", selector=selector, text=text)
        try:
            await page.type(selector, text)
        except PlaywrightTimeoutError as e:
            raise NavigationError(f"Could not type into {selector}") from e

    async def clear(self, selector: str):
        page = self._require_page()
        self._log_action("clear", selector=selector)
        try:
            await page.fill(selector, "")
        except PlaywrightTimeoutError as e:
            raise NavigationError(f"Could not clear {selector}") from e

    async def set_value(self, selector: str, value: str):
        """Set an input's value directly (date inputs ignore typed text)"""
        page = self._require_page()
        self._log_action("set_value", selector=selector, value=value)
        await self.wait_for(selector, visible=False)
        await page.evaluate(
            "([selector, value]) => { document.querySelector(selector).value = value; }",
            [selector, value],
        )

    async def select_option(self, selector: str, value: str):
        page = self._require_page()
        self._log_action("select", selector=selector, value=value)
        try:
            await page.select_option(selector, value)
        except PlaywrightTimeoutError as e:
            raise NavigationError(f"Could not select {value} in {selector}") from e

    async def read_text(self, selector: str) -> str:
        page = self._require_page()
        try:
            text = await page.text_content(selector, timeout=self.default_timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationError(f"Could not read {selector}") from e
        return (text or "").strip()

    async def is_visible(self, selector: str) -> bool:
        return await self._require_page().is_visible(selector)

    async def scroll_into_view(self, selector: str):
        page = self._require_page()
        try:
            await page.locator(selector).first.scroll_into_view_if_needed()
        except PlaywrightTimeoutError as e:
            raise NavigationError(f"Could not scroll to {selector}") from e

    async def screenshot_element(self, selector: str, timeout_ms: Optional[int] = None) -> bytes:
        """Screenshot one page region as PNG bytes"""
        await self.wait_for(selector, timeout_ms=timeout_ms)
        page = self._require_page()
        self._log_action("screenshot", selector=selector)
        return await page.locator(selector).first.screenshot()

    def capture_download(self, predicate: Callable[[str], bool] = lambda name: True) -> DownloadCapture:
        """Subscribe to the download side channel; call before the trigger"""
        page = self._require_page()
        self._log_action("capture_download")
        return DownloadCapture(page, predicate, session_id=self.session_id).attach()
