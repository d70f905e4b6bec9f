from typing import List, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from errors import RenderError, RenderTimeoutError
from logger import get_logger
from models import RenderSpec, Viewport

log = get_logger("engine")


class PlaywrightSession:
    """One isolated browser context + page. Never shared between jobs."""

    def __init__(self, context, page):
        self._context = context
        self._page = page

    async def render(self, spec: RenderSpec) -> bytes:
        page = self._page
        try:
            if spec.is_url:
                await page.goto(spec.content, wait_until="networkidle")
            else:
                await page.set_content(spec.content, wait_until="networkidle")

            if spec.wait_for_ms > 0:
                await page.wait_for_timeout(spec.wait_for_ms)

            return await page.screenshot(full_page=False, type=spec.format)
        except PlaywrightTimeoutError as e:
            raise RenderTimeoutError(f"browser timeout: {e.message}") from e
        except PlaywrightError as e:
            what = "navigation" if spec.is_url else "render"
            raise RenderError(f"{what} failed: {e.message}") from e

    async def close(self):
        for closer in (self._page.close, self._context.close):
            try:
                await closer()
            except Exception as e:
                log.warning(f"[ENGINE] session cleanup failed: {e}")


class PlaywrightEngine:
    def __init__(self, browser_args: Optional[List[str]] = None, headless: bool = True):
        self.browser_args = list(browser_args or [])
        self.headless = headless
        self._pw = None
        self._browser = None

    async def start(self):
        self._pw = await async_playwright().start()
        try:
            self._browser = await self._pw.chromium.launch(headless=self.headless, args=self.browser_args)
        except BaseException:
            await self._pw.stop()
            self._pw = None
            raise
        log.info("[ENGINE] chromium launched")

    async def new_session(self, viewport: Viewport) -> PlaywrightSession:
        # A fresh context per session: no cookies or storage leak between jobs.
        context = await self._browser.new_context(
            viewport={"width": viewport.width, "height": viewport.height}
        )
        try:
            page = await context.new_page()
        except Exception:
            await context.close()
            raise
        return PlaywrightSession(context, page)

    async def close(self):
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._pw:
            await self._pw.stop()
            self._pw = None
        log.info("[ENGINE] chromium closed")
