"""Playwright-backed extractor.

One Chromium instance is launched lazily on first use and shared by all
concurrent runs; each run gets its own isolated browser context, closed
when the run ends. Playwright timeouts are the only bound on a hung run.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from playwright.async_api import Browser, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from cosmic_relay.errors import ExtractionError
from cosmic_relay.extraction.base import (
    Extractor,
    PreviewResult,
    RawFields,
    SelectorProbe,
)
from cosmic_relay.sources.schemas import BrowserConfig, SelectorConfig

logger = structlog.get_logger(__name__)

_LAUNCH_ARGS = ["--disable-dev-shm-usage", "--disable-blink-features=AutomationControlled"]


class PlaywrightExtractor(Extractor):
    """
    Extractor driving a shared headless Chromium.

    Usage:
        extractor = PlaywrightExtractor(headless=True)
        fields = await extractor.extract(url, selectors, browser_config)
        await extractor.close()
    """

    def __init__(self, headless: bool = True) -> None:
        self._headless = headless
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._lock = asyncio.Lock()

    async def _get_browser(self) -> Browser:
        """Launch the shared browser once; relaunch if it has disconnected."""
        async with self._lock:
            if self._browser is not None and self._browser.is_connected():
                return self._browser
            try:
                if self._playwright is None:
                    self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=self._headless,
                    args=_LAUNCH_ARGS,
                )
            except PlaywrightError as e:
                raise ExtractionError(f"browser launch failed: {e.message}") from e
            logger.info("Browser launched", headless=self._headless)
            return self._browser

    @asynccontextmanager
    async def _open_page(self, url: str, options: BrowserConfig) -> AsyncIterator[Page]:
        """Navigate a fresh context to ``url`` and yield its page."""
        browser = await self._get_browser()
        context_options: dict[str, Any] = {
            "viewport": {"width": options.viewport.width, "height": options.viewport.height},
        }
        if options.user_agent:
            context_options["user_agent"] = options.user_agent

        try:
            context = await browser.new_context(**context_options)
        except PlaywrightError as e:
            raise ExtractionError(f"browser context failed: {e.message}") from e

        try:
            page = await context.new_page()
            try:
                response = await page.goto(
                    url,
                    timeout=options.navigation_timeout_ms,
                    wait_until="networkidle",
                )
            except PlaywrightError as e:
                raise ExtractionError(f"navigation to {url} failed: {e.message}") from e
            if response is not None and response.status >= 400:
                raise ExtractionError(f"HTTP {response.status} from {url}")
            yield page
        finally:
            try:
                await context.close()
            except PlaywrightError as e:
                logger.warning("Failed to close browser context", error=e.message)

    @staticmethod
    async def _read(page: Page, selector: SelectorConfig, timeout_ms: int) -> tuple[int, str | None]:
        """Wait for a selector and return (match count, value)."""
        locator = page.locator(selector.locator)
        await locator.first.wait_for(state="attached", timeout=timeout_ms)
        matches = await locator.count()
        element = locator.first
        if selector.attribute:
            value = await element.get_attribute(selector.attribute)
        else:
            value = await element.text_content()
        return matches, value.strip() if value is not None else None

    async def extract(
        self,
        url: str,
        selectors: list[SelectorConfig],
        browser: BrowserConfig,
    ) -> RawFields:
        raw: RawFields = {}
        async with self._open_page(url, browser) as page:
            for selector in selectors:
                try:
                    _, raw[selector.field] = await self._read(
                        page, selector, browser.action_timeout_ms
                    )
                except PlaywrightError as e:
                    raise ExtractionError(
                        f"selector for field {selector.field!r} failed: {e.message}"
                    ) from e
        return raw

    async def inspect(
        self,
        url: str,
        selectors: list[SelectorConfig],
        browser: BrowserConfig,
    ) -> PreviewResult:
        result = PreviewResult(url=url)
        async with self._open_page(url, browser) as page:
            for selector in selectors:
                try:
                    matches, value = await self._read(
                        page, selector, browser.action_timeout_ms
                    )
                except PlaywrightError as e:
                    result.warnings.append(
                        f'Selector for field "{selector.field}" failed: {e.message}'
                    )
                    result.results.append(
                        SelectorProbe(field=selector.field, matches=0, value=None, error=e.message)
                    )
                    continue
                if matches > 1:
                    result.warnings.append(
                        f'Selector for field "{selector.field}" matched {matches} elements'
                    )
                result.results.append(
                    SelectorProbe(field=selector.field, matches=matches, value=value)
                )
        return result

    async def close(self) -> None:
        async with self._lock:
            if self._browser is not None:
                try:
                    await self._browser.close()
                except PlaywrightError as e:
                    logger.warning("Failed to close browser", error=e.message)
                self._browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
