"""Fetch a page and extract a fragment, statically or through a headless browser.

The static strategy is a plain ``requests`` GET parsed with BeautifulSoup.
When it finds nothing, the page is rendered in a headless Playwright browser
so content generated by client-side scripts can be captured too.

The browser is the one shared, long-lived resource here.  It is launched
lazily the first time a page needs rendering and kept for the life of the
process; each render gets its own short-lived browser context which is always
closed afterwards.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import requests
from playwright.async_api import Browser, BrowserContext
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import Playwright, async_playwright

from pagewatch.config import WatchSettings
from pagewatch.errors import (
    FetchTimeoutError,
    HttpStatusError,
    NetworkError,
    PageWatchError,
    RenderError,
    SandboxExistsError,
)
from pagewatch.models import ExtractionResult
from pagewatch.services.extractor import extract_fragment, extract_from_outer_html

__all__ = ["BrowserSandbox", "DEFAULT_HEADERS", "RenderGateway", "SingleFlight"]

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/129.0.0.0 Safari/537.36"
)
DEFAULT_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,"
        "image/avif,image/webp,*/*;q=0.8"
    ),
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
}

# Slack on top of the navigation bound and settle delay for the in-page steps.
RENDER_GRACE_SECONDS = 5.0

Launcher = Callable[[], Awaitable[Browser]]


class SingleFlight:
    """Run at most one instance of an async operation at a time.

    Callers arriving while the operation is in flight await that same attempt
    instead of starting another one.  Once it finishes, successfully or not,
    the next call starts afresh.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Future[Any]] = None

    @property
    def in_flight(self) -> bool:
        return self._task is not None

    async def do(self, factory: Callable[[], Awaitable[Any]]) -> Any:
        async with self._lock:
            task = self._task
            if task is None:
                task = asyncio.ensure_future(factory())
                task.add_done_callback(self._clear)
                self._task = task
        return await asyncio.shield(task)

    def _clear(self, task: asyncio.Future[Any]) -> None:
        if self._task is task:
            self._task = None


class BrowserSandbox:
    """Lazily launched headless browser shared by every dynamic extraction."""

    def __init__(self, browser_name: str = "chromium", *, launcher: Launcher | None = None) -> None:
        self._browser_name = browser_name
        self._launcher = launcher or self._launch_playwright
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._creating = SingleFlight()

    @property
    def is_running(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def ensure(self) -> Browser:
        """Return the shared browser, launching it if needed.

        Concurrent callers share a single launch.  A launch that loses a race
        against an already running browser is ignored; every other launch
        failure propagates.
        """

        if not self.is_running:
            try:
                await self._creating.do(self._create)
            except SandboxExistsError:
                logger.debug("Rendering sandbox already running, reusing it")

        if self._browser is None:
            raise RenderError("Rendering sandbox is not available")
        return self._browser

    async def _create(self) -> None:
        if self.is_running:
            raise SandboxExistsError("Only a single rendering sandbox may exist")
        self._browser = await self._launcher()
        logger.info("Launched headless %s for script-rendered pages", self._browser_name)

    async def _launch_playwright(self) -> Browser:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        browser_type = getattr(self._playwright, self._browser_name)
        return await browser_type.launch(headless=True)

    async def aclose(self) -> None:
        """Shut the shared browser down. Only called when the process stops."""

        browser, self._browser = self._browser, None
        playwright, self._playwright = self._playwright, None
        if browser is not None:
            await browser.close()
        if playwright is not None:
            await playwright.stop()


class RenderGateway:
    """Uniform ``fetch_and_extract`` over the static and the dynamic strategy."""

    def __init__(
        self,
        settings: WatchSettings | None = None,
        *,
        session: requests.Session | None = None,
        sandbox: BrowserSandbox | None = None,
    ) -> None:
        self._settings = settings or WatchSettings()
        self._session = session or requests.Session()
        self._session.headers.update(DEFAULT_HEADERS)
        self._sandbox = sandbox or BrowserSandbox(self._settings.browser)

    @property
    def sandbox(self) -> BrowserSandbox:
        return self._sandbox

    def parse(self, markup: str, locator: str, base_url: str) -> ExtractionResult:
        """Extract ``locator`` from already downloaded ``markup``."""

        return extract_fragment(markup, locator, base_url)

    def _get(self, url: str) -> requests.Response:
        timeout = self._settings.static_timeout
        try:
            response = self._session.get(url, timeout=timeout)
        except requests.Timeout as exc:
            raise FetchTimeoutError(f"Timed out after {timeout:g}s fetching {url}") from exc
        except requests.RequestException as exc:
            raise NetworkError(f"Failed to fetch {url}: {exc}") from exc

        if not 200 <= response.status_code < 300:
            raise HttpStatusError(
                f"HTTP {response.status_code} fetching {url}", status_code=response.status_code
            )
        return response

    async def fetch_static(self, url: str, locator: str) -> ExtractionResult:
        """Download ``url`` over plain HTTP and extract ``locator`` from it."""

        response = await asyncio.to_thread(self._get, url)
        base_url = getattr(response, "url", None) or url
        result = self.parse(response.text, locator, base_url)
        return result.model_copy(update={"strategy": "static"})

    async def fetch_dynamic(self, url: str, locator: str) -> ExtractionResult:
        """Render ``url`` in a fresh browser context and extract ``locator`` in-page."""

        try:
            browser = await self._sandbox.ensure()
        except (PlaywrightError, OSError) as exc:
            raise RenderError(f"Could not start the rendering sandbox: {exc}") from exc

        try:
            context = await browser.new_context(
                user_agent=USER_AGENT,
                extra_http_headers={"Accept-Language": DEFAULT_HEADERS["Accept-Language"]},
            )
        except PlaywrightError as exc:
            raise RenderError(f"Could not open a rendering context for {url}: {exc}") from exc

        bound = self._settings.render_timeout + self._settings.settle_delay + RENDER_GRACE_SECONDS
        try:
            return await asyncio.wait_for(self._render(context, url, locator), timeout=bound)
        except (asyncio.TimeoutError, PlaywrightTimeoutError) as exc:
            raise FetchTimeoutError(f"Timed out rendering {url}") from exc
        except PlaywrightError as exc:
            raise RenderError(f"Rendering {url} failed: {exc}") from exc
        finally:
            try:
                await context.close()
            except PlaywrightError as exc:
                logger.warning("Failed to close rendering context for %s: %s", url, exc)

    async def _render(self, context: BrowserContext, url: str, locator: str) -> ExtractionResult:
        page = await context.new_page()
        await page.goto(url, wait_until="load", timeout=self._settings.render_timeout * 1000)
        await page.wait_for_timeout(self._settings.settle_delay * 1000)

        title = (await page.title()).strip() or None
        handle = await page.query_selector(f"css={locator}")
        if handle is None:
            return ExtractionResult(page_title=title, strategy="dynamic")

        outer_html = await handle.evaluate("element => element.outerHTML")
        result = extract_from_outer_html(outer_html, page.url or url, title)
        return result.model_copy(update={"strategy": "dynamic"})

    async def fetch_and_extract(self, url: str, locator: str) -> ExtractionResult:
        """Extract ``locator`` from ``url``, rendering the page only when needed.

        Fetch errors from the static attempt are final.  An empty static
        result escalates to the browser once; whatever the browser returns, or
        raises, is the outcome.
        """

        static = await self.fetch_static(url, locator)
        if not static.is_empty:
            return static

        logger.debug("Static fetch of %s matched nothing for %r, rendering the page", url, locator)
        dynamic = await self.fetch_dynamic(url, locator)
        if dynamic.page_title is None and static.page_title is not None:
            dynamic = dynamic.model_copy(update={"page_title": static.page_title})
        return dynamic

    async def probe(self, url: str, locator: str) -> ExtractionResult:
        """Run the full pipeline for a preview, reporting failures in ``error``."""

        try:
            return await self.fetch_and_extract(url, locator)
        except PageWatchError as exc:
            logger.info("Probe of %s with %r failed: %s", url, locator, exc)
            return ExtractionResult(error=str(exc))

    async def aclose(self) -> None:
        await self._sandbox.aclose()
        self._session.close()
