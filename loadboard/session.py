"""Lifecycle of the single browser session the pipeline drives.

The manager either attaches to a browser that is already running with a remote
debugging port (``CDP_URL``) or launches its own chromium. All calls must come
from the same thread: playwright's sync API is bound to the thread that
started it.
"""
from __future__ import annotations

import time
from enum import Enum
from urllib.parse import urlparse

from playwright.sync_api import sync_playwright

from .utils import logger, retry

VIEWPORT = {"width": 1280, "height": 720}
USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
]
EXTRA_HEADERS = {"Accept-Language": "en-US,en;q=0.9", "Cache-Control": "no-cache"}


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    READY = "ready"
    DEGRADED = "degraded"
    CLOSED = "closed"


class SessionManager:
    def __init__(self, settings, playwright_factory=sync_playwright, sleep=time.sleep, clock=time.monotonic):
        self.settings = settings
        self._factory = playwright_factory
        self._sleep = sleep
        self._clock = clock
        self._playwright = None
        self.browser = None
        self.context = None
        self.page = None
        self._owns_context = False
        self._owns_page = False
        self._last_cleanup = clock()
        self.state = SessionState.UNINITIALIZED

    @property
    def attached(self) -> bool:
        return bool(self.settings.cdp_url)

    def acquire(self):
        """Return a ready page or raise ConnectionError once retries are spent."""
        if self.state is SessionState.CLOSED:
            raise ConnectionError("session manager is closed")
        self.state = SessionState.CONNECTING
        tries = max(1, self.settings.session_retries)
        connect = retry(
            Exception,
            tries=tries,
            delay=self.settings.session_retry_delay,
            backoff=2,
            sleep=self._sleep,
        )(self._connect)
        try:
            page = connect()
        except Exception as e:
            self._teardown()
            self.state = SessionState.DEGRADED
            logger.error("Browser session unavailable after %d attempts: %s", tries, e)
            raise ConnectionError(f"could not acquire browser session after {tries} attempts: {e}") from e
        self.state = SessionState.READY
        return page

    def ensure_live(self):
        if self.state is SessionState.CLOSED:
            raise ConnectionError("session manager is closed")
        if self.page is None or self.state is not SessionState.READY:
            return self.acquire()
        try:
            self.page.evaluate("document.readyState")
            return self.page
        except Exception as e:
            logger.warning("Browser session lost, reconnecting: %s", e)
            self.state = SessionState.DEGRADED
            self._teardown()
            return self.acquire()

    def cleanup(self, force=False) -> bool:
        """Clear cookies and permissions once the cleanup interval elapsed.

        Only called between runs so an extraction in progress is never
        disturbed. A context borrowed over CDP holds the user's login and is
        never cleared. Returns True when a cleanup happened.
        """
        interval = self.settings.session_cleanup_interval
        if self.context is None or self.state is not SessionState.READY or not self._owns_context:
            return False
        if not force and (interval <= 0 or self._clock() - self._last_cleanup < interval):
            return False
        logger.info("Clearing session cookies and permissions")
        try:
            self.context.clear_cookies()
            self.context.clear_permissions()
        except Exception as e:
            logger.warning("Session cleanup failed: %s", e)
        self._last_cleanup = self._clock()
        return True

    def close(self):
        if self.state is SessionState.CLOSED:
            return
        self._teardown(stop_driver=True)
        self.state = SessionState.CLOSED
        logger.info("Browser session closed")

    def _connect(self):
        self._teardown()
        if self._playwright is None:
            self._playwright = self._factory().start()
        chromium = self._playwright.chromium

        if self.attached:
            logger.info("Attaching to running browser at %s", self.settings.cdp_url)
            self.browser = chromium.connect_over_cdp(self.settings.cdp_url, timeout=self.settings.nav_timeout_ms)
            contexts = self.browser.contexts
            if contexts:
                self.context = contexts[0]
            else:
                self.context = self.browser.new_context()
                self._owns_context = True
            self.page = self._pick_page(self.context.pages)
            if self.page is None:
                self.page = self.context.new_page()
                self._owns_page = True
        else:
            logger.info("Launching chromium (headless=%s)", self.settings.headless)
            self.browser = chromium.launch(headless=self.settings.headless, args=LAUNCH_ARGS)
            self.context = self.browser.new_context(viewport=VIEWPORT, user_agent=USER_AGENT)
            self._owns_context = True
            self.page = self.context.new_page()
            self._owns_page = True

        self._configure_page(self.page)
        logger.info("Browser session ready on %s", self.page.url or "about:blank")
        return self.page

    def _pick_page(self, pages):
        if not pages:
            return None
        host = urlparse(self.settings.listings_url).hostname or ""
        domain = ".".join(host.split(".")[-2:])
        for page in pages:
            if domain and domain in (page.url or ""):
                return page
        return pages[0]

    def _configure_page(self, page):
        try:
            page.set_extra_http_headers(EXTRA_HEADERS)
            # a tab borrowed from the user's browser keeps its normal loading
            if not self._owns_page:
                return
            blocked = set()
            if self.settings.block_images:
                blocked.update(("image", "media"))
            if self.settings.block_styles:
                blocked.add("stylesheet")
            if blocked:
                def _filter(route):
                    if route.request.resource_type in blocked:
                        route.abort()
                    else:
                        route.continue_()
                page.route("**/*", _filter)
        except Exception as e:
            logger.warning("Page configuration failed: %s", e)

    def _teardown(self, stop_driver=False):
        if self._owns_page and self.page is not None:
            try:
                self.page.close()
            except Exception as e:
                logger.debug("Page close failed: %s", e)
        if self._owns_context and self.context is not None:
            try:
                self.context.close()
            except Exception as e:
                logger.debug("Context close failed: %s", e)
        if self.browser is not None:
            # for an attached browser this only drops the CDP connection
            try:
                self.browser.close()
            except Exception as e:
                logger.debug("Browser close failed: %s", e)
        self.page = None
        self.context = None
        self.browser = None
        self._owns_page = False
        self._owns_context = False
        if stop_driver and self._playwright is not None:
            try:
                self._playwright.stop()
            except Exception as e:
                logger.debug("Playwright stop failed: %s", e)
            self._playwright = None
