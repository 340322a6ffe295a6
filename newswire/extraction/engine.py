"""Shared headless-browser content extraction.

One Chromium instance (via Playwright) is launched lazily on the first request and
reused across calls. Every Playwright call runs on the engine's single worker
thread: Playwright's sync API is bound to the thread that started it, and this
also means at most one extraction runs at a time per engine.

Lifecycle: UNINITIALIZED -> LAUNCHING -> READY -> ... -> CLOSED.
A disconnected browser is detected by the next caller and relaunched. Callers
never see engine crashes as exceptions: every failure is an `ExtractionResult`
with empty text and a non-ok status.
"""

from __future__ import annotations

import logging
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Any, Callable, Iterable, Optional, Tuple

from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from newswire.ingestion.ingestors import BROWSER_HEADERS
from newswire.ingestion.url_utils import validate_fetch_url


logger = logging.getLogger(__name__)

DEFAULT_MAX_CONTENT_LENGTH = 20_000
DEFAULT_NAVIGATION_TIMEOUT_MS = 30_000
DEFAULT_USER_AGENT = BROWSER_HEADERS["User-Agent"]

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
]

STATUS_OK = "ok"
STATUS_NO_MATCH = "no_match"
STATUS_TIMEOUT = "timeout"
STATUS_ERROR = "error"
STATUS_BLOCKED = "blocked"
STATUS_CLOSED = "closed"

# (driver, browser); the driver is whatever must be stopped after the browser closes.
Launcher = Callable[[], Tuple[Any, Any]]


class EngineState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LAUNCHING = "launching"
    READY = "ready"
    CLOSED = "closed"


class EngineClosedError(RuntimeError):
    """Raised by `acquire()` once the engine has been shut down."""


@dataclass(frozen=True)
class ExtractionJob:
    url: str
    content_selector: str
    max_length: int = DEFAULT_MAX_CONTENT_LENGTH


@dataclass(frozen=True)
class ExtractionResult:
    text: str
    status: str
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK and bool(self.text)


def clean_text(parts: Iterable[str], max_length: int = DEFAULT_MAX_CONTENT_LENGTH) -> str:
    """Join matched element texts, truncate, and collapse whitespace."""
    joined = "\n".join(p.strip() for p in parts if p and p.strip())
    return re.sub(r"\s+", " ", joined[: max(0, max_length)].strip())


def launch_chromium(*, headless: bool = True) -> Tuple[Any, Any]:
    playwright = sync_playwright().start()
    try:
        browser = playwright.chromium.launch(headless=headless, args=LAUNCH_ARGS)
    except Exception:
        playwright.stop()
        raise
    return playwright, browser


def _is_connected(browser: Any) -> bool:
    try:
        return bool(browser.is_connected())
    except Exception:
        return False


class ContentExtractionEngine:
    def __init__(
        self,
        *,
        launcher: Optional[Launcher] = None,
        headless: bool = True,
        navigation_timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS,
        user_agent: str = DEFAULT_USER_AGENT,
        call_grace_s: float = 15.0,
    ):
        self._launcher = launcher or partial(launch_chromium, headless=headless)
        self.navigation_timeout_ms = int(navigation_timeout_ms)
        self.user_agent = user_agent
        # Upper bound a caller waits for one call, on top of the navigation timeout.
        self.call_grace_s = float(call_grace_s)

        self._cond = threading.Condition()
        self._state = EngineState.UNINITIALIZED
        self._driver: Any = None
        self._browser: Any = None
        self._launch_count = 0
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="extraction-engine")

    @property
    def state(self) -> EngineState:
        with self._cond:
            return self._state

    @property
    def launch_count(self) -> int:
        with self._cond:
            return self._launch_count

    def _call_timeout(self) -> float:
        return self.navigation_timeout_ms / 1000.0 * 2 + self.call_grace_s

    def _on_engine_thread(self, fn: Callable[..., Any], *args: Any) -> Any:
        return self._executor.submit(fn, *args).result(timeout=self._call_timeout())

    def acquire(self) -> Any:
        """Return a live browser handle, launching one if needed.

        Safe to call from any thread. A caller arriving while another launch is in
        flight waits for it instead of starting a second browser.
        """
        with self._cond:
            while self._state is EngineState.LAUNCHING:
                self._cond.wait()
            if self._state is EngineState.CLOSED:
                raise EngineClosedError("extraction engine is closed")
            browser = self._browser if self._state is EngineState.READY else None
            self._state = EngineState.LAUNCHING

        try:
            if browser is not None:
                if self._on_engine_thread(_is_connected, browser):
                    with self._cond:
                        self._state = EngineState.READY
                        self._cond.notify_all()
                    return browser
                logger.warning("Extraction engine disconnected; relaunching browser")
            with self._cond:
                stale = (self._driver, self._browser)
                self._driver = self._browser = None
            if any(h is not None for h in stale):
                self._on_engine_thread(self._dispose, *stale)
            logger.info("Launching browser for content extraction...")
            driver, browser = self._on_engine_thread(self._launcher)
        except BaseException:
            with self._cond:
                self._state = EngineState.UNINITIALIZED
                self._cond.notify_all()
            raise

        with self._cond:
            self._driver, self._browser = driver, browser
            self._launch_count += 1
            self._state = EngineState.READY
            self._cond.notify_all()
        logger.info(f"Browser launched (launch #{self._launch_count})")
        return browser

    def extract(self, job: ExtractionJob) -> ExtractionResult:
        """Fetch `job.url` and return the text under `job.content_selector`.

        Never raises; an empty `text` means "not available now, retry later".
        """
        err = validate_fetch_url(job.url)
        if err:
            logger.warning(f"Refusing to extract {job.url}: {err}")
            return ExtractionResult(text="", status=STATUS_BLOCKED, error=err)
        try:
            browser = self.acquire()
        except EngineClosedError:
            return ExtractionResult(text="", status=STATUS_CLOSED, error="engine_closed")
        except Exception as e:
            logger.error(f"Failed to launch extraction engine for {job.url}: {e}")
            return ExtractionResult(text="", status=STATUS_ERROR, error=str(e))

        try:
            result, lost = self._on_engine_thread(self._extract_with_browser, browser, job)
        except FutureTimeout:
            logger.error(f"Content extraction timed out for {job.url}")
            return ExtractionResult(text="", status=STATUS_TIMEOUT, error="call_timeout")
        except Exception as e:
            logger.error(f"Content extraction failed for {job.url}: {e}")
            return ExtractionResult(text="", status=STATUS_ERROR, error=str(e))

        if lost:
            self._invalidate(browser)
        if result.ok:
            logger.info(f"Extracted detail content from {job.url} ({len(result.text)} chars)")
        elif result.status == STATUS_NO_MATCH:
            logger.warning(f"No content matched '{job.content_selector}' at {job.url}")
        else:
            logger.error(f"Failed to extract detail content from {job.url}: {result.error}")
        return result

    def _extract_with_browser(self, browser: Any, job: ExtractionJob) -> Tuple[ExtractionResult, bool]:
        context = None
        try:
            context = browser.new_context(
                user_agent=self.user_agent,
                extra_http_headers={"Accept-Language": BROWSER_HEADERS["Accept-Language"]},
                viewport={"width": 1920, "height": 1080},
                ignore_https_errors=True,
            )
            page = context.new_page()
            page.set_default_timeout(self.navigation_timeout_ms)
            page.goto(job.url, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms)
            parts = page.locator(job.content_selector).all_text_contents()
        except PlaywrightTimeoutError as e:
            return ExtractionResult(text="", status=STATUS_TIMEOUT, error=str(e)), not _is_connected(browser)
        except Exception as e:
            return ExtractionResult(text="", status=STATUS_ERROR, error=str(e)), not _is_connected(browser)
        finally:
            if context is not None:
                try:
                    context.close()
                except Exception as e:
                    logger.debug(f"Ignoring error while closing page context: {e}")

        text = clean_text(parts, job.max_length)
        if not text:
            return ExtractionResult(text="", status=STATUS_NO_MATCH), False
        return ExtractionResult(text=text, status=STATUS_OK), False

    def _invalidate(self, browser: Any) -> None:
        """Drop a dead browser so the next `acquire()` relaunches."""
        with self._cond:
            while self._state is EngineState.LAUNCHING:
                self._cond.wait()
            if self._browser is not browser or self._state is EngineState.CLOSED:
                return
            stale = (self._driver, self._browser)
            self._driver = self._browser = None
            self._state = EngineState.UNINITIALIZED
        logger.warning("Extraction engine lost its browser; it will be relaunched on the next request")
        try:
            self._on_engine_thread(self._dispose, *stale)
        except Exception as e:
            logger.debug(f"Ignoring error while disposing dead browser: {e}")

    @staticmethod
    def _dispose(driver: Any, browser: Any) -> None:
        if browser is not None:
            try:
                browser.close()
            except Exception as e:
                logger.debug(f"Ignoring error while closing browser: {e}")
        if driver is not None:
            try:
                driver.stop()
            except Exception as e:
                logger.debug(f"Ignoring error while stopping Playwright: {e}")

    def shutdown(self) -> None:
        """Close the browser and the engine thread. Idempotent."""
        with self._cond:
            while self._state is EngineState.LAUNCHING:
                self._cond.wait()
            if self._state is EngineState.CLOSED:
                return
            stale = (self._driver, self._browser)
            self._driver = self._browser = None
            self._state = EngineState.CLOSED
            self._cond.notify_all()
        if any(h is not None for h in stale):
            try:
                self._on_engine_thread(self._dispose, *stale)
                logger.info("Browser instance closed")
            except Exception as e:
                logger.error(f"Error closing browser instance: {e}")
        self._executor.shutdown(wait=True)
