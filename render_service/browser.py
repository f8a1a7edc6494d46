"""
Browser lifecycle for a single render.

Each render owns its own Playwright driver and Chromium instance. The
session context manager guarantees the browser is closed exactly once,
whatever path the pipeline leaves by (success, abort, exception or
cancellation).
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from playwright.async_api import async_playwright

from .config import RenderSettings
from .errors import LaunchError, PageError, TeardownError, describe_exception

logger = logging.getLogger(__name__)

# Hardened profile for containerized execution: no OS sandbox, single process
LAUNCH_ARGS: List[str] = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--single-process",
]


def build_launch_options(settings: RenderSettings) -> Dict[str, Any]:
    """Keyword arguments for chromium.launch()."""
    options: Dict[str, Any] = {
        "headless": settings.playwright_headless,
        "args": list(LAUNCH_ARGS),
    }
    if settings.chromium_executable_path:
        options["executable_path"] = settings.chromium_executable_path
    return options


class RenderSession:
    """
    One browser instance (and the driver that launched it) plus the
    context/page opened in it.

    Never shared across requests. close() is idempotent so the session can
    be released from any exit path without double-closing the browser.
    """

    def __init__(self, browser, settings: RenderSettings, playwright=None):
        self.browser = browser
        self.playwright = playwright
        self.settings = settings
        self.context = None
        self.page = None
        self.closed = False
        self.teardown_error: Optional[TeardownError] = None

    async def open_page(self):
        """
        Open an isolated browsing context and a page in it.

        Raises:
            PageError: context or page could not be created
        """
        try:
            self.context = await self.browser.new_context(
                viewport={
                    "width": self.settings.viewport_width,
                    "height": self.settings.viewport_height,
                }
            )
            self.page = await self.context.new_page()
            self.page.set_default_navigation_timeout(self.settings.navigation_timeout_ms)
        except Exception as e:
            raise PageError("Failed to open browser page", describe_exception(e)) from e
        return self.page

    def is_alive(self) -> bool:
        """False once the browser disconnected or the page was closed/crashed."""
        try:
            if not self.browser.is_connected():
                return False
            return self.page is None or not self.page.is_closed()
        except Exception:
            return False

    async def close(self) -> None:
        """Release the browser, then stop the driver. Failures are logged and kept, never raised."""
        if self.closed:
            return
        self.closed = True
        try:
            await self.browser.close()
            logger.info("Browser closed")
        except Exception as e:
            self.teardown_error = TeardownError("Failed to close browser", describe_exception(e))
            logger.warning(f"Browser teardown failed: {describe_exception(e)}")

        if self.playwright is not None:
            error = await stop_driver(self.playwright)
            if error is not None and self.teardown_error is None:
                self.teardown_error = error


async def stop_driver(playwright) -> Optional[TeardownError]:
    """Stop the Playwright driver, returning the failure instead of raising it."""
    try:
        await playwright.stop()
    except Exception as e:
        logger.warning(f"Playwright driver stop failed: {describe_exception(e)}")
        return TeardownError("Failed to stop Playwright driver", describe_exception(e))
    return None


@asynccontextmanager
async def render_session(
    settings: RenderSettings,
    playwright_factory: Optional[Callable[[], Any]] = None,
) -> AsyncIterator[RenderSession]:
    """
    Launch Chromium and yield a RenderSession, closing it on exit.

    Args:
        settings: Render configuration (launch profile, viewport, timeouts)
        playwright_factory: Replacement for async_playwright (tests)

    Raises:
        LaunchError: the driver or the browser could not be started
    """
    factory = playwright_factory or async_playwright

    try:
        playwright = await factory().start()
    except Exception as e:
        logger.error(f"Playwright driver start failed: {describe_exception(e)}")
        raise LaunchError("Failed to launch browser", describe_exception(e)) from e

    try:
        logger.info("Launching browser...")
        browser = await playwright.chromium.launch(**build_launch_options(settings))
    except Exception as e:
        logger.error(f"Browser launch failed: {describe_exception(e)}")
        await stop_driver(playwright)
        raise LaunchError("Failed to launch browser", describe_exception(e)) from e

    session = RenderSession(browser, settings, playwright=playwright)
    try:
        yield session
    finally:
        await session.close()
