"""
Pytest fixtures for render service tests.

Playwright is replaced by mocks: no test launches a real browser.
"""

import os

# IMPORTANT: Set environment variables BEFORE any imports from render_service
# so RenderSettings is configured correctly when first loaded.
os.environ["ENVIRONMENT"] = "development"
os.environ["SETTLE_DELAY_MS"] = "0"
os.environ["VALIDATE_BROWSER_ON_STARTUP"] = "false"
os.environ["POST_PROCESSORS"] = ""
os.environ.pop("READINESS_MARKER", None)
os.environ.pop("PDF_WIDTH_PX", None)

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

FAKE_PDF = b"%PDF-1.4 fake pdf content"


class FakePlaywrightManager:
    """Stands in for the object returned by async_playwright()."""

    def __init__(self, playwright):
        self.playwright = playwright
        self.started = False

    async def start(self):
        self.started = True
        return self.playwright


async def never_returns(*args, **kwargs):
    """Simulates a navigation/script that stalls forever."""
    await asyncio.Event().wait()


def make_fake_engine(pdf_bytes: bytes = FAKE_PDF) -> SimpleNamespace:
    """Build a mocked Playwright stack: factory -> playwright -> browser -> context -> page."""
    page = MagicMock(name="page")
    page.goto = AsyncMock(return_value=MagicMock(status=200))
    page.set_content = AsyncMock(return_value=None)
    page.evaluate = AsyncMock(return_value=None)
    page.wait_for_function = AsyncMock(return_value=None)
    page.pdf = AsyncMock(return_value=pdf_bytes)
    page.is_closed.return_value = False

    context = MagicMock(name="context")
    context.new_page = AsyncMock(return_value=page)

    browser = MagicMock(name="browser")
    browser.new_context = AsyncMock(return_value=context)
    browser.close = AsyncMock(return_value=None)
    browser.is_connected.return_value = True

    playwright = MagicMock(name="playwright")
    playwright.chromium.launch = AsyncMock(return_value=browser)
    playwright.stop = AsyncMock(return_value=None)

    def factory():
        return FakePlaywrightManager(playwright)

    return SimpleNamespace(
        factory=MagicMock(side_effect=factory),
        playwright=playwright,
        browser=browser,
        context=context,
        page=page,
    )


@pytest.fixture
def fake_engine():
    """Mocked Playwright stack that renders a fake PDF."""
    return make_fake_engine()


@pytest.fixture
def engine_factory():
    """Builds additional fake engines (e.g. with a different PDF payload)."""
    return make_fake_engine


@pytest.fixture
def stall():
    """Coroutine function that never completes, for simulating hung navigation."""
    return never_returns


@pytest.fixture
def fast_settings():
    """Settings with short timeouts so degraded paths finish quickly."""
    from render_service.config import RenderSettings

    return RenderSettings(
        navigation_timeout_ms=100,
        seed_navigation_timeout_ms=100,
        script_timeout_ms=100,
        readiness_timeout_ms=100,
        readiness_poll_ms=10,
        settle_delay_ms=0,
        print_timeout_ms=300,
        validate_browser_on_startup=False,
    )


@pytest.fixture
def make_pipeline(fake_engine, fast_settings):
    """Factory for pipelines wired to the fake engine."""
    from render_service.pipeline import RenderPipeline

    def _make(settings=None, post_processors=None, engine=None):
        return RenderPipeline(
            settings or fast_settings,
            post_processors=post_processors if post_processors is not None else [],
            playwright_factory=(engine or fake_engine).factory,
        )

    return _make


@pytest.fixture
def client(make_pipeline):
    """Test client with the browser marked ready and the pipeline on the fake engine."""
    import render_service.app as app_module

    app_module._browser_ready = True
    app_module._browser_error = None
    app_module.app.dependency_overrides[app_module.get_pipeline] = lambda: make_pipeline()
    yield TestClient(app_module.app)
    app_module.app.dependency_overrides.clear()


@pytest.fixture
def client_browser_unavailable(make_pipeline):
    """Test client with the startup self-check marked failed."""
    import render_service.app as app_module

    app_module._browser_ready = False
    app_module._browser_error = "Test: Chromium not available"
    app_module.app.dependency_overrides[app_module.get_pipeline] = lambda: make_pipeline()
    yield TestClient(app_module.app)
    app_module.app.dependency_overrides.clear()
    app_module._browser_ready = True
    app_module._browser_error = None
