"""
Unit tests for the browser session lifecycle.
"""

import pytest

from render_service.browser import LAUNCH_ARGS, RenderSession, build_launch_options, render_session
from render_service.config import RenderSettings
from render_service.errors import LaunchError, PageError


class TestLaunchOptions:
    """Tests for build_launch_options."""

    def test_hardened_profile(self):
        options = build_launch_options(RenderSettings())

        assert options["headless"] is True
        assert options["args"] == LAUNCH_ARGS
        assert "executable_path" not in options

    def test_executable_path(self):
        options = build_launch_options(RenderSettings(chromium_executable_path="/usr/bin/chromium"))
        assert options["executable_path"] == "/usr/bin/chromium"


class TestRenderSession:
    """Tests for RenderSession and render_session()."""

    @pytest.mark.asyncio
    async def test_session_closes_browser_on_exit(self, fake_engine, fast_settings):
        async with render_session(fast_settings, fake_engine.factory) as session:
            assert session.browser is fake_engine.browser
            fake_engine.browser.close.assert_not_called()

        fake_engine.browser.close.assert_awaited_once()
        assert session.closed is True

    @pytest.mark.asyncio
    async def test_session_closes_browser_on_error(self, fake_engine, fast_settings):
        with pytest.raises(RuntimeError):
            async with render_session(fast_settings, fake_engine.factory):
                raise RuntimeError("boom")

        fake_engine.browser.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, fake_engine, fast_settings):
        """Closing twice only closes the browser once."""
        async with render_session(fast_settings, fake_engine.factory) as session:
            await session.close()

        fake_engine.browser.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_failure_is_kept_not_raised(self, fake_engine, fast_settings):
        fake_engine.browser.close.side_effect = Exception("Browser has been closed")

        session = RenderSession(fake_engine.browser, fast_settings)
        await session.close()

        assert session.teardown_error is not None
        assert "Browser has been closed" in session.teardown_error.detail

    @pytest.mark.asyncio
    async def test_driver_start_failure_is_launch_error(self, fake_engine, fast_settings):
        fake_engine.factory.side_effect = Exception("Playwright driver not found")

        with pytest.raises(LaunchError) as exc_info:
            async with render_session(fast_settings, fake_engine.factory):
                pass

        assert exc_info.value.stage == "launch"
        assert "driver not found" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_open_page_failure_is_page_error(self, fake_engine, fast_settings):
        fake_engine.context.new_page.side_effect = Exception("Target closed")

        session = RenderSession(fake_engine.browser, fast_settings)
        with pytest.raises(PageError):
            await session.open_page()

    @pytest.mark.asyncio
    async def test_is_alive_tracks_browser_and_page(self, fake_engine, fast_settings):
        session = RenderSession(fake_engine.browser, fast_settings)
        await session.open_page()
        assert session.is_alive() is True

        fake_engine.page.is_closed.return_value = True
        assert session.is_alive() is False

        fake_engine.page.is_closed.return_value = False
        fake_engine.browser.is_connected.return_value = False
        assert session.is_alive() is False

    @pytest.mark.asyncio
    async def test_session_stops_driver_after_browser(self, fake_engine, fast_settings):
        async with render_session(fast_settings, fake_engine.factory) as session:
            assert session.playwright is fake_engine.playwright
            fake_engine.playwright.stop.assert_not_called()

        fake_engine.browser.close.assert_awaited_once()
        fake_engine.playwright.stop.assert_awaited_once()
        assert session.teardown_error is None

    @pytest.mark.asyncio
    async def test_driver_stop_failure_is_kept_not_raised(self, fake_engine, fast_settings):
        fake_engine.playwright.stop.side_effect = Exception("driver stop failed")

        async with render_session(fast_settings, fake_engine.factory) as session:
            pass

        assert session.teardown_error is not None
        assert session.teardown_error.message == "Failed to stop Playwright driver"
        assert "driver stop failed" in session.teardown_error.detail

    @pytest.mark.asyncio
    async def test_browser_close_failure_wins_over_driver_stop_failure(self, fake_engine, fast_settings):
        """Both steps run; the first failure is the one reported."""
        fake_engine.browser.close.side_effect = Exception("Connection closed")
        fake_engine.playwright.stop.side_effect = Exception("driver stop failed")

        async with render_session(fast_settings, fake_engine.factory) as session:
            pass

        fake_engine.playwright.stop.assert_awaited_once()
        assert "Connection closed" in session.teardown_error.detail

    @pytest.mark.asyncio
    async def test_launch_failure_stops_driver(self, fake_engine, fast_settings):
        fake_engine.playwright.chromium.launch.side_effect = Exception("Executable doesn't exist")
        fake_engine.playwright.stop.side_effect = Exception("driver stop failed")

        with pytest.raises(LaunchError) as exc_info:
            async with render_session(fast_settings, fake_engine.factory):
                pass

        fake_engine.playwright.stop.assert_awaited_once()
        assert "Executable doesn't exist" in exc_info.value.detail
