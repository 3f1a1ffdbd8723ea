"""
Unit tests for printing HTML to PDF: crash retry, margins and the browser
lifecycle. Chromium is replaced with mocks.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from markdown_to_print.config import DEFAULT_MARGINS, PageBreakConfig, parse_margins
from markdown_to_print.paginator import PaginationReport
from markdown_to_print.pdf_renderer import BrowserManager, PdfRenderer


@pytest.fixture
def browser():
    manager = MagicMock(spec=BrowserManager)
    manager.close = AsyncMock()
    return manager


@pytest.fixture
def renderer(browser):
    return PdfRenderer(browser, PageBreakConfig(), parse_margins(DEFAULT_MARGINS), logger=MagicMock())


class TestRenderRetry:
    """Tests for the one retry after a browser crash."""

    def test_success_on_first_attempt(self, renderer, browser, tmp_path):
        renderer._render_once = AsyncMock(return_value=PaginationReport())

        assert asyncio.run(renderer.render("<html></html>", tmp_path / "a.pdf")) is True

        renderer._render_once.assert_awaited_once_with("<html></html>", tmp_path / "a.pdf", None)
        browser.close.assert_not_awaited()

    def test_crash_restarts_browser_and_retries_once(self, renderer, browser, tmp_path):
        renderer._render_once = AsyncMock(side_effect=[RuntimeError("Target closed"), PaginationReport()])

        assert asyncio.run(renderer.render("<html></html>", tmp_path / "a.pdf")) is True

        assert renderer._render_once.await_count == 2
        browser.close.assert_awaited_once()
        renderer.logger.warning.assert_called_once()

    def test_second_crash_gives_up(self, renderer, browser, tmp_path):
        renderer._render_once = AsyncMock(side_effect=RuntimeError("Browser has been closed"))

        assert asyncio.run(renderer.render("<html></html>", tmp_path / "a.pdf")) is False

        assert renderer._render_once.await_count == 2
        browser.close.assert_awaited_once()

    def test_other_errors_fail_without_retry(self, renderer, browser, tmp_path):
        renderer._render_once = AsyncMock(side_effect=ValueError("bad html"))

        assert asyncio.run(renderer.render("<html></html>", tmp_path / "a.pdf")) is False

        renderer._render_once.assert_awaited_once()
        browser.close.assert_not_awaited()
        renderer.logger.error.assert_called_once_with("Failed to convert HTML to PDF: bad html")


class TestPdfOptions:
    """Tests for the page options handed to Chromium."""

    def test_margins_are_converted_to_cm(self, browser):
        renderer = PdfRenderer(browser, PageBreakConfig(), parse_margins("1in 0.5in"), logger=MagicMock())

        assert renderer._pdf_margins() == {
            "top": "2.54cm", "right": "1.27cm", "bottom": "2.54cm", "left": "1.27cm",
        }


class TestBrowserManager:
    """Tests for the Chromium lifecycle."""

    def test_close_releases_everything_even_when_a_close_fails(self):
        manager = BrowserManager(logger=MagicMock())
        page, chromium, playwright = MagicMock(), MagicMock(), MagicMock()
        page.close = AsyncMock(side_effect=RuntimeError("Target closed"))
        chromium.close = AsyncMock()
        playwright.stop = AsyncMock()
        manager.page, manager.browser, manager.playwright = page, chromium, playwright

        asyncio.run(manager.close())

        chromium.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()
        assert (manager.page, manager.browser, manager.playwright) == (None, None, None)

    def test_stale_browser_is_restarted(self):
        manager = BrowserManager(logger=MagicMock())
        dead, fresh, page = MagicMock(), MagicMock(), MagicMock()
        dead.is_connected.return_value = True
        dead.new_page = AsyncMock(side_effect=RuntimeError("Connection closed"))
        dead.close = AsyncMock()
        fresh.new_page = AsyncMock(return_value=page)
        manager.browser = dead

        async def relaunch():
            manager.browser = fresh

        manager._launch_browser = AsyncMock(side_effect=relaunch)

        assert asyncio.run(manager.new_page()) is page
        dead.close.assert_awaited_once()
        manager._launch_browser.assert_awaited_once()
