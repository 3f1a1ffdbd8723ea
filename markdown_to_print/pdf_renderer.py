"""
HTML to PDF with Playwright.

The page is loaded at a fixed viewport, Mermaid diagrams are given time to
render (failures are swapped for a placeholder), the smart paginator rewrites
the document, and Chromium prints it to A4.

MIT License - Copyright (c) 2025 Markdown to Print Converter
"""

from pathlib import Path
from typing import Dict, Optional

from playwright.async_api import async_playwright

from .browser_layout import PlaywrightLayoutDriver
from .config import PageBreakConfig, margin_to_cm
from .console import ColorLogger
from .page_model import PageModel
from .paginator import PaginationReport, SmartPaginator

VIEWPORT = {"width": 1200, "height": 800}

FOOTER_TEMPLATE = """
<div style="font-size: 10pt; text-align: right; width: 100%; padding-right: 20mm; color: #666; font-family: 'Noto Sans TC', sans-serif;">
    <span class="pageNumber"></span> / <span class="totalPages"></span>
</div>
"""

CRASH_KEYWORDS = ["Connection closed", "Browser has been closed", "Target closed", "crashed", "Protocol error"]

# Browser console lines worth surfacing in debug output
CONSOLE_KEYWORDS = ("Rendered", "Mermaid", "Grouped", "Keep", "Force", "Scaled")


class BrowserManager:
    """One Chromium instance, reused across pages until it dies or is closed."""

    def __init__(self, logger: Optional[ColorLogger] = None):
        self.logger = logger or ColorLogger()
        self.playwright = None
        self.browser = None
        self.page = None

    async def _launch_browser(self) -> None:
        """Launch a fresh Chromium browser instance."""
        if self.playwright is None:
            self.playwright = await async_playwright().start()
        self.browser = await self.playwright.chromium.launch(
            headless=True,
            args=[
                '--disable-dev-shm-usage',  # Use /tmp instead of /dev/shm (prevents OOM crashes)
                '--disable-gpu',             # No GPU in headless mode
                '--no-sandbox',              # Required in some environments
                '--allow-file-access-from-files',
            ]
        )

    async def new_page(self):
        """Return a fresh page, restarting the browser if it turns out to be dead."""
        if self.browser is None or not self.browser.is_connected():
            self.logger.debug("Initializing browser instance")
            await self._launch_browser()

        if self.page is not None and not self.page.is_closed():
            try:
                await self.page.close()
            except Exception as e:
                self.logger.debug(f"Ignoring error while closing previous page: {e}")
        try:
            self.page = await self.browser.new_page()
        except Exception:
            # Browser reported connected but is actually dead
            self.logger.warning("Browser connection stale, restarting...")
            await self.close()
            await self._launch_browser()
            self.page = await self.browser.new_page()
        return self.page

    async def close(self) -> None:
        """Close browser and cleanup resources."""
        # Null out first to prevent double-close on crash
        page, browser, pw = self.page, self.browser, self.playwright
        self.page = None
        self.browser = None
        self.playwright = None

        for resource, closer in ((page, "close"), (browser, "close"), (pw, "stop")):
            if resource is None:
                continue
            try:
                await getattr(resource, closer)()
            except Exception as e:
                self.logger.debug(f"Ignoring error during browser cleanup: {e}")

        self.logger.debug("Browser instance closed and cleaned up")


class PdfRenderer:
    """Paginates and prints one HTML document."""

    def __init__(self, browser: BrowserManager, page_break_config: PageBreakConfig,
                 margins: Dict[str, str], page_model: Optional[PageModel] = None,
                 logger: Optional[ColorLogger] = None):
        self.browser = browser
        self.page_break_config = page_break_config
        self.margins = margins
        self.page_model = page_model or PageModel()
        self.logger = logger or ColorLogger(debug=page_break_config.debug)

    def _forward_console(self, message) -> None:
        text = message.text
        if message.type == "error":
            self.logger.debug(f"Browser error: {text}")
        elif message.type == "warning":
            self.logger.debug(f"Browser warning: {text}")
        elif any(keyword in text for keyword in CONSOLE_KEYWORDS):
            self.logger.debug(f"Browser: {text}")

    def _forward_page_error(self, error) -> None:
        self.logger.debug(f"Page error: {error}")

    def _pdf_margins(self) -> Dict[str, str]:
        return {side: f"{margin_to_cm(self.margins[side])}cm" for side in ("top", "right", "bottom", "left")}

    async def _render_once(self, html: str, output_pdf: Path, html_output: Optional[Path]) -> PaginationReport:
        page = await self.browser.new_page()
        page.on("console", self._forward_console)
        page.on("pageerror", self._forward_page_error)

        await page.set_viewport_size(VIEWPORT)
        await page.set_content(html, wait_until="networkidle")

        driver = PlaywrightLayoutDriver(page, self.logger)
        await driver.wait_for_diagrams()

        self.logger.debug(f"Page break config: {self.page_break_config.as_dict()}")
        paginator = SmartPaginator(self.page_break_config, self.page_model, self.logger)
        report = await paginator.paginate(driver)

        if html_output is not None:
            with open(html_output, 'w', encoding='utf-8') as f:
                f.write(await page.content())
            self.logger.debug(f"Saved HTML to {html_output}")

        await page.pdf(
            path=str(output_pdf),
            format='A4',
            margin=self._pdf_margins(),
            print_background=True,
            display_header_footer=True,
            header_template='<div></div>',
            footer_template=FOOTER_TEMPLATE,
        )
        return report

    async def render(self, html: str, output_pdf: Path, html_output: Optional[Path] = None) -> bool:
        """Convert HTML to PDF.

        Retries once with a fresh browser if the browser process crashes mid-conversion.
        """
        max_attempts = 2

        for attempt in range(1, max_attempts + 1):
            try:
                await self._render_once(html, output_pdf, html_output)
                return True
            except Exception as e:
                error_msg = str(e)
                is_crash = any(kw in error_msg for kw in CRASH_KEYWORDS)

                if is_crash and attempt < max_attempts:
                    self.logger.warning("Browser crashed during PDF generation, restarting and retrying...")
                    await self.browser.close()
                else:
                    self.logger.error(f"Failed to convert HTML to PDF: {e}")
                    return False

        return False
