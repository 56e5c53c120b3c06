"""Headless browser session and HTML -> PDF rendering using patchright.

Rules:
  - headless=True always (Chromium only prints PDFs headless)
  - One browser per render call, closed on exit; no pool
  - Every wait is bounded by RenderConfig.timeout_ms
"""

import html
import logging
from dataclasses import dataclass
from types import TracebackType
from typing import Protocol

from patchright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from patchright.async_api import Error as PlaywrightError
from patchright.async_api import TimeoutError as PlaywrightTimeoutError

from matchdesk.core.config import RenderConfig
from matchdesk.core.errors import RenderFailed, RenderTimeout

logger = logging.getLogger(__name__)

_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
]


@dataclass(frozen=True)
class PdfOptions:
    """Page geometry and footer for one PDF."""

    page_size: str = "A4"
    margin_mm: int = 15
    footer_template: str = "<div></div>"

    @classmethod
    def from_config(cls, config: RenderConfig) -> "PdfOptions":
        return cls(
            page_size=config.page_size,
            margin_mm=config.margin_mm,
            footer_template=footer_template(config.brand_line, config.margin_mm),
        )


def footer_template(brand_line: str, margin_mm: int = 15) -> str:
    """Footer with the brand line and a page counter."""
    return (
        f'<div style="font-size: 10px; padding: 0 {margin_mm}mm; width: 100%; '
        'text-align: center; color: #666;">'
        f"<span>{html.escape(brand_line)}</span>"
        '<span style="margin-left: 20px;">'
        '<span class="pageNumber"></span> / <span class="totalPages"></span>'
        "</span></div>"
    )


class PdfRenderer(Protocol):
    async def html_to_pdf(self, document: str, options: PdfOptions) -> bytes: ...


class BrowserSession:
    """Async context manager that owns one headless browser + context + page.

    Usage::

        async with BrowserSession(config) as session:
            await session.page.set_content(html)
    """

    def __init__(self, config: RenderConfig) -> None:
        self._config = config
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    @property
    def page(self) -> Page:
        """The single page for this session. Raises if not entered."""
        if self._page is None:
            msg = "BrowserSession not entered, use 'async with'"
            raise RuntimeError(msg)
        return self._page

    async def __aenter__(self) -> "BrowserSession":
        pw = await async_playwright().start()
        self._playwright = pw
        try:
            self._browser = await pw.chromium.launch(headless=True, args=_LAUNCH_ARGS)
            self._context = await self._browser.new_context(
                viewport={"width": 1200, "height": 1600},
                device_scale_factor=2,
                bypass_csp=True,
            )
            self._context.set_default_timeout(self._config.timeout_ms)
            self._page = await self._context.new_page()
        except BaseException:
            await self._close()
            raise
        self._page.on("requestfailed", lambda req: logger.warning("Resource failed to load: %s", req.url))
        self._page.on(
            "console",
            lambda msg: logger.warning("Page error: %s", msg.text) if msg.type == "error" else None,
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self._close()

    async def _close(self) -> None:
        if self._context is not None:
            await self._context.close()
        if self._browser is not None:
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()
        self._page = None
        self._context = None
        self._browser = None
        self._playwright = None


class BrowserPdfRenderer:
    """Render an HTML document to PDF bytes in a fresh headless browser."""

    def __init__(self, config: RenderConfig) -> None:
        self._config = config

    async def html_to_pdf(self, document: str, options: PdfOptions) -> bytes:
        margin = f"{options.margin_mm}mm"
        timeout = self._config.timeout_ms
        try:
            async with BrowserSession(self._config) as session:
                page = session.page
                await page.set_content(document, wait_until="networkidle", timeout=timeout)
                await page.evaluate("document.fonts.ready.then(() => true)")
                pdf = await page.pdf(
                    format=options.page_size,
                    margin={"top": margin, "right": margin, "bottom": margin, "left": margin},
                    print_background=True,
                    display_header_footer=True,
                    header_template="<div></div>",
                    footer_template=options.footer_template,
                )
        except PlaywrightTimeoutError as e:
            msg = f"Browser did not settle within {timeout} ms"
            raise RenderTimeout(msg) from e
        except PlaywrightError as e:
            msg = f"Browser failed to render PDF: {e.message}"
            raise RenderFailed(msg) from e

        logger.debug("Rendered PDF: %d bytes", len(pdf))
        return pdf
