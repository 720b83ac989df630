"""Headless-browser rendering through Playwright.

Usage:
    with PlaywrightRenderer() as renderer:
        page = renderer.render("https://example.org/doc/1", cookies=[])
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from continuous_scraper.errors import BlockedError, HTTP4xxError, HTTP5xxError, TransportError

logger = structlog.get_logger(__name__)

DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/128.0.0.0 Safari/537.36"
)


@dataclass
class HeadlessConfig:
    """Configuration for headless browser sessions."""
    headless: bool = True
    timeout_ms: int = 30000
    slow_mo: int = 0
    viewport_width: int = 1280
    viewport_height: int = 900
    user_agent: str = DESKTOP_USER_AGENT


@dataclass
class RenderedPage:
    body: bytes
    content_type: str
    final_url: str
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    cookies: list[dict[str, Any]] = field(default_factory=list)


class Renderer(Protocol):
    def render(self, url: str, cookies: list[dict[str, Any]]) -> RenderedPage: ...

    def close(self) -> None: ...


class PlaywrightRenderer:
    """Single Chromium instance shared by one worker; pages are opened per render.

    Playwright's sync API is bound to the thread that started it, so each
    worker owns its own renderer.
    """

    def __init__(self, config: HeadlessConfig | None = None) -> None:
        self.config = config or HeadlessConfig()
        self._playwright = None
        self._browser = None

    def __enter__(self) -> PlaywrightRenderer:
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    def start(self) -> None:
        if self._browser is not None:
            return
        from playwright.sync_api import sync_playwright

        self._playwright = sync_playwright().start()
        self._browser = self._playwright.chromium.launch(
            headless=self.config.headless,
            slow_mo=self.config.slow_mo,
        )
        logger.info("headless.started", headless=self.config.headless)

    def close(self) -> None:
        if self._browser is not None:
            self._browser.close()
            self._browser = None
        if self._playwright is not None:
            self._playwright.stop()
            self._playwright = None

    def render(self, url: str, cookies: list[dict[str, Any]]) -> RenderedPage:
        from playwright.sync_api import Error as PlaywrightError
        from playwright.sync_api import TimeoutError as PlaywrightTimeout

        self.start()
        context = self._browser.new_context(
            viewport={"width": self.config.viewport_width, "height": self.config.viewport_height},
            user_agent=self.config.user_agent,
        )
        try:
            if cookies:
                context.add_cookies([c for c in cookies if c.get("domain") or c.get("url")])
            page = context.new_page()
            try:
                response = page.goto(url, timeout=self.config.timeout_ms, wait_until="networkidle")
            except PlaywrightTimeout as exc:
                raise TransportError(f"render timed out: {url}", kind="timeout") from exc
            except PlaywrightError as exc:
                msg = str(exc)
                kind = "ssl_error" if "ERR_CERT" in msg or "SSL" in msg else "transport"
                raise TransportError(msg, kind=kind) from exc

            status = response.status if response is not None else 200
            headers = dict(response.headers) if response is not None else {}
            raise_for_status(status, url)
            content_type = headers.get("content-type", "text/html")
            if content_type.startswith("text/html"):
                body = page.content().encode("utf-8")
            else:
                body = response.body() if response is not None else b""
            return RenderedPage(
                body=body,
                content_type=content_type,
                final_url=page.url,
                status=status,
                headers=headers,
                cookies=list(context.cookies()),
            )
        finally:
            context.close()


def raise_for_status(status: int, url: str, retry_count: int = 0) -> None:
    """Map a non-2xx status to the failure taxonomy."""
    if status < 400:
        return
    if status in (403, 429):
        raise BlockedError(f"HTTP {status} from {url}", status, retry_count=retry_count)
    if status >= 500:
        raise HTTP5xxError(f"HTTP {status} from {url}", status)
    raise HTTP4xxError(f"HTTP {status} from {url}", status)
