"""Interactive browser login for sources that need a human to sign in.

The browser is surfaced once; cookies captured after the page leaves the
login flow are written through the ``CookieStore`` and reused headless.
"""
from __future__ import annotations

import time
from dataclasses import dataclass

import structlog

from continuous_scraper.errors import ConfigError, TransportError

from .cookies import CookieStore
from .headless import DESKTOP_USER_AGENT

logger = structlog.get_logger(__name__)

LOGIN_URL_MARKERS = ("/auth/", "/login", "signin", "ident.", "accounts.google")


@dataclass(frozen=True)
class LoginTarget:
    """Where a category's login flow starts."""

    category: str
    login_url: str


DEFAULT_TARGETS = {
    "familysearch": LoginTarget("familysearch", "https://www.familysearch.org/auth/familysearch/login"),
    "pedigree": LoginTarget("pedigree", "https://www.familysearch.org/auth/familysearch/login"),
}


def is_login_url(url: str) -> bool:
    lowered = url.lower()
    return any(marker in lowered for marker in LOGIN_URL_MARKERS)


class InteractiveLogin:
    """Surface a visible browser and wait for the user to finish signing in.

    Example:
        login = InteractiveLogin(cookie_store, timeout_s=300)
        login.run(DEFAULT_TARGETS["familysearch"])
    """

    def __init__(
        self,
        cookie_store: CookieStore,
        *,
        enabled: bool,
        timeout_s: float = 300.0,
        poll_s: float = 2.0,
    ) -> None:
        self.cookie_store = cookie_store
        self.enabled = enabled
        self.timeout_s = timeout_s
        self.poll_s = poll_s

    def run(self, target: LoginTarget) -> int:
        """Return the number of cookies saved.

        Raises:
            ConfigError: interactive login is disabled
            TransportError: the page never left the login flow within the timeout
        """
        if not self.enabled:
            raise ConfigError("interactive login is disabled; set INTERACTIVE_LOGIN=true")

        from playwright.sync_api import sync_playwright

        logger.info("login.started", category=target.category, url=target.login_url)
        with sync_playwright() as p:
            browser = p.chromium.launch(headless=False)
            try:
                context = browser.new_context(user_agent=DESKTOP_USER_AGENT)
                page = context.new_page()
                page.goto(target.login_url, timeout=60000)

                deadline = time.monotonic() + self.timeout_s
                while is_login_url(page.url):
                    if time.monotonic() >= deadline:
                        raise TransportError(
                            f"login for {target.category} not completed within {self.timeout_s:.0f}s",
                            kind="timeout",
                        )
                    page.wait_for_timeout(int(self.poll_s * 1000))

                cookies = list(context.cookies())
            finally:
                browser.close()

        with self.cookie_store.lock(target.category):
            self.cookie_store.save(target.category, cookies)
        logger.info("login.completed", category=target.category, cookies=len(cookies))
        return len(cookies)

    def logout(self, category: str) -> bool:
        with self.cookie_store.lock(category):
            return self.cookie_store.clear(category)
