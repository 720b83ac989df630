"""Page retrieval with per-host spacing, cookie jars and archival of changed bytes."""
from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from continuous_scraper.errors import BlockedError, ContentTooLarge, ScraperError, TransportError
from continuous_scraper.models.archive import ArchivedURL
from continuous_scraper.models.queue import FetchMode
from continuous_scraper.net import HostRateLimiter
from continuous_scraper.store.archive import ArchiveStore
from continuous_scraper.store.database import Clock, utcnow

from .cookies import CookieStore, from_httpx, to_httpx
from .headless import DESKTOP_USER_AGENT, Renderer, raise_for_status
from .login import DEFAULT_TARGETS, InteractiveLogin, LoginTarget, is_login_url
from .storage import ObjectStore, archive_key, sha256_bytes

logger = structlog.get_logger(__name__)

MAX_REDIRECTS = 5

# connection resets and protocol hiccups are retried inside one fetch
_RESET_ERRORS = (httpx.ConnectError, httpx.ReadError, httpx.RemoteProtocolError, httpx.WriteError)


@dataclass
class FetchResult:
    body: bytes
    content_type: str
    final_url: str
    headers: dict[str, str] = field(default_factory=dict)
    status: int = 200
    content_hash: str = ""
    # set when the bytes differ from the newest archived snapshot of the URL
    snapshot: ArchivedURL | None = None

    @property
    def changed(self) -> bool:
        return self.snapshot is not None


def _is_ssl(exc: BaseException) -> bool:
    text = f"{exc!r} {exc.__cause__!r}".upper()
    return "SSL" in text or "CERTIFICATE" in text


class Fetcher:
    """Retrieves HTML or document bytes for a queue entry.

    Plain HTTP goes through ``httpx``; headless fetches go through a
    ``Renderer`` created per worker thread by ``renderer_factory``. Cookie
    jars are loaded and saved per source category under that category's lock.
    A response that lands on a login page triggers ``login`` once (when it is
    enabled) and the fetch is repeated with the fresh cookies.
    """

    def __init__(
        self,
        *,
        rate_limiter: HostRateLimiter,
        cookie_store: CookieStore,
        object_store: ObjectStore,
        archive: ArchiveStore,
        renderer_factory: Callable[[], Renderer] | None = None,
        timeout_s: float = 30.0,
        max_bytes: int = 100 * 1024 * 1024,
        transport: httpx.BaseTransport | None = None,
        retry_wait: Any = None,
        clock: Clock = utcnow,
        login: InteractiveLogin | None = None,
    ) -> None:
        self.rate_limiter = rate_limiter
        self.cookie_store = cookie_store
        self.object_store = object_store
        self.archive = archive
        self.renderer_factory = renderer_factory
        self.timeout_s = timeout_s
        self.max_bytes = max_bytes
        self._transport = transport
        self._retry_wait = retry_wait or wait_exponential_jitter(initial=0.5, max=4.0)
        self._clock = clock
        self.login = login
        self._local = threading.local()
        self._renderers: list[Renderer] = []
        self._renderers_lock = threading.Lock()

    # ------------------------------ Public ----------------------------

    def fetch(
        self,
        url: str,
        category: str = "generic",
        *,
        mode: FetchMode | None = None,
        retry_count: int = 0,
        archive: bool = True,
    ) -> FetchResult:
        """Fetch ``url`` and archive its bytes when they changed.

        Raises:
            TransportError, HTTP4xxError, HTTP5xxError, BlockedError, ContentTooLarge.
            ``BlockedError`` also covers a redirect to a login page that could
            not be cleared.
        """
        mode = mode or FetchMode.HEADLESS
        if mode is FetchMode.HEADLESS and self.renderer_factory is None:
            logger.debug("fetch.headless_unavailable", url=url)
            mode = FetchMode.HTTP

        log = logger.bind(url=url, category=category, mode=mode.value)
        log.debug("fetch.start")

        with self.cookie_store.lock(category):
            result = self._fetch_with_cookies(url, category, mode, retry_count)
            if is_login_url(result.final_url) and not is_login_url(url):
                self._login(category, result.final_url, url, retry_count)
                result = self._fetch_with_cookies(url, category, mode, retry_count)
                if is_login_url(result.final_url):
                    raise BlockedError(
                        f"{url} still redirects to login at {result.final_url}", 401, retry_count=retry_count
                    )

        if len(result.body) > self.max_bytes:
            raise ContentTooLarge(f"{len(result.body)} bytes exceeds limit of {self.max_bytes}")

        result.content_hash = sha256_bytes(result.body)
        if archive:
            result.snapshot = self._archive_if_changed(url, category, mode, result)
        log.info(
            "fetch.done",
            status=result.status,
            size=len(result.body),
            final_url=result.final_url,
            changed=result.changed,
        )
        return result

    def _fetch_with_cookies(self, url: str, category: str, mode: FetchMode, retry_count: int) -> FetchResult:
        cookies = self.cookie_store.load(category)
        if mode is FetchMode.HTTP:
            result, new_cookies = self._fetch_http(url, cookies, retry_count)
        else:
            result, new_cookies = self._fetch_headless(url, cookies, retry_count)
        if new_cookies and new_cookies != cookies:
            self.cookie_store.save(category, new_cookies)
        return result

    def _login(self, category: str, login_url: str, url: str, retry_count: int) -> None:
        """Surface the browser for a sign-in; caller holds the category lock."""
        if self.login is None or not self.login.enabled:
            raise BlockedError(
                f"{url} redirected to login at {login_url}; run `scraper login {category}`",
                401,
                retry_count=retry_count,
            )
        logger.warning("fetch.login_required", url=url, category=category, login_url=login_url)
        # one sync Playwright per thread: drop the renderer before the visible browser starts
        self.release_thread_resources()
        self.login.run(DEFAULT_TARGETS.get(category) or LoginTarget(category, login_url))

    def release_thread_resources(self) -> None:
        """Close the calling thread's renderer; workers call this on exit."""
        renderer = getattr(self._local, "renderer", None)
        if renderer is not None:
            renderer.close()
            self._local.renderer = None
            with self._renderers_lock:
                if renderer in self._renderers:
                    self._renderers.remove(renderer)

    def close(self) -> None:
        self.release_thread_resources()

    # ------------------------------ HTTP -------------------------------

    def _client(self, cookies: list[dict]) -> httpx.Client:
        return httpx.Client(
            headers={"User-Agent": DESKTOP_USER_AGENT, "Accept": "*/*"},
            cookies=to_httpx(cookies),
            follow_redirects=True,
            max_redirects=MAX_REDIRECTS,
            timeout=self.timeout_s,
            transport=self._transport,
        )

    def _fetch_http(self, url: str, cookies: list[dict], retry_count: int) -> tuple[FetchResult, list[dict]]:
        @retry(
            reraise=True,
            stop=stop_after_attempt(3),
            wait=self._retry_wait,
            retry=retry_if_exception_type(_RESET_ERRORS),
        )
        def _do(client: httpx.Client) -> FetchResult:
            # every attempt, retries included, takes its own host slot
            waited = self.rate_limiter.acquire(url)
            logger.debug("fetch.request", url=url, rate_wait_s=round(waited, 3))
            with client.stream("GET", url) as resp:
                raise_for_status(resp.status_code, url, retry_count=retry_count)
                declared = int(resp.headers.get("content-length") or 0)
                if declared > self.max_bytes:
                    raise ContentTooLarge(f"declared {declared} bytes exceeds limit of {self.max_bytes}")
                chunks: list[bytes] = []
                size = 0
                for chunk in resp.iter_bytes():
                    size += len(chunk)
                    if size > self.max_bytes:
                        raise ContentTooLarge(f"body exceeds limit of {self.max_bytes} bytes")
                    chunks.append(chunk)
                return FetchResult(
                    body=b"".join(chunks),
                    content_type=resp.headers.get("content-type", "application/octet-stream"),
                    final_url=str(resp.url),
                    headers=dict(resp.headers),
                    status=resp.status_code,
                )

        with self._client(cookies) as client:
            try:
                result = _do(client)
            except ScraperError:
                raise
            except httpx.TimeoutException as exc:
                raise TransportError(f"timed out fetching {url}", kind="timeout") from exc
            except httpx.TooManyRedirects as exc:
                raise TransportError(
                    f"more than {MAX_REDIRECTS} redirects for {url}", kind="redirects", retryable=False
                ) from exc
            except httpx.TransportError as exc:
                kind = "ssl_error" if _is_ssl(exc) else "transport"
                raise TransportError(f"{type(exc).__name__}: {exc}", kind=kind) from exc
            return result, from_httpx(client.cookies)

    # ---------------------------- Headless -----------------------------

    def _renderer(self) -> Renderer:
        renderer = getattr(self._local, "renderer", None)
        if renderer is None:
            renderer = self.renderer_factory()  # type: ignore[misc]
            self._local.renderer = renderer
            with self._renderers_lock:
                self._renderers.append(renderer)
        return renderer

    def _fetch_headless(self, url: str, cookies: list[dict], retry_count: int) -> tuple[FetchResult, list[dict]]:
        self.rate_limiter.acquire(url)
        try:
            page = self._renderer().render(url, cookies)
        except ScraperError as exc:
            # the renderer maps statuses without knowing the retry count
            if exc.kind == "blocked" and retry_count:
                raise_for_status(getattr(exc, "status_code", 403), url, retry_count=retry_count)
            raise
        if len(page.body) > self.max_bytes:
            raise ContentTooLarge(f"body exceeds limit of {self.max_bytes} bytes")
        return (
            FetchResult(
                body=page.body,
                content_type=page.content_type,
                final_url=page.final_url,
                headers=page.headers,
                status=page.status,
            ),
            page.cookies,
        )

    # ----------------------------- Archive -----------------------------

    def _archive_if_changed(
        self, url: str, category: str, mode: FetchMode, result: FetchResult
    ) -> ArchivedURL | None:
        latest = self.archive.latest_snapshot(url)
        if latest is not None and latest.content_hash == result.content_hash:
            return None
        key = archive_key(category, result.content_hash, result.content_type)
        metadata = {
            "category": category,
            "fetch_mode": mode.value,
            "content_type": result.content_type,
            "final_url": result.final_url,
            "size": len(result.body),
            "previous_hash": latest.content_hash if latest else None,
        }
        self.object_store.put(key, result.body, result.content_type)
        self.object_store.put_metadata(key, {"url": url, "sha256": result.content_hash, **metadata})
        return ArchivedURL(
            url=url,
            content_hash=result.content_hash,
            storage_key=key,
            first_archived_at=self._clock(),
            metadata=metadata,
        )
