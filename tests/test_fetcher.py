"""Tests for the fetcher, archive storage and cookie jars."""
from __future__ import annotations

import json
import threading

import httpx
import pytest
from conftest import make_fetcher

from continuous_scraper.errors import BlockedError, ContentTooLarge, HTTP4xxError, HTTP5xxError, TransportError
from continuous_scraper.fetch.cookies import FileCookieStore, MemoryCookieStore
from continuous_scraper.fetch.headless import RenderedPage
from continuous_scraper.fetch.login import DEFAULT_TARGETS
from continuous_scraper.fetch.storage import LocalObjectStore, archive_key, extension_for, sha256_bytes, sidecar_key
from continuous_scraper.models.queue import FetchMode
from continuous_scraper.net import HostRateLimiter
from continuous_scraper.store.archive import ArchiveStore

URL = "https://example.org/doc/1"
HTML = b"<html><body>Petition of John Smith</body></html>"


def ok(body: bytes = HTML, content_type: str = "text/html; charset=utf-8", **headers):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=body, headers={"content-type": content_type, **headers})

    return handler


def status(code: int):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(code, content=b"nope")

    return handler


class FakeRenderer:
    def __init__(self, page: RenderedPage) -> None:
        self.page = page
        self.calls: list[tuple[str, list]] = []
        self.closed = False

    def render(self, url, cookies):
        self.calls.append((url, cookies))
        return self.page

    def close(self):
        self.closed = True


class TestHTTPFetch:
    def test_success_archives_new_bytes(self, db, tmp_path):
        fetcher = make_fetcher(db, tmp_path, ok())

        result = fetcher.fetch(URL, "petition", mode=FetchMode.HTTP)

        assert result.body == HTML
        assert result.content_hash == sha256_bytes(HTML)
        assert result.changed
        assert result.snapshot.storage_key == f"archives/petition/{result.content_hash}.html"
        assert result.snapshot.metadata["fetch_mode"] == "http"
        assert fetcher.object_store.get(result.snapshot.storage_key) == HTML
        # the row is written by the caller's transaction, not the fetcher
        assert db.count("archived_urls") == 0

    def test_unchanged_bytes_are_not_rearchived(self, db, tmp_path):
        fetcher = make_fetcher(db, tmp_path, ok())
        first = fetcher.fetch(URL, mode=FetchMode.HTTP)
        with db.transaction() as conn:
            ArchiveStore(db).record_snapshot(conn, first.snapshot)

        second = fetcher.fetch(URL, mode=FetchMode.HTTP)

        assert second.snapshot is None
        assert second.content_hash == first.content_hash

    def test_archive_can_be_skipped(self, db, tmp_path):
        fetcher = make_fetcher(db, tmp_path, ok())

        result = fetcher.fetch(URL, mode=FetchMode.HTTP, archive=False)

        assert result.snapshot is None
        assert result.content_hash

    @pytest.mark.parametrize(
        ("code", "error"),
        [(500, HTTP5xxError), (503, HTTP5xxError), (404, HTTP4xxError), (403, BlockedError), (429, BlockedError)],
    )
    def test_status_errors(self, db, tmp_path, code, error):
        fetcher = make_fetcher(db, tmp_path, status(code))

        with pytest.raises(error):
            fetcher.fetch(URL, mode=FetchMode.HTTP)

    def test_blocked_backoff_uses_retry_count(self, db, tmp_path):
        fetcher = make_fetcher(db, tmp_path, status(403))

        with pytest.raises(BlockedError) as info:
            fetcher.fetch(URL, mode=FetchMode.HTTP, retry_count=2)

        assert info.value.retry_after == 120

    def test_declared_size_over_limit(self, db, tmp_path):
        fetcher = make_fetcher(db, tmp_path, ok(b"x" * 100), max_bytes=10)

        with pytest.raises(ContentTooLarge):
            fetcher.fetch(URL, mode=FetchMode.HTTP)

    def test_timeout_maps_to_transport_error(self, db, tmp_path):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        fetcher = make_fetcher(db, tmp_path, handler)

        with pytest.raises(TransportError) as info:
            fetcher.fetch(URL, mode=FetchMode.HTTP)
        assert info.value.kind == "timeout"
        assert info.value.retryable

    def test_connection_resets_are_retried(self, db, tmp_path):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                raise httpx.ConnectError("reset", request=request)
            return httpx.Response(200, content=HTML, headers={"content-type": "text/html"})

        fetcher = make_fetcher(db, tmp_path, handler)

        result = fetcher.fetch(URL, mode=FetchMode.HTTP)

        assert result.body == HTML
        assert len(calls) == 3

    def test_persistent_reset_gives_up(self, db, tmp_path):
        def handler(request):
            raise httpx.ConnectError("reset", request=request)

        fetcher = make_fetcher(db, tmp_path, handler)

        with pytest.raises(TransportError) as info:
            fetcher.fetch(URL, mode=FetchMode.HTTP)
        assert info.value.kind == "transport"

    def test_saved_cookies_are_sent(self, db, tmp_path):
        seen = []

        def handler(request):
            seen.append(request.headers.get("cookie", ""))
            return httpx.Response(200, content=HTML, headers={"content-type": "text/html"})

        jar = MemoryCookieStore()
        jar.save("familysearch", [{"name": "sid", "value": "abc", "domain": "example.org", "path": "/"}])
        fetcher = make_fetcher(db, tmp_path, handler, cookie_store=jar)

        fetcher.fetch(URL, "familysearch", mode=FetchMode.HTTP)

        assert "sid=abc" in seen[0]


class FixedClock:
    """Monotonic clock that never moves; sleeps are only recorded."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []
        self._lock = threading.Lock()

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.sleeps.append(seconds)


class SteppingClock(FixedClock):
    """Monotonic clock that sleeps advance."""

    def sleep(self, seconds: float) -> None:
        super().sleep(seconds)
        self.now += seconds


class TestHostSpacing:
    """Every request to a host, retries included, takes its own slot."""

    def test_connection_reset_retry_waits_for_the_host(self, db, tmp_path):
        clock = SteppingClock()
        starts: list[float] = []

        def handler(request):
            starts.append(clock())
            if len(starts) == 1:
                raise httpx.ConnectError("reset", request=request)
            return httpx.Response(200, content=HTML, headers={"content-type": "text/html"})

        limiter = HostRateLimiter(1.5, clock=clock, sleep=clock.sleep)
        fetcher = make_fetcher(db, tmp_path, handler, rate_limiter=limiter)

        fetcher.fetch(URL, mode=FetchMode.HTTP)

        assert starts == [0.0, pytest.approx(1.5)]

    def test_concurrent_fetches_get_distinct_slots(self, db, tmp_path):
        clock = FixedClock()
        limiter = HostRateLimiter(1.5, clock=clock, sleep=clock.sleep)
        fetcher = make_fetcher(db, tmp_path, ok(), rate_limiter=limiter)
        gate = threading.Barrier(4)
        errors: list[BaseException] = []

        def worker(n: int) -> None:
            gate.wait()
            try:
                # distinct categories so only the host limiter orders them
                fetcher.fetch(f"https://example.org/doc/{n}", f"cat{n}", mode=FetchMode.HTTP, archive=False)
            except BaseException as exc:  # noqa: BLE001
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert errors == []
        # starts at 0, 1.5, 3.0 and 4.5 on the frozen clock
        assert sorted(clock.sleeps) == [pytest.approx(1.5), pytest.approx(3.0), pytest.approx(4.5)]


class TestLoginRedirect:
    """A fetch that lands on a sign-in page is never treated as content."""

    LOGIN = "https://example.org/auth/familysearch/login"

    def site(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if str(request.url) == self.LOGIN:
                return httpx.Response(200, content=b"<html>Sign in</html>", headers={"content-type": "text/html"})
            if "sid=ok" in request.headers.get("cookie", ""):
                return httpx.Response(200, content=HTML, headers={"content-type": "text/html"})
            return httpx.Response(302, headers={"location": self.LOGIN})

        return handler

    class FakeLogin:
        def __init__(self, jar, *, enabled: bool = True, grant: bool = True) -> None:
            self.jar = jar
            self.enabled = enabled
            self.grant = grant
            self.targets = []

        def run(self, target) -> int:
            self.targets.append(target)
            if self.grant:
                self.jar.save(target.category, [{"name": "sid", "value": "ok", "domain": "example.org", "path": "/"}])
            return 1

    def test_interactive_login_then_retry(self, db, tmp_path):
        jar = MemoryCookieStore()
        login = self.FakeLogin(jar)
        fetcher = make_fetcher(db, tmp_path, self.site(), cookie_store=jar, login=login)

        result = fetcher.fetch(URL, "familysearch", mode=FetchMode.HTTP)

        assert result.body == HTML
        assert result.final_url == URL
        assert login.targets == [DEFAULT_TARGETS["familysearch"]]
        assert jar.load("familysearch")[0]["value"] == "ok"

    def test_login_disabled_is_blocked(self, db, tmp_path):
        jar = MemoryCookieStore()
        login = self.FakeLogin(jar, enabled=False)
        fetcher = make_fetcher(db, tmp_path, self.site(), cookie_store=jar, login=login)

        with pytest.raises(BlockedError) as info:
            fetcher.fetch(URL, "familysearch", mode=FetchMode.HTTP)

        assert info.value.status_code == 401
        assert "scraper login familysearch" in info.value.message
        assert login.targets == []

    def test_no_login_handler_is_blocked(self, db, tmp_path):
        fetcher = make_fetcher(db, tmp_path, self.site())

        with pytest.raises(BlockedError):
            fetcher.fetch(URL, "generic", mode=FetchMode.HTTP)

    def test_login_that_does_not_stick_is_blocked(self, db, tmp_path):
        jar = MemoryCookieStore()
        login = self.FakeLogin(jar, grant=False)
        fetcher = make_fetcher(db, tmp_path, self.site(), cookie_store=jar, login=login)

        with pytest.raises(BlockedError) as info:
            fetcher.fetch(URL, "familysearch", mode=FetchMode.HTTP)

        assert "still redirects" in info.value.message
        assert len(login.targets) == 1


class TestHeadlessFetch:
    def test_renderer_is_used_and_released(self, db, tmp_path):
        page = RenderedPage(
            body=HTML,
            content_type="text/html",
            final_url=URL,
            status=200,
            cookies=[{"name": "fs", "value": "1", "domain": "example.org", "path": "/"}],
        )
        renderer = FakeRenderer(page)
        jar = MemoryCookieStore()
        fetcher = make_fetcher(db, tmp_path, status(500), cookie_store=jar, renderer_factory=lambda: renderer)

        result = fetcher.fetch(URL, "familysearch")

        assert result.body == HTML
        assert result.snapshot.metadata["fetch_mode"] == "headless"
        assert renderer.calls == [(URL, [])]
        assert jar.load("familysearch")[0]["name"] == "fs"

        fetcher.release_thread_resources()
        assert renderer.closed

    def test_missing_renderer_falls_back_to_http(self, db, tmp_path):
        fetcher = make_fetcher(db, tmp_path, ok())

        result = fetcher.fetch(URL, mode=FetchMode.HEADLESS)

        assert result.snapshot.metadata["fetch_mode"] == "http"


class TestStorage:
    def test_keys(self):
        digest = sha256_bytes(b"abc")

        assert archive_key("Petition", digest, "application/pdf") == f"archives/petition/{digest}.pdf"
        assert sidecar_key(f"archives/petition/{digest}.pdf") == f"archives/petition/{digest}.meta.json"
        assert extension_for("text/html; charset=utf-8") == "html"
        assert extension_for(None) == "bin"

    def test_local_store_is_write_once(self, tmp_path):
        store = LocalObjectStore(tmp_path)

        store.put("archives/x/a.txt", b"first")
        store.put("archives/x/a.txt", b"second")
        store.put_metadata("archives/x/a.txt", {"url": URL})

        assert store.get("archives/x/a.txt") == b"first"
        assert json.loads((tmp_path / "archives/x/a.meta.json").read_text())["url"] == URL


class TestCookieStores:
    def test_file_store_roundtrip_and_clear(self, tmp_path):
        store = FileCookieStore(tmp_path)
        cookies = [{"name": "sid", "value": "abc", "domain": "example.org", "path": "/"}]

        with store.lock("familysearch"):
            store.save("familysearch", cookies)

        assert FileCookieStore(tmp_path).load("familysearch") == cookies
        assert store.clear("familysearch")
        assert store.load("familysearch") == []
        assert not store.clear("familysearch")

    def test_memory_store_is_per_category(self):
        store = MemoryCookieStore()
        store.save("a", [{"name": "x", "value": "1"}])

        assert store.load("b") == []
        assert store.clear("a")
