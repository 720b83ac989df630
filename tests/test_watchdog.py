"""Tests for the archive watchdog."""
from __future__ import annotations

import httpx
import pytest
from conftest import make_fetcher

from continuous_scraper.fetch.storage import sha256_bytes
from continuous_scraper.models.archive import WatchdogOutcome
from continuous_scraper.models.queue import FetchMode
from continuous_scraper.store.archive import ArchiveStore
from continuous_scraper.watchdog import Watchdog

URL = "https://example.org/doc/1"
ORIGINAL = b"<html><body>Petition of John Smith</body></html>"
REVISED = b"<html><body>Petition of John Smith, amended</body></html>"


class Origin:
    def __init__(self, body: bytes = ORIGINAL) -> None:
        self.body = body
        self.status = 200
        self.error: Exception | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status, content=self.body, headers={"content-type": "text/html"})


@pytest.fixture()
def origin() -> Origin:
    return Origin()


@pytest.fixture()
def archive(db) -> ArchiveStore:
    return ArchiveStore(db)


@pytest.fixture()
def watchdog(db, archive, origin, tmp_path, clock):
    fetcher = make_fetcher(db, tmp_path, origin, clock=clock)
    first = fetcher.fetch(URL, "petition", mode=FetchMode.HTTP)
    with db.transaction() as conn:
        archive.record_snapshot(conn, first.snapshot)
    return Watchdog(db, archive, fetcher)


def snapshot_row(db, content_hash: str):
    with db.connect() as conn:
        return dict(conn.execute("SELECT * FROM archived_urls WHERE content_hash = ?", (content_hash,)).fetchone())


class TestWatchdog:
    def test_fresh_snapshots_are_not_due(self, watchdog):
        report = watchdog.run()

        assert report.checked == 0

    def test_unchanged_content_is_verified(self, watchdog, db, clock, archive):
        before = snapshot_row(db, sha256_bytes(ORIGINAL))
        clock.advance(days=2)

        report = watchdog.run()

        assert report.outcomes == {"ok": 1}
        assert report.alerts == []
        after = snapshot_row(db, sha256_bytes(ORIGINAL))
        assert after["last_verified_at"] > before["last_verified_at"]
        assert db.count("archived_urls") == 1
        assert archive.list_alerts() == []

    def test_changed_content_adds_snapshot_and_alert(self, watchdog, db, clock, archive, origin):
        old_hash, new_hash = sha256_bytes(ORIGINAL), sha256_bytes(REVISED)
        before = snapshot_row(db, old_hash)
        origin.body = REVISED
        clock.advance(days=2)

        report = watchdog.run()

        assert report.outcomes == {"content_changed": 1}
        assert db.count("archived_urls") == 2
        assert archive.latest_snapshot(URL).content_hash == new_hash
        assert snapshot_row(db, old_hash) == before
        alerts = archive.list_alerts()
        assert len(alerts) == 1
        assert alerts[0].alert_type is WatchdogOutcome.CONTENT_CHANGED
        assert alerts[0].details == {"old_hash": old_hash, "new_hash": new_hash}
        assert alerts[0].archived_url_id == archive.latest_snapshot(URL).id

    def test_reverted_content_settles_after_one_alert(self, watchdog, db, clock, archive, origin):
        old_hash = sha256_bytes(ORIGINAL)
        first_archived = snapshot_row(db, old_hash)["first_archived_at"]

        origin.body = REVISED
        clock.advance(days=2)
        assert watchdog.run().outcomes == {"content_changed": 1}

        origin.body = ORIGINAL
        clock.advance(days=2)
        assert watchdog.run().outcomes == {"content_changed": 1}
        assert db.count("archived_urls") == 2
        assert archive.latest_snapshot(URL).content_hash == old_hash
        assert snapshot_row(db, old_hash)["first_archived_at"] == first_archived

        for _ in range(2):
            clock.advance(days=2)
            assert watchdog.run().outcomes == {"ok": 1}
        assert len(archive.list_alerts()) == 2

    @pytest.mark.parametrize(
        ("status", "outcome"),
        [(404, WatchdogOutcome.UNAVAILABLE), (410, WatchdogOutcome.UNAVAILABLE), (403, WatchdogOutcome.BLOCKED)],
    )
    def test_fetch_failure_raises_alert(self, watchdog, db, archive, origin, status, outcome):
        origin.status = status

        report = watchdog.run(check_all=True)

        assert report.outcomes == {outcome.value: 1}
        alert = archive.list_alerts()[0]
        assert alert.alert_type is outcome
        assert alert.url == URL
        assert db.count("archived_urls") == 1

    def test_timeout_outcome(self, watchdog, archive, origin):
        origin.error = httpx.ReadTimeout("slow")

        report = watchdog.run(check_all=True)

        assert report.outcomes == {"timeout": 1}
        assert archive.list_alerts()[0].details["error"].startswith("timeout:")

    def test_acknowledge(self, watchdog, archive, origin):
        origin.status = 404
        watchdog.run(check_all=True)
        alert = archive.list_alerts()[0]

        assert archive.acknowledge_alert(alert.id)
        assert archive.list_alerts() == []
        assert len(archive.list_alerts(unacknowledged_only=False)) == 1
