"""Link-rot and content-drift checks over archived URLs.

Each due URL is refetched through the shared fetcher (same rate limits and
cookies). Unchanged bytes only bump ``last_verified_at``; changed bytes add a
snapshot plus a ``content_changed`` alert; fetch failures add an alert and
leave the archive untouched.
"""
from __future__ import annotations

from datetime import timedelta

import structlog

from continuous_scraper.errors import BlockedError, ScraperError, TransportError
from continuous_scraper.fetch.fetcher import Fetcher
from continuous_scraper.models.archive import ArchivedURL, WatchdogOutcome, WatchdogReport
from continuous_scraper.models.queue import FetchMode
from continuous_scraper.store.archive import ArchiveStore
from continuous_scraper.store.database import Database

logger = structlog.get_logger(__name__)

DEFAULT_MAX_AGE = timedelta(hours=24)
DEFAULT_LIMIT = 100


def outcome_for(error: ScraperError) -> WatchdogOutcome:
    if isinstance(error, BlockedError):
        return WatchdogOutcome.BLOCKED
    if isinstance(error, TransportError):
        if error.kind == "timeout":
            return WatchdogOutcome.TIMEOUT
        if error.kind == "ssl_error":
            return WatchdogOutcome.SSL_ERROR
    return WatchdogOutcome.UNAVAILABLE


class Watchdog:
    def __init__(self, db: Database, archive: ArchiveStore, fetcher: Fetcher) -> None:
        self.db = db
        self.archive = archive
        self.fetcher = fetcher

    def run(
        self,
        *,
        check_all: bool = False,
        limit: int = DEFAULT_LIMIT,
        max_age: timedelta = DEFAULT_MAX_AGE,
    ) -> WatchdogReport:
        report = WatchdogReport()
        due = self.archive.due_for_verification(max_age=max_age, check_all=check_all, limit=limit)
        logger.info("watchdog.started", due=len(due), check_all=check_all)
        for snapshot in due:
            self.check(snapshot, report)
        logger.info("watchdog.finished", checked=report.checked, alerts=len(report.alerts), **report.outcomes)
        return report

    def check(self, snapshot: ArchivedURL, report: WatchdogReport) -> WatchdogOutcome:
        category = snapshot.metadata.get("category", "generic")
        mode = FetchMode(snapshot.metadata["fetch_mode"]) if snapshot.metadata.get("fetch_mode") else None
        try:
            result = self.fetcher.fetch(snapshot.url, category, mode=mode, archive=True)
        except ScraperError as err:
            outcome = outcome_for(err)
            alert = self.archive.add_alert(
                outcome,
                snapshot.url,
                archived_url_id=snapshot.id,
                details={"error": err.describe()},
            )
            report.alerts.append(alert)
            report.record(outcome)
            return outcome

        if result.content_hash == snapshot.content_hash or result.snapshot is None:
            self.archive.mark_verified(snapshot.id)
            report.record(WatchdogOutcome.OK)
            return WatchdogOutcome.OK

        with self.db.transaction() as conn:
            stored = self.archive.record_snapshot(conn, result.snapshot)
            alert = self.archive.add_alert(
                WatchdogOutcome.CONTENT_CHANGED,
                snapshot.url,
                archived_url_id=stored.id,
                details={"old_hash": snapshot.content_hash, "new_hash": result.content_hash},
                conn=conn,
            )
        report.alerts.append(alert)
        report.record(WatchdogOutcome.CONTENT_CHANGED)
        return WatchdogOutcome.CONTENT_CHANGED
