"""Archived URL snapshots and watchdog alerts."""
from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta

import structlog

from continuous_scraper.models.archive import ArchivedURL, WatchdogAlert, WatchdogOutcome

from .database import Database, to_db

logger = structlog.get_logger(__name__)

# snapshot whose bytes the URL served most recently
_LATEST_SQL = """
SELECT a.* FROM archived_urls a
WHERE a.id = (
    SELECT b.id FROM archived_urls b
    WHERE b.url = a.url
    ORDER BY b.last_seen_at DESC, b.id DESC
    LIMIT 1
)
"""


class ArchiveStore:
    def __init__(self, db: Database) -> None:
        self.db = db

    @contextmanager
    def _reader(self, conn: sqlite3.Connection | None) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
            return
        with self.db.connect() as own:
            yield own

    def latest_snapshot(self, url: str, conn: sqlite3.Connection | None = None) -> ArchivedURL | None:
        with self._reader(conn) as c:
            row = c.execute(
                """
                SELECT * FROM archived_urls WHERE url = ?
                ORDER BY last_seen_at DESC, id DESC LIMIT 1
                """,
                (url,),
            ).fetchone()
        return ArchivedURL.from_row(row) if row else None

    def record_snapshot(self, conn: sqlite3.Connection, snapshot: ArchivedURL) -> ArchivedURL:
        """Insert a snapshot row.

        Bytes the URL served before keep their original row and
        ``first_archived_at``; only ``last_seen_at`` and ``last_verified_at`` move,
        which makes that row the latest again.
        """
        now = self.db.now()
        conn.execute(
            """
            INSERT INTO archived_urls (
                url, content_hash, storage_key, first_archived_at, last_seen_at, last_verified_at, metadata
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (url, content_hash) DO UPDATE SET
                last_seen_at = excluded.last_seen_at,
                last_verified_at = excluded.last_verified_at
            """,
            (
                snapshot.url,
                snapshot.content_hash,
                snapshot.storage_key,
                to_db(snapshot.first_archived_at) or now,
                now,
                now,
                json.dumps(snapshot.metadata),
            ),
        )
        row = conn.execute(
            "SELECT * FROM archived_urls WHERE url = ? AND content_hash = ?",
            (snapshot.url, snapshot.content_hash),
        ).fetchone()
        stored = ArchivedURL.from_row(row)
        logger.debug("archive.snapshot_recorded", url=snapshot.url, archived_url_id=stored.id)
        return stored

    def mark_verified(self, archived_url_id: int, conn: sqlite3.Connection | None = None) -> None:
        now = self.db.now()
        with self._reader(conn) as c:
            c.execute(
                "UPDATE archived_urls SET last_verified_at = ?, last_seen_at = ? WHERE id = ?",
                (now, now, archived_url_id),
            )

    def due_for_verification(
        self,
        *,
        max_age: timedelta = timedelta(days=7),
        check_all: bool = False,
        limit: int = 500,
    ) -> list[ArchivedURL]:
        """Newest snapshot of each URL whose last verification is older than ``max_age``."""
        with self.db.connect() as conn:
            if check_all:
                rows = conn.execute(_LATEST_SQL + " ORDER BY a.id LIMIT ?", (limit,)).fetchall()
            else:
                cutoff = to_db(self.db.clock() - max_age)
                rows = conn.execute(
                    _LATEST_SQL
                    + " AND (a.last_verified_at IS NULL OR a.last_verified_at < ?)"
                    + " ORDER BY a.last_verified_at, a.id LIMIT ?",
                    (cutoff, limit),
                ).fetchall()
        return [ArchivedURL.from_row(r) for r in rows]

    # ------------------------------ Alerts ----------------------------

    def add_alert(
        self,
        outcome: WatchdogOutcome,
        url: str,
        *,
        archived_url_id: int | None = None,
        details: dict | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> WatchdogAlert:
        with self._reader(conn) as c:
            row = c.execute(
                """
                INSERT INTO watchdog_alerts (alert_type, url, archived_url_id, details, created_at)
                VALUES (?, ?, ?, ?, ?)
                RETURNING id, alert_type, url, archived_url_id, details, created_at
                """,
                (outcome.value, url, archived_url_id, json.dumps(details or {}), self.db.now()),
            ).fetchall()[0]
        alert = WatchdogAlert.from_row(row)
        logger.warning("watchdog.alert", alert_type=outcome.value, url=url, alert_id=alert.id)
        return alert

    def list_alerts(self, *, unacknowledged_only: bool = True, limit: int = 100) -> list[WatchdogAlert]:
        sql = "SELECT id, alert_type, url, archived_url_id, details, created_at FROM watchdog_alerts"
        if unacknowledged_only:
            sql += " WHERE acknowledged = 0"
        sql += " ORDER BY id DESC LIMIT ?"
        with self.db.connect() as conn:
            rows = conn.execute(sql, (limit,)).fetchall()
        return [WatchdogAlert.from_row(r) for r in rows]

    def acknowledge_alert(self, alert_id: int) -> bool:
        with self.db.connect() as conn:
            cur = conn.execute("UPDATE watchdog_alerts SET acknowledged = 1 WHERE id = ?", (alert_id,))
        return cur.rowcount == 1
