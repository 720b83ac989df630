"""Durable work queue over the ``scraping_queue`` table.

State machine::

    pending --claim--> processing --success--> completed
       ^                   |
       |                   +--failure--> retry_count+1 < max_retries ? pending : failed
       +--- operator requeue <--- completed / failed
"""
from __future__ import annotations

import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import timedelta

import structlog

from continuous_scraper.errors import DBFatalError, ScraperError
from continuous_scraper.models.queue import (
    FetchMode,
    QueueEntry,
    QueueStats,
    QueueStatus,
    ResultSummary,
)

from .database import Database, to_db

logger = structlog.get_logger(__name__)

DEFAULT_MAX_RETRIES = 3

_CLAIM_SQL = """
UPDATE scraping_queue
SET status = 'processing', started_at = :now, completed_at = NULL
WHERE id = (
    SELECT id FROM scraping_queue
    WHERE status = 'pending'
      AND (next_attempt_at IS NULL OR next_attempt_at <= :now)
    ORDER BY priority DESC, submitted_at ASC, id ASC
    LIMIT 1
)
AND status = 'pending'
RETURNING *
"""


class WorkQueue:
    """Queue transitions. Every transition is a single conditional update.

    Methods that take ``conn`` join the caller's transaction; otherwise they
    open their own ``BEGIN IMMEDIATE`` transaction.
    """

    def __init__(self, db: Database, retry_delay_s: float = 300.0) -> None:
        self.db = db
        self.retry_delay_s = retry_delay_s

    @contextmanager
    def _tx(self, conn: sqlite3.Connection | None) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
            return
        with self.db.transaction() as own:
            yield own

    # --------------------------- Submission ---------------------------

    def submit(
        self,
        url: str,
        category: str = "generic",
        priority: int = 0,
        fetch_mode: FetchMode | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> QueueEntry:
        """Enqueue a URL; returns the live entry if one is already pending or processing."""
        with self._tx(None) as conn:
            row = conn.execute(
                """
                SELECT * FROM scraping_queue
                WHERE url = ? AND category = ? AND status IN ('pending', 'processing')
                ORDER BY id LIMIT 1
                """,
                (url, category),
            ).fetchone()
            if row is not None:
                logger.info("queue.already_queued", url=url, entry_id=row["id"])
                return QueueEntry.from_row(row)
            row = conn.execute(
                """
                INSERT INTO scraping_queue (url, category, priority, status, fetch_mode,
                                            submitted_at, retry_count, max_retries)
                VALUES (?, ?, ?, 'pending', ?, ?, 0, ?)
                RETURNING *
                """,
                (
                    url,
                    category,
                    priority,
                    fetch_mode.value if fetch_mode else None,
                    self.db.now(),
                    max_retries,
                ),
            ).fetchall()[0]
        logger.info("queue.submitted", url=url, category=category, priority=priority, entry_id=row["id"])
        return QueueEntry.from_row(row)

    def submit_many(
        self,
        urls: Sequence[str],
        category: str = "generic",
        priority: int = 0,
        fetch_mode: FetchMode | None = None,
    ) -> list[QueueEntry]:
        return [self.submit(u, category, priority, fetch_mode) for u in urls]

    # ---------------------------- Claiming ----------------------------

    def claim(self) -> QueueEntry | None:
        """Atomically move the best pending entry to processing.

        Highest priority first, then oldest submission. Entries whose
        ``next_attempt_at`` lies in the future are skipped.
        """
        with self._tx(None) as conn:
            rows = conn.execute(_CLAIM_SQL, {"now": self.db.now()}).fetchall()
        if not rows:
            return None
        entry = QueueEntry.from_row(rows[0])
        logger.info("queue.claimed", entry_id=entry.id, url=entry.url, retry_count=entry.retry_count)
        return entry

    def reclaim_stale(self, claim_timeout_s: float) -> int:
        """Return ``processing`` entries older than the claim timeout to ``pending``."""
        cutoff = to_db(self.db.clock() - timedelta(seconds=claim_timeout_s))
        with self._tx(None) as conn:
            cur = conn.execute(
                """
                UPDATE scraping_queue
                SET status = 'pending', started_at = NULL
                WHERE status = 'processing' AND started_at < ?
                """,
                (cutoff,),
            )
            count = cur.rowcount
        if count:
            logger.warning("queue.reclaimed", count=count, claim_timeout_s=claim_timeout_s)
        return count

    # --------------------------- Transitions --------------------------

    def complete(
        self,
        entry_id: int,
        summary: ResultSummary,
        conn: sqlite3.Connection | None = None,
    ) -> None:
        with self._tx(conn) as c:
            cur = c.execute(
                """
                UPDATE scraping_queue
                SET status = 'completed', completed_at = ?, result_summary = ?,
                    error_message = NULL, next_attempt_at = NULL
                WHERE id = ? AND status = 'processing'
                """,
                (self.db.now(), summary.to_json(), entry_id),
            )
            if cur.rowcount != 1:
                raise DBFatalError(f"queue entry {entry_id} is no longer processing")
        logger.info("queue.completed", entry_id=entry_id, **summary.model_dump())

    def fail(
        self,
        entry: QueueEntry,
        error: ScraperError,
        summary: ResultSummary | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> QueueEntry:
        """Record a failure: back to pending while retries remain, else failed.

        Retryable failures increment ``retry_count``; reaching ``max_retries``
        is terminal. Non-retryable failures go straight to ``failed``.
        """
        summary = summary or ResultSummary()
        now = self.db.clock()
        retry_count = entry.retry_count
        status = QueueStatus.FAILED
        next_attempt = None
        if error.is_retryable(entry.retry_count):
            retry_count += 1
            if retry_count < entry.max_retries:
                status = QueueStatus.PENDING
                delay = error.retry_after if error.retry_after is not None else self.retry_delay_s
                next_attempt = now + timedelta(seconds=delay)

        with self._tx(conn) as c:
            rows = c.execute(
                """
                UPDATE scraping_queue
                SET status = ?, retry_count = ?, error_message = ?, result_summary = ?,
                    next_attempt_at = ?,
                    started_at = CASE WHEN ? = 'pending' THEN NULL ELSE started_at END,
                    completed_at = CASE WHEN ? = 'failed' THEN ? ELSE NULL END
                WHERE id = ? AND status = 'processing'
                RETURNING *
                """,
                (
                    status.value,
                    retry_count,
                    error.describe(),
                    summary.to_json(),
                    to_db(next_attempt),
                    status.value,
                    status.value,
                    to_db(now),
                    entry.id,
                ),
            ).fetchall()
        if not rows:
            raise DBFatalError(f"queue entry {entry.id} is no longer processing")
        updated = QueueEntry.from_row(rows[0])
        log = logger.warning if status is QueueStatus.PENDING else logger.error
        log(
            "queue.retry_scheduled" if status is QueueStatus.PENDING else "queue.failed",
            entry_id=entry.id,
            url=entry.url,
            error=error.describe(),
            retry_count=retry_count,
            max_retries=entry.max_retries,
            next_attempt_at=to_db(next_attempt),
        )
        return updated

    def release(self, entry_id: int) -> None:
        """Hand an interrupted claim back to ``pending`` without spending a retry."""
        with self._tx(None) as conn:
            conn.execute(
                """
                UPDATE scraping_queue
                SET status = 'pending', started_at = NULL
                WHERE id = ? AND status = 'processing'
                """,
                (entry_id,),
            )
        logger.info("queue.released", entry_id=entry_id)

    def requeue(self, entry_id: int) -> QueueEntry:
        """Operator re-enqueue of a completed or failed entry."""
        with self._tx(None) as conn:
            rows = conn.execute(
                """
                UPDATE scraping_queue
                SET status = 'pending', retry_count = 0, error_message = NULL,
                    started_at = NULL, completed_at = NULL, next_attempt_at = NULL,
                    result_summary = NULL, submitted_at = ?
                WHERE id = ? AND status IN ('completed', 'failed')
                RETURNING *
                """,
                (self.db.now(), entry_id),
            ).fetchall()
        if not rows:
            current = self.get(entry_id)
            if current is None:
                raise KeyError(entry_id)
            raise ValueError(f"entry {entry_id} is {current.status.value}, not terminal")
        logger.info("queue.requeued", entry_id=entry_id)
        return QueueEntry.from_row(rows[0])

    # ----------------------------- Queries ----------------------------

    def get(self, entry_id: int) -> QueueEntry | None:
        with self.db.connect() as conn:
            row = conn.execute("SELECT * FROM scraping_queue WHERE id = ?", (entry_id,)).fetchone()
        return QueueEntry.from_row(row) if row else None

    def list_entries(self, status: QueueStatus | None = None, limit: int = 50) -> list[QueueEntry]:
        with self.db.connect() as conn:
            if status is None:
                rows = conn.execute(
                    "SELECT * FROM scraping_queue ORDER BY id DESC LIMIT ?", (limit,)
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM scraping_queue WHERE status = ? ORDER BY id DESC LIMIT ?",
                    (status.value, limit),
                ).fetchall()
        return [QueueEntry.from_row(r) for r in rows]

    def pending_count(self, ready_only: bool = False) -> int:
        with self.db.connect() as conn:
            if ready_only:
                return conn.execute(
                    """
                    SELECT COUNT(*) FROM scraping_queue
                    WHERE status = 'pending' AND (next_attempt_at IS NULL OR next_attempt_at <= ?)
                    """,
                    (self.db.now(),),
                ).fetchone()[0]
            return conn.execute(
                "SELECT COUNT(*) FROM scraping_queue WHERE status = 'pending'"
            ).fetchone()[0]

    def stats(self) -> QueueStats:
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM scraping_queue GROUP BY status"
            ).fetchall()
            oldest = conn.execute(
                "SELECT MIN(submitted_at) FROM scraping_queue WHERE status = 'pending'"
            ).fetchone()[0]
        counts = {s.value: 0 for s in QueueStatus}
        counts.update({r["status"]: r["n"] for r in rows})
        return QueueStats(counts=counts, oldest_pending=oldest)
