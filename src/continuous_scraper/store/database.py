"""SQLite connection management for the relational store."""
from __future__ import annotations

import itertools
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

import structlog

from continuous_scraper.errors import DatabaseUnavailable, classify_db_error

from .schema import SCHEMA, TABLES

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]

_memory_ids = itertools.count(1)


def utcnow() -> datetime:
    return datetime.now(UTC)


def to_db(dt: datetime | None) -> str | None:
    """Fixed-width ISO-8601 UTC text so lexical order equals time order."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def parse_db_url(db_url: str) -> tuple[str, bool]:
    """Return ``(database, is_uri)`` for ``sqlite3.connect``.

    Accepts ``sqlite:///relative/or/abs.db``, ``sqlite:////abs.db``,
    ``sqlite://:memory:`` and a bare filesystem path.
    """
    url = db_url.strip()
    if url.startswith("sqlite://"):
        url = url[len("sqlite://"):]
        # three slashes: relative path, four: absolute
        if url.startswith("/"):
            url = url[1:]
    if url == ":memory:":
        return f"file:continuous_scraper_{next(_memory_ids)}?mode=memory&cache=shared", True
    if not url:
        raise DatabaseUnavailable(f"empty database path in {db_url!r}")
    return url, False


class Database:
    """Per-use connections to one SQLite database.

    Every connection enables foreign keys, WAL and a busy timeout. Writes go
    through ``transaction()``, which takes the write lock up front with
    ``BEGIN IMMEDIATE`` so that conditional claims are exclusive.
    """

    def __init__(self, db_url: str, clock: Clock = utcnow) -> None:
        self.db_url = db_url
        self.clock = clock
        self._target, self._is_uri = parse_db_url(db_url)
        self._anchor: sqlite3.Connection | None = None
        if self._is_uri:
            # in-memory shared-cache databases live as long as one connection does
            self._anchor = self._open()
        else:
            self._target = str(Path(self._target).expanduser())
            try:
                Path(self._target).parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise DatabaseUnavailable(f"cannot create directory for {db_url}: {exc}") from exc

    def _open(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                self._target,
                uri=self._is_uri,
                timeout=5.0,
                isolation_level=None,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            # Enforce PRAGMAs per-connection
            conn.execute("PRAGMA foreign_keys=ON;")
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA busy_timeout=5000;")
        except sqlite3.Error as exc:
            raise DatabaseUnavailable(f"cannot open {self.db_url}: {exc}") from exc
        return conn

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Autocommit connection for reads and single-statement writes."""
        conn = self._open()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """One atomic unit of work; rolls back on any exception.

        sqlite3 errors are re-raised as ``DBTransientError``/``DBFatalError``.
        """
        with self.connect() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.execute("COMMIT")
            except sqlite3.Error as exc:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise classify_db_error(exc) from exc
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

    def now(self) -> str:
        return to_db(self.clock())  # type: ignore[return-value]

    def ping(self) -> None:
        """Raise ``DatabaseUnavailable`` unless a trivial query succeeds."""
        try:
            with self.connect() as conn:
                conn.execute("SELECT 1").fetchone()
        except sqlite3.Error as exc:
            raise DatabaseUnavailable(f"database unreachable: {exc}") from exc

    def ensure_schema(self) -> None:
        try:
            with self.connect() as conn:
                conn.executescript(SCHEMA)
        except sqlite3.Error as exc:
            raise DatabaseUnavailable(f"cannot apply schema: {exc}") from exc
        logger.debug("db.schema_ready", tables=len(TABLES))

    def count(self, table: str) -> int:
        if table not in TABLES:
            raise ValueError(f"unknown table {table!r}")
        with self.connect() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    def close(self) -> None:
        if self._anchor is not None:
            self._anchor.close()
            self._anchor = None
