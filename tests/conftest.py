from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import httpx
import pytest
from tenacity import wait_none

from continuous_scraper.config import Settings, StorageConfig
from continuous_scraper.fetch.cookies import MemoryCookieStore
from continuous_scraper.fetch.fetcher import Fetcher
from continuous_scraper.fetch.storage import LocalObjectStore
from continuous_scraper.models.persons import PersonType
from continuous_scraper.net import HostRateLimiter
from continuous_scraper.resolve.names import parse_name
from continuous_scraper.store.archive import ArchiveStore
from continuous_scraper.store.database import Database
from continuous_scraper.store.persons import PersonStore


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def db_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'scraper.db'}"


@pytest.fixture()
def db(db_url: str, clock: FakeClock):
    database = Database(db_url, clock=clock)
    database.ensure_schema()
    try:
        yield database
    finally:
        database.close()


@pytest.fixture()
def settings(tmp_path: Path, db_url: str) -> Settings:
    return Settings(
        db_url=db_url,
        delay_per_host_ms=0,
        retry_delay_s=0,
        cookie_dir=tmp_path / "cookies",
        storage=StorageConfig(local_root=tmp_path / "archive"),
        log_format="console",
    )


def make_fetcher(db: Database, root: Path, handler, **kwargs) -> Fetcher:
    """Fetcher over ``httpx.MockTransport`` with no spacing and no retry waits."""
    return Fetcher(
        rate_limiter=kwargs.pop("rate_limiter", None) or HostRateLimiter(0, sleep=lambda s: None),
        cookie_store=kwargs.pop("cookie_store", None) or MemoryCookieStore(),
        object_store=LocalObjectStore(root / "archive"),
        archive=ArchiveStore(db),
        transport=httpx.MockTransport(handler),
        retry_wait=wait_none(),
        **kwargs,
    )


def add_canonical(db: Database, name: str, person_type: PersonType = PersonType.OWNER, **kwargs):
    with db.transaction() as conn:
        return PersonStore(db).create_canonical(
            conn, parse_name(name), person_type=person_type, confidence=1.0, **kwargs
        )


def html_page(body: str, title: str = "Record") -> bytes:
    return f"<html><head><title>{title}</title></head><body>{body}</body></html>".encode()


PETITION_TEXT = (
    "Petition of John Smith of Fairfax County, praying compensation for the "
    "service of his negro man Peter ... Witness for Petitioner Thomas Jones ... "
    "Justice of the Peace William Brown"
)
