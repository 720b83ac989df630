"""End-to-end tests for the per-URL pipeline over a fake site."""
from __future__ import annotations

import threading

import httpx
import pytest
from conftest import PETITION_TEXT, html_page

from continuous_scraper.fetch.cookies import MemoryCookieStore
from continuous_scraper.fetch.storage import LocalObjectStore
from continuous_scraper.models.mentions import RelationshipType
from continuous_scraper.models.persons import PersonType
from continuous_scraper.models.queue import QueueStatus
from continuous_scraper.services import Services
from continuous_scraper.worker import WorkerPool

URL = "https://example.org/doc/1"


class FakeSite:
    """Serves canned responses per URL and counts requests."""

    def __init__(self) -> None:
        self.pages: dict[str, tuple[int, bytes, str]] = {}
        self.hits: dict[str, int] = {}

    def serve(self, url: str, body: bytes, status: int = 200, content_type: str = "text/html") -> None:
        self.pages[url] = (status, body, content_type)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.hits[url] = self.hits.get(url, 0) + 1
        status, body, content_type = self.pages.get(url, (404, b"missing", "text/plain"))
        return httpx.Response(status, content=body, headers={"content-type": content_type})


@pytest.fixture()
def site() -> FakeSite:
    return FakeSite()


@pytest.fixture()
def services(settings, db, site, tmp_path):
    built = Services.build(
        settings,
        db=db,
        cookie_store=MemoryCookieStore(),
        object_store=LocalObjectStore(tmp_path / "archive"),
        renderer_factory=None,
        transport=httpx.MockTransport(site),
        ocr_primary=None,
        ocr_fallback=None,
        sleep=lambda s: None,
    )
    return built.open()


def drain(services: Services):
    pool = WorkerPool(queue=services.queue, pipeline=services.pipeline(), fetcher=services.fetcher)
    return pool.drain()


def counts(db) -> tuple[int, int, int]:
    return db.count("canonical_persons"), db.count("name_variants"), db.count("relationships")


class TestPetitionPage:
    def test_roles_and_persistence(self, services, site, db):
        site.serve(URL, html_page(PETITION_TEXT))
        entry = services.queue.submit(URL)

        report = drain(services)

        assert report.final == {entry.id: QueueStatus.COMPLETED}
        done = services.queue.get(entry.id)
        assert done.status is QueueStatus.COMPLETED
        assert done.result_summary.persons_found == 2
        assert done.result_summary.documents_found == 1

        assert db.count("canonical_persons") == 2
        names = {n: services.persons.search(n)[0] for n in ("John Smith", "Peter")}
        assert names["John Smith"].person_type is PersonType.OWNER
        assert names["Peter"].person_type is PersonType.ENSLAVED
        links = services.persons.relationships_for(names["Peter"].id)
        assert [(r.subject_id, r.object_id, r.type) for r in links] == [
            (names["Peter"].id, names["John Smith"].id, RelationshipType.ENSLAVED_BY)
        ]
        assert db.count("archived_urls") == 1

    def test_replay_is_idempotent(self, services, site, db):
        site.serve(URL, html_page(PETITION_TEXT))
        services.queue.submit(URL)
        drain(services)
        before = counts(db)

        again = services.queue.submit(URL)
        drain(services)

        assert services.queue.get(again.id).status is QueueStatus.COMPLETED
        assert counts(db) == before
        # same bytes: no second snapshot
        assert db.count("archived_urls") == 1
        assert site.hits[URL] == 2

    def test_changed_bytes_add_snapshot(self, services, site, db):
        site.serve(URL, html_page(PETITION_TEXT))
        services.queue.submit(URL)
        drain(services)

        site.serve(URL, html_page(PETITION_TEXT + " Recorded 1852."))
        services.queue.submit(URL)
        drain(services)

        assert db.count("archived_urls") == 2


class TestFailures:
    def test_persistent_5xx_exhausts_retries(self, services, site):
        site.serve(URL, b"boom", status=500)
        entry = services.queue.submit(URL)

        report = drain(services)

        final = services.queue.get(entry.id)
        assert final.status is QueueStatus.FAILED
        assert final.retry_count == 3
        assert final.error_message == f"http_5xx: HTTP 500 from {URL}"
        assert site.hits[URL] == 3
        assert report.any_failed
        assert report.retried == 2
        assert report.failed == 1

    def test_404_fails_immediately(self, services, site):
        entry = services.queue.submit(URL)

        drain(services)

        final = services.queue.get(entry.id)
        assert final.status is QueueStatus.FAILED
        assert final.retry_count == 0
        assert final.error_message.startswith("http_4xx:")

    def test_parser_crash_rolls_back(self, services, site, db):
        site.serve(URL, html_page(PETITION_TEXT))

        def broken(page, ocr, metadata):
            raise RuntimeError("unexpected layout")

        services.parsers.register("generic", broken)
        entry = services.queue.submit(URL)

        drain(services)

        final = services.queue.get(entry.id)
        assert final.status is QueueStatus.FAILED
        assert final.error_message == "parse_failed: RuntimeError: unexpected layout"
        assert final.result_summary.documents_found == 0
        assert db.count("canonical_persons") == 0
        # the snapshot row belongs to the rolled-back transaction
        assert db.count("archived_urls") == 0

    def test_unexpected_error_is_recorded(self, services, site):
        site.serve(URL, html_page(PETITION_TEXT))
        pipeline = services.pipeline()

        def explode(*args, **kwargs):
            raise KeyError("resolver state")

        pipeline.resolver.resolve_many = explode
        entry = services.queue.submit(URL)
        claimed = services.queue.claim()

        outcome = pipeline.process(claimed)

        assert outcome.status is QueueStatus.FAILED
        assert not outcome.ok
        assert services.queue.get(entry.id).error_message.startswith("error: KeyError")

    def test_shutdown_between_stages_releases_claim(self, services, site, db):
        site.serve(URL, html_page(PETITION_TEXT))
        stop = threading.Event()
        stop.set()
        pipeline = services.pipeline(stop)
        entry = services.queue.submit(URL)
        claimed = services.queue.claim()

        outcome = pipeline.process(claimed)

        assert outcome.status is QueueStatus.PENDING
        assert outcome.error.kind == "shutdown"
        after = services.queue.get(entry.id)
        assert after.status is QueueStatus.PENDING
        assert after.retry_count == 0
        assert db.count("canonical_persons") == 0
