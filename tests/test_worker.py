"""Tests for the worker pool and drain reporting."""
from __future__ import annotations

import threading

import pytest

from continuous_scraper.errors import HTTP5xxError, ParseFailedError
from continuous_scraper.models.queue import QueueStatus, ResultSummary
from continuous_scraper.pipeline import ProcessOutcome
from continuous_scraper.store.queue import WorkQueue
from continuous_scraper.worker import DrainReport, WorkerPool


class ScriptedPipeline:
    """Completes every entry except the URLs told to fail."""

    def __init__(self, queue: WorkQueue, failures: dict[str, Exception] | None = None) -> None:
        self.queue = queue
        self.failures = failures or {}
        self.seen: list[str] = []
        self._lock = threading.Lock()

    def process(self, entry) -> ProcessOutcome:
        with self._lock:
            self.seen.append(entry.url)
        error = self.failures.get(entry.url)
        if error is None:
            summary = ResultSummary(persons_found=1, documents_found=1)
            self.queue.complete(entry.id, summary)
            return ProcessOutcome(entry.id, QueueStatus.COMPLETED, summary)
        updated = self.queue.fail(entry, error)
        return ProcessOutcome(entry.id, updated.status, ResultSummary(), error)


class FakeFetcher:
    def __init__(self) -> None:
        self.released = 0
        self._lock = threading.Lock()

    def release_thread_resources(self) -> None:
        with self._lock:
            self.released += 1


@pytest.fixture()
def queue(db) -> WorkQueue:
    return WorkQueue(db, retry_delay_s=0)


class TestDrain:
    def test_drains_in_priority_order(self, queue):
        queue.submit("https://example.org/low", priority=0)
        queue.submit("https://example.org/high", priority=5)
        pipeline = ScriptedPipeline(queue)

        report = WorkerPool(queue=queue, pipeline=pipeline).drain()

        assert pipeline.seen == ["https://example.org/high", "https://example.org/low"]
        assert report.completed == 2
        assert not report.any_failed

    def test_retries_until_failed(self, queue):
        url = "https://example.org/flaky"
        entry = queue.submit(url)
        pipeline = ScriptedPipeline(queue, {url: HTTP5xxError(f"HTTP 500 from {url}", 500)})

        report = WorkerPool(queue=queue, pipeline=pipeline).drain()

        assert pipeline.seen == [url, url, url]
        assert report.final == {entry.id: QueueStatus.FAILED}
        assert (report.retried, report.failed) == (2, 1)
        assert report.any_failed

    def test_parallel_workers_claim_each_entry_once(self, queue):
        urls = [f"https://example.org/doc/{n}" for n in range(12)]
        queue.submit_many(urls)
        pipeline = ScriptedPipeline(queue)
        fetcher = FakeFetcher()

        report = WorkerPool(queue=queue, pipeline=pipeline, fetcher=fetcher, max_concurrent=4).drain()

        assert sorted(pipeline.seen) == sorted(urls)
        assert report.completed == 12
        assert fetcher.released == 4

    def test_stop_before_start_processes_nothing(self, queue):
        queue.submit("https://example.org/doc/1")
        pipeline = ScriptedPipeline(queue)
        pool = WorkerPool(queue=queue, pipeline=pipeline)
        pool.stop()

        report = pool.drain()

        assert report.processed == 0
        assert queue.pending_count() == 1

    def test_drain_reclaims_stale_entries(self, queue, clock):
        entry = queue.submit("https://example.org/doc/1")
        queue.claim()
        clock.advance(hours=2)
        pipeline = ScriptedPipeline(queue)

        report = WorkerPool(queue=queue, pipeline=pipeline, claim_timeout_s=3600).drain()

        assert report.final == {entry.id: QueueStatus.COMPLETED}


class TestDrainReport:
    def test_parked_entry_counts_as_failure(self):
        report = DrainReport()
        summary = ResultSummary()

        report.record(ProcessOutcome(1, QueueStatus.COMPLETED, summary))
        report.record(ProcessOutcome(2, QueueStatus.PENDING, summary, HTTP5xxError("HTTP 503", 503)))

        assert report.any_failed
        assert report.retried == 1

    def test_last_status_wins(self):
        report = DrainReport()
        summary = ResultSummary()

        report.record(ProcessOutcome(1, QueueStatus.PENDING, summary, HTTP5xxError("HTTP 503", 503)))
        report.record(ProcessOutcome(1, QueueStatus.COMPLETED, summary))
        report.record(ProcessOutcome(2, QueueStatus.FAILED, summary, ParseFailedError("no table")))

        assert report.final == {1: QueueStatus.COMPLETED, 2: QueueStatus.FAILED}
        assert report.processed == 3
