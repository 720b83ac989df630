"""Per-URL extraction pipeline: fetch, OCR, parse, classify, resolve, commit.

Stages run strictly in order for one queue entry. Everything the entry
writes (snapshot row, identities, relationships, terminal queue state)
lands in a single transaction; any failure rolls it back and sends the
entry down the retry path.
"""
from __future__ import annotations

import sqlite3
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from continuous_scraper.classify.classifier import RoleClassifier
from continuous_scraper.errors import ParseFailedError, ScraperError, ShutdownRequested
from continuous_scraper.fetch.fetcher import Fetcher
from continuous_scraper.models.mentions import ExtractedMention, TabularRow
from continuous_scraper.models.queue import QueueEntry, QueueStatus, ResultSummary
from continuous_scraper.ocr.router import OCRRouter
from continuous_scraper.parsers.base import FetchedPage, ParserRegistry
from continuous_scraper.resolve.resolver import BatchResult, IdentityResolver, ResolveAction, ResolveRequest
from continuous_scraper.store.archive import ArchiveStore
from continuous_scraper.store.database import Database
from continuous_scraper.store.queue import WorkQueue

logger = structlog.get_logger(__name__)


@dataclass
class ProcessOutcome:
    entry_id: int
    status: QueueStatus
    summary: ResultSummary
    error: ScraperError | None = None

    @property
    def ok(self) -> bool:
        return self.status is QueueStatus.COMPLETED


def documents_found(mentions: Sequence[ExtractedMention]) -> int:
    """Tabular rows count one document each; any other page counts once."""
    rows = sum(1 for m in mentions if isinstance(m.shape, TabularRow))
    return rows or 1


def persons_found(batch: BatchResult) -> int:
    return sum(1 for r in batch.results if r.action is not ResolveAction.FAILED)


class Pipeline:
    def __init__(
        self,
        *,
        db: Database,
        queue: WorkQueue,
        fetcher: Fetcher,
        ocr: OCRRouter,
        parsers: ParserRegistry,
        classifier: RoleClassifier,
        resolver: IdentityResolver,
        archive: ArchiveStore,
        monotonic: Callable[[], float] = time.monotonic,
        shutdown: threading.Event | None = None,
    ) -> None:
        self.db = db
        self.queue = queue
        self.fetcher = fetcher
        self.ocr = ocr
        self.parsers = parsers
        self.classifier = classifier
        self.resolver = resolver
        self.archive = archive
        self._monotonic = monotonic
        self.shutdown = shutdown or threading.Event()

    def process(self, entry: QueueEntry) -> ProcessOutcome:
        """Run one claimed entry to its next state; never raises ``ScraperError``."""
        started = self._monotonic()
        log = logger.bind(entry_id=entry.id, url=entry.url, category=entry.category)
        mentions: list[ExtractedMention] = []

        try:
            fetched = self.fetcher.fetch(
                entry.url,
                entry.category,
                mode=entry.fetch_mode,
                retry_count=entry.retry_count,
            )
            self._checkpoint("fetch")
            ocr = self.ocr.extract(fetched.body, fetched.content_type)
            log.debug(
                "pipeline.ocr_done",
                service=ocr.service.value,
                confidence=ocr.confidence,
                document_type=ocr.document_type.value,
            )

            page = FetchedPage(
                url=entry.url,
                category=entry.category,
                body=fetched.body,
                content_type=fetched.content_type,
                final_url=fetched.final_url,
            )
            mentions = self._parse(page, ocr, {"final_url": fetched.final_url, "title": page.title})
            classified = self.classifier.classify(mentions, ocr.text)
            requests = [ResolveRequest.from_classified(c) for c in classified if c.accepted]
            self._checkpoint("classify")

            with self.db.transaction() as conn:
                if fetched.snapshot is not None:
                    self.archive.record_snapshot(conn, fetched.snapshot)
                batch = self.resolver.resolve_many(conn, requests)
                linked = self._link_relationships(conn, requests, batch)
                summary = self._summary(mentions, batch, started)
                self.queue.complete(entry.id, summary, conn=conn)
        except ShutdownRequested as stop:
            log.info("pipeline.interrupted", stage=stop.message)
            try:
                self.queue.release(entry.id)
            except ScraperError as release_err:
                log.error("pipeline.release_failed", error=release_err.describe())
            return ProcessOutcome(entry.id, QueueStatus.PENDING, self._summary(mentions, None, started), stop)
        except ScraperError as err:
            return self._fail(entry, err, mentions, started, log)
        except Exception as exc:
            log.exception("pipeline.unexpected_error")
            return self._fail(entry, ScraperError(repr(exc), retryable=False), mentions, started, log)

        log.info(
            "pipeline.entry_done",
            mentions=len(mentions),
            accepted=len(requests),
            rejected=sum(1 for c in classified if not c.accepted),
            relationships=linked,
            **batch.counts,
        )
        return ProcessOutcome(entry.id, QueueStatus.COMPLETED, summary)

    def _checkpoint(self, stage: str) -> None:
        if self.shutdown.is_set():
            raise ShutdownRequested(stage)

    def _parse(self, page: FetchedPage, ocr, metadata: dict[str, Any]) -> list[ExtractedMention]:
        parser = self.parsers.get(page.category)
        try:
            return parser(page, ocr, metadata)
        except ScraperError:
            raise
        except Exception as exc:
            raise ParseFailedError(f"{type(exc).__name__}: {exc}") from exc

    def _link_relationships(
        self,
        conn: sqlite3.Connection,
        requests: Sequence[ResolveRequest],
        batch: BatchResult,
    ) -> int:
        """Relationships whose two endpoints both resolved to canonicals."""
        ids: dict[str, int] = {}
        for req, result in zip(requests, batch.results):
            if result.canonical_id is not None:
                ids.setdefault(req.name.lower(), result.canonical_id)

        created = 0
        for req, result in zip(requests, batch.results):
            if result.canonical_id is None:
                continue
            for hint in req.relationship_hints:
                other = ids.get(" ".join(hint.related_to.split()).lower())
                if other is None:
                    continue
                if self.resolver.store.add_relationship(
                    conn, result.canonical_id, other, hint.type, req.source_url, req.confidence
                ):
                    created += 1
        return created

    def _summary(self, mentions: Sequence[ExtractedMention], batch: BatchResult | None, started: float) -> ResultSummary:
        return ResultSummary(
            persons_found=persons_found(batch) if batch is not None else 0,
            documents_found=documents_found(mentions) if (mentions or batch is not None) else 0,
            duration_seconds=round(self._monotonic() - started, 3),
        )

    def _fail(self, entry: QueueEntry, err: ScraperError, mentions, started: float, log) -> ProcessOutcome:
        summary = self._summary(mentions, None, started)
        log.warning("pipeline.entry_failed", error=err.describe(), retryable=err.retryable)
        try:
            updated = self.queue.fail(entry, err, summary)
        except ScraperError as record_err:
            # entry was reclaimed or the store went away; the stale sweep recovers it
            log.error("pipeline.fail_not_recorded", error=record_err.describe())
            return ProcessOutcome(entry.id, QueueStatus.PROCESSING, summary, err)
        return ProcessOutcome(entry.id, updated.status, summary, err)
