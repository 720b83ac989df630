"""Worker loop: ``MAX_CONCURRENT`` threads draining the work queue.

Each worker is sequential: claim, run the pipeline, record the transition,
repeat. A shutdown flag is checked between entries only, so an entry in
flight always finishes its transaction. A sweeper returns entries stuck in
``processing`` past the claim timeout to ``pending``.
"""
from __future__ import annotations

import signal
import threading
from dataclasses import dataclass, field

import structlog
from structlog.contextvars import bound_contextvars

from continuous_scraper.errors import ScraperError
from continuous_scraper.fetch.fetcher import Fetcher
from continuous_scraper.models.queue import QueueEntry, QueueStatus
from continuous_scraper.pipeline import Pipeline, ProcessOutcome
from continuous_scraper.store.queue import WorkQueue

logger = structlog.get_logger(__name__)


@dataclass
class DrainReport:
    processed: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0
    # last status seen per entry
    final: dict[int, QueueStatus] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record(self, outcome: ProcessOutcome) -> None:
        with self._lock:
            self.processed += 1
            self.final[outcome.entry_id] = outcome.status
            if outcome.status is QueueStatus.COMPLETED:
                self.completed += 1
            elif outcome.status is QueueStatus.FAILED:
                self.failed += 1
            else:
                self.retried += 1

    @property
    def any_failed(self) -> bool:
        """An entry ended anywhere but ``completed`` (failed, or parked for a later retry)."""
        return any(s is not QueueStatus.COMPLETED for s in self.final.values())


class WorkerPool:
    def __init__(
        self,
        *,
        queue: WorkQueue,
        pipeline: Pipeline,
        fetcher: Fetcher | None = None,
        max_concurrent: int = 1,
        poll_interval: float = 30.0,
        claim_timeout_s: float = 3600.0,
        soft_cap_s: float = 600.0,
        sweep_interval: float | None = None,
        shutdown: threading.Event | None = None,
    ) -> None:
        self.queue = queue
        self.pipeline = pipeline
        self.fetcher = fetcher
        self.max_concurrent = max(1, max_concurrent)
        self.poll_interval = poll_interval
        self.claim_timeout_s = claim_timeout_s
        self.soft_cap_s = soft_cap_s
        self.sweep_interval = sweep_interval or min(60.0, claim_timeout_s / 4)
        self.shutdown = shutdown or threading.Event()
        self.report = DrainReport()

    # ------------------------------ Control ---------------------------

    def install_signal_handlers(self) -> None:
        """SIGINT/SIGTERM finish the current entries, then stop. Main thread only."""

        def _handle(signum, _frame):
            logger.info("worker.shutdown_requested", signal=signal.Signals(signum).name)
            self.shutdown.set()

        signal.signal(signal.SIGINT, _handle)
        signal.signal(signal.SIGTERM, _handle)

    def stop(self) -> None:
        self.shutdown.set()

    def run(self) -> DrainReport:
        """Work until shutdown is requested."""
        return self._start(drain=False)

    def drain(self) -> DrainReport:
        """Process every ready entry, then return."""
        return self._start(drain=True)

    # ------------------------------ Internals -------------------------

    def _start(self, *, drain: bool) -> DrainReport:
        self.report = DrainReport()
        self._sweep()
        threads = [
            threading.Thread(target=self._loop, args=(n, drain), name=f"worker-{n}", daemon=True)
            for n in range(self.max_concurrent)
        ]
        sweeper = None
        if not drain:
            sweeper = threading.Thread(target=self._sweep_loop, name="sweeper", daemon=True)
            sweeper.start()
        logger.info("worker.pool_started", workers=len(threads), drain=drain)
        for t in threads:
            t.start()
        for t in threads:
            # join with a timeout so the main thread keeps receiving signals
            while t.is_alive():
                t.join(timeout=0.5)
        if sweeper is not None:
            self.shutdown.set()
            sweeper.join(timeout=5)
        logger.info(
            "worker.pool_stopped",
            processed=self.report.processed,
            completed=self.report.completed,
            retried=self.report.retried,
            failed=self.report.failed,
        )
        return self.report

    def _sweep(self) -> None:
        try:
            self.queue.reclaim_stale(self.claim_timeout_s)
        except ScraperError as exc:
            logger.warning("worker.sweep_failed", error=exc.describe())

    def _sweep_loop(self) -> None:
        while not self.shutdown.wait(self.sweep_interval):
            self._sweep()

    def _loop(self, n: int, drain: bool) -> None:
        log = logger.bind(worker=n)
        try:
            while not self.shutdown.is_set():
                try:
                    entry = self.queue.claim()
                except ScraperError as exc:
                    log.warning("worker.claim_failed", error=exc.describe())
                    if drain:
                        return
                    self.shutdown.wait(self.poll_interval)
                    continue
                if entry is None:
                    if drain:
                        return
                    self.shutdown.wait(self.poll_interval)
                    continue
                self._process(n, entry)
        finally:
            if self.fetcher is not None:
                self.fetcher.release_thread_resources()
            log.debug("worker.exited")

    def _process(self, n: int, entry: QueueEntry) -> None:
        with bound_contextvars(worker=n, entry_id=entry.id, url=entry.url):
            timer = threading.Timer(
                self.soft_cap_s,
                logger.warning,
                args=("worker.entry_slow",),
                kwargs={"worker": n, "entry_id": entry.id, "url": entry.url, "soft_cap_s": self.soft_cap_s},
            )
            timer.daemon = True
            timer.start()
            try:
                outcome = self.pipeline.process(entry)
            finally:
                timer.cancel()
        self.report.record(outcome)
