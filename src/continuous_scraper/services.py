"""Service container: everything a worker needs, built once from ``Settings``.

Open on startup, close on shutdown. Nothing here is module-level state;
tests build a container with fakes swapped in through the keyword overrides.
"""
from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import httpx
import structlog

from continuous_scraper.classify.classifier import RoleClassifier
from continuous_scraper.config import Settings
from continuous_scraper.fetch.cookies import CookieStore, FileCookieStore
from continuous_scraper.fetch.fetcher import Fetcher
from continuous_scraper.fetch.headless import HeadlessConfig, PlaywrightRenderer, Renderer
from continuous_scraper.fetch.login import InteractiveLogin
from continuous_scraper.fetch.storage import ObjectStore, build_object_store
from continuous_scraper.net import HostRateLimiter
from continuous_scraper.ocr.engines import CloudVisionOCR, OCREngine, TesseractOCR
from continuous_scraper.ocr.router import OCRRouter
from continuous_scraper.parsers import build_registry
from continuous_scraper.parsers.base import ParserRegistry
from continuous_scraper.pipeline import Pipeline
from continuous_scraper.resolve.resolver import IdentityResolver
from continuous_scraper.store.archive import ArchiveStore
from continuous_scraper.store.climb import ClimbStore
from continuous_scraper.store.database import Database
from continuous_scraper.store.persons import PersonStore
from continuous_scraper.store.queue import WorkQueue

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    settings: Settings
    db: Database
    queue: WorkQueue
    persons: PersonStore
    archive: ArchiveStore
    climbs: ClimbStore
    resolver: IdentityResolver
    rate_limiter: HostRateLimiter
    cookie_store: CookieStore
    object_store: ObjectStore
    fetcher: Fetcher
    ocr: OCRRouter
    parsers: ParserRegistry
    classifier: RoleClassifier = field(default_factory=RoleClassifier)

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        db: Database | None = None,
        cookie_store: CookieStore | None = None,
        object_store: ObjectStore | None = None,
        renderer_factory: Callable[[], Renderer] | None | bool = True,
        transport: httpx.BaseTransport | None = None,
        ocr_primary: OCREngine | None | bool = True,
        ocr_fallback: OCREngine | None | bool = True,
        sleep: Callable[[float], None] | None = None,
    ) -> Services:
        """Wire the production services; ``True`` means "use the default adapter"."""
        db = db or Database(settings.db_url)
        archive = ArchiveStore(db)
        rate_limiter = HostRateLimiter(settings.delay_per_host, sleep=sleep or time.sleep)
        cookie_store = cookie_store or FileCookieStore(settings.cookie_dir)
        object_store = object_store or build_object_store(settings.storage)

        if renderer_factory is True:
            config = HeadlessConfig(timeout_ms=int(settings.fetch_timeout_s * 1000))
            renderer_factory = lambda: PlaywrightRenderer(config)  # noqa: E731
        fetcher = Fetcher(
            rate_limiter=rate_limiter,
            cookie_store=cookie_store,
            object_store=object_store,
            archive=archive,
            renderer_factory=renderer_factory or None,
            timeout_s=settings.fetch_timeout_s,
            max_bytes=settings.max_bytes,
            transport=transport,
            login=InteractiveLogin(
                cookie_store,
                enabled=settings.interactive_login,
                timeout_s=settings.login_timeout_s,
            ),
        )

        if ocr_primary is True:
            ocr_primary = (
                CloudVisionOCR(settings.ocr_primary_key, settings.ocr_primary_endpoint, settings.ocr_timeout_s)
                if settings.ocr_primary_key
                else None
            )
        if ocr_fallback is True:
            ocr_fallback = TesseractOCR()
        ocr = OCRRouter(ocr_primary or None, ocr_fallback or None, settings.primary_confidence_min)

        return cls(
            settings=settings,
            db=db,
            queue=WorkQueue(db, retry_delay_s=settings.retry_delay_s),
            persons=PersonStore(db),
            archive=archive,
            climbs=ClimbStore(db),
            resolver=IdentityResolver(db),
            rate_limiter=rate_limiter,
            cookie_store=cookie_store,
            object_store=object_store,
            fetcher=fetcher,
            ocr=ocr,
            parsers=build_registry(),
        )

    def pipeline(self, shutdown: threading.Event | None = None) -> Pipeline:
        return Pipeline(
            db=self.db,
            queue=self.queue,
            fetcher=self.fetcher,
            ocr=self.ocr,
            parsers=self.parsers,
            classifier=self.classifier,
            resolver=self.resolver,
            archive=self.archive,
            shutdown=shutdown,
        )

    def login(self) -> InteractiveLogin:
        return InteractiveLogin(
            self.cookie_store,
            enabled=self.settings.interactive_login,
            timeout_s=self.settings.login_timeout_s,
        )

    def open(self) -> Services:
        """Check the store is reachable and its tables exist.

        Raises:
            DatabaseUnavailable: the store cannot be opened
        """
        self.db.ping()
        self.db.ensure_schema()
        logger.info(
            "services.opened",
            max_concurrent=self.settings.max_concurrent,
            ocr_primary=self.ocr.primary is not None,
            storage="bucket" if self.settings.storage.uses_bucket else "local",
        )
        return self

    def close(self) -> None:
        self.fetcher.close()
        self.db.close()
        logger.info("services.closed")

    def __enter__(self) -> Services:
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False
