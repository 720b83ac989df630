from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path

from continuous_scraper.errors import ConfigError

DEFAULT_HOME = Path.home() / ".continuous_scraper"
DEFAULT_VISION_ENDPOINT = "https://vision.googleapis.com/v1/images:annotate"


def _f(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except ValueError:
        return default


def _i(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except ValueError:
        return default


def _b(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _s(name: str) -> str | None:
    raw = os.getenv(name)
    return raw.strip() if raw and raw.strip() else None


@dataclass(frozen=True)
class StorageConfig:
    """Archive object store. Local directory unless a bucket is configured."""

    bucket: str | None = None
    region: str | None = None
    key: str | None = None
    secret: str | None = None
    local_root: Path = DEFAULT_HOME / "archive"

    @property
    def uses_bucket(self) -> bool:
        return self.bucket is not None


@dataclass(frozen=True)
class Settings:
    db_url: str
    poll_interval: float = 30.0
    max_concurrent: int = 1
    delay_per_host_ms: int = 1500
    claim_timeout_min: int = 60
    retry_delay_s: float = 300.0

    # Fetcher
    fetch_timeout_s: float = 30.0
    max_bytes: int = 100 * 1024 * 1024
    interactive_login: bool = False
    login_timeout_s: float = 300.0
    cookie_dir: Path = DEFAULT_HOME / "cookies"

    # OCR
    ocr_primary_key: str | None = None
    ocr_primary_endpoint: str = DEFAULT_VISION_ENDPOINT
    ocr_timeout_s: float = 60.0
    primary_confidence_min: float = 0.80

    # Worker
    url_soft_cap_s: float = 600.0

    storage: StorageConfig = field(default_factory=StorageConfig)

    log_level: str = "INFO"
    log_format: str = "json"

    @property
    def delay_per_host(self) -> float:
        return self.delay_per_host_ms / 1000.0

    @property
    def claim_timeout_s(self) -> float:
        return self.claim_timeout_min * 60.0

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from environment variables.

        Raises:
            ConfigError: DB_URL is missing or a numeric setting is out of range
        """
        db_url = _s("DB_URL")
        if not db_url:
            raise ConfigError("DB_URL is required")

        home_archive = _s("ARCHIVE_DIR")
        storage = StorageConfig(
            bucket=_s("STORAGE_BUCKET"),
            region=_s("STORAGE_REGION"),
            key=_s("STORAGE_KEY"),
            secret=_s("STORAGE_SECRET"),
            local_root=Path(home_archive).expanduser() if home_archive else DEFAULT_HOME / "archive",
        )
        cookie_dir = _s("COOKIE_DIR")

        settings = cls(
            db_url=db_url,
            poll_interval=_f("POLL_INTERVAL", 30.0),
            max_concurrent=_i("MAX_CONCURRENT", 1),
            delay_per_host_ms=_i("DELAY_PER_HOST_MS", 1500),
            claim_timeout_min=_i("CLAIM_TIMEOUT_MIN", 60),
            retry_delay_s=_f("RETRY_DELAY_S", 300.0),
            fetch_timeout_s=_f("FETCH_TIMEOUT_S", 30.0),
            max_bytes=_i("MAX_BYTES", 100 * 1024 * 1024),
            interactive_login=_b("INTERACTIVE_LOGIN"),
            login_timeout_s=_f("LOGIN_TIMEOUT_S", 300.0),
            cookie_dir=Path(cookie_dir).expanduser() if cookie_dir else DEFAULT_HOME / "cookies",
            ocr_primary_key=_s("OCR_PRIMARY_KEY"),
            ocr_primary_endpoint=_s("OCR_PRIMARY_ENDPOINT") or DEFAULT_VISION_ENDPOINT,
            ocr_timeout_s=_f("OCR_TIMEOUT_S", 60.0),
            primary_confidence_min=_f("PRIMARY_CONFIDENCE_MIN", 0.80),
            url_soft_cap_s=_f("URL_SOFT_CAP_S", 600.0),
            storage=storage,
            log_level=(_s("LOG_LEVEL") or "INFO").upper(),
            log_format=(_s("LOG_FORMAT") or "json").lower(),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.max_concurrent < 1:
            raise ConfigError(f"MAX_CONCURRENT must be >= 1, got {self.max_concurrent}")
        if self.poll_interval < 0:
            raise ConfigError("POLL_INTERVAL must be non-negative")
        if self.delay_per_host_ms < 0:
            raise ConfigError("DELAY_PER_HOST_MS must be non-negative")
        if self.claim_timeout_min < 1:
            raise ConfigError("CLAIM_TIMEOUT_MIN must be >= 1")
        if not 0.0 <= self.primary_confidence_min <= 1.0:
            raise ConfigError("PRIMARY_CONFIDENCE_MIN must be within [0, 1]")
        if self.log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ConfigError(f"LOG_LEVEL {self.log_level!r} is not a valid level")
        if self.log_format not in {"json", "console"}:
            raise ConfigError("LOG_FORMAT must be 'json' or 'console'")
        if self.storage.uses_bucket and not self.storage.region:
            raise ConfigError("STORAGE_REGION is required when STORAGE_BUCKET is set")

    def with_overrides(self, **changes) -> Settings:
        return replace(self, **changes)
