"""Failure taxonomy shared by the fetcher, OCR router, parsers and worker loop.

Every error carries ``retryable`` so the worker can decide between the retry
path and the ``failed`` terminal state without inspecting the exception type.
"""
from __future__ import annotations

import sqlite3


class ScraperError(Exception):
    """Base exception for pipeline failures."""

    kind: str = "error"
    retryable: bool = False
    # None means "retry until maxRetries"; N means "retry at most N times"
    retry_limit: int | None = None

    def __init__(
        self,
        message: str,
        *,
        retryable: bool | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable
        # None means "use the queue default delay"
        self.retry_after = retry_after

    def is_retryable(self, attempts_so_far: int) -> bool:
        """Whether another attempt is allowed after ``attempts_so_far`` retries."""
        if not self.retryable:
            return False
        if self.retry_limit is not None and attempts_so_far >= self.retry_limit:
            return False
        return True

    def describe(self) -> str:
        return f"{self.kind}: {self.message}"


# =============================================================================
# Fetch errors
# =============================================================================


class TransportError(ScraperError):
    """Timeout, connection reset, DNS failure or TLS failure."""

    kind = "transport"
    retryable = True

    def __init__(self, message: str, *, kind: str = "transport", **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.kind = kind
        if kind == "ssl_error":
            self.retry_limit = 1


class HTTPStatusError(ScraperError):
    """Base for non-2xx responses."""

    def __init__(self, message: str, status_code: int, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.status_code = status_code


class HTTP4xxError(HTTPStatusError):
    kind = "http_4xx"

    def __init__(self, message: str, status_code: int, **kwargs) -> None:
        kwargs.setdefault("retryable", status_code in (408, 429))
        super().__init__(message, status_code, **kwargs)


class HTTP5xxError(HTTPStatusError):
    kind = "http_5xx"
    retryable = True


class BlockedError(HTTPStatusError):
    """403/429 from the origin; back off exponentially starting at 30 s."""

    kind = "blocked"
    retryable = True
    base_delay = 30.0

    def __init__(self, message: str, status_code: int, *, retry_count: int = 0, **kwargs) -> None:
        kwargs.setdefault("retry_after", self.base_delay * (2 ** max(0, retry_count)))
        super().__init__(message, status_code, **kwargs)


class ContentTooLarge(ScraperError):
    kind = "too_large"
    retryable = False


# =============================================================================
# Extraction errors
# =============================================================================


class OCRFailedError(ScraperError):
    """Both the primary and the fallback OCR engine failed."""

    kind = "ocr_failed"
    retryable = True
    retry_limit = 1


class ParseFailedError(ScraperError):
    """Content does not have the shape the parser expects."""

    kind = "parse_failed"
    retryable = False


class ValidationError(ScraperError):
    """A candidate name was rejected by the name-validity filter.

    Only ever logged; never raised to queue level.
    """

    kind = "validation"
    retryable = False

    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"{name!r} rejected: {reason}")
        self.name = name
        self.reason = reason


# =============================================================================
# Store errors
# =============================================================================


class DBTransientError(ScraperError):
    kind = "db_transient"
    retryable = True


class DBFatalError(ScraperError):
    kind = "db_fatal"
    retryable = False


class DatabaseUnavailable(ScraperError):
    """The relational store cannot be opened at all."""

    kind = "db_unavailable"
    retryable = False


class ReviewError(ScraperError):
    """A review resolution could not be applied."""

    kind = "review"
    retryable = False


class ConfigError(ScraperError):
    kind = "config"
    retryable = False


class ShutdownRequested(ScraperError):
    """Raised between pipeline stages once the worker pool is stopping."""

    kind = "shutdown"
    retryable = False


def classify_db_error(exc: sqlite3.Error) -> ScraperError:
    """Map a sqlite3 exception onto the transient/fatal split."""
    if isinstance(exc, sqlite3.IntegrityError):
        return DBFatalError(str(exc))
    if isinstance(exc, sqlite3.OperationalError):
        msg = str(exc).lower()
        if "locked" in msg or "busy" in msg:
            return DBTransientError(str(exc))
    return DBFatalError(str(exc))
