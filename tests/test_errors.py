"""Tests for the failure taxonomy, status mapping and per-host spacing."""
from __future__ import annotations

import sqlite3

import pytest

from continuous_scraper.errors import (
    BlockedError,
    ContentTooLarge,
    DBFatalError,
    DBTransientError,
    HTTP4xxError,
    HTTP5xxError,
    TransportError,
    classify_db_error,
)
from continuous_scraper.fetch.headless import raise_for_status
from continuous_scraper.net import HostRateLimiter, host_of


class TestErrorTaxonomy:
    def test_blocked_backoff_doubles(self):
        assert BlockedError("x", 403).retry_after == 30
        assert BlockedError("x", 429, retry_count=2).retry_after == 120

    def test_retryability(self):
        assert HTTP5xxError("x", 502).retryable
        assert not HTTP4xxError("x", 404).retryable
        assert HTTP4xxError("x", 408).retryable
        assert not ContentTooLarge("x").retryable
        assert TransportError("reset").retryable

    def test_ssl_errors_retry_once(self):
        err = TransportError("bad cert", kind="ssl_error")

        assert err.is_retryable(0)
        assert not err.is_retryable(1)

    def test_describe(self):
        assert TransportError("slow", kind="timeout").describe() == "timeout: slow"

    @pytest.mark.parametrize(
        ("status", "expected"),
        [(403, BlockedError), (429, BlockedError), (404, HTTP4xxError), (500, HTTP5xxError), (503, HTTP5xxError)],
    )
    def test_status_mapping(self, status, expected):
        with pytest.raises(expected) as info:
            raise_for_status(status, "https://example.org/")
        assert info.value.status_code == status

    def test_success_statuses_pass(self):
        raise_for_status(200, "https://example.org/")
        raise_for_status(304, "https://example.org/")

    def test_db_error_split(self):
        assert isinstance(classify_db_error(sqlite3.OperationalError("database is locked")), DBTransientError)
        assert isinstance(classify_db_error(sqlite3.IntegrityError("UNIQUE constraint failed")), DBFatalError)
        assert isinstance(classify_db_error(sqlite3.OperationalError("no such table: x")), DBFatalError)


class TestHostRateLimiter:
    """Spacing is per host and blocks rather than drops."""

    @pytest.fixture()
    def fake_time(self):
        now = [0.0]
        sleeps: list[float] = []

        def sleep(seconds: float) -> None:
            sleeps.append(seconds)
            now[0] += seconds

        return now, sleeps, sleep

    def test_same_host_is_spaced(self, fake_time):
        now, sleeps, sleep = fake_time
        limiter = HostRateLimiter(1.5, clock=lambda: now[0], sleep=sleep)

        assert limiter.acquire("https://example.org/1") == 0
        assert limiter.acquire("https://EXAMPLE.org/2") == pytest.approx(1.5)
        assert sleeps == [pytest.approx(1.5)]

    def test_other_hosts_do_not_wait(self, fake_time):
        now, sleeps, sleep = fake_time
        limiter = HostRateLimiter(1.5, clock=lambda: now[0], sleep=sleep)

        limiter.acquire("https://example.org/1")
        assert limiter.acquire("https://archive.org/1") == 0
        assert sleeps == []

    def test_spacing_elapsed_means_no_wait(self, fake_time):
        now, sleeps, sleep = fake_time
        limiter = HostRateLimiter(1.5, clock=lambda: now[0], sleep=sleep)

        limiter.acquire("https://example.org/1")
        now[0] += 5
        assert limiter.acquire("https://example.org/2") == 0

    def test_host_of(self):
        assert host_of("https://WWW.Example.org:8443/path?q=1") == "www.example.org"
