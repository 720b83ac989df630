"""Tests for environment-driven settings."""
from __future__ import annotations

import pytest

from continuous_scraper.config import Settings
from continuous_scraper.errors import ConfigError

_VARS = (
    "DB_URL", "POLL_INTERVAL", "MAX_CONCURRENT", "DELAY_PER_HOST_MS", "CLAIM_TIMEOUT_MIN",
    "RETRY_DELAY_S", "OCR_PRIMARY_KEY", "PRIMARY_CONFIDENCE_MIN", "STORAGE_BUCKET",
    "STORAGE_REGION", "LOG_LEVEL", "LOG_FORMAT", "INTERACTIVE_LOGIN", "COOKIE_DIR", "ARCHIVE_DIR",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)


class TestSettings:
    def test_db_url_is_required(self):
        with pytest.raises(ConfigError):
            Settings.from_env()

    def test_defaults(self, monkeypatch):
        monkeypatch.setenv("DB_URL", "sqlite:///scraper.db")

        s = Settings.from_env()

        assert s.poll_interval == 30.0
        assert s.max_concurrent == 1
        assert s.delay_per_host == pytest.approx(1.5)
        assert s.claim_timeout_s == 3600.0
        assert s.primary_confidence_min == pytest.approx(0.80)
        assert s.ocr_primary_key is None
        assert not s.interactive_login
        assert not s.storage.uses_bucket

    def test_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DB_URL", "sqlite:///scraper.db")
        monkeypatch.setenv("MAX_CONCURRENT", "4")
        monkeypatch.setenv("DELAY_PER_HOST_MS", "250")
        monkeypatch.setenv("INTERACTIVE_LOGIN", "yes")
        monkeypatch.setenv("COOKIE_DIR", str(tmp_path / "jar"))
        monkeypatch.setenv("LOG_LEVEL", "debug")

        s = Settings.from_env()

        assert s.max_concurrent == 4
        assert s.delay_per_host == pytest.approx(0.25)
        assert s.interactive_login
        assert s.cookie_dir == tmp_path / "jar"
        assert s.log_level == "DEBUG"

    @pytest.mark.parametrize(
        ("name", "value"),
        [("MAX_CONCURRENT", "0"), ("PRIMARY_CONFIDENCE_MIN", "1.5"), ("LOG_FORMAT", "xml"), ("STORAGE_BUCKET", "b")],
    )
    def test_invalid_values(self, monkeypatch, name, value):
        monkeypatch.setenv("DB_URL", "sqlite:///scraper.db")
        monkeypatch.setenv(name, value)

        with pytest.raises(ConfigError):
            Settings.from_env()
