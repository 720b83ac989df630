"""Tests for the command-line interface."""
from __future__ import annotations

import pytest
from conftest import add_canonical
from typer.testing import CliRunner

from continuous_scraper.cli import app
from continuous_scraper.fetch.cookies import FileCookieStore
from continuous_scraper.store.database import Database
from continuous_scraper.store.queue import WorkQueue

runner = CliRunner()
URL = "https://example.org/doc/1"


@pytest.fixture()
def env(monkeypatch, tmp_path):
    db_url = f"sqlite:///{tmp_path / 'cli.db'}"
    for name in ("STORAGE_BUCKET", "OCR_PRIMARY_KEY", "MAX_CONCURRENT", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DB_URL", db_url)
    monkeypatch.setenv("COOKIE_DIR", str(tmp_path / "cookies"))
    monkeypatch.setenv("ARCHIVE_DIR", str(tmp_path / "archive"))
    monkeypatch.setenv("LOG_FORMAT", "console")
    return db_url


@pytest.fixture()
def cli_db(env):
    db = Database(env)
    db.ensure_schema()
    yield db
    db.close()


class TestQueueCommands:
    def test_queue_then_status(self, env, cli_db):
        result = runner.invoke(app, ["queue", URL, "--category", "petition", "--priority", "5"])

        assert result.exit_code == 0, result.output
        assert "#1" in result.output
        entry = WorkQueue(cli_db).get(1)
        assert (entry.category, entry.priority) == ("petition", 5)

        status = runner.invoke(app, ["status", "--status", "pending"])
        assert status.exit_code == 0, status.output
        assert "pending" in status.output

    def test_requeue_unknown_entry(self, env, cli_db):
        result = runner.invoke(app, ["requeue", "99"])

        assert result.exit_code == 1
        assert "No queue entry 99" in result.output

    def test_requeue_pending_entry_refused(self, env, cli_db):
        WorkQueue(cli_db).submit(URL)

        result = runner.invoke(app, ["requeue", "1"])

        assert result.exit_code == 1
        assert "not terminal" in result.output

    def test_missing_db_url(self, env, monkeypatch):
        monkeypatch.delenv("DB_URL")

        result = runner.invoke(app, ["status"])

        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_unreachable_database(self, env, monkeypatch, tmp_path):
        # a directory cannot be opened as a database file
        monkeypatch.setenv("DB_URL", f"sqlite:///{tmp_path}")

        result = runner.invoke(app, ["status"])

        assert result.exit_code == 2


class TestIdentityCommands:
    def test_search(self, env, cli_db):
        add_canonical(cli_db, "Elizabeth Carter", primary_state="Virginia")

        found = runner.invoke(app, ["search", "Elizabeth Karter"])
        missing = runner.invoke(app, ["search", "Moses Hall"])

        assert found.exit_code == 0, found.output
        assert "Elizabeth Carter" in found.output
        assert "No persons found" in missing.output

    def test_review_list_empty(self, env, cli_db):
        result = runner.invoke(app, ["review", "list"])

        assert result.exit_code == 0, result.output
        assert "No pending review items" in result.output

    def test_review_resolve_unknown_item(self, env, cli_db):
        result = runner.invoke(app, ["review", "resolve", "7", "--as", "not_a_person"])

        assert result.exit_code == 1

    def test_climb_needs_a_start(self, env):
        result = runner.invoke(app, ["climb"])

        assert result.exit_code == 1


class TestSessionCommands:
    def test_logout(self, env, tmp_path):
        FileCookieStore(tmp_path / "cookies").save("familysearch", [{"name": "sid", "value": "abc"}])

        first = runner.invoke(app, ["logout", "familysearch"])
        second = runner.invoke(app, ["logout", "familysearch"])

        assert "Cleared cookies for familysearch" in first.output
        assert "No saved cookies" in second.output

    def test_login_unknown_category(self, env):
        result = runner.invoke(app, ["login", "nowhere"])

        assert result.exit_code == 1
        assert "No login page known" in result.output
