"""
Tests for CLI commands.
"""

from contextlib import contextmanager

import pytest
from typer.testing import CliRunner

from buildlens.cli import app
from buildlens.models.db import MessageKind
from buildlens.sync import SyncOutcome, SyncResult

# Disable Rich formatting in tests using NO_COLOR environment variable
runner = CliRunner(env={"NO_COLOR": "1", "TERM": "dumb"})


@pytest.fixture
def cli_session(db_session, monkeypatch):
    """Route the CLI's db_session() to the test session."""

    @contextmanager
    def fake_db_session():
        yield db_session
        db_session.flush()

    monkeypatch.setattr("buildlens.db.connection.db_session", fake_db_session)
    return db_session


def fake_orchestrator(result: SyncResult):
    class FakeOrchestrator:
        def __init__(self, client, **kwargs):
            self.kwargs = kwargs

        def tick(self):
            return result

    return FakeOrchestrator


class TestSyncCommand:
    def test_purged(self, monkeypatch):
        result = SyncResult(
            SyncOutcome.PURGED,
            upstream_jobs=3,
            local_jobs=4,
            stale_jobs={"old-job"},
            deleted_messages=12,
        )
        monkeypatch.setattr("buildlens.sync.SyncOrchestrator", fake_orchestrator(result))

        outcome = runner.invoke(app, ["sync"])

        assert outcome.exit_code == 0
        assert "Purged 1 jobs (12 messages)" in outcome.stdout

    def test_nothing_to_delete(self, monkeypatch):
        result = SyncResult(SyncOutcome.NOTHING_TO_DELETE, upstream_jobs=2, local_jobs=2)
        monkeypatch.setattr("buildlens.sync.SyncOrchestrator", fake_orchestrator(result))

        outcome = runner.invoke(app, ["sync"])

        assert outcome.exit_code == 0
        assert "Nothing to delete" in outcome.stdout

    def test_no_upstream_fails(self, monkeypatch):
        result = SyncResult(SyncOutcome.NO_UPSTREAM)
        monkeypatch.setattr("buildlens.sync.SyncOrchestrator", fake_orchestrator(result))

        outcome = runner.invoke(app, ["sync"])

        assert outcome.exit_code == 1
        assert "sync skipped" in outcome.stdout

    def test_refused_fails(self, monkeypatch):
        result = SyncResult(
            SyncOutcome.REFUSED, upstream_jobs=1, local_jobs=4, stale_jobs={"a", "b", "c"}
        )
        monkeypatch.setattr("buildlens.sync.SyncOrchestrator", fake_orchestrator(result))

        outcome = runner.invoke(app, ["sync", "--max-delete-ratio", "10"])

        assert outcome.exit_code == 1
        assert "Refusing to purge 3 of 4 jobs" in outcome.stdout


class TestTrimCommand:
    def test_trim_all(self, cli_session, add_message):
        for i in range(4):
            add_message("job-a", 1, {"i": i}, kind=MessageKind.USER, minutes_ago=10 - i)

        outcome = runner.invoke(app, ["trim", "--keep", "1"])

        assert outcome.exit_code == 0
        assert "Trimmed 1 conversations, deleted 3 messages" in outcome.stdout

    def test_trim_one_conversation(self, cli_session, add_message):
        for job in ("job-a", "job-b"):
            for i in range(3):
                add_message(job, 1, {"i": i}, kind=MessageKind.USER, minutes_ago=10 - i)

        outcome = runner.invoke(app, ["trim", "--keep", "2", "--conversation", "job-b"])

        assert outcome.exit_code == 0
        assert "deleted 1 messages" in outcome.stdout

    def test_invalid_keep(self, cli_session):
        outcome = runner.invoke(app, ["trim", "--keep", "0"])

        assert outcome.exit_code == 1
        assert "keep must be a positive integer" in outcome.stdout


class TestPurgeCommand:
    def test_purge_with_confirmation_flag(self, cli_session, add_message):
        add_message("job-a", 1, {})
        add_message("job-a", 2, {})
        add_message("job-b", 1, {})

        outcome = runner.invoke(app, ["purge", "job-a", "--yes"])

        assert outcome.exit_code == 0
        assert "Deleted 2 messages of 1 jobs" in outcome.stdout

    def test_purge_aborted(self, cli_session, add_message):
        add_message("job-a", 1, {})

        outcome = runner.invoke(app, ["purge", "job-a"], input="n\n")

        assert outcome.exit_code == 1


class TestRefreshViewsCommand:
    def test_refresh_without_jenkins(self, cli_session, add_message):
        add_message("job-a", 1, {"anomalies": [{"severity": "LOW"}]})

        outcome = runner.invoke(app, ["refresh-views", "--no-with-jenkins"])

        assert outcome.exit_code == 0
        assert "build_anomaly_summary: 1" in outcome.stdout
        assert "Views refreshed" in outcome.stdout


def test_serve_runs_uvicorn(monkeypatch):
    calls = {}

    def fake_run(app_path, **kwargs):
        calls["app"] = app_path
        calls.update(kwargs)

    monkeypatch.setattr("uvicorn.run", fake_run)

    outcome = runner.invoke(app, ["serve", "--port", "9000"])

    assert outcome.exit_code == 0
    assert calls["app"] == "buildlens.api.app:app"
    assert calls["port"] == 9000
    assert calls["reload"] is False


def test_help_lists_commands():
    outcome = runner.invoke(app, ["--help"])

    assert outcome.exit_code == 0
    for command in ("sync", "trim", "purge", "refresh-views", "serve"):
        assert command in outcome.stdout
