"""Tests for the sync orchestrator."""

import threading
from unittest.mock import Mock

import pytest

from buildlens.exceptions import UpstreamUnavailableError
from buildlens.jenkins.client import JenkinsJob
from buildlens.models.db import MessageKind
from buildlens.sync import SyncOrchestrator, SyncOutcome, SyncState


class FakeJenkins:
    def __init__(self, names=(), error=None):
        self.names = list(names)
        self.error = error
        self.folders = []

    def fetch_jobs(self, folder=None):
        self.folders.append(folder)
        if self.error is not None:
            raise self.error
        return [JenkinsJob(name, "blue") for name in self.names]


@pytest.fixture
def local_jobs(add_message):
    for job in ("job-a", "job-b", "job-c", "job-d"):
        for build in (1, 2):
            add_message(job, build, {"anomalies": []}, kind=MessageKind.ASSISTANT)


def remaining(db_session):
    from buildlens.db.repositories.chat_message import ChatMessageRepository

    return ChatMessageRepository(db_session).distinct_conversation_ids()


class TestReconcile:
    def test_purges_jobs_missing_upstream(self, session_factory, db_session, local_jobs):
        snapshot = Mock()
        client = FakeJenkins(["job-a", "job-b", "job-c", "new-job"])
        orchestrator = SyncOrchestrator(
            client, session_factory=session_factory, snapshot=snapshot, folder="team"
        )

        result = orchestrator.tick()

        assert result.outcome == SyncOutcome.PURGED
        assert result.stale_jobs == {"job-d"}
        assert result.deleted_messages == 2
        assert (result.upstream_jobs, result.local_jobs) == (4, 4)
        assert remaining(db_session) == {"job-a", "job-b", "job-c"}
        assert client.folders == ["team"]
        snapshot.invalidate.assert_called_once()
        assert orchestrator.last_result is result

    def test_nothing_to_delete(self, session_factory, db_session, local_jobs):
        client = FakeJenkins(["job-a", "job-b", "job-c", "job-d", "job-e"])

        result = SyncOrchestrator(client, session_factory=session_factory).tick()

        assert result.outcome == SyncOutcome.NOTHING_TO_DELETE
        assert len(remaining(db_session)) == 4

    def test_refuses_purge_over_safety_ratio(self, session_factory, db_session, local_jobs, caplog):
        client = FakeJenkins(["job-a", "job-b"])
        orchestrator = SyncOrchestrator(
            client, session_factory=session_factory, max_delete_ratio=25
        )

        result = orchestrator.tick()

        assert result.outcome == SyncOutcome.REFUSED
        assert result.stale_jobs == {"job-c", "job-d"}
        assert result.deleted_messages == 0
        assert len(remaining(db_session)) == 4
        assert "Safety check failed" in caplog.text

    def test_ratio_boundary_allows_purge(self, session_factory, db_session, local_jobs):
        client = FakeJenkins(["job-a", "job-b"])
        orchestrator = SyncOrchestrator(
            client, session_factory=session_factory, max_delete_ratio=50
        )

        assert orchestrator.tick().outcome == SyncOutcome.PURGED
        assert remaining(db_session) == {"job-a", "job-b"}

    def test_empty_upstream_skips_tick(self, session_factory, db_session, local_jobs):
        result = SyncOrchestrator(FakeJenkins([]), session_factory=session_factory).tick()

        assert result.outcome == SyncOutcome.NO_UPSTREAM
        assert len(remaining(db_session)) == 4

    def test_unreachable_upstream_skips_tick(self, session_factory, db_session, local_jobs):
        client = FakeJenkins(error=UpstreamUnavailableError("timed out"))

        result = SyncOrchestrator(client, session_factory=session_factory).tick()

        assert result.outcome == SyncOutcome.NO_UPSTREAM
        assert len(remaining(db_session)) == 4


class TestSingleFlight:
    def test_tick_while_reconciling_is_dropped(self, session_factory):
        entered = threading.Event()
        release = threading.Event()

        class BlockingJenkins(FakeJenkins):
            def fetch_jobs(self, folder=None):
                entered.set()
                release.wait(timeout=5)
                return []

        orchestrator = SyncOrchestrator(BlockingJenkins(), session_factory=session_factory)
        assert orchestrator.state == SyncState.IDLE

        worker = threading.Thread(target=orchestrator.tick)
        worker.start()
        assert entered.wait(timeout=5)

        assert orchestrator.state == SyncState.RECONCILING
        assert orchestrator.tick().outcome == SyncOutcome.BUSY

        release.set()
        worker.join(timeout=5)
        assert orchestrator.state == SyncState.IDLE
        assert orchestrator.last_result.outcome == SyncOutcome.NO_UPSTREAM
