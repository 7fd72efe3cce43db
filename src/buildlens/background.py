"""
Background services for the API process.

Owns the Jenkins client, the job snapshot cache and the three periodic
tasks: Jenkins sync, retention and view refresh.
"""

import logging
from typing import Optional

from buildlens.config import settings
from buildlens.db.connection import background_session
from buildlens.jenkins.client import JenkinsClient
from buildlens.jenkins.snapshot import JobSnapshotCache
from buildlens.retention import RetentionManager
from buildlens.scheduler import PeriodicTask
from buildlens.sync import SyncOrchestrator
from buildlens.views.refresher import ViewRefresher

logger = logging.getLogger(__name__)


def run_retention_pass() -> int:
    """Trim every conversation to the configured window."""
    with background_session() as session:
        return RetentionManager(session).trim_all().deleted


def refresh_views(snapshot: Optional[JobSnapshotCache] = None) -> dict[str, int]:
    """Recompute the precomputed views, with in-flight builds when known."""
    active = snapshot.active_builds() if snapshot is not None else {}
    with background_session() as session:
        return ViewRefresher(session).refresh_all(active)


class BackgroundServices:
    """Starts and stops the periodic tasks of the API process."""

    def __init__(
        self,
        client: Optional[JenkinsClient] = None,
        snapshot: Optional[JobSnapshotCache] = None,
    ):
        self.client = client or JenkinsClient()
        self.snapshot = snapshot or JobSnapshotCache(self.client)
        self.orchestrator = SyncOrchestrator(self.client, snapshot=self.snapshot)
        self.tasks = [
            PeriodicTask(
                "jenkins-sync",
                self.orchestrator.tick,
                interval=settings.sync_interval_seconds,
                initial_delay=settings.sync_initial_delay_seconds,
            ),
            PeriodicTask(
                "retention",
                run_retention_pass,
                interval=settings.retention_interval_seconds,
                initial_delay=settings.retention_interval_seconds,
            ),
            PeriodicTask(
                "view-refresh",
                lambda: refresh_views(self.snapshot),
                interval=settings.views_refresh_interval_seconds,
            ),
        ]

    def start(self) -> None:
        for task in self.tasks:
            task.start()
        logger.info(f"Started {len(self.tasks)} background tasks")

    def shutdown(self, timeout: float = 10.0) -> None:
        for task in self.tasks:
            task.stop(timeout=timeout)
        self.client.close()
        logger.info("Background tasks stopped")

    def stats(self) -> dict[str, object]:
        return {task.name: task.stats() for task in self.tasks}
