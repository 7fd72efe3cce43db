"""
Sync orchestrator.

Reconciles the record store with the Jenkins job list: conversations of
jobs that no longer exist upstream are purged. Jobs that exist upstream
but not locally need no action; they appear as data arrives.
"""

import enum
import logging
import threading
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from typing import Callable, Optional

from sqlalchemy.orm import Session

from buildlens.config import settings
from buildlens.db.connection import background_session
from buildlens.exceptions import UpstreamUnavailableError
from buildlens.jenkins.client import JenkinsClient
from buildlens.jenkins.snapshot import JobSnapshotCache
from buildlens.retention import RetentionManager

logger = logging.getLogger(__name__)


class SyncState(str, enum.Enum):
    IDLE = "Idle"
    RECONCILING = "Reconciling"


class SyncOutcome(str, enum.Enum):
    BUSY = "busy"  # tick dropped, a reconciliation was in progress
    NO_UPSTREAM = "no_upstream"  # Jenkins unreachable or returned no jobs
    REFUSED = "refused"  # purge exceeded the safety ratio
    NOTHING_TO_DELETE = "nothing_to_delete"
    PURGED = "purged"


@dataclass
class SyncResult:
    outcome: SyncOutcome
    upstream_jobs: int = 0
    local_jobs: int = 0
    stale_jobs: set[str] = field(default_factory=set)
    deleted_messages: int = 0


class SyncOrchestrator:
    """
    Single-flight reconciliation between Jenkins and the record store.

    A tick that arrives while a reconciliation is running is dropped.

    Args:
        client: Jenkins client used for the authoritative job list
        session_factory: Context manager yielding a session per run
        snapshot: Job snapshot cache, invalidated after a purge
        max_delete_ratio: Percent of local jobs one run may purge
        folder: Jenkins folder to reconcile against
    """

    def __init__(
        self,
        client: JenkinsClient,
        session_factory: Callable[[], AbstractContextManager[Session]] = background_session,
        snapshot: Optional[JobSnapshotCache] = None,
        max_delete_ratio: Optional[int] = None,
        folder: Optional[str] = None,
    ):
        self.client = client
        self.session_factory = session_factory
        self.snapshot = snapshot
        self.max_delete_ratio = (
            settings.sync_max_delete_ratio if max_delete_ratio is None else max_delete_ratio
        )
        self.folder = folder
        self._lock = threading.Lock()
        self.last_result: Optional[SyncResult] = None

    @property
    def state(self) -> SyncState:
        return SyncState.RECONCILING if self._lock.locked() else SyncState.IDLE

    def tick(self) -> SyncResult:
        """Run one reconciliation unless one is already in progress."""
        if not self._lock.acquire(blocking=False):
            logger.info("Reconciliation already in progress, dropping tick")
            return SyncResult(outcome=SyncOutcome.BUSY)
        try:
            result = self._reconcile()
            self.last_result = result
            return result
        finally:
            self._lock.release()

    def _reconcile(self) -> SyncResult:
        try:
            jobs = self.client.fetch_jobs(self.folder)
        except UpstreamUnavailableError as e:
            logger.warning(f"Jenkins unavailable ({e}) - skipping sync")
            return SyncResult(outcome=SyncOutcome.NO_UPSTREAM)

        upstream = {job.name for job in jobs if job.name}
        if not upstream:
            logger.warning("No Jenkins jobs found - skipping sync")
            return SyncResult(outcome=SyncOutcome.NO_UPSTREAM)

        with self.session_factory() as session:
            retention = RetentionManager(session)
            local = retention.repository.distinct_conversation_ids()
            stale = local - upstream
            result = SyncResult(
                outcome=SyncOutcome.NOTHING_TO_DELETE,
                upstream_jobs=len(upstream),
                local_jobs=len(local),
                stale_jobs=stale,
            )

            if not stale:
                logger.info("No jobs to delete from chat_messages.")
                return result

            max_allowed = len(local) * self.max_delete_ratio // 100
            if len(stale) > max_allowed:
                logger.error(
                    f"Safety check failed: attempting to delete {len(stale)} jobs, "
                    f"exceeding {self.max_delete_ratio}% of {len(local)} total jobs"
                )
                result.outcome = SyncOutcome.REFUSED
                return result

            result.deleted_messages = retention.purge_conversations(stale)
            result.outcome = SyncOutcome.PURGED

        logger.info(
            f"Deleted {len(stale)} jobs from chat_messages: {sorted(stale)}"
        )
        if self.snapshot is not None:
            self.snapshot.invalidate()
        return result
