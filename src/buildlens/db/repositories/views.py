"""
Precomputed view repository.

The dashboard reads these tables; only the view refresher writes them,
and it always replaces a whole table inside the caller's transaction.
"""

import logging
from typing import Any, Iterable, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from buildlens.analytics.sampling import ALL_JOBS
from buildlens.db.codec import decode_object
from buildlens.models.db import (
    ActiveBuildCount,
    BuildAnomalySummary,
    JobCount,
    RecentJobBuild,
    SecurityAnomalyCount,
)

logger = logging.getLogger(__name__)


class ViewRepository:
    """Reads and wholesale rewrites of the precomputed view tables."""

    def __init__(self, session: Session):
        self.session = session

    # ===== build_anomaly_summary =====

    def recent_builds(
        self, job_filter: str = ALL_JOBS
    ) -> List[BuildAnomalySummary]:
        """
        Get build summaries newest first.

        Ordered by (timestamp desc, build_number desc), which is the
        ordering trend sampling relies on.
        """
        stmt = select(BuildAnomalySummary)
        if job_filter != ALL_JOBS:
            stmt = stmt.where(BuildAnomalySummary.conversation_id == job_filter)
        stmt = stmt.order_by(
            BuildAnomalySummary.timestamp.desc(),
            BuildAnomalySummary.build_number.desc(),
            BuildAnomalySummary.conversation_id,
        )
        return list(self.session.scalars(stmt))

    def build_summary(
        self, conversation_id: str, build_number: int
    ) -> Optional[BuildAnomalySummary]:
        return self.session.get(BuildAnomalySummary, (conversation_id, build_number))

    @staticmethod
    def severity_counts_of(row: BuildAnomalySummary) -> dict[str, int]:
        """Decode a row's severity map, dropping non-integer counts."""
        counts = decode_object(row.severity_counts)
        result: dict[str, int] = {}
        for severity, count in counts.items():
            if isinstance(count, int) and not isinstance(count, bool):
                result[severity] = count
            else:
                logger.warning(
                    f"Ignoring malformed severity count {count!r} for "
                    f"{row.conversation_id}#{row.build_number}"
                )
        return result

    # ===== Lookups =====

    def recent_job_builds(self, job_name: str) -> List[RecentJobBuild]:
        return list(
            self.session.scalars(
                select(RecentJobBuild)
                .where(RecentJobBuild.job_name == job_name)
                .order_by(RecentJobBuild.raw_timestamp.desc(), RecentJobBuild.build_id.desc())
            )
        )

    def security_anomaly_count(
        self, job_filter: str, time_range: str
    ) -> Optional[SecurityAnomalyCount]:
        return self.session.get(SecurityAnomalyCount, (job_filter, time_range))

    def active_build_count(self, job_filter: str) -> Optional[ActiveBuildCount]:
        return self.session.get(ActiveBuildCount, job_filter)

    def active_build_flags(self) -> dict[str, bool]:
        """Map each job to whether it has an in-flight build."""
        rows = self.session.scalars(
            select(ActiveBuildCount).where(ActiveBuildCount.job_filter != ALL_JOBS)
        )
        return {row.job_filter: row.active_builds > 0 for row in rows}

    def job_count(self, time_boundary: str) -> Optional[JobCount]:
        return self.session.get(JobCount, time_boundary)

    # ===== Wholesale rewrites =====

    def _replace(self, model: Any, rows: Iterable[dict[str, Any]]) -> int:
        self.session.execute(delete(model))
        count = 0
        for values in rows:
            self.session.add(model(**values))
            count += 1
        self.session.flush()
        return count

    def replace_build_summaries(self, rows: Iterable[dict[str, Any]]) -> int:
        return self._replace(BuildAnomalySummary, rows)

    def replace_recent_job_builds(self, rows: Iterable[dict[str, Any]]) -> int:
        return self._replace(RecentJobBuild, rows)

    def replace_security_counts(self, rows: Iterable[dict[str, Any]]) -> int:
        return self._replace(SecurityAnomalyCount, rows)

    def replace_active_build_counts(self, rows: Iterable[dict[str, Any]]) -> int:
        return self._replace(ActiveBuildCount, rows)

    def replace_job_counts(self, rows: Iterable[dict[str, Any]]) -> int:
        return self._replace(JobCount, rows)

