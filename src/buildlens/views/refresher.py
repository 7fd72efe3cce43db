"""
Precomputed view refresher.

Recomputes every view table from the record store and rewrites them
wholesale inside the caller's transaction, so readers see either the
previous generation of rows or the new one.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from buildlens.analytics.formatting import as_utc, time_ago
from buildlens.analytics.health import anomalies_of, derive_health_status, severity_counts
from buildlens.config import settings
from buildlens.db.repositories.chat_message import ChatMessageRepository
from buildlens.db.repositories.views import ALL_JOBS, ViewRepository

logger = logging.getLogger(__name__)

SECURITY_TYPE = "security"
TIME_RANGES = {
    "24 hours": timedelta(hours=24),
    "7 days": timedelta(days=7),
    "30 days": timedelta(days=30),
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _is_security(anomaly: Any) -> bool:
    if not isinstance(anomaly, dict):
        return False
    kind = anomaly.get("type")
    return isinstance(kind, str) and kind.strip().lower() == SECURITY_TYPE


class ViewRefresher:
    """
    Rebuilds the precomputed view tables.

    Args:
        session: Database session; the caller owns the transaction
        clock: Returns the current UTC time
        recent_builds_per_job: Builds kept per job in recent_job_builds
    """

    def __init__(
        self,
        session: Session,
        clock: Callable[[], datetime] = _utc_now,
        recent_builds_per_job: Optional[int] = None,
    ):
        self.session = session
        self.clock = clock
        self.recent_builds_per_job = (
            settings.views_recent_builds_per_job
            if recent_builds_per_job is None
            else recent_builds_per_job
        )
        self.messages = ChatMessageRepository(session)
        self.views = ViewRepository(session)

    def refresh_all(self, active_builds: Optional[dict[str, int]] = None) -> dict[str, int]:
        """
        Rewrite all five view tables.

        Args:
            active_builds: In-flight builds as ``{job_name: start_millis}``;
                None leaves every job inactive

        Returns:
            Rows written per table
        """
        now = self.clock()
        analyses = self.messages.latest_assistant_per_build()

        builds: list[dict[str, Any]] = []
        for message in analyses:
            anomalies = anomalies_of(message.content)
            builds.append(
                {
                    "conversation_id": message.conversation_id,
                    "build_number": message.build_number,
                    "timestamp": as_utc(message.timestamp),
                    "anomalies": anomalies,
                }
            )

        written = {
            "build_anomaly_summary": self.views.replace_build_summaries(
                self._summary_rows(builds, now)
            ),
            "recent_job_builds": self.views.replace_recent_job_builds(
                self._recent_rows(builds, now)
            ),
            "security_anomaly_counts": self.views.replace_security_counts(
                self._security_rows(builds, now)
            ),
            "active_build_counts": self.views.replace_active_build_counts(
                self._active_rows(active_builds or {}, now)
            ),
            "job_counts": self.views.replace_job_counts(self._job_count_rows(now)),
        }
        logger.info(
            "Refreshed views: "
            + ", ".join(f"{table}={count}" for table, count in written.items())
        )
        return written

    def _summary_rows(self, builds: list[dict[str, Any]], now: datetime):
        for build in builds:
            yield {
                "conversation_id": build["conversation_id"],
                "build_number": build["build_number"],
                "timestamp": build["timestamp"],
                "total_anomalies": len(build["anomalies"]),
                "severity_counts": json.dumps(severity_counts(build["anomalies"])),
                "computed_at": now,
            }

    def _recent_rows(self, builds: list[dict[str, Any]], now: datetime):
        per_job: dict[str, list[dict[str, Any]]] = {}
        for build in builds:
            per_job.setdefault(build["conversation_id"], []).append(build)

        for job, job_builds in sorted(per_job.items()):
            job_builds.sort(key=lambda b: (b["timestamp"], b["build_number"]), reverse=True)
            for build in job_builds[: self.recent_builds_per_job]:
                row = {
                    "build_id": build["build_number"],
                    "health_status": derive_health_status(build["anomalies"]),
                    "anomaly_count": len(build["anomalies"]),
                    "time_ago": time_ago(build["timestamp"], now),
                    "raw_timestamp": build["timestamp"],
                    "computed_at": now,
                    "original_job_name": job,
                }
                yield {"job_name": job, **row}
                yield {"job_name": ALL_JOBS, **row}

    def _security_rows(self, builds: list[dict[str, Any]], now: datetime):
        jobs = sorted({b["conversation_id"] for b in builds})
        for label, window in TIME_RANGES.items():
            since = now - window
            per_job = {job: 0 for job in jobs}
            for build in builds:
                if build["timestamp"] < since:
                    continue
                per_job[build["conversation_id"]] += sum(
                    1 for a in build["anomalies"] if _is_security(a)
                )
            for job, count in per_job.items():
                yield {"job_filter": job, "time_range": label, "anomaly_count": count, "computed_at": now}
            yield {
                "job_filter": ALL_JOBS,
                "time_range": label,
                "anomaly_count": sum(per_job.values()),
                "computed_at": now,
            }

    def _active_rows(self, active_builds: dict[str, int], now: datetime):
        for job in sorted(active_builds):
            if job == ALL_JOBS:
                continue
            yield {"job_filter": job, "active_builds": 1, "computed_at": now}
        yield {
            "job_filter": ALL_JOBS,
            "active_builds": len([j for j in active_builds if j != ALL_JOBS]),
            "computed_at": now,
        }

    def _job_count_rows(self, now: datetime):
        last_activity = {
            job: as_utc(ts) for job, ts in self.messages.last_activity_per_job().items()
        }
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        boundaries = {
            "today": start_of_day,
            "week": now - timedelta(days=7),
            "month": now - timedelta(days=30),
            "all": None,
        }
        for label, since in boundaries.items():
            total = sum(1 for ts in last_activity.values() if since is None or ts >= since)
            yield {"time_boundary": label, "total_jobs": total, "computed_at": now}
