"""
Dashboard query service.

Turns the append-only message log and the precomputed views into the
read models the dashboard shows: paginated anomalies, build health,
risk scores, trend charts, AI insights and the job explorer.

Read paths never raise for missing or malformed data; they return an
explicit empty result instead. Invalid input (blank filters, negative
pages, non-positive sizes or build counts) raises InvalidQueryError.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from buildlens.analytics.formatting import (
    as_utc,
    format_duration,
    format_started_time,
    time_ago,
)
from buildlens.analytics.health import (
    JOB_STATUS_FILTERS,
    UNKNOWN_STATUS,
    anomalies_of,
    classify_job_status,
    derive_health_status,
    matches_status_filter,
    resolve_build_status,
)
from buildlens.analytics.sampling import sample_recent_builds
from buildlens.config import settings
from buildlens.db.codec import decode_document
from buildlens.db.repositories.chat_message import ChatMessageRepository
from buildlens.db.repositories.views import ALL_JOBS, ViewRepository
from buildlens.exceptions import InvalidQueryError
from buildlens.models.db import MessageKind
from buildlens.models.results import (
    ActiveBuildCountResult,
    BuildSummary,
    ChartData,
    ChartDataset,
    JobCountResult,
    JobExplorerRow,
    LogsTracker,
    PaginatedAnomalies,
    RecentBuildResult,
    RiskScore,
    SecurityAnomalyCountResult,
)

logger = logging.getLogger(__name__)

ANOMALY_TREND_LABEL = "Anomaly Count"
ANOMALY_TREND_COLOR = "#36A2EB"
SEVERITY_PALETTE = ("#FF6384", "#36A2EB", "#FFCE56", "#4BC0C0", "#9966FF")

INSIGHT_FIELDS = (
    ("securityTrendAlert", "securityTrends", "No alert available"),
    ("criticalSecretExposure", "criticalIssues", "No exposure data"),
    ("dependencyManagement", "dependencyManagement", "No dependency info"),
    ("recommendation", "recommendations", "No recommendation"),
)

_UNDECODABLE = object()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _require(value: Optional[str], name: str) -> str:
    if value is None or not str(value).strip():
        raise InvalidQueryError(f"{name} must be a non-empty string")
    return value


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _trend_label(job: str, build: int) -> str:
    return f"{job} - Build № {build}"


def _map_insights(insights: Any) -> dict[str, Any]:
    if not isinstance(insights, dict):
        return {}
    return {key: insights.get(source, default) for key, source, default in INSIGHT_FIELDS}


class DashboardService:
    """
    Read-side service behind the dashboard API.

    Args:
        session: Database session
        clock: Returns the current UTC time (injectable for tests)
    """

    def __init__(self, session: Session, clock: Callable[[], datetime] = _utc_now):
        self.session = session
        self.clock = clock
        self.messages = ChatMessageRepository(session)
        self.views = ViewRepository(session)

    # ===== Build detail =====

    def get_build_summary(self, conversation_id: str, build_number: int) -> dict[str, Any]:
        """Health, summary and timing of a build from its latest analysis."""
        message = self.messages.latest_assistant_message(conversation_id, build_number)
        if message is None:
            return {
                "hasAiData": False,
                "message": (
                    f"AI has not yet been triggered for conversationId: "
                    f"{conversation_id}, buildNumber: {build_number}"
                ),
            }

        content = message.content
        metadata = content.get("buildMetadata")
        metadata = metadata if isinstance(metadata, dict) else {}
        insights = content.get("insights")
        summary = content.get("summary")
        if summary is None and isinstance(insights, dict):
            summary = insights.get("summary")
        regression = content.get("regressionFromPreviousBuilds")

        return {
            "hasAiData": True,
            "data": BuildSummary(
                job_name=message.conversation_id,
                build_id=message.build_number,
                health_status=derive_health_status(anomalies_of(content)),
                summary=summary,
                started_time=format_started_time(metadata.get("startTime"), self.clock()),
                duration=format_duration(metadata.get("durationSeconds")),
                regression_detected=regression if isinstance(regression, bool) else None,
            ),
        }

    def get_health_status(self, conversation_id: str, build_number: int) -> Optional[str]:
        """Health of a build, or None when it has not been analyzed."""
        message = self.messages.latest_assistant_message(conversation_id, build_number)
        if message is None:
            return None
        return derive_health_status(anomalies_of(message.content))

    def get_risk_score(self, conversation_id: str, build_number: int) -> dict[str, Any]:
        """Risk score of a build; requires both a score and a risk level."""
        message = self.messages.latest_assistant_message(conversation_id, build_number)
        if message is None:
            return {
                "hasData": False,
                "message": (
                    f"Risk score not available for conversationId: "
                    f"{conversation_id}, buildNumber: {build_number}"
                ),
            }

        risk = message.content.get("riskScore")
        risk = risk if isinstance(risk, dict) else {}
        score = _as_int(risk.get("score"))
        risk_level = risk.get("riskLevel")
        if score is None or not risk_level:
            return {
                "hasData": False,
                "message": (
                    f"Invalid risk score data for conversationId: "
                    f"{conversation_id}, buildNumber: {build_number}"
                ),
            }

        return {
            "hasData": True,
            "data": RiskScore(
                score=score,
                risk_level=str(risk_level),
                change=_as_int(risk.get("change")),
                previous_score=_as_int(risk.get("previousScore")),
            ),
        }

    def get_paginated_anomalies(
        self,
        conversation_id: Optional[str],
        build_number: Optional[int],
        page_number: Optional[int] = 1,
        page_size: Optional[int] = None,
    ) -> dict[str, Any]:
        """
        One page of a build's anomalies.

        Anomalies of every analysis of the build are flattened in message
        order, then array order, before slicing. The total is counted over
        the whole flattened list, so it stays correct for empty pages.

        Pages are 1-based and a page number below 1 becomes 1. A missing
        page size means the configured default.

        Raises:
            InvalidQueryError: If page_size is not positive
        """
        if conversation_id is None or not conversation_id.strip():
            return {"hasData": False, "message": "Conversation ID cannot be null or empty"}
        if build_number is None or build_number < 1:
            return {"hasData": False, "message": "Build number must be a positive integer"}

        if page_number is None or page_number < 1:
            page_number = 1
        if page_size is None:
            page_size = settings.anomalies_default_page_size
        elif page_size < 1:
            raise InvalidQueryError(f"page_size must be a positive integer, got {page_size}")
        offset = (page_number - 1) * page_size

        flattened: list[Any] = []
        for message in self.messages.build_messages(
            conversation_id, build_number, kind=MessageKind.ASSISTANT
        ):
            flattened.extend(anomalies_of(message.content))

        return {
            "hasData": True,
            "data": PaginatedAnomalies(
                anomalies=flattened[offset : offset + page_size],
                total_count=len(flattened),
                page_number=page_number,
                page_size=page_size,
            ),
        }

    # ===== Logs =====

    def get_logs_tracker(self, job_name: str, build_number: int) -> LogsTracker:
        """How many collected log messages of a build have arrived."""
        expected = settings.logs_expected_chunks
        received = self.messages.count_user_messages(job_name, build_number)
        return LogsTracker(
            received=min(received, expected),
            expected=expected,
            status="Complete" if received >= expected else "In Progress",
        )

    def get_all_logs(
        self, job_name: str, build_number: int, page: int = 0, size: int = 100
    ) -> list[Any]:
        """
        Collected documents of a build, oldest first, 0-based pages.

        Prompt documents (those carrying ``instructions``) are excluded and
        rows that fail to decode are dropped.
        """
        _require(job_name, "job_name")
        if page < 0:
            raise InvalidQueryError(f"page must not be negative, got {page}")
        if size < 1:
            raise InvalidQueryError(f"size must be a positive integer, got {size}")

        logs: list[Any] = []
        for message in self.messages.build_messages(
            job_name, build_number, kind=MessageKind.USER
        ):
            document = decode_document(message.content_json, default=_UNDECODABLE)
            if document is _UNDECODABLE:
                continue
            if isinstance(document, dict) and "instructions" in document:
                continue
            logs.append(document)

        start = page * size
        return logs[start : start + size]

    def get_all_job_names(self) -> list[str]:
        return self.messages.distinct_job_names()

    # ===== Trends =====

    def _clamp_build_count(self, build_count: Optional[int]) -> int:
        if build_count is None:
            return settings.trend_default_build_count
        if build_count < 1:
            raise InvalidQueryError(f"build_count must be a positive integer, got {build_count}")
        return min(build_count, settings.trend_max_build_count)

    def _sample(self, job_filter: Optional[str], build_count: Optional[int]):
        job_filter = _require(job_filter, "job_filter")
        count = self._clamp_build_count(build_count)
        rows = self.views.recent_builds(job_filter)
        return sample_recent_builds(
            rows, job_filter, count, job_of=lambda row: row.conversation_id
        )

    def get_anomaly_trend(
        self, job_filter: Optional[str] = ALL_JOBS, build_count: Optional[int] = None
    ) -> ChartData:
        """Anomaly totals of the most recent builds, newest first."""
        sampled = self._sample(job_filter, build_count)
        return ChartData(
            labels=[_trend_label(r.conversation_id, r.build_number) for r in sampled],
            datasets=[
                ChartDataset(
                    label=ANOMALY_TREND_LABEL,
                    data=[r.total_anomalies for r in sampled],
                    color=ANOMALY_TREND_COLOR,
                )
            ],
        )

    def get_severity_distribution(
        self, job_filter: Optional[str] = ALL_JOBS, build_count: Optional[int] = None
    ) -> ChartData:
        """
        Per-severity anomaly counts of the most recent builds.

        One dataset per severity in first-seen order, every dataset
        zero-filled to line up with the labels.
        """
        sampled = self._sample(job_filter, build_count)
        labels = [_trend_label(r.conversation_id, r.build_number) for r in sampled]
        per_build = [self.views.severity_counts_of(r) for r in sampled]

        severities: list[str] = []
        for counts in per_build:
            for severity in counts:
                if severity not in severities:
                    severities.append(severity)

        datasets = [
            ChartDataset(
                label=severity,
                data=[counts.get(severity, 0) for counts in per_build],
                color=SEVERITY_PALETTE[i % len(SEVERITY_PALETTE)],
            )
            for i, severity in enumerate(severities)
        ]
        return ChartData(labels=labels, datasets=datasets)

    # ===== Insights =====

    def get_ai_insights(self, conversation_id: str, build_number: int) -> dict[str, Any]:
        """Insights of a build's latest analysis; ``{}`` when there is none."""
        message = self.messages.latest_assistant_message(conversation_id, build_number)
        if message is None:
            return {}
        return _map_insights(message.content.get("insights"))

    def get_ai_insights_by_conversation(self, conversation_id: str) -> dict[str, Any]:
        """Insights of the latest analysis of any build of a job."""
        message = self.messages.latest_assistant_message(conversation_id)
        if message is None:
            return {}
        return _map_insights(message.content.get("insights"))

    # ===== Job explorer =====

    def get_jobs_by_status(self, status_filter: Optional[str] = None) -> list[JobExplorerRow]:
        """
        Latest build of every job, filtered by a job explorer tab.

        For each build the newest message with a resolvable CI result is
        used; each job is then represented by its highest build number.

        Raises:
            InvalidQueryError: If the filter is not a known tab
        """
        status_filter = (status_filter or "all").strip().lower()
        if status_filter not in JOB_STATUS_FILTERS:
            raise InvalidQueryError(
                f"Unknown status filter {status_filter!r}; "
                f"expected one of {', '.join(JOB_STATUS_FILTERS)}"
            )

        # (job) -> (build_number, timestamp, status) of its latest build
        latest: dict[str, tuple[int, datetime, str]] = {}
        seen_builds: set[tuple[str, int]] = set()
        for message in self.messages.status_bearing_messages():
            key = (message.conversation_id, message.build_number)
            if key in seen_builds:
                continue
            status = resolve_build_status(message.content)
            if status == UNKNOWN_STATUS:
                continue
            seen_builds.add(key)
            current = latest.get(message.conversation_id)
            if current is None or message.build_number > current[0]:
                latest[message.conversation_id] = (
                    message.build_number,
                    as_utc(message.timestamp),
                    status,
                )

        active = self.views.active_build_flags()
        now = self.clock()
        rows: list[JobExplorerRow] = []
        for job, (build_number, timestamp, status) in latest.items():
            summary = self.views.build_summary(job, build_number)
            anomaly_count = summary.total_anomalies if summary else 0
            is_active = active.get(job, False)
            if not matches_status_filter(status_filter, status, is_active, anomaly_count):
                continue
            rows.append(
                JobExplorerRow(
                    job_name=job,
                    last_build=f"{build_number} - {time_ago(timestamp, now)}",
                    status=classify_job_status(status, is_active),
                    anomaly_count=anomaly_count,
                    build_number=build_number,
                    timestamp=timestamp,
                )
            )

        rows.sort(key=lambda row: row.timestamp, reverse=True)
        return rows

    # ===== Precomputed view lookups =====

    def get_job_count(self, time_boundary: str) -> JobCountResult:
        time_boundary = _require(time_boundary, "time_boundary")
        row = self.views.job_count(time_boundary)
        if row is None:
            return JobCountResult(time_boundary, 0, self.clock())
        return JobCountResult(row.time_boundary, row.total_jobs, as_utc(row.computed_at))

    def get_total_active_build_count(self) -> ActiveBuildCountResult:
        return self.get_active_build_count(ALL_JOBS)

    def get_active_build_count(self, job_filter: str) -> ActiveBuildCountResult:
        job_filter = _require(job_filter, "job_filter")
        row = self.views.active_build_count(job_filter)
        if row is None:
            return ActiveBuildCountResult(job_filter, 0, self.clock())
        return ActiveBuildCountResult(
            row.job_filter, row.active_builds, as_utc(row.computed_at)
        )

    def get_security_anomaly_count(
        self, job_filter: str = ALL_JOBS, time_range: str = "7 days"
    ) -> SecurityAnomalyCountResult:
        job_filter = _require(job_filter, "job_filter")
        time_range = _require(time_range, "time_range")
        row = self.views.security_anomaly_count(job_filter, time_range)
        if row is None:
            return SecurityAnomalyCountResult(job_filter, time_range, 0, self.clock())
        return SecurityAnomalyCountResult(
            row.job_filter, row.time_range, row.anomaly_count, as_utc(row.computed_at)
        )

    def get_recent_job_builds(self, job_name: str = ALL_JOBS) -> list[RecentBuildResult]:
        """Recent builds of a job, or of every job for ``"all"``."""
        job_name = _require(job_name, "job_name")
        return [
            RecentBuildResult(
                job_name=row.job_name,
                build_id=row.build_id,
                health_status=row.health_status,
                anomaly_count=row.anomaly_count,
                time_ago=row.time_ago,
                raw_timestamp=as_utc(row.raw_timestamp),
                computed_at=as_utc(row.computed_at),
                original_job_name=row.original_job_name,
            )
            for row in self.views.recent_job_builds(job_name)
        ]
