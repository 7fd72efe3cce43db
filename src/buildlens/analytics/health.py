"""
Build health and job status classification.

All functions here are pure: they take decoded ASSISTANT content (or
pieces of it) and return plain values, so the same rules back both the
live dashboard queries and the precomputed views.
"""

from __future__ import annotations

from typing import Any, Iterable, List, Mapping

CRITICAL = "CRITICAL"
WARNING = "WARNING"
HEALTHY = "Healthy"
UNHEALTHY = "Unhealthy"

# Severities that count as notable issues
NOTABLE_SEVERITIES = frozenset({"CRITICAL", "HIGH", "MEDIUM"})
# Severities that are tolerated up to MINOR_LIMIT
MINOR_SEVERITIES = frozenset({"LOW", "WARNING"})
MINOR_LIMIT = 5

UNKNOWN_STATUS = "UNKNOWN"
SUCCESS_STATUS = "SUCCESS"
FAILING_STATUSES = frozenset({"FAILURE", "ABORTED", "UNSTABLE"})

JOB_STATUS_FILTERS = ("all", "active", "completed", "completedwithissues", "withissues")


def anomalies_of(content: Mapping[str, Any]) -> List[Any]:
    """Return the anomalies array of an analysis, or an empty list."""
    anomalies = content.get("anomalies") if content else None
    return list(anomalies) if isinstance(anomalies, list) else []


def severity_of(anomaly: Any) -> str | None:
    """Normalized severity of one anomaly element."""
    if not isinstance(anomaly, Mapping):
        return None
    severity = anomaly.get("severity")
    if not isinstance(severity, str) or not severity.strip():
        return None
    return severity.strip().upper()


def severity_counts(anomalies: Iterable[Any]) -> dict[str, int]:
    """
    Count anomalies per severity, keeping first-seen order.

    Elements without a severity are not counted.
    """
    counts: dict[str, int] = {}
    for anomaly in anomalies:
        severity = severity_of(anomaly)
        if severity is not None:
            counts[severity] = counts.get(severity, 0) + 1
    return counts


def derive_health_status(anomalies: Iterable[Any]) -> str:
    """
    Classify a build from the severities of its anomalies.

    Rules are evaluated in order and the first match wins:

    1. ``CRITICAL`` if any anomaly is CRITICAL or HIGH.
    2. ``WARNING`` if any anomaly is MEDIUM, or more than one anomaly is
       CRITICAL, HIGH or MEDIUM.
    3. ``Healthy`` if at most five anomalies are LOW or WARNING and none
       is CRITICAL, HIGH or MEDIUM.
    4. ``Unhealthy`` otherwise.

    Args:
        anomalies: The anomalies array of an analysis

    Returns:
        One of CRITICAL, WARNING, Healthy, Unhealthy
    """
    counts = severity_counts(anomalies)

    if counts.get("CRITICAL", 0) or counts.get("HIGH", 0):
        return CRITICAL

    notable = sum(counts.get(s, 0) for s in NOTABLE_SEVERITIES)
    if counts.get("MEDIUM", 0) > 0 or notable > 1:
        return WARNING

    minor = sum(counts.get(s, 0) for s in MINOR_SEVERITIES)
    if minor <= MINOR_LIMIT and notable == 0:
        return HEALTHY

    return UNHEALTHY


def _non_blank(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def resolve_build_status(content: Mapping[str, Any]) -> str:
    """
    Resolve the CI result recorded in a message.

    Prefers ``buildMetadata.status`` (analyses), then
    ``data.build_info.result`` (collected build info), else UNKNOWN.
    """
    metadata = content.get("buildMetadata")
    if isinstance(metadata, Mapping):
        status = _non_blank(metadata.get("status"))
        if status:
            return status

    data = content.get("data")
    if isinstance(data, Mapping):
        build_info = data.get("build_info")
        if isinstance(build_info, Mapping):
            result = _non_blank(build_info.get("result"))
            if result:
                return result

    return UNKNOWN_STATUS


def classify_job_status(build_status: str, is_active: bool) -> str:
    """Map a raw CI result to the job explorer status."""
    if is_active:
        return "RUNNING"
    if build_status == SUCCESS_STATUS:
        return "COMPLETED"
    if build_status in FAILING_STATUSES:
        return "FAILED"
    return build_status


def matches_status_filter(
    status_filter: str, build_status: str, is_active: bool, anomaly_count: int
) -> bool:
    """Check a job's latest build against a job explorer tab."""
    if status_filter == "all":
        return True
    if status_filter == "active":
        return is_active
    if status_filter == "completed":
        return not is_active and build_status == SUCCESS_STATUS
    if status_filter == "completedwithissues":
        return not is_active and build_status == SUCCESS_STATUS and anomaly_count > 0
    if status_filter == "withissues":
        return anomaly_count > 0 or build_status in FAILING_STATUSES
    return False
