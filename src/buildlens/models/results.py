"""
Query result models.

Plain dataclasses returned by the dashboard service, decoupled from the
ORM rows they are computed from. The API layer serializes them through
pydantic schemas.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass
class PaginatedAnomalies:
    """One page of a build's anomalies."""

    anomalies: list[Any]
    total_count: int
    page_number: int
    page_size: int

    @property
    def total_pages(self) -> int:
        if self.page_size < 1:
            return 0
        return -(-self.total_count // self.page_size)


@dataclass
class BuildSummary:
    """Headline facts of one analyzed build."""

    job_name: str
    build_id: int
    health_status: str
    summary: Optional[str] = None
    started_time: Optional[str] = None
    duration: Optional[str] = None
    regression_detected: Optional[bool] = None


@dataclass
class RiskScore:
    score: int
    risk_level: str
    change: Optional[int] = None
    previous_score: Optional[int] = None


@dataclass
class ChartDataset:
    label: str
    data: list[int]
    color: str


@dataclass
class ChartData:
    """Labels plus aligned datasets, ready for a chart widget."""

    labels: list[str] = field(default_factory=list)
    datasets: list[ChartDataset] = field(default_factory=list)


@dataclass
class JobExplorerRow:
    """Latest build of one job as listed by the job explorer."""

    job_name: str
    last_build: str
    status: str
    anomaly_count: int
    build_number: int
    timestamp: datetime


@dataclass
class JobCountResult:
    time_boundary: str
    total_jobs: int
    computed_at: datetime


@dataclass
class ActiveBuildCountResult:
    job_filter: str
    active_builds: int
    computed_at: datetime


@dataclass
class SecurityAnomalyCountResult:
    job_filter: str
    time_range: str
    anomaly_count: int
    computed_at: datetime


@dataclass
class RecentBuildResult:
    job_name: str
    build_id: int
    health_status: str
    anomaly_count: int
    time_ago: str
    raw_timestamp: datetime
    computed_at: datetime
    original_job_name: str


@dataclass
class LogsTracker:
    received: int
    expected: int
    status: str  # "Complete" | "In Progress"
