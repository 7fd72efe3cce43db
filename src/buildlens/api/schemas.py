"""
API schemas for BuildLens.

Pydantic response models. Fields are snake_case in Python and camelCase
on the wire, which is what the dashboard frontend consumes.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base schema: camelCase aliases, readable from dataclass results."""

    class Config:
        from_attributes = True
        alias_generator = to_camel
        populate_by_name = True


# ===== Build detail =====


class BuildSummaryResponse(CamelModel):
    job_name: str
    build_id: int
    health_status: str
    summary: Optional[str] = None
    started_time: Optional[str] = None
    duration: Optional[str] = None
    regression_detected: Optional[bool] = None


class BuildSummaryEnvelope(CamelModel):
    has_ai_data: bool
    data: Optional[BuildSummaryResponse] = None
    message: Optional[str] = None


class RiskScoreResponse(CamelModel):
    score: int
    change: Optional[int] = None
    risk_level: str
    previous_score: Optional[int] = None


class RiskScoreEnvelope(CamelModel):
    has_data: bool
    data: Optional[RiskScoreResponse] = None
    message: Optional[str] = None


class PaginatedAnomaliesResponse(CamelModel):
    anomalies: list[Any]
    total_count: int
    page_number: int
    page_size: int
    total_pages: int


class PaginatedAnomaliesEnvelope(CamelModel):
    has_data: bool
    data: Optional[PaginatedAnomaliesResponse] = None
    message: Optional[str] = None


class LogsTrackerResponse(CamelModel):
    received: int
    expected: int
    status: str


class RerunResponse(CamelModel):
    message: str
    triggered: bool


# ===== Charts =====


class DatasetResponse(CamelModel):
    label: str
    data: list[int]
    color: str


class ChartDataResponse(CamelModel):
    labels: list[str]
    datasets: list[DatasetResponse]


# ===== Job explorer and views =====


class JobExplorerRowResponse(CamelModel):
    job_name: str
    last_build: str
    status: str
    anomaly_count: int


class JobCountResponse(CamelModel):
    time_boundary: str
    total_jobs: int
    computed_at: datetime


class ActiveBuildCountResponse(CamelModel):
    job_filter: str
    active_builds: int
    computed_at: datetime


class SecurityAnomalyCountResponse(CamelModel):
    job_filter: str
    time_range: str
    anomaly_count: int
    computed_at: datetime


class RecentJobBuildResponse(CamelModel):
    job_name: str
    build_id: int
    health_status: str
    anomaly_count: int
    time_ago: str
    raw_timestamp: datetime
    computed_at: datetime
    original_job_name: str


class JobSnapshotResponse(CamelModel):
    name: str
    status: str
    in_progress: bool
    color_class: str
    timestamp: int
