"""
Dashboard API routes.

Thin HTTP adapters over DashboardService, mounted under /api/dashboard.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from buildlens.api.schemas import (
    ActiveBuildCountResponse,
    BuildSummaryEnvelope,
    BuildSummaryResponse,
    ChartDataResponse,
    JobCountResponse,
    JobExplorerRowResponse,
    JobSnapshotResponse,
    LogsTrackerResponse,
    PaginatedAnomaliesEnvelope,
    PaginatedAnomaliesResponse,
    RecentJobBuildResponse,
    RerunResponse,
    RiskScoreEnvelope,
    RiskScoreResponse,
    SecurityAnomalyCountResponse,
)
from buildlens.db.connection import get_db
from buildlens.jenkins.client import JenkinsClient
from buildlens.jenkins.snapshot import JobSnapshotCache
from buildlens.services.dashboard_service import DashboardService

router = APIRouter()


def get_dashboard_service(session: Session = Depends(get_db)) -> DashboardService:
    return DashboardService(session)


def get_jenkins_client(request: Request) -> JenkinsClient:
    """Jenkins client created by the app lifespan."""
    return request.app.state.jenkins_client


def get_snapshot_cache(request: Request) -> JobSnapshotCache:
    return request.app.state.snapshot_cache


# ===== Precomputed views =====


@router.get("/recentJobBuilds", response_model=list[RecentJobBuildResponse])
def get_recent_job_builds(service: DashboardService = Depends(get_dashboard_service)):
    return service.get_recent_job_builds()


@router.get("/recentJobBuilds/{job_name}", response_model=list[RecentJobBuildResponse])
def get_recent_builds_by_job_name(
    job_name: str, service: DashboardService = Depends(get_dashboard_service)
):
    return service.get_recent_job_builds(job_name)


@router.get("/securityAnomalies", response_model=SecurityAnomalyCountResponse)
def get_security_anomalies(service: DashboardService = Depends(get_dashboard_service)):
    return service.get_security_anomaly_count()


@router.get("/securityAnomalies/{job_filter}", response_model=SecurityAnomalyCountResponse)
def get_security_anomalies_by_job(
    job_filter: str,
    time_range: str = Query(..., alias="timeRange"),
    service: DashboardService = Depends(get_dashboard_service),
):
    return service.get_security_anomaly_count(job_filter, time_range)


@router.get("/activeBuilds", response_model=ActiveBuildCountResponse)
def get_active_builds(service: DashboardService = Depends(get_dashboard_service)):
    return service.get_total_active_build_count()


@router.get("/activeBuilds/{job_filter}", response_model=ActiveBuildCountResponse)
def get_active_builds_by_job(
    job_filter: str, service: DashboardService = Depends(get_dashboard_service)
):
    return service.get_active_build_count(job_filter)


@router.get("/totalJobs/{time_boundary}", response_model=JobCountResponse)
def get_total_jobs(
    time_boundary: str, service: DashboardService = Depends(get_dashboard_service)
):
    return service.get_job_count(time_boundary)


# ===== Jenkins snapshot =====


@router.get("/recentJobs", response_model=list[JobSnapshotResponse])
def get_recent_jobs(snapshot: JobSnapshotCache = Depends(get_snapshot_cache)):
    """Jenkins jobs as of the last snapshot refresh."""
    return snapshot.get()


@router.post("/builds/{job_name}/{build_id}/rerun", response_model=RerunResponse)
def rerun_build(
    job_name: str,
    build_id: int,
    client: JenkinsClient = Depends(get_jenkins_client),
):
    triggered = client.trigger_build(job_name)
    return RerunResponse(message=f"New build triggered for {job_name}", triggered=triggered)


# ===== Build detail =====
# The job-scoped insights route must be registered before /builds/{id}/{build}


@router.get("/builds/{conversation_id}/ai-insights")
def get_ai_insights_by_conversation(
    conversation_id: str, service: DashboardService = Depends(get_dashboard_service)
) -> dict[str, Any]:
    return service.get_ai_insights_by_conversation(conversation_id)


@router.get("/builds/{conversation_id}/{build_number}", response_model=BuildSummaryEnvelope)
def get_build_summary(
    conversation_id: str,
    build_number: int,
    service: DashboardService = Depends(get_dashboard_service),
):
    result = service.get_build_summary(conversation_id, build_number)
    data = result.get("data")
    return BuildSummaryEnvelope(
        has_ai_data=result["hasAiData"],
        data=BuildSummaryResponse.model_validate(data) if data is not None else None,
        message=result.get("message"),
    )


@router.get("/builds/{job_name}/{build_id}/logs-tracker", response_model=LogsTrackerResponse)
def get_logs_tracker(
    job_name: str, build_id: int, service: DashboardService = Depends(get_dashboard_service)
):
    return LogsTrackerResponse.model_validate(service.get_logs_tracker(job_name, build_id))


@router.get("/builds/{conversation_id}/{build_number}/risk-score", response_model=RiskScoreEnvelope)
def get_risk_score(
    conversation_id: str,
    build_number: int,
    service: DashboardService = Depends(get_dashboard_service),
):
    result = service.get_risk_score(conversation_id, build_number)
    data = result.get("data")
    return RiskScoreEnvelope(
        has_data=result["hasData"],
        data=RiskScoreResponse.model_validate(data) if data is not None else None,
        message=result.get("message"),
    )


@router.get("/builds/{job_name}/{build_id}/logs")
def get_all_logs(
    job_name: str,
    build_id: int,
    page: int = Query(0),
    size: int = Query(100),
    service: DashboardService = Depends(get_dashboard_service),
) -> list[Any]:
    return service.get_all_logs(job_name, build_id, page, size)


@router.get(
    "/builds/{job_name}/{build_id}/detected-anomalies",
    response_model=PaginatedAnomaliesEnvelope,
)
def get_detected_anomalies(
    job_name: str,
    build_id: int,
    page: int = Query(1),
    size: int = Query(3),
    service: DashboardService = Depends(get_dashboard_service),
):
    result = service.get_paginated_anomalies(job_name, build_id, page, size)
    data = result.get("data")
    return PaginatedAnomaliesEnvelope(
        has_data=result["hasData"],
        data=PaginatedAnomaliesResponse.model_validate(data) if data is not None else None,
        message=result.get("message"),
    )


@router.get("/builds/{conversation_id}/{build_number}/ai-insights")
def get_ai_insights(
    conversation_id: str,
    build_number: int,
    service: DashboardService = Depends(get_dashboard_service),
) -> dict[str, Any]:
    return service.get_ai_insights(conversation_id, build_number)


# ===== Charts and listings =====


@router.get("/jobs", response_model=list[str])
def get_job_names(service: DashboardService = Depends(get_dashboard_service)):
    return service.get_all_job_names()


@router.get("/anomaly-trend", response_model=ChartDataResponse)
def get_anomaly_trend(
    job_filter: str = Query("all", alias="jobFilter"),
    build_count: Optional[int] = Query(5, alias="buildCount"),
    service: DashboardService = Depends(get_dashboard_service),
):
    return ChartDataResponse.model_validate(service.get_anomaly_trend(job_filter, build_count))


@router.get("/severity-distribution", response_model=ChartDataResponse)
def get_severity_distribution(
    job_filter: str = Query("all", alias="jobFilter"),
    build_count: Optional[int] = Query(5, alias="buildCount"),
    service: DashboardService = Depends(get_dashboard_service),
):
    return ChartDataResponse.model_validate(
        service.get_severity_distribution(job_filter, build_count)
    )


@router.get("/job-explorer", response_model=list[JobExplorerRowResponse])
def get_job_explorer(
    tab: Optional[str] = Query(None),
    service: DashboardService = Depends(get_dashboard_service),
):
    return [JobExplorerRowResponse.model_validate(row) for row in service.get_jobs_by_status(tab)]
