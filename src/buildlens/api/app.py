"""
BuildLens FastAPI Application.

Serves the dashboard read API and hosts the background tasks that keep
the record store in sync with Jenkins.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from buildlens.api.routes import dashboard
from buildlens.background import BackgroundServices
from buildlens.config import settings
from buildlens.db.connection import check_connection, init_db
from buildlens.exceptions import InvalidQueryError
from buildlens.jenkins.client import JenkinsClient
from buildlens.jenkins.snapshot import JobSnapshotCache
from buildlens.logging_config import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI application.

    Creates missing tables and the shared Jenkins client and snapshot
    cache, then starts the Jenkins sync, retention and view refresh tasks
    when background tasks are enabled.
    """
    setup_logging(context="api")

    init_db()
    logger.info("✓ Database schema ready")

    client = JenkinsClient()
    snapshot = JobSnapshotCache(client)
    app.state.jenkins_client = client
    app.state.snapshot_cache = snapshot

    services = None
    if settings.background_tasks_enabled:
        services = BackgroundServices(client=client, snapshot=snapshot)
        app.state.background = services
        services.start()
        logger.info("✓ Background tasks started")

    logger.info("Application startup complete")

    yield

    logger.info("Application shutdown initiated...")
    try:
        if services is not None:
            services.shutdown(timeout=10)
        else:
            client.close()
    except Exception as e:
        logger.error(f"Error during shutdown: {e}", exc_info=True)
    logger.info("Application shutdown complete")


app = FastAPI(
    lifespan=lifespan,
    title="BuildLens API",
    description="Anomaly analytics for CI builds",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(InvalidQueryError)
async def invalid_query_handler(request: Request, exc: InvalidQueryError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint - API health check."""
    return {
        "status": "ok",
        "message": "BuildLens API is running",
        "version": "0.1.0",
    }


@app.get("/health")
def health() -> dict[str, str]:
    """Health check endpoint."""
    db_status = "healthy" if check_connection() else "unhealthy"
    return {
        "status": "healthy" if db_status == "healthy" else "degraded",
        "database": db_status,
    }


app.include_router(dashboard.router, prefix="/api/dashboard", tags=["dashboard"])
