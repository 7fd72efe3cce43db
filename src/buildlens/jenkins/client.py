"""
HTTP client for the Jenkins JSON API.

Only two operations are consumed: listing the jobs of a folder and
triggering a build. fetch_jobs raises UpstreamUnavailableError; the
other entry points degrade to an empty result so an unreachable Jenkins
never breaks the dashboard.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import quote

import httpx

from buildlens.config import settings
from buildlens.exceptions import UpstreamUnavailableError

logger = logging.getLogger(__name__)

JOB_TREE = "jobs[name,color,lastBuild[number,timestamp,building]]"


@dataclass
class JenkinsConfig:
    """Connection settings for a Jenkins controller."""

    base_url: str
    user: Optional[str] = None
    api_token: Optional[str] = None
    folder: str = ""
    timeout: float = 10.0

    @classmethod
    def from_settings(cls) -> "JenkinsConfig":
        return cls(
            base_url=settings.jenkins_url,
            user=settings.jenkins_user,
            api_token=settings.jenkins_api_token,
            folder=settings.jenkins_folder,
            timeout=settings.jenkins_timeout_seconds,
        )


@dataclass(frozen=True)
class JenkinsJob:
    """One entry of a Jenkins job listing."""

    name: str
    color: str
    last_build_number: Optional[int] = None
    last_build_timestamp: Optional[int] = None  # epoch milliseconds
    building: bool = False

    @property
    def last_build_at(self) -> Optional[datetime]:
        if not self.last_build_timestamp:
            return None
        return datetime.fromtimestamp(self.last_build_timestamp / 1000, tz=timezone.utc)


def job_path(name: str) -> str:
    """
    Build the URL path of a job or folder.

    ``"team/api"`` becomes ``"job/team/job/api/"``; an empty name is the
    controller root.
    """
    parts = [p for p in (name or "").split("/") if p]
    return "".join(f"job/{quote(p, safe='')}/" for p in parts)


def running_builds_of(jobs: list[JenkinsJob]) -> dict[str, int]:
    """Map each job with an in-flight build to its start time (epoch ms)."""
    return {
        job.name: job.last_build_timestamp or 0
        for job in jobs
        if job.building or job.color.lower().endswith("_anime")
    }


class JenkinsClient:
    """
    Thin Jenkins client over httpx.

    Uses basic auth with an API token when credentials are configured.
    Every request carries the configured timeout.
    """

    def __init__(
        self,
        config: Optional[JenkinsConfig] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.config = config or JenkinsConfig.from_settings()
        auth = None
        if self.config.user and self.config.api_token:
            auth = (self.config.user, self.config.api_token)
        self._client = httpx.Client(
            base_url=self.config.base_url.rstrip("/") + "/",
            auth=auth,
            timeout=self.config.timeout,
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> "JenkinsClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise UpstreamUnavailableError(f"Jenkins request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailableError(f"Jenkins request failed: {e}") from e

        if response.status_code >= 400:
            raise UpstreamUnavailableError(
                f"Jenkins returned {response.status_code} for {method} {path}",
                status_code=response.status_code,
            )
        return response

    def fetch_jobs(self, folder: Optional[str] = None) -> list[JenkinsJob]:
        """
        List the jobs of a folder, raising when Jenkins is unavailable.

        Args:
            folder: Folder path (``"team/sub"``); defaults to the configured
                folder, empty meaning the controller root

        Raises:
            UpstreamUnavailableError: On timeouts, transport errors, error
                statuses and undecodable bodies
        """
        folder = self.config.folder if folder is None else folder
        response = self._request(
            "GET", f"{job_path(folder)}api/json", params={"tree": JOB_TREE}
        )
        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamUnavailableError(f"Jenkins returned invalid JSON: {e}") from e

        entries = payload.get("jobs") if isinstance(payload, dict) else None
        jobs: list[JenkinsJob] = []
        for entry in entries or []:
            if not isinstance(entry, dict) or not entry.get("name"):
                continue
            last_build = entry.get("lastBuild") or {}
            jobs.append(
                JenkinsJob(
                    name=entry["name"],
                    color=(entry.get("color") or "notbuilt"),
                    last_build_number=last_build.get("number"),
                    last_build_timestamp=last_build.get("timestamp"),
                    building=bool(last_build.get("building", False)),
                )
            )
        logger.debug(f"Fetched {len(jobs)} Jenkins jobs from folder {folder!r}")
        return jobs

    def list_jobs(self, folder: Optional[str] = None) -> list[JenkinsJob]:
        """
        List the jobs of a folder.

        Returns:
            Jobs in Jenkins order, or an empty list when Jenkins is
            unreachable or answers with garbage
        """
        try:
            return self.fetch_jobs(folder)
        except UpstreamUnavailableError as e:
            logger.warning(
                f"Failed to fetch Jenkins jobs due to: {e}. Continuing with empty list."
            )
            return []

    def running_builds(self, folder: Optional[str] = None) -> dict[str, int]:
        """
        Map each job with an in-flight build to its build start time.

        Returns:
            ``{job_name: start_epoch_millis}``
        """
        return running_builds_of(self.list_jobs(folder))

    def trigger_build(self, job_name: str) -> bool:
        """
        Queue a new build of a job.

        Returns:
            True when Jenkins accepted the request; failures are logged
        """
        try:
            self._request("POST", f"{job_path(job_name)}build")
        except UpstreamUnavailableError as e:
            logger.error(f"Error triggering new build for {job_name}: {e}")
            return False
        logger.info(f"Triggered new build for job: {job_name}")
        return True
