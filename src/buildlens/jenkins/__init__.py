"""Jenkins integration: HTTP client and cached job snapshot."""

from .client import JenkinsClient, JenkinsConfig, JenkinsJob
from .snapshot import JobSnapshot, JobSnapshotCache, TTLCache

__all__ = [
    "JenkinsClient",
    "JenkinsConfig",
    "JenkinsJob",
    "JobSnapshot",
    "JobSnapshotCache",
    "TTLCache",
]
