"""
Build-count-weighted trend sampling.

Spreads a build budget across jobs so that a handful of jobs are not
starved and hundreds of jobs do not blow up the chart.
"""

from __future__ import annotations

from typing import Callable, List, Sequence, TypeVar

T = TypeVar("T")

ALL_JOBS = "all"


def per_job_limit(build_count: int, distinct_jobs: int) -> int:
    """
    Maximum builds a single job may contribute to an all-jobs trend.

    ``max(1, min(build_count // distinct_jobs, build_count))``
    """
    if build_count < 1:
        raise ValueError(f"build_count must be positive, got {build_count}")
    if distinct_jobs < 1:
        return build_count
    return max(1, min(build_count // distinct_jobs, build_count))


def sample_recent_builds(
    builds: Sequence[T],
    job_filter: str,
    build_count: int,
    job_of: Callable[[T], str],
) -> List[T]:
    """
    Pick the builds a trend chart shows.

    Args:
        builds: Candidate builds already ordered newest first
            (timestamp desc, build number desc)
        job_filter: ``"all"`` or one job name
        build_count: Build budget
        job_of: Returns the job name of a build

    Returns:
        The sampled builds, in the input order
    """
    if build_count < 1:
        raise ValueError(f"build_count must be positive, got {build_count}")

    if job_filter != ALL_JOBS:
        return [b for b in builds if job_of(b) == job_filter][:build_count]

    distinct_jobs = len({job_of(b) for b in builds})
    limit = per_job_limit(build_count, distinct_jobs)

    taken: dict[str, int] = {}
    sampled: List[T] = []
    for build in builds:
        job = job_of(build)
        if taken.get(job, 0) < limit:
            taken[job] = taken.get(job, 0) + 1
            sampled.append(build)
    return sampled

