"""
TTL-cached snapshot of the Jenkins job list.

A cache slot is replaced wholesale on refresh and never mutated. A miss
is served by a single in-flight fetch: the first caller fetches outside
the lock and every caller arriving meanwhile waits on the same future.
"""

import logging
import time
from concurrent.futures import Future
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Generic, Optional, TypeVar

from buildlens.config import settings
from buildlens.jenkins.client import JenkinsClient, JenkinsJob, running_builds_of

logger = logging.getLogger(__name__)

T = TypeVar("T")

STATUS_COLOR_MAP = {
    "RED": "bg-red-500",
    "YELLOW": "bg-yellow-500",
    "BLUE": "bg-green-500",
    "GREY": "bg-gray-500",
    "DISABLED": "bg-gray-500",
    "ABORTED": "bg-gray-700",
    "NOTBUILT": "bg-gray-300",
}
DEFAULT_COLOR_CLASS = "bg-gray-500"

STATUS_MAP = {
    "BLUE": "SUCCESS",
    "RED": "FAILURE",
    "YELLOW": "UNSTABLE",
    "ABORTED": "ABORTED",
    "NOTBUILT": "NOT_BUILT",
    "DISABLED": "DISABLED",
}
IN_PROGRESS_SUFFIX = "_ANIME"


@dataclass(frozen=True)
class JobSnapshot:
    """Presentation-ready state of one Jenkins job."""

    name: str
    status: str
    in_progress: bool
    color_class: str
    timestamp: int  # last build start, epoch milliseconds (0 if never built)


def snapshot_from_job(job: JenkinsJob) -> JobSnapshot:
    """Translate a Jenkins ball color into status, progress and CSS class."""
    color = (job.color or "").upper()
    in_progress = color.endswith(IN_PROGRESS_SUFFIX)
    base = color[: -len(IN_PROGRESS_SUFFIX)] if in_progress else color
    return JobSnapshot(
        name=job.name,
        status=STATUS_MAP.get(base, "UNKNOWN"),
        in_progress=in_progress or job.building,
        color_class=STATUS_COLOR_MAP.get(base, DEFAULT_COLOR_CLASS),
        timestamp=job.last_build_timestamp or 0,
    )


@dataclass(frozen=True)
class CacheSlot(Generic[T]):
    value: T
    captured_at: float


class TTLCache(Generic[T]):
    """
    Single-slot cache with a fixed TTL and single-flight refresh.

    Args:
        loader: Fetches a fresh value; may raise
        ttl_seconds: Slot lifetime
        empty: Factory for the value served when the first fetch fails
        clock: Monotonic clock, injectable for tests
        name: Used in log messages
    """

    def __init__(
        self,
        loader: Callable[[], T],
        ttl_seconds: float,
        empty: Callable[[], T],
        clock: Callable[[], float] = time.monotonic,
        name: str = "snapshot",
    ):
        self._loader = loader
        self.ttl_seconds = ttl_seconds
        self._empty = empty
        self._clock = clock
        self.name = name
        self._lock = Lock()
        self._slot: Optional[CacheSlot[T]] = None
        self._inflight: Optional[Future] = None
        # Bumped by invalidate(); a fetch started in an older generation
        # must not install its result.
        self._generation = 0

    def _fresh(self, slot: Optional[CacheSlot[T]]) -> bool:
        return slot is not None and self._clock() - slot.captured_at < self.ttl_seconds

    def get(self) -> T:
        """Return the cached value, refreshing it once when expired."""
        with self._lock:
            slot = self._slot
            if self._fresh(slot):
                return slot.value
            future = self._inflight
            leader = future is None
            if leader:
                future = Future()
                self._inflight = future
                generation = self._generation

        if not leader:
            return future.result()

        try:
            value = self._loader()
        except Exception as e:
            with self._lock:
                stale = self._slot
            fallback = stale.value if stale is not None else self._empty()
            logger.warning(
                f"Refreshing {self.name} cache failed: {e}. "
                f"Serving {'stale' if stale is not None else 'empty'} data."
            )
            future.set_result(fallback)
            return fallback
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            with self._lock:
                if generation == self._generation:
                    self._slot = CacheSlot(value=value, captured_at=self._clock())
                else:
                    logger.debug(f"Discarding {self.name} fetch invalidated mid-flight")
            future.set_result(value)
            return value
        finally:
            with self._lock:
                if self._inflight is future:
                    self._inflight = None

    def peek(self) -> Optional[CacheSlot[T]]:
        """Current slot without refreshing."""
        with self._lock:
            return self._slot

    def invalidate(self) -> None:
        """Expire the slot so the next get() fetches."""
        with self._lock:
            self._slot = None
            self._generation += 1
            # Later callers start a fresh fetch instead of joining a stale one.
            self._inflight = None


class JobSnapshotCache:
    """
    Cached Jenkins job list plus the map of in-flight builds.

    The two caches refresh independently, each with its own capture time.
    """

    def __init__(
        self,
        client: JenkinsClient,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        folder: Optional[str] = None,
    ):
        ttl = settings.snapshot_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self.client = client
        self.folder = folder
        self._jobs: TTLCache[list[JobSnapshot]] = TTLCache(
            self._load_jobs, ttl, empty=list, clock=clock, name="job snapshot"
        )
        self._active: TTLCache[dict[str, int]] = TTLCache(
            self._load_active, ttl, empty=dict, clock=clock, name="active builds"
        )

    def _load_jobs(self) -> list[JobSnapshot]:
        return [snapshot_from_job(job) for job in self.client.fetch_jobs(self.folder)]

    def _load_active(self) -> dict[str, int]:
        return running_builds_of(self.client.fetch_jobs(self.folder))

    def get(self) -> list[JobSnapshot]:
        """Jobs as of the last refresh (at most one TTL old)."""
        return self._jobs.get()

    def active_builds(self) -> dict[str, int]:
        """In-flight builds as ``{job_name: start_epoch_millis}``."""
        return self._active.get()

    def invalidate(self) -> None:
        self._jobs.invalidate()
        self._active.invalidate()
