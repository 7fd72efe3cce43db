"""
Periodic background tasks.

Each task runs on its own daemon thread: wait the initial delay, run,
then wait the interval, until stopped. Waiting happens on a stop event
so shutdown does not have to sit out a full interval.
"""

import logging
import threading
from typing import Callable, Optional

from sqlalchemy.exc import OperationalError

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Run a callable at a fixed interval on a background thread.

    Args:
        name: Thread and log name
        func: The work to run each tick
        interval: Seconds between the end of one run and the next
        initial_delay: Seconds to wait before the first run
    """

    def __init__(
        self,
        name: str,
        func: Callable[[], object],
        interval: float,
        initial_delay: float = 0.0,
    ):
        self.name = name
        self.func = func
        self.interval = interval
        self.initial_delay = initial_delay
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._runs = 0
        self._failures = 0

    def run_once(self) -> bool:
        """Run one tick; errors are logged so the loop survives them."""
        self._runs += 1
        try:
            self.func()
            return True
        except OperationalError as e:
            self._failures += 1
            logger.warning(f"{self.name}: database unavailable: {e}")
        except Exception as e:
            self._failures += 1
            logger.error(f"Error in {self.name}: {e}", exc_info=True)
        return False

    def _loop(self) -> None:
        logger.info(f"{self.name} starting (interval {self.interval}s)")
        if self._stop_event.wait(self.initial_delay):
            return
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(self.interval)
        logger.info(f"{self.name} stopped after {self._runs} runs ({self._failures} failed)")

    def start(self) -> None:
        if self.is_running:
            logger.warning(f"{self.name} is already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name=self.name)
        self._thread.start()

    def stop(self, timeout: float = 10.0) -> None:
        """Signal the task to stop and wait for the thread to exit."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning(f"{self.name} thread did not stop within {timeout}s timeout")
        self._thread = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def stats(self) -> dict[str, object]:
        return {"running": self.is_running, "runs": self._runs, "failures": self._failures}
