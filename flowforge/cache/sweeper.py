"""
Background sweeper for the FlowForge cache.

Periodically calls :meth:`CacheStore.cleanup` from a daemon thread so
expired entries do not accumulate between administrator-triggered
cleanups.  Correctness never depends on the sweeper: reads already
ignore expired entries.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Dict, Optional

from flowforge.cache.models import CleanupReport
from flowforge.cache.store import CacheStore
from flowforge.exceptions import CacheError

logger = logging.getLogger(__name__)


class CacheSweeper:
    """Daemon thread that runs cleanup passes on a fixed interval.

    Args:
        store: The cache store to sweep.
        interval_seconds: Seconds between passes (must be positive).
    """

    def __init__(self, store: CacheStore, interval_seconds: float = 300.0) -> None:
        if interval_seconds <= 0:
            raise CacheError("Sweep interval must be positive")
        self._store = store
        self._interval_seconds = interval_seconds

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()

        # Counters
        self._runs: int = 0
        self._total_removed: int = 0
        self._errors: int = 0
        self._last_run_at: Optional[datetime] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the sweeper background thread.

        Raises:
            CacheError: If the sweeper is already running.
        """
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                raise CacheError("CacheSweeper is already running")

            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run_loop,
                name="flowforge-cache-sweeper",
                daemon=True,
            )
            self._thread.start()
        logger.info(
            "CacheSweeper started",
            extra={"interval_seconds": self._interval_seconds},
        )

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the sweeper and wait for the thread to exit."""
        with self._lock:
            thread = self._thread
            if thread is None:
                return
            self._stop_event.set()
            self._thread = None

        thread.join(timeout=timeout)
        logger.info("CacheSweeper stopped")

    @property
    def is_running(self) -> bool:
        """Whether the sweeper loop is active."""
        thread = self._thread
        return thread is not None and thread.is_alive()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def run_once(self) -> CleanupReport:
        """Run a single cleanup pass and update the counters.

        Raises:
            Exception: Whatever the store raised; counted as an error.
        """
        try:
            report = self._store.cleanup()
        except Exception:
            with self._lock:
                self._errors += 1
            raise

        with self._lock:
            self._runs += 1
            self._total_removed += report.removed_count
            self._last_run_at = self._store.clock.now()
        return report

    def stats(self) -> Dict[str, Any]:
        """Return sweeper counters and running state."""
        with self._lock:
            return {
                "running": self.is_running,
                "interval_seconds": self._interval_seconds,
                "runs": self._runs,
                "total_removed": self._total_removed,
                "errors": self._errors,
                "last_run_at": self._last_run_at.isoformat() if self._last_run_at else None,
            }

    # ------------------------------------------------------------------
    # Internal loop
    # ------------------------------------------------------------------

    def _run_loop(self) -> None:
        """Main sweeper loop running in a daemon thread."""
        logger.debug("Sweeper loop started")
        while not self._stop_event.wait(self._interval_seconds):
            try:
                report = self.run_once()
            except Exception as exc:
                logger.error(
                    "Cache sweep failed",
                    extra={"error": str(exc)},
                    exc_info=True,
                )
                continue
            logger.debug(
                "Cache sweep finished",
                extra={
                    "removed": report.removed_count,
                    "remaining": report.remaining_count,
                },
            )
