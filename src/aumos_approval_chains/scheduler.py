"""Background timeout scheduler.

TimeoutScheduler periodically asks the engine to escalate pending requests
whose deadline has passed.  It runs on a daemon thread that sleeps on a
``threading.Event`` between scans, so :meth:`TimeoutScheduler.stop` takes
effect immediately instead of waiting out the interval.

Starting and stopping are independent of request mutations; tests can keep
the scheduler stopped and call :meth:`TimeoutScheduler.run_once` (or the
engine's ``check_timeouts``) directly.

Example
-------
>>> engine = ApprovalChainEngine()
>>> scheduler = TimeoutScheduler(engine, interval_seconds=60)
>>> scheduler.start()
>>> scheduler.is_running
True
>>> scheduler.stop()
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from aumos_approval_chains.engine import ApprovalChainEngine
    from aumos_approval_chains.requests.models import ApprovalRequest

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 60.0


class TimeoutScheduler:
    """Runs timeout scans on a fixed interval.

    Parameters
    ----------
    engine:
        The engine whose ``check_timeouts`` is invoked on every tick.
    interval_seconds:
        Seconds between scans (default: 60).
    """

    def __init__(
        self,
        engine: "ApprovalChainEngine",
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be > 0, got {interval_seconds}")
        self._engine = engine
        self._interval = float(interval_seconds)
        self._thread: threading.Thread | None = None
        self._stop_event: threading.Event | None = None
        self._lock = threading.Lock()
        self._ticks = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self, interval_seconds: float | None = None) -> None:
        """Start scanning in the background.

        Calling ``start`` while already running restarts the scheduler,
        picking up ``interval_seconds`` if given.
        """
        if interval_seconds is not None:
            if interval_seconds <= 0:
                raise ValueError(f"interval_seconds must be > 0, got {interval_seconds}")
            self._interval = float(interval_seconds)
        with self._lock:
            self._stop_locked()
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._run,
                args=(stop_event, self._interval),
                daemon=True,
                name="approval-timeout-checker",
            )
            self._stop_event = stop_event
            self._thread = thread
            thread.start()
        logger.info("Started approval timeout checker (interval=%.1fs).", self._interval)

    def stop(self) -> None:
        """Stop the background thread.  A no-op when not running."""
        with self._lock:
            was_running = self._stop_locked()
        if was_running:
            logger.info("Stopped approval timeout checker.")

    def run_once(self, now: datetime | None = None) -> list["ApprovalRequest"]:
        """Run a single scan and return the requests it escalated.

        Failures of the scan as a whole are logged and reported as an empty
        result so the background loop keeps running.
        """
        self._ticks += 1
        try:
            return self._engine.check_timeouts(now=now)
        except Exception:
            logger.exception("Approval timeout scan failed.")
            return []

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def tick_count(self) -> int:
        """Number of scans run since creation."""
        return self._ticks

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _run(self, stop_event: threading.Event, interval: float) -> None:
        while not stop_event.wait(interval):
            self.run_once()

    def _stop_locked(self) -> bool:
        thread, stop_event = self._thread, self._stop_event
        self._thread = None
        self._stop_event = None
        if thread is None or stop_event is None:
            return False
        stop_event.set()
        if thread is not threading.current_thread():
            thread.join()
        return True
