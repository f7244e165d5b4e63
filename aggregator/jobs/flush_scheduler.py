"""Background thread running the scope sweep on a fixed interval.

Optional companion to the external scheduler endpoint: enabled when
``sweep_interval_seconds`` is positive and driven by the application lifespan.
Each tick runs ``FlushSweeper.sweep_all`` on its own event loop.
"""
from __future__ import annotations

import asyncio
import threading

from aggregator.services.flush_sweeper import FlushSweeper, SweepReport
from aggregator.utils import get_logger

logger = get_logger(__name__)


class FlushScheduler:
    def __init__(self, sweeper: FlushSweeper, *, interval_seconds: float):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.sweeper = sweeper
        self.interval_seconds = interval_seconds
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self.last_report: SweepReport | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:  # pragma: no cover
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="flush-scheduler", daemon=True)
        self._thread.start()
        logger.info("Flush scheduler started", interval_seconds=self.interval_seconds)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
        logger.info("Flush scheduler stopped")

    def run_once(self) -> SweepReport:
        report = asyncio.run(self.sweeper.sweep_all(trigger="interval"))
        self.last_report = report
        logger.info(
            "Scheduled sweep finished",
            success_count=report.success_count,
            total_scopes=report.total_scopes,
            flushed_scopes=report.flushed_scopes,
        )
        return report

    def _loop(self) -> None:
        # First sweep waits one interval; startup is not a flush trigger.
        while not self._stop_event.wait(self.interval_seconds):
            try:
                self.run_once()
            except Exception as e:  # pragma: no cover
                logger.error("Scheduled sweep failed", error=str(e), exc_info=True)


__all__ = ["FlushScheduler"]
