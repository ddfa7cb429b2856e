"""Background thread that drives every running attempt's countdown."""

from __future__ import annotations

import logging
from threading import Event, Thread

from exam_app.constants.exam_constants import TICK_INTERVAL_SECONDS
from exam_app.core.exam_manager import ExamManager

logger = logging.getLogger(__name__)


class CountdownTicker:
    """Calls :meth:`ExamManager.tick_all` once per interval until stopped."""

    def __init__(self, manager: ExamManager, interval_seconds: float = TICK_INTERVAL_SECONDS) -> None:
        self._manager = manager
        self._interval = interval_seconds
        self._stop = Event()
        self._thread: Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> Thread:
        if self.running:
            raise RuntimeError("Countdown ticker is already running.")
        self._stop.clear()
        self._thread = Thread(target=self._run, name="ExamCountdown", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        step = max(1, round(self._interval))
        while not self._stop.wait(self._interval):
            report = self._manager.tick_all(step)
            if report.auto_submitted:
                logger.info("Auto-submitted attempts: %s", ", ".join(report.auto_submitted))
            if report.failed:
                logger.warning("Auto-submit failed for: %s", ", ".join(report.failed))
