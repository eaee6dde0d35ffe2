"""Sync scheduler: startup sync plus a periodic merchant re-sync on a QTimer."""

import logging
from typing import Optional

from PySide6.QtCore import QObject, QRunnable, QThreadPool, QTimer, Signal

from storefront_sync.config import Config

from .orchestrator import MERCHANT_STAGES, SyncOrchestrator

logger = logging.getLogger(__name__)


class _SyncTask(QRunnable):
    """Runs one orchestrator pass on a pool thread."""

    def __init__(self, scheduler: "SyncScheduler", stage_names):
        super().__init__()
        self.scheduler = scheduler
        self.stage_names = stage_names

    def run(self):
        self.scheduler._run(self.stage_names)


class SyncScheduler(QObject):
    """Triggers orchestrator runs off the interactive thread.

    ``start()`` queues a full run and arms a timer that re-runs only the
    merchant stages every ``Config.SYNC_INTERVAL_MINUTES``. ``stop()``
    disarms the timer; a run already executing is left to finish.
    """

    sync_finished = Signal(object)  # SyncReport
    sync_error = Signal(str)

    def __init__(self, orchestrator: SyncOrchestrator,
                 pool: Optional[QThreadPool] = None,
                 interval_ms: Optional[int] = None, parent=None):
        super().__init__(parent)
        self.orchestrator = orchestrator
        self._pool = pool
        self._interval_ms = interval_ms
        self._timer: Optional[QTimer] = None

    @property
    def interval_ms(self) -> int:
        if self._interval_ms is not None:
            return self._interval_ms
        return Config.get_sync_interval_ms()

    @property
    def is_active(self) -> bool:
        return self._timer is not None and self._timer.isActive()

    def start(self, run_initial: bool = True):
        """Arm the periodic timer, optionally queueing a full run first."""
        if self._timer is None:
            self._timer = QTimer(self)
            self._timer.timeout.connect(self._on_timer)
        self._timer.start(self.interval_ms)
        logger.info("Periodic merchant sync every %d ms", self.interval_ms)
        if run_initial:
            self.run_now(full=True)

    def stop(self):
        if self._timer is not None:
            self._timer.stop()
            logger.info("Periodic sync stopped")

    def run_now(self, full: bool = True):
        """Queue a run: every stage, or only the merchant stages."""
        stage_names = None if full else MERCHANT_STAGES
        if self._pool is None:
            self._run(stage_names)
        else:
            self._pool.start(_SyncTask(self, stage_names))

    def _on_timer(self):
        self.run_now(full=False)

    def _run(self, stage_names):
        try:
            report = self.orchestrator.run(stage_names)
        except Exception as e:
            # Only defects escape run(); the traceback goes to the log
            logger.exception("Background sync aborted")
            self.sync_error.emit(f"{type(e).__name__}: {e}")
            return
        self.sync_finished.emit(report)
