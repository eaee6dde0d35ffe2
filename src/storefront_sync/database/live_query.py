"""Live queries: repository reads that re-run on the worker pool."""

import logging
import threading
from typing import Callable, Iterable, Optional

from PySide6.QtCore import QObject, QRunnable, QThreadPool, Signal

from .repository import Repository

logger = logging.getLogger(__name__)


class _QueryTask(QRunnable):
    """Runs one live-query refresh on a pool thread."""

    def __init__(self, live: "LiveQuery"):
        super().__init__()
        self.live = live

    def run(self):
        self.live._execute()


class LiveQuery(QObject):
    """A query registered once that keeps emitting fresh result sets.

    After ``start()`` the query runs immediately and again after every
    committed write touching one of its tables, until ``stop()``.
    Refreshes never overlap: writes that land while a refresh is running
    collapse into a single follow-up run, so results arrive in order.

    With no pool the query runs inline on the writer's thread, which is
    what the tests and one-shot scripts use.
    """

    results_ready = Signal(object)
    failed = Signal(str)

    def __init__(self, repo: Repository, tables: Iterable[str],
                 query: Callable[[], object],
                 pool: Optional[QThreadPool] = None, parent=None):
        super().__init__(parent)
        self.tables = frozenset(tables)
        self._repo = repo
        self._query = query
        self._pool = pool
        self._lock = threading.Lock()
        self._running = False
        self._dirty = False
        self._active = False
        self._remove_listener = None
        self._latest = None

    @property
    def value(self):
        """The most recent result, or None before the first delivery."""
        return self._latest

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> "LiveQuery":
        if self._active:
            return self
        self._active = True
        self._remove_listener = self._repo.add_change_listener(self._on_change)
        self._schedule()
        return self

    def stop(self):
        self._active = False
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None

    def _on_change(self, changed: frozenset):
        if changed & self.tables:
            self._schedule()

    def _schedule(self):
        with self._lock:
            if not self._active:
                return
            if self._running:
                self._dirty = True
                return
            self._running = True
        if self._pool is None:
            self._execute()
        else:
            self._pool.start(_QueryTask(self))

    def _execute(self):
        while True:
            try:
                result = self._query()
            except Exception as e:
                logger.exception("Live query over %s failed", sorted(self.tables))
                self.failed.emit(str(e))
            else:
                self._latest = result
                if self._active:
                    self.results_ready.emit(result)

            with self._lock:
                if self._dirty and self._active:
                    self._dirty = False
                    continue
                self._running = False
                self._dirty = False
                return
