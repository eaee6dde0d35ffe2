"""Sync orchestrator: runs the reconcilers as an ordered list of stages.

The default pipeline is::

    FetchMerchants -> DeriveAccounts -> PersistMerchants -> SyncListings

Order is the order of the stage list. A stage names the context values it
needs in ``requires``; when one of them is missing (because the stage that
produces it failed) the stage is skipped, while stages that need nothing
from earlier ones still run. Every failure is logged, kept in a bounded
history and emitted as a ``StageFailure`` on ``stage_failed``.

Constraint violations from SQLite are defects rather than sync failures:
they are reported like any other failure and then re-raised, ending the run.
"""

import logging
import sqlite3
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from PySide6.QtCore import QObject, Signal

from storefront_sync.database.repository import Repository
from storefront_sync.remote.dto import MerchantDTO
from storefront_sync.remote.errors import DecodeError, NetworkError, RemoteError
from storefront_sync.remote.gateway import RemoteGateway

from .reconcilers import (
    AccountReconciler,
    ListingReconciler,
    MerchantReconciler,
    ReconcileReport,
)

logger = logging.getLogger(__name__)

FETCH_MERCHANTS = "FetchMerchants"
DERIVE_ACCOUNTS = "DeriveAccounts"
PERSIST_MERCHANTS = "PersistMerchants"
SYNC_LISTINGS = "SyncListings"

# Stages re-run by the periodic timer
MERCHANT_STAGES = (FETCH_MERCHANTS, DERIVE_ACCOUNTS, PERSIST_MERCHANTS)

STATUS_OK = "ok"
STATUS_FAILED = "failed"
STATUS_SKIPPED = "skipped"


@dataclass
class SyncContext:
    """Values handed from one stage to the next within a single run."""

    merchants: Optional[list[MerchantDTO]] = None
    account_ids: Optional[dict[str, int]] = None

    def missing(self, names: Iterable[str]) -> list[str]:
        return [n for n in names if getattr(self, n, None) is None]


@dataclass(frozen=True)
class SyncStage:
    name: str
    action: Callable[[SyncContext], Optional[ReconcileReport]]
    requires: tuple[str, ...] = ()


@dataclass(frozen=True)
class StageFailure:
    """A structured record of one failed stage."""

    stage: str
    error_type: str
    message: str
    kind: str  # network | remote | decode | defect | unexpected
    transient: bool
    occurred_at: float = field(default_factory=time.time)

    @classmethod
    def from_exception(cls, stage: str, error: BaseException) -> "StageFailure":
        return cls(
            stage=stage,
            error_type=type(error).__name__,
            message=str(error),
            kind=classify_error(error),
            transient=bool(getattr(error, "transient", False)),
        )


@dataclass
class StageResult:
    name: str
    status: str
    report: Optional[ReconcileReport] = None
    failure: Optional[StageFailure] = None
    reason: str = ""
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK


@dataclass
class SyncReport:
    stages: list[StageResult] = field(default_factory=list)
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    aborted: bool = False

    @property
    def ok(self) -> bool:
        return not self.aborted and all(s.ok for s in self.stages)

    @property
    def failures(self) -> list[StageFailure]:
        return [s.failure for s in self.stages if s.failure is not None]

    @property
    def stage_names(self) -> list[str]:
        return [s.name for s in self.stages]

    def result(self, name: str) -> Optional[StageResult]:
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None

    def summary(self) -> str:
        parts = []
        for s in self.stages:
            text = f"{s.name}: {s.status}"
            if s.report is not None:
                counts = ", ".join(f"{k}={v}" for k, v in s.report.as_dict().items())
                text += f" ({counts})"
            elif s.failure is not None:
                text += f" ({s.failure.error_type}: {s.failure.message})"
            elif s.reason:
                text += f" ({s.reason})"
            parts.append(text)
        return "; ".join(parts)


def classify_error(error: BaseException) -> str:
    if isinstance(error, sqlite3.IntegrityError):
        return "defect"
    if isinstance(error, NetworkError):
        return "network"
    if isinstance(error, DecodeError):
        return "decode"
    if isinstance(error, RemoteError):
        return "remote"
    return "unexpected"


class _InFlight:
    """The run currently executing, for callers that coalesce onto it."""

    def __init__(self, names: frozenset):
        self.names = names
        self.thread_id = threading.get_ident()
        self.done = threading.Event()
        self.report: Optional[SyncReport] = None


class SyncOrchestrator(QObject):
    """Runs sync stages in order, one run at a time."""

    run_started = Signal(object)  # list of stage names
    stage_failed = Signal(object)  # StageFailure
    run_finished = Signal(object)  # SyncReport

    def __init__(self, repo: Repository, gateway: RemoteGateway,
                 stages: Optional[list[SyncStage]] = None,
                 placeholder_password: Optional[str] = None,
                 history_size: int = 50, parent=None):
        super().__init__(parent)
        self.repo = repo
        self.gateway = gateway
        self.accounts = AccountReconciler(repo, placeholder_password)
        self.merchants = MerchantReconciler(repo)
        self.listings = ListingReconciler(repo)
        self.stages = stages if stages is not None else self.default_stages()
        self._failures: deque[StageFailure] = deque(maxlen=history_size)
        self._lock = threading.Lock()
        self._in_flight: Optional[_InFlight] = None
        self._last_report: Optional[SyncReport] = None

    # ── Stage definitions ───────────────────────────────────────

    def default_stages(self) -> list[SyncStage]:
        return [
            SyncStage(FETCH_MERCHANTS, self._fetch_merchants),
            SyncStage(DERIVE_ACCOUNTS, self._derive_accounts, ("merchants",)),
            SyncStage(PERSIST_MERCHANTS, self._persist_merchants, ("merchants",)),
            SyncStage(SYNC_LISTINGS, self._sync_listings),
        ]

    def _fetch_merchants(self, ctx: SyncContext):
        ctx.merchants = self.gateway.fetch_merchants()
        logger.info("Fetched %d remote merchants", len(ctx.merchants))
        return None

    def _derive_accounts(self, ctx: SyncContext) -> ReconcileReport:
        ctx.account_ids, report = self.accounts.derive_from_merchants(ctx.merchants)
        return report

    def _persist_merchants(self, ctx: SyncContext) -> ReconcileReport:
        return self.merchants.persist(ctx.merchants, ctx.account_ids)

    def _sync_listings(self, ctx: SyncContext) -> ReconcileReport:
        return self.listings.sync(self.gateway.fetch_listings())

    # ── Public API ──────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._in_flight is not None

    @property
    def last_report(self) -> Optional[SyncReport]:
        return self._last_report

    @property
    def recent_failures(self) -> list[StageFailure]:
        """Most recent stage failures, oldest first."""
        return list(self._failures)

    def run_merchant_stages(self) -> SyncReport:
        return self.run(MERCHANT_STAGES)

    def run(self, stage_names: Optional[Iterable[str]] = None) -> SyncReport:
        """Run the named stages (all by default) in pipeline order.

        Only one run executes at a time. A call that overlaps a run
        covering all of its stages waits for it and returns that run's
        report; any other overlapping call waits and then runs itself.
        """
        selected = self._select(stage_names)
        names = frozenset(s.name for s in selected)

        while True:
            with self._lock:
                flight = self._in_flight
                if flight is None:
                    flight = _InFlight(names)
                    self._in_flight = flight
                    break
            if flight.thread_id == threading.get_ident():
                raise RuntimeError("SyncOrchestrator.run() called re-entrantly")
            flight.done.wait()
            if names <= flight.names and flight.report is not None:
                logger.info("Sync request coalesced onto the run that just finished")
                return flight.report

        report = SyncReport()
        flight.report = report
        try:
            self._execute(selected, report)
        finally:
            report.finished_at = time.time()
            self._last_report = report
            with self._lock:
                self._in_flight = None
            flight.done.set()
            self.run_finished.emit(report)
        return report

    # ── Execution ───────────────────────────────────────────────

    def _select(self, stage_names: Optional[Iterable[str]]) -> list[SyncStage]:
        if stage_names is None:
            return list(self.stages)
        wanted = set(stage_names)
        known = {s.name for s in self.stages}
        unknown = wanted - known
        if unknown:
            raise ValueError(f"Unknown sync stages: {sorted(unknown)}")
        return [s for s in self.stages if s.name in wanted]

    def _execute(self, stages: list[SyncStage], report: SyncReport):
        ctx = SyncContext()
        logger.info("Sync run started: %s", " -> ".join(s.name for s in stages))
        self.run_started.emit([s.name for s in stages])

        for stage in stages:
            missing = ctx.missing(stage.requires)
            if missing:
                reason = f"missing {', '.join(missing)}"
                logger.info("Stage %s skipped: %s", stage.name, reason)
                report.stages.append(
                    StageResult(stage.name, STATUS_SKIPPED, reason=reason)
                )
                continue

            started = time.monotonic()
            try:
                stage_report = stage.action(ctx)
            except Exception as e:
                failure = StageFailure.from_exception(stage.name, e)
                report.stages.append(StageResult(
                    stage.name, STATUS_FAILED, failure=failure,
                    duration=time.monotonic() - started,
                ))
                self._record_failure(failure, e)
                if failure.kind == "defect":
                    report.aborted = True
                    raise
                continue

            result = StageResult(
                stage.name, STATUS_OK, report=stage_report,
                duration=time.monotonic() - started,
            )
            report.stages.append(result)
            logger.info("Stage %s finished in %.2fs", stage.name, result.duration)

        logger.info("Sync run finished: %s", report.summary())

    def _record_failure(self, failure: StageFailure, error: Exception):
        self._failures.append(failure)
        if failure.transient:
            logger.error(
                "Stage %s failed (%s), will retry next cycle: %s",
                failure.stage, failure.kind, failure.message,
            )
        else:
            logger.error(
                "Stage %s failed (%s)", failure.stage, failure.kind,
                exc_info=error,
            )
        self.stage_failed.emit(failure)
