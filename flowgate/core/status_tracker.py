"""
Status tracking for submitted analyses.

Two paths move an Analysis through its lifecycle:

- push: the backend calls back with ``jobId``/``status`` (``handle_callback``)
- pull: the user, the administrator or the background sweeper asks for a
  status check (``poll``), which queries every eligible remote job through a
  bounded thread pool

Both paths write through the store's compare-and-swap, so concurrent
writers never lose an update silently. DONE and HIDDEN are never
overwritten, and neither path downgrades a terminal status to a
non-terminal one.
"""

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field

from flowgate.backends import BackendClient, ClientRegistry
from flowgate.core.analysis_store import AnalysisStore
from flowgate.core.exceptions import (
    AnalysisNotFoundError,
    ConfigurationError,
    FlowgateError,
    StaleWriteError,
)
from flowgate.core.notifier import Notifier, NullNotifier
from flowgate.core.schemas.analysis import Analysis, AnalysisStatus, parse_job_number
from flowgate.core.schemas.catalog import AnalysisServer, Credentials
from flowgate.core.schemas.job_result import JobResult
from flowgate.core.server_registry import ServerRegistry
from flowgate.utils.logger import get_logger

logger = get_logger(__name__)

MAX_WRITE_ATTEMPTS = 3

STATUS_TOKENS = {
    "finished": AnalysisStatus.DONE,
    "processing": AnalysisStatus.PROCESSING,
    "error": AnalysisStatus.ERROR,
}


def status_from_token(token: Optional[str]) -> AnalysisStatus:
    """Map a callback status token; anything unrecognised means PROCESSING."""
    return STATUS_TOKENS.get((token or "").strip().lower(), AnalysisStatus.PROCESSING)


def status_from_result(result: JobResult) -> AnalysisStatus:
    if result.status.has_error:
        return AnalysisStatus.ERROR
    if result.status.is_finished:
        return AnalysisStatus.DONE
    return AnalysisStatus.PROCESSING


def is_blocked_transition(current: AnalysisStatus, target: AnalysisStatus) -> bool:
    """True if moving from ``current`` to ``target`` must not be written."""
    if current.is_settled or current == target:
        return True
    return current.is_terminal and not target.is_terminal


def periodic_check_needed(analyses: Iterable[Analysis]) -> bool:
    """True iff at least one analysis has a remote job that is not settled."""
    return any(
        a.has_remote_job and not a.analysis_status.is_settled for a in analyses
    )


class CallbackOutcome(BaseModel):
    """Result of one status callback."""

    job_id: Optional[str] = None
    status_token: Optional[str] = None
    applied: bool = False
    analysis_id: Optional[int] = None
    status: Optional[AnalysisStatus] = None
    reason: str = ""

    @property
    def message(self) -> str:
        if not self.job_id:
            return "got no status!"
        return f"got status! jobId={self.job_id} jobStatus={self.status_token}"


class PollScopeKind(str, Enum):
    ALL = "all"
    OWNER = "owner"


class PollScope(BaseModel):
    """Which analyses a poll may touch: every row, or one user's rows."""

    kind: PollScopeKind
    username: Optional[str] = None
    experiment_id: Optional[int] = None

    @classmethod
    def all(cls, experiment_id: Optional[int] = None) -> "PollScope":
        return cls(kind=PollScopeKind.ALL, experiment_id=experiment_id)

    @classmethod
    def owner(cls, username: str, experiment_id: Optional[int] = None) -> "PollScope":
        return cls(kind=PollScopeKind.OWNER, username=username, experiment_id=experiment_id)


class PollReport(BaseModel):
    """Summary of one pull pass (analysis ids per outcome)."""

    checked: int = 0
    updated: List[int] = Field(default_factory=list)
    unchanged: List[int] = Field(default_factory=list)
    skipped: List[int] = Field(default_factory=list)
    periodic_check_needed: bool = False


class StatusTracker:
    """Lifecycle state machine of submitted analyses."""

    def __init__(
        self,
        registry: ServerRegistry,
        clients: ClientRegistry,
        store: AnalysisStore,
        notifier: Optional[Notifier] = None,
        max_workers: int = 4,
    ):
        self.registry = registry
        self.clients = clients
        self.store = store
        self.notifier = notifier or NullNotifier()
        self.max_workers = max(1, max_workers)

    # ------------------------------------------------------------------
    # push path
    # ------------------------------------------------------------------

    def handle_callback(
        self, job_id: Optional[str], status_token: Optional[str]
    ) -> CallbackOutcome:
        """
        Apply a status callback from a backend.

        Unknown or non-positive job ids are acknowledged without change, as
        are callbacks for analyses already DONE or HIDDEN and callbacks that
        would move an ERROR analysis back to PROCESSING.
        """
        job_id = str(job_id).strip() if job_id is not None else ""
        outcome = CallbackOutcome(job_id=job_id or None, status_token=status_token)
        if not job_id:
            outcome.reason = "missing job id"
            return outcome

        number = parse_job_number(job_id)
        if number is not None and number <= 0:
            outcome.reason = "non-positive job id"
            return outcome

        analysis = self.store.find_by_job_number(job_id)
        if analysis is None:
            logger.info(f"Callback for unknown job {job_id} ignored")
            outcome.reason = "unknown job"
            return outcome

        target = status_from_token(status_token)
        outcome.analysis_id = analysis.id

        for _ in range(MAX_WRITE_ATTEMPTS):
            if is_blocked_transition(analysis.analysis_status, target):
                outcome.status = analysis.analysis_status
                outcome.reason = "no change"
                return outcome

            update = {"analysis_status": target}
            if target == AnalysisStatus.DONE:
                update["date_completed"] = self._completion_time(analysis)

            try:
                stored = self.store.compare_and_swap(
                    analysis.model_copy(update=update), analysis.version
                )
            except StaleWriteError:
                analysis = self.store.get(analysis.id)
                continue
            except AnalysisNotFoundError:
                outcome.reason = "analysis erased"
                return outcome

            logger.info(
                f"Job {job_id} (analysis {stored.id}) -> {stored.analysis_status.name} "
                f"via callback"
            )
            self._notify(stored)
            outcome.applied = True
            outcome.status = stored.analysis_status
            outcome.reason = "updated"
            return outcome

        logger.warning(f"Callback for job {job_id} lost {MAX_WRITE_ATTEMPTS} write races")
        outcome.reason = "write conflict"
        return outcome

    def _completion_time(self, analysis: Analysis) -> datetime:
        try:
            client, server, credentials = self._backend_for(analysis)
            result = client.status(server, analysis.job_number, credentials)
            if result.completed_at is not None:
                return result.completed_at
        except FlowgateError as e:
            logger.debug(f"No completion time for job {analysis.job_number}: {e}")
        return datetime.now()

    # ------------------------------------------------------------------
    # pull path
    # ------------------------------------------------------------------

    def candidates(self, scope: PollScope) -> List[Analysis]:
        """Analyses in ``scope`` that are neither DONE nor HIDDEN."""
        if scope.kind == PollScopeKind.OWNER:
            rows = self.store.list(
                experiment_id=scope.experiment_id,
                user=scope.username,
                include_hidden=False,
            )
        else:
            rows = self.store.list(experiment_id=scope.experiment_id)
        return [a for a in rows if not a.analysis_status.is_settled]

    def poll(self, scope: PollScope) -> PollReport:
        """
        Query the backend of every eligible analysis in ``scope``.

        No network call is made when no analysis needs a check. A failure
        for one analysis skips it and leaves its stored status untouched.
        """
        candidates = self.candidates(scope)
        report = PollReport()
        if not periodic_check_needed(candidates):
            return report

        targets = [a for a in candidates if a.has_remote_job]
        report.checked = len(targets)
        workers = min(self.max_workers, len(targets))

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(self._fetch_status, a): a for a in targets}
            for future in as_completed(futures):
                analysis = futures[future]
                try:
                    result = future.result()
                except Exception as e:
                    logger.warning(
                        f"Status check for job {analysis.job_number} "
                        f"(analysis {analysis.id}) skipped: {e}"
                    )
                    report.skipped.append(analysis.id)
                    continue

                if not result.is_success:
                    logger.warning(
                        f"Status check for job {analysis.job_number} returned "
                        f"{result.status_code} {result.reason or ''}".rstrip()
                    )
                    report.skipped.append(analysis.id)
                elif self._apply_pull(analysis, result):
                    report.updated.append(analysis.id)
                else:
                    report.unchanged.append(analysis.id)

        report.periodic_check_needed = periodic_check_needed(self.candidates(scope))
        logger.info(
            f"Polled {report.checked} jobs: {len(report.updated)} updated, "
            f"{len(report.skipped)} skipped"
        )
        return report

    def _fetch_status(self, analysis: Analysis) -> JobResult:
        client, server, credentials = self._backend_for(analysis)
        return client.status(server, analysis.job_number, credentials)

    def _apply_pull(self, analysis: Analysis, result: JobResult) -> bool:
        target = status_from_result(result)

        for _ in range(MAX_WRITE_ATTEMPTS):
            if is_blocked_transition(analysis.analysis_status, target):
                return False

            update = {"analysis_status": target}
            if target == AnalysisStatus.DONE:
                update["date_completed"] = result.completed_at or datetime.now()

            try:
                stored = self.store.compare_and_swap(
                    analysis.model_copy(update=update), analysis.version
                )
            except StaleWriteError:
                analysis = self.store.get(analysis.id)
                continue
            except AnalysisNotFoundError:
                return False

            logger.info(
                f"Job {stored.job_number} (analysis {stored.id}) -> "
                f"{stored.analysis_status.name} via poll"
            )
            self._notify(stored)
            return True

        logger.warning(f"Poll of analysis {analysis.id} lost {MAX_WRITE_ATTEMPTS} write races")
        return False

    def _backend_for(
        self, analysis: Analysis
    ) -> Tuple[BackendClient, AnalysisServer, Credentials]:
        module = self.registry.get_module(analysis.module_id)
        if module is None:
            raise ConfigurationError(
                f"Module {analysis.module_id} of analysis {analysis.id} is not configured",
                {"analysis_id": analysis.id},
            )
        server = self.registry.server_for(module)
        client = self.clients.get(self.registry.classify(server))
        return client, server, self.registry.credentials_for(server)

    def _notify(self, analysis: Analysis) -> None:
        try:
            self.notifier.notify(analysis)
        except Exception as e:
            logger.warning(f"Notifier failed for job {analysis.job_number}: {e}")


class StatusSweeper:
    """Background thread that polls every analysis at a fixed interval."""

    def __init__(self, tracker: StatusTracker, interval: float):
        self.tracker = tracker
        self.interval = interval
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """Start sweeping; returns False when the interval disables it."""
        if self.interval <= 0:
            logger.info("Status sweeper disabled (interval <= 0)")
            return False
        if self.is_running:
            return True

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="flowgate-status-sweeper", daemon=True
        )
        self._thread.start()
        logger.info(f"Status sweeper started (every {self.interval:g}s)")
        return True

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
            logger.info("Status sweeper stopped")

    def sweep_once(self) -> Optional[PollReport]:
        try:
            return self.tracker.poll(PollScope.all())
        except Exception as e:
            logger.error(f"Status sweep failed: {e}", exc_info=True)
            return None

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            self.sweep_once()
