"""Periodic sweep that checks every due source with failure isolation."""

import random
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime

import structlog

from src.observability.logging import bind_sweep_context, clear_sweep_context
from src.scheduler.checker import SourceChecker
from src.sources.backoff import DEFAULT_POLICY, BackoffPolicy
from src.sources.constants import COMPONENT_SWEEP
from src.sources.errors import SourceErrorCode, severity_for_error_code
from src.sources.metrics import SourceHealthMetrics
from src.sources.models import FailOutcome, Outcome, Source, TimeoutOutcome
from src.sources.state_machine import SourceStateTransitionError, SourceStatus
from src.store.store import SourceStore


logger = structlog.get_logger()


@dataclass
class SourceCheckResult:
    """Result of checking a single source."""

    source_id: str
    outcome_kind: str
    status: SourceStatus
    error_code: SourceErrorCode | None = None
    next_check_at: datetime | None = None
    duration_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        """Check if the source produced usable items."""
        return self.outcome_kind == "success"

    @property
    def degraded(self) -> bool:
        """Check if the source is usable but degraded."""
        return (
            self.error_code is not None
            and severity_for_error_code(self.error_code) == SourceStatus.WARNING
        )

    @property
    def failed(self) -> bool:
        """Check if the check ended in an error-severity code."""
        return not self.succeeded and not self.degraded


@dataclass
class SweepResult:
    """Result of a complete sweep."""

    sweep_id: str
    started_at: datetime
    results: dict[str, SourceCheckResult] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    @property
    def checked(self) -> int:
        """Number of sources whose outcome was applied."""
        return len(self.results)

    @property
    def succeeded(self) -> int:
        """Number of sources that produced usable items."""
        return sum(1 for r in self.results.values() if r.succeeded)

    @property
    def degraded(self) -> int:
        """Number of sources left usable but degraded."""
        return sum(1 for r in self.results.values() if r.degraded)

    @property
    def failed(self) -> int:
        """Number of sources that ended in an error."""
        return sum(1 for r in self.results.values() if r.failed)


class SourceSweeper:
    """Checks due sources concurrently and persists every outcome.

    Provides:
    - Selection through is_due_for_check(), so paused and detached sources
      are never picked up
    - Parallel checks with configurable concurrency
    - Failure isolation (a checker that raises becomes FETCH_FAILED)
    - Timeout of sources left in CHECKING by an interrupted sweep
    - The same transition rules for the scheduled path and check_now()
    """

    def __init__(
        self,
        store: SourceStore,
        checker: SourceChecker,
        policy: BackoffPolicy = DEFAULT_POLICY,
        max_workers: int = 4,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the sweeper.

        Args:
            store: Connected source store.
            checker: Performs the blocking check of one source.
            policy: Backoff configuration.
            max_workers: Maximum parallel checks.
            rng: Random source for retry jitter.
        """
        self._store = store
        self._checker = checker
        self._policy = policy
        self._max_workers = max_workers
        self._rng = rng
        self._metrics = SourceHealthMetrics.get_instance()
        self._log = logger.bind(component=COMPONENT_SWEEP)

    def sweep(self, now: datetime) -> SweepResult:
        """Check every source that is due at ``now``.

        Args:
            now: Current timestamp; also used as the completion time.

        Returns:
            SweepResult with per-source results.
        """
        sweep_id = str(uuid.uuid4())
        bind_sweep_context(sweep_id)
        result = SweepResult(sweep_id=sweep_id, started_at=now)

        try:
            due = self._store.list_due_sources(now)
            self._log.info(
                "sweep_started",
                due_count=len(due),
                max_workers=self._max_workers,
            )

            to_check = self._claim(due, now, result)

            if self._max_workers <= 1:
                for source in to_check:
                    outcome, duration_ms = self._run_check(source)
                    self._record(result, source.id, outcome, now, duration_ms)
            else:
                with ThreadPoolExecutor(max_workers=self._max_workers) as executor:
                    future_to_source = {
                        executor.submit(self._run_check, source): source
                        for source in to_check
                    }
                    for future in as_completed(future_to_source):
                        source = future_to_source[future]
                        outcome, duration_ms = future.result()
                        self._record(result, source.id, outcome, now, duration_ms)

            self._log.info(
                "sweep_complete",
                checked=result.checked,
                succeeded=result.succeeded,
                degraded=result.degraded,
                failed=result.failed,
                skipped=len(result.skipped),
            )
        finally:
            clear_sweep_context()

        return result

    def check_now(self, source_id: str, now: datetime) -> SourceCheckResult:
        """Check one source immediately (the user-visible retry).

        Uses the same transitions and backoff rules as a scheduled check.

        Args:
            source_id: The source ID.
            now: Current timestamp.

        Returns:
            The result of the check.

        Raises:
            SourceNotFoundError: If the source does not exist.
            SourceStateTransitionError: If the source cannot start a check.
        """
        source = self._store.require_source(source_id)
        if source.status != SourceStatus.CHECKING:
            source = self._store.begin_check(source_id, now)

        outcome, duration_ms = self._run_check(source)
        return self._apply(source_id, outcome, now, duration_ms)

    def _claim(
        self,
        due: list[Source],
        now: datetime,
        result: SweepResult,
    ) -> list[Source]:
        """Move due sources into CHECKING and return the ones to check.

        A source already in CHECKING is either still in flight (skipped) or
        was abandoned past the validation timeout, in which case it is
        resolved with a timeout outcome.
        """
        to_check: list[Source] = []
        for source in due:
            if source.status == SourceStatus.CHECKING:
                display = source.display_status(
                    now, self._policy.validation_timeout_seconds
                )
                if display == SourceStatus.CHECKING:
                    result.skipped.append(source.id)
                    continue
                self._log.warning("stale_check_timed_out", source_id=source.id)
                self._record(result, source.id, TimeoutOutcome(), now, 0.0)
                continue

            try:
                to_check.append(self._store.begin_check(source.id, now))
            except SourceStateTransitionError as e:
                self._log.warning(
                    "check_not_started",
                    source_id=source.id,
                    from_state=e.from_state.value,
                )
                result.skipped.append(source.id)
        return to_check

    def _run_check(self, source: Source) -> tuple[Outcome, float]:
        """Run the checker for one source, converting exceptions to outcomes."""
        start_time_ns = time.perf_counter_ns()
        try:
            outcome = self._checker.check(source)
        except Exception as e:  # noqa: BLE001
            self._log.error(
                "checker_raised",
                source_id=source.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            outcome = FailOutcome(
                error_code=SourceErrorCode.FETCH_FAILED,
                message=f"Check error: {e}",
            )
        duration_ms = (time.perf_counter_ns() - start_time_ns) / 1_000_000
        return outcome, duration_ms

    def _record(
        self,
        result: SweepResult,
        source_id: str,
        outcome: Outcome,
        now: datetime,
        duration_ms: float,
    ) -> None:
        """Apply an outcome and add it to the sweep result."""
        try:
            result.results[source_id] = self._apply(
                source_id, outcome, now, duration_ms
            )
        except SourceStateTransitionError as e:
            self._log.error(
                "outcome_rejected",
                source_id=source_id,
                from_state=e.from_state.value,
                to_state=e.to_state.value,
            )
            result.skipped.append(source_id)

    def _apply(
        self,
        source_id: str,
        outcome: Outcome,
        now: datetime,
        duration_ms: float,
    ) -> SourceCheckResult:
        """Persist an outcome through the store and record metrics."""
        updated = self._store.apply_outcome(
            source_id, outcome, now, self._policy, self._rng
        )

        self._metrics.record_check(outcome.kind)
        if updated.error_code is not None:
            self._metrics.record_failure(updated.error_code.value)

        self._log.info(
            "source_checked",
            source_id=source_id,
            outcome=outcome.kind,
            status=updated.status.value,
            duration_ms=round(duration_ms, 2),
        )

        return SourceCheckResult(
            source_id=source_id,
            outcome_kind=outcome.kind,
            status=updated.status,
            error_code=updated.error_code,
            next_check_at=updated.next_check_at,
            duration_ms=duration_ms,
        )
