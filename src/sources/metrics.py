"""Metrics for source health tracking."""

from collections import Counter
from threading import Lock


class SourceHealthMetrics:
    """Collects metrics for source checks and status changes.

    Provides thread-safe counters for:
    - source_checks_total{outcome}
    - source_failures_total{error_code}
    - illegal_transitions_total{from_state, to_state}

    Metrics are designed to be exportable to Prometheus or similar systems.
    """

    _instance: "SourceHealthMetrics | None" = None
    _lock = Lock()

    def __init__(self) -> None:
        """Initialize the metrics collector."""
        self._checks: Counter[str] = Counter()
        self._failures: Counter[str] = Counter()
        self._illegal_transitions: Counter[tuple[str, str]] = Counter()
        self._lock = Lock()

    @classmethod
    def get_instance(cls) -> "SourceHealthMetrics":
        """Get the singleton metrics instance.

        Returns:
            The shared SourceHealthMetrics instance.
        """
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance (for testing)."""
        with cls._lock:
            cls._instance = None

    def record_check(self, outcome_kind: str) -> None:
        """Record a completed check.

        Args:
            outcome_kind: Kind of the outcome (success, no_items, fail, timeout).
        """
        with self._lock:
            self._checks[outcome_kind] += 1

    def record_failure(self, error_code: str) -> None:
        """Record a failed check.

        Args:
            error_code: Error code the failure was mapped to.
        """
        with self._lock:
            self._failures[error_code] += 1

    def record_illegal_transition(self, from_state: str, to_state: str) -> None:
        """Record a rejected status transition."""
        with self._lock:
            self._illegal_transitions[(from_state, to_state)] += 1

    def get_checks_total(self) -> dict[str, int]:
        """Get check counts by outcome kind."""
        with self._lock:
            return dict(self._checks)

    def get_failures_total(self) -> dict[str, int]:
        """Get failure counts by error code."""
        with self._lock:
            return dict(self._failures)

    def get_illegal_transitions_total(self) -> dict[tuple[str, str], int]:
        """Get rejected transition counts."""
        with self._lock:
            return dict(self._illegal_transitions)

    def reset(self) -> None:
        """Reset all metrics (for testing)."""
        with self._lock:
            self._checks.clear()
            self._failures.clear()
            self._illegal_transitions.clear()
