"""Metrics collection for the source store."""

from dataclasses import dataclass, field
from typing import ClassVar


@dataclass
class StoreMetrics:
    """Metrics for source store operations.

    Attributes:
        db_tx_duration_ms: Cumulative transaction duration in milliseconds.
        db_tx_count: Number of committed transactions.
        transitions_recorded_total: Status transitions appended to history.
        outcomes_applied_total: Check outcomes persisted.
        sources_created_total: Sources inserted.
    """

    db_tx_duration_ms: float = 0.0
    db_tx_count: int = 0
    transitions_recorded_total: int = 0
    outcomes_applied_total: int = 0
    sources_created_total: int = 0

    _instance: ClassVar["StoreMetrics | None"] = None

    @classmethod
    def get_instance(cls) -> "StoreMetrics":
        """Get singleton metrics instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset metrics (primarily for testing)."""
        cls._instance = None

    def record_tx_duration(self, duration_ms: float) -> None:
        """Record transaction duration.

        Args:
            duration_ms: Duration in milliseconds.
        """
        self.db_tx_duration_ms += duration_ms
        self.db_tx_count += 1

    def record_transition(self) -> None:
        """Record an appended status transition."""
        self.transitions_recorded_total += 1

    def record_outcome_applied(self) -> None:
        """Record a persisted check outcome."""
        self.outcomes_applied_total += 1

    def record_source_created(self) -> None:
        """Record a new source."""
        self.sources_created_total += 1

    def to_dict(self) -> dict[str, float | int]:
        """Convert metrics to dictionary.

        Returns:
            Dictionary of metric name to value.
        """
        return {
            "db_tx_duration_ms": self.db_tx_duration_ms,
            "db_tx_count": self.db_tx_count,
            "transitions_recorded_total": self.transitions_recorded_total,
            "outcomes_applied_total": self.outcomes_applied_total,
            "sources_created_total": self.sources_created_total,
        }

    @property
    def avg_tx_duration_ms(self) -> float:
        """Calculate average transaction duration.

        Returns:
            Average duration in milliseconds.
        """
        if self.db_tx_count == 0:
            return 0.0
        return self.db_tx_duration_ms / self.db_tx_count


@dataclass
class TransactionContext:
    """Context for a single transaction with timing.

    Attributes:
        tx_id: Unique transaction identifier.
        start_time_ns: Start time in nanoseconds.
        operation: The operation being performed.
    """

    tx_id: str
    start_time_ns: int
    operation: str
    affected_rows: int = field(default=0)

    def add_affected_rows(self, rows: int) -> None:
        """Add to the affected row count.

        Args:
            rows: Number of rows affected.
        """
        self.affected_rows += rows
