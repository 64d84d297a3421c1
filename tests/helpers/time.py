"""Shared, deterministic timestamps for tests."""

from datetime import UTC, datetime, timedelta


# Fixed timestamp so display-status timeouts and retry schedules are
# deterministic across environments.
FIXED_NOW = datetime(2026, 3, 2, 9, 0, 0, tzinfo=UTC)


def minutes_after(minutes: float, start: datetime = FIXED_NOW) -> datetime:
    """Get a timestamp ``minutes`` after ``start``."""
    return start + timedelta(minutes=minutes)
