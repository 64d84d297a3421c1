"""Mapping between source statuses and their stored representation.

The database keeps its own status enum plus a reason column. Both
directions are explicit so a storage-only name (BACKOFF, VALIDATING)
never leaks into the domain and vice versa.
"""

from enum import Enum

from src.sources.errors import SourceErrorCode, coerce_error_code
from src.sources.state_machine import SourceStatus


class DbSourceStatus(str, Enum):
    """Status values as stored in the sources table."""

    DRAFT = "DRAFT"
    VALIDATING = "VALIDATING"
    ACTIVE = "ACTIVE"
    BACKOFF = "BACKOFF"
    FAILED = "FAILED"
    PAUSED = "PAUSED"


# Stored in the reason column when there is no error code
NO_REASON = "NONE"

_TO_DB: dict[SourceStatus, DbSourceStatus] = {
    SourceStatus.DRAFT: DbSourceStatus.DRAFT,
    SourceStatus.CHECKING: DbSourceStatus.VALIDATING,
    SourceStatus.ACTIVE: DbSourceStatus.ACTIVE,
    SourceStatus.WARNING: DbSourceStatus.BACKOFF,
    SourceStatus.ERROR: DbSourceStatus.FAILED,
    SourceStatus.PAUSED: DbSourceStatus.PAUSED,
}

_FROM_DB: dict[str, SourceStatus] = {
    db.value: status for status, db in _TO_DB.items()
}


def to_db_status(
    status: SourceStatus,
    error_code: SourceErrorCode | None,
) -> tuple[DbSourceStatus, str]:
    """Map a status and error code to their stored values.

    Args:
        status: Domain status.
        error_code: Current error code, if any.

    Returns:
        Tuple of (db status, reason).
    """
    reason = error_code.value if error_code is not None else NO_REASON
    return _TO_DB[status], reason


def from_db_status(
    db_status: str,
    reason: str | None,
) -> tuple[SourceStatus, SourceErrorCode | None]:
    """Map stored values back to a status and error code.

    An unrecognized stored status reads back as ERROR with FETCH_FAILED,
    so a corrupt row is retried rather than silently shown as healthy.

    Args:
        db_status: Value of the status column.
        reason: Value of the reason column.

    Returns:
        Tuple of (status, error code or None).
    """
    status = _FROM_DB.get(db_status)
    if status is None:
        return SourceStatus.ERROR, SourceErrorCode.FETCH_FAILED

    if reason is None or reason == NO_REASON:
        return status, None

    return status, coerce_error_code(reason)
