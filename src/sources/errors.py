"""Closed error and warning taxonomy for source health.

Every failure a fetch/parse step can produce is mapped into exactly one
SourceErrorCode before it reaches the state machine. There is no
"unknown" member; unmapped values fall back to FETCH_FAILED.
"""

from enum import Enum

from src.sources.state_machine import SourceStatus


class SourceErrorCode(str, Enum):
    """Machine-readable reason a check did not succeed.

    - INVALID_URL: Link does not look like a supported source
    - NOT_RSS: Page does not expose a readable feed
    - FETCH_FAILED: Site did not respond
    - TIMEOUT: Check took too long
    - NO_ITEMS: Feed exists but is empty
    - RATE_LIMITED: Remote service asked us to slow down
    - UNAUTHORIZED: Feed is not public
    - PARSE_ERROR: Feed exists but is malformed
    """

    INVALID_URL = "INVALID_URL"
    NOT_RSS = "NOT_RSS"
    FETCH_FAILED = "FETCH_FAILED"
    TIMEOUT = "TIMEOUT"
    NO_ITEMS = "NO_ITEMS"
    RATE_LIMITED = "RATE_LIMITED"
    UNAUTHORIZED = "UNAUTHORIZED"
    PARSE_ERROR = "PARSE_ERROR"


class SourceWarningCode(str, Enum):
    """Machine-readable reason a usable source is degraded."""

    NO_RECENT_ITEMS = "NO_RECENT_ITEMS"
    RATE_LIMITED = "RATE_LIMITED"
    STALE = "STALE"


class ErrorClass(str, Enum):
    """Who is expected to act on an error.

    - USER_ACTIONABLE: Retrying unchanged input cannot help
    - SYSTEM_RECOVERABLE: Retried silently, no user action implied
    - TRANSIENT: Surfaced with a retry affordance and also auto-retried
    """

    USER_ACTIONABLE = "user_actionable"
    SYSTEM_RECOVERABLE = "system_recoverable"
    TRANSIENT = "transient"


_CODES_BY_VALUE: dict[str, SourceErrorCode] = {
    code.value: code for code in SourceErrorCode
}

_WARNING_SEVERITY_CODES: frozenset[SourceErrorCode] = frozenset(
    {SourceErrorCode.RATE_LIMITED, SourceErrorCode.NO_ITEMS}
)

_ERROR_CLASS_MAP: dict[SourceErrorCode, ErrorClass] = {
    SourceErrorCode.INVALID_URL: ErrorClass.USER_ACTIONABLE,
    SourceErrorCode.NOT_RSS: ErrorClass.USER_ACTIONABLE,
    SourceErrorCode.UNAUTHORIZED: ErrorClass.USER_ACTIONABLE,
    SourceErrorCode.PARSE_ERROR: ErrorClass.USER_ACTIONABLE,
    SourceErrorCode.RATE_LIMITED: ErrorClass.SYSTEM_RECOVERABLE,
    SourceErrorCode.NO_ITEMS: ErrorClass.SYSTEM_RECOVERABLE,
    SourceErrorCode.FETCH_FAILED: ErrorClass.TRANSIENT,
    SourceErrorCode.TIMEOUT: ErrorClass.TRANSIENT,
}

_WARNING_FOR_ERROR: dict[SourceErrorCode, SourceWarningCode] = {
    SourceErrorCode.RATE_LIMITED: SourceWarningCode.RATE_LIMITED,
    SourceErrorCode.NO_ITEMS: SourceWarningCode.NO_RECENT_ITEMS,
}


def severity_for_error_code(code: SourceErrorCode) -> SourceStatus:
    """Map an error code to the status it puts a source in.

    RATE_LIMITED and NO_ITEMS leave the source usable (WARNING); every
    other code is an ERROR.

    Args:
        code: The error code.

    Returns:
        SourceStatus.WARNING or SourceStatus.ERROR.
    """
    if code in _WARNING_SEVERITY_CODES:
        return SourceStatus.WARNING
    return SourceStatus.ERROR


def error_class_for_code(code: SourceErrorCode) -> ErrorClass:
    """Get the error class for a code."""
    return _ERROR_CLASS_MAP[code]


def is_user_actionable(code: SourceErrorCode) -> bool:
    """Check if retrying unchanged input cannot fix this error."""
    return _ERROR_CLASS_MAP[code] == ErrorClass.USER_ACTIONABLE


def warning_code_for_error_code(code: SourceErrorCode) -> SourceWarningCode | None:
    """Get the warning code shown for a warning-severity error code."""
    return _WARNING_FOR_ERROR.get(code)


def coerce_error_code(value: str | SourceErrorCode | None) -> SourceErrorCode:
    """Coerce an arbitrary value into the closed error set.

    Args:
        value: Raw code, e.g. read back from storage or a fetch layer.

    Returns:
        The matching code, or FETCH_FAILED for anything unrecognized.
    """
    if isinstance(value, SourceErrorCode):
        return value
    if value:
        normalized = value.strip().upper()
        return _CODES_BY_VALUE.get(normalized, SourceErrorCode.FETCH_FAILED)
    return SourceErrorCode.FETCH_FAILED
