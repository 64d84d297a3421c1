"""Source health tracking and adaptive retry scheduling.

This module provides:
- The source status state machine and display-time timeout evaluation
- A closed error/warning taxonomy with fixed user-facing copy
- Mapping of fetch and parse failures into error codes
- Ladder-based retry backoff with jitter and due-check scheduling
"""

from src.sources.backoff import (
    DEFAULT_POLICY,
    BackoffPolicy,
    apply_outcome_to_source,
    compute_retry_minutes,
    format_next_retry,
    is_due_for_check,
    with_jitter,
)
from src.sources.copy import (
    ERROR_COPY,
    WARNING_COPY,
    ErrorCopy,
    WarningCopy,
    get_error_copy,
    get_status_badge_text,
    get_status_badge_variant,
    get_warning_copy,
)
from src.sources.error_mapper import (
    map_exception_to_error_code,
    map_http_status_to_error_code,
    map_parse_error_to_error_code,
)
from src.sources.errors import (
    ErrorClass,
    SourceErrorCode,
    SourceWarningCode,
    coerce_error_code,
    error_class_for_code,
    is_user_actionable,
    severity_for_error_code,
    warning_code_for_error_code,
)
from src.sources.metrics import SourceHealthMetrics
from src.sources.models import (
    FailOutcome,
    NoItemsOutcome,
    Outcome,
    Source,
    SourceType,
    SourceUpdate,
    SuccessOutcome,
    TimeoutOutcome,
    infer_source_type,
)
from src.sources.state_machine import (
    SourceStateMachine,
    SourceStateTransitionError,
    SourceStatus,
    allowed_transitions,
    get_display_status,
    is_terminal_status,
    is_valid_transition,
    keeps_status_on_result,
)


__all__ = [
    # Backoff
    "DEFAULT_POLICY",
    "BackoffPolicy",
    "apply_outcome_to_source",
    "compute_retry_minutes",
    "format_next_retry",
    "is_due_for_check",
    "with_jitter",
    # Copy
    "ERROR_COPY",
    "WARNING_COPY",
    "ErrorCopy",
    "WarningCopy",
    "get_error_copy",
    "get_status_badge_text",
    "get_status_badge_variant",
    "get_warning_copy",
    # Error mapping
    "map_exception_to_error_code",
    "map_http_status_to_error_code",
    "map_parse_error_to_error_code",
    # Errors
    "ErrorClass",
    "SourceErrorCode",
    "SourceWarningCode",
    "coerce_error_code",
    "error_class_for_code",
    "is_user_actionable",
    "severity_for_error_code",
    "warning_code_for_error_code",
    # Metrics
    "SourceHealthMetrics",
    # Models
    "FailOutcome",
    "NoItemsOutcome",
    "Outcome",
    "Source",
    "SourceType",
    "SourceUpdate",
    "SuccessOutcome",
    "TimeoutOutcome",
    "infer_source_type",
    # State machine
    "SourceStateMachine",
    "SourceStateTransitionError",
    "SourceStatus",
    "allowed_transitions",
    "get_display_status",
    "is_terminal_status",
    "is_valid_transition",
    "keeps_status_on_result",
]
