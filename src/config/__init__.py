"""Validation error hints for user-supplied files."""

from src.config.error_hints import (
    ERROR_HINTS,
    FIELD_HINTS,
    format_validation_error,
    get_error_hint,
)


__all__ = [
    "ERROR_HINTS",
    "FIELD_HINTS",
    "format_validation_error",
    "get_error_hint",
]
