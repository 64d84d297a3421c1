"""Observability module for structured logging."""

from src.observability.logging import (
    bind_sweep_context,
    clear_sweep_context,
    configure_logging,
    get_logger,
    parse_log_level,
)


__all__ = [
    "bind_sweep_context",
    "clear_sweep_context",
    "configure_logging",
    "get_logger",
    "parse_log_level",
]
