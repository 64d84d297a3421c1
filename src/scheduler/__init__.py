"""Source checks: the blocking checker and the sweep that schedules it."""

from src.scheduler.checker import FeedChecker, SourceChecker, is_checkable_url
from src.scheduler.sweeper import SourceCheckResult, SourceSweeper, SweepResult


__all__ = [
    "FeedChecker",
    "SourceCheckResult",
    "SourceChecker",
    "SourceSweeper",
    "SweepResult",
    "is_checkable_url",
]
