"""Retry backoff and scheduling for source checks.

Provides:
- Fast retries for transient failures, slow retries for persistent ones
- A hard cap on retry delay so remote services are never polled unbounded
- Jitter so sources validated together do not retry in lockstep
- is_due_for_check(), the single authority on whether a check runs now
"""

import random
from datetime import datetime, timedelta
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.sources.constants import (
    BACKOFF_LADDER,
    DEFAULT_CHECK_INTERVAL_MINUTES,
    JITTER_PCT,
    MAX_BACKOFF_LEVEL,
    MAX_RETRY_MINUTES,
    MIN_RETRY_MINUTES,
    SOURCE_VALIDATION_TIMEOUT_SECONDS,
)
from src.sources.errors import (
    SourceErrorCode,
    severity_for_error_code,
    warning_code_for_error_code,
)
from src.sources.models import (
    FailOutcome,
    NoItemsOutcome,
    Outcome,
    SourceUpdate,
    SuccessOutcome,
)
from src.sources.state_machine import SourceStatus


class BackoffPolicy(BaseModel):
    """Configuration for check scheduling and retry backoff.

    Failure delays come from an explicit ladder indexed by backoff level
    rather than a pure exponential, so early retries and the long-tail cap
    can be tuned independently.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    base_interval_minutes: Annotated[int, Field(ge=1, le=7 * 24 * 60)] = (
        DEFAULT_CHECK_INTERVAL_MINUTES
    )
    ladder: tuple[int, ...] = BACKOFF_LADDER
    jitter_pct: Annotated[float, Field(ge=0.0, lt=1.0)] = JITTER_PCT
    max_backoff_level: Annotated[int, Field(ge=1, le=1000)] = MAX_BACKOFF_LEVEL
    max_retry_minutes: Annotated[int, Field(ge=1)] = MAX_RETRY_MINUTES
    validation_timeout_seconds: Annotated[float, Field(gt=0.0, le=300.0)] = (
        SOURCE_VALIDATION_TIMEOUT_SECONDS
    )

    @field_validator("ladder")
    @classmethod
    def validate_ladder(cls, v: tuple[int, ...]) -> tuple[int, ...]:
        """Ensure the ladder is non-empty, positive and non-decreasing."""
        if not v:
            msg = "Backoff ladder must not be empty"
            raise ValueError(msg)
        if any(step < 1 for step in v):
            msg = "Backoff ladder steps must be at least 1 minute"
            raise ValueError(msg)
        if any(later < earlier for earlier, later in zip(v, v[1:], strict=False)):
            msg = "Backoff ladder must be non-decreasing"
            raise ValueError(msg)
        return v

    @model_validator(mode="after")
    def validate_ceiling(self) -> "BackoffPolicy":
        """Ensure the ceiling still allows the minimum retry delay."""
        if self.max_retry_minutes < MIN_RETRY_MINUTES:
            msg = f"max_retry_minutes must be at least {MIN_RETRY_MINUTES}"
            raise ValueError(msg)
        return self


DEFAULT_POLICY = BackoffPolicy()


def add_minutes(moment: datetime, minutes: float) -> datetime:
    """Add minutes to a timestamp."""
    return moment + timedelta(minutes=minutes)


def compute_retry_minutes(
    backoff_level: int,
    policy: BackoffPolicy = DEFAULT_POLICY,
) -> int:
    """Compute the unjittered retry delay for a backoff level.

    Level 1 (the first consecutive failure) takes the first ladder step.

    Args:
        backoff_level: Consecutive failure count.
        policy: Backoff configuration.

    Returns:
        Delay in minutes; levels past the ladder reuse its last entry.
    """
    index = min(max(backoff_level - 1, 0), len(policy.ladder) - 1)
    return min(policy.ladder[index], policy.max_retry_minutes)


def with_jitter(
    minutes: float,
    policy: BackoffPolicy = DEFAULT_POLICY,
    rng: random.Random | None = None,
) -> float:
    """Spread a delay by +/- ``policy.jitter_pct``.

    Args:
        minutes: Unjittered delay.
        policy: Backoff configuration.
        rng: Random source (defaults to the module generator).

    Returns:
        Jittered delay in minutes, at least 1 and at most the ceiling.
    """
    rng = rng or random.Random()  # noqa: S311
    jitter = minutes * policy.jitter_pct
    jittered = minutes + rng.uniform(-jitter, jitter)
    return min(max(MIN_RETRY_MINUTES, jittered), policy.max_retry_minutes)


def apply_outcome_to_source(
    current_backoff_level: int,
    outcome: Outcome,
    now: datetime,
    policy: BackoffPolicy = DEFAULT_POLICY,
    rng: random.Random | None = None,
) -> SourceUpdate:
    """Turn the outcome of one check into the fields to persist.

    Success and no_items reset the backoff level and restore the base
    interval. Failures and timeouts climb one level (capped) and schedule a
    jittered retry from the ladder.

    Args:
        current_backoff_level: Backoff level before this attempt.
        outcome: Classified result of the check.
        now: Time the check completed.
        policy: Backoff configuration.
        rng: Random source for jitter.

    Returns:
        The SourceUpdate to persist.
    """
    if isinstance(outcome, SuccessOutcome):
        return SourceUpdate(
            status=SourceStatus.ACTIVE,
            feed_url=outcome.feed_url,
            error_code=None,
            warning_code=None,
            error_message=None,
            backoff_level=0,
            last_success_at=now,
            last_checked_at=now,
            item_count=outcome.item_count,
            last_item_at=outcome.last_item_at,
            next_check_at=add_minutes(now, policy.base_interval_minutes),
        )

    if isinstance(outcome, NoItemsOutcome):
        # Reachable and valid, just nothing to show
        return SourceUpdate(
            status=SourceStatus.WARNING,
            feed_url=outcome.feed_url,
            error_code=SourceErrorCode.NO_ITEMS,
            warning_code=warning_code_for_error_code(SourceErrorCode.NO_ITEMS),
            error_message=None,
            backoff_level=0,
            last_checked_at=now,
            next_check_at=add_minutes(now, policy.base_interval_minutes),
        )

    next_level = min(max(current_backoff_level, 0) + 1, policy.max_backoff_level)
    retry_minutes = with_jitter(
        compute_retry_minutes(next_level, policy), policy, rng
    )

    if isinstance(outcome, FailOutcome):
        error_code = outcome.error_code
        message = outcome.message
    else:
        error_code = SourceErrorCode.TIMEOUT
        message = None

    return SourceUpdate(
        status=severity_for_error_code(error_code),
        error_code=error_code,
        warning_code=warning_code_for_error_code(error_code),
        error_message=message,
        backoff_level=next_level,
        last_checked_at=now,
        next_check_at=add_minutes(now, retry_minutes),
    )


def is_due_for_check(
    next_check_at: datetime | None,
    status: SourceStatus,
    now: datetime,
) -> bool:
    """Check if a source should be checked now.

    Idempotent and side-effect free, so it is safe to call from a periodic
    sweep, a single invocation, or a test clock.

    Args:
        next_check_at: Earliest time of the next check, if scheduled.
        status: Stored status of the source.
        now: Current timestamp.

    Returns:
        False for paused sources; True if never scheduled; otherwise
        whether ``now`` has reached ``next_check_at``.
    """
    if status == SourceStatus.PAUSED:
        return False

    if next_check_at is None:
        return True

    return now >= next_check_at


def format_next_retry(next_check_at: datetime | None, now: datetime) -> str | None:
    """Format the next check time for display.

    Args:
        next_check_at: Scheduled time of the next check.
        now: Current timestamp.

    Returns:
        "Now", "in 5m", "in 3h", "in 2d", or None if nothing is scheduled.
    """
    if next_check_at is None:
        return None

    diff_seconds = (next_check_at - now).total_seconds()
    if diff_seconds <= 0:
        return "Now"

    diff_minutes = round(diff_seconds / 60)
    if diff_minutes < 60:
        return f"in {diff_minutes}m"

    diff_hours = round(diff_minutes / 60)
    if diff_hours < 24:
        return f"in {diff_hours}h"

    return f"in {round(diff_hours / 24)}d"
