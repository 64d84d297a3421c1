"""Data models for monitored sources, check outcomes and updates."""

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.sources.constants import SOURCE_VALIDATION_TIMEOUT_SECONDS
from src.sources.errors import SourceErrorCode, SourceWarningCode, coerce_error_code
from src.sources.state_machine import (
    SourceStateTransitionError,
    SourceStatus,
    get_display_status,
    is_valid_transition,
    keeps_status_on_result,
)


class SourceType(str, Enum):
    """Kind of monitored source, inferred from its URL."""

    GOODREADS = "goodreads"
    RSS = "rss"
    NEWSLETTER = "newsletter"


_NEWSLETTER_HOSTS = ("substack.com", "buttondown.email")


def infer_source_type(url: str) -> SourceType:
    """Infer the source type from a URL.

    Args:
        url: The origin URL.

    Returns:
        GOODREADS for goodreads.com links, NEWSLETTER for known newsletter
        hosts, RSS otherwise.
    """
    lowered = url.lower()
    if "goodreads.com" in lowered:
        return SourceType.GOODREADS
    if any(host in lowered for host in _NEWSLETTER_HOSTS):
        return SourceType.NEWSLETTER
    return SourceType.RSS


class SuccessOutcome(BaseModel):
    """Fetch succeeded and produced usable items."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["success"] = "success"
    feed_url: Annotated[str, Field(min_length=1, description="Resolved feed URL")]
    item_count: Annotated[int, Field(ge=0)]
    last_item_at: datetime | None = None


class NoItemsOutcome(BaseModel):
    """Feed is valid but currently empty."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["no_items"] = "no_items"
    feed_url: Annotated[str, Field(min_length=1, description="Resolved feed URL")]


class FailOutcome(BaseModel):
    """Fetch or parse failed with a classified error code."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["fail"] = "fail"
    error_code: SourceErrorCode = SourceErrorCode.FETCH_FAILED
    http_status: int | None = Field(default=None, ge=100, le=599)
    message: str | None = None

    @field_validator("error_code", mode="before")
    @classmethod
    def coerce_code(cls, v: Any) -> SourceErrorCode:
        """Map unrecognized codes to FETCH_FAILED instead of rejecting them."""
        return coerce_error_code(v)


class TimeoutOutcome(BaseModel):
    """Check did not finish in time."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["timeout"] = "timeout"


Outcome = Annotated[
    SuccessOutcome | NoItemsOutcome | FailOutcome | TimeoutOutcome,
    Field(discriminator="kind"),
]


class SourceUpdate(BaseModel):
    """Health fields to persist after one check attempt."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    status: SourceStatus
    feed_url: str | None = None
    error_code: SourceErrorCode | None = None
    warning_code: SourceWarningCode | None = None
    error_message: str | None = None
    backoff_level: Annotated[int, Field(ge=0)]
    last_success_at: datetime | None = None
    last_checked_at: datetime
    item_count: int | None = Field(default=None, ge=0)
    last_item_at: datetime | None = None
    next_check_at: datetime

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: SourceStatus) -> SourceStatus:
        """Ensure an update only ever lands on a check result status."""
        if v not in (SourceStatus.ACTIVE, SourceStatus.WARNING, SourceStatus.ERROR):
            msg = f"An update cannot set status '{v.value}'"
            raise ValueError(msg)
        return v


class Source(BaseModel):
    """A monitored feed belonging to one user.

    Instances are immutable; every change produces a new instance through
    transition_to() or apply_update().
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: Annotated[str, Field(min_length=1)]
    user_id: Annotated[str, Field(min_length=1)]
    person_id: str | None = None
    title: str | None = None
    url: Annotated[str, Field(min_length=1, description="Origin URL")]
    feed_url: str | None = None
    source_type: SourceType = SourceType.RSS
    status: SourceStatus = SourceStatus.DRAFT
    error_code: SourceErrorCode | None = None
    warning_code: SourceWarningCode | None = None
    error_message: str | None = None
    backoff_level: Annotated[int, Field(ge=0)] = 0
    last_success_at: datetime | None = None
    last_checked_at: datetime | None = None
    next_check_at: datetime | None = None
    item_count: Annotated[int, Field(ge=0)] = 0
    last_item_at: datetime | None = None
    checking_started_at: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    detached_at: datetime | None = None

    @model_validator(mode="after")
    def validate_checking_started(self) -> "Source":
        """A CHECKING source must record when checking began."""
        if self.status == SourceStatus.CHECKING and self.checking_started_at is None:
            msg = "checking_started_at is required while status is 'checking'"
            raise ValueError(msg)
        return self

    @property
    def is_detached(self) -> bool:
        """Check if the source was soft-removed from the circle."""
        return self.detached_at is not None

    def display_status(
        self,
        now: datetime,
        timeout_seconds: float = SOURCE_VALIDATION_TIMEOUT_SECONDS,
    ) -> SourceStatus:
        """Get the status to display at ``now``."""
        return get_display_status(
            self.status, self.checking_started_at, now, timeout_seconds
        )

    def transition_to(self, target: SourceStatus, now: datetime) -> "Source":
        """Return a copy of this source in the target status.

        Args:
            target: Target status.
            now: Current timestamp, recorded when entering CHECKING.

        Returns:
            The updated source.

        Raises:
            SourceStateTransitionError: If the transition is not allowed.
        """
        if not is_valid_transition(self.status, target):
            raise SourceStateTransitionError(
                source_id=self.id,
                from_state=self.status,
                to_state=target,
            )
        started_at = now if target == SourceStatus.CHECKING else None
        return self.model_copy(
            update={"status": target, "checking_started_at": started_at}
        )

    def apply_update(self, update: SourceUpdate) -> "Source":
        """Return a copy of this source with a check result applied.

        A paused source keeps its status but still records the health
        fields of a check that was already in flight. A late success on a
        source that was already timed out into ERROR keeps the error and
        only records what the check observed; the source is due again
        immediately so the next check can recover it.

        Args:
            update: Result of apply_outcome_to_source().

        Returns:
            The updated source.

        Raises:
            SourceStateTransitionError: If the status change is not allowed.
        """
        held = keeps_status_on_result(self.status, update.status)
        if not (
            held
            or self.status == update.status
            or is_valid_transition(self.status, update.status)
        ):
            raise SourceStateTransitionError(
                source_id=self.id,
                from_state=self.status,
                to_state=update.status,
            )

        fields: dict[str, Any]
        if held and self.status == SourceStatus.ERROR:
            fields = {
                "last_checked_at": update.last_checked_at,
                "next_check_at": update.last_checked_at,
                "checking_started_at": None,
            }
        else:
            fields = {
                "status": self.status if held else update.status,
                "error_code": update.error_code,
                "warning_code": update.warning_code,
                "error_message": update.error_message,
                "backoff_level": update.backoff_level,
                "last_checked_at": update.last_checked_at,
                "next_check_at": update.next_check_at,
                "checking_started_at": None,
            }

        if update.feed_url is not None:
            fields["feed_url"] = update.feed_url
        if update.last_success_at is not None:
            fields["last_success_at"] = update.last_success_at
        if update.item_count is not None:
            fields["item_count"] = update.item_count
        if update.last_item_at is not None:
            fields["last_item_at"] = update.last_item_at
        return self.model_copy(update=fields)
