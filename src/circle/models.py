"""Models for circle people, memberships and their aggregated status."""

from datetime import datetime
from enum import Enum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

from src.sources.errors import SourceErrorCode
from src.sources.models import SourceType
from src.sources.state_machine import SourceStatus


class CircleSourceStatus(str, Enum):
    """Simplified three-state status of one source in the circle view.

    - ACTIVE: Signals flowing normally
    - WARNING: Pending or degraded, retrying automatically
    - NEEDS_ATTENTION: Requires user action
    """

    ACTIVE = "ACTIVE"
    WARNING = "WARNING"
    NEEDS_ATTENTION = "NEEDS_ATTENTION"


class PersonStatus(str, Enum):
    """Status of a person, derived from their sources and mute state.

    DELAYED is the historical name for WARNING and resolves to the same
    member.
    """

    ACTIVE = "ACTIVE"
    WARNING = "WARNING"
    DELAYED = "WARNING"
    NEEDS_ATTENTION = "NEEDS_ATTENTION"
    MUTED = "MUTED"

    @classmethod
    def _missing_(cls, value: object) -> "PersonStatus | None":
        if value == "DELAYED":
            return cls.WARNING
        return None


class Person(BaseModel):
    """A person whose sources a user can trust.

    People are shared across users; the per-user relationship lives in
    CircleMembership.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: Annotated[str, Field(min_length=1)]
    display_name: Annotated[str, Field(min_length=1)]
    normalized_name: Annotated[str, Field(min_length=1)]
    avatar_url: str | None = None
    created_at: datetime


class CircleMembership(BaseModel):
    """A user's trust relationship with a person."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    user_id: Annotated[str, Field(min_length=1)]
    person_id: Annotated[str, Field(min_length=1)]
    muted_at: datetime | None = None
    created_at: datetime

    @property
    def is_muted(self) -> bool:
        """Check if the person is muted for this user."""
        return self.muted_at is not None


class CircleSource(BaseModel):
    """One source of a person, as shown in the circle view."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: Annotated[str, Field(min_length=1)]
    source_type: SourceType
    url: str
    display_status: SourceStatus
    status: CircleSourceStatus
    health_reason: SourceErrorCode | None = None
    badge_text: str
    last_success_at: datetime | None = None
    last_checked_at: datetime | None = None
    checked_ago: str | None = Field(
        default=None, description='e.g. "14h ago", "3 days ago"'
    )
    next_retry: str | None = Field(default=None, description='e.g. "in 5m"')


class CirclePerson(BaseModel):
    """A person in a user's circle with computed status."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: Annotated[str, Field(min_length=1)]
    display_name: str
    avatar_url: str | None = None
    status: PersonStatus
    is_muted: bool
    is_quiet: bool = False
    trusted_since: datetime
    items_surfaced: Annotated[int, Field(ge=0)] = 0
    last_signal_at: datetime | None = None
    sources: list[CircleSource] = Field(default_factory=list)


class CircleSummary(BaseModel):
    """Header counts for a user's circle."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    people_count: Annotated[int, Field(ge=0)]
    source_count: Annotated[int, Field(ge=0)]
    last_signal_at: datetime | None = None
