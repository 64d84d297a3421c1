"""Fixed user-facing copy for source errors and warnings.

Each message answers what happened and what to do next. The same code
always produces the same text; no caller builds error text from a raw
outcome.
"""

from typing import Annotated, Final, Literal

from pydantic import BaseModel, ConfigDict, Field

from src.sources.errors import SourceErrorCode, SourceWarningCode, coerce_error_code
from src.sources.state_machine import SourceStatus


class ErrorCopy(BaseModel):
    """Copy shown for a source in an error state."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    title: Annotated[str, Field(min_length=1)]
    body: Annotated[str, Field(min_length=1)]
    action: str | None = Field(default=None, description="Remediation step")
    show_retry: bool = Field(default=False, description="Offer a retry button")


class WarningCopy(BaseModel):
    """Copy shown for a degraded source."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    title: Annotated[str, Field(min_length=1)]
    body: Annotated[str, Field(min_length=1)]


BadgeVariant = Literal["active", "new", "danger", "default", "muted"]


ERROR_COPY: Final[dict[SourceErrorCode, ErrorCopy]] = {
    SourceErrorCode.INVALID_URL: ErrorCopy(
        title="This link doesn't look right",
        body="We couldn't recognize this as a Goodreads profile or feed.",
        action='Try pasting a Goodreads profile page, or a Goodreads "read" shelf.',
        show_retry=False,
    ),
    SourceErrorCode.NOT_RSS: ErrorCopy(
        title="We couldn't find a feed here",
        body=(
            "This page doesn't expose a readable feed, "
            "so we can't watch it for new books."
        ),
        action=(
            "If this is Goodreads, make sure you're linking to a profile "
            "or shelf, not a single book."
        ),
        show_retry=False,
    ),
    SourceErrorCode.FETCH_FAILED: ErrorCopy(
        title="We couldn't reach this source",
        body="The site didn't respond when we tried to check it.",
        action="You can try again, or come back later.",
        show_retry=True,
    ),
    SourceErrorCode.TIMEOUT: ErrorCopy(
        title="This is taking too long",
        body="We couldn't confirm this source in time.",
        action="Try again, or use a different link.",
        show_retry=True,
    ),
    SourceErrorCode.NO_ITEMS: ErrorCopy(
        title="Connected, nothing to show yet",
        body="We found the feed, but there are no recent five-star books.",
        action=None,
        show_retry=False,
    ),
    SourceErrorCode.RATE_LIMITED: ErrorCopy(
        title="Goodreads asked us to slow down",
        body="We hit a temporary limit while checking this feed.",
        action="We'll retry automatically later. No action needed.",
        show_retry=False,
    ),
    SourceErrorCode.UNAUTHORIZED: ErrorCopy(
        title="This feed isn't public",
        body="We can't read this feed without permission.",
        action="Make sure the profile or shelf is public on Goodreads.",
        show_retry=True,
    ),
    SourceErrorCode.PARSE_ERROR: ErrorCopy(
        title="We couldn't read this feed",
        body="The feed exists, but we couldn't understand its format.",
        action="Try a different link, or contact support if this keeps happening.",
        show_retry=True,
    ),
}

WARNING_COPY: Final[dict[SourceWarningCode, WarningCopy]] = {
    SourceWarningCode.NO_RECENT_ITEMS: WarningCopy(
        title="No recent five-star books",
        body="Connected and working. We'll notify you when something appears.",
    ),
    SourceWarningCode.RATE_LIMITED: WarningCopy(
        title="Temporarily limited",
        body="We'll retry automatically in a few minutes.",
    ),
    SourceWarningCode.STALE: WarningCopy(
        title="Needs a refresh",
        body="We haven't been able to check this source recently.",
    ),
}

_BADGE_TEXT: Final[dict[SourceStatus, str]] = {
    SourceStatus.ACTIVE: "Active",
    SourceStatus.WARNING: "Needs attention",
    SourceStatus.ERROR: "Needs attention",
    SourceStatus.PAUSED: "Paused",
    SourceStatus.CHECKING: "Checking...",
    SourceStatus.DRAFT: "Draft",
}

_WARNING_BADGE_TEXT: Final[dict[SourceWarningCode, str]] = {
    SourceWarningCode.NO_RECENT_ITEMS: "Waiting",
    SourceWarningCode.RATE_LIMITED: "Retrying soon",
}

_BADGE_VARIANT: Final[dict[SourceStatus, BadgeVariant]] = {
    SourceStatus.ACTIVE: "active",
    # amber styling
    SourceStatus.WARNING: "new",
    SourceStatus.ERROR: "danger",
    SourceStatus.PAUSED: "muted",
    SourceStatus.CHECKING: "default",
    SourceStatus.DRAFT: "default",
}


def get_error_copy(code: SourceErrorCode | str | None) -> ErrorCopy:
    """Get the copy for an error code.

    Args:
        code: Error code; unrecognized values get the FETCH_FAILED copy.

    Returns:
        The fixed copy for the code.
    """
    return ERROR_COPY[coerce_error_code(code)]


def get_warning_copy(code: SourceWarningCode | None) -> WarningCopy:
    """Get the copy for a warning code, defaulting to STALE."""
    if code is None:
        return WARNING_COPY[SourceWarningCode.STALE]
    return WARNING_COPY[code]


def get_status_badge_text(
    status: SourceStatus,
    warning_code: SourceWarningCode | None = None,
) -> str:
    """Get the short badge label for a status.

    Args:
        status: Display status of the source.
        warning_code: Warning code, used to refine WARNING badges.

    Returns:
        Badge label.
    """
    if status == SourceStatus.WARNING and warning_code is not None:
        return _WARNING_BADGE_TEXT.get(warning_code, _BADGE_TEXT[status])
    return _BADGE_TEXT[status]


def get_status_badge_variant(status: SourceStatus) -> BadgeVariant:
    """Get the badge styling variant for a status."""
    return _BADGE_VARIANT[status]
