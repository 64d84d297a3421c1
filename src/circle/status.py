"""Aggregation of source health into circle and person status.

Person status is never stored. It is recomputed on every read from the
display status of the person's sources, so a source stuck in CHECKING
past its timeout already counts as needing attention.
"""

from collections.abc import Iterable
from datetime import datetime, timedelta

from src.circle.models import CircleSourceStatus, PersonStatus
from src.sources.constants import QUIET_AFTER_DAYS
from src.sources.state_machine import SourceStatus


_CIRCLE_STATUS_MAP: dict[SourceStatus, CircleSourceStatus] = {
    SourceStatus.ACTIVE: CircleSourceStatus.ACTIVE,
    SourceStatus.WARNING: CircleSourceStatus.WARNING,
    # Not yet validated, counted as pending
    SourceStatus.DRAFT: CircleSourceStatus.WARNING,
    SourceStatus.CHECKING: CircleSourceStatus.WARNING,
    SourceStatus.ERROR: CircleSourceStatus.NEEDS_ATTENTION,
    SourceStatus.PAUSED: CircleSourceStatus.NEEDS_ATTENTION,
}


def map_source_status(display_status: SourceStatus) -> CircleSourceStatus:
    """Map a source display status to the circle taxonomy.

    Args:
        display_status: Output of get_display_status(), not the stored status.

    Returns:
        The circle source status.
    """
    return _CIRCLE_STATUS_MAP.get(display_status, CircleSourceStatus.NEEDS_ATTENTION)


def compute_person_status(
    source_statuses: Iterable[CircleSourceStatus],
    is_muted: bool,
) -> PersonStatus:
    """Compute a person's status from their sources.

    Precedence: MUTED, then NEEDS_ATTENTION for a person with no sources,
    then the best status among the sources (ACTIVE > WARNING >
    NEEDS_ATTENTION). One working source is enough for the person to be
    ACTIVE.

    Args:
        source_statuses: Circle statuses of the person's sources.
        is_muted: Whether the user muted this person.

    Returns:
        The derived person status.
    """
    if is_muted:
        return PersonStatus.MUTED

    statuses = set(source_statuses)
    if not statuses:
        return PersonStatus.NEEDS_ATTENTION

    if CircleSourceStatus.ACTIVE in statuses:
        return PersonStatus.ACTIVE

    if CircleSourceStatus.WARNING in statuses:
        return PersonStatus.WARNING

    return PersonStatus.NEEDS_ATTENTION


def is_quiet(
    person_status: PersonStatus,
    last_signal_at: datetime | None,
    now: datetime,
    quiet_days: int = QUIET_AFTER_DAYS,
) -> bool:
    """Check if an active person has gone quiet.

    Quiet is a presentation flag layered on top of ACTIVE; it never
    changes the person status.

    Args:
        person_status: Derived person status.
        last_signal_at: When the person last produced an item.
        now: Current timestamp.
        quiet_days: Window without signal before a person is quiet.

    Returns:
        True for an ACTIVE person with no signal inside the window.
    """
    if person_status != PersonStatus.ACTIVE:
        return False
    if last_signal_at is None:
        return True
    return now - last_signal_at >= timedelta(days=quiet_days)


def format_checked_ago(date: datetime | None, now: datetime) -> str | None:
    """Format how long ago a source was checked.

    Args:
        date: Time of the last check.
        now: Current timestamp.

    Returns:
        "just now", "14h ago", "1 day ago", "3 days ago", "2 weeks ago",
        "4 months ago", or None if never checked.
    """
    if date is None:
        return None

    hours = int((now - date).total_seconds() // 3600)
    days = hours // 24

    if hours < 1:
        return "just now"
    if hours < 24:
        return f"{hours}h ago"
    if days == 1:
        return "1 day ago"
    if days < 7:
        return f"{days} days ago"
    if days < 30:
        return f"{days // 7} weeks ago"
    return f"{days // 30} months ago"


def normalize_name(name: str) -> str:
    """Normalize a display name for person de-duplication."""
    return " ".join(name.split()).lower()
