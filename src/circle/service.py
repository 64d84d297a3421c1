"""Circle queries and mutations over the source store.

The circle is person-based, not source-based: a person can have several
sources, and a user trusts a person through a circle membership. Every
circle view is built here so status is always derived the same way.
"""

from datetime import datetime

import structlog

from src.circle.models import (
    CircleMembership,
    CirclePerson,
    CircleSource,
    CircleSummary,
    Person,
)
from src.circle.status import (
    compute_person_status,
    format_checked_ago,
    is_quiet,
    map_source_status,
)
from src.sources.backoff import format_next_retry
from src.sources.constants import (
    COMPONENT_CIRCLE,
    QUIET_AFTER_DAYS,
    SOURCE_VALIDATION_TIMEOUT_SECONDS,
)
from src.sources.copy import get_status_badge_text
from src.sources.models import Source
from src.sources.state_machine import SourceStatus
from src.store.errors import PersonNotFoundError
from src.store.store import SourceStore


logger = structlog.get_logger()


def _latest(values: list[datetime | None]) -> datetime | None:
    present = [v for v in values if v is not None]
    return max(present) if present else None


class CircleService:
    """Builds circle views and applies circle mutations for a user."""

    def __init__(
        self,
        store: SourceStore,
        timeout_seconds: float = SOURCE_VALIDATION_TIMEOUT_SECONDS,
        quiet_days: int = QUIET_AFTER_DAYS,
    ) -> None:
        """Initialize the circle service.

        Args:
            store: Connected source store.
            timeout_seconds: Validation timeout used for display status.
            quiet_days: Window without signal before a person is quiet.
        """
        self._store = store
        self._timeout_seconds = timeout_seconds
        self._quiet_days = quiet_days
        self._log = logger.bind(component=COMPONENT_CIRCLE)

    def _to_circle_source(self, source: Source, now: datetime) -> CircleSource:
        display = source.display_status(now, self._timeout_seconds)
        return CircleSource(
            id=source.id,
            source_type=source.source_type,
            url=source.url,
            display_status=display,
            status=map_source_status(display),
            health_reason=source.error_code,
            badge_text=get_status_badge_text(display, source.warning_code),
            last_success_at=source.last_success_at,
            last_checked_at=source.last_checked_at,
            checked_ago=format_checked_ago(source.last_checked_at, now),
            next_retry=(
                format_next_retry(source.next_check_at, now)
                if display in (SourceStatus.WARNING, SourceStatus.ERROR)
                else None
            ),
        )

    def _to_circle_person(
        self,
        membership: CircleMembership,
        now: datetime,
    ) -> CirclePerson:
        person = self._store.get_person(membership.person_id)
        if person is None:
            raise PersonNotFoundError(membership.person_id)

        sources = self._store.list_person_sources(membership.user_id, person.id)
        circle_sources = [self._to_circle_source(s, now) for s in sources]
        status = compute_person_status(
            (s.status for s in circle_sources), membership.is_muted
        )
        last_signal_at = _latest([s.last_item_at for s in sources])

        return CirclePerson(
            id=person.id,
            display_name=person.display_name,
            avatar_url=person.avatar_url,
            status=status,
            is_muted=membership.is_muted,
            is_quiet=is_quiet(status, last_signal_at, now, self._quiet_days),
            trusted_since=membership.created_at,
            items_surfaced=sum(s.item_count for s in sources),
            last_signal_at=last_signal_at,
            sources=circle_sources,
        )

    def get_circle_people(self, user_id: str, now: datetime) -> list[CirclePerson]:
        """Get every person in a user's circle with derived status.

        Args:
            user_id: The user.
            now: Current timestamp, used for display status and labels.

        Returns:
            People in the order they were added.
        """
        return [
            self._to_circle_person(m, now)
            for m in self._store.list_memberships(user_id)
        ]

    def get_circle_summary(self, user_id: str, now: datetime) -> CircleSummary:
        """Get header counts for a user's circle."""
        people = self.get_circle_people(user_id, now)
        return CircleSummary(
            people_count=len(people),
            source_count=sum(len(p.sources) for p in people),
            last_signal_at=_latest([p.last_signal_at for p in people]),
        )

    def get_circle_names(self, user_id: str, now: datetime) -> list[str]:
        """Get display names of the people a user has not muted."""
        return [
            p.display_name
            for p in self.get_circle_people(user_id, now)
            if not p.is_muted
        ]

    def add_person_to_circle(
        self,
        user_id: str,
        display_name: str,
        now: datetime,
        feed_url: str | None = None,
        avatar_url: str | None = None,
    ) -> tuple[Person, bool]:
        """Find or create a person by name and add them to the circle.

        Args:
            user_id: The user.
            display_name: Person's name as entered.
            now: Current timestamp.
            feed_url: Optional source URL to create as a draft for the person.
            avatar_url: Optional avatar for a new person.

        Returns:
            Tuple of (person, created).
        """
        person, created = self._store.get_or_create_person(
            display_name, now, avatar_url=avatar_url
        )
        self._store.upsert_membership(user_id, person.id, now)

        if feed_url:
            self._store.create_source(
                user_id,
                feed_url,
                now,
                person_id=person.id,
                title=person.display_name,
            )

        self._log.info(
            "person_added_to_circle",
            user_id=user_id,
            person_id=person.id,
            created=created,
        )
        return person, created

    def remove_person_from_circle(
        self,
        user_id: str,
        person_id: str,
        now: datetime,
        remove_all_sources: bool = False,
    ) -> bool:
        """Remove a person from a user's circle.

        The person itself is kept. Their sources are only detached when
        ``remove_all_sources`` is set; detached sources keep their history.

        Returns:
            True if the person was in the circle.
        """
        removed = self._store.delete_membership(user_id, person_id)
        sources_detached = 0
        if remove_all_sources:
            sources_detached = self._store.detach_person_sources(
                user_id, person_id, now
            )

        self._log.info(
            "person_removed_from_circle",
            user_id=user_id,
            person_id=person_id,
            sources_detached=sources_detached,
        )
        return removed

    def set_person_muted(
        self,
        user_id: str,
        person_id: str,
        muted: bool,
        now: datetime,
    ) -> CircleMembership:
        """Mute or unmute a person.

        Raises:
            MembershipNotFoundError: If the person is not in the circle.
        """
        return self._store.set_membership_muted(user_id, person_id, muted, now)
