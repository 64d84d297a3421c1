"""Integration tests for the source store."""

import random
import sqlite3
import tempfile
from collections.abc import Generator
from datetime import timedelta
from pathlib import Path

import pytest

from src.sources.errors import SourceErrorCode, SourceWarningCode
from src.sources.models import (
    FailOutcome,
    NoItemsOutcome,
    SourceType,
    SuccessOutcome,
    TimeoutOutcome,
)
from src.sources.state_machine import SourceStateTransitionError, SourceStatus
from src.store.errors import (
    ConnectionError as StoreConnectionError,
    MembershipNotFoundError,
    SourceNotFoundError,
    SourceNotPausedError,
)
from src.store.metrics import StoreMetrics
from src.store.store import SourceStore
from tests.helpers.time import FIXED_NOW, minutes_after


FEED_URL = "https://example.com/feed.xml"


@pytest.fixture
def temp_db_path() -> Generator[Path]:
    """Create a temporary database path."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test_sources.sqlite"


@pytest.fixture
def store(temp_db_path: Path) -> Generator[SourceStore]:
    """Create a connected source store."""
    StoreMetrics.reset()
    store = SourceStore(temp_db_path)
    store.connect()
    yield store
    store.close()


def success(item_count: int = 3) -> SuccessOutcome:
    """Build a success outcome."""
    return SuccessOutcome(feed_url=FEED_URL, item_count=item_count)


class TestSourceStoreConnection:
    """Tests for store connection and setup."""

    def test_connect_creates_database(self, temp_db_path: Path) -> None:
        """Test connecting creates the database file."""
        store = SourceStore(temp_db_path)
        assert not temp_db_path.exists()

        store.connect()
        assert temp_db_path.exists()
        store.close()

    def test_context_manager(self, temp_db_path: Path) -> None:
        """Test store works as context manager."""
        with SourceStore(temp_db_path) as store:
            assert store.is_connected
            assert store.get_schema_version() > 0

        assert not store.is_connected

    def test_wal_mode_enabled(self, store: SourceStore) -> None:
        """Test WAL mode is enabled."""
        mode = store._ensure_connected().execute("PRAGMA journal_mode").fetchone()[0]
        assert mode.lower() == "wal"

    def test_operations_require_connection(self, temp_db_path: Path) -> None:
        """Test using a closed store raises."""
        with pytest.raises(StoreConnectionError):
            SourceStore(temp_db_path).list_sources("user-1")


class TestCreateSource:
    """Tests for creating sources."""

    def test_create_draft(self, store: SourceStore) -> None:
        """Test a new source is an unscheduled draft."""
        source = store.create_source("user-1", f"  {FEED_URL} ", FIXED_NOW)

        assert source.status == SourceStatus.DRAFT
        assert source.url == FEED_URL
        assert source.next_check_at is None
        assert store.get_source(source.id) == source
        assert StoreMetrics.get_instance().sources_created_total == 1

    def test_source_type_inferred(self, store: SourceStore) -> None:
        """Test the source type is inferred from the URL."""
        source = store.create_source(
            "user-1", "https://www.goodreads.com/review/list_rss/1", FIXED_NOW
        )

        assert source.source_type == SourceType.GOODREADS

    def test_create_is_idempotent_per_user(self, store: SourceStore) -> None:
        """Test adding the same URL twice returns the same source."""
        first = store.create_source("user-1", FEED_URL, FIXED_NOW)
        second = store.create_source("user-1", FEED_URL, FIXED_NOW)
        other_user = store.create_source("user-2", FEED_URL, FIXED_NOW)

        assert second.id == first.id
        assert other_user.id != first.id

    def test_create_reattaches_detached(self, store: SourceStore) -> None:
        """Test re-adding a detached source attaches it again."""
        source = store.create_source("user-1", FEED_URL, FIXED_NOW)
        store.detach_source(source.id, FIXED_NOW)

        again = store.create_source("user-1", FEED_URL, FIXED_NOW)

        assert again.id == source.id
        assert not again.is_detached
        assert [s.id for s in store.list_sources("user-1")] == [source.id]

    def test_require_missing_source(self, store: SourceStore) -> None:
        """Test a missing source raises."""
        assert store.get_source("missing") is None
        with pytest.raises(SourceNotFoundError, match="missing"):
            store.require_source("missing")


class TestCheckLifecycle:
    """Tests for checks and outcomes."""

    def test_begin_check(self, store: SourceStore) -> None:
        """Test a draft enters CHECKING with a start time."""
        source = store.create_source("user-1", FEED_URL, FIXED_NOW)

        checking = store.begin_check(source.id, FIXED_NOW)

        assert checking.status == SourceStatus.CHECKING
        assert store.require_source(source.id).checking_started_at == FIXED_NOW

    def test_outcome_requires_checking_first(self, store: SourceStore) -> None:
        """Test a draft cannot jump straight to a result."""
        source = store.create_source("user-1", FEED_URL, FIXED_NOW)

        with pytest.raises(SourceStateTransitionError):
            store.apply_outcome(source.id, success(), FIXED_NOW)

        assert store.require_source(source.id).status == SourceStatus.DRAFT

    def test_success_outcome(self, store: SourceStore) -> None:
        """Test a success lands in ACTIVE on the base interval."""
        source = store.create_source("user-1", FEED_URL, FIXED_NOW)
        store.begin_check(source.id, FIXED_NOW)

        updated = store.apply_outcome(source.id, success(), FIXED_NOW)

        assert updated.status == SourceStatus.ACTIVE
        assert updated.feed_url == FEED_URL
        assert updated.next_check_at == minutes_after(60)
        assert store.require_source(source.id) == updated

    def test_failure_outcome_backs_off(self, store: SourceStore) -> None:
        """Test consecutive failures climb the retry ladder."""
        source = store.create_source("user-1", FEED_URL, FIXED_NOW)
        rng = random.Random(3)

        store.begin_check(source.id, FIXED_NOW)
        first = store.apply_outcome(source.id, TimeoutOutcome(), FIXED_NOW, rng=rng)
        store.begin_check(source.id, FIXED_NOW)
        second = store.apply_outcome(
            source.id,
            FailOutcome(error_code=SourceErrorCode.FETCH_FAILED),
            FIXED_NOW,
            rng=rng,
        )

        assert first.backoff_level == 1
        assert first.error_code == SourceErrorCode.TIMEOUT
        assert second.backoff_level == 2
        assert second.status == SourceStatus.ERROR
        assert minutes_after(4) <= second.next_check_at <= minutes_after(6)

    def test_no_items_is_warning(self, store: SourceStore) -> None:
        """Test an empty feed round-trips as a warning."""
        source = store.create_source("user-1", FEED_URL, FIXED_NOW)
        store.begin_check(source.id, FIXED_NOW)

        store.apply_outcome(source.id, NoItemsOutcome(feed_url=FEED_URL), FIXED_NOW)
        stored = store.require_source(source.id)

        assert stored.status == SourceStatus.WARNING
        assert stored.error_code == SourceErrorCode.NO_ITEMS
        assert stored.warning_code == SourceWarningCode.NO_RECENT_ITEMS

    def test_recovery_resets_backoff(self, store: SourceStore) -> None:
        """Test an error source recovers to ACTIVE through a new check."""
        source = store.create_source("user-1", FEED_URL, FIXED_NOW)
        store.begin_check(source.id, FIXED_NOW)
        store.apply_outcome(source.id, TimeoutOutcome(), FIXED_NOW)
        store.begin_check(source.id, minutes_after(5))

        recovered = store.apply_outcome(source.id, success(), minutes_after(5))

        assert recovered.status == SourceStatus.ACTIVE
        assert recovered.backoff_level == 0
        assert recovered.error_code is None

    def test_late_success_after_timeout_keeps_error(self, store: SourceStore) -> None:
        """Test a slow success landing after a timeout does not reach ACTIVE."""
        source = store.create_source("user-1", FEED_URL, FIXED_NOW)
        store.begin_check(source.id, FIXED_NOW)
        store.apply_outcome(source.id, TimeoutOutcome(), minutes_after(1))

        late = store.apply_outcome(source.id, success(), minutes_after(2))

        assert late.status == SourceStatus.ERROR
        assert late.error_code == SourceErrorCode.TIMEOUT
        assert late.backoff_level == 1
        assert late.next_check_at == minutes_after(2)
        assert store.list_due_sources(minutes_after(2)) == [late]
        assert [t.to_status for t in store.list_transitions(source.id)] == [
            SourceStatus.CHECKING,
            SourceStatus.ERROR,
        ]

    def test_transitions_recorded(self, store: SourceStore) -> None:
        """Test every status change is appended to the history."""
        source = store.create_source("user-1", FEED_URL, FIXED_NOW)
        store.begin_check(source.id, FIXED_NOW)
        store.apply_outcome(source.id, TimeoutOutcome(), FIXED_NOW)
        store.apply_outcome(source.id, TimeoutOutcome(), minutes_after(2))

        transitions = store.list_transitions(source.id)

        assert [(t.from_status, t.to_status) for t in transitions] == [
            (SourceStatus.DRAFT, SourceStatus.CHECKING),
            (SourceStatus.CHECKING, SourceStatus.ERROR),
        ]
        assert transitions[1].error_code == SourceErrorCode.TIMEOUT
        assert StoreMetrics.get_instance().transitions_recorded_total == 2
        assert StoreMetrics.get_instance().outcomes_applied_total == 2


class TestDueSources:
    """Tests for selecting due sources."""

    def test_drafts_are_due(self, store: SourceStore) -> None:
        """Test never-scheduled sources are due."""
        source = store.create_source("user-1", FEED_URL, FIXED_NOW)

        assert [s.id for s in store.list_due_sources(FIXED_NOW)] == [source.id]

    def test_scheduled_sources(self, store: SourceStore) -> None:
        """Test a source is due only once next_check_at is reached."""
        source = store.create_source("user-1", FEED_URL, FIXED_NOW)
        store.begin_check(source.id, FIXED_NOW)
        store.apply_outcome(source.id, success(), FIXED_NOW)

        assert store.list_due_sources(minutes_after(59)) == []
        assert len(store.list_due_sources(minutes_after(60))) == 1

    def test_paused_and_detached_never_due(self, store: SourceStore) -> None:
        """Test paused and detached sources are not selected."""
        paused = store.create_source("user-1", FEED_URL, FIXED_NOW)
        store.begin_check(paused.id, FIXED_NOW)
        store.apply_outcome(paused.id, success(), FIXED_NOW)
        store.pause_source(paused.id, FIXED_NOW)
        detached = store.create_source("user-1", "https://other.example/rss", FIXED_NOW)
        store.detach_source(detached.id, FIXED_NOW)

        assert store.list_due_sources(minutes_after(10_000)) == []


class TestPauseResume:
    """Tests for pausing and resuming."""

    def _active_source_id(self, store: SourceStore) -> str:
        source = store.create_source("user-1", FEED_URL, FIXED_NOW)
        store.begin_check(source.id, FIXED_NOW)
        store.apply_outcome(source.id, success(), FIXED_NOW)
        return source.id

    def test_pause_draft_rejected(self, store: SourceStore) -> None:
        """Test a draft cannot be paused."""
        source = store.create_source("user-1", FEED_URL, FIXED_NOW)

        with pytest.raises(SourceStateTransitionError):
            store.pause_source(source.id, FIXED_NOW)

    def test_late_outcome_keeps_paused(self, store: SourceStore) -> None:
        """Test an outcome landing after pause does not unpause."""
        source_id = self._active_source_id(store)
        store.pause_source(source_id, minutes_after(30))

        updated = store.apply_outcome(source_id, TimeoutOutcome(), minutes_after(61))

        assert updated.status == SourceStatus.PAUSED
        assert updated.error_code == SourceErrorCode.TIMEOUT

    def test_pause_while_checking_rejected(self, store: SourceStore) -> None:
        """Test a source in CHECKING cannot be paused."""
        source_id = self._active_source_id(store)
        store.begin_check(source_id, minutes_after(60))

        with pytest.raises(SourceStateTransitionError):
            store.pause_source(source_id, minutes_after(60))

    def test_resume_requires_paused(self, store: SourceStore) -> None:
        """Test resuming an unpaused source raises."""
        source_id = self._active_source_id(store)

        with pytest.raises(SourceNotPausedError):
            store.resume_source(source_id, FIXED_NOW)

    def test_resume_enters_checking(self, store: SourceStore) -> None:
        """Test resuming moves the source into CHECKING."""
        source_id = self._active_source_id(store)
        store.pause_source(source_id, FIXED_NOW)

        resumed = store.resume_source(source_id, minutes_after(5))

        assert resumed.status == SourceStatus.CHECKING
        assert resumed.checking_started_at == minutes_after(5)
        assert resumed.url == FEED_URL

    def test_resume_makes_source_due(self, store: SourceStore) -> None:
        """Test a resumed source is due at once, not at its old schedule."""
        source_id = self._active_source_id(store)
        assert store.require_source(source_id).next_check_at == minutes_after(60)
        store.pause_source(source_id, minutes_after(1))

        resumed = store.resume_source(source_id, minutes_after(2))

        assert resumed.next_check_at is None
        assert store.require_source(source_id).next_check_at is None
        assert [s.id for s in store.list_due_sources(minutes_after(2))] == [source_id]

    def test_resume_with_new_url_starts_over(self, store: SourceStore) -> None:
        """Test a new URL clears the previous feed and backoff."""
        source = store.create_source("user-1", FEED_URL, FIXED_NOW)
        store.begin_check(source.id, FIXED_NOW)
        store.apply_outcome(source.id, TimeoutOutcome(), FIXED_NOW)
        store.pause_source(source.id, FIXED_NOW)

        resumed = store.resume_source(
            source.id, FIXED_NOW, new_url="https://ken.substack.com/feed"
        )

        assert resumed.url == "https://ken.substack.com/feed"
        assert resumed.source_type == SourceType.NEWSLETTER
        assert resumed.backoff_level == 0
        assert resumed.error_code is None
        assert resumed.feed_url is None


class TestCircleStorage:
    """Tests for people and memberships."""

    def test_person_deduplicated_by_name(self, store: SourceStore) -> None:
        """Test names differing only in case and spacing share a person."""
        ken, created = store.get_or_create_person("Ken Liu", FIXED_NOW)
        same, created_again = store.get_or_create_person("  ken   liu", FIXED_NOW)

        assert created is True
        assert created_again is False
        assert same.id == ken.id
        assert same.display_name == "Ken Liu"

    def test_membership_lifecycle(self, store: SourceStore) -> None:
        """Test adding, muting and removing a membership."""
        person, _ = store.get_or_create_person("Ken", FIXED_NOW)
        store.upsert_membership("user-1", person.id, FIXED_NOW)
        store.upsert_membership("user-1", person.id, minutes_after(5))

        memberships = store.list_memberships("user-1")
        assert len(memberships) == 1
        assert memberships[0].created_at == FIXED_NOW

        muted = store.set_membership_muted("user-1", person.id, True, FIXED_NOW)
        assert muted.is_muted

        assert store.delete_membership("user-1", person.id) is True
        assert store.delete_membership("user-1", person.id) is False

    def test_mute_unknown_membership(self, store: SourceStore) -> None:
        """Test muting a person outside the circle raises."""
        with pytest.raises(MembershipNotFoundError):
            store.set_membership_muted("user-1", "nobody", True, FIXED_NOW)

    def test_detach_person_sources_keeps_history(self, store: SourceStore) -> None:
        """Test detaching a person's sources keeps rows and transitions."""
        person, _ = store.get_or_create_person("Ken", FIXED_NOW)
        source = store.create_source("user-1", FEED_URL, FIXED_NOW, person_id=person.id)
        store.begin_check(source.id, FIXED_NOW)

        assert store.detach_person_sources("user-1", person.id, minutes_after(1)) == 1
        assert store.detach_person_sources("user-1", person.id, minutes_after(2)) == 0

        detached = store.require_source(source.id)
        assert detached.detached_at == minutes_after(1)
        assert store.list_person_sources("user-1", person.id) == []
        assert len(store.list_transitions(source.id)) == 1

    def test_source_with_history_cannot_be_hard_deleted(
        self, store: SourceStore, temp_db_path: Path
    ) -> None:
        """Test the schema refuses to delete a source that has transitions."""
        source = store.create_source("user-1", FEED_URL, FIXED_NOW)
        store.begin_check(source.id, FIXED_NOW)

        conn = sqlite3.connect(temp_db_path)
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            with pytest.raises(sqlite3.IntegrityError):
                conn.execute("DELETE FROM sources WHERE id = ?", (source.id,))
        finally:
            conn.close()

    def test_membership_requires_person(self, store: SourceStore) -> None:
        """Test memberships must reference an existing person."""
        with pytest.raises(sqlite3.IntegrityError):
            store.upsert_membership("user-1", "ghost", FIXED_NOW)
