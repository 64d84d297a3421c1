"""Unit tests for circle status aggregation."""

from datetime import timedelta

import pytest

from src.circle.models import CircleSourceStatus, PersonStatus
from src.circle.status import (
    compute_person_status,
    format_checked_ago,
    is_quiet,
    map_source_status,
    normalize_name,
)
from src.sources.state_machine import SourceStatus
from tests.helpers.time import FIXED_NOW


ACTIVE = CircleSourceStatus.ACTIVE
WARNING = CircleSourceStatus.WARNING
ATTENTION = CircleSourceStatus.NEEDS_ATTENTION


class TestMapSourceStatus:
    """Tests for mapping display statuses to circle statuses."""

    @pytest.mark.parametrize(
        ("display", "expected"),
        [
            (SourceStatus.ACTIVE, ACTIVE),
            (SourceStatus.WARNING, WARNING),
            (SourceStatus.DRAFT, WARNING),
            (SourceStatus.CHECKING, WARNING),
            (SourceStatus.ERROR, ATTENTION),
            (SourceStatus.PAUSED, ATTENTION),
        ],
    )
    def test_mapping(self, display: SourceStatus, expected: CircleSourceStatus) -> None:
        """Test every source status has a circle status."""
        assert map_source_status(display) == expected


class TestComputePersonStatus:
    """Tests for person status precedence."""

    def test_muted_wins(self) -> None:
        """Test a muted person is MUTED regardless of sources."""
        assert compute_person_status([ACTIVE], is_muted=True) == PersonStatus.MUTED
        assert compute_person_status([], is_muted=True) == PersonStatus.MUTED

    def test_no_sources_needs_attention(self) -> None:
        """Test a person with no sources needs attention."""
        assert compute_person_status([], is_muted=False) == PersonStatus.NEEDS_ATTENTION

    def test_one_active_source_is_enough(self) -> None:
        """Test one working source outweighs broken ones."""
        statuses = [ACTIVE, ATTENTION, ATTENTION]

        assert compute_person_status(statuses, is_muted=False) == PersonStatus.ACTIVE

    def test_warning_beats_attention(self) -> None:
        """Test a degraded source outranks broken ones."""
        statuses = [ATTENTION, WARNING]

        assert compute_person_status(statuses, is_muted=False) == PersonStatus.WARNING

    def test_all_broken(self) -> None:
        """Test a person with only broken sources needs attention."""
        statuses = [ATTENTION, ATTENTION]

        assert (
            compute_person_status(statuses, is_muted=False)
            == PersonStatus.NEEDS_ATTENTION
        )

    def test_accepts_generators(self) -> None:
        """Test any iterable of statuses is accepted."""
        statuses = (s for s in [WARNING, ACTIVE])

        assert compute_person_status(statuses, is_muted=False) == PersonStatus.ACTIVE


class TestPersonStatusAlias:
    """Tests for the DELAYED alias."""

    def test_delayed_is_warning(self) -> None:
        """Test DELAYED resolves to WARNING."""
        assert PersonStatus.DELAYED is PersonStatus.WARNING
        assert PersonStatus("DELAYED") is PersonStatus.WARNING
        assert PersonStatus("WARNING") is PersonStatus.WARNING

    def test_unknown_value_rejected(self) -> None:
        """Test unknown values still raise."""
        with pytest.raises(ValueError):
            PersonStatus("SLEEPING")


class TestIsQuiet:
    """Tests for the quiet presentation flag."""

    def test_recent_signal_not_quiet(self) -> None:
        """Test a recent signal keeps a person loud."""
        last = FIXED_NOW - timedelta(days=10)

        assert is_quiet(PersonStatus.ACTIVE, last, FIXED_NOW) is False

    def test_old_signal_is_quiet(self) -> None:
        """Test no signal for the window makes a person quiet."""
        last = FIXED_NOW - timedelta(days=90)

        assert is_quiet(PersonStatus.ACTIVE, last, FIXED_NOW) is True

    def test_never_signalled_is_quiet(self) -> None:
        """Test an active person with no signal is quiet."""
        assert is_quiet(PersonStatus.ACTIVE, None, FIXED_NOW) is True

    def test_only_active_people_are_quiet(self) -> None:
        """Test quiet never applies outside ACTIVE."""
        assert is_quiet(PersonStatus.WARNING, None, FIXED_NOW) is False
        assert is_quiet(PersonStatus.MUTED, None, FIXED_NOW) is False

    def test_custom_window(self) -> None:
        """Test the quiet window can be configured."""
        last = FIXED_NOW - timedelta(days=8)

        assert is_quiet(PersonStatus.ACTIVE, last, FIXED_NOW, quiet_days=7) is True


class TestFormatCheckedAgo:
    """Tests for relative check times."""

    @pytest.mark.parametrize(
        ("delta", "expected"),
        [
            (timedelta(minutes=20), "just now"),
            (timedelta(hours=14), "14h ago"),
            (timedelta(days=1, hours=3), "1 day ago"),
            (timedelta(days=3), "3 days ago"),
            (timedelta(days=15), "2 weeks ago"),
            (timedelta(days=125), "4 months ago"),
        ],
    )
    def test_formats(self, delta: timedelta, expected: str) -> None:
        """Test each range formats as expected."""
        assert format_checked_ago(FIXED_NOW - delta, FIXED_NOW) == expected

    def test_never_checked(self) -> None:
        """Test a missing time formats as None."""
        assert format_checked_ago(None, FIXED_NOW) is None


class TestNormalizeName:
    """Tests for name normalization."""

    def test_whitespace_and_case(self) -> None:
        """Test names are collapsed and lowercased."""
        assert normalize_name("  Ken   LIU ") == "ken liu"
