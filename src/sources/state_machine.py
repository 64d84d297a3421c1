"""State machine for source health status."""

from datetime import datetime, timedelta
from enum import Enum

import structlog

from src.sources.constants import COMPONENT_SOURCES, SOURCE_VALIDATION_TIMEOUT_SECONDS
from src.sources.metrics import SourceHealthMetrics


logger = structlog.get_logger()


class SourceStatus(str, Enum):
    """Health status of a monitored source.

    - DRAFT: Submitted by the user, not yet validated
    - CHECKING: Validation in progress (time-boxed)
    - ACTIVE: Fetch succeeded and produced usable content
    - WARNING: Reachable and valid but degraded (empty, rate limited)
    - ERROR: Unreachable or invalid; needs user action or a retry
    - PAUSED: Suspended by the user
    """

    DRAFT = "draft"
    CHECKING = "checking"
    ACTIVE = "active"
    WARNING = "warning"
    ERROR = "error"
    PAUSED = "paused"


# Valid state transitions
_VALID_TRANSITIONS: dict[SourceStatus, frozenset[SourceStatus]] = {
    SourceStatus.DRAFT: frozenset({SourceStatus.CHECKING}),
    # Checking must resolve to a displayable state
    SourceStatus.CHECKING: frozenset(
        {SourceStatus.ACTIVE, SourceStatus.WARNING, SourceStatus.ERROR}
    ),
    SourceStatus.ACTIVE: frozenset(
        {
            SourceStatus.WARNING,
            SourceStatus.ERROR,
            SourceStatus.PAUSED,
            SourceStatus.CHECKING,
        }
    ),
    SourceStatus.WARNING: frozenset(
        {
            SourceStatus.ACTIVE,
            SourceStatus.ERROR,
            SourceStatus.PAUSED,
            SourceStatus.CHECKING,
        }
    ),
    # Recovery from error always goes through a new check
    SourceStatus.ERROR: frozenset(
        {
            SourceStatus.WARNING,
            SourceStatus.PAUSED,
            SourceStatus.CHECKING,
        }
    ),
    # Only a user action leaves paused
    SourceStatus.PAUSED: frozenset({SourceStatus.CHECKING}),
}

TERMINAL_STATUSES: frozenset[SourceStatus] = frozenset(
    {
        SourceStatus.ACTIVE,
        SourceStatus.WARNING,
        SourceStatus.ERROR,
        SourceStatus.PAUSED,
    }
)


class SourceStateTransitionError(Exception):
    """Raised when an illegal status transition is attempted."""

    def __init__(
        self,
        source_id: str,
        from_state: SourceStatus,
        to_state: SourceStatus,
    ) -> None:
        """Initialize the transition error.

        Args:
            source_id: Identifier of the source.
            from_state: Current status.
            to_state: Attempted target status.
        """
        self.source_id = source_id
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Illegal status transition for source '{source_id}': "
            f"{from_state.value} -> {to_state.value}"
        )


def is_valid_transition(from_state: SourceStatus, to_state: SourceStatus) -> bool:
    """Check whether a status transition is allowed.

    Args:
        from_state: Current status.
        to_state: Target status.

    Returns:
        True if the transition is in the adjacency table.
    """
    return to_state in _VALID_TRANSITIONS.get(from_state, frozenset())


def allowed_transitions(from_state: SourceStatus) -> frozenset[SourceStatus]:
    """Get the statuses reachable from a status in one step."""
    return _VALID_TRANSITIONS.get(from_state, frozenset())


def keeps_status_on_result(current: SourceStatus, result: SourceStatus) -> bool:
    """Check whether a check result is recorded without a status change.

    A paused source stays paused whatever the result. A source already
    moved to ERROR (a stale check that was timed out) cannot jump straight
    back to ACTIVE when the slow check finally succeeds; it waits for its
    next check instead.

    Args:
        current: Stored status when the result lands.
        result: Status the result would produce.

    Returns:
        True if the stored status must be kept.
    """
    if current == SourceStatus.PAUSED:
        return True
    return current == SourceStatus.ERROR and result == SourceStatus.ACTIVE


def is_terminal_status(status: SourceStatus) -> bool:
    """Check if a status is safe to display without re-evaluation."""
    return status in TERMINAL_STATUSES


def get_display_status(
    status: SourceStatus,
    checking_started_at: datetime | None,
    now: datetime,
    timeout_seconds: float = SOURCE_VALIDATION_TIMEOUT_SECONDS,
) -> SourceStatus:
    """Compute the status a consumer should display.

    A stored CHECKING status is only trusted for ``timeout_seconds`` after
    ``checking_started_at``. Past that (or with no start time at all) the
    source reads as ERROR, whatever a background worker has written.

    Args:
        status: Stored status.
        checking_started_at: When validation began.
        now: Current timestamp.
        timeout_seconds: Validation timeout.

    Returns:
        The display status.
    """
    if status != SourceStatus.CHECKING:
        return status

    if checking_started_at is None:
        return SourceStatus.ERROR

    if now - checking_started_at >= timedelta(seconds=timeout_seconds):
        return SourceStatus.ERROR

    return SourceStatus.CHECKING


class SourceStateMachine:
    """Tracks the status of a single source and enforces valid transitions.

    Every accepted transition is logged; a rejected transition raises and
    leaves the current status untouched.
    """

    def __init__(
        self,
        source_id: str,
        initial_state: SourceStatus = SourceStatus.DRAFT,
    ) -> None:
        """Initialize the state machine.

        Args:
            source_id: Identifier for the source.
            initial_state: Starting status.
        """
        self._source_id = source_id
        self._state = initial_state
        self._log = logger.bind(component=COMPONENT_SOURCES, source_id=source_id)

    @property
    def source_id(self) -> str:
        """Get the source identifier."""
        return self._source_id

    @property
    def state(self) -> SourceStatus:
        """Get the current status."""
        return self._state

    @property
    def is_terminal(self) -> bool:
        """Check if current status is terminal."""
        return is_terminal_status(self._state)

    def can_transition_to(self, target: SourceStatus) -> bool:
        """Check if a transition to the target status is valid.

        Args:
            target: The target status.

        Returns:
            True if the transition is valid.
        """
        return is_valid_transition(self._state, target)

    def transition_to(self, target: SourceStatus) -> None:
        """Transition to a new status.

        Args:
            target: The target status.

        Raises:
            SourceStateTransitionError: If the transition is invalid.
        """
        if not self.can_transition_to(target):
            SourceHealthMetrics.get_instance().record_illegal_transition(
                self._state.value, target.value
            )
            self._log.error(
                "illegal_state_transition",
                from_state=self._state.value,
                to_state=target.value,
            )
            raise SourceStateTransitionError(
                source_id=self._source_id,
                from_state=self._state,
                to_state=target,
            )

        old_state = self._state
        self._state = target

        self._log.info(
            "state_transition",
            from_state=old_state.value,
            to_state=target.value,
        )

    def to_checking(self) -> None:
        """Transition to CHECKING."""
        self.transition_to(SourceStatus.CHECKING)

    def to_active(self) -> None:
        """Transition to ACTIVE."""
        self.transition_to(SourceStatus.ACTIVE)

    def to_warning(self) -> None:
        """Transition to WARNING."""
        self.transition_to(SourceStatus.WARNING)

    def to_error(self) -> None:
        """Transition to ERROR."""
        self.transition_to(SourceStatus.ERROR)

    def to_paused(self) -> None:
        """Transition to PAUSED."""
        self.transition_to(SourceStatus.PAUSED)
