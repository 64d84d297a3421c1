"""Domain exceptions for the source store.

This module defines a hierarchy of exceptions for the store layer,
separating infrastructure errors (database issues) from domain errors
(missing records).
"""


class SourceStoreError(Exception):
    """Base exception for all source store errors."""


class ConnectionError(SourceStoreError):
    """Raised when the database connection is not established."""

    def __init__(self, message: str = "Database not connected") -> None:
        """Initialize the connection error.

        Args:
            message: Human-readable error message.
        """
        super().__init__(message)


class SourceNotFoundError(SourceStoreError):
    """Raised when a requested source does not exist."""

    def __init__(self, source_id: str) -> None:
        """Initialize the error with the missing source ID.

        Args:
            source_id: The source ID that was not found.
        """
        self.source_id = source_id
        super().__init__(f"Source not found: {source_id}")


class PersonNotFoundError(SourceStoreError):
    """Raised when a requested person does not exist."""

    def __init__(self, person_id: str) -> None:
        self.person_id = person_id
        super().__init__(f"Person not found: {person_id}")


class MembershipNotFoundError(SourceStoreError):
    """Raised when a user has no circle membership for a person."""

    def __init__(self, user_id: str, person_id: str) -> None:
        """Initialize the error with the missing membership key.

        Args:
            user_id: The user ID.
            person_id: The person ID.
        """
        self.user_id = user_id
        self.person_id = person_id
        super().__init__(f"Membership not found: user={user_id} person={person_id}")


class MigrationError(SourceStoreError):
    """Raised when a schema migration fails."""

    def __init__(self, version: int, message: str) -> None:
        """Initialize the migration error.

        Args:
            version: The migration version that failed.
            message: Human-readable error message.
        """
        self.version = version
        super().__init__(f"Migration {version} failed: {message}")


class SourceNotPausedError(SourceStoreError):
    """Raised when resuming a source that is not paused."""

    def __init__(self, source_id: str, status: str) -> None:
        """Initialize the error.

        Args:
            source_id: The source ID.
            status: Current status of the source.
        """
        self.source_id = source_id
        self.status = status
        super().__init__(f"Source {source_id} is not paused (status: {status})")
