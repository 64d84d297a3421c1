"""SQLite source store implementation."""

import random
import sqlite3
import time
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog

from src.circle.models import CircleMembership, Person
from src.circle.status import normalize_name
from src.sources.backoff import (
    DEFAULT_POLICY,
    BackoffPolicy,
    apply_outcome_to_source,
    is_due_for_check,
)
from src.sources.constants import COMPONENT_STORE
from src.sources.errors import SourceWarningCode
from src.sources.models import Outcome, Source, SourceType, infer_source_type
from src.sources.state_machine import (
    SourceStateMachine,
    SourceStatus,
    keeps_status_on_result,
)
from src.store.errors import (
    ConnectionError as StoreConnectionError,
    MembershipNotFoundError,
    SourceNotFoundError,
    SourceNotPausedError,
)
from src.store.metrics import StoreMetrics, TransactionContext
from src.store.migrations import MigrationManager
from src.store.models import SourceTransition
from src.store.status_mapping import DbSourceStatus, from_db_status, to_db_status


logger = structlog.get_logger()


def _to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SourceStore:
    """SQLite store for sources, their status history and circle membership.

    Every status change is validated against the transition table and
    appended to ``source_transitions`` in the same transaction. Writes that
    depend on the current row take the database write lock before reading
    it, so concurrent outcomes for one source are applied in order.
    """

    def __init__(self, db_path: Path | str) -> None:
        """Initialize the source store.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = Path(db_path) if isinstance(db_path, str) else db_path
        self._conn: sqlite3.Connection | None = None
        self._metrics = StoreMetrics.get_instance()
        self._log = logger.bind(component=COMPONENT_STORE, db_path=str(self._db_path))

    @property
    def db_path(self) -> Path:
        """Get the database path."""
        return self._db_path

    @property
    def is_connected(self) -> bool:
        """Check if connected to database."""
        return self._conn is not None

    def connect(self) -> None:
        """Open connection to database and apply migrations.

        Creates the database file and parent directories if they don't exist.
        """
        if self._conn is not None:
            return

        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._log.info("connecting_to_database")

        self._conn = sqlite3.connect(str(self._db_path))
        self._conn.row_factory = sqlite3.Row

        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._conn.execute("PRAGMA foreign_keys=ON")

        migration_mgr = MigrationManager(self._conn)
        old_version = migration_mgr.get_current_version()
        applied = migration_mgr.apply_migrations()

        self._log.info(
            "database_connected",
            old_version=old_version,
            new_version=migration_mgr.get_current_version(),
            migrations_applied=applied,
        )

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            self._log.info("database_closed")

    def __enter__(self) -> "SourceStore":
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Context manager exit."""
        self.close()

    def get_schema_version(self) -> int:
        """Get the applied schema version."""
        return MigrationManager(self._ensure_connected()).get_current_version()

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure database is connected.

        Returns:
            The database connection.

        Raises:
            StoreConnectionError: If not connected.
        """
        if self._conn is None:
            raise StoreConnectionError("Database not connected. Call connect() first.")
        return self._conn

    @contextmanager
    def _transaction(
        self,
        operation: str,
        immediate: bool = False,
    ) -> Generator[TransactionContext]:
        """Context manager for transactions with timing and logging.

        Args:
            operation: Name of the operation for logging.
            immediate: Take the write lock before the first read.

        Yields:
            Transaction context with timing information.
        """
        conn = self._ensure_connected()
        tx_id = str(uuid.uuid4())[:8]
        start_ns = time.perf_counter_ns()
        ctx = TransactionContext(
            tx_id=tx_id, start_time_ns=start_ns, operation=operation
        )

        self._log.debug("transaction_started", tx_id=tx_id, op=operation)

        if immediate:
            conn.execute("BEGIN IMMEDIATE")

        try:
            yield ctx
            conn.commit()
            duration_ms = (time.perf_counter_ns() - start_ns) / 1_000_000
            self._metrics.record_tx_duration(duration_ms)

            self._log.debug(
                "transaction_complete",
                tx_id=tx_id,
                op=operation,
                affected_rows=ctx.affected_rows,
                duration_ms=round(duration_ms, 2),
            )

        except Exception:
            conn.rollback()
            duration_ms = (time.perf_counter_ns() - start_ns) / 1_000_000

            self._log.error(
                "transaction_failed",
                tx_id=tx_id,
                op=operation,
                duration_ms=round(duration_ms, 2),
            )
            raise

    # ===== Row mapping =====

    def _row_to_source(self, row: sqlite3.Row) -> Source:
        """Build a Source from a sources row."""
        status, error_code = from_db_status(row["status"], row["reason"])
        warning_code = row["warning_code"]
        return Source(
            id=row["id"],
            user_id=row["user_id"],
            person_id=row["person_id"],
            title=row["title"],
            url=row["url"],
            feed_url=row["feed_url"],
            source_type=SourceType(row["source_type"]),
            status=status,
            error_code=error_code,
            warning_code=SourceWarningCode(warning_code) if warning_code else None,
            error_message=row["error_message"],
            backoff_level=row["backoff_level"],
            last_success_at=_from_iso(row["last_success_at"]),
            last_checked_at=_from_iso(row["last_checked_at"]),
            next_check_at=_from_iso(row["next_check_at"]),
            item_count=row["item_count"],
            last_item_at=_from_iso(row["last_item_at"]),
            checking_started_at=_from_iso(row["checking_started_at"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            detached_at=_from_iso(row["detached_at"]),
        )

    def _source_columns(self, source: Source) -> dict[str, Any]:
        """Get the stored column values of a Source."""
        db_status, reason = to_db_status(source.status, source.error_code)
        return {
            "id": source.id,
            "user_id": source.user_id,
            "person_id": source.person_id,
            "title": source.title,
            "url": source.url,
            "feed_url": source.feed_url,
            "source_type": source.source_type.value,
            "status": db_status.value,
            "reason": reason,
            "warning_code": (
                source.warning_code.value if source.warning_code else None
            ),
            "error_message": source.error_message,
            "backoff_level": source.backoff_level,
            "last_success_at": _to_iso(source.last_success_at),
            "last_checked_at": _to_iso(source.last_checked_at),
            "next_check_at": _to_iso(source.next_check_at),
            "item_count": source.item_count,
            "last_item_at": _to_iso(source.last_item_at),
            "checking_started_at": _to_iso(source.checking_started_at),
            "created_at": _to_iso(source.created_at),
            "detached_at": _to_iso(source.detached_at),
        }

    def _insert_source(self, conn: sqlite3.Connection, source: Source) -> None:
        columns = self._source_columns(source)
        names = ", ".join(columns)
        placeholders = ", ".join(f":{name}" for name in columns)
        conn.execute(
            f"INSERT INTO sources ({names}) VALUES ({placeholders})",  # noqa: S608
            columns,
        )

    def _write_source(self, conn: sqlite3.Connection, source: Source) -> int:
        """Overwrite a stored source with the given state.

        Returns:
            Number of affected rows.
        """
        columns = self._source_columns(source)
        assignments = ", ".join(
            f"{name} = :{name}" for name in columns if name != "id"
        )
        cursor = conn.execute(
            f"UPDATE sources SET {assignments} WHERE id = :id",  # noqa: S608
            columns,
        )
        return cursor.rowcount

    def _read_source(self, conn: sqlite3.Connection, source_id: str) -> Source:
        """Read a source or raise SourceNotFoundError."""
        row = conn.execute(
            "SELECT * FROM sources WHERE id = ?", (source_id,)
        ).fetchone()
        if row is None:
            raise SourceNotFoundError(source_id)
        return self._row_to_source(row)

    def _record_transition(
        self,
        conn: sqlite3.Connection,
        before: Source,
        after: Source,
        now: datetime,
    ) -> None:
        """Append a status transition to the history table."""
        from_db, _ = to_db_status(before.status, before.error_code)
        to_db, reason = to_db_status(after.status, after.error_code)
        conn.execute(
            """
            INSERT INTO source_transitions
                (source_id, from_status, to_status, reason, occurred_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (after.id, from_db.value, to_db.value, reason, now.isoformat()),
        )
        self._metrics.record_transition()

    def _change_status(
        self,
        source: Source,
        target: SourceStatus,
        now: datetime,
    ) -> Source:
        """Validate and log a status change, returning the new source.

        Raises:
            SourceStateTransitionError: If the transition is not allowed.
        """
        SourceStateMachine(source.id, source.status).transition_to(target)
        return source.transition_to(target, now)

    # ===== Source operations =====

    def create_source(
        self,
        user_id: str,
        url: str,
        now: datetime,
        person_id: str | None = None,
        title: str | None = None,
    ) -> Source:
        """Create a draft source, or return the user's existing one for the URL.

        An existing source is re-attached and, when ``person_id`` is given,
        linked to that person.

        Args:
            user_id: Owning user.
            url: Origin URL.
            now: Current timestamp.
            person_id: Optional person the source belongs to.
            title: Optional display title.

        Returns:
            The created or existing source.
        """
        url = url.strip()
        with self._transaction("create_source", immediate=True) as ctx:
            conn = self._ensure_connected()
            row = conn.execute(
                "SELECT * FROM sources WHERE user_id = ? AND url = ?",
                (user_id, url),
            ).fetchone()

            if row is not None:
                existing = self._row_to_source(row)
                updated = existing.model_copy(
                    update={
                        "person_id": person_id or existing.person_id,
                        "detached_at": None,
                    }
                )
                ctx.add_affected_rows(self._write_source(conn, updated))
                self._log.info("source_exists", source_id=existing.id)
                return updated

            source = Source(
                id=str(uuid.uuid4()),
                user_id=user_id,
                person_id=person_id,
                title=title,
                url=url,
                source_type=infer_source_type(url),
                created_at=now,
            )
            self._insert_source(conn, source)
            ctx.add_affected_rows(1)

        self._metrics.record_source_created()
        self._log.info(
            "source_created",
            source_id=source.id,
            source_type=source.source_type.value,
        )
        return source

    def get_source(self, source_id: str) -> Source | None:
        """Get a source by ID.

        Args:
            source_id: The source ID.

        Returns:
            The source, or None if not found.
        """
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT * FROM sources WHERE id = ?", (source_id,)
        ).fetchone()
        return self._row_to_source(row) if row is not None else None

    def require_source(self, source_id: str) -> Source:
        """Get a source by ID.

        Raises:
            SourceNotFoundError: If the source does not exist.
        """
        return self._read_source(self._ensure_connected(), source_id)

    def list_sources(
        self,
        user_id: str,
        include_detached: bool = False,
    ) -> list[Source]:
        """List a user's sources in creation order.

        Args:
            user_id: Owning user.
            include_detached: Include soft-removed sources.

        Returns:
            The user's sources.
        """
        conn = self._ensure_connected()
        query = "SELECT * FROM sources WHERE user_id = ?"
        if not include_detached:
            query += " AND detached_at IS NULL"
        query += " ORDER BY created_at, id"
        return [self._row_to_source(row) for row in conn.execute(query, (user_id,))]

    def list_due_sources(self, now: datetime) -> list[Source]:
        """List attached sources that are due for a check.

        Args:
            now: Current timestamp.

        Returns:
            Due sources, never-scheduled first, then by next check time.
        """
        conn = self._ensure_connected()
        cursor = conn.execute(
            """
            SELECT * FROM sources
            WHERE detached_at IS NULL AND status != ?
            ORDER BY next_check_at IS NOT NULL, next_check_at, created_at
            """,
            (DbSourceStatus.PAUSED.value,),
        )
        sources = [self._row_to_source(row) for row in cursor]
        return [
            s for s in sources if is_due_for_check(s.next_check_at, s.status, now)
        ]

    def begin_check(self, source_id: str, now: datetime) -> Source:
        """Move a source into CHECKING and record when checking began.

        Args:
            source_id: The source ID.
            now: Current timestamp.

        Returns:
            The source in CHECKING.

        Raises:
            SourceNotFoundError: If the source does not exist.
            SourceStateTransitionError: If the source cannot start a check.
        """
        with self._transaction("begin_check", immediate=True) as ctx:
            conn = self._ensure_connected()
            source = self._read_source(conn, source_id)
            checking = self._change_status(source, SourceStatus.CHECKING, now)
            ctx.add_affected_rows(self._write_source(conn, checking))
            self._record_transition(conn, source, checking, now)

        return checking

    def apply_outcome(
        self,
        source_id: str,
        outcome: Outcome,
        now: datetime,
        policy: BackoffPolicy = DEFAULT_POLICY,
        rng: random.Random | None = None,
    ) -> Source:
        """Apply the outcome of a check to a source.

        The row is re-read under the write lock, so the backoff level and
        next check time are always computed from the latest stored state.
        A source paused while the check was in flight keeps its status, and
        a late success on a source already timed out into ERROR stays in
        ERROR until its next check.

        Args:
            source_id: The source ID.
            outcome: Classified check result.
            now: Time the check completed.
            policy: Backoff configuration.
            rng: Random source for jitter.

        Returns:
            The updated source.

        Raises:
            SourceNotFoundError: If the source does not exist.
            SourceStateTransitionError: If the result status is not reachable.
        """
        with self._transaction("apply_outcome", immediate=True) as ctx:
            conn = self._ensure_connected()
            source = self._read_source(conn, source_id)
            update = apply_outcome_to_source(
                source.backoff_level, outcome, now, policy, rng
            )

            if source.status != update.status and not keeps_status_on_result(
                source.status, update.status
            ):
                SourceStateMachine(source.id, source.status).transition_to(
                    update.status
                )

            updated = source.apply_update(update)
            ctx.add_affected_rows(self._write_source(conn, updated))
            if updated.status != source.status:
                self._record_transition(conn, source, updated, now)

        self._metrics.record_outcome_applied()
        self._log.info(
            "outcome_applied",
            source_id=source_id,
            outcome=outcome.kind,
            from_state=source.status.value,
            to_state=updated.status.value,
            error_code=updated.error_code.value if updated.error_code else None,
            backoff_level=updated.backoff_level,
            next_check_at=_to_iso(updated.next_check_at),
        )
        return updated

    def pause_source(self, source_id: str, now: datetime) -> Source:
        """Pause a source so it is no longer selected for checks.

        Raises:
            SourceNotFoundError: If the source does not exist.
            SourceStateTransitionError: If the source cannot be paused.
        """
        with self._transaction("pause_source", immediate=True) as ctx:
            conn = self._ensure_connected()
            source = self._read_source(conn, source_id)
            paused = self._change_status(source, SourceStatus.PAUSED, now)
            ctx.add_affected_rows(self._write_source(conn, paused))
            self._record_transition(conn, source, paused, now)

        return paused

    def resume_source(
        self,
        source_id: str,
        now: datetime,
        new_url: str | None = None,
    ) -> Source:
        """Resume a paused source by moving it into CHECKING.

        The next check time is cleared, so a resumed source is due at once
        even if the caller never runs the check itself. This is the only
        operation that may change a source's URL. A new URL starts the
        source over: the resolved feed, error fields and backoff level are
        cleared.

        Args:
            source_id: The source ID.
            now: Current timestamp.
            new_url: Optional replacement origin URL.

        Returns:
            The source in CHECKING.

        Raises:
            SourceNotFoundError: If the source does not exist.
            SourceNotPausedError: If the source is not paused.
        """
        with self._transaction("resume_source", immediate=True) as ctx:
            conn = self._ensure_connected()
            source = self._read_source(conn, source_id)
            if source.status != SourceStatus.PAUSED:
                raise SourceNotPausedError(source_id, source.status.value)

            resumed = self._change_status(
                source, SourceStatus.CHECKING, now
            ).model_copy(update={"next_check_at": None})
            if new_url is not None and new_url.strip() != source.url:
                resumed = resumed.model_copy(
                    update={
                        "url": new_url.strip(),
                        "source_type": infer_source_type(new_url),
                        "feed_url": None,
                        "error_code": None,
                        "warning_code": None,
                        "error_message": None,
                        "backoff_level": 0,
                    }
                )
                self._log.info("source_url_changed", source_id=source_id)

            ctx.add_affected_rows(self._write_source(conn, resumed))
            self._record_transition(conn, source, resumed, now)

        return resumed

    def detach_source(self, source_id: str, now: datetime) -> Source:
        """Soft-remove a source; it keeps its history but is never checked.

        Raises:
            SourceNotFoundError: If the source does not exist.
        """
        with self._transaction("detach_source") as ctx:
            conn = self._ensure_connected()
            source = self._read_source(conn, source_id)
            detached = source.model_copy(update={"detached_at": now})
            ctx.add_affected_rows(self._write_source(conn, detached))

        self._log.info("source_detached", source_id=source_id)
        return detached

    def list_transitions(self, source_id: str) -> list[SourceTransition]:
        """List a source's status history, oldest first."""
        conn = self._ensure_connected()
        cursor = conn.execute(
            """
            SELECT * FROM source_transitions
            WHERE source_id = ?
            ORDER BY id
            """,
            (source_id,),
        )
        transitions = []
        for row in cursor:
            from_status, _ = from_db_status(row["from_status"], None)
            to_status, error_code = from_db_status(row["to_status"], row["reason"])
            transitions.append(
                SourceTransition(
                    source_id=row["source_id"],
                    from_status=from_status,
                    to_status=to_status,
                    error_code=error_code,
                    occurred_at=datetime.fromisoformat(row["occurred_at"]),
                )
            )
        return transitions

    # ===== Circle operations =====

    def _row_to_person(self, row: sqlite3.Row) -> Person:
        return Person(
            id=row["id"],
            display_name=row["display_name"],
            normalized_name=row["normalized_name"],
            avatar_url=row["avatar_url"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def _row_to_membership(self, row: sqlite3.Row) -> CircleMembership:
        return CircleMembership(
            user_id=row["user_id"],
            person_id=row["person_id"],
            muted_at=_from_iso(row["muted_at"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def get_or_create_person(
        self,
        display_name: str,
        now: datetime,
        avatar_url: str | None = None,
    ) -> tuple[Person, bool]:
        """Find a person by normalized name, creating one if missing.

        Args:
            display_name: Name as entered.
            now: Current timestamp.
            avatar_url: Optional avatar for a new person.

        Returns:
            Tuple of (person, created).
        """
        normalized = normalize_name(display_name)
        with self._transaction("get_or_create_person", immediate=True) as ctx:
            conn = self._ensure_connected()
            row = conn.execute(
                "SELECT * FROM persons WHERE normalized_name = ?", (normalized,)
            ).fetchone()
            if row is not None:
                return self._row_to_person(row), False

            person = Person(
                id=str(uuid.uuid4()),
                display_name=display_name.strip(),
                normalized_name=normalized,
                avatar_url=avatar_url,
                created_at=now,
            )
            conn.execute(
                """
                INSERT INTO persons
                    (id, display_name, normalized_name, avatar_url, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    person.id,
                    person.display_name,
                    person.normalized_name,
                    person.avatar_url,
                    now.isoformat(),
                ),
            )
            ctx.add_affected_rows(1)

        self._log.info("person_created", person_id=person.id)
        return person, True

    def get_person(self, person_id: str) -> Person | None:
        """Get a person by ID."""
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT * FROM persons WHERE id = ?", (person_id,)
        ).fetchone()
        return self._row_to_person(row) if row is not None else None

    def upsert_membership(
        self,
        user_id: str,
        person_id: str,
        now: datetime,
    ) -> CircleMembership:
        """Add a person to a user's circle; existing memberships are kept."""
        with self._transaction("upsert_membership") as ctx:
            conn = self._ensure_connected()
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO circle_memberships
                    (user_id, person_id, muted_at, created_at)
                VALUES (?, ?, NULL, ?)
                """,
                (user_id, person_id, now.isoformat()),
            )
            ctx.add_affected_rows(cursor.rowcount)
            row = conn.execute(
                """
                SELECT * FROM circle_memberships
                WHERE user_id = ? AND person_id = ?
                """,
                (user_id, person_id),
            ).fetchone()

        return self._row_to_membership(row)

    def delete_membership(self, user_id: str, person_id: str) -> bool:
        """Remove a person from a user's circle.

        Returns:
            True if a membership was deleted.
        """
        with self._transaction("delete_membership") as ctx:
            conn = self._ensure_connected()
            cursor = conn.execute(
                "DELETE FROM circle_memberships WHERE user_id = ? AND person_id = ?",
                (user_id, person_id),
            )
            ctx.add_affected_rows(cursor.rowcount)

        return ctx.affected_rows > 0

    def set_membership_muted(
        self,
        user_id: str,
        person_id: str,
        muted: bool,
        now: datetime,
    ) -> CircleMembership:
        """Mute or unmute a person in a user's circle.

        Raises:
            MembershipNotFoundError: If the person is not in the circle.
        """
        with self._transaction("set_membership_muted") as ctx:
            conn = self._ensure_connected()
            cursor = conn.execute(
                """
                UPDATE circle_memberships SET muted_at = ?
                WHERE user_id = ? AND person_id = ?
                """,
                (now.isoformat() if muted else None, user_id, person_id),
            )
            if cursor.rowcount == 0:
                raise MembershipNotFoundError(user_id, person_id)
            ctx.add_affected_rows(cursor.rowcount)
            row = conn.execute(
                """
                SELECT * FROM circle_memberships
                WHERE user_id = ? AND person_id = ?
                """,
                (user_id, person_id),
            ).fetchone()

        return self._row_to_membership(row)

    def list_memberships(self, user_id: str) -> list[CircleMembership]:
        """List a user's circle memberships, oldest first."""
        conn = self._ensure_connected()
        cursor = conn.execute(
            """
            SELECT * FROM circle_memberships
            WHERE user_id = ?
            ORDER BY created_at, person_id
            """,
            (user_id,),
        )
        return [self._row_to_membership(row) for row in cursor]

    def list_person_sources(self, user_id: str, person_id: str) -> list[Source]:
        """List a user's attached sources for one person."""
        conn = self._ensure_connected()
        cursor = conn.execute(
            """
            SELECT * FROM sources
            WHERE user_id = ? AND person_id = ? AND detached_at IS NULL
            ORDER BY created_at, id
            """,
            (user_id, person_id),
        )
        return [self._row_to_source(row) for row in cursor]

    def detach_person_sources(
        self, user_id: str, person_id: str, now: datetime
    ) -> int:
        """Soft-remove a user's sources for one person.

        The rows and their transition history are kept; detached sources
        are no longer listed or checked.

        Returns:
            Number of sources detached.
        """
        with self._transaction("detach_person_sources") as ctx:
            conn = self._ensure_connected()
            cursor = conn.execute(
                """
                UPDATE sources SET detached_at = ?
                WHERE user_id = ? AND person_id = ? AND detached_at IS NULL
                """,
                (_to_iso(now), user_id, person_id),
            )
            ctx.add_affected_rows(cursor.rowcount)

        self._log.info(
            "person_sources_detached",
            person_id=person_id,
            count=ctx.affected_rows,
        )
        return ctx.affected_rows
