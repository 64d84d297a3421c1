"""Unit tests for schema migrations."""

import sqlite3
from collections.abc import Generator

import pytest

from src.store.migrations import (
    CURRENT_VERSION,
    MIGRATIONS,
    MigrationManager,
    get_migrations_to_apply,
)


def table_exists(conn: sqlite3.Connection, name: str) -> bool:
    """Check if a table exists."""
    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,)
    )
    return cursor.fetchone() is not None


def table_columns(conn: sqlite3.Connection, name: str) -> set[str]:
    """Get the column names of a table."""
    return {row[1] for row in conn.execute(f"PRAGMA table_info({name})").fetchall()}


@pytest.fixture
def temp_db() -> Generator[sqlite3.Connection]:
    """Create a temporary in-memory database."""
    conn = sqlite3.connect(":memory:")
    yield conn
    conn.close()


class TestMigrationConstants:
    """Tests for migration constants."""

    def test_migrations_in_order(self) -> None:
        """Test migrations are in ascending version order."""
        versions = [m.version for m in MIGRATIONS]
        assert versions == sorted(versions)

    def test_migrations_have_up_and_down(self) -> None:
        """Test all migrations have up and down SQL."""
        for migration in MIGRATIONS:
            assert migration.up_sql.strip()
            assert migration.down_sql.strip()

    def test_current_version_matches_latest_migration(self) -> None:
        """Test current version matches the latest migration."""
        assert MIGRATIONS[-1].version == CURRENT_VERSION


class TestGetMigrationsToApply:
    """Tests for get_migrations_to_apply function."""

    def test_from_zero(self) -> None:
        """Test getting all migrations from version 0."""
        assert len(get_migrations_to_apply(0)) == len(MIGRATIONS)

    def test_from_current(self) -> None:
        """Test no migrations when at current version."""
        assert get_migrations_to_apply(CURRENT_VERSION) == []


class TestMigrationManager:
    """Tests for MigrationManager."""

    def test_get_current_version_zero_when_empty(
        self, temp_db: sqlite3.Connection
    ) -> None:
        """Test version is 0 when no migrations applied."""
        manager = MigrationManager(temp_db)

        assert manager.get_current_version() == 0
        assert table_exists(temp_db, "schema_version")

    def test_apply_migrations_idempotent(self, temp_db: sqlite3.Connection) -> None:
        """Test applying migrations twice is idempotent."""
        manager = MigrationManager(temp_db)

        assert manager.apply_migrations() == [m.version for m in MIGRATIONS]
        assert manager.apply_migrations() == []
        assert manager.get_current_version() == CURRENT_VERSION

    def test_tables_created(self, temp_db: sqlite3.Connection) -> None:
        """Test required tables exist after migration."""
        MigrationManager(temp_db).apply_migrations()

        for table in ("persons", "circle_memberships", "sources", "source_transitions"):
            assert table_exists(temp_db, table)

    def test_sources_schema(self, temp_db: sqlite3.Connection) -> None:
        """Test the sources table carries the health fields."""
        MigrationManager(temp_db).apply_migrations()

        columns = table_columns(temp_db, "sources")

        assert {
            "status",
            "reason",
            "backoff_level",
            "next_check_at",
            "last_success_at",
            "checking_started_at",
            "detached_at",
        } <= columns

    def test_sources_unique_per_user_and_url(
        self, temp_db: sqlite3.Connection
    ) -> None:
        """Test a user cannot hold the same URL twice."""
        MigrationManager(temp_db).apply_migrations()
        insert = """
            INSERT INTO sources (id, user_id, url, source_type, status, created_at)
            VALUES (?, 'user-1', 'https://example.com/rss', 'rss', 'DRAFT', 'now')
        """
        temp_db.execute(insert, ("a",))

        with pytest.raises(sqlite3.IntegrityError):
            temp_db.execute(insert, ("b",))

    def test_rollback_to_zero(self, temp_db: sqlite3.Connection) -> None:
        """Test rolling back all migrations."""
        manager = MigrationManager(temp_db)
        manager.apply_migrations()

        rolled_back = manager.rollback_to(0)

        assert rolled_back == [CURRENT_VERSION]
        assert manager.get_current_version() == 0
        assert not table_exists(temp_db, "sources")

    def test_rollback_invalid_version_raises(self, temp_db: sqlite3.Connection) -> None:
        """Test rollback to invalid version raises error."""
        manager = MigrationManager(temp_db)
        manager.apply_migrations()

        with pytest.raises(ValueError, match="Invalid target version"):
            manager.rollback_to(-1)
