"""SQLite store for sources, status history and circle membership.

This module provides persistent storage for:
- Sources with their health fields and append-only status history
- Explicit mapping between domain statuses and stored status values
- People and per-user circle memberships
"""

from src.store.errors import (
    ConnectionError,
    MembershipNotFoundError,
    MigrationError,
    PersonNotFoundError,
    SourceNotFoundError,
    SourceNotPausedError,
    SourceStoreError,
)
from src.store.metrics import StoreMetrics, TransactionContext
from src.store.migrations import CURRENT_VERSION, MigrationManager
from src.store.models import SourceTransition
from src.store.status_mapping import (
    NO_REASON,
    DbSourceStatus,
    from_db_status,
    to_db_status,
)
from src.store.store import SourceStore


__all__ = [
    # Errors
    "ConnectionError",
    "MembershipNotFoundError",
    "MigrationError",
    "PersonNotFoundError",
    "SourceNotFoundError",
    "SourceNotPausedError",
    "SourceStoreError",
    # Metrics
    "StoreMetrics",
    "TransactionContext",
    # Migrations
    "CURRENT_VERSION",
    "MigrationManager",
    # Models
    "SourceTransition",
    # Status mapping
    "NO_REASON",
    "DbSourceStatus",
    "from_db_status",
    "to_db_status",
    # Store
    "SourceStore",
]
