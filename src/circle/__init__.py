"""Circle of trusted people and their aggregated source health.

This module provides:
- Person and membership models with derived (never stored) status
- Pure aggregation from source display status to person status
- CircleService for circle views and mutations
"""

from src.circle.models import (
    CircleMembership,
    CirclePerson,
    CircleSource,
    CircleSourceStatus,
    CircleSummary,
    Person,
    PersonStatus,
)
from src.circle.status import (
    compute_person_status,
    format_checked_ago,
    is_quiet,
    map_source_status,
    normalize_name,
)


__all__ = [
    # Models
    "CircleMembership",
    "CirclePerson",
    "CircleSource",
    "CircleSourceStatus",
    "CircleSummary",
    "Person",
    "PersonStatus",
    # Status
    "compute_person_status",
    "format_checked_ago",
    "is_quiet",
    "map_source_status",
    "normalize_name",
]
