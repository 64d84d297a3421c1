"""Data models for the source store."""

from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

from src.sources.errors import SourceErrorCode
from src.sources.state_machine import SourceStatus


class SourceTransition(BaseModel):
    """One entry of a source's append-only status history."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    source_id: Annotated[str, Field(min_length=1)]
    from_status: SourceStatus
    to_status: SourceStatus
    error_code: SourceErrorCode | None = Field(
        default=None, description="Error code carried into the new status"
    )
    occurred_at: datetime
