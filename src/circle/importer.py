"""Loading a circle definition (people and their feeds) from YAML."""

from pathlib import Path
from typing import Annotated

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.sources.constants import COMPONENT_CIRCLE


logger = structlog.get_logger()


class CircleImportError(Exception):
    """Raised when a circle file cannot be read or validated."""

    def __init__(self, errors: list[dict[str, str]], file_path: str) -> None:
        """Initialize the error.

        Args:
            errors: List of validation error details (loc, msg, type).
            file_path: Path to the file that failed validation.
        """
        self.errors = errors
        self.file_path = file_path
        super().__init__(f"Validation failed for {file_path}: {len(errors)} errors")


class CircleImportEntry(BaseModel):
    """One person and the feeds to watch for them."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: Annotated[str, Field(min_length=1, description="Display name")]
    avatar_url: str | None = None
    feeds: list[str] = Field(default_factory=list)

    @field_validator("feeds")
    @classmethod
    def strip_feeds(cls, v: list[str]) -> list[str]:
        """Drop blank entries and surrounding whitespace."""
        return [feed.strip() for feed in v if feed.strip()]


class CircleImportFile(BaseModel):
    """Top-level structure of a circle YAML file."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    people: list[CircleImportEntry] = Field(default_factory=list)


def load_circle_file(file_path: Path) -> CircleImportFile:
    """Read and validate a circle YAML file.

    Args:
        file_path: Path to the YAML file.

    Returns:
        The validated circle definition.

    Raises:
        CircleImportError: If the file is missing, not YAML, or invalid.
    """
    log = logger.bind(component=COMPONENT_CIRCLE, file_path=str(file_path))

    try:
        data = yaml.safe_load(file_path.read_text(encoding="utf-8")) or {}
    except FileNotFoundError as e:
        raise CircleImportError(
            [{"loc": str(file_path), "msg": str(e), "type": "file_not_found"}],
            str(file_path),
        ) from e
    except yaml.YAMLError as e:
        raise CircleImportError(
            [{"loc": str(file_path), "msg": str(e), "type": "yaml_parse_error"}],
            str(file_path),
        ) from e

    try:
        circle = CircleImportFile.model_validate(data)
    except ValidationError as e:
        errors = [
            {
                "loc": ".".join(str(part) for part in err["loc"]),
                "msg": err["msg"],
                "type": err["type"],
            }
            for err in e.errors()
        ]
        log.warning("circle_file_invalid", error_count=len(errors))
        raise CircleImportError(errors, str(file_path)) from e

    log.info("circle_file_loaded", people_count=len(circle.people))
    return circle
