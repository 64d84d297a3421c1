"""Error hints for circle file validation errors.

Provides user-friendly hints with actionable remediation steps
for common validation errors.
"""

from typing import Final


# Mapping of error types to user-friendly hints
ERROR_HINTS: Final[dict[str, str]] = {
    "missing": "This field is required. Please add it to the file.",
    "extra_forbidden": "Unknown field. Allowed fields are: name, avatar_url, feeds.",
    "string_type": "This field must be a text string.",
    "list_type": "This field must be a list.",
    "model_type": "Each entry must be a mapping with a name and optional feeds.",
    "string_too_short": "The text is too short. Check minimum length requirement.",
    "file_not_found": "The file does not exist. Check the file path.",
    "yaml_parse_error": "Invalid YAML syntax. Check for proper indentation and formatting.",
}

# Field-specific hints for more context
FIELD_HINTS: Final[dict[str, str]] = {
    "name": "Use the person's display name, e.g. 'Ken'.",
    "feeds": "List of feed or Goodreads URLs, e.g. 'https://example.com/feed.xml'.",
    "avatar_url": "Optional image URL for the person.",
    "people": "Top-level key holding the list of people.",
}


def get_error_hint(error_type: str, field_name: str | None = None) -> str:
    """Get a user-friendly hint for a validation error.

    Args:
        error_type: The Pydantic error type (e.g., 'missing', 'list_type').
        field_name: Optional field path for field-specific hints.

    Returns:
        A user-friendly hint string.
    """
    if field_name:
        # Field paths look like 'people.0.feeds.1'; use the last named part
        named_parts = [part for part in field_name.split(".") if not part.isdigit()]
        if named_parts and named_parts[-1] in FIELD_HINTS:
            return FIELD_HINTS[named_parts[-1]]

    return ERROR_HINTS.get(error_type, "Check the file format documentation.")


def format_validation_error(
    location: str,
    message: str,
    error_type: str,
    *,
    include_hint: bool = True,
) -> str:
    """Format a validation error with optional hint.

    Args:
        location: The error location (e.g., 'people.0.name').
        message: The original error message.
        error_type: The error type.
        include_hint: Whether to include a hint.

    Returns:
        Formatted error string.
    """
    base = f"{location}: {message}"
    if include_hint:
        hint = get_error_hint(error_type, location)
        return f"{base}\n    Hint: {hint}"
    return base
