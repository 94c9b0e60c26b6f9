"""
Input validation functions for notion-mirror.

Provides validation for Notion object ids (databases, pages, blocks)
before they are used to build API endpoints or task requests.
"""

import re

_HEX_ID = re.compile(r"^[0-9a-fA-F]{32}$")


# ---------------------------------------------------------------------------
# Error message formatting helpers
# ---------------------------------------------------------------------------


def format_validation_error(field_name: str, reason: str) -> str:
    """
    Generate consistent error message for validation failures.

    Args:
        field_name: Human-readable field name (e.g., "Database id")
        reason: Description of validation failure (e.g., "cannot be empty")

    Returns:
        Formatted error message string
    """
    return f"{field_name} {reason}"


def validate_object_id(
    object_id: str, field_name: str = "Object id"
) -> tuple[bool, str]:
    """
    Validate a Notion object id.

    Args:
        object_id: The id to validate, with or without dashes
        field_name: Name used in the error message

    Returns:
        Tuple of (is_valid, error_message).
        Returns (True, "") if valid, (False, reason) if invalid.

    Validation rules:
        - Cannot be empty or whitespace-only
        - Must be 32 hexadecimal characters once dashes are removed
    """
    if not object_id or not object_id.strip():
        return (
            False,
            format_validation_error(field_name, "cannot be empty"),
        )

    compact = object_id.strip().replace("-", "")
    if not _HEX_ID.match(compact):
        return (
            False,
            format_validation_error(
                field_name,
                f"'{object_id}' is not a valid Notion id "
                "(expected 32 hex characters)",
            ),
        )

    return (True, "")


def normalize_object_id(object_id: str) -> str:
    """
    Return the canonical dashed, lowercase form of a Notion id.

    Raises:
        ValueError: If the id is not valid.
    """
    is_valid, error = validate_object_id(object_id)
    if not is_valid:
        raise ValueError(error)
    h = object_id.strip().replace("-", "").lower()
    return f"{h[:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:]}"


def validate_collection_ids(collection_ids: list[str]) -> list[str]:
    """
    Validate and normalize a list of database ids for a sync request.

    Duplicates (after normalization) are removed, order is preserved.

    Raises:
        ValueError: If the list is empty or any id is invalid.
    """
    if not collection_ids:
        raise ValueError(
            format_validation_error(
                "collection_ids", "must contain at least one database id"
            )
        )
    seen: dict[str, None] = {}
    for raw in collection_ids:
        is_valid, error = validate_object_id(raw, "Database id")
        if not is_valid:
            raise ValueError(error)
        seen.setdefault(normalize_object_id(raw), None)
    return list(seen)
