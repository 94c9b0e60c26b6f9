"""Tests for Notion id validation and normalisation."""

import pytest

from notion_mirror.validators import (
    format_validation_error,
    normalize_object_id,
    validate_collection_ids,
    validate_object_id,
)

COMPACT = "0123456789abcdef0123456789abcdef"
DASHED = "01234567-89ab-cdef-0123-456789abcdef"


def test_format_validation_error():
    assert (
        format_validation_error("Database id", "cannot be empty")
        == "Database id cannot be empty"
    )


class TestValidateObjectId:
    """Tests for validate_object_id()."""

    def test_compact_id_is_valid(self):
        assert validate_object_id(COMPACT) == (True, "")

    def test_dashed_id_is_valid(self):
        assert validate_object_id(DASHED) == (True, "")

    def test_empty_id(self):
        ok, error = validate_object_id("   ", "Database id")
        assert not ok
        assert error == "Database id cannot be empty"

    def test_wrong_length(self):
        ok, error = validate_object_id("abc123")
        assert not ok
        assert "32 hex characters" in error

    def test_non_hex(self):
        ok, _ = validate_object_id("z" * 32)
        assert not ok


class TestNormalizeObjectId:
    """Tests for normalize_object_id()."""

    def test_compact_gets_dashes(self):
        assert normalize_object_id(COMPACT) == DASHED

    def test_uppercase_is_lowered(self):
        assert normalize_object_id(COMPACT.upper()) == DASHED

    def test_whitespace_is_stripped(self):
        assert normalize_object_id(f"  {DASHED} ") == DASHED

    def test_invalid_raises(self):
        with pytest.raises(ValueError, match="not a valid Notion id"):
            normalize_object_id("nope")


class TestValidateCollectionIds:
    """Tests for validate_collection_ids()."""

    def test_empty_list_raises(self):
        with pytest.raises(ValueError, match="at least one"):
            validate_collection_ids([])

    def test_duplicates_collapse_in_order(self):
        other = "f" * 32
        assert validate_collection_ids([COMPACT, other, DASHED]) == [
            DASHED,
            normalize_object_id(other),
        ]

    def test_invalid_entry_raises(self):
        with pytest.raises(ValueError, match="Database id"):
            validate_collection_ids([COMPACT, "bad"])
