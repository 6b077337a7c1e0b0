"""Unit tests for collection id generation."""

from datetime import datetime, timezone

import pytest

from markflow.contexts.collections import build_collection_id, generate_collection_id, sanitize_part
from markflow.utils.exceptions import ValidationError

JULY_30 = datetime(2025, 7, 30, 10, 0, tzinfo=timezone.utc)


@pytest.mark.unit
@pytest.mark.parametrize(
    "value,expected",
    [
        ("Google Inc", "google_inc"),
        ("Software Engineer", "software_engineer"),
        ("AT&T -- Labs!", "at_t_labs"),
        ("  Trimmed  ", "trimmed"),
        ("***", ""),
    ],
)
def test_sanitize_part(value, expected):
    assert sanitize_part(value) == expected


@pytest.mark.unit
def test_generate_collection_id_example():
    assert (
        generate_collection_id(["Google Inc", "Software Engineer"], "20250730")
        == "google_inc_software_engineer_20250730"
    )


@pytest.mark.unit
def test_truncation_keeps_date_suffix():
    collection_id = generate_collection_id(
        ["This is a very long blog post title"], "20250730", max_length=25
    )

    assert collection_id == "this_is_a_very_l_20250730"
    assert len(collection_id) == 25


@pytest.mark.unit
@pytest.mark.parametrize("max_length", [10, 11, 12, 17, 20, 33, 50])
def test_truncation_never_exceeds_max_and_never_cuts_date(max_length):
    collection_id = generate_collection_id(
        ["An Extremely Long Company Name", "Principal Staff Engineer"], "20250730", max_length=max_length
    )

    assert len(collection_id) <= max_length
    assert collection_id.endswith("_20250730")
    assert not collection_id.startswith("_")
    assert "__" not in collection_id


@pytest.mark.unit
def test_truncation_strips_trailing_separator():
    # Cutting at 7 characters would leave "google_"
    assert generate_collection_id(["Google Inc"], "20250730", max_length=16) == "google_20250730"


@pytest.mark.unit
def test_date_that_cannot_fit_is_rejected():
    with pytest.raises(ValidationError):
        generate_collection_id(["Google"], "20250730", max_length=9)


@pytest.mark.unit
def test_empty_parts_are_rejected():
    with pytest.raises(ValidationError):
        generate_collection_id(["", "!!!"], "20250730")


@pytest.mark.unit
def test_build_collection_id_uses_rules():
    rules = {"date_format": "YYYY-MM-DD", "sanitize_spaces": "-", "max_length": 50}

    collection_id = build_collection_id(
        ["company", "role"], {"company": "Google Inc", "role": "SRE"}, JULY_30, rules
    )

    assert collection_id == "google-inc-sre-2025-07-30"


@pytest.mark.unit
def test_build_collection_id_is_deterministic():
    fields = {"company": "Google Inc", "role": "Software Engineer", "url": "https://example.com"}

    first = build_collection_id(["company", "role"], fields, JULY_30)
    second = build_collection_id(["company", "role"], dict(fields), JULY_30)

    assert first == second == "google_inc_software_engineer_20250730"


@pytest.mark.unit
def test_build_collection_id_requires_identifying_fields():
    with pytest.raises(ValidationError, match="role"):
        build_collection_id(["company", "role"], {"company": "Google"}, JULY_30)
