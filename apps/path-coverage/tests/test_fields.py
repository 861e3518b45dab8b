from __future__ import annotations

import pytest

from path_coverage.fields import ABSENT, get_nested_value, missing_required_fields, validate_fields

RECORD = {
    "event": {"action": "evidence_response_sent", "outcome": "failure"},
    "oots": {"response": {"result": "error"}, "tags": ["a", "b"], "nullable": None},
    "flat.key": "dotted",
}


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("event.action", "evidence_response_sent"),
        ("oots.response", {"result": "error"}),
        ("oots.nullable", None),
        ("oots.missing", ABSENT),
        ("event.action.deeper", ABSENT),
        ("oots.tags.0", ABSENT),
        ("flat.key", ABSENT),
    ],
)
def test_get_nested_value(path: str, expected: object) -> None:
    assert get_nested_value(RECORD, path) == expected


def test_get_nested_value_on_non_mapping_is_absent() -> None:
    assert get_nested_value(None, "a") is ABSENT
    assert get_nested_value("text", "a.b") is ABSENT


def test_empty_expectation_is_always_satisfied() -> None:
    assert validate_fields(RECORD, {}) == []
    assert validate_fields(None, {}) == []


def test_matching_values_produce_no_errors() -> None:
    assert validate_fields(RECORD, {"event.outcome": "failure", "oots.tags": ["a", "b"]}) == []


def test_nested_structures_compare_independent_of_key_order() -> None:
    record = {"a": {"x": 1, "y": {"p": True, "q": [1, 2]}}}

    assert validate_fields(record, {"a": {"y": {"q": [1, 2], "p": True}, "x": 1}}) == []


def test_value_mismatch_message() -> None:
    errors = validate_fields(RECORD, {"oots.response.result": "preview_requested"})

    assert errors == ['oots.response.result: expected "preview_requested", got "error"']


def test_missing_field_message() -> None:
    errors = validate_fields(RECORD, {"trace.id": "abc"})

    assert errors == ['trace.id: missing (expected "abc")']


def test_absent_expectation_holds_only_for_missing_fields() -> None:
    assert validate_fields(RECORD, {"oots.request": ABSENT}) == []
    assert validate_fields(RECORD, {"event.outcome": ABSENT}) == ['event.outcome: expected absent, got "failure"']


def test_null_is_present_not_absent() -> None:
    assert validate_fields(RECORD, {"oots.nullable": ABSENT}) == ["oots.nullable: expected absent, got null"]
    assert validate_fields(RECORD, {"oots.nullable": None}) == []


def test_one_message_per_failing_path() -> None:
    errors = validate_fields(RECORD, {"event.action": "x", "event.outcome": "failure", "trace.id": 1})

    assert len(errors) == 2


def test_missing_required_fields() -> None:
    assert missing_required_fields(RECORD, ["event.action", "trace.id", "oots.nullable"]) == ["trace.id"]
