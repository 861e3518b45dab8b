"""Dotted-path field access and the structural comparator used by every log check."""

from __future__ import annotations

import json
from typing import Any, Iterable, Mapping


class _Absent:
    """Marks a field that does not exist, as opposed to one holding ``None``."""

    _instance: "_Absent | None" = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT: Any = _Absent()


def get_nested_value(record: Any, dotted_path: str) -> Any:
    """Resolve ``"a.b.c"`` by sequential key lookup.

    Returns ``ABSENT`` as soon as a segment is missing or the current value is
    not a mapping; never raises.
    """

    current = record
    for segment in dotted_path.split("."):
        if not isinstance(current, Mapping) or segment not in current:
            return ABSENT
        current = current[segment]
    return current


def canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def validate_fields(record: Any, expected: Mapping[str, Any]) -> list[str]:
    """Compare ``record`` against dotted-path expectations; one message per mismatch.

    An expected value of ``ABSENT`` asserts the field does not exist. Present
    values are compared by canonical JSON so nested structures compare deeply.
    """

    errors: list[str] = []
    for path, expected_value in expected.items():
        actual = get_nested_value(record, path)
        if expected_value is ABSENT:
            if actual is not ABSENT:
                errors.append(f"{path}: expected absent, got {canonical(actual)}")
        elif actual is ABSENT:
            errors.append(f"{path}: missing (expected {canonical(expected_value)})")
        elif canonical(actual) != canonical(expected_value):
            errors.append(f"{path}: expected {canonical(expected_value)}, got {canonical(actual)}")
    return errors


def missing_required_fields(record: Any, paths: Iterable[str]) -> list[str]:
    """Return the dotted paths from ``paths`` that ``record`` does not carry."""

    return [path for path in paths if get_nested_value(record, path) is ABSENT]
