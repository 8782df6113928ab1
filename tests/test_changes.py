"""Tests for field-level diffs and the tagged change values."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

import pytest

from seat_allocator.domain.changes import (
    ABSENT,
    HistoryChange,
    deserialize_changes,
    normalize_value,
    serialize_changes,
)
from seat_allocator.domain.models import AssignmentStatus
from seat_allocator.services.history_service import diff


@dataclass
class _Ref:
    resource_id: str


def test_self_diff_is_empty() -> None:
    record = {"email": "a@example.com", "notes": None, "count": 3}
    assert diff(record, dict(record), ["email", "notes", "count"]) == []


def test_missing_field_differs_from_none_and_empty_string() -> None:
    missing = {}
    as_none = {"notes": None}
    as_empty = {"notes": ""}

    none_change = diff(missing, as_none, ["notes"])
    empty_change = diff(missing, as_empty, ["notes"])
    none_vs_empty = diff(as_none, as_empty, ["notes"])

    assert none_change == [HistoryChange("notes", ABSENT, None)]
    assert empty_change == [HistoryChange("notes", ABSENT, "")]
    assert none_vs_empty == [HistoryChange("notes", None, "")]


def test_diff_only_reports_tracked_fields() -> None:
    old = {"email": "a@example.com", "secret": "x"}
    new = {"email": "b@example.com", "secret": "y"}
    changes = diff(old, new, ["email"])
    assert [change.field for change in changes] == ["email"]


def test_diff_distinguishes_int_from_string() -> None:
    assert diff({"value": 1}, {"value": "1"}, ["value"]) != []


def test_identity_objects_collapse_to_ids() -> None:
    assert normalize_value(_Ref("res-1")) == "res-1"
    assert diff({"resource_id": _Ref("res-1")}, {"resource_id": "res-1"}, ["resource_id"]) == []


def test_enum_values_are_stored_as_plain_strings() -> None:
    change = HistoryChange.of("status", AssignmentStatus.PENDING, AssignmentStatus.ACTIVE)
    assert change.old_value == "pending"
    assert change.new_value == "active"


def test_unsupported_values_are_rejected() -> None:
    with pytest.raises(TypeError):
        normalize_value(["not", "scalar"])


def test_serialized_changes_keep_types_and_absence() -> None:
    changes = [
        HistoryChange.of("start_date", ABSENT, date(2026, 3, 1)),
        HistoryChange.of("notes", None, ""),
        HistoryChange.of("flag", False, True),
        HistoryChange.of("days", 2, 3.5),
    ]
    restored = deserialize_changes(serialize_changes(changes))
    assert list(restored) == changes
    assert restored[0].old_value is ABSENT
    assert restored[1].old_value is None


def test_empty_changes_are_not_meaningful() -> None:
    assert not HistoryChange.of("notes", ABSENT, None).is_meaningful()
    assert not HistoryChange.of("notes", None, "").is_meaningful()
    assert HistoryChange.of("notes", None, "text").is_meaningful()
