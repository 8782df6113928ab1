"""Tests for inclusive date-range arithmetic."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from seat_allocator.domain.errors import InvalidDateRangeError
from seat_allocator.domain.intervals import find_overlapping, overlaps, to_day, validate_range


def test_shared_boundary_day_overlaps() -> None:
    assert overlaps(date(2026, 3, 1), date(2026, 3, 10), date(2026, 3, 10), date(2026, 3, 15))


def test_adjacent_ranges_do_not_overlap() -> None:
    assert not overlaps(date(2026, 3, 1), date(2026, 3, 9), date(2026, 3, 10), date(2026, 3, 15))


def test_contained_range_overlaps() -> None:
    assert overlaps(date(2026, 3, 1), date(2026, 3, 31), date(2026, 3, 10), date(2026, 3, 12))


def test_single_day_ranges() -> None:
    day = date(2026, 3, 5)
    assert overlaps(day, day, day, day)
    assert not overlaps(day, day, date(2026, 3, 6), date(2026, 3, 6))


@pytest.mark.parametrize(
    ("a", "b"),
    [
        ((date(2026, 1, 1), date(2026, 1, 5)), (date(2026, 1, 5), date(2026, 1, 9))),
        ((date(2026, 1, 1), date(2026, 1, 5)), (date(2026, 1, 6), date(2026, 1, 9))),
        ((date(2026, 1, 3), date(2026, 1, 4)), (date(2026, 1, 1), date(2026, 1, 9))),
        ((date(2026, 2, 1), date(2026, 2, 1)), (date(2026, 1, 1), date(2026, 1, 31))),
    ],
)
def test_overlap_is_symmetric(a, b) -> None:
    assert overlaps(*a, *b) == overlaps(*b, *a)


def test_datetime_inputs_are_reduced_to_days() -> None:
    late_evening = datetime(2026, 3, 10, 23, 59, tzinfo=timezone.utc)
    early_morning = datetime(2026, 3, 10, 0, 1, tzinfo=timezone.utc)
    assert overlaps(date(2026, 3, 1), late_evening, early_morning, date(2026, 3, 12))


def test_to_day_accepts_iso_strings() -> None:
    assert to_day("2026-03-10") == date(2026, 3, 10)
    assert to_day("2026-03-10T15:30:00+00:00") == date(2026, 3, 10)


def test_to_day_rejects_malformed_strings() -> None:
    with pytest.raises(InvalidDateRangeError):
        to_day("10/03/2026")


def test_validate_range_rejects_reversed_range() -> None:
    with pytest.raises(InvalidDateRangeError):
        validate_range(date(2026, 3, 10), date(2026, 3, 9))


def test_validate_range_accepts_single_day() -> None:
    assert validate_range("2026-03-10", "2026-03-10") == (date(2026, 3, 10), date(2026, 3, 10))


def test_find_overlapping_returns_matching_ids() -> None:
    ranges = [
        ("a", date(2026, 3, 1), date(2026, 3, 4)),
        ("b", date(2026, 3, 5), date(2026, 3, 9)),
        ("c", date(2026, 3, 10), date(2026, 3, 20)),
    ]
    assert find_overlapping(date(2026, 3, 4), date(2026, 3, 5), ranges) == ["a", "b"]
