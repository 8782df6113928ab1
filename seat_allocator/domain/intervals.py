"""Inclusive calendar-day interval arithmetic used for conflict detection."""

from __future__ import annotations

from datetime import date, datetime
from typing import Iterable, Union

from seat_allocator.domain.errors import InvalidDateRangeError


DateLike = Union[date, datetime, str]


def to_day(value: DateLike) -> date:
    """Normalize a date, datetime or ISO string to a calendar day."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError as exc:
            raise InvalidDateRangeError(f"date must follow YYYY-MM-DD format: {value!r}") from exc
    raise InvalidDateRangeError(f"unsupported date value: {value!r}")


def validate_range(start: DateLike, end: DateLike) -> tuple[date, date]:
    start_day = to_day(start)
    end_day = to_day(end)
    if start_day > end_day:
        raise InvalidDateRangeError(
            f"start date {start_day.isoformat()} is after end date {end_day.isoformat()}"
        )
    return start_day, end_day


def overlaps(a_start: DateLike, a_end: DateLike, b_start: DateLike, b_end: DateLike) -> bool:
    """Closed intervals overlap iff each one starts no later than the other ends.

    A booking ending on the 10th and another starting on the 10th share that
    day and overlap; ending on the 9th and starting on the 10th do not.
    """
    return to_day(a_start) <= to_day(b_end) and to_day(b_start) <= to_day(a_end)


def find_overlapping(
    start: DateLike,
    end: DateLike,
    ranges: Iterable[tuple[str, date, date]],
) -> list[str]:
    """Return ids of the ``(id, start, end)`` ranges overlapping the candidate."""
    return [
        range_id
        for range_id, range_start, range_end in ranges
        if overlaps(start, end, range_start, range_end)
    ]
