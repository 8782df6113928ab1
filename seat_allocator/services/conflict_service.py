"""Conflict detection between a candidate range and a resource's active bookings."""

from __future__ import annotations

from typing import Optional

from seat_allocator.domain.intervals import DateLike, overlaps, validate_range
from seat_allocator.domain.models import Assignment
from seat_allocator.repository.data_repository import DataRepository


class ConflictChecker:
    """Single place every caller goes through to decide whether ranges collide.

    Only ``active`` assignments block a resource; pending, expired and
    cancelled bookings never do.
    """

    def __init__(self, repository: DataRepository) -> None:
        self._repository = repository

    def find_conflicts(
        self,
        resource_id: str,
        start: DateLike,
        end: DateLike,
        exclude_assignment_id: Optional[str] = None,
    ) -> list[Assignment]:
        start_day, end_day = validate_range(start, end)
        bookings = self._repository.list_active_for_resource(
            resource_id,
            exclude_assignment_id=exclude_assignment_id,
        )
        return [
            booking
            for booking in bookings
            if overlaps(start_day, end_day, booking.start_date, booking.end_date)
        ]

    def has_conflict(
        self,
        resource_id: str,
        start: DateLike,
        end: DateLike,
        exclude_assignment_id: Optional[str] = None,
    ) -> bool:
        return bool(
            self.find_conflicts(
                resource_id,
                start,
                end,
                exclude_assignment_id=exclude_assignment_id,
            )
        )
