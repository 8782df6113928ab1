"""Read-only availability queries over resources and their active bookings."""

from __future__ import annotations

from collections import defaultdict
from typing import Optional

from seat_allocator.domain.intervals import DateLike, overlaps, to_day, validate_range
from seat_allocator.domain.models import Assignment, Resource, ResourceStatus
from seat_allocator.repository.data_repository import DataRepository
from seat_allocator.utils.config import Settings, get_settings
from seat_allocator.utils.logger import get_logger


logger = get_logger(__name__)


class AvailabilityService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def available_resources(self, start: DateLike, end: DateLike) -> list[Resource]:
        """Resources that could take a booking for ``[start, end]``.

        Free resources always qualify; occupied ones qualify when none of
        their active bookings overlap the range. Maintenance never does.
        """
        start_day, end_day = validate_range(start, end)
        resources = self._repository.list_resources()
        bookings_by_resource: dict[str, list[Assignment]] = defaultdict(list)
        for booking in self._repository.list_active_bound():
            bookings_by_resource[booking.resource_id].append(booking)

        available: list[Resource] = []
        for resource in resources:
            if resource.status is ResourceStatus.MAINTENANCE:
                continue
            blocking = [
                booking
                for booking in bookings_by_resource.get(resource.resource_id, [])
                if overlaps(start_day, end_day, booking.start_date, booking.end_date)
            ]
            if not blocking:
                available.append(resource)

        logger.debug(
            "Availability computed | range=%s..%s | available=%s | total=%s",
            start_day.isoformat(),
            end_day.isoformat(),
            len(available),
            len(resources),
        )
        return available

    def current_binding(self, resource_id: str, now: DateLike) -> Optional[Assignment]:
        """The active booking covering ``now`` on this resource, if any."""
        covering = self._repository.list_active_covering(to_day(now), resource_id=resource_id)
        return covering[0] if covering else None

    def all_bindings(self, now: DateLike) -> dict[str, Optional[Assignment]]:
        """Current binding for every resource, fetched with one bookings query."""
        bindings: dict[str, Optional[Assignment]] = {
            resource.resource_id: None for resource in self._repository.list_resources()
        }
        for booking in self._repository.list_active_covering(to_day(now)):
            if bindings.get(booking.resource_id) is None:
                bindings[booking.resource_id] = booking
        return bindings
