"""Read-only utilisation analytics over resources and bookings."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import numpy as np
import pandas as pd

from seat_allocator.domain.errors import AttributeValidationError
from seat_allocator.domain.intervals import DateLike, to_day
from seat_allocator.domain.models import Assignment, AssignmentStatus, ResourceStatus
from seat_allocator.repository.data_repository import DataRepository
from seat_allocator.utils.config import Settings, get_settings


_ASSIGNMENT_COLUMNS = [
    "assignment_id",
    "resource_id",
    "requester_name",
    "requester_email",
    "start_date",
    "end_date",
    "status",
    "created_at",
    "duration_days",
]
_COMPLETED_STATUSES = [AssignmentStatus.EXPIRED.value, AssignmentStatus.CANCELLED.value]


def _percentage(part: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(part / total * 100, 1)


class AnalyticsService:
    """Aggregates computed on demand; nothing here writes to the store."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def overview(self, now: DateLike) -> dict[str, Any]:
        today = to_day(now)
        resources = self._repository.list_resources()
        by_status = {status: 0 for status in ResourceStatus}
        for resource in resources:
            by_status[resource.status] += 1

        frame = self._assignment_frame(self._repository.list_assignments())
        active = frame[frame["status"] == AssignmentStatus.ACTIVE.value]
        horizon = today + timedelta(days=self._settings.expiring_default_days)
        expiring = active[(active["end_date"] >= today) & (active["end_date"] <= horizon)]

        return {
            "total_resources": len(resources),
            "occupied_resources": by_status[ResourceStatus.OCCUPIED],
            "free_resources": by_status[ResourceStatus.FREE],
            "maintenance_resources": by_status[ResourceStatus.MAINTENANCE],
            "active_assignments": int(len(active)),
            "utilization_rate": _percentage(by_status[ResourceStatus.OCCUPIED], len(resources)),
            "expiring_soon": int(len(expiring)),
            "active_requesters": int(active["requester_email"].nunique()),
            "pending_requests": int((frame["status"] == AssignmentStatus.PENDING.value).sum()),
        }

    def resource_metrics(self, limit: int = 10) -> list[dict[str, Any]]:
        """Per-resource booking counts, most booked first."""
        self._check_limit(limit)
        resources = self._repository.list_resources()
        if not resources:
            return []
        frame = self._assignment_frame(self._repository.list_assignments())
        bound = frame.dropna(subset=["resource_id"])

        rows: list[dict[str, Any]] = []
        for resource in resources:
            bookings = bound[bound["resource_id"] == resource.resource_id]
            completed = bookings[bookings["status"].isin(_COMPLETED_STATUSES)]
            average = float(completed["duration_days"].mean()) if not completed.empty else 0.0
            rows.append(
                {
                    "resource_id": resource.resource_id,
                    "resource_email": resource.email,
                    "account": resource.account,
                    "total_assignments": int(len(bookings)),
                    "currently_assigned": bool(
                        (bookings["status"] == AssignmentStatus.ACTIVE.value).any()
                    ),
                    "average_duration_days": round(average, 1),
                    "last_assigned": bookings["start_date"].max() if not bookings.empty else None,
                }
            )
        metrics = pd.DataFrame(rows).sort_values(
            by=["total_assignments", "resource_email"],
            ascending=[False, True],
            kind="stable",
        )
        return [self._clean_row(row) for row in metrics.head(limit).to_dict(orient="records")]

    def requester_metrics(self, limit: int = 10) -> list[dict[str, Any]]:
        self._check_limit(limit)
        frame = self._assignment_frame(self._repository.list_assignments())
        if frame.empty:
            return []
        frame = frame.sort_values(by="created_at", ascending=False)
        frame["is_active"] = (frame["status"] == AssignmentStatus.ACTIVE.value).astype(int)
        grouped = (
            frame.groupby("requester_email", sort=False)
            .agg(
                requester_name=("requester_name", "first"),
                current_assignments=("is_active", "sum"),
                total_assignments=("assignment_id", "count"),
                last_activity=("created_at", "max"),
            )
            .reset_index()
            .sort_values(
                by=["total_assignments", "requester_email"],
                ascending=[False, True],
                kind="stable",
            )
        )
        return [self._clean_row(row) for row in grouped.head(limit).to_dict(orient="records")]

    def trends(self, days: int = 30, now: Optional[DateLike] = None) -> list[dict[str, Any]]:
        """Daily new bookings, returns and utilisation for the last ``days`` days."""
        if days <= 0:
            raise AttributeValidationError("days must be a positive integer")
        today = to_day(now if now is not None else datetime.now(timezone.utc))
        window = [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]
        total_resources = len(self._repository.list_resources())
        frame = self._assignment_frame(self._repository.list_assignments())

        started = frame.groupby("start_date").size() if not frame.empty else pd.Series(dtype=int)
        completed = frame[frame["status"].isin(_COMPLETED_STATUSES)]
        returned = (
            completed.groupby("end_date").size() if not completed.empty else pd.Series(dtype=int)
        )
        active = frame[frame["status"] == AssignmentStatus.ACTIVE.value]

        trend_rows: list[dict[str, Any]] = []
        for day in window:
            covering = int(((active["start_date"] <= day) & (active["end_date"] >= day)).sum())
            trend_rows.append(
                {
                    "date": day.isoformat(),
                    "assignments": int(started.get(day, 0)),
                    "returns": int(returned.get(day, 0)),
                    "utilization": _percentage(covering, total_resources),
                }
            )
        return trend_rows

    @staticmethod
    def _assignment_frame(assignments: list[Assignment]) -> pd.DataFrame:
        frame = pd.DataFrame(
            [
                {
                    "assignment_id": assignment.assignment_id,
                    "resource_id": assignment.resource_id,
                    "requester_name": assignment.requester_name,
                    "requester_email": assignment.requester_email,
                    "start_date": assignment.start_date,
                    "end_date": assignment.end_date,
                    "status": assignment.status.value,
                    "created_at": assignment.created_at,
                    "duration_days": assignment.duration_days(),
                }
                for assignment in assignments
            ],
            columns=_ASSIGNMENT_COLUMNS,
        )
        return frame

    @staticmethod
    def _check_limit(limit: int) -> None:
        if limit <= 0:
            raise AttributeValidationError("limit must be a positive integer")

    @staticmethod
    def _clean_row(row: dict[str, Any]) -> dict[str, Any]:
        """Turn numpy scalars into plain Python values for JSON responses."""
        cleaned: dict[str, Any] = {}
        for key, value in row.items():
            if isinstance(value, np.generic):
                value = value.item()
            elif isinstance(value, pd.Timestamp):
                value = value.to_pydatetime()
            cleaned[key] = value
        return cleaned
