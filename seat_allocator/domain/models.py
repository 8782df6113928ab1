"""Domain models for license seats, bookings and their audit trail."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from seat_allocator.domain.changes import HistoryChange


class ResourceStatus(str, Enum):
    FREE = "free"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"


class AssignmentStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class EntityType(str, Enum):
    RESOURCE = "resource"
    ASSIGNMENT = "assignment"
    SETTING = "setting"


class HistoryAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ASSIGN = "assign"
    UNASSIGN = "unassign"
    STATUS_CHANGE = "status_change"


TERMINAL_ASSIGNMENT_STATUSES = frozenset(
    {AssignmentStatus.EXPIRED, AssignmentStatus.CANCELLED}
)

ALLOWED_ASSIGNMENT_TRANSITIONS: dict[AssignmentStatus, frozenset[AssignmentStatus]] = {
    AssignmentStatus.PENDING: frozenset(
        {AssignmentStatus.ACTIVE, AssignmentStatus.CANCELLED}
    ),
    AssignmentStatus.ACTIVE: frozenset(
        {AssignmentStatus.PENDING, AssignmentStatus.EXPIRED, AssignmentStatus.CANCELLED}
    ),
    AssignmentStatus.EXPIRED: frozenset(),
    AssignmentStatus.CANCELLED: frozenset(),
}


RESOURCE_TRACKED_FIELDS = (
    "email",
    "username",
    "account",
    "host_key",
    "platform_password",
    "email_password",
    "username_password",
    "status",
    "notes",
)

RESOURCE_CREDENTIAL_FIELDS = (
    "host_key",
    "platform_password",
    "email_password",
    "username_password",
)

ASSIGNMENT_TRACKED_FIELDS = (
    "resource_id",
    "requester_name",
    "requester_email",
    "area",
    "region",
    "usage_type",
    "start_date",
    "end_date",
    "status",
)

REQUESTER_FIELDS = ("requester_name", "requester_email", "area", "region", "usage_type")


@dataclass(frozen=True)
class Resource:
    """A bookable license seat."""

    resource_id: str
    account: str
    username: str
    email: str
    host_key: str
    platform_password: str
    email_password: str
    username_password: str
    status: ResourceStatus
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime

    def identity_snapshot(self) -> dict[str, Any]:
        return {
            "email": self.email,
            "account": self.account,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class RequesterInfo:
    name: str
    email: str
    area: str = ""
    region: str = ""
    usage_type: str = ""


@dataclass(frozen=True)
class Assignment:
    """Booking of one resource by one requester for an inclusive date range."""

    assignment_id: str
    resource_id: Optional[str]
    requester_name: str
    requester_email: str
    area: str
    region: str
    usage_type: str
    start_date: date
    end_date: date
    status: AssignmentStatus
    created_at: datetime
    updated_at: datetime

    def duration_days(self) -> int:
        return (self.end_date - self.start_date).days + 1


@dataclass(frozen=True)
class HistoryMetadata:
    resource_email: Optional[str] = None
    assignment_name: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict[str, str]:
        return {
            key: value
            for key, value in (
                ("resource_email", self.resource_email),
                ("assignment_name", self.assignment_name),
                ("reason", self.reason),
            )
            if value is not None
        }


@dataclass(frozen=True)
class HistoryEntry:
    """Immutable audit record of one mutation."""

    entry_id: Optional[str]
    entity_type: EntityType
    entity_id: str
    action: HistoryAction
    actor: str
    changes: tuple[HistoryChange, ...]
    metadata: Optional[HistoryMetadata]
    timestamp: datetime

    @property
    def persisted(self) -> bool:
        return self.entry_id is not None

    def changed_fields(self) -> list[str]:
        return [change.field for change in self.changes]


@dataclass(frozen=True)
class Setting:
    key: str
    value: Any
    description: str
    updated_at: datetime
    updated_by: str


@dataclass(frozen=True)
class SweepResult:
    expired_assignment_ids: list[str] = field(default_factory=list)
    released_resource_ids: list[str] = field(default_factory=list)

    @property
    def expired_count(self) -> int:
        return len(self.expired_assignment_ids)
