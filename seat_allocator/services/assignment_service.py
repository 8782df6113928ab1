"""Assignment engine: the booking state machine tying seats to requesters."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from seat_allocator.domain.changes import ABSENT, HistoryChange
from seat_allocator.domain.constraints import validate_email, validate_requester
from seat_allocator.domain.errors import (
    AttributeValidationError,
    BookingConflictError,
    EntityNotFoundError,
    StatusTransitionError,
)
from seat_allocator.domain.intervals import DateLike, to_day, validate_range
from seat_allocator.domain.models import (
    ALLOWED_ASSIGNMENT_TRANSITIONS,
    ASSIGNMENT_TRACKED_FIELDS,
    Assignment,
    AssignmentStatus,
    EntityType,
    HistoryAction,
    HistoryMetadata,
    REQUESTER_FIELDS,
    RequesterInfo,
    Resource,
    ResourceStatus,
    SweepResult,
    TERMINAL_ASSIGNMENT_STATUSES,
)
from seat_allocator.repository.data_repository import DataRepository
from seat_allocator.services.collaborators import (
    AssignmentNotice,
    LoggingNotificationSink,
    NotificationSink,
)
from seat_allocator.services.conflict_service import ConflictChecker
from seat_allocator.services.history_service import HistoryService, diff
from seat_allocator.utils.config import Settings, get_settings
from seat_allocator.utils.logger import get_logger


logger = get_logger(__name__)

_UPDATABLE_FIELDS = frozenset(
    {*REQUESTER_FIELDS, "start_date", "end_date", "resource_id", "status"}
)


@dataclass(frozen=True)
class ResourceFlip:
    """A resource status change caused by a booking mutation."""

    resource_id: str
    resource_email: str
    old_status: ResourceStatus
    new_status: ResourceStatus


def _parse_assignment_status(value: Any) -> AssignmentStatus:
    try:
        return AssignmentStatus(value)
    except ValueError as exc:
        raise AttributeValidationError(
            f"status must be one of: {', '.join(item.value for item in AssignmentStatus)}"
        ) from exc


class AssignmentService:
    """Creates, updates, cancels, deletes and expires bookings.

    Every check-then-act sequence runs inside ``DataRepository.transaction()``
    so two writers targeting the same resource cannot both pass the conflict
    check. History entries are written after the mutation commits; a failed
    history write surfaces as ``PersistenceError`` while the committed
    mutation stands.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        history_service: Optional[HistoryService] = None,
        conflict_checker: Optional[ConflictChecker] = None,
        notification_sink: Optional[NotificationSink] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._history = history_service or HistoryService(
            repository=self._repository,
            settings=self._settings,
        )
        self._conflicts = conflict_checker or ConflictChecker(self._repository)
        self._notifications = notification_sink or LoggingNotificationSink()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, assignment_id: str) -> Assignment:
        assignment = self._repository.get_assignment(assignment_id)
        if assignment is None:
            raise EntityNotFoundError("assignment", assignment_id)
        return assignment

    def list_assignments(self, status: Optional[AssignmentStatus | str] = None) -> list[Assignment]:
        resolved = _parse_assignment_status(status) if status is not None else None
        return self._repository.list_assignments(status=resolved)

    def list_for_resource(self, resource_id: str) -> list[Assignment]:
        return self._repository.list_assignments(resource_id=resource_id)

    def list_for_requester(self, email: str) -> list[Assignment]:
        return self._repository.list_assignments(requester_email=email.strip().lower())

    def active_now(self, now: DateLike) -> list[Assignment]:
        return self._repository.list_active_covering(to_day(now))

    def expiring_within(self, days: int, now: DateLike) -> list[Assignment]:
        """Active bookings whose end date falls in ``[now, now + days]``, soonest first."""
        if days < 0:
            raise AttributeValidationError("days must be >= 0")
        today = to_day(now)
        return self._repository.list_active_ending_between(today, today + timedelta(days=days))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(
        self,
        requester: RequesterInfo,
        start: DateLike,
        end: DateLike,
        resource_id: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Assignment:
        start_day, end_day = validate_range(start, end)
        requester = validate_requester(requester)
        now = datetime.now(timezone.utc)
        flip: Optional[ResourceFlip] = None
        resource: Optional[Resource] = None

        with self._repository.transaction():
            if resource_id is not None:
                resource = self._require_resource(resource_id)
                self._ensure_bookable(resource, start_day, end_day)
            assignment = Assignment(
                assignment_id=uuid.uuid4().hex,
                resource_id=resource_id,
                requester_name=requester.name,
                requester_email=requester.email,
                area=requester.area,
                region=requester.region,
                usage_type=requester.usage_type,
                start_date=start_day,
                end_date=end_day,
                status=AssignmentStatus.ACTIVE if resource is not None else AssignmentStatus.PENDING,
                created_at=now,
                updated_at=now,
            )
            self._repository.insert_assignment(assignment)
            if resource is not None:
                flip = self._occupy(resource, now)

        action = HistoryAction.ASSIGN if resource is not None else HistoryAction.CREATE
        logger.info(
            "Assignment created | assignment_id=%s | resource_id=%s | status=%s | range=%s..%s",
            assignment.assignment_id,
            resource_id,
            assignment.status.value,
            start_day.isoformat(),
            end_day.isoformat(),
        )
        self._history.record(
            EntityType.ASSIGNMENT,
            assignment.assignment_id,
            action,
            actor=actor,
            changes=diff(None, assignment, ASSIGNMENT_TRACKED_FIELDS),
            metadata=HistoryMetadata(
                resource_email=resource.email if resource is not None else None,
                assignment_name=assignment.requester_name,
            ),
        )
        self._record_flips([flip], actor=actor, reason="Assigned to a requester")

        notice = AssignmentNotice.build(assignment, resource)
        if resource is not None:
            self._notify("assignment_confirmed", notice)
        else:
            self._notify("pending_request", notice)
        return assignment

    def assign_resource(
        self,
        assignment_id: str,
        resource_id: str,
        actor: Optional[str] = None,
    ) -> Assignment:
        now = datetime.now(timezone.utc)
        with self._repository.transaction():
            current = self.get(assignment_id)
            if current.status is not AssignmentStatus.PENDING or current.resource_id is not None:
                raise StatusTransitionError(
                    f"Assignment {assignment_id} is {current.status.value}; "
                    "only pending requests can receive a resource"
                )
            resource = self._require_resource(resource_id)
            self._ensure_bookable(
                resource,
                current.start_date,
                current.end_date,
                exclude_assignment_id=assignment_id,
            )
            updated = replace(
                current,
                resource_id=resource_id,
                status=AssignmentStatus.ACTIVE,
                updated_at=now,
            )
            self._repository.save_assignment(updated)
            flip = self._occupy(resource, now)

        logger.info(
            "Resource assigned | assignment_id=%s | resource_id=%s",
            assignment_id,
            resource_id,
        )
        self._history.record(
            EntityType.ASSIGNMENT,
            assignment_id,
            HistoryAction.ASSIGN,
            actor=actor,
            changes=diff(current, updated, ASSIGNMENT_TRACKED_FIELDS),
            metadata=HistoryMetadata(
                resource_email=resource.email,
                assignment_name=updated.requester_name,
            ),
        )
        self._record_flips([flip], actor=actor, reason="Assigned to a requester")
        self._notify("assignment_confirmed", AssignmentNotice.build(updated, resource))
        return updated

    def update(
        self,
        assignment_id: str,
        partial: Mapping[str, Any],
        actor: Optional[str] = None,
    ) -> Assignment:
        """Apply requester, date-range and binding changes in one step.

        Whenever the effective range or resource changes on a booking that
        ends up active, the conflict check is re-run against every other
        active booking of the effective resource.
        """
        unknown = set(partial) - _UPDATABLE_FIELDS
        if unknown:
            raise AttributeValidationError(
                "unknown assignment fields: " + ", ".join(sorted(unknown))
            )
        fields = self._clean_update_fields(partial)
        now = datetime.now(timezone.utc)
        flips: list[Optional[ResourceFlip]] = []
        new_resource: Optional[Resource] = None

        with self._repository.transaction():
            current = self.get(assignment_id)
            start_day, end_day = validate_range(
                fields.pop("start_date", current.start_date),
                fields.pop("end_date", current.end_date),
            )
            new_resource_id = fields.pop("resource_id", current.resource_id)
            requested_status = fields.pop("status", None)

            resource_changed = new_resource_id != current.resource_id
            dates_changed = (start_day, end_day) != (current.start_date, current.end_date)
            status = self._resolve_status(
                current,
                new_resource_id=new_resource_id,
                resource_changed=resource_changed,
                requested=requested_status,
            )
            if current.status in TERMINAL_ASSIGNMENT_STATUSES and (
                resource_changed or dates_changed
            ):
                raise StatusTransitionError(
                    f"Assignment {assignment_id} is {current.status.value}; "
                    "its range and resource can no longer change"
                )

            if new_resource_id is not None:
                new_resource = self._require_resource(new_resource_id)
                becoming_active = current.status is not AssignmentStatus.ACTIVE
                if status is AssignmentStatus.ACTIVE and (
                    resource_changed or dates_changed or becoming_active
                ):
                    self._ensure_bookable(
                        new_resource,
                        start_day,
                        end_day,
                        exclude_assignment_id=assignment_id,
                        allow_maintenance=not (resource_changed or becoming_active),
                    )

            updated = replace(
                current,
                **fields,
                resource_id=new_resource_id,
                start_date=start_day,
                end_date=end_day,
                status=status,
            )
            changes = diff(current, updated, ASSIGNMENT_TRACKED_FIELDS)
            if not changes:
                return current
            updated = replace(updated, updated_at=now)
            self._repository.save_assignment(updated)

            if updated.status is AssignmentStatus.ACTIVE and new_resource is not None:
                flips.append(self._occupy(new_resource, now))
            released_binding = current.resource_id is not None and (
                resource_changed or updated.status is not AssignmentStatus.ACTIVE
            )
            if current.status is AssignmentStatus.ACTIVE and released_binding:
                flips.append(self._release_if_idle(current.resource_id, now))

        action = self._classify(current, updated, changes)
        logger.info(
            "Assignment updated | assignment_id=%s | action=%s | fields=%s",
            assignment_id,
            action.value,
            ",".join(change.field for change in changes),
        )
        self._history.record(
            EntityType.ASSIGNMENT,
            assignment_id,
            action,
            actor=actor,
            changes=changes,
            metadata=HistoryMetadata(
                resource_email=new_resource.email if new_resource is not None else None,
                assignment_name=updated.requester_name,
            ),
        )
        self._record_flips(flips, actor=actor, reason="Assignment updated")
        if action is HistoryAction.ASSIGN and updated.status is AssignmentStatus.ACTIVE:
            self._notify("assignment_confirmed", AssignmentNotice.build(updated, new_resource))
        return updated

    def cancel(
        self,
        assignment_id: str,
        actor: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Optional[Assignment]:
        """Cancel a booking; returns ``None`` for unknown ids instead of raising."""
        now = datetime.now(timezone.utc)
        flip: Optional[ResourceFlip] = None
        with self._repository.transaction():
            current = self._repository.get_assignment(assignment_id)
            if current is None:
                return None
            if current.status in TERMINAL_ASSIGNMENT_STATUSES:
                return current
            updated = replace(current, status=AssignmentStatus.CANCELLED, updated_at=now)
            self._repository.save_assignment(updated)
            if current.status is AssignmentStatus.ACTIVE and current.resource_id is not None:
                flip = self._release_if_idle(current.resource_id, now)

        resolved_reason = reason or "Assignment cancelled"
        logger.info(
            "Assignment cancelled | assignment_id=%s | resource_id=%s | released=%s",
            assignment_id,
            current.resource_id,
            flip is not None,
        )
        self._history.record(
            EntityType.ASSIGNMENT,
            assignment_id,
            HistoryAction.STATUS_CHANGE,
            actor=actor,
            changes=[HistoryChange.of("status", current.status, updated.status)],
            metadata=HistoryMetadata(
                assignment_name=current.requester_name,
                reason=resolved_reason,
            ),
        )
        self._record_flips([flip], actor=actor, reason=resolved_reason)
        return updated

    def delete(self, assignment_id: str, actor: Optional[str] = None) -> bool:
        now = datetime.now(timezone.utc)
        flip: Optional[ResourceFlip] = None
        with self._repository.transaction():
            current = self._repository.get_assignment(assignment_id)
            if current is None:
                return False
            deleted = self._repository.delete_assignment(assignment_id)
            if deleted and current.status is AssignmentStatus.ACTIVE and current.resource_id:
                flip = self._release_if_idle(current.resource_id, now)

        if not deleted:
            return False
        logger.info(
            "Assignment deleted | assignment_id=%s | resource_id=%s | released=%s",
            assignment_id,
            current.resource_id,
            flip is not None,
        )
        self._history.record(
            EntityType.ASSIGNMENT,
            assignment_id,
            HistoryAction.DELETE,
            actor=actor,
            changes=[
                HistoryChange.of(field, old_value=getattr(current, field), new_value=ABSENT)
                for field in ASSIGNMENT_TRACKED_FIELDS
            ],
            metadata=HistoryMetadata(assignment_name=current.requester_name),
        )
        self._record_flips([flip], actor=actor, reason="Assignment deleted")
        return True

    def sweep_expired(self, now: DateLike, actor: Optional[str] = None) -> SweepResult:
        """Expire active bookings that ended before ``now`` and release idle seats.

        Safe to re-run: bookings already expired are not selected again.
        """
        today = to_day(now)
        stamp = datetime.now(timezone.utc)
        flips: list[Optional[ResourceFlip]] = []
        with self._repository.transaction():
            expired = self._repository.list_active_ending_before(today)
            expired_ids = [assignment.assignment_id for assignment in expired]
            self._repository.mark_assignments_status(
                expired_ids,
                AssignmentStatus.EXPIRED,
                stamp,
            )
            touched_resources = sorted(
                {assignment.resource_id for assignment in expired if assignment.resource_id}
            )
            for resource_id in touched_resources:
                flips.append(self._release_if_idle(resource_id, stamp))

        reason = f"Booking ended before {today.isoformat()}"
        for assignment in expired:
            self._history.record(
                EntityType.ASSIGNMENT,
                assignment.assignment_id,
                HistoryAction.STATUS_CHANGE,
                actor=actor,
                changes=[
                    HistoryChange.of("status", AssignmentStatus.ACTIVE, AssignmentStatus.EXPIRED)
                ],
                metadata=HistoryMetadata(
                    assignment_name=assignment.requester_name,
                    reason=reason,
                ),
            )
        released = self._record_flips(flips, actor=actor, reason="Last active booking expired")
        result = SweepResult(
            expired_assignment_ids=expired_ids,
            released_resource_ids=[flip.resource_id for flip in released],
        )
        logger.info(
            "Expiry sweep completed | as_of=%s | expired=%s | released_resources=%s",
            today.isoformat(),
            result.expired_count,
            len(result.released_resource_ids),
        )
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_resource(self, resource_id: str) -> Resource:
        resource = self._repository.get_resource(resource_id)
        if resource is None:
            raise EntityNotFoundError("resource", resource_id)
        return resource

    def _ensure_bookable(
        self,
        resource: Resource,
        start: date,
        end: date,
        exclude_assignment_id: Optional[str] = None,
        allow_maintenance: bool = False,
    ) -> None:
        if resource.status is ResourceStatus.MAINTENANCE and not allow_maintenance:
            raise BookingConflictError(
                f"Resource {resource.resource_id} is under maintenance"
            )
        conflicts = self._conflicts.find_conflicts(
            resource.resource_id,
            start,
            end,
            exclude_assignment_id=exclude_assignment_id,
        )
        if conflicts:
            conflicting_ids = tuple(booking.assignment_id for booking in conflicts)
            logger.warning(
                "Booking conflict | resource_id=%s | range=%s..%s | conflicting=%s",
                resource.resource_id,
                start.isoformat(),
                end.isoformat(),
                ",".join(conflicting_ids),
            )
            raise BookingConflictError(
                f"Resource {resource.email} is not available from "
                f"{start.isoformat()} to {end.isoformat()}",
                conflicting_ids=conflicting_ids,
            )

    def _occupy(self, resource: Resource, now: datetime) -> Optional[ResourceFlip]:
        current = self._require_resource(resource.resource_id)
        if current.status is not ResourceStatus.FREE:
            return None
        self._repository.set_resource_status(current.resource_id, ResourceStatus.OCCUPIED, now)
        return ResourceFlip(
            resource_id=current.resource_id,
            resource_email=current.email,
            old_status=ResourceStatus.FREE,
            new_status=ResourceStatus.OCCUPIED,
        )

    def _release_if_idle(self, resource_id: str, now: datetime) -> Optional[ResourceFlip]:
        """Free an occupied resource once no active booking references it."""
        resource = self._repository.get_resource(resource_id)
        if resource is None or resource.status is not ResourceStatus.OCCUPIED:
            return None
        if self._repository.count_active_for_resource(resource_id) > 0:
            return None
        self._repository.set_resource_status(resource_id, ResourceStatus.FREE, now)
        return ResourceFlip(
            resource_id=resource_id,
            resource_email=resource.email,
            old_status=ResourceStatus.OCCUPIED,
            new_status=ResourceStatus.FREE,
        )

    def _record_flips(
        self,
        flips: list[Optional[ResourceFlip]],
        *,
        actor: Optional[str],
        reason: str,
    ) -> list[ResourceFlip]:
        recorded: list[ResourceFlip] = []
        for flip in flips:
            if flip is None:
                continue
            self._history.record(
                EntityType.RESOURCE,
                flip.resource_id,
                HistoryAction.STATUS_CHANGE,
                actor=actor,
                changes=[HistoryChange.of("status", flip.old_status, flip.new_status)],
                metadata=HistoryMetadata(resource_email=flip.resource_email, reason=reason),
            )
            recorded.append(flip)
        return recorded

    @staticmethod
    def _clean_update_fields(partial: Mapping[str, Any]) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        for key, value in partial.items():
            if key in REQUESTER_FIELDS:
                if value is None:
                    raise AttributeValidationError(f"{key} cannot be null")
                value = str(value).strip()
                if key == "requester_email":
                    value = validate_email(value, "requester email")
                elif key == "requester_name" and not value:
                    raise AttributeValidationError("requester name must be non-empty")
            elif key in ("start_date", "end_date"):
                value = to_day(value)
            elif key == "status":
                value = _parse_assignment_status(value)
            elif key == "resource_id" and value is not None:
                value = str(value)
            fields[key] = value
        return fields

    @staticmethod
    def _resolve_status(
        current: Assignment,
        *,
        new_resource_id: Optional[str],
        resource_changed: bool,
        requested: Optional[AssignmentStatus],
    ) -> AssignmentStatus:
        status = current.status
        if resource_changed and status not in TERMINAL_ASSIGNMENT_STATUSES:
            if new_resource_id is None:
                status = AssignmentStatus.PENDING
            elif status is AssignmentStatus.PENDING:
                status = AssignmentStatus.ACTIVE

        if requested is None or requested is status:
            return status
        if requested not in ALLOWED_ASSIGNMENT_TRANSITIONS[current.status] and requested is not current.status:
            raise StatusTransitionError(
                f"Cannot move assignment from {current.status.value} to {requested.value}"
            )
        if requested is AssignmentStatus.ACTIVE and new_resource_id is None:
            raise StatusTransitionError("An assignment needs a resource to become active")
        if requested is AssignmentStatus.PENDING and new_resource_id is not None:
            raise StatusTransitionError("A pending assignment cannot keep a resource")
        return requested

    @staticmethod
    def _classify(
        current: Assignment,
        updated: Assignment,
        changes: list[HistoryChange],
    ) -> HistoryAction:
        if updated.resource_id is not None and updated.resource_id != current.resource_id:
            return HistoryAction.ASSIGN
        if current.resource_id is not None and updated.resource_id is None:
            return HistoryAction.UNASSIGN
        if [change.field for change in changes] == ["status"]:
            return HistoryAction.STATUS_CHANGE
        return HistoryAction.UPDATE

    def _notify(self, method: str, notice: AssignmentNotice) -> None:
        """Hand a payload to the notification collaborator.

        Delivery failures are logged; the booking has already committed.
        """
        try:
            getattr(self._notifications, method)(notice)
        except Exception:
            logger.exception(
                "Notification delivery failed | kind=%s | assignment_id=%s",
                method,
                notice.assignment_id,
            )
