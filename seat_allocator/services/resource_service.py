"""Resource store: CRUD and administrative status overrides for license seats."""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from seat_allocator.domain.changes import ABSENT, HistoryChange
from seat_allocator.domain.constraints import normalize_email, validate_resource_attributes
from seat_allocator.domain.errors import (
    AttributeValidationError,
    BookingConflictError,
    DuplicateIdentityError,
    EntityNotFoundError,
    StatusTransitionError,
)
from seat_allocator.domain.models import (
    EntityType,
    HistoryAction,
    HistoryMetadata,
    RESOURCE_TRACKED_FIELDS,
    Resource,
    ResourceStatus,
)
from seat_allocator.repository.data_repository import DataRepository
from seat_allocator.services.history_service import HistoryService, diff
from seat_allocator.utils.config import Settings, get_settings
from seat_allocator.utils.logger import get_logger


logger = get_logger(__name__)

_UPDATABLE_FIELDS = frozenset(RESOURCE_TRACKED_FIELDS)
_CREATABLE_STATUSES = frozenset({ResourceStatus.FREE, ResourceStatus.MAINTENANCE})


def _parse_status(value: Any) -> ResourceStatus:
    try:
        return ResourceStatus(value)
    except ValueError as exc:
        raise AttributeValidationError(
            f"status must be one of: {', '.join(item.value for item in ResourceStatus)}"
        ) from exc


class ResourceService:
    """Owns resource rows; never flips ``occupied``/``free`` on its own."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        history_service: Optional[HistoryService] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._history = history_service or HistoryService(
            repository=self._repository,
            settings=self._settings,
        )

    def find_by_id(self, resource_id: str) -> Resource:
        resource = self._repository.get_resource(resource_id)
        if resource is None:
            raise EntityNotFoundError("resource", resource_id)
        return resource

    def find_by_email(self, email: str) -> Optional[Resource]:
        return self._repository.get_resource_by_email(normalize_email(email))

    def find_by_status(self, status: ResourceStatus | str) -> list[Resource]:
        return self._repository.list_resources(status=_parse_status(status))

    def list_resources(self) -> list[Resource]:
        return self._repository.list_resources()

    def create(self, attributes: Mapping[str, Any], actor: Optional[str] = None) -> Resource:
        unknown = set(attributes) - _UPDATABLE_FIELDS
        if unknown:
            raise AttributeValidationError(
                "unknown resource fields: " + ", ".join(sorted(unknown))
            )
        cleaned = validate_resource_attributes(attributes, partial=False)
        status = _parse_status(cleaned.pop("status", ResourceStatus.FREE))
        if status not in _CREATABLE_STATUSES:
            raise StatusTransitionError("new resources must start as free or maintenance")

        now = datetime.now(timezone.utc)
        resource = Resource(
            resource_id=uuid.uuid4().hex,
            account=cleaned["account"],
            username=cleaned["username"],
            email=cleaned["email"],
            host_key=cleaned["host_key"],
            platform_password=cleaned["platform_password"],
            email_password=cleaned["email_password"],
            username_password=cleaned["username_password"],
            status=status,
            notes=cleaned.get("notes"),
            created_at=now,
            updated_at=now,
        )

        with self._repository.transaction():
            if self._repository.get_resource_by_email(resource.email) is not None:
                raise DuplicateIdentityError(
                    f"Resource with email {resource.email} already exists"
                )
            self._repository.insert_resource(resource)

        logger.info(
            "Resource created | resource_id=%s | email=%s | status=%s",
            resource.resource_id,
            resource.email,
            resource.status.value,
        )
        self._history.record(
            EntityType.RESOURCE,
            resource.resource_id,
            HistoryAction.CREATE,
            actor=actor,
            changes=diff(None, resource, RESOURCE_TRACKED_FIELDS),
            metadata=HistoryMetadata(resource_email=resource.email),
        )
        return resource

    def update(
        self,
        resource_id: str,
        partial: Mapping[str, Any],
        actor: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Resource:
        unknown = set(partial) - _UPDATABLE_FIELDS
        if unknown:
            raise AttributeValidationError(
                "unknown resource fields: " + ", ".join(sorted(unknown))
            )
        cleaned = validate_resource_attributes(partial, partial=True)

        with self._repository.transaction():
            current = self.find_by_id(resource_id)
            if "status" in cleaned:
                cleaned["status"] = self._checked_status_change(
                    current,
                    _parse_status(cleaned["status"]),
                )
            new_email = cleaned.get("email")
            if new_email and new_email != current.email:
                clash = self._repository.get_resource_by_email(
                    new_email,
                    exclude_resource_id=resource_id,
                )
                if clash is not None:
                    raise DuplicateIdentityError(
                        f"Another resource with email {new_email} already exists"
                    )

            candidate = replace(current, **cleaned)
            changes = diff(current, candidate, RESOURCE_TRACKED_FIELDS)
            if not changes:
                return current
            updated = replace(candidate, updated_at=datetime.now(timezone.utc))
            self._repository.save_resource(updated)

        status_changed = any(change.field == "status" for change in changes)
        action = HistoryAction.STATUS_CHANGE if status_changed else HistoryAction.UPDATE
        logger.info(
            "Resource updated | resource_id=%s | action=%s | fields=%s",
            resource_id,
            action.value,
            ",".join(change.field for change in changes),
        )
        self._history.record(
            EntityType.RESOURCE,
            resource_id,
            action,
            actor=actor,
            changes=changes,
            metadata=HistoryMetadata(resource_email=updated.email, reason=reason),
        )
        return updated

    def set_maintenance(
        self,
        resource_id: str,
        actor: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Resource:
        return self._override_status(
            resource_id,
            target=ResourceStatus.MAINTENANCE,
            actor=actor,
            reason=reason or "Placed in maintenance",
        )

    def clear_maintenance(
        self,
        resource_id: str,
        actor: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Resource:
        return self._override_status(
            resource_id,
            target=None,
            actor=actor,
            reason=reason or "Maintenance cleared",
        )

    def delete(self, resource_id: str, actor: Optional[str] = None) -> bool:
        with self._repository.transaction():
            resource = self.find_by_id(resource_id)
            active_count = self._repository.count_active_for_resource(resource_id)
            if active_count > 0:
                raise BookingConflictError(
                    f"Cannot delete resource {resource_id} with {active_count} active assignment(s)"
                )
            deleted = self._repository.delete_resource(resource_id)

        if deleted:
            logger.info("Resource deleted | resource_id=%s | email=%s", resource_id, resource.email)
            self._history.record(
                EntityType.RESOURCE,
                resource_id,
                HistoryAction.DELETE,
                actor=actor,
                changes=[
                    HistoryChange.of(field, old_value=value, new_value=ABSENT)
                    for field, value in resource.identity_snapshot().items()
                ],
                metadata=HistoryMetadata(resource_email=resource.email),
            )
        return deleted

    def _derived_status(self, resource_id: str) -> ResourceStatus:
        if self._repository.count_active_for_resource(resource_id) > 0:
            return ResourceStatus.OCCUPIED
        return ResourceStatus.FREE

    def _checked_status_change(
        self,
        current: Resource,
        requested: ResourceStatus,
    ) -> ResourceStatus:
        """Only maintenance toggles are allowed through direct updates."""
        if requested is current.status or requested is ResourceStatus.MAINTENANCE:
            return requested
        derived = self._derived_status(current.resource_id)
        if requested is not derived:
            raise StatusTransitionError(
                f"Resource status '{requested.value}' contradicts its bookings; "
                f"expected '{derived.value}'"
            )
        return requested

    def _override_status(
        self,
        resource_id: str,
        *,
        target: Optional[ResourceStatus],
        actor: Optional[str],
        reason: str,
    ) -> Resource:
        with self._repository.transaction():
            current = self.find_by_id(resource_id)
            if target is None:
                if current.status is not ResourceStatus.MAINTENANCE:
                    return current
                target = self._derived_status(resource_id)
            if current.status is target:
                return current
            now = datetime.now(timezone.utc)
            self._repository.set_resource_status(resource_id, target, now)
            updated = replace(current, status=target, updated_at=now)

        logger.info(
            "Resource status overridden | resource_id=%s | from=%s | to=%s",
            resource_id,
            current.status.value,
            target.value,
        )
        self._history.record(
            EntityType.RESOURCE,
            resource_id,
            HistoryAction.STATUS_CHANGE,
            actor=actor,
            changes=[HistoryChange.of("status", current.status, target)],
            metadata=HistoryMetadata(resource_email=current.email, reason=reason),
        )
        return updated
