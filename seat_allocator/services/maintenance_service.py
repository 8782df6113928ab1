"""Effects an external scheduler triggers: expiry sweep, warnings, rotation, cleanup."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from seat_allocator.domain.intervals import DateLike, to_day
from seat_allocator.domain.models import ResourceStatus, SweepResult
from seat_allocator.services.assignment_service import AssignmentService
from seat_allocator.services.collaborators import (
    CredentialNotice,
    CredentialRotator,
    ExpirationNotice,
    LoggingNotificationSink,
    NotificationSink,
    RandomPasswordRotator,
)
from seat_allocator.services.history_service import HistoryService
from seat_allocator.services.resource_service import ResourceService
from seat_allocator.services.settings_service import NOTIFY_ON_EXPIRATION, SettingsService
from seat_allocator.utils.config import Settings, get_settings
from seat_allocator.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class MaintenanceReport:
    sweep: SweepResult
    rotated_resource_ids: list[str] = field(default_factory=list)
    rotation_failures: dict[str, str] = field(default_factory=dict)


class MaintenanceService:
    """Runs the periodic jobs; the trigger itself (cron, systemd timer) lives outside."""

    def __init__(
        self,
        assignment_service: AssignmentService,
        resource_service: ResourceService,
        settings_service: SettingsService,
        history_service: HistoryService,
        notification_sink: Optional[NotificationSink] = None,
        rotator: Optional[CredentialRotator] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._assignments = assignment_service
        self._resources = resource_service
        self._settings_store = settings_service
        self._history = history_service
        self._notifications = notification_sink or LoggingNotificationSink()
        self._rotator = rotator or RandomPasswordRotator(self._settings.password_length)

    def run_expiry_sweep(
        self,
        now: DateLike,
        auto_rotate: Optional[bool] = None,
        actor: Optional[str] = None,
    ) -> MaintenanceReport:
        """Expire finished bookings, then optionally rotate freed seats' passwords.

        ``auto_rotate=None`` defers to the ``auto_password_rotation`` setting.
        A rotator failure on one resource is logged and reported; the others
        are still rotated.
        """
        sweep = self._assignments.sweep_expired(now, actor=actor)
        if auto_rotate is None:
            auto_rotate = self._settings_store.is_auto_rotation_enabled()
        if not auto_rotate or not sweep.released_resource_ids:
            return MaintenanceReport(sweep=sweep)

        rotated: list[str] = []
        failures: dict[str, str] = {}
        for resource_id in sweep.released_resource_ids:
            try:
                if self._rotate(resource_id, actor=actor):
                    rotated.append(resource_id)
            except Exception as exc:
                logger.exception("Password rotation failed | resource_id=%s", resource_id)
                failures[resource_id] = str(exc)

        logger.info(
            "Password rotation completed | rotated=%s | failed=%s",
            len(rotated),
            len(failures),
        )
        return MaintenanceReport(
            sweep=sweep,
            rotated_resource_ids=rotated,
            rotation_failures=failures,
        )

    def send_expiration_warnings(
        self,
        now: DateLike,
        days: Optional[int] = None,
    ) -> list[ExpirationNotice]:
        """Emit one warning per active booking ending within ``days``.

        Nothing is sent while the ``notify_on_expiration`` setting is off. A failed
        delivery is logged and the notice is still returned.
        """
        if not self._settings_store.is_enabled(NOTIFY_ON_EXPIRATION, default=True):
            logger.info("Expiration warnings disabled by settings")
            return []
        window = days if days is not None else self._settings_store.expiration_warning_days()
        today = to_day(now)
        notices: list[ExpirationNotice] = []
        for assignment in self._assignments.expiring_within(window, today):
            resource = (
                self._resources.find_by_id(assignment.resource_id)
                if assignment.resource_id
                else None
            )
            notice = ExpirationNotice(
                requester_name=assignment.requester_name,
                requester_email=assignment.requester_email,
                resource_email=resource.email if resource is not None else None,
                end_date=assignment.end_date,
                days_remaining=(assignment.end_date - today).days,
                assignment_id=assignment.assignment_id,
            )
            try:
                self._notifications.expiration_warning(notice)
            except Exception:
                logger.exception(
                    "Expiration warning delivery failed | assignment_id=%s",
                    assignment.assignment_id,
                )
            notices.append(notice)

        logger.info(
            "Expiration warnings sent | as_of=%s | window_days=%s | sent=%s",
            today.isoformat(),
            window,
            len(notices),
        )
        return notices

    def cleanup_history(
        self,
        retention_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> int:
        days = retention_days if retention_days is not None else self._settings.history_retention_days
        return self._history.cleanup(days, now=now)

    def _rotate(self, resource_id: str, actor: Optional[str]) -> bool:
        resource = self._resources.find_by_id(resource_id)
        if resource.status is not ResourceStatus.FREE:
            return False
        new_password = self._rotator.rotate(resource)
        reason = "Automatic rotation after booking expiry"
        self._resources.update(
            resource_id,
            {"platform_password": new_password},
            actor=actor,
            reason=reason,
        )
        self._notifications.credential_changed(
            CredentialNotice(
                resource_id=resource_id,
                resource_email=resource.email,
                new_password=new_password,
                reason=reason,
            )
        )
        return True
