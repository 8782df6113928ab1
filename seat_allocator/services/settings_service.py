"""Key/value runtime settings stored alongside the booking data."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from seat_allocator.domain.changes import ABSENT, HistoryChange
from seat_allocator.domain.errors import AttributeValidationError
from seat_allocator.domain.models import EntityType, HistoryAction, HistoryMetadata, Setting
from seat_allocator.repository.data_repository import DataRepository
from seat_allocator.services.history_service import HistoryService, diff
from seat_allocator.utils.config import Settings, get_settings
from seat_allocator.utils.logger import get_logger


logger = get_logger(__name__)

AUTO_PASSWORD_ROTATION = "auto_password_rotation"
PASSWORD_ROTATION_TIME = "password_rotation_time"
NOTIFY_ON_EXPIRATION = "notify_on_expiration"
EXPIRATION_WARNING_DAYS = "expiration_warning_days"
NOTIFY_ON_PASSWORD_CHANGE = "notify_on_password_change"
NOTIFY_ON_NEW_REQUEST = "notify_on_new_request"

_SCALAR_TYPES = (str, int, float, bool)


@dataclass(frozen=True)
class SettingDefault:
    key: str
    value: Any
    description: str


def default_settings(settings: Settings) -> tuple[SettingDefault, ...]:
    return (
        SettingDefault(
            AUTO_PASSWORD_ROTATION,
            settings.auto_rotation_enabled,
            "Rotate platform passwords automatically when bookings expire",
        ),
        SettingDefault(
            PASSWORD_ROTATION_TIME,
            "01:00",
            "Time of day the external scheduler runs the expiry sweep (HH:MM)",
        ),
        SettingDefault(
            NOTIFY_ON_EXPIRATION,
            True,
            "Send warnings to requesters before their booking expires",
        ),
        SettingDefault(
            EXPIRATION_WARNING_DAYS,
            settings.expiration_warning_days,
            "Days before expiry at which the warning is sent",
        ),
        SettingDefault(
            NOTIFY_ON_PASSWORD_CHANGE,
            False,
            "Notify administrators when a platform password is rotated",
        ),
        SettingDefault(
            NOTIFY_ON_NEW_REQUEST,
            True,
            "Notify administrators about new pending requests",
        ),
    )


class SettingsService:
    """Every write records a ``setting`` history entry keyed by the setting name."""

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

    def get(self, key: str, default: Any = None) -> Any:
        setting = self._repository.get_setting(key)
        return setting.value if setting is not None else default

    def list(self) -> list[Setting]:
        return self._repository.list_settings()

    def set(
        self,
        key: str,
        value: Any,
        description: str = "",
        actor: Optional[str] = None,
    ) -> Setting:
        key = (key or "").strip()
        if not key:
            raise AttributeValidationError("setting key must be non-empty")
        if value is not None and not isinstance(value, _SCALAR_TYPES):
            raise AttributeValidationError(
                "setting values must be strings, numbers, booleans or null"
            )
        resolved_actor = (actor or "").strip() or self._settings.system_actor

        with self._repository.transaction():
            existing = self._repository.get_setting(key)
            setting = Setting(
                key=key,
                value=value,
                description=description or (existing.description if existing else ""),
                updated_at=datetime.now(timezone.utc),
                updated_by=resolved_actor,
            )
            self._repository.upsert_setting(setting)

        action = HistoryAction.CREATE if existing is None else HistoryAction.UPDATE
        changes = diff(
            {"value": existing.value} if existing is not None else {},
            {"value": value},
            ("value",),
        )
        logger.info("Setting saved | key=%s | action=%s", key, action.value)
        self._history.record(
            EntityType.SETTING,
            key,
            action,
            actor=resolved_actor,
            changes=changes,
            metadata=HistoryMetadata(reason=setting.description or None),
        )
        return setting

    def delete(self, key: str, actor: Optional[str] = None) -> bool:
        with self._repository.transaction():
            existing = self._repository.get_setting(key)
            if existing is None:
                return False
            self._repository.delete_setting(key)

        logger.info("Setting deleted | key=%s", key)
        self._history.record(
            EntityType.SETTING,
            key,
            HistoryAction.DELETE,
            actor=actor,
            changes=[HistoryChange.of("value", existing.value, ABSENT)],
        )
        return True

    def initialize_defaults(self) -> int:
        """Create any missing default setting; returns how many were created."""
        created = 0
        for default in default_settings(self._settings):
            if self._repository.get_setting(default.key) is None:
                self.set(default.key, default.value, default.description)
                created += 1
        if created:
            logger.info("Default settings initialized | created=%s", created)
        return created

    def is_auto_rotation_enabled(self) -> bool:
        return self.get(AUTO_PASSWORD_ROTATION, self._settings.auto_rotation_enabled) is True

    def is_enabled(self, key: str, default: bool = False) -> bool:
        return self.get(key, default) is True

    def expiration_warning_days(self) -> int:
        value = self.get(EXPIRATION_WARNING_DAYS, self._settings.expiration_warning_days)
        try:
            days = int(value)
        except (TypeError, ValueError) as exc:
            raise AttributeValidationError(
                f"{EXPIRATION_WARNING_DAYS} must be an integer, got {value!r}"
            ) from exc
        if days < 0:
            raise AttributeValidationError(f"{EXPIRATION_WARNING_DAYS} must be >= 0")
        return days
