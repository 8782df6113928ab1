"""Append-only history ledger for resources, assignments and settings."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional, Sequence

from seat_allocator.domain.changes import HistoryChange, diff_records
from seat_allocator.domain.errors import AttributeValidationError
from seat_allocator.domain.models import (
    EntityType,
    HistoryAction,
    HistoryEntry,
    HistoryMetadata,
)
from seat_allocator.repository.data_repository import DataRepository
from seat_allocator.utils.config import Settings, get_settings
from seat_allocator.utils.logger import get_audit_logger, get_logger


logger = get_logger(__name__)
audit_logger = get_audit_logger()

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def diff(old: Any, new: Any, tracked_fields: Iterable[str]) -> list[HistoryChange]:
    """Changes for each tracked field whose stable serialized form differs.

    A field missing from one record is reported against ``ABSENT`` rather
    than ``None``, so dropping an attribute and blanking it are distinct.
    """
    return diff_records(old, new, tracked_fields)


class HistoryService:
    """Records and queries immutable history entries.

    Timestamps come from the injected clock at write time; callers never
    supply them.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._clock = clock or utc_now

    @property
    def system_actor(self) -> str:
        return self._settings.system_actor

    def record(
        self,
        entity_type: EntityType,
        entity_id: str,
        action: HistoryAction,
        actor: Optional[str] = None,
        changes: Sequence[HistoryChange] = (),
        metadata: Optional[HistoryMetadata] = None,
    ) -> HistoryEntry:
        """Append one entry; raises ``PersistenceError`` if the store rejects it.

        Changes whose old and new values are both empty are dropped. When no
        meaningful change remains the returned entry is not persisted
        (``entry.persisted`` is False).
        """
        meaningful = tuple(change for change in changes if change.is_meaningful())
        entry = HistoryEntry(
            entry_id=None,
            entity_type=EntityType(entity_type),
            entity_id=str(entity_id),
            action=HistoryAction(action),
            actor=(actor or "").strip() or self._settings.system_actor,
            changes=meaningful,
            metadata=metadata,
            timestamp=self._clock(),
        )
        if not meaningful:
            logger.debug(
                "History entry skipped (no meaningful changes) | entity_type=%s | entity_id=%s | action=%s",
                entry.entity_type.value,
                entry.entity_id,
                entry.action.value,
            )
            return entry

        persisted = HistoryEntry(
            entry_id=uuid.uuid4().hex,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            action=entry.action,
            actor=entry.actor,
            changes=entry.changes,
            metadata=entry.metadata,
            timestamp=entry.timestamp,
        )
        self._repository.insert_history(persisted)
        audit_logger.debug(
            "History recorded | entity_type=%s | entity_id=%s | action=%s | actor=%s | fields=%s",
            persisted.entity_type.value,
            persisted.entity_id,
            persisted.action.value,
            persisted.actor,
            ",".join(persisted.changed_fields()),
        )
        return persisted

    def entity_history(
        self,
        entity_type: EntityType,
        entity_id: str,
        limit: Optional[int] = None,
    ) -> list[HistoryEntry]:
        return self._repository.list_history(
            limit=self._resolve_limit(limit, self._settings.history_default_limit),
            entity_type=EntityType(entity_type),
            entity_id=str(entity_id),
        )

    def recent_history(
        self,
        limit: Optional[int] = None,
        *,
        entity_type: Optional[EntityType] = None,
        action: Optional[HistoryAction] = None,
        actor: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[HistoryEntry]:
        if start is not None and end is not None and start > end:
            raise AttributeValidationError("history start must not be after end")
        return self._repository.list_history(
            limit=self._resolve_limit(limit, self._settings.history_recent_limit),
            entity_type=EntityType(entity_type) if entity_type is not None else None,
            action=HistoryAction(action) if action is not None else None,
            actor=actor,
            start=start,
            end=end,
        )

    def resource_full_history(
        self,
        resource_id: str,
        limit: Optional[int] = None,
    ) -> list[HistoryEntry]:
        """Resource entries merged with assignment entries that bound or released it."""
        resolved = self._resolve_limit(limit, self._settings.history_recent_limit)
        own = self._repository.list_history(
            limit=resolved,
            entity_type=EntityType.RESOURCE,
            entity_id=resource_id,
        )
        related = self._repository.list_assignment_history_for_resource(
            resource_id=resource_id,
            limit=resolved,
        )
        combined = sorted(own + related, key=lambda entry: entry.timestamp, reverse=True)
        return combined[:resolved]

    def cleanup(self, retention_days: int, now: Optional[datetime] = None) -> int:
        """Delete entries older than ``now - retention_days``; returns the count."""
        if retention_days < 0:
            raise AttributeValidationError("retention_days must be >= 0")
        reference = now or self._clock()
        cutoff = reference - timedelta(days=retention_days)
        deleted = self._repository.delete_history_before(cutoff)
        logger.info(
            "History cleanup completed | retention_days=%s | cutoff=%s | deleted=%s",
            retention_days,
            cutoff.isoformat(),
            deleted,
        )
        return deleted

    @staticmethod
    def _resolve_limit(limit: Optional[int], default: int) -> int:
        if limit is None:
            return default
        if limit <= 0:
            raise AttributeValidationError("limit must be a positive integer")
        return limit
