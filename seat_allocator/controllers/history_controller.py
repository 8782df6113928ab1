"""HTTP controller layer for the history ledger."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from seat_allocator.controllers.dependencies import (
    get_history_service,
    require_admin,
    to_http_exception,
)
from seat_allocator.domain.errors import AllocationError
from seat_allocator.domain.models import EntityType, HistoryAction, HistoryEntry
from seat_allocator.services.history_service import HistoryService
from seat_allocator.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/history", tags=["history"])


class HistoryEntryResponse(BaseModel):
    """Change values keep their type tag so absent, null and empty stay distinct."""

    id: str
    entity_type: EntityType
    entity_id: str
    action: HistoryAction
    actor: str
    changes: list[dict[str, Any]]
    metadata: dict[str, str]
    timestamp: datetime


def to_history_response(entry: HistoryEntry) -> HistoryEntryResponse:
    return HistoryEntryResponse(
        id=entry.entry_id or "",
        entity_type=entry.entity_type,
        entity_id=entry.entity_id,
        action=entry.action,
        actor=entry.actor,
        changes=[change.to_dict() for change in entry.changes],
        metadata=entry.metadata.to_dict() if entry.metadata is not None else {},
        timestamp=entry.timestamp,
    )


@router.get(
    "",
    response_model=list[HistoryEntryResponse],
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def recent_history(
    limit: Optional[int] = Query(default=None, gt=0),
    entity_type: Optional[EntityType] = None,
    action: Optional[HistoryAction] = None,
    actor: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    service: HistoryService = Depends(get_history_service),
) -> list[HistoryEntryResponse]:
    try:
        entries = service.recent_history(
            limit,
            entity_type=entity_type,
            action=action,
            actor=actor,
            start=start,
            end=end,
        )
        return [to_history_response(entry) for entry in entries]
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected history query failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load history",
        ) from exc
