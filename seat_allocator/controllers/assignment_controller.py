"""HTTP controller layer for the assignment engine."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from seat_allocator.controllers.dependencies import (
    get_assignment_service,
    get_history_service,
    require_actor,
    require_admin,
    to_http_exception,
)
from seat_allocator.controllers.history_controller import (
    HistoryEntryResponse,
    to_history_response,
)
from seat_allocator.domain.errors import AllocationError, EntityNotFoundError
from seat_allocator.domain.models import Assignment, AssignmentStatus, RequesterInfo
from seat_allocator.services.assignment_service import AssignmentService
from seat_allocator.services.history_service import HistoryService
from seat_allocator.utils.config import get_settings
from seat_allocator.utils.logger import get_logger


logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(prefix="/assignments", tags=["assignments"])


class AssignmentCreateRequest(BaseModel):
    requester_name: str = Field(min_length=1)
    requester_email: str = Field(min_length=3)
    area: str = ""
    region: str = ""
    usage_type: str = ""
    start_date: date
    end_date: date
    resource_id: Optional[str] = None


class AssignResourceRequest(BaseModel):
    resource_id: str = Field(min_length=1)


class AssignmentUpdateRequest(BaseModel):
    """Only fields present in the body are applied; ``resource_id: null`` unbinds."""

    requester_name: Optional[str] = None
    requester_email: Optional[str] = None
    area: Optional[str] = None
    region: Optional[str] = None
    usage_type: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    resource_id: Optional[str] = None
    status: Optional[AssignmentStatus] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class AssignmentResponse(BaseModel):
    id: str
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


def to_assignment_response(assignment: Assignment) -> AssignmentResponse:
    return AssignmentResponse(
        id=assignment.assignment_id,
        resource_id=assignment.resource_id,
        requester_name=assignment.requester_name,
        requester_email=assignment.requester_email,
        area=assignment.area,
        region=assignment.region,
        usage_type=assignment.usage_type,
        start_date=assignment.start_date,
        end_date=assignment.end_date,
        status=assignment.status,
        created_at=assignment.created_at,
        updated_at=assignment.updated_at,
    )


def _unexpected(action: str, exc: Exception) -> HTTPException:
    logger.exception("Unexpected assignment failure | action=%s", action)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )


@router.get(
    "",
    response_model=list[AssignmentResponse],
    dependencies=[Depends(require_admin)],
)
async def list_assignments(
    status_filter: Optional[AssignmentStatus] = Query(default=None, alias="status"),
    resource_id: Optional[str] = None,
    requester_email: Optional[str] = None,
    service: AssignmentService = Depends(get_assignment_service),
) -> list[AssignmentResponse]:
    try:
        if resource_id is not None:
            assignments = service.list_for_resource(resource_id)
        elif requester_email is not None:
            assignments = service.list_for_requester(requester_email)
        else:
            assignments = service.list_assignments(status_filter)
        if status_filter is not None:
            assignments = [item for item in assignments if item.status is status_filter]
        return [to_assignment_response(item) for item in assignments]
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("list assignments", exc) from exc


@router.get(
    "/expiring",
    response_model=list[AssignmentResponse],
    dependencies=[Depends(require_admin)],
)
async def expiring_assignments(
    days: int = Query(default=settings.expiring_default_days, ge=0),
    as_of: Optional[date] = None,
    service: AssignmentService = Depends(get_assignment_service),
) -> list[AssignmentResponse]:
    try:
        reference = as_of or datetime.now(timezone.utc).date()
        return [to_assignment_response(item) for item in service.expiring_within(days, reference)]
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("list expiring assignments", exc) from exc


@router.get(
    "/{assignment_id}",
    response_model=AssignmentResponse,
    dependencies=[Depends(require_admin)],
)
async def get_assignment(
    assignment_id: str,
    service: AssignmentService = Depends(get_assignment_service),
) -> AssignmentResponse:
    try:
        return to_assignment_response(service.get(assignment_id))
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("load assignment", exc) from exc


@router.post("", response_model=AssignmentResponse, status_code=status.HTTP_201_CREATED)
async def create_assignment(
    payload: AssignmentCreateRequest,
    actor: str = Depends(require_actor),
    service: AssignmentService = Depends(get_assignment_service),
) -> AssignmentResponse:
    """Book a resource directly, or file a pending request when none is given."""
    try:
        assignment = service.create(
            RequesterInfo(
                name=payload.requester_name,
                email=payload.requester_email,
                area=payload.area,
                region=payload.region,
                usage_type=payload.usage_type,
            ),
            payload.start_date,
            payload.end_date,
            resource_id=payload.resource_id,
            actor=actor,
        )
        return to_assignment_response(assignment)
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("create assignment", exc) from exc


@router.post("/{assignment_id}/assign", response_model=AssignmentResponse)
async def assign_resource(
    assignment_id: str,
    payload: AssignResourceRequest,
    actor: str = Depends(require_actor),
    service: AssignmentService = Depends(get_assignment_service),
) -> AssignmentResponse:
    try:
        assignment = service.assign_resource(assignment_id, payload.resource_id, actor=actor)
        return to_assignment_response(assignment)
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("assign resource", exc) from exc


@router.patch("/{assignment_id}", response_model=AssignmentResponse)
async def update_assignment(
    assignment_id: str,
    payload: AssignmentUpdateRequest,
    actor: str = Depends(require_actor),
    service: AssignmentService = Depends(get_assignment_service),
) -> AssignmentResponse:
    try:
        partial = payload.model_dump(exclude_unset=True)
        return to_assignment_response(service.update(assignment_id, partial, actor=actor))
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("update assignment", exc) from exc


@router.post("/{assignment_id}/cancel", response_model=AssignmentResponse)
async def cancel_assignment(
    assignment_id: str,
    payload: CancelRequest,
    actor: str = Depends(require_actor),
    service: AssignmentService = Depends(get_assignment_service),
) -> AssignmentResponse:
    try:
        assignment = service.cancel(assignment_id, actor=actor, reason=payload.reason)
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("cancel assignment", exc) from exc
    if assignment is None:
        raise to_http_exception(EntityNotFoundError("assignment", assignment_id))
    return to_assignment_response(assignment)


@router.delete("/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_assignment(
    assignment_id: str,
    actor: str = Depends(require_actor),
    service: AssignmentService = Depends(get_assignment_service),
) -> None:
    try:
        deleted = service.delete(assignment_id, actor=actor)
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("delete assignment", exc) from exc
    if not deleted:
        raise to_http_exception(EntityNotFoundError("assignment", assignment_id))


@router.get(
    "/{assignment_id}/history",
    response_model=list[HistoryEntryResponse],
    dependencies=[Depends(require_admin)],
)
async def assignment_history(
    assignment_id: str,
    limit: Optional[int] = Query(default=None, gt=0),
    service: HistoryService = Depends(get_history_service),
) -> list[HistoryEntryResponse]:
    try:
        entries = service.entity_history("assignment", assignment_id, limit=limit)
        return [to_history_response(entry) for entry in entries]
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("load assignment history", exc) from exc
