"""HTTP controller layer for availability queries."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from seat_allocator.controllers.assignment_controller import (
    AssignmentResponse,
    to_assignment_response,
)
from seat_allocator.controllers.dependencies import (
    get_availability_service,
    require_admin,
    to_http_exception,
)
from seat_allocator.controllers.resource_controller import (
    ResourceResponse,
    to_resource_response,
)
from seat_allocator.domain.errors import AllocationError
from seat_allocator.services.availability_service import AvailabilityService
from seat_allocator.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(
    prefix="/availability",
    tags=["availability"],
    dependencies=[Depends(require_admin)],
)


class BindingResponse(BaseModel):
    resource_id: str
    assignment: Optional[AssignmentResponse]


def _today() -> date:
    return datetime.now(timezone.utc).date()


@router.get("", response_model=list[ResourceResponse])
async def available_resources(
    start_date: date,
    end_date: date,
    service: AvailabilityService = Depends(get_availability_service),
) -> list[ResourceResponse]:
    try:
        resources = service.available_resources(start_date, end_date)
        return [to_resource_response(resource) for resource in resources]
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected availability query failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to compute availability",
        ) from exc


@router.get("/bindings", response_model=list[BindingResponse])
async def all_bindings(
    on: Optional[date] = None,
    service: AvailabilityService = Depends(get_availability_service),
) -> list[BindingResponse]:
    try:
        bindings = service.all_bindings(on or _today())
        return [
            BindingResponse(
                resource_id=resource_id,
                assignment=to_assignment_response(assignment) if assignment else None,
            )
            for resource_id, assignment in bindings.items()
        ]
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected bindings query failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load current bindings",
        ) from exc


@router.get("/{resource_id}/current", response_model=BindingResponse)
async def current_binding(
    resource_id: str,
    on: Optional[date] = None,
    service: AvailabilityService = Depends(get_availability_service),
) -> BindingResponse:
    try:
        assignment = service.current_binding(resource_id, on or _today())
        return BindingResponse(
            resource_id=resource_id,
            assignment=to_assignment_response(assignment) if assignment else None,
        )
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected binding query failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load current binding",
        ) from exc
