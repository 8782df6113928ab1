"""HTTP controller layer for the resource store."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator

from seat_allocator.controllers.dependencies import (
    get_history_service,
    get_resource_service,
    require_actor,
    require_admin,
    to_http_exception,
)
from seat_allocator.controllers.history_controller import (
    HistoryEntryResponse,
    to_history_response,
)
from seat_allocator.domain.errors import AllocationError
from seat_allocator.domain.models import Resource, ResourceStatus
from seat_allocator.services.history_service import HistoryService
from seat_allocator.services.resource_service import ResourceService
from seat_allocator.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/resources", tags=["resources"])


class ResourceCreateRequest(BaseModel):
    account: str = Field(min_length=1)
    username: str = Field(min_length=1)
    email: str = Field(min_length=3)
    host_key: str = Field(min_length=1)
    platform_password: str = Field(min_length=1)
    email_password: str = Field(min_length=1)
    username_password: str = Field(min_length=1)
    status: ResourceStatus = ResourceStatus.FREE
    notes: Optional[str] = None

    @field_validator("status")
    @classmethod
    def validate_initial_status(cls, value: ResourceStatus) -> ResourceStatus:
        if value is ResourceStatus.OCCUPIED:
            raise ValueError("new resources must start as free or maintenance")
        return value


class ResourceUpdateRequest(BaseModel):
    account: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None
    host_key: Optional[str] = None
    platform_password: Optional[str] = None
    email_password: Optional[str] = None
    username_password: Optional[str] = None
    status: Optional[ResourceStatus] = None
    notes: Optional[str] = None


class MaintenanceRequest(BaseModel):
    reason: Optional[str] = None


class ResourceResponse(BaseModel):
    """Public view of a resource; credentials are served separately."""

    id: str
    account: str
    username: str
    email: str
    status: ResourceStatus
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime


class ResourceCredentialsResponse(BaseModel):
    id: str
    email: str
    host_key: str
    platform_password: str
    email_password: str
    username_password: str


def to_resource_response(resource: Resource) -> ResourceResponse:
    return ResourceResponse(
        id=resource.resource_id,
        account=resource.account,
        username=resource.username,
        email=resource.email,
        status=resource.status,
        notes=resource.notes,
        created_at=resource.created_at,
        updated_at=resource.updated_at,
    )


def _unexpected(action: str, exc: Exception) -> HTTPException:
    logger.exception("Unexpected resource failure | action=%s", action)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )


@router.get(
    "",
    response_model=list[ResourceResponse],
    dependencies=[Depends(require_admin)],
)
async def list_resources(
    status_filter: Optional[ResourceStatus] = Query(default=None, alias="status"),
    service: ResourceService = Depends(get_resource_service),
) -> list[ResourceResponse]:
    try:
        resources = (
            service.find_by_status(status_filter)
            if status_filter is not None
            else service.list_resources()
        )
        return [to_resource_response(resource) for resource in resources]
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("list resources", exc) from exc


@router.get(
    "/{resource_id}",
    response_model=ResourceResponse,
    dependencies=[Depends(require_admin)],
)
async def get_resource(
    resource_id: str,
    service: ResourceService = Depends(get_resource_service),
) -> ResourceResponse:
    try:
        return to_resource_response(service.find_by_id(resource_id))
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("load resource", exc) from exc


@router.get(
    "/{resource_id}/credentials",
    response_model=ResourceCredentialsResponse,
    dependencies=[Depends(require_admin)],
)
async def get_resource_credentials(
    resource_id: str,
    service: ResourceService = Depends(get_resource_service),
) -> ResourceCredentialsResponse:
    try:
        resource = service.find_by_id(resource_id)
        return ResourceCredentialsResponse(
            id=resource.resource_id,
            email=resource.email,
            host_key=resource.host_key,
            platform_password=resource.platform_password,
            email_password=resource.email_password,
            username_password=resource.username_password,
        )
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("load credentials", exc) from exc


@router.post("", response_model=ResourceResponse, status_code=status.HTTP_201_CREATED)
async def create_resource(
    payload: ResourceCreateRequest,
    actor: str = Depends(require_actor),
    service: ResourceService = Depends(get_resource_service),
) -> ResourceResponse:
    try:
        resource = service.create(payload.model_dump(mode="json"), actor=actor)
        return to_resource_response(resource)
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("create resource", exc) from exc


@router.patch("/{resource_id}", response_model=ResourceResponse)
async def update_resource(
    resource_id: str,
    payload: ResourceUpdateRequest,
    actor: str = Depends(require_actor),
    service: ResourceService = Depends(get_resource_service),
) -> ResourceResponse:
    try:
        partial = payload.model_dump(mode="json", exclude_unset=True)
        return to_resource_response(service.update(resource_id, partial, actor=actor))
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("update resource", exc) from exc


@router.post("/{resource_id}/maintenance", response_model=ResourceResponse)
async def set_maintenance(
    resource_id: str,
    payload: MaintenanceRequest,
    actor: str = Depends(require_actor),
    service: ResourceService = Depends(get_resource_service),
) -> ResourceResponse:
    try:
        resource = service.set_maintenance(resource_id, actor=actor, reason=payload.reason)
        return to_resource_response(resource)
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("set maintenance", exc) from exc


@router.delete("/{resource_id}/maintenance", response_model=ResourceResponse)
async def clear_maintenance(
    resource_id: str,
    actor: str = Depends(require_actor),
    service: ResourceService = Depends(get_resource_service),
) -> ResourceResponse:
    try:
        return to_resource_response(service.clear_maintenance(resource_id, actor=actor))
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("clear maintenance", exc) from exc


@router.delete("/{resource_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_resource(
    resource_id: str,
    actor: str = Depends(require_actor),
    service: ResourceService = Depends(get_resource_service),
) -> None:
    try:
        service.delete(resource_id, actor=actor)
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("delete resource", exc) from exc


@router.get(
    "/{resource_id}/history",
    response_model=list[HistoryEntryResponse],
    dependencies=[Depends(require_admin)],
)
async def resource_history(
    resource_id: str,
    limit: Optional[int] = Query(default=None, gt=0),
    include_assignments: bool = False,
    service: HistoryService = Depends(get_history_service),
) -> list[HistoryEntryResponse]:
    """Own entries, or merged with the bookings that bound this resource."""
    try:
        if include_assignments:
            entries = service.resource_full_history(resource_id, limit=limit)
        else:
            entries = service.entity_history("resource", resource_id, limit=limit)
        return [to_history_response(entry) for entry in entries]
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("load resource history", exc) from exc
