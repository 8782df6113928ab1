"""Controller layer for login, scheduled jobs, settings and analytics."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel, Field

from seat_allocator.controllers.dependencies import (
    bearer_scheme,
    get_analytics_service,
    get_auth_service,
    get_maintenance_service,
    get_settings_service,
    require_actor,
    require_admin,
    to_http_exception,
)
from seat_allocator.domain.errors import AllocationError, EntityNotFoundError
from seat_allocator.services.analytics_service import AnalyticsService
from seat_allocator.services.auth_service import (
    AdminTokenNotConfiguredError,
    AuthService,
    InvalidAdminTokenError,
)
from seat_allocator.services.maintenance_service import MaintenanceService
from seat_allocator.services.settings_service import SettingsService
from seat_allocator.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["admin"])

SettingValue = Union[bool, int, float, str, None]


class LoginRequest(BaseModel):
    admin_token: str = Field(min_length=1)
    actor: Optional[str] = None


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class SweepRequest(BaseModel):
    as_of: Optional[date] = None
    auto_rotate: Optional[bool] = None


class SweepResponse(BaseModel):
    expired_count: int
    expired_assignment_ids: list[str]
    released_resource_ids: list[str]
    rotated_resource_ids: list[str]
    rotation_failures: dict[str, str]


class WarningRequest(BaseModel):
    as_of: Optional[date] = None
    days: Optional[int] = Field(default=None, ge=0)


class WarningResponse(BaseModel):
    assignment_id: str
    requester_email: str
    resource_email: Optional[str]
    end_date: date
    days_remaining: int


class CleanupRequest(BaseModel):
    retention_days: Optional[int] = Field(default=None, ge=0)


class CleanupResponse(BaseModel):
    deleted: int


class SettingRequest(BaseModel):
    value: SettingValue
    description: str = ""


class SettingResponse(BaseModel):
    key: str
    value: SettingValue
    description: str
    updated_at: datetime
    updated_by: str


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _unexpected(action: str, exc: Exception) -> HTTPException:
    logger.exception("Unexpected admin failure | action=%s", action)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )


@router.post("/login", response_model=LoginResponse, status_code=status.HTTP_200_OK)
async def login(
    payload: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    try:
        bearer = auth_service.login(payload.admin_token, actor=payload.actor)
        return LoginResponse(access_token=bearer)
    except (AdminTokenNotConfiguredError, InvalidAdminTokenError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("login", exc) from exc


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> None:
    if credentials is not None:
        auth_service.logout(credentials.credentials)


@router.post("/maintenance/sweep", response_model=SweepResponse)
async def run_sweep(
    payload: SweepRequest,
    actor: str = Depends(require_actor),
    service: MaintenanceService = Depends(get_maintenance_service),
) -> SweepResponse:
    """Entry point an external scheduler calls once a day."""
    try:
        report = service.run_expiry_sweep(
            payload.as_of or _today(),
            auto_rotate=payload.auto_rotate,
            actor=actor,
        )
        return SweepResponse(
            expired_count=report.sweep.expired_count,
            expired_assignment_ids=report.sweep.expired_assignment_ids,
            released_resource_ids=report.sweep.released_resource_ids,
            rotated_resource_ids=report.rotated_resource_ids,
            rotation_failures=report.rotation_failures,
        )
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("run expiry sweep", exc) from exc


@router.post(
    "/maintenance/expiration-warnings",
    response_model=list[WarningResponse],
    dependencies=[Depends(require_admin)],
)
async def send_expiration_warnings(
    payload: WarningRequest,
    service: MaintenanceService = Depends(get_maintenance_service),
) -> list[WarningResponse]:
    try:
        notices = service.send_expiration_warnings(payload.as_of or _today(), days=payload.days)
        return [
            WarningResponse(
                assignment_id=notice.assignment_id,
                requester_email=notice.requester_email,
                resource_email=notice.resource_email,
                end_date=notice.end_date,
                days_remaining=notice.days_remaining,
            )
            for notice in notices
        ]
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("send expiration warnings", exc) from exc


@router.post(
    "/maintenance/history-cleanup",
    response_model=CleanupResponse,
    dependencies=[Depends(require_admin)],
)
async def cleanup_history(
    payload: CleanupRequest,
    service: MaintenanceService = Depends(get_maintenance_service),
) -> CleanupResponse:
    try:
        return CleanupResponse(deleted=service.cleanup_history(payload.retention_days))
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("clean up history", exc) from exc


@router.get(
    "/settings",
    response_model=list[SettingResponse],
    dependencies=[Depends(require_admin)],
)
async def list_settings(
    service: SettingsService = Depends(get_settings_service),
) -> list[SettingResponse]:
    try:
        return [
            SettingResponse(
                key=setting.key,
                value=setting.value,
                description=setting.description,
                updated_at=setting.updated_at,
                updated_by=setting.updated_by,
            )
            for setting in service.list()
        ]
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("list settings", exc) from exc


@router.put("/settings/{key}", response_model=SettingResponse)
async def put_setting(
    key: str,
    payload: SettingRequest,
    actor: str = Depends(require_actor),
    service: SettingsService = Depends(get_settings_service),
) -> SettingResponse:
    try:
        setting = service.set(key, payload.value, payload.description, actor=actor)
        return SettingResponse(
            key=setting.key,
            value=setting.value,
            description=setting.description,
            updated_at=setting.updated_at,
            updated_by=setting.updated_by,
        )
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("save setting", exc) from exc


@router.delete("/settings/{key}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_setting(
    key: str,
    actor: str = Depends(require_actor),
    service: SettingsService = Depends(get_settings_service),
) -> None:
    try:
        deleted = service.delete(key, actor=actor)
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("delete setting", exc) from exc
    if not deleted:
        raise to_http_exception(EntityNotFoundError("setting", key))


@router.get("/analytics/overview", dependencies=[Depends(require_admin)])
async def analytics_overview(
    as_of: Optional[date] = None,
    service: AnalyticsService = Depends(get_analytics_service),
) -> dict[str, Any]:
    try:
        return service.overview(as_of or _today())
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("compute overview", exc) from exc


@router.get("/analytics/resources", dependencies=[Depends(require_admin)])
async def analytics_resources(
    limit: int = Query(default=10, gt=0),
    service: AnalyticsService = Depends(get_analytics_service),
) -> list[dict[str, Any]]:
    try:
        return service.resource_metrics(limit)
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("compute resource metrics", exc) from exc


@router.get("/analytics/requesters", dependencies=[Depends(require_admin)])
async def analytics_requesters(
    limit: int = Query(default=10, gt=0),
    service: AnalyticsService = Depends(get_analytics_service),
) -> list[dict[str, Any]]:
    try:
        return service.requester_metrics(limit)
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("compute requester metrics", exc) from exc


@router.get("/analytics/trends", dependencies=[Depends(require_admin)])
async def analytics_trends(
    days: int = Query(default=30, gt=0, le=366),
    as_of: Optional[date] = None,
    service: AnalyticsService = Depends(get_analytics_service),
) -> list[dict[str, Any]]:
    try:
        return service.trends(days, as_of or _today())
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("compute trends", exc) from exc
