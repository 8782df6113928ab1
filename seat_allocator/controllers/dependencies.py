"""Shared FastAPI dependency providers and error mapping for the controller layer."""

from __future__ import annotations

from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from seat_allocator.domain.errors import (
    AllocationError,
    AttributeValidationError,
    BookingConflictError,
    DuplicateIdentityError,
    EntityNotFoundError,
    InvalidDateRangeError,
    PersistenceError,
    StatusTransitionError,
)
from seat_allocator.services.analytics_service import AnalyticsService
from seat_allocator.services.assignment_service import AssignmentService
from seat_allocator.services.auth_service import (
    AdminTokenNotConfiguredError,
    AuthService,
    InvalidAdminTokenError,
)
from seat_allocator.services.availability_service import AvailabilityService
from seat_allocator.services.history_service import HistoryService
from seat_allocator.services.maintenance_service import MaintenanceService
from seat_allocator.services.resource_service import ResourceService
from seat_allocator.services.settings_service import SettingsService
from seat_allocator.utils.config import get_settings


bearer_scheme = HTTPBearer(auto_error=False)

_STATUS_BY_ERROR: tuple[tuple[type[AllocationError], int], ...] = (
    (EntityNotFoundError, status.HTTP_404_NOT_FOUND),
    (DuplicateIdentityError, status.HTTP_409_CONFLICT),
    (BookingConflictError, status.HTTP_409_CONFLICT),
    (InvalidDateRangeError, status.HTTP_400_BAD_REQUEST),
    (AttributeValidationError, status.HTTP_400_BAD_REQUEST),
    (StatusTransitionError, 422),
    (PersistenceError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


class AllocationHTTPException(HTTPException):
    """HTTPException that also carries the stable domain error code."""

    def __init__(self, status_code: int, detail: str, error_code: str) -> None:
        super().__init__(status_code=status_code, detail=detail)
        self.error_code = error_code


def to_http_exception(exc: AllocationError) -> AllocationHTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            break
    else:
        status_code = status.HTTP_400_BAD_REQUEST
    return AllocationHTTPException(
        status_code=status_code,
        detail=str(exc),
        error_code=exc.error_code,
    )


async def allocation_http_exception_handler(
    request: Request,
    exc: AllocationHTTPException,
) -> JSONResponse:
    del request
    content: dict[str, Any] = {"detail": exc.detail, "error_code": exc.error_code}
    return JSONResponse(status_code=exc.status_code, content=content)


def _state_service(request: Request, attribute: str, label: str) -> Any:
    service = getattr(request.app.state, attribute, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} service is not initialized",
        )
    return service


def get_auth_service(request: Request) -> AuthService:
    service = getattr(request.app.state, "auth_service", None)
    if service is None:
        service = AuthService(settings=get_settings())
        request.app.state.auth_service = service
    return service


def get_resource_service(request: Request) -> ResourceService:
    return _state_service(request, "resource_service", "Resource")


def get_assignment_service(request: Request) -> AssignmentService:
    return _state_service(request, "assignment_service", "Assignment")


def get_availability_service(request: Request) -> AvailabilityService:
    return _state_service(request, "availability_service", "Availability")


def get_history_service(request: Request) -> HistoryService:
    return _state_service(request, "history_service", "History")


def get_settings_service(request: Request) -> SettingsService:
    return _state_service(request, "settings_service", "Settings")


def get_maintenance_service(request: Request) -> MaintenanceService:
    return _state_service(request, "maintenance_service", "Maintenance")


def get_analytics_service(request: Request) -> AnalyticsService:
    return _state_service(request, "analytics_service", "Analytics")


async def require_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> str:
    """Authenticate the caller and return the actor name for history entries."""
    if not auth_service.auth_enabled:
        return auth_service.resolve_actor(None)
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header with Bearer token is required",
        )
    try:
        return auth_service.resolve_actor(credentials.credentials)
    except (AdminTokenNotConfiguredError, InvalidAdminTokenError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc


async def require_admin(actor: str = Depends(require_actor)) -> None:
    del actor
