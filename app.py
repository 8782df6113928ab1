"""
app.py - FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires all services, registers routers, and runs startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from seat_allocator.controllers.admin_controller import router as admin_router
from seat_allocator.controllers.assignment_controller import router as assignment_router
from seat_allocator.controllers.availability_controller import router as availability_router
from seat_allocator.controllers.dependencies import (
    AllocationHTTPException,
    allocation_http_exception_handler,
)
from seat_allocator.controllers.history_controller import router as history_router
from seat_allocator.controllers.resource_controller import router as resource_router
from seat_allocator.repository.data_repository import DataRepository
from seat_allocator.services.analytics_service import AnalyticsService
from seat_allocator.services.assignment_service import AssignmentService
from seat_allocator.services.auth_service import AuthService
from seat_allocator.services.availability_service import AvailabilityService
from seat_allocator.services.collaborators import (
    CredentialRotator,
    LoggingNotificationSink,
    NotificationSink,
    RandomPasswordRotator,
)
from seat_allocator.services.conflict_service import ConflictChecker
from seat_allocator.services.history_service import HistoryService
from seat_allocator.services.maintenance_service import MaintenanceService
from seat_allocator.services.resource_service import ResourceService
from seat_allocator.services.settings_service import SettingsService
from seat_allocator.utils.config import Settings, get_settings
from seat_allocator.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    notification_sink: Optional[NotificationSink] = None,
    rotator: Optional[CredentialRotator] = None,
) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Every service shares one repository and one history ledger, so each
    mutation and its audit entry go through the same store.
    """
    settings = settings or get_settings()
    notification_sink = notification_sink or LoggingNotificationSink()
    rotator = rotator or RandomPasswordRotator(settings.password_length)

    # --- Repository (single SQLite connection factory) ---
    repository = DataRepository(settings)

    # --- Services ---
    history_service = HistoryService(repository=repository, settings=settings)
    resource_service = ResourceService(
        repository=repository,
        history_service=history_service,
        settings=settings,
    )
    assignment_service = AssignmentService(
        repository=repository,
        history_service=history_service,
        conflict_checker=ConflictChecker(repository),
        notification_sink=notification_sink,
        settings=settings,
    )
    availability_service = AvailabilityService(repository=repository, settings=settings)
    settings_service = SettingsService(
        repository=repository,
        history_service=history_service,
        settings=settings,
    )
    maintenance_service = MaintenanceService(
        assignment_service=assignment_service,
        resource_service=resource_service,
        settings_service=settings_service,
        history_service=history_service,
        notification_sink=notification_sink,
        rotator=rotator,
        settings=settings,
    )
    analytics_service = AnalyticsService(repository=repository, settings=settings)
    auth_service = AuthService(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.add_exception_handler(AllocationHTTPException, allocation_http_exception_handler)

    # --- Routers ---
    app.include_router(admin_router)
    app.include_router(resource_router)
    app.include_router(assignment_router)
    app.include_router(availability_router)
    app.include_router(history_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.repository = repository
    app.state.history_service = history_service
    app.state.resource_service = resource_service
    app.state.assignment_service = assignment_service
    app.state.availability_service = availability_service
    app.state.settings_service = settings_service
    app.state.maintenance_service = maintenance_service
    app.state.analytics_service = analytics_service
    app.state.auth_service = auth_service

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    The schema must exist before default settings are written, because
    writing a setting also appends to the History table.
    """
    repository: DataRepository = app.state.repository
    settings_service: SettingsService = app.state.settings_service

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    logger.info("Startup: creating missing default settings")
    settings_service.initialize_defaults()

    logger.info("Startup complete | database=%s", repository.database_path)


# Module-level app object for uvicorn
app = create_app()
