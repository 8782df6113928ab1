from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from itertools import count
from typing import Any, Callable

import pytest
from fastapi.testclient import TestClient

from app import create_app
from seat_allocator.domain.models import Resource
from seat_allocator.repository.data_repository import DataRepository
from seat_allocator.services.analytics_service import AnalyticsService
from seat_allocator.services.assignment_service import AssignmentService
from seat_allocator.services.availability_service import AvailabilityService
from seat_allocator.services.collaborators import RecordingNotificationSink
from seat_allocator.services.conflict_service import ConflictChecker
from seat_allocator.services.history_service import HistoryService
from seat_allocator.services.maintenance_service import MaintenanceService
from seat_allocator.services.resource_service import ResourceService
from seat_allocator.services.settings_service import SettingsService
from seat_allocator.utils.config import Settings, get_settings


class StepClock:
    """Deterministic clock; every call advances by one millisecond."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + timedelta(milliseconds=1)
        return value

    def jump(self, delta: timedelta) -> None:
        self.current = self.current + delta


class SequenceRotator:
    def __init__(self) -> None:
        self._counter = count(1)
        self.rotated: list[str] = []

    def rotate(self, resource: Resource) -> str:
        self.rotated.append(resource.resource_id)
        return f"Rotated#{next(self._counter):04d}"


@dataclass
class ServiceStack:
    settings: Settings
    repository: DataRepository
    clock: StepClock
    history: HistoryService
    resources: ResourceService
    assignments: AssignmentService
    availability: AvailabilityService
    settings_store: SettingsService
    maintenance: MaintenanceService
    analytics: AnalyticsService
    sink: RecordingNotificationSink
    rotator: SequenceRotator


def build_test_settings(tmp_path, filename: str = "seat_allocator.db", **overrides: Any) -> Settings:
    get_settings.cache_clear()
    base = get_settings()
    values: dict[str, Any] = {
        "database_path": tmp_path / filename,
        "admin_token": None,
        "auto_rotation_enabled": False,
    }
    values.update(overrides)
    return replace(base, **values)


def build_stack(settings: Settings) -> ServiceStack:
    repository = DataRepository(settings)
    repository.initialize_database()
    clock = StepClock(datetime(2026, 1, 1, 8, 0, tzinfo=timezone.utc))
    history = HistoryService(repository=repository, settings=settings, clock=clock)
    sink = RecordingNotificationSink()
    rotator = SequenceRotator()
    resources = ResourceService(repository=repository, history_service=history, settings=settings)
    assignments = AssignmentService(
        repository=repository,
        history_service=history,
        conflict_checker=ConflictChecker(repository),
        notification_sink=sink,
        settings=settings,
    )
    settings_store = SettingsService(
        repository=repository,
        history_service=history,
        settings=settings,
    )
    maintenance = MaintenanceService(
        assignment_service=assignments,
        resource_service=resources,
        settings_service=settings_store,
        history_service=history,
        notification_sink=sink,
        rotator=rotator,
        settings=settings,
    )
    return ServiceStack(
        settings=settings,
        repository=repository,
        clock=clock,
        history=history,
        resources=resources,
        assignments=assignments,
        availability=AvailabilityService(repository=repository, settings=settings),
        settings_store=settings_store,
        maintenance=maintenance,
        analytics=AnalyticsService(repository=repository, settings=settings),
        sink=sink,
        rotator=rotator,
    )


@pytest.fixture
def stack(tmp_path) -> ServiceStack:
    return build_stack(build_test_settings(tmp_path))


def resource_attributes(email: str, **overrides: Any) -> dict[str, Any]:
    attributes = {
        "account": "zoom-main",
        "username": email.split("@")[0],
        "email": email,
        "host_key": "123456",
        "platform_password": "Platform#1",
        "email_password": "Mailbox#1",
        "username_password": "Username#1",
    }
    attributes.update(overrides)
    return attributes


@pytest.fixture
def make_resource(stack: ServiceStack) -> Callable[..., Resource]:
    counter = count(1)

    def _make(email: str | None = None, **overrides: Any) -> Resource:
        resolved = email or f"seat{next(counter)}@example.com"
        return stack.resources.create(resource_attributes(resolved, **overrides), actor="admin")

    return _make


def _api_client(settings: Settings):
    app = create_app(
        settings=settings,
        notification_sink=RecordingNotificationSink(),
        rotator=SequenceRotator(),
    )
    with TestClient(app) as client:
        yield client


@pytest.fixture
def client(tmp_path):
    yield from _api_client(build_test_settings(tmp_path, "api.db"))


@pytest.fixture
def secured_client(tmp_path):
    yield from _api_client(build_test_settings(tmp_path, "api.db", admin_token="s3cret-token"))
