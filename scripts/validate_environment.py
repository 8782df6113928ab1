#!/usr/bin/env python3
"""Validate local seat allocator environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from datetime import date
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from seat_allocator.domain.errors import AllocationError, BookingConflictError
from seat_allocator.domain.models import RequesterInfo
from seat_allocator.repository.data_repository import DataRepository
from seat_allocator.services.assignment_service import AssignmentService
from seat_allocator.services.collaborators import RecordingNotificationSink
from seat_allocator.services.history_service import HistoryService
from seat_allocator.services.resource_service import ResourceService
from seat_allocator.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="seat-allocator-env-")

    # CHECK 1 - Python version >= 3.10
    if sys.version_info >= (3, 10):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.10",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2 - Required packages importable
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("numpy", "numpy"),
        ("pandas", "pandas"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    import_errors: list[str] = []
    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except (ImportError, PackageNotFoundError) as exc:
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    try:
        validation_settings = replace(
            get_settings(),
            database_path=Path(temp_dir) / "seat_allocator_validation.db",
        )
        repository = DataRepository(validation_settings)

        # CHECK 3 - Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except AllocationError as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        history = HistoryService(repository=repository, settings=validation_settings)
        resources = ResourceService(
            repository=repository,
            history_service=history,
            settings=validation_settings,
        )
        assignments = AssignmentService(
            repository=repository,
            history_service=history,
            notification_sink=RecordingNotificationSink(),
            settings=validation_settings,
        )

        # CHECK 4 - Booking round trip with conflict detection
        try:
            resource = resources.create(
                {
                    "account": "validation",
                    "username": "validation",
                    "email": "validation-seat@example.com",
                    "host_key": "000000",
                    "platform_password": "Validation#1",
                    "email_password": "Validation#2",
                    "username_password": "Validation#3",
                }
            )
            requester = RequesterInfo(name="Validation", email="validation@example.com")
            assignments.create(
                requester,
                date(2026, 3, 1),
                date(2026, 3, 10),
                resource_id=resource.resource_id,
            )
            try:
                assignments.create(
                    requester,
                    date(2026, 3, 10),
                    date(2026, 3, 12),
                    resource_id=resource.resource_id,
                )
                raise RuntimeError("overlapping booking was accepted")
            except BookingConflictError:
                pass
            sweep = assignments.sweep_expired(date(2026, 3, 11))
            if sweep.expired_count != 1 or sweep.released_resource_ids != [resource.resource_id]:
                raise RuntimeError(f"unexpected sweep result {sweep}")
            ok, line = _print_result("Booking, conflict and expiry sweep", True)
        except (AllocationError, RuntimeError) as exc:
            ok, line = _print_result("Booking, conflict and expiry sweep", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5 - History ledger populated
        try:
            entries = repository.count_history()
            if entries < 4:
                raise RuntimeError(f"expected at least 4 history entries, got {entries}")
            ok, line = _print_result("History ledger", True, f": {entries} entries")
        except (AllocationError, RuntimeError) as exc:
            ok, line = _print_result("History ledger", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Seat Allocator Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
