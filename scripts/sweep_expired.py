#!/usr/bin/env python3
"""One-shot expiry sweep for an external scheduler (cron, systemd timer).

Example crontab line, matching the default rotation time:

    0 1 * * * cd /srv/seat-allocator && python scripts/sweep_expired.py --warnings
"""

from __future__ import annotations

import argparse
import sys
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from seat_allocator.domain.errors import AllocationError
from seat_allocator.repository.data_repository import DataRepository
from seat_allocator.services.assignment_service import AssignmentService
from seat_allocator.services.collaborators import LoggingNotificationSink, RandomPasswordRotator
from seat_allocator.services.history_service import HistoryService
from seat_allocator.services.maintenance_service import MaintenanceService
from seat_allocator.services.resource_service import ResourceService
from seat_allocator.services.settings_service import SettingsService
from seat_allocator.utils.config import get_settings
from seat_allocator.utils.logger import get_logger


logger = get_logger("seat_allocator.scripts.sweep_expired")


def _parse_args(argv: Optional[list[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--as-of",
        type=date.fromisoformat,
        default=None,
        help="Reference day (YYYY-MM-DD); defaults to today in UTC",
    )
    rotation = parser.add_mutually_exclusive_group()
    rotation.add_argument("--rotate", dest="auto_rotate", action="store_true", default=None)
    rotation.add_argument("--no-rotate", dest="auto_rotate", action="store_false")
    parser.add_argument(
        "--warnings",
        action="store_true",
        help="Also send expiration warnings after the sweep",
    )
    parser.add_argument(
        "--cleanup-history",
        action="store_true",
        help="Also delete history older than the configured retention",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(argv)
    settings = get_settings()
    as_of = args.as_of or datetime.now(timezone.utc).date()

    repository = DataRepository(settings)
    repository.initialize_database()
    history = HistoryService(repository=repository, settings=settings)
    sink = LoggingNotificationSink()
    resources = ResourceService(repository=repository, history_service=history, settings=settings)
    maintenance = MaintenanceService(
        assignment_service=AssignmentService(
            repository=repository,
            history_service=history,
            notification_sink=sink,
            settings=settings,
        ),
        resource_service=resources,
        settings_service=SettingsService(
            repository=repository,
            history_service=history,
            settings=settings,
        ),
        history_service=history,
        notification_sink=sink,
        rotator=RandomPasswordRotator(settings.password_length),
        settings=settings,
    )

    try:
        report = maintenance.run_expiry_sweep(as_of, auto_rotate=args.auto_rotate)
        if args.warnings:
            maintenance.send_expiration_warnings(as_of)
        if args.cleanup_history:
            maintenance.cleanup_history()
    except AllocationError:
        logger.exception("Scheduled maintenance failed | as_of=%s", as_of.isoformat())
        return 1

    print(
        f"expired={report.sweep.expired_count} "
        f"released={len(report.sweep.released_resource_ids)} "
        f"rotated={len(report.rotated_resource_ids)} "
        f"rotation_failures={len(report.rotation_failures)}"
    )
    return 0 if not report.rotation_failures else 2


if __name__ == "__main__":
    raise SystemExit(main())
