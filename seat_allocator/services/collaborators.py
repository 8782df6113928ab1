"""Interfaces to external collaborators plus in-process defaults.

The engine only decides *when* to notify or rotate and builds complete
payloads; delivering mail and talking to the conferencing provider's API
happen outside this package.
"""

from __future__ import annotations

import secrets
import string
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Protocol

from seat_allocator.domain.models import Assignment, Resource
from seat_allocator.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class AssignmentNotice:
    requester_name: str
    requester_email: str
    resource_email: str | None
    start_date: date
    end_date: date
    usage_type: str
    assignment_id: str

    @classmethod
    def build(cls, assignment: Assignment, resource: Resource | None) -> "AssignmentNotice":
        return cls(
            requester_name=assignment.requester_name,
            requester_email=assignment.requester_email,
            resource_email=resource.email if resource is not None else None,
            start_date=assignment.start_date,
            end_date=assignment.end_date,
            usage_type=assignment.usage_type,
            assignment_id=assignment.assignment_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ExpirationNotice:
    requester_name: str
    requester_email: str
    resource_email: str | None
    end_date: date
    days_remaining: int
    assignment_id: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CredentialNotice:
    resource_id: str
    resource_email: str
    new_password: str
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class NotificationSink(Protocol):
    def assignment_confirmed(self, notice: AssignmentNotice) -> None: ...

    def pending_request(self, notice: AssignmentNotice) -> None: ...

    def expiration_warning(self, notice: ExpirationNotice) -> None: ...

    def credential_changed(self, notice: CredentialNotice) -> None: ...


class CredentialRotator(Protocol):
    def rotate(self, resource: Resource) -> str:
        """Produce and apply a new platform secret; return it."""
        ...


class LoggingNotificationSink:
    """Default sink: writes one log line per notification, never the secret."""

    def assignment_confirmed(self, notice: AssignmentNotice) -> None:
        logger.info(
            "Notify assignment confirmed | requester=%s | resource=%s | range=%s..%s",
            notice.requester_email,
            notice.resource_email,
            notice.start_date.isoformat(),
            notice.end_date.isoformat(),
        )

    def pending_request(self, notice: AssignmentNotice) -> None:
        logger.info(
            "Notify pending request | requester=%s | range=%s..%s",
            notice.requester_email,
            notice.start_date.isoformat(),
            notice.end_date.isoformat(),
        )

    def expiration_warning(self, notice: ExpirationNotice) -> None:
        logger.info(
            "Notify expiration warning | requester=%s | resource=%s | days_remaining=%s",
            notice.requester_email,
            notice.resource_email,
            notice.days_remaining,
        )

    def credential_changed(self, notice: CredentialNotice) -> None:
        logger.info(
            "Notify credential changed | resource=%s | reason=%s",
            notice.resource_email,
            notice.reason,
        )


@dataclass
class RecordingNotificationSink:
    """Collects payloads in memory; handy for tests and dry runs."""

    confirmations: list[AssignmentNotice] = field(default_factory=list)
    pending: list[AssignmentNotice] = field(default_factory=list)
    warnings: list[ExpirationNotice] = field(default_factory=list)
    credential_changes: list[CredentialNotice] = field(default_factory=list)

    def assignment_confirmed(self, notice: AssignmentNotice) -> None:
        self.confirmations.append(notice)

    def pending_request(self, notice: AssignmentNotice) -> None:
        self.pending.append(notice)

    def expiration_warning(self, notice: ExpirationNotice) -> None:
        self.warnings.append(notice)

    def credential_changed(self, notice: CredentialNotice) -> None:
        self.credential_changes.append(notice)


def generate_secure_password(length: int = 12) -> str:
    """Random password with at least one lower, upper, digit and special char."""
    if length < 8:
        raise ValueError("password length must be >= 8")
    special = "!@#$%^&*"
    pools = (string.ascii_lowercase, string.ascii_uppercase, string.digits, special)
    alphabet = "".join(pools)
    characters = [secrets.choice(pool) for pool in pools]
    characters.extend(secrets.choice(alphabet) for _ in range(length - len(pools)))
    secrets.SystemRandom().shuffle(characters)
    return "".join(characters)


class RandomPasswordRotator:
    """Generates a fresh password locally; applying it upstream is out of scope."""

    def __init__(self, length: int = 12) -> None:
        self._length = length

    def rotate(self, resource: Resource) -> str:
        del resource
        return generate_secure_password(self._length)
