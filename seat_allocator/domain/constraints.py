"""Domain-level validation rules for resources and requesters."""

from __future__ import annotations

import re
from typing import Any, Mapping

from seat_allocator.domain.errors import AttributeValidationError
from seat_allocator.domain.models import RequesterInfo


EMAIL_PATTERN = re.compile(r"^\S+@\S+\.\S+$")

RESOURCE_REQUIRED_FIELDS = (
    "account",
    "username",
    "email",
    "host_key",
    "platform_password",
    "email_password",
    "username_password",
)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def validate_email(email: str, field_name: str = "email") -> str:
    normalized = normalize_email(email)
    if not EMAIL_PATTERN.match(normalized):
        raise AttributeValidationError(f"{field_name} must be a valid email address")
    return normalized


def validate_requester(requester: RequesterInfo) -> RequesterInfo:
    if not requester.name.strip():
        raise AttributeValidationError("requester name must be non-empty")
    return RequesterInfo(
        name=requester.name.strip(),
        email=validate_email(requester.email, "requester email"),
        area=requester.area.strip(),
        region=requester.region.strip(),
        usage_type=requester.usage_type.strip(),
    )


def validate_resource_attributes(attributes: Mapping[str, Any], *, partial: bool) -> dict[str, Any]:
    """Return cleaned attributes; ``partial`` skips required-field checks."""
    cleaned: dict[str, Any] = {}
    for key, value in attributes.items():
        if isinstance(value, str) and key not in ("notes",):
            value = value.strip()
        cleaned[key] = value

    if not partial:
        missing = [name for name in RESOURCE_REQUIRED_FIELDS if not cleaned.get(name)]
        if missing:
            raise AttributeValidationError(
                "missing required resource fields: " + ", ".join(missing)
            )
    else:
        blank = [
            name
            for name in RESOURCE_REQUIRED_FIELDS
            if name in cleaned and not cleaned[name]
        ]
        if blank:
            raise AttributeValidationError(
                "resource fields cannot be blank: " + ", ".join(blank)
            )

    if "email" in cleaned and cleaned["email"] is not None:
        cleaned["email"] = validate_email(str(cleaned["email"]))
    return cleaned
