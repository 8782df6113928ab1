"""Field-level change values recorded in the history ledger.

Change values are limited to a small tagged union: ``str``, ``int``,
``float``, ``bool``, ``date``, ``None`` and the ``ABSENT`` marker for a field
that did not exist on one side of the comparison. Identity references (any
object carrying a ``resource_id`` or ``assignment_id``) collapse to the plain
id string before they are stored or compared.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable, Union


class _Absent:
    """Marker for a field missing from a record, distinct from ``None``."""

    _instance: "_Absent | None" = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT = _Absent()

HistoryValue = Union[str, int, float, bool, date, None, _Absent]

_IDENTITY_ATTRIBUTES = ("resource_id", "assignment_id")


def normalize_value(value: Any) -> HistoryValue:
    """Reduce an arbitrary attribute value to a member of the tagged union."""
    if value is ABSENT or value is None:
        return value
    if isinstance(value, Enum):
        return normalize_value(value.value)
    if isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    for attribute in _IDENTITY_ATTRIBUTES:
        identity = getattr(value, attribute, None)
        if identity is not None:
            return str(identity)
    raise TypeError(f"Unsupported history value type: {type(value).__name__}")


def encode_value(value: Any) -> dict[str, Any]:
    normalized = normalize_value(value)
    if normalized is ABSENT:
        return {"t": "absent"}
    if normalized is None:
        return {"t": "null"}
    if isinstance(normalized, bool):
        return {"t": "bool", "v": normalized}
    if isinstance(normalized, int):
        return {"t": "int", "v": normalized}
    if isinstance(normalized, float):
        return {"t": "float", "v": normalized}
    if isinstance(normalized, date):
        return {"t": "date", "v": normalized.isoformat()}
    return {"t": "str", "v": normalized}


def decode_value(payload: Mapping[str, Any]) -> HistoryValue:
    tag = payload.get("t")
    if tag == "absent":
        return ABSENT
    if tag == "null":
        return None
    if tag == "date":
        return date.fromisoformat(str(payload["v"]))
    if tag in {"bool", "int", "float", "str"}:
        return payload["v"]
    raise ValueError(f"Unknown history value tag: {tag!r}")


def stable_repr(value: Any) -> str:
    return json.dumps(encode_value(value), sort_keys=True)


def _is_empty(value: HistoryValue) -> bool:
    return value is ABSENT or value is None or value == ""


@dataclass(frozen=True)
class HistoryChange:
    field: str
    old_value: HistoryValue = ABSENT
    new_value: HistoryValue = ABSENT

    @classmethod
    def of(cls, field: str, old_value: Any = ABSENT, new_value: Any = ABSENT) -> "HistoryChange":
        return cls(
            field=field,
            old_value=normalize_value(old_value),
            new_value=normalize_value(new_value),
        )

    def is_meaningful(self) -> bool:
        return not (_is_empty(self.old_value) and _is_empty(self.new_value))

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "old_value": encode_value(self.old_value),
            "new_value": encode_value(self.new_value),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "HistoryChange":
        return cls(
            field=str(payload["field"]),
            old_value=decode_value(payload.get("old_value", {"t": "absent"})),
            new_value=decode_value(payload.get("new_value", {"t": "absent"})),
        )


def _read_field(record: Any, field: str) -> Any:
    if record is None:
        return ABSENT
    if isinstance(record, Mapping):
        return record.get(field, ABSENT)
    return getattr(record, field, ABSENT)


def diff_records(old: Any, new: Any, tracked_fields: Iterable[str]) -> list[HistoryChange]:
    """Return one change per tracked field whose serialized value differs."""
    changes: list[HistoryChange] = []
    for field in tracked_fields:
        old_value = normalize_value(_read_field(old, field))
        new_value = normalize_value(_read_field(new, field))
        if stable_repr(old_value) != stable_repr(new_value):
            changes.append(HistoryChange(field=field, old_value=old_value, new_value=new_value))
    return changes


def serialize_changes(changes: Iterable[HistoryChange]) -> str:
    return json.dumps([change.to_dict() for change in changes], sort_keys=True)


def deserialize_changes(raw: str) -> tuple[HistoryChange, ...]:
    return tuple(HistoryChange.from_dict(item) for item in json.loads(raw or "[]"))
