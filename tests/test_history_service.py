from __future__ import annotations

from datetime import date, timedelta

import pytest

from seat_allocator.domain.changes import ABSENT, HistoryChange
from seat_allocator.domain.errors import AttributeValidationError
from seat_allocator.domain.models import (
    EntityType,
    HistoryAction,
    HistoryMetadata,
    RequesterInfo,
)


def _requester(name: str = "Ana Ruiz") -> RequesterInfo:
    return RequesterInfo(name=name, email=f"{name.split()[0].lower()}@corp.example.com")


def test_record_persists_and_defaults_actor_to_system(stack) -> None:
    entry = stack.history.record(
        EntityType.SETTING,
        "notify_on_expiration",
        HistoryAction.UPDATE,
        changes=[HistoryChange.of("value", True, False)],
    )

    assert entry.persisted
    assert entry.actor == stack.settings.system_actor
    assert stack.repository.count_history() == 1


def test_record_skips_entries_without_meaningful_changes(stack) -> None:
    entry = stack.history.record(
        EntityType.RESOURCE,
        "res-1",
        HistoryAction.UPDATE,
        actor="admin",
        changes=[HistoryChange.of("notes", ABSENT, None), HistoryChange.of("notes", None, "")],
    )

    assert not entry.persisted
    assert stack.repository.count_history() == 0


def test_round_trip_keeps_changes_and_metadata(stack) -> None:
    stack.history.record(
        EntityType.ASSIGNMENT,
        "asg-1",
        HistoryAction.STATUS_CHANGE,
        actor="ops",
        changes=[HistoryChange.of("status", "active", "cancelled")],
        metadata=HistoryMetadata(assignment_name="Ana Ruiz", reason="Left the project"),
    )

    [stored] = stack.history.entity_history(EntityType.ASSIGNMENT, "asg-1")
    assert stored.actor == "ops"
    assert stored.changes == (HistoryChange("status", "active", "cancelled"),)
    assert stored.metadata == HistoryMetadata(assignment_name="Ana Ruiz", reason="Left the project")


def test_entity_history_is_newest_first(stack, make_resource) -> None:
    resource = make_resource()
    stack.resources.update(resource.resource_id, {"notes": "first"}, actor="admin")
    stack.resources.update(resource.resource_id, {"notes": "second"}, actor="admin")

    entries = stack.history.entity_history(EntityType.RESOURCE, resource.resource_id)

    assert [entry.action for entry in entries] == [
        HistoryAction.UPDATE,
        HistoryAction.UPDATE,
        HistoryAction.CREATE,
    ]
    assert entries[0].changes[0].new_value == "second"
    assert entries[0].timestamp > entries[1].timestamp > entries[2].timestamp


def test_recent_history_filters(stack, make_resource) -> None:
    resource = make_resource()
    stack.resources.set_maintenance(resource.resource_id, actor="ops", reason="License audit")

    by_action = stack.history.recent_history(action=HistoryAction.STATUS_CHANGE)
    by_actor = stack.history.recent_history(actor="admin")
    by_type = stack.history.recent_history(entity_type=EntityType.ASSIGNMENT)

    assert [entry.actor for entry in by_action] == ["ops"]
    assert by_action[0].metadata.reason == "License audit"
    assert [entry.action for entry in by_actor] == [HistoryAction.CREATE]
    assert by_type == []


def test_recent_history_time_window(stack, make_resource) -> None:
    make_resource()
    stack.clock.jump(timedelta(days=3))
    midpoint = stack.clock.current
    stack.clock.jump(timedelta(days=3))
    make_resource()

    after = stack.history.recent_history(start=midpoint)
    before = stack.history.recent_history(end=midpoint)

    assert len(after) == 1
    assert len(before) == 1
    assert after[0].entity_id != before[0].entity_id


def test_recent_history_rejects_reversed_window(stack) -> None:
    now = stack.clock.current
    with pytest.raises(AttributeValidationError):
        stack.history.recent_history(start=now, end=now - timedelta(seconds=1))


def test_limit_must_be_positive(stack) -> None:
    with pytest.raises(AttributeValidationError):
        stack.history.recent_history(limit=0)


def test_limit_bounds_results(stack, make_resource) -> None:
    for _ in range(4):
        make_resource()
    assert len(stack.history.recent_history(limit=2)) == 2


def test_cleanup_removes_only_old_entries(stack, make_resource) -> None:
    make_resource()
    make_resource()
    stack.clock.jump(timedelta(days=40))
    make_resource()

    deleted = stack.history.cleanup(retention_days=30, now=stack.clock.current)

    assert deleted == 2
    assert stack.repository.count_history() == 1


def test_cleanup_rejects_negative_retention(stack) -> None:
    with pytest.raises(AttributeValidationError):
        stack.history.cleanup(retention_days=-1)


def test_resource_full_history_includes_bookings(stack, make_resource) -> None:
    seat = make_resource()
    other = make_resource()
    booking = stack.assignments.create(
        _requester(),
        date(2026, 3, 1),
        date(2026, 3, 5),
        resource_id=seat.resource_id,
        actor="admin",
    )
    stack.assignments.create(
        _requester("Bo Chen"),
        date(2026, 3, 1),
        date(2026, 3, 5),
        resource_id=other.resource_id,
        actor="admin",
    )

    entries = stack.history.resource_full_history(seat.resource_id)

    entity_ids = {entry.entity_id for entry in entries}
    assert entity_ids == {seat.resource_id, booking.assignment_id}
    assert entries[0].timestamp >= entries[-1].timestamp
    assert any(
        entry.entity_type is EntityType.ASSIGNMENT and entry.action is HistoryAction.ASSIGN
        for entry in entries
    )
