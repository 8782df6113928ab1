from __future__ import annotations

from datetime import date

import pytest

from seat_allocator.domain.changes import ABSENT
from seat_allocator.domain.errors import (
    AttributeValidationError,
    BookingConflictError,
    EntityNotFoundError,
    InvalidDateRangeError,
    PersistenceError,
    StatusTransitionError,
)
from seat_allocator.domain.models import (
    AssignmentStatus,
    EntityType,
    HistoryAction,
    RequesterInfo,
    ResourceStatus,
)
from seat_allocator.services.assignment_service import AssignmentService


def requester(name: str = "Ana Ruiz", email: str | None = None, **extra) -> RequesterInfo:
    resolved = email or f"{name.split()[0].lower()}@corp.example.com"
    return RequesterInfo(name=name, email=resolved, **extra)


def status_of(stack, resource_id: str) -> ResourceStatus:
    return stack.resources.find_by_id(resource_id).status


def actions_for(stack, assignment_id: str) -> list[HistoryAction]:
    return [
        entry.action
        for entry in stack.history.entity_history(EntityType.ASSIGNMENT, assignment_id)
    ]


class ExplodingSink:
    def assignment_confirmed(self, notice) -> None:
        raise RuntimeError("mail relay down")

    def pending_request(self, notice) -> None:
        raise RuntimeError("mail relay down")


# ----------------------------------------------------------------------
# create
# ----------------------------------------------------------------------


def test_booking_lifecycle_with_adjacent_ranges(stack, make_resource) -> None:
    seat = make_resource()

    first = stack.assignments.create(
        requester(), date(2024, 3, 1), date(2024, 3, 10), resource_id=seat.resource_id
    )
    assert first.status is AssignmentStatus.ACTIVE
    assert status_of(stack, seat.resource_id) is ResourceStatus.OCCUPIED

    with pytest.raises(BookingConflictError) as excinfo:
        stack.assignments.create(
            requester("Bo Chen"), date(2024, 3, 5), date(2024, 3, 15), resource_id=seat.resource_id
        )
    assert excinfo.value.conflicting_ids == (first.assignment_id,)

    adjacent = stack.assignments.create(
        requester("Bo Chen"), date(2024, 3, 11), date(2024, 3, 20), resource_id=seat.resource_id
    )
    assert adjacent.status is AssignmentStatus.ACTIVE

    stack.assignments.cancel(first.assignment_id)
    assert status_of(stack, seat.resource_id) is ResourceStatus.OCCUPIED

    stack.assignments.cancel(adjacent.assignment_id)
    assert status_of(stack, seat.resource_id) is ResourceStatus.FREE


def test_shared_boundary_day_is_a_conflict(stack, make_resource) -> None:
    seat = make_resource()
    stack.assignments.create(
        requester(), date(2026, 3, 1), date(2026, 3, 10), resource_id=seat.resource_id
    )
    with pytest.raises(BookingConflictError):
        stack.assignments.create(
            requester("Bo Chen"), date(2026, 3, 10), date(2026, 3, 12), resource_id=seat.resource_id
        )


def test_conflicting_create_leaves_no_trace(stack, make_resource) -> None:
    seat = make_resource()
    stack.assignments.create(
        requester(), date(2026, 3, 1), date(2026, 3, 10), resource_id=seat.resource_id
    )
    history_before = stack.repository.count_history()
    confirmations_before = len(stack.sink.confirmations)

    with pytest.raises(BookingConflictError):
        stack.assignments.create(
            requester("Bo Chen"), date(2026, 3, 2), date(2026, 3, 3), resource_id=seat.resource_id
        )

    assert len(stack.assignments.list_assignments()) == 1
    assert status_of(stack, seat.resource_id) is ResourceStatus.OCCUPIED
    assert stack.repository.count_history() == history_before
    assert len(stack.sink.confirmations) == confirmations_before


def test_create_with_resource_records_assign_and_flip(stack, make_resource) -> None:
    seat = make_resource()

    booking = stack.assignments.create(
        requester(area="Sales", region="EMEA", usage_type="webinar"),
        "2026-03-01",
        "2026-03-03",
        resource_id=seat.resource_id,
        actor="admin",
    )

    [entry] = stack.history.entity_history(EntityType.ASSIGNMENT, booking.assignment_id)
    assert entry.action is HistoryAction.ASSIGN
    assert entry.actor == "admin"
    assert entry.metadata.resource_email == seat.email
    fields = {change.field: change for change in entry.changes}
    assert fields["resource_id"].old_value is ABSENT
    assert fields["resource_id"].new_value == seat.resource_id
    assert fields["start_date"].new_value == date(2026, 3, 1)

    resource_entry = stack.history.entity_history(EntityType.RESOURCE, seat.resource_id)[0]
    assert resource_entry.action is HistoryAction.STATUS_CHANGE
    assert resource_entry.changes[0].old_value == "free"
    assert resource_entry.changes[0].new_value == "occupied"

    [notice] = stack.sink.confirmations
    assert notice.resource_email == seat.email
    assert notice.usage_type == "webinar"


def test_second_booking_on_occupied_seat_records_no_flip(stack, make_resource) -> None:
    seat = make_resource()
    stack.assignments.create(
        requester(), date(2026, 3, 1), date(2026, 3, 5), resource_id=seat.resource_id
    )
    before = len(stack.history.entity_history(EntityType.RESOURCE, seat.resource_id))

    stack.assignments.create(
        requester("Bo Chen"), date(2026, 3, 6), date(2026, 3, 9), resource_id=seat.resource_id
    )

    assert len(stack.history.entity_history(EntityType.RESOURCE, seat.resource_id)) == before


def test_create_without_resource_is_pending(stack) -> None:
    booking = stack.assignments.create(requester(), date(2026, 3, 1), date(2026, 3, 5))

    assert booking.status is AssignmentStatus.PENDING
    assert booking.resource_id is None
    assert actions_for(stack, booking.assignment_id) == [HistoryAction.CREATE]
    assert [notice.assignment_id for notice in stack.sink.pending] == [booking.assignment_id]
    assert stack.sink.confirmations == []


def test_create_rejects_reversed_range(stack, make_resource) -> None:
    seat = make_resource()
    with pytest.raises(InvalidDateRangeError):
        stack.assignments.create(
            requester(), date(2026, 3, 5), date(2026, 3, 1), resource_id=seat.resource_id
        )
    assert stack.assignments.list_assignments() == []


def test_create_rejects_unknown_resource(stack) -> None:
    with pytest.raises(EntityNotFoundError):
        stack.assignments.create(
            requester(), date(2026, 3, 1), date(2026, 3, 5), resource_id="missing"
        )


def test_create_rejects_resource_in_maintenance(stack, make_resource) -> None:
    seat = make_resource(status="maintenance")
    with pytest.raises(BookingConflictError):
        stack.assignments.create(
            requester(), date(2026, 3, 1), date(2026, 3, 5), resource_id=seat.resource_id
        )
    assert status_of(stack, seat.resource_id) is ResourceStatus.MAINTENANCE


def test_create_validates_requester(stack) -> None:
    with pytest.raises(AttributeValidationError):
        stack.assignments.create(
            requester(email="not-an-email"), date(2026, 3, 1), date(2026, 3, 5)
        )
    with pytest.raises(AttributeValidationError):
        stack.assignments.create(
            RequesterInfo(name="  ", email="ok@example.com"), date(2026, 3, 1), date(2026, 3, 5)
        )


def test_cancelled_and_pending_bookings_do_not_block(stack, make_resource) -> None:
    seat = make_resource()
    cancelled = stack.assignments.create(
        requester(), date(2026, 3, 1), date(2026, 3, 5), resource_id=seat.resource_id
    )
    stack.assignments.cancel(cancelled.assignment_id)
    stack.assignments.create(requester("Bo Chen"), date(2026, 3, 1), date(2026, 3, 5))

    again = stack.assignments.create(
        requester("Cy Dow"), date(2026, 3, 2), date(2026, 3, 4), resource_id=seat.resource_id
    )
    assert again.status is AssignmentStatus.ACTIVE


def test_notification_failure_does_not_undo_booking(stack, make_resource) -> None:
    seat = make_resource()
    service = AssignmentService(
        repository=stack.repository,
        history_service=stack.history,
        notification_sink=ExplodingSink(),
        settings=stack.settings,
    )

    booking = service.create(
        requester(), date(2026, 3, 1), date(2026, 3, 5), resource_id=seat.resource_id
    )

    assert stack.assignments.get(booking.assignment_id).status is AssignmentStatus.ACTIVE


def test_history_failure_after_commit_keeps_booking(stack, make_resource, monkeypatch) -> None:
    seat = make_resource()

    def broken_insert(entry) -> None:
        raise PersistenceError("history table locked")

    monkeypatch.setattr(stack.repository, "insert_history", broken_insert)
    with pytest.raises(PersistenceError):
        stack.assignments.create(
            requester(), date(2026, 3, 1), date(2026, 3, 5), resource_id=seat.resource_id
        )
    monkeypatch.undo()

    [booking] = stack.assignments.list_assignments()
    assert booking.status is AssignmentStatus.ACTIVE
    assert status_of(stack, seat.resource_id) is ResourceStatus.OCCUPIED
    assert stack.history.entity_history(EntityType.ASSIGNMENT, booking.assignment_id) == []


# ----------------------------------------------------------------------
# assign_resource
# ----------------------------------------------------------------------


def test_assign_resource_activates_pending_request(stack, make_resource) -> None:
    seat = make_resource()
    pending = stack.assignments.create(requester(), date(2026, 3, 1), date(2026, 3, 5))

    bound = stack.assignments.assign_resource(pending.assignment_id, seat.resource_id, actor="ops")

    assert bound.status is AssignmentStatus.ACTIVE
    assert bound.resource_id == seat.resource_id
    assert status_of(stack, seat.resource_id) is ResourceStatus.OCCUPIED
    assert actions_for(stack, pending.assignment_id).count(HistoryAction.ASSIGN) == 1
    assert [notice.assignment_id for notice in stack.sink.confirmations] == [pending.assignment_id]


def test_assign_resource_checks_conflicts(stack, make_resource) -> None:
    seat = make_resource()
    stack.assignments.create(
        requester(), date(2026, 3, 1), date(2026, 3, 5), resource_id=seat.resource_id
    )
    pending = stack.assignments.create(requester("Bo Chen"), date(2026, 3, 5), date(2026, 3, 8))

    with pytest.raises(BookingConflictError):
        stack.assignments.assign_resource(pending.assignment_id, seat.resource_id)
    assert stack.assignments.get(pending.assignment_id).status is AssignmentStatus.PENDING


def test_assign_resource_only_for_pending(stack, make_resource) -> None:
    seat = make_resource()
    other = make_resource()
    active = stack.assignments.create(
        requester(), date(2026, 3, 1), date(2026, 3, 5), resource_id=seat.resource_id
    )
    with pytest.raises(StatusTransitionError):
        stack.assignments.assign_resource(active.assignment_id, other.resource_id)


def test_assign_resource_unknown_assignment(stack, make_resource) -> None:
    seat = make_resource()
    with pytest.raises(EntityNotFoundError):
        stack.assignments.assign_resource("missing", seat.resource_id)


# ----------------------------------------------------------------------
# update
# ----------------------------------------------------------------------


def test_date_only_update_is_rechecked(stack, make_resource) -> None:
    seat = make_resource()
    stack.assignments.create(
        requester(), date(2026, 3, 1), date(2026, 3, 5), resource_id=seat.resource_id
    )
    later = stack.assignments.create(
        requester("Bo Chen"), date(2026, 3, 10), date(2026, 3, 15), resource_id=seat.resource_id
    )

    with pytest.raises(BookingConflictError):
        stack.assignments.update(later.assignment_id, {"start_date": "2026-03-05"})
    assert stack.assignments.get(later.assignment_id).start_date == date(2026, 3, 10)

    moved = stack.assignments.update(later.assignment_id, {"start_date": "2026-03-06"})
    assert moved.start_date == date(2026, 3, 6)
    assert actions_for(stack, later.assignment_id)[0] is HistoryAction.UPDATE


def test_update_excludes_itself_from_conflicts(stack, make_resource) -> None:
    seat = make_resource()
    booking = stack.assignments.create(
        requester(), date(2026, 3, 1), date(2026, 3, 5), resource_id=seat.resource_id
    )
    extended = stack.assignments.update(booking.assignment_id, {"end_date": date(2026, 3, 9)})
    assert extended.end_date == date(2026, 3, 9)


def test_update_moves_booking_to_another_resource(stack, make_resource) -> None:
    first = make_resource()
    second = make_resource()
    booking = stack.assignments.create(
        requester(), date(2026, 3, 1), date(2026, 3, 5), resource_id=first.resource_id
    )

    moved = stack.assignments.update(booking.assignment_id, {"resource_id": second.resource_id})

    assert moved.resource_id == second.resource_id
    assert status_of(stack, first.resource_id) is ResourceStatus.FREE
    assert status_of(stack, second.resource_id) is ResourceStatus.OCCUPIED
    assert actions_for(stack, booking.assignment_id)[0] is HistoryAction.ASSIGN


def test_update_moving_to_busy_resource_conflicts(stack, make_resource) -> None:
    first = make_resource()
    second = make_resource()
    booking = stack.assignments.create(
        requester(), date(2026, 3, 1), date(2026, 3, 5), resource_id=first.resource_id
    )
    stack.assignments.create(
        requester("Bo Chen"), date(2026, 3, 4), date(2026, 3, 8), resource_id=second.resource_id
    )

    with pytest.raises(BookingConflictError):
        stack.assignments.update(
            booking.assignment_id,
            {"resource_id": second.resource_id, "start_date": "2026-03-02"},
        )
    assert stack.assignments.get(booking.assignment_id).resource_id == first.resource_id


def test_update_unbinding_returns_to_pending(stack, make_resource) -> None:
    seat = make_resource()
    booking = stack.assignments.create(
        requester(), date(2026, 3, 1), date(2026, 3, 5), resource_id=seat.resource_id
    )

    unbound = stack.assignments.update(booking.assignment_id, {"resource_id": None})

    assert unbound.status is AssignmentStatus.PENDING
    assert unbound.resource_id is None
    assert status_of(stack, seat.resource_id) is ResourceStatus.FREE
    assert actions_for(stack, booking.assignment_id)[0] is HistoryAction.UNASSIGN


def test_update_binding_pending_activates_it(stack, make_resource) -> None:
    seat = make_resource()
    pending = stack.assignments.create(requester(), date(2026, 3, 1), date(2026, 3, 5))

    bound = stack.assignments.update(pending.assignment_id, {"resource_id": seat.resource_id})

    assert bound.status is AssignmentStatus.ACTIVE
    assert status_of(stack, seat.resource_id) is ResourceStatus.OCCUPIED
    assert actions_for(stack, pending.assignment_id)[0] is HistoryAction.ASSIGN
    assert [notice.assignment_id for notice in stack.sink.confirmations] == [pending.assignment_id]


def test_update_status_only_is_a_status_change(stack, make_resource) -> None:
    seat = make_resource()
    booking = stack.assignments.create(
        requester(), date(2026, 3, 1), date(2026, 3, 5), resource_id=seat.resource_id
    )

    cancelled = stack.assignments.update(booking.assignment_id, {"status": "cancelled"})

    assert cancelled.status is AssignmentStatus.CANCELLED
    assert status_of(stack, seat.resource_id) is ResourceStatus.FREE
    assert actions_for(stack, booking.assignment_id)[0] is HistoryAction.STATUS_CHANGE


def test_update_rejects_illegal_transitions(stack, make_resource) -> None:
    seat = make_resource()
    booking = stack.assignments.create(
        requester(), date(2026, 3, 1), date(2026, 3, 5), resource_id=seat.resource_id
    )
    pending = stack.assignments.create(requester("Bo Chen"), date(2026, 3, 1), date(2026, 3, 5))
    stack.assignments.cancel(booking.assignment_id)

    with pytest.raises(StatusTransitionError):
        stack.assignments.update(booking.assignment_id, {"status": "active"})
    with pytest.raises(StatusTransitionError):
        stack.assignments.update(pending.assignment_id, {"status": "active"})
    with pytest.raises(StatusTransitionError):
        stack.assignments.update(pending.assignment_id, {"status": "expired"})


def test_terminal_booking_keeps_its_range(stack, make_resource) -> None:
    seat = make_resource()
    booking = stack.assignments.create(
        requester(), date(2026, 3, 1), date(2026, 3, 5), resource_id=seat.resource_id
    )
    stack.assignments.cancel(booking.assignment_id)

    with pytest.raises(StatusTransitionError):
        stack.assignments.update(booking.assignment_id, {"end_date": "2026-03-09"})

    renamed = stack.assignments.update(booking.assignment_id, {"requester_name": "Ana R. Ruiz"})
    assert renamed.requester_name == "Ana R. Ruiz"


def test_update_validates_input(stack) -> None:
    pending = stack.assignments.create(requester(), date(2026, 3, 1), date(2026, 3, 5))

    with pytest.raises(AttributeValidationError):
        stack.assignments.update(pending.assignment_id, {"created_at": "2026-01-01"})
    with pytest.raises(AttributeValidationError):
        stack.assignments.update(pending.assignment_id, {"requester_email": "nope"})
    with pytest.raises(AttributeValidationError):
        stack.assignments.update(pending.assignment_id, {"status": "archived"})
    with pytest.raises(InvalidDateRangeError):
        stack.assignments.update(pending.assignment_id, {"end_date": "2026-02-01"})
    with pytest.raises(EntityNotFoundError):
        stack.assignments.update("missing", {"area": "Ops"})


def test_update_without_changes_writes_no_history(stack) -> None:
    pending = stack.assignments.create(requester(), date(2026, 3, 1), date(2026, 3, 5))
    before = stack.repository.count_history()

    same = stack.assignments.update(pending.assignment_id, {"start_date": "2026-03-01"})

    assert same == pending
    assert stack.repository.count_history() == before


# ----------------------------------------------------------------------
# cancel / delete
# ----------------------------------------------------------------------


def test_cancel_unknown_returns_none(stack) -> None:
    assert stack.assignments.cancel("missing") is None


def test_cancel_records_reason(stack, make_resource) -> None:
    seat = make_resource()
    booking = stack.assignments.create(
        requester(), date(2026, 3, 1), date(2026, 3, 5), resource_id=seat.resource_id
    )

    stack.assignments.cancel(booking.assignment_id, actor="ops", reason="Trip cancelled")

    entry = stack.history.entity_history(EntityType.ASSIGNMENT, booking.assignment_id)[0]
    assert entry.action is HistoryAction.STATUS_CHANGE
    assert entry.metadata.reason == "Trip cancelled"
    assert entry.changes[0].old_value == "active"
    assert entry.changes[0].new_value == "cancelled"


def test_cancel_terminal_is_a_no_op(stack, make_resource) -> None:
    seat = make_resource()
    booking = stack.assignments.create(
        requester(), date(2026, 3, 1), date(2026, 3, 5), resource_id=seat.resource_id
    )
    first = stack.assignments.cancel(booking.assignment_id)
    before = stack.repository.count_history()

    second = stack.assignments.cancel(booking.assignment_id)

    assert second == first
    assert stack.repository.count_history() == before


def test_delete_releases_resource_and_records_snapshot(stack, make_resource) -> None:
    seat = make_resource()
    booking = stack.assignments.create(
        requester(), date(2026, 3, 1), date(2026, 3, 5), resource_id=seat.resource_id
    )

    assert stack.assignments.delete(booking.assignment_id, actor="admin") is True

    assert status_of(stack, seat.resource_id) is ResourceStatus.FREE
    entry = stack.history.entity_history(EntityType.ASSIGNMENT, booking.assignment_id)[0]
    assert entry.action is HistoryAction.DELETE
    assert all(change.new_value is ABSENT for change in entry.changes)
    with pytest.raises(EntityNotFoundError):
        stack.assignments.get(booking.assignment_id)


def test_delete_unknown_returns_false(stack) -> None:
    assert stack.assignments.delete("missing") is False


# ----------------------------------------------------------------------
# sweep and reads
# ----------------------------------------------------------------------


def test_sweep_expires_and_frees_resource(stack, make_resource) -> None:
    seat = make_resource()
    booking = stack.assignments.create(
        requester(), date(2024, 3, 20), date(2024, 3, 31), resource_id=seat.resource_id
    )

    result = stack.assignments.sweep_expired(date(2024, 4, 1))

    assert result.expired_count == 1
    assert result.expired_assignment_ids == [booking.assignment_id]
    assert result.released_resource_ids == [seat.resource_id]
    assert stack.assignments.get(booking.assignment_id).status is AssignmentStatus.EXPIRED
    assert status_of(stack, seat.resource_id) is ResourceStatus.FREE
    assert actions_for(stack, booking.assignment_id).count(HistoryAction.STATUS_CHANGE) == 1


def test_sweep_is_idempotent(stack, make_resource) -> None:
    seat = make_resource()
    stack.assignments.create(
        requester(), date(2024, 3, 20), date(2024, 3, 31), resource_id=seat.resource_id
    )
    stack.assignments.sweep_expired(date(2024, 4, 1))
    history_before = stack.repository.count_history()

    second = stack.assignments.sweep_expired(date(2024, 4, 1))

    assert second.expired_count == 0
    assert second.released_resource_ids == []
    assert stack.repository.count_history() == history_before


def test_sweep_keeps_seat_with_future_booking_occupied(stack, make_resource) -> None:
    seat = make_resource()
    stack.assignments.create(
        requester(), date(2024, 3, 20), date(2024, 3, 31), resource_id=seat.resource_id
    )
    upcoming = stack.assignments.create(
        requester("Bo Chen"), date(2024, 4, 1), date(2024, 4, 5), resource_id=seat.resource_id
    )

    result = stack.assignments.sweep_expired(date(2024, 4, 1))

    assert result.expired_count == 1
    assert result.released_resource_ids == []
    assert status_of(stack, seat.resource_id) is ResourceStatus.OCCUPIED
    assert stack.assignments.get(upcoming.assignment_id).status is AssignmentStatus.ACTIVE


def test_expiring_within_orders_by_end_date(stack, make_resource) -> None:
    seats = [make_resource() for _ in range(3)]
    late = stack.assignments.create(
        requester(), date(2026, 3, 1), date(2026, 3, 9), resource_id=seats[0].resource_id
    )
    soon = stack.assignments.create(
        requester("Bo Chen"), date(2026, 3, 1), date(2026, 3, 6), resource_id=seats[1].resource_id
    )
    stack.assignments.create(
        requester("Cy Dow"), date(2026, 3, 1), date(2026, 3, 30), resource_id=seats[2].resource_id
    )

    expiring = stack.assignments.expiring_within(7, date(2026, 3, 5))

    assert [item.assignment_id for item in expiring] == [soon.assignment_id, late.assignment_id]
    with pytest.raises(AttributeValidationError):
        stack.assignments.expiring_within(-1, date(2026, 3, 5))


def test_read_helpers(stack, make_resource) -> None:
    seat = make_resource()
    active = stack.assignments.create(
        requester(email="Ana@Corp.Example.com"),
        date(2026, 3, 1),
        date(2026, 3, 5),
        resource_id=seat.resource_id,
    )
    pending = stack.assignments.create(requester("Bo Chen"), date(2026, 3, 1), date(2026, 3, 5))

    assert [item.assignment_id for item in stack.assignments.list_assignments("pending")] == [
        pending.assignment_id
    ]
    assert [item.assignment_id for item in stack.assignments.list_for_resource(seat.resource_id)] == [
        active.assignment_id
    ]
    assert [
        item.assignment_id for item in stack.assignments.list_for_requester("ANA@corp.example.com")
    ] == [active.assignment_id]
    assert [item.assignment_id for item in stack.assignments.active_now(date(2026, 3, 3))] == [
        active.assignment_id
    ]
    assert stack.assignments.active_now(date(2026, 3, 6)) == []
    with pytest.raises(AttributeValidationError):
        stack.assignments.list_assignments("archived")
