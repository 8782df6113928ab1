"""Error taxonomy shared by every allocation component."""

from __future__ import annotations


class AllocationError(Exception):
    """Base exception for seat allocation failures."""

    error_code = "allocation_error"


class EntityNotFoundError(AllocationError):
    """Raised when a resource or assignment id does not resolve."""

    error_code = "not_found"

    def __init__(self, entity_type: str, entity_id: str) -> None:
        super().__init__(f"{entity_type} '{entity_id}' not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class DuplicateIdentityError(AllocationError):
    """Raised when a resource identity collides with an existing one."""

    error_code = "duplicate_identity"


class BookingConflictError(AllocationError):
    """Raised on interval overlap or when deleting a referenced resource."""

    error_code = "conflict"

    def __init__(self, message: str, conflicting_ids: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.conflicting_ids = conflicting_ids


class InvalidDateRangeError(AllocationError):
    """Raised when a start date falls after its end date or is malformed."""

    error_code = "invalid_range"


class AttributeValidationError(AllocationError):
    """Raised when resource or requester attributes are malformed."""

    error_code = "validation_error"


class StatusTransitionError(AllocationError):
    """Raised when a requested status change is not a legal transition."""

    error_code = "invalid_transition"


class PersistenceError(AllocationError):
    """Raised when the store is unavailable, times out, or rejects a write."""

    error_code = "persistence_error"
