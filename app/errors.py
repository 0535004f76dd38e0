from __future__ import annotations


class OrderingError(ValueError):
    """Base class for rejected order, pool and sales-note mutations.

    Carries the entity that conflicted so callers can tell the operator what to
    refresh or reduce instead of reporting a generic failure.
    """

    status_code = 400

    def __init__(self, message: str, *, entity_type: str | None = None, entity_id: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.entity_type = entity_type
        self.entity_id = entity_id

    def as_detail(self) -> dict:
        return {
            'error': type(self).__name__,
            'message': self.message,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
        }


class ValidationError(OrderingError):
    status_code = 400


class InvalidQuantity(OrderingError):
    status_code = 400


class OverAllocation(OrderingError):
    status_code = 409


class RollbackConflict(OrderingError):
    status_code = 409


class ConcurrencyConflict(OrderingError):
    status_code = 409


class NotFoundError(OrderingError):
    status_code = 404


class PermissionDenied(OrderingError):
    status_code = 403
