"""Exception hierarchy for order lifecycle operations."""

from typing import Any, Optional


class OrderError(Exception):
    """Base exception for order errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class OrderValidationError(OrderError):
    """Raised when submitted order data is malformed or inconsistent."""

    def __init__(
        self,
        message: str,
        errors: Optional[list[str]] = None,
        **context: Any,
    ):
        super().__init__(message, **context)
        self.errors = errors or [message]


class InvalidTransitionError(OrderError):
    """Raised when a status change is not permitted from the current status."""

    def __init__(
        self,
        message: str,
        current_status: Optional[str] = None,
        target_status: Optional[str] = None,
        **context: Any,
    ):
        super().__init__(message, **context)
        self.current_status = current_status
        self.target_status = target_status


class ConcurrencyConflictError(OrderError):
    """Raised when the order was modified by another writer; re-read and retry."""

    pass


class OrderNotFoundError(OrderError):
    """Raised when order is not found."""

    pass


class OrderAccessDeniedError(OrderError):
    """Raised when an account reads an order it does not own."""

    pass


class OrderIntegrityError(OrderError):
    """Raised when a mutated order no longer satisfies its invariants."""

    pass


class OrderPersistenceError(OrderError):
    """Raised when the database rejects an order write for other reasons."""

    pass
