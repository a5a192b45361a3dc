"""
Order lifecycle services.

- enums: status enumeration, labels and transition rules
- errors: order exception hierarchy
- pricing: pricing breakdown computation
- aggregate: validation and construction of new orders
- state_machine: status transitions and history
- repository: persistence
- service: orchestration used by the API
"""

from storefront.services.orders.enums import OrderStatus
from storefront.services.orders.errors import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    OrderAccessDeniedError,
    OrderError,
    OrderNotFoundError,
    OrderValidationError,
)

__all__ = [
    "OrderStatus",
    "OrderError",
    "OrderValidationError",
    "InvalidTransitionError",
    "ConcurrencyConflictError",
    "OrderNotFoundError",
    "OrderAccessDeniedError",
]
