"""Order status enumeration and transition rules for the order lifecycle.

This module is the single source of truth for order statuses: the closed set
of values, their display labels, the customer-facing descriptions used in
status notifications, and which transitions are permitted. The state machine,
the notification templates and the API status catalogue all read from here.
"""

from enum import Enum
from typing import Dict, Set, Tuple


class OrderStatus(str, Enum):
    """Order lifecycle status.

    Nominal progression:
    - PENDING -> CONFIRMED -> IN_PRODUCTION -> QUALITY_CHECK
      -> READY_TO_SHIP -> SHIPPED -> DELIVERED
    - CANCELLED is reachable from every non-terminal status
    - DELIVERED and CANCELLED are terminal
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PRODUCTION = "in_production"
    QUALITY_CHECK = "quality_check"
    READY_TO_SHIP = "ready_to_ship"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """Convert string to OrderStatus enum.

        Args:
            value: String representation of status

        Returns:
            OrderStatus enum value

        Raises:
            ValueError: If value is not a valid status
        """
        try:
            return cls(value.strip().lower())
        except (ValueError, AttributeError):
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid order status: {value}. "
                f"Valid values are: {valid_values}"
            )

    def is_terminal(self) -> bool:
        """Check if status is a terminal state (DELIVERED, CANCELLED)."""
        return self in TERMINAL_STATUSES

    def is_shipping_state(self) -> bool:
        """Check if the order has left the workshop."""
        return self in {OrderStatus.SHIPPED, OrderStatus.DELIVERED}


INITIAL_STATUS = OrderStatus.PENDING

TERMINAL_STATUSES: Set[OrderStatus] = {
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
}

NOMINAL_SEQUENCE: Tuple[OrderStatus, ...] = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.IN_PRODUCTION,
    OrderStatus.QUALITY_CHECK,
    OrderStatus.READY_TO_SHIP,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)

STATUS_LABELS: Dict[OrderStatus, str] = {
    OrderStatus.PENDING: "Pending",
    OrderStatus.CONFIRMED: "Confirmed",
    OrderStatus.IN_PRODUCTION: "In Production",
    OrderStatus.QUALITY_CHECK: "Quality Check",
    OrderStatus.READY_TO_SHIP: "Ready to Ship",
    OrderStatus.SHIPPED: "Shipped",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.CANCELLED: "Cancelled",
}

# PENDING has no entry: an order only returns there through a manual
# correction, which gets the generic update copy.
STATUS_DESCRIPTIONS: Dict[OrderStatus, str] = {
    OrderStatus.CONFIRMED: "Your order has been confirmed and is being prepared.",
    OrderStatus.IN_PRODUCTION: "Your custom jewelry is now being crafted by our artisans.",
    OrderStatus.QUALITY_CHECK: "Your jewelry is undergoing final quality checks.",
    OrderStatus.READY_TO_SHIP: "Your order is ready and will be shipped soon.",
    OrderStatus.SHIPPED: "Your order has been shipped and is on its way to you.",
    OrderStatus.DELIVERED: "Your order has been delivered. We hope you love it!",
    OrderStatus.CANCELLED: "Your order has been cancelled.",
}

GENERIC_STATUS_DESCRIPTION = "Your order status has been updated."


def describe_status(status: OrderStatus) -> str:
    """Return the customer-facing description, falling back to generic copy."""
    return STATUS_DESCRIPTIONS.get(status, GENERIC_STATUS_DESCRIPTION)


def _sequence_index(status: OrderStatus) -> int:
    return NOMINAL_SEQUENCE.index(status)


def validate_order_status_transition(
    current: OrderStatus,
    new: OrderStatus,
    strict: bool = False,
) -> bool:
    """Validate if order status transition is allowed.

    The default policy lets an administrator move a non-terminal order to
    any other status. With ``strict`` only forward moves along
    NOMINAL_SEQUENCE (skipping allowed) and cancellation are accepted.

    Args:
        current: Current order status
        new: Desired new status
        strict: Enforce forward-only ordering

    Returns:
        True if transition is valid
    """
    return new in get_allowed_order_transitions(current, strict=strict)


def get_allowed_order_transitions(
    current: OrderStatus,
    strict: bool = False,
) -> Set[OrderStatus]:
    """Get all allowed transitions from current order status.

    Args:
        current: Current order status
        strict: Enforce forward-only ordering

    Returns:
        Set of allowed next statuses
    """
    if current.is_terminal():
        return set()

    if not strict:
        return {status for status in OrderStatus if status != current}

    position = _sequence_index(current)
    allowed = set(NOMINAL_SEQUENCE[position + 1:])
    allowed.add(OrderStatus.CANCELLED)
    return allowed


def status_catalogue() -> list[dict[str, object]]:
    """Ordered list of statuses with labels for presentation layers."""
    return [
        {
            "value": status.value,
            "label": STATUS_LABELS[status],
            "description": STATUS_DESCRIPTIONS.get(status),
            "terminal": status.is_terminal(),
        }
        for status in OrderStatus
    ]
