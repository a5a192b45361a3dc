"""Order state machine implementation with transition validation.

This module implements the OrderStateMachine class for moving an order
through its lifecycle. Applying a transition appends a history entry and
updates the status in one step so that the last history entry always
matches the current status. Persistence and commit are left to the caller.
"""

from datetime import datetime
from typing import Optional, Set, Union
from uuid import UUID

from storefront.core.config import get_settings
from storefront.core.logging import get_logger
from storefront.database.base import utcnow
from storefront.database.models.order import Order, OrderStatusHistory
from storefront.services.orders.enums import (
    OrderStatus,
    get_allowed_order_transitions,
    validate_order_status_transition,
)
from storefront.services.orders.errors import (
    InvalidTransitionError,
    OrderValidationError,
)

logger = get_logger(__name__)

StatusLike = Union[OrderStatus, str]


class OrderStateMachine:
    """State machine for managing order lifecycle transitions.

    By default any non-terminal status may move to any other status, which
    lets administrators correct mistakes. With ``strict`` only forward moves
    along the nominal sequence and cancellation are accepted.
    """

    def __init__(self, strict: Optional[bool] = None):
        """Initialize state machine.

        Args:
            strict: Enforce forward-only transitions; defaults to the
                ``order_strict_transitions`` setting
        """
        if strict is None:
            strict = get_settings().order_strict_transitions
        self.strict = strict

    @staticmethod
    def parse_status(value: StatusLike) -> OrderStatus:
        """Parse a status value.

        Raises:
            InvalidTransitionError: If the value is not a recognised status
        """
        if isinstance(value, OrderStatus):
            return value
        try:
            return OrderStatus.from_string(value)
        except ValueError as e:
            raise InvalidTransitionError(
                str(e),
                target_status=str(value),
            ) from e

    def validate_transition(self, order: Order, target: StatusLike) -> OrderStatus:
        """Validate if transition to target status is allowed.

        Args:
            order: Order to validate
            target: Desired target status

        Returns:
            The parsed target status

        Raises:
            InvalidTransitionError: If the current status is terminal, the
                target is unknown or equal to the current status, or the
                policy forbids the move
        """
        target_status = self.parse_status(target)
        current_status = order.status

        if current_status.is_terminal():
            raise InvalidTransitionError(
                f"Order is {current_status.value} and can no longer change status",
                current_status=current_status.value,
                target_status=target_status.value,
                order_id=str(order.id),
            )

        if target_status == current_status:
            raise InvalidTransitionError(
                f"Order is already {current_status.value}",
                current_status=current_status.value,
                target_status=target_status.value,
                order_id=str(order.id),
            )

        if not validate_order_status_transition(
            current_status, target_status, strict=self.strict
        ):
            allowed = get_allowed_order_transitions(current_status, strict=self.strict)
            raise InvalidTransitionError(
                f"Invalid transition from {current_status.value} to "
                f"{target_status.value}",
                current_status=current_status.value,
                target_status=target_status.value,
                order_id=str(order.id),
                allowed_transitions=sorted(s.value for s in allowed),
            )

        return target_status

    def apply_transition(
        self,
        order: Order,
        target: StatusLike,
        actor_id: Optional[UUID] = None,
        note: Optional[str] = None,
        tracking_number: Optional[str] = None,
        estimated_delivery: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> OrderStatusHistory:
        """Apply a status transition to an order in memory.

        Args:
            order: Order to transition, with its history loaded
            target: Target status
            actor_id: Account performing the change
            note: Optional note stored on the history entry
            tracking_number: Carrier tracking number, only for shipping states
            estimated_delivery: Estimated delivery timestamp
            now: Timestamp for the entry, defaults to the current UTC time

        Returns:
            The appended history entry

        Raises:
            InvalidTransitionError: If the transition is not allowed
            OrderValidationError: If a tracking number accompanies a
                non-shipping status
        """
        target_status = self.validate_transition(order, target)
        previous_status = order.status

        if tracking_number and not target_status.is_shipping_state():
            raise OrderValidationError(
                "Tracking number can only be set when the order is shipped",
                order_id=str(order.id),
                target_status=target_status.value,
            )

        now = now or utcnow()
        note = note.strip() if note else None

        entry = OrderStatusHistory(
            sequence=len(order.status_history),
            status=target_status,
            note=note or None,
            updated_by=actor_id,
            created_at=now,
        )
        order.status_history.append(entry)
        order.status = target_status
        order.updated_at = now

        if tracking_number:
            order.tracking_number = tracking_number.strip()
        if estimated_delivery is not None:
            order.estimated_delivery = estimated_delivery

        logger.info(
            "State transition applied",
            order_id=str(order.id),
            transition=f"{previous_status.value}->{target_status.value}",
            sequence=entry.sequence,
            actor_id=str(actor_id) if actor_id else None,
        )

        return entry

    def get_allowed_transitions(self, order: Order) -> Set[OrderStatus]:
        """Get allowed transitions from current order status."""
        allowed = get_allowed_order_transitions(order.status, strict=self.strict)
        allowed.discard(order.status)
        return allowed
