"""
Order service orchestrating business logic and integrations.

This module implements the OrderService class that places orders, applies
status transitions and administrative corrections, and serves order
queries. Every write commits before notifications are handed to the
dispatcher, and a notification problem never changes the outcome of the
operation that triggered it.
"""

import math
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import Settings, get_settings
from storefront.core.logging import get_logger, log_performance
from storefront.database.base import utcnow
from storefront.database.models.order import Order
from storefront.schemas.orders import OrderNotificationView
from storefront.services.accounts import AccountDirectory
from storefront.services.catalog import CatalogError, CatalogService
from storefront.services.notifications.tasks import NotificationDispatcher
from storefront.services.orders.aggregate import (
    OrderDraft,
    apply_pricing,
    build_order,
    pricing_of,
    validate_address,
    validate_order,
)
from storefront.services.orders.enums import OrderStatus
from storefront.services.orders.errors import (
    OrderAccessDeniedError,
    OrderError,
    OrderIntegrityError,
    OrderValidationError,
)
from storefront.services.orders.pricing import PricingPolicy, recompute_total, to_decimal
from storefront.services.orders.repository import OrderRepository
from storefront.services.orders.state_machine import OrderStateMachine, StatusLike

logger = get_logger(__name__)


class OrderService:
    """
    Order service orchestrating business logic and integrations.

    Attributes:
        repository: Order repository for data access
        state_machine: State machine for order lifecycle management
        notifier: Dispatcher for order notifications
        catalog: Catalog used to validate submitted items
        accounts: Account directory used to resolve notification contacts
    """

    def __init__(
        self,
        session: AsyncSession,
        notifier: Optional[NotificationDispatcher] = None,
        catalog: Optional[CatalogService] = None,
        accounts: Optional[AccountDirectory] = None,
        settings: Optional[Settings] = None,
        state_machine: Optional[OrderStateMachine] = None,
    ):
        """
        Initialize order service.

        Args:
            session: Async database session
            notifier: Optional notification dispatcher
            catalog: Optional catalog for item validation
            accounts: Optional account directory for contact data
            settings: Application settings
            state_machine: State machine, defaults to the configured policy
        """
        self.session = session
        self.settings = settings or get_settings()
        self.repository = OrderRepository(session)
        self.state_machine = state_machine or OrderStateMachine(
            strict=self.settings.order_strict_transitions
        )
        self.pricing_policy = PricingPolicy.from_settings(self.settings)
        self.notifier = notifier
        self.catalog = catalog
        self.accounts = accounts

    async def create_order(
        self,
        customer_id: Optional[uuid.UUID],
        draft: OrderDraft,
    ) -> Order:
        """
        Validate, price, number and persist a new order.

        Args:
            customer_id: Purchasing account
            draft: Submitted order

        Returns:
            Committed pending order

        Raises:
            OrderValidationError: If the submitted order is invalid
            OrderError: If the order could not be persisted
        """
        logger.info(
            "Creating order",
            customer_id=str(customer_id) if customer_id else None,
            item_count=len(draft.items),
        )

        try:
            with log_performance(logger, "order_creation", item_count=len(draft.items)):
                catalog_entries = None
                if self.catalog is not None and draft.items:
                    catalog_entries = await self.catalog.get_entries(
                        item.product_id for item in draft.items
                    )

                validated = validate_order(
                    draft, catalog=catalog_entries, policy=self.pricing_policy
                )

                order = await self.repository.create_order(
                    lambda number: build_order(validated, number, customer_id),
                    prefix=self.settings.order_number_prefix,
                    width=self.settings.order_number_width,
                    max_attempts=self.settings.order_number_max_attempts,
                )
                self._assert_invariants(order)
                await self.repository.commit()

        except OrderError:
            await self.session.rollback()
            raise
        except CatalogError as e:
            await self.session.rollback()
            raise OrderError(
                "Product catalog is unavailable", **e.context
            ) from e
        except Exception as e:
            await self.session.rollback()
            logger.error(
                "Unexpected error creating order",
                customer_id=str(customer_id) if customer_id else None,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise OrderError(
                "Unexpected error creating order",
                customer_id=str(customer_id) if customer_id else None,
            ) from e

        logger.info(
            "Order created successfully",
            order_id=str(order.id),
            order_number=order.order_number,
            total_amount=str(order.total_amount),
        )

        await self._notify_created(order)
        return order

    async def update_order_status(
        self,
        order_id: uuid.UUID,
        new_status: StatusLike,
        actor_id: Optional[uuid.UUID] = None,
        note: Optional[str] = None,
        tracking_number: Optional[str] = None,
        estimated_delivery: Optional[datetime] = None,
    ) -> Order:
        """
        Move an order to a new status.

        Args:
            order_id: Order identifier
            new_status: Target status
            actor_id: Account performing the change
            note: Optional note for the history entry
            tracking_number: Carrier tracking number when shipping
            estimated_delivery: Estimated delivery timestamp

        Returns:
            Committed order with the appended history entry

        Raises:
            OrderNotFoundError: If order not found
            InvalidTransitionError: If the transition is not permitted
            ConcurrencyConflictError: If the order changed concurrently
        """
        logger.info(
            "Updating order status",
            order_id=str(order_id),
            new_status=str(getattr(new_status, "value", new_status)),
        )

        order = await self.repository.get_order_or_raise(order_id)
        entry = self.state_machine.apply_transition(
            order,
            new_status,
            actor_id=actor_id,
            note=note,
            tracking_number=tracking_number,
            estimated_delivery=estimated_delivery,
        )
        await self._persist(order, "status update")

        logger.info(
            "Order status updated successfully",
            order_id=str(order.id),
            order_number=order.order_number,
            status=order.status.value,
            history_length=len(order.status_history),
        )

        await self._notify_status_changed(order, order.status, entry.note)
        return order

    async def get_order(
        self,
        order_id: uuid.UUID,
        requester_id: uuid.UUID,
        is_admin: bool = False,
    ) -> Order:
        """
        Load an order for its owner or an administrator.

        Raises:
            OrderNotFoundError: If order not found
            OrderAccessDeniedError: If the requester neither owns the order
                nor is an administrator
        """
        order = await self.repository.get_order_or_raise(order_id)
        if not is_admin and order.customer_id != requester_id:
            logger.warning(
                "Order access denied",
                order_id=str(order_id),
                requester_id=str(requester_id),
            )
            raise OrderAccessDeniedError(
                "Order not found", order_id=str(order_id)
            )
        return order

    async def list_customer_orders(
        self,
        customer_id: uuid.UUID,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[Sequence[Order], int, int]:
        """
        List a customer's orders, newest first.

        Returns:
            Tuple of (orders, total, total_pages)
        """
        orders, total = await self.repository.list_orders(
            customer_id=customer_id,
            skip=(page - 1) * limit,
            limit=limit,
        )
        return orders, total, math.ceil(total / limit) if limit else 0

    async def list_orders(
        self,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
        search: Optional[str] = None,
    ) -> tuple[Sequence[Order], int, int]:
        """
        List all orders for administrators.

        Args:
            page: 1-based page number
            limit: Page size
            status: Optional status filter value
            search: Match on order number or shipping name

        Returns:
            Tuple of (orders, total, total_pages)

        Raises:
            OrderValidationError: If the status filter is not a known status
        """
        status_filter = None
        if status:
            try:
                status_filter = OrderStatus.from_string(status)
            except ValueError as e:
                raise OrderValidationError(str(e), field="status") from e

        orders, total = await self.repository.list_orders(
            status=status_filter,
            search=search,
            skip=(page - 1) * limit,
            limit=limit,
        )
        return orders, total, math.ceil(total / limit) if limit else 0

    async def get_allowed_transitions(self, order_id: uuid.UUID) -> list[OrderStatus]:
        """Statuses the order may move to next, in lifecycle order."""
        order = await self.repository.get_order_or_raise(order_id)
        allowed = self.state_machine.get_allowed_transitions(order)
        return [status for status in OrderStatus if status in allowed]

    async def update_fulfillment_details(
        self,
        order_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
        tracking_number: Optional[str] = None,
        estimated_delivery: Optional[datetime] = None,
        shipping_address: Optional[dict] = None,
    ) -> Order:
        """
        Correct tracking, delivery estimate or shipping address.

        Items and prices are never touched and no history entry is added.

        Raises:
            OrderNotFoundError: If order not found
            OrderValidationError: If nothing is changed, the order is
                cancelled, a tracking number is set before shipping, or the
                address is incomplete
            ConcurrencyConflictError: If the order changed concurrently
        """
        if tracking_number is None and estimated_delivery is None and not shipping_address:
            raise OrderValidationError("No fulfillment changes supplied")

        order = await self.repository.get_order_or_raise(order_id)

        if order.status == OrderStatus.CANCELLED:
            raise OrderValidationError(
                "Cancelled orders cannot be updated",
                order_id=str(order_id),
            )
        if tracking_number is not None and not order.status.is_shipping_state():
            raise OrderValidationError(
                "Tracking number can only be set when the order is shipped",
                order_id=str(order_id),
                status=order.status.value,
            )
        address = (
            validate_address(shipping_address, "shipping_address")
            if shipping_address
            else None
        )

        if tracking_number is not None:
            order.tracking_number = tracking_number.strip() or None
        if estimated_delivery is not None:
            order.estimated_delivery = estimated_delivery
        if address is not None:
            order.shipping_address = address
        order.updated_at = utcnow()

        await self._persist(order, "fulfillment update")

        logger.info(
            "Order fulfillment details updated",
            order_id=str(order.id),
            actor_id=str(actor_id) if actor_id else None,
            tracking_number=order.tracking_number,
            address_changed=address is not None,
        )
        return order

    async def apply_discount(
        self,
        order_id: uuid.UUID,
        discount: Decimal,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Order:
        """
        Apply a discount and recompute the order total.

        A discount larger than the order amount is capped so the total is
        zero.

        Raises:
            OrderNotFoundError: If order not found
            OrderValidationError: If the order is terminal or the discount
                is negative
            ConcurrencyConflictError: If the order changed concurrently
        """
        order = await self.repository.get_order_or_raise(order_id)

        if order.is_terminal:
            raise OrderValidationError(
                f"Cannot apply a discount to a {order.status.value} order",
                order_id=str(order_id),
            )

        pricing = recompute_total(
            pricing_of(order),
            policy=self.pricing_policy,
            discount=to_decimal(discount, "discount"),
        )
        apply_pricing(order, pricing)
        order.updated_at = utcnow()

        await self._persist(order, "discount update")

        logger.info(
            "Discount applied",
            order_id=str(order.id),
            actor_id=str(actor_id) if actor_id else None,
            discount=str(pricing.discount),
            discount_capped=pricing.discount_capped,
            total_amount=str(pricing.total),
        )
        return order

    async def _persist(self, order: Order, operation: str) -> None:
        """Check invariants, flush and commit a mutated order, rolling back on failure."""
        try:
            self._assert_invariants(order)
            await self.repository.save(order)
            await self.repository.commit()
        except OrderError:
            await self.session.rollback()
            raise
        except Exception as e:
            await self.session.rollback()
            logger.error(
                f"Unexpected error during {operation}",
                order_id=str(order.id),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise OrderError(
                f"Unexpected error during {operation}", order_id=str(order.id)
            ) from e

    def _assert_invariants(self, order: Order) -> None:
        is_valid, errors = order.check_invariants(self.pricing_policy.tolerance)
        if not is_valid:
            logger.error(
                "Order invariant violation",
                order_id=str(order.id),
                errors=errors,
            )
            raise OrderIntegrityError(
                "Order failed integrity checks",
                order_id=str(order.id),
                errors=errors,
            )

    async def build_notification_view(self, order: Order) -> OrderNotificationView:
        """Resolve customer contact data into a notification snapshot."""
        profile = None
        if self.accounts is not None and order.customer_id is not None:
            profile = await self.accounts.get_profile(order.customer_id)

        return OrderNotificationView.from_order(
            order,
            customer_name=profile.name if profile else None,
            customer_email=profile.email if profile else None,
            customer_phone=profile.phone if profile else None,
        )

    async def _notify_created(self, order: Order) -> None:
        if self.notifier is None:
            return
        try:
            view = await self.build_notification_view(order)
            await self.notifier.order_created(view)
        except Exception as e:
            # Notification failure shouldn't block order processing
            logger.error(
                "Failed to send order creation notification",
                order_id=str(order.id),
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _notify_status_changed(
        self,
        order: Order,
        new_status: OrderStatus,
        note: Optional[str],
    ) -> None:
        if self.notifier is None:
            return
        try:
            view = await self.build_notification_view(order)
            await self.notifier.status_changed(view, new_status, note)
        except Exception as e:
            # Notification failure shouldn't block order processing
            logger.error(
                "Failed to send status change notification",
                order_id=str(order.id),
                status=new_status.value,
                error=str(e),
                error_type=type(e).__name__,
            )
