"""
Order repository for database operations.

This module implements the repository pattern for order data access with
async SQLAlchemy. Writes are flushed here and committed by the service;
database failures are translated into order errors, with stale versions and
duplicate history sequences reported as concurrency conflicts.
"""

import uuid
from typing import Callable, Optional, Sequence

from sqlalchemy import func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from storefront.core.logging import get_logger
from storefront.database.models.order import Order
from storefront.database.models.sequence import OrderNumberSequence
from storefront.services.orders.enums import OrderStatus
from storefront.services.orders.errors import (
    ConcurrencyConflictError,
    OrderNotFoundError,
    OrderPersistenceError,
)

logger = get_logger(__name__)


def format_order_number(prefix: str, value: int, width: int) -> str:
    """Format a counter value as a display number, e.g. ``ORD-000042``."""
    return f"{prefix}-{value:0{width}d}"


def _is_order_number_conflict(error: IntegrityError) -> bool:
    message = str(error.orig).lower()
    return "order_number" in message and "order_number_sequences" not in message


def _is_sequence_row_conflict(error: IntegrityError) -> bool:
    message = str(error.orig).lower()
    return "order_number_sequences" in message


def _is_history_conflict(error: IntegrityError) -> bool:
    message = str(error.orig).lower()
    return "order_status_history" in message or "uq_order_status_history_sequence" in message


class OrderRepository:
    """
    Repository for order data access operations.

    Provides async methods for creating, loading, listing and saving orders.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize order repository.

        Args:
            session: Async database session
        """
        self.session = session

    async def _advance_sequence(self, prefix: str) -> Optional[int]:
        stmt = (
            update(OrderNumberSequence)
            .where(OrderNumberSequence.prefix == prefix)
            .values(last_value=OrderNumberSequence.last_value + 1)
            .returning(OrderNumberSequence.last_value)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def allocate_order_number(self, prefix: str, width: int) -> str:
        """
        Advance the counter for ``prefix`` and return the formatted number.

        The increment is a single ``UPDATE ... RETURNING`` so concurrent
        transactions serialise on the counter row. The first allocation for a
        prefix inserts the row; if another transaction inserted it first, the
        increment is simply repeated.

        Args:
            prefix: Order number prefix
            width: Zero-padded counter width

        Returns:
            Newly allocated order number
        """
        value = await self._advance_sequence(prefix)

        if value is None:
            try:
                async with self.session.begin_nested():
                    await self.session.execute(
                        insert(OrderNumberSequence).values(prefix=prefix, last_value=1)
                    )
                value = 1
                logger.info("Order number sequence initialised", prefix=prefix)
            except IntegrityError as e:
                if not _is_sequence_row_conflict(e):
                    raise
                value = await self._advance_sequence(prefix)

        return format_order_number(prefix, value, width)

    async def create_order(
        self,
        build: Callable[[str], Order],
        prefix: str,
        width: int,
        max_attempts: int = 3,
    ) -> Order:
        """
        Allocate an order number, build the order and persist it.

        The order is inserted inside a savepoint. A unique-constraint
        collision on the order number undoes only that insert, so the
        counter stays advanced and the next attempt gets a fresh number.

        Args:
            build: Callable constructing the order for a given number
            prefix: Order number prefix
            width: Zero-padded counter width
            max_attempts: Attempts before giving up

        Returns:
            Flushed order with items and history

        Raises:
            OrderPersistenceError: If no unique number could be allocated or
                the database rejects the write
        """
        last_error: Optional[Exception] = None

        for attempt in range(1, max_attempts + 1):
            order_number: Optional[str] = None
            try:
                order_number = await self.allocate_order_number(prefix, width)
                order = build(order_number)
                async with self.session.begin_nested():
                    self.session.add(order)
                    await self.session.flush()

                logger.info(
                    "Order persisted",
                    order_id=str(order.id),
                    order_number=order_number,
                    item_count=len(order.items),
                    attempt=attempt,
                )
                return order

            except IntegrityError as e:
                last_error = e
                if _is_order_number_conflict(e):
                    logger.warning(
                        "Order number collision, retrying",
                        order_number=order_number,
                        attempt=attempt,
                        max_attempts=max_attempts,
                    )
                    continue
                await self.session.rollback()
                logger.error(
                    "Order creation failed - integrity error",
                    order_number=order_number,
                    error=str(e),
                )
                raise OrderPersistenceError(
                    "Order creation failed due to data integrity violation",
                    order_number=order_number,
                ) from e
            except SQLAlchemyError as e:
                await self.session.rollback()
                logger.error(
                    "Order creation failed - database error",
                    order_number=order_number,
                    error=str(e),
                )
                raise OrderPersistenceError(
                    "Order creation failed due to database error",
                    order_number=order_number,
                ) from e

        await self.session.rollback()
        logger.error(
            "Order number allocation exhausted",
            prefix=prefix,
            max_attempts=max_attempts,
        )
        raise OrderPersistenceError(
            "Could not allocate a unique order number",
            prefix=prefix,
            attempts=max_attempts,
        ) from last_error

    async def get_order_by_id(self, order_id: uuid.UUID) -> Optional[Order]:
        """
        Get order by ID with items and history.

        Args:
            order_id: Order identifier

        Returns:
            Order if found, None otherwise

        Raises:
            OrderPersistenceError: If query fails
        """
        try:
            result = await self.session.execute(
                select(Order).where(Order.id == order_id)
            )
            order = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Failed to fetch order", order_id=str(order_id), error=str(e))
            raise OrderPersistenceError(
                "Failed to fetch order", order_id=str(order_id)
            ) from e

        logger.debug("Order lookup", order_id=str(order_id), found=order is not None)
        return order

    async def get_order_or_raise(self, order_id: uuid.UUID) -> Order:
        order = await self.get_order_by_id(order_id)
        if order is None:
            raise OrderNotFoundError("Order not found", order_id=str(order_id))
        return order

    async def get_order_by_number(self, order_number: str) -> Optional[Order]:
        """
        Get order by its display number.

        Raises:
            OrderPersistenceError: If query fails
        """
        try:
            result = await self.session.execute(
                select(Order).where(Order.order_number == order_number)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to fetch order by number",
                order_number=order_number,
                error=str(e),
            )
            raise OrderPersistenceError(
                "Failed to fetch order by number", order_number=order_number
            ) from e

    async def list_orders(
        self,
        customer_id: Optional[uuid.UUID] = None,
        status: Optional[OrderStatus] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[Sequence[Order], int]:
        """
        List orders newest first with pagination.

        Args:
            customer_id: Restrict to one customer's orders
            status: Optional status filter
            search: Case-insensitive match on order number or shipping name
            skip: Number of records to skip
            limit: Maximum number of records to return

        Returns:
            Tuple of (orders, total_count)

        Raises:
            OrderPersistenceError: If query fails
        """
        conditions = []
        if customer_id is not None:
            conditions.append(Order.customer_id == customer_id)
        if status is not None:
            conditions.append(Order.status == status)
        if search:
            pattern = f"%{search.strip()}%"
            conditions.append(
                or_(
                    Order.order_number.ilike(pattern),
                    Order.shipping_address["name"].as_string().ilike(pattern),
                )
            )

        stmt = (
            select(Order)
            .where(*conditions)
            .order_by(Order.created_at.desc(), Order.order_number.desc())
            .offset(skip)
            .limit(limit)
        )
        count_stmt = select(func.count()).select_from(Order).where(*conditions)

        try:
            result = await self.session.execute(stmt)
            orders = result.scalars().all()
            total = (await self.session.execute(count_stmt)).scalar_one()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to list orders",
                customer_id=str(customer_id) if customer_id else None,
                error=str(e),
            )
            raise OrderPersistenceError("Failed to list orders") from e

        logger.debug(
            "Orders listed",
            customer_id=str(customer_id) if customer_id else None,
            status=status.value if status else None,
            count=len(orders),
            total=total,
        )
        return orders, total

    async def save(self, order: Order) -> Order:
        """
        Flush pending changes to an order.

        The UPDATE is guarded by the order's version, so a concurrent writer
        that committed first makes this flush fail.

        Raises:
            ConcurrencyConflictError: If the order changed since it was read
            OrderPersistenceError: If the database rejects the write
        """
        order_id = str(order.id)
        try:
            await self.session.flush()
        except StaleDataError as e:
            await self.session.rollback()
            logger.warning("Concurrent order modification detected", order_id=order_id)
            raise ConcurrencyConflictError(
                "Order was modified concurrently; reload and retry",
                order_id=order_id,
            ) from e
        except IntegrityError as e:
            await self.session.rollback()
            if _is_history_conflict(e):
                logger.warning(
                    "Concurrent status history append detected", order_id=order_id
                )
                raise ConcurrencyConflictError(
                    "Order was modified concurrently; reload and retry",
                    order_id=order_id,
                ) from e
            logger.error("Order update failed - integrity error", order_id=order_id, error=str(e))
            raise OrderPersistenceError(
                "Order update failed due to data integrity violation",
                order_id=order_id,
            ) from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Order update failed - database error", order_id=order_id, error=str(e))
            raise OrderPersistenceError(
                "Order update failed due to database error", order_id=order_id
            ) from e

        return order

    async def commit(self) -> None:
        """
        Commit the current transaction.

        Raises:
            ConcurrencyConflictError: If a pending version check fails
            OrderPersistenceError: If the commit fails
        """
        try:
            await self.session.commit()
        except StaleDataError as e:
            await self.session.rollback()
            raise ConcurrencyConflictError(
                "Order was modified concurrently; reload and retry"
            ) from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Commit failed", error=str(e))
            raise OrderPersistenceError("Failed to commit order changes") from e
