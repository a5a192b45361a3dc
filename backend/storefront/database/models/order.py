"""
Order models for the jewelry storefront.

This module defines the Order aggregate root together with its line items
and the append-only status history. Orders carry a version counter used for
optimistic concurrency so that two writers can never both advance the same
prior state.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.database.base import Base, BaseModel, UUIDMixin, utcnow
from storefront.services.orders.enums import INITIAL_STATUS, OrderStatus

MONEY = Numeric(precision=12, scale=2)
JSONDocument = JSON().with_variant(JSONB(), "postgresql")

_status_enum = SQLEnum(
    OrderStatus,
    name="order_status",
    native_enum=False,
    create_constraint=True,
    length=32,
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class Order(BaseModel):
    """
    Customer order with pricing breakdown and lifecycle status.

    Attributes:
        id: Unique order identifier (UUID)
        order_number: Human-readable display number, immutable once assigned
        customer_id: Weak reference to the purchasing account
        shipping_address: Postal address document
        billing_address: Postal address document, defaults to shipping
        subtotal: Sum of quantity x unit price over items
        tax_amount: Tax on the subtotal
        shipping_amount: Shipping fee
        discount_amount: Discount subtracted last
        total_amount: subtotal + tax + shipping - discount
        status: Current lifecycle status
        tracking_number: Carrier tracking number once shipped
        estimated_delivery: Estimated delivery timestamp
        notes: Free-form customer notes
        version_id: Optimistic concurrency counter
    """

    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        comment="Human-readable order number",
    )

    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Account that placed the order",
    )

    shipping_address: Mapped[dict[str, Any]] = mapped_column(
        JSONDocument,
        nullable=False,
        comment="Shipping address document",
    )

    billing_address: Mapped[dict[str, Any]] = mapped_column(
        JSONDocument,
        nullable=False,
        comment="Billing address document",
    )

    subtotal: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=Decimal("0.00")
    )
    shipping_amount: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=Decimal("0.00")
    )
    discount_amount: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=Decimal("0.00")
    )
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    status: Mapped[OrderStatus] = mapped_column(
        _status_enum,
        nullable=False,
        default=INITIAL_STATUS,
        index=True,
        comment="Current order status",
    )

    tracking_number: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="Carrier tracking number",
    )

    estimated_delivery: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Estimated delivery date",
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
    )

    status_history: Mapped[list["OrderStatusHistory"]] = relationship(
        "OrderStatusHistory",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.sequence",
    )

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        Index("ix_orders_customer_created", "customer_id", "created_at"),
        Index("ix_orders_status_created", "status", "created_at"),
        CheckConstraint("subtotal >= 0", name="ck_orders_subtotal_non_negative"),
        CheckConstraint("tax_amount >= 0", name="ck_orders_tax_non_negative"),
        CheckConstraint(
            "shipping_amount >= 0", name="ck_orders_shipping_non_negative"
        ),
        CheckConstraint(
            "discount_amount >= 0", name="ck_orders_discount_non_negative"
        ),
        CheckConstraint("total_amount >= 0", name="ck_orders_total_non_negative"),
        {"comment": "Customer orders with status tracking"},
    )

    def __repr__(self) -> str:
        return (
            f"<Order(id={self.id}, order_number={self.order_number}, "
            f"status={self.status.value if self.status else None}, "
            f"total_amount={self.total_amount})>"
        )

    @property
    def is_terminal(self) -> bool:
        """Check if order is in a terminal state."""
        return self.status.is_terminal()

    def calculate_total(self) -> Decimal:
        """
        Calculate total amount from components.

        Returns:
            Calculated total amount
        """
        return (
            self.subtotal
            + self.tax_amount
            + self.shipping_amount
            - self.discount_amount
        )

    def calculate_subtotal(self) -> Decimal:
        """Sum of quantity x unit price over the line items."""
        return sum(
            (item.line_total for item in self.items),
            Decimal("0.00"),
        )

    def check_invariants(
        self, tolerance: Decimal = Decimal("0.01")
    ) -> tuple[bool, list[str]]:
        """
        Check the structural invariants of the order.

        Args:
            tolerance: Allowed rounding difference between amounts

        Returns:
            Tuple of (is_valid, error_messages)
        """
        errors: list[str] = []

        if not self.items:
            errors.append("Order has no items")

        for item in self.items:
            if item.quantity < 1:
                errors.append(f"Item {item.position} has quantity below 1")
            if item.unit_price < 0:
                errors.append(f"Item {item.position} has a negative price")

        for name in (
            "subtotal",
            "tax_amount",
            "shipping_amount",
            "discount_amount",
            "total_amount",
        ):
            if getattr(self, name) < 0:
                errors.append(f"{name} cannot be negative")

        if self.items and abs(self.subtotal - self.calculate_subtotal()) > tolerance:
            errors.append(
                f"Subtotal mismatch: expected {self.calculate_subtotal()}, "
                f"got {self.subtotal}"
            )

        if abs(self.total_amount - self.calculate_total()) > tolerance:
            errors.append(
                f"Total amount mismatch: expected {self.calculate_total()}, "
                f"got {self.total_amount}"
            )

        if not self.status_history:
            errors.append("Status history is empty")
        else:
            if self.status_history[0].status != INITIAL_STATUS:
                errors.append("First history entry is not the initial status")
            if self.status_history[-1].status != self.status:
                errors.append(
                    f"Last history entry {self.status_history[-1].status.value} "
                    f"does not match status {self.status.value}"
                )
            sequences = [entry.sequence for entry in self.status_history]
            if sequences != list(range(len(sequences))):
                errors.append("Status history sequence is not contiguous")

        return len(errors) == 0, errors


class OrderItem(Base, UUIDMixin):
    """
    Line item captured at order time.

    The unit price and display fields are snapshots: later catalog changes
    never alter an existing order.
    """

    __tablename__ = "order_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    position: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Submission order of the item within the order",
    )

    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
        comment="Catalog product reference",
    )

    product_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    customization: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="Material, size, color, engraving and special instructions",
    )

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    __table_args__ = (
        UniqueConstraint("order_id", "position", name="uq_order_items_position"),
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        CheckConstraint(
            "unit_price >= 0", name="ck_order_items_unit_price_non_negative"
        ),
    )

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def __repr__(self) -> str:
        return (
            f"<OrderItem(id={self.id}, product_id={self.product_id}, "
            f"quantity={self.quantity}, unit_price={self.unit_price})>"
        )


class OrderStatusHistory(Base, UUIDMixin):
    """
    Audit trail entry for an order status.

    Rows are only ever inserted. ``sequence`` is unique per order, so two
    writers appending from the same prior state collide in the database.
    """

    __tablename__ = "order_status_history"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[OrderStatus] = mapped_column(_status_enum, nullable=False)

    note: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    updated_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        comment="Account that made the change",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    order: Mapped["Order"] = relationship("Order", back_populates="status_history")

    __table_args__ = (
        UniqueConstraint(
            "order_id", "sequence", name="uq_order_status_history_sequence"
        ),
        {"comment": "Append-only order status audit trail"},
    )

    def __repr__(self) -> str:
        return (
            f"<OrderStatusHistory(order_id={self.order_id}, "
            f"sequence={self.sequence}, status={self.status.value})>"
        )
