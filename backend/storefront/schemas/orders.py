"""
Order Pydantic schemas for API request/response validation.

This module defines the request bodies for order placement and the
administrative updates, the response models built from ORM orders, and the
denormalised view handed to the notification gateway.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storefront.services.orders.aggregate import LineItemInput, OrderDraft
from storefront.services.orders.enums import STATUS_LABELS, OrderStatus


class EngravingRequest(BaseModel):
    """Engraving details for a customised piece."""

    model_config = ConfigDict(str_strip_whitespace=True)

    text: Optional[str] = Field(None, max_length=100)
    font: Optional[str] = Field(None, max_length=50)
    position: Optional[str] = Field(None, max_length=50)


class ItemCustomizationRequest(BaseModel):
    """Optional customization for a line item."""

    model_config = ConfigDict(str_strip_whitespace=True)

    material: Optional[str] = Field(None, max_length=50)
    size: Optional[str] = Field(None, max_length=20)
    color: Optional[str] = Field(None, max_length=30)
    engraving: Optional[EngravingRequest] = None
    special_instructions: Optional[str] = Field(None, max_length=500)


class AddressRequest(BaseModel):
    """Postal address. Required fields are checked when the order is built."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(None, max_length=200, description="Recipient name")
    phone: Optional[str] = Field(None, max_length=20, description="Contact phone")
    street: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    postal_code: Optional[str] = Field(None, max_length=20)
    country: Optional[str] = Field(None, max_length=100)


class OrderItemRequest(BaseModel):
    """Line item submitted at checkout."""

    product_id: UUID = Field(..., description="Catalog product identifier")
    quantity: int = Field(..., description="Quantity, at least 1")
    price: Decimal = Field(..., description="Unit price shown to the customer")
    customization: Optional[ItemCustomizationRequest] = None

    def to_input(self) -> LineItemInput:
        return LineItemInput(
            product_id=self.product_id,
            quantity=self.quantity,
            price=self.price,
            customization=(
                self.customization.model_dump(exclude_none=True)
                if self.customization
                else None
            ),
        )


class OrderCreateRequest(BaseModel):
    """Request schema for placing an order."""

    items: list[OrderItemRequest] = Field(default_factory=list)
    shipping_address: AddressRequest
    billing_address: Optional[AddressRequest] = None
    subtotal: Optional[Decimal] = Field(
        None, description="Client-computed subtotal, checked against the server value"
    )
    total: Optional[Decimal] = Field(
        None, description="Client-computed total, checked against the server value"
    )
    notes: Optional[str] = Field(None, max_length=1000)

    def to_draft(self) -> OrderDraft:
        return OrderDraft(
            items=[item.to_input() for item in self.items],
            shipping_address=self.shipping_address.model_dump(exclude_none=True),
            billing_address=(
                self.billing_address.model_dump(exclude_none=True)
                if self.billing_address
                else None
            ),
            subtotal=self.subtotal,
            total=self.total,
            notes=self.notes,
        )


class OrderStatusUpdate(BaseModel):
    """Request schema for an administrative status change."""

    model_config = ConfigDict(str_strip_whitespace=True)

    status: str = Field(..., min_length=1, description="Target status value")
    note: Optional[str] = Field(None, max_length=500)
    tracking_number: Optional[str] = Field(None, max_length=100)
    estimated_delivery: Optional[datetime] = None


class FulfillmentUpdate(BaseModel):
    """Request schema for correcting shipping and tracking details."""

    model_config = ConfigDict(str_strip_whitespace=True)

    tracking_number: Optional[str] = Field(None, max_length=100)
    estimated_delivery: Optional[datetime] = None
    shipping_address: Optional[AddressRequest] = None


class DiscountUpdate(BaseModel):
    """Request schema for applying a discount."""

    discount: Decimal = Field(..., ge=0, description="Discount amount")


class OrderItemResponse(BaseModel):
    """Line item as stored on the order."""

    model_config = ConfigDict(from_attributes=True)

    product_id: UUID
    product_name: Optional[str] = None
    image_url: Optional[str] = None
    quantity: int
    unit_price: Decimal
    customization: Optional[dict[str, Any]] = None


class StatusHistoryResponse(BaseModel):
    """Status history entry."""

    model_config = ConfigDict(from_attributes=True)

    sequence: int
    status: OrderStatus
    note: Optional[str] = None
    updated_by: Optional[UUID] = None
    created_at: datetime


class OrderResponse(BaseModel):
    """Response schema for an order."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    customer_id: Optional[UUID] = None
    status: OrderStatus
    status_label: Optional[str] = None
    items: list[OrderItemResponse]
    shipping_address: dict[str, Any]
    billing_address: dict[str, Any]
    subtotal: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    notes: Optional[str] = None
    status_history: list[StatusHistoryResponse]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_order(cls, order: Any) -> "OrderResponse":
        response = cls.model_validate(order)
        response.status_label = STATUS_LABELS[response.status]
        return response


class OrderListResponse(BaseModel):
    """Paginated list of orders."""

    orders: list[OrderResponse]
    total: int
    page: int
    total_pages: int


class StatusOption(BaseModel):
    """Entry of the status catalogue."""

    value: str
    label: str
    description: Optional[str] = None
    terminal: bool


class NotificationItem(BaseModel):
    """Line item with resolved display fields."""

    name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    customization: Optional[dict[str, Any]] = None


class OrderNotificationView(BaseModel):
    """
    Fully resolved order snapshot for notifications.

    Built by the order service after commit so that channels never need to
    reach back into the database.
    """

    order_id: UUID
    order_number: str
    status: OrderStatus
    customer_name: str
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    items: list[NotificationItem]
    subtotal: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    shipping_address: dict[str, Any]
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    created_at: datetime

    @field_validator("customer_name")
    @classmethod
    def default_customer_name(cls, v: str) -> str:
        return v or "Customer"

    @classmethod
    def from_order(
        cls,
        order: Any,
        customer_name: Optional[str] = None,
        customer_email: Optional[str] = None,
        customer_phone: Optional[str] = None,
    ) -> "OrderNotificationView":
        """
        Build the view from an ORM order and resolved contact data.

        Address name and phone are used when the account has none.
        """
        address = dict(order.shipping_address or {})
        return cls(
            order_id=order.id,
            order_number=order.order_number,
            status=order.status,
            customer_name=customer_name or address.get("name") or "Customer",
            customer_email=customer_email,
            customer_phone=customer_phone or address.get("phone"),
            items=[
                NotificationItem(
                    name=item.product_name or f"Product {item.product_id}",
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    line_total=item.line_total,
                    customization=item.customization,
                )
                for item in order.items
            ],
            subtotal=order.subtotal,
            tax_amount=order.tax_amount,
            shipping_amount=order.shipping_amount,
            discount_amount=order.discount_amount,
            total_amount=order.total_amount,
            shipping_address=address,
            tracking_number=order.tracking_number,
            estimated_delivery=order.estimated_delivery,
            created_at=order.created_at,
        )
