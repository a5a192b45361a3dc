"""
Validation and construction of new orders.

Everything here is free of I/O: callers resolve catalog entries and allocate
the order number first, then hand the results in. A built order is
``pending`` with exactly one history entry and a recomputed pricing
breakdown.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence

from storefront.core.logging import get_logger
from storefront.database.base import utcnow
from storefront.database.models.order import Order, OrderItem, OrderStatusHistory
from storefront.services.catalog import CatalogEntry
from storefront.services.orders.enums import INITIAL_STATUS
from storefront.services.orders.errors import OrderValidationError
from storefront.services.orders.pricing import (
    Amount,
    PricingBreakdown,
    PricingPolicy,
    calculate_pricing,
    calculate_subtotal,
    to_decimal,
    verify_submitted_amount,
)

logger = get_logger(__name__)

REQUIRED_ADDRESS_FIELDS: tuple[str, ...] = (
    "name",
    "phone",
    "street",
    "city",
    "state",
    "postal_code",
    "country",
)

CUSTOMIZATION_FIELDS: tuple[str, ...] = (
    "material",
    "size",
    "color",
    "special_instructions",
)

ENGRAVING_FIELDS: tuple[str, ...] = ("text", "font", "position")

CREATION_NOTE = "Order placed"


@dataclass
class LineItemInput:
    """Submitted line item."""

    product_id: uuid.UUID
    quantity: int
    price: Amount
    customization: Optional[Mapping[str, Any]] = None


@dataclass
class OrderDraft:
    """
    Submitted order before validation.

    ``subtotal`` and ``total`` are the client's own figures; when present
    they must match the recomputed values.
    """

    items: Sequence[LineItemInput]
    shipping_address: Mapping[str, Any]
    billing_address: Optional[Mapping[str, Any]] = None
    subtotal: Optional[Amount] = None
    total: Optional[Amount] = None
    notes: Optional[str] = None


@dataclass
class ValidatedOrder:
    """Normalised order contents ready to be numbered and persisted."""

    items: list[dict[str, Any]]
    shipping_address: dict[str, Any]
    billing_address: dict[str, Any]
    pricing: PricingBreakdown
    notes: Optional[str] = None


def validate_address(
    address: Optional[Mapping[str, Any]],
    label: str = "shipping_address",
) -> dict[str, Any]:
    """
    Validate a postal address and return a normalised copy.

    Blank strings count as missing.

    Args:
        address: Submitted address document
        label: Field name used in error messages

    Returns:
        Address with string values stripped

    Raises:
        OrderValidationError: If the address or any required field is missing
    """
    if not address:
        raise OrderValidationError(f"{label} is required", field=label)

    normalised: dict[str, Any] = {}
    for key, value in address.items():
        normalised[key] = value.strip() if isinstance(value, str) else value

    missing = [
        name
        for name in REQUIRED_ADDRESS_FIELDS
        if not isinstance(normalised.get(name), str) or not normalised[name]
    ]
    if missing:
        raise OrderValidationError(
            f"{label} is missing required fields: {', '.join(missing)}",
            errors=[f"{label}.{name} is required" for name in missing],
            field=label,
            missing=missing,
        )

    return normalised


def normalize_customization(
    customization: Optional[Mapping[str, Any]],
) -> Optional[dict[str, Any]]:
    """Keep the known customization fields that carry a value."""
    if not customization:
        return None

    result: dict[str, Any] = {}
    for name in CUSTOMIZATION_FIELDS:
        value = customization.get(name)
        if isinstance(value, str):
            value = value.strip()
        if value:
            result[name] = value

    engraving = customization.get("engraving")
    if isinstance(engraving, Mapping):
        engraving_values = {
            name: engraving[name].strip()
            for name in ENGRAVING_FIELDS
            if isinstance(engraving.get(name), str) and engraving[name].strip()
        }
        if engraving_values:
            result["engraving"] = engraving_values

    return result or None


def validate_items(
    items: Sequence[LineItemInput],
    catalog: Optional[Mapping[uuid.UUID, CatalogEntry]] = None,
    policy: Optional[PricingPolicy] = None,
) -> list[dict[str, Any]]:
    """
    Validate submitted line items.

    When a catalog mapping is given, every product must be present and
    active and its submitted price must equal the catalog price. The
    submitted price is never replaced.

    Args:
        items: Submitted line items in order
        catalog: Catalog entries keyed by product id
        policy: Pricing rules providing tolerance and rounding

    Returns:
        Normalised item dictionaries in submission order

    Raises:
        OrderValidationError: On the first group of invalid items
    """
    policy = policy or PricingPolicy.from_settings()

    if not items:
        raise OrderValidationError("Order must contain at least one item")

    errors: list[str] = []
    normalised: list[dict[str, Any]] = []

    for position, item in enumerate(items):
        quantity = item.quantity
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            errors.append(f"items[{position}].quantity must be an integer >= 1")
            continue

        price = to_decimal(item.price, f"items[{position}].price")
        if price < 0:
            errors.append(f"items[{position}].price cannot be negative")
            continue
        price = policy.quantize(price)

        entry = catalog.get(item.product_id) if catalog is not None else None
        if catalog is not None:
            if entry is None:
                errors.append(f"items[{position}] references an unknown product")
                continue
            if not entry.is_active:
                errors.append(f"items[{position}] product {entry.name} is not available")
                continue
            if abs(entry.price - price) > policy.tolerance:
                errors.append(
                    f"items[{position}].price {price} does not match "
                    f"catalog price {entry.price}"
                )
                continue

        normalised.append(
            {
                "position": position,
                "product_id": item.product_id,
                "product_name": entry.name if entry else None,
                "image_url": entry.image_url if entry else None,
                "quantity": quantity,
                "unit_price": price,
                "customization": normalize_customization(item.customization),
            }
        )

    if errors:
        raise OrderValidationError(
            "Order items are invalid",
            errors=errors,
            item_count=len(items),
        )

    return normalised


def validate_order(
    draft: OrderDraft,
    catalog: Optional[Mapping[uuid.UUID, CatalogEntry]] = None,
    policy: Optional[PricingPolicy] = None,
) -> ValidatedOrder:
    """
    Validate a submitted order and compute its pricing.

    Args:
        draft: Submitted order
        catalog: Catalog entries keyed by product id, if a catalog is in use
        policy: Pricing rules

    Returns:
        Validated order contents

    Raises:
        OrderValidationError: If items, addresses or submitted amounts are invalid
    """
    policy = policy or PricingPolicy.from_settings()

    items = validate_items(draft.items, catalog=catalog, policy=policy)
    shipping_address = validate_address(draft.shipping_address, "shipping_address")
    if draft.billing_address:
        billing_address = validate_address(draft.billing_address, "billing_address")
    else:
        billing_address = dict(shipping_address)

    subtotal = calculate_subtotal(
        ((item["quantity"], item["unit_price"]) for item in items),
        policy,
    )
    pricing = calculate_pricing(subtotal, policy=policy)

    verify_submitted_amount("subtotal", draft.subtotal, pricing.subtotal, policy)
    verify_submitted_amount("total", draft.total, pricing.total, policy)

    notes = draft.notes.strip() if draft.notes else None

    return ValidatedOrder(
        items=items,
        shipping_address=shipping_address,
        billing_address=billing_address,
        pricing=pricing,
        notes=notes or None,
    )


def build_order(
    validated: ValidatedOrder,
    order_number: str,
    customer_id: Optional[uuid.UUID],
    now: Optional[datetime] = None,
) -> Order:
    """
    Construct a new pending order with its first history entry.

    Args:
        validated: Output of ``validate_order``
        order_number: Allocated display number
        customer_id: Purchasing account
        now: Creation timestamp, defaults to the current UTC time

    Returns:
        Transient Order ready to be added to a session
    """
    now = now or utcnow()
    pricing = validated.pricing

    order = Order(
        id=uuid.uuid4(),
        order_number=order_number,
        customer_id=customer_id,
        shipping_address=dict(validated.shipping_address),
        billing_address=dict(validated.billing_address),
        subtotal=pricing.subtotal,
        tax_amount=pricing.tax,
        shipping_amount=pricing.shipping,
        discount_amount=pricing.discount,
        total_amount=pricing.total,
        status=INITIAL_STATUS,
        notes=validated.notes,
        created_at=now,
        updated_at=now,
    )
    order.items = [OrderItem(**item) for item in validated.items]
    order.status_history = [
        OrderStatusHistory(
            sequence=0,
            status=INITIAL_STATUS,
            note=CREATION_NOTE,
            updated_by=customer_id,
            created_at=now,
        )
    ]

    logger.debug(
        "Order built",
        order_number=order_number,
        item_count=len(order.items),
        total_amount=str(pricing.total),
    )

    return order


def apply_pricing(order: Order, pricing: PricingBreakdown) -> None:
    """Copy a recomputed breakdown onto the order amounts."""
    order.subtotal = pricing.subtotal
    order.tax_amount = pricing.tax
    order.shipping_amount = pricing.shipping
    order.discount_amount = pricing.discount
    order.total_amount = pricing.total


def pricing_of(order: Order) -> PricingBreakdown:
    """Read the current breakdown from an order."""
    return PricingBreakdown(
        subtotal=Decimal(order.subtotal),
        tax=Decimal(order.tax_amount),
        shipping=Decimal(order.shipping_amount),
        discount=Decimal(order.discount_amount),
        total=Decimal(order.total_amount),
    )
