"""
Pricing computation for orders.

All amounts are ``Decimal`` and rounded half-up to the currency quantum.
Tax applies to the subtotal only; shipping is free at or above the
configured threshold and a flat fee otherwise; the discount is subtracted
last and capped so that the total never goes below zero.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Optional, Union

from storefront.core.config import Settings, get_settings
from storefront.core.logging import get_logger
from storefront.services.orders.errors import OrderValidationError

logger = get_logger(__name__)

Amount = Union[Decimal, int, str, float]

ZERO = Decimal("0")


@dataclass(frozen=True)
class PricingPolicy:
    """Store pricing rules."""

    tax_rate: Decimal = Decimal("0.18")
    free_shipping_threshold: Decimal = Decimal("10000")
    flat_shipping_fee: Decimal = Decimal("500")
    quantum: Decimal = Decimal("0.01")
    tolerance: Decimal = Decimal("0.01")

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "PricingPolicy":
        settings = settings or get_settings()
        return cls(
            tax_rate=settings.tax_rate,
            free_shipping_threshold=settings.free_shipping_threshold,
            flat_shipping_fee=settings.flat_shipping_fee,
            quantum=settings.currency_quantum,
            tolerance=settings.price_tolerance,
        )

    def quantize(self, value: Decimal) -> Decimal:
        return value.quantize(self.quantum, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PricingBreakdown:
    """
    Order pricing breakdown.

    Attributes:
        subtotal: Sum of quantity x unit price
        tax: Tax on the subtotal
        shipping: Shipping fee
        discount: Discount actually applied
        total: subtotal + tax + shipping - discount
        discount_capped: True when the requested discount was reduced to keep
            the total at zero
    """

    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    discount: Decimal
    total: Decimal
    discount_capped: bool = False


def to_decimal(value: Amount, field: str = "amount") -> Decimal:
    """
    Convert a submitted amount to Decimal.

    Floats go through ``str`` so that 0.1 stays 0.1.

    Raises:
        OrderValidationError: If the value is not a finite number
    """
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError) as e:
            raise OrderValidationError(
                f"{field} is not a valid amount", field=field, value=str(value)
            ) from e
    if not result.is_finite():
        raise OrderValidationError(
            f"{field} is not a valid amount", field=field, value=str(value)
        )
    return result


def calculate_subtotal(
    lines: Iterable[tuple[int, Amount]],
    policy: Optional[PricingPolicy] = None,
) -> Decimal:
    """
    Sum quantity x unit price over ``(quantity, unit_price)`` pairs.

    Args:
        lines: Quantity and unit price per line item
        policy: Pricing policy providing the rounding quantum

    Returns:
        Rounded subtotal
    """
    policy = policy or PricingPolicy.from_settings()
    total = sum(
        (to_decimal(price, "price") * quantity for quantity, price in lines),
        ZERO,
    )
    return policy.quantize(total)


def calculate_tax(subtotal: Decimal, policy: PricingPolicy) -> Decimal:
    return policy.quantize(subtotal * policy.tax_rate)


def calculate_shipping(subtotal: Decimal, policy: PricingPolicy) -> Decimal:
    if subtotal >= policy.free_shipping_threshold:
        return policy.quantize(ZERO)
    return policy.quantize(policy.flat_shipping_fee)


def calculate_pricing(
    subtotal: Amount,
    discount: Amount = ZERO,
    policy: Optional[PricingPolicy] = None,
) -> PricingBreakdown:
    """
    Compute the full pricing breakdown for a subtotal.

    Args:
        subtotal: Sum of line totals
        discount: Requested non-negative discount
        policy: Pricing rules, defaults to the configured ones

    Returns:
        Pricing breakdown satisfying total == subtotal + tax + shipping - discount

    Raises:
        OrderValidationError: If subtotal or discount is negative
    """
    policy = policy or PricingPolicy.from_settings()
    subtotal_value = policy.quantize(to_decimal(subtotal, "subtotal"))
    discount_value = policy.quantize(to_decimal(discount, "discount"))

    if subtotal_value < ZERO:
        raise OrderValidationError(
            "Subtotal cannot be negative", subtotal=str(subtotal_value)
        )
    if discount_value < ZERO:
        raise OrderValidationError(
            "Discount cannot be negative", discount=str(discount_value)
        )

    tax = calculate_tax(subtotal_value, policy)
    shipping = calculate_shipping(subtotal_value, policy)
    gross = subtotal_value + tax + shipping

    capped = discount_value > gross
    if capped:
        logger.warning(
            "Discount exceeds order amount, capping at zero total",
            requested_discount=str(discount_value),
            gross_amount=str(gross),
        )
        discount_value = gross

    return PricingBreakdown(
        subtotal=subtotal_value,
        tax=tax,
        shipping=shipping,
        discount=discount_value,
        total=gross - discount_value,
        discount_capped=capped,
    )


def recompute_total(
    pricing: PricingBreakdown,
    policy: Optional[PricingPolicy] = None,
    discount: Optional[Amount] = None,
) -> PricingBreakdown:
    """
    Re-derive tax, shipping and total from a breakdown's subtotal.

    Used whenever the rules or the discount change so that the total is
    always recomputed rather than edited.

    Args:
        pricing: Existing breakdown
        policy: Pricing rules, defaults to the configured ones
        discount: Replacement discount, defaults to the current one

    Returns:
        New consistent breakdown
    """
    requested = pricing.discount if discount is None else discount
    return calculate_pricing(pricing.subtotal, requested, policy)


def verify_submitted_amount(
    name: str,
    submitted: Optional[Amount],
    expected: Decimal,
    policy: PricingPolicy,
) -> None:
    """
    Reject a client-supplied amount that differs from the recomputed one.

    Raises:
        OrderValidationError: If the difference exceeds the tolerance
    """
    if submitted is None:
        return
    value = to_decimal(submitted, name)
    if abs(value - expected) > policy.tolerance:
        logger.warning(
            "Submitted amount does not match recomputed value",
            field=name,
            submitted=str(value),
            expected=str(expected),
        )
        raise OrderValidationError(
            f"Submitted {name} {value} does not match computed {name} {expected}",
            field=name,
            submitted=str(value),
            expected=str(expected),
        )
