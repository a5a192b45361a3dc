"""
Tests for OrderService against a SQLite database.

Covers order placement, status updates, administrative corrections,
queries and the isolation of notification failures.
"""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from storefront.services.accounts import SqlAccountDirectory
from storefront.services.catalog import CatalogError, SqlCatalogService
from storefront.services.orders.enums import OrderStatus
from storefront.services.orders.errors import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    OrderAccessDeniedError,
    OrderError,
    OrderNotFoundError,
    OrderValidationError,
)
from storefront.services.orders.repository import OrderRepository
from storefront.services.orders.service import OrderService

from conftest import FailingNotifier, make_address, make_draft


async def place(order_service, customer, *lines, **overrides):
    return await order_service.create_order(customer.id, make_draft(*lines, **overrides))


# ============================================================================
# Order Creation Tests
# ============================================================================


class TestCreateOrder:
    """Tests for placing orders."""

    async def test_creates_pending_order_with_pricing(
        self, order_service, customer, products, notifier
    ):
        order = await place(order_service, customer, (products["ring"], 2))

        assert order.order_number == "ORD-000001"
        assert order.status == OrderStatus.PENDING
        assert order.subtotal == Decimal("5000.00")
        assert order.tax_amount == Decimal("900.00")
        assert order.shipping_amount == Decimal("500.00")
        assert order.total_amount == Decimal("6400.00")
        assert order.items[0].product_name == "Gold Band Ring"
        assert len(order.status_history) == 1

    async def test_free_shipping_above_threshold(self, order_service, customer, products):
        order = await place(order_service, customer, (products["necklace"], 1))

        assert order.shipping_amount == Decimal("0.00")
        assert order.total_amount == Decimal("14160.00")

    async def test_bangle_order_confirmed_after_payment(
        self, order_service, customer, products
    ):
        order = await place(order_service, customer, (products["bangle"], 1))

        assert order.status == OrderStatus.PENDING
        assert order.subtotal == Decimal("45000")
        assert order.tax_amount == Decimal("8100")
        assert order.shipping_amount == Decimal("0")
        assert order.total_amount == Decimal("53100")

        confirmed = await order_service.update_order_status(
            order.id, "confirmed", note="payment received"
        )

        assert len(confirmed.status_history) == 2
        assert confirmed.status_history[-1].status == OrderStatus.CONFIRMED
        assert confirmed.status_history[-1].note == "payment received"

    async def test_bracelet_order_pays_flat_shipping(self, order_service, customer, products):
        order = await place(order_service, customer, (products["bracelet"], 1))

        assert order.shipping_amount == Decimal("500")
        assert order.tax_amount == Decimal("1440")
        assert order.total_amount == Decimal("9940")

    async def test_order_numbers_increase(self, order_service, customer, products):
        first = await place(order_service, customer, (products["ring"], 1))
        second = await place(order_service, customer, (products["ring"], 1))

        assert first.order_number == "ORD-000001"
        assert second.order_number == "ORD-000002"

    async def test_notification_uses_account_contact(
        self, order_service, customer, products, notifier
    ):
        order = await place(order_service, customer, (products["ring"], 1))

        [view] = notifier.created
        assert view.order_number == order.order_number
        assert view.customer_email == "asha@example.com"
        assert view.customer_name == "Asha Rao"
        assert view.items[0].name == "Gold Band Ring"

    async def test_price_mismatch_persists_nothing(
        self, order_service, session, customer, products, notifier
    ):
        draft = make_draft((products["ring"], 1))
        draft.items[0].price = Decimal("100.00")

        with pytest.raises(OrderValidationError):
            await order_service.create_order(customer.id, draft)

        orders, total = await OrderRepository(session).list_orders()
        assert total == 0
        assert notifier.created == []

    async def test_inactive_product_rejected(self, order_service, customer, products):
        with pytest.raises(OrderValidationError):
            await place(order_service, customer, (products["retired"], 1))

    async def test_empty_order_rejected(self, order_service, customer):
        with pytest.raises(OrderValidationError):
            await order_service.create_order(customer.id, make_draft())

    async def test_incomplete_address_rejected(self, order_service, customer, products):
        with pytest.raises(OrderValidationError):
            await place(
                order_service,
                customer,
                (products["ring"], 1),
                shipping_address=make_address(city=""),
            )

    async def test_wrong_submitted_total_rejected(self, order_service, customer, products):
        with pytest.raises(OrderValidationError):
            await place(order_service, customer, (products["ring"], 1), total=Decimal("2500"))

    async def test_catalog_failure_is_order_error(self, session, customer, products):
        catalog = AsyncMock()
        catalog.get_entries.side_effect = CatalogError("catalog down")
        service = OrderService(session, catalog=catalog)

        with pytest.raises(OrderError) as exc_info:
            await place(service, customer, (products["ring"], 1))

        assert not isinstance(exc_info.value, OrderValidationError)

    async def test_notification_failure_does_not_fail_creation(
        self, session, customer, products
    ):
        service = OrderService(
            session,
            notifier=FailingNotifier(),
            catalog=SqlCatalogService(session),
            accounts=SqlAccountDirectory(session),
        )

        order = await place(service, customer, (products["ring"], 1))

        stored = await OrderRepository(session).get_order_by_number(order.order_number)
        assert stored is not None


# ============================================================================
# Status Update Tests
# ============================================================================


class TestUpdateOrderStatus:
    """Tests for status transitions through the service."""

    async def test_transition_records_history_and_notifies(
        self, order_service, customer, admin, products, notifier
    ):
        order = await place(order_service, customer, (products["ring"], 1))

        updated = await order_service.update_order_status(
            order.id, "confirmed", actor_id=admin.id, note="Payment verified"
        )

        assert updated.status == OrderStatus.CONFIRMED
        assert updated.status_history[-1].updated_by == admin.id
        assert updated.version_id == 2
        [(view, status, note)] = notifier.status_changes
        assert status == OrderStatus.CONFIRMED
        assert note == "Payment verified"
        assert view.status == OrderStatus.CONFIRMED

    async def test_shipping_sets_tracking(self, order_service, customer, admin, products):
        order = await place(order_service, customer, (products["ring"], 1))
        eta = datetime(2024, 6, 1, tzinfo=timezone.utc)

        updated = await order_service.update_order_status(
            order.id,
            OrderStatus.SHIPPED,
            actor_id=admin.id,
            tracking_number="BD123456789IN",
            estimated_delivery=eta,
        )

        assert updated.tracking_number == "BD123456789IN"

    async def test_same_status_rejected(self, order_service, customer, products, notifier):
        order = await place(order_service, customer, (products["ring"], 1))

        with pytest.raises(InvalidTransitionError):
            await order_service.update_order_status(order.id, "pending")

        assert notifier.status_changes == []

    async def test_delivered_order_is_final(self, order_service, customer, products):
        order = await place(order_service, customer, (products["ring"], 1))
        await order_service.update_order_status(order.id, "delivered")

        with pytest.raises(InvalidTransitionError):
            await order_service.update_order_status(order.id, "cancelled")

    async def test_unknown_order(self, order_service):
        with pytest.raises(OrderNotFoundError):
            await order_service.update_order_status(uuid4(), "confirmed")

    async def test_unknown_status(self, order_service, customer, products):
        order = await place(order_service, customer, (products["ring"], 1))

        with pytest.raises(InvalidTransitionError):
            await order_service.update_order_status(order.id, "refunded")

    async def test_history_survives_reload(
        self, order_service, session_factory, customer, products
    ):
        order = await place(order_service, customer, (products["ring"], 1))
        for status in ("confirmed", "in_production", "quality_check"):
            await order_service.update_order_status(order.id, status)

        async with session_factory() as fresh:
            stored = await OrderRepository(fresh).get_order_or_raise(order.id)

        assert [h.sequence for h in stored.status_history] == [0, 1, 2, 3]
        assert stored.status == OrderStatus.QUALITY_CHECK
        is_valid, errors = stored.check_invariants()
        assert is_valid, errors

    async def test_concurrent_update_loses(
        self, session_factory, session, customer, products
    ):
        order = await place(
            OrderService(session, catalog=SqlCatalogService(session)),
            customer,
            (products["ring"], 1),
        )

        async with session_factory() as first, session_factory() as second:
            first_service = OrderService(first)
            second_service = OrderService(second)
            # Both administrators load the order before either writes; the
            # reference keeps the stale copy in the second identity map
            stale = await second_service.repository.get_order_or_raise(order.id)

            await first_service.update_order_status(order.id, "confirmed")
            with pytest.raises(ConcurrencyConflictError):
                await second_service.update_order_status(order.id, "cancelled")
            assert stale.id == order.id

        async with session_factory() as fresh:
            stored = await OrderRepository(fresh).get_order_or_raise(order.id)

        assert stored.status == OrderStatus.CONFIRMED
        assert [(h.sequence, h.status) for h in stored.status_history] == [
            (0, OrderStatus.PENDING),
            (1, OrderStatus.CONFIRMED),
        ]
        is_valid, errors = stored.check_invariants()
        assert is_valid, errors

    async def test_notification_failure_does_not_fail_update(
        self, session, customer, products
    ):
        service = OrderService(
            session, notifier=FailingNotifier(), catalog=SqlCatalogService(session)
        )
        order = await place(service, customer, (products["ring"], 1))

        updated = await service.update_order_status(order.id, "confirmed")

        assert updated.status == OrderStatus.CONFIRMED


# ============================================================================
# Query Tests
# ============================================================================


class TestQueries:
    """Tests for reading orders."""

    async def test_owner_and_admin_can_read(self, order_service, customer, admin, products):
        order = await place(order_service, customer, (products["ring"], 1))

        assert (await order_service.get_order(order.id, customer.id)).id == order.id
        assert (await order_service.get_order(order.id, admin.id, is_admin=True)).id == order.id

    async def test_other_customer_is_denied(
        self, order_service, customer, other_customer, products
    ):
        order = await place(order_service, customer, (products["ring"], 1))

        with pytest.raises(OrderAccessDeniedError):
            await order_service.get_order(order.id, other_customer.id)

    async def test_customer_listing_pages(self, order_service, customer, products):
        for _ in range(3):
            await place(order_service, customer, (products["ring"], 1))

        orders, total, total_pages = await order_service.list_customer_orders(
            customer.id, page=2, limit=2
        )

        assert total == 3
        assert total_pages == 2
        assert len(orders) == 1

    async def test_admin_listing_by_status(self, order_service, customer, products):
        first = await place(order_service, customer, (products["ring"], 1))
        await place(order_service, customer, (products["ring"], 1))
        await order_service.update_order_status(first.id, "confirmed")

        orders, total, _ = await order_service.list_orders(status="Confirmed")

        assert total == 1
        assert orders[0].id == first.id

    async def test_admin_listing_rejects_unknown_status(self, order_service):
        with pytest.raises(OrderValidationError):
            await order_service.list_orders(status="misplaced")

    async def test_allowed_transitions(self, session, customer, products):
        service = OrderService(session, catalog=SqlCatalogService(session))
        service.state_machine.strict = True
        order = await place(service, customer, (products["ring"], 1))
        await service.update_order_status(order.id, "shipped")

        allowed = await service.get_allowed_transitions(order.id)

        assert allowed == [OrderStatus.DELIVERED, OrderStatus.CANCELLED]


# ============================================================================
# Administrative Correction Tests
# ============================================================================


class TestCorrections:
    """Tests for fulfillment corrections and discounts."""

    async def test_fulfillment_correction(self, order_service, customer, admin, products):
        order = await place(order_service, customer, (products["ring"], 1))
        await order_service.update_order_status(order.id, "shipped", tracking_number="OLD1")

        updated = await order_service.update_fulfillment_details(
            order.id,
            actor_id=admin.id,
            tracking_number="NEW2",
            shipping_address=make_address(street="44 Residency Road"),
        )

        assert updated.tracking_number == "NEW2"
        assert updated.shipping_address["street"] == "44 Residency Road"
        assert len(updated.status_history) == 2

    async def test_tracking_before_shipping_rejected(self, order_service, customer, products):
        order = await place(order_service, customer, (products["ring"], 1))

        with pytest.raises(OrderValidationError):
            await order_service.update_fulfillment_details(order.id, tracking_number="X1")

    async def test_cancelled_order_cannot_be_corrected(
        self, order_service, customer, products
    ):
        order = await place(order_service, customer, (products["ring"], 1))
        await order_service.update_order_status(order.id, "cancelled")

        with pytest.raises(OrderValidationError):
            await order_service.update_fulfillment_details(
                order.id, shipping_address=make_address()
            )

    async def test_empty_correction_rejected(self, order_service, customer, products):
        order = await place(order_service, customer, (products["ring"], 1))

        with pytest.raises(OrderValidationError):
            await order_service.update_fulfillment_details(order.id)

    async def test_discount_recomputes_total(self, order_service, customer, products):
        order = await place(order_service, customer, (products["ring"], 1))

        updated = await order_service.apply_discount(order.id, Decimal("450"))

        assert updated.discount_amount == Decimal("450.00")
        assert updated.total_amount == Decimal("3000.00")

    async def test_discount_is_capped(self, order_service, customer, products):
        order = await place(order_service, customer, (products["ring"], 1))

        updated = await order_service.apply_discount(order.id, Decimal("99999"))

        assert updated.total_amount == Decimal("0.00")
        assert updated.discount_amount == Decimal("3450.00")

    async def test_discount_on_delivered_order_rejected(
        self, order_service, customer, products
    ):
        order = await place(order_service, customer, (products["ring"], 1))
        await order_service.update_order_status(order.id, "delivered")

        with pytest.raises(OrderValidationError):
            await order_service.apply_discount(order.id, Decimal("10"))
