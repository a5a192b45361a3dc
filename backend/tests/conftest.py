"""
Pytest configuration and shared test fixtures.

Every test that touches the database gets its own SQLite file under
``tmp_path`` with the full schema created, so tests never share rows.
"""

import os

os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("APP_SECRET_KEY", "test-secret-key-for-storefront-tests")
os.environ.setdefault("APP_DATABASE_URL", "sqlite+aiosqlite:///./storefront-test.db")
os.environ.setdefault("APP_NOTIFICATION_DISPATCH_MODE", "inline")
os.environ.setdefault("APP_LOG_LEVEL", "WARNING")

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator, Optional
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from storefront.core.config import get_settings

get_settings.cache_clear()

from storefront.database.connection import (  # noqa: E402
    create_all_tables,
    create_engine,
    create_session_factory,
)
from storefront.database.models import Product, User, UserRole  # noqa: E402
from storefront.schemas.orders import OrderNotificationView  # noqa: E402
from storefront.services.accounts import SqlAccountDirectory  # noqa: E402
from storefront.services.catalog import SqlCatalogService  # noqa: E402
from storefront.services.orders.aggregate import LineItemInput, OrderDraft  # noqa: E402
from storefront.services.orders.enums import OrderStatus  # noqa: E402
from storefront.services.orders.service import OrderService  # noqa: E402


# ============================================================================
# Test Doubles
# ============================================================================


@dataclass
class RecordingNotifier:
    """Dispatcher stand-in that records what the service hands over."""

    created: list[OrderNotificationView] = field(default_factory=list)
    status_changes: list[tuple[OrderNotificationView, OrderStatus, Optional[str]]] = field(
        default_factory=list
    )

    async def order_created(self, view: OrderNotificationView) -> None:
        self.created.append(view)

    async def status_changed(
        self,
        view: OrderNotificationView,
        new_status: OrderStatus,
        note: Optional[str] = None,
    ) -> None:
        self.status_changes.append((view, new_status, note))


class FailingNotifier:
    """Dispatcher stand-in whose every call blows up."""

    async def order_created(self, view: OrderNotificationView) -> None:
        raise RuntimeError("notification backend down")

    async def status_changed(self, view, new_status, note=None) -> None:
        raise RuntimeError("notification backend down")


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Engine bound to a fresh SQLite file with all tables created."""
    db_engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}")
    await create_all_tables(db_engine)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as db_session:
        yield db_session


# ============================================================================
# Data Fixtures
# ============================================================================


@pytest.fixture
async def customer(session: AsyncSession) -> User:
    user = User(
        id=uuid4(),
        email="asha@example.com",
        full_name="Asha Rao",
        phone="+919800000001",
        role=UserRole.CUSTOMER,
    )
    session.add(user)
    await session.commit()
    return user


@pytest.fixture
async def other_customer(session: AsyncSession) -> User:
    user = User(
        id=uuid4(),
        email="vikram@example.com",
        full_name="Vikram Shah",
        role=UserRole.CUSTOMER,
    )
    session.add(user)
    await session.commit()
    return user


@pytest.fixture
async def admin(session: AsyncSession) -> User:
    user = User(
        id=uuid4(),
        email="admin@example.com",
        full_name="Store Admin",
        role=UserRole.ADMIN,
    )
    session.add(user)
    await session.commit()
    return user


@pytest.fixture
async def products(session: AsyncSession) -> dict[str, Product]:
    """Catalog items either side of the free-shipping threshold, and a retired item."""
    catalog = {
        "ring": Product(
            id=uuid4(),
            name="Gold Band Ring",
            price=Decimal("2500.00"),
            image_url="https://cdn.example.com/ring.jpg",
            is_customizable=True,
        ),
        "necklace": Product(
            id=uuid4(),
            name="Pearl Necklace",
            price=Decimal("12000.00"),
            image_url="https://cdn.example.com/necklace.jpg",
        ),
        "bangle": Product(
            id=uuid4(),
            name="Diamond Bangle",
            price=Decimal("45000.00"),
        ),
        "bracelet": Product(
            id=uuid4(),
            name="Silver Charm Bracelet",
            price=Decimal("8000.00"),
        ),
        "retired": Product(
            id=uuid4(),
            name="Retired Anklet",
            price=Decimal("900.00"),
            is_active=False,
        ),
    }
    session.add_all(catalog.values())
    await session.commit()
    return catalog


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def order_service(session: AsyncSession, notifier: RecordingNotifier) -> OrderService:
    return OrderService(
        session,
        notifier=notifier,
        catalog=SqlCatalogService(session),
        accounts=SqlAccountDirectory(session),
    )


def make_address(**overrides: Any) -> dict[str, Any]:
    address = {
        "name": "Asha Rao",
        "phone": "+919800000001",
        "street": "12 MG Road",
        "city": "Bengaluru",
        "state": "Karnataka",
        "postal_code": "560001",
        "country": "India",
    }
    address.update(overrides)
    return address


def make_draft(
    *lines: tuple[Product, int],
    **overrides: Any,
) -> OrderDraft:
    """Build a draft from (product, quantity) pairs at catalog prices."""
    draft_fields: dict[str, Any] = {
        "items": [
            LineItemInput(product_id=product.id, quantity=quantity, price=product.price)
            for product, quantity in lines
        ],
        "shipping_address": make_address(),
    }
    draft_fields.update(overrides)
    return OrderDraft(**draft_fields)


def make_view(**overrides: Any) -> OrderNotificationView:
    """Notification snapshot for an order of two rings."""
    view_fields: dict[str, Any] = {
        "order_id": uuid4(),
        "order_number": "ORD-000042",
        "status": OrderStatus.PENDING,
        "customer_name": "Asha Rao",
        "customer_email": "asha@example.com",
        "customer_phone": "+919800000001",
        "items": [
            {
                "name": "Gold Band Ring",
                "quantity": 2,
                "unit_price": Decimal("2500.00"),
                "line_total": Decimal("5000.00"),
                "customization": {"size": "7", "engraving": {"text": "A & R"}},
            },
        ],
        "subtotal": Decimal("5000.00"),
        "tax_amount": Decimal("900.00"),
        "shipping_amount": Decimal("500.00"),
        "discount_amount": Decimal("0.00"),
        "total_amount": Decimal("6400.00"),
        "shipping_address": make_address(),
        "created_at": datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc),
    }
    view_fields.update(overrides)
    return OrderNotificationView(**view_fields)
