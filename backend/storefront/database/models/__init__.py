"""
Database models package initialization.

Models are imported here so that they are registered with the Base metadata
before ``create_all`` runs and relationships resolve by name.
"""

from storefront.database.base import Base, BaseModel, TimestampMixin, UUIDMixin
from storefront.database.models.order import Order, OrderItem, OrderStatusHistory
from storefront.database.models.product import Product
from storefront.database.models.sequence import OrderNumberSequence
from storefront.database.models.user import User, UserRole

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "UUIDMixin",
    "Order",
    "OrderItem",
    "OrderStatusHistory",
    "OrderNumberSequence",
    "Product",
    "User",
    "UserRole",
]
