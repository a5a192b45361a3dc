"""Catalog product projection read when validating order items."""

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database.base import BaseModel


class Product(BaseModel):
    """
    Jewelry product as listed in the catalog.

    Attributes:
        id: Unique product identifier (UUID)
        name: Display name
        description: Long description
        price: Current selling price
        image_url: Primary image reference
        is_customizable: Whether engraving/material options are offered
        is_active: Whether the product can currently be ordered
    """

    __tablename__ = "products"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    is_customizable: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Product(id={self.id}, name={self.name}, price={self.price})>"
