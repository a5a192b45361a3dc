"""
Catalog collaborator used when validating order items.

The catalog supplies display fields and the current price per product.
Prices are only compared against submitted ones; an order always keeps the
price it was placed with.
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.database.models.product import Product

logger = get_logger(__name__)


class CatalogError(Exception):
    """Raised when catalog data cannot be read."""

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.context = context


@dataclass(frozen=True)
class CatalogEntry:
    """Catalog view of a product."""

    product_id: uuid.UUID
    name: str
    price: Decimal
    image_url: Optional[str] = None
    is_active: bool = True


class CatalogService(Protocol):
    """Lookup of product display data and current prices."""

    async def get_entries(
        self, product_ids: Iterable[uuid.UUID]
    ) -> dict[uuid.UUID, CatalogEntry]:
        """Return entries for the known ids; unknown ids are absent."""
        ...


class SqlCatalogService:
    """Catalog backed by the ``products`` table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_entries(
        self, product_ids: Iterable[uuid.UUID]
    ) -> dict[uuid.UUID, CatalogEntry]:
        ids = set(product_ids)
        if not ids:
            return {}

        try:
            result = await self.session.execute(
                select(Product).where(Product.id.in_(ids))
            )
            products = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to load catalog entries",
                product_count=len(ids),
                error=str(e),
            )
            raise CatalogError(
                "Failed to load catalog entries", product_count=len(ids)
            ) from e

        entries = {
            product.id: CatalogEntry(
                product_id=product.id,
                name=product.name,
                price=Decimal(product.price),
                image_url=product.image_url,
                is_active=product.is_active,
            )
            for product in products
        }

        logger.debug(
            "Catalog entries loaded",
            requested=len(ids),
            found=len(entries),
        )
        return entries
