"""
Durable counter backing human-readable order numbers.

One row per prefix. The counter is advanced with a single
``UPDATE ... RETURNING`` statement inside the caller's transaction so that
concurrent writers, including those in other processes, never observe the
same value.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database.base import Base


class OrderNumberSequence(Base):
    """Monotonic counter keyed by order-number prefix."""

    __tablename__ = "order_number_sequences"

    prefix: Mapped[str] = mapped_column(String(20), primary_key=True)
    last_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
