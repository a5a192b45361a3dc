"""
Account collaborator used for notification contacts and actor attribution.
"""

import uuid
from dataclasses import dataclass
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.database.models.user import User

logger = get_logger(__name__)


@dataclass(frozen=True)
class AccountProfile:
    """Customer display data."""

    account_id: uuid.UUID
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    role: str = "customer"


class AccountDirectory(Protocol):
    """Lookup of account display data."""

    async def get_profile(self, account_id: uuid.UUID) -> Optional[AccountProfile]:
        ...


class SqlAccountDirectory:
    """Account directory backed by the ``users`` table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_profile(self, account_id: uuid.UUID) -> Optional[AccountProfile]:
        """
        Load the profile for an account.

        Returns None when the account is unknown or cannot be read, so that
        callers building notification views degrade to address contact data.
        """
        try:
            result = await self.session.execute(
                select(User).where(User.id == account_id)
            )
            user = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.warning(
                "Failed to load account profile",
                account_id=str(account_id),
                error=str(e),
            )
            return None

        if user is None:
            return None

        return AccountProfile(
            account_id=user.id,
            name=user.full_name,
            email=user.email,
            phone=user.phone,
            role=user.role.value,
        )
