"""
Database Identity Service

Reads the ``users`` table that the auth provider's webhooks keep in sync.
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from teamorder.core.errors import LookupFailedError, NotFoundError
from teamorder.models import User
from teamorder.services.identity.base import BaseIdentityService, UserProfile

logger = logging.getLogger(__name__)


def user_profile(row: User) -> UserProfile:
    return UserProfile(
        id=row.id,
        company_id=row.company_id,
        role=row.role,
        first_name=row.first_name,
        last_name=row.last_name,
        username=row.username,
        email=row.email,
    )


class DatabaseIdentityService(BaseIdentityService):

    def __init__(self, db: AsyncSession):
        self.db = db

    @property
    def provider_name(self) -> str:
        return "database"

    async def get_user(self, user_id: str) -> UserProfile:
        try:
            result = await self.db.execute(select(User).where(User.id == user_id))
            row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Identity lookup failed for {user_id}: {e}")
            raise LookupFailedError(f"Identity lookup failed for {user_id}", detail=str(e)) from e

        if row is None:
            raise NotFoundError(f"User {user_id} not found")
        return user_profile(row)

    async def list_company_members(self, company_id: str) -> list[UserProfile]:
        try:
            result = await self.db.execute(
                select(User).where(User.company_id == company_id).order_by(User.created_at, User.id)
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Roster lookup failed for company {company_id}: {e}")
            raise LookupFailedError(f"Roster lookup failed for company {company_id}", detail=str(e)) from e
        return [user_profile(row) for row in result.scalars().all()]

    async def health_check(self) -> bool:
        return True
