"""
Identity Service Factory

Usage:
    from teamorder.services.identity import get_identity_service

    identity = get_identity_service(db)
    name = await identity.resolve_user_display_name(user_id)
"""

from sqlalchemy.ext.asyncio import AsyncSession

from teamorder.services.identity.base import BaseIdentityService, UserProfile
from teamorder.services.identity.database import DatabaseIdentityService
from teamorder.services.identity.mock import MockIdentityService


def get_identity_service(db: AsyncSession) -> BaseIdentityService:
    """Identity service bound to the request's database session."""
    return DatabaseIdentityService(db)


__all__ = [
    "get_identity_service",
    "BaseIdentityService",
    "UserProfile",
    "DatabaseIdentityService",
    "MockIdentityService",
]
