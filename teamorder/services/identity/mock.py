"""
Mock Identity Service

In-memory user directory for development and tests. Lookups for ids listed in
``unavailable_ids`` fail with ``LookupFailedError`` to simulate an identity
provider outage.
"""

import logging
from typing import Iterable, Optional

from teamorder.core.errors import LookupFailedError, NotFoundError
from teamorder.services.identity.base import BaseIdentityService, UserProfile

logger = logging.getLogger(__name__)


class MockIdentityService(BaseIdentityService):
    """Mock identity service backed by a dictionary."""

    def __init__(
        self,
        users: Iterable[UserProfile] = (),
        unavailable_ids: Optional[set[str]] = None,
    ):
        self.users = {u.id: u for u in users}
        self.unavailable_ids = set(unavailable_ids or ())
        logger.info(f"MockIdentityService initialized ({len(self.users)} users)")

    @property
    def provider_name(self) -> str:
        return "mock"

    def add_user(self, profile: UserProfile) -> None:
        self.users[profile.id] = profile

    async def get_user(self, user_id: str) -> UserProfile:
        if user_id in self.unavailable_ids:
            logger.warning(f"Mock identity lookup failed (simulated) for {user_id}")
            raise LookupFailedError(f"Identity provider unavailable for {user_id}")
        try:
            return self.users[user_id]
        except KeyError:
            raise NotFoundError(f"User {user_id} not found") from None

    async def list_company_members(self, company_id: str) -> list[UserProfile]:
        return [u for u in self.users.values() if u.company_id == company_id]

    async def health_check(self) -> bool:
        """Mock always returns healthy."""
        return True
