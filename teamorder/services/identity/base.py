"""
Identity Service Abstract Base Class

Defines the interface for resolving users: display names for participant
rows, the company roster used to seed sessions, and the role that scopes
notification observers.

Version: 1.0.0
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from teamorder.core.errors import LookupFailedError, NotFoundError
from teamorder.models import UserRole


@dataclass(frozen=True)
class UserProfile:
    """
    Identity record for one company member.

    Attributes:
        id: External auth subject
        company_id: Owning company, if the user has joined one
        role: manager, admin or team_member
        first_name / last_name / username / email: Optional name sources
    """
    id: str
    company_id: Optional[str] = None
    role: UserRole = UserRole.TEAM_MEMBER
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None

    @property
    def display_name(self) -> Optional[str]:
        """Full name, else first name, else email, else username."""
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        return self.first_name or self.email or self.username or None

    @property
    def can_manage_sessions(self) -> bool:
        return self.role in (UserRole.MANAGER, UserRole.ADMIN)


class BaseIdentityService(ABC):
    """Abstract base class for identity services."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def get_user(self, user_id: str) -> UserProfile:
        """
        Load a user's identity record.

        Raises:
            NotFoundError: If the user is unknown
            LookupFailedError: If the identity source could not be queried
        """
        pass

    @abstractmethod
    async def list_company_members(self, company_id: str) -> list[UserProfile]:
        """Every user belonging to ``company_id``."""
        pass

    async def resolve_user_display_name(self, user_id: str) -> str:
        """
        Resolve the name shown for a participant.

        Raises:
            LookupFailedError: If the user is unknown or has no usable name;
                callers fall back to a placeholder label
        """
        try:
            profile = await self.get_user(user_id)
        except NotFoundError as e:
            raise LookupFailedError(f"No identity record for user {user_id}") from e
        name = profile.display_name
        if not name:
            raise LookupFailedError(f"User {user_id} has no display name")
        return name

    @abstractmethod
    async def health_check(self) -> bool:
        """Check service connectivity."""
        pass
