"""
Session Store Abstract Base Class

Defines the contract every session store implementation honours. The core
(state machine, sweeper, notification engine) only sees the records defined
here, never ORM rows, so the SQL store and the in-memory store are
interchangeable.

Contract highlights:
    - ``create_session`` persists the session and its seeded participants
      atomically: either both exist afterwards or neither does.
    - ``upsert_participant`` is a single atomic write keyed on
      ``(session_id, user_id)``; with ``expected_status`` it only applies while
      the stored row still has that status and returns ``None`` otherwise.
    - Failures surface as ``ConflictError`` or ``StoreUnavailableError``; a
      store never retries on its own.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Optional

from teamorder.models import AUTO_PASS_MESSAGE, ParticipantStatus, SessionStatus


@dataclass(frozen=True)
class ParticipantRecord:
    """Snapshot of one participant row."""
    session_id: str
    user_id: str
    user_name: str
    status: ParticipantStatus = ParticipantStatus.PENDING
    preset_order: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.status == ParticipantStatus.PENDING

    @property
    def is_auto_passed(self) -> bool:
        return self.status == ParticipantStatus.PASSED and self.preset_order == AUTO_PASS_MESSAGE

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "status": self.status.value,
            "preset_order": self.preset_order,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class SessionRecord:
    """Snapshot of an order session together with its participants."""
    id: str
    company_id: str
    restaurant_name: str
    start_time: datetime
    end_time: datetime
    restaurant_options: list[str] = field(default_factory=list)
    status: Optional[SessionStatus] = None
    group_order_link: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    participants: tuple[ParticipantRecord, ...] = ()

    def with_participants(self, participants) -> "SessionRecord":
        return replace(self, participants=tuple(participants))

    def participant(self, user_id: str) -> Optional[ParticipantRecord]:
        for p in self.participants:
            if p.user_id == user_id:
                return p
        return None


class BaseSessionStore(ABC):
    """Abstract base class for session stores."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the store name (e.g. "sql", "memory")."""
        pass

    @abstractmethod
    async def get_session(self, session_id: str) -> SessionRecord:
        """
        Load a session with its participants.

        Raises:
            NotFoundError: If the session does not exist
        """
        pass

    @abstractmethod
    async def list_sessions(self, company_id: str) -> list[SessionRecord]:
        """All sessions of a company, newest first."""
        pass

    @abstractmethod
    async def list_active_sessions(self, company_id: Optional[str] = None) -> list[SessionRecord]:
        """
        Sessions that are not explicitly closed or completed, newest first.

        Args:
            company_id: Restrict to one company; ``None`` lists every company
                (used by the periodic sweep)
        """
        pass

    @abstractmethod
    async def create_session(
        self,
        fields: dict[str, Any],
        participants: list[dict[str, Any]],
    ) -> SessionRecord:
        """Insert a session and its seeded participants in one transaction."""
        pass

    @abstractmethod
    async def update_session(self, session_id: str, fields: dict[str, Any]) -> SessionRecord:
        """Apply a partial update to the session row."""
        pass

    @abstractmethod
    async def update_session_status(self, session_id: str, status: SessionStatus) -> SessionRecord:
        pass

    @abstractmethod
    async def delete_session(self, session_id: str) -> None:
        """Delete a session and, by cascade, its participants."""
        pass

    @abstractmethod
    async def list_participants(self, session_id: str) -> list[ParticipantRecord]:
        pass

    @abstractmethod
    async def upsert_participant(
        self,
        session_id: str,
        user_id: str,
        fields: dict[str, Any],
        expected_status: Optional[ParticipantStatus] = None,
    ) -> Optional[ParticipantRecord]:
        """
        Atomically insert or update the participant row.

        Args:
            session_id: Owning session
            user_id: Participant's user id
            fields: Column values (``user_name``, ``status``, ``preset_order``,
                ``updated_at``)
            expected_status: When given, the write is an update that only
                applies while the row still has this status

        Returns:
            The stored participant, or ``None`` when ``expected_status`` did
            not match

        Raises:
            ConflictError: On a unique-constraint race
            StoreUnavailableError: When the store cannot complete the write
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check store connectivity."""
        pass
