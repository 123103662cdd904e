"""
Acknowledgement Store Abstract Base Class

Keeps per-user read/acknowledged/completed marks for notification events,
so a renderer can remember what a user already handled across reloads.
The session itself is never affected by these marks.

Version: 1.0.0
"""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


class AckState(str, enum.Enum):
    READ = "read"
    ACKNOWLEDGED = "acknowledged"
    COMPLETED = "completed"


@dataclass
class AckRecord:
    """One user's mark on one event."""
    event_id: str
    user_id: str
    state: AckState
    updated_at: datetime

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "user_id": self.user_id,
            "state": self.state.value,
            "updated_at": self.updated_at,
        }


class BaseAckStore(ABC):
    """Abstract base class for acknowledgement stores."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def set_state(self, user_id: str, event_id: str, state: AckState, now: datetime) -> AckRecord:
        """Record ``state`` for ``event_id``, replacing any earlier mark."""
        pass

    @abstractmethod
    async def get_state(self, user_id: str, event_id: str) -> Optional[AckRecord]:
        pass

    @abstractmethod
    async def list_states(self, user_id: str) -> list[AckRecord]:
        """Every mark held for ``user_id``."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check store connectivity."""
        pass
