"""
Notification event types and identity.

Version: 1.0.0
"""

import enum
import hashlib
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from teamorder.core.clock import ensure_utc


class NotificationType(str, enum.Enum):
    SESSION_CREATED = "session_created"
    DEADLINE = "deadline"
    SESSION_ENDING = "session_ending"
    ORDER_PLACED = "order_placed"
    ORDER_PASSED = "order_passed"
    PRESET_ORDER = "preset_order"
    ORDER_MISSING = "order_missing"
    AUTO_PASSED = "auto_passed"


class ObserverRole(str, enum.Enum):
    """Which view an observer gets: the whole roster, or only their own reminders."""
    MANAGER = "manager"
    TEAM_MEMBER = "team_member"


def make_event_id(
    event_type: NotificationType,
    user_id: Optional[str],
    session_id: str,
    timestamp: datetime,
) -> str:
    """
    Deterministic event id.

    Hash of type, user, session and the timestamp truncated to the second, so
    one transition observed twice within the same second yields one id.
    """
    second = int(ensure_utc(timestamp).timestamp())
    raw = f"{event_type.value}|{user_id or ''}|{session_id}|{second}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class NotificationEvent:
    id: str
    type: NotificationType
    title: str
    message: str
    timestamp: datetime
    session_id: str
    user_id: Optional[str] = None
    user_name: Optional[str] = None

    @classmethod
    def build(
        cls,
        event_type: NotificationType,
        title: str,
        message: str,
        session_id: str,
        timestamp: datetime,
        user_id: Optional[str] = None,
        user_name: Optional[str] = None,
    ) -> "NotificationEvent":
        return cls(
            id=make_event_id(event_type, user_id, session_id, timestamp),
            type=event_type,
            title=title,
            message=message,
            timestamp=ensure_utc(timestamp),
            session_id=session_id,
            user_id=user_id,
            user_name=user_name,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "timestamp": self.timestamp,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "user_name": self.user_name,
        }
