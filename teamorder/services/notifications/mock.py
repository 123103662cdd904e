"""
Mock Acknowledgement Store

Keeps marks in process memory for development and tests.

Version: 1.0.0
"""

import logging
from datetime import datetime
from typing import Optional

from teamorder.core.clock import ensure_utc
from teamorder.services.notifications.base import AckRecord, AckState, BaseAckStore

logger = logging.getLogger(__name__)


class MockAckStore(BaseAckStore):
    """In-memory acknowledgement store."""

    def __init__(self):
        self._marks: dict[tuple[str, str], AckRecord] = {}
        logger.info("MockAckStore initialized")

    @property
    def provider_name(self) -> str:
        return "mock"

    async def set_state(self, user_id: str, event_id: str, state: AckState, now: datetime) -> AckRecord:
        record = AckRecord(event_id=event_id, user_id=user_id, state=state, updated_at=ensure_utc(now))
        self._marks[(user_id, event_id)] = record
        logger.debug(f"Mock ack: {user_id} marked {event_id} as {state.value}")
        return record

    async def get_state(self, user_id: str, event_id: str) -> Optional[AckRecord]:
        return self._marks.get((user_id, event_id))

    async def list_states(self, user_id: str) -> list[AckRecord]:
        return [r for (uid, _), r in self._marks.items() if uid == user_id]

    async def health_check(self) -> bool:
        return True
