"""
Observer registry.

Holds one ``ObserverState`` per (session, role, user) for the lifetime of
the process. States are dropped when their session is deleted.
"""

import logging
import threading
from typing import Optional

from teamorder.services.notifications.engine import ObserverState
from teamorder.services.notifications.events import ObserverRole

logger = logging.getLogger(__name__)


class ObserverRegistry:

    def __init__(self):
        self._states: dict[tuple[str, ObserverRole, Optional[str]], ObserverState] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str, role: ObserverRole, user_id: Optional[str]) -> ObserverState:
        """Existing state for the observer, or a fresh one."""
        key = (session_id, role, user_id)
        with self._lock:
            state = self._states.get(key)
            if state is None:
                state = ObserverState(session_id=session_id, role=role, user_id=user_id)
                self._states[key] = state
            return state

    def find(self, session_id: str, role: ObserverRole, user_id: Optional[str]) -> Optional[ObserverState]:
        return self._states.get((session_id, role, user_id))

    def forget_session(self, session_id: str) -> int:
        with self._lock:
            keys = [k for k in self._states if k[0] == session_id]
            for key in keys:
                del self._states[key]
        if keys:
            logger.debug(f"Dropped {len(keys)} observer state(s) for session {session_id}")
        return len(keys)

    def __len__(self) -> int:
        return len(self._states)
