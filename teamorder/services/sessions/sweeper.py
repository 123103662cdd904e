"""
Deadline Sweeper

Force-resolves participants who did not respond before the deadline and
closes the session once nobody is pending.

Runs on demand per session, and periodically over every open session from
the Celery beat schedule. Re-running is always safe: the auto-pass write is
conditional on the row still being pending, and a closed session is skipped.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from teamorder.core.clock import Clock, get_clock
from teamorder.core.errors import NotFoundError, OrderSessionError
from teamorder.models import SessionStatus
from teamorder.services.sessions.phase import routing_status
from teamorder.services.sessions.state_machine import ParticipantStateMachine
from teamorder.services.store.base import BaseSessionStore

logger = logging.getLogger(__name__)


@dataclass
class SweepFailure:
    """One participant whose auto-pass write failed."""
    user_id: str
    error: str
    code: str


@dataclass
class SweepResult:
    """
    Outcome of sweeping one session.

    Attributes:
        session_id: Swept session
        auto_passed_count: Participants moved from pending to passed by this run
        auto_passed_user_ids: Their user ids
        failures: Participants whose write failed (session left open)
        session_closed: Whether this run closed the session
        skipped_reason: Why nothing was done, if the session was not eligible
    """
    session_id: str
    auto_passed_count: int = 0
    auto_passed_user_ids: list[str] = field(default_factory=list)
    failures: list[SweepFailure] = field(default_factory=list)
    session_closed: bool = False
    skipped_reason: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "auto_passed_count": self.auto_passed_count,
            "auto_passed_user_ids": list(self.auto_passed_user_ids),
            "failed_count": len(self.failures),
            "failures": [f.__dict__ for f in self.failures],
            "session_closed": self.session_closed,
            "skipped_reason": self.skipped_reason,
        }


class DeadlineSweeper:

    def __init__(
        self,
        store: BaseSessionStore,
        state_machine: ParticipantStateMachine,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.state_machine = state_machine
        self.clock = clock or get_clock()

    async def sweep(self, session_id: str) -> SweepResult:
        """
        Sweep one session.

        Raises:
            NotFoundError: Session does not exist
            StoreUnavailableError: Loading or closing the session failed
        """
        session = await self.store.get_session(session_id)
        result = SweepResult(session_id=session_id)
        now = self.clock.now()

        status = routing_status(session, now)
        if status != SessionStatus.ACTIVE:
            result.skipped_reason = f"session is {status.value}"
            return result
        if now <= session.end_time:
            result.skipped_reason = "deadline has not passed"
            return result

        pending = [p for p in session.participants if p.is_pending]
        for participant in pending:
            try:
                updated = await self.state_machine.force_pass(participant)
            except OrderSessionError as e:
                logger.error(f"❌ Auto-pass failed for {participant.user_id} in {session_id}: {e.message}")
                result.failures.append(SweepFailure(participant.user_id, e.message, e.code))
                continue
            if updated is None:
                # Resolved concurrently (another sweep or a last-second response)
                continue
            result.auto_passed_count += 1
            result.auto_passed_user_ids.append(participant.user_id)

        if result.failures:
            logger.warning(
                f"⚠️ Session {session_id} left open: {len(result.failures)} auto-pass writes failed"
            )
            return result

        participants = await self.store.list_participants(session_id)
        if any(p.is_pending for p in participants):
            logger.info(f"Session {session_id} still has pending participants, not closing")
            return result

        await self.store.update_session_status(session_id, SessionStatus.CLOSED)
        result.session_closed = True
        logger.info(
            f"🔒 Session {session_id} closed after sweep "
            f"({result.auto_passed_count} auto-passed)"
        )
        return result

    async def sweep_expired(self, company_id: Optional[str] = None) -> list[SweepResult]:
        """
        Sweep every open session whose deadline has passed.

        A failure on one session is logged and does not stop the others.
        """
        now = self.clock.now()
        sessions = await self.store.list_active_sessions(company_id)
        due = [
            s for s in sessions
            if routing_status(s, now) == SessionStatus.ACTIVE and now > s.end_time
        ]

        results = []
        for session in due:
            try:
                results.append(await self.sweep(session.id))
            except NotFoundError:
                # Deleted between listing and sweeping
                continue
            except OrderSessionError as e:
                logger.error(f"❌ Sweep of session {session.id} failed: {e.message}")
                results.append(SweepResult(
                    session_id=session.id,
                    failures=[SweepFailure("*", e.message, e.code)],
                ))
        if due:
            logger.info(f"Swept {len(due)} expired session(s)")
        return results
