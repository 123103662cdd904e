"""
Participant State Machine

Validates and applies a single participant's response.

    pending ──► ordered | passed | preset
    ordered | passed | preset ──► any other response state

Every response state can be revisited while the session accepts responses;
once it is closed nothing moves except through the deadline sweep.
"""

import logging
from typing import Optional, Union

from teamorder.core.clock import Clock, get_clock
from teamorder.core.config import Settings, get_settings
from teamorder.core.errors import (
    InvalidTransitionError,
    LookupFailedError,
    MissingPresetOrderError,
    SessionNotActiveError,
)
from teamorder.models import AUTO_PASS_MESSAGE, ParticipantStatus, SessionStatus
from teamorder.services.identity.base import BaseIdentityService
from teamorder.services.sessions.phase import accepts_responses, phase
from teamorder.services.store.base import BaseSessionStore, ParticipantRecord, SessionRecord

logger = logging.getLogger(__name__)

RESPONSE_STATES = frozenset({
    ParticipantStatus.ORDERED,
    ParticipantStatus.PASSED,
    ParticipantStatus.PRESET,
})


def parse_response(response: Union[str, ParticipantStatus]) -> ParticipantStatus:
    """Coerce ``response`` to a response state or raise ``InvalidTransitionError``."""
    try:
        status = ParticipantStatus(response)
    except ValueError:
        raise InvalidTransitionError(
            f"Unknown response '{response}'",
            detail=f"Expected one of: {sorted(s.value for s in RESPONSE_STATES)}",
        ) from None
    if status not in RESPONSE_STATES:
        raise InvalidTransitionError(
            f"Cannot respond with '{status.value}'",
            detail="A participant cannot return to pending",
        )
    return status


class ParticipantStateMachine:
    """
    Applies participant responses through the session store.

    Attributes:
        store: Session store adapter
        identity: Identity collaborator used to resolve display names
        clock: Source of "now"
    """

    def __init__(
        self,
        store: BaseSessionStore,
        identity: BaseIdentityService,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.identity = identity
        self.clock = clock or get_clock()
        self.settings = settings or get_settings()

    async def resolve_user_name(self, user_id: str, known_name: Optional[str] = None) -> str:
        """
        Best-effort display name; never raises.

        On a failed lookup ``known_name`` (the name already stored on the
        participant row) is kept, else the placeholder label is used.
        """
        try:
            return await self.identity.resolve_user_display_name(user_id)
        except LookupFailedError as e:
            if known_name:
                logger.warning(f"⚠️ Name lookup failed for {user_id}, keeping stored name: {e.message}")
                return known_name
            logger.warning(f"⚠️ Name lookup failed for {user_id}, using placeholder: {e.message}")
            return self.settings.unknown_user_label

    def validate(
        self,
        session: SessionRecord,
        response: Union[str, ParticipantStatus],
        preset_order: Optional[str],
    ) -> tuple[ParticipantStatus, Optional[str]]:
        """
        Check a response against the session without touching the store.

        Returns:
            The target status and the ``preset_order`` value to store

        Raises:
            InvalidTransitionError: Unknown or non-response state
            SessionNotActiveError: Outside the ordering window or closed
            MissingPresetOrderError: ``preset`` without a message
        """
        status = parse_response(response)

        now = self.clock.now()
        if not accepts_responses(session, now):
            if session.status in (SessionStatus.CLOSED, SessionStatus.COMPLETED):
                raise SessionNotActiveError(session.id, SessionStatus(session.status).value)
            raise SessionNotActiveError(session.id, phase(session, now).value)

        if status == ParticipantStatus.PRESET:
            message = (preset_order or "").strip()
            if not message:
                raise MissingPresetOrderError()
            return status, message
        return status, None

    async def respond(
        self,
        session_id: str,
        user_id: str,
        response: Union[str, ParticipantStatus],
        preset_order: Optional[str] = None,
    ) -> ParticipantRecord:
        """
        Record ``user_id``'s response in ``session_id`` (last write wins).

        Raises:
            NotFoundError: Session does not exist
            SessionNotActiveError / MissingPresetOrderError /
            InvalidTransitionError: Rejected before any write
            ConflictError / StoreUnavailableError: Store failures, verbatim
        """
        session = await self.store.get_session(session_id)
        status, message = self.validate(session, response, preset_order)

        existing = session.participant(user_id)
        user_name = await self.resolve_user_name(user_id, existing.user_name if existing else None)
        participant = await self.store.upsert_participant(
            session_id,
            user_id,
            {
                "user_name": user_name,
                "status": status,
                "preset_order": message,
                "updated_at": self.clock.now(),
            },
        )
        logger.info(f"✅ {user_name} ({user_id}) responded '{status.value}' in session {session_id}")
        return participant

    async def force_pass(self, participant: ParticipantRecord) -> Optional[ParticipantRecord]:
        """
        Auto-pass a pending participant, skipping the ordering-window check.

        The write only applies while the row is still pending, so concurrent
        sweeps or a last-second response win cleanly.

        Returns:
            The updated participant, or ``None`` if it was no longer pending
        """
        return await self.store.upsert_participant(
            participant.session_id,
            participant.user_id,
            {
                "user_name": participant.user_name,
                "status": ParticipantStatus.PASSED,
                "preset_order": AUTO_PASS_MESSAGE,
                "updated_at": self.clock.now(),
            },
            expected_status=ParticipantStatus.PENDING,
        )
