"""
Order Session Service

Session lifecycle and the entry points the API and the Celery tasks call:

    create_session / update_session / delete_session
    reconcile_participants
    respond              -> ParticipantStateMachine
    sweep_deadline       -> DeadlineSweeper
    observe              -> NotificationEngine
    get_current_session / list_sessions

Every write goes through the session store; the service never holds a
transaction across calls.

Version: 1.0.0
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from teamorder.core.clock import Clock, ensure_utc, get_clock
from teamorder.core.config import Settings, get_settings
from teamorder.core.errors import (
    InvalidSessionTimesError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    SessionNotActiveError,
)
from teamorder.models import ParticipantStatus, SessionStatus, UserRole
from teamorder.services.identity.base import BaseIdentityService, UserProfile
from teamorder.services.notifications import (
    NotificationEngine,
    NotificationEvent,
    ObserverRegistry,
    ObserverRole,
    ObserverState,
    get_observer_registry,
)
from teamorder.services.sessions.phase import Phase, phase, routing_status
from teamorder.services.sessions.state_machine import ParticipantStateMachine
from teamorder.services.sessions.sweeper import DeadlineSweeper, SweepResult
from teamorder.services.store.base import BaseSessionStore, ParticipantRecord, SessionRecord

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({
    "restaurant_name",
    "restaurant_options",
    "group_order_link",
    "start_time",
    "end_time",
    "status",
})

MANUAL_STATUSES = (SessionStatus.ACTIVE, SessionStatus.CLOSED)


@dataclass
class Observation:
    """Result of one observe cycle."""
    session: SessionRecord
    phase: Phase
    role: ObserverRole
    new_events: list[NotificationEvent]
    state: ObserverState


def observer_role_for(user: UserProfile) -> ObserverRole:
    """Managers and admins get the roster view; everyone else the member view."""
    if user.role in (UserRole.MANAGER, UserRole.ADMIN):
        return ObserverRole.MANAGER
    return ObserverRole.TEAM_MEMBER


def validate_times(start_time: datetime, end_time: datetime) -> tuple[datetime, datetime]:
    start_time, end_time = ensure_utc(start_time), ensure_utc(end_time)
    if end_time <= start_time:
        raise InvalidSessionTimesError(
            "End time must be after start time",
            detail=f"start={start_time.isoformat()} end={end_time.isoformat()}",
        )
    return start_time, end_time


def manual_status(value: Any) -> SessionStatus:
    """
    Coerce a status set by hand. Only ``active`` and ``closed`` may be stored
    this way; ``upcoming`` and ``completed`` are derived from time and the
    roster, and storing them would hide the session from the sweeper.
    """
    try:
        status = SessionStatus(value)
    except ValueError:
        status = None
    if status not in MANUAL_STATUSES:
        raise InvalidTransitionError(
            f"Cannot set session status to '{getattr(value, 'value', value)}'",
            detail="Allowed values: active, closed, or null to derive from time",
        )
    return status


class OrderSessionService:
    """
    Facade over the store, identity, state machine, sweeper and notifications.

    Attributes:
        store: Session store adapter
        identity: Identity collaborator
        clock: Source of "now"
        registry: Observer states, shared process-wide by default
    """

    def __init__(
        self,
        store: BaseSessionStore,
        identity: BaseIdentityService,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
        registry: Optional[ObserverRegistry] = None,
    ):
        self.store = store
        self.identity = identity
        self.clock = clock or get_clock()
        self.settings = settings or get_settings()
        self.registry = registry if registry is not None else get_observer_registry()

        self.state_machine = ParticipantStateMachine(store, identity, self.clock, self.settings)
        self.sweeper = DeadlineSweeper(store, self.state_machine, self.clock)
        self.engine = NotificationEngine(self.settings)

    # =========================================================================
    # Access helpers
    # =========================================================================

    async def _load_for(self, actor: UserProfile, session_id: str) -> SessionRecord:
        """Load a session visible to ``actor``; other companies' sessions look missing."""
        session = await self.store.get_session(session_id)
        if actor.company_id is None or session.company_id != actor.company_id:
            raise NotFoundError(f"Order session {session_id} not found")
        return session

    @staticmethod
    def _require_manager(actor: UserProfile, action: str, allow_admin: bool = True) -> None:
        allowed = (UserRole.MANAGER, UserRole.ADMIN) if allow_admin else (UserRole.MANAGER,)
        if actor.role not in allowed:
            raise PermissionDeniedError(
                f"Only managers can {action} order sessions",
                detail=f"role={actor.role.value}",
            )

    @staticmethod
    def _require_company(actor: UserProfile) -> str:
        if actor.company_id is None:
            raise NotFoundError("User is not a member of any company")
        return actor.company_id

    def _seed_row(self, member: UserProfile) -> dict[str, Any]:
        return {
            "user_id": member.id,
            "user_name": member.display_name or self.settings.unknown_user_label,
            "status": ParticipantStatus.PENDING,
            "preset_order": None,
            "updated_at": self.clock.now(),
        }

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def create_session(
        self,
        actor: UserProfile,
        restaurant_name: str,
        restaurant_options: list[str],
        start_time: datetime,
        end_time: datetime,
        group_order_link: Optional[str] = None,
    ) -> SessionRecord:
        """
        Create a session and seed one pending participant per company member.

        Raises:
            PermissionDeniedError: Actor is not a manager
            InvalidSessionTimesError: ``end_time`` is not after ``start_time``;
                nothing is persisted
            LookupFailedError: The roster could not be loaded; nothing is persisted
        """
        self._require_manager(actor, "create", allow_admin=False)
        company_id = self._require_company(actor)
        start_time, end_time = validate_times(start_time, end_time)

        members = await self.identity.list_company_members(company_id)
        participants = [self._seed_row(m) for m in members]

        now = self.clock.now()
        session = await self.store.create_session(
            {
                "company_id": company_id,
                "created_by": actor.id,
                "restaurant_name": restaurant_name,
                "restaurant_options": list(restaurant_options),
                "group_order_link": group_order_link,
                "start_time": start_time,
                "end_time": end_time,
                "status": None,
                "created_at": now,
                "updated_at": now,
            },
            participants,
        )
        logger.info(
            f"✅ Session {session.id} created for {restaurant_name} "
            f"with {len(participants)} participant(s)"
        )
        return session

    async def update_session(
        self,
        actor: UserProfile,
        session_id: str,
        changes: dict[str, Any],
    ) -> SessionRecord:
        """
        Apply a partial update. Times are re-validated against the merged values.

        Raises:
            PermissionDeniedError: Actor is neither manager nor admin
            InvalidSessionTimesError: Merged times are inverted
            InvalidTransitionError: Status other than active or closed
        """
        self._require_manager(actor, "update")
        session = await self._load_for(actor, session_id)

        fields = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS}
        if "start_time" in fields or "end_time" in fields:
            start, end = validate_times(
                fields.get("start_time", session.start_time),
                fields.get("end_time", session.end_time),
            )
            fields["start_time"], fields["end_time"] = start, end
        if fields.get("status") is not None:
            fields["status"] = manual_status(fields["status"])
        if not fields:
            return session

        fields["updated_at"] = self.clock.now()
        updated = await self.store.update_session(session_id, fields)
        logger.info(f"Session {session_id} updated: {sorted(k for k in fields if k != 'updated_at')}")
        return updated

    async def delete_session(self, actor: UserProfile, session_id: str) -> None:
        """Delete a session, its participants and every observer state for it."""
        self._require_manager(actor, "delete")
        await self._load_for(actor, session_id)
        await self.store.delete_session(session_id)
        self.registry.forget_session(session_id)
        logger.info(f"🗑️ Session {session_id} deleted by {actor.id}")

    async def reconcile_participants(self, session_id: str) -> list[ParticipantRecord]:
        """
        Add a pending row for company members who joined after the session
        was created. Existing rows are never touched.

        Returns:
            The participants that were added

        Raises:
            SessionNotActiveError: The deadline has passed or the session is closed
        """
        session = await self.store.get_session(session_id)
        current = phase(session, self.clock.now())
        if session.status in (SessionStatus.CLOSED, SessionStatus.COMPLETED):
            raise SessionNotActiveError(session.id, SessionStatus(session.status).value)
        if current in (Phase.CLOSED, Phase.COMPLETED):
            raise SessionNotActiveError(session.id, current.value)
        existing = {p.user_id for p in session.participants}
        members = await self.identity.list_company_members(session.company_id)

        added = []
        for member in members:
            if member.id in existing:
                continue
            row = self._seed_row(member)
            user_id = row.pop("user_id")
            participant = await self.store.upsert_participant(session_id, user_id, row)
            added.append(participant)
        if added:
            logger.info(f"Reconciled session {session_id}: added {len(added)} participant(s)")
        return added

    # =========================================================================
    # Participant responses and sweeps
    # =========================================================================

    async def respond(
        self,
        session_id: str,
        user_id: str,
        response: str,
        preset_order: Optional[str] = None,
    ) -> ParticipantRecord:
        return await self.state_machine.respond(session_id, user_id, response, preset_order)

    async def sweep_deadline(self, session_id: str) -> SweepResult:
        return await self.sweeper.sweep(session_id)

    async def sweep_expired_sessions(self, company_id: Optional[str] = None) -> list[SweepResult]:
        return await self.sweeper.sweep_expired(company_id)

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_session(self, actor: UserProfile, session_id: str) -> SessionRecord:
        return await self._load_for(actor, session_id)

    async def list_sessions(self, company_id: str) -> list[SessionRecord]:
        return await self.store.list_sessions(company_id)

    async def get_current_session(self, company_id: str) -> Optional[SessionRecord]:
        """Newest session of the company that is open for responses right now."""
        now = self.clock.now()
        for session in await self.store.list_active_sessions(company_id):
            if routing_status(session, now) == SessionStatus.ACTIVE and now <= session.end_time:
                return session
        return None

    # =========================================================================
    # Notifications
    # =========================================================================

    async def observe(
        self,
        session_id: str,
        role: ObserverRole,
        observer_user_id: Optional[str] = None,
    ) -> Observation:
        """Run one notification cycle for the observer and return its view."""
        session = await self.store.get_session(session_id)
        now = self.clock.now()
        state = self.registry.get(session_id, role, observer_user_id)
        new_events = self.engine.observe(state, session, now)
        return Observation(
            session=session,
            phase=phase(session, now),
            role=role,
            new_events=new_events,
            state=state,
        )

    def dismiss_notification(
        self,
        session_id: str,
        role: ObserverRole,
        observer_user_id: Optional[str],
        event_id: str,
    ) -> bool:
        state = self.registry.find(session_id, role, observer_user_id)
        return state is not None and state.dismiss(event_id)

    def clear_notifications(
        self,
        session_id: str,
        role: ObserverRole,
        observer_user_id: Optional[str],
    ) -> None:
        state = self.registry.find(session_id, role, observer_user_id)
        if state is not None:
            state.clear()

    def mark_notifications_read(
        self,
        session_id: str,
        role: ObserverRole,
        observer_user_id: Optional[str],
    ) -> int:
        """Reset the unread count. Returns the count that was cleared."""
        state = self.registry.find(session_id, role, observer_user_id)
        if state is None:
            return 0
        unread = state.unread_count
        state.mark_read()
        return unread
