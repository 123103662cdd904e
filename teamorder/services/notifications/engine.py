"""
Change Notification Engine

Turns successive snapshots of one session into user-facing events.

Each observer (a session viewed through one role by one user) owns an
``ObserverState``. Every observation cycle:

    1. is skipped entirely if it comes within the debounce window of the
       previous cycle (the previous snapshot is kept)
    2. builds candidate events for the observer's role
    3. drops candidates whose id was already seen recently
    4. folds the survivors into the observer's retained list

Managers see the whole roster: a summary on first observation, then one
event per participant status change. Team members see session-level
reminders only. Deadline reminders and terminal messages fire once per
observer.

Version: 1.0.0
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from teamorder.core.clock import ensure_utc
from teamorder.core.config import Settings, get_settings
from teamorder.models import ParticipantStatus
from teamorder.services.notifications.events import (
    NotificationEvent,
    NotificationType,
    ObserverRole,
)
from teamorder.services.store.base import ParticipantRecord, SessionRecord

logger = logging.getLogger(__name__)


def _seconds_left(session: SessionRecord, now: datetime) -> float:
    return (session.end_time - now).total_seconds()


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def _members(count: int) -> str:
    return "1 team member has" if count == 1 else f"{count} team members have"


@dataclass
class ObserverState:
    """
    Everything one observer remembers between cycles.

    Attributes:
        session_id: Observed session
        role: Manager or team-member view
        user_id: Observing user (team-member reminders are theirs alone)
        previous: Participant snapshot from the last evaluated cycle,
            ``None`` before the first observation
        seen_ids: Event id -> first time it was produced
        fired: Keys of one-shot events already emitted
        last_cycle_at: Time of the last evaluated (non-debounced) cycle
        events: Retained events, newest first
        unread_count: Events not yet viewed
    """
    session_id: str
    role: ObserverRole
    user_id: Optional[str] = None
    previous: Optional[dict[str, ParticipantRecord]] = None
    seen_ids: dict[str, datetime] = field(default_factory=dict)
    fired: set[str] = field(default_factory=set)
    last_cycle_at: Optional[datetime] = None
    events: list[NotificationEvent] = field(default_factory=list)
    unread_count: int = 0

    @property
    def first_observation(self) -> bool:
        return self.previous is None

    def dismiss(self, event_id: str) -> bool:
        """Remove one retained event. The underlying session is untouched."""
        remaining = [e for e in self.events if e.id != event_id]
        if len(remaining) == len(self.events):
            return False
        self.events = remaining
        self.unread_count = max(0, self.unread_count - 1)
        return True

    def clear(self) -> None:
        self.events = []
        self.unread_count = 0

    def mark_read(self) -> None:
        self.unread_count = 0


class NotificationEngine:
    """Stateless rule set; all memory lives in the ``ObserverState`` passed in."""

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.debounce = timedelta(seconds=settings.notification_debounce_seconds)
        self.seen_ttl = timedelta(seconds=settings.notification_seen_ttl_seconds)
        self.manager_limit = settings.manager_notification_limit
        self.ending_soon_seconds = settings.session_ending_soon_minutes * 60
        self.reminder_seconds = settings.deadline_reminder_minutes * 60
        self.warning_seconds = settings.deadline_warning_minutes * 60

    # =========================================================================
    # Cycle
    # =========================================================================

    def observe(
        self,
        state: ObserverState,
        session: SessionRecord,
        now: datetime,
    ) -> list[NotificationEvent]:
        """
        Run one observation cycle.

        Returns:
            Events that are new in this cycle (empty when debounced)
        """
        now = ensure_utc(now)
        first = state.first_observation
        if not first and state.last_cycle_at is not None and now - state.last_cycle_at < self.debounce:
            return []
        state.last_cycle_at = now
        self._prune_seen(state, now)

        current = {p.user_id: p for p in session.participants}
        if state.role == ObserverRole.MANAGER:
            candidates = self._manager_events(state, session, current, now, first)
        else:
            candidates = self._team_member_events(state, session, current, now, first)
        state.previous = current

        new_events = []
        for event in candidates:
            if event.id in state.seen_ids:
                continue
            state.seen_ids[event.id] = now
            new_events.append(event)

        self._retain(state, new_events, first)
        if new_events:
            logger.debug(
                f"{len(new_events)} new {state.role.value} event(s) for session {session.id}"
            )
        return new_events

    def _prune_seen(self, state: ObserverState, now: datetime) -> None:
        cutoff = now - self.seen_ttl
        state.seen_ids = {k: t for k, t in state.seen_ids.items() if t >= cutoff}

    def _retain(self, state: ObserverState, new_events: list[NotificationEvent], first: bool) -> None:
        if state.role == ObserverRole.MANAGER and not first:
            known = {e.id for e in state.events}
            added = [e for e in new_events if e.id not in known]
            merged = state.events + added
            merged.sort(key=lambda e: e.timestamp, reverse=True)
            state.events = merged[:self.manager_limit]
            state.unread_count += len(added)
            return

        if first or new_events:
            unique = list({e.id: e for e in new_events}.values())
            unique.sort(key=lambda e: e.timestamp, reverse=True)
            if state.role == ObserverRole.MANAGER:
                unique = unique[:self.manager_limit]
            state.events = unique
            state.unread_count = len(unique)

    def _once(self, state: ObserverState, key: str) -> bool:
        """True the first time ``key`` is asked for on this observer."""
        if key in state.fired:
            return False
        state.fired.add(key)
        return True

    # =========================================================================
    # Manager view
    # =========================================================================

    def _manager_events(self, state, session, current, now, first) -> list[NotificationEvent]:
        if first:
            events = self._summary_events(session, list(current.values()), now)
        else:
            events = []
            for user_id, participant in current.items():
                before = state.previous.get(user_id)
                if before is None or before.status == participant.status:
                    continue
                event = self._transition_event(session, participant, now)
                if event is not None:
                    events.append(event)

        ending = self._ending_soon_event(state, session, now)
        if ending is not None:
            events.append(ending)
        return events

    def _summary_events(self, session, participants, now) -> list[NotificationEvent]:
        pending = [p for p in participants if p.status == ParticipantStatus.PENDING]
        ordered = [p for p in participants if p.status == ParticipantStatus.ORDERED]
        auto_passed = [p for p in participants if p.is_auto_passed]
        passed = [
            p for p in participants
            if p.status == ParticipantStatus.PASSED and not p.is_auto_passed
        ]
        preset = [p for p in participants if p.status == ParticipantStatus.PRESET]

        events = []
        if pending:
            names = ", ".join(p.user_name for p in pending)
            events.append(NotificationEvent.build(
                NotificationType.ORDER_MISSING,
                "Missing Orders",
                f"{_members(len(pending))} not responded yet: {names}",
                session.id, now,
            ))
        if ordered:
            events.append(NotificationEvent.build(
                NotificationType.ORDER_PLACED,
                "Orders Placed",
                f"{_members(len(ordered))} placed their order",
                session.id, now,
            ))
        if auto_passed:
            events.append(NotificationEvent.build(
                NotificationType.AUTO_PASSED,
                "Auto-Passed",
                f"{_members(len(auto_passed))} been auto-passed after the deadline",
                session.id, now,
            ))
        if passed:
            events.append(NotificationEvent.build(
                NotificationType.ORDER_PASSED,
                "Orders Passed",
                f"{_members(len(passed))} passed on this order",
                session.id, now,
            ))
        if preset:
            events.append(NotificationEvent.build(
                NotificationType.PRESET_ORDER,
                "Preset Orders",
                f"{_members(len(preset))} submitted a preset order",
                session.id, now,
            ))
        return events

    def _transition_event(self, session, participant, now) -> Optional[NotificationEvent]:
        name = participant.user_name
        if participant.status == ParticipantStatus.ORDERED:
            kind, title, message = (
                NotificationType.ORDER_PLACED, "Order Placed", f"{name} has placed their order",
            )
        elif participant.is_auto_passed:
            kind, title, message = (
                NotificationType.AUTO_PASSED, "Auto-Passed",
                f"{name} was auto-passed after the deadline",
            )
        elif participant.status == ParticipantStatus.PASSED:
            kind, title, message = (
                NotificationType.ORDER_PASSED, "Order Passed", f"{name} has passed on this order",
            )
        elif participant.status == ParticipantStatus.PRESET:
            kind, title, message = (
                NotificationType.PRESET_ORDER, "Preset Order",
                f"{name} submitted a preset order: {participant.preset_order}",
            )
        else:
            return None
        return NotificationEvent.build(
            kind, title, message, session.id, now,
            user_id=participant.user_id, user_name=name,
        )

    def _ending_soon_event(self, state, session, now) -> Optional[NotificationEvent]:
        remaining = _seconds_left(session, now)
        if not 0 < remaining <= self.ending_soon_seconds:
            return None
        if not self._once(state, "session_ending"):
            return None
        minutes = math.ceil(remaining / 60)
        return NotificationEvent.build(
            NotificationType.SESSION_ENDING,
            "Session Ending Soon",
            f"The order session for {session.restaurant_name} will end in {_plural(minutes, 'minute')}",
            session.id, now,
        )

    # =========================================================================
    # Team-member view
    # =========================================================================

    def _team_member_events(self, state, session, current, now, first) -> list[NotificationEvent]:
        events = []
        if first and self._once(state, "session_created"):
            events.append(NotificationEvent.build(
                NotificationType.SESSION_CREATED,
                "New Order Session",
                f"Order from {session.restaurant_name} before "
                f"{session.end_time:%Y-%m-%d %H:%M} UTC",
                session.id, now,
            ))

        remaining = _seconds_left(session, now)
        if remaining > 0:
            reminder = self._deadline_reminder(state, session, remaining, now)
            if reminder is not None:
                events.append(reminder)
            return events

        terminal = self._terminal_event(state, session, current.get(state.user_id), now)
        if terminal is not None:
            events.append(terminal)
        return events

    def _deadline_reminder(self, state, session, remaining, now) -> Optional[NotificationEvent]:
        if remaining <= self.ending_soon_seconds:
            if not self._once(state, "session_ending"):
                return None
            minutes = math.ceil(remaining / 60)
            return NotificationEvent.build(
                NotificationType.SESSION_ENDING,
                "Session Ending Soon",
                f"The order session will end in {_plural(minutes, 'minute')}",
                session.id, now, user_id=state.user_id,
            )

        if remaining < self.warning_seconds:
            if not self._once(state, "deadline_warning"):
                return None
            minutes = math.ceil(remaining / 60)
            return NotificationEvent.build(
                NotificationType.DEADLINE,
                "Order Deadline Approaching",
                f"Only {_plural(minutes, 'minute')} left to place your order!",
                session.id, now, user_id=state.user_id,
            )

        if remaining < self.reminder_seconds:
            if not self._once(state, "deadline_reminder"):
                return None
            if remaining >= 3600:
                left = _plural(int(remaining // 3600), "hour")
            else:
                left = _plural(math.ceil(remaining / 60), "minute")
            return NotificationEvent.build(
                NotificationType.DEADLINE,
                "Order Deadline Reminder",
                f"Only {left} left to place your order",
                session.id, now, user_id=state.user_id,
            )
        return None

    def _terminal_event(self, state, session, own, now) -> Optional[NotificationEvent]:
        if own is not None and own.is_auto_passed:
            key, kind, title, message = (
                "terminal:auto_passed", NotificationType.AUTO_PASSED, "Auto-Passed",
                "You did not respond before the deadline and were automatically passed",
            )
        elif own is not None and own.status == ParticipantStatus.PASSED:
            key, kind, title, message = (
                "terminal:passed", NotificationType.DEADLINE, "Order Deadline Passed",
                "The order deadline has passed. You passed on this order",
            )
        else:
            key, kind, title, message = (
                "terminal:deadline_passed", NotificationType.DEADLINE, "Order Deadline Passed",
                f"The order deadline for {session.restaurant_name} has passed",
            )
        if not self._once(state, key):
            return None
        return NotificationEvent.build(kind, title, message, session.id, now, user_id=state.user_id)
