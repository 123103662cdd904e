"""Tests for the change-notification engine."""

from dataclasses import replace
from datetime import timedelta

import pytest

from teamorder.models import AUTO_PASS_MESSAGE, ParticipantStatus
from teamorder.services.notifications import (
    NotificationEngine,
    NotificationType,
    ObserverRole,
    ObserverState,
    make_event_id,
)
from teamorder.services.store.base import ParticipantRecord, SessionRecord

from conftest import T0


def build_session(user_ids=("a", "b", "c"), minutes=5) -> SessionRecord:
    return SessionRecord(
        id="s1",
        company_id="acme",
        restaurant_name="Thai Palace",
        start_time=T0,
        end_time=T0 + timedelta(minutes=minutes),
        participants=tuple(
            ParticipantRecord(session_id="s1", user_id=uid, user_name=uid.upper())
            for uid in user_ids
        ),
    )


def set_status(session, user_id, status, preset_order=None) -> SessionRecord:
    return session.with_participants(
        replace(p, status=status, preset_order=preset_order) if p.user_id == user_id else p
        for p in session.participants
    )


@pytest.fixture
def engine(settings) -> NotificationEngine:
    return NotificationEngine(settings)


@pytest.fixture
def manager_state() -> ObserverState:
    return ObserverState(session_id="s1", role=ObserverRole.MANAGER, user_id="mgr")


@pytest.fixture
def member_state() -> ObserverState:
    return ObserverState(session_id="s1", role=ObserverRole.TEAM_MEMBER, user_id="a")


class TestEventIds:

    def test_same_second_same_id(self):
        first = make_event_id(NotificationType.ORDER_PLACED, "a", "s1", T0)
        second = make_event_id(NotificationType.ORDER_PLACED, "a", "s1", T0 + timedelta(milliseconds=900))
        assert first == second

    def test_differs_by_second_user_and_type(self):
        base = make_event_id(NotificationType.ORDER_PLACED, "a", "s1", T0)
        assert base != make_event_id(NotificationType.ORDER_PLACED, "a", "s1", T0 + timedelta(seconds=1))
        assert base != make_event_id(NotificationType.ORDER_PLACED, "b", "s1", T0)
        assert base != make_event_id(NotificationType.ORDER_PASSED, "a", "s1", T0)


class TestManagerView:

    def test_first_observation_summarises(self, engine, manager_state):
        session = set_status(build_session(minutes=60), "a", ParticipantStatus.ORDERED)

        events = engine.observe(manager_state, session, T0 + timedelta(seconds=10))

        types = {e.type for e in events}
        assert types == {NotificationType.ORDER_MISSING, NotificationType.ORDER_PLACED}
        missing = next(e for e in events if e.type == NotificationType.ORDER_MISSING)
        assert "B, C" in missing.message
        assert manager_state.unread_count == 2

    def test_one_event_per_transition(self, engine, manager_state):
        session = build_session()
        engine.observe(manager_state, session, T0 + timedelta(seconds=10))
        unread_before = manager_state.unread_count

        session = set_status(session, "a", ParticipantStatus.ORDERED)
        events = engine.observe(manager_state, session, T0 + timedelta(seconds=13))

        assert len(events) == 1
        assert events[0].type == NotificationType.ORDER_PLACED
        assert events[0].user_id == "a"
        assert manager_state.unread_count == unread_before + 1

        # Re-observing the same snapshot adds nothing
        assert engine.observe(manager_state, session, T0 + timedelta(seconds=16)) == []

    def test_auto_pass_is_distinguished_from_manual_pass(self, engine, manager_state):
        session = build_session(minutes=1)
        engine.observe(manager_state, session, T0 + timedelta(seconds=90))

        session = set_status(session, "a", ParticipantStatus.PASSED)
        session = set_status(session, "b", ParticipantStatus.PASSED, AUTO_PASS_MESSAGE)
        events = engine.observe(manager_state, session, T0 + timedelta(seconds=95))

        by_user = {e.user_id: e.type for e in events}
        assert by_user == {"a": NotificationType.ORDER_PASSED, "b": NotificationType.AUTO_PASSED}

    def test_return_to_pending_emits_nothing(self, engine, manager_state):
        session = set_status(build_session(), "a", ParticipantStatus.ORDERED)
        engine.observe(manager_state, session, T0 + timedelta(seconds=10))

        session = set_status(session, "a", ParticipantStatus.PENDING)
        assert engine.observe(manager_state, session, T0 + timedelta(seconds=20)) == []

    def test_session_ending_fires_once(self, engine, manager_state):
        session = build_session(minutes=10)
        engine.observe(manager_state, session, T0 + timedelta(seconds=10))

        events = engine.observe(manager_state, session, T0 + timedelta(seconds=360))
        assert [e.type for e in events] == [NotificationType.SESSION_ENDING]
        assert "4 minutes" in events[0].message

        assert engine.observe(manager_state, session, T0 + timedelta(seconds=420)) == []

    def test_retention_is_capped_newest_first(self, engine, manager_state, settings):
        user_ids = [f"u{i}" for i in range(12)]
        session = build_session(user_ids, minutes=60)
        engine.observe(manager_state, session, T0 + timedelta(seconds=10))

        for i, uid in enumerate(user_ids):
            session = set_status(session, uid, ParticipantStatus.ORDERED)
            engine.observe(manager_state, session, T0 + timedelta(seconds=20 + 3 * i))

        assert len(manager_state.events) == settings.manager_notification_limit
        timestamps = [e.timestamp for e in manager_state.events]
        assert timestamps == sorted(timestamps, reverse=True)
        assert manager_state.events[0].user_id == "u11"
        ids = [e.id for e in manager_state.events]
        assert len(ids) == len(set(ids))


class TestDebounce:

    def test_cycle_inside_window_is_skipped(self, engine, manager_state):
        session = build_session()
        engine.observe(manager_state, session, T0 + timedelta(seconds=10))
        snapshot = manager_state.previous

        changed = set_status(session, "a", ParticipantStatus.ORDERED)
        assert engine.observe(manager_state, changed, T0 + timedelta(seconds=11)) == []
        assert manager_state.previous is snapshot

        events = engine.observe(manager_state, changed, T0 + timedelta(seconds=12))
        assert [e.user_id for e in events] == ["a"]

    def test_first_observation_is_never_debounced(self, engine, member_state):
        events = engine.observe(member_state, build_session(minutes=180), T0)
        assert [e.type for e in events] == [NotificationType.SESSION_CREATED]


class TestTeamMemberView:

    def test_session_ending_one_shot_near_deadline(self, engine, member_state):
        session = build_session()

        events = engine.observe(member_state, session, T0 + timedelta(seconds=290))
        ending = [e for e in events if e.type == NotificationType.SESSION_ENDING]
        assert len(ending) == 1
        assert ending[0].message == "The order session will end in 1 minute"

        assert engine.observe(member_state, session, T0 + timedelta(seconds=295)) == []
        assert engine.observe(member_state, session, T0 + timedelta(seconds=299)) == []

    def test_reminder_tiers_fire_once_each(self, engine, member_state):
        session = build_session(minutes=180)
        end = session.end_time

        first = engine.observe(member_state, session, T0)
        assert [e.type for e in first] == [NotificationType.SESSION_CREATED]

        reminder = engine.observe(member_state, session, end - timedelta(minutes=119))
        assert [e.title for e in reminder] == ["Order Deadline Reminder"]
        assert "1 hour" in reminder[0].message
        assert engine.observe(member_state, session, end - timedelta(minutes=100)) == []

        warning = engine.observe(member_state, session, end - timedelta(minutes=29))
        assert [e.title for e in warning] == ["Order Deadline Approaching"]
        assert engine.observe(member_state, session, end - timedelta(minutes=20)) == []

        ending = engine.observe(member_state, session, end - timedelta(minutes=4))
        assert [e.type for e in ending] == [NotificationType.SESSION_ENDING]

    def test_member_does_not_see_roster_changes(self, engine, member_state):
        session = build_session(minutes=180)
        engine.observe(member_state, session, T0)

        session = set_status(session, "b", ParticipantStatus.ORDERED)
        assert engine.observe(member_state, session, T0 + timedelta(seconds=5)) == []

    def test_terminal_messages_by_kind(self, engine, settings):
        session = build_session()
        session = set_status(session, "a", ParticipantStatus.PASSED, AUTO_PASS_MESSAGE)
        session = set_status(session, "b", ParticipantStatus.PASSED)
        after = T0 + timedelta(minutes=6)

        auto = ObserverState(session_id="s1", role=ObserverRole.TEAM_MEMBER, user_id="a")
        manual = ObserverState(session_id="s1", role=ObserverRole.TEAM_MEMBER, user_id="b")
        ordered = ObserverState(session_id="s1", role=ObserverRole.TEAM_MEMBER, user_id="c")

        auto_events = engine.observe(auto, session, after)
        manual_events = engine.observe(manual, session, after)
        other_events = engine.observe(ordered, session, after)

        assert auto_events[-1].type == NotificationType.AUTO_PASSED
        assert "You passed" in manual_events[-1].message
        assert other_events[-1].title == "Order Deadline Passed"
        assert "Thai Palace" in other_events[-1].message

        # Each terminal kind fires once
        assert engine.observe(auto, session, after + timedelta(seconds=10)) == []

    def test_retained_set_replaced_when_new_events(self, engine, member_state):
        session = build_session(minutes=180)
        engine.observe(member_state, session, T0)
        assert member_state.unread_count == 1

        engine.observe(member_state, session, session.end_time - timedelta(seconds=290))
        assert [e.type for e in member_state.events] == [NotificationType.SESSION_ENDING]
        assert member_state.unread_count == 1


class TestDismissal:

    def test_dismiss_and_clear_only_touch_observer_state(self, engine, manager_state):
        session = set_status(build_session(), "a", ParticipantStatus.ORDERED)
        events = engine.observe(manager_state, session, T0 + timedelta(seconds=10))

        assert manager_state.dismiss(events[0].id) is True
        assert manager_state.dismiss(events[0].id) is False
        assert events[0].id not in {e.id for e in manager_state.events}

        manager_state.clear()
        assert manager_state.events == []
        assert manager_state.unread_count == 0
        assert session.participant("a").status == ParticipantStatus.ORDERED
