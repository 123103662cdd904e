"""Tests for participant responses."""

import asyncio
from datetime import timedelta

import pytest

from teamorder.core.errors import (
    InvalidTransitionError,
    MissingPresetOrderError,
    SessionNotActiveError,
    StoreUnavailableError,
)
from teamorder.models import ParticipantStatus, SessionStatus
from teamorder.services.identity import MockIdentityService, UserProfile
from teamorder.services.sessions import ParticipantStateMachine
from teamorder.services.store import MemorySessionStore

from conftest import T0


@pytest.mark.asyncio
class TestRespond:

    async def test_pending_to_ordered(self, service, session, clock):
        clock.advance(seconds=30)
        p = await service.respond(session.id, "alice", "ordered")

        assert p.status == ParticipantStatus.ORDERED
        assert p.user_name == "Alice Wong"
        assert p.preset_order is None
        assert p.updated_at == T0 + timedelta(seconds=30)

    async def test_preset_requires_message(self, service, session, store):
        with pytest.raises(MissingPresetOrderError):
            await service.respond(session.id, "alice", "preset", "   ")

        stored = (await store.get_session(session.id)).participant("alice")
        assert stored.status == ParticipantStatus.PENDING

    async def test_preset_message_is_stored_trimmed(self, service, session):
        p = await service.respond(session.id, "bob", "preset", "  Pad thai, no peanuts ")
        assert p.status == ParticipantStatus.PRESET
        assert p.preset_order == "Pad thai, no peanuts"

    async def test_response_can_change_while_open(self, service, session, clock):
        await service.respond(session.id, "alice", "preset", "Salad")
        clock.advance(seconds=10)
        p = await service.respond(session.id, "alice", "passed")

        assert p.status == ParticipantStatus.PASSED
        assert p.preset_order is None

    @pytest.mark.parametrize("response", ["pending", "maybe", ""])
    async def test_rejects_non_response_states(self, service, session, response):
        with pytest.raises(InvalidTransitionError):
            await service.respond(session.id, "alice", response)

    async def test_rejected_after_deadline(self, service, session, clock, store):
        clock.set(T0 + timedelta(minutes=5, seconds=1))
        with pytest.raises(SessionNotActiveError) as exc_info:
            await service.respond(session.id, "alice", "ordered")

        assert exc_info.value.retryable is False
        assert exc_info.value.http_status == 409
        stored = (await store.get_session(session.id)).participant("alice")
        assert stored.status == ParticipantStatus.PENDING

    async def test_accepted_exactly_at_deadline(self, service, session, clock):
        clock.set(T0 + timedelta(minutes=5))
        p = await service.respond(session.id, "alice", "ordered")
        assert p.status == ParticipantStatus.ORDERED

    async def test_rejected_before_start(self, service, session, clock):
        clock.set(T0 - timedelta(seconds=1))
        with pytest.raises(SessionNotActiveError):
            await service.respond(session.id, "alice", "ordered")

    async def test_rejected_once_closed_inside_window(self, service, session, store, clock):
        clock.advance(seconds=100)
        await store.update_session_status(session.id, SessionStatus.CLOSED)
        with pytest.raises(SessionNotActiveError) as exc_info:
            await service.respond(session.id, "alice", "ordered")

        assert exc_info.value.phase == "closed"
        assert "closed" in exc_info.value.detail
        assert "active" not in exc_info.value.detail

    async def test_failed_lookup_keeps_stored_name(self, store, clock, settings, session):
        identity = MockIdentityService(unavailable_ids={"alice"})
        machine = ParticipantStateMachine(store, identity, clock, settings)

        p = await machine.respond(session.id, "alice", "ordered")
        assert p.status == ParticipantStatus.ORDERED
        assert p.user_name == "Alice Wong"

    async def test_failed_lookup_for_new_row_uses_placeholder(self, store, clock, settings, session):
        identity = MockIdentityService(unavailable_ids={"zed"})
        machine = ParticipantStateMachine(store, identity, clock, settings)

        p = await machine.respond(session.id, "zed", "ordered")
        assert p.user_name == settings.unknown_user_label

    async def test_user_without_any_name_falls_back(self, store, clock, settings, session):
        identity = MockIdentityService([UserProfile(id="ghost", company_id="acme")])
        machine = ParticipantStateMachine(store, identity, clock, settings)

        p = await machine.respond(session.id, "ghost", "passed")
        assert p.user_name == "Unknown User"

    async def test_concurrent_responses_keep_one_row(self, service, session, store):
        await asyncio.gather(
            service.respond(session.id, "alice", "ordered"),
            service.respond(session.id, "alice", "passed"),
            service.respond(session.id, "alice", "preset", "Soup"),
        )
        rows = [p for p in await store.list_participants(session.id) if p.user_id == "alice"]
        assert len(rows) == 1
        assert rows[0].status in (
            ParticipantStatus.ORDERED, ParticipantStatus.PASSED, ParticipantStatus.PRESET,
        )

    async def test_store_failure_surfaces_verbatim(self, identity, clock, settings):
        class FailingStore(MemorySessionStore):
            async def upsert_participant(self, *args, **kwargs):
                raise StoreUnavailableError("Session store failed while writing participant")

        store = FailingStore()
        record = await store.create_session(
            {"company_id": "acme", "restaurant_name": "Thai", "start_time": T0,
             "end_time": T0 + timedelta(minutes=5)},
            [],
        )
        machine = ParticipantStateMachine(store, identity, clock, settings)

        with pytest.raises(StoreUnavailableError) as exc_info:
            await machine.respond(record.id, "alice", "ordered")
        assert exc_info.value.retryable is True
