"""Tests for the deadline sweeper."""

import asyncio
from datetime import timedelta

import pytest

from teamorder.core.errors import StoreUnavailableError
from teamorder.models import AUTO_PASS_MESSAGE, ParticipantStatus, SessionStatus
from teamorder.services.sessions import OrderSessionService
from teamorder.services.store import MemorySessionStore

from conftest import T0


async def three_person_session(store):
    return await store.create_session(
        {
            "company_id": "acme",
            "restaurant_name": "Thai Palace",
            "start_time": T0,
            "end_time": T0 + timedelta(seconds=300),
        },
        [
            {"user_id": uid, "user_name": name, "status": ParticipantStatus.PENDING}
            for uid, name in (("a", "Ann"), ("b", "Ben"), ("c", "Cat"))
        ],
    )


class FlakyStore(MemorySessionStore):
    """Fails conditional writes for the given users."""

    def __init__(self, failing_user_ids):
        super().__init__()
        self.failing_user_ids = set(failing_user_ids)

    async def upsert_participant(self, session_id, user_id, fields, expected_status=None):
        if expected_status is not None and user_id in self.failing_user_ids:
            raise StoreUnavailableError("Session store failed while writing participant")
        return await super().upsert_participant(session_id, user_id, fields, expected_status)


@pytest.mark.asyncio
class TestSweep:

    async def test_full_lifecycle(self, service, store, clock):
        session = await three_person_session(store)

        clock.set(T0 + timedelta(seconds=90))
        await service.respond(session.id, "a", "ordered")
        clock.set(T0 + timedelta(seconds=150))
        await service.respond(session.id, "b", "preset", "usual salad")

        clock.set(T0 + timedelta(seconds=301))
        result = await service.sweep_deadline(session.id)

        assert result.auto_passed_count == 1
        assert result.auto_passed_user_ids == ["c"]
        assert result.failures == []
        assert result.session_closed is True

        after = await store.get_session(session.id)
        assert after.status == SessionStatus.CLOSED
        by_user = {p.user_id: p for p in after.participants}
        assert by_user["a"].status == ParticipantStatus.ORDERED
        assert by_user["b"].preset_order == "usual salad"
        assert by_user["c"].status == ParticipantStatus.PASSED
        assert by_user["c"].preset_order == AUTO_PASS_MESSAGE
        assert by_user["c"].is_auto_passed

    async def test_second_sweep_is_a_no_op(self, service, store, clock):
        session = await three_person_session(store)
        clock.set(T0 + timedelta(seconds=301))

        first = await service.sweep_deadline(session.id)
        before = await store.get_session(session.id)
        second = await service.sweep_deadline(session.id)
        after = await store.get_session(session.id)

        assert first.auto_passed_count == 3
        assert second.auto_passed_count == 0
        assert second.session_closed is False
        assert second.skipped_reason == "session is closed"
        assert before.participants == after.participants

    async def test_not_due_before_deadline(self, service, store, clock):
        session = await three_person_session(store)
        clock.set(T0 + timedelta(seconds=300))

        result = await service.sweep_deadline(session.id)

        assert result.auto_passed_count == 0
        assert result.skipped_reason == "deadline has not passed"
        assert all(p.is_pending for p in await store.list_participants(session.id))

    async def test_concurrent_sweeps_apply_once(self, service, store, clock):
        session = await three_person_session(store)
        clock.set(T0 + timedelta(seconds=301))

        results = await asyncio.gather(*[service.sweep_deadline(session.id) for _ in range(5)])

        assert sum(r.auto_passed_count for r in results) == 3
        participants = await store.list_participants(session.id)
        assert len(participants) == 3
        assert all(p.is_auto_passed for p in participants)

    async def test_partial_failure_leaves_session_open(self, identity, clock, settings, registry):
        store = FlakyStore({"b"})
        service = OrderSessionService(store, identity, clock=clock, settings=settings, registry=registry)
        session = await three_person_session(store)
        clock.set(T0 + timedelta(seconds=301))

        result = await service.sweep_deadline(session.id)

        assert result.auto_passed_count == 2
        assert [f.user_id for f in result.failures] == ["b"]
        assert result.failures[0].code == "store_unavailable"
        assert result.session_closed is False
        assert (await store.get_session(session.id)).status is None

        # Store recovers; the retry finishes the job
        store.failing_user_ids.clear()
        retry = await service.sweep_deadline(session.id)
        assert retry.auto_passed_user_ids == ["b"]
        assert retry.session_closed is True

    async def test_closes_when_everyone_already_responded(self, service, store, clock):
        session = await three_person_session(store)
        clock.set(T0 + timedelta(seconds=10))
        for uid in ("a", "b", "c"):
            await service.respond(session.id, uid, "passed")

        clock.set(T0 + timedelta(seconds=400))
        result = await service.sweep_deadline(session.id)

        assert result.auto_passed_count == 0
        assert result.session_closed is True
        participants = await store.list_participants(session.id)
        assert not any(p.is_auto_passed for p in participants)

    async def test_sweep_expired_only_touches_due_sessions(self, service, store, clock):
        due = await three_person_session(store)
        later = await store.create_session(
            {
                "company_id": "acme",
                "restaurant_name": "Sushi Go",
                "start_time": T0,
                "end_time": T0 + timedelta(hours=2),
            },
            [{"user_id": "a", "user_name": "Ann"}],
        )
        clock.set(T0 + timedelta(seconds=301))

        results = await service.sweep_expired_sessions()

        assert [r.session_id for r in results] == [due.id]
        assert (await store.get_session(later.id)).participant("a").is_pending
