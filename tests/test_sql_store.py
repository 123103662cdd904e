"""Tests for the SQLAlchemy session store and database identity service."""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from teamorder.core.errors import ConflictError, LookupFailedError, NotFoundError
from teamorder.models import AUTO_PASS_MESSAGE, Participant, ParticipantStatus, SessionStatus, UserRole
from teamorder.services.identity import DatabaseIdentityService
from teamorder.services.sessions import OrderSessionService
from teamorder.services.store import SqlSessionStore

from conftest import COMPANY_ID, T0


def session_fields(**overrides):
    fields = {
        "company_id": COMPANY_ID,
        "created_by": "mgr",
        "restaurant_name": "Thai Palace",
        "restaurant_options": ["Thai Palace", "Sushi Go"],
        "start_time": T0,
        "end_time": T0 + timedelta(minutes=5),
        "created_at": T0,
        "updated_at": T0,
    }
    fields.update(overrides)
    return fields


def seeds(*user_ids):
    return [
        {"user_id": uid, "user_name": uid.title(), "status": ParticipantStatus.PENDING, "updated_at": T0}
        for uid in user_ids
    ]


@pytest.mark.asyncio
class TestSqlSessionStore:

    async def test_create_and_load(self, db_session):
        store = SqlSessionStore(db_session)
        created = await store.create_session(session_fields(), seeds("alice", "bob"))

        loaded = await store.get_session(created.id)
        assert loaded.restaurant_options == ["Thai Palace", "Sushi Go"]
        assert loaded.start_time == T0
        assert loaded.start_time.tzinfo is not None
        assert loaded.status is None
        assert [p.user_id for p in loaded.participants] == ["alice", "bob"]

    async def test_missing_session(self, db_session):
        with pytest.raises(NotFoundError):
            await SqlSessionStore(db_session).get_session("nope")

    async def test_duplicate_seed_is_atomic(self, db_session):
        store = SqlSessionStore(db_session)
        with pytest.raises(ConflictError):
            await store.create_session(session_fields(id="dup"), seeds("alice", "alice"))

        with pytest.raises(NotFoundError):
            await store.get_session("dup")

    async def test_upsert_last_write_wins_single_row(self, db_session):
        store = SqlSessionStore(db_session)
        created = await store.create_session(session_fields(), seeds("alice"))

        await store.upsert_participant(created.id, "alice", {
            "user_name": "Alice", "status": ParticipantStatus.ORDERED, "preset_order": None,
            "updated_at": T0 + timedelta(seconds=10),
        })
        final = await store.upsert_participant(created.id, "alice", {
            "user_name": "Alice", "status": ParticipantStatus.PRESET, "preset_order": "Soup",
            "updated_at": T0 + timedelta(seconds=11),
        })

        assert final.status == ParticipantStatus.PRESET
        assert final.preset_order == "Soup"
        count = await db_session.scalar(
            select(func.count()).select_from(Participant).where(Participant.session_id == created.id)
        )
        assert count == 1

    async def test_upsert_inserts_unseeded_participant(self, db_session):
        store = SqlSessionStore(db_session)
        created = await store.create_session(session_fields(), [])

        p = await store.upsert_participant(created.id, "dave", {
            "user_name": "Dave", "status": ParticipantStatus.PASSED, "preset_order": None, "updated_at": T0,
        })
        assert p.user_id == "dave"
        assert len(await store.list_participants(created.id)) == 1

    async def test_conditional_write_skips_resolved_rows(self, db_session):
        store = SqlSessionStore(db_session)
        created = await store.create_session(session_fields(), seeds("alice", "bob"))
        await store.upsert_participant(created.id, "alice", {
            "user_name": "Alice", "status": ParticipantStatus.ORDERED, "updated_at": T0,
        })

        auto_pass = {"status": ParticipantStatus.PASSED, "preset_order": AUTO_PASS_MESSAGE, "updated_at": T0}
        skipped = await store.upsert_participant(
            created.id, "alice", auto_pass, expected_status=ParticipantStatus.PENDING,
        )
        applied = await store.upsert_participant(
            created.id, "bob", auto_pass, expected_status=ParticipantStatus.PENDING,
        )

        assert skipped is None
        assert applied.is_auto_passed
        assert (await store.get_session(created.id)).participant("alice").status == ParticipantStatus.ORDERED

    async def test_active_listing_excludes_closed(self, db_session):
        store = SqlSessionStore(db_session)
        open_one = await store.create_session(session_fields(), [])
        closed = await store.create_session(session_fields(created_at=T0 + timedelta(seconds=1)), [])
        await store.update_session_status(closed.id, SessionStatus.CLOSED)

        active = await store.list_active_sessions(COMPANY_ID)
        listed = await store.list_sessions(COMPANY_ID)

        assert [s.id for s in active] == [open_one.id]
        assert [s.id for s in listed] == [closed.id, open_one.id]

    async def test_delete_cascades_participants(self, db_session):
        store = SqlSessionStore(db_session)
        created = await store.create_session(session_fields(), seeds("alice", "bob"))

        await store.delete_session(created.id)

        count = await db_session.scalar(select(func.count()).select_from(Participant))
        assert count == 0
        with pytest.raises(NotFoundError):
            await store.delete_session(created.id)

    async def test_health_check(self, db_session):
        assert await SqlSessionStore(db_session).health_check() is True


@pytest.mark.asyncio
class TestDatabaseIdentity:

    async def test_profile_and_display_name(self, db_session, seeded_db):
        identity = DatabaseIdentityService(db_session)

        profile = await identity.get_user("mgr")
        assert profile.role == UserRole.MANAGER
        assert await identity.resolve_user_display_name("mgr") == "Maria Lopez"
        assert await identity.resolve_user_display_name("carol") == "carol@acme.test"

    async def test_unknown_user_lookup_fails(self, db_session, seeded_db):
        identity = DatabaseIdentityService(db_session)
        with pytest.raises(NotFoundError):
            await identity.get_user("ghost")
        with pytest.raises(LookupFailedError):
            await identity.resolve_user_display_name("ghost")

    async def test_company_roster(self, db_session, seeded_db):
        members = await DatabaseIdentityService(db_session).list_company_members(COMPANY_ID)
        assert {m.id for m in members} == {"mgr", "adm", "alice", "bob", "carol"}


@pytest.mark.asyncio
async def test_sweep_lifecycle_on_sql(db_session, seeded_db, clock, settings, registry):
    store = SqlSessionStore(db_session)
    service = OrderSessionService(
        store, DatabaseIdentityService(db_session), clock=clock, settings=settings, registry=registry,
    )
    manager = await service.identity.get_user("mgr")
    session = await service.create_session(manager, "Thai Palace", [], T0, T0 + timedelta(seconds=300))

    clock.set(T0 + timedelta(seconds=90))
    await service.respond(session.id, "alice", "ordered")
    clock.set(T0 + timedelta(seconds=150))
    await service.respond(session.id, "bob", "preset", "usual salad")

    clock.set(T0 + timedelta(seconds=301))
    result = await service.sweep_deadline(session.id)
    again = await service.sweep_deadline(session.id)

    assert sorted(result.auto_passed_user_ids) == ["adm", "carol", "mgr"]
    assert result.session_closed is True
    assert again.auto_passed_count == 0
    final = await store.get_session(session.id)
    assert final.status == SessionStatus.CLOSED
    assert final.participant("bob").preset_order == "usual salad"
