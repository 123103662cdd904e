"""Pytest configuration and fixtures."""

import os

# Must be set before the application modules build their engine
os.environ["ENV_MODE"] = "development"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

from datetime import datetime, timedelta, timezone
from typing import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from teamorder.core.clock import FixedClock, get_clock
from teamorder.core.config import get_settings
from teamorder.database import get_db, init_db
from teamorder.main import app
from teamorder.models import Company, User, UserRole
from teamorder.services.identity import MockIdentityService, UserProfile
from teamorder.services.notifications import (
    MockAckStore,
    ObserverRegistry,
    get_ack_store,
    reset_observer_registry,
)
from teamorder.services.sessions import OrderSessionService
from teamorder.services.store import MemorySessionStore

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

T0 = datetime(2026, 10, 18, 11, 0, tzinfo=timezone.utc)
COMPANY_ID = "acme"
OTHER_COMPANY_ID = "globex"

USERS = [
    UserProfile(id="mgr", company_id=COMPANY_ID, role=UserRole.MANAGER, first_name="Maria", last_name="Lopez"),
    UserProfile(id="adm", company_id=COMPANY_ID, role=UserRole.ADMIN, first_name="Ada", last_name="Admin"),
    UserProfile(id="alice", company_id=COMPANY_ID, first_name="Alice", last_name="Wong"),
    UserProfile(id="bob", company_id=COMPANY_ID, first_name="Bob"),
    UserProfile(id="carol", company_id=COMPANY_ID, email="carol@acme.test"),
    UserProfile(id="outsider", company_id=OTHER_COMPANY_ID, role=UserRole.MANAGER, first_name="Otto"),
]


def users_by_id() -> dict[str, UserProfile]:
    return {u.id: u for u in USERS}


# =============================================================================
# CORE FIXTURES (in-memory store)
# =============================================================================

@pytest.fixture
def clock() -> FixedClock:
    """Clock pinned to T0; tests advance it explicitly."""
    return FixedClock(T0)


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def identity() -> MockIdentityService:
    return MockIdentityService(USERS)


@pytest.fixture
def store() -> MemorySessionStore:
    return MemorySessionStore()


@pytest.fixture
def registry() -> ObserverRegistry:
    return ObserverRegistry()


@pytest.fixture
def service(store, identity, clock, settings, registry) -> OrderSessionService:
    return OrderSessionService(store, identity, clock=clock, settings=settings, registry=registry)


@pytest.fixture
def manager() -> UserProfile:
    return users_by_id()["mgr"]


@pytest.fixture
async def session(service, manager):
    """Session open from T0 to T0+5min with every acme member pending."""
    return await service.create_session(
        manager,
        restaurant_name="Thai Palace",
        restaurant_options=["Thai Palace", "Sushi Go"],
        start_time=T0,
        end_time=T0 + timedelta(minutes=5),
    )


# =============================================================================
# DATABASE FIXTURES (aiosqlite)
# =============================================================================

@pytest.fixture
async def db_engine() -> AsyncIterator[AsyncEngine]:
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def db_session_maker(db_engine) -> async_sessionmaker:
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(db_session_maker) -> AsyncIterator[AsyncSession]:
    """Create a test database session."""
    async with db_session_maker() as session:
        yield session


@pytest.fixture
async def seeded_db(db_session_maker) -> None:
    """Companies and users mirroring ``USERS``."""
    async with db_session_maker() as db:
        db.add(Company(id=COMPANY_ID, name="Acme"))
        db.add(Company(id=OTHER_COMPANY_ID, name="Globex"))
        for u in USERS:
            db.add(User(
                id=u.id, company_id=u.company_id, role=u.role,
                first_name=u.first_name, last_name=u.last_name,
                username=u.username, email=u.email,
            ))
        await db.commit()


# =============================================================================
# API FIXTURES
# =============================================================================

@pytest.fixture
async def client(db_session_maker, seeded_db, clock) -> AsyncIterator[AsyncClient]:
    """Create a test client with database, clock and ack store overrides."""
    async def override_get_db():
        async with db_session_maker() as session:
            yield session

    ack_store = MockAckStore()
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_ack_store] = lambda: ack_store
    reset_observer_registry()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()
    reset_observer_registry()


def as_user(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}
