import os
import tempfile
from datetime import datetime, timedelta

# Settings and the default engine are built at import time
_TMP = tempfile.mkdtemp(prefix="yamifit-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP, 'default.db')}"
os.environ["LOG_TO_FILE"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["CLEANUP_SECRET"] = "test-cleanup-secret"
os.environ["RETRY_BASE_DELAY_MS"] = "10"
os.environ["ATTACHMENT_STORAGE_DIR"] = os.path.join(_TMP, "attachments")
os.environ["OPENAI_API_KEY"] = "sk-test"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from app.core.identity import IdentityGate, Principal
from app.database.base import Base
from app.enums import Plan, Role
from app.exceptions.errors import SessionExpired, Unauthenticated
from app.models import CoachProfile, User
from app.services.presence_bus import PresenceBus
from app.utils.file_utils import LocalBlobStore

START = datetime(2026, 3, 1, 9, 0, 0)


class FrozenClock:
    """Storage clock stand-in that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.current = start

    async def now(self, db) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


class FakeVerifier:
    """Treats the bearer token as the Clerk subject; a few tokens are special."""

    def verify(self, token: str) -> str:
        if token == "expired":
            raise SessionExpired()
        if token.startswith("bad"):
            raise Unauthenticated("Invalid authentication token")
        return token

    def lookup_email(self, subject: str):
        return f"{subject}@example.com"


class FakeAssistant:
    def __init__(self, answer: str = "Drink water and stretch.", error: Exception = None):
        self.answer = answer
        self.error = error
        self.calls = []

    async def reply(self, history, text, locale=None):
        self.calls.append({"history": list(history), "text": text, "locale": locale})
        if self.error is not None:
            raise self.error
        return self.answer


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def bus():
    return PresenceBus(queue_size=8)


@pytest.fixture
def store(tmp_path):
    return LocalBlobStore(str(tmp_path / "blobs"))


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest.fixture
async def engine(db_url):
    engine = create_async_engine(db_url, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(session_factory):
    counter = {"n": 0}

    async def _make_user(role: Role = Role.USER, plan: Plan = Plan.PRO, name: str = None) -> Principal:
        counter["n"] += 1
        name = name or f"{role.value}{counter['n']}"
        async with session_factory() as session:
            user = User(clerk_id=f"clerk_{name}", email=f"{name}@example.com", type=role.value, plan=plan.value)
            session.add(user)
            await session.commit()
            return Principal(id=user.id, role=role, plan=plan)

    return _make_user


@pytest.fixture
def make_coach(session_factory, make_user):
    async def _make_coach(max_clients: int = 10, is_available: bool = True, name: str = None) -> Principal:
        coach = await make_user(role=Role.COACH, plan=Plan.BASIC, name=name)
        async with session_factory() as session:
            session.add(CoachProfile(
                coach_id=coach.id,
                full_name=f"Coach {coach.id[-4:]}",
                is_available=is_available,
                max_clients=max_clients,
                active_clients=0,
            ))
            await session.commit()
        return coach

    return _make_coach


@pytest.fixture
def assistant():
    return FakeAssistant()


class Api:
    """TestClient wired to a per-test database, fake identity provider and frozen clock."""

    def __init__(self, client, sync_engine, clock, bus, assistant):
        self.client = client
        self.sync_engine = sync_engine
        self.clock = clock
        self.bus = bus
        self.assistant = assistant

    def user(self, name: str, role: Role = Role.USER, plan: Plan = Plan.PRO, max_clients: int = 10) -> dict:
        with Session(self.sync_engine) as session:
            user = User(clerk_id=name, email=f"{name}@example.com", type=role.value, plan=plan.value)
            session.add(user)
            session.flush()
            if role == Role.COACH:
                session.add(CoachProfile(coach_id=user.id, is_available=True, max_clients=max_clients, active_clients=0))
            session.commit()
            return {"id": user.id, "headers": {"Authorization": f"Bearer {name}"}}


@pytest.fixture
def api(tmp_path, clock, store):
    from fastapi.testclient import TestClient

    from app.core.clock import get_clock
    from app.database.connection import get_db
    from app.main import app
    from app.services.chatbot_assistant import get_chatbot_assistant
    from app.services.presence_bus import get_presence_bus
    from app.utils.file_utils import get_blob_store

    path = tmp_path / "api.db"
    sync_engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(sync_engine)

    async_engine = create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)
    factory = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    bus = PresenceBus(queue_size=8)
    fake_assistant = FakeAssistant()

    async def override_get_db():
        async with factory() as session:
            yield session

    previous_gate = app.state.identity_gate
    app.state.identity_gate = IdentityGate(FakeVerifier(), factory)
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_presence_bus] = lambda: bus
    app.dependency_overrides[get_blob_store] = lambda: store
    app.dependency_overrides[get_chatbot_assistant] = lambda: fake_assistant

    yield Api(TestClient(app), sync_engine, clock, bus, fake_assistant)

    app.dependency_overrides.clear()
    app.state.identity_gate = previous_gate
    sync_engine.dispose()
