# tests/conftest.py - Shared test fixtures
import os
import uuid

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"

from models import Base, User, GlobalRole, ProjectRole
from auth import AuthService, CurrentUser
from database import get_db_session, engine, async_session_maker
from services.events import set_event_sink
from services.projects import MemberSpec, create_project
from main import app


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    # Notifications and WebSocket checks open their own sessions on the
    # module engine, so tests share it instead of building a second one.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    async with async_session_maker() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_engine):
    """HTTP test client with overridden DB dependency"""

    async def override_get_db():
        async with async_session_maker() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def captured_events():
    """Record real-time events instead of pushing them to WebSocket clients"""
    events = []

    async def sink(channel, event, payload):
        events.append((channel, event, payload))

    set_event_sink(sink)
    yield events
    set_event_sink(None)


async def _make_user(db: AsyncSession, name: str, role: GlobalRole) -> User:
    user = User(
        id=str(uuid.uuid4()),
        email=f"{name.lower().replace(' ', '.')}@teamboard.dev",
        name=name,
        password_hash=AuthService.hash_password("Password123"),
        global_role=role,
        is_active=True,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def admin_user(db_session):
    return await _make_user(db_session, "Ada Admin", GlobalRole.ADMIN)


@pytest_asyncio.fixture
async def leader_user(db_session):
    return await _make_user(db_session, "Lee Leader", GlobalRole.LEADER)


@pytest_asyncio.fixture
async def second_leader(db_session):
    return await _make_user(db_session, "Lou Leader", GlobalRole.LEADER)


@pytest_asyncio.fixture
async def member_user(db_session):
    return await _make_user(db_session, "Mia Member", GlobalRole.MEMBER)


@pytest_asyncio.fixture
async def designer_user(db_session):
    return await _make_user(db_session, "Dan Designer", GlobalRole.MEMBER)


@pytest_asyncio.fixture
async def observer_user(db_session):
    return await _make_user(db_session, "Olu Observer", GlobalRole.MEMBER)


@pytest_asyncio.fixture
async def outsider_user(db_session):
    return await _make_user(db_session, "Otto Outsider", GlobalRole.MEMBER)


@pytest_asyncio.fixture
async def project(db_session, leader_user, member_user, designer_user, observer_user):
    """Project led by leader_user with a developer, a designer and an observer"""
    return await create_project(
        db_session,
        "Apollo",
        as_actor(leader_user),
        description="Test project",
        members=[
            MemberSpec(user_id=member_user.id, project_role=ProjectRole.DEVELOPER),
            MemberSpec(user_id=designer_user.id, project_role=ProjectRole.DESIGNER),
            MemberSpec(user_id=observer_user.id, project_role=ProjectRole.OBSERVER),
        ],
    )


@pytest_asyncio.fixture
async def todo_board(client, project, leader_user):
    resp = await client.get(f"/api/v1/projects/{project.id}", headers=get_auth_headers(leader_user))
    return resp.json()["boards"][0]["id"]


def as_actor(user: User) -> CurrentUser:
    """The authenticated-user view services expect"""
    return CurrentUser.from_user(user)


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token_data = {
        "sub": user.id,
        "email": user.email,
        "role": user.global_role.value,
    }
    token = AuthService.create_access_token(token_data)
    return {"Authorization": f"Bearer {token}"}


async def create_card(client: AsyncClient, board_id: str, user: User, title: str = "Task", **extra) -> dict:
    resp = await client.post(
        "/api/v1/cards",
        json={"board_id": board_id, "title": title, **extra},
        headers=get_auth_headers(user),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()
