import uuid

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import crm.models  # noqa: F401
from crm.database import Base, build_engine, get_db
from crm.main import app
from crm.models.user import User
from crm.services.auth_service import create_access_token, hash_password

TEST_PASSWORD = "CraneTest123!"
_PASSWORD_HASH = hash_password(TEST_PASSWORD)


@pytest.fixture
async def engine():
    # In-memory SQLite shared through a StaticPool
    engine = build_engine("sqlite+aiosqlite://")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def users(session_factory):
    """One active user per role, keyed by role."""
    created = {}
    async with session_factory() as session:
        for role in ("ADMIN", "EDITOR", "VIEWER"):
            user = User(
                id=uuid.uuid4(),
                email=f"{role.lower()}@example.com",
                password_hash=_PASSWORD_HASH,
                name=f"{role.title()} User",
                role=role,
            )
            session.add(user)
            created[role] = user
        await session.commit()
    return created


@pytest.fixture
async def client(session_factory, users):
    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


def _headers(user: User) -> dict:
    token = create_access_token(user_id=str(user.id), role=user.role, email=user.email)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(users):
    return _headers(users["ADMIN"])


@pytest.fixture
def editor_headers(users):
    return _headers(users["EDITOR"])


@pytest.fixture
def viewer_headers(users):
    return _headers(users["VIEWER"])
