"""Shared test fixtures for the allowance backend tests.

Provides:
- A throwaway SQLite database per test (aiosqlite), its session maker and store
- Badge/user factories writing straight to the store
- A BadgeEngine wired to the test database
- Async FastAPI test client with auth and engine overrides
"""
import os

# Settings are read at import time; keep them away from real services
os.environ["SECRET_KEY"] = "test-secret-key-for-jwt"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test-allowance.db"

import pytest
from unittest.mock import AsyncMock, MagicMock

from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from allowance.models import Base
from allowance.services.engine import BadgeEngine
from allowance.services.store import ActivityStore


@pytest.fixture(autouse=True)
def override_settings(monkeypatch):
    """Override settings for all tests to avoid external dependencies."""
    monkeypatch.setenv("SECRET_KEY", "test-secret-key-for-jwt")
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///./test-allowance.db")


# --- Database ---

@pytest.fixture
async def session_maker(tmp_path):
    """Session factory bound to a fresh SQLite file with all tables created."""
    db_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'badges.db'}")
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    await db_engine.dispose()


@pytest.fixture
def store(session_maker):
    return ActivityStore(session_maker)


@pytest.fixture
def badge_engine(store):
    return BadgeEngine(store)


@pytest.fixture
async def user_id(store):
    """A persisted user; returns its id."""
    row = await store.insert_row("users", {"name": "Minji", "email": "minji@example.com"})
    return row["id"]


@pytest.fixture
def make_badge(store):
    """Factory inserting a badge definition and returning its row."""
    counter = {"n": 0}

    async def _make_badge(category: str = "tasks", required_count: int = 5, **overrides):
        counter["n"] += 1
        fields = {
            "id": f"{category}_{counter['n']}",
            "name": f"{category.title()} Badge {counter['n']}",
            "description": f"Reach {required_count}",
            "icon": "trophy",
            "category": category,
            "required_count": required_count,
        }
        fields.update(overrides)
        return await store.insert_row("badges", fields)

    return _make_badge


# --- HTTP ---

def make_user(**overrides):
    """Create a mock User object with sensible defaults."""
    user = MagicMock()
    defaults = {
        "id": "user-1",
        "name": "Test User",
        "email": "test@example.com",
        "is_active": True,
    }
    defaults.update(overrides)
    for key, value in defaults.items():
        setattr(user, key, value)
    return user


@pytest.fixture
def mock_engine():
    """BadgeEngine stand-in with async methods."""
    engine = MagicMock(spec=BadgeEngine)
    engine.observe = AsyncMock()
    engine.snapshot = AsyncMock()
    engine.apply_progress = AsyncMock()
    engine.resync = AsyncMock()
    engine.reset_user_progress = AsyncMock()
    engine.store = MagicMock()
    engine.store.query_rows = AsyncMock(return_value=[])
    return engine


@pytest.fixture
async def client(mock_engine):
    """Async HTTP test client for FastAPI app.

    Uses httpx AsyncClient with ASGI transport - no real server needed.
    Database dependency is overridden with a mock and the badge engine is
    replaced by ``mock_engine``.
    """
    from allowance.main import app
    from allowance.core.database import get_db

    mock_session = AsyncMock()
    mock_session.execute = AsyncMock()
    mock_session.commit = AsyncMock()
    mock_session.flush = AsyncMock()
    mock_session.close = AsyncMock()
    mock_session.add = MagicMock()

    async def override_get_db():
        yield mock_session

    app.dependency_overrides[get_db] = override_get_db
    app.state.badge_engine = mock_engine

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        ac._mock_db = mock_session  # expose for test access
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def login():
    """Authenticate every request in the test as the given user."""
    from allowance.main import app
    from allowance.api.auth import get_current_user

    def _login(user=None):
        user = user or make_user()
        app.dependency_overrides[get_current_user] = lambda: user
        return user

    return _login
