"""
Centralized Test Configuration.
"""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession

from rideshare_backend.app.main import app
from rideshare_backend.app.db.session import Base, build_engine, get_session_factory
from rideshare_backend.app.core.redis_client import get_redis
from rideshare_backend.app.core.jwt import create_access_token
from rideshare_backend.app.domain.lobby import lobby_engine
from rideshare_backend.app.domain.lobby.lobby_engine import LobbyEngine
from rideshare_backend.app.domain.lobby.types import Identity, Place


# File-backed SQLite per test: concurrent sessions need their own
# connections (an in-memory StaticPool would share one).
@pytest.fixture
async def db_engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'rides.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest.fixture
def lobby(session_factory):
    return LobbyEngine(session_factory, retry_backoff_seconds=0)


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self._closed = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def set(self, key, value, ex=None, nx=False):
        if self._closed:
            return False
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def aclose(self):
        self._closed = True
        self.store = {}


@pytest.fixture
def redis():
    return MockRedis()


@pytest.fixture
async def client(session_factory, redis):
    """Async client for testing, wired to the per-test database."""
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_redis] = lambda: redis

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides = {}


# Identities as the identity provider would vouch for them
@pytest.fixture
def alice():
    return Identity(user_id="user-alice", display_name="Alice")


@pytest.fixture
def bob():
    return Identity(user_id="user-bob", display_name="Bob")


@pytest.fixture
def cara():
    return Identity(user_id="user-cara", display_name="Cara")


@pytest.fixture
def dave():
    return Identity(user_id="user-dave", display_name="Dave")


@pytest.fixture
def erin():
    return Identity(user_id="user-erin", display_name="Erin")


def auth_headers(identity: Identity) -> dict:
    token = create_access_token(data={"sub": identity.user_id, "name": identity.display_name})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers_for():
    """Bearer headers for an identity."""
    return auth_headers


UNION_STATION = Place(name="Union Station", latitude=38.8977, longitude=-77.0063)
CORNER_BAKERY = Place(name="Corner Bakery", latitude=38.9072, longitude=-77.0369)


@pytest.fixture
def make_ride(lobby, alice):
    """Create a ride through the engine (Alice is the default creator)."""
    async def _make(creator: Identity = None, max_passengers: int = 3, note: str = None):
        return await lobby.create_ride(
            creator=creator or alice,
            origin=UNION_STATION,
            destination=CORNER_BAKERY,
            max_passengers=max_passengers,
            note=note,
        )
    return _make


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock(mocker):
    """Controls the time the lobby engine stamps on rides."""
    frozen = FrozenClock(datetime(2026, 3, 2, 8, 30, tzinfo=timezone.utc))
    mocker.patch.object(lobby_engine, "utcnow", side_effect=lambda: frozen.now)
    return frozen
