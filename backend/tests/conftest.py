import os
from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert

# Set test env vars before importing app modules
os.environ["STORAGE_BACKEND"] = "embedded"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LIMITER_STORAGE_URI"] = "memory://"

from agent_analytics.core.security import new_event_id  # noqa: E402
from agent_analytics.core.timeutil import now_ms, utc_date  # noqa: E402
from agent_analytics.db.adapter import StorageAdapter  # noqa: E402
from agent_analytics.db.embedded import EmbeddedAdapter  # noqa: E402
from agent_analytics.db.network import NetworkAdapter  # noqa: E402
from agent_analytics.models.event import Event  # noqa: E402
from agent_analytics.schemas.project import ProjectCreate, ProjectRecord  # noqa: E402
from agent_analytics.services.auth_cache import AuthCache  # noqa: E402
from agent_analytics.services.project_service import ProjectService  # noqa: E402

READ_KEY = "aak_static_read_key"
DAY_MS = 86_400_000


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_event(
    project: str = "p1",
    event: str = "page_view",
    *,
    user_id: str | None = None,
    session_id: str | None = None,
    properties: dict[str, Any] | None = None,
    timestamp: int | None = None,
    days_back: int = 0,
) -> dict[str, Any]:
    """Build an events-table row, dated ``days_back`` days before now."""
    ts = timestamp if timestamp is not None else now_ms() - days_back * DAY_MS
    return {
        "id": new_event_id(ts),
        "project_id": project,
        "event": event,
        "properties": properties,
        "user_id": user_id,
        "session_id": session_id,
        "timestamp": ts,
        "date": utc_date(ts),
    }


async def insert_events(db: StorageAdapter, rows: list[dict[str, Any]]) -> None:
    await db.run(insert(Event), rows)


def _build_adapter(kind: str, tmp_path: Path) -> StorageAdapter:
    if kind == "network":
        # A file, so the engine pools real connections as it would against a server
        return NetworkAdapter(f"sqlite+aiosqlite:///{tmp_path / 'analytics.db'}")
    return EmbeddedAdapter("sqlite://")


@pytest.fixture(autouse=True)
def disable_rate_limiting():
    from agent_analytics.core.limiter import limiter

    # Disable request throttling in tests; limits are tested explicitly where needed
    limiter.enabled = False
    yield
    limiter.enabled = True


@pytest.fixture(params=["embedded", "network"])
async def db(request, tmp_path) -> AsyncGenerator[StorageAdapter, None]:
    """A fresh store with the schema created, for each adapter."""
    adapter = _build_adapter(request.param, tmp_path)
    await adapter.create_schema()
    yield adapter
    await adapter.close()


@pytest.fixture
async def bare_db() -> AsyncGenerator[StorageAdapter, None]:
    """An in-memory store with no tables at all."""
    adapter = EmbeddedAdapter("sqlite://")
    yield adapter
    await adapter.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def auth_cache(db: StorageAdapter, clock: FakeClock) -> AuthCache:
    """Cache with a static read key and no static project tokens (open ingestion)."""
    return AuthCache(db, ttl_seconds=60, api_keys=READ_KEY, clock=clock)


@pytest.fixture
async def project(db: StorageAdapter, auth_cache: AuthCache) -> ProjectRecord:
    service = ProjectService(db, auth_cache)
    return await service.create(ProjectCreate(name="my-site", email="owner@acme.io"))


@pytest.fixture
async def other_project(db: StorageAdapter, auth_cache: AuthCache) -> ProjectRecord:
    service = ProjectService(db, auth_cache)
    return await service.create(ProjectCreate(name="other-site", email="someone@globex.io"))


@pytest.fixture
async def client(db: StorageAdapter, auth_cache: AuthCache) -> AsyncGenerator[AsyncClient, None]:
    from agent_analytics.api.deps import get_auth_cache, get_db
    from agent_analytics.main import app

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_auth_cache] = lambda: auth_cache

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def read_headers() -> dict:
    return {"X-API-Key": READ_KEY}


@pytest.fixture
def event_row():
    """Factory for raw events-table rows (see ``make_event``)."""
    return make_event


@pytest.fixture
def seed_events(db: StorageAdapter):
    """Insert raw event rows directly, bypassing ingestion."""

    async def _seed(rows: list[dict[str, Any]]) -> None:
        await insert_events(db, rows)

    return _seed
