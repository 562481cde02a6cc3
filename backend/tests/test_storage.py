"""Storage adapters: both implementations must behave the same."""

import asyncio
from datetime import date, datetime, timezone

import pytest
from sqlalchemy import func, insert, select

from agent_analytics.core.config import Settings
from agent_analytics.db.adapter import MissingTableError
from agent_analytics.db.dialect import SqlDialect
from agent_analytics.db.embedded import EmbeddedAdapter, is_memory_url
from agent_analytics.db.factory import create_adapter
from agent_analytics.db.network import NetworkAdapter
from agent_analytics.models.event import Event
from agent_analytics.models.usage import Usage
from agent_analytics.services.usage_service import UsageService


@pytest.mark.asyncio
async def test_run_and_fetch(db, event_row):
    rows = [event_row(user_id="u1"), event_row(user_id="u2")]
    inserted = await db.run(insert(Event), rows)
    assert inserted == 2

    fetched = await db.fetch_all(select(Event.user_id).order_by(Event.user_id))
    assert fetched == [{"user_id": "u1"}, {"user_id": "u2"}]

    one = await db.fetch_one(select(func.count().label("total")).select_from(Event))
    assert one == {"total": 2}


@pytest.mark.asyncio
async def test_fetch_one_returns_none_when_empty(db):
    assert await db.fetch_one(select(Event.id)) is None


@pytest.mark.asyncio
async def test_properties_round_trip_as_structures(db, event_row):
    await db.run(insert(Event).values(event_row(properties={"path": "/a", "n": 2})))
    await db.run(insert(Event).values(event_row(properties=None)))

    rows = await db.fetch_all(select(Event.properties))
    assert {"path": "/a", "n": 2} in [r["properties"] for r in rows]
    null_rows = await db.fetch_all(select(Event.id).where(Event.properties.is_(None)))
    assert len(null_rows) == 1


@pytest.mark.asyncio
async def test_batch_is_one_transaction(db, event_row):
    """A failing statement rolls back the statements before it."""
    row = event_row()
    with pytest.raises(Exception):
        await db.batch(
            [
                insert(Usage).values(project_id="p1", date="2024-01-01", event_count=1, read_count=0),
                insert(Event).values(row),
                insert(Event).values(row),  # duplicate primary key
            ]
        )

    assert await db.fetch_all(select(Usage.project_id)) == []
    assert await db.fetch_all(select(Event.id)) == []


@pytest.mark.asyncio
async def test_missing_table_is_translated(bare_db):
    with pytest.raises(MissingTableError):
        await bare_db.fetch_all(select(Event.id))


@pytest.mark.asyncio
async def test_create_schema_is_idempotent(db):
    await db.create_schema()
    assert await db.fetch_all(select(Event.id)) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("granularity", ["hour", "day", "week", "month"])
async def test_time_bucket_labels(db, event_row, granularity):
    # Wednesday 2024-01-10 14:25:00 UTC
    ts = int(datetime(2024, 1, 10, 14, 25, tzinfo=timezone.utc).timestamp() * 1000)
    await db.run(insert(Event).values(event_row(timestamp=ts)))

    row = await db.fetch_one(select(db.dialect.time_bucket(granularity).label("bucket")))
    expected = {
        "hour": "2024-01-10 14:00",
        "day": "2024-01-10",
        "week": "2024-01-08",
        "month": "2024-01",
    }[granularity]
    assert row["bucket"] == expected


@pytest.mark.asyncio
async def test_week_bucket_keeps_monday(db, event_row):
    monday = date(2024, 1, 8)
    ts = int(datetime(2024, 1, 8, 9, 0, tzinfo=timezone.utc).timestamp() * 1000)
    await db.run(insert(Event).values(event_row(timestamp=ts)))
    row = await db.fetch_one(select(db.dialect.time_bucket("week").label("bucket")))
    assert row["bucket"] == monday.isoformat()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "build",
    [lambda: EmbeddedAdapter("sqlite://"), lambda: NetworkAdapter("sqlite+aiosqlite://")],
    ids=["embedded", "network"],
)
async def test_in_memory_store_serializes_concurrent_writes(build, event_row):
    """One shared in-memory connection must not interleave transactions."""
    adapter = build()
    await adapter.create_schema()
    try:
        usage = UsageService(adapter)
        await asyncio.gather(
            *(usage.increment("p1") for _ in range(20)),
            *(adapter.batch([insert(Event).values(event_row())]) for _ in range(5)),
        )
        assert (await usage.get_today("p1")).event_count == 20
        total = await adapter.fetch_one(select(func.count().label("total")).select_from(Event))
        assert total == {"total": 5}
    finally:
        await adapter.close()


class TestAdapterSelection:
    def test_embedded_by_default(self):
        adapter = create_adapter(Settings(_env_file=None, DATABASE_URL="sqlite://"))
        assert isinstance(adapter, EmbeddedAdapter)
        assert adapter.dialect.name == "sqlite"

    def test_network_backend(self):
        adapter = create_adapter(
            Settings(_env_file=None, STORAGE_BACKEND="network", DATABASE_URL="sqlite+aiosqlite://")
        )
        assert isinstance(adapter, NetworkAdapter)

    def test_embedded_requires_sqlite(self):
        with pytest.raises(ValueError):
            EmbeddedAdapter("postgresql://localhost/analytics")

    def test_memory_urls(self):
        assert is_memory_url("sqlite://")
        assert is_memory_url("sqlite+aiosqlite:///:memory:")
        assert not is_memory_url("sqlite:///./analytics.db")

    def test_unknown_dialect_rejected(self):
        with pytest.raises(ValueError):
            SqlDialect("mysql")

    def test_missing_table_messages(self):
        dialect = SqlDialect("postgresql")
        assert dialect.is_missing_table(Exception('relation "projects" does not exist'))
        assert dialect.is_missing_table(Exception("no such table: projects"))
        assert not dialect.is_missing_table(Exception("duplicate key value"))
