import pytest
from httpx import AsyncClient

from agent_analytics.services.usage_service import UsageService


@pytest.fixture
async def tracked(client: AsyncClient) -> int:
    """Ingest a handful of events through the API in open mode."""
    events = [
        {"project": "p1", "event": "page_view", "user_id": "u1", "session_id": "s1",
         "properties": {"path": "/"}},
        {"project": "p1", "event": "page_view", "user_id": "u2", "session_id": "s2",
         "properties": {"path": "/pricing"}},
        {"project": "p1", "event": "signup", "user_id": "u2", "session_id": "s2",
         "properties": {"method": "github"}},
        {"project": "p1", "event": "page_view", "user_id": "u3"},
        {"project": "p2", "event": "page_view", "user_id": "u9"},
    ]
    response = await client.post("/track/batch", json={"events": events})
    assert response.status_code == 200
    return 4


@pytest.mark.asyncio
async def test_reads_require_key(client: AsyncClient):
    response = await client.get("/stats", params={"project": "p1"})
    assert response.status_code == 401
    assert "API key required" in response.json()["error"]


@pytest.mark.asyncio
async def test_reads_reject_unknown_key(client: AsyncClient):
    response = await client.get(
        "/stats", params={"project": "p1"}, headers={"X-API-Key": "aak_unknown"}
    )
    assert response.status_code == 401
    assert "invalid API key" in response.json()["error"]


@pytest.mark.asyncio
async def test_key_accepted_as_query_param(client: AsyncClient, read_headers, tracked):
    response = await client.get(
        "/events", params={"project": "p1", "key": read_headers["X-API-Key"]}
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_reads_require_project(client: AsyncClient, read_headers):
    response = await client.get("/stats", headers=read_headers)
    assert response.status_code == 400
    assert response.json() == {"error": "project required"}


@pytest.mark.asyncio
async def test_stats(client: AsyncClient, read_headers, tracked):
    response = await client.get("/stats", params={"project": "p1", "days": 7}, headers=read_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["project"] == "p1"
    assert data["totals"] == {"unique_users": 3, "total_events": tracked}
    assert data["events"][0] == {"event": "page_view", "count": 3, "unique_users": 3}
    assert data["sessions"]["total_sessions"] == 2
    assert data["sessions"]["bounce_rate"] == 0.5
    assert len(data["timeSeries"]) == 1


@pytest.mark.asyncio
async def test_stats_totals_match_events(client: AsyncClient, read_headers, tracked):
    stats = await client.get("/stats", params={"project": "p1", "days": 7}, headers=read_headers)
    events = await client.get(
        "/events", params={"project": "p1", "days": 7, "limit": 1000}, headers=read_headers
    )
    assert stats.json()["totals"]["total_events"] == len(events.json()["events"])


@pytest.mark.asyncio
async def test_stats_group_by(client: AsyncClient, read_headers, tracked):
    response = await client.get(
        "/stats", params={"project": "p1", "groupBy": "month"}, headers=read_headers
    )
    assert response.status_code == 200
    assert response.json()["granularity"] == "month"
    assert len(response.json()["timeSeries"][0]["bucket"]) == 7


@pytest.mark.asyncio
async def test_stats_rejects_bad_since(client: AsyncClient, read_headers):
    response = await client.get(
        "/stats", params={"project": "p1", "since": "tuesday"}, headers=read_headers
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_events(client: AsyncClient, read_headers, tracked):
    response = await client.get(
        "/events", params={"project": "p1", "event": "signup"}, headers=read_headers
    )
    assert response.status_code == 200
    data = response.json()
    assert data["project"] == "p1"
    assert len(data["events"]) == 1
    assert data["events"][0]["properties"] == {"method": "github"}


@pytest.mark.asyncio
async def test_sessions(client: AsyncClient, read_headers, tracked):
    response = await client.get("/sessions", params={"project": "p1"}, headers=read_headers)
    assert response.status_code == 200
    sessions = {s["session_id"]: s for s in response.json()["sessions"]}
    assert sessions["s2"]["event_count"] == 2
    assert sessions["s2"]["is_bounce"] == 0
    assert sessions["s1"]["is_bounce"] == 1


@pytest.mark.asyncio
async def test_properties(client: AsyncClient, read_headers, tracked):
    response = await client.get("/properties", params={"project": "p1"}, headers=read_headers)
    assert response.status_code == 200
    assert response.json()["property_keys"] == ["method", "path"]


@pytest.mark.asyncio
async def test_query(client: AsyncClient, read_headers, tracked):
    response = await client.post(
        "/query",
        headers=read_headers,
        json={
            "project": "p1",
            "metrics": ["event_count", "unique_users"],
            "group_by": ["event"],
            "filters": [{"field": "user_id", "op": "neq", "value": "u1"}],
        },
    )
    assert response.status_code == 200
    data = response.json()
    assert data["rows"] == [
        {"event": "page_view", "event_count": 2, "unique_users": 2},
        {"event": "signup", "event_count": 1, "unique_users": 1},
    ]
    assert data["count"] == 2


@pytest.mark.asyncio
async def test_query_bogus_metric(client: AsyncClient, read_headers):
    response = await client.post(
        "/query", headers=read_headers, json={"project": "p1", "metrics": ["bogus"]}
    )
    assert response.status_code == 400
    body = response.json()
    assert "event_count" in body["error"]
    assert "unique_users" in body["error"]
    assert body["allowed"] == [
        "event_count", "unique_users", "session_count", "bounce_rate", "avg_duration"
    ]


@pytest.mark.asyncio
async def test_query_incomplete_filter(client: AsyncClient, read_headers):
    response = await client.post(
        "/query",
        headers=read_headers,
        json={"project": "p1", "filters": [{"field": "event", "op": "eq"}]},
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_query_limit_clamped(client: AsyncClient, read_headers, seed_events, event_row):
    await seed_events([event_row(user_id=f"user-{i:04d}") for i in range(1005)])
    response = await client.post(
        "/query",
        headers=read_headers,
        json={"project": "p1", "group_by": ["user_id"], "limit": 5000},
    )
    assert response.status_code == 200
    data = response.json()
    assert len(data["rows"]) == 1000
    assert data["count"] == 1000


class TestProjectKeys:
    """A project API key reads its own project only, by id or name."""

    @pytest.fixture
    async def own_events(self, client: AsyncClient, project) -> None:
        response = await client.post(
            "/track/batch",
            json={
                "token": project.project_token,
                "events": [{"project": "my-site", "event": "page_view"} for _ in range(3)],
            },
        )
        assert response.status_code == 200

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reference", ["name", "id"])
    async def test_reads_own_project(self, client: AsyncClient, project, own_events, reference):
        response = await client.get(
            "/stats",
            params={"project": getattr(project, reference)},
            headers={"X-API-Key": project.api_key},
        )
        assert response.status_code == 200
        assert response.json()["totals"]["total_events"] == 3

    @pytest.mark.asyncio
    async def test_cross_tenant_read_forbidden(self, client: AsyncClient, project, other_project):
        response = await client.get(
            "/events",
            params={"project": other_project.name},
            headers={"X-API-Key": project.api_key},
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_cross_tenant_query_forbidden(self, client: AsyncClient, project, other_project):
        response = await client.post(
            "/query",
            headers={"X-API-Key": project.api_key},
            json={"project": other_project.id},
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_reads_are_counted(self, client: AsyncClient, db, project, own_events):
        for _ in range(2):
            await client.get(
                "/events", params={"project": "my-site"}, headers={"X-API-Key": project.api_key}
            )
        usage = await UsageService(db).get_today(project.id)
        assert usage.read_count == 2
        assert usage.event_count == 3
