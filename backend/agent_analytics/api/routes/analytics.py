from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request

from agent_analytics.api.deps import (
    get_db,
    get_query_engine,
    record_read,
    require_read_key,
    resolve_scope,
)
from agent_analytics.core.config import settings
from agent_analytics.core.limiter import limiter
from agent_analytics.db.adapter import StorageAdapter
from agent_analytics.schemas.event import EventsResponse
from agent_analytics.schemas.query import QueryRequest, QueryResponse
from agent_analytics.services.auth_cache import AuthResult
from agent_analytics.services.query_engine import QueryEngine

router = APIRouter()

MAX_DAYS = 3650


@router.get("/stats")
@limiter.limit(f"{settings.RATE_LIMIT_PER_MINUTE}/minute")
async def get_stats(
    request: Request,
    background_tasks: BackgroundTasks,
    project: str | None = Query(None),
    days: int = Query(7, ge=1, le=MAX_DAYS),
    since: str | None = Query(None),
    group_by: str = Query("day", alias="groupBy"),
    auth: AuthResult = Depends(require_read_key),
    db: StorageAdapter = Depends(get_db),
    engine: QueryEngine = Depends(get_query_engine),
):
    """Overview for a project: totals, time series, top events and sessions."""
    scope = resolve_scope(auth, project)
    record_read(background_tasks, db, auth)
    stats = await engine.stats(scope, days=days, since=since, granularity=group_by)
    return {"project": project, **stats}


@router.get("/events", response_model=EventsResponse)
@limiter.limit(f"{settings.RATE_LIMIT_PER_MINUTE}/minute")
async def list_events(
    request: Request,
    background_tasks: BackgroundTasks,
    project: str | None = Query(None),
    event: str | None = Query(None),
    session_id: str | None = Query(None),
    days: int = Query(7, ge=1, le=MAX_DAYS),
    since: str | None = Query(None),
    limit: int = Query(100),
    auth: AuthResult = Depends(require_read_key),
    db: StorageAdapter = Depends(get_db),
    engine: QueryEngine = Depends(get_query_engine),
):
    """Raw events, newest first. ``limit`` is capped at 1000."""
    scope = resolve_scope(auth, project)
    record_read(background_tasks, db, auth)
    events = await engine.events(
        scope, event=event, session_id=session_id, days=days, since=since, limit=limit
    )
    return {"project": project, "events": events}


@router.get("/sessions")
@limiter.limit(f"{settings.RATE_LIMIT_PER_MINUTE}/minute")
async def list_sessions(
    request: Request,
    background_tasks: BackgroundTasks,
    project: str | None = Query(None),
    days: int = Query(7, ge=1, le=MAX_DAYS),
    since: str | None = Query(None),
    limit: int = Query(100),
    auth: AuthResult = Depends(require_read_key),
    db: StorageAdapter = Depends(get_db),
    engine: QueryEngine = Depends(get_query_engine),
):
    scope = resolve_scope(auth, project)
    record_read(background_tasks, db, auth)
    sessions = await engine.sessions(scope, days=days, since=since, limit=limit)
    return {"project": project, "sessions": sessions}


@router.get("/properties")
@limiter.limit(f"{settings.RATE_LIMIT_PER_MINUTE}/minute")
async def list_properties(
    request: Request,
    background_tasks: BackgroundTasks,
    project: str | None = Query(None),
    days: int = Query(30, ge=1, le=MAX_DAYS),
    since: str | None = Query(None),
    auth: AuthResult = Depends(require_read_key),
    db: StorageAdapter = Depends(get_db),
    engine: QueryEngine = Depends(get_query_engine),
):
    """Event names seen in the window and the property keys they carry."""
    scope = resolve_scope(auth, project)
    record_read(background_tasks, db, auth)
    properties = await engine.properties(scope, days=days, since=since)
    return {"project": project, **properties}


@router.post("/query", response_model=QueryResponse)
@limiter.limit(f"{settings.RATE_LIMIT_PER_MINUTE}/minute")
async def run_query(
    request: Request,
    data: QueryRequest,
    background_tasks: BackgroundTasks,
    auth: AuthResult = Depends(require_read_key),
    db: StorageAdapter = Depends(get_db),
    engine: QueryEngine = Depends(get_query_engine),
):
    """Aggregate query over allowlisted metrics, groupings and filters.

    At most ``MAX_LIMIT`` rows come back and ``count`` is the number of rows
    returned, not the number of matching groups.
    """
    scope = resolve_scope(auth, data.project)
    record_read(background_tasks, db, auth)
    return await engine.query(scope, data)
