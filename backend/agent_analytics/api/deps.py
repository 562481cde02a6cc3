from functools import partial

from fastapi import BackgroundTasks, Depends, Header, Query, Request

from agent_analytics.core.config import Settings, get_settings
from agent_analytics.core.exceptions import ForbiddenError, UnauthorizedError, ValidationError
from agent_analytics.db.adapter import StorageAdapter
from agent_analytics.services.auth_cache import AuthCache, AuthResult
from agent_analytics.services.ingestion import IngestionPipeline, deferred
from agent_analytics.services.project_service import ProjectService
from agent_analytics.services.query_engine import QueryEngine
from agent_analytics.services.usage_service import UsageService


def get_db(request: Request) -> StorageAdapter:
    """Storage adapter created by the application lifespan."""
    return request.app.state.db


def get_auth_cache(request: Request) -> AuthCache:
    return request.app.state.auth_cache


def get_pipeline(
    db: StorageAdapter = Depends(get_db),
    auth_cache: AuthCache = Depends(get_auth_cache),
    settings: Settings = Depends(get_settings),
) -> IngestionPipeline:
    return IngestionPipeline(db, auth_cache, max_batch_size=settings.MAX_BATCH_SIZE)


def get_query_engine(db: StorageAdapter = Depends(get_db)) -> QueryEngine:
    return QueryEngine(db)


def get_project_service(
    db: StorageAdapter = Depends(get_db),
    auth_cache: AuthCache = Depends(get_auth_cache),
    settings: Settings = Depends(get_settings),
) -> ProjectService:
    return ProjectService(db, auth_cache, project_limit=settings.FREE_TIER_PROJECT_LIMIT)


async def require_read_key(
    x_api_key: str | None = Header(None, alias="X-API-Key"),
    key: str | None = Query(None),
    auth_cache: AuthCache = Depends(get_auth_cache),
) -> AuthResult:
    """Dependency to authenticate read requests via ``X-API-Key`` or ``?key=``."""
    auth = await auth_cache.resolve_read_key(x_api_key or key)
    if not auth.valid:
        raise UnauthorizedError(f"unauthorized - {auth.error}")
    return auth


def resolve_scope(auth: AuthResult, project: str | None) -> str:
    """Map a client ``project`` reference to the stored tenant id.

    A project API key only reads its own project, named by id or name.
    Static keys read whatever project the client names.
    """
    if not project:
        raise ValidationError("project required")
    if auth.project is None:
        return project
    if not auth.project.matches(project):
        raise ForbiddenError("API key does not grant access to this project")
    return auth.project.id


def record_read(background_tasks: BackgroundTasks, db: StorageAdapter, auth: AuthResult) -> None:
    """Count a read against the key's project after the response is sent."""
    if auth.project is None:
        return
    background_tasks.add_task(
        deferred("Read usage increment", partial(UsageService(db).increment, auth.project.id, "read"))
    )
