from html import escape
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, status

from agent_analytics.api.deps import get_db, get_project_service, require_read_key
from agent_analytics.core.config import Settings, get_settings
from agent_analytics.core.exceptions import ForbiddenError, ValidationError
from agent_analytics.db.adapter import StorageAdapter
from agent_analytics.schemas.common import DeletedResponse
from agent_analytics.schemas.project import (
    ProjectCreate,
    ProjectCreateResponse,
    ProjectDetail,
    ProjectListResponse,
    ProjectRecord,
    UsageHistoryResponse,
)
from agent_analytics.services.auth_cache import AuthResult
from agent_analytics.services.project_service import ProjectService
from agent_analytics.services.usage_service import UsageService

router = APIRouter()


def _ensure_owner(auth: AuthResult, project: ProjectRecord) -> None:
    """A project API key only manages projects of the same owner."""
    if auth.project is not None and auth.project.owner_email != project.owner_email:
        raise ForbiddenError("forbidden")


def onboarding(project: ProjectRecord, base_url: str) -> dict[str, str]:
    """Copy-paste tracker tag and a first stats request for a new project."""
    base = base_url.rstrip("/")
    return {
        "snippet": (
            f'<script src="{base}/tracker.js" data-project="{escape(project.name)}" '
            f'data-token="{project.project_token}"></script>'
        ),
        "api_example": (
            f'curl "{base}/stats?project={quote(project.name)}&days=7" '
            f'-H "X-API-Key: {project.api_key}"'
        ),
    }


@router.post("", response_model=ProjectCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    data: ProjectCreate,
    service: ProjectService = Depends(get_project_service),
    settings: Settings = Depends(get_settings),
):
    """Create a project. The response is the only time the API key is shown."""
    project = await service.create(data)
    return ProjectCreateResponse(
        **project.model_dump(), **onboarding(project, settings.PUBLIC_BASE_URL)
    )


@router.get("", response_model=ProjectListResponse)
async def list_projects(
    email: str | None = Query(None),
    auth: AuthResult = Depends(require_read_key),
    service: ProjectService = Depends(get_project_service),
):
    """List projects for an owner. A project key is scoped to its own owner."""
    owner = email
    if auth.project is not None:
        if email and email != auth.project.owner_email:
            raise ForbiddenError("forbidden")
        owner = auth.project.owner_email
    if not owner:
        raise ValidationError("email parameter required")
    return {"projects": await service.list_by_owner(owner)}


@router.get("/{project_id}", response_model=ProjectDetail)
async def get_project(
    project_id: str,
    auth: AuthResult = Depends(require_read_key),
    service: ProjectService = Depends(get_project_service),
    db: StorageAdapter = Depends(get_db),
):
    """Get a project with today's usage counters."""
    project = await service.get(project_id)
    _ensure_owner(auth, project)
    usage = await UsageService(db).get_today(project.id)
    return ProjectDetail(**project.model_dump(), usage_today=usage)


@router.delete("/{project_id}", response_model=DeletedResponse)
async def delete_project(
    project_id: str,
    auth: AuthResult = Depends(require_read_key),
    service: ProjectService = Depends(get_project_service),
):
    """Delete a project together with its events, sessions and usage."""
    project = await service.get(project_id)
    _ensure_owner(auth, project)
    await service.delete(project.id)
    return {"ok": True, "deleted": project.id}


@router.get("/{project_id}/usage", response_model=UsageHistoryResponse)
async def get_project_usage(
    project_id: str,
    days: int = Query(30, ge=1, le=365),
    auth: AuthResult = Depends(require_read_key),
    service: ProjectService = Depends(get_project_service),
    db: StorageAdapter = Depends(get_db),
):
    """Daily event and read counters, newest first."""
    project = await service.get(project_id)
    _ensure_owner(auth, project)
    return {"project_id": project.id, "usage": await UsageService(db).history(project.id, days)}
