import logging
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import IntegrityError

from agent_analytics.core.exceptions import ConflictError, ForbiddenError, NotFoundError
from agent_analytics.core.security import (
    API_KEY_PREFIX,
    PROJECT_TOKEN_PREFIX,
    generate_project_id,
    generate_token,
)
from agent_analytics.db.adapter import StorageAdapter
from agent_analytics.models.event import AnalyticsSession, Event
from agent_analytics.models.project import Project
from agent_analytics.models.usage import Usage
from agent_analytics.schemas.project import ProjectCreate, ProjectRecord
from agent_analytics.services.auth_cache import AuthCache

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_LIMIT = 3

FREE_TIER = {
    "tier": "free",
    "rate_limit_events": 10000,
    "rate_limit_reads": 100,
    "data_retention_days": 30,
}


class ProjectService:
    """Service for project CRUD operations."""

    def __init__(
        self,
        db: StorageAdapter,
        auth_cache: AuthCache | None = None,
        *,
        project_limit: int = DEFAULT_PROJECT_LIMIT,
        token_factory: Callable[[str], str] = generate_token,
    ):
        self.db = db
        self.auth_cache = auth_cache
        self.project_limit = project_limit
        self._token_factory = token_factory

    def _invalidate(self) -> None:
        if self.auth_cache is not None:
            self.auth_cache.invalidate()

    async def create(self, data: ProjectCreate) -> ProjectRecord:
        """Create a free-tier project with a fresh token and API key.

        Both credentials are unique in storage; a collision surfaces as a
        ``ConflictError`` rather than silently sharing a credential.
        """
        owned = await self.db.fetch_one(
            select(func.count().label("total")).where(Project.owner_email == data.email)
        )
        if owned and owned["total"] >= self.project_limit:
            raise ForbiddenError(
                f"project limit reached ({self.project_limit} for free tier). Contact us for more."
            )

        now = datetime.now(timezone.utc)
        values = {
            "id": generate_project_id(),
            "name": data.name,
            "owner_email": data.email,
            "project_token": self._token_factory(PROJECT_TOKEN_PREFIX),
            "api_key": self._token_factory(API_KEY_PREFIX),
            "allowed_origins": data.allowed_origins or "*",
            **FREE_TIER,
            "created_at": now,
            "updated_at": now,
        }
        try:
            await self.db.run(insert(Project).values(**values))
        except IntegrityError as exc:
            logger.warning("Project credential collision for owner %s", data.email)
            raise ConflictError("project id, token or API key already in use") from exc

        self._invalidate()
        logger.info("Created project %s (%s)", values["id"], data.name)
        return ProjectRecord(**values)

    async def get(self, project_id: str) -> ProjectRecord:
        row = await self.db.fetch_one(select(*Project.__table__.c).where(Project.id == project_id))
        if row is None:
            raise NotFoundError("project not found")
        return ProjectRecord.model_validate(row)

    async def list_by_owner(self, email: str) -> list[ProjectRecord]:
        rows = await self.db.fetch_all(
            select(*Project.__table__.c)
            .where(Project.owner_email == email)
            .order_by(Project.created_at.desc())
        )
        return [ProjectRecord.model_validate(row) for row in rows]

    async def delete(self, project_id: str) -> None:
        """Delete a project with its usage, sessions and events in one transaction."""
        await self.get(project_id)
        await self.db.batch(
            [
                delete(Usage).where(Usage.project_id == project_id),
                delete(AnalyticsSession).where(AnalyticsSession.project_id == project_id),
                delete(Event).where(Event.project_id == project_id),
                delete(Project).where(Project.id == project_id),
            ]
        )
        self._invalidate()
        logger.info("Deleted project %s", project_id)
