"""Project credential cache.

Resolves a project token (ingestion) or API key (reads) to a project record
without scanning the projects table on every request. The snapshot is
reloaded when it is older than ``ttl_seconds``; ``invalidate()`` forces the
next lookup to reload. Concurrent callers that race on an expired snapshot
each reload it; a reload is idempotent so this only costs a query.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy import select

from agent_analytics.core.security import secret_equals, secret_in, split_csv
from agent_analytics.db.adapter import MissingTableError, StorageAdapter
from agent_analytics.models.project import Project
from agent_analytics.schemas.project import ProjectRecord

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60.0

TOKEN_PREFIX = "token:"
KEY_PREFIX = "key:"
ID_PREFIX = "id:"


@dataclass(frozen=True)
class AuthResult:
    """Outcome of a credential check.

    ``project`` is set when the credential belongs to a project record and is
    None for static-allowlist credentials and open dev-mode ingestion.
    """

    valid: bool
    project: ProjectRecord | None = None
    error: str | None = None


def _has_projects(entries: dict[str, ProjectRecord]) -> bool:
    return any(name.startswith(ID_PREFIX) for name in entries)


class AuthCache:
    """TTL-bounded, in-process snapshot of the projects table."""

    def __init__(
        self,
        db: StorageAdapter,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        project_tokens: str = "",
        api_keys: str = "",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.db = db
        self.ttl_seconds = ttl_seconds
        self.static_tokens = split_csv(project_tokens)
        self.static_keys = split_csv(api_keys)
        self._clock = clock
        self._entries: dict[str, ProjectRecord] | None = None
        self._loaded_at = 0.0

    def invalidate(self) -> None:
        self._entries = None
        self._loaded_at = 0.0

    def _is_fresh(self) -> bool:
        return self._entries is not None and self._clock() - self._loaded_at <= self.ttl_seconds

    async def load(self) -> dict[str, ProjectRecord]:
        """Return the cache mapping, reloading it from storage when stale."""
        if self._is_fresh():
            return self._entries  # type: ignore[return-value]

        entries: dict[str, ProjectRecord] = {}
        try:
            rows = await self.db.fetch_all(select(*Project.__table__.c))
        except MissingTableError:
            logger.info("Projects table not found; running without project credentials")
            rows = []

        for row in rows:
            project = ProjectRecord.model_validate(row)
            entries[f"{TOKEN_PREFIX}{project.project_token}"] = project
            entries[f"{KEY_PREFIX}{project.api_key}"] = project
            entries[f"{ID_PREFIX}{project.id}"] = project

        self._entries = entries
        self._loaded_at = self._clock()
        logger.debug("Auth cache loaded with %d projects", len(rows))
        return entries

    async def get_project(self, project_id: str) -> ProjectRecord | None:
        entries = await self.load()
        return entries.get(f"{ID_PREFIX}{project_id}")

    async def resolve_write_token(self, token: str | None) -> AuthResult:
        """Check an ingestion token.

        With no static tokens and no projects configured anywhere, ingestion
        is open (dev mode) and any request is accepted.
        """
        entries = await self.load()

        if token:
            project = entries.get(f"{TOKEN_PREFIX}{token}")
            if project is not None and secret_equals(project.project_token, token):
                return AuthResult(valid=True, project=project)
            if secret_in(token, self.static_tokens):
                return AuthResult(valid=True)

        if not self.static_tokens and not _has_projects(entries):
            return AuthResult(valid=True)

        if not token:
            return AuthResult(valid=False, error="token required")
        return AuthResult(valid=False, error="invalid token")

    async def resolve_read_key(self, key: str | None) -> AuthResult:
        """Check a read API key. Reads always need a configured key."""
        if not key:
            return AuthResult(valid=False, error="API key required")

        entries = await self.load()
        project = entries.get(f"{KEY_PREFIX}{key}")
        if project is not None and secret_equals(project.api_key, key):
            return AuthResult(valid=True, project=project)
        if secret_in(key, self.static_keys):
            return AuthResult(valid=True)
        return AuthResult(valid=False, error="invalid API key")
