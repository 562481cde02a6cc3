"""Event ingestion: validate, authorize, rate-limit, then defer the writes.

``track`` and ``track_batch`` return as soon as the request is accepted. The
event insert, session merge and usage increments come back as a list of
pending tasks for the transport to run after the response is sent, so a
success response acknowledges acceptance only: a write that fails later is
logged and never reported to the client.
"""

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from functools import partial
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import case, func, insert
from sqlalchemy.sql import Executable

from agent_analytics.core.exceptions import ForbiddenError, RateLimitError, ValidationError
from agent_analytics.core.security import new_event_id
from agent_analytics.core.timeutil import now_ms, utc_date
from agent_analytics.db.adapter import StorageAdapter
from agent_analytics.models.event import AnalyticsSession, Event
from agent_analytics.schemas.event import TrackEvent
from agent_analytics.schemas.project import ProjectRecord
from agent_analytics.services.auth_cache import AuthCache, AuthResult
from agent_analytics.services.usage_service import UsageService

logger = logging.getLogger(__name__)

DEFAULT_MAX_BATCH_SIZE = 100

PendingTask = Callable[[], Awaitable[None]]


@dataclass
class IngestResult:
    """Response body plus the writes still to be performed."""

    body: dict[str, Any]
    pending: list[PendingTask] = field(default_factory=list)


@dataclass
class SessionContribution:
    """What a set of same-session events adds to the session row."""

    session_id: str
    project_id: str
    user_id: str | None
    start: int
    end: int
    entry_page: str | None
    exit_page: str | None
    count: int


async def run_pending(tasks: Sequence[PendingTask]) -> None:
    """Run deferred tasks in order. Each task logs its own failure."""
    for task in tasks:
        await task()


def deferred(description: str, operation: Callable[[], Awaitable[Any]]) -> PendingTask:
    """Wrap a write so a failure is logged instead of raised."""

    async def task() -> None:
        try:
            await operation()
        except Exception:
            logger.exception("%s failed", description)

    return task


def _describe_errors(exc: PydanticValidationError, prefix: str = "") -> str:
    missing = {
        str(err["loc"][0])
        for err in exc.errors()
        if err["type"] in ("missing", "string_too_short") and err["loc"]
    }
    if missing & {"project", "event"}:
        return f"{prefix}project and event required"
    err = exc.errors()[0]
    location = ".".join(str(part) for part in err["loc"]) or "body"
    return f"{prefix}invalid {location}: {err['msg']}"


def aggregate_sessions(rows: Sequence[tuple[dict[str, Any], str | None]]) -> list[SessionContribution]:
    """Collapse ``(event_row, page)`` pairs into one contribution per session.

    Ties on the earliest timestamp keep the first event's page as entry;
    ties on the latest keep the last event's page as exit.
    """
    sessions: dict[str, SessionContribution] = {}
    for row, page in rows:
        session_id = row["session_id"]
        if not session_id:
            continue
        ts = row["timestamp"]
        current = sessions.get(session_id)
        if current is None:
            sessions[session_id] = SessionContribution(
                session_id=session_id,
                project_id=row["project_id"],
                user_id=row["user_id"],
                start=ts,
                end=ts,
                entry_page=page,
                exit_page=page,
                count=1,
            )
            continue
        if ts < current.start:
            current.start = ts
            current.entry_page = page
        if ts >= current.end:
            current.end = ts
            current.exit_page = page
        current.user_id = current.user_id or row["user_id"]
        current.count += 1
    return list(sessions.values())


class IngestionPipeline:
    """Accepts single events and bounded batches for persistence."""

    def __init__(
        self,
        db: StorageAdapter,
        auth_cache: AuthCache,
        *,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        clock: Callable[[], int] = now_ms,
    ):
        self.db = db
        self.auth_cache = auth_cache
        self.usage = UsageService(db)
        self.max_batch_size = max_batch_size
        self._clock = clock

    async def track(self, payload: Any) -> IngestResult:
        event = self._parse_event(payload)
        auth = await self._authorize(event.token)
        if auth.project is not None:
            await self._check_rate_limit(auth.project)

        row = self._event_row(event, auth.project)
        statements = self.write_statements([(row, event.page())])

        pending = [deferred("Track write", partial(self.db.batch, statements))]
        if auth.project is not None:
            pending.append(
                deferred("Usage increment", partial(self.usage.increment, auth.project.id, "event"))
            )
        return IngestResult(body={"ok": True}, pending=pending)

    async def track_batch(self, payload: Any) -> IngestResult:
        if not isinstance(payload, dict):
            raise ValidationError("request body must be a JSON object")
        raw_events = payload.get("events")
        if not isinstance(raw_events, list) or not raw_events:
            raise ValidationError("events array required")
        if len(raw_events) > self.max_batch_size:
            raise ValidationError(f"max {self.max_batch_size} events per batch")
        batch_token = payload.get("token")
        if batch_token is not None and not isinstance(batch_token, str):
            raise ValidationError("token must be a string")

        events = [
            self._parse_event(raw, prefix=f"events[{index}]: ")
            for index, raw in enumerate(raw_events)
        ]

        # The batch-level token always wins; an event's own token only
        # applies when the batch carries none.
        tokens = [batch_token or event.token for event in events]
        resolved: dict[str | None, AuthResult] = {}
        for token in dict.fromkeys(tokens):
            resolved[token] = await self._authorize(token)

        projects = {r.project.id: r.project for r in resolved.values() if r.project is not None}
        for project in projects.values():
            await self._check_rate_limit(project)

        rows = [
            (self._event_row(event, resolved[token].project), event.page())
            for event, token in zip(events, tokens)
        ]
        statements = self.write_statements(rows)

        pending = [deferred("Batch write", partial(self.db.batch, statements))]
        # One increment per event, not one bulk increment per batch
        for token in tokens:
            project = resolved[token].project
            if project is not None:
                pending.append(
                    deferred("Usage increment", partial(self.usage.increment, project.id, "event"))
                )
        return IngestResult(body={"ok": True, "count": len(events)}, pending=pending)

    def _parse_event(self, raw: Any, prefix: str = "") -> TrackEvent:
        if not isinstance(raw, dict):
            raise ValidationError(f"{prefix}event must be a JSON object")
        try:
            return TrackEvent.model_validate(raw)
        except PydanticValidationError as exc:
            raise ValidationError(_describe_errors(exc, prefix)) from None

    async def _authorize(self, token: str | None) -> AuthResult:
        auth = await self.auth_cache.resolve_write_token(token)
        if not auth.valid:
            raise ForbiddenError(auth.error)
        return auth

    async def _check_rate_limit(self, project: ProjectRecord) -> None:
        """Compare today's usage with the daily event quota.

        This read and the later increment are separate statements, so
        concurrent bursts can overshoot the quota slightly.
        """
        limit = project.rate_limit_events
        if not limit:
            return
        usage = await self.usage.get_today(project.id)
        if usage.event_count >= limit:
            logger.info("Project %s hit its daily event limit (%d)", project.id, limit)
            raise RateLimitError(limit=limit)

    def _event_row(self, event: TrackEvent, project: ProjectRecord | None) -> dict[str, Any]:
        timestamp = event.timestamp if event.timestamp is not None else self._clock()
        return {
            "id": new_event_id(timestamp),
            # A project-backed token pins the tenant regardless of the payload
            "project_id": project.id if project is not None else event.project,
            "event": event.event,
            "properties": event.properties,
            "user_id": event.user_id,
            "session_id": event.session_id,
            "timestamp": timestamp,
            "date": utc_date(timestamp),
        }

    def write_statements(
        self, rows: Sequence[tuple[dict[str, Any], str | None]]
    ) -> list[Executable]:
        """Event insert followed by one session merge per touched session."""
        statements: list[Executable] = [insert(Event).values([row for row, _ in rows])]
        for contribution in aggregate_sessions(rows):
            statements.append(self.session_upsert(contribution))
        return statements

    def session_upsert(self, c: SessionContribution) -> Executable:
        """Merge a contribution into its session row in one atomic statement.

        The merge is an ``INSERT ... ON CONFLICT DO UPDATE``; every SET
        expression sees the pre-update row, so concurrent merges for the same
        session each apply in full whatever order they land in.
        """
        table = AnalyticsSession.__table__
        stmt = self.db.dialect.insert(table).values(
            session_id=c.session_id,
            user_id=c.user_id,
            project_id=c.project_id,
            start_time=c.start,
            end_time=c.end,
            duration=c.end - c.start,
            entry_page=c.entry_page,
            exit_page=c.exit_page,
            event_count=c.count,
            is_bounce=0 if c.count > 1 else 1,
            date=utc_date(c.start),
        )
        new = stmt.excluded
        starts_earlier = new.start_time < table.c.start_time
        merged_start = case((starts_earlier, new.start_time), else_=table.c.start_time)
        merged_end = case((new.end_time > table.c.end_time, new.end_time), else_=table.c.end_time)
        merged_count = table.c.event_count + new.event_count
        return stmt.on_conflict_do_update(
            index_elements=[table.c.session_id],
            set_={
                "start_time": merged_start,
                "end_time": merged_end,
                "duration": merged_end - merged_start,
                "entry_page": case((starts_earlier, new.entry_page), else_=table.c.entry_page),
                "exit_page": case(
                    (new.end_time >= table.c.end_time, new.exit_page), else_=table.c.exit_page
                ),
                "event_count": merged_count,
                "is_bounce": case((merged_count > 1, 0), else_=1),
                "user_id": func.coalesce(table.c.user_id, new.user_id),
                "date": case((starts_earlier, new.date), else_=table.c.date),
            },
        )
