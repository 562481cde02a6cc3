"""Read-side queries: the client-declared aggregate query and fixed views.

Everything the client controls in ``query()`` is resolved through the lookup
tables below before it reaches SQLAlchemy. Metric, group-by and order names
select prebuilt column expressions, filter values are always bound
parameters, and the only client text that shapes the SQL is a property key
that has already matched ``PROPERTY_KEY``.
"""

import logging
import operator
import re
from collections.abc import Callable
from typing import Any

from sqlalchemy import Float, and_, cast, distinct, func, select, true
from sqlalchemy.exc import DataError, ProgrammingError
from sqlalchemy.sql.elements import ColumnElement

from agent_analytics.core.exceptions import QueryError, ValidationError
from agent_analytics.core.timeutil import days_ago, parse_day, start_of_day_ms, today
from agent_analytics.db.adapter import StorageAdapter
from agent_analytics.db.dialect import GRANULARITIES
from agent_analytics.models.event import AnalyticsSession, Event
from agent_analytics.schemas.query import QueryFilter, QueryRequest

logger = logging.getLogger(__name__)

METRICS = ("event_count", "unique_users", "session_count", "bounce_rate", "avg_duration")
SESSION_METRICS = frozenset({"bounce_rate", "avg_duration"})
GROUP_BY = ("event", "date", "user_id", "session_id")
FILTER_FIELDS = ("event", "user_id", "date")
PROPERTY_PREFIX = "properties."
ORDER_BY = ("event_count", "unique_users", "date", "event")
FILTER_OPS: dict[str, Callable[[Any, Any], ColumnElement[bool]]] = {
    "eq": operator.eq,
    "neq": operator.ne,
    "gt": operator.gt,
    "lt": operator.lt,
    "gte": operator.ge,
    "lte": operator.le,
}
PROPERTY_KEY = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,63}$")

DEFAULT_LIMIT = 100
MAX_LIMIT = 1000
DEFAULT_DAYS = 7
TOP_EVENTS = 20
PROPERTY_SAMPLE_SIZE = 100

_GROUP_COLUMNS = {
    "event": Event.event,
    "date": Event.date,
    "user_id": Event.user_id,
    "session_id": Event.session_id,
}

_EVENT_METRICS: dict[str, Callable[[], ColumnElement[Any]]] = {
    "event_count": lambda: func.count(),
    "unique_users": lambda: func.count(distinct(Event.user_id)),
    "session_count": lambda: func.count(distinct(Event.session_id)),
}


def clamp_limit(limit: int | None, default: int = DEFAULT_LIMIT) -> int:
    """Clamp a caller-supplied row limit to ``[1, MAX_LIMIT]``."""
    if limit is None:
        return default
    return max(1, min(int(limit), MAX_LIMIT))


def _ratio(numerator: Any, denominator: Any, digits: int = 2) -> float:
    if not denominator:
        return 0.0
    return round(float(numerator or 0) / float(denominator), digits)


def _as_float(value: Any, digits: int = 4) -> float:
    return round(float(value), digits) if value is not None else 0.0


def _window_start(days: int, since: str | None) -> str:
    if since:
        return _parse_date("since", since)
    return days_ago(days)


def _parse_date(name: str, value: str) -> str:
    try:
        return parse_day(value)
    except ValueError:
        raise ValidationError(f"invalid {name}: expected YYYY-MM-DD") from None


class QueryEngine:
    """Aggregate and raw read views over one project's events and sessions."""

    def __init__(self, db: StorageAdapter):
        self.db = db

    # ---- client-declared aggregate query ----

    def _check_shape(self, request: QueryRequest) -> list[str]:
        metrics = request.metrics or ["event_count"]
        for metric in metrics:
            if metric not in METRICS:
                raise QueryError(
                    f"invalid metric: {metric}. allowed: {', '.join(METRICS)}",
                    allowed=list(METRICS),
                )
        for group in request.group_by:
            if group not in GROUP_BY:
                raise QueryError(
                    f"invalid group_by: {group}. allowed: {', '.join(GROUP_BY)}",
                    allowed=list(GROUP_BY),
                )
        return list(dict.fromkeys(metrics))

    def _filter_clause(self, condition: QueryFilter) -> ColumnElement[bool]:
        compare = FILTER_OPS.get(condition.op)
        if compare is None:
            raise QueryError(
                f"invalid filter op: {condition.op}. allowed: {', '.join(FILTER_OPS)}",
                allowed=list(FILTER_OPS),
            )

        if condition.field in FILTER_FIELDS:
            value = condition.value if isinstance(condition.value, str) else str(condition.value)
            return compare(_GROUP_COLUMNS[condition.field], value)

        if condition.field.startswith(PROPERTY_PREFIX):
            key = condition.field[len(PROPERTY_PREFIX):]
            if not PROPERTY_KEY.match(key):
                raise QueryError(
                    f"invalid property key: {key!r}",
                    allowed=[*FILTER_FIELDS, f"{PROPERTY_PREFIX}<key>"],
                )
            element = Event.properties[key]
            # bool first: it is also an int
            if isinstance(condition.value, bool):
                return compare(element.as_boolean(), condition.value)
            if isinstance(condition.value, (int, float)):
                return compare(element.as_float(), float(condition.value))
            return compare(element.as_string(), condition.value)

        raise QueryError(
            f"invalid filter field: {condition.field}",
            allowed=[*FILTER_FIELDS, f"{PROPERTY_PREFIX}<key>"],
        )

    async def query(self, scope: str, request: QueryRequest) -> dict[str, Any]:
        metrics = self._check_shape(request)
        group_by = list(dict.fromkeys(request.group_by))
        date_from = (
            _parse_date("date_from", request.date_from) if request.date_from else days_ago(DEFAULT_DAYS)
        )
        date_to = _parse_date("date_to", request.date_to) if request.date_to else today()

        conditions = [
            Event.project_id == scope,
            Event.date >= date_from,
            Event.date <= date_to,
            *(self._filter_clause(f) for f in request.filters),
        ]
        group_columns = [_GROUP_COLUMNS[g] for g in group_by]

        main = (
            select(
                *(column.label(name) for name, column in zip(group_by, group_columns)),
                func.count().label("_rows"),
                *(_EVENT_METRICS[m]().label(m) for m in metrics if m not in SESSION_METRICS),
            )
            .where(*conditions)
            .group_by(*group_columns)
            .subquery("main")
        )

        outputs: dict[str, ColumnElement[Any]] = {name: main.c[name] for name in group_by}
        source = main
        per_group = None
        if SESSION_METRICS.intersection(metrics):
            per_group = self._session_metrics(group_by, group_columns, conditions)
            onclause = and_(
                true(), *(main.c[g].is_not_distinct_from(per_group.c[g]) for g in group_by)
            )
            source = main.outerjoin(per_group, onclause)
        for metric in metrics:
            if per_group is not None and metric in SESSION_METRICS:
                outputs[metric] = func.coalesce(per_group.c[metric], 0).label(metric)
            else:
                outputs[metric] = main.c[metric]

        order_name = self._order_column(request, group_by, metrics, outputs)
        order_column = outputs[order_name]
        stmt = (
            select(*outputs.values())
            .select_from(source)
            .order_by(order_column.asc() if request.order == "asc" else order_column.desc())
            .limit(clamp_limit(request.limit))
        )

        try:
            rows = await self.db.fetch_all(stmt)
        except (DataError, ProgrammingError) as exc:
            # e.g. a numeric property filter against a non-numeric stored value
            logger.warning("Query for %s rejected by the database: %s", scope, exc.orig)
            raise QueryError("invalid filter value for the stored property type") from None
        for row in rows:
            for metric in SESSION_METRICS.intersection(metrics):
                row[metric] = _as_float(row[metric])

        return {
            "project": request.project,
            "period": {"from": date_from, "to": date_to},
            "metrics": metrics,
            "group_by": group_by,
            "rows": rows,
            "count": len(rows),
        }

    def _session_metrics(self, group_by, group_columns, conditions):
        """Per-group bounce rate and duration from the sessions table.

        Each session counts once per group however many of its events
        matched, and only sessions that have a row are averaged.
        """
        pairs = (
            select(
                *(column.label(name) for name, column in zip(group_by, group_columns)),
                Event.session_id.label("_sid"),
            )
            .where(*conditions, Event.session_id.is_not(None))
            .distinct()
            .subquery("session_pairs")
        )
        sessions = AnalyticsSession.__table__
        return (
            select(
                *(pairs.c[name] for name in group_by),
                func.avg(cast(sessions.c.is_bounce, Float)).label("bounce_rate"),
                func.avg(cast(sessions.c.duration, Float)).label("avg_duration"),
            )
            .select_from(pairs.join(sessions, sessions.c.session_id == pairs.c._sid))
            .group_by(*(pairs.c[name] for name in group_by))
            .subquery("session_metrics")
        )

    @staticmethod
    def _order_column(request, group_by, metrics, outputs) -> str:
        if request.order_by in ORDER_BY and request.order_by in outputs:
            return request.order_by
        if "date" in group_by:
            return "date"
        return metrics[0]

    # ---- fixed views ----

    async def stats(
        self,
        scope: str,
        days: int = DEFAULT_DAYS,
        since: str | None = None,
        granularity: str = "day",
    ) -> dict[str, Any]:
        from_date = _window_start(days, since)
        if granularity not in GRANULARITIES:
            granularity = "day"
        in_window = [Event.project_id == scope, Event.date >= from_date]

        totals = await self.db.fetch_one(
            select(
                func.count(distinct(Event.user_id)).label("unique_users"),
                func.count().label("total_events"),
            ).where(*in_window)
        )

        if granularity == "hour":
            series_window = [Event.project_id == scope, Event.timestamp >= start_of_day_ms(from_date)]
        else:
            series_window = in_window
        # Bucket in a subquery so the outer GROUP BY names a plain column
        bucketed = (
            select(self.db.dialect.time_bucket(granularity).label("bucket"), Event.user_id)
            .where(*series_window)
            .subquery("bucketed")
        )
        series = await self.db.fetch_all(
            select(
                bucketed.c.bucket,
                func.count(distinct(bucketed.c.user_id)).label("unique_users"),
                func.count().label("total_events"),
            )
            .group_by(bucketed.c.bucket)
            .order_by(bucketed.c.bucket)
        )

        top_events = await self.db.fetch_all(
            select(
                Event.event,
                func.count().label("count"),
                func.count(distinct(Event.user_id)).label("unique_users"),
            )
            .where(*in_window)
            .group_by(Event.event)
            .order_by(func.count().desc(), Event.event)
            .limit(TOP_EVENTS)
        )

        return {
            "period": {"from": from_date, "to": today(), "days": days},
            "granularity": granularity,
            "totals": totals or {"unique_users": 0, "total_events": 0},
            "timeSeries": series,
            "events": top_events,
            "sessions": await self._session_summary(scope, from_date),
        }

    async def _session_summary(self, scope: str, from_date: str) -> dict[str, Any]:
        row = await self.db.fetch_one(
            select(
                func.count().label("total_sessions"),
                func.sum(AnalyticsSession.is_bounce).label("bounces"),
                func.avg(cast(AnalyticsSession.duration, Float)).label("avg_duration"),
                func.sum(AnalyticsSession.event_count).label("events"),
                func.count(distinct(AnalyticsSession.user_id)).label("users"),
            ).where(AnalyticsSession.project_id == scope, AnalyticsSession.date >= from_date)
        ) or {}
        total = row.get("total_sessions") or 0
        return {
            "total_sessions": total,
            "bounce_rate": _ratio(row.get("bounces"), total, 4),
            "avg_duration": _as_float(row.get("avg_duration"), 2),
            "pages_per_session": _ratio(row.get("events"), total),
            "sessions_per_user": _ratio(total, row.get("users")),
        }

    async def events(
        self,
        scope: str,
        event: str | None = None,
        session_id: str | None = None,
        days: int = DEFAULT_DAYS,
        since: str | None = None,
        limit: int | None = DEFAULT_LIMIT,
    ) -> list[dict[str, Any]]:
        """Raw events, newest first."""
        stmt = select(*Event.__table__.c).where(
            Event.project_id == scope, Event.date >= _window_start(days, since)
        )
        if event:
            stmt = stmt.where(Event.event == event)
        if session_id:
            stmt = stmt.where(Event.session_id == session_id)
        stmt = stmt.order_by(Event.timestamp.desc(), Event.id.desc()).limit(clamp_limit(limit))
        return await self.db.fetch_all(stmt)

    async def sessions(
        self,
        scope: str,
        days: int = DEFAULT_DAYS,
        since: str | None = None,
        limit: int | None = DEFAULT_LIMIT,
    ) -> list[dict[str, Any]]:
        """Session rows, most recently started first."""
        return await self.db.fetch_all(
            select(*AnalyticsSession.__table__.c)
            .where(
                AnalyticsSession.project_id == scope,
                AnalyticsSession.date >= _window_start(days, since),
            )
            .order_by(AnalyticsSession.start_time.desc())
            .limit(clamp_limit(limit))
        )

    async def properties(self, scope: str, days: int = 30, since: str | None = None) -> dict[str, Any]:
        """Event catalogue plus the property keys seen in recent events."""
        in_window = [Event.project_id == scope, Event.date >= _window_start(days, since)]
        catalogue = await self.db.fetch_all(
            select(
                Event.event,
                func.count().label("count"),
                func.count(distinct(Event.user_id)).label("unique_users"),
                func.min(Event.date).label("first_seen"),
                func.max(Event.date).label("last_seen"),
            )
            .where(*in_window)
            .group_by(Event.event)
            .order_by(func.count().desc(), Event.event)
        )
        sample = await self.db.fetch_all(
            select(Event.properties)
            .where(*in_window, Event.properties.is_not(None))
            .order_by(Event.timestamp.desc())
            .limit(PROPERTY_SAMPLE_SIZE)
        )
        keys: set[str] = set()
        for row in sample:
            if isinstance(row["properties"], dict):
                keys.update(row["properties"])
        return {"events": catalogue, "property_keys": sorted(keys)}
