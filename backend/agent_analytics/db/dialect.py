"""Engine-specific SQL fragments.

This is the only module that knows which database engine sits behind an
adapter. Business logic asks it for an upsert-capable ``insert()`` construct
and for time-bucket expressions, and never branches on the engine itself.
"""

from typing import Any

from sqlalchemy import Date, cast, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.sql.elements import ColumnElement

from agent_analytics.models.event import Event

GRANULARITIES = ("hour", "day", "week", "month")


class SqlDialect:
    """SQL helpers for one SQLAlchemy dialect (``sqlite`` or ``postgresql``)."""

    def __init__(self, name: str):
        if name not in ("sqlite", "postgresql"):
            raise ValueError(f"unsupported database dialect: {name}")
        self.name = name

    @property
    def is_postgres(self) -> bool:
        return self.name == "postgresql"

    def insert(self, table: Any) -> Any:
        """Return an INSERT supporting ``on_conflict_do_update``.

        SQLite and PostgreSQL expose the same ``ON CONFLICT`` API through
        their dialect-level insert constructs.
        """
        if self.is_postgres:
            return postgresql.insert(table)
        return sqlite.insert(table)

    def time_bucket(self, granularity: str) -> ColumnElement[str]:
        """Label expression for a stats time bucket.

        ``hour`` is derived from the raw millisecond timestamp. The other
        granularities work from the denormalized ``date`` column.
        """
        if granularity == "hour":
            if self.is_postgres:
                return func.to_char(
                    func.timezone("UTC", func.to_timestamp(Event.timestamp / 1000.0)),
                    "YYYY-MM-DD HH24:00",
                )
            return func.strftime("%Y-%m-%d %H:00", Event.timestamp / 1000, "unixepoch")
        if granularity == "week":
            if self.is_postgres:
                return func.to_char(func.date_trunc("week", cast(Event.date, Date)), "YYYY-MM-DD")
            # Monday on or before the date
            return func.date(Event.date, "-6 days", "weekday 1")
        if granularity == "month":
            return func.substr(Event.date, 1, 7)
        return Event.date

    def is_missing_table(self, exc: BaseException) -> bool:
        message = str(getattr(exc, "orig", exc)).lower()
        if "no such table" in message:
            return True
        return "relation" in message and "does not exist" in message
