import logging
from typing import Literal

from sqlalchemy import select
from sqlalchemy.sql import Executable

from agent_analytics.core.timeutil import days_ago, today
from agent_analytics.db.adapter import StorageAdapter
from agent_analytics.models.usage import Usage
from agent_analytics.schemas.project import UsageDay, UsageToday

logger = logging.getLogger(__name__)

UsageKind = Literal["event", "read"]


class UsageService:
    """Per-project daily counters used for quotas and billing."""

    def __init__(self, db: StorageAdapter):
        self.db = db

    def increment_statement(
        self, project_id: str, kind: UsageKind = "event", day: str | None = None
    ) -> Executable:
        """Single-statement upsert adding one to today's counter.

        The row is created on first use; the increment happens in the
        database, so concurrent increments never lose updates.
        """
        column = "read_count" if kind == "read" else "event_count"
        table = Usage.__table__
        stmt = self.db.dialect.insert(table).values(
            project_id=project_id,
            date=day or today(),
            event_count=1 if column == "event_count" else 0,
            read_count=1 if column == "read_count" else 0,
        )
        return stmt.on_conflict_do_update(
            index_elements=[table.c.project_id, table.c.date],
            set_={column: table.c[column] + 1},
        )

    async def increment(self, project_id: str, kind: UsageKind = "event") -> None:
        await self.db.run(self.increment_statement(project_id, kind))

    async def get_today(self, project_id: str) -> UsageToday:
        row = await self.db.fetch_one(
            select(Usage.event_count, Usage.read_count).where(
                Usage.project_id == project_id,
                Usage.date == today(),
            )
        )
        return UsageToday(**row) if row else UsageToday()

    async def history(self, project_id: str, days: int = 30) -> list[UsageDay]:
        rows = await self.db.fetch_all(
            select(Usage.date, Usage.event_count, Usage.read_count)
            .where(Usage.project_id == project_id, Usage.date >= days_ago(days))
            .order_by(Usage.date.desc())
        )
        return [UsageDay(**row) for row in rows]
