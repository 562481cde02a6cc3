import logging

from sqlalchemy import delete, select

from agent_analytics.core.timeutil import days_ago
from agent_analytics.db.adapter import MissingTableError, StorageAdapter
from agent_analytics.models.event import AnalyticsSession, Event
from agent_analytics.models.project import Project

logger = logging.getLogger(__name__)


class RetentionService:
    """Drops raw data older than each project's retention window."""

    def __init__(self, db: StorageAdapter):
        self.db = db

    async def purge_expired(self) -> dict[str, int]:
        """Delete expired events and sessions for every project.

        Returns the number of events removed per project id. Rows from
        projects that no longer exist are left alone.
        """
        try:
            projects = await self.db.fetch_all(
                select(Project.id, Project.data_retention_days)
            )
        except MissingTableError:
            logger.info("Projects table not found; nothing to purge")
            return {}

        purged: dict[str, int] = {}
        for project in projects:
            cutoff = days_ago(project["data_retention_days"])
            removed = await self.db.run(
                delete(Event).where(Event.project_id == project["id"], Event.date < cutoff)
            )
            await self.db.run(
                delete(AnalyticsSession).where(
                    AnalyticsSession.project_id == project["id"],
                    AnalyticsSession.date < cutoff,
                )
            )
            if removed:
                logger.info("Purged %d events older than %s for %s", removed, cutoff, project["id"])
            purged[project["id"]] = removed
        return purged
