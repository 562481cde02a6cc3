from agent_analytics.core.config import Settings
from agent_analytics.db.adapter import StorageAdapter
from agent_analytics.db.embedded import EmbeddedAdapter
from agent_analytics.db.network import NetworkAdapter


def create_adapter(settings: Settings) -> StorageAdapter:
    """Pick the storage implementation once, at startup."""
    if settings.STORAGE_BACKEND == "network":
        return NetworkAdapter(
            settings.DATABASE_URL,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            echo=settings.DEBUG,
        )
    return EmbeddedAdapter(settings.DATABASE_URL, echo=settings.DEBUG)
