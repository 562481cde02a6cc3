"""Background worker: purges events and sessions past each project's retention window.

Run as a separate process:
    python -m agent_analytics.worker
"""

import asyncio
import logging
import signal

from agent_analytics.core.config import settings, setup_logging
from agent_analytics.db.adapter import StorageAdapter
from agent_analytics.db.factory import create_adapter
from agent_analytics.services.retention_service import RetentionService

logger = logging.getLogger(__name__)

_shutdown = asyncio.Event()


def _handle_signal(*_):
    logger.info("Shutdown signal received")
    _shutdown.set()


async def run_once(db: StorageAdapter) -> int:
    """Run one purge pass. Returns the total number of events removed."""
    purged = await RetentionService(db).purge_expired()
    total = sum(purged.values())
    logger.info("Retention pass removed %d events across %d projects", total, len(purged))
    return total


async def run_worker() -> None:
    """Main worker loop."""
    setup_logging()
    logger.info("Starting retention worker (every %ds)", settings.RETENTION_INTERVAL_SECONDS)

    db = create_adapter(settings)
    await db.create_schema()

    while not _shutdown.is_set():
        try:
            await run_once(db)
        except Exception:
            logger.exception("Retention pass failed")
        try:
            await asyncio.wait_for(_shutdown.wait(), timeout=settings.RETENTION_INTERVAL_SECONDS)
        except asyncio.TimeoutError:
            pass

    await db.close()
    logger.info("Worker shut down cleanly")


if __name__ == "__main__":
    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _handle_signal)
    asyncio.run(run_worker())
