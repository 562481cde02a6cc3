import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text

from agent_analytics.api.deps import get_db
from agent_analytics.core.config import settings
from agent_analytics.core.exceptions import ServiceUnavailableError
from agent_analytics.db.adapter import StorageAdapter
from agent_analytics.schemas.common import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Basic health check endpoint."""
    return {"status": "ok", "service": settings.SERVICE_NAME}


@router.get("/health/ready", response_model=HealthResponse)
async def readiness_check(db: StorageAdapter = Depends(get_db)):
    """Readiness check - verifies the storage backend answers a query."""
    try:
        await db.fetch_one(text("SELECT 1"))
    except Exception:
        logger.error("Readiness check failed: storage backend unreachable")
        raise ServiceUnavailableError("service not ready") from None
    return {"status": "ready", "service": settings.SERVICE_NAME}
