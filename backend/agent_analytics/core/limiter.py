from slowapi import Limiter
from slowapi.util import get_remote_address

from agent_analytics.core.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=settings.LIMITER_STORAGE_URI,
)
