from fastapi import APIRouter

from agent_analytics.api.routes import analytics, health, projects, track

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(track.router, tags=["ingestion"])
api_router.include_router(analytics.router, tags=["analytics"])
api_router.include_router(projects.router, prefix="/projects", tags=["projects"])
