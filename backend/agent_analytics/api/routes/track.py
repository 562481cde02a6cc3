from typing import Any

from fastapi import APIRouter, BackgroundTasks, Body, Depends

from agent_analytics.api.deps import get_pipeline
from agent_analytics.schemas.event import BatchTrackResponse, TrackResponse
from agent_analytics.services.ingestion import IngestionPipeline, IngestResult

router = APIRouter()


def _schedule(background_tasks: BackgroundTasks, result: IngestResult) -> None:
    for task in result.pending:
        background_tasks.add_task(task)


@router.post("/track", response_model=TrackResponse)
async def track_event(
    background_tasks: BackgroundTasks,
    payload: Any = Body(...),
    pipeline: IngestionPipeline = Depends(get_pipeline),
):
    """Accept one event. Authenticated by the project token in the body.

    The write happens after the response is sent; a 200 means the event was
    accepted, not that it is already stored.
    """
    result = await pipeline.track(payload)
    _schedule(background_tasks, result)
    return result.body


@router.post("/track/batch", response_model=BatchTrackResponse)
async def track_batch(
    background_tasks: BackgroundTasks,
    payload: Any = Body(...),
    pipeline: IngestionPipeline = Depends(get_pipeline),
):
    """Accept up to ``MAX_BATCH_SIZE`` events in one request."""
    result = await pipeline.track_batch(payload)
    _schedule(background_tasks, result)
    return result.body
