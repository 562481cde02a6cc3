from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# 9999-12-31T23:59:59.999Z, the last instant a calendar date can be derived for
MAX_TIMESTAMP_MS = 253_402_300_799_999


class TrackEvent(BaseModel):
    """A single event as sent to ``/track`` or inside a ``/track/batch`` payload."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    project: str = Field(..., min_length=1, max_length=255)
    event: str = Field(..., min_length=1, max_length=255)
    properties: dict[str, Any] | None = None
    user_id: str | None = Field(None, max_length=255)
    session_id: str | None = Field(None, max_length=255)
    timestamp: int | None = Field(None, ge=0, le=MAX_TIMESTAMP_MS)
    token: str | None = None

    def page(self) -> str | None:
        """Page the event was recorded on: ``properties.path``, else ``properties.url``."""
        if not self.properties:
            return None
        page = self.properties.get("path") or self.properties.get("url")
        return str(page) if page is not None else None


class TrackResponse(BaseModel):
    ok: bool = True


class BatchTrackResponse(TrackResponse):
    count: int


class EventOut(BaseModel):
    """Raw event as returned by ``/events``."""

    id: str
    project_id: str
    event: str
    properties: dict[str, Any] | None
    user_id: str | None
    session_id: str | None
    timestamp: int
    date: str


class EventsResponse(BaseModel):
    project: str
    events: list[EventOut]
