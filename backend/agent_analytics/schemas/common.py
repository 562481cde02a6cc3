from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Liveness check response."""

    status: str
    service: str


class OkResponse(BaseModel):
    ok: bool = True


class DeletedResponse(OkResponse):
    deleted: str
