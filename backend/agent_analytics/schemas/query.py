from typing import Any

from pydantic import BaseModel, Field


class QueryFilter(BaseModel):
    """One ``{field, op, value}`` predicate; checked against the allowlists by the engine."""

    field: str = Field(..., min_length=1)
    op: str = Field(..., min_length=1)
    value: str | int | float | bool


class QueryRequest(BaseModel):
    """Client-declared aggregate query shape for ``POST /query``."""

    project: str = Field(..., min_length=1)
    metrics: list[str] = Field(default_factory=lambda: ["event_count"])
    group_by: list[str] = Field(default_factory=list)
    filters: list[QueryFilter] = Field(default_factory=list)
    date_from: str | None = None
    date_to: str | None = None
    order_by: str | None = None
    order: str | None = None
    limit: int = 100


class QueryResponse(BaseModel):
    project: str
    period: dict[str, Any]
    metrics: list[str]
    group_by: list[str]
    rows: list[dict[str, Any]]
    count: int
