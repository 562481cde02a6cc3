from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class ProjectCreate(BaseModel):
    """Schema for creating a new project."""

    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    allowed_origins: str | None = Field(None, max_length=1024)


class ProjectRecord(BaseModel):
    """Full project row, as held by the auth cache."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    owner_email: str
    project_token: str
    api_key: str
    allowed_origins: str = "*"
    tier: str = "free"
    rate_limit_events: int | None = None
    rate_limit_reads: int | None = None
    data_retention_days: int = 30
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def matches(self, project: str) -> bool:
        """True if a client-supplied project reference names this project."""
        return project in (self.id, self.name)


class ProjectCreateResponse(BaseModel):
    """Response for create: includes both credentials (shown once)."""

    id: str
    name: str
    project_token: str
    api_key: str
    allowed_origins: str
    tier: str
    snippet: str
    api_example: str


class ProjectSummary(BaseModel):
    """Project listing entry: never includes the private API key."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    owner_email: str
    project_token: str
    tier: str
    allowed_origins: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ProjectListResponse(BaseModel):
    projects: list[ProjectSummary]


class UsageDay(BaseModel):
    date: str
    event_count: int
    read_count: int


class UsageToday(BaseModel):
    event_count: int = 0
    read_count: int = 0


class ProjectDetail(ProjectSummary):
    rate_limit_events: int | None
    rate_limit_reads: int | None
    data_retention_days: int
    usage_today: UsageToday


class UsageHistoryResponse(BaseModel):
    project_id: str
    usage: list[UsageDay]
