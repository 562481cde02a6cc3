from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from agent_analytics.db.base import Base
from agent_analytics.models.base import TimestampMixin


class Project(Base, TimestampMixin):
    """Project model: one tenant, with a public ingest token and a private read key."""

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    project_token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    api_key: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    allowed_origins: Mapped[str] = mapped_column(String(1024), nullable=False, default="*")
    tier: Mapped[str] = mapped_column(String(32), nullable=False, default="free")
    rate_limit_events: Mapped[int | None] = mapped_column(Integer, nullable=True, default=10000)
    rate_limit_reads: Mapped[int | None] = mapped_column(Integer, nullable=True, default=100)
    data_retention_days: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
