from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from agent_analytics.db.base import Base


class Usage(Base):
    """Per-project, per-day counters. Created lazily, only ever incremented."""

    __tablename__ = "usage"

    project_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    date: Mapped[str] = mapped_column(String(10), primary_key=True)
    event_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    read_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
