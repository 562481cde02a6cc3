from typing import Any

from sqlalchemy import BigInteger, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from agent_analytics.db.base import Base


class Event(Base):
    """Raw event: append-only, high volume, never updated."""

    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    project_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event: Mapped[str] = mapped_column(String(255), nullable=False)
    properties: Mapped[dict[str, Any] | None] = mapped_column(
        JSON(none_as_null=True), nullable=True
    )
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    # UTC calendar date of ``timestamp``, denormalized for range scans
    date: Mapped[str] = mapped_column(String(10), nullable=False)

    __table_args__ = (
        Index("idx_events_project_date", "project_id", "date"),
        Index("idx_events_project_event", "project_id", "event"),
        Index("idx_events_project_user", "project_id", "user_id"),
        Index("idx_events_session", "session_id"),
        Index("idx_events_timestamp", "timestamp"),
    )


class AnalyticsSession(Base):
    """One row per client session, merged incrementally as its events arrive."""

    __tablename__ = "sessions"

    session_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    project_id: Mapped[str] = mapped_column(String(255), nullable=False)
    start_time: Mapped[int] = mapped_column(BigInteger, nullable=False)
    end_time: Mapped[int] = mapped_column(BigInteger, nullable=False)
    duration: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    entry_page: Mapped[str | None] = mapped_column(Text, nullable=True)
    exit_page: Mapped[str | None] = mapped_column(Text, nullable=True)
    event_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_bounce: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    date: Mapped[str] = mapped_column(String(10), nullable=False)

    __table_args__ = (Index("idx_sessions_project_date", "project_id", "date"),)
