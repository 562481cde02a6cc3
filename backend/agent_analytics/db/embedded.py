import logging
from collections.abc import Sequence
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import Executable

from agent_analytics.db.adapter import Parameters, Row, StorageAdapter
from agent_analytics.db.base import Base
from agent_analytics.db.dialect import SqlDialect
from agent_analytics.models import event as _event_models  # noqa: F401
from agent_analytics.models import project as _project_models  # noqa: F401
from agent_analytics.models import usage as _usage_models  # noqa: F401

logger = logging.getLogger(__name__)


def is_memory_url(url: str) -> bool:
    return url.rstrip("/") in ("sqlite:", "sqlite+aiosqlite:") or ":memory:" in url


def _set_sqlite_pragmas(dbapi_connection: Any, _connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


class EmbeddedAdapter(StorageAdapter):
    """Single-process SQLite store behind a synchronous SQLAlchemy engine.

    Each primitive opens its own ``engine.begin()`` transaction and runs to
    completion before returning. The calls are made inline, so each one
    blocks the event loop while SQLite works. In exchange, no two primitives
    ever overlap, and that is what makes the shared in-memory connection
    safe. Deployments that need concurrent request handling under write load
    use the network adapter instead.
    """

    def __init__(self, url: str = "sqlite:///./analytics.db", *, echo: bool = False):
        if not url.startswith("sqlite"):
            raise ValueError("EmbeddedAdapter requires a sqlite:// URL")
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if is_memory_url(url):
            # One shared connection, otherwise every checkout sees an empty database
            kwargs["poolclass"] = StaticPool
        self.engine: Engine = create_engine(url, echo=echo, **kwargs)
        event.listen(self.engine, "connect", _set_sqlite_pragmas)
        self.dialect = SqlDialect(self.engine.dialect.name)

    async def run(self, statement: Executable, parameters: Parameters | None = None) -> int:
        with self._translate_errors(), self.engine.begin() as conn:
            if parameters is None:
                result = conn.execute(statement)
            else:
                result = conn.execute(statement, parameters)
            return result.rowcount

    async def batch(self, statements: Sequence[Executable]) -> None:
        with self._translate_errors(), self.engine.begin() as conn:
            for statement in statements:
                conn.execute(statement)

    async def fetch_all(self, statement: Executable) -> list[Row]:
        with self._translate_errors(), self.engine.connect() as conn:
            return [dict(row._mapping) for row in conn.execute(statement)]

    async def fetch_one(self, statement: Executable) -> Row | None:
        with self._translate_errors(), self.engine.connect() as conn:
            row = conn.execute(statement).first()
            return dict(row._mapping) if row is not None else None

    async def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)
        logger.info("Embedded schema ready at %s", self.engine.url)

    async def close(self) -> None:
        self.engine.dispose()
