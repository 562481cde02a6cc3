import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import Executable

from agent_analytics.db.adapter import Parameters, Row, StorageAdapter
from agent_analytics.db.base import Base
from agent_analytics.db.dialect import SqlDialect
from agent_analytics.db.embedded import is_memory_url

logger = logging.getLogger(__name__)


class NetworkAdapter(StorageAdapter):
    """Networked store behind SQLAlchemy's asyncio engine (e.g. ``postgresql+asyncpg``).

    A batch is sent inside one ``engine.begin()`` block, so the server sees
    it as a single transaction. An in-memory SQLite URL has exactly one
    connection; calls on it are serialized, otherwise concurrent transactions
    would interleave on that connection.
    """

    def __init__(
        self,
        url: str,
        *,
        pool_size: int = 5,
        max_overflow: int = 10,
        echo: bool = False,
    ):
        kwargs: dict[str, Any] = {}
        self._shared_lock: asyncio.Lock | None = None
        if url.startswith("sqlite"):
            if is_memory_url(url):
                kwargs["poolclass"] = StaticPool
                self._shared_lock = asyncio.Lock()
        else:
            kwargs.update(pool_size=pool_size, max_overflow=max_overflow, pool_pre_ping=True)
        self.engine: AsyncEngine = create_async_engine(url, echo=echo, **kwargs)
        self.dialect = SqlDialect(self.engine.dialect.name)

    @asynccontextmanager
    async def _exclusive(self) -> AsyncIterator[None]:
        if self._shared_lock is None:
            yield
            return
        async with self._shared_lock:
            yield

    async def run(self, statement: Executable, parameters: Parameters | None = None) -> int:
        with self._translate_errors():
            async with self._exclusive(), self.engine.begin() as conn:
                if parameters is None:
                    result = await conn.execute(statement)
                else:
                    result = await conn.execute(statement, parameters)
                return result.rowcount

    async def batch(self, statements: Sequence[Executable]) -> None:
        with self._translate_errors():
            async with self._exclusive(), self.engine.begin() as conn:
                for statement in statements:
                    await conn.execute(statement)

    async def fetch_all(self, statement: Executable) -> list[Row]:
        with self._translate_errors():
            async with self._exclusive(), self.engine.connect() as conn:
                result = await conn.execute(statement)
                return [dict(row._mapping) for row in result]

    async def fetch_one(self, statement: Executable) -> Row | None:
        with self._translate_errors():
            async with self._exclusive(), self.engine.connect() as conn:
                row = (await conn.execute(statement)).first()
                return dict(row._mapping) if row is not None else None

    async def create_schema(self) -> None:
        async with self._exclusive(), self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Network schema ready at %s", self.engine.url.render_as_string())

    async def close(self) -> None:
        await self.engine.dispose()
