"""Storage adapter interface.

Ingestion and queries talk to the database only through these four
primitives. Statements are SQLAlchemy Core executables and rows come back as
plain dicts, so callers never see a driver-specific row or cursor type.
"""

import abc
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any

from sqlalchemy.exc import DBAPIError
from sqlalchemy.sql import Executable

from agent_analytics.db.dialect import SqlDialect

Row = dict[str, Any]
Parameters = Mapping[str, Any] | Sequence[Mapping[str, Any]]


class MissingTableError(Exception):
    """The statement referenced a table that does not exist (yet)."""


class StorageAdapter(abc.ABC):
    """Run mutations and fetch rows against one backing store."""

    dialect: SqlDialect

    @abc.abstractmethod
    async def run(self, statement: Executable, parameters: Parameters | None = None) -> int:
        """Execute one mutation in its own transaction. Returns the rowcount."""

    @abc.abstractmethod
    async def batch(self, statements: Sequence[Executable]) -> None:
        """Execute mutations in order inside a single transaction."""

    @abc.abstractmethod
    async def fetch_all(self, statement: Executable) -> list[Row]:
        """Return every row of a query."""

    @abc.abstractmethod
    async def fetch_one(self, statement: Executable) -> Row | None:
        """Return the first row of a query, or None."""

    @abc.abstractmethod
    async def create_schema(self) -> None:
        """Create any missing tables."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Release pooled connections."""

    @contextmanager
    def _translate_errors(self) -> Iterator[None]:
        try:
            yield
        except DBAPIError as exc:
            if self.dialect.is_missing_table(exc):
                raise MissingTableError(str(exc.orig)) from exc
            raise
