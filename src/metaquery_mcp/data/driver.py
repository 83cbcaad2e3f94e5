"""SQL driver used by the inspector and the data access service.

The driver is the boundary to the database: it accepts SQLAlchemy Core
statements (or ``text()`` clauses with bound parameters) and returns rows or
affected-row counts. ``SqlAlchemyDriver`` runs statements on a SQLAlchemy
``AsyncEngine``; each standalone statement runs in its own short
transaction, and ``transaction()`` yields a driver bound to one connection
so a fixed sequence of statements commits or rolls back together.

Result row keys are camelized (``start_date`` -> ``startDate``,
``course__name`` -> ``course_name``) so callers read rows with the same
field names they filter and select with.

Database errors propagate unchanged; there are no retries.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, Protocol

from fastmcp.utilities.logging import get_logger
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
from sqlalchemy.sql.expression import Executable

from metaquery_mcp.schema.utils import to_camel

_logger = get_logger(__name__)

Row = dict[str, Any]


class SqlDriver(Protocol):
    """Executes SQLAlchemy statements against the database."""

    async def fetch(self, statement: Executable) -> list[Row]:
        """Run a statement and return its rows with camelCase keys."""
        ...

    async def execute(self, statement: Executable) -> int:
        """Run a statement and return the affected-row count."""
        ...

    def transaction(self) -> AbstractAsyncContextManager[SqlDriver]:
        """Open a transaction; statements on the yielded driver share it."""
        ...


def camelize_row(row: dict[str, Any]) -> Row:
    return {to_camel(key): value for key, value in row.items()}


class SqlAlchemyDriver:
    """``SqlDriver`` backed by a SQLAlchemy ``AsyncEngine``."""

    def __init__(self, engine: AsyncEngine, connection: AsyncConnection | None = None) -> None:
        self.engine = engine
        self._connection = connection

    async def fetch(self, statement: Executable) -> list[Row]:
        async with self._connect() as conn:
            _logger.debug("SQL: %s", statement)
            result = await conn.execute(statement)
            return [camelize_row(dict(row)) for row in result.mappings()]

    async def execute(self, statement: Executable) -> int:
        async with self._connect() as conn:
            _logger.debug("SQL: %s", statement)
            result = await conn.execute(statement)
            return result.rowcount

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SqlAlchemyDriver]:
        if self._connection is not None:
            # already inside a transaction: join it
            yield self
            return
        async with self.engine.begin() as conn:
            yield SqlAlchemyDriver(self.engine, conn)

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[AsyncConnection]:
        if self._connection is not None:
            yield self._connection
            return
        async with self.engine.begin() as conn:
            yield conn
