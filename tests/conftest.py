from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import json
from typing import Any

import pytest
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from sqlalchemy.sql.expression import Executable

from metaquery_mcp.schema.inspector import build_table_descriptors
from metaquery_mcp.schema.models import TableDescriptor
from metaquery_mcp.schema.registry import SchemaRegistry


def _col(name: str, udt: str, *, nullable: bool = False) -> dict[str, Any]:
    return {
        "column_name": name,
        "column_default": None,
        "is_nullable": "YES" if nullable else "NO",
        "data_type": udt,
        "character_maximum_length": None,
        "udt_name": udt,
        "is_identity": "NO",
        "is_updatable": "YES",
    }


def catalog_columns() -> list[dict[str, Any]]:
    """Column rows as the catalog query returns them (json_agg as text)."""
    tables = {
        "course": [
            _col("id", "int4"),
            _col("name", "text"),
            _col("updated_on", "timestamptz"),
        ],
        "program_textbook": [
            _col("id", "int4"),
            _col("program_id", "int4"),
            _col("textbook_id", "int4"),
        ],
        "student": [
            _col("id", "int4"),
            _col("name", "varchar"),
            _col("age", "int4", nullable=True),
            _col("start_date", "date", nullable=True),
            _col("course_id", "int4", nullable=True),
        ],
    }
    return [{"tableName": name, "columns": json.dumps(cols)} for name, cols in tables.items()]


def catalog_primary_keys() -> list[dict[str, Any]]:
    return [
        {"tableName": "course", "columnName": "id"},
        {"tableName": "program_textbook", "columnName": "id"},
        {"tableName": "student", "columnName": "id"},
    ]


def catalog_foreign_keys() -> list[dict[str, Any]]:
    return [
        {
            "tableSchema": "public",
            "constraintName": "student_course_id_fkey",
            "tableName": "student",
            "columnName": "course_id",
            "foreignTableSchema": "public",
            "foreignTableName": "course",
            "foreignColumnName": "id",
        }
    ]


def build_catalog() -> dict[str, TableDescriptor]:
    columns = [{**row, "columns": json.loads(row["columns"])} for row in catalog_columns()]
    return build_table_descriptors(columns, catalog_primary_keys(), catalog_foreign_keys())


_PG = postgresql.dialect(paramstyle="named")


def render(statement: sa.ClauseElement) -> str:
    """PostgreSQL SQL of a statement with values inlined, on one line."""
    sql = str(statement.compile(dialect=_PG, compile_kwargs={"literal_binds": True}))
    return " ".join(sql.split())


class RecordingDriver:
    """SqlDriver fake: records executed statements and replays queued results."""

    def __init__(self, results: list[Any] | None = None) -> None:
        self.results = list(results or [])
        self.statements: list[Executable] = []
        self.transactions = 0

    def _next(self, default: Any) -> Any:
        return self.results.pop(0) if self.results else default

    async def fetch(self, statement: Executable) -> list[dict[str, Any]]:
        self.statements.append(statement)
        return self._next([])

    async def execute(self, statement: Executable) -> int:
        self.statements.append(statement)
        return self._next(0)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[RecordingDriver]:
        self.transactions += 1
        yield self

    @property
    def sql(self) -> list[str]:
        return [render(statement) for statement in self.statements]


@pytest.fixture
def tables() -> dict[str, TableDescriptor]:
    return build_catalog()


@pytest.fixture
def registry(tables: dict[str, TableDescriptor]) -> SchemaRegistry:
    return SchemaRegistry.build(tables)


@pytest.fixture
def catalog_rows() -> tuple[list[dict[str, Any]], list[dict[str, Any]], list[dict[str, Any]]]:
    """Columns, primary keys and foreign keys, in ``fetch_all`` query order."""
    return catalog_columns(), catalog_primary_keys(), catalog_foreign_keys()


@pytest.fixture
def driver_factory() -> type[RecordingDriver]:
    return RecordingDriver


@pytest.fixture
def sql() -> Any:
    """Renders a statement or condition as one line of PostgreSQL SQL."""
    return render
