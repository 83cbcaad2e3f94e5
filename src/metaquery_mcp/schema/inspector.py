"""Catalog inspection for the schema registry.

This module reads ``information_schema`` for one schema and turns the result
into ``TableDescriptor`` records: columns with their underlying types,
the primary key, and many-to-one relations derived from foreign keys. Each
table also receives a unique abbreviation used as its SQL alias.

Tables without a primary key cannot be addressed by id and are left out;
relations pointing at such a table are dropped as well.

Classes:
- SchemaInspector: runs the catalog queries through a SqlDriver
- AbbreviationAllocator: hands out unique table abbreviations

Functions:
- build_table_descriptors: assemble descriptors from raw catalog rows
- relation_name: derive a relation name from a foreign-key column
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from fastmcp.utilities.logging import get_logger
import sqlalchemy as sa

from .constants import ColumnType, Constants
from .exceptions import InspectionError
from .models import ColumnDescriptor, RelationDescriptor, TableDescriptor
from .utils import abbreviate, group_by, group_by_single, to_pascal

if TYPE_CHECKING:
    from metaquery_mcp.data.driver import Row, SqlDriver

# Logger
_logger = get_logger("metaquery.inspector")


def _tables_query(schema: str) -> sa.TextClause:
    return sa.text(
        "SELECT table_name\n"
        "FROM information_schema.tables\n"
        "WHERE table_schema = :schema AND table_type = 'BASE TABLE'\n"
        "ORDER BY table_name ASC"
    ).bindparams(schema=schema)


def _columns_query(schema: str) -> sa.TextClause:
    return sa.text(
        "SELECT table_name, json_agg(json_build_object(\n"
        "'column_name', column_name,\n"
        "'column_default', column_default,\n"
        "'is_nullable', is_nullable,\n"
        "'data_type', data_type,\n"
        "'character_maximum_length', character_maximum_length,\n"
        "'udt_name', udt_name,\n"
        "'is_identity', is_identity,\n"
        "'is_updatable', is_updatable) ORDER BY ordinal_position) AS columns\n"
        "FROM information_schema.columns\n"
        "WHERE table_schema = :schema\n"
        "GROUP BY table_name ORDER BY table_name ASC"
    ).bindparams(schema=schema)


def _primary_keys_query(schema: str) -> sa.TextClause:
    return sa.text(
        "SELECT tc.table_name, kc.column_name\n"
        "FROM information_schema.table_constraints tc\n"
        "JOIN information_schema.key_column_usage kc\n"
        "    ON kc.table_name = tc.table_name\n"
        "    AND kc.table_schema = tc.table_schema\n"
        "    AND kc.constraint_name = tc.constraint_name\n"
        "WHERE tc.constraint_type = 'PRIMARY KEY' AND tc.table_schema = :schema\n"
        "ORDER BY 1, 2"
    ).bindparams(schema=schema)


def _foreign_keys_query(schema: str) -> sa.TextClause:
    return sa.text(
        "SELECT tc.table_schema, tc.constraint_name, tc.table_name, kcu.column_name,\n"
        "    ccu.table_schema AS foreign_table_schema,\n"
        "    ccu.table_name AS foreign_table_name,\n"
        "    ccu.column_name AS foreign_column_name\n"
        "FROM information_schema.table_constraints AS tc\n"
        "JOIN information_schema.key_column_usage AS kcu\n"
        "    ON tc.constraint_name = kcu.constraint_name\n"
        "    AND tc.table_schema = kcu.table_schema\n"
        "JOIN information_schema.constraint_column_usage AS ccu\n"
        "    ON ccu.constraint_name = tc.constraint_name\n"
        "WHERE tc.constraint_type = 'FOREIGN KEY' AND tc.table_schema = :schema\n"
        "ORDER BY tc.table_name, kcu.column_name"
    ).bindparams(schema=schema)


class SchemaInspector:
    """Reads table, column and key metadata for one schema.

    Attributes:
        driver: SQL driver the catalog queries run on
        schema: Schema to inspect
    """

    def __init__(self, driver: SqlDriver, schema: str = Constants.DEFAULT_SCHEMA) -> None:
        self.driver = driver
        self.schema = schema

    async def list_tables(self) -> list[str]:
        """List base table names in the schema, sorted by name."""
        rows = await self._fetch("tables", _tables_query(self.schema))
        return [row["tableName"] for row in rows]

    async def fetch_columns(self) -> list[Row]:
        """Rows of ``{tableName, columns}`` with the column list decoded."""
        rows = await self._fetch("columns", _columns_query(self.schema))
        decoded = []
        for row in rows:
            columns = row["columns"]
            if isinstance(columns, str):
                columns = json.loads(columns)
            decoded.append({**row, "columns": columns or []})
        return decoded

    async def fetch_primary_keys(self) -> list[Row]:
        return await self._fetch("primary keys", _primary_keys_query(self.schema))

    async def fetch_foreign_keys(self) -> list[Row]:
        return await self._fetch("foreign keys", _foreign_keys_query(self.schema))

    async def fetch_all(self) -> dict[str, TableDescriptor]:
        """Inspect the schema and return descriptors keyed by table name."""
        _logger.info("Inspecting schema %s", self.schema)
        tables = build_table_descriptors(
            columns=await self.fetch_columns(),
            primary_keys=await self.fetch_primary_keys(),
            foreign_keys=await self.fetch_foreign_keys(),
        )
        _logger.info("Inspected schema %s: %d tables", self.schema, len(tables))
        return tables

    async def _fetch(self, what: str, statement: sa.TextClause) -> list[Row]:
        try:
            return await self.driver.fetch(statement)
        except Exception as exc:
            msg = f"Failed to inspect {what} of schema {self.schema}: {exc}"
            raise InspectionError(msg) from exc


class AbbreviationAllocator:
    """Hands out table abbreviations that are unique within one inspection.

    The first table to claim an abbreviation keeps it; later colliding tables
    get the abbreviation suffixed with a counter shared across all
    collisions (``s``, ``s1``, ``s2``...).
    """

    def __init__(self) -> None:
        self._counter = 1
        self._claimed: dict[str, str] = {}

    def allocate(self, table_name: str) -> str:
        abbr = abbreviate(table_name)
        owner = self._claimed.get(abbr)
        if owner is not None and owner != table_name:
            abbr = f"{abbr}{self._counter}"
            self._counter += 1
        self._claimed[abbr] = table_name
        return abbr


def relation_name(key_name: str, foreign_table_name: str) -> str:
    """Relation name derived from a foreign-key column (snake_case).

    ``course_id`` -> ``course``, ``country_code`` -> ``country``; other
    columns become ``<key>_<foreign table>``.
    """
    for suffix in Constants.RELATION_KEY_SUFFIXES:
        if key_name.endswith(suffix) and len(key_name) > len(suffix):
            return key_name[: -len(suffix)]
    return f"{key_name}_{foreign_table_name}"


def build_table_descriptors(
    columns: list[dict[str, Any]],
    primary_keys: list[dict[str, Any]],
    foreign_keys: list[dict[str, Any]],
) -> dict[str, TableDescriptor]:
    """Assemble descriptors from camelCase catalog rows.

    Args:
        columns: ``{tableName, columns: [{column_name, udt_name, is_nullable, ...}]}``
        primary_keys: ``{tableName, columnName}``
        foreign_keys: ``{tableName, columnName, foreignTableName, foreignColumnName}``

    Returns:
        Descriptors keyed by table name, for tables with a primary key only
    """
    pk_by_table = group_by_single(primary_keys, lambda row: row["tableName"])
    fk_by_table = group_by(foreign_keys, lambda row: row["tableName"])
    columns_by_table = group_by_single(columns, lambda row: row["tableName"])

    allocator = AbbreviationAllocator()
    tables: dict[str, TableDescriptor] = {}
    for table_name in sorted(pk_by_table):
        column_rows = columns_by_table.get(table_name, {}).get("columns", [])
        tables[table_name] = TableDescriptor(
            name=table_name,
            abbreviation=allocator.allocate(table_name),
            entity_name=to_pascal(table_name),
            primary_key=pk_by_table[table_name]["columnName"],
            columns=[
                ColumnDescriptor(
                    name=col["column_name"],
                    alias=col["column_name"],
                    type=ColumnType.from_udt(col["udt_name"]),
                    nullable=col["is_nullable"] == "YES",
                )
                for col in column_rows
            ],
        )

    for table_name, table in tables.items():
        for fk in fk_by_table.get(table_name, []):
            foreign_table = fk["foreignTableName"]
            if foreign_table not in tables:
                _logger.warning(
                    "Dropping relation %s.%s: referenced table %s has no primary key",
                    table_name,
                    fk["columnName"],
                    foreign_table,
                )
                continue
            table.relations.append(
                RelationDescriptor(
                    name=relation_name(fk["columnName"], foreign_table),
                    key_name=fk["columnName"],
                    foreign_table_name=foreign_table,
                    foreign_key_name=fk["foreignColumnName"],
                )
            )

    skipped = [row["tableName"] for row in columns if row["tableName"] not in tables]
    if skipped:
        _logger.info("Skipped tables without a primary key: %s", ", ".join(sorted(skipped)))

    for table in tables.values():
        table.rebuild_lookups()
    return tables
