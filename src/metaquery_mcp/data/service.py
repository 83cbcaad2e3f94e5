"""Data access service: CRUD, batch writes and transactions by entity type.

``DataAccessService`` composes statements with ``QueryBuilder`` and runs them
through a ``SqlDriver``. Every public operation is one logical unit of work:
it issues a single statement, or opens a transaction when it needs several
statements to observe the same snapshot (find-and-count) or to succeed or
fail together (chunked batch writes, many-to-many synchronization).

Read options (select, order_by, load) are filtered leniently: unknown names
are dropped. Filters and write payloads are strict and raise.

Example:
    >>> service = DataAccessService(SqlAlchemyDriver(engine), registry)
    >>> adults = await service.find_many(
    ...     "Student", where={"age": Number.gt(18)}, order_by="-name", take=10, skip=5
    ... )
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
import json
from typing import Any

from fastmcp.utilities.logging import get_logger

from metaquery_mcp.query.builder import Filter, QueryBuilder
from metaquery_mcp.query.predicates import Value
from metaquery_mcp.query.validator import Load, OrderBy, validate_options
from metaquery_mcp.schema.exceptions import InvalidInputError, InvalidRelationPayloadError
from metaquery_mcp.schema.registry import EntityRef, SchemaRegistry
from metaquery_mcp.schema.utils import exclude, reconstruct_partial_load

from .driver import Row, SqlDriver, camelize_row

_logger = get_logger(__name__)


@dataclass(frozen=True)
class FindAndCountResult:
    """A page of rows together with the total matching the filter."""

    data: list[Row]
    total: int


@dataclass(frozen=True)
class ManyToManyResult:
    """Association rows inserted and deleted by a many-to-many update."""

    added: int = 0
    deleted: int = 0


class DataAccessService:
    """Entity-typed CRUD over a ``SqlDriver`` and a ``SchemaRegistry``."""

    def __init__(self, driver: SqlDriver, registry: SchemaRegistry) -> None:
        self.driver = driver
        self.registry = registry
        self.builder = QueryBuilder(registry)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[DataAccessService]:
        """Yield a service whose statements all run in one transaction."""
        async with self.driver.transaction() as tx:
            yield DataAccessService(tx, self.registry)

    # ---- reads --------------------------------------------------------------
    async def find_all(
        self,
        entity: EntityRef,
        *,
        select: list[str] | None = None,
        order_by: OrderBy | None = None,
    ) -> list[Row]:
        opts = validate_options(
            self.registry, self.registry.require(entity), select=select, order_by=order_by
        )
        statement = self.builder.build_find(entity, columns=opts.select, order_by=opts.order_by)
        return await self.driver.fetch(statement)

    async def find_many(
        self,
        entity: EntityRef,
        *,
        where: Filter | None = None,
        select: list[str] | None = None,
        order_by: OrderBy | None = None,
        take: int | None = None,
        skip: int | None = None,
    ) -> list[Row]:
        opts = validate_options(
            self.registry, self.registry.require(entity), select=select, order_by=order_by
        )
        statement = self.builder.build_find(
            entity,
            columns=opts.select,
            where=where,
            order_by=opts.order_by,
            take=take,
            skip=skip,
        )
        return await self.driver.fetch(statement)

    async def count(self, entity: EntityRef, *, where: Filter | None = None) -> int:
        rows = await self.driver.fetch(self.builder.build_count(entity, where))
        return int(rows[0]["total"])

    async def find_and_count(
        self,
        entity: EntityRef,
        *,
        where: Filter | None = None,
        select: list[str] | None = None,
        order_by: OrderBy | None = None,
        take: int | None = None,
        skip: int | None = None,
    ) -> FindAndCountResult:
        """Page of rows and total count read within one transaction."""
        b = self.builder
        opts = validate_options(
            self.registry, self.registry.require(entity), select=select, order_by=order_by
        )
        data_statement = b.build_find(
            entity,
            columns=opts.select,
            where=where,
            order_by=opts.order_by,
            take=take,
            skip=skip,
        )
        count_statement = b.build_count(entity, where)

        async with self.driver.transaction() as tx:
            data = await tx.fetch(data_statement)
            counted = await tx.fetch(count_statement)
        return FindAndCountResult(data=data, total=int(counted[0]["total"]))

    async def find_first(
        self,
        entity: EntityRef,
        *,
        where: Filter | None = None,
        select: list[str] | None = None,
        load: Load | None = None,
        order_by: OrderBy | None = None,
    ) -> Row | None:
        """First matching row, with requested relations nested into it."""
        b = self.builder
        opts = validate_options(
            self.registry,
            self.registry.require(entity),
            select=select,
            order_by=order_by,
            load=load,
        )
        statement = b.build_find(
            entity,
            columns=opts.select,
            load=opts.load,
            where=where,
            order_by=opts.order_by,
            take=1,
        )
        rows = await self.driver.fetch(statement)
        if not rows:
            return None

        row = rows[0]
        if not b.has_load_relations(opts.load):
            return row
        return reconstruct_partial_load(_decode_full_loads(row, opts.load))

    # ---- deletes ------------------------------------------------------------
    async def delete(self, entity: EntityRef, *, where: Filter) -> Row | None:
        """Delete matching rows and return the first deleted row."""
        b = self.builder
        statement = b.build_delete(entity, where).returning(*b.build_returning_all(entity))
        rows = await self.driver.fetch(statement)
        return rows[0] if rows else None

    async def delete_many(self, entity: EntityRef, *, where: Filter) -> int:
        return await self.driver.execute(self.builder.build_delete(entity, where))

    # ---- inserts ------------------------------------------------------------
    async def insert(self, entity: EntityRef, data: Mapping[str, Any]) -> Row:
        """Insert one row and return it with every column."""
        b = self.builder
        statement = b.build_insert(entity, data).returning(*b.build_returning_all(entity))
        rows = await self.driver.fetch(statement)
        return rows[0]

    async def insert_batch(
        self,
        entity: EntityRef,
        rows: Sequence[Mapping[str, Any]],
        *,
        batch_size: int | None = None,
    ) -> int:
        """Insert rows in chunks of ``batch_size`` inside one transaction."""
        statements = self.builder.build_batch_insert(entity, rows, batch_size)
        return await self._execute_all(statements)

    # ---- updates ------------------------------------------------------------
    async def update(
        self,
        entity: EntityRef,
        data: Mapping[str, Any],
        *,
        where: Filter | None = None,
    ) -> Row | None:
        """Update by filter, or by the primary key carried in ``data``."""
        b = self.builder
        if where is None:
            table = self.registry.require(entity)
            id_key = table.primary_key_field
            if data.get(id_key) is None:
                msg = f"Id {id_key} not found in single update on {table.entity_name} (without WHERE)"
                raise InvalidInputError(msg)
            where = {id_key: data[id_key]}
            data = {key: value for key, value in data.items() if key != id_key}

        statement = b.build_update(entity, data, where).returning(*b.build_returning_all(entity))
        rows = await self.driver.fetch(statement)
        return rows[0] if rows else None

    async def update_many(
        self, entity: EntityRef, data: Mapping[str, Any], *, where: Filter
    ) -> int:
        return await self.driver.execute(self.builder.build_update(entity, data, where))

    async def update_batch(
        self,
        entity: EntityRef,
        rows: Sequence[Mapping[str, Any]],
        *,
        batch_size: int | None = None,
    ) -> int:
        """Update rows by primary key in chunks of ``batch_size`` inside one transaction."""
        statements = self.builder.build_batch_update(entity, rows, batch_size)
        return await self._execute_all(statements)

    async def save(self, entity: EntityRef, data: Mapping[str, Any]) -> Row | None:
        """Insert when the primary key is absent or null, update otherwise."""
        id_key = self.registry.require(entity).primary_key_field
        if data.get(id_key) is None:
            payload = {key: value for key, value in data.items() if key != id_key}
            return await self.insert(entity, payload)
        return await self.update(entity, data)

    async def update_many_to_many_relation(
        self, entity: EntityRef, data: Mapping[str, Any]
    ) -> ManyToManyResult:
        """Synchronize the associations of one main key with a list of foreign keys.

        Given ``{"programId": 1, "textbookId": [1, 3, 7]}`` on an association
        entity currently holding textbooks 1..5 for program 1, inserts
        ``(1, 7)`` and deletes ``(1, 2)``, ``(1, 4)`` and ``(1, 5)``.
        """
        main_key, main_value, foreign_key, foreign_values = _split_relation_payload(data)

        async with self.transaction() as tx:
            current = await tx.find_many(
                entity, select=[main_key, foreign_key], where={main_key: main_value}
            )
            current_values = [row[foreign_key] for row in current]

            added = deleted = 0
            to_add = exclude(foreign_values, current_values)
            if to_add:
                added = await tx.insert_batch(
                    entity, [{foreign_key: value, main_key: main_value} for value in to_add]
                )

            to_delete = exclude(current_values, foreign_values)
            if to_delete:
                deleted = await tx.delete_many(
                    entity, where={main_key: main_value, foreign_key: Value.in_(to_delete)}
                )

        _logger.debug(
            "Many-to-many %s.%s=%s: added %d, deleted %d",
            entity,
            main_key,
            main_value,
            added,
            deleted,
        )
        return ManyToManyResult(added=added, deleted=deleted)

    async def _execute_all(self, statements: list[Any]) -> int:
        total = 0
        async with self.driver.transaction() as tx:
            for statement in statements:
                total += await tx.execute(statement)
        return total


def _split_relation_payload(data: Mapping[str, Any]) -> tuple[str, Any, str, list[Any]]:
    scalars = [(k, v) for k, v in data.items() if not isinstance(v, list | tuple)]
    lists = [(k, list(v)) for k, v in data.items() if isinstance(v, list | tuple)]
    if len(scalars) != 1:
        msg = "Invalid many-to-many data: expected exactly one main key"
        raise InvalidRelationPayloadError(msg)
    if len(lists) != 1:
        msg = "Invalid many-to-many data: expected exactly one list of foreign keys"
        raise InvalidRelationPayloadError(msg)
    (main_key, main_value), (foreign_key, foreign_values) = scalars[0], lists[0]
    return main_key, main_value, foreign_key, foreign_values


def _decode_full_loads(row: Row, load: Load | None) -> Row:
    if isinstance(load, list):
        names = load
    elif load:
        names = [name for name, value in load.items() if value is True]
    else:
        names = []

    decoded = dict(row)
    for name in names:
        value = decoded.get(name)
        if isinstance(value, str):
            value = json.loads(value)
        if isinstance(value, dict):
            decoded[name] = camelize_row(value)
    return decoded
