"""Registry-driven SQL composition on SQLAlchemy Core.

``QueryBuilder`` turns an entity type plus caller options into SQLAlchemy
Core statements: SELECT projections (with full and partial relation loads),
FROM with relation joins, WHERE from a filter tree, ORDER BY, LIMIT/OFFSET,
and the INSERT/UPDATE/DELETE statements used by the data access service,
including chunked multi-row batch writes.

Every registered table is mirrored as a lightweight ``sa.table`` whose
columns carry the SQLAlchemy type of their underlying column type. Reads
go through an alias named after the table abbreviation; writes target the
bare table. Joined relations get their own alias, named after the foreign
abbreviation, or ``<abbreviation>_<relation>`` for self-references and for
a second relation to the same foreign table.

Filter trees:
    A filter maps camelCase field names to a scalar (equality), ``None``
    (IS NULL) or a ``Predicate``. The reserved keys ``AND`` and ``OR`` hold
    lists of nested filters. Entries are AND-combined at every level. An
    empty ``AND`` list lowers to ``TRUE``, an empty ``OR`` list (or an empty
    member of an ``OR`` group) to ``FALSE``.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any
from uuid import UUID

import sqlalchemy as sa

from metaquery_mcp.schema.constants import ColumnType, Constants
from metaquery_mcp.schema.exceptions import InvalidInputError, UnknownFieldError
from metaquery_mcp.schema.models import ColumnDescriptor, RelationDescriptor, TableDescriptor
from metaquery_mcp.schema.registry import EntityRef, SchemaRegistry
from metaquery_mcp.schema.utils import SortOrder, chunk, from_camel, parse_sort

from .predicates import Condition, LowerContext, Predicate, TimestampNow
from .validator import Load, OrderBy

Filter = Mapping[str, Any]

_SCALAR_TYPES = (str, int, float, bool, Decimal, date, datetime, time, UUID, bytes)


class QueryBuilder:
    """Compose SQLAlchemy Core statements for registered entities.

    Table clauses and aliases are cached per builder, so every reference to
    a table within one statement resolves to the same FROM element.
    """

    def __init__(self, registry: SchemaRegistry) -> None:
        self.registry = registry
        self._tables: dict[str, sa.TableClause] = {}
        self._aliases: dict[tuple[str, str | None], sa.Alias] = {}

    # ---- tables -------------------------------------------------------------
    def table_clause(self, table: TableDescriptor) -> sa.TableClause:
        """The bare ``sa.table`` mirroring ``table``."""
        clause = self._tables.get(table.name)
        if clause is None:
            columns = [sa.column(col.name, _sql_type(col.type)) for col in table.columns]
            clause = sa.table(table.name, *columns)
            self._tables[table.name] = clause
        return clause

    def alias(self, entity: EntityRef | TableDescriptor) -> sa.Alias:
        """The table aliased to its abbreviation, as read queries use it."""
        table = entity if isinstance(entity, TableDescriptor) else self.registry.require(entity)
        key = (table.name, None)
        if key not in self._aliases:
            self._aliases[key] = self.table_clause(table).alias(table.abbreviation)
        return self._aliases[key]

    def relation_alias(
        self, table: TableDescriptor, relation: RelationDescriptor
    ) -> sa.Alias | None:
        """Alias of the foreign table joined for ``relation``."""
        key = (table.name, relation.name)
        if key in self._aliases:
            return self._aliases[key]

        foreign = self.registry.by_name(relation.foreign_table_name)
        if foreign is None:
            return None

        name = foreign.abbreviation
        earlier = [
            other.foreign_table_name
            for other in table.relations[: _index_of(table, relation)]
        ]
        if foreign.name == table.name or foreign.name in earlier:
            name = f"{foreign.abbreviation}_{relation.name}"
        self._aliases[key] = self.table_clause(foreign).alias(name)
        return self._aliases[key]

    # ---- SELECT -------------------------------------------------------------
    def build_select(
        self,
        entity: EntityRef,
        columns: Sequence[str] | None = None,
        load: Load | None = None,
    ) -> sa.Select[Any]:
        """``SELECT`` of the entity's columns plus requested relation loads.

        Without columns every registered column is selected, labeled with
        its logical name where that differs from the physical name. A list
        ``load`` projects each relation as one ``to_json`` value; a mapping
        ``load`` does the same for ``True`` entries and flattens listed
        columns to ``<relation>__<column>``.
        """
        table = self.registry.require(entity)
        projections = self._select_columns(table, self.alias(table), list(columns or []))
        if isinstance(load, list):
            projections += self._select_full_load(table, load)
        elif load is not None:
            projections += self._select_partial_load(table, load)
        return sa.select(*projections).select_from(self.build_from(entity, load))

    def _select_columns(
        self,
        table: TableDescriptor,
        source: sa.FromClause,
        columns: list[str],
        relation_name: str | None = None,
    ) -> list[sa.ColumnElement[Any]]:
        is_main = relation_name is None
        if is_main and not columns:
            columns = list(table.extra.column_lookup)

        projections: list[sa.ColumnElement[Any]] = []
        for field_name in columns:
            column = self.registry.find_column(table, field_name)
            if column is None:
                continue
            ref = source.c[column.name]
            if not is_main:
                projections.append(ref.label(f"{from_camel(relation_name)}__{column.alias}"))
            elif column.name != column.alias:
                projections.append(ref.label(column.alias))
            else:
                projections.append(ref)
        return projections

    def _to_json(self, table: TableDescriptor, relation_name: str) -> sa.ColumnElement[Any] | None:
        relation = self.registry.find_relation(table, relation_name)
        if relation is None:
            return None
        foreign = self.relation_alias(table, relation)
        if foreign is None:
            return None
        return sa.func.to_json(foreign.table_valued()).label(relation.name)

    def _select_full_load(
        self, table: TableDescriptor, load: list[str]
    ) -> list[sa.ColumnElement[Any]]:
        projections = [self._to_json(table, name) for name in load]
        return [p for p in projections if p is not None]

    def _select_partial_load(
        self, table: TableDescriptor, load: Mapping[str, bool | list[str]]
    ) -> list[sa.ColumnElement[Any]]:
        projections: list[sa.ColumnElement[Any]] = []
        for name, value in load.items():
            relation = self.registry.find_relation(table, name)
            if relation is None:
                continue
            if value is True:
                to_json = self._to_json(table, name)
                if to_json is not None:
                    projections.append(to_json)
            elif isinstance(value, list) and value:
                foreign = self.registry.by_name(relation.foreign_table_name)
                source = self.relation_alias(table, relation)
                if foreign is not None and source is not None:
                    projections += self._select_columns(foreign, source, value, name)
        return projections

    @staticmethod
    def has_load_relations(load: Load | None) -> bool:
        if not load:
            return False
        if isinstance(load, list):
            return True
        return any(value is True or (isinstance(value, list) and value) for value in load.values())

    # ---- FROM ---------------------------------------------------------------
    def build_from(self, entity: EntityRef, load: Load | None = None) -> sa.FromClause:
        """The aliased base table plus one inner join per loaded relation."""
        table = self.registry.require(entity)
        base = self.alias(table)

        if load is None:
            names: list[str] = []
        elif isinstance(load, list):
            names = list(load)
        else:
            names = [
                name
                for name, value in load.items()
                if value is True or (isinstance(value, list) and value)
            ]

        joined: sa.FromClause = base
        seen: set[str] = set()
        for name in names:
            relation = self.registry.find_relation(table, name)
            if relation is None or relation.name in seen:
                continue
            foreign = self.relation_alias(table, relation)
            if foreign is None:
                continue
            seen.add(relation.name)
            joined = joined.join(
                foreign, foreign.c[relation.foreign_key_name] == base.c[relation.key_name]
            )
        return joined

    # ---- WHERE --------------------------------------------------------------
    def build_where(
        self,
        entity: EntityRef,
        where: Filter | None,
        target: sa.FromClause | None = None,
    ) -> Condition | None:
        """Condition lowered from a filter tree; ``None`` for no filter.

        ``target`` defaults to the table's read alias; writes pass the bare
        table.
        """
        if not where:
            return None
        table = self.registry.require(entity)
        if target is None:
            target = self.alias(table)
        return self.build_where_tree(table, target, where)

    def build_where_tree(
        self,
        table: TableDescriptor,
        target: sa.FromClause,
        where: Filter,
        *,
        parent_or: bool = False,
    ) -> Condition | None:
        """Lower one level of a filter tree to a condition."""
        if not where:
            return sa.false() if parent_or else None

        conditions: list[Condition] = []
        for key, value in where.items():
            if key in (Constants.AND, Constants.OR):
                conditions.append(self._lower_group(table, target, key, value))
            else:
                conditions.append(self._condition(table, target, key, value))

        if len(conditions) == 1:
            return conditions[0]
        return sa.and_(*conditions)

    def _lower_group(
        self, table: TableDescriptor, target: sa.FromClause, key: str, members: Any
    ) -> Condition:
        if not isinstance(members, list | tuple):
            msg = f"Invalid filter: {key} expects a list of filters on {table.entity_name}"
            raise InvalidInputError(msg)

        is_or = key == Constants.OR
        if not members:
            return sa.false() if is_or else sa.true()

        lowered = []
        for member in members:
            condition = self.build_where_tree(table, target, member, parent_or=is_or)
            lowered.append(sa.true() if condition is None else condition)
        if len(lowered) == 1:
            return lowered[0]
        return sa.or_(*lowered) if is_or else sa.and_(*lowered)

    def _condition(
        self, table: TableDescriptor, target: sa.FromClause, field_name: str, value: Any
    ) -> Condition:
        column = self.registry.find_column(table, field_name)
        if column is None:
            raise UnknownFieldError(table.entity_name, field_name)

        ctx = LowerContext(table=table, target=target, column_name=column.name)
        if value is None:
            return ctx.column.is_(None)
        if isinstance(value, Predicate):
            return value.lower(ctx)
        if not isinstance(value, _SCALAR_TYPES):
            msg = (
                f"Invalid filter value for {table.entity_name}.{field_name}: "
                f"{type(value).__name__} is neither a scalar, a date nor a predicate"
            )
            raise InvalidInputError(msg)
        return ctx.column == value

    # ---- ORDER / LIMIT ------------------------------------------------------
    def build_order(
        self,
        entity: EntityRef,
        order_by: OrderBy | None,
        target: sa.FromClause | None = None,
    ) -> list[sa.ColumnElement[Any]]:
        """Order items from one or more ``+field`` / ``-field`` specifiers."""
        if order_by is None:
            return []
        table = self.registry.require(entity)
        if target is None:
            target = self.alias(table)
        specs = [order_by] if isinstance(order_by, str) else list(order_by)

        items = []
        for spec in specs:
            sort = parse_sort(spec)
            if sort is None:
                continue
            column = self.registry.find_column(table, sort.column)
            if column is None:
                continue
            ref = target.c[column.name]
            items.append(ref.asc() if sort.order is SortOrder.ASC else ref.desc())
        return items

    @staticmethod
    def build_limit_offset(
        statement: sa.Select[Any], take: int | None = None, skip: int | None = None
    ) -> sa.Select[Any]:
        if take is not None:
            statement = statement.limit(take)
        if skip is not None:
            statement = statement.offset(skip)
        return statement

    def build_count(self, entity: EntityRef, where: Filter | None = None) -> sa.Select[Any]:
        """``SELECT count(*) AS total`` over the filtered base table."""
        statement = sa.select(sa.func.count().label("total")).select_from(
            self.build_from(entity)
        )
        condition = self.build_where(entity, where)
        return statement if condition is None else statement.where(condition)

    def build_find(
        self,
        entity: EntityRef,
        *,
        columns: Sequence[str] | None = None,
        load: Load | None = None,
        where: Filter | None = None,
        order_by: OrderBy | None = None,
        take: int | None = None,
        skip: int | None = None,
    ) -> sa.Select[Any]:
        """Full read statement: select, joins, filter, order and paging."""
        statement = self.build_select(entity, columns, load)
        condition = self.build_where(entity, where)
        if condition is not None:
            statement = statement.where(condition)
        statement = statement.order_by(*self.build_order(entity, order_by))
        return self.build_limit_offset(statement, take, skip)

    # ---- writes -------------------------------------------------------------
    def preprocess_data(self, table: TableDescriptor, data: Mapping[str, Any]) -> dict[str, Any]:
        """Copy of ``data`` with the updated-at field stamped, if declared."""
        stamped = dict(data)
        if table.extra.updated_at_field is not None:
            stamped[table.extra.updated_at_field] = TimestampNow()
        return stamped

    def build_data(self, entity: EntityRef, data: Mapping[str, Any]) -> dict[str, Any]:
        """Map camelCase fields to column names, dropping unknown fields."""
        table = self.registry.require(entity)
        out: dict[str, Any] = {}
        for field_name, value in data.items():
            column = self.registry.find_column(table, field_name)
            if column is not None:
                out[column.name] = value
        return out

    def build_insert(self, entity: EntityRef, data: Mapping[str, Any]) -> sa.Insert:
        """Single-row ``INSERT`` (without RETURNING)."""
        table = self.registry.require(entity)
        row = self.build_data(entity, self.preprocess_data(table, data))
        statement = sa.insert(self.table_clause(table))
        if not row:
            return statement
        return statement.values({name: _value(value) for name, value in row.items()})

    def build_update_set(self, entity: EntityRef, data: Mapping[str, Any]) -> dict[str, Any]:
        """Column values of an update; stamps the updated-at field."""
        table = self.registry.require(entity)
        if not data:
            msg = f"Update empty data on {table.entity_name}"
            raise InvalidInputError(msg)

        values: dict[str, Any] = {}
        for field_name, value in self.preprocess_data(table, data).items():
            column = self.registry.find_column(table, field_name)
            if column is None:
                raise UnknownFieldError(table.entity_name, field_name)
            values[column.name] = _update_value(table, field_name, value)
        return values

    def build_update(
        self, entity: EntityRef, data: Mapping[str, Any], where: Filter | None = None
    ) -> sa.Update:
        table = self.registry.require(entity)
        target = self.table_clause(table)
        statement = sa.update(target).values(self.build_update_set(entity, data))
        condition = self.build_where(entity, where, target)
        return statement if condition is None else statement.where(condition)

    def build_delete(self, entity: EntityRef, where: Filter | None = None) -> sa.Delete:
        table = self.registry.require(entity)
        target = self.table_clause(table)
        statement = sa.delete(target)
        condition = self.build_where(entity, where, target)
        return statement if condition is None else statement.where(condition)

    def build_returning_all(self, entity: EntityRef) -> list[sa.ColumnElement[Any]]:
        """Every column for ``RETURNING``, labeled with its logical name."""
        table = self.registry.require(entity)
        target = self.table_clause(table)
        items: list[sa.ColumnElement[Any]] = []
        for column in table.columns:
            ref = target.c[column.name]
            items.append(ref.label(column.alias) if column.alias != column.name else ref)
        return items

    # ---- batches ------------------------------------------------------------
    def build_batch_insert(
        self,
        entity: EntityRef,
        rows: Sequence[Mapping[str, Any]],
        batch_size: int | None = None,
    ) -> list[sa.Insert]:
        """Multi-row ``INSERT`` statements, one per chunk of ``batch_size`` rows.

        Without a batch size all rows go into a single statement. The
        columns are taken from the first row.
        """
        table = self.registry.require(entity)
        keys, values = _read_batch(table, rows)
        names = [column.name for column in self._batch_columns(table, keys)]
        target = self.table_clause(table)

        return [
            sa.insert(target).values(
                [{name: _value(value) for name, value in zip(names, row)} for row in group]
            )
            for group in _chunks(values, batch_size)
        ]

    def build_batch_update(
        self,
        entity: EntityRef,
        rows: Sequence[Mapping[str, Any]],
        batch_size: int | None = None,
    ) -> list[sa.Update]:
        """``UPDATE ... FROM (VALUES ...) AS d`` statements, one per chunk.

        Every row must carry the primary key. Values travel as text and are
        cast back to each column's underlying type.
        """
        table = self.registry.require(entity)
        id_key = table.primary_key_field
        keys, values = _read_batch(table, rows, id_key=id_key)
        columns = self._batch_columns(table, keys)
        id_column = columns[keys.index(id_key)]
        if len(columns) == 1:
            msg = f"Batch update on {table.entity_name} has no fields besides {id_key}"
            raise InvalidInputError(msg)

        target = self.table_clause(table)
        statements = []
        for group in _chunks(values, batch_size):
            data = sa.values(
                *[sa.column(column.name, sa.Text()) for column in columns], name="d"
            ).data([tuple(_as_text(value) for value in row) for row in group])
            statement = (
                sa.update(target)
                .values(
                    {
                        column.name: sa.cast(data.c[column.name], _sql_type(column.type))
                        for column in columns
                        if column is not id_column
                    }
                )
                .where(
                    target.c[id_column.name]
                    == sa.cast(data.c[id_column.name], _sql_type(id_column.type))
                )
            )
            statements.append(statement)
        return statements

    def _batch_columns(self, table: TableDescriptor, keys: list[str]) -> list[ColumnDescriptor]:
        columns = []
        for key in keys:
            column = self.registry.find_column(table, key)
            if column is None:
                raise UnknownFieldError(table.entity_name, key)
            columns.append(column)
        return columns


def _index_of(table: TableDescriptor, relation: RelationDescriptor) -> int:
    for index, other in enumerate(table.relations):
        if other.name == relation.name:
            return index
    return len(table.relations)


def _sql_type(column_type: ColumnType) -> sa.types.TypeEngine[Any]:
    return Constants.SQL_TYPES[column_type]


def _value(value: Any) -> Any:
    if isinstance(value, TimestampNow):
        return sa.func.now()
    return value


def _update_value(table: TableDescriptor, field_name: str, value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, Predicate):
        if not isinstance(value, TimestampNow):
            msg = (
                f"Invalid update value for {table.entity_name}.{field_name}: "
                f"{type(value).__name__} is a filter predicate"
            )
            raise InvalidInputError(msg)
        return sa.func.now()
    if not isinstance(value, _SCALAR_TYPES):
        msg = (
            f"Invalid update value for {table.entity_name}.{field_name}: "
            f"{type(value).__name__} is neither a scalar nor a date"
        )
        raise InvalidInputError(msg)
    return value


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, date | datetime | time):
        return value.isoformat()
    return str(value)


def _chunks(values: list[list[Any]], batch_size: int | None) -> list[list[list[Any]]]:
    if batch_size is None:
        return [values]
    if batch_size < 1:
        msg = f"Batch size must be a positive integer, got {batch_size}"
        raise InvalidInputError(msg)
    return chunk(values, batch_size)


def _read_batch(
    table: TableDescriptor,
    rows: Sequence[Mapping[str, Any]],
    id_key: str | None = None,
) -> tuple[list[str], list[list[Any]]]:
    if not rows:
        msg = f"Batch on {table.entity_name} is empty"
        raise InvalidInputError(msg)

    keys = list(rows[0])
    if id_key is not None and id_key not in keys:
        msg = f"Id {id_key} not found in batch update on {table.entity_name}"
        raise InvalidInputError(msg)

    values = []
    for row in rows:
        if id_key is not None and row.get(id_key) is None:
            msg = f"Id {id_key} cannot be null in batch update on {table.entity_name}"
            raise InvalidInputError(msg)
        values.append([row.get(key) for key in keys])
    return keys, values
