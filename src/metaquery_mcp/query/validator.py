"""Lenient validation of read options.

Select columns, order fields and relation loads that do not exist in the
registry are dropped, not rejected. Write paths and predicates are strict
and raise instead (see ``QueryBuilder``).
"""

from __future__ import annotations

from dataclasses import dataclass

from fastmcp.utilities.logging import get_logger

from metaquery_mcp.schema.models import TableDescriptor
from metaquery_mcp.schema.registry import SchemaRegistry
from metaquery_mcp.schema.utils import strip_sort_prefix

_logger = get_logger(__name__)

FullLoad = list[str]
PartialLoad = dict[str, bool | list[str]]
Load = FullLoad | PartialLoad
OrderBy = str | list[str]


@dataclass(frozen=True)
class ReadOptions:
    """Select/order/load options after unknown names were dropped."""

    select: list[str] | None = None
    order_by: OrderBy | None = None
    load: Load | None = None


def validate_select(table: TableDescriptor, select: list[str] | None) -> list[str] | None:
    if select is None:
        return None
    kept = [name for name in select if name in table.extra.column_lookup]
    if len(kept) != len(select):
        _logger.debug("Dropped unknown select fields on %s: %s", table.entity_name, select)
    return kept


def validate_order(table: TableDescriptor, order_by: OrderBy | None) -> OrderBy | None:
    if order_by is None:
        return None
    lookup = table.extra.column_lookup
    if isinstance(order_by, str):
        return order_by if strip_sort_prefix(order_by) in lookup else None
    return [spec for spec in order_by if strip_sort_prefix(spec) in lookup]


def validate_load(
    registry: SchemaRegistry, table: TableDescriptor, load: Load | None
) -> Load | None:
    if load is None:
        return None
    if isinstance(load, list):
        return [name for name in load if registry.find_relation(table, name) is not None]

    kept: PartialLoad = {}
    for name, value in load.items():
        relation = registry.find_relation(table, name)
        if relation is None:
            continue
        if value is True:
            kept[name] = True
        elif isinstance(value, list):
            foreign = registry.by_name(relation.foreign_table_name)
            if foreign is None:
                continue
            columns = [col for col in value if col in foreign.extra.column_lookup]
            if columns:
                kept[name] = columns
    return kept


def validate_options(
    registry: SchemaRegistry,
    table: TableDescriptor,
    *,
    select: list[str] | None = None,
    order_by: OrderBy | None = None,
    load: Load | None = None,
) -> ReadOptions:
    """Drop unknown select fields, order fields and relations."""
    return ReadOptions(
        select=validate_select(table, select),
        order_by=validate_order(table, order_by),
        load=validate_load(registry, table, load),
    )
