"""Entity class source generation.

This module renders the registry's tables as Python class definitions, one
annotated field per column and one field per many-to-one relation typed by
the related class. Generated classes optionally carry the ``@table`` /
``column`` / ``many_to_one`` declaration markers, so the output can be fed
back into ``SchemaRegistry.build`` as declarations.

Classes are emitted in dependency order: the relation graph is sorted in
layers, tables without relations first, each layer in entity-name order.
A foreign-key cycle makes ordering impossible and raises
``CircularDependencyError`` naming every mutually dependent pair.

Functions:
- generate_class: source for one table
- generate_all_classes: source for every table, dependency ordered
- sort_tables_for_generation: the layered dependency sort
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from fastmcp.utilities.logging import get_logger
import networkx as nx

from metaquery_mcp.models import GenerateClassOptions, ParentClass

from .constants import Constants
from .exceptions import CircularDependencyError
from .models import TableDescriptor

# Logger
_logger = get_logger("metaquery.generator")

INDENT = "    "


def _parent_matches(table: TableDescriptor, parent: ParentClass) -> bool:
    """True when every parent field matches a column by name and type."""
    columns = {(col.field_name, Constants.PYTHON_TYPES[col.type]) for col in table.columns}
    return all((field.name, field.type) in columns for field in parent.fields)


def generate_class(
    table: TableDescriptor,
    tables: Mapping[str, TableDescriptor],
    options: GenerateClassOptions | None = None,
) -> str:
    """Render one table as a class definition.

    Args:
        table: Table to render
        tables: All tables by name, to resolve relation target classes
        options: Null handling, declaration markers and the common parent class

    Returns:
        Class source ending with a newline
    """
    options = options or GenerateClassOptions()
    parent = options.parent_class
    inherit = parent is not None and _parent_matches(table, parent)
    inherited = {field.name for field in parent.fields} if inherit and parent else set()

    lines: list[str] = []
    if options.include_decorator:
        lines.append(f'@table("{table.name}")')
    base = f"({parent.class_name})" if inherit and parent else ""
    lines.append(f"class {table.entity_name}{base}:")

    for col in sorted(table.columns, key=lambda c: (c.name != table.primary_key, c.alias)):
        if col.field_name in inherited:
            continue
        annotation = Constants.PYTHON_TYPES[col.type]
        if col.nullable and not options.omit_null:
            annotation += " | None"
        marker = f' = column("{col.name}")' if options.include_decorator else ""
        lines.append(f"{INDENT}{col.field_name}: {annotation}{marker}")

    for rel in sorted(table.relations, key=lambda r: r.name):
        foreign = tables[rel.foreign_table_name]
        marker = f' = many_to_one("{rel.key_name}")' if options.include_decorator else ""
        lines.append(f"{INDENT}{rel.field_name}: {foreign.entity_name}{marker}")

    if len(lines) == (2 if options.include_decorator else 1):
        lines.append(f"{INDENT}pass")
    return "\n".join(lines) + "\n"


def _dependency_graph(tables: list[TableDescriptor]) -> nx.DiGraph[str]:
    """Edges point from a referenced table to the table referencing it."""
    graph: nx.DiGraph[str] = nx.DiGraph()
    graph.add_nodes_from(table.name for table in tables)
    for table in tables:
        for rel in table.relations:
            # self references need no prior emission
            if rel.foreign_table_name != table.name and rel.foreign_table_name in graph:
                graph.add_edge(rel.foreign_table_name, table.name)
    return graph


def _mutual_pairs(
    graph: nx.DiGraph[str], remaining: list[TableDescriptor]
) -> list[tuple[str, str]]:
    pairs = []
    for i, a in enumerate(remaining):
        for b in remaining[i + 1 :]:
            if graph.has_edge(a.name, b.name) and graph.has_edge(b.name, a.name):
                pairs.append((a.entity_name, b.entity_name))
    return pairs


def sort_tables_for_generation(tables: Iterable[TableDescriptor]) -> list[TableDescriptor]:
    """Order tables so every class follows the classes it references.

    Each pass emits, in entity-name order, every remaining table whose
    relation targets were all emitted by earlier passes.

    Raises:
        CircularDependencyError: If a pass makes no progress
    """
    ordered = sorted(tables, key=lambda table: table.entity_name)
    graph = _dependency_graph(ordered)

    result: list[TableDescriptor] = []
    placed: set[str] = set()
    remaining = ordered
    while remaining:
        layer = [
            table
            for table in remaining
            if all(dep in placed for dep in graph.predecessors(table.name))
        ]
        if not layer:
            raise CircularDependencyError(_mutual_pairs(graph, remaining))
        result.extend(layer)
        placed.update(table.name for table in layer)
        remaining = [table for table in remaining if table.name not in placed]
    return result


def generate_all_classes(
    tables: Mapping[str, TableDescriptor],
    options: GenerateClassOptions | None = None,
) -> str:
    """Render every table, dependency ordered, separated by blank lines."""
    options = options or GenerateClassOptions()
    classes = [
        generate_class(table, tables, options)
        for table in sort_tables_for_generation(tables.values())
    ]
    _logger.info("Generated %d entity classes", len(classes))
    return "\n\n".join(classes)
