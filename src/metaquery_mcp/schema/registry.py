"""Schema registry: the canonical table and entity lookup.

The registry owns the mapping from table name to ``TableDescriptor`` and from
entity name to the same descriptor, after inspected catalog data has been
merged with entity declarations. It is built once at startup and read by the
query builder, the data access service and the class generator thereafter.

Lookups are lenient: unknown names return ``None`` so read paths can drop the
offending field. ``require`` is the strict variant used when a statement
cannot be composed without the descriptor.

Classes:
- SchemaRegistry: build-once, read-many table/entity registry
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
import copy
from dataclasses import asdict
from typing import Any

from fastmcp.utilities.logging import get_logger

from .declarations import EntityDeclaration, declaration_of
from .exceptions import UnknownEntityError
from .models import ColumnDescriptor, ResolvedRelation, TableDescriptor
from .utils import from_camel

_logger = get_logger("metaquery.registry")

EntityRef = str | type


class SchemaRegistry:
    """Registry of table descriptors indexed by table name and entity name.

    Populate it with ``set_table_cache`` (or the ``build`` classmethod) once,
    before any read traffic. Replacing the contents requires another full
    ``set_table_cache`` call; partial updates are not supported.
    """

    def __init__(self) -> None:
        self._tables: dict[str, TableDescriptor] = {}
        self._classes: dict[str, TableDescriptor] = {}
        self._declarations: dict[str, EntityDeclaration] = {}

    @classmethod
    def build(
        cls,
        tables: Mapping[str, TableDescriptor],
        declarations: Iterable[EntityDeclaration | type] = (),
    ) -> SchemaRegistry:
        """Create a registry from inspected tables and entity declarations."""
        registry = cls()
        registry.set_table_cache(tables, declarations)
        return registry

    def set_table_cache(
        self,
        tables: Mapping[str, TableDescriptor],
        declarations: Iterable[EntityDeclaration | type] = (),
    ) -> None:
        """Merge tables and declarations, then rebuild every derived map.

        Incoming tables replace existing entries of the same name. Declarations
        accumulate across calls, so re-merging the same data is idempotent.
        """
        for item in declarations:
            declaration = _as_declaration(item)
            self._declarations[declaration.entity_name] = declaration

        merged = {**self._tables, **copy.deepcopy(dict(tables))}
        for declaration in self._declarations.values():
            table = merged.get(declaration.table_name)
            if table is None:
                _logger.debug(
                    "Declaration %s targets unknown table %s; skipped",
                    declaration.entity_name,
                    declaration.table_name,
                )
                continue
            _apply_declaration(table, declaration)

        for table in merged.values():
            table.rebuild_lookups()

        self._tables = merged
        self._classes = {table.entity_name: table for table in merged.values()}
        _logger.info(
            "Schema registry built: %d tables, %d declarations",
            len(self._tables),
            len(self._declarations),
        )

    # ---- lookups -----------------------------------------------------------
    @property
    def tables(self) -> dict[str, TableDescriptor]:
        return self._tables

    @property
    def classes(self) -> dict[str, TableDescriptor]:
        return self._classes

    def by_name(self, table_name: str) -> TableDescriptor | None:
        return self._tables.get(table_name)

    def by_type(self, entity: EntityRef) -> TableDescriptor | None:
        return self._classes.get(entity_name_of(entity))

    def require(self, entity: EntityRef) -> TableDescriptor:
        """Return the descriptor for ``entity`` or raise ``UnknownEntityError``."""
        table = self.by_type(entity)
        if table is None:
            raise UnknownEntityError(entity_name_of(entity))
        return table

    def find_column(self, table: TableDescriptor, field_name: str) -> ColumnDescriptor | None:
        """Resolve a camelCase field name to its column."""
        return table.extra.column_lookup.get(field_name)

    def find_relation(
        self, table: TableDescriptor, relation_name: str
    ) -> ResolvedRelation | None:
        """Resolve a camelCase relation name, attaching the foreign abbreviation."""
        relation = table.extra.relation_lookup.get(relation_name)
        if relation is None:
            return None
        foreign = self._tables.get(relation.foreign_table_name)
        if foreign is None:
            return None
        return ResolvedRelation(**asdict(relation), foreign_abbreviation=foreign.abbreviation)

    def find_abbreviation(self, table_name: str) -> str | None:
        table = self._tables.get(table_name)
        return table.abbreviation if table is not None else None

    def snapshot(self) -> dict[str, Any]:
        """Plain-data view of the registry keyed by entity name."""
        return {name: table.to_dict() for name, table in sorted(self._classes.items())}


def entity_name_of(entity: EntityRef) -> str:
    """Return the entity name for a name or an (optionally declared) class."""
    if isinstance(entity, str):
        return entity
    declaration = declaration_of(entity)
    return declaration.entity_name if declaration is not None else entity.__name__


def _as_declaration(item: EntityDeclaration | type) -> EntityDeclaration:
    if isinstance(item, EntityDeclaration):
        return item
    declaration = declaration_of(item)
    if declaration is None:
        msg = f"{item.__name__} has no entity declaration; decorate it with @table"
        raise TypeError(msg)
    return declaration


def _apply_declaration(table: TableDescriptor, declaration: EntityDeclaration) -> None:
    table.entity_name = declaration.entity_name
    table.extra.updated_at_field = declaration.updated_at

    for field_name, column_name in declaration.columns.items():
        entry = next((col for col in table.columns if col.name == column_name), None)
        if entry is not None:
            entry.alias = from_camel(field_name)

    for relation_name, key_name in declaration.relations.items():
        entry = next((rel for rel in table.relations if rel.key_name == key_name), None)
        if entry is not None:
            entry.name = from_camel(relation_name)
