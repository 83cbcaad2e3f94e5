"""Data models for the schema registry.

This module contains the descriptor records the inspector produces and the
registry serves: one ``TableDescriptor`` per physical table, with its
``ColumnDescriptor`` and ``RelationDescriptor`` lists and the derived
camelCase lookup maps.

Models:
- ColumnDescriptor: physical column with its logical alias and type
- RelationDescriptor: many-to-one relation derived from a foreign key
- ResolvedRelation: relation plus the foreign table's SQL abbreviation
- TableExtra: derived lookup maps and the optional updated-at field
- TableDescriptor: complete description of one table
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .constants import ColumnType
from .utils import to_camel


@dataclass
class ColumnDescriptor:
    """Metadata about a table column.

    Attributes:
        name: Physical column name (snake_case)
        alias: Logical name (snake_case), renamed by entity declarations
        type: Underlying column type
        nullable: Whether the column accepts NULL values
    """

    name: str
    alias: str
    type: ColumnType
    nullable: bool

    @property
    def field_name(self) -> str:
        """camelCase field name used by callers."""
        return to_camel(self.alias)


@dataclass
class RelationDescriptor:
    """Many-to-one relation derived from a foreign key.

    Attributes:
        name: Logical relation name (snake_case)
        key_name: Local foreign-key column
        foreign_table_name: Referenced table
        foreign_key_name: Referenced column, normally the foreign primary key
    """

    name: str
    key_name: str
    foreign_table_name: str
    foreign_key_name: str

    @property
    def field_name(self) -> str:
        """camelCase relation name used by callers."""
        return to_camel(self.name)


@dataclass
class ResolvedRelation(RelationDescriptor):
    """A relation together with the abbreviation of its foreign table."""

    foreign_abbreviation: str = ""


@dataclass
class TableExtra:
    """Derived lookups, rebuilt whenever columns or relations change."""

    column_lookup: dict[str, ColumnDescriptor] = field(default_factory=dict)
    relation_lookup: dict[str, RelationDescriptor] = field(default_factory=dict)
    updated_at_field: str | None = None


@dataclass
class TableDescriptor:
    """Complete description of one physical table.

    Attributes:
        name: Table name (snake_case)
        abbreviation: Unique short alias used in generated SQL
        entity_name: Logical type name (PascalCase by default)
        primary_key: Primary key column name
        columns: Ordered column descriptors
        relations: Relation descriptors derived from foreign keys
        extra: Derived camelCase lookups and the updated-at field
    """

    name: str
    abbreviation: str
    entity_name: str
    primary_key: str
    columns: list[ColumnDescriptor] = field(default_factory=list)
    relations: list[RelationDescriptor] = field(default_factory=list)
    extra: TableExtra = field(default_factory=TableExtra)

    def rebuild_lookups(self) -> None:
        """Recompute the camelCase column and relation lookup maps."""
        self.extra.column_lookup = {col.field_name: col for col in self.columns}
        self.extra.relation_lookup = {rel.field_name: rel for rel in self.relations}

    @property
    def primary_key_column(self) -> ColumnDescriptor | None:
        return next((col for col in self.columns if col.name == self.primary_key), None)

    @property
    def primary_key_field(self) -> str:
        """camelCase field name of the primary key."""
        column = self.primary_key_column
        return column.field_name if column is not None else to_camel(self.primary_key)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the descriptor to plain JSON-compatible data."""
        return {
            "name": self.name,
            "abbreviation": self.abbreviation,
            "entityName": self.entity_name,
            "primaryKey": self.primary_key,
            "columns": [
                {
                    "name": col.name,
                    "alias": col.alias,
                    "type": col.type.value,
                    "nullable": col.nullable,
                }
                for col in self.columns
            ],
            "relations": [
                {
                    "name": rel.name,
                    "keyName": rel.key_name,
                    "foreignTableName": rel.foreign_table_name,
                    "foreignKeyName": rel.foreign_key_name,
                }
                for rel in self.relations
            ],
            "extra": {
                "updatedAt": self.extra.updated_at_field,
                "columnLookup": {k: v.name for k, v in self.extra.column_lookup.items()},
                "relationLookup": {k: v.name for k, v in self.extra.relation_lookup.items()},
            },
        }
