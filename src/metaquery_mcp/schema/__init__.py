"""Schema registry module for metaquery-mcp.

Main Components:
- SchemaInspector: reads tables, columns and keys from information_schema
- SchemaRegistry: build-once lookup of table descriptors by name and entity
- Entity declarations: @table, column, many_to_one and updated_at markers
- Class generator: dependency-ordered entity class source
- Exceptions: structured errors for every failure mode
"""

from .declarations import EntityDeclaration, column, declaration_of, many_to_one, table, updated_at
from .exceptions import (
    CircularDependencyError,
    ConnectionStringError,
    InspectionError,
    InvalidInputError,
    InvalidRelationPayloadError,
    MetaQueryError,
    UnknownEntityError,
    UnknownFieldError,
)
from .generator import generate_all_classes, generate_class, sort_tables_for_generation
from .inspector import SchemaInspector
from .models import ColumnDescriptor, RelationDescriptor, TableDescriptor
from .registry import SchemaRegistry

__all__ = [
    "CircularDependencyError",
    "ColumnDescriptor",
    "ConnectionStringError",
    "EntityDeclaration",
    "InspectionError",
    "InvalidInputError",
    "InvalidRelationPayloadError",
    "MetaQueryError",
    "RelationDescriptor",
    "SchemaInspector",
    "SchemaRegistry",
    "TableDescriptor",
    "UnknownEntityError",
    "UnknownFieldError",
    "column",
    "declaration_of",
    "generate_all_classes",
    "generate_class",
    "many_to_one",
    "sort_tables_for_generation",
    "table",
    "updated_at",
]
