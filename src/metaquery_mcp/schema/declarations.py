"""Declarative entity metadata merged into the registry at build time.

Inspected catalog data names every table, column and relation after the
database. An ``EntityDeclaration`` lets an application rename those for its
own entity types: the entity name, field aliases, relation names and the
column stamped on every update.

Declarations can be written directly or collected from an annotated class
with the ``@table`` decorator and the ``column`` / ``many_to_one`` /
``updated_at`` field markers. Nothing is registered globally; callers pass
declarations to ``SchemaRegistry.build`` explicitly.

Example:
    >>> @table("student_registration")
    ... class Registration:
    ...     id: int
    ...     start: date = column("start_date")
    ...     student: Student = many_to_one("student_id")
    >>> declaration_of(Registration).columns
    {'start': 'start_date'}
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

_DECLARATION_ATTR = "__entity_declaration__"

C = TypeVar("C", bound=type)


@dataclass
class EntityDeclaration:
    """Renaming declarations for one entity type.

    Attributes:
        entity_name: Logical type name served by ``SchemaRegistry.by_type``
        table_name: Physical table the declaration applies to
        columns: camelCase field name -> physical column name
        relations: camelCase relation name -> local foreign-key column
        updated_at: camelCase field stamped with NOW() on every update
    """

    entity_name: str
    table_name: str
    columns: dict[str, str] = field(default_factory=dict)
    relations: dict[str, str] = field(default_factory=dict)
    updated_at: str | None = None


@dataclass(frozen=True)
class ColumnMarker:
    column_name: str


@dataclass(frozen=True)
class RelationMarker:
    key_name: str


@dataclass(frozen=True)
class UpdatedAtMarker:
    column_name: str | None = None


def column(column_name: str) -> Any:
    """Map the annotated field to a physical column."""
    return ColumnMarker(column_name)


def many_to_one(key_name: str) -> Any:
    """Name the relation loaded through the local foreign-key column."""
    return RelationMarker(key_name)


def updated_at(column_name: str | None = None) -> Any:
    """Mark the field stamped with the current time on every update."""
    return UpdatedAtMarker(column_name)


def _inherited_updated_at(cls: type) -> str | None:
    for base in cls.__mro__[1:]:
        declaration = base.__dict__.get(_DECLARATION_ATTR)
        if declaration is not None and declaration.updated_at is not None:
            return declaration.updated_at
        for name, value in base.__dict__.items():
            if isinstance(value, UpdatedAtMarker):
                return name
    return None


def table(table_name: str, *, entity_name: str | None = None) -> Callable[[C], C]:
    """Class decorator collecting field markers into an ``EntityDeclaration``.

    The ``updated_at`` field is inherited from a parent class when the class
    does not mark one itself.
    """

    def decorator(cls: C) -> C:
        declaration = EntityDeclaration(
            entity_name=entity_name or cls.__name__,
            table_name=table_name,
        )
        for name, value in cls.__dict__.items():
            if isinstance(value, ColumnMarker):
                declaration.columns[name] = value.column_name
            elif isinstance(value, RelationMarker):
                declaration.relations[name] = value.key_name
            elif isinstance(value, UpdatedAtMarker):
                declaration.updated_at = name
                if value.column_name is not None:
                    declaration.columns[name] = value.column_name

        if declaration.updated_at is None:
            declaration.updated_at = _inherited_updated_at(cls)

        setattr(cls, _DECLARATION_ATTR, declaration)
        return cls

    return decorator


def declaration_of(cls: type) -> EntityDeclaration | None:
    """Return the declaration attached by ``@table``, if any."""
    return cls.__dict__.get(_DECLARATION_ATTR)
