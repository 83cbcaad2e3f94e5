"""Custom exception hierarchy for metaquery.

This module defines all custom exceptions raised while inspecting the
database catalog, building the schema registry, composing SQL and generating
entity classes. Every error is raised synchronously and surfaced unchanged
to the caller; database errors raised by the driver are never wrapped.

Exception Categories:
- Unknown-name errors for entities and fields missing from the registry
- Invalid-input errors for malformed filters, payloads and batches
- Structural errors for foreign-key cycles and many-to-many payloads
- Connection and inspection errors
"""

from __future__ import annotations


class MetaQueryError(Exception):
    """Base exception for metaquery operations.

    This is the root exception class for all metaquery related errors.
    All other custom exceptions in this module inherit from this class.
    """


class UnknownEntityError(MetaQueryError):
    """Raised when an entity type or table name is not in the registry."""

    def __init__(self, entity: str) -> None:
        self.entity = entity
        super().__init__(f"Unknown entity: {entity} is not registered")


class UnknownFieldError(MetaQueryError):
    """Raised when a write path or predicate references an unknown field.

    Read paths (select, order, load) silently drop unknown names instead.
    """

    def __init__(self, entity: str, field: str) -> None:
        self.entity = entity
        self.field = field
        super().__init__(
            f"Unknown field: cannot find corresponding column name for {entity}.{field}"
        )


class InvalidInputError(MetaQueryError, ValueError):
    """Raised when caller-provided data cannot be turned into a statement.

    Examples:
    - an object-valued filter field that is not a predicate or a date
    - an empty update payload
    - a missing primary key on an update without filter or on a batch row
    """


class CircularDependencyError(MetaQueryError):
    """Raised when entity classes cannot be ordered because of a FK cycle."""

    def __init__(self, pairs: list[tuple[str, str]]) -> None:
        self.pairs = pairs
        described = ", ".join(f"[{a}, {b}]" for a, b in pairs)
        super().__init__(f"Circular dependency: {described}")


class InvalidRelationPayloadError(MetaQueryError):
    """Raised when a many-to-many payload lacks its main key or foreign keys."""


class ConnectionStringError(MetaQueryError, ValueError):
    """Raised when a database connection URL cannot be parsed."""


class InspectionError(MetaQueryError):
    """Raised when a catalog query fails during schema inspection."""
