"""Constants and enums for the schema registry.

This module contains the fixed set of underlying column types the registry
understands, together with the lookups derived from them: the Python type
used by the class generator and the SQLAlchemy type used for columns
and casts in composed statements.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Final

import sqlalchemy as sa


class ColumnType(str, Enum):
    """Underlying column types, named after PostgreSQL ``udt_name`` values."""

    BOOL = "bool"
    DATE = "date"
    FLOAT4 = "float4"
    INT4 = "int4"
    INT8 = "int8"
    TEXT = "text"
    TIMESTAMP = "timestamp"
    TIMESTAMPTZ = "timestamptz"
    VARCHAR = "varchar"

    @classmethod
    def from_udt(cls, udt_name: str) -> ColumnType:
        """Map a catalog ``udt_name`` to a column type, defaulting to text."""
        try:
            return cls(udt_name)
        except ValueError:
            return cls.TEXT


class Constants:
    """Configuration constants for the registry and query layer."""

    DEFAULT_SCHEMA: Final[str] = "public"

    # Python annotation emitted by the class generator per column type
    PYTHON_TYPES: Final[dict[ColumnType, str]] = {
        ColumnType.BOOL: "bool",
        ColumnType.DATE: "date",
        ColumnType.FLOAT4: "float",
        ColumnType.INT4: "int",
        ColumnType.INT8: "int",
        ColumnType.TEXT: "str",
        ColumnType.TIMESTAMP: "datetime",
        ColumnType.TIMESTAMPTZ: "datetime",
        ColumnType.VARCHAR: "str",
    }

    # SQLAlchemy type per column type; batch updates cast VALUES columns,
    # which travel as text, back to these.
    SQL_TYPES: Final[dict[ColumnType, sa.types.TypeEngine[Any]]] = {
        ColumnType.BOOL: sa.Boolean(),
        ColumnType.DATE: sa.Date(),
        ColumnType.FLOAT4: sa.REAL(),
        ColumnType.INT4: sa.Integer(),
        ColumnType.INT8: sa.BigInteger(),
        ColumnType.TEXT: sa.Text(),
        ColumnType.TIMESTAMP: sa.DateTime(),
        ColumnType.TIMESTAMPTZ: sa.DateTime(timezone=True),
        ColumnType.VARCHAR: sa.String(),
    }

    # Foreign-key column suffixes stripped to derive relation names
    RELATION_KEY_SUFFIXES: Final[tuple[str, ...]] = ("_code", "_id")

    # Reserved filter keys
    AND: Final[str] = "AND"
    OR: Final[str] = "OR"
