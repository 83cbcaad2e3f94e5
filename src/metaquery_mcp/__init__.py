"""metaquery-mcp: a metadata-driven SQL layer over PostgreSQL.

The schema registry is built from the database catalog at startup and drives
parameterized SQL composition for reads, writes and batch writes, plus entity
class source generation. A FastMCP server exposes the registry snapshot and
class generation.
"""

from metaquery_mcp.data import DataAccessService, SqlAlchemyDriver
from metaquery_mcp.query import Bool, Number, QueryBuilder, String, Timestamp, Value
from metaquery_mcp.schema import SchemaInspector, SchemaRegistry, column, many_to_one, table

__all__ = [  # noqa: RUF022
    # Schema
    "SchemaInspector",
    "SchemaRegistry",
    "column",
    "many_to_one",
    "table",
    # Query
    "QueryBuilder",
    "Bool",
    "Number",
    "String",
    "Timestamp",
    "Value",
    # Data access
    "DataAccessService",
    "SqlAlchemyDriver",
]
