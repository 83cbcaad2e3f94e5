"""SQL composition for registered entities.

Main Components:
- Predicates: String, Number, Bool, Value and Timestamp filter factories
- QueryBuilder: SQLAlchemy Core SELECT/INSERT/UPDATE/DELETE from the registry
"""

from .builder import QueryBuilder
from .predicates import Bool, LowerContext, Number, Predicate, String, Timestamp, Value

__all__ = [
    "Bool",
    "LowerContext",
    "Number",
    "Predicate",
    "QueryBuilder",
    "String",
    "Timestamp",
    "Value",
]
