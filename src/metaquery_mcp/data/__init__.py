"""Statement execution and entity-typed data access."""

from .driver import SqlAlchemyDriver, SqlDriver
from .service import DataAccessService, FindAndCountResult, ManyToManyResult

__all__ = [
    "DataAccessService",
    "FindAndCountResult",
    "ManyToManyResult",
    "SqlAlchemyDriver",
    "SqlDriver",
]
