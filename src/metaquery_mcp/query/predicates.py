"""Typed filter predicates that lower to SQLAlchemy conditions.

Every predicate is a small immutable value object deriving from
``Predicate``. The set is closed: the query builder recognizes a predicate
by its type, never by probing attributes, and rejects any other non-scalar
filter value.

Predicate families and their factories:
- String: contains, starts_with, ends_with, eq_ignore_case, in_, not_eq
- Number: gt, gte, lt, lte, in_
- Bool: is_not
- Value: null, not_null, in_
- Timestamp: date_eq, date_lte, date_gte, lt, now

String pattern predicates compare case-insensitively with ``ILIKE``;
equality and inequality are literal. Date predicates truncate both operands
to the calendar date; timestamp predicates compare at full precision.

Example:
    >>> where = {"name": String.contains("an"), "age": Number.gte(18)}
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date, datetime
import operator
from typing import Any

import sqlalchemy as sa

from metaquery_mcp.schema.models import TableDescriptor

Condition = sa.ColumnElement[bool]

_COMPARATORS: dict[str, Callable[[Any, Any], Condition]] = {
    "=": operator.eq,
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
}


@dataclass(frozen=True)
class LowerContext:
    """Where a predicate is being lowered.

    Attributes:
        table: Table owning the column
        target: FROM element the column is read from; the table's alias for
            reads, the bare table for UPDATE and DELETE
        column_name: Physical column name
    """

    table: TableDescriptor
    target: sa.FromClause
    column_name: str

    @property
    def column(self) -> sa.ColumnElement[Any]:
        return self.target.c[self.column_name]


class Predicate(ABC):
    """Base class of every filter predicate."""

    @abstractmethod
    def lower(self, ctx: LowerContext) -> Condition:
        """Lower the predicate to a condition on ``ctx.column``."""


# ---- string ---------------------------------------------------------------
@dataclass(frozen=True)
class StringContains(Predicate):
    value: str | None

    def lower(self, ctx: LowerContext) -> Condition:
        # ILIKE '%%' matches everything
        if not self.value:
            return sa.true()
        return ctx.column.ilike(f"%{self.value}%")


@dataclass(frozen=True)
class StringStartsWith(Predicate):
    value: str

    def lower(self, ctx: LowerContext) -> Condition:
        return ctx.column.ilike(f"{self.value}%")


@dataclass(frozen=True)
class StringEndsWith(Predicate):
    value: str

    def lower(self, ctx: LowerContext) -> Condition:
        return ctx.column.ilike(f"%{self.value}")


@dataclass(frozen=True)
class StringEqualsIgnoreCase(Predicate):
    value: str

    def lower(self, ctx: LowerContext) -> Condition:
        return ctx.column.ilike(self.value)


@dataclass(frozen=True)
class StringIn(Predicate):
    values: tuple[str, ...]

    def lower(self, ctx: LowerContext) -> Condition:
        return ctx.column.in_(self.values)


@dataclass(frozen=True)
class StringNotEqual(Predicate):
    value: str

    def lower(self, ctx: LowerContext) -> Condition:
        return ctx.column != self.value


# ---- number ---------------------------------------------------------------
@dataclass(frozen=True)
class NumberCompare(Predicate):
    operator: str
    value: int | float

    def lower(self, ctx: LowerContext) -> Condition:
        return _COMPARATORS[self.operator](ctx.column, self.value)


@dataclass(frozen=True)
class NumberIn(Predicate):
    values: tuple[int | float, ...]

    def lower(self, ctx: LowerContext) -> Condition:
        return ctx.column.in_(self.values)


# ---- boolean --------------------------------------------------------------
@dataclass(frozen=True)
class BoolIsNot(Predicate):
    value: bool

    def lower(self, ctx: LowerContext) -> Condition:
        return ctx.column.is_not(self.value)


# ---- generic value --------------------------------------------------------
@dataclass(frozen=True)
class ValueIsNull(Predicate):
    def lower(self, ctx: LowerContext) -> Condition:
        return ctx.column.is_(None)


@dataclass(frozen=True)
class ValueIsNotNull(Predicate):
    def lower(self, ctx: LowerContext) -> Condition:
        return ctx.column.is_not(None)


@dataclass(frozen=True)
class ValueIn(Predicate):
    values: tuple[str | int | float, ...]

    def lower(self, ctx: LowerContext) -> Condition:
        return ctx.column.in_(self.values)


# ---- date / timestamp -----------------------------------------------------
@dataclass(frozen=True)
class DateCompare(Predicate):
    operator: str
    value: date

    def lower(self, ctx: LowerContext) -> Condition:
        return _COMPARATORS[self.operator](
            sa.func.date(ctx.column), sa.func.date(sa.literal(self.value))
        )


@dataclass(frozen=True)
class TimestampLessThan(Predicate):
    value: datetime

    def lower(self, ctx: LowerContext) -> Condition:
        return ctx.column < self.value


@dataclass(frozen=True)
class TimestampNow(Predicate):
    """``NOW()``; also the only predicate accepted as an update value."""

    def lower(self, ctx: LowerContext) -> Condition:
        return ctx.column == sa.func.now()


def _as_datetime(value: date | datetime | str) -> date | datetime:
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    return value


# ---- factories ------------------------------------------------------------
class String:
    @staticmethod
    def contains(value: str | None) -> StringContains:
        return StringContains(value)

    @staticmethod
    def starts_with(value: str) -> StringStartsWith:
        return StringStartsWith(value)

    @staticmethod
    def ends_with(value: str) -> StringEndsWith:
        return StringEndsWith(value)

    @staticmethod
    def eq_ignore_case(value: str) -> StringEqualsIgnoreCase:
        return StringEqualsIgnoreCase(value)

    @staticmethod
    def in_(values: Sequence[str]) -> StringIn:
        return StringIn(tuple(values))

    @staticmethod
    def not_eq(value: str) -> StringNotEqual:
        return StringNotEqual(value)


class Number:
    @staticmethod
    def gt(value: int | float) -> NumberCompare:
        return NumberCompare(">", value)

    @staticmethod
    def gte(value: int | float) -> NumberCompare:
        return NumberCompare(">=", value)

    @staticmethod
    def lt(value: int | float) -> NumberCompare:
        return NumberCompare("<", value)

    @staticmethod
    def lte(value: int | float) -> NumberCompare:
        return NumberCompare("<=", value)

    @staticmethod
    def in_(values: Sequence[int | float]) -> NumberIn:
        return NumberIn(tuple(values))


class Bool:
    @staticmethod
    def is_not(value: bool) -> BoolIsNot:  # noqa: FBT001
        return BoolIsNot(value)


class Value:
    @staticmethod
    def null() -> ValueIsNull:
        return ValueIsNull()

    @staticmethod
    def not_null() -> ValueIsNotNull:
        return ValueIsNotNull()

    @staticmethod
    def in_(values: Sequence[str | int | float]) -> ValueIn:
        return ValueIn(tuple(values))


class Timestamp:
    """Date and timestamp predicates; accepts dates, datetimes or ISO strings."""

    @staticmethod
    def date_eq(value: date | datetime | str) -> DateCompare:
        return DateCompare("=", _as_datetime(value))

    @staticmethod
    def date_lte(value: date | datetime | str) -> DateCompare:
        return DateCompare("<=", _as_datetime(value))

    @staticmethod
    def date_gte(value: date | datetime | str) -> DateCompare:
        return DateCompare(">=", _as_datetime(value))

    @staticmethod
    def lt(value: date | datetime | str) -> TimestampLessThan:
        return TimestampLessThan(_as_datetime(value))  # type: ignore[arg-type]

    @staticmethod
    def now() -> TimestampNow:
        return TimestampNow()
