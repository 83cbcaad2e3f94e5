from __future__ import annotations

from datetime import date, datetime
from typing import Any

import pytest
from sqlalchemy.dialects import postgresql

from metaquery_mcp.query.builder import QueryBuilder
from metaquery_mcp.query.predicates import (
    Bool,
    LowerContext,
    Number,
    String,
    Timestamp,
    Value,
)
from metaquery_mcp.schema.registry import SchemaRegistry


def _ctx(registry: SchemaRegistry, column_name: str) -> LowerContext:
    return LowerContext(
        table=registry.require("Student"),
        target=QueryBuilder(registry).alias("Student"),
        column_name=column_name,
    )


@pytest.fixture
def ctx(registry: SchemaRegistry) -> LowerContext:
    return _ctx(registry, "name")


def test_string_predicates(ctx: LowerContext, sql: Any) -> None:
    assert sql(String.contains("an").lower(ctx)) == "s.name ILIKE '%an%'"
    assert sql(String.starts_with("An").lower(ctx)) == "s.name ILIKE 'An%'"
    assert sql(String.ends_with("n").lower(ctx)) == "s.name ILIKE '%n'"
    assert sql(String.eq_ignore_case("ann").lower(ctx)) == "s.name ILIKE 'ann'"
    assert sql(String.not_eq("Bob").lower(ctx)) == "s.name != 'Bob'"
    assert sql(String.in_(["a", "b"]).lower(ctx)) == "s.name IN ('a', 'b')"


def test_empty_contains_matches_everything(ctx: LowerContext, sql: Any) -> None:
    assert sql(String.contains("").lower(ctx)) == "true"
    assert sql(String.contains(None).lower(ctx)) == "true"


def test_number_predicates(registry: SchemaRegistry, sql: Any) -> None:
    ctx = _ctx(registry, "age")
    assert sql(Number.gt(18).lower(ctx)) == "s.age > 18"
    assert sql(Number.gte(18).lower(ctx)) == "s.age >= 18"
    assert sql(Number.lte(18).lower(ctx)) == "s.age <= 18"
    assert sql(Number.in_([1, 2]).lower(ctx)) == "s.age IN (1, 2)"

    lt = Number.lt(1.5).lower(ctx).compile(dialect=postgresql.dialect(paramstyle="named"))
    assert str(lt).startswith("s.age < :")
    assert list(lt.params.values()) == [1.5]


def test_bool_and_value_predicates(ctx: LowerContext, sql: Any) -> None:
    assert sql(Bool.is_not(True).lower(ctx)) == "s.name IS NOT true"
    assert sql(Bool.is_not(False).lower(ctx)) == "s.name IS NOT false"
    assert sql(Value.null().lower(ctx)) == "s.name IS NULL"
    assert sql(Value.not_null().lower(ctx)) == "s.name IS NOT NULL"
    assert sql(Value.in_(["a", "b"]).lower(ctx)) == "s.name IN ('a', 'b')"


def test_timestamp_predicates(registry: SchemaRegistry) -> None:
    ctx = _ctx(registry, "start_date")
    dialect = postgresql.dialect(paramstyle="named")

    date_eq = Timestamp.date_eq("2024-01-02").lower(ctx).compile(dialect=dialect)
    assert str(date_eq).startswith("date(s.start_date) = date(:")
    assert list(date_eq.params.values()) == [datetime(2024, 1, 2)]

    assert str(Timestamp.date_lte(date(2024, 1, 2)).lower(ctx).compile(dialect=dialect)).startswith(
        "date(s.start_date) <= date("
    )
    assert str(Timestamp.date_gte(date(2024, 1, 2)).lower(ctx).compile(dialect=dialect)).startswith(
        "date(s.start_date) >= date("
    )

    lt = Timestamp.lt("2024-01-02T10:00:00").lower(ctx).compile(dialect=dialect)
    assert str(lt).startswith("s.start_date < :")
    assert list(lt.params.values()) == [datetime(2024, 1, 2, 10)]

    assert str(Timestamp.now().lower(ctx).compile(dialect=dialect)) == "s.start_date = now()"


def test_lowering_against_the_bare_table(registry: SchemaRegistry, sql: Any) -> None:
    builder = QueryBuilder(registry)
    course = registry.require("Course")
    ctx = LowerContext(
        table=course, target=builder.table_clause(course), column_name="updated_on"
    )
    assert sql(Timestamp.now().lower(ctx)) == "course.updated_on = now()"
