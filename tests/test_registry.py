from __future__ import annotations

from datetime import date, datetime

import pytest

from metaquery_mcp.schema.declarations import (
    EntityDeclaration,
    column,
    declaration_of,
    many_to_one,
    table,
    updated_at,
)
from metaquery_mcp.schema.exceptions import UnknownEntityError
from metaquery_mcp.schema.models import TableDescriptor
from metaquery_mcp.schema.registry import SchemaRegistry


class Tracked:
    updatedOn: datetime = updated_at()


@table("course")
class Course(Tracked):
    id: int
    name: str


@table("student", entity_name="Pupil")
class Pupil:
    id: int
    start: date = column("start_date")
    enrolledCourse: Course = many_to_one("course_id")


def test_table_decorator_collects_markers() -> None:
    declaration = declaration_of(Pupil)
    assert declaration == EntityDeclaration(
        entity_name="Pupil",
        table_name="student",
        columns={"start": "start_date"},
        relations={"enrolledCourse": "course_id"},
    )


def test_updated_at_is_inherited() -> None:
    declaration = declaration_of(Course)
    assert declaration is not None
    assert declaration.updated_at == "updatedOn"


def test_undecorated_class_has_no_declaration() -> None:
    assert declaration_of(Tracked) is None


def test_lookup_by_name_and_type(registry: SchemaRegistry) -> None:
    student = registry.require("Student")
    assert registry.by_name("student") is student
    assert registry.by_type("Student") is student
    assert registry.by_type("Nobody") is None
    assert registry.by_name("nobody") is None
    with pytest.raises(UnknownEntityError):
        registry.require("Nobody")


def test_lookup_maps_use_camel_case(registry: SchemaRegistry) -> None:
    student = registry.require("Student")
    assert list(student.extra.column_lookup) == ["id", "name", "age", "startDate", "courseId"]
    assert list(student.extra.relation_lookup) == ["course"]
    assert registry.find_column(student, "startDate") is student.columns[3]
    assert registry.find_column(student, "start_date") is None


def test_find_relation_resolves_foreign_abbreviation(registry: SchemaRegistry) -> None:
    relation = registry.find_relation(registry.require("Student"), "course")
    assert relation is not None
    assert relation.foreign_table_name == "course"
    assert relation.foreign_abbreviation == "c"
    assert registry.find_relation(registry.require("Student"), "teacher") is None
    assert registry.find_abbreviation("program_textbook") == "pt"


def test_declarations_rename_entity_fields_and_relations(
    tables: dict[str, TableDescriptor],
) -> None:
    registry = SchemaRegistry.build(tables, [Pupil, Course])

    pupil = registry.require(Pupil)
    assert pupil is registry.require("Pupil")
    assert pupil.name == "student"
    assert registry.by_type("Student") is None
    assert registry.find_column(pupil, "start") is not None
    assert registry.find_column(pupil, "startDate") is None
    assert registry.find_relation(pupil, "enrolledCourse") is not None
    assert registry.find_relation(pupil, "course") is None

    assert registry.require(Course).extra.updated_at_field == "updatedOn"


def test_build_does_not_mutate_inspected_tables(tables: dict[str, TableDescriptor]) -> None:
    SchemaRegistry.build(tables, [Pupil])
    assert tables["student"].entity_name == "Student"
    assert tables["student"].columns[3].alias == "start_date"


def test_set_table_cache_is_idempotent(tables: dict[str, TableDescriptor]) -> None:
    registry = SchemaRegistry.build(tables, [Pupil])
    first = registry.snapshot()
    registry.set_table_cache(tables)
    assert registry.snapshot() == first


def test_snapshot_is_keyed_by_entity_name(registry: SchemaRegistry) -> None:
    snapshot = registry.snapshot()
    assert list(snapshot) == ["Course", "ProgramTextbook", "Student"]
    student = snapshot["Student"]
    assert student["abbreviation"] == "s"
    assert student["primaryKey"] == "id"
    assert student["relations"] == [
        {
            "name": "course",
            "keyName": "course_id",
            "foreignTableName": "course",
            "foreignKeyName": "id",
        }
    ]
    assert student["extra"]["columnLookup"]["startDate"] == "start_date"


def test_rejects_undecorated_class(tables: dict[str, TableDescriptor]) -> None:
    with pytest.raises(TypeError):
        SchemaRegistry.build(tables, [Tracked])
