"""Pydantic models for MCP tool I/O.

Small, task-focused models shared by the MCP tools and the class generator.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

# -----------------------
# Class generation
# -----------------------


class ParentField(BaseModel):
    """One field declared on a common parent class."""

    name: str = Field(description="camelCase field name, e.g. 'createdOn'")
    type: str = Field(description="Python annotation, e.g. 'bool' or 'datetime'")


class ParentClass(BaseModel):
    """Common parent class generated entities may extend.

    A table extends the parent only when every parent field matches one of
    its columns by name and type.
    """

    class_name: str = Field(description="Parent class name, e.g. 'TrackedTable'")
    fields: list[ParentField] = Field(default_factory=list)


class GenerateClassOptions(BaseModel):
    """Options for generating entity class source."""

    omit_null: bool = Field(
        default=False, description="Do not append '| None' to nullable fields"
    )
    include_decorator: bool = Field(
        default=False,
        description="Emit @table, column() and many_to_one() declaration markers",
    )
    parent_class: ParentClass | None = Field(
        default=None, description="Common parent class to extend when it matches"
    )


DEFAULT_PARENT_CLASS = ParentClass(
    class_name="TrackedTable",
    fields=[
        ParentField(name="deleted", type="bool"),
        ParentField(name="createdOn", type="datetime"),
        ParentField(name="updatedOn", type="datetime"),
    ],
)

# -----------------------
# Registry snapshot
# -----------------------


class ColumnMetadata(BaseModel):
    name: str
    alias: str
    type: str
    nullable: bool


class RelationMetadata(BaseModel):
    name: str
    key_name: str = Field(alias="keyName")
    foreign_table_name: str = Field(alias="foreignTableName")
    foreign_key_name: str = Field(alias="foreignKeyName")


class TableMetadata(BaseModel):
    """Registry entry for one table, keyed by entity name in the snapshot."""

    name: str
    abbreviation: str
    entity_name: str = Field(alias="entityName")
    primary_key: str = Field(alias="primaryKey")
    columns: list[ColumnMetadata]
    relations: list[RelationMetadata]
    updated_at: str | None = Field(default=None, alias="updatedAt")


class MetadataSnapshot(BaseModel):
    """Current schema registry contents."""

    schema_name: str = Field(description="Inspected database schema")
    tables: dict[str, TableMetadata] = Field(description="Entity name -> table metadata")


class GeneratedClasses(BaseModel):
    """Generated entity class source."""

    source: str = Field(description="Python source with one class per table")
    class_count: int = Field(description="Number of generated classes")


# -----------------------
# Status
# -----------------------


class InitStatus(BaseModel):
    """Initialization status for registry readiness."""

    phase: Literal["IDLE", "STARTING", "READY", "FAILED", "STOPPED"]
    attempts: int = 0
    started_at: float | None = None
    completed_at: float | None = None
    error_message: str | None = None
    description: str | None = Field(default=None, description="Short status description")
