"""MCP tool registration for the schema registry.

Exposes a `register_schema_tools` function that attaches the two inbound
operations to a FastMCP instance: a snapshot of the schema registry and
entity class source generation. Logic lives in the registry and the
generator; tools obtain the registry through `RegistryManager`.
"""

from __future__ import annotations

from typing import Annotated

from fastmcp import Context, FastMCP
from fastmcp.utilities.logging import get_logger
from pydantic import Field

from metaquery_mcp.models import (
    GenerateClassOptions,
    GeneratedClasses,
    InitStatus,
    MetadataSnapshot,
    ParentClass,
    TableMetadata,
)
from metaquery_mcp.schema.exceptions import CircularDependencyError
from metaquery_mcp.schema.generator import generate_all_classes
from metaquery_mcp.schema.registry import SchemaRegistry
from metaquery_mcp.services.config_service import ConfigService
from metaquery_mcp.services.registry_manager import RegistryManager

_logger = get_logger(__name__)


def build_snapshot(registry: SchemaRegistry, schema: str) -> MetadataSnapshot:
    """Typed view of ``registry.snapshot()``."""
    tables = {
        entity: TableMetadata.model_validate({**data, "updatedAt": data["extra"]["updatedAt"]})
        for entity, data in registry.snapshot().items()
    }
    return MetadataSnapshot(schema_name=schema, tables=tables)


def register_schema_tools(mcp: FastMCP, manager: RegistryManager | None = None) -> None:
    """Register schema metadata and class generation tools."""

    mgr = manager or RegistryManager.get_instance()

    async def _registry(ctx: Context) -> SchemaRegistry:
        try:
            return mgr.get_registry()
        except RuntimeError as exc:
            await ctx.error(f"Schema registry not ready: {exc}")
            raise

    @mcp.tool
    async def fetch_metadata(ctx: Context) -> MetadataSnapshot:  # pyright: ignore[reportUnusedFunction]
        """Return the schema registry: every table keyed by entity name, with its
        abbreviation, primary key, columns (name, alias, type, nullable) and
        many-to-one relations."""
        registry = await _registry(ctx)
        _logger.info("Fetching metadata snapshot (%d tables)", len(registry.tables))
        return build_snapshot(registry, mgr.schema or "")

    @mcp.tool
    async def generate_classes(  # pyright: ignore[reportUnusedFunction]
        ctx: Context,
        *,
        omit_null: Annotated[
            bool,
            Field(description="Do not append '| None' to nullable fields. Default false."),
        ] = False,
        include_decorator: Annotated[
            bool,
            Field(
                description=(
                    "Emit @table(...), column(...) and many_to_one(...) declaration markers. "
                    "Default false."
                )
            ),
        ] = False,
        parent_class: Annotated[
            ParentClass | None,
            Field(
                description=(
                    "Common parent class to extend when all of its fields match a table. "
                    "Defaults to the configured METAQUERY_PARENT_CLASS."
                )
            ),
        ] = None,
    ) -> GeneratedClasses:
        """Generate Python entity classes for every table, ordered so each class
        follows the classes its relations reference. Tables matching every field
        of the given or configured parent class extend it."""
        registry = await _registry(ctx)
        options = GenerateClassOptions(
            omit_null=omit_null,
            include_decorator=include_decorator,
            parent_class=parent_class or ConfigService.get_parent_class(),
        )
        try:
            source = generate_all_classes(registry.tables, options)
        except CircularDependencyError as exc:
            await ctx.error(str(exc))
            raise
        return GeneratedClasses(source=source, class_count=len(registry.tables))

    @mcp.tool
    async def get_init_status() -> InitStatus:  # pyright: ignore[reportUnusedFunction]
        """Report schema registry readiness."""
        state = mgr.status()
        return InitStatus(
            phase=state.phase.name,  # type: ignore[arg-type]
            attempts=state.attempts,
            started_at=state.started_at,
            completed_at=state.completed_at,
            error_message=state.error_message,
            description=f"{state.table_count} tables registered",
        )
