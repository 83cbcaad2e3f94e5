"""FastMCP server implementation for metaquery-mcp."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import dotenv
from fastmcp import FastMCP
from fastmcp.utilities.logging import get_logger
from starlette.requests import Request
from starlette.responses import JSONResponse

from metaquery_mcp.schema.mcp_tools import register_schema_tools
from metaquery_mcp.services.registry_manager import RegistryManager

# Load environment variables
dotenv.load_dotenv()

_logger = get_logger(__name__)


# -- Context Manager for registry initialization ----------------------------
@asynccontextmanager
async def lifespan(_mcp_instance: FastMCP) -> AsyncGenerator[None]:
    """FastMCP lifespan: build the schema registry once, dispose on exit."""
    manager = RegistryManager.get_instance()
    try:
        _logger.info("Building schema registry during lifespan startup")
        await manager.initialize()
        yield
    finally:
        _logger.info("Shutting down schema registry during lifespan shutdown")
        await manager.shutdown()


mcp = FastMCP(
    instructions=(
        "Metadata-driven SQL layer over a PostgreSQL schema. Use fetch_metadata "
        "to see the registered tables, columns and relations, and "
        "generate_classes to render them as Python entity classes."
    ),
    lifespan=lifespan,
)

# -- Tool Registration -------------------------------------------------------
register_schema_tools(mcp)


# -- Health Check ----------------------------------------------------------
@mcp.custom_route("/health", methods=["GET"])
async def health_check(_request: Request) -> JSONResponse:
    manager = RegistryManager.get_instance()
    return JSONResponse(
        {
            "status": "healthy" if manager.is_initialized else "starting",
            "service": "metaquery-mcp",
        }
    )
