"""Schema registry manager for metaquery-mcp.

Provides a singleton holding the database engine, the schema registry and
the data access service. The registry is built exactly once per process
during FastMCP lifespan startup (inspect, then build, then ready); tools
fail fast while it is not ready.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import replace
import hashlib
import threading
import time
from typing import ClassVar

from fastmcp.utilities.logging import get_logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from metaquery_mcp.data.driver import SqlAlchemyDriver, SqlDriver
from metaquery_mcp.data.service import DataAccessService
from metaquery_mcp.schema.declarations import EntityDeclaration
from metaquery_mcp.schema.exceptions import MetaQueryError
from metaquery_mcp.schema.inspector import SchemaInspector
from metaquery_mcp.schema.registry import SchemaRegistry
from metaquery_mcp.services.config_service import ConfigService
from metaquery_mcp.services.state import (
    INIT_NOT_READY_PHASES,
    RegistryInitPhase,
    RegistryInitState,
)


class RegistryManager:
    """Singleton owner of the schema registry and its database engine.

    The registry is read-only once built; ``build`` replaces it wholesale and
    is only expected to run before any read traffic.
    """

    _instance: ClassVar[RegistryManager | None] = None
    _lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self) -> None:
        """Initialize the registry manager."""
        self._initialization_lock = asyncio.Lock()
        self._logger = get_logger(__name__)
        self._engine: AsyncEngine | None = None
        self._driver: SqlDriver | None = None
        self._registry: SchemaRegistry | None = None
        self._schema: str | None = None
        self._state = RegistryInitState(phase=RegistryInitPhase.IDLE)

    @classmethod
    def get_instance(cls) -> RegistryManager:
        """Get the singleton instance of RegistryManager."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance (primarily for testing)."""
        with cls._lock:
            cls._instance = None

    async def initialize(self, declarations: Iterable[EntityDeclaration | type] = ()) -> None:
        """Create the engine from configuration and build the registry."""
        if self._state.phase is not RegistryInitPhase.IDLE:
            self._logger.debug("Initialization already %s; skipping", self._state.phase)
            return

        database_url = ConfigService.get_database_url()
        fp = hashlib.sha256(database_url.encode("utf-8")).hexdigest()[:10]
        self._logger.debug("Using database fingerprint: %s", fp)

        self._engine = ConfigService.create_database_engine(database_url)
        await self.build(
            SqlAlchemyDriver(self._engine),
            ConfigService.get_schema(database_url),
            declarations,
        )

    async def build(
        self,
        driver: SqlDriver,
        schema: str,
        declarations: Iterable[EntityDeclaration | type] = (),
    ) -> None:
        """Inspect ``schema`` through ``driver`` and build the registry."""
        async with self._initialization_lock:
            self._state = replace(
                self._state, phase=RegistryInitPhase.STARTING, started_at=time.time()
            )
            self._logger.info("Building schema registry for schema %s…", schema)
            try:
                tables = await SchemaInspector(driver, schema).fetch_all()
                registry = SchemaRegistry.build(tables, declarations)
            except (MetaQueryError, SQLAlchemyError, OSError, ValueError) as exc:
                self._state = replace(
                    self._state,
                    phase=RegistryInitPhase.FAILED,
                    error_message=str(exc),
                    completed_at=time.time(),
                    attempts=self._state.attempts + 1,
                )
                self._logger.exception("Schema registry initialization failed")
                raise

            self._driver = driver
            self._schema = schema
            self._registry = registry
            self._state = replace(
                self._state,
                phase=RegistryInitPhase.READY,
                completed_at=time.time(),
                attempts=self._state.attempts + 1,
                error_message=None,
                table_count=len(registry.tables),
            )
            self._logger.info("Schema registry ready with %d tables", len(registry.tables))

    def get_registry(self) -> SchemaRegistry:
        """Get the built registry.

        Raises:
            RuntimeError: If the registry is not built or initialization failed
        """
        phase = self._state.phase
        if phase in INIT_NOT_READY_PHASES:
            msg = "Schema registry initialization in progress"
            raise RuntimeError(msg)
        if phase is RegistryInitPhase.FAILED:
            self._logger.error(
                "Schema registry initialization previously failed: %s", self._state.error_message
            )
            msg = "Schema registry is not available due to initialization failure"
            raise RuntimeError(msg)
        if phase is RegistryInitPhase.STOPPED:
            msg = "Schema registry has been stopped"
            raise RuntimeError(msg)
        if self._registry is None:
            msg = "Schema registry is unexpectedly None"
            raise RuntimeError(msg)
        return self._registry

    def get_data_service(self) -> DataAccessService:
        """Data access service bound to the registry and the engine."""
        registry = self.get_registry()
        if self._driver is None:
            msg = "SQL driver is unexpectedly None"
            raise RuntimeError(msg)
        return DataAccessService(self._driver, registry)

    @property
    def schema(self) -> str | None:
        return self._schema

    async def shutdown(self) -> None:
        """Dispose of the engine and stop serving the registry."""
        async with self._initialization_lock:
            if self._engine is not None:
                self._logger.info("Disposing database engine…")
                await self._engine.dispose()
                self._engine = None
            self._driver = None
            self._registry = None
            self._state = replace(self._state, phase=RegistryInitPhase.STOPPED)

    @property
    def is_initialized(self) -> bool:
        return self._state.phase is RegistryInitPhase.READY

    def status(self) -> RegistryInitState:
        """Return a snapshot of the initialization state."""
        return self._state
