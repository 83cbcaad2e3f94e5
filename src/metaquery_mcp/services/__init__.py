"""Services package for metaquery-mcp.

Main Components:
- ConfigService: Configuration and database engine creation
- RegistryManager: Lifecycle of the schema registry and data access service
"""

from .config_service import ConfigService
from .registry_manager import RegistryManager

__all__ = [
    "ConfigService",
    "RegistryManager",
]
