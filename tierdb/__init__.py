"""Tiered database connection manager with an in-memory fallback."""

from __future__ import annotations

from .config import ConfigError, DatabaseConfig, TomlConfigLoader, load_config
from .drivers import DriverConnectionFactory, InstalledDriverProvider, StaticDriverProvider
from .manager import Backend, ConnectionHandle, DatabaseManager
from .mock import MockConnection, UnsupportedQueryError

__version__ = "0.1.0"

__all__ = [
    "Backend",
    "ConfigError",
    "ConnectionHandle",
    "DatabaseConfig",
    "DatabaseManager",
    "DriverConnectionFactory",
    "InstalledDriverProvider",
    "MockConnection",
    "StaticDriverProvider",
    "TomlConfigLoader",
    "UnsupportedQueryError",
    "__version__",
    "load_config",
]
