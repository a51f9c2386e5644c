"""Tiered connection manager with query helpers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Sequence

from .config import ConfigLoader, DatabaseConfig, load_config
from .drivers import (
    MYSQL,
    SQLITE,
    ConnectionFactory,
    DriverAvailabilityProvider,
    DriverConnectionFactory,
    InstalledDriverProvider,
    driver_of,
)
from .lexer import to_paramstyle
from .mock import MockConnection

LOG = logging.getLogger(__name__)

_REAL_BACKENDS = frozenset({MYSQL, SQLITE})


class Backend(str, Enum):
    """Which engine serves the manager's queries."""

    MYSQL = MYSQL
    SQLITE = SQLITE
    MOCK = "mock"

    @property
    def paramstyle(self) -> str:
        return "format" if self is Backend.MYSQL else "qmark"


@dataclass(frozen=True, slots=True)
class ConnectionHandle:
    """The resolved connection and the backend it belongs to."""

    backend: Backend
    connection: Any

    @property
    def paramstyle(self) -> str:
        return self.backend.paramstyle


class DatabaseManager:
    """Lazily resolves a connection and runs helper queries against it.

    Configuration and connection are cached on the instance after first use;
    :meth:`reset` drops both so the next call starts over.
    """

    def __init__(
        self,
        source: str | Path | None = None,
        *,
        loader: ConfigLoader | None = None,
        drivers: DriverAvailabilityProvider | None = None,
        factory: ConnectionFactory | None = None,
    ) -> None:
        self._source = source
        self._loader = loader
        self._drivers = drivers or InstalledDriverProvider()
        self._factory = factory or DriverConnectionFactory()
        self._config: DatabaseConfig | None = None
        self._handle: ConnectionHandle | None = None

    @property
    def backend(self) -> Backend | None:
        """Backend of the cached connection, if one was resolved."""

        return self._handle.backend if self._handle else None

    def get_config(self, source: str | Path | None = None) -> DatabaseConfig:
        """Load the configuration once; later calls return the cached copy."""

        if self._config is None:
            target = source if source is not None else self._source
            self._config = load_config(target, self._loader)
            LOG.debug("Loaded database config", extra={"source": str(target), "dsn": self._config.dsn})
        return self._config

    def get_connection(self, source: str | Path | None = None) -> ConnectionHandle:
        """Return the cached handle, resolving one on first use."""

        if self._handle is None:
            self._handle = self._resolve(self.get_config(source))
            LOG.info("Database backend resolved", extra={"backend": self._handle.backend.value})
        return self._handle

    def execute(self, query: str, params: Sequence[Any] = ()) -> None:
        """Run a statement that returns no rows."""

        handle = self.get_connection()
        cursor = self._run(handle, query, params)
        try:
            handle.connection.commit()
        finally:
            cursor.close()

    def fetch_all(self, query: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Return every row as a column -> value mapping."""

        cursor = self._run(self.get_connection(), query, params)
        try:
            columns = _columns(cursor)
            return [dict(zip(columns, row)) for row in cursor.fetchall()]
        finally:
            cursor.close()

    def fetch_one(self, query: str, params: Sequence[Any] = ()) -> dict[str, Any] | None:
        """Return the first row, or ``None`` when nothing matched."""

        cursor = self._run(self.get_connection(), query, params)
        try:
            row = cursor.fetchone()
            if row is None:
                return None
            return dict(zip(_columns(cursor), row))
        finally:
            cursor.close()

    def fetch_value(self, query: str, params: Sequence[Any] = ()) -> Any:
        """Return the first column of the first row, or ``None``."""

        cursor = self._run(self.get_connection(), query, params)
        try:
            row = cursor.fetchone()
        finally:
            cursor.close()
        if not row:
            return None
        return row[0]

    def reset(self) -> None:
        """Close the cached connection and forget the cached config."""

        handle, self._handle, self._config = self._handle, None, None
        if handle is None:
            return
        try:
            handle.connection.close()
        except Exception:  # pragma: no cover - best effort cleanup
            LOG.debug("Closing connection during reset failed", exc_info=True)

    def _resolve(self, config: DatabaseConfig) -> ConnectionHandle:
        dsn = config.dsn or config.derived_dsn()
        driver = driver_of(dsn)
        available = self._drivers.available()
        if driver in _REAL_BACKENDS and driver in available:
            handle = self._attempt(Backend(driver), dsn, config)
            if handle is not None:
                return handle
        else:
            LOG.info("Configured driver unavailable", extra={"driver": driver, "available": sorted(available)})
        if SQLITE in available:
            handle = self._attempt(Backend.SQLITE, f"{SQLITE}:{config.sqlite_path}", config)
            if handle is not None:
                return handle
        LOG.warning("No database driver usable; using in-memory mock backend")
        return ConnectionHandle(Backend.MOCK, MockConnection())

    def _attempt(self, backend: Backend, dsn: str, config: DatabaseConfig) -> ConnectionHandle | None:
        try:
            connection = self._factory.connect(dsn, config.user, config.password)
        except Exception as exc:
            LOG.warning(
                "Connection attempt failed",
                extra={"backend": backend.value, "error": str(exc)},
            )
            return None
        return ConnectionHandle(backend, connection)

    def _run(self, handle: ConnectionHandle, query: str, params: Sequence[Any]) -> Any:
        cursor = handle.connection.cursor()
        try:
            cursor.execute(to_paramstyle(query, handle.paramstyle), tuple(params))
        except Exception:
            cursor.close()
            raise
        return cursor


def _columns(cursor: Any) -> tuple[str, ...]:
    description = cursor.description or ()
    return tuple(str(column[0]) for column in description)


__all__ = ["Backend", "ConnectionHandle", "DatabaseManager"]
