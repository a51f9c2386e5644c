"""Driver discovery and DB-API connection construction."""

from __future__ import annotations

import importlib
import importlib.util
import logging
from typing import Any, Iterable, Mapping, Protocol, runtime_checkable

LOG = logging.getLogger(__name__)

MYSQL = "mysql"
SQLITE = "sqlite"

DRIVER_MODULES: Mapping[str, str] = {
    MYSQL: "pymysql",
    SQLITE: "sqlite3",
}


class UnknownDriverError(ConnectionError):
    """Raised when a DSN names a driver this package cannot open."""


@runtime_checkable
class DriverAvailabilityProvider(Protocol):
    """Reports which real drivers can be used right now."""

    def available(self) -> frozenset[str]:
        """Return the identifiers of loadable drivers."""


@runtime_checkable
class ConnectionFactory(Protocol):
    """Opens DB-API connections from a DSN."""

    def connect(self, dsn: str, user: str | None = None, password: str | None = None) -> Any:
        """Open a connection or raise on failure."""


class InstalledDriverProvider:
    """Probes the interpreter for importable driver modules on every call."""

    def __init__(self, modules: Mapping[str, str] | None = None) -> None:
        self._modules = dict(modules or DRIVER_MODULES)

    def available(self) -> frozenset[str]:
        found = {driver for driver, module in self._modules.items() if importlib.util.find_spec(module) is not None}
        LOG.debug("Probed database drivers", extra={"drivers": sorted(found)})
        return frozenset(found)


class StaticDriverProvider:
    """Fixed driver set, for tests and explicit overrides."""

    def __init__(self, drivers: Iterable[str] = ()) -> None:
        self.drivers = frozenset(drivers)

    def available(self) -> frozenset[str]:
        return self.drivers


class DriverConnectionFactory:
    """Opens connections through PyMySQL or :mod:`sqlite3` depending on the DSN."""

    def __init__(self, *, connect_timeout: int = 3) -> None:
        self._connect_timeout = connect_timeout

    def connect(self, dsn: str, user: str | None = None, password: str | None = None) -> Any:
        driver, params = parse_dsn(dsn)
        if driver == MYSQL:
            return self._connect_mysql(params, user, password)
        if driver == SQLITE:
            return self._connect_sqlite(params)
        raise UnknownDriverError(f"Unsupported driver '{driver}' in DSN")

    def _connect_mysql(self, params: Mapping[str, str], user: str | None, password: str | None) -> Any:
        pymysql = importlib.import_module(DRIVER_MODULES[MYSQL])
        kwargs: dict[str, object] = {
            "host": params.get("host") or "localhost",
            "connect_timeout": self._connect_timeout,
        }
        if params.get("port"):
            kwargs["port"] = int(params["port"])
        if params.get("dbname"):
            kwargs["database"] = params["dbname"]
        if params.get("charset"):
            kwargs["charset"] = params["charset"]
        if params.get("unix_socket"):
            kwargs["unix_socket"] = params["unix_socket"]
        if user:
            kwargs["user"] = user
        if password:
            kwargs["password"] = password
        return pymysql.connect(**kwargs)

    def _connect_sqlite(self, params: Mapping[str, str]) -> Any:
        sqlite3 = importlib.import_module(DRIVER_MODULES[SQLITE])
        return sqlite3.connect(params["path"])


def parse_dsn(dsn: str) -> tuple[str, dict[str, str]]:
    """Split ``driver:key=value;...`` into the driver name and its parameters.

    SQLite DSNs carry a path instead of key/value pairs
    (``sqlite:/tmp/app.db`` or ``sqlite::memory:``), returned under ``path``.
    """

    driver, sep, rest = dsn.partition(":")
    if not sep or not driver:
        raise UnknownDriverError(f"DSN '{dsn}' does not name a driver")
    driver = driver.strip().lower()
    if driver == SQLITE:
        return driver, {"path": rest or ":memory:"}
    params: dict[str, str] = {}
    for chunk in rest.split(";"):
        key, eq, value = chunk.partition("=")
        if eq and key.strip():
            params[key.strip().lower()] = value.strip()
    return driver, params


def driver_of(dsn: str) -> str | None:
    """Return the driver named by *dsn*, or ``None`` when it names none."""

    try:
        return parse_dsn(dsn)[0]
    except UnknownDriverError:
        return None


__all__ = [
    "DRIVER_MODULES",
    "MYSQL",
    "SQLITE",
    "ConnectionFactory",
    "DriverAvailabilityProvider",
    "DriverConnectionFactory",
    "InstalledDriverProvider",
    "StaticDriverProvider",
    "UnknownDriverError",
    "driver_of",
    "parse_dsn",
]
