"""Tests for driver probing and connection construction."""

from __future__ import annotations

import sqlite3
from typing import Any

import pytest

from tierdb import drivers as drivers_module
from tierdb.drivers import (
    DriverConnectionFactory,
    InstalledDriverProvider,
    StaticDriverProvider,
    UnknownDriverError,
    driver_of,
    parse_dsn,
)


def test_parse_dsn_splits_mysql_parameters() -> None:
    driver, params = parse_dsn("mysql:host=h;port=1234;dbname=db;charset=utf8mb4")

    assert driver == "mysql"
    assert params == {"host": "h", "port": "1234", "dbname": "db", "charset": "utf8mb4"}


def test_parse_dsn_keeps_sqlite_path() -> None:
    assert parse_dsn("sqlite::memory:") == ("sqlite", {"path": ":memory:"})
    assert parse_dsn("sqlite:/tmp/app.db") == ("sqlite", {"path": "/tmp/app.db"})


def test_driver_of_returns_none_without_prefix() -> None:
    assert driver_of("host=h;port=1") is None
    assert driver_of("MySQL:host=h") == "mysql"


def test_installed_provider_reprobes_each_call(monkeypatch: pytest.MonkeyPatch) -> None:
    installed = {"sqlite3"}

    def _find_spec(name: str) -> object | None:
        return object() if name in installed else None

    monkeypatch.setattr(drivers_module.importlib.util, "find_spec", _find_spec)
    provider = InstalledDriverProvider()

    assert provider.available() == frozenset({"sqlite"})
    installed.add("pymysql")
    assert provider.available() == frozenset({"sqlite", "mysql"})


def test_static_provider_reports_given_drivers() -> None:
    assert StaticDriverProvider(["sqlite"]).available() == frozenset({"sqlite"})
    assert StaticDriverProvider().available() == frozenset()


def test_factory_opens_sqlite_connections() -> None:
    connection = DriverConnectionFactory().connect("sqlite::memory:")
    try:
        assert isinstance(connection, sqlite3.Connection)
        assert connection.execute("SELECT 1").fetchone() == (1,)
    finally:
        connection.close()


def test_factory_passes_mysql_parameters(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[dict[str, Any]] = []

    class _FakePyMySQL:
        @staticmethod
        def connect(**kwargs: Any) -> str:
            calls.append(kwargs)
            return "connection"

    monkeypatch.setattr(drivers_module.importlib, "import_module", lambda name: _FakePyMySQL)
    factory = DriverConnectionFactory(connect_timeout=7)

    result = factory.connect("mysql:host=h;port=1234;dbname=db;charset=utf8mb4", "u", "p")

    assert result == "connection"
    assert calls == [
        {
            "host": "h",
            "port": 1234,
            "database": "db",
            "charset": "utf8mb4",
            "connect_timeout": 7,
            "user": "u",
            "password": "p",
        }
    ]


def test_factory_rejects_unknown_driver() -> None:
    with pytest.raises(UnknownDriverError):
        DriverConnectionFactory().connect("pgsql:host=h")
