"""Tests for the tiered connection manager."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any

import pytest

from tierdb.config import ConfigError
from tierdb.drivers import DriverConnectionFactory, StaticDriverProvider
from tierdb.manager import Backend, DatabaseManager
from tierdb.mock import MockConnection, UnsupportedQueryError

EXPLICIT_DSN = "mysql:host=whatever;port=3306;dbname=x;charset=utf8mb4"


def _write_config(tmp_path: Path, body: str, name: str = "database.toml") -> Path:
    path = tmp_path / name
    path.write_text(body)
    return path


@pytest.fixture
def dsn_config(tmp_path: Path) -> Path:
    return _write_config(tmp_path, f'dsn = "{EXPLICIT_DSN}"\n')


class _RecordingFactory:
    """Connection factory that records calls and can be told to fail."""

    def __init__(self, *, fail: set[str] | None = None, result: Any = None) -> None:
        self.calls: list[tuple[str, str | None, str | None]] = []
        self._fail = fail or set()
        self._result = result
        self._real = DriverConnectionFactory()

    def connect(self, dsn: str, user: str | None = None, password: str | None = None) -> Any:
        self.calls.append((dsn, user, password))
        driver = dsn.split(":", 1)[0]
        if driver in self._fail:
            raise sqlite3.OperationalError("forced")
        if self._result is not None:
            return self._result
        return self._real.connect(dsn, user, password)


class _FakeCursor:
    def __init__(self, connection: "_FakeMySQLConnection") -> None:
        self._connection = connection
        self.description = (("value", None, None, None, None, None, None),)
        self._rows: list[tuple[Any, ...]] = []

    def execute(self, query: str, params: tuple[Any, ...]) -> None:
        self._connection.queries.append((query, params))
        self._rows = [("ok",)]

    def fetchone(self) -> tuple[Any, ...] | None:
        return self._rows.pop(0) if self._rows else None

    def fetchall(self) -> list[tuple[Any, ...]]:
        rows, self._rows = self._rows, []
        return rows

    def close(self) -> None:
        return None


class _FakeMySQLConnection:
    def __init__(self) -> None:
        self.queries: list[tuple[str, tuple[Any, ...]]] = []
        self.commits = 0
        self.closed = False

    def cursor(self) -> _FakeCursor:
        return _FakeCursor(self)

    def commit(self) -> None:
        self.commits += 1

    def close(self) -> None:
        self.closed = True


def test_get_config_builds_dsn_and_caches(tmp_path: Path) -> None:
    first = _write_config(
        tmp_path,
        'mysql_user = "u"\nmysql_pass = "p"\nmysql_db = "db"\nmysql_host = "h"\nmysql_port = 1234\n',
        "first.toml",
    )
    second = _write_config(
        tmp_path,
        'mysql_user = "u2"\nmysql_db = "db2"\nmysql_host = "h2"\nmysql_port = 3306\n',
        "second.toml",
    )
    manager = DatabaseManager(drivers=StaticDriverProvider())

    config = manager.get_config(first)

    assert config.user == "u"
    assert config.dsn == "mysql:host=h;port=1234;dbname=db;charset=utf8mb4"
    assert manager.get_config(second) is config


def test_get_config_surfaces_config_errors(tmp_path: Path) -> None:
    manager = DatabaseManager(tmp_path / "missing.toml", drivers=StaticDriverProvider())

    with pytest.raises(ConfigError):
        manager.get_config()
    with pytest.raises(ConfigError):
        manager.get_connection()


def test_incomplete_config_fails_even_without_drivers(tmp_path: Path) -> None:
    config = _write_config(tmp_path, 'user = "u"\n')
    manager = DatabaseManager(config, drivers=StaticDriverProvider())

    with pytest.raises(ConfigError, match="missing keys: host, port, db"):
        manager.get_connection()
    assert manager.backend is None


def test_uses_mock_when_no_drivers(dsn_config: Path) -> None:
    factory = _RecordingFactory()
    manager = DatabaseManager(dsn_config, drivers=StaticDriverProvider(), factory=factory)

    handle = manager.get_connection()

    assert handle.backend is Backend.MOCK
    assert isinstance(handle.connection, MockConnection)
    assert factory.calls == []
    assert manager.fetch_value("SELECT 42 AS test") == 42

    manager.execute("CREATE TEMPORARY TABLE IF NOT EXISTS t1")
    manager.execute("INSERT INTO t1 (id) VALUES (?)", [99])

    assert manager.fetch_all("SELECT * FROM t1") == [{"id": 99}]


def test_mock_helpers_work_with_field_defaults_shape(dsn_config: Path) -> None:
    manager = DatabaseManager(dsn_config, drivers=StaticDriverProvider())
    manager.get_connection()

    manager.execute("CREATE TEMPORARY TABLE IF NOT EXISTS abc_header_field_defaults")
    manager.execute(
        "INSERT INTO abc_header_field_defaults (field_name, field_value) VALUES (?, ?)",
        ["x", "y"],
    )

    row = manager.fetch_one("SELECT field_value FROM abc_header_field_defaults WHERE field_name = ?", ["x"])
    assert row == {"field_value": "y"}

    rows = manager.fetch_all(
        "SELECT field_name, field_value FROM abc_header_field_defaults WHERE field_name = ?",
        ["x"],
    )
    assert rows == [{"field_name": "x", "field_value": "y"}]

    everything = manager.fetch_all("SELECT field_name, field_value FROM abc_header_field_defaults")
    assert everything == rows

    assert manager.fetch_one("SELECT field_value FROM abc_header_field_defaults WHERE field_name = ?", ["z"]) is None
    assert manager.fetch_value("SELECT field_value FROM abc_header_field_defaults WHERE field_name = ?", ["z"]) is None


def test_falls_back_to_sqlite_when_mysql_unavailable(dsn_config: Path) -> None:
    factory = _RecordingFactory()
    manager = DatabaseManager(dsn_config, drivers=StaticDriverProvider(["sqlite"]), factory=factory)

    handle = manager.get_connection()

    assert handle.backend is Backend.SQLITE
    assert isinstance(handle.connection, sqlite3.Connection)
    assert [call[0] for call in factory.calls] == ["sqlite::memory:"]

    manager.execute("CREATE TABLE t (id INTEGER PRIMARY KEY, v TEXT)")
    manager.execute("INSERT INTO t (v) VALUES (?)", ["abc"])

    assert manager.fetch_value("SELECT v FROM t WHERE id = 1") == "abc"
    assert manager.fetch_all("SELECT id, v FROM t") == [{"id": 1, "v": "abc"}]


def test_falls_back_to_sqlite_when_mysql_connect_fails(dsn_config: Path) -> None:
    factory = _RecordingFactory(fail={"mysql"})
    manager = DatabaseManager(dsn_config, drivers=StaticDriverProvider(["mysql", "sqlite"]), factory=factory)

    handle = manager.get_connection()

    assert handle.backend is Backend.SQLITE
    assert [call[0] for call in factory.calls] == [EXPLICIT_DSN, "sqlite::memory:"]


def test_falls_back_to_mock_when_sqlite_creation_fails(dsn_config: Path) -> None:
    factory = _RecordingFactory(fail={"sqlite"})
    manager = DatabaseManager(dsn_config, drivers=StaticDriverProvider(["sqlite"]), factory=factory)

    handle = manager.get_connection()

    assert handle.backend is Backend.MOCK
    assert isinstance(handle.connection, MockConnection)


def test_sqlite_path_comes_from_config(tmp_path: Path) -> None:
    db_file = tmp_path / "fallback.db"
    config = _write_config(tmp_path, f'dsn = "{EXPLICIT_DSN}"\nsqlite_path = "{db_file}"\n')
    manager = DatabaseManager(config, drivers=StaticDriverProvider(["sqlite"]))

    manager.execute("CREATE TABLE notes (body TEXT)")
    manager.execute("INSERT INTO notes (body) VALUES (?)", ["persisted"])
    manager.reset()

    reopened = sqlite3.connect(db_file)
    try:
        assert reopened.execute("SELECT body FROM notes").fetchall() == [("persisted",)]
    finally:
        reopened.close()


def test_primary_wins_when_available_and_reachable(tmp_path: Path) -> None:
    config = _write_config(tmp_path, 'host = "db"\nport = 3306\ndb = "app"\nuser = "u"\npass = "p"\n')
    connection = _FakeMySQLConnection()
    factory = _RecordingFactory(result=connection)
    manager = DatabaseManager(config, drivers=StaticDriverProvider(["mysql", "sqlite"]), factory=factory)

    handle = manager.get_connection()

    assert handle.backend is Backend.MYSQL
    assert handle.connection is connection
    assert factory.calls == [("mysql:host=db;port=3306;dbname=app;charset=utf8mb4", "u", "p")]


def test_primary_queries_use_format_placeholders(tmp_path: Path) -> None:
    config = _write_config(tmp_path, f'dsn = "{EXPLICIT_DSN}"\n')
    connection = _FakeMySQLConnection()
    manager = DatabaseManager(
        config,
        drivers=StaticDriverProvider(["mysql"]),
        factory=_RecordingFactory(result=connection),
    )

    manager.execute("UPDATE t SET v = ? WHERE k LIKE 'a%'", ["x"])
    value = manager.fetch_value("SELECT value FROM t WHERE id = ?", [1])

    assert value == "ok"
    assert connection.queries == [
        ("UPDATE t SET v = %s WHERE k LIKE 'a%%'", ("x",)),
        ("SELECT value FROM t WHERE id = %s", (1,)),
    ]
    assert connection.commits == 1


def test_connection_is_cached_until_reset(dsn_config: Path) -> None:
    factory = _RecordingFactory()
    drivers = StaticDriverProvider(["sqlite"])
    manager = DatabaseManager(dsn_config, drivers=drivers, factory=factory)

    first = manager.get_connection()
    drivers.drivers = frozenset()
    second = manager.get_connection()

    assert second is first
    assert manager.backend is Backend.SQLITE

    manager.reset()

    assert manager.backend is None
    assert manager.get_connection().backend is Backend.MOCK
    assert len(factory.calls) == 1


def test_reset_clears_config_and_closes_connection(tmp_path: Path) -> None:
    other_dsn = "mysql:host=other;port=1;dbname=y;charset=utf8mb4"
    first = _write_config(tmp_path, f'dsn = "{EXPLICIT_DSN}"\n', "first.toml")
    second = _write_config(tmp_path, f'dsn = "{other_dsn}"\n', "second.toml")
    connection = _FakeMySQLConnection()
    manager = DatabaseManager(drivers=StaticDriverProvider(["mysql"]), factory=_RecordingFactory(result=connection))

    manager.get_config(first)
    manager.get_connection()
    manager.reset()
    manager.reset()

    assert connection.closed is True
    assert manager.get_config(second).dsn == other_dsn


def test_mock_errors_reach_the_caller(dsn_config: Path) -> None:
    manager = DatabaseManager(dsn_config, drivers=StaticDriverProvider())

    with pytest.raises(UnsupportedQueryError):
        manager.fetch_all("SELECT COUNT(*) FROM t")


def test_real_engine_errors_propagate_unchanged(dsn_config: Path) -> None:
    manager = DatabaseManager(dsn_config, drivers=StaticDriverProvider(["sqlite"]))

    with pytest.raises(sqlite3.OperationalError):
        manager.fetch_all("SELECT * FROM missing_table")
