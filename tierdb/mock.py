"""In-memory backend used when no real database driver is usable.

The mock understands a handful of statement shapes, enough for helper
queries and tests to run without MySQL or SQLite:

* ``CREATE [TEMPORARY] TABLE [IF NOT EXISTS] name [(...)] [table options]``
* ``INSERT INTO name (cols...) VALUES (...)[, (...)]``
* ``SELECT <literal> [AS alias][, ...]``
* ``SELECT cols|* FROM name [WHERE col = ?|literal]``

Anything else raises :class:`UnsupportedQueryError`. The connection and
cursor follow the DB-API 2.0 surface so the manager can drive every backend
the same way.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Protocol, Sequence

from .lexer import SqlSyntaxError, Token, tokenize

LOG = logging.getLogger(__name__)

Row = dict[str, Any]

_CONSTRAINT_WORDS = frozenset({"CONSTRAINT", "PRIMARY", "UNIQUE", "KEY", "INDEX", "FOREIGN", "CHECK", "FULLTEXT"})
_TYPE_WORDS = frozenset(
    {
        "BIGINT", "BLOB", "BOOL", "BOOLEAN", "CHAR", "DATE", "DATETIME", "DECIMAL", "DOUBLE", "FLOAT",
        "INT", "INTEGER", "JSON", "NUMERIC", "REAL", "SMALLINT", "TEXT", "TIMESTAMP", "TINYINT", "VARCHAR",
    }
)
_TABLE_OPTIONS = frozenset(
    {"AUTO_INCREMENT", "CHARSET", "COLLATE", "COMMENT", "ENGINE", "ROW_FORMAT", "STRICT", "WITHOUT"}
)


class UnsupportedQueryError(RuntimeError):
    """Raised when the mock backend cannot interpret a query shape."""


@dataclass(slots=True)
class MockTable:
    """Named, ordered collection of row mappings."""

    name: str
    columns: tuple[str, ...] = ()
    rows: list[Row] = field(default_factory=list)

    @property
    def uses_ids(self) -> bool:
        return "id" in self.columns or any("id" in row for row in self.rows)

    def next_id(self) -> int:
        ids = [row["id"] for row in self.rows if isinstance(row.get("id"), int)]
        return max(ids, default=0) + 1

    def append(self, row: Row) -> Row:
        if "id" not in row and self.uses_ids:
            row = {"id": self.next_id(), **row}
        self.rows.append(row)
        return row


@dataclass(frozen=True, slots=True)
class MockResult:
    """Outcome of one executed statement."""

    columns: tuple[str, ...] = ()
    rows: tuple[tuple[Any, ...], ...] = ()
    rowcount: int = -1
    lastrowid: int | None = None


# Values referenced by INSERT and WHERE clauses.


@dataclass(frozen=True, slots=True)
class _Param:
    index: int

    def resolve(self, params: Sequence[Any]) -> Any:
        return params[self.index]


@dataclass(frozen=True, slots=True)
class _Literal:
    value: Any

    def resolve(self, params: Sequence[Any]) -> Any:
        return self.value


@dataclass(frozen=True, slots=True)
class _ColumnRef:
    name: str


_Value = _Param | _Literal


class _Plan(Protocol):
    def run(self, tables: dict[str, MockTable], params: Sequence[Any]) -> MockResult: ...


@dataclass(frozen=True, slots=True)
class _CreateTable:
    table: str
    columns: tuple[str, ...]

    def run(self, tables: dict[str, MockTable], params: Sequence[Any]) -> MockResult:
        if self.table not in tables:
            tables[self.table] = MockTable(self.table, self.columns)
        return MockResult(rowcount=0)


@dataclass(frozen=True, slots=True)
class _Insert:
    table: str
    columns: tuple[str, ...]
    values: tuple[tuple[_Value, ...], ...]

    def run(self, tables: dict[str, MockTable], params: Sequence[Any]) -> MockResult:
        target = tables.setdefault(self.table, MockTable(self.table))
        lastrowid: int | None = None
        for values in self.values:
            row = target.append({col: value.resolve(params) for col, value in zip(self.columns, values)})
            lastrowid = row.get("id") if isinstance(row.get("id"), int) else lastrowid
        return MockResult(rowcount=len(self.values), lastrowid=lastrowid)


@dataclass(frozen=True, slots=True)
class _SelectLiterals:
    items: tuple[tuple[str, _Literal], ...]

    def run(self, tables: dict[str, MockTable], params: Sequence[Any]) -> MockResult:
        columns = tuple(alias for alias, _ in self.items)
        row = tuple(literal.value for _, literal in self.items)
        return MockResult(columns=columns, rows=(row,), rowcount=1)


@dataclass(frozen=True, slots=True)
class _SelectRows:
    table: str
    # None selects every column (``*``).
    items: tuple[tuple[str, _ColumnRef | _Literal], ...] | None
    where: tuple[str, _Value] | None = None

    def run(self, tables: dict[str, MockTable], params: Sequence[Any]) -> MockResult:
        source = tables.get(self.table)
        rows = list(source.rows) if source else []
        if self.where is not None:
            column, value = self.where
            expected = value.resolve(params)
            rows = [row for row in rows if column in row and row[column] == expected]
        if self.items is None:
            columns = _all_columns(source, rows)
            projected = tuple(tuple(row.get(col) for col in columns) for row in rows)
        else:
            columns = tuple(alias for alias, _ in self.items)
            projected = tuple(tuple(_project(row, ref) for _, ref in self.items) for row in rows)
        return MockResult(columns=columns, rows=projected, rowcount=len(projected))


def _project(row: Row, ref: _ColumnRef | _Literal) -> Any:
    if isinstance(ref, _Literal):
        return ref.value
    return row.get(ref.name)


def _all_columns(table: MockTable | None, rows: Sequence[Row]) -> tuple[str, ...]:
    columns: list[str] = list(table.columns) if table else []
    for row in rows:
        for key in row:
            if key not in columns:
                columns.append(key)
    return tuple(columns)


class MockStatement:
    """A parsed query bound to the connection whose tables it touches."""

    def __init__(self, connection: MockConnection, query: str, plan: _Plan, placeholders: int) -> None:
        self._connection = connection
        self._plan = plan
        self.query = query
        self.placeholders = placeholders

    def execute(self, params: Sequence[Any] = ()) -> MockResult:
        """Run the statement against the owning connection's tables."""

        bound = tuple(params)
        if len(bound) != self.placeholders:
            raise UnsupportedQueryError(
                f"Query expects {self.placeholders} parameter(s), got {len(bound)}: {self.query}"
            )
        result = self._plan.run(self._connection._tables, bound)
        LOG.debug("Mock statement executed", extra={"query": self.query, "rowcount": result.rowcount})
        return result


class MockCursor:
    """DB-API style cursor over :class:`MockConnection`."""

    arraysize = 1

    def __init__(self, connection: MockConnection) -> None:
        self._connection = connection
        self._result = MockResult()
        self._position = 0
        self.closed = False

    @property
    def description(self) -> tuple[tuple[Any, ...], ...] | None:
        if not self._result.columns:
            return None
        return tuple((name, None, None, None, None, None, None) for name in self._result.columns)

    @property
    def rowcount(self) -> int:
        return self._result.rowcount

    @property
    def lastrowid(self) -> int | None:
        return self._result.lastrowid

    def execute(self, query: str, params: Sequence[Any] = ()) -> MockCursor:
        self._result = self._connection.prepare(query).execute(params)
        self._position = 0
        return self

    def fetchone(self) -> tuple[Any, ...] | None:
        if self._position >= len(self._result.rows):
            return None
        row = self._result.rows[self._position]
        self._position += 1
        return row

    def fetchmany(self, size: int | None = None) -> list[tuple[Any, ...]]:
        count = size or self.arraysize
        rows = list(self._result.rows[self._position : self._position + count])
        self._position += len(rows)
        return rows

    def fetchall(self) -> list[tuple[Any, ...]]:
        rows = list(self._result.rows[self._position :])
        self._position = len(self._result.rows)
        return rows

    def close(self) -> None:
        self.closed = True


class MockConnection:
    """In-memory stand-in for a DB-API connection."""

    paramstyle = "qmark"

    def __init__(self) -> None:
        self._tables: dict[str, MockTable] = {}
        self.closed = False

    @property
    def tables(self) -> Mapping[str, MockTable]:
        """Read-only view of the registered tables."""

        return MappingProxyType(self._tables)

    def prepare(self, query: str) -> MockStatement:
        """Compile *query* into a statement bound to this connection."""

        try:
            tokens = tokenize(query)
        except SqlSyntaxError as exc:
            raise UnsupportedQueryError(f"{exc} ({query!r})") from exc
        parser = _Parser(tokens, query)
        plan = parser.parse()
        return MockStatement(self, query, plan, parser.placeholders)

    def cursor(self) -> MockCursor:
        return MockCursor(self)

    def commit(self) -> None:
        return None

    def rollback(self) -> None:
        return None

    def close(self) -> None:
        self.closed = True


class _Parser:
    """Recursive-descent matcher for the supported statement shapes."""

    def __init__(self, tokens: list[Token], query: str) -> None:
        self._tokens = tokens
        self._pos = 0
        self._query = query
        self.placeholders = 0

    def parse(self) -> _Plan:
        head = self._peek()
        if head is None:
            raise self._unsupported()
        if head.is_word("CREATE"):
            return self._create()
        if head.is_word("INSERT"):
            return self._insert()
        if head.is_word("SELECT"):
            return self._select()
        raise self._unsupported()

    # Statement shapes

    def _create(self) -> _CreateTable:
        self._expect_word("CREATE")
        if not self._accept_word("TEMPORARY"):
            self._accept_word("TEMP")
        self._expect_word("TABLE")
        if self._accept_word("IF"):
            self._expect_word("NOT")
            self._expect_word("EXISTS")
        table = self._dotted_name()
        columns: tuple[str, ...] = ()
        if self._accept_punct("("):
            columns = self._column_definitions()
        self._table_options()
        return _CreateTable(table, columns)

    def _insert(self) -> _Insert:
        self._expect_word("INSERT")
        self._accept_word("INTO")
        table = self._dotted_name()
        self._expect_punct("(")
        columns = self._name_list()
        self._expect_word("VALUES")
        rows: list[tuple[_Value, ...]] = []
        while True:
            self._expect_punct("(")
            values = [self._value()]
            while self._accept_punct(","):
                values.append(self._value())
            self._expect_punct(")")
            if len(values) != len(columns):
                raise self._unsupported("column and value counts differ")
            rows.append(tuple(values))
            if not self._accept_punct(","):
                break
        self._expect_end()
        return _Insert(table, columns, tuple(rows))

    def _select(self) -> _SelectLiterals | _SelectRows:
        self._expect_word("SELECT")
        items = self._select_items()
        if not self._accept_word("FROM"):
            self._expect_end()
            literals: list[tuple[str, _Literal]] = []
            for alias, ref in items or ():
                if not isinstance(ref, _Literal):
                    raise self._unsupported("column reference without FROM")
                literals.append((alias, ref))
            if not literals:
                raise self._unsupported()
            return _SelectLiterals(tuple(literals))
        table = self._dotted_name()
        where: tuple[str, _Value] | None = None
        if self._accept_word("WHERE"):
            column = self._dotted_name().rsplit(".", 1)[-1]
            self._expect_punct("=")
            where = (column, self._value())
        self._expect_end()
        return _SelectRows(table, items, where)

    # Clause helpers

    def _select_items(self) -> tuple[tuple[str, _ColumnRef | _Literal], ...] | None:
        if self._accept_punct("*"):
            return None
        items = [self._select_item()]
        while self._accept_punct(","):
            items.append(self._select_item())
        return tuple(items)

    def _select_item(self) -> tuple[str, _ColumnRef | _Literal]:
        token = self._peek()
        if token is None:
            raise self._unsupported()
        ref: _ColumnRef | _Literal
        if self._is_literal_start(token):
            start = self._pos
            ref = self._literal()
            label = " ".join(tok.value for tok in self._tokens[start : self._pos])
        else:
            name = self._dotted_name()
            ref = _ColumnRef(name.rsplit(".", 1)[-1])
            label = ref.name
        if self._accept_word("AS"):
            label = self._identifier()
        else:
            nxt = self._peek()
            if nxt is not None and nxt.kind == "name":
                label = self._identifier()
        return label, ref

    def _column_definitions(self) -> tuple[str, ...]:
        columns: list[str] = []
        depth = 1
        expect_name = True
        while depth:
            token = self._next()
            if token.is_punct("("):
                depth += 1
            elif token.is_punct(")"):
                depth -= 1
            elif token.is_punct(",") and depth == 1:
                expect_name = True
                continue
            elif expect_name and depth == 1 and token.kind in ("name", "keyword"):
                if not self._starts_constraint(token):
                    columns.append(token.value)
            expect_name = False
        return tuple(columns)

    def _starts_constraint(self, token: Token) -> bool:
        """Tell ``KEY (a)`` or ``PRIMARY KEY`` apart from a column named ``key``."""

        word = token.upper
        if word not in _CONSTRAINT_WORDS:
            return False
        nxt = self._peek()
        if nxt is None or nxt.is_punct(",") or nxt.is_punct(")"):
            return False
        if word in ("PRIMARY", "FOREIGN"):
            return nxt.is_word("KEY")
        if word == "CONSTRAINT":
            return True
        if nxt.is_punct("(") or nxt.is_word("KEY") or nxt.is_word("INDEX"):
            return True
        after = self._tokens[self._pos + 1] if self._pos + 1 < len(self._tokens) else None
        return nxt.upper not in _TYPE_WORDS and after is not None and after.is_punct("(")

    def _table_options(self) -> None:
        # ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 and similar; nothing else may follow.
        while self._peek() is not None:
            self._accept_word("DEFAULT")
            token = self._next()
            if token.is_word("CHARACTER"):
                self._expect_word("SET")
            elif token.is_word("WITHOUT"):
                self._expect_word("ROWID")
            elif token.kind not in ("name", "keyword") or token.upper not in _TABLE_OPTIONS:
                raise self._unsupported(f"unexpected {token.value!r}")
            if not token.is_word("STRICT") and not token.is_word("WITHOUT"):
                self._accept_punct("=")
                value = self._next()
                if value.kind not in ("name", "keyword", "number", "string"):
                    raise self._unsupported(f"unexpected {value.value!r}")
            self._accept_punct(",")

    def _name_list(self) -> tuple[str, ...]:
        names = [self._identifier()]
        while self._accept_punct(","):
            names.append(self._identifier())
        self._expect_punct(")")
        return tuple(names)

    def _value(self) -> _Value:
        token = self._peek()
        if token is not None and token.kind == "placeholder":
            if token.value != "?":
                raise self._unsupported(f"placeholder {token.value!r}")
            self._pos += 1
            param = _Param(self.placeholders)
            self.placeholders += 1
            return param
        return self._literal()

    def _literal(self) -> _Literal:
        token = self._next()
        negate = False
        if token.is_punct("-") or token.is_punct("+"):
            negate = token.value == "-"
            token = self._next()
            if token.kind != "number":
                raise self._unsupported()
        if token.kind == "number":
            try:
                value: Any = _number(token.value)
            except ValueError:
                raise self._unsupported(f"number {token.value!r}") from None
            return _Literal(-value if negate else value)
        if token.kind == "string":
            return _Literal(_unquote(token.value))
        if token.is_word("NULL"):
            return _Literal(None)
        if token.is_word("TRUE"):
            return _Literal(True)
        if token.is_word("FALSE"):
            return _Literal(False)
        raise self._unsupported(f"unexpected {token.value!r}")

    def _is_literal_start(self, token: Token) -> bool:
        return (
            token.kind in ("number", "string")
            or token.is_punct("-")
            or token.is_punct("+")
            or any(token.is_word(word) for word in ("NULL", "TRUE", "FALSE"))
        )

    def _dotted_name(self) -> str:
        parts = [self._identifier()]
        while self._accept_punct("."):
            parts.append(self._identifier())
        return ".".join(parts)

    def _identifier(self) -> str:
        token = self._next()
        if token.kind not in ("name", "keyword"):
            raise self._unsupported(f"expected identifier, got {token.value!r}")
        return token.value

    # Token cursor

    def _peek(self) -> Token | None:
        if self._pos < len(self._tokens):
            return self._tokens[self._pos]
        return None

    def _next(self) -> Token:
        token = self._peek()
        if token is None:
            raise self._unsupported("unexpected end of query")
        self._pos += 1
        return token

    def _accept_word(self, word: str) -> bool:
        token = self._peek()
        if token is not None and token.is_word(word):
            self._pos += 1
            return True
        return False

    def _accept_punct(self, value: str) -> bool:
        token = self._peek()
        if token is not None and token.is_punct(value):
            self._pos += 1
            return True
        return False

    def _expect_word(self, word: str) -> None:
        if not self._accept_word(word):
            raise self._unsupported(f"expected {word}")

    def _expect_punct(self, value: str) -> None:
        if not self._accept_punct(value):
            raise self._unsupported(f"expected {value!r}")

    def _expect_end(self) -> None:
        token = self._peek()
        if token is not None:
            raise self._unsupported(f"unexpected {token.value!r}")

    def _unsupported(self, detail: str | None = None) -> UnsupportedQueryError:
        message = f"Mock backend cannot run query: {self._query!r}"
        if detail:
            message = f"{message} ({detail})"
        return UnsupportedQueryError(message)


def _number(text: str) -> int | float:
    try:
        return int(text)
    except ValueError:
        return float(text)


def _unquote(text: str) -> str:
    quote = text[0]
    body = text[1:-1]
    return body.replace(quote * 2, quote).replace(f"\\{quote}", quote)


__all__ = [
    "MockConnection",
    "MockCursor",
    "MockResult",
    "MockStatement",
    "MockTable",
    "UnsupportedQueryError",
]
