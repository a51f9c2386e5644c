"""Token-level helpers shared by the mock backend and the query helpers."""

from __future__ import annotations

from dataclasses import dataclass

import sqlparse
from sqlparse import tokens as T


class SqlSyntaxError(ValueError):
    """Raised when a query cannot be tokenized into exactly one statement."""


@dataclass(frozen=True, slots=True)
class Token:
    """Normalized lexical token.

    ``kind`` is one of ``keyword``, ``name``, ``string``, ``number``,
    ``placeholder``, ``punct``, ``op`` or ``other``.
    """

    kind: str
    value: str

    @property
    def upper(self) -> str:
        return self.value.upper()

    def is_word(self, word: str) -> bool:
        """True for keywords (or names lexed as such) spelling *word*."""

        return self.kind in ("keyword", "name") and self.upper == word

    def is_punct(self, value: str) -> bool:
        return self.kind in ("punct", "op") and self.value == value


def tokenize(query: str) -> list[Token]:
    """Split *query* into tokens, rejecting empty and multi-statement input."""

    statements = [tokens for tokens in (_statement_tokens(stmt) for stmt in sqlparse.parse(query)) if tokens]
    if not statements:
        raise SqlSyntaxError("Query is empty.")
    if len(statements) > 1:
        raise SqlSyntaxError("Multi-statement queries are not supported.")
    return statements[0]


def to_paramstyle(query: str, paramstyle: str) -> str:
    """Rewrite ``?`` placeholders for drivers using ``format`` or ``pyformat``."""

    if paramstyle not in ("format", "pyformat"):
        return query
    parts: list[str] = []
    for statement in sqlparse.parse(query):
        for token in statement.flatten():
            if token.ttype in T.Name.Placeholder and token.value == "?":
                parts.append("%s")
            else:
                parts.append(token.value.replace("%", "%%"))
    return "".join(parts)


def _statement_tokens(statement: sqlparse.sql.Statement) -> list[Token]:
    tokens: list[Token] = []
    for raw in statement.flatten():
        tokens.extend(_classify(raw))
    while tokens and tokens[-1].is_punct(";"):
        tokens.pop()
    return tokens


def _classify(raw: sqlparse.sql.Token) -> list[Token]:
    ttype = raw.ttype
    value = raw.value
    if raw.is_whitespace or ttype in T.Comment:
        return []
    if ttype in T.Name.Placeholder:
        return [Token("placeholder", value)]
    if ttype in T.Keyword:
        # Multi-word keywords such as "NOT NULL" arrive as one token.
        return [Token("keyword", word) for word in value.split()]
    if ttype in T.Name:
        return [Token("name", value.strip("`"))]
    if ttype in T.String.Symbol:
        return [Token("name", value[1:-1].replace('""', '"'))]
    if ttype in T.String:
        return [Token("string", value)]
    if ttype in T.Number:
        return [Token("number", value)]
    if ttype in T.Punctuation or ttype in T.Wildcard:
        return [Token("punct", value)]
    if ttype in T.Operator:
        return [Token("op", value)]
    return [Token("other", value)]


__all__ = ["SqlSyntaxError", "Token", "to_paramstyle", "tokenize"]
