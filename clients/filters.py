"""
Filter predicates for record store queries.

Filters are plain values describing a WHERE clause. A list of filters passed to
a store call is AND-ed; Or/And/Not compose them further. PostgresRecordStore
compiles them to parameterized SQL via to_sql(); other stores may interpret
them directly.

Column names are validated against a strict identifier pattern because they
are interpolated into SQL text. Values are always passed as parameters.
"""

import re
from dataclasses import dataclass
from typing import Any, Iterable, Tuple

_IDENTIFIER_RE = re.compile(r"^[a-z_][a-z0-9_]*$")


def check_identifier(name: str) -> str:
    """Return name if it is a safe SQL identifier, raise ValueError otherwise."""
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid identifier: {name!r}")
    return name


class Filter:
    """Base class for all predicates."""

    def to_sql(self) -> Tuple[str, list]:
        raise NotImplementedError


@dataclass(frozen=True)
class Eq(Filter):
    column: str
    value: Any

    def to_sql(self) -> Tuple[str, list]:
        return f"{check_identifier(self.column)} = %s", [self.value]


@dataclass(frozen=True)
class Gte(Filter):
    column: str
    value: Any

    def to_sql(self) -> Tuple[str, list]:
        return f"{check_identifier(self.column)} >= %s", [self.value]


@dataclass(frozen=True)
class Lte(Filter):
    column: str
    value: Any

    def to_sql(self) -> Tuple[str, list]:
        return f"{check_identifier(self.column)} <= %s", [self.value]


@dataclass(frozen=True)
class In(Filter):
    column: str
    values: Tuple[Any, ...]

    def __init__(self, column: str, values: Iterable[Any]):
        object.__setattr__(self, "column", column)
        object.__setattr__(self, "values", tuple(values))

    def to_sql(self) -> Tuple[str, list]:
        column = check_identifier(self.column)
        if not self.values:
            return "FALSE", []
        return f"{column} IN %s", [self.values]


@dataclass(frozen=True)
class IsNull(Filter):
    column: str

    def to_sql(self) -> Tuple[str, list]:
        return f"{check_identifier(self.column)} IS NULL", []


@dataclass(frozen=True)
class Not(Filter):
    inner: Filter

    def to_sql(self) -> Tuple[str, list]:
        clause, params = self.inner.to_sql()
        return f"NOT ({clause})", params


@dataclass(frozen=True)
class Or(Filter):
    options: Tuple[Filter, ...]

    def __init__(self, *options: Filter):
        object.__setattr__(self, "options", tuple(options))

    def to_sql(self) -> Tuple[str, list]:
        if not self.options:
            return "FALSE", []
        return _join(self.options, " OR ")


@dataclass(frozen=True)
class And(Filter):
    parts: Tuple[Filter, ...]

    def __init__(self, *parts: Filter):
        object.__setattr__(self, "parts", tuple(parts))

    def to_sql(self) -> Tuple[str, list]:
        if not self.parts:
            return "TRUE", []
        return _join(self.parts, " AND ")


@dataclass(frozen=True)
class OrderBy:
    column: str
    descending: bool = False

    def to_sql(self) -> str:
        direction = "DESC" if self.descending else "ASC"
        return f"{check_identifier(self.column)} {direction}"


def not_discarded() -> Filter:
    """Rows not in the trash. Legacy rows have is_discarded = NULL."""
    return Or(Eq("is_discarded", False), IsNull("is_discarded"))


def where_clause(filters: Iterable[Filter]) -> Tuple[str, list]:
    """Compile a filter list into ' WHERE ...' (or '') plus parameters."""
    filters = list(filters)
    if not filters:
        return "", []
    clause, params = _join(filters, " AND ")
    return f" WHERE {clause}", params


def _join(filters: Iterable[Filter], glue: str) -> Tuple[str, list]:
    clauses = []
    params: list = []
    for f in filters:
        clause, clause_params = f.to_sql()
        clauses.append(f"({clause})")
        params.extend(clause_params)
    return glue.join(clauses), params
