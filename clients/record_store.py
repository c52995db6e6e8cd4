"""
Record store adapter.

The ticket core talks to persistence only through RecordStore: rows are plain
dicts in named tables, selected with filter predicates from clients.filters.
PostgresRecordStore is the production implementation over PostgresClient.

Errors are split so callers can react to them specifically:
- RecordNotFoundError: a required row does not exist
- UniqueViolationError: a uniqueness constraint rejected the write
- RecordStoreError: anything else the store reported
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Iterable, Sequence

import psycopg2
import psycopg2.errors

from clients.filters import Eq, Filter, OrderBy, check_identifier, where_clause
from clients.postgres_client import PostgresClient

logger = logging.getLogger(__name__)


class RecordStoreError(Exception):
    """The store rejected or failed an operation."""


class RecordNotFoundError(RecordStoreError):
    """A row that must exist was not found."""

    def __init__(self, table: str, record_id: Any):
        self.table = table
        self.record_id = record_id
        super().__init__(f"Record {record_id} not found in {table}")


class UniqueViolationError(RecordStoreError):
    """A uniqueness constraint rejected an insert or update."""

    def __init__(self, table: str, constraint: str | None = None):
        self.table = table
        self.constraint = constraint
        detail = f" ({constraint})" if constraint else ""
        super().__init__(f"Duplicate key in {table}{detail}")


class RecordStore(ABC):
    """
    Table/row persistence contract.

    A list of filters is AND-ed. update() and delete() refuse an empty
    filter list so a bug can never rewrite or wipe a whole table.
    """

    @abstractmethod
    def select(
        self,
        table: str,
        filters: Iterable[Filter] = (),
        columns: Sequence[str] | None = None,
        order_by: Sequence[OrderBy] = (),
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return matching rows (all columns unless columns is given)."""

    @abstractmethod
    def count(self, table: str, filters: Iterable[Filter] = ()) -> int:
        """Count matching rows without materializing them."""

    @abstractmethod
    def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert one row and return it as stored (including its id)."""

    @abstractmethod
    def update(
        self,
        table: str,
        filters: Iterable[Filter],
        patch: dict[str, Any],
    ) -> list[dict[str, Any]]:
        """Apply patch to matching rows, return the updated rows."""

    @abstractmethod
    def delete(self, table: str, filters: Iterable[Filter]) -> int:
        """Delete matching rows, return how many were removed."""

    def select_one(
        self,
        table: str,
        filters: Iterable[Filter] = (),
        columns: Sequence[str] | None = None,
    ) -> dict[str, Any] | None:
        """First matching row or None."""
        rows = self.select(table, filters, columns=columns, limit=1)
        return rows[0] if rows else None

    def get(self, table: str, record_id: Any) -> dict[str, Any]:
        """
        Row by id.

        Raises:
            RecordNotFoundError: If no row has this id
        """
        row = self.select_one(table, [Eq("id", record_id)])
        if row is None:
            raise RecordNotFoundError(table, record_id)
        return row


class PostgresRecordStore(RecordStore):
    """RecordStore over PostgresClient. Filters compile to parameterized SQL."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    @contextmanager
    def _translate_errors(self, table: str):
        try:
            yield
        except psycopg2.errors.UniqueViolation as e:
            raise UniqueViolationError(table, getattr(e.diag, "constraint_name", None)) from e
        except psycopg2.Error as e:
            logger.error(f"Store error on {table}: {e}")
            raise RecordStoreError(str(e)) from e

    def select(
        self,
        table: str,
        filters: Iterable[Filter] = (),
        columns: Sequence[str] | None = None,
        order_by: Sequence[OrderBy] = (),
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        table = check_identifier(table)
        cols = ", ".join(check_identifier(c) for c in columns) if columns else "*"
        where, params = where_clause(filters)

        query = f"SELECT {cols} FROM {table}{where}"
        if order_by:
            query += " ORDER BY " + ", ".join(o.to_sql() for o in order_by)
        if limit is not None:
            query += " LIMIT %s"
            params.append(int(limit))

        with self._translate_errors(table):
            return self.postgres.execute(query, tuple(params))

    def count(self, table: str, filters: Iterable[Filter] = ()) -> int:
        table = check_identifier(table)
        where, params = where_clause(filters)

        with self._translate_errors(table):
            result = self.postgres.execute_scalar(
                f"SELECT count(*) FROM {table}{where}",
                tuple(params)
            )
        return int(result or 0)

    def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        table = check_identifier(table)
        if not row:
            raise ValueError(f"Cannot insert an empty row into {table}")

        columns = [check_identifier(c) for c in row]
        placeholders = ", ".join(["%s"] * len(columns))

        with self._translate_errors(table):
            rows = self.postgres.execute_returning(
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) RETURNING *",
                tuple(row.values())
            )
        return rows[0]

    def update(
        self,
        table: str,
        filters: Iterable[Filter],
        patch: dict[str, Any],
    ) -> list[dict[str, Any]]:
        table = check_identifier(table)
        filters = list(filters)
        if not filters:
            raise ValueError(f"Refusing unfiltered update on {table}")
        if not patch:
            raise ValueError(f"Empty update patch for {table}")

        set_parts = [f"{check_identifier(c)} = %s" for c in patch]
        where, where_params = where_clause(filters)
        params = list(patch.values()) + where_params

        with self._translate_errors(table):
            return self.postgres.execute_returning(
                f"UPDATE {table} SET {', '.join(set_parts)}{where} RETURNING *",
                tuple(params)
            )

    def delete(self, table: str, filters: Iterable[Filter]) -> int:
        table = check_identifier(table)
        filters = list(filters)
        if not filters:
            raise ValueError(f"Refusing unfiltered delete on {table}")

        where, params = where_clause(filters)

        with self._translate_errors(table):
            rows = self.postgres.execute_returning(
                f"DELETE FROM {table}{where} RETURNING id",
                tuple(params)
            )
        return len(rows)
