"""
PostgreSQL client with connection pooling and row-level security context.

Uses psycopg2 with ThreadedConnectionPool. Each connection checked out of the
pool is stamped with app.current_user_id from the acting-user contextvar, so
the database's RLS policies decide which service tickets and time entries the
caller may see or change.

No user context = the session variable is cleared and RLS returns nothing.
"""

import logging
import threading
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Dict, List, Tuple
from uuid import UUID

import psycopg2
import psycopg2.extras
import psycopg2.pool

from utils.user_context import _current_user_id

logger = logging.getLogger(__name__)

_jsonb_registered = False


class PostgresClient:
    """
    PostgreSQL client with automatic RLS context from contextvar.

    Usage:
        db = PostgresClient(database_url)

        with user_context(user_id):
            rows = db.execute("SELECT * FROM service_tickets WHERE date = %s", (day,))
    """

    # Pools are shared by every client pointing at the same DSN
    _connection_pools: Dict[str, psycopg2.pool.ThreadedConnectionPool] = {}
    _pools_lock = threading.RLock()

    def __init__(self, database_url: str, minconn: int = 1, maxconn: int = 10):
        self._database_url = database_url
        self._minconn = minconn
        self._maxconn = maxconn
        self._ensure_connection_pool()

    def _ensure_connection_pool(self) -> None:
        """Create connection pool if it doesn't exist."""
        with self._pools_lock:
            if self._database_url in self._connection_pools:
                return

            pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=self._minconn,
                maxconn=self._maxconn,
                dsn=self._database_url,
                connect_timeout=30,
            )

            global _jsonb_registered
            if not _jsonb_registered:
                psycopg2.extras.register_default_jsonb(globally=True)
                _jsonb_registered = True

            self._connection_pools[self._database_url] = pool
            logger.info(f"Connection pool created (min={self._minconn}, max={self._maxconn})")

    @contextmanager
    def get_connection(self):
        """Check out a connection stamped with the acting user's RLS context."""
        if self._database_url not in self._connection_pools:
            self._ensure_connection_pool()

        pool = self._connection_pools[self._database_url]
        conn = None

        try:
            conn = pool.getconn()
            if conn is None:
                raise RuntimeError("Could not get connection from pool")

            user_id = _current_user_id.get()
            with conn.cursor() as cur:
                # Empty string fails the ::uuid cast in RLS policies = no rows
                cur.execute(
                    "SET app.current_user_id = %s",
                    (str(user_id) if user_id is not None else "",)
                )

            yield conn

        except Exception:
            if conn is not None:
                conn.rollback()
            raise

        finally:
            if conn is not None:
                pool.putconn(conn)

    def _convert_params(self, params: Tuple | Dict | None) -> Tuple | Dict | None:
        """Adapt UUIDs to strings and JSON-shaped values to Json wrappers."""
        if params is None:
            return None

        def convert(value: Any) -> Any:
            if isinstance(value, UUID):
                return str(value)
            if isinstance(value, dict):
                # header_overrides / edited_hours columns are JSONB
                return psycopg2.extras.Json(_jsonable(value))
            if isinstance(value, tuple):
                # IN (...) lists
                return tuple(convert(v) for v in value)
            if isinstance(value, list):
                return [convert(v) for v in value]
            return value

        if isinstance(params, dict):
            return {k: convert(v) for k, v in params.items()}
        return tuple(convert(v) for v in params)

    def execute(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute query, return list of row dicts. Empty list if no results."""
        params = self._convert_params(params)
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(query, params)
                if cur.description:
                    rows = [dict(row) for row in cur.fetchall()]
                    conn.commit()
                    return rows
                conn.commit()
                return []

    def execute_single(self, query: str, params: Tuple | Dict | None = None) -> Dict[str, Any] | None:
        """Execute query, return first row or None."""
        results = self.execute(query, params)
        return results[0] if results else None

    def execute_scalar(self, query: str, params: Tuple | Dict | None = None) -> Any:
        """Execute query, return first value of first row or None."""
        params = self._convert_params(params)
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                result = cur.fetchone()
                return result[0] if result else None

    def execute_returning(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute INSERT/UPDATE/DELETE with RETURNING, commit, return rows."""
        params = self._convert_params(params)
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(query, params)
                rows = [dict(row) for row in cur.fetchall()]
                conn.commit()
                return rows

    def close(self) -> None:
        """Close connection pool."""
        with self._pools_lock:
            if self._database_url in self._connection_pools:
                self._connection_pools[self._database_url].closeall()
                del self._connection_pools[self._database_url]

    @classmethod
    def close_all_pools(cls) -> None:
        """Close all connection pools."""
        with cls._pools_lock:
            for pool in cls._connection_pools.values():
                pool.closeall()
            cls._connection_pools.clear()


def _jsonable(value: Any) -> Any:
    """Make nested JSONB payloads serializable. Decimals become strings to keep their exact digits."""
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, UUID):
        return str(value)
    return value
