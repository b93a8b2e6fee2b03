"""PostgreSQL implementation of the DataStore interface.

Reads go through a thread-safe psycopg2 connection pool, shared by the
request threadpool and the background refresh jobs. Push updates use
LISTEN/NOTIFY: the sensor table trigger (see migrations/) publishes each
inserted row as JSON on the channel ``<table>_<event>``, and a dedicated
connection is watched from the asyncio event loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from typing import Any

import psycopg2
import psycopg2.extensions
import psycopg2.extras
import psycopg2.pool
from psycopg2 import sql

from coldwatch.config import DatabaseSettings
from coldwatch.store.base import ChangeEvent, Query, RowCallback, StoreError

logger = logging.getLogger(__name__)


def channel_name(table: str, event: ChangeEvent) -> str:
    return f"{table}_{event.lower()}"


def build_select(query: Query) -> tuple[sql.Composed, list[Any]]:
    """Compose a parameterized SELECT for a Query."""
    if query.columns == ("*",):
        columns = sql.SQL("*")
    else:
        columns = sql.SQL(", ").join(sql.Identifier(c) for c in query.columns)

    parts = [sql.SQL("SELECT {} FROM {}").format(columns, sql.Identifier(query.table))]
    params: list[Any] = []

    if query.filters:
        clauses = []
        for f in query.filters:
            op = sql.SQL(">=") if f.op == "gte" else sql.SQL("<=")
            clauses.append(sql.SQL("{} {} %s").format(sql.Identifier(f.column), op))
            params.append(f.value)
        parts.append(sql.SQL("WHERE ") + sql.SQL(" AND ").join(clauses))

    if query.order_by:
        direction = sql.SQL("DESC") if query.descending else sql.SQL("ASC")
        parts.append(sql.SQL("ORDER BY {} {}").format(sql.Identifier(query.order_by), direction))

    if query.row_limit is not None:
        parts.append(sql.SQL("LIMIT %s"))
        params.append(query.row_limit)

    return sql.SQL(" ").join(parts), params


class PgSubscription:
    """A LISTEN connection registered as a reader on the event loop."""

    def __init__(
        self,
        conn: psycopg2.extensions.connection,
        channel: str,
        callback: RowCallback,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self._conn = conn
        self._channel = channel
        self._callback = callback
        self._loop = loop
        self._active = True
        loop.add_reader(conn.fileno(), self._on_readable)

    def _on_readable(self) -> None:
        try:
            self._conn.poll()
        except psycopg2.Error as e:
            logger.warning("LISTEN connection for %s failed: %s", self._channel, e)
            self.unsubscribe()
            return

        while self._conn.notifies:
            notify = self._conn.notifies.pop(0)
            try:
                row = json.loads(notify.payload)
            except json.JSONDecodeError:
                logger.warning("Dropping malformed %s payload: %.80s", self._channel, notify.payload)
                continue
            try:
                self._callback(row)
            except Exception:
                logger.exception("Push-update callback on %s raised", self._channel)

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._loop.remove_reader(self._conn.fileno())
        try:
            with self._conn.cursor() as cur:
                cur.execute(sql.SQL("UNLISTEN {}").format(sql.Identifier(self._channel)))
        except psycopg2.Error as e:
            logger.debug("UNLISTEN %s failed: %s", self._channel, e)
        finally:
            self._conn.close()
        logger.info("Unsubscribed from %s", self._channel)


class PostgresStore:
    """DataStore backed by PostgreSQL via psycopg2."""

    def __init__(self, settings: DatabaseSettings, minconn: int = 1, maxconn: int = 5) -> None:
        self._settings = settings
        self._minconn = minconn
        self._maxconn = maxconn
        self._pool: psycopg2.pool.ThreadedConnectionPool | None = None
        self._pool_lock = threading.Lock()

    def _connect_kwargs(self) -> dict[str, Any]:
        return {
            "host": self._settings.host,
            "port": self._settings.port,
            "dbname": self._settings.name,
            "user": self._settings.user,
            "password": self._settings.password,
        }

    def _get_pool(self) -> psycopg2.pool.ThreadedConnectionPool:
        """Get or create the connection pool."""
        with self._pool_lock:
            if self._pool is not None:
                return self._pool
            try:
                self._pool = psycopg2.pool.ThreadedConnectionPool(
                    minconn=self._minconn,
                    maxconn=self._maxconn,
                    **self._connect_kwargs(),
                )
            except psycopg2.Error as e:
                raise StoreError(f"Could not create DB connection pool: {e}") from e
            logger.info("Database connection pool created.")
            return self._pool

    def select(self, query: Query) -> list[dict[str, Any]]:
        pool = self._get_pool()
        statement, params = build_select(query)

        conn = None
        try:
            conn = pool.getconn()
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(statement, params)
                rows = [dict(r) for r in cur.fetchall()]
            conn.commit()
            return rows
        except psycopg2.Error as e:
            if conn is not None:
                conn.rollback()
            raise StoreError(f"Query on {query.table} failed: {e}") from e
        finally:
            if conn is not None:
                pool.putconn(conn)

    def subscribe(self, table: str, event: ChangeEvent, callback: RowCallback) -> PgSubscription:
        """LISTEN for change notifications. Must be called from a running event loop."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            raise StoreError("subscribe() requires a running event loop") from e

        channel = channel_name(table, event)
        conn = None
        try:
            conn = psycopg2.connect(**self._connect_kwargs())
            conn.set_isolation_level(psycopg2.extensions.ISOLATION_LEVEL_AUTOCOMMIT)
            with conn.cursor() as cur:
                cur.execute(sql.SQL("LISTEN {}").format(sql.Identifier(channel)))
        except psycopg2.Error as e:
            if conn is not None:
                conn.close()
            raise StoreError(f"Could not LISTEN on {channel}: {e}") from e

        logger.info("Subscribed to %s", channel)
        return PgSubscription(conn, channel, callback, loop)

    def close(self) -> None:
        """Close the connection pool (call during app shutdown)."""
        with self._pool_lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.closeall()
            logger.info("Database connection pool closed.")
