"""Unit tests for coldwatch/store (query builder and PostgreSQL adapter).

psycopg2 connections are mocked; no database is needed.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import psycopg2
import pytest

from coldwatch.config import DatabaseSettings
from coldwatch.store.base import Filter, Query, StoreError
from coldwatch.store.postgres import PgSubscription, PostgresStore, build_select, channel_name

TS = datetime(2024, 3, 1, tzinfo=timezone.utc)

# ──────────────────────────────────────────────
# Query builder
# ──────────────────────────────────────────────


class TestQuery:
    def test_builder_is_immutable(self) -> None:
        base = Query("predictions")
        limited = base.limit(5)
        assert base.row_limit is None
        assert limited.row_limit == 5

    def test_chained_query(self) -> None:
        query = Query("predictions").select("timestamp").gte("timestamp", TS).order("timestamp", descending=True)
        assert query.columns == ("timestamp",)
        assert query.filters == (Filter("timestamp", "gte", TS),)
        assert query.descending is True

    def test_select_nothing_means_all(self) -> None:
        assert Query("sensor_data").select().columns == ("*",)

    def test_limit_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            Query("sensor_data").limit(0)


class TestBuildSelect:
    def test_params_follow_filter_order(self) -> None:
        query = Query("predictions").gte("timestamp", TS).lte("timestamp", TS).limit(3)
        _, params = build_select(query)
        assert params == [TS, TS, 3]

    def test_no_params_for_plain_select(self) -> None:
        _, params = build_select(Query("sensor_data"))
        assert params == []

    def test_channel_name(self) -> None:
        assert channel_name("sensor_data", "INSERT") == "sensor_data_insert"


# ──────────────────────────────────────────────
# PostgresStore
# ──────────────────────────────────────────────


class TestPostgresStore:
    def test_pool_failure_raises_store_error(self) -> None:
        store = PostgresStore(DatabaseSettings())
        with patch("psycopg2.pool.ThreadedConnectionPool", side_effect=psycopg2.OperationalError("refused")):
            with pytest.raises(StoreError, match="connection pool"):
                store.select(Query("sensor_data"))

    def test_query_error_rolls_back_and_returns_conn(self) -> None:
        store = PostgresStore(DatabaseSettings())
        pool = MagicMock()
        conn = pool.getconn.return_value
        cursor = conn.cursor.return_value.__enter__.return_value
        cursor.execute.side_effect = psycopg2.ProgrammingError("no such table")
        store._pool = pool

        with patch("coldwatch.store.postgres.build_select", return_value=("SELECT 1", [])):
            with pytest.raises(StoreError):
                store.select(Query("sensor_data"))

        conn.rollback.assert_called_once()
        pool.putconn.assert_called_once_with(conn)

    def test_select_returns_dict_rows(self) -> None:
        store = PostgresStore(DatabaseSettings())
        pool = MagicMock()
        conn = pool.getconn.return_value
        cursor = conn.cursor.return_value.__enter__.return_value
        cursor.fetchall.return_value = [{"timestamp": TS, "humidity": 50.0}]
        store._pool = pool

        with patch("coldwatch.store.postgres.build_select", return_value=("SELECT 1", [])):
            rows = store.select(Query("sensor_data"))

        assert rows == [{"timestamp": TS, "humidity": 50.0}]
        conn.commit.assert_called_once()

    def test_pool_created_once_across_threads(self) -> None:
        store = PostgresStore(DatabaseSettings())
        barrier = threading.Barrier(4)
        pools = []

        def _worker() -> None:
            barrier.wait()
            pools.append(store._get_pool())

        with patch("psycopg2.pool.ThreadedConnectionPool") as pool_cls:
            threads = [threading.Thread(target=_worker) for _ in range(4)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

        pool_cls.assert_called_once()
        assert len(pools) == 4
        assert all(p is pool_cls.return_value for p in pools)

    @pytest.mark.asyncio
    async def test_subscribe_closes_conn_when_listen_fails(self) -> None:
        store = PostgresStore(DatabaseSettings())
        conn = MagicMock()
        cursor = conn.cursor.return_value.__enter__.return_value
        cursor.execute.side_effect = psycopg2.ProgrammingError("bad channel")

        with patch("psycopg2.connect", return_value=conn):
            with pytest.raises(StoreError, match="LISTEN"):
                store.subscribe("sensor_data", "INSERT", lambda row: None)

        conn.close.assert_called_once()

    def test_subscribe_without_loop_raises(self) -> None:
        store = PostgresStore(DatabaseSettings())
        with pytest.raises(StoreError, match="event loop"):
            store.subscribe("sensor_data", "INSERT", lambda row: None)

    def test_close(self) -> None:
        store = PostgresStore(DatabaseSettings())
        pool = MagicMock()
        store._pool = pool
        store.close()
        pool.closeall.assert_called_once()
        store.close()
        pool.closeall.assert_called_once()


# ──────────────────────────────────────────────
# PgSubscription
# ──────────────────────────────────────────────


class TestPgSubscription:
    def _subscription(self, callback) -> tuple[PgSubscription, MagicMock, MagicMock]:
        conn = MagicMock()
        conn.fileno.return_value = 7
        conn.notifies = []
        loop = MagicMock()
        return PgSubscription(conn, "sensor_data_insert", callback, loop), conn, loop

    def test_registers_reader(self) -> None:
        sub, _, loop = self._subscription(MagicMock())
        loop.add_reader.assert_called_once_with(7, sub._on_readable)

    def test_notifications_delivered_as_rows(self) -> None:
        callback = MagicMock()
        sub, conn, _ = self._subscription(callback)
        conn.notifies = [
            SimpleNamespace(payload='{"humidity": 50.0}'),
            SimpleNamespace(payload="not json"),
            SimpleNamespace(payload='{"humidity": 51.0}'),
        ]

        sub._on_readable()

        assert [c.args[0] for c in callback.call_args_list] == [{"humidity": 50.0}, {"humidity": 51.0}]
        assert conn.notifies == []

    def test_callback_error_does_not_stop_delivery(self) -> None:
        callback = MagicMock(side_effect=[RuntimeError("boom"), None])
        sub, conn, _ = self._subscription(callback)
        conn.notifies = [SimpleNamespace(payload="{}"), SimpleNamespace(payload="{}")]
        sub._on_readable()
        assert callback.call_count == 2

    def test_unsubscribe_once(self) -> None:
        sub, conn, loop = self._subscription(MagicMock())
        sub.unsubscribe()
        sub.unsubscribe()
        loop.remove_reader.assert_called_once_with(7)
        conn.close.assert_called_once()
