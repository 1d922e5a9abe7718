from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as Connection
from psycopg2.pool import PoolError, ThreadedConnectionPool


class PgPool:
    """
    PostgreSQL connection pool owned by the hosting process.
    open() at startup, close() on shutdown.

    Shared across threads (webhook transactions run in the threadpool).
    When all maxconn connections are checked out, callers wait up to
    acquire_timeout_s for one to come back instead of failing at once.
    """

    def __init__(self, dsn: str, *, minconn: int = 1, maxconn: int = 10, acquire_timeout_s: float = 10.0):
        self.dsn = dsn
        self.minconn = minconn
        self.maxconn = maxconn
        self.acquire_timeout_s = acquire_timeout_s
        self._pool: ThreadedConnectionPool | None = None
        self._slots = threading.BoundedSemaphore(maxconn)
        self._open_lock = threading.Lock()

    def open(self) -> None:
        with self._open_lock:
            if self._pool is not None:
                return
            if not (self.dsn or "").strip():
                raise RuntimeError("DATABASE_URL is not set.")
            psycopg2.extras.register_uuid()
            self._pool = ThreadedConnectionPool(
                minconn=self.minconn,
                maxconn=self.maxconn,
                dsn=self.dsn,
                connect_timeout=5,
            )

    def close(self) -> None:
        """
        Gracefully close all pooled connections.
        """
        with self._open_lock:
            if self._pool:
                self._pool.closeall()
                self._pool = None

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        """
        Provides a transactional DB connection.
        Auto-commits on success, rolls back on error.
        """
        if self._pool is None:
            self.open()

        if not self._slots.acquire(timeout=self.acquire_timeout_s):
            raise PoolError("connection pool exhausted")

        pool = self._pool
        try:
            conn = pool.getconn()
        except Exception:
            self._slots.release()
            raise

        try:
            # Safety: never allow long-running queries
            with conn.cursor() as cur:
                cur.execute("SET statement_timeout = '5000ms';")
                cur.execute("SET idle_in_transaction_session_timeout = '5000ms';")
                cur.execute("SET application_name = 'marketplace_payouts';")

            yield conn
            conn.commit()

        except Exception:
            conn.rollback()
            raise

        finally:
            pool.putconn(conn)
            self._slots.release()
