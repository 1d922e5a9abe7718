import threading
import time

import psycopg2
import pytest
from psycopg2 import extensions as pg_ext
from psycopg2.pool import PoolError

from db import PgPool


class _Cursor:
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        pass


class _Info:
    transaction_status = pg_ext.TRANSACTION_STATUS_IDLE


class _PooledConn:
    def __init__(self):
        self.closed = 0
        self.info = _Info()
        self.commits = 0
        self.rollbacks = 0

    def cursor(self, cursor_factory=None):
        return _Cursor()

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def get_transaction_status(self):
        return pg_ext.TRANSACTION_STATUS_IDLE

    def close(self):
        self.closed = 1


@pytest.fixture
def fake_connect(monkeypatch):
    made = []

    def _connect(*args, **kwargs):
        conn = _PooledConn()
        made.append(conn)
        return conn

    monkeypatch.setattr(psycopg2, "connect", _connect)
    return made


def test_concurrent_callers_wait_for_a_free_connection(fake_connect):
    pool = PgPool("postgresql://fake", minconn=1, maxconn=2)
    errors = []
    active = []
    peak = []
    guard = threading.Lock()

    def _work():
        try:
            with pool.connection():
                with guard:
                    active.append(1)
                    peak.append(len(active))
                time.sleep(0.05)
                with guard:
                    active.pop()
        except Exception as exc:  # noqa: BLE001
            errors.append(repr(exc))

    threads = [threading.Thread(target=_work) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert max(peak) <= 2
    assert len(peak) == 5
    pool.close()


def test_exhausted_pool_times_out_with_pool_error(fake_connect):
    pool = PgPool("postgresql://fake", minconn=1, maxconn=1, acquire_timeout_s=0.05)
    with pool.connection():
        with pytest.raises(PoolError):
            with pool.connection():
                pass
    # slot is released again after the holder exits
    with pool.connection():
        pass
    pool.close()


def test_connection_commits_on_success_and_rolls_back_on_error(fake_connect):
    pool = PgPool("postgresql://fake", minconn=1, maxconn=2)
    with pool.connection() as conn:
        pass
    assert conn.commits == 1

    with pytest.raises(RuntimeError):
        with pool.connection() as conn:
            raise RuntimeError("boom")
    assert conn.rollbacks == 1
    pool.close()


def test_open_requires_dsn():
    with pytest.raises(RuntimeError):
        PgPool("  ").open()
