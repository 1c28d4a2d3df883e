import threading
from contextlib import contextmanager
from typing import Optional

from psycopg.rows import dict_row

# psycopg3 connection pooling lives in a separate package.
from psycopg_pool import ConnectionPool

from .config import settings

_pool: Optional[ConnectionPool] = None
_pool_lock = threading.Lock()


def _get_pool() -> ConnectionPool:
    # Opened on first use so importing the app (tests, CLI tools) never dials the database.
    global _pool
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                _pool = ConnectionPool(
                    conninfo=settings.db_url,
                    min_size=settings.db_pool_min_size,
                    max_size=settings.db_pool_max_size,
                    kwargs={"row_factory": dict_row},
                    open=True,
                )
    return _pool


@contextmanager
def _pooled_conn(pool: ConnectionPool):
    # pool.connection() commits on success, rolls back on exception and
    # returns the connection to the pool.
    with pool.connection() as conn:
        yield conn


def get_conn():
    return _pooled_conn(_get_pool())


def close_pool() -> None:
    # Best-effort shutdown hook (e.g. uvicorn shutdown).
    global _pool
    with _pool_lock:
        pool, _pool = _pool, None
    if pool is None:
        return
    try:
        pool.close()
    except Exception:
        pass
