from contextlib import contextmanager
from typing import Iterator

from psycopg import Connection
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from app.core.config import Settings


def create_db_pool(settings: Settings) -> ConnectionPool:
    # autocommit so that every ledger operation opens its own explicit
    # conn.transaction() block instead of riding an implicit one.
    return ConnectionPool(
        settings.database_url,
        min_size=settings.db_pool_min,
        max_size=settings.db_pool_max,
        timeout=settings.db_pool_timeout,
        max_waiting=settings.db_pool_max_waiting,
        open=False,
        kwargs={"row_factory": dict_row, "autocommit": True},
    )


@contextmanager
def db_conn(pool: ConnectionPool) -> Iterator[Connection]:
    with pool.connection() as conn:
        yield conn
