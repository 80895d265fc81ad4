"""
Per-request wiring.

The connection pool and read cache live on ``app.state`` (created by the
lifespan in ``app.main``); handlers receive a user-scoped gateway and engine
through ``Depends`` instead of reaching for module-level singletons.
"""

from typing import Iterator

from fastapi import Depends, Request
from psycopg import Connection

from app.core.cache import UserReadCache
from app.db.gateway import LedgerGateway
from app.db.pool import db_conn
from app.services.auth import AuthUser, get_session_user, parse_bearer_token
from app.services.ledger import LedgerEngine


def get_connection(req: Request) -> Iterator[Connection]:
    with db_conn(req.app.state.db_pool) as conn:
        yield conn


def get_current_user(req: Request, conn: Connection = Depends(get_connection)) -> AuthUser:
    token = parse_bearer_token(req)
    return get_session_user(conn, token)


def get_gateway(
    conn: Connection = Depends(get_connection),
    user: AuthUser = Depends(get_current_user),
) -> LedgerGateway:
    return LedgerGateway(conn, user.id)


def get_engine(gateway: LedgerGateway = Depends(get_gateway)) -> LedgerEngine:
    return LedgerEngine(gateway)


def get_cache(req: Request) -> UserReadCache:
    return req.app.state.read_cache
