"""
Connection helper for the SQLAlchemy-backed audit sink.

Accepts either an AsyncEngine (a connection or transaction is opened per
call) or an AsyncConnection owned by the caller (used as is).
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine


@asynccontextmanager
async def execute_with_connection(
    conn: AsyncConnection | AsyncEngine,
    transactional: bool = True,
) -> AsyncIterator[AsyncConnection]:
    """
    Yield a connection ready for ``execute()``.

    Args:
        conn: Engine or caller-owned connection.
        transactional: With an engine, open a transaction (``begin``) for
            writes or a bare connection (``connect``) for reads. Ignored for
            caller-owned connections; the caller manages the transaction.
    """
    if isinstance(conn, AsyncEngine):
        if transactional:
            async with conn.begin() as connection:
                yield connection
        else:
            async with conn.connect() as connection:
                yield connection
    else:
        yield conn
