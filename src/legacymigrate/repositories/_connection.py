"""
Connection helper for the PostgreSQL progress repositories.

Repositories accept either an AsyncEngine or an AsyncConnection. With an
engine, each call opens its own connection (and transaction for writes);
with a connection, the caller owns transaction boundaries.
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
    Yield a connection ready for execute().

    Args:
        conn: Engine or connection.
        transactional: Wrap in a transaction (writes) or use a bare
            connection (reads). Ignored for AsyncConnection inputs.

    Example:
        >>> async with execute_with_connection(self.conn, transactional=False) as conn:
        ...     result = await conn.execute(query, params)
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
