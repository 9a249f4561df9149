"""
Tenant-scoped connections.

Every tenant owns a PostgreSQL schema; all tenants share one connection pool.
A connection borrowed for a tenant has its ``search_path`` set to
``<schema>, public`` for the duration of a unit of work and is always reset
to ``public`` before it goes back to the pool. A connection whose reset
fails is invalidated so the pool never hands it out again.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncSession

from app.core.exceptions import ConnectionLifecycleError
from app.core.logging import logger
from app.db.sql import assert_valid_identifier

T = TypeVar("T")

DEFAULT_SEARCH_PATH = "public"


async def _restore_search_path(
    conn: AsyncConnection,
    schema_name: str,
    pending_error: Optional[BaseException],
) -> None:
    try:
        if conn.in_transaction():
            await conn.rollback()
        await conn.execute(text(f"SET search_path TO {DEFAULT_SEARCH_PATH}"))
        await conn.commit()
    except Exception as exc:
        logger.error(f"Failed to reset search_path after work on schema {schema_name}: {exc}")
        await conn.invalidate()
        if pending_error is None:
            raise ConnectionLifecycleError(
                f"Failed to reset search_path after work on schema {schema_name}"
            ) from exc


@asynccontextmanager
async def tenant_connection(engine: AsyncEngine, schema_name: str) -> AsyncIterator[AsyncConnection]:
    """
    Borrow a pooled connection scoped to ``schema_name``.

    The work done inside the block is committed when the block exits
    normally and rolled back when it raises. The search path is reset
    afterwards on every exit path, including cancellation.

    Args:
        engine: Engine owning the shared pool
        schema_name: Tenant schema; must be a bare identifier

    Raises:
        InvalidIdentifierError: If ``schema_name`` is not a bare identifier
        ConnectionLifecycleError: If the search path cannot be set or reset
    """
    assert_valid_identifier(schema_name)

    async with engine.connect() as conn:
        error: Optional[BaseException] = None
        try:
            try:
                await conn.execute(text(f"SET search_path TO {schema_name}, {DEFAULT_SEARCH_PATH}"))
                await conn.commit()
            except Exception as exc:
                raise ConnectionLifecycleError(
                    f"Failed to set search_path to schema {schema_name}"
                ) from exc

            logger.debug(f"Connection scoped to schema {schema_name}")
            yield conn

            if conn.in_transaction():
                await conn.commit()
        except BaseException as exc:
            error = exc
            raise
        finally:
            await _restore_search_path(conn, schema_name, error)


async def with_tenant_connection(
    engine: AsyncEngine,
    schema_name: str,
    work: Callable[[AsyncConnection], Awaitable[T]],
) -> T:
    """Run ``work`` on a connection scoped to ``schema_name`` and return its result."""
    async with tenant_connection(engine, schema_name) as conn:
        return await work(conn)


@asynccontextmanager
async def tenant_session(engine: AsyncEngine, schema_name: str) -> AsyncIterator[AsyncSession]:
    """
    ORM session bound to a tenant-scoped connection.

    Services commit their own work through the session; anything left
    uncommitted when the block raises is rolled back with the connection.
    """
    async with tenant_connection(engine, schema_name) as conn:
        session = AsyncSession(bind=conn, expire_on_commit=False)
        try:
            yield session
        finally:
            await session.close()
