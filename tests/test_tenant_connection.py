"""
Tests for tenant-scoped connections.

These tests drive ``tenant_connection`` with an in-memory engine that records
every statement, so the ordering and cleanup guarantees can be checked
without a database. The PostgreSQL-backed equivalents live in
``test_tenant_isolation.py``.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import List, Optional

import pytest

from app.core.exceptions import ConnectionLifecycleError, InvalidIdentifierError
from app.db.tenant import tenant_connection, with_tenant_connection

RESET = "SET search_path TO public"


class FakeConnection:
    """A single pooled connection that remembers its session search path."""

    def __init__(self, fail_on: Optional[str] = None):
        self.search_path = "public"
        self.statements: List[str] = []
        self.events: List[str] = []
        self.fail_on = fail_on
        self.invalidated = False
        self._in_transaction = False

    async def execute(self, statement, parameters=None):
        sql = str(statement)
        self.statements.append(sql)
        self._in_transaction = True
        if self.fail_on and sql == self.fail_on:
            raise RuntimeError(f"server closed the connection during: {sql}")
        if sql.startswith("SET search_path TO "):
            self.search_path = sql[len("SET search_path TO "):]
        return None

    async def exec_driver_sql(self, statement, parameters=None):
        return await self.execute(statement, parameters)

    def in_transaction(self) -> bool:
        return self._in_transaction

    async def commit(self):
        self.events.append("commit")
        self._in_transaction = False

    async def rollback(self):
        self.events.append("rollback")
        self._in_transaction = False

    async def invalidate(self):
        self.events.append("invalidate")
        self.invalidated = True


class FakeEngine:
    """Pool of size one: every borrow hands out the same connection."""

    def __init__(self, conn: Optional[FakeConnection] = None):
        self.conn = conn or FakeConnection()
        self.borrowed = 0
        self.released = 0
        self.search_path_on_release: List[str] = []

    @asynccontextmanager
    async def connect(self):
        self.borrowed += 1
        try:
            yield self.conn
        finally:
            self.released += 1
            self.search_path_on_release.append(self.conn.search_path)


class FakePool:
    """Hands a fresh connection to each concurrent borrower."""

    def __init__(self):
        self.connections: List[FakeConnection] = []
        self.in_use = 0

    @asynccontextmanager
    async def connect(self):
        conn = FakeConnection()
        self.connections.append(conn)
        self.in_use += 1
        try:
            yield conn
        finally:
            self.in_use -= 1


@pytest.mark.asyncio
async def test_search_path_set_before_work_and_reset_after():
    """Test SET runs before the work and the reset runs after it."""
    engine = FakeEngine()

    async with tenant_connection(engine, "tenant_a") as conn:
        assert conn.search_path == "tenant_a, public"
        await conn.execute("SELECT * FROM students")

    assert engine.conn.statements == [
        "SET search_path TO tenant_a, public",
        "SELECT * FROM students",
        RESET,
    ]
    assert engine.released == 1
    assert engine.search_path_on_release == ["public"]


@pytest.mark.asyncio
async def test_successful_work_is_committed_before_reset():
    """Test the work's transaction is committed, not rolled back."""
    engine = FakeEngine()

    async with tenant_connection(engine, "tenant_a") as conn:
        await conn.execute("UPDATE students SET enrollment_status = 'active'")

    assert "rollback" not in engine.conn.events
    assert engine.conn.events.count("commit") == 3


@pytest.mark.asyncio
async def test_reset_runs_when_work_raises():
    """Test the search path is restored and the original error propagates."""
    engine = FakeEngine()

    with pytest.raises(ValueError, match="boom"):
        async with tenant_connection(engine, "tenant_a") as conn:
            await conn.execute("SELECT 1")
            raise ValueError("boom")

    assert engine.conn.statements[-1] == RESET
    assert "rollback" in engine.conn.events
    assert engine.search_path_on_release == ["public"]
    assert not engine.conn.invalidated


@pytest.mark.asyncio
async def test_reset_runs_when_work_is_cancelled():
    """Test cancellation still restores the search path."""
    engine = FakeEngine()

    with pytest.raises(asyncio.CancelledError):
        async with tenant_connection(engine, "tenant_a"):
            raise asyncio.CancelledError()

    assert engine.conn.statements[-1] == RESET
    assert engine.search_path_on_release == ["public"]


@pytest.mark.asyncio
async def test_size_one_pool_reuse_starts_from_public():
    """Test the next borrower of a reused connection sees the default path."""
    engine = FakeEngine()

    with pytest.raises(RuntimeError):
        async with tenant_connection(engine, "tenant_a"):
            raise RuntimeError("work failed")

    async with engine.connect() as conn:
        assert conn.search_path == "public"

    async with tenant_connection(engine, "tenant_b") as conn:
        assert conn.search_path == "tenant_b, public"

    assert engine.search_path_on_release == ["public", "public", "public"]


@pytest.mark.asyncio
async def test_invalid_schema_never_borrows_a_connection():
    """Test schema validation happens before acquiring a connection."""
    engine = FakeEngine()

    with pytest.raises(InvalidIdentifierError):
        async with tenant_connection(engine, "tenant_a; DROP SCHEMA public"):
            pass

    assert engine.borrowed == 0


@pytest.mark.asyncio
async def test_failed_reset_invalidates_and_raises():
    """Test a connection whose reset fails is discarded and the failure reported."""
    engine = FakeEngine(FakeConnection(fail_on=RESET))

    with pytest.raises(ConnectionLifecycleError):
        async with tenant_connection(engine, "tenant_a"):
            pass

    assert engine.conn.invalidated
    assert engine.released == 1


@pytest.mark.asyncio
async def test_failed_reset_does_not_mask_work_error():
    """Test the work's own error wins over a reset failure."""
    engine = FakeEngine(FakeConnection(fail_on=RESET))

    with pytest.raises(KeyError):
        async with tenant_connection(engine, "tenant_a"):
            raise KeyError("missing")

    assert engine.conn.invalidated


@pytest.mark.asyncio
async def test_failed_set_is_lifecycle_error_and_still_resets():
    """Test a failing SET is reported and cleanup still runs."""
    engine = FakeEngine(FakeConnection(fail_on="SET search_path TO tenant_a, public"))

    with pytest.raises(ConnectionLifecycleError):
        async with tenant_connection(engine, "tenant_a"):
            pytest.fail("work must not run when the search path cannot be set")

    assert engine.conn.statements[-1] == RESET
    assert engine.released == 1


@pytest.mark.asyncio
async def test_with_tenant_connection_returns_work_result():
    """Test the callable form returns what the work returns."""
    engine = FakeEngine()

    async def work(conn):
        return conn.search_path

    result = await with_tenant_connection(engine, "tenant_a", work)

    assert result == "tenant_a, public"
    assert engine.conn.search_path == "public"


@pytest.mark.asyncio
async def test_concurrent_tenants_use_separate_connections():
    """Test concurrent calls for different tenants never share a connection."""
    pool = FakePool()
    seen = {}

    async def peek(schema):
        async def work(conn):
            await asyncio.sleep(0)
            seen[schema] = (id(conn), conn.search_path)
            await asyncio.sleep(0)
            assert conn.search_path == f"{schema}, public"
        await with_tenant_connection(pool, schema, work)

    await asyncio.gather(peek("tenant_a"), peek("tenant_b"))

    assert seen["tenant_a"][1] == "tenant_a, public"
    assert seen["tenant_b"][1] == "tenant_b, public"
    assert seen["tenant_a"][0] != seen["tenant_b"][0]
    assert len(pool.connections) == 2
    assert pool.in_use == 0
    assert [conn.search_path for conn in pool.connections] == ["public", "public"]
