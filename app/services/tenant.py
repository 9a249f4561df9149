"""
Service layer for the tenant directory.

Maps tenant ids to their schemas, provisions new tenant schemas and answers
table-existence questions for report building.
"""

import re
from pathlib import Path
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from app.core.cache import TableExistenceCache, cache_expiry
from app.core.config import settings
from app.core.exceptions import TenantNotFoundError, TenantNotReadyError
from app.core.logging import logger
from app.db.sql import assert_valid_identifier
from app.db.tenant import tenant_connection
from app.models.tenant import Tenant, TenantStatus
from app.schemas.tenant import TenantContext

STATEMENT_SEPARATOR = re.compile(r";\s*\n")
DEFAULT_MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "db" / "migrations" / "tenants"


def create_schema_slug(name: str) -> str:
    """Derive a schema name such as ``tenant_st_marys_high`` from a school name."""
    slug = re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")
    return f"tenant_{slug}"


def split_statements(sql: str) -> List[str]:
    return [statement.strip() for statement in STATEMENT_SEPARATOR.split(sql) if statement.strip()]


async def run_tenant_migrations(
    engine: AsyncEngine,
    schema_name: str,
    migrations_dir: Optional[str] = None,
) -> int:
    """
    Apply tenant migration files to ``schema_name``.

    Files are applied in name order; ``{{schema}}`` is replaced with the
    schema name. Returns the number of statements executed.
    """
    assert_valid_identifier(schema_name)
    directory = Path(migrations_dir or settings.reports.tenant_migrations_dir or DEFAULT_MIGRATIONS_DIR)
    if not directory.is_dir():
        logger.warning(f"Tenant migrations directory not found: {directory}")
        return 0

    files = sorted(p for p in directory.iterdir() if p.suffix == ".sql")
    executed = 0
    async with tenant_connection(engine, schema_name) as conn:
        for path in files:
            rendered = path.read_text(encoding="utf-8").replace("{{schema}}", schema_name)
            for statement in split_statements(rendered):
                await conn.exec_driver_sql(statement)
                executed += 1
            logger.debug(f"Applied tenant migration {path.name} to {schema_name}")
    return executed


class TenantService:
    """Service class for tenant directory operations."""

    @staticmethod
    async def get_by_id(db: AsyncSession, tenant_id: UUID) -> Optional[Tenant]:
        logger.debug(f"Getting tenant by ID: {tenant_id}")
        result = await db.execute(select(Tenant).where(Tenant.id == tenant_id))
        return result.scalars().first()

    @staticmethod
    async def get_by_schema_name(db: AsyncSession, schema_name: str) -> Optional[Tenant]:
        assert_valid_identifier(schema_name)
        result = await db.execute(select(Tenant).where(Tenant.schema_name == schema_name))
        return result.scalars().first()

    @staticmethod
    async def list_tenants(db: AsyncSession, status: Optional[str] = None) -> List[Tenant]:
        query = select(Tenant).order_by(Tenant.name)
        if status:
            query = query.where(Tenant.status == status)
        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def resolve_schema(db: AsyncSession, tenant_id: UUID) -> str:
        """
        Resolve the schema a request for ``tenant_id`` must be scoped to.

        Raises:
            TenantNotFoundError: If the tenant does not exist
            TenantNotReadyError: If the tenant's schema is not provisioned
        """
        tenant = await TenantService.get_by_id(db, tenant_id)
        if tenant is None:
            raise TenantNotFoundError(f"Tenant not found: {tenant_id}")
        if tenant.status != TenantStatus.READY.value:
            raise TenantNotReadyError(f"Tenant {tenant_id} is not ready (status: {tenant.status})")
        assert_valid_identifier(tenant.schema_name)
        return tenant.schema_name

    @staticmethod
    async def resolve_context(db: AsyncSession, tenant_id: UUID) -> TenantContext:
        schema_name = await TenantService.resolve_schema(db, tenant_id)
        return TenantContext(tenant_id=tenant_id, schema_name=schema_name)

    @staticmethod
    async def _set_status(db: AsyncSession, tenant: Tenant, status: TenantStatus, error: Optional[str] = None) -> None:
        tenant.status = status.value
        tenant.preparation_error = error
        await db.commit()

    @staticmethod
    async def provision(
        engine: AsyncEngine,
        db: AsyncSession,
        name: str,
        schema_name: Optional[str] = None,
        domain: Optional[str] = None,
    ) -> Tenant:
        """
        Create a tenant and its schema.

        The tenant row is written as ``pending`` first and moves to ``ready``
        once the schema and its tables exist, or to ``failed`` with the error
        message, in which case the error is re-raised.
        """
        schema_name = schema_name or create_schema_slug(name)
        assert_valid_identifier(schema_name)
        logger.info(f"Provisioning tenant {name} in schema {schema_name}")

        tenant = Tenant(name=name, domain=domain, schema_name=schema_name, status=TenantStatus.PENDING.value)
        db.add(tenant)
        await db.commit()
        await db.refresh(tenant)

        try:
            async with engine.connect() as conn:
                await conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {schema_name}"))
                await conn.commit()
            await run_tenant_migrations(engine, schema_name)
        except Exception as e:
            logger.error(f"Failed to provision tenant {tenant.id} ({schema_name}): {e}")
            await TenantService._set_status(db, tenant, TenantStatus.FAILED, str(e))
            raise

        await TenantService._set_status(db, tenant, TenantStatus.READY)
        logger.info(f"Tenant {tenant.id} is ready")
        return tenant

    @staticmethod
    async def table_exists(
        db: AsyncSession,
        schema_name: str,
        table_name: str,
        cache: Optional[TableExistenceCache] = None,
    ) -> bool:
        """Check whether ``schema_name.table_name`` exists, using ``cache`` when given."""
        assert_valid_identifier(schema_name)
        assert_valid_identifier(table_name)
        key = f"{schema_name}.{table_name}"

        if cache is not None:
            cached = await cache.get(key)
            if cached is not None:
                logger.debug(f"Cache hit for table {key}")
                return cached

        result = await db.execute(
            text(
                "SELECT EXISTS (SELECT 1 FROM information_schema.tables "
                "WHERE table_schema = :schema AND table_name = :table)"
            ),
            {"schema": schema_name, "table": table_name},
        )
        exists = bool(result.scalar())

        if cache is not None:
            await cache.put(key, exists, cache_expiry(settings))
        return exists
