"""Async engine, request sessions and startup reconciliation for the portal store."""

from __future__ import annotations

import logging
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from sqlalchemy import and_, case, func, literal, or_, select, text, update
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool

from portal.config.settings import settings
from portal.models import (
    Application,
    ApplicationStatus,
    Base,
    Group,
    GroupMembership,
    Project,
    ProjectStatus,
)

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _configured_schema() -> Optional[str]:
    """Schema from ``DB_SCHEMA`` when it is a plain identifier, else None."""

    schema = (settings.database.db_schema or "").strip()
    if not schema:
        return None
    if not _IDENTIFIER.fullmatch(schema):
        logger.warning("DB_SCHEMA '%s' is not a plain identifier; using the default schema.", schema)
        return None
    return schema


SCHEMA = _configured_schema()
BACKEND = make_url(settings.database.url).get_backend_name()

if SCHEMA and BACKEND == "postgresql":
    for table in Base.metadata.tables.values():
        if table.schema is None:
            table.schema = SCHEMA


def _create_engine() -> AsyncEngine:
    """Build the engine for the configured backend.

    SQLite URLs share one connection so an in-memory store survives across
    sessions. PostgreSQL drops pooling in serverless mode.
    """

    url = settings.database.url
    options: dict[str, Any] = {"echo": settings.debug}

    if BACKEND == "sqlite":
        options["poolclass"] = StaticPool
        options["connect_args"] = {"check_same_thread": False}
    else:
        options["pool_pre_ping"] = True
        if settings.database.serverless:
            options["poolclass"] = NullPool

    return create_async_engine(url, **options)


engine: AsyncEngine = _create_engine()

SessionFactory = async_sessionmaker(
    engine,
    expire_on_commit=False,
    class_=AsyncSession,
)


async def _set_search_path(target: Any) -> None:
    if SCHEMA and BACKEND == "postgresql":
        await target.execute(text(f'SET search_path TO "{SCHEMA}", public'))


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """Yield a session bound to the configured schema."""

    async with SessionFactory() as session:
        await _set_search_path(session)
        yield session


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding one session per request."""

    async with session_scope() as session:
        yield session


async def reconcile_counters(conn: AsyncConnection) -> None:
    """Recompute denormalised counters from their source rows.

    ``groups.member_count`` follows ``group_memberships`` and
    ``projects.assigned_count`` follows approved applications, and a project's
    ``assigned`` status follows whether that count fills its capacity. Only
    rows that drifted are written.
    """

    members = (
        select(func.count(GroupMembership.id))
        .where(GroupMembership.group_id == Group.id)
        .scalar_subquery()
    )
    groups = await conn.execute(
        update(Group)
        .where(Group.member_count != members, members > 0)
        .values(member_count=members)
    )

    approved = (
        select(func.count(Application.id))
        .where(
            Application.project_id == Project.id,
            Application.status == ApplicationStatus.APPROVED,
        )
        .scalar_subquery()
    )
    full = approved >= Project.capacity
    published = Project.status == ProjectStatus.PUBLISHED
    assigned = Project.status == ProjectStatus.ASSIGNED
    status = case(
        (and_(full, published), literal(ProjectStatus.ASSIGNED, Project.status.type)),
        (and_(~full, assigned), literal(ProjectStatus.PUBLISHED, Project.status.type)),
        else_=Project.status,
    )
    projects = await conn.execute(
        update(Project)
        .where(
            approved <= Project.capacity,
            or_(
                Project.assigned_count != approved,
                and_(full, published),
                and_(~full, assigned),
            ),
        )
        .values(assigned_count=approved, status=status)
    )

    if groups.rowcount or projects.rowcount:
        logger.warning(
            "Reconciled counters: %d group member count(s), %d project assignment(s)",
            groups.rowcount,
            projects.rowcount,
        )


async def init_models() -> None:
    """Create missing tables, then repair counters left by earlier deployments."""

    async with engine.begin() as conn:
        if SCHEMA and BACKEND == "postgresql":
            await conn.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{SCHEMA}"'))
        await _set_search_path(conn)
        await conn.run_sync(Base.metadata.create_all)
        await reconcile_counters(conn)

    logger.info("Database ready (%s, schema %s)", BACKEND, SCHEMA or "default")


async def dispose_engine() -> None:
    await engine.dispose()
