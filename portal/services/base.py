"""Shared plumbing for services bound to one AsyncSession."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from portal.config.settings import AllocationConfig, settings
from portal.services.errors import ConflictError

logger = logging.getLogger(__name__)

# PostgreSQL serialization_failure and deadlock_detected
LOCK_CONFLICT_SQLSTATES = frozenset({"40001", "40P01"})


def sqlstate(exc: DBAPIError) -> Optional[str]:
    """SQLSTATE of the driver error behind ``exc``, when the driver reports one."""

    orig = exc.orig
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


class SessionBoundService:
    """Base for engine services; one instance per request-scoped session."""

    def __init__(
        self,
        session: AsyncSession,
        config: Optional[AllocationConfig] = None,
    ):
        self.session = session
        self.config = config or settings.allocation

    @asynccontextmanager
    async def _unit_of_work(self) -> AsyncIterator[AsyncSession]:
        """Commit everything done in the block, or roll all of it back.

        A transaction the database aborted over a lock conflict surfaces as
        ``ConflictError(CONCURRENT_MODIFICATION)``; the caller may retry.
        """

        try:
            yield self.session
            await self.session.commit()
        except DBAPIError as exc:
            await self.session.rollback()
            if sqlstate(exc) not in LOCK_CONFLICT_SQLSTATES:
                raise
            logger.warning("Transaction aborted by lock conflict: %s", exc.orig)
            raise ConflictError(
                "Concurrent modification detected; please retry",
                code="CONCURRENT_MODIFICATION",
            ) from exc
        except BaseException:
            await self.session.rollback()
            raise


__all__ = ["SessionBoundService", "sqlstate"]
