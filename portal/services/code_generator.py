"""Human-typeable invitation codes for groups."""

from __future__ import annotations

import logging
import random
import secrets
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.config.settings import AllocationConfig, settings
from portal.models.group import Group
from portal.models.project import ProjectType
from portal.services.errors import CodeGenerationExhausted
from portal.telemetry import GROUP_CODE_COLLISIONS

logger = logging.getLogger(__name__)


class CodeGenerator:
    """Draw group codes and check them against persisted groups.

    The existence check is only a pre-filter. The unique constraint on
    ``(group_code, year, project_type)`` is what guarantees uniqueness; callers
    retry their write when it fires.
    """

    def __init__(
        self,
        session: AsyncSession,
        config: Optional[AllocationConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        self.session = session
        self.config = config or settings.allocation
        self._rng = rng or secrets.SystemRandom()

    def generate(self) -> str:
        """Return a fresh code drawn uniformly from the configured alphabet."""

        alphabet = self.config.group_code_alphabet
        return "".join(
            self._rng.choice(alphabet) for _ in range(self.config.group_code_length)
        )

    def is_well_formed(self, code: str) -> bool:
        alphabet = set(self.config.group_code_alphabet)
        return len(code) == self.config.group_code_length and all(
            char in alphabet for char in code
        )

    async def code_exists(
        self,
        code: str,
        year: int,
        project_type: ProjectType,
    ) -> bool:
        result = await self.session.execute(
            select(Group.id).where(
                Group.group_code == code,
                Group.year == year,
                Group.project_type == project_type,
            )
        )
        return result.first() is not None

    async def generate_unique(self, year: int, project_type: ProjectType) -> str:
        """Return a code unused within ``(year, project_type)``.

        Raises ``CodeGenerationExhausted`` after the configured number of draws.
        """

        attempts = self.config.group_code_max_attempts
        for _ in range(attempts):
            code = self.generate()
            if not await self.code_exists(code, year, project_type):
                return code
            GROUP_CODE_COLLISIONS.inc()
            logger.debug("Group code %s already taken for %s %s", code, project_type, year)

        logger.error(
            "Exhausted %d attempts generating a group code for %s %s",
            attempts,
            project_type,
            year,
        )
        raise CodeGenerationExhausted(attempts)


__all__ = ["CodeGenerator"]
