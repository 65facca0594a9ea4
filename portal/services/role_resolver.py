"""Effective-role derivation and external evaluator assignment."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict

from sqlalchemy import select

from portal.models.group import ACTIVE_STATUSES, Group
from portal.models.user import AccountType, User
from portal.services.base import SessionBoundService
from portal.services.errors import NotFoundError, StateError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EffectiveRole:
    base_role: str
    is_group_leader: bool
    is_coordinator: bool
    is_external_evaluator: bool
    effective_role: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class RoleResolver(SessionBoundService):
    """Computes roles from current group and user state on every call.

    Nothing here is cached; leadership changes are visible immediately.
    """

    async def _get_user(self, user_id: int) -> User:
        user = await self.session.get(User, user_id, populate_existing=True)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    async def is_group_leader(self, user_id: int) -> bool:
        result = await self.session.execute(
            select(Group.id).where(
                Group.leader_id == user_id,
                Group.status.in_(ACTIVE_STATUSES),
            )
        )
        return result.first() is not None

    async def is_coordinator(self, user_id: int) -> bool:
        user = await self.session.get(User, user_id, populate_existing=True)
        if user is None:
            return False
        return bool(user.is_coordinator) or user.account_type == AccountType.ADMIN

    async def is_external_evaluator(self, user_id: int) -> bool:
        result = await self.session.execute(
            select(Group.id).where(Group.external_evaluator_id == user_id)
        )
        return result.first() is not None

    async def get_effective_role(self, user_id: int) -> EffectiveRole:
        user = await self._get_user(user_id)
        is_coordinator = await self.is_coordinator(user_id)
        base_role = user.account_type.value
        return EffectiveRole(
            base_role=base_role,
            is_group_leader=await self.is_group_leader(user_id),
            is_coordinator=is_coordinator,
            is_external_evaluator=await self.is_external_evaluator(user_id),
            effective_role="coordinator" if is_coordinator else base_role,
        )

    async def _ensure_faculty(self, faculty_id: int) -> User:
        user = await self._get_user(faculty_id)
        if user.account_type != AccountType.FACULTY:
            raise ValidationError(
                "External evaluators must be faculty members",
                code="NOT_FACULTY",
                field="faculty_id",
            )
        return user

    async def _lock_group(self, group_id: int) -> Group:
        result = await self.session.execute(
            select(Group)
            .where(Group.id == group_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        group = result.scalar_one_or_none()
        if group is None:
            raise NotFoundError("Group", group_id)
        return group

    async def assign_external_evaluator_role(
        self,
        group_id: int,
        faculty_id: int,
    ) -> Group:
        async with self._unit_of_work():
            await self._ensure_faculty(faculty_id)
            group = await self._lock_group(group_id)
            group.external_evaluator_id = faculty_id
            await self.session.flush()

        logger.info("Faculty %s assigned as external evaluator of group %s", faculty_id, group_id)
        return group

    async def remove_external_evaluator_role(
        self,
        group_id: int,
        faculty_id: int,
    ) -> Group:
        async with self._unit_of_work():
            await self._ensure_faculty(faculty_id)
            group = await self._lock_group(group_id)
            if group.external_evaluator_id != faculty_id:
                raise StateError(
                    "Faculty is not the external evaluator of this group",
                    code="NOT_GROUP_EVALUATOR",
                )
            group.external_evaluator_id = None
            await self.session.flush()

        logger.info("Faculty %s removed as external evaluator of group %s", faculty_id, group_id)
        return group


__all__ = ["EffectiveRole", "RoleResolver"]
