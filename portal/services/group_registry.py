"""Group lifecycle: formation, membership, invitation codes and deletion."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Iterable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from portal.application.interfaces import Notification, NotificationDispatcherInterface
from portal.config.settings import AllocationConfig
from portal.models.application import Application, ApplicationStatus
from portal.models.group import (
    ACTIVE_STATUSES,
    PRE_APPLICATION_STATUSES,
    Group,
    GroupStatus,
)
from portal.models.group_membership import GroupMembership
from portal.models.project import ProjectType
from portal.models.user import User
from portal.services.base import SessionBoundService
from portal.services.code_generator import CodeGenerator
from portal.services.errors import (
    AlreadyLeadingError,
    AlreadyMemberError,
    AuthorizationError,
    CodeGenerationExhausted,
    ConflictError,
    GroupFullError,
    LeadersCannotJoinError,
    NotAMemberError,
    NotFoundError,
    StateError,
    ValidationError,
)
from portal.services.notifications import dispatch_safely
from portal.telemetry import GROUP_CODE_COLLISIONS, record_group_event

logger = logging.getLogger(__name__)


class GroupRegistry(SessionBoundService):
    """Owns every write to ``groups`` and ``group_memberships``.

    Returned ``Group`` instances carry a ``member_ids`` list loaded from the
    membership table at the time of the call.
    """

    def __init__(
        self,
        session: AsyncSession,
        config: Optional[AllocationConfig] = None,
        code_generator: Optional[CodeGenerator] = None,
        notifier: Optional[NotificationDispatcherInterface] = None,
    ):
        super().__init__(session, config)
        self.code_generator = code_generator or CodeGenerator(session, self.config)
        self.notifier = notifier

    # ------------------------------------------------------------------
    # Read paths
    # ------------------------------------------------------------------

    async def list_member_ids(self, group_id: int) -> list[int]:
        result = await self.session.execute(
            select(GroupMembership.user_id)
            .where(GroupMembership.group_id == group_id)
            .order_by(GroupMembership.joined_at, GroupMembership.id)
        )
        return list(result.scalars().all())

    async def _hydrate(self, group: Optional[Group]) -> Optional[Group]:
        if group is not None:
            group.member_ids = await self.list_member_ids(group.id)
        return group

    async def _hydrate_all(self, groups: Iterable[Group]) -> list[Group]:
        return [await self._hydrate(group) for group in groups]

    async def get_group_by_id(self, group_id: int) -> Optional[Group]:
        result = await self.session.execute(
            select(Group)
            .where(Group.id == group_id)
            .execution_options(populate_existing=True)
        )
        return await self._hydrate(result.scalar_one_or_none())

    async def get_group_by_code(
        self,
        group_code: str,
        year: int,
        project_type: ProjectType,
    ) -> Optional[Group]:
        result = await self.session.execute(
            select(Group)
            .where(
                Group.group_code == group_code.strip().upper(),
                Group.year == year,
                Group.project_type == project_type,
            )
            .execution_options(populate_existing=True)
        )
        return await self._hydrate(result.scalar_one_or_none())

    async def get_user_groups(self, user_id: int) -> list[Group]:
        """Return every active group the user belongs to, newest first."""

        result = await self.session.execute(
            select(Group)
            .join(GroupMembership, GroupMembership.group_id == Group.id)
            .where(
                GroupMembership.user_id == user_id,
                Group.status.in_(ACTIVE_STATUSES),
            )
            .order_by(Group.created_at.desc(), Group.id.desc())
            .execution_options(populate_existing=True)
        )
        return await self._hydrate_all(result.scalars().all())

    async def get_user_group(
        self,
        user_id: int,
        project_type: Optional[ProjectType] = None,
        year: Optional[int] = None,
    ) -> Optional[Group]:
        groups = await self.get_user_groups(user_id)
        for group in groups:
            if project_type is not None and group.project_type != project_type:
                continue
            if year is not None and group.year != year:
                continue
            return group
        return None

    async def get_groups_by_project_type(
        self,
        project_type: ProjectType,
        year: Optional[int] = None,
    ) -> list[Group]:
        query = select(Group).where(Group.project_type == project_type)
        if year is not None:
            query = query.where(Group.year == year)
        result = await self.session.execute(
            query.order_by(Group.created_at.desc(), Group.id.desc())
            .execution_options(populate_existing=True)
        )
        return await self._hydrate_all(result.scalars().all())

    async def validate_group_size(self, group_id: int) -> bool:
        """True when the group holds between the complete and maximum size."""

        group = await self.get_group_by_id(group_id)
        if group is None:
            return False
        return (
            self.config.min_complete_size
            <= len(group.member_ids)
            <= self.config.max_group_size
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

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

    async def _get_user(self, user_id: int) -> User:
        user = await self.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    async def _get_membership(
        self,
        group_id: int,
        user_id: int,
    ) -> Optional[GroupMembership]:
        result = await self.session.execute(
            select(GroupMembership).where(
                GroupMembership.group_id == group_id,
                GroupMembership.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _ensure_leader(group: Group, user_id: int, action: str) -> None:
        if group.leader_id != user_id:
            raise AuthorizationError(
                f"Only the group leader can {action}",
                code="NOT_GROUP_LEADER",
            )

    @staticmethod
    def _ensure_pre_application(group: Group, action: str) -> None:
        if group.status not in PRE_APPLICATION_STATUSES:
            raise StateError(
                f"Cannot {action} a group with status '{group.status.value}'",
                code="INVALID_GROUP_STATUS",
                details={"status": group.status.value},
            )

    async def _set_member_count(self, group: Group, new_count: int) -> None:
        """Compare-and-set the member count observed when ``group`` was read."""

        if new_count >= self.config.min_complete_size:
            new_status = GroupStatus.COMPLETE
        else:
            new_status = GroupStatus.FORMING

        result = await self.session.execute(
            update(Group)
            .where(
                Group.id == group.id,
                Group.member_count == group.member_count,
                Group.status.in_(PRE_APPLICATION_STATUSES),
            )
            .values(member_count=new_count, status=new_status)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError(
                "Group membership changed concurrently; please retry",
                code="CONCURRENT_MODIFICATION",
            )
        await self.session.refresh(group)

    async def _remove_membership(self, group: Group, user_id: int) -> None:
        await self.session.execute(
            delete(GroupMembership).where(
                GroupMembership.group_id == group.id,
                GroupMembership.user_id == user_id,
            )
        )
        await self._set_member_count(group, group.member_count - 1)
        await self.session.execute(
            update(User)
            .where(User.id == user_id, User.current_group_id == group.id)
            .values(current_group_id=None)
            .execution_options(synchronize_session=False)
        )

    async def _disband(self, group: Group) -> list[int]:
        """Delete the group with its memberships and unapproved applications."""

        member_ids = await self.list_member_ids(group.id)
        await self.session.execute(
            delete(Application).where(
                Application.group_id == group.id,
                Application.status != ApplicationStatus.APPROVED,
            )
        )
        await self.session.execute(
            delete(GroupMembership).where(GroupMembership.group_id == group.id)
        )
        await self.session.execute(
            update(User)
            .where(User.id.in_(member_ids), User.current_group_id == group.id)
            .values(current_group_id=None)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(delete(Group).where(Group.id == group.id))
        return member_ids

    async def _retry_on_code_collision(
        self,
        operation: Callable[[dict[str, Any]], Awaitable[Group]],
    ) -> Group:
        """Run ``operation`` in its own unit of work, retrying code collisions.

        ``operation`` records the code it tried (with year and project type) in
        the dict it receives so a unique-constraint failure can be attributed.
        """

        attempts = self.config.group_code_max_attempts
        for _ in range(attempts):
            attempted: dict[str, Any] = {}
            try:
                async with self._unit_of_work():
                    return await operation(attempted)
            except IntegrityError:
                code = attempted.get("code")
                if code is None or not await self.code_generator.code_exists(
                    code, attempted["year"], attempted["project_type"]
                ):
                    raise
                GROUP_CODE_COLLISIONS.inc()
                logger.warning("Group code %s was taken concurrently; retrying", code)
        raise CodeGenerationExhausted(attempts)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_group(
        self,
        leader_id: int,
        project_type: ProjectType,
        year: int,
        group_name: Optional[str] = None,
    ) -> Group:
        """Create a ``forming`` group led (and initially populated) by ``leader_id``."""

        async def _create(attempted: dict[str, Any]) -> Group:
            await self._get_user(leader_id)

            leading = await self.session.execute(
                select(Group.id).where(
                    Group.leader_id == leader_id,
                    Group.project_type == project_type,
                    Group.year == year,
                    Group.status.in_(ACTIVE_STATUSES),
                )
            )
            if leading.first() is not None:
                raise AlreadyLeadingError(project_type.value, year)

            membership = await self.session.execute(
                select(GroupMembership.id)
                .join(Group, Group.id == GroupMembership.group_id)
                .where(
                    GroupMembership.user_id == leader_id,
                    Group.status.in_(ACTIVE_STATUSES),
                )
            )
            if membership.first() is not None:
                raise AlreadyMemberError()

            code = await self.code_generator.generate_unique(year, project_type)
            attempted.update(code=code, year=year, project_type=project_type)

            group = Group(
                group_code=code,
                group_name=group_name.strip() if group_name else None,
                project_type=project_type,
                year=year,
                status=GroupStatus.FORMING,
                leader_id=leader_id,
                member_count=1,
                draft_projects=[],
            )
            self.session.add(group)
            await self.session.flush()

            self.session.add(
                GroupMembership(
                    group_id=group.id,
                    user_id=leader_id,
                    project_type=project_type,
                    year=year,
                )
            )
            await self.session.execute(
                update(User)
                .where(User.id == leader_id)
                .values(current_group_id=group.id)
                .execution_options(synchronize_session=False)
            )
            await self.session.flush()
            return await self._hydrate(group)

        try:
            group = await self._retry_on_code_collision(_create)
        except IntegrityError as exc:
            raise AlreadyMemberError() from exc

        record_group_event("created")
        logger.info(
            "Group created: %s (%s %s) by user %s",
            group.group_code,
            project_type.value,
            year,
            leader_id,
        )
        return group

    async def join_group(
        self,
        user_id: int,
        group_code: str,
        year: int,
        project_type: ProjectType,
    ) -> Group:
        """Add ``user_id`` to the group holding ``group_code``."""

        code = group_code.strip().upper()
        try:
            async with self._unit_of_work():
                user = await self._get_user(user_id)

                leading = await self.session.execute(
                    select(Group.id).where(
                        Group.leader_id == user_id,
                        Group.status.in_(ACTIVE_STATUSES),
                    )
                )
                if leading.first() is not None:
                    raise LeadersCannotJoinError()

                existing = await self.session.execute(
                    select(GroupMembership.id)
                    .join(Group, Group.id == GroupMembership.group_id)
                    .where(
                        GroupMembership.user_id == user_id,
                        GroupMembership.project_type == project_type,
                        GroupMembership.year == year,
                        Group.status.in_(ACTIVE_STATUSES),
                    )
                )
                if existing.first() is not None:
                    raise AlreadyMemberError(
                        f"You are already in a group for {project_type.value} in {year}"
                    )

                result = await self.session.execute(
                    select(Group)
                    .where(
                        Group.group_code == code,
                        Group.year == year,
                        Group.project_type == project_type,
                        Group.status.in_(PRE_APPLICATION_STATUSES),
                    )
                    .with_for_update()
                    .execution_options(populate_existing=True)
                )
                group = result.scalar_one_or_none()
                if group is None:
                    raise NotFoundError(
                        "Group",
                        message="Group not found or no longer accepting members",
                    )

                if group.member_count >= self.config.max_group_size:
                    raise GroupFullError(self.config.max_group_size)

                allocated = await self.session.execute(
                    select(Application.id).where(
                        Application.student_id == user_id,
                        Application.project_type == project_type,
                        Application.status == ApplicationStatus.APPROVED,
                    )
                )
                if allocated.first() is not None:
                    raise ConflictError(
                        "You already hold an approved solo application for this project type",
                        code="ALREADY_ALLOCATED",
                    )

                await self._set_member_count(group, group.member_count + 1)
                self.session.add(
                    GroupMembership(
                        group_id=group.id,
                        user_id=user_id,
                        project_type=project_type,
                        year=year,
                    )
                )
                await self.session.execute(
                    update(User)
                    .where(User.id == user_id)
                    .values(current_group_id=group.id)
                    .execution_options(synchronize_session=False)
                )

                # The joiner now applies through the group.
                dropped = await self.session.execute(
                    delete(Application).where(
                        Application.student_id == user_id,
                        Application.project_type == project_type,
                    )
                )
                await self.session.flush()
                await self._hydrate(group)
                joiner_name = user.name
        except IntegrityError as exc:
            raise AlreadyMemberError(
                f"You are already in a group for {project_type.value} in {year}"
            ) from exc

        if dropped.rowcount:
            logger.info(
                "Deleted %d solo application(s) of user %s after joining group %s",
                dropped.rowcount,
                user_id,
                group.group_code,
            )
        record_group_event("joined")
        logger.info("User %s joined group %s", user_id, group.group_code)

        await dispatch_safely(
            self.notifier,
            [group.leader_id],
            Notification(
                type="MEMBER_JOINED",
                title="New Member Joined",
                message=f"{joiner_name or 'A student'} has joined your group {group.group_code}",
                data={"group_id": group.id, "user_id": user_id},
            ),
        )
        return group

    async def leave_group(self, user_id: int, group_id: int) -> Optional[Group]:
        """Remove ``user_id`` from the group; a departing leader disbands it.

        Returns the updated group, or ``None`` when the group was deleted.
        """

        async with self._unit_of_work():
            group = await self._lock_group(group_id)
            self._ensure_pre_application(group, "leave")
            if await self._get_membership(group_id, user_id) is None:
                raise NotAMemberError(user_id, group_id)

            if group.leader_id == user_id:
                member_ids = await self._disband(group)
                code = group.group_code
                result = None
            else:
                await self._remove_membership(group, user_id)
                await self.session.flush()
                result = await self._hydrate(group)

        if result is None:
            record_group_event("disbanded")
            logger.info(
                "Group %s deleted as leader %s left; cleared %d member(s)",
                code,
                user_id,
                len(member_ids),
            )
            return None

        record_group_event("left")
        logger.info("User %s left group %s", user_id, result.group_code)
        return result

    async def remove_member(
        self,
        leader_id: int,
        group_id: int,
        member_id: int,
    ) -> Group:
        """Leader-initiated removal of another member."""

        async with self._unit_of_work():
            group = await self._lock_group(group_id)
            self._ensure_leader(group, leader_id, "remove members")
            if member_id == group.leader_id:
                raise ValidationError(
                    "Cannot remove the group leader",
                    code="CANNOT_REMOVE_LEADER",
                )
            self._ensure_pre_application(group, "remove members from")
            if await self._get_membership(group_id, member_id) is None:
                raise NotAMemberError(member_id, group_id)

            await self._remove_membership(group, member_id)
            await self.session.flush()
            await self._hydrate(group)

        record_group_event("member_removed")
        logger.info(
            "Member %s removed from group %s by leader %s",
            member_id,
            group.group_code,
            leader_id,
        )
        await dispatch_safely(
            self.notifier,
            [member_id],
            Notification(
                type="REMOVED_FROM_GROUP",
                title="Removed From Group",
                message=f"You were removed from group {group.group_code}",
                data={"group_id": group.id},
            ),
        )
        return group

    async def transfer_leadership(
        self,
        leader_id: int,
        group_id: int,
        new_leader_id: int,
    ) -> Group:
        async with self._unit_of_work():
            group = await self._lock_group(group_id)
            self._ensure_leader(group, leader_id, "transfer leadership")
            if new_leader_id == leader_id:
                raise ValidationError(
                    "New leader must differ from the current leader",
                    code="SAME_LEADER",
                )
            if await self._get_membership(group_id, new_leader_id) is None:
                raise NotAMemberError(new_leader_id, group_id)

            group.leader_id = new_leader_id
            await self.session.flush()
            await self._hydrate(group)

        record_group_event("leadership_transferred")
        logger.info(
            "Leadership of group %s transferred from %s to %s",
            group.group_code,
            leader_id,
            new_leader_id,
        )
        return group

    async def reset_group_code(self, leader_id: int, group_id: int) -> Group:
        """Issue a fresh invitation code, invalidating the old one."""

        async def _reset(attempted: dict[str, Any]) -> Group:
            group = await self._lock_group(group_id)
            self._ensure_leader(group, leader_id, "reset the group code")
            self._ensure_pre_application(group, "reset the code of")

            code = await self.code_generator.generate_unique(
                group.year, group.project_type
            )
            attempted.update(code=code, year=group.year, project_type=group.project_type)
            await self.session.execute(
                update(Group)
                .where(Group.id == group.id)
                .values(group_code=code)
                .execution_options(synchronize_session=False)
            )
            await self.session.refresh(group)
            return await self._hydrate(group)

        group = await self._retry_on_code_collision(_reset)
        record_group_event("code_reset")
        logger.info("Group %s code reset by leader %s", group.id, leader_id)
        return group

    async def delete_group(self, leader_id: int, group_id: int) -> None:
        async with self._unit_of_work():
            group = await self._lock_group(group_id)
            self._ensure_leader(group, leader_id, "delete the group")
            self._ensure_pre_application(group, "delete")
            await self._disband(group)
            code = group.group_code

        record_group_event("deleted")
        logger.info("Group deleted: %s by user %s", code, leader_id)

    async def update_group(
        self,
        leader_id: int,
        group_id: int,
        group_name: Optional[str],
    ) -> Group:
        async with self._unit_of_work():
            group = await self._lock_group(group_id)
            self._ensure_leader(group, leader_id, "update group details")
            group.group_name = group_name.strip() if group_name else None
            await self.session.flush()
            await self._hydrate(group)

        logger.info("Group %s updated by leader %s", group.group_code, leader_id)
        return group

    async def update_draft_projects(
        self,
        leader_id: int,
        group_id: int,
        project_ids: Iterable[int],
    ) -> Group:
        """Replace the pre-submission scratch list; status is untouched."""

        drafts = list(dict.fromkeys(int(project_id) for project_id in project_ids))
        async with self._unit_of_work():
            group = await self._lock_group(group_id)
            self._ensure_leader(group, leader_id, "update draft projects")
            group.draft_projects = drafts
            await self.session.flush()
            await self._hydrate(group)

        logger.info(
            "Group %s draft projects updated: %s", group.group_code, drafts
        )
        return group

    async def freeze_group(self, group_id: int) -> Group:
        """Administrative move to ``frozen``; members cannot undo it."""

        async with self._unit_of_work():
            group = await self._lock_group(group_id)
            if group.status != GroupStatus.FROZEN:
                group.status = GroupStatus.FROZEN
                await self.session.flush()
            await self._hydrate(group)

        record_group_event("frozen")
        logger.info("Group %s frozen", group.group_code)
        return group


__all__ = ["GroupRegistry"]
