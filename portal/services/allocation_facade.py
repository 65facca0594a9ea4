"""Single entry point composing the group, application and role services."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from portal.application.interfaces import (
    ApplicationWindowInterface,
    NotificationDispatcherInterface,
)
from portal.config.settings import AllocationConfig, settings
from portal.models.application import Application, ApplicationStatus
from portal.models.group import Group
from portal.models.project import ProjectType
from portal.services.application_allocator import (
    ApplicationAllocator,
    FacultyApplicationView,
)
from portal.services.code_generator import CodeGenerator
from portal.services.errors import AuthorizationError, NotFoundError, StateError
from portal.services.group_registry import GroupRegistry
from portal.services.role_resolver import EffectiveRole, RoleResolver

logger = logging.getLogger(__name__)


class AllocationFacade:
    """Operations exposed to routers, with standing checks that span services.

    All services share one session, so each call runs in the caller's
    request-scoped transaction boundary.
    """

    def __init__(
        self,
        session: AsyncSession,
        notifier: Optional[NotificationDispatcherInterface] = None,
        window: Optional[ApplicationWindowInterface] = None,
        config: Optional[AllocationConfig] = None,
    ):
        self.config = config or settings.allocation
        self.window = window
        self.codes = CodeGenerator(session, self.config)
        self.groups = GroupRegistry(session, self.config, self.codes, notifier)
        self.applications = ApplicationAllocator(session, self.config, notifier)
        self.roles = RoleResolver(session, self.config)

    async def _require_coordinator(self, actor_id: int, action: str) -> None:
        if not await self.roles.is_coordinator(actor_id):
            raise AuthorizationError(
                f"Only coordinators can {action}",
                code="NOT_COORDINATOR",
            )

    # Groups

    async def create_group(
        self,
        leader_id: int,
        project_type: ProjectType,
        year: int,
        group_name: Optional[str] = None,
    ) -> Group:
        return await self.groups.create_group(leader_id, project_type, year, group_name)

    async def join_group(
        self,
        user_id: int,
        group_code: str,
        year: int,
        project_type: ProjectType,
    ) -> Group:
        return await self.groups.join_group(user_id, group_code, year, project_type)

    async def leave_group(self, user_id: int, group_id: int) -> Optional[Group]:
        return await self.groups.leave_group(user_id, group_id)

    async def remove_member(self, leader_id: int, group_id: int, member_id: int) -> Group:
        return await self.groups.remove_member(leader_id, group_id, member_id)

    async def transfer_leadership(
        self,
        leader_id: int,
        group_id: int,
        new_leader_id: int,
    ) -> Group:
        return await self.groups.transfer_leadership(leader_id, group_id, new_leader_id)

    async def reset_group_code(self, leader_id: int, group_id: int) -> Group:
        return await self.groups.reset_group_code(leader_id, group_id)

    async def delete_group(self, leader_id: int, group_id: int) -> None:
        await self.groups.delete_group(leader_id, group_id)

    async def update_group(
        self,
        leader_id: int,
        group_id: int,
        group_name: Optional[str],
    ) -> Group:
        return await self.groups.update_group(leader_id, group_id, group_name)

    async def update_draft_projects(
        self,
        leader_id: int,
        group_id: int,
        project_ids: Iterable[int],
    ) -> Group:
        return await self.groups.update_draft_projects(leader_id, group_id, project_ids)

    async def freeze_group(self, actor_id: int, group_id: int) -> Group:
        await self._require_coordinator(actor_id, "freeze groups")
        return await self.groups.freeze_group(group_id)

    async def get_group_by_id(self, group_id: int) -> Optional[Group]:
        return await self.groups.get_group_by_id(group_id)

    async def get_group_by_code(
        self,
        group_code: str,
        year: int,
        project_type: ProjectType,
    ) -> Optional[Group]:
        return await self.groups.get_group_by_code(group_code, year, project_type)

    async def get_user_group(
        self,
        user_id: int,
        project_type: Optional[ProjectType] = None,
        year: Optional[int] = None,
    ) -> Optional[Group]:
        return await self.groups.get_user_group(user_id, project_type, year)

    async def get_user_groups(self, user_id: int) -> list[Group]:
        return await self.groups.get_user_groups(user_id)

    async def get_groups_by_project_type(
        self,
        project_type: ProjectType,
        year: Optional[int] = None,
    ) -> list[Group]:
        return await self.groups.get_groups_by_project_type(project_type, year)

    # Applications

    async def submit_application(
        self,
        actor_id: int,
        project_type: ProjectType,
        project_ids: Sequence[int],
        semester: int,
        department: str,
        **kwargs: Any,
    ) -> list[Application]:
        """Submit after consulting the application window, when one is wired."""

        if self.window is not None and not await self.window.is_open(project_type, semester):
            raise StateError(
                f"The {project_type.value} application window is closed",
                code="WINDOW_CLOSED",
            )
        return await self.applications.submit(
            actor_id, project_type, project_ids, semester, department, **kwargs
        )

    async def accept_application(
        self,
        actor_id: int,
        application_id: int,
        project_id: int,
    ) -> Application:
        """Accept as the owning faculty, or as a coordinator on their behalf."""

        faculty_id = actor_id
        if await self.roles.is_coordinator(actor_id):
            project = await self.applications.get_project(project_id)
            if project is None:
                raise NotFoundError("Project", project_id)
            faculty_id = project.faculty_id
        return await self.applications.accept(
            application_id, project_id, faculty_id, reviewer_id=actor_id
        )

    async def reject_application(
        self,
        actor_id: int,
        application_id: int,
        reason: Optional[str] = None,
    ) -> Application:
        faculty_id = actor_id
        if await self.roles.is_coordinator(actor_id):
            application = await self.applications.get_application_by_id(application_id)
            if application is None:
                raise NotFoundError("Application", application_id)
            project = await self.applications.get_project(application.project_id)
            if project is None:
                raise NotFoundError("Project", application.project_id)
            faculty_id = project.faculty_id
        return await self.applications.reject(
            application_id, faculty_id, reason, reviewer_id=actor_id
        )

    async def revoke_application(self, actor_id: int, application_id: int) -> dict[str, Any]:
        return await self.applications.revoke(application_id, actor_id)

    async def unfreeze_application(self, actor_id: int, application_id: int) -> Application:
        await self._require_coordinator(actor_id, "unfreeze applications")
        return await self.applications.unfreeze(application_id)

    async def get_application_by_id(self, application_id: int) -> Optional[Application]:
        return await self.applications.get_application_by_id(application_id)

    async def get_user_applications(
        self,
        student_id: Optional[int] = None,
        group_id: Optional[int] = None,
    ) -> list[Application]:
        return await self.applications.get_user_applications(student_id, group_id)

    async def get_applications_for_user(self, user_id: int) -> list[Application]:
        return await self.applications.get_applications_for_user(user_id)

    async def get_approved_application(
        self,
        student_id: Optional[int] = None,
        group_id: Optional[int] = None,
    ) -> Optional[Application]:
        return await self.applications.get_approved_application(student_id, group_id)

    async def get_faculty_applications(
        self,
        faculty_id: int,
        project_type: Optional[ProjectType] = None,
    ) -> list[FacultyApplicationView]:
        return await self.applications.get_faculty_applications(faculty_id, project_type)

    async def get_all_applications(
        self,
        actor_id: int,
        project_type: Optional[ProjectType] = None,
        status: Optional[ApplicationStatus] = None,
        semester: Optional[int] = None,
    ) -> list[Application]:
        await self._require_coordinator(actor_id, "list all applications")
        return await self.applications.get_all_applications(project_type, status, semester)

    # Roles

    async def get_effective_role(self, user_id: int) -> EffectiveRole:
        return await self.roles.get_effective_role(user_id)

    async def assign_external_evaluator(
        self,
        actor_id: int,
        group_id: int,
        faculty_id: int,
    ) -> Group:
        await self._require_coordinator(actor_id, "assign external evaluators")
        group = await self.roles.assign_external_evaluator_role(group_id, faculty_id)
        return await self.groups.get_group_by_id(group.id)

    async def remove_external_evaluator(
        self,
        actor_id: int,
        group_id: int,
        faculty_id: int,
    ) -> Group:
        await self._require_coordinator(actor_id, "remove external evaluators")
        group = await self.roles.remove_external_evaluator_role(group_id, faculty_id)
        return await self.groups.get_group_by_id(group.id)


__all__ = ["AllocationFacade"]
