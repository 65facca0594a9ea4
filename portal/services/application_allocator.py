"""Application submission, review and the atomic accept-with-cascade."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from portal.application.interfaces import Notification, NotificationDispatcherInterface
from portal.config.settings import AllocationConfig
from portal.models.application import LIVE_STATUSES, Application, ApplicationStatus
from portal.models.group import PRE_APPLICATION_STATUSES, Group, GroupStatus
from portal.models.group_membership import GroupMembership
from portal.models.project import Project, ProjectStatus, ProjectType
from portal.models.user import User
from portal.services.base import SessionBoundService
from portal.services.errors import (
    AlreadyAssignedError,
    AlreadyMemberError,
    AuthorizationError,
    ConflictError,
    DuplicateApplicationError,
    NotFoundError,
    StateError,
    ValidationError,
)
from portal.services.notifications import dispatch_safely
from portal.telemetry import APPLICATIONS_SUBMITTED, record_decision

logger = logging.getLogger(__name__)


@dataclass
class FacultyApplicationView:
    """An application joined with what a reviewing faculty member needs."""

    application: Application
    project: Project
    student: Optional[User] = None
    group: Optional[Group] = None
    members: list[User] = field(default_factory=list)


class ApplicationAllocator(SessionBoundService):
    """Owns every write to ``applications`` and the capacity of ``projects``."""

    def __init__(
        self,
        session: AsyncSession,
        config: Optional[AllocationConfig] = None,
        notifier: Optional[NotificationDispatcherInterface] = None,
    ):
        super().__init__(session, config)
        self.notifier = notifier

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _owner_clause(group_id: Optional[int], student_id: Optional[int]):
        if group_id is not None:
            return Application.group_id == group_id
        return Application.student_id == student_id

    async def _lock_application(self, application_id: int) -> Application:
        result = await self.session.execute(
            select(Application)
            .where(Application.id == application_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        application = result.scalar_one_or_none()
        if application is None:
            raise NotFoundError("Application", application_id)
        return application

    async def _lock_group(self, group_id: int) -> Optional[Group]:
        result = await self.session.execute(
            select(Group)
            .where(Group.id == group_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _lock_user(self, user_id: int) -> Optional[User]:
        result = await self.session.execute(
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _lock_for_review(
        self, application_id: int
    ) -> tuple[Application, Optional[Group]]:
        """Lock the applicant row, then the application.

        Every write to an owner's applications takes the group or student row
        first, so sibling rows are only touched under that lock.
        """

        result = await self.session.execute(
            select(Application.group_id, Application.student_id).where(
                Application.id == application_id
            )
        )
        owner = result.first()
        if owner is None:
            raise NotFoundError("Application", application_id)

        group = None
        if owner.group_id is not None:
            group = await self._lock_group(owner.group_id)
            if group is None:
                raise NotFoundError(
                    "Group",
                    owner.group_id,
                    message="Group associated with application not found",
                )
        elif await self._lock_user(owner.student_id) is None:
            raise NotFoundError("User", owner.student_id)

        # Owner columns are never rewritten, so the lock taken above still applies.
        return await self._lock_application(application_id), group

    async def _group_membership(
        self, user_id: int, project_type: ProjectType
    ) -> Optional[int]:
        result = await self.session.execute(
            select(GroupMembership.group_id).where(
                GroupMembership.user_id == user_id,
                GroupMembership.project_type == project_type,
            )
        )
        return result.scalars().first()

    async def _has_approved(
        self,
        group_id: Optional[int],
        student_id: Optional[int],
    ) -> bool:
        result = await self.session.execute(
            select(Application.id).where(
                self._owner_clause(group_id, student_id),
                Application.status == ApplicationStatus.APPROVED,
            )
        )
        return result.first() is not None

    async def _member_ids(self, group_id: int) -> list[int]:
        result = await self.session.execute(
            select(GroupMembership.user_id).where(GroupMembership.group_id == group_id)
        )
        return list(result.scalars().all())

    async def _recipients(self, application: Application) -> list[int]:
        if application.group_id is not None:
            return await self._member_ids(application.group_id)
        return [application.student_id]

    async def get_project(self, project_id: int) -> Optional[Project]:
        result = await self.session.execute(
            select(Project)
            .where(Project.id == project_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def _validate_submission(
        self,
        student_id: Optional[int],
        group_id: Optional[int],
        project_ids: Sequence[int],
        semester: int,
        specialization: Optional[str],
        cgpa: Optional[float],
    ) -> None:
        if (student_id is None) == (group_id is None):
            raise ValidationError(
                "Exactly one of student id or group id is required",
                code="INVALID_APPLICANT",
            )
        limit = self.config.max_project_choices
        if not 1 <= len(project_ids) <= limit:
            raise ValidationError(
                f"Between 1 and {limit} projects must be selected",
                code="INVALID_CHOICE_COUNT",
                field="project_ids",
            )
        if len(set(project_ids)) != len(project_ids):
            raise ValidationError(
                "Duplicate projects are not allowed",
                code="DUPLICATE_CHOICE",
                field="project_ids",
            )
        if semester < 1:
            raise ValidationError("Semester must be positive", field="semester")
        if (
            semester >= self.config.specialization_required_from_semester
            and not (specialization or "").strip()
        ):
            raise ValidationError(
                f"Specialization is required from semester "
                f"{self.config.specialization_required_from_semester}",
                code="SPECIALIZATION_REQUIRED",
                field="specialization",
            )
        if cgpa is not None and not 0 <= cgpa <= 10:
            raise ValidationError("CGPA must be between 0 and 10", field="cgpa")

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(
        self,
        actor_id: int,
        project_type: ProjectType,
        project_ids: Sequence[int],
        semester: int,
        department: str,
        student_id: Optional[int] = None,
        group_id: Optional[int] = None,
        stream: Optional[str] = None,
        specialization: Optional[str] = None,
        cgpa: Optional[float] = None,
        notes: Optional[str] = None,
    ) -> list[Application]:
        """Create one pending application per chosen project.

        Validation runs in a fixed order and the first failure wins; nothing is
        written unless every check passes.
        """

        project_ids = [int(project_id) for project_id in project_ids]
        self._validate_submission(
            student_id, group_id, project_ids, semester, specialization, cgpa
        )

        try:
            async with self._unit_of_work():
                result = await self.session.execute(
                    select(Project.id).where(
                        Project.id.in_(project_ids),
                        Project.project_type == project_type,
                        Project.status == ProjectStatus.PUBLISHED,
                    )
                )
                available = set(result.scalars().all())
                missing = [pid for pid in project_ids if pid not in available]
                if missing:
                    raise NotFoundError(
                        "Project",
                        missing,
                        message="One or more selected projects are not available",
                    )

                group = None
                if group_id is not None:
                    group = await self._lock_group(group_id)
                    if group is None:
                        raise NotFoundError("Group", group_id)
                    if group.leader_id != actor_id:
                        raise AuthorizationError(
                            "Only the group leader can submit applications",
                            code="NOT_GROUP_LEADER",
                        )
                    if group.project_type != project_type:
                        raise ValidationError(
                            "Project type does not match the group",
                            code="PROJECT_TYPE_MISMATCH",
                            field="project_type",
                        )
                    if group.status not in (*PRE_APPLICATION_STATUSES, GroupStatus.APPLIED):
                        raise StateError(
                            f"Cannot apply with a group in status '{group.status.value}'",
                            code="INVALID_GROUP_STATUS",
                        )
                else:
                    if student_id != actor_id:
                        raise AuthorizationError(
                            "Students can only submit their own applications",
                        )
                    if await self._lock_user(student_id) is None:
                        raise NotFoundError("User", student_id)
                    if await self._group_membership(student_id, project_type) is not None:
                        raise AlreadyMemberError(
                            "Group members apply through their group"
                        )

                if await self._has_approved(group_id, student_id):
                    raise ConflictError(
                        "An approved application already exists",
                        code="ALREADY_ALLOCATED",
                    )

                result = await self.session.execute(
                    select(Application.project_id).where(
                        self._owner_clause(group_id, student_id),
                        Application.project_id.in_(project_ids),
                        Application.status.in_(LIVE_STATUSES),
                    )
                )
                duplicates = sorted(set(result.scalars().all()))
                if duplicates:
                    raise DuplicateApplicationError(duplicates)

                now = datetime.utcnow()
                applications = [
                    Application(
                        student_id=student_id,
                        group_id=group_id,
                        project_type=project_type,
                        project_id=project_id,
                        status=ApplicationStatus.PENDING,
                        semester=semester,
                        department=department,
                        stream=stream,
                        specialization=specialization,
                        cgpa=cgpa,
                        notes=notes,
                        submitted_at=now,
                        submitted_by=actor_id,
                        is_frozen=True,
                    )
                    for project_id in project_ids
                ]
                self.session.add_all(applications)

                if group is not None:
                    group.status = GroupStatus.APPLIED
                    group.draft_projects = []
                await self.session.flush()
        except IntegrityError as exc:
            raise DuplicateApplicationError(project_ids) from exc

        APPLICATIONS_SUBMITTED.labels(project_type=project_type.value).inc(
            len(applications)
        )
        logger.info(
            "Applications submitted by user %s for %s: projects %s",
            actor_id,
            "group %s" % group_id if group_id is not None else "student %s" % student_id,
            project_ids,
        )
        return applications

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    async def accept(
        self,
        application_id: int,
        project_id: int,
        faculty_id: int,
        reviewer_id: Optional[int] = None,
    ) -> Application:
        """Approve one application, consuming capacity and cascading rejections.

        The capacity check-and-consume is a single conditional UPDATE, so of two
        concurrent accepts for the last slot exactly one succeeds.
        """

        reviewer_id = reviewer_id if reviewer_id is not None else faculty_id
        try:
            async with self._unit_of_work():
                application, group = await self._lock_for_review(application_id)
                if application.status != ApplicationStatus.PENDING:
                    raise StateError(
                        f"Application is already {application.status.value}",
                        code="APPLICATION_NOT_PENDING",
                    )
                if application.project_id != project_id:
                    raise ValidationError(
                        "Project does not match this application",
                        code="PROJECT_MISMATCH",
                        field="project_id",
                    )

                result = await self.session.execute(
                    select(Project)
                    .where(Project.id == project_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                )
                project = result.scalar_one_or_none()
                if project is None:
                    raise NotFoundError("Project", project_id)
                if project.faculty_id != faculty_id:
                    raise AuthorizationError(
                        "Project does not belong to this faculty member",
                        code="NOT_PROJECT_OWNER",
                    )
                if (
                    project.status == ProjectStatus.ASSIGNED
                    or project.assigned_count >= project.capacity
                ):
                    raise AlreadyAssignedError(project_id)

                if group is None and await self._group_membership(
                    application.student_id, application.project_type
                ) is not None:
                    raise AlreadyMemberError(
                        "Group members are allocated through their group"
                    )

                if await self._has_approved(application.group_id, application.student_id):
                    raise ConflictError(
                        "Applicant already holds an approved application",
                        code="ALREADY_ALLOCATED",
                    )

                observed = project.assigned_count
                new_status = (
                    ProjectStatus.ASSIGNED
                    if observed + 1 >= project.capacity
                    else project.status
                )
                consumed = await self.session.execute(
                    update(Project)
                    .where(
                        Project.id == project_id,
                        Project.status != ProjectStatus.ASSIGNED,
                        Project.assigned_count == observed,
                        Project.assigned_count < Project.capacity,
                    )
                    .values(
                        assigned_count=observed + 1,
                        status=new_status,
                        assigned_group_id=application.group_id,
                        assigned_student_id=application.student_id,
                    )
                    .execution_options(synchronize_session=False)
                )
                if consumed.rowcount != 1:
                    raise AlreadyAssignedError(project_id)

                now = datetime.utcnow()
                approved = await self.session.execute(
                    update(Application)
                    .where(
                        Application.id == application.id,
                        Application.status == ApplicationStatus.PENDING,
                    )
                    .values(
                        status=ApplicationStatus.APPROVED,
                        reviewed_by=reviewer_id,
                        reviewed_at=now,
                        is_frozen=True,
                        rejection_reason=None,
                    )
                    .execution_options(synchronize_session=False)
                )
                if approved.rowcount != 1:
                    raise StateError(
                        "Application was reviewed concurrently",
                        code="APPLICATION_NOT_PENDING",
                    )

                if group is not None:
                    await self._mark_group_approved(group, project_id, faculty_id)
                    recipients = await self._member_ids(group.id)
                else:
                    await self.session.execute(
                        update(User)
                        .where(User.id == application.student_id)
                        .values(
                            assigned_project_id=project_id,
                            assigned_faculty_id=faculty_id,
                            current_group_id=None,
                        )
                        .execution_options(synchronize_session=False)
                    )
                    recipients = [application.student_id]

                cascaded = await self._reject_siblings(application, reviewer_id, now)
                await self.session.refresh(application)
        except IntegrityError as exc:
            raise ConflictError(
                "Concurrent allocation detected; please retry",
                code="CONCURRENT_MODIFICATION",
            ) from exc

        record_decision("approved")
        if cascaded:
            record_decision("auto_rejected", len(cascaded))
        logger.info(
            "Application %s approved for project %s by %s; %d sibling(s) auto-rejected",
            application.id,
            project_id,
            reviewer_id,
            len(cascaded),
        )

        await dispatch_safely(
            self.notifier,
            recipients,
            Notification(
                type="APPLICATION_APPROVED",
                title="Application Approved",
                message=f"Your application for '{project.title}' has been approved",
                data={"application_id": application.id, "project_id": project_id},
            ),
        )
        if cascaded:
            await dispatch_safely(
                self.notifier,
                [owner for owner in cascaded.values() if owner != faculty_id],
                Notification(
                    type="APPLICATION_AUTO_REJECTED",
                    title="Application Withdrawn",
                    message=(
                        "An application to your project was closed because the "
                        "applicant was accepted elsewhere"
                    ),
                    data={"application_ids": sorted(cascaded)},
                ),
            )
        return application

    async def _mark_group_approved(
        self,
        group: Group,
        project_id: int,
        faculty_id: int,
    ) -> None:
        result = await self.session.execute(
            select(func.max(Group.group_number)).where(
                Group.project_type == group.project_type,
                Group.year == group.year,
            )
        )
        group_number = (result.scalar() or 0) + 1

        # A frozen group keeps its status; only the allocation is recorded.
        values: dict[str, Any] = {
            "assigned_project_id": project_id,
            "assigned_faculty_id": faculty_id,
            "group_number": group_number,
        }
        if group.status != GroupStatus.FROZEN:
            values["status"] = GroupStatus.APPROVED
        await self.session.execute(
            update(Group)
            .where(Group.id == group.id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        member_ids = await self._member_ids(group.id)
        await self.session.execute(
            update(User)
            .where(User.id.in_(member_ids))
            .values(
                assigned_project_id=project_id,
                assigned_faculty_id=faculty_id,
                current_group_id=group.id,
            )
            .execution_options(synchronize_session=False)
        )

    async def _reject_siblings(
        self,
        application: Application,
        reviewer_id: int,
        now: datetime,
    ) -> dict[int, int]:
        """Auto-reject every other pending application of the same owner.

        Returns a mapping of rejected application id to the owning faculty id.
        """

        owner = self._owner_clause(application.group_id, application.student_id)
        result = await self.session.execute(
            select(Application.id, Project.faculty_id)
            .join(Project, Project.id == Application.project_id)
            .where(
                owner,
                Application.id != application.id,
                Application.status == ApplicationStatus.PENDING,
            )
        )
        siblings = {row.id: row.faculty_id for row in result}
        if siblings:
            await self.session.execute(
                update(Application)
                .where(
                    Application.id.in_(list(siblings)),
                    Application.status == ApplicationStatus.PENDING,
                )
                .values(
                    status=ApplicationStatus.REJECTED,
                    reviewed_by=reviewer_id,
                    reviewed_at=now,
                    auto_rejected=True,
                    rejection_reason=self.config.auto_rejection_reason,
                )
                .execution_options(synchronize_session=False)
            )
        return siblings

    async def reject(
        self,
        application_id: int,
        faculty_id: int,
        reason: Optional[str] = None,
        reviewer_id: Optional[int] = None,
    ) -> Application:
        reviewer_id = reviewer_id if reviewer_id is not None else faculty_id
        async with self._unit_of_work():
            application, group = await self._lock_for_review(application_id)
            if application.status != ApplicationStatus.PENDING:
                raise StateError(
                    f"Application is already {application.status.value}",
                    code="APPLICATION_NOT_PENDING",
                )
            project = await self.get_project(application.project_id)
            if project is None:
                raise NotFoundError("Project", application.project_id)
            if project.faculty_id != faculty_id:
                raise AuthorizationError(
                    "Project does not belong to this faculty member",
                    code="NOT_PROJECT_OWNER",
                )

            application.status = ApplicationStatus.REJECTED
            application.reviewed_by = reviewer_id
            application.reviewed_at = datetime.utcnow()
            application.rejection_reason = reason

            if group is not None and group.status == GroupStatus.APPLIED:
                group.status = GroupStatus.FORMING
            await self.session.flush()
            recipients = await self._recipients(application)

        record_decision("rejected")
        logger.info(
            "Application %s rejected by %s: %s", application.id, reviewer_id, reason
        )
        await dispatch_safely(
            self.notifier,
            recipients,
            Notification(
                type="APPLICATION_REJECTED",
                title="Application Rejected",
                message=f"Your application for '{project.title}' was not accepted",
                data={"application_id": application.id, "reason": reason},
            ),
        )
        return application

    async def revoke(self, application_id: int, user_id: int) -> dict[str, Any]:
        """Withdraw a pending application on behalf of its owner."""

        async with self._unit_of_work():
            application, group = await self._lock_for_review(application_id)
            if application.status != ApplicationStatus.PENDING:
                raise StateError(
                    f"Cannot revoke application with status: {application.status.value}",
                    code="APPLICATION_NOT_PENDING",
                )

            if group is not None:
                if group.leader_id != user_id:
                    raise AuthorizationError(
                        "Only the group leader can revoke group applications",
                        code="NOT_GROUP_LEADER",
                    )
            elif application.student_id != user_id:
                raise AuthorizationError(
                    "You can only revoke your own applications",
                )

            await self.session.execute(
                delete(Application).where(Application.id == application.id)
            )

            if group is not None and group.status == GroupStatus.APPLIED:
                remaining = await self.session.execute(
                    select(Application.id).where(
                        Application.group_id == group.id,
                        Application.status == ApplicationStatus.PENDING,
                    )
                )
                if remaining.first() is None:
                    group.status = (
                        GroupStatus.COMPLETE
                        if group.member_count >= self.config.min_complete_size
                        else GroupStatus.FORMING
                    )
            await self.session.flush()

        record_decision("revoked")
        logger.info("Application %s revoked by user %s", application_id, user_id)
        return {"success": True, "message": "Application revoked successfully"}

    async def unfreeze(self, application_id: int) -> Application:
        async with self._unit_of_work():
            application = await self._lock_application(application_id)
            application.is_frozen = False
            await self.session.flush()

        logger.info("Application %s unfrozen", application_id)
        return application

    # ------------------------------------------------------------------
    # Read paths
    # ------------------------------------------------------------------

    async def get_application_by_id(self, application_id: int) -> Optional[Application]:
        result = await self.session.execute(
            select(Application)
            .where(Application.id == application_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_user_applications(
        self,
        student_id: Optional[int] = None,
        group_id: Optional[int] = None,
    ) -> list[Application]:
        if (student_id is None) == (group_id is None):
            raise ValidationError(
                "Exactly one of student id or group id is required",
                code="INVALID_APPLICANT",
            )
        result = await self.session.execute(
            select(Application)
            .where(self._owner_clause(group_id, student_id))
            .order_by(Application.submitted_at.desc(), Application.id.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_applications_for_user(self, user_id: int) -> list[Application]:
        """Applications of the user's current group, or their solo ones."""

        user = await self.session.get(User, user_id, populate_existing=True)
        if user is None:
            raise NotFoundError("User", user_id)
        if user.current_group_id is not None:
            return await self.get_user_applications(group_id=user.current_group_id)
        return await self.get_user_applications(student_id=user_id)

    async def get_approved_application(
        self,
        student_id: Optional[int] = None,
        group_id: Optional[int] = None,
    ) -> Optional[Application]:
        result = await self.session.execute(
            select(Application)
            .where(
                self._owner_clause(group_id, student_id),
                Application.status == ApplicationStatus.APPROVED,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def get_faculty_applications(
        self,
        faculty_id: int,
        project_type: Optional[ProjectType] = None,
    ) -> list[FacultyApplicationView]:
        """Applications to the faculty's projects, enriched with applicants."""

        query = (
            select(Application, Project)
            .join(Project, Project.id == Application.project_id)
            .where(Project.faculty_id == faculty_id)
        )
        if project_type is not None:
            query = query.where(Application.project_type == project_type)
        result = await self.session.execute(
            query.order_by(Application.submitted_at.desc(), Application.id.desc())
            .execution_options(populate_existing=True)
        )

        views = []
        for application, project in result.all():
            view = FacultyApplicationView(application=application, project=project)
            if application.group_id is not None:
                view.group = await self.session.get(
                    Group, application.group_id, populate_existing=True
                )
                members = await self.session.execute(
                    select(User)
                    .join(GroupMembership, GroupMembership.user_id == User.id)
                    .where(GroupMembership.group_id == application.group_id)
                    .order_by(GroupMembership.joined_at, GroupMembership.id)
                )
                view.members = list(members.scalars().all())
            else:
                view.student = await self.session.get(
                    User, application.student_id, populate_existing=True
                )
            views.append(view)
        return views

    async def get_all_applications(
        self,
        project_type: Optional[ProjectType] = None,
        status: Optional[ApplicationStatus] = None,
        semester: Optional[int] = None,
    ) -> list[Application]:
        query = select(Application)
        if project_type is not None:
            query = query.where(Application.project_type == project_type)
        if status is not None:
            query = query.where(Application.status == status)
        if semester is not None:
            query = query.where(Application.semester == semester)
        result = await self.session.execute(
            query.order_by(Application.submitted_at.desc(), Application.id.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())


__all__ = ["ApplicationAllocator", "FacultyApplicationView"]
