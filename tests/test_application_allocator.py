"""Submission, acceptance with cascade, rejection and revocation tests."""

from __future__ import annotations

from dataclasses import dataclass

import pytest
from sqlalchemy import select

from portal.application.interfaces import ApplicationWindowInterface
from portal.models import (
    AccountType,
    Application,
    ApplicationStatus,
    GroupMembership,
    GroupStatus,
    Project,
    ProjectStatus,
    ProjectType,
    User,
)
from portal.services import AllocationFacade
from portal.services.application_allocator import ApplicationAllocator
from portal.services.errors import (
    AlreadyAssignedError,
    AuthorizationError,
    ConflictError,
    DuplicateApplicationError,
    NotFoundError,
    StateError,
    ValidationError,
)

YEAR = 2025
IDP = ProjectType.IDP


@dataclass
class Cohort:
    faculty_one: int
    faculty_two: int
    p1: int
    p2: int
    p3: int
    leader: int
    member: int
    group_id: int


@pytest.fixture
async def cohort(facade, make_user, make_project) -> Cohort:
    faculty_one = await make_user(account_type=AccountType.FACULTY)
    faculty_two = await make_user(account_type=AccountType.FACULTY)
    p1 = await make_project(faculty_one)
    p2 = await make_project(faculty_two)
    p3 = await make_project(faculty_two)
    leader = await make_user()
    member = await make_user()
    group = await facade.create_group(leader.id, IDP, YEAR)
    await facade.join_group(member.id, group.group_code, YEAR, IDP)
    return Cohort(
        faculty_one=faculty_one.id,
        faculty_two=faculty_two.id,
        p1=p1.id,
        p2=p2.id,
        p3=p3.id,
        leader=leader.id,
        member=member.id,
        group_id=group.id,
    )


async def _group_submit(facade, cohort: Cohort, project_ids, **kwargs):
    return await facade.submit_application(
        cohort.leader, IDP, project_ids, 4, "CSE", group_id=cohort.group_id, **kwargs
    )


async def _solo_submit(facade, student_id: int, project_ids, **kwargs):
    return await facade.submit_application(
        student_id, IDP, project_ids, 4, "CSE", student_id=student_id, **kwargs
    )


def _by_project(applications) -> dict[int, Application]:
    return {application.project_id: application for application in applications}


async def test_group_submission_creates_pending_rows_and_marks_group_applied(facade, cohort):
    await facade.update_draft_projects(cohort.leader, cohort.group_id, [cohort.p1])

    applications = await _group_submit(facade, cohort, [cohort.p1, cohort.p2])

    assert len(applications) == 2
    assert {a.status for a in applications} == {ApplicationStatus.PENDING}
    assert all(a.is_frozen for a in applications)
    assert all(a.group_id == cohort.group_id and a.student_id is None for a in applications)
    group = await facade.get_group_by_id(cohort.group_id)
    assert group.status == GroupStatus.APPLIED
    assert group.draft_projects == []


async def test_exactly_three_choices_succeed(facade, cohort):
    applications = await _group_submit(facade, cohort, [cohort.p1, cohort.p2, cohort.p3])

    assert sorted(a.project_id for a in applications) == sorted([cohort.p1, cohort.p2, cohort.p3])


@pytest.mark.parametrize("count", [0, 4])
async def test_choice_count_outside_bounds_is_invalid(facade, cohort, make_project, make_user, count):
    faculty = await make_user(account_type=AccountType.FACULTY)
    extra = (await make_project(faculty)).id
    choices = [cohort.p1, cohort.p2, cohort.p3, extra][:count]

    with pytest.raises(ValidationError) as excinfo:
        await _group_submit(facade, cohort, choices)

    assert excinfo.value.code == "INVALID_CHOICE_COUNT"


async def test_validation_runs_in_documented_order(facade, cohort):
    with pytest.raises(ValidationError) as excinfo:
        await facade.submit_application(
            cohort.leader, IDP, [], 4, "CSE", student_id=cohort.leader, group_id=cohort.group_id
        )
    assert excinfo.value.code == "INVALID_APPLICANT"

    with pytest.raises(ValidationError) as excinfo:
        await _group_submit(facade, cohort, [cohort.p1, cohort.p1, cohort.p2, cohort.p3])
    assert excinfo.value.code == "INVALID_CHOICE_COUNT"

    with pytest.raises(ValidationError) as excinfo:
        await _group_submit(facade, cohort, [cohort.p1, cohort.p1])
    assert excinfo.value.code == "DUPLICATE_CHOICE"

    # Unknown projects are reported before the leader check.
    with pytest.raises(NotFoundError):
        await facade.submit_application(
            cohort.member, IDP, [9999], 4, "CSE", group_id=cohort.group_id
        )

    with pytest.raises(AuthorizationError):
        await facade.submit_application(
            cohort.member, IDP, [cohort.p1], 4, "CSE", group_id=cohort.group_id
        )


async def test_projects_must_be_published_and_of_matching_type(
    facade, cohort, make_user, make_project
):
    faculty = await make_user(account_type=AccountType.FACULTY)
    draft = (await make_project(faculty, status=ProjectStatus.DRAFT)).id
    urop = (await make_project(faculty, ProjectType.UROP)).id

    with pytest.raises(NotFoundError):
        await _group_submit(facade, cohort, [cohort.p1, draft])
    with pytest.raises(NotFoundError):
        await _group_submit(facade, cohort, [urop])


async def test_specialization_required_from_sixth_semester(facade, cohort):
    with pytest.raises(ValidationError) as excinfo:
        await facade.submit_application(
            cohort.leader, IDP, [cohort.p1], 6, "CSE", group_id=cohort.group_id
        )
    assert excinfo.value.code == "SPECIALIZATION_REQUIRED"

    applications = await facade.submit_application(
        cohort.leader, IDP, [cohort.p1], 6, "CSE",
        group_id=cohort.group_id, specialization="AI",
    )
    assert applications[0].specialization == "AI"


async def test_duplicate_live_application_is_a_conflict(facade, cohort):
    await _group_submit(facade, cohort, [cohort.p1])

    with pytest.raises(DuplicateApplicationError) as excinfo:
        await _group_submit(facade, cohort, [cohort.p2, cohort.p1])

    assert excinfo.value.details["project_ids"] == [cohort.p1]


async def test_revoke_then_resubmit_same_project(facade, cohort):
    first = await _group_submit(facade, cohort, [cohort.p1, cohort.p2])
    app_p1 = _by_project(first)[cohort.p1].id

    with pytest.raises(AuthorizationError):
        await facade.revoke_application(cohort.member, app_p1)

    result = await facade.revoke_application(cohort.leader, app_p1)
    assert result == {"success": True, "message": "Application revoked successfully"}
    assert await facade.get_application_by_id(app_p1) is None

    again = await _group_submit(facade, cohort, [cohort.p1])
    assert again[0].status == ApplicationStatus.PENDING


async def test_revoking_last_pending_application_reopens_group(facade, cohort):
    (application,) = await _group_submit(facade, cohort, [cohort.p1])

    await facade.revoke_application(cohort.leader, application.id)

    group = await facade.get_group_by_id(cohort.group_id)
    assert group.status == GroupStatus.COMPLETE


async def test_accept_approves_assigns_and_cascades(facade, session, notifier, cohort):
    applications = _by_project(await _group_submit(facade, cohort, [cohort.p1, cohort.p2]))
    app_p1, app_p2 = applications[cohort.p1].id, applications[cohort.p2].id

    accepted = await facade.accept_application(cohort.faculty_one, app_p1, cohort.p1)

    assert accepted.status == ApplicationStatus.APPROVED
    assert accepted.reviewed_by == cohort.faculty_one
    assert accepted.reviewed_at is not None

    sibling = await facade.get_application_by_id(app_p2)
    assert sibling.status == ApplicationStatus.REJECTED
    assert sibling.auto_rejected
    assert sibling.rejection_reason == "Student/group accepted to another project"

    project = await session.get(Project, cohort.p1, populate_existing=True)
    assert project.status == ProjectStatus.ASSIGNED
    assert project.assigned_count == 1
    assert project.assigned_group_id == cohort.group_id

    group = await facade.get_group_by_id(cohort.group_id)
    assert group.status == GroupStatus.APPROVED
    assert group.assigned_project_id == cohort.p1
    assert group.assigned_faculty_id == cohort.faculty_one
    assert group.group_number == 1

    for user_id in (cohort.leader, cohort.member):
        user = await session.get(User, user_id, populate_existing=True)
        assert user.assigned_project_id == cohort.p1
        assert user.assigned_faculty_id == cohort.faculty_one
        assert user.current_group_id == cohort.group_id
        assert "APPLICATION_APPROVED" in notifier.types_for(user_id)
    assert notifier.types_for(cohort.faculty_two) == ["APPLICATION_AUTO_REJECTED"]


async def test_accept_revalidates_inputs(facade, cohort):
    applications = _by_project(await _group_submit(facade, cohort, [cohort.p1, cohort.p2]))
    app_p1 = applications[cohort.p1].id

    with pytest.raises(ValidationError):
        await facade.accept_application(cohort.faculty_one, app_p1, cohort.p2)
    with pytest.raises(AuthorizationError):
        await facade.accept_application(cohort.faculty_two, app_p1, cohort.p1)
    with pytest.raises(NotFoundError):
        await facade.accept_application(cohort.faculty_one, 9999, cohort.p1)

    await facade.accept_application(cohort.faculty_one, app_p1, cohort.p1)

    with pytest.raises(StateError):
        await facade.accept_application(cohort.faculty_one, app_p1, cohort.p1)


async def test_second_group_cannot_take_assigned_project(facade, make_user, cohort):
    other_leader = (await make_user()).id
    other_group = await facade.create_group(other_leader, IDP, YEAR)
    other_group_id = other_group.id
    (ours,) = await _group_submit(facade, cohort, [cohort.p1])
    (theirs,) = await facade.submit_application(
        other_leader, IDP, [cohort.p1], 4, "CSE", group_id=other_group_id
    )
    theirs_id = theirs.id

    await facade.accept_application(cohort.faculty_one, ours.id, cohort.p1)

    with pytest.raises(AlreadyAssignedError) as excinfo:
        await facade.accept_application(cohort.faculty_one, theirs_id, cohort.p1)

    assert excinfo.value.status_code == 409
    assert (await facade.get_application_by_id(theirs_id)).status == ApplicationStatus.PENDING
    assert (await facade.get_group_by_id(other_group_id)).status == GroupStatus.APPLIED


async def test_capacity_is_never_exceeded(facade, session, make_user, make_project):
    faculty_id = (await make_user(account_type=AccountType.FACULTY)).id
    project_id = (await make_project(await session.get(User, faculty_id), capacity=2)).id
    students = [(await make_user()).id for _ in range(3)]
    application_ids = []
    for student_id in students:
        (application,) = await _solo_submit(facade, student_id, [project_id])
        application_ids.append(application.id)

    await facade.accept_application(faculty_id, application_ids[0], project_id)
    project = await session.get(Project, project_id, populate_existing=True)
    assert project.status == ProjectStatus.PUBLISHED
    assert project.assigned_count == 1

    await facade.accept_application(faculty_id, application_ids[1], project_id)
    with pytest.raises(AlreadyAssignedError):
        await facade.accept_application(faculty_id, application_ids[2], project_id)

    project = await session.get(Project, project_id, populate_existing=True)
    assert project.assigned_count == 2
    assert project.status == ProjectStatus.ASSIGNED


async def test_solo_accept_propagates_to_student(facade, session, make_user, cohort):
    student_id = (await make_user()).id
    applications = _by_project(await _solo_submit(facade, student_id, [cohort.p1, cohort.p2]))

    await facade.accept_application(cohort.faculty_two, applications[cohort.p2].id, cohort.p2)

    student = await session.get(User, student_id, populate_existing=True)
    assert student.assigned_project_id == cohort.p2
    assert student.assigned_faculty_id == cohort.faculty_two
    assert student.current_group_id is None
    other = await facade.get_application_by_id(applications[cohort.p1].id)
    assert other.status == ApplicationStatus.REJECTED

    with pytest.raises(ConflictError) as excinfo:
        await _solo_submit(facade, student_id, [cohort.p3])
    assert excinfo.value.code == "ALREADY_ALLOCATED"


async def test_group_member_cannot_apply_solo(facade, session, cohort):
    with pytest.raises(ConflictError) as excinfo:
        await _solo_submit(facade, cohort.member, [cohort.p3])

    assert excinfo.value.code == "ALREADY_IN_GROUP"
    rows = await session.execute(
        select(Application.id).where(Application.student_id == cohort.member)
    )
    assert rows.first() is None

    await facade.accept_application(
        cohort.faculty_one,
        (await _group_submit(facade, cohort, [cohort.p1]))[0].id,
        cohort.p1,
    )
    member = await session.get(User, cohort.member, populate_existing=True)
    assert member.assigned_project_id == cohort.p1
    assert member.current_group_id == cohort.group_id


async def test_solo_application_of_a_group_member_is_not_accepted(facade, session, make_user, cohort):
    student_id = (await make_user()).id
    (application,) = await _solo_submit(facade, student_id, [cohort.p3])
    application_id = application.id
    session.add(
        GroupMembership(
            group_id=cohort.group_id, user_id=student_id, project_type=IDP, year=YEAR
        )
    )
    await session.commit()

    with pytest.raises(ConflictError) as excinfo:
        await facade.accept_application(cohort.faculty_two, application_id, cohort.p3)

    assert excinfo.value.code == "ALREADY_IN_GROUP"
    project = await session.get(Project, cohort.p3, populate_existing=True)
    assert project.assigned_count == 0
    assert (await facade.get_application_by_id(application_id)).status == ApplicationStatus.PENDING


async def test_review_locks_applicant_before_application(facade, monkeypatch, cohort):
    order = []
    lock_group = ApplicationAllocator._lock_group
    lock_application = ApplicationAllocator._lock_application

    async def recording_lock_group(self, group_id):
        order.append("group")
        return await lock_group(self, group_id)

    async def recording_lock_application(self, application_id):
        order.append("application")
        return await lock_application(self, application_id)

    monkeypatch.setattr(ApplicationAllocator, "_lock_group", recording_lock_group)
    monkeypatch.setattr(ApplicationAllocator, "_lock_application", recording_lock_application)
    applications = _by_project(
        await _group_submit(facade, cohort, [cohort.p1, cohort.p2, cohort.p3])
    )

    order.clear()
    await facade.reject_application(cohort.faculty_two, applications[cohort.p3].id)
    assert order == ["group", "application"]

    order.clear()
    await facade.accept_application(cohort.faculty_one, applications[cohort.p1].id, cohort.p1)
    assert order == ["group", "application"]

    order.clear()
    with pytest.raises(StateError):
        await facade.revoke_application(cohort.leader, applications[cohort.p2].id)
    assert order == ["group", "application"]


async def test_group_numbers_are_sequential_per_type_and_year(facade, make_user, make_project, cohort):
    await facade.accept_application(
        cohort.faculty_one,
        (await _group_submit(facade, cohort, [cohort.p1]))[0].id,
        cohort.p1,
    )
    other_leader = (await make_user()).id
    other_group_id = (await facade.create_group(other_leader, IDP, YEAR)).id
    (application,) = await facade.submit_application(
        other_leader, IDP, [cohort.p2], 4, "CSE", group_id=other_group_id
    )

    await facade.accept_application(cohort.faculty_two, application.id, cohort.p2)

    assert (await facade.get_group_by_id(other_group_id)).group_number == 2


async def test_at_most_one_approval_per_group(facade, cohort):
    applications = _by_project(await _group_submit(facade, cohort, [cohort.p1, cohort.p2]))
    await facade.accept_application(cohort.faculty_one, applications[cohort.p1].id, cohort.p1)

    with pytest.raises(StateError):
        await facade.accept_application(cohort.faculty_two, applications[cohort.p2].id, cohort.p2)
    with pytest.raises(StateError):
        await _group_submit(facade, cohort, [cohort.p3])

    approved = [
        a for a in await facade.get_user_applications(group_id=cohort.group_id)
        if a.status == ApplicationStatus.APPROVED
    ]
    assert len(approved) == 1
    assert (await facade.get_approved_application(group_id=cohort.group_id)).project_id == cohort.p1


async def test_reject_reverts_group_to_forming(facade, notifier, cohort):
    applications = _by_project(await _group_submit(facade, cohort, [cohort.p1, cohort.p2]))

    rejected = await facade.reject_application(
        cohort.faculty_one, applications[cohort.p1].id, "Not a fit"
    )

    assert rejected.status == ApplicationStatus.REJECTED
    assert rejected.rejection_reason == "Not a fit"
    assert not rejected.auto_rejected
    group = await facade.get_group_by_id(cohort.group_id)
    assert group.status == GroupStatus.FORMING
    sibling = await facade.get_application_by_id(applications[cohort.p2].id)
    assert sibling.status == ApplicationStatus.PENDING
    assert "APPLICATION_REJECTED" in notifier.types_for(cohort.member)

    with pytest.raises(StateError):
        await facade.reject_application(cohort.faculty_one, applications[cohort.p1].id)


async def test_unfreeze_rejected_application_keeps_status(facade, make_user, cohort):
    coordinator_id = (await make_user(is_coordinator=True)).id
    (application,) = await _group_submit(facade, cohort, [cohort.p1])
    application_id = application.id
    await facade.reject_application(cohort.faculty_one, application_id)

    with pytest.raises(AuthorizationError):
        await facade.unfreeze_application(cohort.leader, application_id)

    unfrozen = await facade.unfreeze_application(coordinator_id, application_id)

    assert unfrozen.is_frozen is False
    assert unfrozen.status == ApplicationStatus.REJECTED


async def test_coordinator_accepts_on_behalf_of_owner(facade, session, make_user, cohort):
    coordinator_id = (await make_user(account_type=AccountType.ADMIN)).id
    (application,) = await _group_submit(facade, cohort, [cohort.p1])

    accepted = await facade.accept_application(coordinator_id, application.id, cohort.p1)

    assert accepted.reviewed_by == coordinator_id
    group = await facade.get_group_by_id(cohort.group_id)
    assert group.assigned_faculty_id == cohort.faculty_one


async def test_faculty_view_is_enriched_with_members(facade, make_user, cohort):
    solo_id = (await make_user(name="Solo Student")).id
    await _group_submit(facade, cohort, [cohort.p1, cohort.p2])
    await _solo_submit(facade, solo_id, [cohort.p3])

    views = await facade.get_faculty_applications(cohort.faculty_two)

    assert {view.project.id for view in views} == {cohort.p2, cohort.p3}
    group_view = next(view for view in views if view.group is not None)
    assert sorted(member.id for member in group_view.members) == sorted(
        [cohort.leader, cohort.member]
    )
    solo_view = next(view for view in views if view.group is None)
    assert solo_view.student.name == "Solo Student"
    assert await facade.get_faculty_applications(cohort.faculty_two, ProjectType.UROP) == []


async def test_all_applications_is_coordinator_only_and_filterable(facade, make_user, cohort):
    coordinator_id = (await make_user(is_coordinator=True)).id
    applications = _by_project(await _group_submit(facade, cohort, [cohort.p1, cohort.p2]))
    await facade.reject_application(cohort.faculty_one, applications[cohort.p1].id)

    with pytest.raises(AuthorizationError):
        await facade.get_all_applications(cohort.leader)

    everything = await facade.get_all_applications(coordinator_id)
    rejected = await facade.get_all_applications(
        coordinator_id, status=ApplicationStatus.REJECTED
    )
    assert len(everything) == 2
    assert [a.project_id for a in rejected] == [cohort.p1]
    assert await facade.get_all_applications(coordinator_id, semester=8) == []


async def test_user_application_lookups(facade, make_user, cohort):
    await _group_submit(facade, cohort, [cohort.p1])
    solo_id = (await make_user()).id
    await _solo_submit(facade, solo_id, [cohort.p2])

    with pytest.raises(ValidationError):
        await facade.get_user_applications()
    assert [a.project_id for a in await facade.get_applications_for_user(cohort.member)] == [cohort.p1]
    assert [a.project_id for a in await facade.get_applications_for_user(solo_id)] == [cohort.p2]
    assert await facade.get_approved_application(student_id=solo_id) is None


async def test_closed_window_blocks_submission(session, notifier, config, cohort):
    class ClosedWindow(ApplicationWindowInterface):
        async def is_open(self, project_type, semester):
            return False

    gated = AllocationFacade(session, notifier=notifier, window=ClosedWindow(), config=config)

    with pytest.raises(StateError) as excinfo:
        await gated.submit_application(
            cohort.leader, IDP, [cohort.p1], 4, "CSE", group_id=cohort.group_id
        )

    assert excinfo.value.code == "WINDOW_CLOSED"
    rows = await session.execute(select(Application.id))
    assert rows.first() is None
