"""Startup counter reconciliation and transaction error mapping."""

from __future__ import annotations

import pytest
from sqlalchemy import update
from sqlalchemy.exc import DBAPIError, OperationalError

from portal.database import reconcile_counters
from portal.models import AccountType, Group, Project, ProjectStatus, ProjectType
from portal.services.base import SessionBoundService, sqlstate
from portal.services.errors import ConflictError


async def test_reconcile_repairs_drifted_counters(engine, session, facade, make_user, make_project):
    faculty = await make_user(account_type=AccountType.FACULTY)
    faculty_id = faculty.id
    project_id = (await make_project(faculty, capacity=2)).id
    leader = (await make_user()).id
    member = (await make_user()).id
    group = await facade.create_group(leader, ProjectType.IDP, 2025)
    group_id, code = group.id, group.group_code
    await facade.join_group(member, code, 2025, ProjectType.IDP)
    (application,) = await facade.submit_application(
        leader, ProjectType.IDP, [project_id], 4, "CSE", group_id=group_id
    )
    await facade.accept_application(faculty_id, application.id, project_id)

    await session.execute(update(Group).where(Group.id == group_id).values(member_count=4))
    await session.execute(
        update(Project).where(Project.id == project_id).values(assigned_count=0)
    )
    await session.commit()

    async with engine.begin() as conn:
        await reconcile_counters(conn)

    group = await session.get(Group, group_id, populate_existing=True)
    project = await session.get(Project, project_id, populate_existing=True)
    assert group.member_count == 2
    assert project.assigned_count == 1
    assert project.status == ProjectStatus.PUBLISHED


async def test_reconcile_leaves_consistent_rows_alone(engine, session, facade, make_user):
    leader = (await make_user()).id
    group = await facade.create_group(leader, ProjectType.IDP, 2025)
    group_id = group.id

    async with engine.begin() as conn:
        await reconcile_counters(conn)

    group = await session.get(Group, group_id, populate_existing=True)
    assert group.member_count == 1


async def test_reconcile_realigns_project_status_with_capacity(
    engine, session, facade, make_user, make_project
):
    faculty = await make_user(account_type=AccountType.FACULTY)
    faculty_id = faculty.id
    taken_id = (await make_project(faculty)).id
    free_id = (await make_project(faculty)).id
    student_id = (await make_user()).id
    (application,) = await facade.submit_application(
        student_id, ProjectType.IDP, [taken_id], 4, "CSE", student_id=student_id
    )
    await facade.accept_application(faculty_id, application.id, taken_id)

    await session.execute(
        update(Project)
        .where(Project.id == taken_id)
        .values(assigned_count=0, status=ProjectStatus.PUBLISHED)
    )
    await session.execute(
        update(Project)
        .where(Project.id == free_id)
        .values(assigned_count=1, status=ProjectStatus.ASSIGNED)
    )
    await session.commit()

    async with engine.begin() as conn:
        await reconcile_counters(conn)

    taken = await session.get(Project, taken_id, populate_existing=True)
    free = await session.get(Project, free_id, populate_existing=True)
    assert (taken.assigned_count, taken.status) == (1, ProjectStatus.ASSIGNED)
    assert (free.assigned_count, free.status) == (0, ProjectStatus.PUBLISHED)


class _DriverError(Exception):
    def __init__(self, pgcode: str):
        super().__init__(f"sqlstate {pgcode}")
        self.pgcode = pgcode


@pytest.mark.parametrize("pgcode", ["40P01", "40001"])
async def test_lock_conflicts_surface_as_concurrent_modification(session, pgcode):
    service = SessionBoundService(session)

    with pytest.raises(ConflictError) as excinfo:
        async with service._unit_of_work():
            raise OperationalError("UPDATE groups", {}, _DriverError(pgcode))

    assert excinfo.value.code == "CONCURRENT_MODIFICATION"
    assert isinstance(excinfo.value.__cause__, DBAPIError)


async def test_other_driver_errors_propagate_unchanged(session):
    service = SessionBoundService(session)

    with pytest.raises(DBAPIError) as excinfo:
        async with service._unit_of_work():
            raise DBAPIError("UPDATE groups", {}, _DriverError("57014"))

    assert sqlstate(excinfo.value) == "57014"
