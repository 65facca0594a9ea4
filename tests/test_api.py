"""HTTP surface: authentication, payload casing and error mapping."""

from __future__ import annotations

from typing import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient

from portal.controllers.dependencies import get_notifier
from portal.database import get_session
from portal.main import create_app
from portal.models import AccountType
from portal.utils import issue_access_token

YEAR = 2025


@pytest.fixture
async def client(session, notifier) -> AsyncIterator[AsyncClient]:
    app = create_app()

    async def override_session():
        yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_notifier] = lambda: notifier

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


def _auth(user_id: int) -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_access_token(user_id)}"}


async def test_health_is_public(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_requests_without_valid_token_are_unauthorized(client):
    assert (await client.get("/groups/mine")).status_code == 401

    response = await client.get(
        "/groups/mine", headers={"Authorization": "Bearer not-a-token"}
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Could not validate credentials"


async def test_token_for_unknown_user_is_unauthorized(client):
    response = await client.get("/roles/me", headers=_auth(9999))

    assert response.status_code == 401


async def test_create_and_join_group_over_http(client, make_user):
    leader = await make_user()
    member = await make_user()

    created = await client.post(
        "/groups/",
        json={"projectType": "IDP", "year": YEAR, "groupName": "Rovers"},
        headers=_auth(leader.id),
    )
    assert created.status_code == 201
    body = created.json()
    assert body["status"] == "forming"
    assert body["leaderId"] == leader.id
    assert body["memberIds"] == [leader.id]
    assert len(body["groupCode"]) == 6

    joined = await client.post(
        "/groups/join",
        json={"groupCode": body["groupCode"].lower(), "projectType": "IDP", "year": YEAR},
        headers=_auth(member.id),
    )
    assert joined.status_code == 200
    assert joined.json()["status"] == "complete"

    mine = await client.get("/groups/mine", headers=_auth(member.id))
    assert [group["id"] for group in mine.json()] == [body["id"]]


async def test_engine_errors_map_to_status_and_code(client, make_user):
    leader = await make_user()
    await client.post(
        "/groups/", json={"projectType": "IDP", "year": YEAR}, headers=_auth(leader.id)
    )

    again = await client.post(
        "/groups/", json={"projectType": "IDP", "year": YEAR}, headers=_auth(leader.id)
    )
    assert again.status_code == 409
    assert again.json()["code"] == "ALREADY_GROUP_LEADER"

    missing = await client.post(
        "/groups/join",
        json={"groupCode": "ZZZZZZ", "projectType": "IDP", "year": YEAR},
        headers=_auth((await make_user()).id),
    )
    assert missing.status_code == 404


async def test_submit_accept_and_revoke_over_http(client, make_user, make_project):
    faculty = await make_user(account_type=AccountType.FACULTY)
    first = (await make_project(faculty)).id
    second = (await make_project(faculty)).id
    student = await make_user()
    student_id, faculty_id = student.id, faculty.id

    too_many = await client.post(
        "/applications/",
        json={
            "projectType": "IDP",
            "projectIds": [first, second, first, second],
            "semester": 4,
            "department": "CSE",
        },
        headers=_auth(student_id),
    )
    assert too_many.status_code == 400
    assert too_many.json()["code"] == "INVALID_CHOICE_COUNT"

    submitted = await client.post(
        "/applications/",
        json={
            "projectType": "IDP",
            "projectIds": [first, second],
            "semester": 4,
            "department": "CSE",
        },
        headers=_auth(student_id),
    )
    assert submitted.status_code == 201
    rows = {row["projectId"]: row for row in submitted.json()}
    assert {row["status"] for row in rows.values()} == {"pending"}
    assert all(row["studentId"] == student_id for row in rows.values())

    revoked = await client.delete(
        f"/applications/{rows[second]['id']}", headers=_auth(student_id)
    )
    assert revoked.json() == {
        "success": True,
        "message": "Application revoked successfully",
        "data": None,
    }

    wrong_owner = await client.post(
        f"/applications/{rows[first]['id']}/accept",
        json={"projectId": first},
        headers=_auth(student_id),
    )
    assert wrong_owner.status_code == 403

    accepted = await client.post(
        f"/applications/{rows[first]['id']}/accept",
        json={"projectId": first},
        headers=_auth(faculty_id),
    )
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "approved"

    approved = await client.get("/applications/approved", headers=_auth(student_id))
    assert approved.json()["projectId"] == first


async def test_effective_role_is_camel_cased(client, make_user):
    coordinator = await make_user(account_type=AccountType.FACULTY, is_coordinator=True)
    student = await make_user()

    response = await client.get("/roles/me", headers=_auth(coordinator.id))
    assert response.json() == {
        "userId": coordinator.id,
        "baseRole": "faculty",
        "isGroupLeader": False,
        "isCoordinator": True,
        "isExternalEvaluator": False,
        "effectiveRole": "coordinator",
    }

    other = await client.get(f"/roles/{coordinator.id}", headers=_auth(student.id))
    assert other.status_code == 403
