"""Endpoints for group formation and membership management."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Response, status

from portal.controllers.dependencies import CurrentUserDep, FacadeDep
from portal.models.group import Group
from portal.models.project import ProjectType
from portal.views import (
    DraftProjectsRequest,
    GroupCreateRequest,
    GroupJoinRequest,
    GroupResponse,
    GroupUpdateRequest,
    LeadershipTransferRequest,
)

router = APIRouter(prefix="/groups", tags=["groups"])


def _serialize_group(group: Group) -> GroupResponse:
    return GroupResponse.model_validate(group)


def _group_or_404(group: Optional[Group]) -> Group:
    if group is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Group not found",
        )
    return group


@router.post(
    "/",
    response_model=GroupResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_group(
    payload: GroupCreateRequest,
    current_user: CurrentUserDep,
    facade: FacadeDep,
) -> GroupResponse:
    """Create a group led by the current user."""

    group = await facade.create_group(
        current_user.id,
        payload.projectType,
        payload.year,
        payload.groupName,
    )
    return _serialize_group(group)


@router.post("/join", response_model=GroupResponse)
async def join_group(
    payload: GroupJoinRequest,
    current_user: CurrentUserDep,
    facade: FacadeDep,
) -> GroupResponse:
    group = await facade.join_group(
        current_user.id,
        payload.groupCode,
        payload.year,
        payload.projectType,
    )
    return _serialize_group(group)


@router.get("/", response_model=list[GroupResponse])
async def list_groups(
    current_user: CurrentUserDep,
    facade: FacadeDep,
    project_type: ProjectType = Query(..., alias="projectType"),
    year: Optional[int] = Query(None),
) -> list[GroupResponse]:
    groups = await facade.get_groups_by_project_type(project_type, year)
    return [_serialize_group(group) for group in groups]


@router.get("/mine", response_model=list[GroupResponse])
async def list_my_groups(
    current_user: CurrentUserDep,
    facade: FacadeDep,
) -> list[GroupResponse]:
    """Return every active group the current user belongs to."""

    groups = await facade.get_user_groups(current_user.id)
    return [_serialize_group(group) for group in groups]


@router.get("/mine/current", response_model=Optional[GroupResponse])
async def get_my_group(
    current_user: CurrentUserDep,
    facade: FacadeDep,
    project_type: Optional[ProjectType] = Query(None, alias="projectType"),
    year: Optional[int] = Query(None),
) -> Optional[GroupResponse]:
    group = await facade.get_user_group(current_user.id, project_type, year)
    return _serialize_group(group) if group else None


@router.get("/code/{group_code}", response_model=GroupResponse)
async def get_group_by_code(
    group_code: str,
    current_user: CurrentUserDep,
    facade: FacadeDep,
    project_type: ProjectType = Query(..., alias="projectType"),
    year: int = Query(...),
) -> GroupResponse:
    group = await facade.get_group_by_code(group_code, year, project_type)
    return _serialize_group(_group_or_404(group))


@router.get("/{group_id}", response_model=GroupResponse)
async def get_group(
    group_id: int,
    current_user: CurrentUserDep,
    facade: FacadeDep,
) -> GroupResponse:
    group = await facade.get_group_by_id(group_id)
    return _serialize_group(_group_or_404(group))


@router.patch("/{group_id}", response_model=GroupResponse)
async def update_group(
    group_id: int,
    payload: GroupUpdateRequest,
    current_user: CurrentUserDep,
    facade: FacadeDep,
) -> GroupResponse:
    group = await facade.update_group(current_user.id, group_id, payload.groupName)
    return _serialize_group(group)


@router.delete("/{group_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_group(
    group_id: int,
    current_user: CurrentUserDep,
    facade: FacadeDep,
) -> Response:
    await facade.delete_group(current_user.id, group_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{group_id}/leave", response_model=Optional[GroupResponse])
async def leave_group(
    group_id: int,
    current_user: CurrentUserDep,
    facade: FacadeDep,
) -> Optional[GroupResponse]:
    """Leave a group; returns null when the leader left and the group is gone."""

    group = await facade.leave_group(current_user.id, group_id)
    return _serialize_group(group) if group else None


@router.delete("/{group_id}/members/{member_id}", response_model=GroupResponse)
async def remove_member(
    group_id: int,
    member_id: int,
    current_user: CurrentUserDep,
    facade: FacadeDep,
) -> GroupResponse:
    group = await facade.remove_member(current_user.id, group_id, member_id)
    return _serialize_group(group)


@router.post("/{group_id}/transfer-leadership", response_model=GroupResponse)
async def transfer_leadership(
    group_id: int,
    payload: LeadershipTransferRequest,
    current_user: CurrentUserDep,
    facade: FacadeDep,
) -> GroupResponse:
    group = await facade.transfer_leadership(
        current_user.id, group_id, payload.newLeaderId
    )
    return _serialize_group(group)


@router.post("/{group_id}/reset-code", response_model=GroupResponse)
async def reset_group_code(
    group_id: int,
    current_user: CurrentUserDep,
    facade: FacadeDep,
) -> GroupResponse:
    group = await facade.reset_group_code(current_user.id, group_id)
    return _serialize_group(group)


@router.put("/{group_id}/draft-projects", response_model=GroupResponse)
async def update_draft_projects(
    group_id: int,
    payload: DraftProjectsRequest,
    current_user: CurrentUserDep,
    facade: FacadeDep,
) -> GroupResponse:
    group = await facade.update_draft_projects(
        current_user.id, group_id, payload.projectIds
    )
    return _serialize_group(group)


@router.post("/{group_id}/freeze", response_model=GroupResponse)
async def freeze_group(
    group_id: int,
    current_user: CurrentUserDep,
    facade: FacadeDep,
) -> GroupResponse:
    """Coordinator-only administrative freeze."""

    group = await facade.freeze_group(current_user.id, group_id)
    return _serialize_group(group)
