"""Endpoints exposing computed roles and external evaluator assignment."""

from __future__ import annotations

from fastapi import APIRouter

from portal.controllers.dependencies import CurrentUserDep, FacadeDep
from portal.services.errors import AuthorizationError
from portal.views import EffectiveRoleResponse, ExternalEvaluatorRequest, GroupResponse

router = APIRouter(prefix="/roles", tags=["roles"])


async def _effective_role(facade: FacadeDep, user_id: int) -> EffectiveRoleResponse:
    role = await facade.get_effective_role(user_id)
    return EffectiveRoleResponse(userId=user_id, **role.to_dict())


@router.get("/me", response_model=EffectiveRoleResponse)
async def get_my_role(
    current_user: CurrentUserDep,
    facade: FacadeDep,
) -> EffectiveRoleResponse:
    return await _effective_role(facade, current_user.id)


@router.get("/{user_id}", response_model=EffectiveRoleResponse)
async def get_user_role(
    user_id: int,
    current_user: CurrentUserDep,
    facade: FacadeDep,
) -> EffectiveRoleResponse:
    """Role of another user; restricted to coordinators."""

    if user_id != current_user.id and not await facade.roles.is_coordinator(current_user.id):
        raise AuthorizationError("Only coordinators can inspect other users' roles")
    return await _effective_role(facade, user_id)


@router.put("/groups/{group_id}/external-evaluator", response_model=GroupResponse)
async def assign_external_evaluator(
    group_id: int,
    payload: ExternalEvaluatorRequest,
    current_user: CurrentUserDep,
    facade: FacadeDep,
) -> GroupResponse:
    group = await facade.assign_external_evaluator(
        current_user.id, group_id, payload.facultyId
    )
    return GroupResponse.model_validate(group)


@router.delete(
    "/groups/{group_id}/external-evaluator/{faculty_id}",
    response_model=GroupResponse,
)
async def remove_external_evaluator(
    group_id: int,
    faculty_id: int,
    current_user: CurrentUserDep,
    facade: FacadeDep,
) -> GroupResponse:
    group = await facade.remove_external_evaluator(current_user.id, group_id, faculty_id)
    return GroupResponse.model_validate(group)
