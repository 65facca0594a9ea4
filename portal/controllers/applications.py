"""Endpoints for submitting and reviewing project applications."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status

from portal.controllers.dependencies import CurrentUserDep, FacadeDep
from portal.models.application import Application, ApplicationStatus
from portal.models.project import ProjectType
from portal.services import FacultyApplicationView
from portal.views import (
    ApplicantMember,
    ApplicationAcceptRequest,
    ApplicationRejectRequest,
    ApplicationResponse,
    ApplicationSubmitRequest,
    FacultyApplicationResponse,
    ProjectSummary,
    SuccessResponse,
)

router = APIRouter(prefix="/applications", tags=["applications"])


def _serialize_application(application: Application) -> ApplicationResponse:
    return ApplicationResponse.model_validate(application)


def _serialize_faculty_view(view: FacultyApplicationView) -> FacultyApplicationResponse:
    members = view.members or ([view.student] if view.student else [])
    return FacultyApplicationResponse(
        application=_serialize_application(view.application),
        project=ProjectSummary.model_validate(view.project),
        groupCode=view.group.group_code if view.group else None,
        members=[ApplicantMember.model_validate(member) for member in members],
    )


@router.post(
    "/",
    response_model=list[ApplicationResponse],
    status_code=status.HTTP_201_CREATED,
)
async def submit_application(
    payload: ApplicationSubmitRequest,
    current_user: CurrentUserDep,
    facade: FacadeDep,
) -> list[ApplicationResponse]:
    """Submit ranked choices for the current student or the group they lead."""

    applications = await facade.submit_application(
        current_user.id,
        payload.projectType,
        payload.projectIds,
        payload.semester,
        payload.department,
        student_id=None if payload.groupId is not None else current_user.id,
        group_id=payload.groupId,
        stream=payload.stream,
        specialization=payload.specialization,
        cgpa=payload.cgpa,
        notes=payload.notes,
    )
    return [_serialize_application(application) for application in applications]


@router.get("/", response_model=list[ApplicationResponse])
async def list_all_applications(
    current_user: CurrentUserDep,
    facade: FacadeDep,
    project_type: Optional[ProjectType] = Query(None, alias="projectType"),
    application_status: Optional[ApplicationStatus] = Query(None, alias="status"),
    semester: Optional[int] = Query(None),
) -> list[ApplicationResponse]:
    """Coordinator view over every application."""

    applications = await facade.get_all_applications(
        current_user.id, project_type, application_status, semester
    )
    return [_serialize_application(application) for application in applications]


@router.get("/mine", response_model=list[ApplicationResponse])
async def list_my_applications(
    current_user: CurrentUserDep,
    facade: FacadeDep,
) -> list[ApplicationResponse]:
    applications = await facade.get_applications_for_user(current_user.id)
    return [_serialize_application(application) for application in applications]


@router.get("/approved", response_model=Optional[ApplicationResponse])
async def get_approved_application(
    current_user: CurrentUserDep,
    facade: FacadeDep,
    group_id: Optional[int] = Query(None, alias="groupId"),
) -> Optional[ApplicationResponse]:
    if group_id is not None:
        application = await facade.get_approved_application(group_id=group_id)
    else:
        application = await facade.get_approved_application(student_id=current_user.id)
    return _serialize_application(application) if application else None


@router.get("/faculty", response_model=list[FacultyApplicationResponse])
async def list_faculty_applications(
    current_user: CurrentUserDep,
    facade: FacadeDep,
    project_type: Optional[ProjectType] = Query(None, alias="projectType"),
) -> list[FacultyApplicationResponse]:
    """Applications targeting the current faculty member's projects."""

    views = await facade.get_faculty_applications(current_user.id, project_type)
    return [_serialize_faculty_view(view) for view in views]


@router.get("/{application_id}", response_model=ApplicationResponse)
async def get_application(
    application_id: int,
    current_user: CurrentUserDep,
    facade: FacadeDep,
) -> ApplicationResponse:
    application = await facade.get_application_by_id(application_id)
    if application is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Application not found",
        )
    return _serialize_application(application)


@router.post("/{application_id}/accept", response_model=ApplicationResponse)
async def accept_application(
    application_id: int,
    payload: ApplicationAcceptRequest,
    current_user: CurrentUserDep,
    facade: FacadeDep,
) -> ApplicationResponse:
    application = await facade.accept_application(
        current_user.id, application_id, payload.projectId
    )
    return _serialize_application(application)


@router.post("/{application_id}/reject", response_model=ApplicationResponse)
async def reject_application(
    application_id: int,
    payload: ApplicationRejectRequest,
    current_user: CurrentUserDep,
    facade: FacadeDep,
) -> ApplicationResponse:
    application = await facade.reject_application(
        current_user.id, application_id, payload.reason
    )
    return _serialize_application(application)


@router.delete("/{application_id}", response_model=SuccessResponse)
async def revoke_application(
    application_id: int,
    current_user: CurrentUserDep,
    facade: FacadeDep,
) -> SuccessResponse:
    result = await facade.revoke_application(current_user.id, application_id)
    return SuccessResponse(success=result["success"], message=result["message"])


@router.post("/{application_id}/unfreeze", response_model=ApplicationResponse)
async def unfreeze_application(
    application_id: int,
    current_user: CurrentUserDep,
    facade: FacadeDep,
) -> ApplicationResponse:
    """Coordinator override re-opening a submission for edits."""

    application = await facade.unfreeze_application(current_user.id, application_id)
    return _serialize_application(application)
