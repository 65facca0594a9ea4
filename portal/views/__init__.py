"""Pydantic schemas used as views in the MVC architecture."""

from .applications import (
    ApplicantMember,
    ApplicationAcceptRequest,
    ApplicationRejectRequest,
    ApplicationResponse,
    ApplicationSubmitRequest,
    FacultyApplicationResponse,
    ProjectSummary,
)
from .common import ErrorResponse, SuccessResponse
from .groups import (
    DraftProjectsRequest,
    GroupCreateRequest,
    GroupJoinRequest,
    GroupResponse,
    GroupUpdateRequest,
    LeadershipTransferRequest,
)
from .roles import EffectiveRoleResponse, ExternalEvaluatorRequest

__all__ = [
    "ApplicantMember",
    "ApplicationAcceptRequest",
    "ApplicationRejectRequest",
    "ApplicationResponse",
    "ApplicationSubmitRequest",
    "FacultyApplicationResponse",
    "ProjectSummary",
    "ErrorResponse",
    "SuccessResponse",
    "DraftProjectsRequest",
    "GroupCreateRequest",
    "GroupJoinRequest",
    "GroupResponse",
    "GroupUpdateRequest",
    "LeadershipTransferRequest",
    "EffectiveRoleResponse",
    "ExternalEvaluatorRequest",
]
