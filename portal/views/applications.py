"""Pydantic schemas for project applications."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field

from portal.models.application import ApplicationStatus
from portal.models.project import ProjectStatus, ProjectType


class ApplicationSubmitRequest(BaseModel):
    """Ranked project choices for a solo student or a group.

    Choice-count and duplicate checks run in the engine so they surface as
    the same typed errors for every caller.
    """

    projectType: ProjectType = Field(
        ...,
        validation_alias=AliasChoices("projectType", "project_type"),
        serialization_alias="projectType",
    )
    projectIds: list[int] = Field(
        ...,
        validation_alias=AliasChoices("projectIds", "project_ids"),
        serialization_alias="projectIds",
    )
    groupId: Optional[int] = Field(
        None,
        validation_alias=AliasChoices("groupId", "group_id"),
        serialization_alias="groupId",
    )
    semester: int = Field(..., ge=1, le=12)
    department: str = Field(..., min_length=1, max_length=120)
    stream: Optional[str] = Field(None, max_length=120)
    specialization: Optional[str] = Field(None, max_length=120)
    cgpa: Optional[float] = None
    notes: Optional[str] = Field(None, max_length=2000)

    class Config:
        populate_by_name = True


class ApplicationAcceptRequest(BaseModel):
    projectId: int = Field(
        ...,
        validation_alias=AliasChoices("projectId", "project_id"),
        serialization_alias="projectId",
    )

    class Config:
        populate_by_name = True


class ApplicationRejectRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class ApplicationResponse(BaseModel):
    """Serialized application row."""

    id: int
    studentId: Optional[int] = Field(
        None,
        validation_alias=AliasChoices("studentId", "student_id"),
        serialization_alias="studentId",
    )
    groupId: Optional[int] = Field(
        None,
        validation_alias=AliasChoices("groupId", "group_id"),
        serialization_alias="groupId",
    )
    projectType: ProjectType = Field(
        ...,
        validation_alias=AliasChoices("projectType", "project_type"),
        serialization_alias="projectType",
    )
    projectId: int = Field(
        ...,
        validation_alias=AliasChoices("projectId", "project_id"),
        serialization_alias="projectId",
    )
    status: ApplicationStatus
    semester: int
    department: str
    stream: Optional[str] = None
    specialization: Optional[str] = None
    cgpa: Optional[float] = None
    isFrozen: bool = Field(
        ...,
        validation_alias=AliasChoices("isFrozen", "is_frozen"),
        serialization_alias="isFrozen",
    )
    autoRejected: bool = Field(
        False,
        validation_alias=AliasChoices("autoRejected", "auto_rejected"),
        serialization_alias="autoRejected",
    )
    rejectionReason: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("rejectionReason", "rejection_reason"),
        serialization_alias="rejectionReason",
    )
    submittedAt: datetime = Field(
        ...,
        validation_alias=AliasChoices("submittedAt", "submitted_at"),
        serialization_alias="submittedAt",
    )
    reviewedBy: Optional[int] = Field(
        None,
        validation_alias=AliasChoices("reviewedBy", "reviewed_by"),
        serialization_alias="reviewedBy",
    )
    reviewedAt: Optional[datetime] = Field(
        None,
        validation_alias=AliasChoices("reviewedAt", "reviewed_at"),
        serialization_alias="reviewedAt",
    )

    class Config:
        populate_by_name = True
        from_attributes = True


class ApplicantMember(BaseModel):
    id: int
    name: str
    email: str

    class Config:
        from_attributes = True


class ProjectSummary(BaseModel):
    id: int
    title: str
    projectType: ProjectType = Field(
        ...,
        validation_alias=AliasChoices("projectType", "project_type"),
        serialization_alias="projectType",
    )
    status: ProjectStatus
    capacity: int
    assignedCount: int = Field(
        ...,
        validation_alias=AliasChoices("assignedCount", "assigned_count"),
        serialization_alias="assignedCount",
    )

    class Config:
        populate_by_name = True
        from_attributes = True


class FacultyApplicationResponse(BaseModel):
    """Application enriched with the project and its applicants."""

    application: ApplicationResponse
    project: ProjectSummary
    groupCode: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("groupCode", "group_code"),
        serialization_alias="groupCode",
    )
    members: list[ApplicantMember] = Field(default_factory=list)

    class Config:
        populate_by_name = True
