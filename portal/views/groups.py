"""Pydantic schemas for group formation and membership."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field

from portal.models.group import GroupStatus
from portal.models.project import ProjectType


class GroupCreateRequest(BaseModel):
    """Payload to create a group led by the current user."""

    projectType: ProjectType = Field(
        ...,
        validation_alias=AliasChoices("projectType", "project_type"),
        serialization_alias="projectType",
    )
    year: int = Field(..., ge=2000, le=2100)
    groupName: Optional[str] = Field(
        None,
        max_length=120,
        validation_alias=AliasChoices("groupName", "group_name"),
        serialization_alias="groupName",
    )

    class Config:
        populate_by_name = True


class GroupJoinRequest(BaseModel):
    """Payload to join a group by its invitation code."""

    groupCode: str = Field(
        ...,
        min_length=4,
        max_length=12,
        validation_alias=AliasChoices("groupCode", "group_code"),
        serialization_alias="groupCode",
    )
    projectType: ProjectType = Field(
        ...,
        validation_alias=AliasChoices("projectType", "project_type"),
        serialization_alias="projectType",
    )
    year: int = Field(..., ge=2000, le=2100)

    class Config:
        populate_by_name = True


class GroupUpdateRequest(BaseModel):
    """Payload to rename a group."""

    groupName: Optional[str] = Field(
        None,
        max_length=120,
        validation_alias=AliasChoices("groupName", "group_name"),
        serialization_alias="groupName",
    )

    class Config:
        populate_by_name = True


class DraftProjectsRequest(BaseModel):
    """Replacement scratch list of project ids."""

    projectIds: list[int] = Field(
        default_factory=list,
        validation_alias=AliasChoices("projectIds", "project_ids"),
        serialization_alias="projectIds",
    )

    class Config:
        populate_by_name = True


class LeadershipTransferRequest(BaseModel):
    newLeaderId: int = Field(
        ...,
        ge=1,
        validation_alias=AliasChoices("newLeaderId", "new_leader_id"),
        serialization_alias="newLeaderId",
    )

    class Config:
        populate_by_name = True


class GroupResponse(BaseModel):
    """Serialized group with its member ids."""

    id: int
    groupCode: str = Field(
        ...,
        validation_alias=AliasChoices("groupCode", "group_code"),
        serialization_alias="groupCode",
    )
    groupName: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("groupName", "group_name"),
        serialization_alias="groupName",
    )
    projectType: ProjectType = Field(
        ...,
        validation_alias=AliasChoices("projectType", "project_type"),
        serialization_alias="projectType",
    )
    year: int
    status: GroupStatus
    leaderId: int = Field(
        ...,
        validation_alias=AliasChoices("leaderId", "leader_id"),
        serialization_alias="leaderId",
    )
    memberIds: list[int] = Field(
        default_factory=list,
        validation_alias=AliasChoices("memberIds", "member_ids"),
        serialization_alias="memberIds",
    )
    draftProjects: list[int] = Field(
        default_factory=list,
        validation_alias=AliasChoices("draftProjects", "draft_projects"),
        serialization_alias="draftProjects",
    )
    assignedProjectId: Optional[int] = Field(
        None,
        validation_alias=AliasChoices("assignedProjectId", "assigned_project_id"),
        serialization_alias="assignedProjectId",
    )
    assignedFacultyId: Optional[int] = Field(
        None,
        validation_alias=AliasChoices("assignedFacultyId", "assigned_faculty_id"),
        serialization_alias="assignedFacultyId",
    )
    externalEvaluatorId: Optional[int] = Field(
        None,
        validation_alias=AliasChoices("externalEvaluatorId", "external_evaluator_id"),
        serialization_alias="externalEvaluatorId",
    )
    groupNumber: Optional[int] = Field(
        None,
        validation_alias=AliasChoices("groupNumber", "group_number"),
        serialization_alias="groupNumber",
    )
    createdAt: datetime = Field(
        ...,
        validation_alias=AliasChoices("createdAt", "created_at"),
        serialization_alias="createdAt",
    )
    updatedAt: datetime = Field(
        ...,
        validation_alias=AliasChoices("updatedAt", "updated_at"),
        serialization_alias="updatedAt",
    )

    class Config:
        populate_by_name = True
        from_attributes = True
