"""Pydantic schemas for role resolution."""

from __future__ import annotations

from pydantic import AliasChoices, BaseModel, Field


class EffectiveRoleResponse(BaseModel):
    """Role derived from current group and user state."""

    userId: int = Field(
        ...,
        validation_alias=AliasChoices("userId", "user_id"),
        serialization_alias="userId",
    )
    baseRole: str = Field(
        ...,
        validation_alias=AliasChoices("baseRole", "base_role"),
        serialization_alias="baseRole",
    )
    isGroupLeader: bool = Field(
        ...,
        validation_alias=AliasChoices("isGroupLeader", "is_group_leader"),
        serialization_alias="isGroupLeader",
    )
    isCoordinator: bool = Field(
        ...,
        validation_alias=AliasChoices("isCoordinator", "is_coordinator"),
        serialization_alias="isCoordinator",
    )
    isExternalEvaluator: bool = Field(
        ...,
        validation_alias=AliasChoices("isExternalEvaluator", "is_external_evaluator"),
        serialization_alias="isExternalEvaluator",
    )
    effectiveRole: str = Field(
        ...,
        validation_alias=AliasChoices("effectiveRole", "effective_role"),
        serialization_alias="effectiveRole",
    )

    class Config:
        populate_by_name = True


class ExternalEvaluatorRequest(BaseModel):
    facultyId: int = Field(
        ...,
        ge=1,
        validation_alias=AliasChoices("facultyId", "faculty_id"),
        serialization_alias="facultyId",
    )

    class Config:
        populate_by_name = True
