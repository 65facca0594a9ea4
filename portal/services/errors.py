"""
Domain errors raised by the allocation engine
=============================================

Every error carries a stable ``code`` and an HTTP-equivalent ``status_code``
so the outer layer can translate it without string matching:

    try:
        await facade.join_group(user_id, code, year, project_type)
    except GroupFullError as exc:
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

Storage failures are never wrapped; they propagate as raised by SQLAlchemy.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class PortalError(Exception):
    """Base exception for all allocation-engine errors"""

    status_code = 500

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detail": self.message,
            "code": self.code,
            "details": self.details,
        }


# ============================================
# Input & standing errors
# ============================================

class ValidationError(PortalError):
    """Malformed input"""

    status_code = 400

    def __init__(self, message: str, code: str = "VALIDATION_ERROR", field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(message, code=code, details=details)


class AuthorizationError(PortalError):
    """Actor lacks standing for this action"""

    status_code = 403

    def __init__(self, message: str = "Not authorized", code: str = "NOT_AUTHORIZED"):
        super().__init__(message, code=code)


class NotFoundError(PortalError):
    """Referenced entity does not exist"""

    status_code = 404

    def __init__(self, resource_type: str, resource_id: Any = None, message: Optional[str] = None):
        if message is None:
            message = (
                f"{resource_type} with ID '{resource_id}' not found"
                if resource_id is not None
                else f"{resource_type} not found"
            )
        super().__init__(
            message,
            code=f"{resource_type.upper()}_NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


# ============================================
# Conflict errors (409-type)
# ============================================

class ConflictError(PortalError):
    """Uniqueness or capacity violation"""

    status_code = 409

    def __init__(self, message: str, code: str = "CONFLICT", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)


class AlreadyLeadingError(ConflictError):
    def __init__(self, project_type: str, year: int):
        super().__init__(
            f"You are already leading a group for {project_type} in {year}",
            code="ALREADY_GROUP_LEADER",
            details={"project_type": project_type, "year": year},
        )


class AlreadyMemberError(ConflictError):
    def __init__(self, message: str = "User is already a member of another group"):
        super().__init__(message, code="ALREADY_IN_GROUP")


class LeadersCannotJoinError(ConflictError):
    def __init__(self):
        super().__init__(
            "Group leaders cannot join other groups",
            code="GROUP_LEADER_CANNOT_JOIN",
        )


class GroupFullError(ConflictError):
    def __init__(self, max_size: int):
        super().__init__(
            f"Group is full (maximum {max_size} members)",
            code="GROUP_FULL",
            details={"max_size": max_size},
        )


class DuplicateApplicationError(ConflictError):
    def __init__(self, project_ids: list[int]):
        super().__init__(
            "You already have pending or approved applications for the selected projects",
            code="DUPLICATE_APPLICATION",
            details={"project_ids": project_ids},
        )


class AlreadyAssignedError(ConflictError):
    def __init__(self, project_id: int):
        super().__init__(
            "Project is already assigned to another student/group",
            code="PROJECT_ALREADY_ASSIGNED",
            details={"project_id": project_id},
        )


# ============================================
# Lifecycle errors
# ============================================

class StateError(PortalError):
    """Operation attempted from an incompatible lifecycle state"""

    status_code = 409

    def __init__(self, message: str, code: str = "INVALID_STATE", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)


class NotAMemberError(StateError):
    def __init__(self, user_id: int, group_id: int):
        super().__init__(
            "User is not a member of this group",
            code="NOT_A_MEMBER",
            details={"user_id": user_id, "group_id": group_id},
        )


# ============================================
# Operational errors
# ============================================

class ResourceExhausted(PortalError):
    """A bounded internal retry ran out"""

    status_code = 500

    def __init__(self, message: str, code: str = "RESOURCE_EXHAUSTED"):
        super().__init__(message, code=code)


class CodeGenerationExhausted(ResourceExhausted):
    def __init__(self, attempts: int):
        super().__init__(
            f"Failed to generate unique group code after {attempts} attempts",
            code="CODE_GENERATION_EXHAUSTED",
        )


__all__ = [
    "PortalError",
    "ValidationError",
    "AuthorizationError",
    "NotFoundError",
    "ConflictError",
    "AlreadyLeadingError",
    "AlreadyMemberError",
    "LeadersCannotJoinError",
    "GroupFullError",
    "DuplicateApplicationError",
    "AlreadyAssignedError",
    "StateError",
    "NotAMemberError",
    "ResourceExhausted",
    "CodeGenerationExhausted",
]
