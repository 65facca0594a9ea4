"""SQLAlchemy models for the allocation engine."""

from .base import Base
from .application import Application, ApplicationStatus  # noqa: F401
from .group import Group, GroupStatus  # noqa: F401
from .group_membership import GroupMembership  # noqa: F401
from .project import Project, ProjectStatus, ProjectType  # noqa: F401
from .user import AccountType, User  # noqa: F401

__all__ = [
    "Base",
    "User",
    "AccountType",
    "Project",
    "ProjectStatus",
    "ProjectType",
    "Group",
    "GroupStatus",
    "GroupMembership",
    "Application",
    "ApplicationStatus",
]
