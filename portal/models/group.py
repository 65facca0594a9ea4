"""SQLAlchemy model defining student project groups."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)

from portal.models.base import Base
from portal.models.project import ProjectType


class GroupStatus(str, Enum):
    """Lifecycle of a group."""

    FORMING = "forming"
    COMPLETE = "complete"
    APPLIED = "applied"
    APPROVED = "approved"
    FROZEN = "frozen"


# Statuses in which membership may still change and no application is live.
PRE_APPLICATION_STATUSES = (GroupStatus.FORMING, GroupStatus.COMPLETE)

# Every persisted status counts as active; groups are deleted, never archived.
ACTIVE_STATUSES = tuple(GroupStatus)


class Group(Base):
    """Represents a student group formed by a leader for one project type."""

    __tablename__ = "groups"

    id = Column(Integer, primary_key=True, index=True)
    group_code = Column(String(12), nullable=False, index=True)
    group_name = Column(String(120), nullable=True)
    project_type = Column(
        SqlEnum(ProjectType, name="project_type"),
        nullable=False,
    )
    year = Column(Integer, nullable=False)
    status = Column(
        SqlEnum(GroupStatus, name="group_status"),
        nullable=False,
        default=GroupStatus.FORMING,
        index=True,
    )
    leader_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    member_count = Column(Integer, nullable=False, default=1)
    draft_projects = Column(JSON, nullable=False, default=list)
    assigned_project_id = Column(
        Integer,
        ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
    )
    assigned_faculty_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    external_evaluator_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    group_number = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(
        DateTime,
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    __table_args__ = (
        UniqueConstraint(
            "group_code",
            "year",
            "project_type",
            name="uq_groups_code_year_type",
        ),
        UniqueConstraint(
            "project_type",
            "year",
            "group_number",
            name="uq_groups_type_year_number",
        ),
    )

    # Loaded from group_memberships by the registry; not a column.
    member_ids = ()

    def __repr__(self) -> str:
        return f"<Group {self.group_code} {self.project_type} {self.year}>"


__all__ = ["Group", "GroupStatus", "ACTIVE_STATUSES", "PRE_APPLICATION_STATUSES"]
