"""SQLAlchemy model for faculty-authored projects."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import CheckConstraint, Column, DateTime
from sqlalchemy import Enum as SqlEnum
from sqlalchemy import ForeignKey, Integer, String, Text

from portal.models.base import Base


class ProjectType(str, Enum):
    """Programme a project (and the groups applying to it) belongs to."""

    IDP = "IDP"
    UROP = "UROP"
    CAPSTONE = "CAPSTONE"


class ProjectStatus(str, Enum):
    """Lifecycle of a project listing."""

    DRAFT = "draft"
    PUBLISHED = "published"
    ASSIGNED = "assigned"
    CLOSED = "closed"


class Project(Base):
    """A project listing owned by a faculty member.

    ``assigned_count`` tracks consumed capacity; the status flips to
    ``assigned`` in the same statement that consumes the last slot.
    """

    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    brief = Column(Text, nullable=True)
    project_type = Column(
        SqlEnum(ProjectType, name="project_type"),
        nullable=False,
        index=True,
    )
    status = Column(
        SqlEnum(ProjectStatus, name="project_status"),
        nullable=False,
        default=ProjectStatus.DRAFT,
        index=True,
    )
    capacity = Column(Integer, nullable=False, default=1)
    assigned_count = Column(Integer, nullable=False, default=0)
    faculty_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    assigned_group_id = Column(Integer, nullable=True)
    assigned_student_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(
        DateTime,
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    __table_args__ = (
        CheckConstraint("capacity >= 1", name="ck_projects_capacity_positive"),
        CheckConstraint(
            "assigned_count <= capacity",
            name="ck_projects_capacity_not_exceeded",
        ),
    )


__all__ = ["Project", "ProjectStatus", "ProjectType"]
