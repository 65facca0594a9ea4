"""SQLAlchemy model for project applications."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)

from portal.models.base import Base
from portal.models.project import ProjectType


class ApplicationStatus(str, Enum):
    """Review state of a single application row."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


LIVE_STATUSES = (ApplicationStatus.PENDING, ApplicationStatus.APPROVED)

# Enum columns persist member names, so partial index predicates use them.
_LIVE_PREDICATE = text("status IN ('PENDING', 'APPROVED')")
_APPROVED_PREDICATE = text("status = 'APPROVED'")


class Application(Base):
    """One row per chosen project of a solo or group submission."""

    __tablename__ = "applications"

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    group_id = Column(
        Integer,
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    project_type = Column(
        SqlEnum(ProjectType, name="project_type"),
        nullable=False,
    )
    project_id = Column(
        Integer,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status = Column(
        SqlEnum(ApplicationStatus, name="application_status"),
        nullable=False,
        default=ApplicationStatus.PENDING,
    )
    semester = Column(Integer, nullable=False)
    department = Column(String(120), nullable=False)
    stream = Column(String(120), nullable=True)
    specialization = Column(String(120), nullable=True)
    cgpa = Column(Float, nullable=True)
    submitted_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    submitted_by = Column(Integer, nullable=True)
    reviewed_by = Column(Integer, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    is_frozen = Column(Boolean, nullable=False, default=True)
    auto_rejected = Column(Boolean, nullable=False, default=False)
    rejection_reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(
        DateTime,
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    __table_args__ = (
        CheckConstraint(
            "(student_id IS NULL) <> (group_id IS NULL)",
            name="ck_applications_single_owner",
        ),
        CheckConstraint(
            "cgpa IS NULL OR (cgpa >= 0 AND cgpa <= 10)",
            name="ck_applications_cgpa_range",
        ),
        Index(
            "uq_applications_group_project_live",
            "group_id",
            "project_id",
            unique=True,
            postgresql_where=_LIVE_PREDICATE,
            sqlite_where=_LIVE_PREDICATE,
        ),
        Index(
            "uq_applications_student_project_live",
            "student_id",
            "project_id",
            unique=True,
            postgresql_where=_LIVE_PREDICATE,
            sqlite_where=_LIVE_PREDICATE,
        ),
        Index(
            "uq_applications_group_approved",
            "group_id",
            unique=True,
            postgresql_where=_APPROVED_PREDICATE,
            sqlite_where=_APPROVED_PREDICATE,
        ),
        Index(
            "uq_applications_student_approved",
            "student_id",
            unique=True,
            postgresql_where=_APPROVED_PREDICATE,
            sqlite_where=_APPROVED_PREDICATE,
        ),
    )

    @property
    def owner_key(self) -> tuple[str, int]:
        """Return ``("group", id)`` or ``("student", id)``."""

        if self.group_id is not None:
            return ("group", self.group_id)
        return ("student", self.student_id)


__all__ = ["Application", "ApplicationStatus", "LIVE_STATUSES"]
