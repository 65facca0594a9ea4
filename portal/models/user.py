"""SQLAlchemy model for portal users."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime
from sqlalchemy import Enum as SqlEnum
from sqlalchemy import Integer, String

from portal.models.base import Base


class AccountType(str, Enum):
    """Base role stored on the user record."""

    STUDENT = "student"
    FACULTY = "faculty"
    ADMIN = "admin"


class User(Base):
    """A student, faculty member or administrator.

    Roles beyond ``account_type`` and ``is_coordinator`` are never stored here;
    they are derived from group records on every request.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(120), nullable=False)
    account_type = Column(
        SqlEnum(AccountType, name="account_type"),
        nullable=False,
        default=AccountType.STUDENT,
    )
    is_coordinator = Column(Boolean, nullable=False, default=False)
    # Back-reference kept in sync with group_memberships by the group registry.
    current_group_id = Column(Integer, nullable=True, index=True)
    assigned_project_id = Column(Integer, nullable=True)
    assigned_faculty_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(
        DateTime,
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )


__all__ = ["User", "AccountType"]
