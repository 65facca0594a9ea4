"""SQLAlchemy model for group memberships."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    UniqueConstraint,
)

from portal.models.base import Base
from portal.models.project import ProjectType


class GroupMembership(Base):
    """Association table between users and groups.

    ``project_type`` and ``year`` are copied from the group so the store can
    reject a second membership of the same user for the same programme.
    """

    __tablename__ = "group_memberships"

    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(
        Integer,
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    project_type = Column(
        SqlEnum(ProjectType, name="project_type"),
        nullable=False,
    )
    year = Column(Integer, nullable=False)
    joined_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint(
            "group_id",
            "user_id",
            name="uq_group_memberships_group_user",
        ),
        UniqueConstraint(
            "user_id",
            "project_type",
            "year",
            name="uq_group_memberships_user_type_year",
        ),
    )


__all__ = ["GroupMembership"]
