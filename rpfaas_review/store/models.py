"""
Record store — SQLAlchemy models for assessment records and review data.

Tables:
- ``building_structures`` / ``land_improvements`` — the two record kinds,
  sharing one lifecycle column set
- ``users`` — profile and role of each authenticated principal
- ``role_permissions`` — per-role, per-feature overrides of the default table
- ``review_history`` — append-only audit trail of status transitions
- ``form_comments`` — field-level review comments with one-level replies

Column types stay portable (String ids, generic JSON) so the same models run
on PostgreSQL in production and SQLite in tests.
"""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all store models."""
    pass


class RecordColumns:
    """Lifecycle and location columns shared by both record kinds."""

    id = Column(Integer, primary_key=True, autoincrement=True)

    owner_name = Column(String(300), nullable=True)
    location_municipality = Column(
        String(100), nullable=True,
        comment="Municipality of the property; used for reviewer scoping",
    )
    location_barangay = Column(String(100), nullable=True)

    status = Column(
        String(20), nullable=False, default="draft",
        comment="draft, submitted, under_review, returned, approved",
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)

    laoo_reviewer_id = Column(
        String(36), nullable=True,
        comment="User id of the reviewer who claimed or approved the record",
    )
    laoo_approved_at = Column(DateTime(timezone=True), nullable=True)

    form_data = Column(
        JSON, nullable=False, default=dict,
        comment="Remaining form fields, stored as-is",
    )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id} status={self.status}>"


class BuildingStructureDB(RecordColumns, Base):
    """Building and other structure assessment form (RPFAAS)."""

    __tablename__ = "building_structures"

    __table_args__ = (
        Index("ix_building_status_submitted", "status", "submitted_at"),
        Index("ix_building_municipality", "location_municipality"),
    )


class LandImprovementDB(RecordColumns, Base):
    """Land and other improvements assessment form (RPFAAS)."""

    __tablename__ = "land_improvements"

    __table_args__ = (
        Index("ix_land_status_submitted", "status", "submitted_at"),
        Index("ix_land_municipality", "location_municipality"),
    )


class UserDB(Base):
    """Application profile of an identity-provider principal."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, comment="Identity provider user id")
    email = Column(String(320), nullable=True)
    full_name = Column(String(200), nullable=True)
    role = Column(
        String(50), nullable=False, default="user",
        comment="Role name; unknown values resolve to the unprivileged role",
    )
    municipality = Column(
        String(100), nullable=True,
        comment="Scope for municipality-restricted roles",
    )
    laoo_level = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_user_role", "role"),)


class RolePermissionDB(Base):
    """Persisted override of one feature flag for one role."""

    __tablename__ = "role_permissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    role = Column(String(50), nullable=False)
    feature = Column(String(100), nullable=False)
    allowed = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("role", "feature", name="uq_role_feature"),
        Index("ix_role_permissions_role", "role"),
    )


class ReviewHistoryDB(Base):
    """
    One status transition of one record.

    This table is APPEND-ONLY. Rows are written once per successful
    transition and never updated or deleted.
    """

    __tablename__ = "review_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    form_type = Column(String(20), nullable=False, comment="Record kind")
    form_id = Column(Integer, nullable=False)
    from_status = Column(String(20), nullable=False)
    to_status = Column(String(20), nullable=False)
    actor_id = Column(String(36), nullable=False)
    actor_role = Column(String(50), nullable=False)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __table_args__ = (
        Index("ix_history_form", "form_type", "form_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ReviewHistory {self.form_type}#{self.form_id} "
            f"{self.from_status}->{self.to_status}>"
        )


class FormCommentDB(Base):
    """
    A review comment on a record.

    ``parent_id`` forms a one-level reply thread. It is deliberately not a
    foreign key: the store accepts any value and leaves thread discipline to
    the caller.
    """

    __tablename__ = "form_comments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    form_type = Column(String(20), nullable=False)
    form_id = Column(Integer, nullable=False)
    field_name = Column(
        Text, nullable=True,
        comment="Comma-separated field identifiers the comment refers to",
    )
    comment_text = Column(Text, nullable=False)
    suggested_value = Column(Text, nullable=True)
    author_id = Column(String(36), nullable=False)
    author_role = Column(
        String(50), nullable=False,
        comment="Author's role when the comment was written",
    )
    parent_id = Column(String(36), nullable=True)
    is_resolved = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_comment_form", "form_type", "form_id", "created_at"),
    )
