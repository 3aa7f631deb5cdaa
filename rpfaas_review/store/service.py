"""
Record Store — SQLAlchemy adapter for records, users, overrides, history and comments.

This is the only module that talks to the relational database. It returns
pydantic models from ``rpfaas_review.workflow.schema`` and raises
``StoreFailure`` for any database error, so callers never handle
SQLAlchemy exceptions or ORM objects.

Each public method opens its own short session. Nothing here spans more
than one logical write in a transaction: a status update and its audit row
are two independent writes.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Iterator, Mapping
from uuid import uuid4

from sqlalchemy import create_engine, delete, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from rpfaas_review.store.models import (
    Base,
    BuildingStructureDB,
    FormCommentDB,
    LandImprovementDB,
    RecordColumns,
    ReviewHistoryDB,
    RolePermissionDB,
    UserDB,
)
from rpfaas_review.workflow.errors import StoreFailure
from rpfaas_review.workflow.schema import (
    RecordKind,
    RecordStatus,
    ReviewComment,
    ReviewHistoryEntry,
    ReviewRecord,
    Role,
    UserProfile,
)

logger = logging.getLogger(__name__)


RECORD_MODELS: dict[RecordKind, type[RecordColumns]] = {
    RecordKind.BUILDING: BuildingStructureDB,
    RecordKind.LAND: LandImprovementDB,
}

_RECORD_COLUMNS = (
    "owner_name",
    "location_municipality",
    "location_barangay",
    "status",
    "submitted_at",
    "updated_at",
    "created_at",
    "laoo_reviewer_id",
    "laoo_approved_at",
    "form_data",
)

_USER_COLUMNS = ("email", "full_name", "role", "municipality", "laoo_level", "is_active")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecordStore:
    """
    Relational record store for the review workflow.

    Usage:
        store = RecordStore(settings.database_url_sync)
        store.initialize()  # create tables

        record = store.get_record(RecordKind.BUILDING, 7)
        updated = store.update_record_status(
            RecordKind.BUILDING, 7,
            expected_status=RecordStatus.SUBMITTED,
            values={"status": "under_review", "updated_at": utcnow()},
        )
    """

    def __init__(self, database_url: str | None = None, engine: Engine | None = None) -> None:
        """
        Initialize the store.

        Args:
            database_url: Database connection string (sync driver).
            engine: A pre-built engine; takes precedence over ``database_url``.
        """
        if engine is None:
            if not database_url:
                raise ValueError("RecordStore needs a database_url or an engine")
            engine = create_engine(database_url, echo=False)
        self.engine = engine
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    def initialize(self) -> None:
        """Create any missing tables."""
        Base.metadata.create_all(self.engine)
        logger.info("Record store schema ready")

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        """Open a session, translating database errors into StoreFailure."""
        session = self.SessionLocal()
        try:
            yield session
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("Store operation failed: %s: %s", operation, exc)
            raise StoreFailure(f"Failed to {operation}") from exc
        finally:
            session.close()

    # ── Records ─────────────────────────────────────────────────

    def create_record(self, kind: RecordKind, **fields: Any) -> ReviewRecord:
        """Insert a record. Status defaults to draft."""
        model = RECORD_MODELS[kind]
        values = {k: _db_value(v) for k, v in fields.items()}
        values.setdefault("status", RecordStatus.DRAFT.value)
        values.setdefault("created_at", utcnow())
        values.setdefault("form_data", {})
        with self._session(f"create {kind.value} record") as session:
            row = model(**values)
            session.add(row)
            session.commit()
            return _record(kind, row)

    def get_record(self, kind: RecordKind, record_id: int) -> ReviewRecord | None:
        model = RECORD_MODELS[kind]
        with self._session(f"fetch {kind.value} record") as session:
            row = session.get(model, record_id)
            return _record(kind, row) if row is not None else None

    def list_records(
        self,
        kind: RecordKind,
        statuses: Iterable[RecordStatus],
        municipality: str | None = None,
    ) -> list[ReviewRecord]:
        """
        Records of one kind in any of ``statuses``, oldest submission first.

        Args:
            kind: Record kind to query.
            statuses: Statuses to include.
            municipality: Case-insensitive municipality restriction.
        """
        model = RECORD_MODELS[kind]
        stmt = select(model).where(model.status.in_([s.value for s in statuses]))
        if municipality:
            stmt = stmt.where(
                func.lower(model.location_municipality) == municipality.lower()
            )
        stmt = stmt.order_by(model.submitted_at.asc().nulls_first(), model.id.asc())
        with self._session(f"list {kind.value} records") as session:
            return [_record(kind, row) for row in session.execute(stmt).scalars()]

    def update_record_status(
        self,
        kind: RecordKind,
        record_id: int,
        expected_status: RecordStatus,
        values: Mapping[str, Any],
    ) -> ReviewRecord | None:
        """
        Apply ``values`` to a record only if its status is still ``expected_status``.

        Returns:
            The updated record, or None if no row matched (the record is gone
            or its status changed since it was read).
        """
        model = RECORD_MODELS[kind]
        stmt = (
            update(model)
            .where(model.id == record_id, model.status == expected_status.value)
            .values({k: _db_value(v) for k, v in values.items()})
        )
        with self._session(f"update {kind.value} record") as session:
            result = session.execute(stmt)
            if result.rowcount == 0:
                session.rollback()
                return None
            session.commit()
            row = session.get(model, record_id, populate_existing=True)
            return _record(kind, row)

    # ── Users ───────────────────────────────────────────────────

    def get_user(self, user_id: str) -> UserProfile | None:
        with self._session("fetch user") as session:
            row = session.get(UserDB, user_id)
            return _user(row) if row is not None else None

    def get_users(self, user_ids: Iterable[str]) -> dict[str, UserProfile]:
        ids = sorted(set(user_ids))
        if not ids:
            return {}
        with self._session("fetch users") as session:
            rows = session.execute(select(UserDB).where(UserDB.id.in_(ids))).scalars()
            return {row.id: _user(row) for row in rows}

    def list_users(self) -> list[UserProfile]:
        with self._session("list users") as session:
            rows = session.execute(
                select(UserDB).order_by(UserDB.created_at.desc(), UserDB.id.asc())
            ).scalars()
            return [_user(row) for row in rows]

    def save_user(self, user_id: str, **fields: Any) -> UserProfile:
        """Insert a user profile or update the given fields of an existing one."""
        unknown = set(fields) - set(_USER_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)}")
        values = {k: _db_value(v) for k, v in fields.items()}
        with self._session("save user") as session:
            row = session.get(UserDB, user_id)
            now = utcnow()
            if row is None:
                row = UserDB(id=user_id, created_at=now, **values)
                session.add(row)
            else:
                for key, value in values.items():
                    setattr(row, key, value)
                row.updated_at = now
            session.commit()
            return _user(row)

    # ── Permission overrides ────────────────────────────────────

    def get_overrides(self, role: Role) -> dict[str, bool]:
        """Override rows for one role as ``{feature: allowed}``."""
        with self._session("fetch role permissions") as session:
            rows = session.execute(
                select(RolePermissionDB).where(RolePermissionDB.role == role.value)
            ).scalars()
            return {row.feature: bool(row.allowed) for row in rows}

    def get_all_overrides(self) -> dict[str, dict[str, bool]]:
        """Every override row as ``{role: {feature: allowed}}`` (raw role strings)."""
        with self._session("fetch role permissions") as session:
            rows = session.execute(select(RolePermissionDB)).scalars()
            overrides: dict[str, dict[str, bool]] = {}
            for row in rows:
                overrides.setdefault(row.role, {})[row.feature] = bool(row.allowed)
            return overrides

    def replace_overrides(self, matrix: Mapping[Role, Mapping[str, bool]]) -> int:
        """
        Replace all override rows for the roles in ``matrix``.

        Delete and insert run in one transaction. Returns rows written.
        """
        # One tick apart so a batch lists back in insertion order
        now = utcnow()
        rows = [
            RolePermissionDB(role=role.value, feature=feature, allowed=allowed, updated_at=now)
            for role, features in matrix.items()
            for feature, allowed in features.items()
        ]
        with self._session("replace role permissions") as session:
            session.execute(
                delete(RolePermissionDB).where(
                    RolePermissionDB.role.in_([r.value for r in matrix])
                )
            )
            session.add_all(rows)
            session.commit()
        logger.info("Role permission overrides replaced: %d rows", len(rows))
        return len(rows)

    # ── Review history ──────────────────────────────────────────

    def append_history(self, entry: ReviewHistoryEntry) -> ReviewHistoryEntry:
        """Append one audit row. This is the ONLY write to review_history."""
        row = ReviewHistoryDB(
            form_type=entry.kind.value,
            form_id=entry.record_id,
            from_status=entry.from_status.value,
            to_status=entry.to_status.value,
            actor_id=entry.actor_id,
            actor_role=entry.actor_role.value,
            note=entry.note,
            created_at=entry.created_at or utcnow(),
        )
        with self._session("append review history") as session:
            session.add(row)
            session.commit()
            return _history(row)

    def list_history(self, kind: RecordKind, record_id: int) -> list[ReviewHistoryEntry]:
        with self._session("list review history") as session:
            rows = session.execute(
                select(ReviewHistoryDB)
                .where(
                    ReviewHistoryDB.form_type == kind.value,
                    ReviewHistoryDB.form_id == record_id,
                )
                .order_by(ReviewHistoryDB.created_at.asc(), ReviewHistoryDB.id.asc())
            ).scalars()
            return [_history(row) for row in rows]

    # ── Comments ────────────────────────────────────────────────

    def insert_comments(self, comments: Iterable[Mapping[str, Any]]) -> list[ReviewComment]:
        """
        Insert one or more comments.

        Each mapping carries ``kind``, ``record_id``, ``comment_text``,
        ``author_id``, ``author_role`` and optionally ``field_name``,
        ``suggested_value`` and ``parent_id``.
        """
        now = utcnow()
        rows = [
            FormCommentDB(
                id=str(uuid4()),
                form_type=RecordKind(c["kind"]).value,
                form_id=c["record_id"],
                field_name=c.get("field_name"),
                comment_text=c["comment_text"],
                suggested_value=c.get("suggested_value"),
                author_id=c["author_id"],
                author_role=Role(c["author_role"]).value,
                parent_id=c.get("parent_id"),
                is_resolved=False,
                # One tick apart so a batch lists back in insertion order
                created_at=now + timedelta(microseconds=i),
            )
            for i, c in enumerate(comments)
        ]
        if not rows:
            return []
        with self._session("insert comments") as session:
            session.add_all(rows)
            session.commit()
            return [_comment(row) for row in rows]

    def list_comments(
        self,
        kind: RecordKind,
        record_id: int,
        top_level_only: bool = False,
    ) -> list[ReviewComment]:
        """Comments on one record, oldest first."""
        stmt = select(FormCommentDB).where(
            FormCommentDB.form_type == kind.value,
            FormCommentDB.form_id == record_id,
        )
        if top_level_only:
            stmt = stmt.where(FormCommentDB.parent_id.is_(None))
        stmt = stmt.order_by(FormCommentDB.created_at.asc())
        with self._session("list comments") as session:
            return [_comment(row) for row in session.execute(stmt).scalars()]

    def set_comment_resolved(
        self,
        kind: RecordKind,
        record_id: int,
        comment_id: str,
        resolved: bool,
    ) -> ReviewComment | None:
        with self._session("update comment") as session:
            row = session.execute(
                select(FormCommentDB).where(
                    FormCommentDB.id == comment_id,
                    FormCommentDB.form_type == kind.value,
                    FormCommentDB.form_id == record_id,
                )
            ).scalar_one_or_none()
            if row is None:
                return None
            row.is_resolved = resolved
            row.updated_at = utcnow()
            session.commit()
            return _comment(row)


# ── Row conversion ──────────────────────────────────────────────


def _db_value(value: Any) -> Any:
    """Store enum members by value."""
    if isinstance(value, (Role, RecordStatus, RecordKind)):
        return value.value
    return value


def _record(kind: RecordKind, row: RecordColumns) -> ReviewRecord:
    data = {name: getattr(row, name) for name in _RECORD_COLUMNS}
    data["form_data"] = dict(data["form_data"] or {})
    return ReviewRecord(kind=kind, id=row.id, **data)


def _user(row: UserDB) -> UserProfile:
    return UserProfile(
        id=row.id,
        email=row.email,
        full_name=row.full_name,
        role=Role.coerce(row.role),
        municipality=row.municipality,
        laoo_level=row.laoo_level,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _history(row: ReviewHistoryDB) -> ReviewHistoryEntry:
    return ReviewHistoryEntry(
        id=row.id,
        kind=RecordKind(row.form_type),
        record_id=row.form_id,
        from_status=RecordStatus(row.from_status),
        to_status=RecordStatus(row.to_status),
        actor_id=row.actor_id,
        actor_role=Role.coerce(row.actor_role),
        note=row.note,
        created_at=row.created_at,
    )


def _comment(row: FormCommentDB) -> ReviewComment:
    return ReviewComment(
        id=row.id,
        kind=RecordKind(row.form_type),
        record_id=row.form_id,
        field_name=row.field_name,
        comment_text=row.comment_text,
        suggested_value=row.suggested_value,
        author_id=row.author_id,
        author_role=Role.coerce(row.author_role),
        parent_id=row.parent_id,
        is_resolved=bool(row.is_resolved),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
