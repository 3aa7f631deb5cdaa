"""
Review Workflow Schema — Pydantic models and enumerations for RPFAAS review.

These are the canonical data structures shared by the permission resolver,
the transition validator, the action processor, the queue projector, the
comment store and the HTTP API. The store layer converts its ORM rows into
these models; nothing above the store sees SQLAlchemy objects.

Closed sets live here as enums: roles, record kinds, statuses and actions.
Each capability (submit, review, user administration, role administration)
has exactly one allow-list, expressed as a frozenset over ``Role``.
"""

from __future__ import annotations

import enum
import json
from datetime import datetime
from types import MappingProxyType
from typing import Any, Callable, Mapping

from pydantic import BaseModel, Field, computed_field


# ════════════════════════════════════════════════════════════════
# Enumerations
# ════════════════════════════════════════════════════════════════


class Role(str, enum.Enum):
    """Roles an authenticated principal may hold. Exactly one per user."""

    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    TAX_MAPPER = "tax_mapper"
    MUNICIPAL_TAX_MAPPER = "municipal_tax_mapper"
    LAOO = "laoo"  # Local Assessment Operations Officer
    ASSISTANT_PROVINCIAL_ASSESSOR = "assistant_provincial_assessor"
    PROVINCIAL_ASSESSOR = "provincial_assessor"
    ACCOUNTANT = "accountant"
    USER = "user"

    @classmethod
    def coerce(cls, value: str | Role | None) -> Role:
        """Parse a stored role string, falling back to the unprivileged role."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.USER


class RecordKind(str, enum.Enum):
    """The two kinds of submittable assessment forms."""

    BUILDING = "building"
    LAND = "land"

    @property
    def table_name(self) -> str:
        return _KIND_TABLES[self]

    @property
    def label(self) -> str:
        return _KIND_LABELS[self]


_KIND_TABLES = {
    RecordKind.BUILDING: "building_structures",
    RecordKind.LAND: "land_improvements",
}

_KIND_LABELS = {
    RecordKind.BUILDING: "Building & Structure",
    RecordKind.LAND: "Land Improvement",
}


class RecordStatus(str, enum.Enum):
    """Position of a record in the review lifecycle."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    RETURNED = "returned"
    APPROVED = "approved"


class ReviewAction(str, enum.Enum):
    """Actions that move a record between statuses."""

    SUBMIT = "submit"
    CLAIM = "claim"
    RETURN = "return"
    APPROVE = "approve"


# ════════════════════════════════════════════════════════════════
# Capability allow-lists
# ════════════════════════════════════════════════════════════════

SUBMIT_ROLES: frozenset[Role] = frozenset({
    Role.TAX_MAPPER,
    Role.MUNICIPAL_TAX_MAPPER,
    Role.ADMIN,
    Role.SUPER_ADMIN,
})

REVIEW_ROLES: frozenset[Role] = frozenset({
    Role.LAOO,
    Role.ASSISTANT_PROVINCIAL_ASSESSOR,
    Role.PROVINCIAL_ASSESSOR,
    Role.ADMIN,
    Role.SUPER_ADMIN,
})

USER_ADMIN_ROLES: frozenset[Role] = frozenset({Role.ADMIN, Role.SUPER_ADMIN})

ROLE_ADMIN_ROLES: frozenset[Role] = frozenset({Role.SUPER_ADMIN})

# Roles that may appear as a comment's author_role snapshot. Anything else
# is recorded as ADMIN.
COMMENT_ROLES: frozenset[Role] = frozenset({
    Role.LAOO,
    Role.TAX_MAPPER,
    Role.MUNICIPAL_TAX_MAPPER,
    Role.ADMIN,
    Role.SUPER_ADMIN,
    Role.ASSISTANT_PROVINCIAL_ASSESSOR,
    Role.PROVINCIAL_ASSESSOR,
})

# Roles whose queue and actions are restricted to their own municipality.
MUNICIPALITY_SCOPED_ROLES: frozenset[Role] = frozenset({Role.LAOO})

REVIEW_ACTIONS: frozenset[ReviewAction] = frozenset({
    ReviewAction.CLAIM,
    ReviewAction.RETURN,
    ReviewAction.APPROVE,
})

ACTION_ROLES: Mapping[ReviewAction, frozenset[Role]] = MappingProxyType({
    ReviewAction.SUBMIT: SUBMIT_ROLES,
    ReviewAction.CLAIM: REVIEW_ROLES,
    ReviewAction.RETURN: REVIEW_ROLES,
    ReviewAction.APPROVE: REVIEW_ROLES,
})

DEFAULT_QUEUE_STATUSES: tuple[RecordStatus, ...] = (
    RecordStatus.SUBMITTED,
    RecordStatus.UNDER_REVIEW,
)


# ════════════════════════════════════════════════════════════════
# Default permission table
# ════════════════════════════════════════════════════════════════

FEATURES: tuple[str, ...] = (
    "building_structures.view",
    "building_structures.create",
    "building_structures.edit",
    "building_structures.delete",
    "land_improvements.view",
    "land_improvements.create",
    "land_improvements.edit",
    "land_improvements.delete",
    "machinery.view",
    "machinery.create",
    "machinery.edit",
    "machinery.delete",
    "accounting.view",
    "user_management.view",
    "user_management.create",
    "user_management.edit",
    "user_management.delete",
    "role_management.view",
    "role_management.edit",
    "dashboard.view",
)


def _grant(*granted: str) -> Mapping[str, bool]:
    """Build a read-only feature map with only ``granted`` features enabled."""
    unknown = set(granted) - set(FEATURES)
    if unknown:
        raise ValueError(f"Unknown features: {sorted(unknown)}")
    return MappingProxyType({feature: feature in granted for feature in FEATURES})


_FORM_FEATURES = tuple(
    f for f in FEATURES
    if f.split(".")[0] in ("building_structures", "land_improvements", "machinery")
)
_FORM_VIEW = tuple(f for f in _FORM_FEATURES if f.endswith(".view"))
_FORM_EDIT = tuple(f for f in _FORM_FEATURES if not f.endswith(".delete"))
_USER_MANAGEMENT = tuple(f for f in FEATURES if f.startswith("user_management."))

DEFAULT_PERMISSIONS: Mapping[Role, Mapping[str, bool]] = MappingProxyType({
    Role.SUPER_ADMIN: _grant(*FEATURES),
    Role.ADMIN: _grant(
        *_FORM_FEATURES, "accounting.view", *_USER_MANAGEMENT, "dashboard.view",
    ),
    Role.TAX_MAPPER: _grant(*_FORM_EDIT, "dashboard.view"),
    Role.MUNICIPAL_TAX_MAPPER: _grant(*_FORM_EDIT, "dashboard.view"),
    Role.LAOO: _grant(*_FORM_VIEW, "dashboard.view"),
    Role.ASSISTANT_PROVINCIAL_ASSESSOR: _grant(*_FORM_VIEW, "dashboard.view"),
    Role.PROVINCIAL_ASSESSOR: _grant(*_FORM_VIEW, "dashboard.view"),
    Role.ACCOUNTANT: _grant("accounting.view", "dashboard.view"),
    Role.USER: _grant("dashboard.view"),
})


# ════════════════════════════════════════════════════════════════
# Principals and permissions
# ════════════════════════════════════════════════════════════════


class Principal(BaseModel):
    """An authenticated identity as reported by the identity provider."""

    id: str
    email: str | None = None


class Actor(BaseModel):
    """A principal resolved against the users table."""

    id: str
    role: Role = Role.USER
    municipality: str | None = None
    full_name: str | None = None
    email: str | None = None

    @property
    def municipality_scope(self) -> str | None:
        """Municipality this actor is restricted to, or None if unrestricted."""
        if self.role in MUNICIPALITY_SCOPED_ROLES and self.municipality:
            return self.municipality
        return None

    def can(self, action: ReviewAction) -> bool:
        return self.role in ACTION_ROLES[action]


class PermissionSet(BaseModel):
    """Flattened feature permissions for one principal."""

    role: Role
    permissions: dict[str, bool] = Field(default_factory=dict)

    def allows(self, feature: str) -> bool:
        return self.permissions.get(feature, False)


class UserProfile(BaseModel):
    """Row of the users table, as exposed to administrators."""

    id: str
    email: str | None = None
    full_name: str | None = None
    role: Role = Role.USER
    municipality: str | None = None
    laoo_level: int | None = None
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.email or self.id


# ════════════════════════════════════════════════════════════════
# Records, queue items, history and comments
# ════════════════════════════════════════════════════════════════


class ReviewRecord(BaseModel):
    """One building/structure or land/improvement assessment form."""

    kind: RecordKind
    id: int
    owner_name: str | None = None
    location_municipality: str | None = None
    location_barangay: str | None = None
    status: RecordStatus = RecordStatus.DRAFT
    submitted_at: datetime | None = None
    updated_at: datetime | None = None
    created_at: datetime | None = None
    laoo_reviewer_id: str | None = None
    laoo_approved_at: datetime | None = None
    form_data: dict[str, Any] = Field(default_factory=dict)

    def field_value(self, field_name: str) -> Any:
        """Look up a field by column name, then in the free-form form data."""
        if field_name in type(self).model_fields and field_name != "form_data":
            return getattr(self, field_name)
        return self.form_data.get(field_name)

    def display_value(self, field_name: str) -> str:
        """
        Text shown to reviewers for a form field, or "" when it has no value.

        Field keys used by the review UI are resolved through
        ``FIELD_DISPLAY``; any other key is looked up as-is.
        """
        formatter = FIELD_DISPLAY.get(field_name)
        if formatter is not None:
            return formatter(self)
        return _display_text(self.field_value(field_name))


# ── Field display ───────────────────────────────────────────────


def _display_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, enum.Enum):
        return str(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def _source(column: str) -> Callable[[ReviewRecord], str]:
    """Field stored under a different column name."""
    return lambda record: _display_text(record.field_value(column))


def _year(column: str) -> Callable[[ReviewRecord], str]:
    return lambda record: _display_text(record.field_value(column))[:4]


def _material(column: str) -> Callable[[ReviewRecord], str]:
    """Material selections are stored as JSON; reviewers see their summary."""

    def fmt(record: ReviewRecord) -> str:
        value = record.field_value(column)
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError:
                return value
        if isinstance(value, dict) and value.get("summary"):
            return str(value["summary"])
        return _display_text(value)

    return fmt


def _owner_address(record: ReviewRecord) -> str:
    parts = [
        _display_text(record.field_value(column))
        for column in (
            "owner_address_province",
            "owner_address_municipality",
            "owner_address_barangay",
        )
    ]
    joined = ", ".join(p for p in parts if p)
    return joined or _display_text(record.field_value("owner_address"))


def _joined_list(column: str) -> Callable[[ReviewRecord], str]:
    def fmt(record: ReviewRecord) -> str:
        value = record.field_value(column)
        if isinstance(value, list):
            return ", ".join(_display_text(v) for v in value)
        return _display_text(value)

    return fmt


FIELD_DISPLAY: Mapping[str, Callable[[ReviewRecord], str]] = MappingProxyType({
    "owner_address": _owner_address,
    "unit_cost": _source("cost_of_construction"),
    "assessed_value": _source("estimated_value"),
    "completion_issued_on": _year("completion_issued_on"),
    "date_constructed": _year("date_constructed"),
    "date_occupied": _year("date_occupied"),
    "roofing_material": _material("roofing_material"),
    "flooring_material": _material("flooring_material"),
    "wall_material": _material("wall_material"),
    "selected_deductions": _joined_list("selected_deductions"),
})


class QueueItem(BaseModel):
    """A record projected into the review queue."""

    kind: RecordKind
    id: int
    owner_name: str | None = None
    location_municipality: str | None = None
    location_barangay: str | None = None
    status: RecordStatus
    submitted_at: datetime | None = None
    updated_at: datetime | None = None
    laoo_reviewer_id: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def kind_label(self) -> str:
        return self.kind.label


class ReviewHistoryEntry(BaseModel):
    """An immutable audit row describing one status transition."""

    id: int | None = None
    kind: RecordKind
    record_id: int
    from_status: RecordStatus
    to_status: RecordStatus
    actor_id: str
    actor_role: Role
    note: str | None = None
    created_at: datetime | None = None


class ReviewComment(BaseModel):
    """A field-level reviewer or submitter comment on a record."""

    id: str
    kind: RecordKind
    record_id: int
    field_name: str | None = None
    comment_text: str
    suggested_value: str | None = None
    author_id: str
    author_role: Role
    author_name: str | None = None
    parent_id: str | None = None
    is_resolved: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def field_refs(self) -> list[str]:
        """Field identifiers referenced by this comment."""
        return split_field_refs(self.field_name)


def split_field_refs(field_name: str | None) -> list[str]:
    """Split a comma-separated field reference string, dropping blanks."""
    if not field_name:
        return []
    return [f.strip() for f in field_name.split(",") if f.strip()]
