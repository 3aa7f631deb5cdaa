"""
User administration — role and scope assignment for principals.

Role and municipality changes alter what a principal may do, so every such
change invalidates that principal's cached permissions.
"""

from __future__ import annotations

import logging
from typing import Any

from rpfaas_review.workflow.errors import BadRequest, Forbidden, NotFound
from rpfaas_review.workflow.schema import (
    ROLE_ADMIN_ROLES,
    USER_ADMIN_ROLES,
    Actor,
    Role,
    UserProfile,
)

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class UserAdminService:
    """Lists and updates user profiles on behalf of an administrator."""

    def __init__(self, store, resolver) -> None:
        self.store = store
        self.resolver = resolver

    def list_users(self, actor: Actor) -> list[UserProfile]:
        self._require_admin(actor)
        return self.store.list_users()

    def update_user(
        self,
        actor: Actor,
        user_id: str,
        role: str | Role | None = _UNSET,
        municipality: str | None = _UNSET,
        full_name: str | None = _UNSET,
        is_active: bool | None = _UNSET,
    ) -> UserProfile:
        """
        Update selected fields of a user profile.

        Only arguments that are passed are written; ``municipality=None``
        clears the scope.

        Raises:
            Forbidden: The actor is not an administrator, or a non-super
                administrator assigns or edits a super_admin.
            BadRequest: Unknown role.
            NotFound: No such user.
        """
        self._require_admin(actor)

        existing = self.store.get_user(user_id)
        if existing is None:
            raise NotFound(f"User {user_id} not found")

        changes: dict[str, Any] = {}
        if role is not _UNSET and role is not None:
            try:
                new_role = Role(role)
            except ValueError:
                raise BadRequest(f"Unknown role: {role}") from None
            changes["role"] = new_role
        if municipality is not _UNSET:
            changes["municipality"] = municipality or None
        if full_name is not _UNSET and full_name is not None:
            changes["full_name"] = full_name
        if is_active is not _UNSET and is_active is not None:
            changes["is_active"] = bool(is_active)

        touches_super = (
            existing.role == Role.SUPER_ADMIN or changes.get("role") == Role.SUPER_ADMIN
        )
        if touches_super and actor.role not in ROLE_ADMIN_ROLES:
            raise Forbidden("Forbidden: Super Admin access required")

        if not changes:
            return existing

        updated = self.store.save_user(user_id, **changes)
        if "role" in changes or "municipality" in changes:
            self.resolver.invalidate(user_id)

        logger.info(
            "User %s updated by %s: %s",
            user_id, actor.id, ", ".join(sorted(changes)),
        )
        return updated

    @staticmethod
    def _require_admin(actor: Actor) -> None:
        if actor.role not in USER_ADMIN_ROLES:
            raise Forbidden("Forbidden: Admin access required")
