"""
Role/Permission Resolver — maps a principal to a role and a feature map.

Resolution order for an ordinary role:

1. the hardcoded default map for the role (``DEFAULT_PERMISSIONS``)
2. overlaid entry by entry with the persisted overrides for that role

``super_admin`` short-circuits to an all-true map; overrides never apply to
it, even an explicit ``false`` row.

Results are cached per principal for a short TTL. Any mutation of the
override table or of a user's role must call :meth:`PermissionResolver.invalidate`.
Lookup failures degrade to the unprivileged role instead of failing the
request.
"""

from __future__ import annotations

import logging
from typing import Mapping

from rpfaas_review.workflow.cache import TagCache
from rpfaas_review.workflow.errors import BadRequest, Forbidden, StoreFailure
from rpfaas_review.workflow.schema import (
    DEFAULT_PERMISSIONS,
    FEATURES,
    ROLE_ADMIN_ROLES,
    Actor,
    PermissionSet,
    Role,
)

logger = logging.getLogger(__name__)

PERMISSIONS_TAG = "permissions"


def principal_tag(principal_id: str) -> str:
    return f"principal:{principal_id}"


def _complete(loaded: tuple[object, bool]) -> bool:
    return loaded[1]


class PermissionResolver:
    """
    Central role and permission resolution.

    Shared by every workflow component: the action processor and queue
    projector call :meth:`resolve_actor`; the API's ``/my-permissions`` calls
    :meth:`get_permissions`; the role administration screen uses
    :meth:`role_matrix` and :meth:`replace_overrides`.
    """

    def __init__(
        self,
        store,
        cache: TagCache | None = None,
        ttl_seconds: float = 30,
        defaults: Mapping[Role, Mapping[str, bool]] = DEFAULT_PERMISSIONS,
    ) -> None:
        """
        Args:
            store: The RecordStore (users and role_permissions tables).
            cache: Shared tag cache; a private one is created if omitted.
            ttl_seconds: How long a resolved principal stays cached.
            defaults: Default permission table, one read-only map per role.
        """
        self.store = store
        self.cache = cache if cache is not None else TagCache(default_ttl=ttl_seconds)
        self.ttl_seconds = ttl_seconds
        self.defaults = defaults

    # ── Principals ──────────────────────────────────────────────

    def resolve_actor(self, principal_id: str) -> Actor:
        """Look up the principal's profile. Unknown principals are unprivileged."""
        actor, _ = self.cache.get_or_load(
            f"actor:{principal_id}",
            loader=lambda: self._load_actor(principal_id),
            tags=self._tags(principal_id),
            ttl=self.ttl_seconds,
            cache_if=_complete,
        )
        return actor

    def _load_actor(self, principal_id: str) -> tuple[Actor, bool]:
        try:
            profile = self.store.get_user(principal_id)
        except StoreFailure:
            logger.warning(
                "Role lookup failed for %s; using unprivileged defaults", principal_id,
            )
            return Actor(id=principal_id, role=Role.USER), False

        if profile is None:
            return Actor(id=principal_id, role=Role.USER), True
        actor = Actor(
            id=profile.id,
            role=profile.role,
            municipality=profile.municipality,
            full_name=profile.full_name,
            email=profile.email,
        )
        return actor, True

    def get_permissions(self, principal_id: str) -> PermissionSet:
        """Return ``{role, permissions}`` for a principal."""
        # Degraded results are served but not cached.
        permission_set, _ = self.cache.get_or_load(
            f"permissions:{principal_id}",
            loader=lambda: self._load_permissions(principal_id),
            tags=self._tags(principal_id),
            ttl=self.ttl_seconds,
            cache_if=_complete,
        )
        return permission_set

    def _load_permissions(self, principal_id: str) -> tuple[PermissionSet, bool]:
        actor, actor_complete = self._load_actor(principal_id)
        permission_set, overlay_complete = self._resolve_role(actor.role)
        return permission_set, actor_complete and overlay_complete

    # ── Roles ───────────────────────────────────────────────────

    def permissions_for_role(self, role: Role) -> PermissionSet:
        """Defaults for ``role`` with persisted overrides layered on top."""
        return self._resolve_role(role)[0]

    def _resolve_role(self, role: Role) -> tuple[PermissionSet, bool]:
        if role == Role.SUPER_ADMIN:
            return PermissionSet(role=role, permissions=dict.fromkeys(FEATURES, True)), True

        permissions = dict(self.defaults.get(role, {}))
        try:
            overrides = self.store.get_overrides(role)
        except StoreFailure:
            logger.warning("Override lookup failed for role %s; using defaults", role.value)
            return PermissionSet(role=role, permissions=permissions), False

        for feature, allowed in overrides.items():
            permissions[feature] = allowed
        return PermissionSet(role=role, permissions=permissions), True

    def role_matrix(self, actor: Actor) -> dict[str, dict[str, bool]]:
        """
        Effective permissions for every role, for the role administration screen.

        Raises:
            Forbidden: If the actor may not manage roles.
        """
        self._require_role_admin(actor)
        overrides = self.store.get_all_overrides()

        matrix: dict[str, dict[str, bool]] = {}
        for role in Role:
            features = dict(self.defaults.get(role, {}))
            features.update(overrides.get(role.value, {}))
            matrix[role.value] = features

        matrix[Role.SUPER_ADMIN.value] = dict.fromkeys(FEATURES, True)
        return matrix

    def replace_overrides(
        self,
        actor: Actor,
        incoming: Mapping[str, Mapping[str, bool]],
    ) -> dict[str, dict[str, bool]]:
        """
        Replace the override table with ``incoming`` for every editable role.

        Every editable role gets a row per feature; features missing from
        ``incoming`` are stored as ``false``. ``super_admin`` is never
        written.

        Raises:
            Forbidden: If the actor may not manage roles.
            BadRequest: If ``incoming`` names an unknown role or feature.
        """
        self._require_role_admin(actor)

        known_roles = {r.value for r in Role}
        unknown_roles = sorted(set(incoming) - known_roles)
        if unknown_roles:
            raise BadRequest(f"Unknown roles: {', '.join(unknown_roles)}")
        unknown_features = sorted({
            feature for features in incoming.values() for feature in features
        } - set(FEATURES))
        if unknown_features:
            raise BadRequest(f"Unknown features: {', '.join(unknown_features)}")

        matrix = {
            role: {
                feature: bool(incoming.get(role.value, {}).get(feature, False))
                for feature in FEATURES
            }
            for role in Role
            if role != Role.SUPER_ADMIN
        }
        self.store.replace_overrides(matrix)
        self.invalidate()

        logger.info("Role permissions replaced by %s", actor.id)
        return self.role_matrix(actor)

    # ── Cache ───────────────────────────────────────────────────

    def invalidate(self, principal_id: str | None = None) -> None:
        """Drop cached resolutions for one principal, or for everyone."""
        if principal_id is None:
            self.cache.invalidate_tag(PERMISSIONS_TAG)
        else:
            self.cache.invalidate_tag(principal_tag(principal_id))

    @staticmethod
    def _tags(principal_id: str) -> tuple[str, str]:
        return (PERMISSIONS_TAG, principal_tag(principal_id))

    @staticmethod
    def _require_role_admin(actor: Actor) -> None:
        if actor.role not in ROLE_ADMIN_ROLES:
            raise Forbidden("Forbidden: Super Admin access required")
