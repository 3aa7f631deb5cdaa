"""
Comment/Annotation Store — field-level review comments on records.

Comments form at most one level of replies through ``parent_id``. The store
does not check that a parent exists; the UI only ever offers replies to
top-level comments.
"""

from __future__ import annotations

import logging

from rpfaas_review.workflow.actions import parse_kind
from rpfaas_review.workflow.errors import (
    BadRequest,
    Forbidden,
    NotFound,
    StoreFailure,
    Unauthorized,
)
from rpfaas_review.workflow.schema import (
    COMMENT_ROLES,
    REVIEW_ROLES,
    SUBMIT_ROLES,
    RecordKind,
    ReviewComment,
    Role,
)

logger = logging.getLogger(__name__)


def snapshot_role(role: Role) -> Role:
    """Role recorded on a comment; roles outside the comment roles record as admin."""
    return role if role in COMMENT_ROLES else Role.ADMIN


class CommentService:
    """Adds, lists and resolves review comments."""

    def __init__(self, store) -> None:
        self.store = store

    def add_comment(
        self,
        kind: str | RecordKind,
        record_id: int,
        author_id: str,
        text: str | None,
        field_refs: str | list[str] | None = None,
        suggested_value: str | None = None,
        parent_id: str | None = None,
    ) -> ReviewComment:
        """
        Add a comment or a reply.

        Args:
            kind: Record kind.
            record_id: Record id within its kind.
            author_id: Authenticated principal id.
            text: Comment body; surrounding whitespace is stripped.
            field_refs: Field identifiers the comment refers to, as a list or
                a comma-separated string.
            suggested_value: Reviewer's proposed value for the field.
            parent_id: Comment being replied to. Not validated.

        Raises:
            BadRequest: Empty comment text or unknown kind.
            Unauthorized: The author has no user profile.
        """
        kind = parse_kind(kind)
        body = (text or "").strip()
        if not body:
            raise BadRequest("comment_text is required")
        if not author_id:
            raise Unauthorized()

        profile = self.store.get_user(author_id)
        if profile is None:
            raise Unauthorized("User profile not found")

        if isinstance(field_refs, (list, tuple)):
            field_name = ",".join(f.strip() for f in field_refs if f and f.strip()) or None
        else:
            field_name = field_refs or None

        created = self.store.insert_comments([{
            "kind": kind,
            "record_id": record_id,
            "field_name": field_name,
            "comment_text": body,
            "suggested_value": suggested_value,
            "author_id": author_id,
            "author_role": snapshot_role(profile.role),
            "parent_id": parent_id,
        }])[0]

        logger.info(
            "Comment added: %s#%d by %s (%s)%s",
            kind.value, record_id, author_id, created.author_role.value,
            f" reply to {parent_id}" if parent_id else "",
        )
        return created.model_copy(update={"author_name": profile.display_name})

    def list_comments(self, kind: str | RecordKind, record_id: int) -> list[ReviewComment]:
        """All comments on a record, oldest first, with author display names."""
        kind = parse_kind(kind)
        comments = self.store.list_comments(kind, record_id)
        if not comments:
            return []

        try:
            authors = self.store.get_users(c.author_id for c in comments)
        except StoreFailure:
            logger.warning("Author lookup failed for %s#%d", kind.value, record_id, exc_info=True)
            authors = {}

        return [
            c.model_copy(update={
                "author_name": (
                    authors[c.author_id].display_name if c.author_id in authors
                    else c.author_id
                ),
            })
            for c in comments
        ]

    def resolve_comment(
        self,
        kind: str | RecordKind,
        record_id: int,
        comment_id: str,
        actor_id: str,
        resolved: bool = True,
    ) -> ReviewComment:
        """
        Mark a comment resolved or reopen it.

        Raises:
            Unauthorized: No actor id.
            Forbidden: The actor neither reviews nor submits records.
            NotFound: No such comment on the record.
        """
        kind = parse_kind(kind)
        if not actor_id:
            raise Unauthorized()
        profile = self.store.get_user(actor_id)
        role = profile.role if profile is not None else Role.USER
        if role not in REVIEW_ROLES and role not in SUBMIT_ROLES:
            raise Forbidden("Your role may not resolve comments")

        updated = self.store.set_comment_resolved(kind, record_id, comment_id, resolved)
        if updated is None:
            raise NotFound(f"Comment {comment_id} not found")

        logger.info(
            "Comment %s: %s on %s#%d by %s",
            "resolved" if resolved else "reopened", comment_id, kind.value, record_id, actor_id,
        )
        return updated
