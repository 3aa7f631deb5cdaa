"""
Review Action Processor — the only entry point that changes a record's status.

Every action follows the same sequence:

1. resolve the actor and check role eligibility for the action
2. fetch the record
3. enforce municipality scope for review actions
4. validate the transition against the single transition table
5. apply the update, conditional on the status read in step 2
6. append the audit entry (best effort)
7. on re-submission, post change-tracking replies (best effort)
8. invalidate cached list views of the record kind

Steps 1-4 raise before anything is written. The audit entry and the
change-tracking replies are separate writes; their failure is logged and
never fails an action whose status update already succeeded.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from rpfaas_review.store.service import utcnow
from rpfaas_review.workflow.cache import TagCache
from rpfaas_review.workflow.errors import (
    BadRequest,
    Conflict,
    Forbidden,
    NotFound,
    Unauthorized,
)
from rpfaas_review.workflow.schema import (
    COMMENT_ROLES,
    REVIEW_ACTIONS,
    Actor,
    RecordKind,
    RecordStatus,
    ReviewAction,
    ReviewHistoryEntry,
    ReviewRecord,
    Role,
)
from rpfaas_review.workflow.transitions import TransitionError, validate

logger = logging.getLogger(__name__)

INITIAL_SUBMISSION_NOTE = "Initial submission for review"
RESUBMISSION_NOTE = "Re-submitted after addressing review comments"

# Authors whose comments are the submitter's own side of a thread; their
# comments never get change-tracking replies.
SUBMITTER_TIER_ROLES: frozenset[Role] = frozenset({
    Role.TAX_MAPPER,
    Role.MUNICIPAL_TAX_MAPPER,
})


def records_tag(kind: RecordKind) -> str:
    return f"records:{kind.value}"


def parse_kind(kind: str | RecordKind) -> RecordKind:
    try:
        return RecordKind(kind)
    except ValueError:
        raise BadRequest(f"Unknown record kind: {kind}") from None


def parse_action(action: str | ReviewAction) -> ReviewAction:
    try:
        return ReviewAction(action)
    except ValueError:
        raise BadRequest(f"Unknown action: {action}") from None


def best_effort(description: str, write: Callable[[], Any]) -> Any | None:
    """Run a secondary write; log and swallow any failure."""
    try:
        return write()
    except Exception:
        logger.warning("Best-effort write failed: %s", description, exc_info=True)
        return None


class ReviewActionProcessor:
    """
    Executes submit, claim, return and approve against a record.

    Usage:
        processor = ReviewActionProcessor(store, resolver, cache)
        record = processor.review("building", 42, reviewer_id, "claim")
    """

    def __init__(self, store, resolver, cache: TagCache | None = None) -> None:
        """
        Args:
            store: The RecordStore.
            resolver: PermissionResolver used to look up the acting principal.
            cache: Shared tag cache holding list views; skipped if omitted.
        """
        self.store = store
        self.resolver = resolver
        self.cache = cache

    def submit(
        self,
        kind: str | RecordKind,
        record_id: int,
        actor_id: str,
    ) -> ReviewRecord:
        """Submit a draft, or re-submit a returned record."""
        return self.perform_action(kind, record_id, actor_id, ReviewAction.SUBMIT)

    def review(
        self,
        kind: str | RecordKind,
        record_id: int,
        actor_id: str,
        action: str | ReviewAction,
        note: str | None = None,
    ) -> ReviewRecord:
        """
        Apply a reviewer action (claim, return or approve).

        Raises:
            BadRequest: If ``action`` is not a review action.
        """
        act = parse_action(action)
        if act not in REVIEW_ACTIONS:
            raise BadRequest(
                f"Invalid action: {act.value}. Must be claim, return, or approve"
            )
        return self.perform_action(kind, record_id, actor_id, act, note=note)

    def perform_action(
        self,
        kind: str | RecordKind,
        record_id: int,
        actor_id: str,
        action: str | ReviewAction,
        note: str | None = None,
    ) -> ReviewRecord:
        """
        Apply ``action`` to one record on behalf of ``actor_id``.

        Args:
            kind: Record kind (``building`` or ``land``).
            record_id: Record id within its kind.
            actor_id: Authenticated principal id.
            action: submit, claim, return or approve.
            note: Free-text reviewer note, stored on the audit entry.

        Returns:
            The record as it reads after the update.

        Raises:
            BadRequest: Unknown kind or action.
            Unauthorized: No actor id.
            Forbidden: Actor's role may not perform ``action``, or the record
                is outside the actor's municipality.
            NotFound: No such record.
            Conflict: The transition is illegal from the record's status, or
                the status changed while the action was being processed.
            StoreFailure: The record could not be read or updated.
        """
        kind = parse_kind(kind)
        act = parse_action(action)

        # 1. Actor
        if not actor_id:
            raise Unauthorized()
        actor = self.resolver.resolve_actor(actor_id)
        if not actor.can(act):
            raise Forbidden(f"Your role is not allowed to {act.value} records")

        # 2. Record
        record = self.store.get_record(kind, record_id)
        if record is None:
            raise NotFound(f"{kind.label} record {record_id} not found")

        # 3. Scope
        if act in REVIEW_ACTIONS:
            self._check_scope(actor, record)

        # 4. Transition
        try:
            target = validate(act, record.status)
        except TransitionError as exc:
            raise Conflict(str(exc)) from None

        # 5. Conditional update
        now = utcnow()
        values: dict[str, Any] = {"status": target, "updated_at": now}
        if act == ReviewAction.SUBMIT:
            values["submitted_at"] = now
        if act in (ReviewAction.CLAIM, ReviewAction.APPROVE):
            values["laoo_reviewer_id"] = actor.id
        if act == ReviewAction.APPROVE:
            values["laoo_approved_at"] = now

        updated = self.store.update_record_status(
            kind, record_id, expected_status=record.status, values=values,
        )
        if updated is None:
            raise Conflict(
                f"Record status changed while processing {act.value}; reload and try again"
            )

        logger.info(
            "Review action: %s %s#%d %s -> %s by %s (%s)",
            act.value, kind.value, record_id,
            record.status.value, target.value, actor.id, actor.role.value,
        )

        # 6. Audit
        if act == ReviewAction.SUBMIT:
            note = (
                RESUBMISSION_NOTE if record.status == RecordStatus.RETURNED
                else INITIAL_SUBMISSION_NOTE
            )
        entry = ReviewHistoryEntry(
            kind=kind,
            record_id=record_id,
            from_status=record.status,
            to_status=target,
            actor_id=actor.id,
            actor_role=actor.role,
            note=note,
            created_at=now,
        )
        best_effort(
            f"audit entry for {kind.value}#{record_id}",
            lambda: self.store.append_history(entry),
        )

        # 7. Change tracking
        if act == ReviewAction.SUBMIT and record.status == RecordStatus.RETURNED:
            best_effort(
                f"change-tracking replies for {kind.value}#{record_id}",
                lambda: self._post_change_tracking(actor, updated),
            )

        # 8. List views
        if self.cache is not None:
            self.cache.invalidate_tag(records_tag(kind))

        return updated

    # ── Helpers ─────────────────────────────────────────────────

    @staticmethod
    def _check_scope(actor: Actor, record: ReviewRecord) -> None:
        scope = actor.municipality_scope
        if scope is None:
            return
        municipality = record.location_municipality or ""
        if municipality.lower() != scope.lower():
            raise Forbidden("Record is outside your municipality")

    def _post_change_tracking(self, actor: Actor, record: ReviewRecord) -> int:
        """
        Reply to each reviewer comment with the current values of the fields
        it references. Returns the number of replies written.
        """
        comments = self.store.list_comments(record.kind, record.id, top_level_only=True)
        author_role = actor.role if actor.role in COMMENT_ROLES else Role.ADMIN

        replies = []
        for comment in comments:
            if comment.author_role in SUBMITTER_TIER_ROLES:
                continue
            parts = []
            for field in comment.field_refs:
                value = record.display_value(field)
                if not value:
                    continue
                parts.append(f"{field}: {value}")
            if not parts:
                continue
            replies.append({
                "kind": record.kind,
                "record_id": record.id,
                "field_name": comment.field_name,
                "comment_text": "Tax mapper updated values - " + " | ".join(parts),
                "author_id": actor.id,
                "author_role": author_role,
                "parent_id": comment.id,
            })

        if replies:
            self.store.insert_comments(replies)
            logger.info(
                "Change-tracking replies posted: %s#%d (%d)",
                record.kind.value, record.id, len(replies),
            )
        return len(replies)
