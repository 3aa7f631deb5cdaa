"""
Review Queue Projector — the list of records awaiting review for one actor.

The queue is a read-only projection over both record kinds. Per-kind query
results are cached under ``records:<kind>``; the action processor invalidates
that tag on every status change.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable

from rpfaas_review.workflow.actions import parse_kind, records_tag
from rpfaas_review.workflow.cache import TagCache
from rpfaas_review.workflow.errors import BadRequest, Forbidden, Unauthorized
from rpfaas_review.workflow.schema import (
    DEFAULT_QUEUE_STATUSES,
    REVIEW_ROLES,
    QueueItem,
    RecordKind,
    RecordStatus,
    ReviewRecord,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def parse_statuses(status_filter: str | RecordStatus | Iterable | None) -> tuple[RecordStatus, ...]:
    """
    Normalize a status filter.

    Accepts None (the default queue statuses), a single status, a
    comma-separated string, or an iterable of statuses.
    """
    if status_filter is None or status_filter == "":
        return DEFAULT_QUEUE_STATUSES
    if isinstance(status_filter, RecordStatus):
        values = [status_filter]
    elif isinstance(status_filter, str):
        values = [s.strip() for s in status_filter.split(",") if s.strip()]
    else:
        values = list(status_filter)

    statuses: list[RecordStatus] = []
    for value in values:
        try:
            status = RecordStatus(value)
        except ValueError:
            raise BadRequest(f"Unknown status: {value}") from None
        if status not in statuses:
            statuses.append(status)
    return tuple(statuses) or DEFAULT_QUEUE_STATUSES


def _submitted_order(item: QueueItem) -> tuple[bool, datetime]:
    """Sort key: unsubmitted first, then ascending submission time."""
    submitted = item.submitted_at
    if submitted is None:
        return (False, _EPOCH)
    if submitted.tzinfo is None:
        submitted = submitted.replace(tzinfo=timezone.utc)
    return (True, submitted)


def to_queue_item(record: ReviewRecord) -> QueueItem:
    return QueueItem(
        kind=record.kind,
        id=record.id,
        owner_name=record.owner_name,
        location_municipality=record.location_municipality,
        location_barangay=record.location_barangay,
        status=record.status,
        submitted_at=record.submitted_at,
        updated_at=record.updated_at,
        laoo_reviewer_id=record.laoo_reviewer_id,
    )


class ReviewQueueProjector:
    """Builds the review queue for a reviewer."""

    def __init__(
        self,
        store,
        resolver,
        cache: TagCache | None = None,
        ttl_seconds: float = 30,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    def get_queue(
        self,
        actor_id: str,
        status_filter: str | RecordStatus | Iterable | None = None,
        kind_filter: str | RecordKind | None = None,
    ) -> list[QueueItem]:
        """
        Records awaiting review, oldest submission first.

        Args:
            actor_id: Authenticated principal id.
            status_filter: Statuses to include; defaults to submitted and
                under_review.
            kind_filter: Restrict to one record kind; both kinds otherwise.

        Raises:
            Unauthorized: No actor id.
            Forbidden: The actor's role is not review-eligible.
            BadRequest: Unknown status or kind in a filter.
        """
        if not actor_id:
            raise Unauthorized()
        actor = self.resolver.resolve_actor(actor_id)
        if actor.role not in REVIEW_ROLES:
            raise Forbidden("Your role does not have access to the review queue")

        statuses = parse_statuses(status_filter)
        if kind_filter:
            kinds: tuple[RecordKind, ...] = (parse_kind(kind_filter),)
        else:
            kinds = tuple(RecordKind)
        municipality = actor.municipality_scope

        items: list[QueueItem] = []
        for kind in kinds:
            records = self._list(kind, statuses, municipality)
            items.extend(to_queue_item(r) for r in records)

        # Stable: ties keep per-kind store order, building before land.
        items.sort(key=_submitted_order)

        logger.debug(
            "Review queue for %s: %d items (statuses=%s, scope=%s)",
            actor.id, len(items), ",".join(s.value for s in statuses), municipality,
        )
        return items

    def _list(
        self,
        kind: RecordKind,
        statuses: tuple[RecordStatus, ...],
        municipality: str | None,
    ) -> list[ReviewRecord]:
        if self.cache is None:
            return self.store.list_records(kind, statuses, municipality=municipality)

        key = "records:{}:{}:{}".format(
            kind.value,
            ",".join(sorted(s.value for s in statuses)),
            (municipality or "*").lower(),
        )
        return self.cache.get_or_load(
            key,
            loader=lambda: self.store.list_records(kind, statuses, municipality=municipality),
            tags=(records_tag(kind),),
            ttl=self.ttl_seconds,
        )
