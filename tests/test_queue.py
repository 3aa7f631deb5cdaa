"""
Tests for the Review Queue Projector.

Validates:
- Default statuses and filters
- Ordering by submission time with unsubmitted records first, across kinds
- Municipality scoping for laoo reviewers
- Role restriction
- List caching and invalidation through the action processor
"""

from __future__ import annotations

import pytest

from conftest import add_record, add_user, make_store
from rpfaas_review.workflow.actions import ReviewActionProcessor
from rpfaas_review.workflow.cache import TagCache
from rpfaas_review.workflow.errors import BadRequest, Forbidden, Unauthorized
from rpfaas_review.workflow.permissions import PermissionResolver
from rpfaas_review.workflow.queue import ReviewQueueProjector, parse_statuses
from rpfaas_review.workflow.schema import (
    DEFAULT_QUEUE_STATUSES,
    RecordKind,
    RecordStatus,
    Role,
)


class TestReviewQueue:
    """Test queue projection over both record kinds."""

    def setup_method(self):
        self.store = make_store()
        self.cache = TagCache()
        self.resolver = PermissionResolver(self.store, self.cache)
        self.queue = ReviewQueueProjector(self.store, self.resolver, self.cache)

        add_user(self.store, "laoo-sagada", Role.LAOO, municipality="Sagada")
        add_user(self.store, "laoo-any", Role.LAOO)
        add_user(self.store, "pa-1", Role.PROVINCIAL_ASSESSOR)
        add_user(self.store, "tm-1", Role.TAX_MAPPER)

    def test_default_statuses(self):
        add_record(self.store, status=RecordStatus.DRAFT)
        submitted = add_record(self.store, status=RecordStatus.SUBMITTED, submitted_minutes=1)
        reviewing = add_record(self.store, status=RecordStatus.UNDER_REVIEW, submitted_minutes=2)
        add_record(self.store, status=RecordStatus.RETURNED, submitted_minutes=3)
        add_record(self.store, status=RecordStatus.APPROVED, submitted_minutes=4)

        items = self.queue.get_queue("pa-1")
        assert [i.id for i in items] == [submitted.id, reviewing.id]

    def test_orders_across_kinds_with_unsubmitted_first(self):
        b_late = add_record(self.store, RecordKind.BUILDING, RecordStatus.SUBMITTED, submitted_minutes=30)
        l_early = add_record(self.store, RecordKind.LAND, RecordStatus.SUBMITTED, submitted_minutes=5)
        l_none = add_record(self.store, RecordKind.LAND, RecordStatus.SUBMITTED)
        b_mid = add_record(self.store, RecordKind.BUILDING, RecordStatus.UNDER_REVIEW, submitted_minutes=10)

        items = self.queue.get_queue("pa-1")

        assert [(i.kind, i.id) for i in items] == [
            (RecordKind.LAND, l_none.id),
            (RecordKind.LAND, l_early.id),
            (RecordKind.BUILDING, b_mid.id),
            (RecordKind.BUILDING, b_late.id),
        ]
        assert items[0].submitted_at is None
        assert items[0].kind_label == "Land Improvement"
        assert items[2].kind_label == "Building & Structure"

    def test_scoped_reviewer_sees_only_own_municipality(self):
        sagada = add_record(self.store, status=RecordStatus.SUBMITTED, municipality="Sagada", submitted_minutes=1)
        add_record(self.store, status=RecordStatus.SUBMITTED, municipality="Bontoc", submitted_minutes=2)
        sagada_land = add_record(
            self.store, RecordKind.LAND, RecordStatus.UNDER_REVIEW,
            municipality="sagada", submitted_minutes=3,
        )

        items = self.queue.get_queue("laoo-sagada")

        assert [(i.kind, i.id) for i in items] == [
            (RecordKind.BUILDING, sagada.id),
            (RecordKind.LAND, sagada_land.id),
        ]
        assert all(i.location_municipality.lower() == "sagada" for i in items)

    def test_laoo_without_municipality_is_unscoped(self):
        add_record(self.store, status=RecordStatus.SUBMITTED, municipality="Sagada")
        add_record(self.store, status=RecordStatus.SUBMITTED, municipality="Bontoc")
        assert len(self.queue.get_queue("laoo-any")) == 2

    def test_status_filter(self):
        add_record(self.store, status=RecordStatus.SUBMITTED)
        returned = add_record(self.store, status=RecordStatus.RETURNED)
        items = self.queue.get_queue("pa-1", status_filter="returned")
        assert [i.id for i in items] == [returned.id]

    def test_kind_filter(self):
        add_record(self.store, RecordKind.BUILDING, RecordStatus.SUBMITTED)
        land = add_record(self.store, RecordKind.LAND, RecordStatus.SUBMITTED)
        items = self.queue.get_queue("pa-1", kind_filter="land")
        assert [(i.kind, i.id) for i in items] == [(RecordKind.LAND, land.id)]

    def test_invalid_filters(self):
        with pytest.raises(BadRequest):
            self.queue.get_queue("pa-1", status_filter="pending")
        with pytest.raises(BadRequest):
            self.queue.get_queue("pa-1", kind_filter="machinery")

    def test_non_reviewer_forbidden(self):
        with pytest.raises(Forbidden):
            self.queue.get_queue("tm-1")
        with pytest.raises(Forbidden):
            self.queue.get_queue("stranger")

    def test_missing_actor_unauthorized(self):
        with pytest.raises(Unauthorized):
            self.queue.get_queue("")

    def test_queue_reflects_actions_despite_cache(self):
        processor = ReviewActionProcessor(self.store, self.resolver, self.cache)
        record = add_record(self.store, status=RecordStatus.SUBMITTED)

        first = self.queue.get_queue("pa-1")
        assert first[0].status == RecordStatus.SUBMITTED
        assert self.queue.get_queue("pa-1") == first

        processor.review(RecordKind.BUILDING, record.id, "pa-1", "claim")

        second = self.queue.get_queue("pa-1")
        assert second[0].status == RecordStatus.UNDER_REVIEW
        assert second[0].laoo_reviewer_id == "pa-1"


class TestParseStatuses:
    def test_none_gives_defaults(self):
        assert parse_statuses(None) == DEFAULT_QUEUE_STATUSES
        assert parse_statuses("") == DEFAULT_QUEUE_STATUSES

    def test_comma_separated(self):
        assert parse_statuses("returned, approved,returned") == (
            RecordStatus.RETURNED,
            RecordStatus.APPROVED,
        )

    def test_enum_and_iterable(self):
        assert parse_statuses(RecordStatus.DRAFT) == (RecordStatus.DRAFT,)
        assert parse_statuses(["submitted"]) == (RecordStatus.SUBMITTED,)
