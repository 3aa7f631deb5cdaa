"""
Tests for the Comment/Annotation Store.

Validates:
- Text trimming and the empty-text rejection
- Author role snapshot and coercion
- Dangling parent ids are accepted
- Oldest-first listing with author display names
- Resolving comments
"""

from __future__ import annotations

import pytest

from conftest import add_record, add_user, make_store
from rpfaas_review.workflow.comments import CommentService, snapshot_role
from rpfaas_review.workflow.errors import BadRequest, Forbidden, NotFound, Unauthorized
from rpfaas_review.workflow.schema import COMMENT_ROLES, RecordKind, RecordStatus, Role


class TestAddComment:
    def setup_method(self):
        self.store = make_store()
        self.comments = CommentService(self.store)
        self.record = add_record(self.store, status=RecordStatus.UNDER_REVIEW)
        add_user(self.store, "laoo-1", Role.LAOO, full_name="Maria Santos")
        add_user(self.store, "acct-1", Role.ACCOUNTANT)

    def test_text_is_trimmed(self):
        comment = self.comments.add_comment(
            "building", self.record.id, "laoo-1", "  Check the floor area  ",
            field_refs="total_floor_area",
        )
        assert comment.comment_text == "Check the floor area"
        assert comment.field_refs == ["total_floor_area"]
        assert comment.author_role == Role.LAOO
        assert comment.author_name == "Maria Santos"
        assert comment.is_resolved is False

    @pytest.mark.parametrize("text", ["", "   ", None])
    def test_empty_text_rejected(self, text):
        with pytest.raises(BadRequest):
            self.comments.add_comment("building", self.record.id, "laoo-1", text)
        assert self.store.list_comments(RecordKind.BUILDING, self.record.id) == []

    def test_unknown_author_unauthorized(self):
        with pytest.raises(Unauthorized):
            self.comments.add_comment("building", self.record.id, "ghost", "Hello")

    def test_role_outside_comment_roles_recorded_as_admin(self):
        comment = self.comments.add_comment("building", self.record.id, "acct-1", "Noted")
        assert comment.author_role == Role.ADMIN

    def test_field_refs_list_joined(self):
        comment = self.comments.add_comment(
            "land", 3, "laoo-1", "Mismatch",
            field_refs=["owner_name", " location_barangay ", ""],
        )
        assert comment.field_name == "owner_name,location_barangay"

    def test_dangling_parent_accepted(self):
        reply = self.comments.add_comment(
            "building", self.record.id, "laoo-1", "Following up",
            parent_id="00000000-0000-0000-0000-000000000000",
        )
        assert reply.parent_id == "00000000-0000-0000-0000-000000000000"
        listed = self.comments.list_comments("building", self.record.id)
        assert [c.id for c in listed] == [reply.id]

    def test_unknown_kind_rejected(self):
        with pytest.raises(BadRequest):
            self.comments.add_comment("machinery", 1, "laoo-1", "Hi")


class TestSnapshotRole:
    @pytest.mark.parametrize("role", list(Role))
    def test_snapshot(self, role):
        expected = role if role in COMMENT_ROLES else Role.ADMIN
        assert snapshot_role(role) == expected


class TestListAndResolve:
    def setup_method(self):
        self.store = make_store()
        self.comments = CommentService(self.store)
        self.record = add_record(self.store, status=RecordStatus.UNDER_REVIEW)
        add_user(self.store, "laoo-1", Role.LAOO, full_name="Maria Santos")
        add_user(self.store, "tm-1", Role.TAX_MAPPER, email="mapper@example.gov.ph")
        add_user(self.store, "acct-1", Role.ACCOUNTANT)

    def test_oldest_first_with_author_names(self):
        first = self.comments.add_comment("building", self.record.id, "laoo-1", "First")
        second = self.comments.add_comment(
            "building", self.record.id, "tm-1", "Second", parent_id=first.id,
        )
        # Author without a profile falls back to the raw id
        self.store.insert_comments([{
            "kind": RecordKind.BUILDING, "record_id": self.record.id,
            "comment_text": "Third", "author_id": "removed-user", "author_role": Role.LAOO,
        }])

        listed = self.comments.list_comments("building", self.record.id)

        assert [c.comment_text for c in listed] == ["First", "Second", "Third"]
        assert listed[0].author_name == "Maria Santos"
        assert listed[1].author_name == "mapper@example.gov.ph"
        assert listed[1].parent_id == first.id
        assert listed[2].author_name == "removed-user"
        assert second.id == listed[1].id

    def test_comments_are_per_record(self):
        other = add_record(self.store, status=RecordStatus.UNDER_REVIEW)
        self.comments.add_comment("building", self.record.id, "laoo-1", "Here")
        assert self.comments.list_comments("building", other.id) == []
        assert self.comments.list_comments("land", self.record.id) == []

    def test_resolve_and_reopen(self):
        comment = self.comments.add_comment("building", self.record.id, "laoo-1", "Fix")
        resolved = self.comments.resolve_comment("building", self.record.id, comment.id, "tm-1")
        assert resolved.is_resolved is True
        assert resolved.updated_at is not None

        reopened = self.comments.resolve_comment(
            "building", self.record.id, comment.id, "laoo-1", resolved=False,
        )
        assert reopened.is_resolved is False

    def test_resolve_missing_comment(self):
        with pytest.raises(NotFound):
            self.comments.resolve_comment("building", self.record.id, "nope", "laoo-1")

    def test_resolve_requires_workflow_role(self):
        comment = self.comments.add_comment("building", self.record.id, "laoo-1", "Fix")
        with pytest.raises(Forbidden):
            self.comments.resolve_comment("building", self.record.id, comment.id, "acct-1")
