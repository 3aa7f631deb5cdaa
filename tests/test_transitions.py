"""
Tests for the status transition table.

Validates:
- Every legal (action, status) pair and its result
- Every pair outside the table is rejected, naming action and status
- Draft admits only submit; approved admits nothing
"""

from __future__ import annotations

import itertools

import pytest

from rpfaas_review.workflow.schema import RecordStatus, ReviewAction
from rpfaas_review.workflow.transitions import (
    TRANSITIONS,
    TransitionError,
    available_actions,
    is_terminal,
    validate,
)

LEGAL = {
    (ReviewAction.SUBMIT, RecordStatus.DRAFT): RecordStatus.SUBMITTED,
    (ReviewAction.SUBMIT, RecordStatus.RETURNED): RecordStatus.SUBMITTED,
    (ReviewAction.CLAIM, RecordStatus.SUBMITTED): RecordStatus.UNDER_REVIEW,
    (ReviewAction.RETURN, RecordStatus.UNDER_REVIEW): RecordStatus.RETURNED,
    (ReviewAction.APPROVE, RecordStatus.UNDER_REVIEW): RecordStatus.APPROVED,
}


class TestValidate:
    """Test validate() against the full action x status grid."""

    @pytest.mark.parametrize("pair,expected", list(LEGAL.items()))
    def test_legal_pairs(self, pair, expected):
        action, status = pair
        assert validate(action, status) == expected

    @pytest.mark.parametrize(
        "action,status",
        [p for p in itertools.product(ReviewAction, RecordStatus) if p not in LEGAL],
    )
    def test_illegal_pairs_rejected(self, action, status):
        with pytest.raises(TransitionError) as exc_info:
            validate(action, status)
        assert exc_info.value.action == action.value
        assert exc_info.value.current_status == status.value
        assert action.value in str(exc_info.value)
        assert status.value in str(exc_info.value)

    def test_accepts_plain_strings(self):
        assert validate("claim", "submitted") == RecordStatus.UNDER_REVIEW

    def test_unknown_action_rejected(self):
        with pytest.raises(TransitionError) as exc_info:
            validate("archive", "draft")
        assert exc_info.value.action == "archive"

    def test_unknown_status_rejected(self):
        with pytest.raises(TransitionError) as exc_info:
            validate("submit", "pending")
        assert exc_info.value.current_status == "pending"

    def test_message_format(self):
        with pytest.raises(TransitionError, match='Cannot approve a record with status "submitted"'):
            validate(ReviewAction.APPROVE, RecordStatus.SUBMITTED)


class TestAvailableActions:
    def test_draft_admits_only_submit(self):
        assert available_actions(RecordStatus.DRAFT) == [ReviewAction.SUBMIT]

    def test_under_review_admits_return_and_approve(self):
        assert available_actions("under_review") == [ReviewAction.RETURN, ReviewAction.APPROVE]

    def test_approved_is_terminal(self):
        assert available_actions(RecordStatus.APPROVED) == []
        assert is_terminal(RecordStatus.APPROVED)
        assert not is_terminal(RecordStatus.RETURNED)

    def test_unknown_status_has_no_actions(self):
        assert available_actions("archived") == []

    def test_every_action_has_one_entry(self):
        assert set(TRANSITIONS) == set(ReviewAction)

    def test_table_is_read_only(self):
        with pytest.raises(TypeError):
            TRANSITIONS[ReviewAction.SUBMIT] = (frozenset(), RecordStatus.APPROVED)
