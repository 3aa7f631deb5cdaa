"""
Status Transition Validator — the single table of legal review moves.

    draft ──submit──▶ submitted ──claim──▶ under_review ──approve──▶ approved
                          ▲                     │
                          │                   return
                          │                     ▼
                          └─────submit────── returned

``approved`` is terminal. Every entry point that changes a record's status
goes through :func:`validate`; nothing compares status strings ad hoc.
The module is pure: no I/O, no clock, no state.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from rpfaas_review.workflow.schema import RecordStatus, ReviewAction


class TransitionError(Exception):
    """Raised when an action is not legal from a record's current status."""

    def __init__(self, action: str, current_status: str) -> None:
        self.action = action
        self.current_status = current_status
        super().__init__(
            f"Cannot {action} a record with status \"{current_status}\""
        )


# action -> (statuses it may start from, status it produces)
TRANSITIONS: Mapping[ReviewAction, tuple[frozenset[RecordStatus], RecordStatus]] = MappingProxyType({
    ReviewAction.SUBMIT: (
        frozenset({RecordStatus.DRAFT, RecordStatus.RETURNED}),
        RecordStatus.SUBMITTED,
    ),
    ReviewAction.CLAIM: (
        frozenset({RecordStatus.SUBMITTED}),
        RecordStatus.UNDER_REVIEW,
    ),
    ReviewAction.RETURN: (
        frozenset({RecordStatus.UNDER_REVIEW}),
        RecordStatus.RETURNED,
    ),
    ReviewAction.APPROVE: (
        frozenset({RecordStatus.UNDER_REVIEW}),
        RecordStatus.APPROVED,
    ),
})


def _value(item: str | ReviewAction | RecordStatus) -> str:
    return item.value if isinstance(item, (ReviewAction, RecordStatus)) else str(item)


def validate(
    action: str | ReviewAction,
    current_status: str | RecordStatus,
) -> RecordStatus:
    """
    Return the status ``action`` leads to from ``current_status``.

    Raises:
        TransitionError: If the pair is not in the transition table, including
            unknown action or status strings.
    """
    try:
        act = ReviewAction(action)
        status = RecordStatus(current_status)
    except ValueError:
        raise TransitionError(_value(action), _value(current_status)) from None

    sources, target = TRANSITIONS[act]
    if status not in sources:
        raise TransitionError(act.value, status.value)
    return target


def available_actions(current_status: str | RecordStatus) -> list[ReviewAction]:
    """List the actions that are legal from ``current_status``, in table order."""
    try:
        status = RecordStatus(current_status)
    except ValueError:
        return []
    return [act for act, (sources, _) in TRANSITIONS.items() if status in sources]


def is_terminal(status: str | RecordStatus) -> bool:
    return not available_actions(status)
