"""Read access to the review audit trail."""

from __future__ import annotations

from rpfaas_review.workflow.actions import parse_kind
from rpfaas_review.workflow.errors import NotFound
from rpfaas_review.workflow.schema import RecordKind, ReviewHistoryEntry


class HistoryService:
    """Chronological audit entries for one record."""

    def __init__(self, store) -> None:
        self.store = store

    def list_history(self, kind: str | RecordKind, record_id: int) -> list[ReviewHistoryEntry]:
        """
        Raises:
            BadRequest: Unknown kind.
            NotFound: No such record.
        """
        kind = parse_kind(kind)
        if self.store.get_record(kind, record_id) is None:
            raise NotFound(f"{kind.label} record {record_id} not found")
        return self.store.list_history(kind, record_id)
