"""
Review History Tool — print the audit trail of one record.

Connects directly to the database and lists every recorded status
transition of a record, oldest first, optionally followed by its review
comments.

Usage:
    python -m rpfaas_review.store.history building 42
    python -m rpfaas_review.store.history land 7 --comments
    python -m rpfaas_review.store.history building 42 --database-url postgresql://...
"""

from __future__ import annotations

import argparse
import sys

from rich.console import Console
from rich.table import Table

from rpfaas_review.config import settings
from rpfaas_review.store.service import RecordStore
from rpfaas_review.workflow.schema import RecordKind
from rpfaas_review.workflow.transitions import available_actions

console = Console()


def show_history(
    store: RecordStore,
    kind: RecordKind,
    record_id: int,
    comments: bool = False,
) -> bool:
    """
    Print a record's status, audit trail and optionally its comments.

    Returns:
        True if the record exists, False otherwise.
    """
    record = store.get_record(kind, record_id)
    if record is None:
        console.print(f"[bold red]✗ {kind.label} record {record_id} not found[/bold red]")
        return False

    console.print(f"\n[bold blue]═══ {kind.label} #{record.id} ═══[/bold blue]")
    console.print(f"  Owner: [bold]{record.owner_name or '—'}[/bold]")
    console.print(
        f"  Location: {record.location_barangay or '—'}, "
        f"{record.location_municipality or '—'}"
    )
    console.print(f"  Status: [bold]{record.status.value}[/bold]")
    actions = available_actions(record.status)
    console.print(
        f"  Next actions: {', '.join(a.value for a in actions) if actions else '[dim]none (final)[/dim]'}"
    )

    entries = store.list_history(kind, record_id)
    if not entries:
        console.print("\n[yellow]⚠ No review history recorded[/yellow]")
    else:
        table = Table(title="Review history", show_lines=True)
        table.add_column("When", width=20)
        table.add_column("From", style="cyan", width=14)
        table.add_column("To", style="green", width=14)
        table.add_column("Actor", style="yellow", width=38)
        table.add_column("Role", width=16)
        table.add_column("Note")
        for entry in entries:
            table.add_row(
                str(entry.created_at)[:19],
                entry.from_status.value,
                entry.to_status.value,
                entry.actor_id,
                entry.actor_role.value,
                entry.note or "—",
            )
        console.print(table)

    if comments:
        rows = store.list_comments(kind, record_id)
        if not rows:
            console.print("[dim]No comments[/dim]")
        else:
            table = Table(title="Comments", show_lines=True)
            table.add_column("When", width=20)
            table.add_column("Fields", style="cyan")
            table.add_column("Author", style="yellow")
            table.add_column("Comment")
            table.add_column("Resolved", width=9)
            for c in rows:
                table.add_row(
                    str(c.created_at)[:19],
                    c.field_name or "—",
                    f"{c.author_id} ({c.author_role.value})",
                    ("↳ " if c.parent_id else "") + c.comment_text,
                    "✓" if c.is_resolved else "",
                )
            console.print(table)

    console.print()
    return True


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="RPFAAS review history for one record"
    )
    parser.add_argument("kind", choices=[k.value for k in RecordKind])
    parser.add_argument("record_id", type=int)
    parser.add_argument(
        "--database-url",
        default=None,
        help="Database connection string (defaults to .env settings)",
    )
    parser.add_argument(
        "--comments", "-c",
        action="store_true",
        help="Also list review comments",
    )
    args = parser.parse_args(argv)

    store = RecordStore(args.database_url or settings.database_url_sync)
    found = show_history(store, RecordKind(args.kind), args.record_id, comments=args.comments)
    sys.exit(0 if found else 1)


if __name__ == "__main__":
    main()
