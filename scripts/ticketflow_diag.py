"""Ticketflow diagnostics CLI."""

from __future__ import annotations

import argparse
import json
from pathlib import Path

from ticketflow.config import TicketflowSettings
from ticketflow.storage import EventJournal, JournalEvent, JournalUnavailableError


def load_journal(settings: TicketflowSettings) -> EventJournal:
    journal = EventJournal(settings.journal_path)
    try:
        journal.ping()
    except JournalUnavailableError as exc:
        print(f"Journal unavailable: {exc}")
        raise SystemExit(1)
    return journal


def _event_dict(event: JournalEvent) -> dict[str, object]:
    return {
        "id": event.id,
        "subject": event.subject,
        "event_type": event.event_type,
        "timestamp": event.timestamp.isoformat(),
        "payload": event.payload,
    }


def cmd_events(args: argparse.Namespace) -> None:
    journal = load_journal(TicketflowSettings())
    events = journal.events_for(args.subject, limit=args.limit)
    if args.json:
        print(json.dumps([_event_dict(event) for event in events], indent=2))
        return
    for event in events:
        print(f"{event.timestamp.isoformat()} {event.event_type} {event.document}")


def cmd_search(args: argparse.Namespace) -> None:
    journal = load_journal(TicketflowSettings())
    events = journal.search(args.text, event_type=args.type, limit=args.limit)
    print(json.dumps([_event_dict(event) for event in events], indent=2))


def cmd_summary(args: argparse.Namespace) -> None:
    journal = load_journal(TicketflowSettings())
    events = journal.search()

    by_type: dict[str, int] = {}
    outcomes: dict[str, int] = {}
    for event in events:
        by_type[event.event_type] = by_type.get(event.event_type, 0) + 1
        if event.event_type == "completion":
            status = str(event.metadata.get("status", "unknown"))
            outcomes[status] = outcomes.get(status, 0) + 1

    print(
        json.dumps(
            {
                "events_total": len(events),
                "by_type": by_type,
                "completion_status_counts": outcomes,
                "subjects": len({event.subject for event in events}),
            },
            indent=2,
        )
    )


def cmd_diff(args: argparse.Namespace) -> None:
    settings = TicketflowSettings()
    target = Path(args.worktree) / settings.diff_dir_name / f"worktree-{args.ticket}.patch"
    if not target.exists():
        print(f"No diff snapshot at {target}")
        raise SystemExit(1)
    if args.stat:
        lines = target.read_text(encoding="utf-8").splitlines()
        added = sum(1 for line in lines if line.startswith("+") and not line.startswith("+++"))
        removed = sum(1 for line in lines if line.startswith("-") and not line.startswith("---"))
        files = sum(1 for line in lines if line.startswith("diff --git"))
        print(json.dumps({"path": str(target), "files": files, "added": added, "removed": removed}))
        return
    print(target.read_text(encoding="utf-8"), end="")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Ticketflow diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_events = sub.add_parser("events", help="List journal events for a session id or worktree path")
    p_events.add_argument("subject")
    p_events.add_argument("--limit", type=int, default=None)
    p_events.add_argument("--json", action="store_true", help="Output JSON")
    p_events.set_defaults(func=cmd_events)

    p_search = sub.add_parser("search", help="Search journal events")
    p_search.add_argument("--text")
    p_search.add_argument("--type", help="Only events of this type (session_created, handoff, completion, stop)")
    p_search.add_argument("--limit", type=int, default=None)
    p_search.set_defaults(func=cmd_search)

    p_summary = sub.add_parser("summary", help="Count journal events by type and outcome")
    p_summary.set_defaults(func=cmd_summary)

    p_diff = sub.add_parser("diff", help="Print a saved diff snapshot")
    p_diff.add_argument("worktree")
    p_diff.add_argument("--ticket", required=True, help="Ticket identifier the snapshot was saved under")
    p_diff.add_argument("--stat", action="store_true", help="Only print file and line counts")
    p_diff.set_defaults(func=cmd_diff)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
