from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Sequence

from . import __version__
from .codec import entry_key
from .config import (
    DEFAULT_FOLDER,
    Settings,
    default_config_path,
    load_settings,
    save_settings,
)
from .errors import TimesheetError
from .models import EntryRequest, TimeEntry
from .overlap import GRANULARITIES, WEEK_STARTS
from .reports import (
    DIMENSIONS,
    PRESETS,
    bucket_totals,
    custom_range,
    format_duration,
    preset_range,
    totals_by,
)
from .store import PERIOD_RE, EntryStore, MarkdownFolderStore, period_of


def iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from exc


def month(value: str) -> str:
    if not PERIOD_RE.match(value):
        raise argparse.ArgumentTypeError(f"expected YYYY-MM, got {value!r}")
    return value


def open_store(args: argparse.Namespace) -> tuple[Settings, EntryStore]:
    settings = load_settings(Path(args.config).expanduser())
    if settings.debug:
        logging.getLogger("md_timesheet").setLevel(logging.DEBUG)
    return settings, EntryStore.from_settings(settings)


def init_command(args: argparse.Namespace) -> int:
    config_path = Path(args.config).expanduser().resolve()
    folder = Path(args.folder).expanduser().resolve() if args.folder else DEFAULT_FOLDER
    settings = Settings(
        folder=folder,
        week_start=args.week_start,
        require_client=not args.no_require_client,
        default_client=args.default_client,
    )
    save_settings(config_path, settings)
    asyncio.run(MarkdownFolderStore(folder).ensure_container_exists())
    print(f"Initialized config at {config_path}")
    print(f"Time tracking folder: {folder}")
    return 0


def format_entries(entries: Sequence[TimeEntry]) -> str:
    if not entries:
        return "No entries found."
    lines = [
        "id | date | time | duration | client | project | activity | description",
        "-" * 88,
    ]
    for entry in entries:
        span = f"{entry.start:%H:%M}-{entry.end:%H:%M}"
        days = (entry.end.date() - entry.date).days
        if days:
            span += f"+{days}"
        lines.append(
            f"{entry_key(entry)} | {entry.date.isoformat()} | {span} | "
            f"{format_duration(entry.duration_minutes)} | {entry.client or ''} | "
            f"{entry.project or ''} | {entry.activity or ''} | {entry.description}"
        )
    return "\n".join(lines)


def add_command(args: argparse.Namespace) -> int:
    settings, store = open_store(args)
    request = EntryRequest(
        start=args.start,
        end=args.end,
        description=" ".join(args.description),
        client=args.client or settings.default_client,
        project=args.project or settings.default_project,
        activity=args.activity or settings.default_activity,
        tags=tuple(args.tags or ()),
        linked_note=args.note,
    )
    if request.client and settings.clients and settings.find_client(request.client) is None:
        print(f"Warning: client {request.client!r} is not in the configured catalog.", file=sys.stderr)
    entry = asyncio.run(store.create(request))
    print(
        f"Added entry {entry_key(entry)} on {entry.date.isoformat()} "
        f"({format_duration(entry.duration_minutes)})"
    )
    return 0


async def _list_entries(store: EntryStore, args: argparse.Namespace) -> list[TimeEntry]:
    if args.date:
        return await store.load_entries_for_date(args.date)
    parsed = await store.load_month(args.month or period_of(date.today()))
    return sorted(parsed.entries, key=lambda entry: entry.start)


def list_command(args: argparse.Namespace) -> int:
    _, store = open_store(args)
    entries = asyncio.run(_list_entries(store, args))
    print(format_entries(entries))
    return 0


async def _edit(store: EntryStore, key: str, period: str, changes: dict[str, object]) -> TimeEntry | None:
    entry = await store.find_entry(key, period)
    if entry is None:
        return None
    return await store.update(entry, changes)


def edit_command(args: argparse.Namespace) -> int:
    _, store = open_store(args)
    changes: dict[str, object] = {}
    for name in ("start", "end", "description", "client", "project", "activity"):
        value = getattr(args, name)
        if value is not None:
            changes[name] = value
    if args.tags is not None:
        changes["tags"] = tuple(args.tags)
    if args.note is not None:
        changes["linked_note"] = args.note
    if not changes:
        print("No fields provided to update.", file=sys.stderr)
        return 2
    period = args.month or period_of(date.today())
    updated = asyncio.run(_edit(store, args.entry_id, period, changes))
    if updated is None:
        print(f"Entry {args.entry_id} not found in {period}.", file=sys.stderr)
        return 2
    print(f"Updated entry {args.entry_id} (now {entry_key(updated)}).")
    return 0


async def _remove(store: EntryStore, keys: Sequence[str], period: str) -> list[str]:
    entries = []
    for key in keys:
        entry = await store.find_entry(key, period)
        if entry is None:
            return [key]
        entries.append(entry)
    for entry in entries:
        await store.delete(entry)
    return []


def remove_command(args: argparse.Namespace) -> int:
    _, store = open_store(args)
    period = args.month or period_of(date.today())
    missing = asyncio.run(_remove(store, args.entry_id, period))
    if missing:
        print(f"Entry {missing[0]} not found in {period}.", file=sys.stderr)
        return 2
    print(f"Removed {len(args.entry_id)} entries.")
    return 0


def report_command(args: argparse.Namespace) -> int:
    settings, store = open_store(args)
    if args.date_from or args.date_to:
        first = args.date_from or args.date_to
        last = args.date_to or args.date_from
        try:
            range_start, range_end = custom_range(first, last)
        except ValueError as exc:
            print(str(exc), file=sys.stderr)
            return 2
    else:
        range_start, range_end = preset_range(args.range, date.today(), settings.week_start)
    pairs = asyncio.run(store.effective_durations(range_start, range_end))
    total = sum(minutes for _, minutes in pairs)
    print(f"{range_start:%Y-%m-%d} to {range_end:%Y-%m-%d} (exclusive): {format_duration(total)}")
    rows = totals_by(pairs, args.by)
    if not rows:
        print("No entries found.")
        return 0
    print(f"{args.by} | duration | share")
    print("-" * 48)
    for row in rows:
        print(f"{row.key} | {format_duration(row.minutes)} | {row.percentage:.1f}%")
    if args.bucket:
        print("")
        print(f"{args.bucket} | duration")
        print("-" * 48)
        buckets = bucket_totals(
            [entry for entry, _ in pairs], range_start, range_end, args.bucket, settings.week_start
        )
        for key, minutes in buckets.items():
            print(f"{key} | {format_duration(minutes)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="md-timesheet",
        description="Plain-text time tracking in monthly Markdown files.",
    )
    parser.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to config file (default: ~/.md_timesheet/config.yaml or $MD_TIMESHEET_CONFIG)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--version", action="version", version=__version__)

    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init", help="Create config + time tracking folder")
    init_parser.add_argument("--folder", help="Folder for the monthly files")
    init_parser.add_argument("--week-start", default="monday", choices=sorted(WEEK_STARTS))
    init_parser.add_argument("--default-client")
    init_parser.add_argument(
        "--no-require-client",
        action="store_true",
        help="Allow entries without a client",
    )
    init_parser.set_defaults(func=init_command)

    add_parser = subparsers.add_parser("add", help="Add a time entry")
    add_parser.add_argument("description", nargs="*")
    add_parser.add_argument("--start", required=True, help="YYYY-MM-DD HH:mm")
    add_parser.add_argument("--end", required=True, help="YYYY-MM-DD HH:mm")
    add_parser.add_argument("--client")
    add_parser.add_argument("--project")
    add_parser.add_argument("--activity")
    add_parser.add_argument("--tag", dest="tags", action="append")
    add_parser.add_argument("--note", help="Linked note path")
    add_parser.set_defaults(func=add_command)

    list_parser = subparsers.add_parser("list", help="List time entries")
    list_parser.add_argument("--date", type=iso_date, help="YYYY-MM-DD")
    list_parser.add_argument("--month", type=month, help="YYYY-MM (default: this month)")
    list_parser.set_defaults(func=list_command)

    edit_parser = subparsers.add_parser("edit", help="Edit an entry")
    edit_parser.add_argument("--id", dest="entry_id", required=True)
    edit_parser.add_argument("--month", type=month, help="YYYY-MM (default: this month)")
    edit_parser.add_argument("--start", help="YYYY-MM-DD HH:mm")
    edit_parser.add_argument("--end", help="YYYY-MM-DD HH:mm")
    edit_parser.add_argument("--description")
    edit_parser.add_argument("--client")
    edit_parser.add_argument("--project")
    edit_parser.add_argument("--activity")
    edit_parser.add_argument("--tag", dest="tags", action="append")
    edit_parser.add_argument("--note", help="Linked note path")
    edit_parser.set_defaults(func=edit_command)

    remove_parser = subparsers.add_parser("remove", help="Remove entries")
    remove_parser.add_argument("--id", dest="entry_id", action="append", required=True)
    remove_parser.add_argument("--month", type=month, help="YYYY-MM (default: this month)")
    remove_parser.set_defaults(func=remove_command)

    report_parser = subparsers.add_parser("report", help="Summarize tracked time")
    report_parser.add_argument("--range", default="this-week", choices=PRESETS)
    report_parser.add_argument("--from", dest="date_from", type=iso_date, help="YYYY-MM-DD")
    report_parser.add_argument("--to", dest="date_to", type=iso_date, help="YYYY-MM-DD")
    report_parser.add_argument("--by", default="project", choices=DIMENSIONS)
    report_parser.add_argument("--bucket", choices=GRANULARITIES)
    report_parser.set_defaults(func=report_command)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return args.func(args)
    except TimesheetError as exc:
        print(str(exc), file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
