from __future__ import annotations

import logging
import re
from datetime import date
from typing import Iterator, NamedTuple

from .codec import InlineFieldCodec, TableRowCodec, entry_key
from .errors import StaleEntryError
from .models import ParsedMonth, TimeEntry

logger = logging.getLogger(__name__)

DATE_HEADER_RE = re.compile(r"^##\s+(\d{4}-\d{2}-\d{2})\s*$")
LIST_ITEM_RE = re.compile(r"^-\s+(.+)$")

FILE_HEADER = """%%
WARNING: This file is managed by md-timesheet.
Edits by hand are fine, but keep the structure below intact.

FILE STRUCTURE:
- One file per month, named YYYY-MM.md
- Entries grouped under date headers: ## YYYY-MM-DD
- Entries sorted chronologically within each date

ENTRY FORMAT:
- [start:: YYYY-MM-DD HH:MM] [end:: YYYY-MM-DD HH:MM] Description [client:: id] [project:: name] [activity:: type] [tags:: a, b] [[linked note]]

start and end are required; end may fall on the next day for overnight work.
%%
"""

_codec = InlineFieldCodec()


class ScanState(NamedTuple):
    section: date | None = None
    table: TableRowCodec | None = None


class ScannedEntry(NamedTuple):
    section: date | None
    entry: TimeEntry


def new_document(period: str) -> str:
    return f"{FILE_HEADER}\n# {period}\n"


def _to_date(value: str) -> date | None:
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def _step(state: ScanState, line: str, number: int) -> tuple[ScanState, TimeEntry | None]:
    header = DATE_HEADER_RE.match(line)
    if header:
        return ScanState(section=_to_date(header.group(1))), None
    if state.table is not None:
        if line.strip().startswith("|"):
            return state, state.table.decode(line, state.section, number)
        state = state._replace(table=None)
    table = TableRowCodec.from_header(line)
    if table is not None:
        return state._replace(table=table), None
    item = LIST_ITEM_RE.match(line)
    if item and state.section is not None:
        return state, _codec.decode(item.group(1), state.section, number)
    return state, None


def scan(text: str) -> Iterator[ScannedEntry]:
    """Yield every decodable entry with the date section it was found under."""
    state = ScanState()
    for number, line in enumerate(text.split("\n"), start=1):
        state, entry = _step(state, line, number)
        if entry is not None:
            yield ScannedEntry(state.section, entry)


def section_dates(text: str) -> list[date]:
    dates: list[date] = []
    for line in text.split("\n"):
        header = DATE_HEADER_RE.match(line)
        day = _to_date(header.group(1)) if header else None
        if day is not None and day not in dates:
            dates.append(day)
    return dates


def parse_month(text: str, period: str) -> ParsedMonth:
    entries: list[TimeEntry] = []
    entries_by_date: dict[date, list[TimeEntry]] = {day: [] for day in section_dates(text)}
    for scanned in scan(text):
        entry = scanned.entry
        if scanned.section is not None and entry.date != scanned.section:
            logger.debug(
                "Entry on line %s starts on %s but sits under %s",
                entry.position,
                entry.date,
                scanned.section,
            )
        entries.append(entry)
        entries_by_date.setdefault(entry.date, []).append(entry)
    return ParsedMonth(period=period, entries=entries, entries_by_date=entries_by_date)


def format_line(entry: TimeEntry) -> str:
    return f"- {_codec.encode(entry)}"


def add_entry(text: str, entry: TimeEntry) -> str:
    lines = text.split("\n")
    line = format_line(entry)
    header_index = _find_section(lines, entry.date)
    if header_index is None:
        return "\n".join(_insert_section(lines, entry.date, line))

    insert_at = None
    last_item = None
    for index in range(header_index + 1, len(lines)):
        if DATE_HEADER_RE.match(lines[index]):
            break
        item = LIST_ITEM_RE.match(lines[index])
        if not item:
            continue
        last_item = index
        existing = _codec.decode(item.group(1), entry.date)
        if existing is not None and existing.start > entry.start:
            insert_at = index
            break
    if insert_at is None:
        if last_item is not None:
            insert_at = last_item + 1
        else:
            insert_at = header_index + 1
            if insert_at < len(lines) and not lines[insert_at].strip():
                insert_at += 1

    new_lines = [line]
    if insert_at < len(lines) and DATE_HEADER_RE.match(lines[insert_at]):
        new_lines.append("")
    lines[insert_at:insert_at] = new_lines
    return "\n".join(lines)


def update_entry(text: str, position: int, new_entry: TimeEntry) -> str:
    lines = text.split("\n")
    index = _line_index(lines, position)
    if lines[index].lstrip().startswith("|"):
        # Legacy table rows are rewritten in the list grammar.
        del lines[index]
        return add_entry("\n".join(lines), new_entry)
    lines[index] = format_line(new_entry)
    return "\n".join(lines)


def delete_entry(text: str, position: int) -> str:
    lines = text.split("\n")
    del lines[_line_index(lines, position)]
    return "\n".join(lines)


def locate_entry(text: str, entry: TimeEntry) -> int:
    """Return the line currently holding ``entry``.

    The remembered position is tried first; otherwise the document is
    searched by content key. Raises StaleEntryError if neither matches.
    """
    key = entry_key(entry)
    by_position = {scanned.entry.position: scanned.entry for scanned in scan(text)}
    current = by_position.get(entry.position)
    if current is not None and entry_key(current) == key:
        return current.position
    for position, candidate in by_position.items():
        if entry_key(candidate) == key:
            logger.debug("Entry %s moved from line %s to %s", key, entry.position, position)
            return position
    raise StaleEntryError(entry)


def _line_index(lines: list[str], position: int | None) -> int:
    if position is None or not 1 <= position <= len(lines):
        raise ValueError(f"Line {position} is outside the document ({len(lines)} lines).")
    return position - 1


def _find_section(lines: list[str], day: date) -> int | None:
    target = day.isoformat()
    for index, line in enumerate(lines):
        header = DATE_HEADER_RE.match(line)
        if header and header.group(1) == target:
            return index
    return None


def _insert_section(lines: list[str], day: date, line: str) -> list[str]:
    target = day.isoformat()
    block = [f"## {target}", "", line, ""]
    for index, existing in enumerate(lines):
        header = DATE_HEADER_RE.match(existing)
        if header and header.group(1) > target:
            if index > 0 and lines[index - 1].strip():
                block.insert(0, "")
            return lines[:index] + block + lines[index:]
    while lines and not lines[-1].strip():
        lines = lines[:-1]
    if lines:
        lines = lines + [""]
    return lines + block
