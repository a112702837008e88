"""Encoding and decoding of single time-entry lines.

Canonical grammar (one list item per entry, marker stripped)::

    [start:: 2025-01-15 09:15] [end:: 2025-01-15 10:40] Description [client:: acme] [project:: web] [activity:: feat] [tags:: a, b] [[linked note]]

The legacy table grammar (one Markdown table per month) is read-only; see
:class:`TableRowCodec`.
"""

from __future__ import annotations

import hashlib
import logging
import re
from datetime import date, datetime, time, timedelta
from typing import Protocol

from .models import TimeEntry

logger = logging.getLogger(__name__)

DATETIME_FORMAT = "%Y-%m-%d %H:%M"

DATETIME_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})\s+(\d{2}):(\d{2})$")
TIME_RE = re.compile(r"^(\d{2}):(\d{2})(?:\+(\d+))?$")
INLINE_FIELD_RE = re.compile(r"\[(\w+)::\s*([^\]]+)\]")
WIKILINK_RE = re.compile(r"\[\[([^\]]+)\]\]")
# Opening of an inline field or a link, closed or not.
OPEN_TOKEN_RE = re.compile(r"\[\w+::|\[\[")

_CELL_SPLIT_RE = re.compile(r"(?<!\\)\|")
_SEPARATOR_CELL_RE = re.compile(r"^:?-+:?$")


class EntryCodec(Protocol):
    def decode(
        self,
        line: str,
        context_date: date | None = None,
        position: int | None = None,
    ) -> TimeEntry | None: ...


def parse_datetime(value: str) -> datetime | None:
    match = DATETIME_RE.match(value.strip())
    if not match:
        return None
    year, month, day, hour, minute = (int(part) for part in match.groups())
    try:
        return datetime(year, month, day, hour, minute)
    except ValueError:
        return None


def format_datetime(value: datetime) -> str:
    return value.strftime(DATETIME_FORMAT)


def split_tags(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    tags: list[str] = []
    for part in value.split(","):
        tag = part.strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tuple(tags)


def _resolve_instant(value: str, context_date: date | None) -> datetime | None:
    parsed = parse_datetime(value)
    if parsed is not None or context_date is None:
        return parsed
    # Older files stored "HH:mm" (and "HH:mm+1" for the next day) under the
    # section heading.
    match = TIME_RE.match(value.strip())
    if not match:
        return None
    hour, minute, offset = match.groups()
    try:
        moment = datetime.combine(context_date, time(int(hour), int(minute)))
        return moment + timedelta(days=int(offset or 0))
    except (ValueError, OverflowError):
        return None


class InlineFieldCodec:
    def decode(
        self,
        line: str,
        context_date: date | None = None,
        position: int | None = None,
    ) -> TimeEntry | None:
        fields: dict[str, str] = {}
        remaining = line
        for match in INLINE_FIELD_RE.finditer(line):
            fields[match.group(1).lower()] = match.group(2).strip()
            remaining = remaining.replace(match.group(0), "", 1)

        start_text = fields.get("start")
        end_text = fields.get("end")
        if not start_text or not end_text:
            logger.debug("Not an entry (missing start or end): %r", line)
            return None
        start = _resolve_instant(start_text, context_date)
        end = _resolve_instant(end_text, context_date)
        if start is None or end is None:
            logger.debug("Not an entry (malformed start or end): %r", line)
            return None
        if end <= start:
            logger.debug("Not an entry (end is not after start): %r", line)
            return None

        linked_note = None
        link = WIKILINK_RE.search(remaining)
        if link:
            linked_note = link.group(1).strip() or None
            remaining = remaining.replace(link.group(0), "", 1)

        return TimeEntry(
            start=start,
            end=end,
            description=remaining.strip(),
            client=fields.get("client") or None,
            project=fields.get("project") or None,
            activity=fields.get("activity") or None,
            tags=split_tags(fields.get("tags")),
            linked_note=linked_note,
            position=position,
        )

    def encode(self, entry: TimeEntry) -> str:
        parts = [
            f"[start:: {format_datetime(entry.start)}]",
            f"[end:: {format_datetime(entry.end)}]",
        ]
        if entry.description:
            parts.append(entry.description)
        if entry.client:
            parts.append(f"[client:: {entry.client}]")
        if entry.project:
            parts.append(f"[project:: {entry.project}]")
        if entry.activity:
            parts.append(f"[activity:: {entry.activity}]")
        if entry.tags:
            parts.append(f"[tags:: {', '.join(entry.tags)}]")
        if entry.linked_note:
            parts.append(f"[[{entry.linked_note}]]")
        return " ".join(parts)


def entry_key(entry: TimeEntry) -> str:
    """Short content hash identifying an entry independently of its line."""
    canonical = InlineFieldCodec().encode(entry)
    return hashlib.sha1(canonical.encode("utf-8")).hexdigest()[:10]


def split_row(line: str) -> list[str] | None:
    stripped = line.strip()
    if not stripped.startswith("|"):
        return None
    body = stripped[1:]
    if body.endswith("|") and not body.endswith("\\|"):
        body = body[:-1]
    return [_unescape(cell.strip()) for cell in _CELL_SPLIT_RE.split(body)]


def _unescape(value: str) -> str:
    return value.replace("\\|", "|").replace("&#124;", "|").replace("<br>", " ")


class TableRowCodec:
    """Decode-only reader for month files written in the old table layout.

    Columns are located by header name, so column order does not matter.
    """

    def __init__(self, columns: dict[str, int]) -> None:
        self.columns = columns

    @classmethod
    def from_header(cls, line: str) -> TableRowCodec | None:
        cells = split_row(line)
        if not cells:
            return None
        columns = {cell.lower(): index for index, cell in enumerate(cells) if cell}
        if "start" not in columns or "end" not in columns:
            return None
        return cls(columns)

    def decode(
        self,
        line: str,
        context_date: date | None = None,
        position: int | None = None,
    ) -> TimeEntry | None:
        cells = split_row(line)
        if cells is None or all(_SEPARATOR_CELL_RE.match(cell) for cell in cells if cell):
            return None

        def value(name: str) -> str:
            index = self.columns.get(name)
            if index is None or index >= len(cells):
                return ""
            return cells[index]

        start = parse_datetime(value("start"))
        end = parse_datetime(value("end"))
        client = value("client")
        if start is None or end is None or not client:
            logger.debug("Not a table entry (needs start, end and client): %r", line)
            return None
        if end <= start:
            logger.debug("Not a table entry (end is not after start): %r", line)
            return None

        link = WIKILINK_RE.search(value("notes"))
        return TimeEntry(
            start=start,
            end=end,
            description=value("description"),
            client=client,
            project=value("project") or None,
            activity=value("activity") or None,
            linked_note=link.group(1).strip() if link else None,
            position=position,
        )
