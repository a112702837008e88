from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Iterable, Mapping
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import replace
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import AsyncIterator, Callable, Protocol

from . import document
from .codec import OPEN_TOKEN_RE, entry_key, parse_datetime
from .config import Settings
from .errors import OverlapError, StaleEntryError, StorageError, ValidationError
from .models import EntryRequest, ParsedMonth, TimeEntry
from .overlap import conflict_dates, effective_duration, find_conflict

logger = logging.getLogger(__name__)

PERIOD_RE = re.compile(r"^\d{4}-\d{2}$")

EDITABLE_FIELDS = frozenset(
    {"start", "end", "description", "client", "project", "activity", "tags", "linked_note"}
)


class DocumentStore(Protocol):
    async def read_text(self, period: str) -> str | None: ...

    async def write_text(self, period: str, text: str) -> None: ...

    async def ensure_container_exists(self) -> None: ...

    async def list_periods(self) -> list[str]: ...


class MarkdownFolderStore:
    """One ``YYYY-MM.md`` file per month inside ``root``."""

    def __init__(self, root: Path, *, auto_create: bool = True) -> None:
        self.root = root
        self.auto_create = auto_create

    def path_for(self, period: str) -> Path:
        if not PERIOD_RE.match(period):
            raise ValueError(f"Period must look like YYYY-MM, got {period!r}.")
        return self.root / f"{period}.md"

    async def read_text(self, period: str) -> str | None:
        return await asyncio.to_thread(self._read, period)

    async def write_text(self, period: str, text: str) -> None:
        await asyncio.to_thread(self._write, period, text)

    async def ensure_container_exists(self) -> None:
        await asyncio.to_thread(self._ensure_root)

    async def list_periods(self) -> list[str]:
        return await asyncio.to_thread(self._list_periods)

    def _read(self, period: str) -> str | None:
        path = self.path_for(period)
        if not path.exists():
            return None
        if not path.is_file():
            raise StorageError(f"{path} is not a file.")
        return path.read_text(encoding="utf-8")

    def _write(self, period: str, text: str) -> None:
        self.path_for(period).write_text(text, encoding="utf-8")

    def _ensure_root(self) -> None:
        if self.root.exists():
            if not self.root.is_dir():
                raise StorageError(f"{self.root} is not a folder.")
            return
        if not self.auto_create:
            raise StorageError(f"Time tracking folder {self.root} does not exist.")
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info("Created time tracking folder %s", self.root)

    def _list_periods(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(
            path.stem
            for path in self.root.glob("*.md")
            if path.is_file() and PERIOD_RE.match(path.stem)
        )


def period_of(day: date) -> str:
    return f"{day:%Y-%m}"


def month_before(day: date) -> date:
    return (day.replace(day=1) - timedelta(days=1)).replace(day=1)


def periods_between(first: date, last: date) -> list[str]:
    periods: list[str] = []
    year, month = first.year, first.month
    while (year, month) <= (last.year, last.month):
        periods.append(f"{year:04d}-{month:02d}")
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return periods


def coerce_instant(value: object, field: str) -> datetime:
    if isinstance(value, datetime):
        return value.replace(second=0, microsecond=0)
    parsed = parse_datetime(str(value or ""))
    if parsed is None:
        raise ValidationError(field, f"expected YYYY-MM-DD HH:mm, got {value!r}")
    return parsed


def clean_tags(tags: Iterable[str] | str) -> tuple[str, ...]:
    if isinstance(tags, str):
        tags = tags.split(",")
    cleaned: list[str] = []
    for tag in tags:
        text = str(tag).strip()
        if text and text not in cleaned:
            cleaned.append(text)
    return tuple(cleaned)


def _clean_text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class EntryStore:
    """Create, update and delete entries in month documents.

    Every mutation reads the whole document from ``documents``, splices it
    and writes it back. Mutations touching the same month are serialized;
    reads go through a per-month parse cache that is dropped on every write
    and on :meth:`notify_changed`.
    """

    def __init__(
        self,
        documents: DocumentStore,
        *,
        require_client: bool = True,
        description_max_length: int = 0,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.documents = documents
        self.require_client = require_client
        self.description_max_length = description_max_length
        self.today = today
        self._cache: dict[str, ParsedMonth] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> EntryStore:
        return cls(
            MarkdownFolderStore(settings.folder, auto_create=settings.auto_create_folder),
            require_client=settings.require_client,
            description_max_length=settings.description_max_length,
        )

    # Cache

    def invalidate(self, period: str) -> None:
        self._cache.pop(period, None)

    def clear_cache(self) -> None:
        self._cache.clear()

    def notify_changed(self, period: str) -> None:
        logger.debug("Document for %s changed externally", period)
        self.invalidate(period)

    # Reads

    async def load_month(self, period: str) -> ParsedMonth:
        cached = self._cache.get(period)
        if cached is not None:
            logger.debug("Cache hit for %s", period)
            return cached
        text = await self.documents.read_text(period)
        if text is None:
            logger.debug("No document for %s", period)
            return ParsedMonth(period=period)
        parsed = document.parse_month(text, period)
        logger.debug("Parsed %d entries for %s", len(parsed.entries), period)
        self._cache[period] = parsed
        return parsed

    async def load_entries_for_date(self, day: date) -> list[TimeEntry]:
        parsed = await self.load_month(period_of(day))
        return parsed.for_date(day)

    async def load_date_range(self, range_start: datetime, range_end: datetime) -> list[TimeEntry]:
        """Entries whose interval intersects ``[range_start, range_end]``, by start."""
        # The month before may hold an entry running past midnight into the range.
        first = month_before(range_start.date())
        entries: list[TimeEntry] = []
        for period in periods_between(first, range_end.date()):
            parsed = await self.load_month(period)
            entries.extend(
                entry
                for entry in parsed.entries
                if entry.start < range_end and entry.end > range_start
            )
        return sorted(entries, key=lambda entry: entry.start)

    async def effective_durations(
        self, range_start: datetime, range_end: datetime
    ) -> list[tuple[TimeEntry, int]]:
        pairs: list[tuple[TimeEntry, int]] = []
        for entry in await self.load_date_range(range_start, range_end):
            minutes = effective_duration(entry, range_start, range_end)
            if minutes > 0:
                pairs.append((entry, minutes))
        return pairs

    async def find_entry(self, key: str, period: str) -> TimeEntry | None:
        parsed = await self.load_month(period)
        matches = [entry for entry in parsed.entries if entry_key(entry).startswith(key)]
        if len(matches) > 1:
            raise ValidationError(
                "id", f"{key!r} matches {len(matches)} entries in {period}; give more characters"
            )
        return matches[0] if matches else None

    async def find_conflict(
        self, candidate: TimeEntry, exclude: TimeEntry | None = None
    ) -> TimeEntry | None:
        days = conflict_dates(candidate)
        existing: list[TimeEntry] = []
        for period in periods_between(days[0], days[-1]):
            parsed = await self.load_month(period)
            for day in days:
                existing.extend(parsed.entries_by_date.get(day, []))
        return find_conflict(candidate, existing, exclude)

    async def would_overlap(self, candidate: TimeEntry, exclude: TimeEntry | None = None) -> bool:
        return await self.find_conflict(candidate, exclude) is not None

    async def known_projects(self) -> list[str]:
        return sorted({entry.project for entry in await self._recent_entries() if entry.project})

    async def known_tags(self) -> list[str]:
        return sorted({tag for entry in await self._recent_entries() for tag in entry.tags})

    async def _recent_entries(self) -> list[TimeEntry]:
        today = self.today()
        entries: list[TimeEntry] = []
        for period in periods_between(month_before(today), today):
            entries.extend((await self.load_month(period)).entries)
        return entries

    # Validation

    def build_entry(self, request: EntryRequest) -> TimeEntry:
        entry = TimeEntry(
            start=coerce_instant(request.start, "start"),
            end=coerce_instant(request.end, "end"),
            description=(request.description or "").strip(),
            client=_clean_text(request.client),
            project=_clean_text(request.project),
            activity=_clean_text(request.activity),
            tags=clean_tags(request.tags or ()),
            linked_note=_clean_text(request.linked_note),
        )
        self.validate(entry)
        return entry

    def validate(self, entry: TimeEntry) -> None:
        if entry.end <= entry.start:
            raise ValidationError("end", "must be later than start")
        if self.require_client and not entry.client:
            raise ValidationError("client", "is required")
        if self.description_max_length and len(entry.description) > self.description_max_length:
            raise ValidationError(
                "description", f"is longer than {self.description_max_length} characters"
            )
        if "\n" in entry.description or OPEN_TOKEN_RE.search(entry.description):
            raise ValidationError("description", "must not contain inline fields, links or line breaks")
        for name in ("client", "project", "activity", "linked_note"):
            value = getattr(entry, name)
            if value and any(char in value for char in "[]\n"):
                raise ValidationError(name, "must not contain brackets or line breaks")
        for tag in entry.tags:
            if any(char in tag for char in "[],\n"):
                raise ValidationError("tags", f"{tag!r} must not contain commas or brackets")

    # Mutations

    async def create(self, request: EntryRequest) -> TimeEntry:
        entry = self.build_entry(request)
        async with self._locked(entry.period):
            await self._ensure_no_conflict(entry)
            text = await self._read_or_new(entry.period)
            text = document.add_entry(text, entry)
            await self._write(entry.period, text)
        logger.info("Created entry %s on %s", entry_key(entry), entry.date)
        return replace(entry, position=document.locate_entry(text, entry))

    async def update(self, old_entry: TimeEntry, changes: Mapping[str, object]) -> TimeEntry:
        unknown = sorted(set(changes) - EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(unknown[0], "is not an editable field")
        values = dict(changes)
        for name in ("start", "end"):
            if name in values:
                values[name] = coerce_instant(values[name], name)
        for name in ("client", "project", "activity", "linked_note"):
            if name in values:
                values[name] = _clean_text(values[name])
        if "description" in values:
            values["description"] = str(values["description"] or "").strip()
        if "tags" in values:
            values["tags"] = clean_tags(values["tags"] or ())
        updated = replace(old_entry, **values)
        self.validate(updated)

        old_period, new_period = old_entry.period, updated.period
        async with self._locked(old_period, new_period):
            text = await self.documents.read_text(old_period)
            if text is None:
                raise StaleEntryError(old_entry)
            position = document.locate_entry(text, old_entry)
            await self._ensure_no_conflict(updated, exclude=old_entry)
            if new_period == old_period:
                if updated.date == old_entry.date and updated.start == old_entry.start:
                    text = document.update_entry(text, position, updated)
                else:
                    # Re-inserting keeps the target section chronological.
                    text = document.add_entry(document.delete_entry(text, position), updated)
                await self._write(old_period, text)
            else:
                await self._write(old_period, document.delete_entry(text, position))
                text = document.add_entry(await self._read_or_new(new_period), updated)
                await self._write(new_period, text)
        logger.info("Updated entry %s -> %s", entry_key(old_entry), entry_key(updated))
        return replace(updated, position=document.locate_entry(text, updated))

    async def delete(self, entry: TimeEntry) -> None:
        async with self._locked(entry.period):
            text = await self.documents.read_text(entry.period)
            if text is None:
                raise StaleEntryError(entry)
            position = document.locate_entry(text, entry)
            await self._write(entry.period, document.delete_entry(text, position))
        logger.info("Deleted entry %s from %s", entry_key(entry), entry.date)

    async def _ensure_no_conflict(self, entry: TimeEntry, exclude: TimeEntry | None = None) -> None:
        conflict = await self.find_conflict(entry, exclude)
        if conflict is not None:
            raise OverlapError(entry, conflict)

    async def _read_or_new(self, period: str) -> str:
        text = await self.documents.read_text(period)
        if text is not None:
            return text
        await self.documents.ensure_container_exists()
        return document.new_document(period)

    async def _write(self, period: str, text: str) -> None:
        await self.documents.write_text(period, text)
        self.invalidate(period)
        logger.debug("Wrote %s", period)

    @asynccontextmanager
    async def _locked(self, *periods: str) -> AsyncIterator[None]:
        async with AsyncExitStack() as stack:
            for period in sorted(set(periods)):
                lock = self._locks.setdefault(period, asyncio.Lock())
                await stack.enter_async_context(lock)
            yield
