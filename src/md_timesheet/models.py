from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime


@dataclass(frozen=True)
class TimeEntry:
    start: datetime
    end: datetime
    description: str = ""
    client: str | None = None
    project: str | None = None
    activity: str | None = None
    tags: tuple[str, ...] = field(default_factory=tuple)
    linked_note: str | None = None
    # 1-based line number in the text this entry was decoded from.
    position: int | None = field(default=None, compare=False)

    @property
    def date(self) -> date:
        return self.start.date()

    @property
    def period(self) -> str:
        return f"{self.start:%Y-%m}"

    @property
    def duration_minutes(self) -> int:
        return round((self.end - self.start).total_seconds() / 60)


@dataclass(frozen=True)
class EntryRequest:
    start: datetime | str
    end: datetime | str
    description: str = ""
    client: str | None = None
    project: str | None = None
    activity: str | None = None
    tags: tuple[str, ...] = field(default_factory=tuple)
    linked_note: str | None = None


@dataclass(frozen=True)
class ParsedMonth:
    period: str
    entries: list[TimeEntry] = field(default_factory=list)
    entries_by_date: dict[date, list[TimeEntry]] = field(default_factory=dict)

    def for_date(self, day: date) -> list[TimeEntry]:
        return list(self.entries_by_date.get(day, []))
