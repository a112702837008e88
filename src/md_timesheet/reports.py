from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Sequence

from .models import TimeEntry
from .overlap import apportion, bucket_start, iter_buckets, next_bucket_start

PRESETS = ("today", "yesterday", "this-week", "last-week", "this-month", "last-month")
DIMENSIONS = ("client", "project", "activity", "tag")
UNASSIGNED = "(none)"


@dataclass(frozen=True)
class ReportRow:
    key: str
    minutes: int
    percentage: float


def preset_range(preset: str, today: date, week_start: str = "monday") -> tuple[datetime, datetime]:
    """Return the half-open window ``[start, end)`` for a named range."""
    day = datetime.combine(today, time())
    if preset == "today":
        return day, day + timedelta(days=1)
    if preset == "yesterday":
        return day - timedelta(days=1), day
    if preset == "this-week":
        start = bucket_start(day, "week", week_start)
        return start, start + timedelta(days=7)
    if preset == "last-week":
        start = bucket_start(day, "week", week_start)
        return start - timedelta(days=7), start
    if preset == "this-month":
        start = bucket_start(day, "month")
        return start, next_bucket_start(start, "month")
    if preset == "last-month":
        end = bucket_start(day, "month")
        return bucket_start(end - timedelta(days=1), "month"), end
    raise ValueError(f"Unsupported range preset: {preset}")


def custom_range(first: date, last: date) -> tuple[datetime, datetime]:
    """Whole days from ``first`` through ``last`` inclusive."""
    if last < first:
        raise ValueError("The range end is before its start.")
    return datetime.combine(first, time()), datetime.combine(last + timedelta(days=1), time())


def _keys(entry: TimeEntry, dimension: str) -> Sequence[str]:
    if dimension == "tag":
        return entry.tags or (UNASSIGNED,)
    return (getattr(entry, dimension) or UNASSIGNED,)


def totals_by(pairs: Iterable[tuple[TimeEntry, int]], dimension: str) -> list[ReportRow]:
    """Sum effective minutes per client, project, activity or tag.

    An entry with several tags counts toward each of them, so tag
    percentages can add up to more than 100.
    """
    if dimension not in DIMENSIONS:
        raise ValueError(f"Unsupported dimension: {dimension}")
    totals: dict[str, int] = defaultdict(int)
    grand_total = 0
    for entry, minutes in pairs:
        grand_total += minutes
        for key in _keys(entry, dimension):
            totals[key] += minutes
    return [
        ReportRow(
            key=key,
            minutes=minutes,
            percentage=round(100 * minutes / grand_total, 1) if grand_total else 0.0,
        )
        for key, minutes in sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    ]


def bucket_totals(
    entries: Iterable[TimeEntry],
    range_start: datetime,
    range_end: datetime,
    granularity: str,
    week_start: str = "monday",
) -> dict[str, int]:
    return apportion(entries, iter_buckets(range_start, range_end, granularity, week_start))


def format_duration(minutes: int) -> str:
    hours, mins = divmod(minutes, 60)
    if hours == 0:
        return f"{mins}m"
    if mins == 0:
        return f"{hours}h"
    return f"{hours}h {mins}m"
