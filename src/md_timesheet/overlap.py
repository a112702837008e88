from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Iterator, Protocol

from .codec import entry_key
from .models import TimeEntry

GRANULARITIES = ("day", "week", "month")
WEEK_STARTS = {"monday": 0, "sunday": 6}


class Interval(Protocol):
    start: datetime
    end: datetime


@dataclass(frozen=True)
class Bucket:
    key: str
    start: datetime
    end: datetime


def overlaps(a: Interval, b: Interval) -> bool:
    # Half-open: an entry ending at 10:30 does not clash with one starting at 10:30.
    return a.start < b.end and a.end > b.start


def effective_duration(entry: Interval, range_start: datetime, range_end: datetime) -> int:
    """Minutes of ``entry`` that fall inside ``[range_start, range_end]``."""
    effective_start = max(entry.start, range_start)
    effective_end = min(entry.end, range_end)
    return max(0, round((effective_end - effective_start).total_seconds() / 60))


def is_same_entry(a: TimeEntry, b: TimeEntry) -> bool:
    # Lines move under hand edits, so only content decides identity.
    return a.period == b.period and entry_key(a) == entry_key(b)


def find_conflict(
    candidate: Interval,
    existing: Iterable[TimeEntry],
    exclude: TimeEntry | None = None,
) -> TimeEntry | None:
    for other in existing:
        if exclude is not None and is_same_entry(other, exclude):
            continue
        if overlaps(candidate, other):
            return other
    return None


def conflict_dates(candidate: Interval) -> list[date]:
    """Date buckets that may hold an entry overlapping ``candidate``.

    Starts one day early so that an entry from the previous evening running
    past midnight is seen, and runs through the candidate's end date.
    """
    day = candidate.start.date() - timedelta(days=1)
    days: list[date] = []
    while day <= candidate.end.date():
        days.append(day)
        day += timedelta(days=1)
    return days


def bucket_start(moment: datetime, granularity: str, week_start: str = "monday") -> datetime:
    day = datetime.combine(moment.date(), time())
    if granularity == "day":
        return day
    if granularity == "week":
        if week_start not in WEEK_STARTS:
            raise ValueError(f"Unsupported week start: {week_start}")
        offset = (day.weekday() - WEEK_STARTS[week_start]) % 7
        return day - timedelta(days=offset)
    if granularity == "month":
        return day.replace(day=1)
    raise ValueError(f"Unsupported granularity: {granularity}")


def next_bucket_start(start: datetime, granularity: str) -> datetime:
    if granularity == "day":
        return start + timedelta(days=1)
    if granularity == "week":
        return start + timedelta(days=7)
    if granularity == "month":
        year = start.year + (start.month // 12)
        month = 1 if start.month == 12 else start.month + 1
        return start.replace(year=year, month=month, day=1)
    raise ValueError(f"Unsupported granularity: {granularity}")


def bucket_key(start: datetime, granularity: str) -> str:
    if granularity == "month":
        return start.strftime("%Y-%m")
    return start.strftime("%Y-%m-%d")


def iter_buckets(
    range_start: datetime,
    range_end: datetime,
    granularity: str,
    week_start: str = "monday",
) -> Iterator[Bucket]:
    """Split a query window into half-open day, week or month windows."""
    cursor = bucket_start(range_start, granularity, week_start)
    while cursor < range_end:
        following = next_bucket_start(cursor, granularity)
        yield Bucket(
            key=bucket_key(cursor, granularity),
            start=max(cursor, range_start),
            end=min(following, range_end),
        )
        cursor = following


def apportion(entries: Iterable[Interval], buckets: Iterable[Bucket]) -> dict[str, int]:
    buckets = list(buckets)
    totals = {bucket.key: 0 for bucket in buckets}
    for entry in entries:
        for bucket in buckets:
            totals[bucket.key] += effective_duration(entry, bucket.start, bucket.end)
    return totals
