from __future__ import annotations

import asyncio
from datetime import datetime

import pytest

from md_timesheet.models import TimeEntry


class MemoryDocuments:
    """DocumentStore keeping month documents in a dict."""

    def __init__(self, documents: dict[str, str] | None = None) -> None:
        self.documents = dict(documents or {})
        self.reads: list[str] = []
        self.writes: list[str] = []
        self.ensured = 0

    async def read_text(self, period: str) -> str | None:
        self.reads.append(period)
        await asyncio.sleep(0)
        return self.documents.get(period)

    async def write_text(self, period: str, text: str) -> None:
        await asyncio.sleep(0)
        self.documents[period] = text
        self.writes.append(period)

    async def ensure_container_exists(self) -> None:
        self.ensured += 1

    async def list_periods(self) -> list[str]:
        return sorted(self.documents)


def dt(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%d %H:%M")


def make_entry(start: str, end: str, description: str = "", **fields) -> TimeEntry:
    return TimeEntry(start=dt(start), end=dt(end), description=description, **fields)


@pytest.fixture
def documents() -> MemoryDocuments:
    return MemoryDocuments()
