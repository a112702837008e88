from __future__ import annotations

from typing import TYPE_CHECKING

from .codec import entry_key

if TYPE_CHECKING:
    from .models import TimeEntry


class TimesheetError(RuntimeError):
    pass


class ConfigError(TimesheetError):
    pass


class StorageError(TimesheetError):
    pass


class ValidationError(TimesheetError, ValueError):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class OverlapError(TimesheetError):
    def __init__(self, candidate: TimeEntry, conflict: TimeEntry) -> None:
        super().__init__(
            "Entry overlaps with an existing time entry "
            f"({conflict.start:%Y-%m-%d %H:%M} - {conflict.end:%Y-%m-%d %H:%M}"
            f"{': ' + conflict.description if conflict.description else ''})"
        )
        self.candidate = candidate
        self.conflict = conflict


class StaleEntryError(TimesheetError):
    def __init__(self, entry: TimeEntry) -> None:
        super().__init__(
            f"Entry {entry_key(entry)} ({entry.start:%Y-%m-%d %H:%M}) is no longer in "
            f"the {entry.period} document. Reload and try again."
        )
        self.entry = entry
