from dataclasses import replace
from datetime import date

import pytest
from conftest import make_entry

from md_timesheet import document
from md_timesheet.errors import StaleEntryError

MONTH = """# 2025-01

## 2025-01-15

- [start:: 2025-01-15 09:00] [end:: 2025-01-15 10:00] Standup [client:: acme]
- [start:: 2025-01-15 14:00] [end:: 2025-01-15 15:00] Review [client:: acme]

## 2025-01-16

Some notes about the day.
- [start:: 2025-01-16 08:00] Forgot the end [client:: acme]
- [start:: 2025-01-16 09:00] [end:: 2025-01-16 09:30] Planning [client:: beta]
"""


def descriptions(text, day=None):
    parsed = document.parse_month(text, "2025-01")
    entries = parsed.for_date(day) if day else parsed.entries
    return [entry.description for entry in entries]


def test_parse_month_groups_entries_by_date():
    parsed = document.parse_month(MONTH, "2025-01")

    assert parsed.period == "2025-01"
    assert [entry.description for entry in parsed.entries] == ["Standup", "Review", "Planning"]
    assert [entry.position for entry in parsed.entries] == [5, 6, 12]
    assert set(parsed.entries_by_date) == {date(2025, 1, 15), date(2025, 1, 16)}
    assert parsed.for_date(date(2025, 1, 17)) == []


def test_parse_month_keeps_empty_sections():
    text = document.new_document("2025-01") + "\n## 2025-01-20\n"

    parsed = document.parse_month(text, "2025-01")

    assert parsed.entries == []
    assert parsed.entries_by_date == {date(2025, 1, 20): []}


def test_new_document_has_no_entries():
    text = document.new_document("2025-02")

    assert "# 2025-02" in text
    assert document.parse_month(text, "2025-02").entries == []


def test_list_items_before_any_section_are_ignored():
    text = "- [start:: 2025-01-15 09:00] [end:: 2025-01-15 10:00] Orphan\n"

    assert document.parse_month(text, "2025-01").entries == []


def test_add_entry_keeps_section_chronological():
    new = make_entry("2025-01-15 11:00", "2025-01-15 12:00", "Pairing", client="acme")

    text = document.add_entry(MONTH, new)

    assert descriptions(text, date(2025, 1, 15)) == ["Standup", "Pairing", "Review"]
    assert descriptions(text, date(2025, 1, 16)) == ["Planning"]
    assert "Some notes about the day." in text


def test_add_entry_appends_after_last_item_in_section():
    new = make_entry("2025-01-15 16:00", "2025-01-15 17:00", "Wrap up", client="acme")

    text = document.add_entry(MONTH, new)
    lines = text.split("\n")

    assert lines[6] == document.format_line(new)
    assert lines[7] == ""
    assert lines[8] == "## 2025-01-16"


def test_add_entry_creates_missing_section_in_date_order():
    text = "# 2025-01\n\n## 2025-01-10\n\n## 2025-01-20\n"
    new = make_entry("2025-01-15 09:00", "2025-01-15 10:00", "Middle", client="acme")

    text = document.add_entry(text, new)

    assert document.section_dates(text) == [date(2025, 1, 10), date(2025, 1, 15), date(2025, 1, 20)]
    assert descriptions(text, date(2025, 1, 15)) == ["Middle"]


def test_add_entry_to_new_document_appends_section():
    new = make_entry("2025-01-03 09:00", "2025-01-03 10:00", "First", client="acme")

    text = document.add_entry(document.new_document("2025-01"), new)

    assert text.rstrip().endswith(document.format_line(new))
    assert document.section_dates(text) == [date(2025, 1, 3)]


def test_add_entry_into_empty_section_skips_blank_line():
    text = "# 2025-01\n\n## 2025-01-15\n\n## 2025-01-16\n"
    new = make_entry("2025-01-15 09:00", "2025-01-15 10:00", "Only", client="acme")

    lines = document.add_entry(text, new).split("\n")

    assert lines[2:7] == ["## 2025-01-15", "", document.format_line(new), "", "## 2025-01-16"]


def test_update_entry_replaces_line_in_place():
    parsed = document.parse_month(MONTH, "2025-01")
    review = parsed.entries[1]

    text = document.update_entry(MONTH, review.position, replace(review, description="Code review"))

    assert descriptions(text) == ["Standup", "Code review", "Planning"]
    assert len(text.split("\n")) == len(MONTH.split("\n"))


def test_delete_entry_removes_only_that_entry():
    parsed = document.parse_month(MONTH, "2025-01")
    standup, review = parsed.entries[0], parsed.entries[1]

    text = document.delete_entry(MONTH, standup.position)
    remaining = document.parse_month(text, "2025-01").entries

    assert "Standup" not in descriptions(text)
    assert remaining[0] == review


def test_positions_outside_document_raise():
    with pytest.raises(ValueError):
        document.delete_entry(MONTH, 999)
    with pytest.raises(ValueError):
        document.update_entry(MONTH, 0, make_entry("2025-01-15 09:00", "2025-01-15 10:00"))


def test_locate_entry_follows_moved_lines():
    review = document.parse_month(MONTH, "2025-01").entries[1]
    shifted = MONTH.replace("## 2025-01-15\n", "## 2025-01-15\nA note added by hand.\n")

    assert document.locate_entry(MONTH, review) == review.position
    assert document.locate_entry(shifted, review) == review.position + 1


def test_locate_entry_raises_when_entry_is_gone():
    review = document.parse_month(MONTH, "2025-01").entries[1]
    edited = MONTH.replace("Review", "Reviewed")

    with pytest.raises(StaleEntryError):
        document.locate_entry(edited, review)


LEGACY = """# 2025-01

| Start | End | Description | Client | Project | Activity | Notes |
|---|---|---|---|---|---|---|
| 2025-01-15 09:00 | 2025-01-15 10:30 | Old row | acme | web |  |  |
| 2025-01-15 11:00 | 2025-01-15 12:00 | Second row | acme |  |  | [[notes/second]] |

Trailing paragraph.
"""


def test_legacy_table_rows_are_read():
    parsed = document.parse_month(LEGACY, "2025-01")

    assert [entry.description for entry in parsed.entries] == ["Old row", "Second row"]
    assert parsed.entries[0].project == "web"
    assert parsed.entries[1].linked_note == "notes/second"
    assert list(parsed.entries_by_date) == [date(2025, 1, 15)]


def test_updating_legacy_row_rewrites_it_as_list_item():
    old = document.parse_month(LEGACY, "2025-01").entries[0]

    text = document.update_entry(LEGACY, old.position, replace(old, description="Migrated"))

    assert "Old row" not in text
    assert document.format_line(replace(old, description="Migrated")) in text
    assert sorted(descriptions(text)) == ["Migrated", "Second row"]
    assert "Trailing paragraph." in text


def test_scan_reports_section_of_each_entry():
    scanned = list(document.scan(MONTH))

    assert [item.section for item in scanned] == [
        date(2025, 1, 15),
        date(2025, 1, 15),
        date(2025, 1, 16),
    ]
