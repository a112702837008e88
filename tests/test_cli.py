import re

import pytest

from md_timesheet import __version__
from md_timesheet.cli import main


@pytest.fixture
def config(tmp_path):
    path = tmp_path / "config.yaml"
    folder = tmp_path / "TimeTracking"
    assert main(["--config", str(path), "init", "--folder", str(folder)]) == 0
    return path


def run(config, *args):
    return main(["--config", str(config), *args])


def add(config, start, end, *extra):
    return run(config, "add", "--start", start, "--end", end, "--client", "acme", *extra)


def test_init_writes_config_and_folder(tmp_path, capsys):
    path = tmp_path / "config.yaml"

    assert main(["--config", str(path), "init", "--folder", str(tmp_path / "tt"), "--week-start", "sunday"]) == 0

    assert path.is_file()
    assert "week_start: sunday" in path.read_text(encoding="utf-8")
    assert (tmp_path / "tt").is_dir()
    assert "Initialized config" in capsys.readouterr().out


def test_add_list_report_remove(config, capsys):
    assert add(config, "2025-01-15 09:00", "2025-01-15 10:30", "--project", "web", "Standup", "call") == 0
    added = capsys.readouterr().out
    key = re.search(r"Added entry (\w+) on 2025-01-15 \(1h 30m\)", added).group(1)

    assert run(config, "list", "--date", "2025-01-15") == 0
    listed = capsys.readouterr().out
    assert key in listed
    assert "09:00-10:30" in listed
    assert "Standup call" in listed

    assert run(config, "report", "--from", "2025-01-15", "--to", "2025-01-15", "--by", "project") == 0
    report = capsys.readouterr().out
    assert "web | 1h 30m | 100.0%" in report

    assert run(config, "remove", "--month", "2025-01", "--id", key) == 0
    capsys.readouterr()
    assert run(config, "list", "--month", "2025-01") == 0
    assert "No entries found." in capsys.readouterr().out


def test_edit_changes_description(config, capsys):
    add(config, "2025-01-15 09:00", "2025-01-15 10:00", "Draft")
    key = re.search(r"Added entry (\w+)", capsys.readouterr().out).group(1)

    assert run(config, "edit", "--month", "2025-01", "--id", key, "--description", "Final") == 0
    capsys.readouterr()

    run(config, "list", "--month", "2025-01")
    assert "Final" in capsys.readouterr().out


def test_overlap_is_reported_with_exit_status_2(config, capsys):
    add(config, "2025-01-15 09:00", "2025-01-15 10:30")
    capsys.readouterr()

    assert add(config, "2025-01-15 10:00", "2025-01-15 11:00") == 2

    assert "overlaps with an existing time entry" in capsys.readouterr().err


def test_missing_client_is_a_validation_error(config, capsys):
    assert run(config, "add", "--start", "2025-01-15 09:00", "--end", "2025-01-15 10:00") == 2

    assert "client: is required" in capsys.readouterr().err


def test_unknown_entry_id(config, capsys):
    assert run(config, "remove", "--month", "2025-01", "--id", "abc123") == 2

    assert "not found" in capsys.readouterr().err


def test_missing_config(tmp_path, capsys):
    assert main(["--config", str(tmp_path / "none.yaml"), "list"]) == 2

    assert "md-timesheet init" in capsys.readouterr().err


def test_version(capsys):
    with pytest.raises(SystemExit):
        main(["--version"])

    assert __version__ in capsys.readouterr().out
