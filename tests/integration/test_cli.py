"""Integration tests for the calendar-resolver command line."""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path

import pytest

from calendar_resolver.__main__ import EXIT_OK, EXIT_USAGE, current_week, format_occurrence, main
from calendar_resolver.models import Occurrence

pytestmark = pytest.mark.integration

UTC = timezone.utc
WINDOW_ARGS = ["--start", "2025-06-02", "--end", "2025-06-08", "--timezone", "UTC"]


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path: Path, monkeypatch):
    """Run from an empty directory so no stray .env is picked up."""
    monkeypatch.chdir(tmp_path)
    names = ("", "calendar_resolver", "icalendar", "asyncio", "dateutil")
    levels = {name: logging.getLogger(name).level for name in names}
    yield tmp_path
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)


@pytest.fixture
def work_ics(tmp_path: Path, vevent, calendar) -> Path:
    path = tmp_path / "work.ics"
    path.write_text(
        calendar(
            vevent(
                UID="standup",
                SUMMARY="Standup",
                DTSTART="20250602T090000Z",
                DTEND="20250602T091500Z",
                RRULE="FREQ=WEEKLY;BYDAY=MO,WE,FR",
            ),
            vevent(UID="offsite", SUMMARY="Offsite", DTSTART=";VALUE=DATE:20250604", DTEND=";VALUE=DATE:20250606"),
        ),
        encoding="utf-8",
    )
    return path


def _run(argv):
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


class TestCli:
    """Tests for main()."""

    def test_text_output(self, work_ics: Path, capsys):
        assert _run([str(work_ics), *WINDOW_ARGS]) == EXIT_OK

        assert capsys.readouterr().out.splitlines() == [
            "2025-06-04..2025-06-05 (all day)  Offsite",
            "2025-06-02 09:00-09:15  Standup",
            "2025-06-04 09:00-09:15  Standup",
            "2025-06-06 09:00-09:15  Standup",
        ]

    def test_json_output(self, work_ics: Path, capsys):
        assert _run([str(work_ics), *WINDOW_ARGS, "--json"]) == EXIT_OK

        data = json.loads(capsys.readouterr().out)
        assert [item["title"] for item in data] == ["Offsite", "Standup", "Standup", "Standup"]
        assert data[1]["id"] == "standup_1748854800000"
        assert data[1]["start"] == "2025-06-02T09:00:00+00:00"
        assert data[0]["all_day"] is True

    def test_env_file_supplies_timezone(self, work_ics: Path, tmp_path: Path, capsys):
        env_file = tmp_path / "resolver.env"
        env_file.write_text("CALENDAR_RESOLVER_TIMEZONE=Europe/Berlin\n", encoding="utf-8")
        try:
            code = _run([str(work_ics), "--start", "2025-06-02", "--end", "2025-06-08", "--env-file", str(env_file)])
        finally:
            os.environ.pop("CALENDAR_RESOLVER_TIMEZONE", None)

        assert code == EXIT_OK
        assert "2025-06-02 11:00-11:15  Standup" in capsys.readouterr().out.splitlines()

    def test_debug_setting_enables_package_debug_logging(self, work_ics: Path, monkeypatch):
        monkeypatch.setenv("CALENDAR_RESOLVER_DEBUG", "1")

        assert _run([str(work_ics), *WINDOW_ARGS]) == EXIT_OK

        assert logging.getLogger("calendar_resolver").level == logging.DEBUG
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("icalendar").level == logging.WARNING

    def test_log_level_option_governs_package_loggers(self, work_ics: Path):
        assert _run([str(work_ics), *WINDOW_ARGS, "--log-level", "warning"]) == EXIT_OK

        assert logging.getLogger().level == logging.WARNING
        assert logging.getLogger("calendar_resolver").getEffectiveLevel() == logging.WARNING

    def test_start_after_end_fails(self, work_ics: Path, capsys):
        code = _run([str(work_ics), "--start", "2025-06-09", "--end", "2025-06-02", "--timezone", "UTC"])

        assert code == EXIT_USAGE
        assert capsys.readouterr().err.startswith("Error:")

    def test_unparseable_bound_fails(self, work_ics: Path, capsys):
        assert _run([str(work_ics), "--start", "next tuesday", "--timezone", "UTC"]) == EXIT_USAGE
        assert "Error:" in capsys.readouterr().err

    def test_unknown_timezone_fails(self, work_ics: Path, capsys):
        assert _run([str(work_ics), "--timezone", "Nowhere/Special"]) == EXIT_USAGE
        assert "Unknown timezone" in capsys.readouterr().err

    def test_missing_file_fails(self, tmp_path: Path, capsys):
        assert _run([str(tmp_path / "missing.ics"), *WINDOW_ARGS]) == EXIT_USAGE
        assert "cannot read calendar file" in capsys.readouterr().err

    def test_no_files_is_an_argparse_error(self, capsys):
        assert _run([]) == 2


class TestHelpers:
    """Tests for CLI formatting helpers."""

    def test_current_week_runs_monday_to_sunday(self):
        start, end = current_week(UTC, now=datetime(2025, 6, 5, 15, 30, tzinfo=UTC))

        assert start == datetime(2025, 6, 2, tzinfo=UTC)
        assert end == datetime(2025, 6, 8, 23, 59, 59, 999999, tzinfo=UTC)

    def test_format_timed_without_end(self):
        occurrence = Occurrence(id="x", title="Call", start=datetime(2025, 6, 2, 9, 0, tzinfo=UTC))
        assert format_occurrence(occurrence, UTC) == "2025-06-02 09:00  Call"

    def test_format_single_all_day(self):
        occurrence = Occurrence(
            id="x",
            title="Holiday",
            start=datetime(2025, 6, 2, tzinfo=UTC),
            end=datetime(2025, 6, 3, tzinfo=UTC),
            all_day=True,
        )
        assert format_occurrence(occurrence, UTC) == "2025-06-02 (all day)  Holiday"
