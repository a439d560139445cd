"""End-to-end behaviour of parsing plus resolution on realistic calendars."""

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from calendar_resolver.config_manager import EngineSettings
from calendar_resolver.datetime_utils import epoch_millis
from calendar_resolver.models import EventRecord
from calendar_resolver.resolver import CalendarEngine, OccurrenceResolver

pytestmark = pytest.mark.integration

UTC = timezone.utc
JUNE_START = datetime(2025, 6, 1, tzinfo=UTC)
JUNE_END = datetime(2025, 6, 29, 23, 59, 59, tzinfo=UTC)


class TestResolutionProperties:
    """Properties every resolve call must hold."""

    @pytest.fixture(autouse=True)
    def _setup(self, engine, vevent, calendar, june_week):
        self.engine = engine
        self.vevent = vevent
        self.calendar = calendar
        self.week_start, self.week_end = june_week

    def _mixed_calendar(self) -> str:
        return self.calendar(
            self.vevent(
                UID="standup",
                SUMMARY="Standup",
                DTSTART="20250526T090000Z",
                DTEND="20250526T091500Z",
                RRULE="FREQ=DAILY;BYDAY=MO,TU,WE,TH,FR",
            ),
            self.vevent(
                UID="standup",
                SUMMARY="Standup",
                RECURRENCE_ID="20250604T090000Z",
                DTSTART="20250604T110000Z",
                DTEND="20250604T111500Z",
                SEQUENCE="1",
            ),
            self.vevent(UID="lunch", SUMMARY="Team lunch", DTSTART="20250605T120000Z", DTEND="20250605T130000Z"),
            self.vevent(UID="holiday", SUMMARY="Holiday", DTSTART=";VALUE=DATE:20250606"),
            self.vevent(UID="later", SUMMARY="Next week", DTSTART="20250610T120000Z"),
        )

    def test_resolution_is_idempotent(self):
        objects = [("work.ics", self._mixed_calendar())]

        first = self.engine.resolve_objects(objects, self.week_start, self.week_end)
        second = self.engine.resolve_objects(objects, self.week_start, self.week_end)

        assert first == second
        assert [o.model_dump() for o in first] == [o.model_dump() for o in second]

    def test_every_occurrence_is_inside_the_window(self):
        occurrences = self.engine.resolve_objects(
            [("work.ics", self._mixed_calendar())], self.week_start, self.week_end
        )

        assert occurrences
        for occurrence in occurrences:
            if occurrence.all_day:
                assert occurrence.start <= self.week_end
            else:
                assert self.week_start <= occurrence.start <= self.week_end
        assert "Next week" not in [o.title for o in occurrences]

    def test_no_duplicate_title_and_start(self):
        text = self._mixed_calendar()
        occurrences = self.engine.resolve_objects(
            [("a.ics", text), ("b.ics", text)], self.week_start, self.week_end
        )

        keys = [(o.title, o.start) for o in occurrences]
        assert len(keys) == len(set(keys))
        assert len(occurrences) == 7

    def test_output_order(self):
        occurrences = self.engine.resolve_objects(
            [("work.ics", self._mixed_calendar())], self.week_start, self.week_end
        )

        assert occurrences[0].title == "Holiday"
        timed = [o.start for o in occurrences if not o.all_day]
        assert timed == sorted(timed)

    def test_override_replaces_one_instance(self):
        text = self.calendar(
            self.vevent(
                UID="sync",
                SUMMARY="Weekly Sync",
                DTSTART="20250602T090000Z",
                DTEND="20250602T100000Z",
                RRULE="FREQ=WEEKLY;BYDAY=MO",
            ),
            self.vevent(
                UID="sync",
                SUMMARY="Weekly Sync",
                RECURRENCE_ID="20250616T090000Z",
                DTSTART="20250616T140000Z",
                DTEND="20250616T150000Z",
            ),
        )

        occurrences = self.engine.resolve_objects([("sync.ics", text)], JUNE_START, JUNE_END)

        assert [o.start for o in occurrences] == [
            datetime(2025, 6, 2, 9, 0, tzinfo=UTC),
            datetime(2025, 6, 9, 9, 0, tzinfo=UTC),
            datetime(2025, 6, 16, 14, 0, tzinfo=UTC),
            datetime(2025, 6, 23, 9, 0, tzinfo=UTC),
        ]
        moved = occurrences[2]
        assert moved.is_override is True
        assert moved.id == f"sync_{epoch_millis(datetime(2025, 6, 16, 9, 0, tzinfo=UTC))}"
        assert all(o.is_expanded_instance for o in occurrences if o is not moved)

    def test_cancelled_events_never_appear(self):
        text = self.calendar(
            self.vevent(UID="gone", SUMMARY="Cancelled review", DTSTART="20250603T100000Z", STATUS="CANCELLED"),
            self.vevent(
                UID="gone-series",
                SUMMARY="Cancelled series",
                DTSTART="20250602T080000Z",
                RRULE="FREQ=DAILY",
                STATUS="CANCELLED",
            ),
            self.vevent(UID="kept", SUMMARY="Kept", DTSTART="20250603T100000Z"),
        )

        occurrences = self.engine.resolve_objects([("c.ics", text)], self.week_start, self.week_end)

        assert [o.title for o in occurrences] == ["Kept"]

    def test_cancelled_override_leaves_series_instance(self):
        text = self.calendar(
            self.vevent(UID="s", SUMMARY="Standup", DTSTART="20250602T090000Z", RRULE="FREQ=DAILY;COUNT=3"),
            self.vevent(
                UID="s",
                SUMMARY="Standup",
                RECURRENCE_ID="20250603T090000Z",
                DTSTART="20250603T090000Z",
                STATUS="CANCELLED",
            ),
        )

        occurrences = self.engine.resolve_objects([("c.ics", text)], self.week_start, self.week_end)

        assert [o.start.day for o in occurrences] == [2, 3, 4]

    def test_higher_sequence_supersedes_same_day(self):
        text = self.calendar(
            self.vevent(UID="v1", SUMMARY="Design review", DTSTART="20250604T100000Z", SEQUENCE="0"),
            self.vevent(UID="v2", SUMMARY="Design review", DTSTART="20250604T150000Z", SEQUENCE="3"),
        )

        occurrences = self.engine.resolve_objects([("r.ics", text)], self.week_start, self.week_end)

        (review,) = occurrences
        assert review.id == "v2"
        assert review.start == datetime(2025, 6, 4, 15, 0, tzinfo=UTC)

    def test_weekly_standup_scenario(self):
        text = self.calendar(
            self.vevent(
                UID="standup-mwf",
                SUMMARY="Standup",
                DTSTART="20250602T090000Z",
                DTEND="20250602T091500Z",
                RRULE="FREQ=WEEKLY;BYDAY=MO,WE,FR",
            )
        )

        occurrences = self.engine.resolve_objects([("s.ics", text)], self.week_start, self.week_end)

        starts = [datetime(2025, 6, day, 9, 0, tzinfo=UTC) for day in (2, 4, 6)]
        assert [o.start for o in occurrences] == starts
        assert [o.id for o in occurrences] == [f"standup-mwf_{epoch_millis(start)}" for start in starts]
        assert all(o.end - o.start == timedelta(minutes=15) for o in occurrences)
        assert all(o.series_uid == "standup-mwf" for o in occurrences)

    def test_exdate_removes_instance(self):
        text = self.calendar(
            self.vevent(
                UID="ex",
                SUMMARY="Standup",
                DTSTART="20250602T090000Z",
                RRULE="FREQ=DAILY;COUNT=5",
                EXDATE="20250604T090000Z",
            )
        )

        occurrences = self.engine.resolve_objects([("e.ics", text)], self.week_start, self.week_end)

        assert [o.start.day for o in occurrences] == [2, 3, 5, 6]

    def test_malformed_content_is_tolerated(self):
        text = (
            "BEGIN:VCALENDAR\r\n"
            "THIS IS NOT A PROPERTY\r\n"
            "BEGIN:VEVENT\r\n"
            "UID:broken\r\n"
            "SUMMARY:Broken start\r\n"
            "DTSTART:soon\r\n"
            "END:VEVENT\r\n"
            "BEGIN:VEVENT\r\n"
            "UID:bad-rule\r\n"
            "SUMMARY:Odd rule\r\n"
            "DTSTART:20250603T080000Z\r\n"
            "RRULE:FREQ=SECONDLY\r\n"
            "END:VEVENT\r\n"
            "BEGIN:VEVENT\r\n"
            "UID:fine\r\n"
            "SUMMARY:Fine\r\n"
            "DTSTART:20250603T100000Z\r\n"
            "END:VEVENT\r\n"
            "BEGIN:VEVENT\r\n"
            "UID:cut\r\n"
            "SUMMARY:Cut off\r\n"
        )

        occurrences = self.engine.resolve_objects([("m.ics", text)], self.week_start, self.week_end)

        assert [(o.title, o.id) for o in occurrences] == [("Odd rule", "bad-rule"), ("Fine", "fine")]

    def test_multi_day_all_day_event_overlapping_window_start(self):
        text = self.calendar(
            self.vevent(UID="trip", SUMMARY="Trip", DTSTART=";VALUE=DATE:20250530", DTEND=";VALUE=DATE:20250604"),
            self.vevent(UID="past", SUMMARY="Weekend", DTSTART=";VALUE=DATE:20250531", DTEND=";VALUE=DATE:20250602"),
        )

        occurrences = self.engine.resolve_objects([("t.ics", text)], self.week_start, self.week_end)

        (trip,) = occurrences
        assert trip.title == "Trip"
        assert trip.all_day is True
        assert trip.end - trip.start == timedelta(days=5)

    def test_recurring_all_day_span_started_before_window(self):
        text = self.calendar(
            self.vevent(
                UID="oncall",
                SUMMARY="On call",
                DTSTART=";VALUE=DATE:20250529",
                DTEND=";VALUE=DATE:20250605",
                RRULE="FREQ=WEEKLY",
            )
        )

        occurrences = self.engine.resolve_objects([("o.ics", text)], self.week_start, self.week_end)

        assert [o.start for o in occurrences] == [
            datetime(2025, 5, 29, tzinfo=UTC),
            datetime(2025, 6, 5, tzinfo=UTC),
        ]


class TestNonUtcResolution:
    """Calendar-day logic evaluated in a zone whose day differs from UTC's."""

    @pytest.fixture(autouse=True)
    def _setup(self, vevent, calendar):
        self.berlin = ZoneInfo("Europe/Berlin")
        self.engine = CalendarEngine(EngineSettings(timezone="Europe/Berlin"))
        self.vevent = vevent
        self.calendar = calendar
        self.week_start = datetime(2025, 6, 2)
        self.week_end = datetime(2025, 6, 8, 23, 59, 59)

    def test_late_utc_event_deduplicates_on_local_day(self):
        text = self.calendar(
            self.vevent(UID="v1", SUMMARY="Review", DTSTART="20250603T233000Z", SEQUENCE="0"),
            self.vevent(UID="v2", SUMMARY="Review", DTSTART="20250604T080000Z", SEQUENCE="2"),
        )

        occurrences = self.engine.resolve_objects([("r.ics", text)], self.week_start, self.week_end)

        # 23:30 UTC on the 3rd is already the 4th in Berlin
        assert [o.id for o in occurrences] == ["v2"]

    def test_override_across_local_day_boundary(self):
        text = self.calendar(
            self.vevent(UID="late", SUMMARY="Late sync", DTSTART="20250602T233000Z", RRULE="FREQ=DAILY;COUNT=5"),
            self.vevent(
                UID="late",
                SUMMARY="Late sync",
                RECURRENCE_ID="20250604T233000Z",
                DTSTART="20250604T200000Z",
            ),
        )

        occurrences = self.engine.resolve_objects([("l.ics", text)], self.week_start, self.week_end)

        assert [o.start for o in occurrences] == [
            datetime(2025, 6, 2, 23, 30, tzinfo=UTC),
            datetime(2025, 6, 3, 23, 30, tzinfo=UTC),
            datetime(2025, 6, 4, 20, 0, tzinfo=UTC),
            datetime(2025, 6, 5, 23, 30, tzinfo=UTC),
            datetime(2025, 6, 6, 23, 30, tzinfo=UTC),
        ]
        assert [o.is_override for o in occurrences] == [False, False, True, False, False]
        assert occurrences[2].id == f"late_{epoch_millis(datetime(2025, 6, 4, 23, 30, tzinfo=UTC))}"

    def test_floating_daily_series_keeps_wall_clock_across_dst(self):
        text = self.calendar(
            self.vevent(UID="am", SUMMARY="Morning", DTSTART="20250328T090000", RRULE="FREQ=DAILY")
        )

        occurrences = self.engine.resolve_objects(
            [("m.ics", text)], datetime(2025, 3, 27), datetime(2025, 4, 1, 23, 59, 59)
        )

        assert [o.start.astimezone(self.berlin).hour for o in occurrences] == [9, 9, 9, 9, 9]
        assert [o.start.astimezone(UTC).hour for o in occurrences] == [8, 8, 7, 7, 7]

    def test_all_day_exdate_matches_local_day(self):
        text = self.calendar(
            self.vevent(
                UID="ooo",
                SUMMARY="Out of office",
                DTSTART=";VALUE=DATE:20250602",
                RRULE="FREQ=DAILY;COUNT=5",
                EXDATE=";VALUE=DATE:20250604",
            )
        )

        occurrences = self.engine.resolve_objects([("o.ics", text)], self.week_start, self.week_end)

        assert [o.start.astimezone(self.berlin).day for o in occurrences] == [2, 3, 5, 6]
        assert all(o.start.astimezone(self.berlin).hour == 0 for o in occurrences)


class TestFloatingRecords:
    """Caller-built records with naive datetimes resolve in the engine zone."""

    def test_naive_standalone_record(self):
        resolver = OccurrenceResolver(EngineSettings(timezone="UTC"))
        record = EventRecord(title="X", start=datetime(2025, 6, 3, 9), uid="a")

        (occurrence,) = resolver.resolve([record], datetime(2025, 6, 2), datetime(2025, 6, 8))

        assert occurrence.start == datetime(2025, 6, 3, 9, tzinfo=UTC)

    def test_naive_series_override_and_exdate(self):
        berlin = ZoneInfo("Europe/Berlin")
        resolver = OccurrenceResolver(EngineSettings(timezone="Europe/Berlin"))
        master = EventRecord(
            uid="s",
            title="Standup",
            start=datetime(2025, 6, 2, 9),
            end=datetime(2025, 6, 2, 9, 15),
            recurrence_rule="FREQ=DAILY;COUNT=5",
            excluded_dates=(datetime(2025, 6, 5, 9),),
        )
        override = EventRecord(
            uid="s",
            title="Standup",
            start=datetime(2025, 6, 3, 11),
            end=datetime(2025, 6, 3, 11, 15),
            recurrence_override_of=datetime(2025, 6, 3, 9),
        )

        occurrences = resolver.resolve([master, override], datetime(2025, 6, 2), datetime(2025, 6, 8))

        assert [o.start for o in occurrences] == [
            datetime(2025, 6, 2, 9, tzinfo=berlin),
            datetime(2025, 6, 3, 11, tzinfo=berlin),
            datetime(2025, 6, 4, 9, tzinfo=berlin),
            datetime(2025, 6, 6, 9, tzinfo=berlin),
        ]
        assert all(o.start.tzinfo is not None for o in occurrences)
