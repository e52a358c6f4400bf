"""
Tests for the pure scheduling rules.

Run with: pytest tests/test_scheduling.py -v
"""

import itertools
from datetime import date, datetime, time
from decimal import Decimal
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest

from kyros.scheduling import (
    BookedInterval,
    DaySchedule,
    RegisteredClient,
    UnknownClient,
    WalkInClient,
    aggregate_services,
    booked_intervals_for_day,
    compute_slots,
    day_of_week,
    format_clock,
    intervals_overlap,
    parse_clock,
    resolve_client,
    schedule_for_day,
    validate_within_hours,
)

MONDAY = date(2030, 1, 7)
SUNDAY = date(2030, 1, 6)
TZ = ZoneInfo("America/Mexico_City")


def monday(open_at="09:00", close_at="20:00", break_start=None, break_minutes=None) -> DaySchedule:
    return DaySchedule(
        day_of_week=1,
        open_minutes=parse_clock(open_at),
        close_minutes=parse_clock(close_at),
        break_start_minutes=parse_clock(break_start) if break_start else None,
        break_minutes=break_minutes,
    )


# ============================================================================
# CLOCK HELPERS
# ============================================================================

class TestClockHelpers:

    def test_parse_hh_mm(self):
        assert parse_clock("09:30") == 570

    def test_parse_drops_seconds(self):
        """HH:MM:SS is truncated to the minute."""
        assert parse_clock("14:00:59") == 840

    def test_parse_time_object(self):
        assert parse_clock(time(20, 15)) == 1215

    @pytest.mark.parametrize("value", ["", "9", "25:00", "10:60", "ab:cd", "1:2:3:4"])
    def test_parse_rejects_invalid(self, value):
        with pytest.raises(ValueError):
            parse_clock(value)

    def test_format_pads(self):
        assert format_clock(545) == "09:05"

    def test_day_of_week_starts_on_sunday(self):
        assert day_of_week(SUNDAY) == 0
        assert day_of_week(MONDAY) == 1
        assert day_of_week(date(2030, 1, 12)) == 6


# ============================================================================
# OVERLAP RULE
# ============================================================================

class TestIntervalsOverlap:

    def test_symmetric(self):
        """overlap(a, b) == overlap(b, a) for every pair on a small grid."""
        points = range(0, 6)
        intervals = [(s, e) for s, e in itertools.product(points, points) if s < e]
        for (s1, e1), (s2, e2) in itertools.product(intervals, intervals):
            assert intervals_overlap(s1, e1, s2, e2) == intervals_overlap(s2, e2, s1, e1)

    def test_touching_boundary_does_not_overlap(self):
        """An interval ending when another starts is not a conflict."""
        assert intervals_overlap(600, 630, 630, 660) is False
        assert intervals_overlap(630, 660, 600, 630) is False

    def test_partial_overlap(self):
        assert intervals_overlap(600, 630, 615, 645) is True

    def test_containment(self):
        assert intervals_overlap(600, 720, 630, 660) is True

    def test_works_with_datetimes(self):
        a = datetime(2030, 1, 7, 10, 0, tzinfo=TZ)
        b = datetime(2030, 1, 7, 10, 30, tzinfo=TZ)
        c = datetime(2030, 1, 7, 11, 0, tzinfo=TZ)
        assert intervals_overlap(a, b, b, c) is False
        assert intervals_overlap(a, c, b, c) is True


# ============================================================================
# AVAILABILITY CALCULATOR
# ============================================================================

class TestComputeSlots:

    def test_no_schedule_means_closed(self):
        """A day without a schedule entry yields no slots."""
        assert compute_slots(None, [BookedInterval(600, 630)]) == []

    def test_close_is_exclusive(self):
        """09:00-11:00 at 30 minutes gives four slots, 11:00 excluded."""
        assert compute_slots(monday("09:00", "11:00"), []) == ["09:00", "09:30", "10:00", "10:30"]

    def test_booked_start_excluded(self):
        slots = compute_slots(monday("09:00", "11:00"), [BookedInterval(600, 630)])
        assert slots == ["09:00", "09:30", "10:30"]

    def test_slot_inside_long_appointment_excluded(self):
        """A 09:15-10:15 appointment takes the 09:30 and 10:00 starts."""
        slots = compute_slots(monday("09:00", "11:00"), [BookedInterval(555, 615)])
        assert slots == ["09:00", "10:30"]

    def test_break_excluded(self):
        slots = compute_slots(monday("13:00", "16:00", "14:00", 60), [])
        assert slots == ["13:00", "13:30", "15:00", "15:30"]

    def test_custom_interval(self):
        assert compute_slots(monday("09:00", "10:00"), [], interval_minutes=15) == [
            "09:00", "09:15", "09:30", "09:45",
        ]

    def test_starts_at_open_minute(self):
        assert compute_slots(monday("09:15", "10:15"), []) == ["09:15", "09:45"]

    def test_non_positive_interval_rejected(self):
        with pytest.raises(ValueError):
            compute_slots(monday(), [], interval_minutes=0)

    @pytest.mark.parametrize(
        "schedule",
        [
            monday("09:00", "20:00", "14:00", 60),
            monday("08:30", "13:00", "10:00", 45),
            monday("10:00", "18:00"),
        ],
    )
    def test_slots_inside_hours_and_outside_break(self, schedule):
        for slot in compute_slots(schedule, []):
            minute = parse_clock(slot)
            assert schedule.open_minutes <= minute < schedule.close_minutes
            if schedule.break_window:
                start, end = schedule.break_window
                assert not (start <= minute < end)

    def test_recomputed_not_cached(self):
        """Two calls return independent lists."""
        schedule = monday("09:00", "10:00")
        first = compute_slots(schedule, [])
        first.append("99:99")
        assert compute_slots(schedule, []) == ["09:00", "09:30"]


class TestScheduleForDay:

    def test_picks_matching_weekday(self):
        schedules = [DaySchedule(0, 600, 840), monday()]
        assert schedule_for_day(schedules, MONDAY).day_of_week == 1

    def test_missing_weekday(self):
        assert schedule_for_day([monday()], SUNDAY) is None

    def test_duplicate_rows_first_wins(self, caplog):
        first = monday("09:00", "14:00")
        second = monday("16:00", "20:00")
        assert schedule_for_day([first, second], MONDAY) is first
        assert "using the first" in caplog.text

    def test_from_row(self, monday_schedule_row):
        schedule = DaySchedule.from_row(monday_schedule_row)
        assert schedule.open_minutes == 540
        assert schedule.close_minutes == 1200
        assert schedule.break_window == (840, 900)


class TestBookedIntervals:

    def test_projects_to_local_minutes(self):
        appt = SimpleNamespace(
            start_at=datetime(2030, 1, 7, 10, 0, tzinfo=TZ),
            end_at=datetime(2030, 1, 7, 10, 30, tzinfo=TZ),
        )
        assert booked_intervals_for_day([appt], MONDAY, TZ) == [BookedInterval(600, 630)]

    def test_utc_timestamps_converted(self):
        """16:00 UTC is 10:00 in Mexico City."""
        appt = SimpleNamespace(
            start_at=datetime(2030, 1, 7, 16, 0, tzinfo=ZoneInfo("UTC")),
            end_at=datetime(2030, 1, 7, 16, 45, tzinfo=ZoneInfo("UTC")),
        )
        assert booked_intervals_for_day([appt], MONDAY, TZ) == [BookedInterval(600, 645)]

    def test_clipped_at_midnight(self):
        appt = SimpleNamespace(
            start_at=datetime(2030, 1, 7, 23, 30, tzinfo=TZ),
            end_at=datetime(2030, 1, 8, 0, 30, tzinfo=TZ),
        )
        assert booked_intervals_for_day([appt], MONDAY, TZ) == [BookedInterval(1410, 1440)]

    def test_other_day_ignored(self):
        appt = SimpleNamespace(
            start_at=datetime(2030, 1, 8, 10, 0, tzinfo=TZ),
            end_at=datetime(2030, 1, 8, 10, 30, tzinfo=TZ),
        )
        assert booked_intervals_for_day([appt], MONDAY, TZ) == []


# ============================================================================
# BUSINESS-HOURS VALIDATOR
# ============================================================================

class TestValidateWithinHours:

    def test_break_conflict_names_break_end(self):
        """14:30 for 30 min against a 14:00+60 break is rejected, message mentions 15:00."""
        check = validate_within_hours(MONDAY, "14:30", 30, monday(break_start="14:00", break_minutes=60))
        assert check.valid is False
        assert check.reason == "break"
        assert "15:00" in check.message

    def test_ends_after_close(self):
        """19:45 for 30 min with close 20:00 is rejected."""
        check = validate_within_hours(MONDAY, "19:45", 30, monday())
        assert check.valid is False
        assert check.reason == "after_close"
        assert "20:00" in check.message

    def test_before_open(self):
        check = validate_within_hours(MONDAY, "08:30", 30, monday())
        assert check.valid is False
        assert check.reason == "before_open"
        assert "09:00" in check.message

    def test_no_schedule_is_closed(self):
        check = validate_within_hours(SUNDAY, "10:00", 30, None)
        assert check.valid is False
        assert check.reason == "closed"

    def test_schedule_for_other_weekday_is_closed(self):
        check = validate_within_hours(SUNDAY, "10:00", 30, monday())
        assert check.reason == "closed"

    def test_ending_exactly_at_close_is_valid(self):
        assert validate_within_hours(MONDAY, "19:30", 30, monday()).valid is True

    def test_ending_exactly_at_break_start_is_valid(self):
        schedule = monday(break_start="14:00", break_minutes=60)
        assert validate_within_hours(MONDAY, "13:30", 30, schedule).valid is True
        assert validate_within_hours(MONDAY, "15:00", 30, schedule).valid is True

    def test_seconds_truncated(self):
        assert validate_within_hours(MONDAY, "09:00:45", 30, monday()).valid is True

    def test_idempotent(self):
        schedule = monday(break_start="14:00", break_minutes=60)
        args = (MONDAY, "14:30", 30, schedule)
        assert validate_within_hours(*args) == validate_within_hours(*args)

    def test_order_closing_before_break(self):
        """A candidate failing both closing and break reports closing first."""
        schedule = monday("09:00", "15:00", "14:00", 60)
        assert validate_within_hours(MONDAY, "14:30", 60, schedule).reason == "after_close"


# ============================================================================
# DURATION AGGREGATOR
# ============================================================================

class TestAggregateServices:

    def test_empty_selection_defaults_to_30(self):
        totals = aggregate_services([])
        assert totals.total_duration_minutes == 30
        assert totals.total_price == Decimal("0")

    def test_sums_duration_and_price(self, services):
        """20 + 45 minutes gives 65."""
        totals = aggregate_services(services)
        assert totals.total_duration_minutes == 65
        assert totals.total_price == Decimal("250.00")

    def test_missing_duration_counts_default(self):
        totals = aggregate_services([SimpleNamespace(duration_minutes=None, base_price=Decimal("80"))])
        assert totals.total_duration_minutes == 30
        assert totals.total_price == Decimal("80")


# ============================================================================
# CLIENT DISPLAY NAME
# ============================================================================

class TestResolveClient:

    def test_registered_wins(self):
        ref = resolve_client("Ana Lopez", "Ana")
        assert ref == RegisteredClient("Ana Lopez")
        assert ref.display_name == "Ana Lopez"

    def test_walk_in(self):
        ref = resolve_client(None, "Pedro")
        assert isinstance(ref, WalkInClient)
        assert ref.display_name == "Pedro (walk-in)"

    def test_unknown(self):
        ref = resolve_client(None, "")
        assert isinstance(ref, UnknownClient)
        assert ref.display_name == "Client"
