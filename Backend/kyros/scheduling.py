"""
Scheduling Rules

Pure functions for appointment scheduling. Nothing here touches the database:
callers fetch the branch schedule and existing appointments, then ask these
functions whether a time works.

All time-of-day arithmetic is done in minutes since midnight. Clock strings
may be "HH:MM" or "HH:MM:SS"; seconds are always dropped.

Overlap rule (half-open intervals):
    [s1, e1) and [s2, e2) overlap  <=>  s1 < e2 and e1 > s2
so an appointment ending at 10:30 never conflicts with one starting at 10:30.

Example:
    schedule open=09:00 close=20:00, break 14:00 for 60 min
    validate_within_hours(day, "14:30", 30, schedule)
        -> invalid, "The appointment overlaps the break (14:00 - 15:00)."
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from decimal import Decimal
from typing import Iterable, Optional, Sequence, Union

logger = logging.getLogger(__name__)

DEFAULT_SLOT_INTERVAL_MINUTES = 30
DEFAULT_APPOINTMENT_MINUTES = 30
MINUTES_PER_DAY = 24 * 60

ClockValue = Union[str, time]


# ────────────────────────────────────────────────────────────────
# Clock helpers
# ────────────────────────────────────────────────────────────────

def parse_clock(value: ClockValue) -> int:
    """
    Convert a time of day to minutes since midnight.

    Accepts "HH:MM", "HH:MM:SS" or a `datetime.time`. Seconds are truncated.

    Raises:
        ValueError: if the string is not a valid clock time
    """
    if isinstance(value, time):
        return value.hour * 60 + value.minute

    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid time '{value}'. Use HH:MM.")
    try:
        hours, minutes = int(parts[0]), int(parts[1])
    except ValueError:
        raise ValueError(f"Invalid time '{value}'. Use HH:MM.") from None
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ValueError(f"Invalid time '{value}'. Use HH:MM.")
    return hours * 60 + minutes


def format_clock(minutes: int) -> str:
    """Format minutes since midnight as "HH:MM"."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def day_of_week(day: date) -> int:
    """Weekday number with 0=Sunday .. 6=Saturday."""
    return (day.weekday() + 1) % 7


def intervals_overlap(start_a, end_a, start_b, end_b) -> bool:
    """Half-open interval overlap. Works for minutes or datetimes."""
    return start_a < end_b and end_a > start_b


# ────────────────────────────────────────────────────────────────
# Value types
# ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DaySchedule:
    """Opening hours of one branch on one weekday."""

    day_of_week: int
    open_minutes: int
    close_minutes: int
    break_start_minutes: Optional[int] = None
    break_minutes: Optional[int] = None

    @property
    def break_window(self) -> Optional[tuple[int, int]]:
        """(start, end) of the break in minutes, or None without a break."""
        if self.break_start_minutes is None or not self.break_minutes:
            return None
        return self.break_start_minutes, self.break_start_minutes + self.break_minutes

    @classmethod
    def from_row(cls, row) -> "DaySchedule":
        """Build from a `BranchSchedule` row (or anything with the same fields)."""
        return cls(
            day_of_week=row.day_of_week,
            open_minutes=parse_clock(row.open_time),
            close_minutes=parse_clock(row.close_time),
            break_start_minutes=parse_clock(row.break_start) if row.break_start else None,
            break_minutes=row.break_minutes,
        )


@dataclass(frozen=True)
class BookedInterval:
    """An existing appointment reduced to minutes of its day."""

    start_minutes: int
    end_minutes: int


@dataclass(frozen=True)
class HoursCheck:
    """Result of a business-hours validation. Never raised, always returned."""

    valid: bool
    message: Optional[str] = None
    reason: Optional[str] = None  # closed | before_open | after_close | break


@dataclass(frozen=True)
class ServiceTotals:
    total_duration_minutes: int
    total_price: Decimal


def schedule_for_day(schedules: Iterable[DaySchedule], day: date) -> Optional[DaySchedule]:
    """
    Pick the schedule entry for the weekday of `day`.

    Branches are expected to have one entry per weekday. If several exist the
    first one wins and a warning is logged.
    """
    weekday = day_of_week(day)
    matches = [s for s in schedules if s.day_of_week == weekday]
    if len(matches) > 1:
        logger.warning(
            f"{len(matches)} schedule entries for weekday {weekday}; using the first"
        )
    return matches[0] if matches else None


def booked_intervals_for_day(
    appointments: Iterable,
    day: date,
    tz: tzinfo,
) -> list[BookedInterval]:
    """
    Project appointments onto the minutes of `day` in the branch timezone.

    Appointments spilling over midnight are clipped to the day.
    """
    day_start = datetime.combine(day, time(0, 0), tzinfo=tz)
    day_end = day_start + timedelta(days=1)
    intervals = []
    for appt in appointments:
        start = appt.start_at.astimezone(tz)
        end = appt.end_at.astimezone(tz)
        if not intervals_overlap(start, end, day_start, day_end):
            continue
        start_minutes = max(0, int((start - day_start).total_seconds() // 60))
        end_minutes = min(MINUTES_PER_DAY, int((end - day_start).total_seconds() // 60))
        intervals.append(BookedInterval(start_minutes, end_minutes))
    return intervals


# ────────────────────────────────────────────────────────────────
# Availability
# ────────────────────────────────────────────────────────────────

def compute_slots(
    schedule: Optional[DaySchedule],
    booked: Iterable[BookedInterval],
    interval_minutes: int = DEFAULT_SLOT_INTERVAL_MINUTES,
) -> list[str]:
    """
    List bookable slot start times for one day.

    Slots start at opening time and step by `interval_minutes` up to, not
    including, closing time. A slot is dropped when its start falls inside an
    existing appointment or inside the break. No schedule means the branch is
    closed that day and the result is empty.
    """
    if schedule is None:
        return []
    if interval_minutes <= 0:
        raise ValueError("interval_minutes must be positive")

    taken = list(booked)
    window = schedule.break_window
    slots: list[str] = []

    for minute in range(schedule.open_minutes, schedule.close_minutes, interval_minutes):
        if any(b.start_minutes <= minute < b.end_minutes for b in taken):
            continue
        if window and window[0] <= minute < window[1]:
            continue
        slots.append(format_clock(minute))

    return slots


def validate_within_hours(
    day: date,
    start_time: ClockValue,
    duration_minutes: int,
    schedule: Optional[DaySchedule],
) -> HoursCheck:
    """
    Check that an appointment fits inside the branch hours of its day.

    Checks run in order: closed day, before opening, after closing, break.
    The first failure is returned with a message naming the limit.
    """
    if schedule is None or schedule.day_of_week != day_of_week(day):
        return HoursCheck(False, "The branch is closed this day.", "closed")

    start = parse_clock(start_time)
    end = start + duration_minutes

    if start < schedule.open_minutes:
        return HoursCheck(
            False,
            f"The branch opens at {format_clock(schedule.open_minutes)}.",
            "before_open",
        )

    if end > schedule.close_minutes:
        return HoursCheck(
            False,
            f"The appointment ends after closing time ({format_clock(schedule.close_minutes)}).",
            "after_close",
        )

    window = schedule.break_window
    if window and intervals_overlap(start, end, window[0], window[1]):
        return HoursCheck(
            False,
            f"The appointment overlaps the break ({format_clock(window[0])} - {format_clock(window[1])}).",
            "break",
        )

    return HoursCheck(True)


# ────────────────────────────────────────────────────────────────
# Duration / price aggregation
# ────────────────────────────────────────────────────────────────

def aggregate_services(services: Sequence) -> ServiceTotals:
    """
    Total duration and price of the services booked in one appointment.

    An empty selection yields the default 30 minutes so an appointment never
    has zero length. A service without a duration counts as 30 minutes.
    """
    if not services:
        return ServiceTotals(DEFAULT_APPOINTMENT_MINUTES, Decimal("0"))

    duration = sum(s.duration_minutes or DEFAULT_APPOINTMENT_MINUTES for s in services)
    price = sum((Decimal(str(s.base_price or 0)) for s in services), Decimal("0"))
    return ServiceTotals(duration, price)


# ────────────────────────────────────────────────────────────────
# Client display name
# ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RegisteredClient:
    name: str

    @property
    def display_name(self) -> str:
        return self.name


@dataclass(frozen=True)
class WalkInClient:
    manual_name: str

    @property
    def display_name(self) -> str:
        return f"{self.manual_name} (walk-in)"


@dataclass(frozen=True)
class UnknownClient:
    @property
    def display_name(self) -> str:
        return "Client"


ClientRef = Union[RegisteredClient, WalkInClient, UnknownClient]


def resolve_client(registered_name: Optional[str], manual_name: Optional[str]) -> ClientRef:
    """Registered client wins over a manually typed name; neither gives Unknown."""
    if registered_name:
        return RegisteredClient(registered_name)
    if manual_name:
        return WalkInClient(manual_name)
    return UnknownClient()
