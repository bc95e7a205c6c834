"""
Slot Availability Scheduler.

Computes the start times that can be offered for an employee on a given
date from the employee's weekly working hours and the bookings already
taken that day.

All clock arithmetic is done in whole minutes. Booked intervals are
half-open: an appointment ``[start, start + duration)`` blocks a candidate
slot only when it contains the slot's start instant.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional, Sequence

logger = logging.getLogger(__name__)

DEFAULT_SLOT_MINUTES = 30
DEFAULT_APPOINTMENT_MINUTES = 30
DAYS_PER_WEEK = 7


def parse_time_of_day(value: str) -> time:
    """Parse an ``HH:MM`` string into a time."""
    hours, minutes = value.strip().split(":")[:2]
    return time(int(hours), int(minutes))


def format_slot(value: time) -> str:
    """Format a time as ``HH:MM``."""
    return f"{value.hour:02d}:{value.minute:02d}"


def _minutes_since_midnight(value: time) -> int:
    return value.hour * 60 + value.minute


@dataclass(frozen=True)
class DayHours:
    """Working hours for one weekday."""

    start: time
    end: time

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["DayHours"]:
        """Create from a ``{"start": "HH:MM", "end": "HH:MM"}`` entry.

        Returns None for empty or malformed entries.
        """
        if not data or not data.get("start") or not data.get("end"):
            return None
        try:
            return cls(
                start=parse_time_of_day(data["start"]),
                end=parse_time_of_day(data["end"]),
            )
        except (ValueError, TypeError) as e:
            logger.warning(f"Ignoring malformed working hours {data!r}: {e}")
            return None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {"start": format_slot(self.start), "end": format_slot(self.end)}


@dataclass(frozen=True)
class WeeklySchedule:
    """
    Working hours indexed by weekday ordinal.

    ``days[0]`` is Monday and ``days[6]`` is Sunday, matching
    ``date.weekday()``. A None entry means the employee does not work
    that day.
    """

    days: tuple[Optional[DayHours], ...] = (None,) * DAYS_PER_WEEK

    def __post_init__(self) -> None:
        if len(self.days) != DAYS_PER_WEEK:
            raise ValueError(f"A weekly schedule needs {DAYS_PER_WEEK} entries")

    @classmethod
    def from_json(cls, raw: Optional[Sequence[Optional[dict]]]) -> "WeeklySchedule":
        """Create from the stored JSON array (missing trailing days are off)."""
        entries = list(raw or [])[:DAYS_PER_WEEK]
        entries += [None] * (DAYS_PER_WEEK - len(entries))
        return cls(days=tuple(DayHours.from_dict(entry) for entry in entries))

    def to_json(self) -> list[Optional[dict]]:
        """Convert to the stored JSON array."""
        return [hours.to_dict() if hours else None for hours in self.days]

    def for_date(self, day: date) -> Optional[DayHours]:
        """Working hours for the weekday of ``day``."""
        return self.days[day.weekday()]


@dataclass(frozen=True)
class BookedInterval:
    """An existing PENDING or CONFIRMED booking."""

    start: datetime
    duration_minutes: int = DEFAULT_APPOINTMENT_MINUTES

    @property
    def end(self) -> datetime:
        minutes = self.duration_minutes or DEFAULT_APPOINTMENT_MINUTES
        return self.start + timedelta(minutes=minutes)

    def contains(self, instant: datetime) -> bool:
        """Half-open containment: start <= instant < end."""
        return self.start <= instant < self.end

    def overlaps(self, other: "BookedInterval") -> bool:
        """True when the two half-open intervals share any instant."""
        return self.start < other.end and other.start < self.end


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """First and last instant of a local calendar day."""
    return (
        datetime.combine(day, time.min),
        datetime.combine(day, time.max),
    )


def generate_candidate_slots(
    hours: DayHours,
    slot_minutes: int = DEFAULT_SLOT_MINUTES,
) -> list[time]:
    """Every slot start from ``hours.start`` up to, not including, ``hours.end``."""
    if slot_minutes <= 0:
        raise ValueError("slot_minutes must be positive")

    start = _minutes_since_midnight(hours.start)
    end = _minutes_since_midnight(hours.end)
    return [time(m // 60, m % 60) for m in range(start, end, slot_minutes)]


def is_slot_free(instant: datetime, bookings: Iterable[BookedInterval]) -> bool:
    """True when no booking contains ``instant``."""
    return not any(booking.contains(instant) for booking in bookings)


def is_interval_free(candidate: BookedInterval, bookings: Iterable[BookedInterval]) -> bool:
    """True when no booking overlaps the whole candidate interval."""
    return not any(booking.overlaps(candidate) for booking in bookings)


def compute_available_slots(
    hours: Optional[DayHours],
    day: date,
    bookings: Sequence[BookedInterval],
    slot_minutes: int = DEFAULT_SLOT_MINUTES,
    not_before: Optional[datetime] = None,
) -> list[str]:
    """Compute offerable slot start times for one employee and day.

    Args:
        hours: Working hours for the weekday of ``day`` (None = day off)
        day: Target calendar date
        bookings: Open bookings of the employee starting on ``day``
        slot_minutes: Candidate granularity
        not_before: Drop slots starting at or before this instant

    Returns:
        Free slots as ``HH:MM`` strings in chronological order
    """
    if hours is None:
        return []

    offers = []
    for candidate in generate_candidate_slots(hours, slot_minutes):
        checkpoint = datetime.combine(day, candidate)
        if not_before is not None and checkpoint <= not_before:
            continue
        if is_slot_free(checkpoint, bookings):
            offers.append(format_slot(candidate))

    return offers
