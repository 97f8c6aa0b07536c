"""
Interview conflict resolution.

Pure interval arithmetic over a snapshot of a company's bookings: decides
whether a requested slot overlaps an existing interview and enumerates the
free slots of a day. Nothing here touches storage.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date

from hiring_engine.config import get_settings
from hiring_engine.errors import SlotConflictError, ValidationError
from hiring_engine.schemas import BOOKED_INTERVIEW_STATUSES, Interview, Slot

_CLOCK_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

MINUTES_PER_DAY = 24 * 60


def parse_clock(value: str) -> int:
    """
    Convert an HH:MM string into minutes since midnight.

    Raises:
        ValidationError: If the value is not a 24-hour HH:MM time.
    """
    match = _CLOCK_RE.match(value or "")
    if not match:
        raise ValidationError(f"Invalid time '{value}', expected HH:MM", field="start_time")
    return int(match.group(1)) * 60 + int(match.group(2))


def format_clock(minutes: int) -> str:
    """Convert minutes since midnight back into HH:MM."""
    hours, mins = divmod(minutes, 60)
    return f"{hours:02d}:{mins:02d}"


@dataclass(frozen=True)
class BookingInterval:
    """Half-open interval [start, end) in minutes since midnight."""

    start: int
    end: int
    interview_id: str | None = None

    def overlaps(self, other: BookingInterval) -> bool:
        """Check if this interval overlaps another."""
        return self.start < other.end and other.start < self.end


class ConflictResolver:
    """
    Detects overlapping interviews and generates free slots.

    Bookings are supplied by the caller; only interviews in a booked status
    (scheduled or confirmed) on the requested day take part.
    """

    def __init__(
        self,
        working_hours_start: str = "09:00",
        working_hours_end: str = "18:00",
        slot_step_minutes: int | None = None,
    ) -> None:
        """
        Initialize the resolver.

        Args:
            working_hours_start: Start of the slot-generation window (HH:MM).
            working_hours_end: End of the slot-generation window (HH:MM).
            slot_step_minutes: Step between candidate starts; None uses the duration.
        """
        self._day_start = parse_clock(working_hours_start)
        self._day_end = parse_clock(working_hours_end)
        if self._day_end <= self._day_start:
            raise ValidationError("Working hours must end after they start", field="working_hours_end")
        if slot_step_minutes is not None and slot_step_minutes <= 0:
            raise ValidationError("Slot step must be positive", field="slot_step_minutes")
        self._step = slot_step_minutes

    @classmethod
    def from_settings(cls) -> ConflictResolver:
        """Build a resolver from application settings."""
        settings = get_settings()
        return cls(
            working_hours_start=settings.working_hours_start,
            working_hours_end=settings.working_hours_end,
            slot_step_minutes=settings.slot_step_minutes,
        )

    @property
    def working_hours(self) -> tuple[str, str]:
        return format_clock(self._day_start), format_clock(self._day_end)

    @staticmethod
    def booked_intervals(
        bookings: Iterable[Interview],
        on_date: date,
        exclude_interview_id: str | None = None,
    ) -> list[BookingInterval]:
        """
        Build sorted intervals for the live bookings of a day.

        Args:
            bookings: Snapshot of the company's interviews.
            on_date: Day to consider.
            exclude_interview_id: Interview to leave out (its own prior booking).

        Returns:
            Intervals ordered by start.
        """
        intervals = [
            BookingInterval(booking.start_minute, booking.end_minute, booking.interview_id)
            for booking in bookings
            if booking.date == on_date
            and booking.status in BOOKED_INTERVIEW_STATUSES
            and booking.interview_id != exclude_interview_id
        ]
        intervals.sort(key=lambda interval: (interval.start, interval.end))
        return intervals

    def find_conflict(
        self,
        bookings: Iterable[Interview],
        on_date: date,
        start_time: str,
        duration_minutes: int,
        exclude_interview_id: str | None = None,
    ) -> BookingInterval | None:
        """
        Find the first booking overlapping a requested slot.

        Returns:
            The overlapping interval, or None if the slot is free.
        """
        conflicts = self.find_conflicts(bookings, on_date, start_time, duration_minutes, exclude_interview_id)
        return conflicts[0] if conflicts else None

    def find_conflicts(
        self,
        bookings: Iterable[Interview],
        on_date: date,
        start_time: str,
        duration_minutes: int,
        exclude_interview_id: str | None = None,
    ) -> list[BookingInterval]:
        """Every booking overlapping a requested slot, in start order."""
        requested = self._requested_interval(start_time, duration_minutes)
        overlapping: list[BookingInterval] = []
        for interval in self.booked_intervals(bookings, on_date, exclude_interview_id):
            if interval.start >= requested.end:
                break
            if interval.overlaps(requested):
                overlapping.append(interval)
        return overlapping

    def ensure_free(
        self,
        bookings: Iterable[Interview],
        on_date: date,
        start_time: str,
        duration_minutes: int,
        exclude_interview_id: str | None = None,
    ) -> None:
        """
        Raise if a requested slot overlaps an existing booking.

        Raises:
            SlotConflictError: With the overlapping interview's id.
        """
        conflict = self.find_conflict(bookings, on_date, start_time, duration_minutes, exclude_interview_id)
        if conflict is not None:
            raise SlotConflictError(
                conflicting_interview_id=conflict.interview_id or "",
                date=on_date.isoformat(),
                start_time=start_time,
                end_time=format_clock(parse_clock(start_time) + duration_minutes),
            )

    def available_slots(
        self,
        bookings: Iterable[Interview],
        on_date: date,
        duration_minutes: int,
    ) -> list[Slot]:
        """
        Enumerate free slot starts inside working hours.

        Candidates start at the beginning of working hours and advance by the
        configured step (or the duration). Bookings are merged and swept once,
        so the cost is dominated by sorting them.

        Args:
            bookings: Snapshot of the company's interviews.
            on_date: Day to generate slots for.
            duration_minutes: Length of the requested interview.

        Returns:
            Free slots in start order.
        """
        if duration_minutes <= 0:
            raise ValidationError("Duration must be positive", field="duration_minutes")

        merged: list[BookingInterval] = []
        for interval in self.booked_intervals(bookings, on_date):
            if merged and interval.start <= merged[-1].end:
                last = merged[-1]
                merged[-1] = BookingInterval(last.start, max(last.end, interval.end), last.interview_id)
            else:
                merged.append(interval)

        step = self._step or duration_minutes
        slots: list[Slot] = []
        cursor = 0
        start = self._day_start
        while start + duration_minutes <= self._day_end:
            end = start + duration_minutes
            while cursor < len(merged) and merged[cursor].end <= start:
                cursor += 1
            if cursor >= len(merged) or merged[cursor].start >= end:
                slots.append(
                    Slot(
                        date=on_date,
                        start_time=format_clock(start),
                        end_time=format_clock(end),
                        duration_minutes=duration_minutes,
                    )
                )
            start += step
        return slots

    @staticmethod
    def _requested_interval(start_time: str, duration_minutes: int) -> BookingInterval:
        start = parse_clock(start_time)
        if duration_minutes <= 0:
            raise ValidationError("Duration must be positive", field="duration_minutes")
        if start + duration_minutes > MINUTES_PER_DAY:
            raise ValidationError("Interview must end on the day it starts", field="duration_minutes")
        return BookingInterval(start, start + duration_minutes)
