"""
Tests for the conflict resolver: interval overlap and free-slot generation.
"""

from datetime import date

import pytest

from hiring_engine.errors import SlotConflictError, ValidationError
from hiring_engine.scheduling.conflicts import BookingInterval, ConflictResolver, format_clock, parse_clock
from hiring_engine.schemas import InterviewStatus

from conftest import INTERVIEW_DAY, make_interview


class TestClock:
    """Tests for HH:MM parsing."""

    def test_parse_and_format(self) -> None:
        assert parse_clock("00:00") == 0
        assert parse_clock("14:30") == 870
        assert format_clock(870) == "14:30"

    @pytest.mark.parametrize("value", ["24:00", "9:00", "12:60", "noon", ""])
    def test_rejects_malformed_times(self, value: str) -> None:
        with pytest.raises(ValidationError):
            parse_clock(value)


class TestOverlap:
    """Tests for half-open interval overlap."""

    def test_touching_intervals_do_not_overlap(self) -> None:
        assert not BookingInterval(600, 630).overlaps(BookingInterval(630, 660))
        assert not BookingInterval(630, 660).overlaps(BookingInterval(600, 630))

    def test_partial_and_contained_overlap(self) -> None:
        assert BookingInterval(600, 630).overlaps(BookingInterval(615, 645))
        assert BookingInterval(600, 700).overlaps(BookingInterval(620, 640))


class TestConflictResolver:
    """Tests for ConflictResolver."""

    @pytest.fixture
    def resolver(self) -> ConflictResolver:
        return ConflictResolver("09:00", "18:00")

    def test_overlapping_slot_is_reported(self, resolver: ConflictResolver) -> None:
        """[10:15,10:45) collides with an existing [10:00,10:30)."""
        existing = make_interview("10:00")
        with pytest.raises(SlotConflictError) as exc_info:
            resolver.ensure_free([existing], INTERVIEW_DAY, "10:15", 30)

        assert exc_info.value.conflicting_interview_id == existing.interview_id
        assert exc_info.value.details["end_time"] == "10:45"

    def test_adjacent_slot_is_free(self, resolver: ConflictResolver) -> None:
        """[10:30,11:00) only touches [10:00,10:30)."""
        resolver.ensure_free([make_interview("10:00")], INTERVIEW_DAY, "10:30", 30)

    def test_only_booked_statuses_count(self, resolver: ConflictResolver) -> None:
        bookings = [
            make_interview("10:00", status=InterviewStatus.CANCELLED),
            make_interview("10:00", status=InterviewStatus.DECLINED),
            make_interview("10:00", status=InterviewStatus.COMPLETED),
        ]
        assert resolver.find_conflict(bookings, INTERVIEW_DAY, "10:00", 30) is None

        confirmed = make_interview("10:00", status=InterviewStatus.CONFIRMED)
        assert resolver.find_conflict([confirmed], INTERVIEW_DAY, "10:10", 10) is not None

    def test_other_days_are_ignored(self, resolver: ConflictResolver) -> None:
        other_day = make_interview("10:00", on_date=date(2025, 1, 11))
        assert resolver.find_conflict([other_day], INTERVIEW_DAY, "10:00", 30) is None

    def test_own_booking_is_excluded(self, resolver: ConflictResolver) -> None:
        own = make_interview("10:00")
        assert resolver.find_conflict([own], INTERVIEW_DAY, "10:00", 30, exclude_interview_id=own.interview_id) is None

    def test_find_conflicts_reports_every_overlap(self, resolver: ConflictResolver) -> None:
        first = make_interview("10:00")
        second = make_interview("10:30")
        later = make_interview("12:00")

        overlapping = resolver.find_conflicts([later, second, first], INTERVIEW_DAY, "10:15", 45)

        assert [interval.interview_id for interval in overlapping] == [first.interview_id, second.interview_id]
        assert resolver.find_conflicts([first], INTERVIEW_DAY, "11:00", 30) == []

    def test_interview_must_end_same_day(self, resolver: ConflictResolver) -> None:
        with pytest.raises(ValidationError):
            resolver.find_conflict([], INTERVIEW_DAY, "23:45", 30)

    def test_available_slots_skip_bookings(self) -> None:
        """Bookings at 09:00 and 10:00 leave 09:30, 10:30, 11:00 and 11:30 free until noon."""
        resolver = ConflictResolver("09:00", "12:00")
        bookings = [make_interview("10:00"), make_interview("09:00")]

        slots = resolver.available_slots(bookings, INTERVIEW_DAY, 30)

        assert [slot.start_time for slot in slots] == ["09:30", "10:30", "11:00", "11:30"]
        assert slots[0].end_time == "10:00"
        assert all(slot.date == INTERVIEW_DAY for slot in slots)

    def test_available_slots_with_custom_step(self) -> None:
        resolver = ConflictResolver("09:00", "10:30", slot_step_minutes=15)
        slots = resolver.available_slots([make_interview("09:15", 30)], INTERVIEW_DAY, 30)

        assert [slot.start_time for slot in slots] == ["09:45", "10:00"]

    def test_merged_bookings_block_the_whole_span(self) -> None:
        resolver = ConflictResolver("09:00", "12:00")
        bookings = [make_interview("09:00", 90), make_interview("10:00", 60)]

        slots = resolver.available_slots(bookings, INTERVIEW_DAY, 30)

        assert [slot.start_time for slot in slots] == ["11:00", "11:30"]

    def test_slot_must_fit_working_hours(self) -> None:
        resolver = ConflictResolver("09:00", "10:00")
        assert [slot.start_time for slot in resolver.available_slots([], INTERVIEW_DAY, 45)] == ["09:00"]

    def test_invalid_working_hours(self) -> None:
        with pytest.raises(ValidationError):
            ConflictResolver("18:00", "09:00")
