"""
Tests for reminder scheduling and event dispatch.
"""

from datetime import datetime, timedelta, timezone

import pytest

from hiring_engine.db.memory_store import InMemoryHiringStore
from hiring_engine.orchestrator.interview_state import InterviewStateMachine
from hiring_engine.orchestrator.dispatcher import EventDispatcher
from hiring_engine.scheduling.reminders import ReminderScheduler, bucket_name, is_due, reminder_key
from hiring_engine.schemas import (
    Actor,
    ApplicationStatus,
    EventType,
    HiringType,
    InterviewStatus,
    JobApplication,
)

from conftest import (
    COMPANY_ID,
    INSTANT_JOB_ID,
    INTERVIEW_DAY,
    SEEKER_ID,
    FakeClock,
    FakeNotificationService,
    make_interview,
)

# 14:00 in Asia/Muscat on INTERVIEW_DAY
INTERVIEW_START_UTC = datetime(2025, 1, 10, 10, 0, tzinfo=timezone.utc)


def utc(hour: int, minute: int = 0) -> datetime:
    return datetime(2025, 1, 10, hour, minute, tzinfo=timezone.utc)


class TestTiming:
    """Tests for the due-window rule."""

    def test_bucket_name(self) -> None:
        assert bucket_name(240) == "240m"

    def test_reminder_key_includes_start(self) -> None:
        assert reminder_key("240m", INTERVIEW_START_UTC) == "240m@2025-01-10T10:00:00+00:00"

    def test_window_is_half_open(self) -> None:
        start = INTERVIEW_START_UTC
        assert not is_due(start, 240, start - timedelta(minutes=241))
        assert is_due(start, 240, start - timedelta(minutes=240))
        assert is_due(start, 240, start - timedelta(seconds=1))
        assert not is_due(start, 240, start)

    def test_lead_times_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            ReminderScheduler(InMemoryHiringStore(), lead_minutes=[0])

    def test_tightest_due_bucket_wins(self) -> None:
        scheduler = ReminderScheduler(InMemoryHiringStore(), lead_minutes=[240, 60])
        interview = make_interview("14:00")
        assert interview.starts_at() == INTERVIEW_START_UTC

        due = scheduler.due_reminders([interview], [], utc(9, 30))
        assert [reminder.bucket for reminder in due] == ["60m"]

        due = scheduler.due_reminders([interview], [], utc(7, 0))
        assert [reminder.bucket for reminder in due] == ["240m"]

    def test_fired_bucket_is_skipped(self) -> None:
        scheduler = ReminderScheduler(InMemoryHiringStore(), lead_minutes=[240])
        interview = make_interview("14:00")
        fired = interview.model_copy(update={"reminders_sent": [reminder_key("240m", interview.starts_at())]})
        assert scheduler.due_reminders([fired], [], utc(7, 0)) == []

    def test_mark_for_an_old_start_does_not_count(self) -> None:
        scheduler = ReminderScheduler(InMemoryHiringStore(), lead_minutes=[240])
        interview = make_interview("14:00").model_copy(update={"reminders_sent": ["240m@2025-01-09T10:00:00+00:00"]})
        assert [reminder.bucket for reminder in scheduler.due_reminders([interview], [], utc(7, 0))] == ["240m"]

    def test_unbooked_interviews_are_ignored(self) -> None:
        scheduler = ReminderScheduler(InMemoryHiringStore(), lead_minutes=[240])
        cancelled = make_interview("14:00", status=InterviewStatus.CANCELLED)
        assert scheduler.due_reminders([cancelled], [], utc(7, 0)) == []


class TestSweep:
    """Tests for ReminderScheduler.sweep against the in-memory store."""

    @pytest.mark.asyncio
    async def test_interview_reminder_fires_once(self) -> None:
        store = InMemoryHiringStore()
        booked, _ = await store.book_interview(make_interview("14:00"), None)
        scheduler = ReminderScheduler(store, lead_minutes=[240])

        events = await scheduler.sweep(now=utc(6, 30))

        assert {event.recipient_id for event in events} == {SEEKER_ID, COMPANY_ID}
        assert all(event.event_type == EventType.INTERVIEW_REMINDER for event in events)
        assert events[0].payload["bucket"] == "240m"
        assert events[0].payload["start_time"] == "14:00"

        assert await scheduler.sweep(now=utc(6, 45)) == []
        stored = await store.get_interview(booked.interview_id)
        assert stored is not None
        assert stored.reminders_sent == [reminder_key("240m", stored.starts_at())]
        assert stored.version == booked.version

    @pytest.mark.asyncio
    async def test_nothing_due_outside_the_window(self) -> None:
        store = InMemoryHiringStore()
        await store.book_interview(make_interview("14:00"), None)
        scheduler = ReminderScheduler(store, lead_minutes=[240])

        assert await scheduler.sweep(now=utc(5, 0)) == []
        assert await scheduler.sweep(now=utc(10, 0)) == []

    @pytest.mark.asyncio
    async def test_job_start_reminder_for_instant_hire(self) -> None:
        store = InMemoryHiringStore()
        work_start = utc(12, 0)
        hired = JobApplication(
            job_id=INSTANT_JOB_ID,
            seeker_id=SEEKER_ID,
            company_id=COMPANY_ID,
            hiring_type=HiringType.INSTANT_HIRE,
            status=ApplicationStatus.HIRED,
            work_start_at=work_start,
        )
        await store.create_application(hired)
        scheduler = ReminderScheduler(store, lead_minutes=[240])

        events = await scheduler.sweep(now=utc(9, 0))

        assert [event.event_type for event in events] == [EventType.JOB_START_REMINDER] * 2
        assert events[0].payload["work_start_at"] == work_start.isoformat()
        assert await scheduler.sweep(now=utc(9, 5)) == []

    @pytest.mark.asyncio
    async def test_interview_first_hire_gets_no_job_start_reminder(self) -> None:
        store = InMemoryHiringStore()
        await store.create_application(
            JobApplication(
                job_id="job-1",
                seeker_id=SEEKER_ID,
                company_id=COMPANY_ID,
                status=ApplicationStatus.HIRED,
                work_start_at=utc(12, 0),
            )
        )
        scheduler = ReminderScheduler(store, lead_minutes=[240])

        assert await scheduler.sweep(now=utc(9, 0)) == []

    @pytest.mark.asyncio
    async def test_sweep_does_not_make_a_concurrent_write_stale(self) -> None:
        store = InMemoryHiringStore()
        booked, _ = await store.book_interview(make_interview("14:00"), None)
        read = await store.get_interview(booked.interview_id)
        assert read is not None

        assert len(await ReminderScheduler(store, lead_minutes=[240]).sweep(now=utc(6, 30))) == 2

        edited = read.model_copy(update={"instructions": "Bring your ID"})
        saved, _ = await store.save_interview(edited, read.version)
        assert saved.instructions == "Bring your ID"
        assert saved.reminders_sent == [reminder_key("240m", read.starts_at())]
        assert await ReminderScheduler(store, lead_minutes=[240]).sweep(now=utc(6, 45)) == []

    @pytest.mark.asyncio
    async def test_rescheduled_interview_is_reminded_again(self) -> None:
        store = InMemoryHiringStore()
        booked, _ = await store.book_interview(make_interview("14:00"), None)
        scheduler = ReminderScheduler(store, lead_minutes=[240])
        assert len(await scheduler.sweep(now=utc(6, 30))) == 2

        machine = InterviewStateMachine(clock=FakeClock(datetime(2025, 1, 1, 8, 0, tzinfo=timezone.utc)))
        current = await store.get_interview(booked.interview_id)
        assert current is not None
        moved = machine.reschedule(current, Actor.company(COMPANY_ID), INTERVIEW_DAY, "15:00")
        await store.save_interview(moved, current.version)

        events = await scheduler.sweep(now=utc(7, 30))
        assert len(events) == 2
        assert events[0].payload["start_time"] == "15:00"
        stored = await store.get_interview(booked.interview_id)
        assert stored is not None
        assert len(stored.reminders_sent) == 2


class TestDispatcher:
    """Tests for EventDispatcher."""

    @pytest.mark.asyncio
    async def test_failures_are_counted_not_raised(self) -> None:
        store = InMemoryHiringStore()
        await store.book_interview(make_interview("14:00"), None)
        events = await ReminderScheduler(store, lead_minutes=[240]).sweep(now=utc(7, 0))

        notifications = FakeNotificationService()
        notifications.fail_for.add(COMPANY_ID)
        report = await EventDispatcher(notifications).dispatch(events)

        assert report.delivered == 1
        assert report.failed == 1
        assert [event.recipient_id for event in notifications.events] == [SEEKER_ID]

    @pytest.mark.asyncio
    async def test_empty_batch(self) -> None:
        report = await EventDispatcher(FakeNotificationService()).dispatch([])
        assert report.delivered == 0
        assert report.failed == 0
