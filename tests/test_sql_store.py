"""
Tests for the SQLAlchemy store, run against SQLite through aiosqlite.
"""

from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.ext.asyncio import create_async_engine

from hiring_engine.db.models import ApplicationModel
from hiring_engine.db.repository import SqlAlchemyHiringStore, row_lock_query
from hiring_engine.errors import ConflictError, NotFoundError, SlotConflictError
from hiring_engine.orchestrator.hiring_orchestrator import HiringOrchestrator
from hiring_engine.orchestrator.application_state import ApplicationStateMachine
from hiring_engine.orchestrator.interview_state import InterviewStateMachine
from hiring_engine.scheduling.conflicts import ConflictResolver
from hiring_engine.schemas import (
    Actor,
    ApplicationStatus,
    InterviewRequest,
    InterviewStatus,
    JobApplication,
    SeekerBlock,
)

from conftest import (
    COMPANY_ID,
    INTERVIEW_DAY,
    JOB_ID,
    SEEKER_ID,
    FakeChatService,
    FakeClock,
    FakeCompanyGate,
    FakeJobDirectory,
    make_interview,
)


async def open_store(tmp_path: Path) -> SqlAlchemyHiringStore:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'hiring.db'}")
    store = SqlAlchemyHiringStore(engine=engine, max_retries=2, retry_backoff=0.0)
    await store.create_tables()
    return store


def new_application(**overrides) -> JobApplication:
    fields = {"job_id": JOB_ID, "seeker_id": SEEKER_ID, "company_id": COMPANY_ID}
    fields.update(overrides)
    return JobApplication(**fields)


class TestApplications:
    """Tests for application persistence."""

    @pytest.mark.asyncio
    async def test_create_and_reload(self, tmp_path: Path) -> None:
        store = await open_store(tmp_path)
        try:
            created = await store.create_application(new_application(cover_letter="Hi"))
            assert created.version == 1

            loaded = await store.get_application(created.application_id)
            assert loaded is not None
            assert loaded.cover_letter == "Hi"
            assert loaded.version == 1

            active = await store.find_active_application(JOB_ID, SEEKER_ID)
            assert active is not None and active.application_id == created.application_id
            assert await store.get_application("APP-MISSING") is None
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_duplicate_active_application(self, tmp_path: Path) -> None:
        store = await open_store(tmp_path)
        try:
            await store.create_application(new_application())
            with pytest.raises(ConflictError) as exc_info:
                await store.create_application(new_application())
            assert exc_info.value.reason_code == ConflictError.DUPLICATE_APPLICATION
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_withdrawn_application_frees_the_pair(self, tmp_path: Path) -> None:
        store = await open_store(tmp_path)
        try:
            created = await store.create_application(new_application())
            withdrawn = created.model_copy(update={"status": ApplicationStatus.WITHDRAWN})
            await store.save_application(withdrawn, created.version)

            assert await store.find_active_application(JOB_ID, SEEKER_ID) is None
            again = await store.create_application(new_application())
            assert again.application_id != created.application_id
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_stale_write_is_rejected(self, tmp_path: Path) -> None:
        store = await open_store(tmp_path)
        try:
            created = await store.create_application(new_application())
            viewed = created.model_copy(update={"status": ApplicationStatus.VIEWED})
            saved = await store.save_application(viewed, created.version)
            assert saved.version == 2

            shortlisted = created.model_copy(update={"status": ApplicationStatus.SHORTLISTED})
            with pytest.raises(ConflictError) as exc_info:
                await store.save_application(shortlisted, created.version)
            assert exc_info.value.reason_code == ConflictError.STALE_WRITE

            with pytest.raises(NotFoundError):
                await store.save_application(new_application(), 1)
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_list_filters(self, tmp_path: Path) -> None:
        store = await open_store(tmp_path)
        try:
            await store.create_application(new_application())
            await store.create_application(new_application(seeker_id="seeker-2", status=ApplicationStatus.VIEWED))
            await store.create_application(new_application(job_id="job-2", company_id="company-2"))

            assert len(await store.list_applications(job_id=JOB_ID)) == 2
            assert len(await store.list_applications(company_id="company-2")) == 1
            viewed = await store.list_applications(job_id=JOB_ID, status=ApplicationStatus.VIEWED)
            assert [application.seeker_id for application in viewed] == ["seeker-2"]
        finally:
            await store.close()


class TestBookings:
    """Tests for interview booking under the company-day lock."""

    @pytest.mark.asyncio
    async def test_guard_sees_existing_bookings(self, tmp_path: Path) -> None:
        store = await open_store(tmp_path)
        resolver = ConflictResolver("09:00", "18:00")
        try:
            first, _ = await store.book_interview(make_interview("10:00"), None)
            assert first.version == 1

            second = make_interview("10:15")

            def guard(bookings):
                resolver.ensure_free(bookings, second.date, second.start_time, second.duration_minutes)

            with pytest.raises(SlotConflictError) as exc_info:
                await store.book_interview(second, None, slot_guard=guard)
            assert exc_info.value.conflicting_interview_id == first.interview_id
            assert await store.get_interview(second.interview_id) is None

            bookings = await store.list_company_bookings(COMPANY_ID, INTERVIEW_DAY)
            assert [booking.interview_id for booking in bookings] == [first.interview_id]
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_booking_writes_application_atomically(self, tmp_path: Path) -> None:
        store = await open_store(tmp_path)
        try:
            application = await store.create_application(new_application())
            interview = make_interview("11:00").model_copy(update={"application_id": application.application_id})
            requested = application.model_copy(update={"status": ApplicationStatus.INTERVIEW_REQUESTED})

            booked, saved = await store.book_interview(interview, None, requested, application.version)

            assert saved is not None and saved.version == 2
            interviews = await store.list_interviews_for_application(application.application_id)
            assert [i.interview_id for i in interviews] == [booked.interview_id]

            # A stale application version rolls back the interview update as well.
            moved = booked.model_copy(update={"start_time": "12:00"})
            with pytest.raises(ConflictError):
                await store.book_interview(moved, booked.version, requested, application.version)
            reloaded = await store.get_interview(booked.interview_id)
            assert reloaded is not None and reloaded.start_time == "11:00"
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_cancelled_interviews_are_not_bookings(self, tmp_path: Path) -> None:
        store = await open_store(tmp_path)
        try:
            booked, _ = await store.book_interview(make_interview("10:00"), None)
            cancelled = booked.model_copy(update={"status": InterviewStatus.CANCELLED})
            await store.save_interview(cancelled, booked.version)

            assert await store.list_company_bookings(COMPANY_ID, INTERVIEW_DAY) == []
        finally:
            await store.close()


class TestChatClaimsAndReminders:
    """Tests for chat claims and reminder bookkeeping."""

    @pytest.mark.asyncio
    async def test_claim_is_exclusive_until_released(self, tmp_path: Path) -> None:
        store = await open_store(tmp_path)
        now = datetime(2025, 1, 1, 8, 0, tzinfo=timezone.utc)
        ttl = timedelta(seconds=120)
        try:
            application = await store.create_application(new_application())
            app_id = application.application_id

            assert await store.claim_chat(app_id, "token-a", now, ttl)
            assert not await store.claim_chat(app_id, "token-b", now, ttl)
            with pytest.raises(ConflictError):
                await store.complete_chat(app_id, "token-b", "CHAT-X")

            await store.release_chat_claim(app_id, "token-a")
            assert await store.claim_chat(app_id, "token-b", now, ttl)
            done = await store.complete_chat(app_id, "token-b", "CHAT-1")
            assert done.chat_id == "CHAT-1"
            assert done.chat_claim_token is None

            assert not await store.claim_chat(app_id, "token-c", now + timedelta(hours=1), ttl)
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_expired_claim_can_be_taken_over(self, tmp_path: Path) -> None:
        store = await open_store(tmp_path)
        now = datetime(2025, 1, 1, 8, 0, tzinfo=timezone.utc)
        ttl = timedelta(seconds=120)
        try:
            application = await store.create_application(new_application())
            assert await store.claim_chat(application.application_id, "token-a", now, ttl)
            assert await store.claim_chat(application.application_id, "token-b", now + ttl, ttl)
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_reminder_key_recorded_once_without_version_bump(self, tmp_path: Path) -> None:
        store = await open_store(tmp_path)
        try:
            booked, _ = await store.book_interview(make_interview("14:00"), None)

            assert await store.mark_reminder_sent("interview", booked.interview_id, "240m")
            assert not await store.mark_reminder_sent("interview", booked.interview_id, "240m")

            reloaded = await store.get_interview(booked.interview_id)
            assert reloaded is not None
            assert reloaded.reminders_sent == ["240m"]
            assert reloaded.version == booked.version

            interviews, _ = await store.list_reminder_candidates(
                until=datetime(2025, 1, 10, 12, 0, tzinfo=timezone.utc),
                since=datetime(2025, 1, 10, 6, 0, tzinfo=timezone.utc),
            )
            assert [i.interview_id for i in interviews] == [booked.interview_id]
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_reminder_mark_does_not_make_a_reader_stale(self, tmp_path: Path) -> None:
        store = await open_store(tmp_path)
        try:
            booked, _ = await store.book_interview(make_interview("14:00"), None)
            read = await store.get_interview(booked.interview_id)
            assert read is not None

            assert await store.mark_reminder_sent("interview", booked.interview_id, "240m@start")

            edited = read.model_copy(update={"instructions": "Bring your ID"})
            saved, _ = await store.save_interview(edited, read.version)
            assert saved.reminders_sent == ["240m@start"]

            reloaded = await store.get_interview(booked.interview_id)
            assert reloaded is not None
            assert reloaded.instructions == "Bring your ID"
            assert reloaded.reminders_sent == ["240m@start"]
            assert not await store.mark_reminder_sent("interview", booked.interview_id, "240m@start")
        finally:
            await store.close()

    def test_row_reads_take_a_row_lock(self) -> None:
        compiled = str(row_lock_query(ApplicationModel, "APP-1").compile(dialect=postgresql.dialect()))
        assert "FOR UPDATE" in compiled

    @pytest.mark.asyncio
    async def test_complete_chat_survives_an_interleaved_write(self, tmp_path: Path) -> None:
        store = await open_store(tmp_path)
        now = datetime(2025, 1, 1, 8, 0, tzinfo=timezone.utc)
        try:
            application = await store.create_application(new_application())
            app_id = application.application_id
            assert await store.claim_chat(app_id, "token-a", now, timedelta(seconds=120))

            # Another writer moves the application on while the chat is being created.
            claimed = await store.get_application(app_id)
            assert claimed is not None
            viewed = claimed.model_copy(update={"status": ApplicationStatus.VIEWED})
            await store.save_application(viewed, claimed.version)

            done = await store.complete_chat(app_id, "token-a", "CHAT-1")
            assert done.chat_id == "CHAT-1"
            assert done.status == ApplicationStatus.VIEWED
            assert done.version == claimed.version + 2
        finally:
            await store.close()


class TestSeekerBlocksAndListings:
    """Tests for seeker blocks and interview listings."""

    @pytest.mark.asyncio
    async def test_block_lifecycle(self, tmp_path: Path) -> None:
        store = await open_store(tmp_path)
        ended_at = datetime(2025, 1, 2, 8, 0, tzinfo=timezone.utc)
        try:
            block = await store.add_block(SeekerBlock(company_id=COMPANY_ID, seeker_id=SEEKER_ID, reason="No-show"))
            assert (await store.get_active_block(COMPANY_ID, SEEKER_ID)).block_id == block.block_id

            with pytest.raises(ConflictError) as exc_info:
                await store.add_block(SeekerBlock(company_id=COMPANY_ID, seeker_id=SEEKER_ID))
            assert exc_info.value.reason_code == ConflictError.ALREADY_BLOCKED

            ended = await store.end_block(COMPANY_ID, SEEKER_ID, "Second chance", ended_at)
            assert not ended.active
            assert ended.unblock_reason == "Second chance"
            assert await store.get_active_block(COMPANY_ID, SEEKER_ID) is None
            assert await store.list_blocks(COMPANY_ID) == []
            assert [b.block_id for b in await store.list_blocks(COMPANY_ID, active_only=False)] == [block.block_id]

            with pytest.raises(NotFoundError):
                await store.end_block(COMPANY_ID, SEEKER_ID, None, ended_at)
            again = await store.add_block(SeekerBlock(company_id=COMPANY_ID, seeker_id=SEEKER_ID))
            assert again.active
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_list_interviews_filters_and_orders(self, tmp_path: Path) -> None:
        store = await open_store(tmp_path)
        try:
            late, _ = await store.book_interview(make_interview("15:00"), None)
            early, _ = await store.book_interview(make_interview("09:00"), None)
            next_day, _ = await store.book_interview(make_interview("10:00", on_date=date(2025, 1, 11)), None)
            await store.book_interview(make_interview("10:00", company_id="company-2"), None)

            listed = await store.list_interviews(company_id=COMPANY_ID)
            assert [i.interview_id for i in listed] == [early.interview_id, late.interview_id, next_day.interview_id]

            one_day = await store.list_interviews(
                company_id=COMPANY_ID, start_date=INTERVIEW_DAY, end_date=INTERVIEW_DAY
            )
            assert len(one_day) == 2
            assert len(await store.list_interviews(seeker_id=SEEKER_ID)) == 4
            assert await store.list_interviews(company_id=COMPANY_ID, status=InterviewStatus.CONFIRMED) == []
        finally:
            await store.close()


class TestOrchestratorOverSql:
    """A short workflow run end to end on the SQL store."""

    @pytest.mark.asyncio
    async def test_apply_schedule_and_hire(
        self,
        tmp_path: Path,
        jobs: FakeJobDirectory,
        gate: FakeCompanyGate,
        chat: FakeChatService,
        clock: FakeClock,
    ) -> None:
        store = await open_store(tmp_path)
        orchestrator = HiringOrchestrator(
            store=store,
            job_directory=jobs,
            company_gate=gate,
            chat_service=chat,
            resolver=ConflictResolver("09:00", "18:00"),
            applications=ApplicationStateMachine(clock=clock),
            interviews=InterviewStateMachine(clock=clock),
            clock=clock,
        )
        company = Actor.company(COMPANY_ID)
        seeker = Actor.seeker(SEEKER_ID)
        try:
            applied = await orchestrator.apply(JOB_ID, seeker)
            app_id = applied.application.application_id

            scheduled = await orchestrator.schedule_interview(
                app_id,
                company,
                InterviewRequest(date=INTERVIEW_DAY, start_time="10:00"),
            )
            interview_id = scheduled.interview.interview_id

            confirmed = await orchestrator.confirm_interview(interview_id, seeker)
            assert confirmed.application.status == ApplicationStatus.INTERVIEW_ACCEPTED
            assert confirmed.chat_id == "CHAT-1"

            hired = await orchestrator.accept(app_id, company)
            assert hired.application.status == ApplicationStatus.HIRE_REQUEST_SENT
            assert hired.chat_id == "CHAT-1"
            assert chat.calls == [app_id]

            slots = await orchestrator.get_available_slots(COMPANY_ID, INTERVIEW_DAY, 30)
            assert "10:00" not in [slot.start_time for slot in slots]
        finally:
            await store.close()
