"""
In-memory HiringStore.

Keeps deep copies of every entity behind one asyncio lock, so callers can
never mutate stored state and every write is atomic with its checks.
Used for local runs and tests.
"""

import asyncio
from datetime import date, datetime, timedelta

from hiring_engine.db.repository import (
    HiringStore,
    ReminderCandidates,
    SlotGuard,
    active_key,
    block_key,
    chat_claim_open,
    merge_reminder_marks,
)
from hiring_engine.errors import ConflictError, NotFoundError
from hiring_engine.schemas import (
    BOOKED_INTERVIEW_STATUSES,
    ApplicationStatus,
    HiringType,
    Interview,
    InterviewStatus,
    JobApplication,
    SeekerBlock,
)


class InMemoryHiringStore(HiringStore):
    """HiringStore held in process memory."""

    def __init__(self) -> None:
        self._applications: dict[str, JobApplication] = {}
        self._interviews: dict[str, Interview] = {}
        self._active: dict[str, str] = {}
        self._blocks: list[SeekerBlock] = []
        self._lock = asyncio.Lock()

    # -- helpers ------------------------------------------------------------

    def _check_application(self, application: JobApplication, expected_version: int) -> None:
        current = self._applications.get(application.application_id)
        if current is None:
            raise NotFoundError("application", application.application_id)
        if current.version != expected_version:
            raise ConflictError(
                f"application {application.application_id} was modified concurrently",
                reason_code=ConflictError.STALE_WRITE,
            )

    def _check_interview(self, interview: Interview, expected_version: int) -> None:
        current = self._interviews.get(interview.interview_id)
        if current is None:
            raise NotFoundError("interview", interview.interview_id)
        if current.version != expected_version:
            raise ConflictError(
                f"interview {interview.interview_id} was modified concurrently",
                reason_code=ConflictError.STALE_WRITE,
            )

    def _put_application(self, application: JobApplication, version: int) -> JobApplication:
        previous = self._applications.get(application.application_id)
        marks = merge_reminder_marks(previous.reminders_sent if previous else [], application.reminders_sent)
        stored = application.model_copy(update={"version": version, "reminders_sent": marks}, deep=True)
        self._applications[stored.application_id] = stored
        key = f"{stored.job_id}:{stored.seeker_id}"
        if active_key(stored) is None and self._active.get(key) == stored.application_id:
            del self._active[key]
        return stored.model_copy(deep=True)

    def _put_interview(self, interview: Interview, version: int) -> Interview:
        previous = self._interviews.get(interview.interview_id)
        marks = merge_reminder_marks(previous.reminders_sent if previous else [], interview.reminders_sent)
        stored = interview.model_copy(update={"version": version, "reminders_sent": marks}, deep=True)
        self._interviews[stored.interview_id] = stored
        return stored.model_copy(deep=True)

    def _bookings(self, company_id: str, on_date: date) -> list[Interview]:
        bookings = [
            interview.model_copy(deep=True)
            for interview in self._interviews.values()
            if interview.company_id == company_id
            and interview.date == on_date
            and interview.status in BOOKED_INTERVIEW_STATUSES
        ]
        bookings.sort(key=lambda interview: interview.start_minute)
        return bookings

    # -- applications -------------------------------------------------------

    async def get_application(self, application_id: str) -> JobApplication | None:
        application = self._applications.get(application_id)
        return application.model_copy(deep=True) if application else None

    async def find_active_application(self, job_id: str, seeker_id: str) -> JobApplication | None:
        application_id = self._active.get(f"{job_id}:{seeker_id}")
        return await self.get_application(application_id) if application_id else None

    async def list_applications(
        self,
        job_id: str | None = None,
        seeker_id: str | None = None,
        company_id: str | None = None,
        status: ApplicationStatus | None = None,
    ) -> list[JobApplication]:
        matches = [
            application.model_copy(deep=True)
            for application in self._applications.values()
            if (job_id is None or application.job_id == job_id)
            and (seeker_id is None or application.seeker_id == seeker_id)
            and (company_id is None or application.company_id == company_id)
            and (status is None or application.status == status)
        ]
        matches.sort(key=lambda application: application.created_at, reverse=True)
        return matches

    async def create_application(self, application: JobApplication) -> JobApplication:
        async with self._lock:
            key = active_key(application)
            if key is not None and key in self._active:
                raise ConflictError(
                    f"Seeker {application.seeker_id} already has an active application for job {application.job_id}",
                    reason_code=ConflictError.DUPLICATE_APPLICATION,
                )
            if key is not None:
                self._active[key] = application.application_id
            return self._put_application(application, 1)

    async def save_application(self, application: JobApplication, expected_version: int) -> JobApplication:
        async with self._lock:
            self._check_application(application, expected_version)
            return self._put_application(application, expected_version + 1)

    # -- interviews ---------------------------------------------------------

    async def get_interview(self, interview_id: str) -> Interview | None:
        interview = self._interviews.get(interview_id)
        return interview.model_copy(deep=True) if interview else None

    async def list_interviews_for_application(self, application_id: str) -> list[Interview]:
        interviews = [
            interview.model_copy(deep=True)
            for interview in self._interviews.values()
            if interview.application_id == application_id
        ]
        interviews.sort(key=lambda interview: interview.created_at)
        return interviews

    async def list_company_bookings(self, company_id: str, on_date: date) -> list[Interview]:
        return self._bookings(company_id, on_date)

    async def book_interview(
        self,
        interview: Interview,
        expected_version: int | None,
        application: JobApplication | None = None,
        application_version: int | None = None,
        slot_guard: SlotGuard | None = None,
    ) -> tuple[Interview, JobApplication | None]:
        async with self._lock:
            if expected_version is not None:
                self._check_interview(interview, expected_version)
            elif interview.interview_id in self._interviews:
                raise ConflictError(f"interview {interview.interview_id} already exists")
            app_expected = None
            if application is not None:
                app_expected = application.version if application_version is None else application_version
                self._check_application(application, app_expected)
            if slot_guard is not None:
                slot_guard(self._bookings(interview.company_id, interview.date))

            stored = self._put_interview(interview, 1 if expected_version is None else expected_version + 1)
            saved_application = None
            if application is not None and app_expected is not None:
                saved_application = self._put_application(application, app_expected + 1)
            return stored, saved_application

    async def save_interview(
        self,
        interview: Interview,
        expected_version: int,
        application: JobApplication | None = None,
        application_version: int | None = None,
    ) -> tuple[Interview, JobApplication | None]:
        async with self._lock:
            self._check_interview(interview, expected_version)
            app_expected = None
            if application is not None:
                app_expected = application.version if application_version is None else application_version
                self._check_application(application, app_expected)

            stored = self._put_interview(interview, expected_version + 1)
            saved_application = None
            if application is not None and app_expected is not None:
                saved_application = self._put_application(application, app_expected + 1)
            return stored, saved_application

    async def list_interviews(
        self,
        company_id: str | None = None,
        seeker_id: str | None = None,
        status: InterviewStatus | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[Interview]:
        matches = [
            interview.model_copy(deep=True)
            for interview in self._interviews.values()
            if (company_id is None or interview.company_id == company_id)
            and (seeker_id is None or interview.seeker_id == seeker_id)
            and (status is None or interview.status == status)
            and (start_date is None or interview.date >= start_date)
            and (end_date is None or interview.date <= end_date)
        ]
        matches.sort(key=lambda interview: (interview.date, interview.start_minute))
        return matches

    # -- seeker blocks --------------------------------------------------------

    def _active_block(self, company_id: str, seeker_id: str) -> int | None:
        for index, block in enumerate(self._blocks):
            if block.active and block.company_id == company_id and block.seeker_id == seeker_id:
                return index
        return None

    async def add_block(self, block: SeekerBlock) -> SeekerBlock:
        async with self._lock:
            if block.active and self._active_block(block.company_id, block.seeker_id) is not None:
                raise ConflictError(
                    f"Seeker {block.seeker_id} is already blocked by company {block.company_id}",
                    reason_code=ConflictError.ALREADY_BLOCKED,
                )
            self._blocks.append(block.model_copy(deep=True))
            return block.model_copy(deep=True)

    async def end_block(
        self,
        company_id: str,
        seeker_id: str,
        reason: str | None,
        ended_at: datetime,
    ) -> SeekerBlock:
        async with self._lock:
            index = self._active_block(company_id, seeker_id)
            if index is None:
                raise NotFoundError("block", block_key(company_id, seeker_id))
            ended = self._blocks[index].model_copy(
                update={"active": False, "unblocked_at": ended_at, "unblock_reason": reason}
            )
            self._blocks[index] = ended
            return ended.model_copy(deep=True)

    async def get_active_block(self, company_id: str, seeker_id: str) -> SeekerBlock | None:
        index = self._active_block(company_id, seeker_id)
        return self._blocks[index].model_copy(deep=True) if index is not None else None

    async def list_blocks(self, company_id: str, active_only: bool = True) -> list[SeekerBlock]:
        blocks = [
            block.model_copy(deep=True)
            for block in self._blocks
            if block.company_id == company_id and (block.active or not active_only)
        ]
        blocks.sort(key=lambda block: block.blocked_at, reverse=True)
        return blocks

    # -- chat claims ----------------------------------------------------------

    async def claim_chat(self, application_id: str, token: str, now: datetime, ttl: timedelta) -> bool:
        async with self._lock:
            current = self._applications.get(application_id)
            if current is None:
                raise NotFoundError("application", application_id)
            if not chat_claim_open(current, now, ttl):
                return False
            claimed = current.model_copy(update={"chat_claim_token": token, "chat_claimed_at": now})
            self._put_application(claimed, current.version + 1)
            return True

    async def complete_chat(self, application_id: str, token: str, chat_id: str) -> JobApplication:
        async with self._lock:
            current = self._applications.get(application_id)
            if current is None:
                raise NotFoundError("application", application_id)
            if current.chat_claim_token != token or current.chat_id:
                raise ConflictError(
                    f"Chat claim on application {application_id} is no longer held",
                    reason_code=ConflictError.CHAT_CREATION_IN_PROGRESS,
                )
            done = current.model_copy(update={"chat_id": chat_id, "chat_claim_token": None, "chat_claimed_at": None})
            return self._put_application(done, current.version + 1)

    async def release_chat_claim(self, application_id: str, token: str) -> None:
        async with self._lock:
            current = self._applications.get(application_id)
            if current is None or current.chat_claim_token != token:
                return
            released = current.model_copy(update={"chat_claim_token": None, "chat_claimed_at": None})
            self._put_application(released, current.version + 1)

    # -- reminders ----------------------------------------------------------

    async def list_reminder_candidates(self, until: datetime, since: datetime | None = None) -> ReminderCandidates:
        interviews = [
            interview.model_copy(deep=True)
            for interview in self._interviews.values()
            if interview.status in BOOKED_INTERVIEW_STATUSES
            and interview.starts_at() <= until + timedelta(days=1)
            and (since is None or interview.starts_at() >= since - timedelta(days=1))
        ]
        applications = [
            application.model_copy(deep=True)
            for application in self._applications.values()
            if application.status == ApplicationStatus.HIRED
            and application.hiring_type == HiringType.INSTANT_HIRE
            and application.work_start_at is not None
            and application.work_start_at <= until
        ]
        return interviews, applications

    async def mark_reminder_sent(self, kind: str, entity_id: str, key: str) -> bool:
        async with self._lock:
            entities: dict = self._interviews if kind == "interview" else self._applications
            entity = entities.get(entity_id)
            if entity is None:
                raise NotFoundError(kind, entity_id)
            if key in entity.reminders_sent:
                return False
            entity.reminders_sent.append(key)
            return True
