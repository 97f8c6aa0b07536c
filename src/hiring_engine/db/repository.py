"""
Storage port and its SQLAlchemy implementation.

The orchestrator only talks to HiringStore. Every workflow write is
conditional: entities carry a version and a write only lands if the
stored version still equals the version the caller read. Reminder marks
only add to an entity's reminder log and leave the version alone.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from datetime import date, datetime, timedelta
from typing import Any, TypeVar

from sqlalchemy import Select, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from hiring_engine.config import get_settings
from hiring_engine.db.models import ApplicationModel, Base, InterviewModel, ScheduleLockModel, SeekerBlockModel
from hiring_engine.errors import ConflictError, NotFoundError, StorageError
from hiring_engine.schemas import (
    BOOKED_INTERVIEW_STATUSES,
    ApplicationStatus,
    HiringType,
    Interview,
    InterviewStatus,
    JobApplication,
    SeekerBlock,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Receives the live bookings of the company-day and raises if the new slot overlaps one.
SlotGuard = Callable[[list[Interview]], None]

ReminderCandidates = tuple[list[Interview], list[JobApplication]]


class _LockRowRace(Exception):
    """Two transactions created the same schedule lock row."""

    def __init__(self, company_id: str, on_date: date) -> None:
        super().__init__(f"Schedule lock for {company_id} on {on_date} created concurrently")


class HiringStore(ABC):
    """Abstract storage port for applications and interviews."""

    # -- applications -------------------------------------------------------

    @abstractmethod
    async def get_application(self, application_id: str) -> JobApplication | None:
        """Get an application by id."""
        ...

    @abstractmethod
    async def find_active_application(self, job_id: str, seeker_id: str) -> JobApplication | None:
        """Get the active (not rejected, not withdrawn) application for a job and seeker."""
        ...

    @abstractmethod
    async def list_applications(
        self,
        job_id: str | None = None,
        seeker_id: str | None = None,
        company_id: str | None = None,
        status: ApplicationStatus | None = None,
    ) -> list[JobApplication]:
        """
        List applications matching every given filter, newest first.

        Args:
            job_id: Filter by job.
            seeker_id: Filter by seeker.
            company_id: Filter by company.
            status: Filter by status.

        Returns:
            Matching applications.
        """
        ...

    @abstractmethod
    async def create_application(self, application: JobApplication) -> JobApplication:
        """
        Insert a new application.

        Returns:
            The stored copy (version 1).

        Raises:
            ConflictError: DUPLICATE_APPLICATION if an active application exists for the pair.
        """
        ...

    @abstractmethod
    async def save_application(self, application: JobApplication, expected_version: int) -> JobApplication:
        """
        Compare-and-swap an application.

        Returns:
            The stored copy with the version bumped.

        Raises:
            ConflictError: STALE_WRITE if the stored version moved on.
        """
        ...

    # -- interviews ---------------------------------------------------------

    @abstractmethod
    async def get_interview(self, interview_id: str) -> Interview | None:
        """Get an interview by id."""
        ...

    @abstractmethod
    async def list_interviews_for_application(self, application_id: str) -> list[Interview]:
        """List an application's interviews, oldest first."""
        ...

    @abstractmethod
    async def list_company_bookings(self, company_id: str, on_date: date) -> list[Interview]:
        """List a company's scheduled or confirmed interviews on a day."""
        ...

    @abstractmethod
    async def book_interview(
        self,
        interview: Interview,
        expected_version: int | None,
        application: JobApplication | None = None,
        application_version: int | None = None,
        slot_guard: SlotGuard | None = None,
    ) -> tuple[Interview, JobApplication | None]:
        """
        Persist an interview's timing in one atomic write.

        Bookings are serialised per company and day; the live bookings are
        reloaded and handed to slot_guard before anything is written.

        Args:
            interview: Interview to insert (expected_version None) or update.
            expected_version: Version read by the caller, or None for a new interview.
            application: Optional application written in the same transaction.
            application_version: Version the caller read for the application.
            slot_guard: Callable raising when the slot is no longer free.

        Returns:
            The stored interview and application (if one was given).
        """
        ...

    @abstractmethod
    async def save_interview(
        self,
        interview: Interview,
        expected_version: int,
        application: JobApplication | None = None,
        application_version: int | None = None,
    ) -> tuple[Interview, JobApplication | None]:
        """Compare-and-swap an interview, optionally together with its application."""
        ...

    @abstractmethod
    async def list_interviews(
        self,
        company_id: str | None = None,
        seeker_id: str | None = None,
        status: InterviewStatus | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[Interview]:
        """
        List interviews matching every given filter, ordered by date and start.

        Args:
            company_id: Filter by company.
            seeker_id: Filter by seeker.
            status: Filter by status.
            start_date: First day included.
            end_date: Last day included.
        """
        ...

    # -- seeker blocks --------------------------------------------------------

    @abstractmethod
    async def add_block(self, block: SeekerBlock) -> SeekerBlock:
        """
        Record a company's block on a seeker.

        Raises:
            ConflictError: ALREADY_BLOCKED if a block on the pair is in force.
        """
        ...

    @abstractmethod
    async def end_block(
        self,
        company_id: str,
        seeker_id: str,
        reason: str | None,
        ended_at: datetime,
    ) -> SeekerBlock:
        """
        Lift the block in force on a seeker; the entry is kept as history.

        Raises:
            NotFoundError: If no block is in force.
        """
        ...

    @abstractmethod
    async def get_active_block(self, company_id: str, seeker_id: str) -> SeekerBlock | None:
        """Get the block in force on a seeker, if any."""
        ...

    @abstractmethod
    async def list_blocks(self, company_id: str, active_only: bool = True) -> list[SeekerBlock]:
        """List a company's blocks, newest first."""
        ...

    # -- chat claims ----------------------------------------------------------

    @abstractmethod
    async def claim_chat(self, application_id: str, token: str, now: datetime, ttl: timedelta) -> bool:
        """
        Take the right to create the application's chat.

        Succeeds only when no chat exists and no unexpired claim is held.

        Returns:
            True if the caller now holds the claim.
        """
        ...

    @abstractmethod
    async def complete_chat(self, application_id: str, token: str, chat_id: str) -> JobApplication:
        """
        Record the created chat id under a held claim.

        Raises:
            ConflictError: CHAT_CREATION_IN_PROGRESS if the claim is no longer held.
        """
        ...

    @abstractmethod
    async def release_chat_claim(self, application_id: str, token: str) -> None:
        """Drop a held claim so a later attempt can retry."""
        ...

    # -- reminders ----------------------------------------------------------

    @abstractmethod
    async def list_reminder_candidates(self, until: datetime, since: datetime | None = None) -> ReminderCandidates:
        """
        List entities that may need a reminder.

        Returns booked interviews and hired instant-hire applications whose
        start is near the window. Callers apply the exact timing rule.
        """
        ...

    @abstractmethod
    async def mark_reminder_sent(self, kind: str, entity_id: str, key: str) -> bool:
        """
        Record that a reminder fired.

        The mark does not bump the entity version, so it never makes a
        concurrent workflow write stale. Compare-and-swap writes keep marks
        recorded after the caller's read.

        Args:
            kind: "interview" or "application".
            entity_id: Interview or application id.
            key: Reminder key, e.g. "240m@2025-01-10T14:00:00+04:00".

        Returns:
            False if the key had already been recorded.
        """
        ...

    async def close(self) -> None:
        """Release any held resources."""
        return None


def active_key(application: JobApplication) -> str | None:
    """Uniqueness key held while an application is active."""
    if not application.is_active:
        return None
    return f"{application.job_id}:{application.seeker_id}"


def block_key(company_id: str, seeker_id: str) -> str:
    """Uniqueness key held while a block is in force."""
    return f"{company_id}:{seeker_id}"


def merge_reminder_marks(stored: list[str], incoming: list[str]) -> list[str]:
    """Union of reminder marks, stored ones first."""
    return [*stored, *(key for key in incoming if key not in stored)]


def row_lock_query(model: type[Base], entity_id: str) -> Select:
    """SELECT of one row by id that holds a row lock until the transaction ends."""
    return select(model).where(model.id == entity_id).with_for_update().execution_options(populate_existing=True)


def chat_claim_open(application: JobApplication, now: datetime, ttl: timedelta) -> bool:
    """Check if a new chat claim may be taken on the application."""
    if application.chat_id:
        return False
    if application.chat_claim_token and application.chat_claimed_at:
        return application.chat_claimed_at + ttl <= now
    return True


class SqlAlchemyHiringStore(HiringStore):
    """
    HiringStore backed by SQLAlchemy async.

    Transient driver errors are retried with doubling backoff before
    surfacing as StorageError.
    """

    def __init__(
        self,
        engine: AsyncEngine | None = None,
        database_url: str | None = None,
        max_retries: int | None = None,
        retry_backoff: float | None = None,
    ) -> None:
        """
        Initialize the store.

        Args:
            engine: Existing async engine (takes precedence over database_url).
            database_url: SQLAlchemy async URL (uses config if not provided).
            max_retries: Retries on transient errors (uses config if not provided).
            retry_backoff: Base backoff in seconds (uses config if not provided).
        """
        settings = get_settings()
        self._engine = engine or create_async_engine(database_url or settings.database_url)
        self._session_factory = async_sessionmaker(self._engine, expire_on_commit=False)
        self._max_retries = settings.storage_max_retries if max_retries is None else max_retries
        self._retry_backoff = settings.storage_retry_backoff if retry_backoff is None else retry_backoff

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_tables(self) -> None:
        """Create all tables (idempotent)."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self._engine.dispose()

    async def _run(self, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Run work in a transaction, retrying transient failures."""
        last_error: Exception | None = None
        attempts = 0

        while attempts <= self._max_retries:
            attempts += 1
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        return await work(session)
            except (OperationalError, InterfaceError, _LockRowRace) as e:
                last_error = e
                if attempts > self._max_retries:
                    break
                delay = self._retry_backoff * (2 ** (attempts - 1))
                logger.warning(f"Transient storage error (attempt {attempts}), retrying in {delay:.2f}s: {e}")
                await asyncio.sleep(delay)

        logger.error(f"Storage failed after {attempts} attempts: {last_error}")
        raise StorageError(f"Storage unavailable: {last_error}") from last_error

    # -- row mapping --------------------------------------------------------

    @staticmethod
    def _load_application(row: ApplicationModel) -> JobApplication:
        application = JobApplication.model_validate(row.document)
        return application.model_copy(update={"version": row.version})

    @staticmethod
    def _load_interview(row: InterviewModel) -> Interview:
        interview = Interview.model_validate(row.document)
        return interview.model_copy(update={"version": row.version})

    @staticmethod
    def _application_columns(application: JobApplication) -> dict[str, Any]:
        return {
            "status": application.status.value,
            "hiring_type": application.hiring_type.value,
            "active_key": active_key(application),
            "document": application.model_dump(mode="json"),
        }

    @staticmethod
    def _interview_columns(interview: Interview) -> dict[str, Any]:
        return {
            "status": interview.status.value,
            "interview_date": interview.date,
            "start_minute": interview.start_minute,
            "end_minute": interview.end_minute,
            "document": interview.model_dump(mode="json"),
        }

    @staticmethod
    async def _locked(session: AsyncSession, model: type[Base], entity_id: str) -> Any:
        return (await session.execute(row_lock_query(model, entity_id))).scalar_one_or_none()

    async def _locked_application(self, session: AsyncSession, application_id: str) -> JobApplication | None:
        row = await self._locked(session, ApplicationModel, application_id)
        return self._load_application(row) if row else None

    async def _locked_interview(self, session: AsyncSession, interview_id: str) -> Interview | None:
        row = await self._locked(session, InterviewModel, interview_id)
        return self._load_interview(row) if row else None

    async def _cas_application(
        self,
        session: AsyncSession,
        application: JobApplication,
        expected_version: int,
    ) -> JobApplication:
        current = await self._locked_application(session, application.application_id)
        if current is None:
            raise NotFoundError("application", application.application_id)
        marks = merge_reminder_marks(current.reminders_sent, application.reminders_sent)
        stored = application.model_copy(update={"version": expected_version + 1, "reminders_sent": marks})
        stmt = (
            update(ApplicationModel)
            .where(ApplicationModel.id == application.application_id)
            .where(ApplicationModel.version == expected_version)
            .values(version=expected_version + 1, **self._application_columns(stored))
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount == 0:
            await self._raise_stale(session, ApplicationModel, application.application_id, "application")
        return stored

    async def _cas_interview(
        self,
        session: AsyncSession,
        interview: Interview,
        expected_version: int,
    ) -> Interview:
        current = await self._locked_interview(session, interview.interview_id)
        if current is None:
            raise NotFoundError("interview", interview.interview_id)
        marks = merge_reminder_marks(current.reminders_sent, interview.reminders_sent)
        stored = interview.model_copy(update={"version": expected_version + 1, "reminders_sent": marks})
        stmt = (
            update(InterviewModel)
            .where(InterviewModel.id == interview.interview_id)
            .where(InterviewModel.version == expected_version)
            .values(version=expected_version + 1, **self._interview_columns(stored))
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount == 0:
            await self._raise_stale(session, InterviewModel, interview.interview_id, "interview")
        return stored

    @staticmethod
    async def _raise_stale(session: AsyncSession, model: type[Base], entity_id: str, entity: str) -> None:
        if await session.get(model, entity_id) is None:
            raise NotFoundError(entity, entity_id)
        raise ConflictError(f"{entity} {entity_id} was modified concurrently", reason_code=ConflictError.STALE_WRITE)

    async def _lock_company_day(self, session: AsyncSession, company_id: str, on_date: date) -> None:
        """Serialise bookings for a company and day by bumping its lock row."""
        stmt = (
            update(ScheduleLockModel)
            .where(ScheduleLockModel.company_id == company_id)
            .where(ScheduleLockModel.lock_date == on_date)
            .values(version=ScheduleLockModel.version + 1)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount:
            return
        session.add(ScheduleLockModel(company_id=company_id, lock_date=on_date, version=1))
        try:
            await session.flush()
        except IntegrityError as e:
            # Another booking created the row first; the whole transaction is retried.
            raise _LockRowRace(company_id, on_date) from e

    async def _bookings(self, session: AsyncSession, company_id: str, on_date: date) -> list[Interview]:
        stmt = (
            select(InterviewModel)
            .where(InterviewModel.company_id == company_id)
            .where(InterviewModel.interview_date == on_date)
            .where(InterviewModel.status.in_([s.value for s in BOOKED_INTERVIEW_STATUSES]))
            .order_by(InterviewModel.start_minute)
        )
        result = await session.execute(stmt)
        return [self._load_interview(row) for row in result.scalars().all()]

    # -- applications -------------------------------------------------------

    async def get_application(self, application_id: str) -> JobApplication | None:
        async def work(session: AsyncSession) -> JobApplication | None:
            row = await session.get(ApplicationModel, application_id)
            return self._load_application(row) if row else None

        return await self._run(work)

    async def find_active_application(self, job_id: str, seeker_id: str) -> JobApplication | None:
        async def work(session: AsyncSession) -> JobApplication | None:
            stmt = select(ApplicationModel).where(ApplicationModel.active_key == f"{job_id}:{seeker_id}")
            row = (await session.execute(stmt)).scalar_one_or_none()
            return self._load_application(row) if row else None

        return await self._run(work)

    async def list_applications(
        self,
        job_id: str | None = None,
        seeker_id: str | None = None,
        company_id: str | None = None,
        status: ApplicationStatus | None = None,
    ) -> list[JobApplication]:
        stmt = select(ApplicationModel).order_by(ApplicationModel.created_at.desc())
        if job_id is not None:
            stmt = stmt.where(ApplicationModel.job_id == job_id)
        if seeker_id is not None:
            stmt = stmt.where(ApplicationModel.seeker_id == seeker_id)
        if company_id is not None:
            stmt = stmt.where(ApplicationModel.company_id == company_id)
        if status is not None:
            stmt = stmt.where(ApplicationModel.status == status.value)

        async def work(session: AsyncSession) -> list[JobApplication]:
            result = await session.execute(stmt)
            return [self._load_application(row) for row in result.scalars().all()]

        return await self._run(work)

    async def create_application(self, application: JobApplication) -> JobApplication:
        stored = application.model_copy(update={"version": 1})

        async def work(session: AsyncSession) -> JobApplication:
            session.add(
                ApplicationModel(
                    id=stored.application_id,
                    job_id=stored.job_id,
                    seeker_id=stored.seeker_id,
                    company_id=stored.company_id,
                    version=1,
                    created_at=stored.created_at,
                    **self._application_columns(stored),
                )
            )
            try:
                await session.flush()
            except IntegrityError as e:
                raise ConflictError(
                    f"Seeker {stored.seeker_id} already has an active application for job {stored.job_id}",
                    reason_code=ConflictError.DUPLICATE_APPLICATION,
                ) from e
            return stored

        return await self._run(work)

    async def save_application(self, application: JobApplication, expected_version: int) -> JobApplication:
        async def work(session: AsyncSession) -> JobApplication:
            return await self._cas_application(session, application, expected_version)

        return await self._run(work)

    # -- interviews ---------------------------------------------------------

    async def get_interview(self, interview_id: str) -> Interview | None:
        async def work(session: AsyncSession) -> Interview | None:
            row = await session.get(InterviewModel, interview_id)
            return self._load_interview(row) if row else None

        return await self._run(work)

    async def list_interviews_for_application(self, application_id: str) -> list[Interview]:
        async def work(session: AsyncSession) -> list[Interview]:
            stmt = (
                select(InterviewModel)
                .where(InterviewModel.application_id == application_id)
                .order_by(InterviewModel.created_at)
            )
            result = await session.execute(stmt)
            return [self._load_interview(row) for row in result.scalars().all()]

        return await self._run(work)

    async def list_company_bookings(self, company_id: str, on_date: date) -> list[Interview]:
        async def work(session: AsyncSession) -> list[Interview]:
            return await self._bookings(session, company_id, on_date)

        return await self._run(work)

    async def book_interview(
        self,
        interview: Interview,
        expected_version: int | None,
        application: JobApplication | None = None,
        application_version: int | None = None,
        slot_guard: SlotGuard | None = None,
    ) -> tuple[Interview, JobApplication | None]:
        async def work(session: AsyncSession) -> tuple[Interview, JobApplication | None]:
            await self._lock_company_day(session, interview.company_id, interview.date)
            if slot_guard is not None:
                slot_guard(await self._bookings(session, interview.company_id, interview.date))

            if expected_version is None:
                stored = interview.model_copy(update={"version": 1})
                session.add(
                    InterviewModel(
                        id=stored.interview_id,
                        application_id=stored.application_id,
                        job_id=stored.job_id,
                        company_id=stored.company_id,
                        seeker_id=stored.seeker_id,
                        version=1,
                        created_at=stored.created_at,
                        **self._interview_columns(stored),
                    )
                )
                await session.flush()
            else:
                stored = await self._cas_interview(session, interview, expected_version)

            saved_application = None
            if application is not None:
                expected = application.version if application_version is None else application_version
                saved_application = await self._cas_application(session, application, expected)
            return stored, saved_application

        return await self._run(work)

    async def save_interview(
        self,
        interview: Interview,
        expected_version: int,
        application: JobApplication | None = None,
        application_version: int | None = None,
    ) -> tuple[Interview, JobApplication | None]:
        async def work(session: AsyncSession) -> tuple[Interview, JobApplication | None]:
            stored = await self._cas_interview(session, interview, expected_version)
            saved_application = None
            if application is not None:
                expected = application.version if application_version is None else application_version
                saved_application = await self._cas_application(session, application, expected)
            return stored, saved_application

        return await self._run(work)

    async def list_interviews(
        self,
        company_id: str | None = None,
        seeker_id: str | None = None,
        status: InterviewStatus | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[Interview]:
        stmt = select(InterviewModel).order_by(InterviewModel.interview_date, InterviewModel.start_minute)
        if company_id is not None:
            stmt = stmt.where(InterviewModel.company_id == company_id)
        if seeker_id is not None:
            stmt = stmt.where(InterviewModel.seeker_id == seeker_id)
        if status is not None:
            stmt = stmt.where(InterviewModel.status == status.value)
        if start_date is not None:
            stmt = stmt.where(InterviewModel.interview_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(InterviewModel.interview_date <= end_date)

        async def work(session: AsyncSession) -> list[Interview]:
            result = await session.execute(stmt)
            return [self._load_interview(row) for row in result.scalars().all()]

        return await self._run(work)

    # -- seeker blocks --------------------------------------------------------

    @staticmethod
    def _load_block(row: SeekerBlockModel) -> SeekerBlock:
        return SeekerBlock.model_validate(row.document)

    async def add_block(self, block: SeekerBlock) -> SeekerBlock:
        async def work(session: AsyncSession) -> SeekerBlock:
            session.add(
                SeekerBlockModel(
                    id=block.block_id,
                    company_id=block.company_id,
                    seeker_id=block.seeker_id,
                    active_key=block_key(block.company_id, block.seeker_id) if block.active else None,
                    document=block.model_dump(mode="json"),
                    blocked_at=block.blocked_at,
                )
            )
            try:
                await session.flush()
            except IntegrityError as e:
                raise ConflictError(
                    f"Seeker {block.seeker_id} is already blocked by company {block.company_id}",
                    reason_code=ConflictError.ALREADY_BLOCKED,
                ) from e
            return block

        return await self._run(work)

    async def end_block(
        self,
        company_id: str,
        seeker_id: str,
        reason: str | None,
        ended_at: datetime,
    ) -> SeekerBlock:
        async def work(session: AsyncSession) -> SeekerBlock:
            stmt = (
                select(SeekerBlockModel)
                .where(SeekerBlockModel.active_key == block_key(company_id, seeker_id))
                .with_for_update()
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                raise NotFoundError("block", block_key(company_id, seeker_id))
            ended = self._load_block(row).model_copy(
                update={"active": False, "unblocked_at": ended_at, "unblock_reason": reason}
            )
            row.active_key = None
            row.document = ended.model_dump(mode="json")
            await session.flush()
            return ended

        return await self._run(work)

    async def get_active_block(self, company_id: str, seeker_id: str) -> SeekerBlock | None:
        async def work(session: AsyncSession) -> SeekerBlock | None:
            stmt = select(SeekerBlockModel).where(SeekerBlockModel.active_key == block_key(company_id, seeker_id))
            row = (await session.execute(stmt)).scalar_one_or_none()
            return self._load_block(row) if row else None

        return await self._run(work)

    async def list_blocks(self, company_id: str, active_only: bool = True) -> list[SeekerBlock]:
        stmt = (
            select(SeekerBlockModel)
            .where(SeekerBlockModel.company_id == company_id)
            .order_by(SeekerBlockModel.blocked_at.desc())
        )
        if active_only:
            stmt = stmt.where(SeekerBlockModel.active_key.is_not(None))

        async def work(session: AsyncSession) -> list[SeekerBlock]:
            result = await session.execute(stmt)
            return [self._load_block(row) for row in result.scalars().all()]

        return await self._run(work)

    # -- chat claims ----------------------------------------------------------

    async def claim_chat(self, application_id: str, token: str, now: datetime, ttl: timedelta) -> bool:
        async def work(session: AsyncSession) -> bool:
            current = await self._locked_application(session, application_id)
            if current is None:
                raise NotFoundError("application", application_id)
            if not chat_claim_open(current, now, ttl):
                return False
            claimed = current.model_copy(update={"chat_claim_token": token, "chat_claimed_at": now})
            try:
                await self._cas_application(session, claimed, current.version)
            except ConflictError:
                return False
            return True

        return await self._run(work)

    async def complete_chat(self, application_id: str, token: str, chat_id: str) -> JobApplication:
        async def work(session: AsyncSession) -> JobApplication:
            # The row stays locked until commit, so no write can slip in between the check and the CAS.
            current = await self._locked_application(session, application_id)
            if current is None:
                raise NotFoundError("application", application_id)
            if current.chat_claim_token != token or current.chat_id:
                raise ConflictError(
                    f"Chat claim on application {application_id} is no longer held",
                    reason_code=ConflictError.CHAT_CREATION_IN_PROGRESS,
                )
            done = current.model_copy(update={"chat_id": chat_id, "chat_claim_token": None, "chat_claimed_at": None})
            return await self._cas_application(session, done, current.version)

        return await self._run(work)

    async def release_chat_claim(self, application_id: str, token: str) -> None:
        async def work(session: AsyncSession) -> None:
            current = await self._locked_application(session, application_id)
            if current is None or current.chat_claim_token != token:
                return
            released = current.model_copy(update={"chat_claim_token": None, "chat_claimed_at": None})
            await self._cas_application(session, released, current.version)

        await self._run(work)

    # -- reminders ----------------------------------------------------------

    async def list_reminder_candidates(self, until: datetime, since: datetime | None = None) -> ReminderCandidates:
        # One day of slack on each side covers any interview time zone.
        last_day = (until + timedelta(days=1)).date()
        first_day = (since - timedelta(days=1)).date() if since else None

        async def work(session: AsyncSession) -> ReminderCandidates:
            interview_stmt = (
                select(InterviewModel)
                .where(InterviewModel.status.in_([s.value for s in BOOKED_INTERVIEW_STATUSES]))
                .where(InterviewModel.interview_date <= last_day)
            )
            if first_day is not None:
                interview_stmt = interview_stmt.where(InterviewModel.interview_date >= first_day)
            application_stmt = (
                select(ApplicationModel)
                .where(ApplicationModel.status == ApplicationStatus.HIRED.value)
                .where(ApplicationModel.hiring_type == HiringType.INSTANT_HIRE.value)
            )
            interviews = [self._load_interview(row) for row in (await session.execute(interview_stmt)).scalars()]
            applications = [
                application
                for application in (
                    self._load_application(row) for row in (await session.execute(application_stmt)).scalars()
                )
                if application.work_start_at is not None and application.work_start_at <= until
            ]
            return interviews, applications

        return await self._run(work)

    async def mark_reminder_sent(self, kind: str, entity_id: str, key: str) -> bool:
        model: type[Base] = InterviewModel if kind == "interview" else ApplicationModel

        async def work(session: AsyncSession) -> bool:
            row = await self._locked(session, model, entity_id)
            if row is None:
                raise NotFoundError(kind, entity_id)
            marks = list(row.document.get("reminders_sent", []))
            if key in marks:
                return False
            document = {**row.document, "reminders_sent": [*marks, key]}
            # Only the document changes; the version is left alone.
            await session.execute(
                update(model)
                .where(model.id == entity_id)
                .values(document=document)
                .execution_options(synchronize_session=False)
            )
            return True

        return await self._run(work)
