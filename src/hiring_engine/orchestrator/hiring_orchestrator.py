"""
Hiring orchestrator.

Coordinates the application and interview state machines: checks who is
asking, asks the right state machine whether the move is legal, asks the
conflict resolver when a time slot is involved, persists through the
storage port, opens the chat channel once, and returns the events the
caller should dispatch.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone
from uuid import uuid4
from zoneinfo import ZoneInfo

from hiring_engine.config import get_settings
from hiring_engine.db.repository import HiringStore, SlotGuard
from hiring_engine.errors import (
    ConflictError,
    CollaboratorError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from hiring_engine.events import (
    application_payload,
    interview_payload,
    to_both,
    to_company,
    to_counterparty,
    to_seeker,
)
from hiring_engine.integrations.collaborators import ChatService, CompanyGate, GatedAction, JobDirectory
from hiring_engine.orchestrator.access import authorize
from hiring_engine.orchestrator.application_state import ApplicationStateMachine
from hiring_engine.orchestrator.interview_state import InterviewStateMachine
from hiring_engine.scheduling.conflicts import ConflictResolver, format_clock, parse_clock
from hiring_engine.schemas import (
    BOOKED_INTERVIEW_STATUSES,
    Actor,
    ActorRole,
    ApplicationPayload,
    ApplicationStatus,
    AttendanceStatus,
    ConflictReport,
    DateOption,
    EventType,
    Interview,
    InterviewOutcome,
    InterviewRequest,
    InterviewStatus,
    JobApplication,
    JobListing,
    SeekerBlock,
    Slot,
    WorkflowEvent,
    WorkflowOutcome,
)

S = ApplicationStatus


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class HiringOrchestrator:
    """
    Entry point for every hiring workflow action.

    All collaborators are injected. Operations return a WorkflowOutcome
    holding the committed entities and the events to hand to the
    EventDispatcher; nothing here delivers notifications itself.
    """

    def __init__(
        self,
        store: HiringStore,
        job_directory: JobDirectory,
        company_gate: CompanyGate,
        chat_service: ChatService,
        resolver: ConflictResolver | None = None,
        applications: ApplicationStateMachine | None = None,
        interviews: InterviewStateMachine | None = None,
        clock: Callable[[], datetime] | None = None,
        chat_claim_ttl: timedelta | None = None,
    ) -> None:
        """
        Initialize the hiring orchestrator.

        Args:
            store: Storage port.
            job_directory: Job lookups.
            company_gate: Plan-limit checks.
            chat_service: Chat channel creation.
            resolver: Conflict resolver (built from settings if None).
            applications: Application state machine (built with the clock if None).
            interviews: Interview state machine (built from settings if None).
            clock: Source of "now" (UTC-aware). Defaults to the system clock.
            chat_claim_ttl: How long a chat claim blocks other creators (uses config if None).
        """
        self._logger = logging.getLogger(__name__)
        self._store = store
        self._job_directory = job_directory
        self._company_gate = company_gate
        self._chat_service = chat_service
        self._clock = clock or _now_utc
        self._resolver = resolver or ConflictResolver.from_settings()
        self._applications = applications or ApplicationStateMachine(clock=self._clock)
        self._interviews = interviews or InterviewStateMachine.from_settings(clock=self._clock)
        self._chat_claim_ttl = chat_claim_ttl or timedelta(seconds=get_settings().chat_claim_ttl_seconds)

    @property
    def store(self) -> HiringStore:
        return self._store

    # -- lookups ------------------------------------------------------------

    async def _application(self, application_id: str) -> JobApplication:
        application = await self._store.get_application(application_id)
        if application is None:
            raise NotFoundError("application", application_id)
        return application

    async def _interview(self, interview_id: str) -> Interview:
        interview = await self._store.get_interview(interview_id)
        if interview is None:
            raise NotFoundError("interview", interview_id)
        return interview

    async def _published_job(self, job_id: str) -> JobListing:
        job = await self._job_directory.find_job(job_id)
        if job is None or not job.is_published:
            raise NotFoundError("job", job_id)
        return job

    async def _live_interview(self, application_id: str) -> Interview | None:
        for interview in await self._store.list_interviews_for_application(application_id):
            if interview.status in BOOKED_INTERVIEW_STATUSES:
                return interview
        return None

    async def _require_gate(self, company_id: str, action: GatedAction) -> None:
        if not await self._company_gate.can_perform_action(company_id, action):
            self._logger.info(f"Plan limit blocked {action.value} for company {company_id}")
            raise ForbiddenError(
                f"Company plan does not allow {action.value.replace('_', ' ')}",
                reason_code=ForbiddenError.PLAN_LIMIT,
            )

    def _log_application(self, before: JobApplication | None, after: JobApplication, actor: Actor) -> None:
        previous = before.status.value if before else "new"
        self._logger.info(
            f"Application {after.application_id}: {previous} -> {after.status.value} "
            f"by {actor.role.value} {actor.actor_id}"
        )

    def _log_interview(self, before: Interview | None, after: Interview, actor: Actor) -> None:
        previous = before.status.value if before else "new"
        self._logger.info(
            f"Interview {after.interview_id}: {previous} -> {after.status.value} "
            f"({after.date.isoformat()} {after.start_time}-{after.end_time}) by {actor.role.value} {actor.actor_id}"
        )

    def _slot_guard(self, interview: Interview) -> SlotGuard:
        def guard(bookings: list[Interview]) -> None:
            self._resolver.ensure_free(
                bookings,
                interview.date,
                interview.start_time,
                interview.duration_minutes,
                exclude_interview_id=interview.interview_id,
            )

        return guard

    # -- chat ---------------------------------------------------------------

    async def _create_chat(self, application: JobApplication) -> tuple[JobApplication, list[WorkflowEvent]]:
        """
        Create the application's chat exactly once.

        Raises:
            ConflictError: CHAT_CREATION_IN_PROGRESS if another caller holds the claim.
            CollaboratorError: If the chat service failed (the claim is released).
        """
        if application.chat_id:
            return application, []

        token = uuid4().hex
        claimed = await self._store.claim_chat(
            application.application_id,
            token,
            self._clock(),
            self._chat_claim_ttl,
        )
        if not claimed:
            current = await self._application(application.application_id)
            if current.chat_id:
                return current, []
            raise ConflictError(
                f"Chat creation for application {application.application_id} is already in progress",
                reason_code=ConflictError.CHAT_CREATION_IN_PROGRESS,
            )

        try:
            chat_id = await self._chat_service.create_chat(
                application.company_id,
                application.seeker_id,
                application.application_id,
            )
        except CollaboratorError:
            await self._store.release_chat_claim(application.application_id, token)
            raise

        saved = await self._store.complete_chat(application.application_id, token, chat_id)
        self._logger.info(f"Chat {chat_id} created for application {saved.application_id}")
        payload = {**application_payload(saved), "chat_id": chat_id}
        return saved, to_both(EventType.CHAT_CREATED, saved, payload, self._clock())

    async def _open_chat_after_commit(self, application: JobApplication) -> tuple[JobApplication, list[WorkflowEvent]]:
        """Open the chat after a committed transition; failures never undo the transition."""
        if application.chat_id or not application.reached_hire_track:
            return application, []
        try:
            return await self._create_chat(application)
        except ConflictError as e:
            if e.reason_code != ConflictError.CHAT_CREATION_IN_PROGRESS:
                raise
            self._logger.info(f"Chat for application {application.application_id} is being created elsewhere")
        except CollaboratorError as e:
            self._logger.error(f"Chat creation failed for application {application.application_id}: {e}")
        return await self._application(application.application_id), []

    async def ensure_chat(self, application_id: str, actor: Actor | None = None) -> str:
        """
        Get the application's chat id, creating the chat if it is missing.

        Idempotent and safe to call concurrently; this is also the operator
        retry for a chat creation that failed earlier.

        Args:
            application_id: Application to open the chat for.
            actor: Caller; defaults to the system actor.

        Returns:
            The chat id.

        Raises:
            InvalidTransitionError: If the application never reached a hire-track milestone.
            ConflictError: CHAT_CREATION_IN_PROGRESS while another caller is creating it.
            CollaboratorError: If the chat service failed.
        """
        actor = actor or Actor.system()
        application = await self._application(application_id)
        authorize(
            actor,
            ActorRole.COMPANY,
            ActorRole.SEEKER,
            ActorRole.SYSTEM,
            company_id=application.company_id,
            seeker_id=application.seeker_id,
            action="open chats",
        )
        if application.chat_id:
            return application.chat_id
        if not application.reached_hire_track:
            raise InvalidTransitionError(
                "application",
                application.status.value,
                application.status.value,
                message="A chat opens only once an interview or hire request is accepted",
            )
        saved, _ = await self._create_chat(application)
        return saved.chat_id or ""

    # -- applications -------------------------------------------------------

    async def apply(
        self,
        job_id: str,
        actor: Actor,
        payload: ApplicationPayload | None = None,
    ) -> WorkflowOutcome:
        """
        Submit an application to a published job.

        Raises:
            NotFoundError: If the job does not exist or is not published.
            ForbiddenError: BLOCKED if the company has blocked the seeker.
            ConflictError: DUPLICATE_APPLICATION if the seeker already has an active one.
        """
        if actor.role != ActorRole.SEEKER:
            raise ForbiddenError("Only seekers may apply", reason_code=ForbiddenError.ROLE)
        job = await self._published_job(job_id)
        await self._ensure_not_blocked(job.company_id, actor.actor_id)
        application = self._applications.create(job, actor.actor_id, actor, payload)
        await self._ensure_no_active_application(job_id, actor.actor_id)

        stored = await self._store.create_application(application)
        self._log_application(None, stored, actor)
        events = [
            to_company(EventType.APPLICATION_SUBMITTED, stored, application_payload(stored), self._clock()),
        ]
        return WorkflowOutcome(application=stored, events=events)

    async def invite_seeker(self, job_id: str, seeker_id: str, actor: Actor) -> WorkflowOutcome:
        """Company invites a seeker to one of its published jobs."""
        job = await self._published_job(job_id)
        authorize(actor, ActorRole.COMPANY, company_id=job.company_id, seeker_id=seeker_id, action="invite seekers")
        await self._require_gate(job.company_id, GatedAction.INVITE_SEEKER)
        await self._ensure_not_blocked(job.company_id, seeker_id)
        application = self._applications.invite(job, seeker_id, actor)
        await self._ensure_no_active_application(job_id, seeker_id)

        stored = await self._store.create_application(application)
        self._log_application(None, stored, actor)
        events = [to_seeker(EventType.INVITATION_SENT, stored, application_payload(stored), self._clock())]
        return WorkflowOutcome(application=stored, events=events)

    async def _ensure_not_blocked(self, company_id: str, seeker_id: str) -> None:
        if await self._store.get_active_block(company_id, seeker_id) is not None:
            self._logger.info(f"Seeker {seeker_id} is blocked by company {company_id}")
            raise ForbiddenError(
                f"Seeker {seeker_id} is blocked by company {company_id}",
                reason_code=ForbiddenError.BLOCKED,
            )

    async def _ensure_no_active_application(self, job_id: str, seeker_id: str) -> None:
        existing = await self._store.find_active_application(job_id, seeker_id)
        if existing is not None:
            raise ConflictError(
                f"Seeker {seeker_id} already has application {existing.application_id} for job {job_id}",
                reason_code=ConflictError.DUPLICATE_APPLICATION,
            )

    async def accept_invitation(self, application_id: str, actor: Actor) -> WorkflowOutcome:
        application = await self._application(application_id)
        updated = self._applications.accept_invitation(application, actor)
        stored = await self._store.save_application(updated, application.version)
        self._log_application(application, stored, actor)
        events = [to_company(EventType.INVITATION_ACCEPTED, stored, application_payload(stored), self._clock())]
        return WorkflowOutcome(application=stored, events=events)

    async def mark_viewed(self, application_id: str, actor: Actor) -> WorkflowOutcome:
        """Company opens an application; a no-op once it is past 'applied'."""
        application = await self._application(application_id)
        updated = self._applications.mark_viewed(application, actor)
        if updated is None:
            return WorkflowOutcome(application=application)
        try:
            stored = await self._store.save_application(updated, application.version)
        except ConflictError as e:
            # A concurrent view already moved it on.
            current = await self._application(application_id)
            if e.reason_code == ConflictError.STALE_WRITE and current.status != S.APPLIED:
                return WorkflowOutcome(application=current)
            raise
        self._log_application(application, stored, actor)
        events = [to_seeker(EventType.APPLICATION_VIEWED, stored, application_payload(stored), self._clock())]
        return WorkflowOutcome(application=stored, events=events)

    async def shortlist(self, application_id: str, actor: Actor) -> WorkflowOutcome:
        application = await self._application(application_id)
        updated = self._applications.shortlist(application, actor)
        stored = await self._store.save_application(updated, application.version)
        self._log_application(application, stored, actor)
        events = [to_seeker(EventType.APPLICATION_SHORTLISTED, stored, application_payload(stored), self._clock())]
        return WorkflowOutcome(application=stored, events=events)

    async def reject(self, application_id: str, actor: Actor, reason: str | None = None) -> WorkflowOutcome:
        """Company rejects the application; a live interview is cancelled in the same write."""
        application = await self._application(application_id)
        updated = self._applications.reject(application, actor, reason)
        stored, interview, events = await self._close_application(application, updated, actor, updated.decline_reason)
        payload = {**application_payload(stored), "decline_reason": stored.decline_reason}
        events.insert(0, to_seeker(EventType.APPLICATION_REJECTED, stored, payload, self._clock()))
        return WorkflowOutcome(application=stored, interview=interview, events=events)

    async def withdraw(self, application_id: str, actor: Actor, reason: str | None = None) -> WorkflowOutcome:
        """Seeker withdraws; a live interview is cancelled in the same write."""
        application = await self._application(application_id)
        updated = self._applications.withdraw(application, actor, reason)
        stored, interview, events = await self._close_application(application, updated, actor, reason)
        payload = {**application_payload(stored), "reason": reason}
        events.insert(0, to_company(EventType.APPLICATION_WITHDRAWN, stored, payload, self._clock()))
        return WorkflowOutcome(application=stored, interview=interview, events=events)

    async def _close_application(
        self,
        application: JobApplication,
        updated: JobApplication,
        actor: Actor,
        reason: str | None,
    ) -> tuple[JobApplication, Interview | None, list[WorkflowEvent]]:
        live = await self._live_interview(application.application_id)
        if live is None:
            stored = await self._store.save_application(updated, application.version)
            self._log_application(application, stored, actor)
            return stored, None, []

        cancelled = self._interviews.cancel(live, actor, reason)
        saved_interview, saved_application = await self._store.save_interview(
            cancelled,
            live.version,
            application=updated,
            application_version=application.version,
        )
        stored = saved_application or updated
        self._log_application(application, stored, actor)
        self._log_interview(live, saved_interview, actor)
        events = [
            to_counterparty(
                EventType.INTERVIEW_CANCELLED,
                saved_interview,
                actor.role,
                {**interview_payload(saved_interview), "reason": reason},
                self._clock(),
            )
        ]
        return stored, saved_interview, events

    # -- interviews ---------------------------------------------------------

    async def schedule_interview(
        self,
        application_id: str,
        actor: Actor,
        request: InterviewRequest,
    ) -> WorkflowOutcome:
        """
        Schedule an interview and move the application to 'interview_requested'.

        The slot is checked against the company's bookings inside the
        booking write.

        Raises:
            ForbiddenError: On role, ownership or plan-limit refusal.
            InvalidTransitionError: If the application cannot request an interview
                or already has a live one.
            ValidationError: On a malformed or past slot.
            SlotConflictError: If the slot overlaps another booking.
        """
        application = await self._application(application_id)
        authorize(
            actor,
            ActorRole.COMPANY,
            company_id=application.company_id,
            seeker_id=application.seeker_id,
            action="schedule interviews",
        )
        await self._require_gate(application.company_id, GatedAction.SCHEDULE_INTERVIEW)

        updated = self._applications.request_interview(application, actor)
        live = await self._live_interview(application_id)
        if live is not None:
            raise InvalidTransitionError(
                "application",
                application.status.value,
                S.INTERVIEW_REQUESTED.value,
                message=f"Application already has interview {live.interview_id}; reschedule it instead",
            )
        interview = self._interviews.create(application, actor, request)

        stored_interview, saved_application = await self._store.book_interview(
            interview,
            None,
            application=updated,
            application_version=application.version,
            slot_guard=self._slot_guard(interview),
        )
        stored = saved_application or updated
        self._log_application(application, stored, actor)
        self._log_interview(None, stored_interview, actor)
        payload = interview_payload(stored_interview)
        events = [to_seeker(EventType.INTERVIEW_SCHEDULED, stored_interview, payload, self._clock())]
        return WorkflowOutcome(application=stored, interview=stored_interview, events=events)

    async def confirm_interview(self, interview_id: str, actor: Actor) -> WorkflowOutcome:
        """Seeker confirms; the application reaches 'interview_accepted' and the chat opens."""
        interview = await self._interview(interview_id)
        application = await self._application(interview.application_id)
        confirmed = self._interviews.confirm(interview, actor)
        updated = None
        if application.status == S.INTERVIEW_REQUESTED:
            updated = self._applications.accept_interview(application, actor)

        stored_interview, stored = await self._store.save_interview(
            confirmed,
            interview.version,
            application=updated,
            application_version=application.version if updated else None,
        )
        self._log_interview(interview, stored_interview, actor)
        if stored is not None:
            self._log_application(application, stored, actor)
        payload = interview_payload(stored_interview)
        events = [to_company(EventType.INTERVIEW_CONFIRMED, stored_interview, payload, self._clock())]
        final, chat_events = await self._open_chat_after_commit(stored or application)
        return WorkflowOutcome(application=final, interview=stored_interview, events=events + chat_events)

    async def decline_interview(self, interview_id: str, actor: Actor, reason: str | None = None) -> WorkflowOutcome:
        interview = await self._interview(interview_id)
        application = await self._application(interview.application_id)
        declined = self._interviews.decline(interview, actor, reason)
        updated = None
        if application.status == S.INTERVIEW_REQUESTED:
            updated = self._applications.decline_interview(application, actor, reason)

        stored_interview, stored = await self._store.save_interview(
            declined,
            interview.version,
            application=updated,
            application_version=application.version if updated else None,
        )
        self._log_interview(interview, stored_interview, actor)
        if stored is not None:
            self._log_application(application, stored, actor)
        payload = {**interview_payload(stored_interview), "reason": reason}
        events = [to_company(EventType.INTERVIEW_DECLINED, stored_interview, payload, self._clock())]
        return WorkflowOutcome(application=stored or application, interview=stored_interview, events=events)

    async def reschedule_interview(
        self,
        interview_id: str,
        actor: Actor,
        new_date: date,
        new_start_time: str,
        reason: str | None = None,
        duration_minutes: int | None = None,
    ) -> WorkflowOutcome:
        """
        Move an interview to a new slot.

        The new slot is checked against the company's other bookings; the
        interview's own prior booking does not count. A confirmed or declined
        interview sends the application back to 'interview_requested'.
        """
        interview = await self._interview(interview_id)
        application = await self._application(interview.application_id)
        moved = self._interviews.reschedule(interview, actor, new_date, new_start_time, reason, duration_minutes)
        updated = None
        if application.status in (S.INTERVIEW_ACCEPTED, S.INTERVIEW_DECLINED):
            updated = self._applications.reopen_interview(application, actor)

        stored_interview, stored = await self._store.book_interview(
            moved,
            interview.version,
            application=updated,
            application_version=application.version if updated else None,
            slot_guard=self._slot_guard(moved),
        )
        self._log_interview(interview, stored_interview, actor)
        if stored is not None:
            self._log_application(application, stored, actor)
        payload = {
            **interview_payload(stored_interview),
            "previous_date": interview.date.isoformat(),
            "previous_start_time": interview.start_time,
            "reason": reason,
        }
        events = [
            to_counterparty(EventType.INTERVIEW_RESCHEDULED, stored_interview, actor.role, payload, self._clock())
        ]
        return WorkflowOutcome(application=stored or application, interview=stored_interview, events=events)

    async def complete_interview(
        self,
        interview_id: str,
        actor: Actor,
        result: InterviewOutcome,
        feedback: str | None = None,
        rating: int | None = None,
        next_steps: str | None = None,
    ) -> WorkflowOutcome:
        interview = await self._interview(interview_id)
        completed = self._interviews.complete(interview, actor, result, feedback, rating, next_steps)
        stored_interview, _ = await self._store.save_interview(completed, interview.version)
        self._log_interview(interview, stored_interview, actor)
        payload = {**interview_payload(stored_interview), "result": result.value, "next_steps": next_steps}
        events = [to_seeker(EventType.INTERVIEW_COMPLETED, stored_interview, payload, self._clock())]
        return WorkflowOutcome(interview=stored_interview, events=events)

    async def mark_no_show(self, interview_id: str, actor: Actor) -> WorkflowOutcome:
        interview = await self._interview(interview_id)
        missed = self._interviews.mark_no_show(interview, actor)
        stored_interview, _ = await self._store.save_interview(missed, interview.version)
        self._log_interview(interview, stored_interview, actor)
        events = [
            to_seeker(EventType.INTERVIEW_NO_SHOW, stored_interview, interview_payload(stored_interview), self._clock())
        ]
        return WorkflowOutcome(interview=stored_interview, events=events)

    async def cancel_interview(self, interview_id: str, actor: Actor, reason: str | None = None) -> WorkflowOutcome:
        interview = await self._interview(interview_id)
        cancelled = self._interviews.cancel(interview, actor, reason)
        stored_interview, _ = await self._store.save_interview(cancelled, interview.version)
        self._log_interview(interview, stored_interview, actor)
        payload = {**interview_payload(stored_interview), "reason": reason}
        events = [
            to_counterparty(EventType.INTERVIEW_CANCELLED, stored_interview, actor.role, payload, self._clock())
        ]
        return WorkflowOutcome(interview=stored_interview, events=events)

    async def add_additional_dates(
        self,
        interview_id: str,
        actor: Actor,
        options: list[DateOption],
    ) -> WorkflowOutcome:
        interview = await self._interview(interview_id)
        extended = self._interviews.add_additional_dates(interview, actor, options)
        stored_interview, _ = await self._store.save_interview(extended, interview.version)
        self._logger.info(f"Interview {interview_id}: {len(options)} alternative date(s) added")
        payload = {
            **interview_payload(stored_interview),
            "additional_date_options": [option.model_dump(mode="json") for option in options],
        }
        events = [to_seeker(EventType.INTERVIEW_DATES_ADDED, stored_interview, payload, self._clock())]
        return WorkflowOutcome(interview=stored_interview, events=events)

    async def choose_additional_date(self, interview_id: str, actor: Actor, index: int) -> WorkflowOutcome:
        """Seeker picks an offered alternative; the interview moves there and is confirmed."""
        interview = await self._interview(interview_id)
        application = await self._application(interview.application_id)
        chosen = self._interviews.choose_additional_date(interview, actor, index)
        updated = None
        if application.status in (S.INTERVIEW_REQUESTED, S.INTERVIEW_DECLINED):
            if application.status == S.INTERVIEW_DECLINED:
                application_base = self._applications.reopen_interview(application, actor)
            else:
                application_base = application
            updated = self._applications.accept_interview(application_base, actor)

        stored_interview, stored = await self._store.book_interview(
            chosen,
            interview.version,
            application=updated,
            application_version=application.version if updated else None,
            slot_guard=self._slot_guard(chosen),
        )
        self._log_interview(interview, stored_interview, actor)
        if stored is not None:
            self._log_application(application, stored, actor)
        payload = {**interview_payload(stored_interview), "chosen_option": index}
        events = [to_company(EventType.INTERVIEW_CONFIRMED, stored_interview, payload, self._clock())]
        final, chat_events = await self._open_chat_after_commit(stored or application)
        return WorkflowOutcome(application=final, interview=stored_interview, events=events + chat_events)

    async def send_interview_reminder(self, interview_id: str, actor: Actor) -> WorkflowOutcome:
        """Company sends a reminder now; every send is appended to the interview's reminder log."""
        interview = await self._interview(interview_id)
        logged = self._interviews.log_manual_reminder(interview, actor)
        stored_interview, _ = await self._store.save_interview(logged, interview.version)
        sent = len(stored_interview.manual_reminders)
        self._logger.info(f"Manual reminder #{sent} sent for interview {interview_id} by {actor.actor_id}")
        payload = {**interview_payload(stored_interview), "manual": True, "reminder_number": sent}
        events = [to_seeker(EventType.INTERVIEW_REMINDER, stored_interview, payload, self._clock())]
        return WorkflowOutcome(interview=stored_interview, events=events)

    async def get_available_slots(
        self,
        company_id: str,
        on_date: date,
        duration_minutes: int = 30,
        actor: Actor | None = None,
    ) -> list[Slot]:
        """
        Free interview slots for a company on a day, inside working hours.

        Args:
            company_id: Company whose bookings are considered.
            on_date: Day to look at.
            duration_minutes: Length of the wanted interview.
            actor: Optional caller; a company may only look at its own calendar.

        Raises:
            ValidationError: If the duration is outside the allowed interview bounds.
        """
        self._ensure_own_calendar(company_id, actor)
        self._interviews.validate_duration(duration_minutes)
        bookings = await self._store.list_company_bookings(company_id, on_date)
        return self._resolver.available_slots(bookings, on_date, duration_minutes)

    async def check_conflicts(
        self,
        company_id: str,
        on_date: date,
        start_time: str,
        duration_minutes: int,
        actor: Actor,
        exclude_interview_id: str | None = None,
    ) -> ConflictReport:
        """
        Report the bookings a proposed slot would overlap, without booking anything.

        Args:
            company_id: Company whose calendar is checked.
            on_date: Proposed day.
            start_time: Proposed start (HH:MM).
            duration_minutes: Proposed length.
            actor: Company caller.
            exclude_interview_id: Interview being moved, left out of the check.

        Raises:
            ValidationError: On a malformed time or an out-of-bounds duration.
        """
        if actor.role != ActorRole.COMPANY:
            raise ForbiddenError("Only companies may check interview conflicts", reason_code=ForbiddenError.ROLE)
        self._ensure_own_calendar(company_id, actor)
        self._interviews.validate_duration(duration_minutes)
        bookings = await self._store.list_company_bookings(company_id, on_date)
        overlapping = self._resolver.find_conflicts(
            bookings, on_date, start_time, duration_minutes, exclude_interview_id=exclude_interview_id
        )
        by_id = {booking.interview_id: booking for booking in bookings}
        start_minute = parse_clock(start_time)
        return ConflictReport(
            date=on_date,
            start_time=start_time,
            end_time=format_clock(start_minute + duration_minutes),
            duration_minutes=duration_minutes,
            conflicts=[by_id[interval.interview_id] for interval in overlapping if interval.interview_id in by_id],
        )

    @staticmethod
    def _ensure_own_calendar(company_id: str, actor: Actor | None) -> None:
        if actor is not None and actor.role == ActorRole.COMPANY and actor.actor_id != company_id:
            raise ForbiddenError(
                f"Company {actor.actor_id} cannot view another company's calendar",
                reason_code=ForbiddenError.OWNERSHIP,
            )

    # -- hiring -------------------------------------------------------------

    async def accept(
        self,
        application_id: str,
        actor: Actor,
        work_start_at: datetime | None = None,
    ) -> WorkflowOutcome:
        """
        Company accepts the candidate by sending a hire request.

        Instant-hire applications may skip the interview; interview-first
        ones need an accepted interview. Idempotent: repeating the call on
        an application that already has a hire request returns the same
        chat id and no new events.

        Args:
            application_id: Application to accept.
            actor: Owning company.
            work_start_at: Optional instant-hire work start (timezone-aware).

        Returns:
            Outcome whose application carries the chat id (None while another
            caller is still creating the chat or after a chat service failure).
        """
        application = await self._application(application_id)
        authorize(
            actor,
            ActorRole.COMPANY,
            company_id=application.company_id,
            seeker_id=application.seeker_id,
            action="send hire requests",
        )
        if application.status == S.HIRE_REQUEST_SENT:
            return await self._replay_accept(application)

        await self._require_gate(application.company_id, GatedAction.SEND_HIRE_REQUEST)
        updated = self._applications.send_hire_request(application, actor, work_start_at)
        try:
            stored = await self._store.save_application(updated, application.version)
        except ConflictError as e:
            if e.reason_code != ConflictError.STALE_WRITE:
                raise
            current = await self._application(application_id)
            if current.status != S.HIRE_REQUEST_SENT:
                raise
            return await self._replay_accept(current)

        self._log_application(application, stored, actor)
        payload = {**application_payload(stored)}
        if stored.work_start_at is not None:
            payload["work_start_at"] = stored.work_start_at.isoformat()
        events = [to_seeker(EventType.HIRE_REQUEST_SENT, stored, payload, self._clock())]
        final, chat_events = await self._open_chat_after_commit(stored)
        return WorkflowOutcome(application=final, events=events + chat_events)

    async def _replay_accept(self, application: JobApplication) -> WorkflowOutcome:
        self._logger.info(f"Application {application.application_id}: hire request already sent, replaying")
        final, chat_events = await self._open_chat_after_commit(application)
        return WorkflowOutcome(application=final, events=chat_events)

    async def respond_to_hire_request(self, application_id: str, actor: Actor, accepted: bool) -> WorkflowOutcome:
        application = await self._application(application_id)
        updated = self._applications.respond_to_hire_request(application, actor, accepted)
        stored = await self._store.save_application(updated, application.version)
        self._log_application(application, stored, actor)
        event_type = EventType.HIRE_ACCEPTED if accepted else EventType.HIRE_DECLINED
        events = [to_company(event_type, stored, application_payload(stored), self._clock())]
        if not accepted:
            return WorkflowOutcome(application=stored, events=events)
        final, chat_events = await self._open_chat_after_commit(stored)
        return WorkflowOutcome(application=final, events=events + chat_events)

    async def complete_job(
        self,
        application_id: str,
        actor: Actor,
        feedback: str | None = None,
        rating: int | None = None,
    ) -> WorkflowOutcome:
        application = await self._application(application_id)
        updated = self._applications.complete_job(application, actor, feedback, rating)
        stored = await self._store.save_application(updated, application.version)
        self._log_application(application, stored, actor)
        payload = {**application_payload(stored), "rating": rating, "feedback": feedback}
        events = [to_seeker(EventType.JOB_COMPLETED, stored, payload, self._clock())]
        return WorkflowOutcome(application=stored, events=events)

    async def cancel_job(self, application_id: str, actor: Actor, reason: str) -> WorkflowOutcome:
        application = await self._application(application_id)
        updated = self._applications.cancel_job(application, actor, reason)
        stored = await self._store.save_application(updated, application.version)
        self._log_application(application, stored, actor)
        payload = {**application_payload(stored), "reason": reason}
        events = [to_counterparty(EventType.JOB_CANCELLED, stored, actor.role, payload, self._clock())]
        return WorkflowOutcome(application=stored, events=events)

    async def report_attendance(
        self,
        application_id: str,
        actor: Actor,
        status: AttendanceStatus,
        on_date: date | None = None,
        reason: str | None = None,
        notes: str | None = None,
    ) -> WorkflowOutcome:
        """
        Either party reports attendance on a hired application.

        Args:
            application_id: Hired application.
            actor: Company or seeker of the application.
            status: Present, absent or late.
            on_date: Work day reported on; today in the configured time zone if None.
            reason: Required for absent and late.
            notes: Free-form notes.
        """
        application = await self._application(application_id)
        if on_date is None:
            on_date = self._clock().astimezone(ZoneInfo(self._interviews.time_zone)).date()
        updated = self._applications.report_attendance(application, actor, on_date, status, reason, notes)
        stored = await self._store.save_application(updated, application.version)
        self._logger.info(
            f"Attendance {status.value} on {on_date.isoformat()} for application {application_id} "
            f"reported by {actor.role.value} {actor.actor_id}"
        )
        payload = {
            **application_payload(stored),
            "date": on_date.isoformat(),
            "attendance": status.value,
            "reason": reason,
        }
        events = [to_counterparty(EventType.ATTENDANCE_REPORTED, stored, actor.role, payload, self._clock())]
        return WorkflowOutcome(application=stored, events=events)

    # -- seeker blocks ------------------------------------------------------

    async def block_seeker(
        self,
        seeker_id: str,
        actor: Actor,
        reason: str | None = None,
        application_id: str | None = None,
    ) -> SeekerBlock:
        """
        Company blocks a seeker from applying to, or being invited to, its jobs.

        Raises:
            ForbiddenError: ROLE if the caller is not a company.
            ConflictError: ALREADY_BLOCKED if a block is already in force.
        """
        if actor.role != ActorRole.COMPANY:
            raise ForbiddenError("Only companies may block seekers", reason_code=ForbiddenError.ROLE)
        block = SeekerBlock(
            company_id=actor.actor_id,
            seeker_id=seeker_id,
            reason=reason,
            application_id=application_id,
            blocked_at=self._clock(),
        )
        stored = await self._store.add_block(block)
        self._logger.info(f"Company {actor.actor_id} blocked seeker {seeker_id}: {reason}")
        return stored

    async def block_seeker_from_application(
        self,
        application_id: str,
        actor: Actor,
        reason: str = "Application declined - blocked from future applications",
    ) -> SeekerBlock:
        """Company blocks the seeker behind one of its applications; the application itself is unchanged."""
        application = await self._application(application_id)
        authorize(
            actor,
            ActorRole.COMPANY,
            company_id=application.company_id,
            seeker_id=application.seeker_id,
            action="block seekers",
        )
        return await self.block_seeker(application.seeker_id, actor, reason, application_id=application_id)

    async def unblock_seeker(self, seeker_id: str, actor: Actor, reason: str = "Unblocked by company") -> SeekerBlock:
        """
        Lift a company's block on a seeker; the block stays in the history.

        Raises:
            NotFoundError: If no block is in force.
        """
        if actor.role != ActorRole.COMPANY:
            raise ForbiddenError("Only companies may unblock seekers", reason_code=ForbiddenError.ROLE)
        ended = await self._store.end_block(actor.actor_id, seeker_id, reason, self._clock())
        self._logger.info(f"Company {actor.actor_id} unblocked seeker {seeker_id}: {reason}")
        return ended

    async def list_blocked_seekers(self, actor: Actor, include_lifted: bool = False) -> list[SeekerBlock]:
        if actor.role != ActorRole.COMPANY:
            raise ForbiddenError("Only companies may list blocked seekers", reason_code=ForbiddenError.ROLE)
        return await self._store.list_blocks(actor.actor_id, active_only=not include_lifted)

    # -- queries ------------------------------------------------------------

    async def get_application(self, application_id: str, actor: Actor) -> JobApplication:
        application = await self._application(application_id)
        self._authorize_read(actor, application.company_id, application.seeker_id)
        return application

    async def get_interview(self, interview_id: str, actor: Actor) -> Interview:
        interview = await self._interview(interview_id)
        self._authorize_read(actor, interview.company_id, interview.seeker_id)
        return interview

    async def list_application_interviews(self, application_id: str, actor: Actor) -> list[Interview]:
        application = await self.get_application(application_id, actor)
        return await self._store.list_interviews_for_application(application.application_id)

    async def list_company_interviews(
        self,
        actor: Actor,
        start_date: date | None = None,
        end_date: date | None = None,
        status: InterviewStatus | None = None,
    ) -> list[Interview]:
        """The calling company's interviews, ordered by date and start, optionally within a date range."""
        if actor.role != ActorRole.COMPANY:
            raise ForbiddenError("Only companies may list company interviews", reason_code=ForbiddenError.ROLE)
        if start_date is not None and end_date is not None and end_date < start_date:
            raise ValidationError("End date must not be before start date", field="end_date")
        return await self._store.list_interviews(
            company_id=actor.actor_id, status=status, start_date=start_date, end_date=end_date
        )

    async def list_seeker_interviews(
        self,
        actor: Actor,
        status: InterviewStatus | None = None,
    ) -> list[Interview]:
        if actor.role != ActorRole.SEEKER:
            raise ForbiddenError("Only seekers may list their interviews", reason_code=ForbiddenError.ROLE)
        return await self._store.list_interviews(seeker_id=actor.actor_id, status=status)

    async def list_job_applications(
        self,
        job_id: str,
        actor: Actor,
        status: ApplicationStatus | None = None,
    ) -> list[JobApplication]:
        """Applications to one of the calling company's jobs."""
        if actor.role != ActorRole.COMPANY:
            raise ForbiddenError("Only companies may list job applications", reason_code=ForbiddenError.ROLE)
        return await self._store.list_applications(job_id=job_id, company_id=actor.actor_id, status=status)

    async def list_seeker_applications(
        self,
        actor: Actor,
        status: ApplicationStatus | None = None,
    ) -> list[JobApplication]:
        if actor.role != ActorRole.SEEKER:
            raise ForbiddenError("Only seekers have applications", reason_code=ForbiddenError.ROLE)
        return await self._store.list_applications(seeker_id=actor.actor_id, status=status)

    async def list_company_applications(
        self,
        actor: Actor,
        status: ApplicationStatus | None = None,
    ) -> list[JobApplication]:
        if actor.role != ActorRole.COMPANY:
            raise ForbiddenError("Only companies may list received applications", reason_code=ForbiddenError.ROLE)
        return await self._store.list_applications(company_id=actor.actor_id, status=status)

    async def application_stats(self, job_id: str, actor: Actor) -> dict[str, int]:
        """
        Count a job's applications per status.

        Returns:
            Mapping of every status name to its count, plus "total".
        """
        applications = await self.list_job_applications(job_id, actor)
        stats = {status.value: 0 for status in ApplicationStatus}
        for application in applications:
            stats[application.status.value] += 1
        stats["total"] = len(applications)
        return stats

    @staticmethod
    def _authorize_read(actor: Actor, company_id: str, seeker_id: str) -> None:
        authorize(
            actor,
            ActorRole.COMPANY,
            ActorRole.SEEKER,
            ActorRole.SYSTEM,
            company_id=company_id,
            seeker_id=seeker_id,
            action="view this record",
        )
