"""
Application state machine.

Owns the JobApplication lifecycle: which moves are legal from which
status, who may make them, and what each move records. Every method is
pure: it validates, then returns an updated copy without persisting it.
"""

from collections.abc import Callable, Iterable
from datetime import date, datetime, timezone
from typing import Any

from hiring_engine.errors import InvalidTransitionError, ValidationError
from hiring_engine.orchestrator.access import authorize
from hiring_engine.schemas import (
    Actor,
    ActorRole,
    ApplicationPayload,
    ApplicationStatus,
    AttendanceReport,
    AttendanceStatus,
    HiringType,
    JobApplication,
    JobListing,
    StatusChange,
)

S = ApplicationStatus

# Rejection and withdrawal are reachable from every non-terminal status;
# hired only leads into the engagement outcomes.
APPLICATION_TRANSITIONS: dict[ApplicationStatus, frozenset[ApplicationStatus]] = {
    S.INVITED: frozenset({S.APPLIED, S.REJECTED, S.WITHDRAWN}),
    S.APPLIED: frozenset(
        {S.VIEWED, S.SHORTLISTED, S.INTERVIEW_REQUESTED, S.HIRE_REQUEST_SENT, S.REJECTED, S.WITHDRAWN}
    ),
    S.VIEWED: frozenset({S.SHORTLISTED, S.INTERVIEW_REQUESTED, S.HIRE_REQUEST_SENT, S.REJECTED, S.WITHDRAWN}),
    S.SHORTLISTED: frozenset({S.INTERVIEW_REQUESTED, S.HIRE_REQUEST_SENT, S.REJECTED, S.WITHDRAWN}),
    S.INTERVIEW_REQUESTED: frozenset(
        {S.INTERVIEW_REQUESTED, S.INTERVIEW_ACCEPTED, S.INTERVIEW_DECLINED, S.REJECTED, S.WITHDRAWN}
    ),
    S.INTERVIEW_ACCEPTED: frozenset({S.INTERVIEW_REQUESTED, S.HIRE_REQUEST_SENT, S.REJECTED, S.WITHDRAWN}),
    S.INTERVIEW_DECLINED: frozenset({S.INTERVIEW_REQUESTED, S.REJECTED, S.WITHDRAWN}),
    S.HIRE_REQUEST_SENT: frozenset({S.HIRED, S.HIRE_DECLINED, S.REJECTED, S.WITHDRAWN}),
    S.HIRE_DECLINED: frozenset({S.HIRE_REQUEST_SENT, S.REJECTED, S.WITHDRAWN}),
    S.HIRED: frozenset({S.COMPLETED, S.CANCELLED}),
    S.COMPLETED: frozenset(),
    S.REJECTED: frozenset(),
    S.WITHDRAWN: frozenset(),
    S.CANCELLED: frozenset(),
}

TERMINAL_APPLICATION_STATUSES = frozenset(
    status for status, targets in APPLICATION_TRANSITIONS.items() if not targets
)

# Statuses an interview-first application may send a hire request from.
INTERVIEW_FIRST_HIRE_SOURCES = frozenset({S.INTERVIEW_ACCEPTED, S.HIRE_DECLINED})

# Statuses an interview may be requested from.
INTERVIEW_REQUEST_SOURCES = frozenset(
    {S.APPLIED, S.VIEWED, S.SHORTLISTED, S.INTERVIEW_REQUESTED, S.INTERVIEW_ACCEPTED, S.INTERVIEW_DECLINED}
)

DEFAULT_DECLINE_REASON = "Another candidate selected"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class ApplicationStateMachine:
    """
    Decides which JobApplication transitions are legal and applies them.

    The transition table is the single source of truth; any edge missing
    from it is rejected with InvalidTransitionError.
    """

    ENTITY = "application"

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        """
        Initialize the state machine.

        Args:
            clock: Source of "now" (UTC-aware). Defaults to the system clock.
        """
        self._clock = clock or _now_utc

    @staticmethod
    def allowed_targets(status: ApplicationStatus) -> frozenset[ApplicationStatus]:
        """Get the statuses reachable from a status."""
        return APPLICATION_TRANSITIONS[status]

    @staticmethod
    def can_transition(current: ApplicationStatus, target: ApplicationStatus) -> bool:
        """Check if an edge exists in the transition table."""
        return target in APPLICATION_TRANSITIONS[current]

    @staticmethod
    def is_terminal(status: ApplicationStatus) -> bool:
        """Check if a status has no exits."""
        return status in TERMINAL_APPLICATION_STATUSES

    def require(
        self,
        application: JobApplication,
        target: ApplicationStatus,
        sources: Iterable[ApplicationStatus] | None = None,
    ) -> None:
        """
        Ensure a move is legal from the application's current status.

        Args:
            application: Application to move.
            target: Desired status.
            sources: Optional narrower set of source statuses for this operation.

        Raises:
            InvalidTransitionError: With the current, attempted and allowed states.
        """
        current = application.status
        allowed_sources = frozenset(sources) if sources is not None else None
        legal = self.can_transition(current, target) and (allowed_sources is None or current in allowed_sources)
        if legal:
            return
        if allowed_sources is not None:
            allowed = [s.value for s in allowed_sources if self.can_transition(s, target)]
            message = f"Cannot move application to '{target.value}' from '{current.value}'"
        else:
            allowed = [s.value for s in self.allowed_targets(current)]
            message = None
        raise InvalidTransitionError(self.ENTITY, current.value, target.value, allowed, message=message)

    def transition(
        self,
        application: JobApplication,
        target: ApplicationStatus,
        actor: Actor,
        reason: str | None = None,
        **changes: Any,
    ) -> JobApplication:
        """
        Apply a legal move, appending to the status history.

        Args:
            application: Application to move.
            target: New status.
            actor: Who is making the move.
            reason: Optional reason recorded in history.
            **changes: Additional field updates.

        Returns:
            An updated copy; the input is left untouched.
        """
        self.require(application, target)
        now = self._clock()
        entry = StatusChange(
            status=target,
            actor_id=actor.actor_id,
            actor_role=actor.role,
            timestamp=now,
            reason=reason,
        )
        return application.model_copy(
            update={
                **changes,
                "status": target,
                "status_history": [*application.status_history, entry],
                "updated_at": now,
            },
            deep=True,
        )

    # -- creation ---------------------------------------------------------

    def create(
        self,
        job: JobListing,
        seeker_id: str,
        actor: Actor,
        payload: ApplicationPayload | None = None,
    ) -> JobApplication:
        """Build a new application in 'applied' for a published job."""
        authorize(actor, ActorRole.SEEKER, company_id=job.company_id, seeker_id=seeker_id, action="apply")
        payload = payload or ApplicationPayload()
        return self._new_application(job, seeker_id, actor, S.APPLIED, "applied", payload)

    def invite(self, job: JobListing, seeker_id: str, actor: Actor) -> JobApplication:
        """Build a new application in 'invited' on behalf of the company."""
        authorize(actor, ActorRole.COMPANY, company_id=job.company_id, seeker_id=seeker_id, action="invite seekers")
        return self._new_application(job, seeker_id, actor, S.INVITED, "invited", ApplicationPayload())

    def _new_application(
        self,
        job: JobListing,
        seeker_id: str,
        actor: Actor,
        status: ApplicationStatus,
        source: str,
        payload: ApplicationPayload,
    ) -> JobApplication:
        if not seeker_id:
            raise ValidationError("Seeker id is required", field="seeker_id")
        now = self._clock()
        return JobApplication(
            job_id=job.job_id,
            seeker_id=seeker_id,
            company_id=job.company_id,
            job_title=job.title,
            company_name=job.company_name,
            hiring_type=job.hiring_type,
            source=source,
            status=status,
            cover_letter=payload.cover_letter,
            expected_salary=payload.expected_salary,
            availability=payload.availability,
            status_history=[
                StatusChange(status=status, actor_id=actor.actor_id, actor_role=actor.role, timestamp=now)
            ],
            created_at=now,
            updated_at=now,
        )

    # -- seeker and company moves ------------------------------------------

    def accept_invitation(self, application: JobApplication, actor: Actor) -> JobApplication:
        """Seeker turns an invitation into an application."""
        self._authorize(application, actor, ActorRole.SEEKER, action="accept invitations")
        self.require(application, S.APPLIED, sources=[S.INVITED])
        return self.transition(application, S.APPLIED, actor, source="invited_applied")

    def mark_viewed(self, application: JobApplication, actor: Actor) -> JobApplication | None:
        """
        Company opens an application.

        Returns:
            The updated copy, or None when the application is already past 'applied'.
        """
        self._authorize(application, actor, ActorRole.COMPANY, action="view applications")
        if application.status != S.APPLIED:
            return None
        return self.transition(application, S.VIEWED, actor)

    def shortlist(self, application: JobApplication, actor: Actor) -> JobApplication:
        self._authorize(application, actor, ActorRole.COMPANY, action="shortlist applications")
        return self.transition(application, S.SHORTLISTED, actor)

    def reject(self, application: JobApplication, actor: Actor, reason: str | None = None) -> JobApplication:
        """Company declines the application from any non-terminal status."""
        self._authorize(application, actor, ActorRole.COMPANY, action="reject applications")
        reason = (reason or "").strip() or DEFAULT_DECLINE_REASON
        return self.transition(
            application,
            S.REJECTED,
            actor,
            reason=reason,
            decline_reason=reason,
            declined_at=self._clock(),
        )

    def withdraw(self, application: JobApplication, actor: Actor, reason: str | None = None) -> JobApplication:
        """Seeker pulls the application from any non-terminal status."""
        self._authorize(application, actor, ActorRole.SEEKER, action="withdraw applications")
        return self.transition(application, S.WITHDRAWN, actor, reason=reason)

    def request_interview(self, application: JobApplication, actor: Actor) -> JobApplication:
        """Record that an interview has been requested for the application."""
        self._authorize(application, actor, ActorRole.COMPANY, action="schedule interviews")
        self.require(application, S.INTERVIEW_REQUESTED, sources=INTERVIEW_REQUEST_SOURCES)
        return self.transition(application, S.INTERVIEW_REQUESTED, actor)

    def accept_interview(self, application: JobApplication, actor: Actor) -> JobApplication:
        """Seeker confirmed the interview: a hire-track milestone."""
        self._authorize(application, actor, ActorRole.SEEKER, action="confirm interviews")
        return self.transition(application, S.INTERVIEW_ACCEPTED, actor)

    def decline_interview(
        self,
        application: JobApplication,
        actor: Actor,
        reason: str | None = None,
    ) -> JobApplication:
        self._authorize(application, actor, ActorRole.SEEKER, action="decline interviews")
        return self.transition(application, S.INTERVIEW_DECLINED, actor, reason=reason)

    def reopen_interview(self, application: JobApplication, actor: Actor) -> JobApplication:
        """Move back to 'interview_requested' after an interview got new timing."""
        self._authorize(application, actor, ActorRole.COMPANY, ActorRole.SEEKER, action="reschedule interviews")
        self.require(
            application,
            S.INTERVIEW_REQUESTED,
            sources=[S.INTERVIEW_REQUESTED, S.INTERVIEW_ACCEPTED, S.INTERVIEW_DECLINED],
        )
        return self.transition(application, S.INTERVIEW_REQUESTED, actor)

    def send_hire_request(
        self,
        application: JobApplication,
        actor: Actor,
        work_start_at: datetime | None = None,
    ) -> JobApplication:
        """
        Company sends a hire request.

        Instant-hire applications may go straight from applied, viewed or
        shortlisted; interview-first applications need an accepted interview.
        """
        self._authorize(application, actor, ActorRole.COMPANY, action="send hire requests")
        if application.hiring_type == HiringType.INSTANT_HIRE:
            sources = None
        else:
            sources = INTERVIEW_FIRST_HIRE_SOURCES
        self.require(application, S.HIRE_REQUEST_SENT, sources=sources)
        if work_start_at is not None and work_start_at.tzinfo is None:
            raise ValidationError("Work start must be timezone-aware", field="work_start_at")
        changes: dict[str, Any] = {}
        if work_start_at is not None:
            changes["work_start_at"] = work_start_at
        return self.transition(application, S.HIRE_REQUEST_SENT, actor, **changes)

    def respond_to_hire_request(
        self,
        application: JobApplication,
        actor: Actor,
        accepted: bool,
    ) -> JobApplication:
        self._authorize(application, actor, ActorRole.SEEKER, action="respond to hire requests")
        target = S.HIRED if accepted else S.HIRE_DECLINED
        self.require(application, target, sources=[S.HIRE_REQUEST_SENT])
        return self.transition(application, target, actor)

    def complete_job(
        self,
        application: JobApplication,
        actor: Actor,
        feedback: str | None = None,
        rating: int | None = None,
    ) -> JobApplication:
        self._authorize(application, actor, ActorRole.COMPANY, action="complete jobs")
        if rating is not None and not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5", field="rating")
        return self.transition(
            application,
            S.COMPLETED,
            actor,
            completion_feedback=feedback,
            completion_rating=rating,
        )

    def cancel_job(self, application: JobApplication, actor: Actor, reason: str) -> JobApplication:
        self._authorize(application, actor, ActorRole.COMPANY, ActorRole.SEEKER, action="cancel jobs")
        if not reason or not reason.strip():
            raise ValidationError("A cancellation reason is required", field="reason")
        return self.transition(application, S.CANCELLED, actor, reason=reason, cancellation_reason=reason)

    def report_attendance(
        self,
        application: JobApplication,
        actor: Actor,
        on_date: date,
        status: AttendanceStatus,
        reason: str | None = None,
        notes: str | None = None,
    ) -> JobApplication:
        """
        Record attendance for a day of work.

        Either party may report while the application is hired; the status
        does not change and reports are only ever appended.

        Raises:
            InvalidTransitionError: If the application is not hired.
            ValidationError: If an absence or late arrival has no reason.
        """
        self._authorize(application, actor, ActorRole.COMPANY, ActorRole.SEEKER, action="report attendance")
        if application.status != S.HIRED:
            raise InvalidTransitionError(
                self.ENTITY,
                application.status.value,
                application.status.value,
                [S.HIRED.value],
                message="Attendance can only be reported for hired applications",
            )
        if status != AttendanceStatus.PRESENT and not (reason and reason.strip()):
            raise ValidationError(f"A reason is required when reporting {status.value}", field="reason")
        report = AttendanceReport(
            date=on_date,
            status=status,
            reason=reason,
            notes=notes,
            reported_by=actor.actor_id,
            reported_role=actor.role,
            reported_at=self._clock(),
        )
        return application.model_copy(
            update={"attendance_history": [*application.attendance_history, report], "updated_at": self._clock()},
            deep=True,
        )

    def _authorize(self, application: JobApplication, actor: Actor, *roles: ActorRole, action: str) -> None:
        authorize(
            actor,
            *roles,
            company_id=application.company_id,
            seeker_id=application.seeker_id,
            action=action,
        )
