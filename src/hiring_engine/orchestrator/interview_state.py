"""
Interview state management.

Owns the Interview lifecycle: scheduling, confirmation, rescheduling,
completion, no-show and cancellation. Like the application state machine,
every method validates and returns an updated copy; slot conflicts are
checked by the orchestrator inside the booking write.
"""

from collections.abc import Callable, Iterable
from datetime import date, datetime, time, timezone
from typing import Any
from zoneinfo import ZoneInfo

from hiring_engine.config import get_settings
from hiring_engine.errors import InvalidTransitionError, ValidationError
from hiring_engine.orchestrator.access import authorize
from hiring_engine.scheduling.conflicts import MINUTES_PER_DAY, parse_clock
from hiring_engine.schemas import (
    Actor,
    ActorRole,
    DateOption,
    Interview,
    InterviewOutcome,
    InterviewRequest,
    InterviewStatus,
    JobApplication,
    ManualReminder,
    RescheduleEntry,
)

S = InterviewStatus

# 'rescheduled' is transient: a reschedule passes through it and lands back in 'scheduled'.
INTERVIEW_TRANSITIONS: dict[InterviewStatus, frozenset[InterviewStatus]] = {
    S.SCHEDULED: frozenset({S.CONFIRMED, S.DECLINED, S.RESCHEDULED, S.CANCELLED}),
    S.CONFIRMED: frozenset({S.COMPLETED, S.NO_SHOW, S.RESCHEDULED, S.CANCELLED}),
    S.DECLINED: frozenset({S.RESCHEDULED}),
    S.RESCHEDULED: frozenset({S.SCHEDULED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
    S.NO_SHOW: frozenset(),
}

TERMINAL_INTERVIEW_STATUSES = frozenset(status for status, targets in INTERVIEW_TRANSITIONS.items() if not targets)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class InterviewStateMachine:
    """
    Decides which Interview transitions are legal and applies them.
    """

    ENTITY = "interview"

    def __init__(
        self,
        min_duration: int = 15,
        max_duration: int = 180,
        max_reschedules: int = 2,
        time_zone: str = "Asia/Muscat",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize the interview state machine.

        Args:
            min_duration: Shortest allowed interview in minutes.
            max_duration: Longest allowed interview in minutes.
            max_reschedules: Reschedules allowed per interview.
            time_zone: Zone new interviews are expressed in.
            clock: Source of "now" (UTC-aware). Defaults to the system clock.
        """
        self._min_duration = min_duration
        self._max_duration = max_duration
        self._max_reschedules = max_reschedules
        self._time_zone = time_zone
        self._clock = clock or _now_utc

    @property
    def time_zone(self) -> str:
        return self._time_zone

    @classmethod
    def from_settings(cls, clock: Callable[[], datetime] | None = None) -> "InterviewStateMachine":
        settings = get_settings()
        return cls(
            min_duration=settings.min_interview_duration,
            max_duration=settings.max_interview_duration,
            max_reschedules=settings.max_reschedules,
            time_zone=settings.timezone,
            clock=clock,
        )

    @staticmethod
    def allowed_targets(status: InterviewStatus) -> frozenset[InterviewStatus]:
        return INTERVIEW_TRANSITIONS[status]

    @staticmethod
    def is_terminal(status: InterviewStatus) -> bool:
        return status in TERMINAL_INTERVIEW_STATUSES

    def require(
        self,
        interview: Interview,
        target: InterviewStatus,
        sources: Iterable[InterviewStatus] | None = None,
    ) -> None:
        """
        Ensure a move is legal from the interview's current status.

        Raises:
            InvalidTransitionError: With the current, attempted and allowed states.
        """
        current = interview.status
        allowed_sources = frozenset(sources) if sources is not None else None
        if target in INTERVIEW_TRANSITIONS[current] and (allowed_sources is None or current in allowed_sources):
            return
        if allowed_sources is not None:
            allowed = [s.value for s in allowed_sources if target in INTERVIEW_TRANSITIONS[s]]
            message = f"Cannot move interview to '{target.value}' from '{current.value}'"
        else:
            allowed = [s.value for s in INTERVIEW_TRANSITIONS[current]]
            message = None
        raise InvalidTransitionError(self.ENTITY, current.value, target.value, allowed, message=message)

    def _apply(self, interview: Interview, target: InterviewStatus, **changes: Any) -> Interview:
        self.require(interview, target)
        return interview.model_copy(
            update={**changes, "status": target, "updated_at": self._clock()},
            deep=True,
        )

    # -- validation ---------------------------------------------------------

    def validate_duration(self, duration_minutes: int) -> None:
        """Raise ValidationError unless the duration is within the configured bounds."""
        if not self._min_duration <= duration_minutes <= self._max_duration:
            raise ValidationError(
                f"Duration must be between {self._min_duration} and {self._max_duration} minutes",
                field="duration_minutes",
            )

    def validate_slot(self, on_date: date, start_time: str, duration_minutes: int, time_zone: str) -> None:
        """
        Check a requested slot is well-formed and in the future.

        Raises:
            ValidationError: On bad duration, bad time, overflow past midnight or a past start.
        """
        self.validate_duration(duration_minutes)
        start_minute = parse_clock(start_time)
        if start_minute + duration_minutes > MINUTES_PER_DAY:
            raise ValidationError("Interview must end on the day it starts", field="duration_minutes")
        hours, minutes = divmod(start_minute, 60)
        starts_at = datetime.combine(on_date, time(hours, minutes), tzinfo=ZoneInfo(time_zone))
        if starts_at <= self._clock():
            raise ValidationError("Interview must be scheduled in the future", field="date")

    def _validate_options(self, options: Iterable[DateOption], duration_minutes: int, time_zone: str) -> None:
        for option in options:
            self.validate_slot(option.date, option.start_time, duration_minutes, time_zone)

    # -- operations ---------------------------------------------------------

    def create(self, application: JobApplication, actor: Actor, request: InterviewRequest) -> Interview:
        """Build a new interview in 'scheduled' for an application."""
        authorize(
            actor,
            ActorRole.COMPANY,
            company_id=application.company_id,
            seeker_id=application.seeker_id,
            action="schedule interviews",
        )
        self.validate_slot(request.date, request.start_time, request.duration_minutes, self._time_zone)
        self._validate_options(request.additional_date_options, request.duration_minutes, self._time_zone)
        now = self._clock()
        return Interview(
            application_id=application.application_id,
            job_id=application.job_id,
            company_id=application.company_id,
            seeker_id=application.seeker_id,
            date=request.date,
            start_time=request.start_time,
            duration_minutes=request.duration_minutes,
            time_zone=self._time_zone,
            interview_type=request.interview_type,
            location=request.location,
            meeting_room=request.meeting_room,
            interviewer=request.interviewer,
            instructions=request.instructions,
            scheduled_by=actor.actor_id,
            job_title=application.job_title,
            company_name=application.company_name,
            additional_date_options=list(request.additional_date_options),
            max_reschedules=self._max_reschedules,
            created_at=now,
            updated_at=now,
        )

    def confirm(self, interview: Interview, actor: Actor) -> Interview:
        self._authorize(interview, actor, ActorRole.SEEKER, action="confirm interviews")
        self.require(interview, S.CONFIRMED, sources=[S.SCHEDULED])
        return self._apply(interview, S.CONFIRMED)

    def decline(self, interview: Interview, actor: Actor, reason: str | None = None) -> Interview:
        self._authorize(interview, actor, ActorRole.SEEKER, action="decline interviews")
        self.require(interview, S.DECLINED, sources=[S.SCHEDULED])
        return self._apply(interview, S.DECLINED, decline_reason=reason)

    def reschedule(
        self,
        interview: Interview,
        actor: Actor,
        new_date: date,
        new_start_time: str,
        reason: str | None = None,
        new_duration: int | None = None,
    ) -> Interview:
        """
        Move an interview to new timing.

        The interview passes through 'rescheduled' and lands in 'scheduled';
        the prior timing is appended to the reschedule history.

        Raises:
            InvalidTransitionError: From a terminal status or past the reschedule limit.
        """
        self._authorize(interview, actor, ActorRole.COMPANY, ActorRole.SEEKER, action="reschedule interviews")
        self.require(interview, S.RESCHEDULED)
        if interview.reschedule_count >= interview.max_reschedules:
            raise InvalidTransitionError(
                self.ENTITY,
                interview.status.value,
                S.RESCHEDULED.value,
                [],
                message=f"Maximum reschedule limit ({interview.max_reschedules}) reached",
            )
        duration = new_duration if new_duration is not None else interview.duration_minutes
        self.validate_slot(new_date, new_start_time, duration, interview.time_zone)
        return self._move(interview, actor, new_date, new_start_time, duration, reason, counted=True)

    def _move(
        self,
        interview: Interview,
        actor: Actor,
        new_date: date,
        new_start_time: str,
        duration: int,
        reason: str | None,
        counted: bool,
    ) -> Interview:
        now = self._clock()
        entry = RescheduleEntry(
            previous_date=interview.date,
            previous_start_time=interview.start_time,
            previous_end_time=interview.end_time,
            previous_status=interview.status,
            new_date=new_date,
            new_start_time=new_start_time,
            reason=reason,
            requested_by=actor.actor_id,
            requested_role=actor.role,
            rescheduled_at=now,
        )
        return interview.model_copy(
            update={
                "date": new_date,
                "start_time": new_start_time,
                "duration_minutes": duration,
                "status": S.SCHEDULED,
                "reschedule_history": [*interview.reschedule_history, entry],
                "reschedule_count": interview.reschedule_count + (1 if counted else 0),
                "updated_at": now,
            },
            deep=True,
        )

    def complete(
        self,
        interview: Interview,
        actor: Actor,
        result: InterviewOutcome,
        feedback: str | None = None,
        rating: int | None = None,
        next_steps: str | None = None,
    ) -> Interview:
        self._authorize(interview, actor, ActorRole.COMPANY, action="complete interviews")
        self.require(interview, S.COMPLETED, sources=[S.CONFIRMED])
        if rating is not None and not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5", field="rating")
        return self._apply(
            interview,
            S.COMPLETED,
            result=result,
            feedback=feedback,
            rating=rating,
            next_steps=next_steps,
            completion_timestamp=self._clock(),
        )

    def mark_no_show(self, interview: Interview, actor: Actor) -> Interview:
        """Company records that the seeker did not attend, once the slot has ended."""
        self._authorize(interview, actor, ActorRole.COMPANY, action="mark no-shows")
        self.require(interview, S.NO_SHOW, sources=[S.CONFIRMED])
        if self._clock() < interview.ends_at():
            raise InvalidTransitionError(
                self.ENTITY,
                interview.status.value,
                S.NO_SHOW.value,
                [S.CONFIRMED.value],
                message="Cannot mark a no-show before the interview has ended",
            )
        return self._apply(interview, S.NO_SHOW)

    def cancel(self, interview: Interview, actor: Actor, reason: str | None = None) -> Interview:
        self._authorize(interview, actor, ActorRole.COMPANY, ActorRole.SEEKER, action="cancel interviews")
        self.require(interview, S.CANCELLED, sources=[S.SCHEDULED, S.CONFIRMED])
        return self._apply(interview, S.CANCELLED, cancellation_reason=reason)

    def add_additional_dates(self, interview: Interview, actor: Actor, options: list[DateOption]) -> Interview:
        """Offer alternative slots; the status is unchanged."""
        self._authorize(interview, actor, ActorRole.COMPANY, action="add interview dates")
        if not options:
            raise ValidationError("At least one date option is required", field="additional_date_options")
        if self.is_terminal(interview.status):
            raise InvalidTransitionError(
                self.ENTITY,
                interview.status.value,
                interview.status.value,
                [],
                message=f"Cannot add dates to a {interview.status.value} interview",
            )
        self._validate_options(options, interview.duration_minutes, interview.time_zone)
        return interview.model_copy(
            update={
                "additional_date_options": [*interview.additional_date_options, *options],
                "updated_at": self._clock(),
            },
            deep=True,
        )

    def choose_additional_date(self, interview: Interview, actor: Actor, index: int) -> Interview:
        """
        Seeker picks one of the offered alternatives instead of the primary slot.

        The interview is rescheduled onto the option and confirmed in one step.
        """
        self._authorize(interview, actor, ActorRole.SEEKER, action="choose interview dates")
        if not 0 <= index < len(interview.additional_date_options):
            raise ValidationError("No such date option", field="index")
        self.require(interview, S.RESCHEDULED, sources=[S.SCHEDULED, S.DECLINED])
        option = interview.additional_date_options[index]
        self.validate_slot(option.date, option.start_time, interview.duration_minutes, interview.time_zone)
        # Offered options do not count against the reschedule limit.
        moved = self._move(
            interview,
            actor,
            option.date,
            option.start_time,
            interview.duration_minutes,
            reason="Alternative date selected",
            counted=False,
        )
        remaining = [o for i, o in enumerate(interview.additional_date_options) if i != index]
        return moved.model_copy(update={"status": S.CONFIRMED, "additional_date_options": remaining}, deep=True)

    def log_manual_reminder(self, interview: Interview, actor: Actor) -> Interview:
        """Company sends an ad-hoc reminder; every send is kept in the reminder log."""
        self._authorize(interview, actor, ActorRole.COMPANY, action="send interview reminders")
        if interview.status not in (S.SCHEDULED, S.CONFIRMED):
            raise InvalidTransitionError(
                self.ENTITY,
                interview.status.value,
                interview.status.value,
                [S.SCHEDULED.value, S.CONFIRMED.value],
                message=f"Cannot send a reminder for a {interview.status.value} interview",
            )
        entry = ManualReminder(sent_by=actor.actor_id, sent_at=self._clock())
        return interview.model_copy(
            update={"manual_reminders": [*interview.manual_reminders, entry], "updated_at": self._clock()},
            deep=True,
        )

    def _authorize(self, interview: Interview, actor: Actor, *roles: ActorRole, action: str) -> None:
        authorize(actor, *roles, company_id=interview.company_id, seeker_id=interview.seeker_id, action=action)
