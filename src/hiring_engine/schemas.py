"""
Pydantic schemas shared across the hiring workflow engine.

Defines the workflow entities (job applications, interviews), their
status enums, the actors that drive them, and the events raised on
every committed transition.
"""

import secrets
import string
import time as _time
from datetime import date as CalendarDate
from datetime import datetime, time, timedelta, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field

CLOCK_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"

_BASE36 = string.digits + string.ascii_lowercase


def _now_utc() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_id(prefix: str) -> str:
    """
    Generate a prefixed, human-readable identifier.

    Args:
        prefix: Entity prefix such as "APP" or "INT".

    Returns:
        Identifier like ``APP-LZ3K9Q1X4F2AB``.
    """
    stamp = _to_base36(int(_time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(5))
    return f"{prefix}-{stamp}{suffix}".upper()


class ActorRole(str, Enum):
    """Role of whoever is driving a transition."""

    SEEKER = "seeker"
    COMPANY = "company"
    SYSTEM = "system"


class ApplicationStatus(str, Enum):
    """Lifecycle states of a job application."""

    INVITED = "invited"
    APPLIED = "applied"
    VIEWED = "viewed"
    SHORTLISTED = "shortlisted"
    INTERVIEW_REQUESTED = "interview_requested"
    INTERVIEW_ACCEPTED = "interview_accepted"
    INTERVIEW_DECLINED = "interview_declined"
    HIRE_REQUEST_SENT = "hire_request_sent"
    HIRED = "hired"
    HIRE_DECLINED = "hire_declined"
    COMPLETED = "completed"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"
    CANCELLED = "cancelled"


# Statuses at which the two parties need a direct chat channel.
HIRE_TRACK_MILESTONES = frozenset(
    {
        ApplicationStatus.INTERVIEW_ACCEPTED,
        ApplicationStatus.HIRE_REQUEST_SENT,
        ApplicationStatus.HIRED,
    }
)

# Applications in these states do not block a new application for the same job.
INACTIVE_APPLICATION_STATUSES = frozenset({ApplicationStatus.REJECTED, ApplicationStatus.WITHDRAWN})


class InterviewStatus(str, Enum):
    """Lifecycle states of an interview."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    RESCHEDULED = "rescheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


# Interviews holding company time; only these take part in conflict detection.
BOOKED_INTERVIEW_STATUSES = frozenset({InterviewStatus.SCHEDULED, InterviewStatus.CONFIRMED})


class InterviewType(str, Enum):
    """How an interview is conducted."""

    IN_PERSON = "in-person"
    PHONE = "phone"
    VIDEO = "video"
    GROUP = "group"


class InterviewOutcome(str, Enum):
    """Result recorded when an interview is completed."""

    PASS = "pass"
    FAIL = "fail"
    PENDING = "pending"


class HiringType(str, Enum):
    """How a job hires: straight to a hire request, or through an interview."""

    INSTANT_HIRE = "instant_hire"
    INTERVIEW_FIRST = "interview_first"


class AttendanceStatus(str, Enum):
    """Attendance recorded for a day of work on a hired application."""

    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"


class Actor(BaseModel):
    """Authenticated caller as supplied by the identity middleware."""

    actor_id: str = Field(..., min_length=1, description="Seeker or company identifier")
    role: ActorRole = Field(..., description="Role of the caller")

    @classmethod
    def seeker(cls, seeker_id: str) -> "Actor":
        return cls(actor_id=seeker_id, role=ActorRole.SEEKER)

    @classmethod
    def company(cls, company_id: str) -> "Actor":
        return cls(actor_id=company_id, role=ActorRole.COMPANY)

    @classmethod
    def system(cls) -> "Actor":
        return cls(actor_id="system", role=ActorRole.SYSTEM)


class JobListing(BaseModel):
    """Job as returned by the job directory."""

    job_id: str = Field(..., description="Job identifier")
    status: str = Field(..., description="Publication status (e.g. 'published', 'draft')")
    company_id: str = Field(..., description="Owning company")
    title: str = Field(default="", description="Job title")
    company_name: str = Field(default="", description="Company display name")
    hiring_type: HiringType = Field(default=HiringType.INTERVIEW_FIRST, description="Hiring path for this job")

    @property
    def is_published(self) -> bool:
        return self.status == "published"


class StatusChange(BaseModel):
    """One append-only entry of an application's status history."""

    status: ApplicationStatus = Field(..., description="Status entered")
    actor_id: str = Field(..., description="Who caused the change")
    actor_role: ActorRole = Field(..., description="Role of the actor")
    timestamp: datetime = Field(default_factory=_now_utc, description="When the change happened")
    reason: str | None = Field(default=None, description="Optional reason")


class AttendanceReport(BaseModel):
    """One attendance entry for a hired application."""

    model_config = {"frozen": True}

    date: CalendarDate = Field(..., description="Work day reported on")
    status: AttendanceStatus = Field(..., description="Attendance on that day")
    reason: str | None = Field(default=None, description="Reason for an absence or late arrival")
    notes: str | None = Field(default=None, description="Free-form notes")
    reported_by: str = Field(..., description="Who filed the report")
    reported_role: ActorRole = Field(..., description="Role of the reporter")
    reported_at: datetime = Field(default_factory=_now_utc, description="When the report was filed")


class SeekerBlock(BaseModel):
    """A company's block on a seeker; ended blocks are kept as an audit trail."""

    block_id: str = Field(default_factory=lambda: generate_id("BLK"), frozen=True, description="Block identifier")
    company_id: str = Field(..., frozen=True, description="Blocking company")
    seeker_id: str = Field(..., frozen=True, description="Blocked seeker")
    reason: str | None = Field(default=None, description="Why the seeker was blocked")
    application_id: str | None = Field(default=None, description="Application the block was raised from")
    blocked_at: datetime = Field(default_factory=_now_utc, description="When the block started")
    active: bool = Field(default=True, description="Whether the block is in force")
    unblocked_at: datetime | None = Field(default=None, description="When the block was lifted")
    unblock_reason: str | None = Field(default=None, description="Why the block was lifted")


class JobApplication(BaseModel):
    """A seeker's request to be considered for a job."""

    application_id: str = Field(
        default_factory=lambda: generate_id("APP"),
        frozen=True,
        description="Unique application identifier",
    )
    job_id: str = Field(..., frozen=True, description="Job applied to")
    seeker_id: str = Field(..., frozen=True, description="Applying seeker")
    company_id: str = Field(..., frozen=True, description="Company owning the job")

    # Snapshot taken at apply time, not re-synced
    job_title: str = Field(default="", description="Job title at apply time")
    company_name: str = Field(default="", description="Company name at apply time")
    hiring_type: HiringType = Field(default=HiringType.INTERVIEW_FIRST, description="Hiring path at apply time")
    source: str = Field(default="applied", description="'applied' or 'invited'")

    status: ApplicationStatus = Field(default=ApplicationStatus.APPLIED, description="Current status")
    cover_letter: str | None = Field(default=None, description="Optional cover letter")
    expected_salary: float | None = Field(default=None, ge=0, description="Expected salary")
    availability: str | None = Field(default=None, description="Seeker availability note")

    decline_reason: str | None = Field(default=None, description="Reason given on rejection")
    declined_at: datetime | None = Field(default=None, description="When the application was rejected")

    chat_id: str | None = Field(default=None, description="Chat channel, set at most once")
    chat_claim_token: str | None = Field(default=None, description="Token of the in-flight chat creator")
    chat_claimed_at: datetime | None = Field(default=None, description="When the chat claim was taken")

    work_start_at: datetime | None = Field(default=None, description="Instant-hire work start")
    completion_feedback: str | None = Field(default=None, description="Feedback on job completion")
    completion_rating: int | None = Field(default=None, ge=1, le=5, description="Rating on job completion")
    cancellation_reason: str | None = Field(default=None, description="Reason the engagement was cancelled")
    reminders_sent: list[str] = Field(default_factory=list, description="Reminder keys already fired")
    attendance_history: list[AttendanceReport] = Field(
        default_factory=list, description="Attendance reports while hired"
    )

    status_history: list[StatusChange] = Field(default_factory=list, description="Append-only status history")
    version: int = Field(default=0, description="Optimistic concurrency version")
    created_at: datetime = Field(default_factory=_now_utc, description="Creation time")
    updated_at: datetime = Field(default_factory=_now_utc, description="Last update time")

    @property
    def is_active(self) -> bool:
        """Check if this application blocks a new one for the same job and seeker."""
        return self.status not in INACTIVE_APPLICATION_STATUSES

    @property
    def reached_hire_track(self) -> bool:
        """Check if the application has ever reached a hire-track milestone."""
        return any(change.status in HIRE_TRACK_MILESTONES for change in self.status_history)


class DateOption(BaseModel):
    """An alternative date/time offered for an interview."""

    date: CalendarDate = Field(..., description="Calendar day")
    start_time: str = Field(..., pattern=CLOCK_PATTERN, description="Start time (HH:MM, 24-hour)")


class RescheduleEntry(BaseModel):
    """Immutable record of one reschedule."""

    model_config = {"frozen": True}

    previous_date: CalendarDate
    previous_start_time: str
    previous_end_time: str
    previous_status: InterviewStatus
    new_date: CalendarDate
    new_start_time: str
    reason: str | None = None
    requested_by: str
    requested_role: ActorRole
    rescheduled_at: datetime = Field(default_factory=_now_utc)


class ManualReminder(BaseModel):
    """One ad-hoc reminder sent by the company."""

    model_config = {"frozen": True}

    sent_by: str
    sent_at: datetime = Field(default_factory=_now_utc)


class Interview(BaseModel):
    """An interview scheduled for an application."""

    interview_id: str = Field(
        default_factory=lambda: generate_id("INT"),
        frozen=True,
        description="Unique interview identifier",
    )
    application_id: str = Field(..., frozen=True, description="Owning application")
    job_id: str = Field(..., frozen=True, description="Job the interview is for")
    company_id: str = Field(..., frozen=True, description="Interviewing company")
    seeker_id: str = Field(..., frozen=True, description="Interviewed seeker")

    # Scheduling
    date: CalendarDate = Field(..., description="Calendar day of the interview")
    start_time: str = Field(..., pattern=CLOCK_PATTERN, description="Start time (HH:MM, 24-hour)")
    duration_minutes: int = Field(default=30, ge=1, le=1440, description="Duration in minutes")
    time_zone: str = Field(default="Asia/Muscat", description="Zone the date and time are expressed in")

    # Details
    interview_type: InterviewType = Field(default=InterviewType.IN_PERSON, description="Interview format")
    location: str | None = Field(default=None, description="Address or meeting link")
    meeting_room: str | None = Field(default=None, description="Room or area")
    interviewer: str | None = Field(default=None, description="Interviewer name or id")
    instructions: str | None = Field(default=None, description="Instructions for the seeker")
    scheduled_by: str | None = Field(default=None, description="Who scheduled the interview")
    job_title: str = Field(default="", description="Job title snapshot")
    company_name: str = Field(default="", description="Company name snapshot")

    # Workflow
    status: InterviewStatus = Field(default=InterviewStatus.SCHEDULED, description="Current status")
    additional_date_options: list[DateOption] = Field(default_factory=list, description="Alternative slots")
    reschedule_history: list[RescheduleEntry] = Field(default_factory=list, description="Append-only history")
    reschedule_count: int = Field(default=0, ge=0, description="Reschedules so far")
    max_reschedules: int = Field(default=2, ge=0, description="Reschedules allowed")
    reminders_sent: list[str] = Field(default_factory=list, description="Reminder keys already fired")
    manual_reminders: list[ManualReminder] = Field(
        default_factory=list, description="Ad-hoc reminders sent by the company"
    )

    # Results
    result: InterviewOutcome | None = Field(default=None, description="Outcome once completed")
    rating: int | None = Field(default=None, ge=1, le=5, description="1-5 rating")
    feedback: str | None = Field(default=None, description="Interviewer feedback")
    next_steps: str | None = Field(default=None, description="What happens next")
    completion_timestamp: datetime | None = Field(default=None, description="When the interview was completed")
    decline_reason: str | None = Field(default=None, description="Reason given by the seeker on decline")
    cancellation_reason: str | None = Field(default=None, description="Reason given on cancellation")

    version: int = Field(default=0, description="Optimistic concurrency version")
    created_at: datetime = Field(default_factory=_now_utc, description="Creation time")
    updated_at: datetime = Field(default_factory=_now_utc, description="Last update time")

    @property
    def start_minute(self) -> int:
        """Start as minutes since midnight."""
        hours, minutes = self.start_time.split(":")
        return int(hours) * 60 + int(minutes)

    @property
    def end_minute(self) -> int:
        """End as minutes since midnight (exclusive)."""
        return self.start_minute + self.duration_minutes

    @property
    def end_time(self) -> str:
        """End time in HH:MM format."""
        hours, minutes = divmod(self.end_minute, 60)
        return f"{hours:02d}:{minutes:02d}"

    def starts_at(self) -> datetime:
        """Aware start datetime in the interview's time zone."""
        hours, minutes = self.start_time.split(":")
        return datetime.combine(self.date, time(int(hours), int(minutes)), tzinfo=ZoneInfo(self.time_zone))

    def ends_at(self) -> datetime:
        """Aware end datetime in the interview's time zone."""
        return self.starts_at() + timedelta(minutes=self.duration_minutes)


class Slot(BaseModel):
    """A concrete free interview slot."""

    date: CalendarDate
    start_time: str
    end_time: str
    duration_minutes: int


class EventType(str, Enum):
    """Notification events raised by the orchestrator and scheduler."""

    APPLICATION_SUBMITTED = "application_submitted"
    APPLICATION_VIEWED = "application_viewed"
    APPLICATION_SHORTLISTED = "application_shortlisted"
    APPLICATION_REJECTED = "application_rejected"
    APPLICATION_WITHDRAWN = "application_withdrawn"
    INVITATION_SENT = "invitation_sent"
    INVITATION_ACCEPTED = "invitation_accepted"
    INTERVIEW_SCHEDULED = "interview_scheduled"
    INTERVIEW_CONFIRMED = "interview_confirmed"
    INTERVIEW_DECLINED = "interview_declined"
    INTERVIEW_RESCHEDULED = "interview_rescheduled"
    INTERVIEW_CANCELLED = "interview_cancelled"
    INTERVIEW_COMPLETED = "interview_completed"
    INTERVIEW_NO_SHOW = "interview_no_show"
    INTERVIEW_DATES_ADDED = "interview_dates_added"
    INTERVIEW_REMINDER = "interview_reminder"
    HIRE_REQUEST_SENT = "hire_request_sent"
    HIRE_ACCEPTED = "hire_accepted"
    HIRE_DECLINED = "hire_declined"
    JOB_COMPLETED = "job_completed"
    JOB_CANCELLED = "job_cancelled"
    JOB_START_REMINDER = "job_start_reminder"
    CHAT_CREATED = "chat_created"
    ATTENDANCE_REPORTED = "attendance_reported"


class WorkflowEvent(BaseModel):
    """A notification the orchestrator intends to have delivered."""

    event_id: UUID = Field(default_factory=uuid4, description="Unique event identifier")
    event_type: EventType = Field(..., description="Kind of event")
    recipient_role: ActorRole = Field(..., description="Who should be notified")
    recipient_id: str = Field(..., description="Seeker or company id to notify")
    payload: dict[str, Any] = Field(default_factory=dict, description="Event data")
    created_at: datetime = Field(default_factory=_now_utc, description="When the event was raised")


class WorkflowOutcome(BaseModel):
    """Result of an orchestrator operation: committed entities plus events to dispatch."""

    application: JobApplication | None = None
    interview: Interview | None = None
    events: list[WorkflowEvent] = Field(default_factory=list)

    @property
    def chat_id(self) -> str | None:
        return self.application.chat_id if self.application else None


class ConflictReport(BaseModel):
    """Result of checking a proposed slot against a company's bookings."""

    date: CalendarDate
    start_time: str
    end_time: str
    duration_minutes: int
    conflicts: list[Interview] = Field(default_factory=list, description="Booked interviews overlapping the slot")

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)


class ApplicationPayload(BaseModel):
    """Seeker-supplied fields when applying."""

    cover_letter: str | None = Field(default=None, max_length=5000, description="Optional cover letter")
    expected_salary: float | None = Field(default=None, ge=0, description="Expected salary")
    availability: str | None = Field(default=None, max_length=500, description="Availability note")


class InterviewRequest(BaseModel):
    """Company-supplied fields when scheduling an interview."""

    date: CalendarDate = Field(..., description="Calendar day of the interview")
    start_time: str = Field(..., pattern=CLOCK_PATTERN, description="Start time (HH:MM, 24-hour)")
    duration_minutes: int = Field(default=30, description="Duration in minutes")
    interview_type: InterviewType = Field(default=InterviewType.IN_PERSON, description="Interview format")
    location: str | None = Field(default=None, description="Address or meeting link")
    meeting_room: str | None = Field(default=None, description="Room or area")
    interviewer: str | None = Field(default=None, description="Interviewer name or id")
    instructions: str | None = Field(default=None, description="Instructions for the seeker")
    additional_date_options: list[DateOption] = Field(default_factory=list, description="Alternative slots")
