"""
Reminder scheduling.

Decides when "T-minus" reminders are due for interviews and instant-hire
work starts, and records each fired reminder under a key made of its lead-time bucket
and the start it was computed for, so a reminder goes out at most once
per start and a moved interview is reminded again. Delivery belongs to the event dispatcher.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from hiring_engine.config import get_settings
from hiring_engine.db.repository import HiringStore
from hiring_engine.events import application_payload, interview_payload, to_both
from hiring_engine.schemas import (
    ApplicationStatus,
    BOOKED_INTERVIEW_STATUSES,
    EventType,
    HiringType,
    Interview,
    JobApplication,
    WorkflowEvent,
)

logger = logging.getLogger(__name__)

def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def bucket_name(lead_minutes: int) -> str:
    """Name of the reminder bucket for a lead time, e.g. 240 -> "240m"."""
    return f"{lead_minutes}m"


def reminder_key(bucket: str, starts_at: datetime) -> str:
    """Key recorded on the entity once a bucket fired for a given start."""
    return f"{bucket}@{starts_at.isoformat()}"


def is_due(starts_at: datetime, lead_minutes: int, now: datetime) -> bool:
    """Check if now lies in [start - lead, start)."""
    return starts_at - timedelta(minutes=lead_minutes) <= now < starts_at


@dataclass(frozen=True)
class DueReminder:
    """A reminder that should fire now."""

    kind: str
    entity_id: str
    bucket: str
    starts_at: datetime
    entity: Interview | JobApplication

    @property
    def key(self) -> str:
        return reminder_key(self.bucket, self.starts_at)


class ReminderScheduler:
    """
    Computes due reminders and emits their events.

    Meant to run as a periodic sweep; holds no state between runs.
    """

    def __init__(
        self,
        store: HiringStore,
        lead_minutes: Iterable[int] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            store: Storage port used to find candidates and record fired buckets.
            lead_minutes: Lead times in minutes (uses config if not provided).
            clock: Source of "now" (UTC-aware). Defaults to the system clock.
        """
        leads = list(lead_minutes) if lead_minutes is not None else list(get_settings().reminder_lead_minutes)
        if any(lead <= 0 for lead in leads):
            raise ValueError("Reminder lead times must be positive")
        self._store = store
        self._leads = sorted(set(leads), reverse=True)
        self._clock = clock or _now_utc

    @property
    def lead_minutes(self) -> list[int]:
        return list(self._leads)

    def due_reminders(
        self,
        interviews: Iterable[Interview],
        applications: Iterable[JobApplication],
        now: datetime,
    ) -> list[DueReminder]:
        """
        Work out which reminders are due.

        Reminders already recorded on the entity for the same start are skipped.

        Args:
            interviews: Candidate interviews.
            applications: Candidate applications (instant-hire work starts).
            now: Current time.

        Returns:
            Due reminders ordered by start time.
        """
        due: list[DueReminder] = []
        for interview in interviews:
            if interview.status not in BOOKED_INTERVIEW_STATUSES:
                continue
            due.extend(self._due_for("interview", interview.interview_id, interview.starts_at(), interview, now))
        for application in applications:
            if (
                application.status != ApplicationStatus.HIRED
                or application.hiring_type != HiringType.INSTANT_HIRE
                or application.work_start_at is None
            ):
                continue
            due.extend(
                self._due_for("application", application.application_id, application.work_start_at, application, now)
            )
        due.sort(key=lambda reminder: reminder.starts_at)
        return due

    def _due_for(
        self,
        kind: str,
        entity_id: str,
        starts_at: datetime,
        entity: Interview | JobApplication,
        now: datetime,
    ) -> list[DueReminder]:
        # Only the tightest due bucket fires; wider ones that were missed are skipped.
        for lead in sorted(self._leads):
            bucket = bucket_name(lead)
            if is_due(starts_at, lead, now):
                if reminder_key(bucket, starts_at) in entity.reminders_sent:
                    return []
                return [DueReminder(kind, entity_id, bucket, starts_at, entity)]
        return []

    async def sweep(self, now: datetime | None = None) -> list[WorkflowEvent]:
        """
        Run one sweep: find due reminders, record them, and build their events.

        A reminder recorded by a concurrent sweep is dropped.

        Returns:
            Events to dispatch.
        """
        now = now or self._clock()
        horizon = now + timedelta(minutes=max(self._leads, default=0))
        interviews, applications = await self._store.list_reminder_candidates(until=horizon, since=now)

        events: list[WorkflowEvent] = []
        for reminder in self.due_reminders(interviews, applications, now):
            recorded = await self._store.mark_reminder_sent(reminder.kind, reminder.entity_id, reminder.key)
            if not recorded:
                logger.debug(f"Reminder {reminder.bucket} for {reminder.kind} {reminder.entity_id} already sent")
                continue
            events.extend(self.build_events(reminder, now))
            logger.info(f"Reminder {reminder.bucket} due for {reminder.kind} {reminder.entity_id}")
        return events

    @staticmethod
    def build_events(reminder: DueReminder, now: datetime) -> list[WorkflowEvent]:
        """Build the reminder events for both parties."""
        entity = reminder.entity
        if isinstance(entity, Interview):
            payload = {**interview_payload(entity), "bucket": reminder.bucket}
            return to_both(EventType.INTERVIEW_REMINDER, entity, payload, now)
        payload = {
            **application_payload(entity),
            "bucket": reminder.bucket,
            "work_start_at": reminder.starts_at.isoformat(),
        }
        return to_both(EventType.JOB_START_REMINDER, entity, payload, now)
