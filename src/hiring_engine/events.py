"""
Builders for workflow events.
"""

from datetime import datetime
from typing import Any

from hiring_engine.schemas import (
    ActorRole,
    EventType,
    Interview,
    JobApplication,
    WorkflowEvent,
)


def application_payload(application: JobApplication) -> dict[str, Any]:
    """Common payload describing an application."""
    return {
        "application_id": application.application_id,
        "job_id": application.job_id,
        "job_title": application.job_title,
        "company_id": application.company_id,
        "company_name": application.company_name,
        "seeker_id": application.seeker_id,
        "status": application.status.value,
    }


def interview_payload(interview: Interview) -> dict[str, Any]:
    """Common payload describing an interview."""
    return {
        "interview_id": interview.interview_id,
        "application_id": interview.application_id,
        "job_id": interview.job_id,
        "job_title": interview.job_title,
        "company_id": interview.company_id,
        "company_name": interview.company_name,
        "seeker_id": interview.seeker_id,
        "date": interview.date.isoformat(),
        "start_time": interview.start_time,
        "end_time": interview.end_time,
        "duration_minutes": interview.duration_minutes,
        "time_zone": interview.time_zone,
        "interview_type": interview.interview_type.value,
        "location": interview.location,
        "status": interview.status.value,
    }


def build_event(
    event_type: EventType,
    recipient_role: ActorRole,
    recipient_id: str,
    payload: dict[str, Any],
    created_at: datetime,
) -> WorkflowEvent:
    return WorkflowEvent(
        event_type=event_type,
        recipient_role=recipient_role,
        recipient_id=recipient_id,
        payload=dict(payload),
        created_at=created_at,
    )


def to_seeker(
    event_type: EventType,
    entity: JobApplication | Interview,
    payload: dict[str, Any],
    created_at: datetime,
) -> WorkflowEvent:
    return build_event(event_type, ActorRole.SEEKER, entity.seeker_id, payload, created_at)


def to_company(
    event_type: EventType,
    entity: JobApplication | Interview,
    payload: dict[str, Any],
    created_at: datetime,
) -> WorkflowEvent:
    return build_event(event_type, ActorRole.COMPANY, entity.company_id, payload, created_at)


def to_both(
    event_type: EventType,
    entity: JobApplication | Interview,
    payload: dict[str, Any],
    created_at: datetime,
) -> list[WorkflowEvent]:
    """One event for the seeker and one for the company."""
    return [
        to_seeker(event_type, entity, payload, created_at),
        to_company(event_type, entity, payload, created_at),
    ]


def to_counterparty(
    event_type: EventType,
    entity: JobApplication | Interview,
    actor_role: ActorRole,
    payload: dict[str, Any],
    created_at: datetime,
) -> WorkflowEvent:
    """Notify whichever party did not perform the action."""
    if actor_role == ActorRole.SEEKER:
        return to_company(event_type, entity, payload, created_at)
    return to_seeker(event_type, entity, payload, created_at)
