"""
Event dispatch.

Hands workflow events to the notification collaborator. Delivery is
fire-and-forget: failures are logged and counted, never raised, because
the state transitions behind the events are already committed.
"""

import logging
from collections.abc import Iterable

from pydantic import BaseModel, Field

from hiring_engine.errors import CollaboratorError
from hiring_engine.integrations.collaborators import NotificationService
from hiring_engine.schemas import WorkflowEvent

logger = logging.getLogger(__name__)


class DispatchReport(BaseModel):
    """Outcome of dispatching a batch of events."""

    delivered: int = Field(default=0, description="Events accepted by the notification service")
    failed: int = Field(default=0, description="Events the notification service rejected")


class EventDispatcher:
    """Delivers events in order through a NotificationService."""

    def __init__(self, notifications: NotificationService) -> None:
        self._notifications = notifications

    async def dispatch(self, events: Iterable[WorkflowEvent]) -> DispatchReport:
        report = DispatchReport()
        for event in events:
            try:
                await self._notifications.emit(event)
            except CollaboratorError as e:
                report.failed += 1
                logger.warning(f"Failed to deliver {event.event_type.value} to {event.recipient_id}: {e}")
                continue
            report.delivered += 1
        if report.failed:
            logger.error(f"Event dispatch finished with {report.failed} failure(s), {report.delivered} delivered")
        return report
