"""
External collaborators consumed by the hiring workflow engine.

Each collaborator is an abstract interface plus an httpx-backed adapter.
The engine only depends on the interfaces; the adapters are wired in by
the entry point.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

import httpx

from hiring_engine.config import get_settings
from hiring_engine.errors import CollaboratorError
from hiring_engine.schemas import JobListing, WorkflowEvent

logger = logging.getLogger(__name__)


class GatedAction(str, Enum):
    """Company actions subject to plan limits."""

    SCHEDULE_INTERVIEW = "schedule_interview"
    SEND_HIRE_REQUEST = "send_hire_request"
    INVITE_SEEKER = "invite_seeker"


class JobDirectory(ABC):
    """Looks up job listings."""

    @abstractmethod
    async def find_job(self, job_id: str) -> JobListing | None:
        """
        Find a job by id.

        Args:
            job_id: Job identifier.

        Returns:
            The job listing, or None if it does not exist.
        """
        ...


class CompanyGate(ABC):
    """Enforces subscription plan limits."""

    @abstractmethod
    async def can_perform_action(self, company_id: str, action: GatedAction) -> bool:
        """Check if the company's plan allows the action."""
        ...


class ChatService(ABC):
    """Creates chat channels between a company and a seeker."""

    @abstractmethod
    async def create_chat(self, company_id: str, seeker_id: str, application_id: str) -> str:
        """
        Create a chat channel.

        Returns:
            The new chat id.
        """
        ...


class NotificationService(ABC):
    """Delivers workflow events to their recipients."""

    @abstractmethod
    async def emit(self, event: WorkflowEvent) -> None:
        """Hand an event over for delivery (fire-and-forget)."""
        ...


class HttpCollaborator:
    """
    Shared plumbing for the HTTP adapters.

    Holds a lazily created httpx.AsyncClient and maps transport and status
    errors onto CollaboratorError.
    """

    name = "collaborator"

    def __init__(
        self,
        base_url: str,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the adapter.

        Args:
            base_url: Service base URL.
            timeout: Request timeout in seconds (uses config if not provided).
            transport: Optional transport override (used by tests).
        """
        self._base_url = base_url
        self._timeout = timeout or get_settings().http_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        client = await self._get_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise CollaboratorError(self.name, f"{method} {path} failed: {e}") from e
        return response

    def _json(self, response: httpx.Response) -> dict[str, Any]:
        try:
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPStatusError, ValueError) as e:
            raise CollaboratorError(self.name, f"Unexpected response: {e}") from e
        if not isinstance(data, dict):
            raise CollaboratorError(self.name, "Expected a JSON object")
        return data


class HttpJobDirectory(HttpCollaborator, JobDirectory):
    """Job directory reached over HTTP: ``GET /jobs/{job_id}``."""

    name = "job_directory"

    def __init__(self, base_url: str | None = None, **kwargs: Any) -> None:
        super().__init__(base_url or get_settings().job_directory_url, **kwargs)

    async def find_job(self, job_id: str) -> JobListing | None:
        response = await self._request("GET", f"/jobs/{job_id}")
        if response.status_code == 404:
            return None
        data = self._json(response)
        data.setdefault("job_id", job_id)
        try:
            return JobListing.model_validate(data)
        except ValueError as e:
            raise CollaboratorError(self.name, f"Malformed job {job_id}: {e}") from e


class HttpCompanyGate(HttpCollaborator, CompanyGate):
    """Plan gate reached over HTTP: ``GET /companies/{id}/actions/{action}``."""

    name = "company_gate"

    def __init__(self, base_url: str | None = None, **kwargs: Any) -> None:
        super().__init__(base_url or get_settings().company_gate_url, **kwargs)

    async def can_perform_action(self, company_id: str, action: GatedAction) -> bool:
        response = await self._request("GET", f"/companies/{company_id}/actions/{action.value}")
        return bool(self._json(response).get("allowed", False))


class HttpChatService(HttpCollaborator, ChatService):
    """Chat service reached over HTTP: ``POST /chats``."""

    name = "chat_service"

    def __init__(self, base_url: str | None = None, **kwargs: Any) -> None:
        super().__init__(base_url or get_settings().chat_service_url, **kwargs)

    async def create_chat(self, company_id: str, seeker_id: str, application_id: str) -> str:
        response = await self._request(
            "POST",
            "/chats",
            json={"company_id": company_id, "seeker_id": seeker_id, "application_id": application_id},
        )
        chat_id = self._json(response).get("chat_id")
        if not chat_id:
            raise CollaboratorError(self.name, "Response did not include a chat_id")
        return str(chat_id)


class HttpNotificationService(HttpCollaborator, NotificationService):
    """Notification service reached over HTTP: ``POST /events``."""

    name = "notification_service"

    def __init__(self, base_url: str | None = None, **kwargs: Any) -> None:
        super().__init__(base_url or get_settings().notification_service_url, **kwargs)

    async def emit(self, event: WorkflowEvent) -> None:
        response = await self._request("POST", "/events", json=event.model_dump(mode="json"))
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise CollaboratorError(self.name, f"Event {event.event_type.value} rejected: {e}") from e
        logger.debug(f"Emitted {event.event_type.value} to {event.recipient_role.value} {event.recipient_id}")
