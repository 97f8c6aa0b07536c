"""
Tests for the httpx-backed collaborator adapters using httpx.MockTransport.
"""

import json

import httpx
import pytest

from hiring_engine.errors import CollaboratorError
from hiring_engine.integrations.collaborators import (
    GatedAction,
    HttpChatService,
    HttpCompanyGate,
    HttpJobDirectory,
    HttpNotificationService,
)
from hiring_engine.schemas import ActorRole, EventType, HiringType, WorkflowEvent

BASE_URL = "http://collaborator.test"


def transport_for(handler) -> httpx.MockTransport:
    return httpx.MockTransport(handler)


class TestJobDirectory:
    """Tests for HttpJobDirectory."""

    @pytest.mark.asyncio
    async def test_find_job(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "GET"
            assert request.url.path == "/jobs/job-1"
            return httpx.Response(
                200,
                json={
                    "status": "published",
                    "company_id": "company-1",
                    "title": "Barista",
                    "hiring_type": "instant_hire",
                },
            )

        directory = HttpJobDirectory(BASE_URL, transport=transport_for(handler))
        try:
            job = await directory.find_job("job-1")
        finally:
            await directory.close()

        assert job is not None
        assert job.job_id == "job-1"
        assert job.is_published
        assert job.hiring_type == HiringType.INSTANT_HIRE

    @pytest.mark.asyncio
    async def test_missing_job_is_none(self) -> None:
        directory = HttpJobDirectory(BASE_URL, transport=transport_for(lambda request: httpx.Response(404)))
        try:
            assert await directory.find_job("job-404") is None
        finally:
            await directory.close()

    @pytest.mark.asyncio
    async def test_server_error_maps_to_collaborator_error(self) -> None:
        directory = HttpJobDirectory(BASE_URL, transport=transport_for(lambda request: httpx.Response(503)))
        try:
            with pytest.raises(CollaboratorError) as exc_info:
                await directory.find_job("job-1")
            assert exc_info.value.collaborator == "job_directory"
        finally:
            await directory.close()

    @pytest.mark.asyncio
    async def test_transport_error_maps_to_collaborator_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        directory = HttpJobDirectory(BASE_URL, transport=transport_for(handler))
        try:
            with pytest.raises(CollaboratorError):
                await directory.find_job("job-1")
        finally:
            await directory.close()


class TestCompanyGate:
    """Tests for HttpCompanyGate."""

    @pytest.mark.asyncio
    async def test_reads_allowed_flag(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            allowed = request.url.path.endswith("/schedule_interview")
            return httpx.Response(200, json={"allowed": allowed})

        gate = HttpCompanyGate(BASE_URL, transport=transport_for(handler))
        try:
            assert await gate.can_perform_action("company-1", GatedAction.SCHEDULE_INTERVIEW)
            assert not await gate.can_perform_action("company-1", GatedAction.SEND_HIRE_REQUEST)
        finally:
            await gate.close()

    @pytest.mark.asyncio
    async def test_non_object_body_is_rejected(self) -> None:
        gate = HttpCompanyGate(BASE_URL, transport=transport_for(lambda request: httpx.Response(200, json=[True])))
        try:
            with pytest.raises(CollaboratorError):
                await gate.can_perform_action("company-1", GatedAction.INVITE_SEEKER)
        finally:
            await gate.close()


class TestChatService:
    """Tests for HttpChatService."""

    @pytest.mark.asyncio
    async def test_create_chat_posts_participants(self) -> None:
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(201, json={"chat_id": "CHAT-9"})

        service = HttpChatService(BASE_URL, transport=transport_for(handler))
        try:
            chat_id = await service.create_chat("company-1", "seeker-1", "APP-1")
        finally:
            await service.close()

        assert chat_id == "CHAT-9"
        assert seen == [{"company_id": "company-1", "seeker_id": "seeker-1", "application_id": "APP-1"}]

    @pytest.mark.asyncio
    async def test_missing_chat_id_raises(self) -> None:
        service = HttpChatService(BASE_URL, transport=transport_for(lambda request: httpx.Response(200, json={})))
        try:
            with pytest.raises(CollaboratorError):
                await service.create_chat("company-1", "seeker-1", "APP-1")
        finally:
            await service.close()


class TestNotificationService:
    """Tests for HttpNotificationService."""

    @pytest.mark.asyncio
    async def test_emit_posts_event(self) -> None:
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/events"
            seen.append(json.loads(request.content))
            return httpx.Response(202)

        event = WorkflowEvent(
            event_type=EventType.INTERVIEW_REMINDER,
            recipient_role=ActorRole.SEEKER,
            recipient_id="seeker-1",
            payload={"bucket": "240m"},
        )
        service = HttpNotificationService(BASE_URL, transport=transport_for(handler))
        try:
            await service.emit(event)
        finally:
            await service.close()

        assert seen[0]["event_type"] == "interview_reminder"
        assert seen[0]["recipient_id"] == "seeker-1"
        assert seen[0]["payload"] == {"bucket": "240m"}

    @pytest.mark.asyncio
    async def test_rejected_event_raises(self) -> None:
        event = WorkflowEvent(
            event_type=EventType.CHAT_CREATED,
            recipient_role=ActorRole.COMPANY,
            recipient_id="company-1",
        )
        service = HttpNotificationService(BASE_URL, transport=transport_for(lambda request: httpx.Response(500)))
        try:
            with pytest.raises(CollaboratorError):
                await service.emit(event)
        finally:
            await service.close()
