"""
Shared fixtures and fake collaborators for the hiring engine tests.
"""

import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest

from hiring_engine.db.memory_store import InMemoryHiringStore
from hiring_engine.errors import CollaboratorError
from hiring_engine.integrations.collaborators import (
    ChatService,
    CompanyGate,
    GatedAction,
    JobDirectory,
    NotificationService,
)
from hiring_engine.orchestrator.application_state import ApplicationStateMachine
from hiring_engine.orchestrator.hiring_orchestrator import HiringOrchestrator
from hiring_engine.orchestrator.interview_state import InterviewStateMachine
from hiring_engine.scheduling.conflicts import ConflictResolver
from hiring_engine.schemas import Actor, HiringType, Interview, InterviewStatus, JobListing, WorkflowEvent

COMPANY_ID = "company-1"
OTHER_COMPANY_ID = "company-2"
SEEKER_ID = "seeker-1"
OTHER_SEEKER_ID = "seeker-2"
JOB_ID = "job-1"
INSTANT_JOB_ID = "job-instant"
DRAFT_JOB_ID = "job-draft"
INTERVIEW_DAY = date(2025, 1, 10)


class FakeClock:
    """Settable clock returning UTC-aware datetimes."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeJobDirectory(JobDirectory):
    def __init__(self, jobs: list[JobListing]) -> None:
        self.jobs = {job.job_id: job for job in jobs}

    async def find_job(self, job_id: str) -> JobListing | None:
        return self.jobs.get(job_id)


class FakeCompanyGate(CompanyGate):
    def __init__(self) -> None:
        self.blocked: set[GatedAction] = set()
        self.calls: list[tuple[str, GatedAction]] = []

    async def can_perform_action(self, company_id: str, action: GatedAction) -> bool:
        self.calls.append((company_id, action))
        return action not in self.blocked


class FakeChatService(ChatService):
    """Records every call; yields to the event loop so concurrent callers interleave."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.fail = False

    async def create_chat(self, company_id: str, seeker_id: str, application_id: str) -> str:
        await asyncio.sleep(0)
        if self.fail:
            raise CollaboratorError("chat_service", "unavailable")
        self.calls.append(application_id)
        await asyncio.sleep(0)
        return f"CHAT-{len(self.calls)}"


class FakeNotificationService(NotificationService):
    def __init__(self) -> None:
        self.events: list[WorkflowEvent] = []
        self.fail_for: set[str] = set()

    async def emit(self, event: WorkflowEvent) -> None:
        if event.recipient_id in self.fail_for:
            raise CollaboratorError("notification_service", "rejected")
        self.events.append(event)


def make_interview(
    start_time: str,
    duration_minutes: int = 30,
    status: InterviewStatus = InterviewStatus.SCHEDULED,
    on_date: date = INTERVIEW_DAY,
    company_id: str = COMPANY_ID,
) -> Interview:
    """Build a standalone booking for resolver tests."""
    return Interview(
        application_id="APP-X",
        job_id=JOB_ID,
        company_id=company_id,
        seeker_id=SEEKER_ID,
        date=on_date,
        start_time=start_time,
        duration_minutes=duration_minutes,
        status=status,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 1, 1, 8, 0, tzinfo=timezone.utc))


@pytest.fixture
def store() -> InMemoryHiringStore:
    return InMemoryHiringStore()


@pytest.fixture
def jobs() -> FakeJobDirectory:
    return FakeJobDirectory(
        [
            JobListing(
                job_id=JOB_ID,
                status="published",
                company_id=COMPANY_ID,
                title="Barista",
                company_name="Muscat Coffee",
                hiring_type=HiringType.INTERVIEW_FIRST,
            ),
            JobListing(
                job_id=INSTANT_JOB_ID,
                status="published",
                company_id=COMPANY_ID,
                title="Event Staff",
                company_name="Muscat Coffee",
                hiring_type=HiringType.INSTANT_HIRE,
            ),
            JobListing(job_id=DRAFT_JOB_ID, status="draft", company_id=COMPANY_ID, title="Draft"),
        ]
    )


@pytest.fixture
def gate() -> FakeCompanyGate:
    return FakeCompanyGate()


@pytest.fixture
def chat() -> FakeChatService:
    return FakeChatService()


@pytest.fixture
def notifications() -> FakeNotificationService:
    return FakeNotificationService()


@pytest.fixture
def orchestrator(
    store: InMemoryHiringStore,
    jobs: FakeJobDirectory,
    gate: FakeCompanyGate,
    chat: FakeChatService,
    clock: FakeClock,
) -> HiringOrchestrator:
    return HiringOrchestrator(
        store=store,
        job_directory=jobs,
        company_gate=gate,
        chat_service=chat,
        resolver=ConflictResolver("09:00", "18:00"),
        applications=ApplicationStateMachine(clock=clock),
        interviews=InterviewStateMachine(clock=clock),
        clock=clock,
        chat_claim_ttl=timedelta(seconds=120),
    )


@pytest.fixture
def company() -> Actor:
    return Actor.company(COMPANY_ID)


@pytest.fixture
def seeker() -> Actor:
    return Actor.seeker(SEEKER_ID)
