"""
Orchestrator module for the hiring workflow: state machines, coordination and event dispatch.
"""

from hiring_engine.orchestrator.application_state import APPLICATION_TRANSITIONS, ApplicationStateMachine
from hiring_engine.orchestrator.dispatcher import DispatchReport, EventDispatcher
from hiring_engine.orchestrator.hiring_orchestrator import HiringOrchestrator
from hiring_engine.orchestrator.interview_state import INTERVIEW_TRANSITIONS, InterviewStateMachine

__all__ = [
    "APPLICATION_TRANSITIONS",
    "INTERVIEW_TRANSITIONS",
    "ApplicationStateMachine",
    "InterviewStateMachine",
    "HiringOrchestrator",
    "EventDispatcher",
    "DispatchReport",
]
