"""Session lifecycle supervision."""

from .cleanup import CleanupCoordinator, CleanupTrigger
from .session import SessionPhase, SessionSupervisor, SupervisorResult
from .signals import SignalBridge
from .waiting import WaitController, WaitOutcome

__all__ = [
    "CleanupCoordinator",
    "CleanupTrigger",
    "SessionPhase",
    "SessionSupervisor",
    "SignalBridge",
    "SupervisorResult",
    "WaitController",
    "WaitOutcome",
]
