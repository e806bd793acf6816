"""
Heating Domain Models

Coordination entities, override-mode records and result value objects.
"""

from .commands import Command, QueuedCommand, Session
from .modes import ModeRecord, ModeStatus
from .room_flags import RoomFlags
from .resource_state import ResourceState
from .results import (
    CancelResult,
    CommandResult,
    InterventionResult,
    QueueWaitResult,
    ResumeResult,
    RunResult,
    VerificationResult,
)
from .values import CapabilityValue, PowerValue, SetpointValue, value_from_raw

__all__ = [
    # Values
    "CapabilityValue",
    "PowerValue",
    "SetpointValue",
    "value_from_raw",
    # Entities
    "Command",
    "QueuedCommand",
    "Session",
    "ResourceState",
    "ModeRecord",
    "ModeStatus",
    "RoomFlags",
    # Results
    "CancelResult",
    "CommandResult",
    "InterventionResult",
    "QueueWaitResult",
    "ResumeResult",
    "RunResult",
    "VerificationResult",
]
