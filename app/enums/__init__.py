"""
Enums Module
============

This module provides enumeration types for the heating controller.
Enums ensure type safety and consistency across the codebase.
"""

from app.enums.events import EventType, HeatingEvent, NotificationSeverity
from app.enums.heating import (
    Capability,
    CommandPriority,
    HeatingAction,
    HeatingType,
    InterventionType,
    OverrideMode,
    ResourceStatus,
)

__all__ = [
    # Heating enums
    "HeatingType",
    "Capability",
    "ResourceStatus",
    "CommandPriority",
    "OverrideMode",
    "HeatingAction",
    "InterventionType",
    # Event enums
    "HeatingEvent",
    "EventType",
    "NotificationSeverity",
]
