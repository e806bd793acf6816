"""Heating services: command coordination, override modes and room control."""

from .command_dispatcher import CommandDispatcher
from .intervention_detector import InterventionDetector
from .lock_manager import LockManager
from .override_modes import OverrideModeService
from .room_controller import RoomHeatingController

__all__ = [
    "CommandDispatcher",
    "InterventionDetector",
    "LockManager",
    "OverrideModeService",
    "RoomHeatingController",
]
