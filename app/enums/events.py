from enum import Enum
from typing import TypeAlias


class HeatingEvent(str, Enum):
    """Event bus topics published by the heating services."""

    COMMAND_VERIFIED = "heating_command_verified"
    COMMAND_FAILED = "heating_command_failed"
    COMMAND_SKIPPED = "heating_command_skipped"
    BASELINE_CLEARED = "heating_baseline_cleared"
    STALE_STATE_RESET = "heating_stale_state_reset"

    MODE_ACTIVATED = "heating_mode_activated"
    MODE_CANCELLED = "heating_mode_cancelled"
    MODE_EXPIRED = "heating_mode_expired"
    MANUAL_INTERVENTION_DETECTED = "heating_manual_intervention_detected"

    ROOM_NOTIFICATION = "heating_room_notification"


class NotificationSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


EventType: TypeAlias = HeatingEvent | str
