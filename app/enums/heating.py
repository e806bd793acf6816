"""
Heating-related Enumerations
============================

Enums shared by the coordination layer, the override-mode state machine and
the room controller.
"""

from enum import Enum


class HeatingType(str, Enum):
    """Kind of heating hardware installed in a room."""

    SMART_PLUG = "smart_plug"  # on/off relay feeding an electric radiator
    TADO_VALVE = "tado_valve"  # modulating valve with its own setpoint


class Capability(str, Enum):
    """Controllable actuator attributes, named as the device hub names them."""

    POWER = "onoff"
    SETPOINT = "target_temperature"


class ResourceStatus(str, Enum):
    """Coordination status of a single actuator."""

    IDLE = "idle"
    SENDING = "sending"
    VERIFYING = "verifying"
    FAILED = "failed"

    @property
    def in_flight(self) -> bool:
        return self in (ResourceStatus.SENDING, ResourceStatus.VERIFYING)


class CommandPriority(str, Enum):
    NORMAL = "normal"
    HIGH = "high"

    @property
    def rank(self) -> int:
        """Sort key: lower ranks are served first."""
        return 0 if self is CommandPriority.HIGH else 1


class OverrideMode(str, Enum):
    """Mutually exclusive room-level operating modes."""

    NORMAL = "normal"
    BOOST = "boost"
    PAUSE = "pause"
    MANUAL_OVERRIDE = "manual_override"

    @property
    def precedence(self) -> int:
        """Higher wins: ManualOverride > {Boost, Pause} > Normal."""
        if self is OverrideMode.MANUAL_OVERRIDE:
            return 2
        if self is OverrideMode.NORMAL:
            return 0
        return 1


class HeatingAction(str, Enum):
    """Explicit user requests accepted by the invocation entry point."""

    BOOST = "boost"
    PAUSE = "pause"
    CANCEL = "cancel"

    @classmethod
    def parse(cls, value: "str | HeatingAction | None") -> "HeatingAction | None":
        if value is None or isinstance(value, HeatingAction):
            return value
        normalized = value.strip().lower()
        if not normalized:
            return None
        return cls(normalized)


class InterventionType(str, Enum):
    """What kind of manual change the detector observed."""

    TEMPERATURE = "temperature"
    SWITCH = "switch"
