"""
Capability Values

Tagged union of the two values an actuator accepts. The variant decides how a
reported value is compared, so tolerance handling never depends on the
capability name string.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Union

from app.enums.heating import Capability

# Absorbs float noise such as 21.3 - 21.0 == 0.3000000000000007
_FLOAT_EPSILON = 1e-9


@dataclass(frozen=True)
class PowerValue:
    """Power state of a relay or valve (exact comparison)."""

    on: bool

    capability: ClassVar[Capability] = Capability.POWER

    @property
    def raw(self) -> bool:
        return self.on

    def matches(self, reported: Any, tolerance: float = 0.0) -> bool:
        return isinstance(reported, bool) and reported is self.on

    def describe(self) -> str:
        return "ON" if self.on else "OFF"


@dataclass(frozen=True)
class SetpointValue:
    """Numeric target temperature (compared within a tolerance)."""

    degrees: float

    capability: ClassVar[Capability] = Capability.SETPOINT

    @property
    def raw(self) -> float:
        return self.degrees

    def matches(self, reported: Any, tolerance: float = 0.0) -> bool:
        if isinstance(reported, bool) or not isinstance(reported, (int, float)):
            return False
        return abs(float(reported) - self.degrees) <= tolerance + _FLOAT_EPSILON

    def describe(self) -> str:
        return f"{self.degrees:g}°C"


CapabilityValue = Union[PowerValue, SetpointValue]


def value_from_raw(capability: Capability | str, raw: Any) -> CapabilityValue:
    """Rebuild a typed value from its persisted ``(capability, raw)`` form."""
    capability = Capability(capability)
    if capability is Capability.POWER:
        if not isinstance(raw, bool):
            raise ValueError(f"Power value must be a boolean, got {raw!r}")
        return PowerValue(raw)
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise ValueError(f"Setpoint value must be numeric, got {raw!r}")
    return SetpointValue(float(raw))
