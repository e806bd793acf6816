"""
Actuator Access Module

HTTP client for the device hub that owns the heating actuators and the room
sensors. Writes are fire-and-forget on the hub side, so callers verify by
reading the device back.
"""
from app.hardware.actuators.hub_client import HubActuatorClient

__all__ = ["HubActuatorClient"]
