"""
Room Heating API Blueprint
==========================

REST endpoints wrapping the room heating controller. Every POST is one
controller session: it detects interventions, applies the requested action
and drives the room's actuators before responding.

Endpoints:
- POST /api/heating/rooms/<room>/run - Run the room (optional ``action``)
- POST /api/heating/rooms/<room>/boost - Start Boost
- POST /api/heating/rooms/<room>/pause - Start Pause
- POST /api/heating/rooms/<room>/cancel - Cancel every override and resume the schedule
- GET /api/heating/rooms/<room>/status - Modes, actuator states and room flags
- POST /api/heating/cleanup - Reset stale actuator states
"""

from __future__ import annotations

import logging

from flask import Blueprint, Response
from pydantic import ValidationError

from app.blueprints.api._common import get_controller, get_json, get_lock_manager
from app.enums.heating import HeatingAction
from app.schemas.heating import RunRoomRequest
from app.utils.http import error_response, safe_route, success_response

logger = logging.getLogger(__name__)

heating_api = Blueprint("heating_api", __name__)


def _run(room: str, action: HeatingAction | None) -> Response:
    result = get_controller().run(room, action)
    return success_response(result.to_dict())


@heating_api.post("/rooms/<room>/run")
@safe_route("Failed to run room heating")
def run_room(room: str) -> Response:
    try:
        body = RunRoomRequest.model_validate(get_json())
    except ValidationError as ve:
        errors = ve.errors(include_url=False, include_context=False)
        return error_response("Invalid request", 400, details={"errors": errors})
    return _run(room, body.action)


@heating_api.post("/rooms/<room>/boost")
@safe_route("Failed to start boost")
def boost_room(room: str) -> Response:
    return _run(room, HeatingAction.BOOST)


@heating_api.post("/rooms/<room>/pause")
@safe_route("Failed to start pause")
def pause_room(room: str) -> Response:
    return _run(room, HeatingAction.PAUSE)


@heating_api.post("/rooms/<room>/cancel")
@safe_route("Failed to cancel override modes")
def cancel_room(room: str) -> Response:
    return _run(room, HeatingAction.CANCEL)


@heating_api.get("/rooms/<room>/status")
@safe_route("Failed to read room status")
def room_status(room: str) -> Response:
    return success_response(get_controller().room_status(room))


@heating_api.post("/cleanup")
@safe_route("Failed to clean up stale actuator states")
def cleanup_stale_states() -> Response:
    summary = get_lock_manager().cleanup_stale_resource_states()
    return success_response(summary)
