"""
Blueprint Common Utilities
==========================

Shared helper functions for the API blueprints.

Usage:
    from app.blueprints.api._common import get_container, get_controller, get_json
"""
from __future__ import annotations

import logging

from flask import current_app, request

logger = logging.getLogger("api._common")

# ============================================================================
# CONTAINER ACCESS
# ============================================================================


def get_container():
    """
    Get the service container from Flask app config.

    Returns:
        ServiceContainer: The application service container

    Raises:
        RuntimeError: If container is not configured
    """
    container = current_app.config.get("CONTAINER")
    if not container:
        raise RuntimeError("ServiceContainer not found in app config")
    return container


def get_controller():
    """Room heating controller from the container."""
    return get_container().controller


def get_lock_manager():
    return get_container().lock_manager


# ============================================================================
# REQUEST HELPERS
# ============================================================================


def get_json() -> dict:
    """
    Get JSON request body with silent failure.

    Returns:
        dict: Parsed JSON body or empty dict if not available
    """
    return request.get_json(silent=True) or {}
