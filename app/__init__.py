from __future__ import annotations

import atexit
import contextlib
import logging
import signal
import threading
from typing import Any

from flask import Flask, request
from werkzeug.exceptions import HTTPException

from app.blueprints.api.heating import heating_api
from app.config import load_config, setup_logging
from app.domain.exceptions import HeatingError
from app.utils.http import error_response, heating_error_response, safe_error


def create_app(config_overrides: dict[str, Any] | None = None, *, container: Any = None) -> Flask:
    config = load_config()
    if config_overrides:
        for key, value in config_overrides.items():
            setattr(config, key.lower(), value)

    # Configure logging early so container startup (rooms file, state store) is visible
    setup_logging(debug=config.DEBUG, log_path=config.log_path)

    flask_app = Flask(__name__)
    flask_app.config.update(config.as_flask_config())

    if container is None:
        from app.services.container import ServiceContainer

        container = ServiceContainer.build(config)
    flask_app.config["CONTAINER"] = container

    # ── Graceful shutdown handlers ──────────────────────────────────
    _shutdown_lock = threading.Lock()
    _shutdown_done = False

    def _graceful_shutdown(reason: str = "unknown") -> None:
        nonlocal _shutdown_done
        with _shutdown_lock:
            if _shutdown_done:
                return
            _shutdown_done = True
        logging.info("Graceful shutdown initiated (%s)", reason)
        try:
            container.shutdown()
        except Exception as exc:
            logging.warning("Error during graceful shutdown: %s", exc)

    def _signal_handler(signum: int, _frame: object) -> None:
        sig_name = signal.Signals(signum).name
        logging.info("Received %s, shutting down", sig_name)
        _graceful_shutdown(sig_name)
        raise SystemExit(0)

    atexit.register(_graceful_shutdown, "atexit")

    # Signal handlers can only be installed from the main thread
    if threading.current_thread() is threading.main_thread():
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(OSError, ValueError):
                signal.signal(sig, _signal_handler)

    # Errors escaping a route (or raised before one runs, e.g. 404/405) are
    # answered with the JSON envelope on /api/ paths
    @flask_app.errorhandler(Exception)
    def _handle_unhandled(exc):
        if not request.path.startswith("/api/"):
            raise exc
        if isinstance(exc, HTTPException):
            status = int(exc.code or 500)
            if status >= 500:
                return safe_error(exc, status, context="http-exception")
            return error_response(exc.description or "Request failed", status)
        if isinstance(exc, HeatingError):
            return heating_error_response(exc)
        return safe_error(exc, 500, context="unhandled")

    flask_app.register_blueprint(heating_api, url_prefix="/api/heating")

    for bp_name in flask_app.blueprints:
        logging.info(" Registered blueprint: %s", bp_name)

    logger = logging.getLogger(__name__)
    logger.info("Heating controller application initialized successfully.")
    return flask_app


__all__ = ["create_app"]
