"""
Configuration for the Room Heating Controller
=============================================
Runtime settings loaded from environment variables, the timing constants
used by the command coordination layer, and the logging setup shared by the
HTTP server and the CLI.
"""

import os
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer.") from None


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number.") from None


@dataclass
class HeatingTimings:
    """Timeouts, intervals and tolerances of the coordination layer.

    All durations are in seconds unless the name says otherwise. Tests build
    this directly with short intervals; production code derives it from
    :class:`AppConfig`.
    """

    lock_timeout: float = 30.0
    stale_timeout: float = 300.0
    queue_wait_timeout: float = 60.0
    queue_poll_interval: float = 2.0
    verify_timeout: float = 30.0
    verify_poll_interval: float = 1.0
    retry_delay: float = 2.0
    max_retries: int = 3
    setpoint_tolerance: float = 0.3

    boost_duration_minutes: int = 60
    boost_setpoint: float = 25.0
    pause_duration_minutes: int = 60
    manual_override_duration_minutes: int = 90

    # Window after an automatic transition (away -> home) during which live
    # values are not compared against the baseline.
    adjustment_window_minutes: float = 7.0
    # Grace period for an actuator whose last command never verified.
    unverified_grace_minutes: float = 15.0

    parallel_dispatch_workers: int = 4


@dataclass
class AppConfig:
    """Runtime configuration loaded from environment variables."""

    environment: str = field(default_factory=lambda: os.getenv("HEATING_ENV", "development"))
    DEBUG: bool = field(default_factory=lambda: _env_bool("HEATING_DEBUG", False))
    log_level: str = field(default_factory=lambda: os.getenv("HEATING_LOG_LEVEL", "INFO"))
    log_path: str = field(default_factory=lambda: os.getenv("HEATING_LOG_PATH", "logs/heating.log"))

    # Persistence
    state_store_path: str = field(default_factory=lambda: os.getenv("HEATING_STATE_DB", "database/heating_state.db"))
    rooms_config_path: str = field(default_factory=lambda: os.getenv("HEATING_ROOMS_CONFIG", "config/rooms.json"))

    # Device hub (actuator read/write API)
    hub_base_url: str = field(default_factory=lambda: os.getenv("HEATING_HUB_URL", "http://localhost:8123/api"))
    hub_token: str = field(default_factory=lambda: os.getenv("HEATING_HUB_TOKEN", ""))
    hub_timeout_seconds: float = field(default_factory=lambda: _env_float("HEATING_HUB_TIMEOUT", 5.0))
    presence_device_id: str = field(default_factory=lambda: os.getenv("HEATING_PRESENCE_DEVICE", ""))

    heating_enabled: bool = field(default_factory=lambda: _env_bool("HEATING_ENABLED", True))
    # IANA zone used to pick the schedule slot (host zone when empty)
    timezone: str = field(default_factory=lambda: os.getenv("HEATING_TIMEZONE", ""))

    # Coordination layer
    lock_timeout_seconds: float = field(default_factory=lambda: _env_float("HEATING_LOCK_TIMEOUT", 30.0))
    stale_timeout_seconds: float = field(default_factory=lambda: _env_float("HEATING_STALE_TIMEOUT", 300.0))
    queue_wait_timeout_seconds: float = field(default_factory=lambda: _env_float("HEATING_QUEUE_WAIT_TIMEOUT", 60.0))
    verify_timeout_seconds: float = field(default_factory=lambda: _env_float("HEATING_VERIFY_TIMEOUT", 30.0))
    max_retries: int = field(default_factory=lambda: _env_int("HEATING_MAX_RETRIES", 3))
    setpoint_tolerance: float = field(default_factory=lambda: _env_float("HEATING_SETPOINT_TOLERANCE", 0.3))

    # Override modes
    boost_duration_minutes: int = field(default_factory=lambda: _env_int("HEATING_BOOST_MINUTES", 60))
    boost_setpoint: float = field(default_factory=lambda: _env_float("HEATING_BOOST_SETPOINT", 25.0))
    pause_duration_minutes: int = field(default_factory=lambda: _env_int("HEATING_PAUSE_MINUTES", 60))
    adjustment_window_minutes: float = field(
        default_factory=lambda: _env_float("HEATING_ADJUSTMENT_WINDOW_MINUTES", 7.0)
    )
    unverified_grace_minutes: float = field(default_factory=lambda: _env_float("HEATING_UNVERIFIED_GRACE_MINUTES", 15.0))
    parallel_dispatch_workers: int = field(default_factory=lambda: _env_int("HEATING_DISPATCH_WORKERS", 4))

    eventbus_queue_size: int = field(default_factory=lambda: _env_int("HEATING_EVENTBUS_QUEUE_SIZE", 256))
    eventbus_worker_count: int = field(default_factory=lambda: _env_int("HEATING_EVENTBUS_WORKER_COUNT", 1))

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError("HEATING_MAX_RETRIES must be at least 1.")
        if self.setpoint_tolerance < 0:
            raise ValueError("HEATING_SETPOINT_TOLERANCE must not be negative.")
        if self.parallel_dispatch_workers < 1:
            raise ValueError("HEATING_DISPATCH_WORKERS must be at least 1.")

    def timings(self) -> HeatingTimings:
        """Build the coordination timings from this configuration."""
        return HeatingTimings(
            lock_timeout=self.lock_timeout_seconds,
            stale_timeout=self.stale_timeout_seconds,
            queue_wait_timeout=self.queue_wait_timeout_seconds,
            verify_timeout=self.verify_timeout_seconds,
            max_retries=self.max_retries,
            setpoint_tolerance=self.setpoint_tolerance,
            boost_duration_minutes=self.boost_duration_minutes,
            boost_setpoint=self.boost_setpoint,
            pause_duration_minutes=self.pause_duration_minutes,
            adjustment_window_minutes=self.adjustment_window_minutes,
            unverified_grace_minutes=self.unverified_grace_minutes,
            parallel_dispatch_workers=self.parallel_dispatch_workers,
        )

    def as_flask_config(self) -> dict[str, Any]:
        return {
            "ENV": self.environment,
            "DEBUG": self.DEBUG,
            "JSON_SORT_KEYS": False,
        }


def setup_logging(debug: bool = False, log_path: str | None = None) -> None:
    """Setup logging configuration."""
    import logging
    import sys
    from logging.handlers import RotatingFileHandler

    log_level = logging.DEBUG if debug else logging.INFO

    root = logging.getLogger()
    root.setLevel(log_level)

    # Avoid adding duplicate handlers when called from both the app factory and the CLI
    has_console = any(getattr(h, "name", "") == "heating_console" for h in root.handlers)
    has_file = any(getattr(h, "name", "") == "heating_file" for h in root.handlers)
    added_handler = False

    stream = sys.stdout
    with suppress(AttributeError, ValueError):
        stream.reconfigure(encoding="utf-8", errors="replace")
    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    if not has_console:
        console_handler = logging.StreamHandler(stream=stream)
        console_handler.name = "heating_console"
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)
        added_handler = True

    if not has_file and log_path:
        log_dir = os.path.dirname(log_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=5 * 1024 * 1024,
            backupCount=3,
            encoding="utf-8",
        )
        file_handler.name = "heating_file"
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
        added_handler = True

    for handler in root.handlers:
        if getattr(handler, "name", "") in {"heating_console", "heating_file"}:
            handler.setLevel(log_level)

    if added_handler:
        root.info("Logging initialized at level: %s", logging.getLevelName(log_level))

    if _env_bool("HEATING_SILENCE_WERKZEUG", True):
        logging.getLogger("werkzeug").setLevel(logging.WARNING)
    # Hub polling during verification is chatty at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def load_config() -> AppConfig:
    """Helper for callers to load and validate configuration."""
    return AppConfig()
