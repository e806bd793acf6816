from __future__ import annotations

import argparse
import json
import logging
import os

from app.config import load_config, setup_logging
from app.domain.exceptions import HeatingError
from app.enums.heating import HeatingAction

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="heating-control", description="Room heating controller")
    parser.add_argument("--rooms", help="Path to the rooms file (default: HEATING_ROOMS_CONFIG)")
    parser.add_argument("--state-db", help="Path to the state database (default: HEATING_STATE_DB)")
    subparsers = parser.add_subparsers(dest="command")

    run = subparsers.add_parser("run", help="Run one heating session for a room")
    run.add_argument("room", help="Room key or zone name")
    run.add_argument(
        "--action",
        choices=[action.value for action in HeatingAction],
        help="Explicit request to apply before control",
    )

    status = subparsers.add_parser("status", help="Show override modes and actuator state for a room")
    status.add_argument("room", help="Room key or zone name")

    subparsers.add_parser("cleanup", help="Reset stale actuator states and queue entries")

    serve = subparsers.add_parser("serve", help="Serve the HTTP API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=int(os.environ.get("FLASK_RUN_PORT", 8000)))
    return parser


def main(argv: list[str] | None = None, *, container=None) -> int:
    """Run a single heating command without starting the web server."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 2

    overrides = {}
    if args.rooms:
        overrides["rooms_config_path"] = args.rooms
    if args.state_db:
        overrides["state_store_path"] = args.state_db
    config = load_config()
    for key, value in overrides.items():
        setattr(config, key, value)
    setup_logging(debug=config.DEBUG, log_path=config.log_path)

    if args.command == "serve":
        from app import create_app

        app = create_app(overrides, container=container)
        logger.info("Server starting on http://%s:%d", args.host, args.port)
        app.run(host=args.host, port=args.port, debug=False, use_reloader=False)
        return 0

    owns_container = container is None
    try:
        if owns_container:
            from app.services.container import ServiceContainer

            container = ServiceContainer.build(config)

        if args.command == "run":
            output = container.controller.run(args.room, args.action).to_dict()
        elif args.command == "status":
            output = container.controller.room_status(args.room)
        else:
            output = container.lock_manager.cleanup_stale_resource_states()
    except HeatingError as e:
        logger.error("%s failed: %s", args.command, e)
        print(json.dumps({"ok": False, "error": str(e)}))
        return 1
    finally:
        if owns_container and container is not None:
            try:
                container.shutdown()
            except (RuntimeError, OSError):
                logger.exception("Failed to shut down cleanly")

    print(json.dumps({"ok": True, "data": output}, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    import sys

    raise SystemExit(main(sys.argv[1:]))
