from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from logging.handlers import RotatingFileHandler
from typing import Optional

from .config.settings import Settings, load_settings
from .scope.errors import InvalidArgumentError, NotConnectedError
from .scope.events import (
    CommandFailed,
    ConnectionErrorOccurred,
    ConnectionEstablished,
    Disconnected,
    Notification,
    PoseUpdated,
    StatusUpdated,
)
from .scope.session import TelescopeSession
from .scope.state import StateStore, create_state_store
from .server import run_server

logger = logging.getLogger(__name__)

_CLI_LOG_HANDLER_FLAG = "_wifi_telescope_cli_handler"

SessionAction = Callable[[TelescopeSession], bool]


def _configure_file_logging(settings: Settings) -> None:
    """Persist CLI logs to a rotating file under the state directory."""

    try:
        log_dir = settings.state_directory / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / "wifi-telescope.log"
    except OSError as exc:
        logger.warning("cli.logfile_init_failed error=%s", exc)
        return

    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        if getattr(handler, _CLI_LOG_HANDLER_FLAG, False):
            return

    handler = RotatingFileHandler(
        log_path,
        maxBytes=5_000_000,
        backupCount=3,
        encoding="utf-8",
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    setattr(handler, _CLI_LOG_HANDLER_FLAG, True)
    root_logger.addHandler(handler)


def resolve_target(
    settings: Settings,
    store: StateStore,
    host: Optional[str],
    port: Optional[int],
) -> tuple[str, int]:
    """Pick the controller address: CLI flag, explicit setting, remembered, default."""
    explicit = settings.model_fields_set
    remembered = store.state

    if host:
        resolved_host = host
    elif "telescope_host" in explicit or not remembered.last_host:
        resolved_host = settings.telescope_host
    else:
        resolved_host = remembered.last_host

    if port is not None:
        resolved_port = port
    elif "telescope_port" in explicit or remembered.last_port is None:
        resolved_port = settings.telescope_port
    else:
        resolved_port = remembered.last_port

    return resolved_host, resolved_port


def describe(notification: Notification) -> str:
    if isinstance(notification, ConnectionEstablished):
        return f"connected to {notification.host}:{notification.port}"
    if isinstance(notification, Disconnected):
        return "disconnected"
    if isinstance(notification, ConnectionErrorOccurred):
        return f"connection error: {notification.message}"
    if isinstance(notification, StatusUpdated):
        return f"status: {notification.label}"
    if isinstance(notification, PoseUpdated):
        target = f" ({notification.target_name})" if notification.target_name else ""
        return (
            f"pose: RA {notification.right_ascension:.4f} Dec {notification.declination:.4f} "
            f"Alt {notification.altitude:.2f} Az {notification.azimuth:.2f}{target}"
        )
    if isinstance(notification, CommandFailed):
        return f"command {notification.endpoint} failed: {notification.reason}"
    return repr(notification)


async def run_session_command(
    settings: Settings,
    action: SessionAction,
    *,
    host: Optional[str] = None,
    port: Optional[int] = None,
    connect_timeout: float = 15.0,
    session: Optional[TelescopeSession] = None,
) -> int:
    """Connect, run one command, wait for its outcome and disconnect."""

    store = create_state_store(settings.state_directory)
    target_host, target_port = resolve_target(settings, store, host, port)
    session = session or TelescopeSession(settings, state_store=store)
    failures: list[CommandFailed] = []

    def _collect(notification: Notification) -> None:
        if isinstance(notification, CommandFailed):
            failures.append(notification)

    unsubscribe = session.events.subscribe(_collect)
    try:
        try:
            session.connect(target_host, target_port)
        except InvalidArgumentError as exc:
            print(f"Invalid controller address: {exc}")
            return 2

        if not await session.wait_connected(timeout=connect_timeout):
            print(f"Could not connect to {target_host}:{target_port}: {session.last_error or 'timed out'}")
            return 1

        try:
            submitted = action(session)
        except (InvalidArgumentError, NotConnectedError) as exc:
            print(f"Command rejected: {exc}")
            return 2
        if not submitted:
            print("Command could not be dispatched.")
            return 1

        await session.transport.drain()
        if failures:
            for failure in failures:
                print(describe(failure))
            return 1
        print(f"{session.status.label}: done")
        return 0
    finally:
        unsubscribe()
        await session.shutdown()


async def monitor_command(
    settings: Settings,
    *,
    host: Optional[str] = None,
    port: Optional[int] = None,
    duration: float = 10.0,
    session: Optional[TelescopeSession] = None,
) -> int:
    """Print every session notification for ``duration`` seconds."""

    store = create_state_store(settings.state_directory)
    target_host, target_port = resolve_target(settings, store, host, port)
    session = session or TelescopeSession(settings, state_store=store)
    deadline = time.monotonic() + max(duration, 0.0)

    with session.events.listen() as queue:
        try:
            try:
                session.connect(target_host, target_port)
            except InvalidArgumentError as exc:
                print(f"Invalid controller address: {exc}")
                return 2
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                try:
                    notification = await asyncio.wait_for(queue.get(), timeout=remaining)
                except asyncio.TimeoutError:
                    break
                print(describe(notification))
                if isinstance(notification, ConnectionErrorOccurred):
                    return 1
        finally:
            await session.shutdown()
    return 0


def status_command(settings: Settings) -> int:
    store = create_state_store(settings.state_directory)
    remembered = store.state
    host, port = resolve_target(settings, store, None, None)
    print(f"Controller: {host}:{port}")
    if remembered.last_host:
        print(f"Last connected: {remembered.last_host}:{remembered.last_port}")
    if remembered.last_error:
        print(f"Last error: {remembered.last_error}")
    return 0


def _add_connection_arguments(parser) -> None:
    parser.add_argument(
        "--config",
        type=str,
        help="Path to a settings YAML file to load in addition to environment variables.",
    )
    parser.add_argument("--host", type=str, help="Telescope controller address.")
    parser.add_argument("--port", type=int, help="Telescope controller port (default: 8082).")
    parser.add_argument(
        "--connect-timeout",
        type=float,
        default=15.0,
        help="Seconds to wait for the controller handshake (default: 15).",
    )
    parser.add_argument(
        "--simulate",
        action="store_true",
        help="Talk to an in-process simulated controller instead of the network.",
    )


def _action_for(args) -> Optional[SessionAction]:
    command = args.command
    if command == "goto":
        return lambda session: session.goto_coordinates(args.ra, args.dec, args.name)
    if command == "observe":
        return lambda session: session.start_observation(
            args.ra,
            args.dec,
            args.name,
            exposure_seconds=args.exposure,
            gain=args.gain,
        )
    if command == "auto-init":
        return lambda session: session.auto_initialize(args.latitude, args.longitude)
    simple = {
        "stop": TelescopeSession.stop_observation,
        "park": TelescopeSession.park,
        "focus": TelescopeSession.focus,
        "open-arm": TelescopeSession.open_arm,
    }
    return simple.get(command)


def build_parser():
    import argparse

    parser = argparse.ArgumentParser(description="WiFi telescope bridge")
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP control API")
    serve_parser.add_argument(
        "--config",
        type=str,
        help="Path to a settings YAML file to load in addition to environment variables.",
    )
    serve_parser.add_argument(
        "--simulate",
        action="store_true",
        help="Back the API with a simulated controller.",
    )

    status_parser = subparsers.add_parser("status", help="Show the configured and last used controller")
    status_parser.add_argument("--config", type=str, help="Path to a settings YAML file.")

    goto_parser = subparsers.add_parser("goto", help="Slew to equatorial coordinates")
    _add_connection_arguments(goto_parser)
    goto_parser.add_argument("--ra", type=float, required=True, help="Right ascension in degrees.")
    goto_parser.add_argument("--dec", type=float, required=True, help="Declination in degrees.")
    goto_parser.add_argument("--name", type=str, default="", help="Target name.")

    observe_parser = subparsers.add_parser("observe", help="Start an imaging session")
    _add_connection_arguments(observe_parser)
    observe_parser.add_argument("--ra", type=float, required=True, help="Right ascension in degrees.")
    observe_parser.add_argument("--dec", type=float, required=True, help="Declination in degrees.")
    observe_parser.add_argument("--name", type=str, required=True, help="Target name.")
    observe_parser.add_argument("--exposure", type=float, help="Exposure in seconds (default: 30).")
    observe_parser.add_argument("--gain", type=float, help="Camera gain (default: 20).")

    for name, help_text in (
        ("stop", "Stop the current observation"),
        ("park", "Park the mount"),
        ("focus", "Run the focus routine"),
        ("open-arm", "Open the arm for maintenance"),
    ):
        simple_parser = subparsers.add_parser(name, help=help_text)
        _add_connection_arguments(simple_parser)

    init_parser = subparsers.add_parser("auto-init", help="Run automatic initialization")
    _add_connection_arguments(init_parser)
    init_parser.add_argument("--latitude", type=float, help="Site latitude in degrees.")
    init_parser.add_argument("--longitude", type=float, help="Site longitude in degrees.")

    monitor_parser = subparsers.add_parser("monitor", help="Connect and print notifications")
    _add_connection_arguments(monitor_parser)
    monitor_parser.add_argument(
        "--duration",
        type=float,
        default=10.0,
        help="Seconds to keep printing notifications (default: 10).",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """CLI entry point for the control API and one-shot telescope commands."""
    logging.basicConfig(level=logging.INFO)

    parser = build_parser()
    args = parser.parse_args(argv)

    settings = load_settings(config_path=getattr(args, "config", None))
    if getattr(args, "simulate", False):
        settings.force_simulation = True

    if args.command == "status":
        raise SystemExit(status_command(settings))

    if args.command == "monitor":
        _configure_file_logging(settings)
        raise SystemExit(
            asyncio.run(
                monitor_command(
                    settings,
                    host=args.host,
                    port=args.port,
                    duration=args.duration,
                )
            )
        )

    action = _action_for(args)
    if action is not None:
        _configure_file_logging(settings)
        raise SystemExit(
            asyncio.run(
                run_session_command(
                    settings,
                    action,
                    host=args.host,
                    port=args.port,
                    connect_timeout=args.connect_timeout,
                )
            )
        )

    # default to server mode
    _configure_file_logging(settings)
    asyncio.run(run_server(settings))
