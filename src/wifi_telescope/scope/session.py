from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass, replace
from typing import Any, Optional

import structlog

from ..config.settings import Settings
from . import commands
from .coordinates import HorizontalTransform, SiteTransform
from .errors import ConnectionFailedError, InvalidArgumentError, NotConnectedError
from .events import (
    CommandFailed,
    ConnectionErrorOccurred,
    ConnectionEstablished,
    ConnectionState,
    Disconnected,
    NotificationHub,
    PoseUpdated,
    SessionStatus,
    StatusUpdated,
)
from .simulated import SimulatedTransport
from .state import StateStore
from .transport import CommandResult, CommandTransport

logger = structlog.get_logger(__name__)


@dataclass
class TelescopePose:
    right_ascension: float = 0.0
    declination: float = 0.0
    altitude: float = 0.0
    azimuth: float = 0.0
    target_name: str = ""


@dataclass
class ConnectionInfo:
    host: str = ""
    port: int = 8082
    token: str = ""
    state: ConnectionState = ConnectionState.DISCONNECTED
    last_error: Optional[str] = None
    generation: int = 0


_HOST_FORBIDDEN = frozenset(":/@?#[]")


def _validate_endpoint(host: Optional[str], port: Any) -> tuple[str, int]:
    cleaned = (host or "").strip()
    if not cleaned:
        raise InvalidArgumentError("host must not be empty")
    if any(char.isspace() or char in _HOST_FORBIDDEN for char in cleaned):
        raise InvalidArgumentError(f"host must be a bare hostname or address, got {cleaned!r}")
    if isinstance(port, bool) or not isinstance(port, int):
        raise InvalidArgumentError(f"port must be an integer, got {port!r}")
    if not 1 <= port <= 65535:
        raise InvalidArgumentError(f"port {port} outside 1-65535")
    return cleaned, port


def _require_finite(**values: float) -> None:
    for name, value in values.items():
        if not math.isfinite(value):
            raise InvalidArgumentError(f"{name} must be a finite number, got {value!r}")


def _validate_equatorial(ra: float, dec: float) -> None:
    _require_finite(ra=ra, dec=dec)
    if not 0.0 <= ra < 360.0:
        raise InvalidArgumentError(f"right ascension {ra} outside [0, 360)")
    if not -90.0 <= dec <= 90.0:
        raise InvalidArgumentError(f"declination {dec} outside [-90, 90]")


def _build_transport(settings: Settings) -> CommandTransport:
    if settings.force_simulation:
        return SimulatedTransport(
            connect_delay=settings.simulated_connect_delay_seconds,
            command_delay=settings.simulated_command_delay_seconds,
            command_timeout=settings.command_timeout_seconds,
        )
    scheme = "https" if settings.telescope_scheme == "https" else "http"
    return CommandTransport(
        timeout=settings.http_timeout_seconds,
        command_timeout=settings.command_timeout_seconds,
        retries=settings.http_retries,
        scheme=scheme,
    )


class TelescopeSession:
    """Owns one logical connection to a WiFi telescope controller.

    Every public operation returns immediately. Connection establishment and
    command outcomes arrive later as notifications on :attr:`events`; results
    belonging to an earlier connection generation are discarded.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        transport: CommandTransport | None = None,
        transform: HorizontalTransform | None = None,
        hub: NotificationHub | None = None,
        state_store: StateStore | None = None,
    ) -> None:
        self.settings = settings
        self.events = hub or NotificationHub()
        self._transport = transport or _build_transport(settings)
        self._transport.bind(self._handle_command_result, self._current_token)
        self._transform: HorizontalTransform = transform or SiteTransform(
            settings.site_latitude,
            settings.site_longitude,
        )
        self._state_store = state_store
        self._connection = ConnectionInfo(host=settings.telescope_host, port=settings.telescope_port)
        self._pose = TelescopePose()
        self._label = "Disconnected"
        self._connect_task: asyncio.Task[None] | None = None
        self._poll_task: asyncio.Task[None] | None = None

    # --- State -------------------------------------------------------------------

    @property
    def transport(self) -> CommandTransport:
        return self._transport

    @property
    def state(self) -> ConnectionState:
        return self._connection.state

    @property
    def is_connected(self) -> bool:
        return self._connection.state is ConnectionState.CONNECTED

    @property
    def host(self) -> str:
        return self._connection.host

    @property
    def port(self) -> int:
        return self._connection.port

    @property
    def token(self) -> str:
        return self._connection.token

    @property
    def last_error(self) -> Optional[str]:
        return self._connection.last_error

    @property
    def generation(self) -> int:
        return self._connection.generation

    @property
    def pose(self) -> TelescopePose:
        return replace(self._pose)

    @property
    def target_name(self) -> str:
        return self._pose.target_name

    @property
    def altitude(self) -> float:
        return self._pose.altitude

    @property
    def azimuth(self) -> float:
        return self._pose.azimuth

    @property
    def status(self) -> SessionStatus:
        return SessionStatus(
            label=self._label,
            state=self._connection.state,
            host=self._connection.host,
            port=self._connection.port,
            last_error=self._connection.last_error,
            generation=self._connection.generation,
        )

    def _current_token(self) -> str:
        return self._connection.token

    # --- Connection ----------------------------------------------------------------

    def connect(self, host: Optional[str] = None, port: Optional[int] = None) -> bool:
        target_host, target_port = _validate_endpoint(
            host if host is not None else self.settings.telescope_host,
            port if port is not None else self.settings.telescope_port,
        )
        connection = self._connection
        if connection.state is not ConnectionState.DISCONNECTED:
            logger.info(
                "scope.session.connect.ignored",
                state=connection.state.value,
                host=connection.host,
                port=connection.port,
            )
            return False

        loop = asyncio.get_running_loop()
        generation = connection.generation + 1
        self._transport.open(target_host, target_port, generation=generation)

        connection.generation = generation
        connection.host = target_host
        connection.port = target_port
        connection.token = ""
        connection.last_error = None
        connection.state = ConnectionState.CONNECTING
        logger.info(
            "scope.session.connect.started",
            host=target_host,
            port=target_port,
            generation=generation,
        )

        self._set_status("Connecting")
        self._connect_task = loop.create_task(self._establish(generation))
        return True

    async def _establish(self, generation: int) -> None:
        try:
            token = await self._transport.handshake()
        except ConnectionFailedError as exc:
            if self._is_current(generation, ConnectionState.CONNECTING):
                self._fail_connection(generation, str(exc))
            return
        except Exception as exc:  # pragma: no cover - unexpected transport failure
            if self._is_current(generation, ConnectionState.CONNECTING):
                self._fail_connection(generation, f"unexpected error: {exc}")
            return

        if not self._is_current(generation, ConnectionState.CONNECTING):
            logger.debug("scope.session.connect.stale", generation=generation)
            return

        connection = self._connection
        connection.token = token
        connection.state = ConnectionState.CONNECTED
        logger.info(
            "scope.session.connected",
            host=connection.host,
            port=connection.port,
            generation=generation,
        )
        if self._state_store is not None:
            self._record_connection(connection.host, connection.port)

        self.events.emit(ConnectionEstablished(connection.host, connection.port, generation))
        if not self._is_current(generation, ConnectionState.CONNECTED):
            logger.debug("scope.session.connect.superseded", generation=generation)
            return
        self._set_status("Ready")
        self._poll_task = asyncio.get_running_loop().create_task(self._poll_status(generation))

    def _fail_connection(self, generation: int, message: str) -> None:
        connection = self._connection
        connection.state = ConnectionState.DISCONNECTED
        connection.token = ""
        connection.last_error = message
        self._transport.close()
        logger.warning(
            "scope.session.connect.failed",
            host=connection.host,
            port=connection.port,
            generation=generation,
            error=message,
        )
        if self._state_store is not None:
            self._record_error(message)
        self.events.emit(ConnectionErrorOccurred(message, generation))
        self._set_status("Connection failed")

    def disconnect(self) -> bool:
        connection = self._connection
        self._cancel_tasks()
        if connection.state is ConnectionState.DISCONNECTED:
            return False

        previous = connection.state
        connection.state = ConnectionState.DISCONNECTED
        connection.token = ""
        self._transport.close()
        logger.info(
            "scope.session.disconnected",
            host=connection.host,
            previous_state=previous.value,
            generation=connection.generation,
        )
        self.events.emit(Disconnected(connection.generation))
        self._set_status("Disconnected")
        return True

    def _cancel_tasks(self) -> None:
        current = asyncio.current_task() if self._has_running_loop() else None
        for task in (self._connect_task, self._poll_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._connect_task = None
        self._poll_task = None

    @staticmethod
    def _has_running_loop() -> bool:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return False
        return True

    async def wait_connected(self, timeout: Optional[float] = None) -> bool:
        """Wait for a pending connect attempt to settle; True when connected."""
        task = self._connect_task
        if task is not None and not task.done():
            await asyncio.wait({task}, timeout=timeout)
        return self.is_connected

    async def shutdown(self) -> None:
        self.disconnect()
        await self._transport.aclose()

    def _record_connection(self, host: str, port: int) -> None:
        try:
            self._state_store.record_connection(host, port)
        except OSError as exc:
            logger.warning("scope.session.state_save_failed", error=str(exc))

    def _record_error(self, message: str) -> None:
        try:
            self._state_store.record_error(message)
        except OSError as exc:
            logger.warning("scope.session.state_save_failed", error=str(exc))

    # --- Status --------------------------------------------------------------------

    def _is_current(self, generation: int, state: ConnectionState) -> bool:
        return generation == self._connection.generation and self._connection.state is state

    def _set_status(self, label: str) -> None:
        self._label = label
        self.events.emit(StatusUpdated(self.status))

    def _emit_pose(self) -> None:
        pose = self._pose
        self.events.emit(
            PoseUpdated(
                right_ascension=pose.right_ascension,
                declination=pose.declination,
                altitude=pose.altitude,
                azimuth=pose.azimuth,
                target_name=pose.target_name,
                generation=self._connection.generation,
            )
        )

    async def _poll_status(self, generation: int) -> None:
        interval = max(self.settings.status_interval_seconds, 0.05)
        try:
            while True:
                await asyncio.sleep(interval)
                if not self._is_current(generation, ConnectionState.CONNECTED):
                    return
                self.events.emit(StatusUpdated(self.status))
                self._emit_pose()
        except asyncio.CancelledError:
            logger.debug("scope.session.poll.cancelled", generation=generation)
            raise

    # --- Commands ------------------------------------------------------------------

    def _require_connected(self, action: str) -> None:
        if not self.is_connected:
            logger.warning("scope.session.command.not_connected", action=action)
            raise NotConnectedError(action)

    def _submit(self, endpoint: str, payload: dict[str, Any], *, label: Optional[str] = None) -> bool:
        submitted = self._transport.send(endpoint, payload)
        if not submitted:
            reason = "not dispatched"
            self._connection.last_error = f"{endpoint}: {reason}"
            self.events.emit(CommandFailed(endpoint, reason, self._connection.generation))
            return False
        logger.info("scope.session.command.submitted", endpoint=endpoint, generation=self.generation)
        if label is not None:
            self._set_status(label)
        return True

    def _record_target(self, ra: float, dec: float, altitude: float, azimuth: float, name: str) -> None:
        self._pose = TelescopePose(
            right_ascension=ra,
            declination=dec,
            altitude=altitude,
            azimuth=azimuth,
            target_name=name,
        )

    def take_control(self) -> bool:
        self._require_connected("take control")
        return self._submit(commands.TAKE_CONTROL, {})

    def goto_coordinates(self, ra: float, dec: float, name: str = "") -> bool:
        self._require_connected("goto")
        _validate_equatorial(ra, dec)
        altitude, azimuth = self._transform.to_horizontal(ra, dec)
        logger.info(
            "scope.session.goto",
            ra=ra,
            dec=dec,
            altitude=altitude,
            azimuth=azimuth,
            target=name,
        )
        payload = commands.goto_payload(altitude, azimuth)
        if not self._submit(commands.GO_ABSOLUTE, payload):
            return False
        self._record_target(ra, dec, altitude, azimuth, name)
        self._set_status(f"Slewing to {name}" if name else "Slewing to target")
        self._emit_pose()
        return True

    def start_observation(
        self,
        ra: float,
        dec: float,
        name: str,
        exposure_seconds: Optional[float] = None,
        gain: Optional[float] = None,
    ) -> bool:
        self._require_connected("start observation")
        _validate_equatorial(ra, dec)
        exposure = self.settings.default_exposure_seconds if exposure_seconds is None else exposure_seconds
        gain_value = self.settings.default_gain if gain is None else gain
        _require_finite(exposure=exposure, gain=gain_value)
        if exposure <= 0:
            raise InvalidArgumentError(f"exposure must be positive, got {exposure}")
        if gain_value < 0:
            raise InvalidArgumentError(f"gain must not be negative, got {gain_value}")

        payload = commands.observation_payload(
            ra,
            dec,
            name,
            exposure_seconds=exposure,
            gain=gain_value,
        )
        if not self._submit(commands.START_OBSERVATION, payload):
            return False
        altitude, azimuth = self._transform.to_horizontal(ra, dec)
        self._record_target(ra, dec, altitude, azimuth, name)
        self._set_status(f"Observing {name}" if name else "Observing")
        self._emit_pose()
        return True

    def stop_observation(self) -> bool:
        self._require_connected("stop observation")
        return self._submit(commands.STOP_OBSERVATION, {}, label="Stopping observation")

    def park(self) -> bool:
        self._require_connected("park")
        return self._submit(commands.PARK, {}, label="Parking")

    def focus(self) -> bool:
        self._require_connected("focus")
        return self._submit(commands.ADJUST_FOCUS, {}, label="Focusing")

    def open_arm(self) -> bool:
        self._require_connected("open arm")
        return self._submit(commands.OPEN_FOR_MAINTENANCE, {}, label="Opening arm")

    def auto_initialize(
        self,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> bool:
        self._require_connected("auto-initialize")
        lat = self.settings.site_latitude if latitude is None else latitude
        lon = self.settings.site_longitude if longitude is None else longitude
        _require_finite(latitude=lat, longitude=lon)
        if not -90.0 <= lat <= 90.0:
            raise InvalidArgumentError(f"latitude {lat} outside [-90, 90]")
        if not -180.0 <= lon <= 180.0:
            raise InvalidArgumentError(f"longitude {lon} outside [-180, 180]")
        payload = commands.auto_init_payload(lat, lon, int(time.time() * 1000))
        return self._submit(commands.START_AUTO_INIT, payload, label="Auto-initializing")

    # --- Results -------------------------------------------------------------------

    def _handle_command_result(self, result: CommandResult) -> None:
        if not self._is_current(result.generation, ConnectionState.CONNECTED):
            logger.debug(
                "scope.session.result.discarded",
                endpoint=result.endpoint,
                result_generation=result.generation,
                generation=self._connection.generation,
                state=self._connection.state.value,
            )
            return
        if result.ok:
            return
        reason = result.reason or "unknown error"
        self._connection.last_error = f"{result.endpoint}: {reason}"
        self.events.emit(CommandFailed(result.endpoint, reason, result.generation))


_session: TelescopeSession | None = None
_session_settings: Settings | None = None
_session_store: StateStore | None = None


def configure_session(settings: Settings, *, state_store: StateStore | None = None) -> None:
    global _session, _session_settings, _session_store
    _session_settings = settings
    _session_store = state_store
    if _session is not None:
        _session.disconnect()
        _session = None


def get_session() -> TelescopeSession:
    global _session
    if _session is None:
        _session = TelescopeSession(_session_settings or Settings(), state_store=_session_store)
    return _session


async def shutdown_session() -> None:
    global _session
    if _session is None:
        return
    session, _session = _session, None
    await session.shutdown()
