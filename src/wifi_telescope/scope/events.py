from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

import structlog

logger = structlog.get_logger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True, slots=True)
class SessionStatus:
    label: str
    state: ConnectionState
    host: str = ""
    port: int = 0
    last_error: Optional[str] = None
    generation: int = 0

    def as_dict(self) -> dict[str, object]:
        return {
            "label": self.label,
            "state": self.state.value,
            "host": self.host,
            "port": self.port,
            "last_error": self.last_error,
            "generation": self.generation,
        }


@dataclass(frozen=True, slots=True)
class ConnectionEstablished:
    host: str
    port: int
    generation: int


@dataclass(frozen=True, slots=True)
class Disconnected:
    generation: int


@dataclass(frozen=True, slots=True)
class ConnectionErrorOccurred:
    message: str
    generation: int


@dataclass(frozen=True, slots=True)
class StatusUpdated:
    status: SessionStatus

    @property
    def label(self) -> str:
        return self.status.label

    @property
    def generation(self) -> int:
        return self.status.generation


@dataclass(frozen=True, slots=True)
class PoseUpdated:
    right_ascension: float
    declination: float
    altitude: float
    azimuth: float
    target_name: str
    generation: int


@dataclass(frozen=True, slots=True)
class CommandFailed:
    endpoint: str
    reason: str
    generation: int


Notification = Union[
    ConnectionEstablished,
    Disconnected,
    ConnectionErrorOccurred,
    StatusUpdated,
    PoseUpdated,
    CommandFailed,
]
NotificationHandler = Callable[[Notification], object]


class NotificationHub:
    """Fan-out of session notifications to subscribers, in emission order.

    Handlers run synchronously inside :meth:`emit`. A handler that returns an
    awaitable has it scheduled on the running loop; tasks are created in
    emission order, so causal order is preserved for coroutine handlers too.
    """

    def __init__(self) -> None:
        self._handlers: list[NotificationHandler] = []
        self._pending: set[asyncio.Task[object]] = set()

    def subscribe(self, handler: NotificationHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._handlers.remove(handler)

        return _unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    def emit(self, notification: Notification) -> None:
        for handler in list(self._handlers):
            try:
                result = handler(notification)
            except Exception as exc:
                logger.warning(
                    "scope.events.handler_failed",
                    notification=type(notification).__name__,
                    error=str(exc),
                )
                continue
            if asyncio.iscoroutine(result):
                self._schedule(result, notification)

    def _schedule(self, coro, notification: Notification) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            logger.warning(
                "scope.events.no_loop",
                notification=type(notification).__name__,
            )
            return
        self._pending.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[object]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("scope.events.async_handler_failed", error=str(exc))

    @contextlib.contextmanager
    def listen(self) -> Iterator[asyncio.Queue[Notification]]:
        """Collect notifications into a queue for the duration of the block."""
        queue: asyncio.Queue[Notification] = asyncio.Queue()
        unsubscribe = self.subscribe(queue.put_nowait)
        try:
            yield queue
        finally:
            unsubscribe()


__all__ = [
    "ConnectionState",
    "SessionStatus",
    "ConnectionEstablished",
    "Disconnected",
    "ConnectionErrorOccurred",
    "StatusUpdated",
    "PoseUpdated",
    "CommandFailed",
    "Notification",
    "NotificationHub",
]
