from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal, Optional

import httpx
import structlog

from . import commands
from .errors import ConnectionFailedError, InvalidArgumentError

logger = structlog.get_logger(__name__)

_TOKEN_KEYS = ("token", "authToken", "accessToken", "access_token")


@dataclass(slots=True)
class Command:
    endpoint: str
    payload: dict[str, Any]
    generation: int
    issued_at: float = field(default_factory=time.time)


@dataclass(slots=True)
class CommandResult:
    command: Command
    ok: bool
    status_code: Optional[int] = None
    reason: Optional[str] = None
    body: Any = None

    @property
    def endpoint(self) -> str:
        return self.command.endpoint

    @property
    def generation(self) -> int:
        return self.command.generation


ResultHandler = Callable[[CommandResult], None]
TokenProvider = Callable[[], str]


def extract_token(response: httpx.Response) -> str:
    """Pull the auth token out of a takeControl response.

    Accepts a JSON object carrying one of the known token keys (top level or
    under ``data``), a bare JSON string, or a plain text body.
    """
    text = response.text.strip()
    if not text:
        return ""
    try:
        body = response.json()
    except ValueError:
        return text

    if isinstance(body, str):
        return body.strip()
    if isinstance(body, dict):
        for container in (body, body.get("data")):
            if not isinstance(container, dict):
                continue
            for key in _TOKEN_KEYS:
                value = container.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()
    return ""


class CommandTransport:
    """Fire-and-forget JSON command delivery to the telescope controller.

    ``send`` only schedules the POST; the outcome is handed to the bound
    result handler once the request settles. The transport holds no
    telescope state of its own and reads the auth token through the bound
    provider every time it builds a request.
    """

    def __init__(
        self,
        *,
        timeout: float = 5.0,
        command_timeout: float = 10.0,
        retries: int = 3,
        scheme: Literal["http", "https"] = "http",
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self.command_timeout = command_timeout
        self.retries = max(1, retries)
        self.scheme = scheme
        self._http_transport = http_transport
        self.host = ""
        self.port = 0
        self._generation = 0
        self._client: httpx.AsyncClient | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._closing: set[asyncio.Task[None]] = set()
        self._on_result: ResultHandler | None = None
        self._token_provider: TokenProvider | None = None

    def bind(self, on_result: ResultHandler, token_provider: TokenProvider) -> None:
        self._on_result = on_result
        self._token_provider = token_provider

    @property
    def active(self) -> bool:
        return self._client is not None

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def open(self, host: str, port: int, *, generation: int) -> None:
        base_url = f"{self.scheme}://{host}:{port}"
        try:
            client = self._create_client(base_url)
        except httpx.InvalidURL as exc:
            raise InvalidArgumentError(f"invalid controller address {host}:{port}: {exc}") from exc
        if self._client is not None:
            self.close()
        self.host = host
        self.port = port
        self._generation = generation
        self._client = client
        logger.debug("scope.transport.opened", base_url=self.base_url, generation=generation)

    def _create_client(self, base_url: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=base_url,
            timeout=self.timeout,
            transport=self._http_transport,
        )

    def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

        client, self._client = self._client, None
        if client is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("scope.transport.close_without_loop", base_url=self.base_url)
            return
        closing = loop.create_task(client.aclose())
        self._closing.add(closing)
        closing.add_done_callback(self._closing.discard)
        logger.debug("scope.transport.closed", base_url=self.base_url, generation=self._generation)

    async def aclose(self) -> None:
        self.close()
        if self._closing:
            await asyncio.gather(*list(self._closing), return_exceptions=True)

    async def drain(self) -> None:
        """Wait for every in-flight command to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def build_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self._token_provider() if self._token_provider else ""
        if token:
            headers["Authorization"] = token
        return headers

    async def handshake(self) -> str:
        """Take control of the controller and return the issued auth token."""
        if self._client is None:
            raise ConnectionFailedError(self.host, self.port, "transport not open")

        attempt = 0
        last_error = "no attempt made"
        while attempt < self.retries:
            try:
                response = await self._post_raw(commands.TAKE_CONTROL, {})
                response.raise_for_status()
            except (httpx.RequestError, httpx.HTTPStatusError) as exc:
                attempt += 1
                last_error = _describe_http_error(exc)
                logger.warning(
                    "scope.transport.handshake.retry",
                    base_url=self.base_url,
                    attempt=attempt,
                    error=last_error,
                )
                if attempt < self.retries:
                    await asyncio.sleep(0.5 * attempt)
                continue

            token = extract_token(response)
            if not token:
                raise ConnectionFailedError(self.host, self.port, "controller returned no auth token")
            return token

        raise ConnectionFailedError(self.host, self.port, last_error)

    def send(self, endpoint: str, payload: dict[str, Any]) -> bool:
        if self._client is None:
            logger.warning("scope.transport.send.inactive", endpoint=endpoint)
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("scope.transport.send.no_loop", endpoint=endpoint)
            return False

        command = Command(endpoint=endpoint, payload=dict(payload), generation=self._generation)
        task = loop.create_task(self._deliver(command))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug(
            "scope.transport.send.scheduled",
            endpoint=endpoint,
            generation=command.generation,
        )
        return True

    async def _deliver(self, command: Command) -> None:
        try:
            result = await asyncio.wait_for(self._execute(command), timeout=self.command_timeout)
        except asyncio.TimeoutError:
            result = CommandResult(command, ok=False, reason="timeout")
        self._report(result)

    async def _execute(self, command: Command) -> CommandResult:
        try:
            response = await self._post_raw(command.endpoint, command.payload)
        except httpx.ConnectError as exc:
            return CommandResult(command, ok=False, reason=f"connection refused: {exc}")
        except httpx.TimeoutException:
            return CommandResult(command, ok=False, reason="timeout")
        except httpx.RequestError as exc:
            return CommandResult(command, ok=False, reason=f"network error: {exc}")

        if not response.is_success:
            return CommandResult(
                command,
                ok=False,
                status_code=response.status_code,
                reason=f"HTTP {response.status_code}",
            )

        body: Any = None
        if response.content.strip():
            try:
                body = response.json()
            except ValueError:
                return CommandResult(
                    command,
                    ok=False,
                    status_code=response.status_code,
                    reason="malformed response",
                )
        return CommandResult(command, ok=True, status_code=response.status_code, body=body)

    async def _post_raw(self, endpoint: str, payload: dict[str, Any]) -> httpx.Response:
        client = self._client
        if client is None:
            raise httpx.ConnectError("transport closed")
        return await client.post(endpoint, json=payload, headers=self.build_headers())

    def _report(self, result: CommandResult) -> None:
        if result.ok:
            logger.info(
                "scope.transport.command.completed",
                endpoint=result.endpoint,
                status_code=result.status_code,
                generation=result.generation,
            )
        else:
            logger.warning(
                "scope.transport.command.failed",
                endpoint=result.endpoint,
                reason=result.reason,
                status_code=result.status_code,
                generation=result.generation,
            )
        handler = self._on_result
        if handler is None:
            return
        try:
            handler(result)
        except Exception as exc:  # pragma: no cover - handler bugs must not kill the task
            logger.error("scope.transport.result_handler_failed", endpoint=result.endpoint, error=str(exc))


def _describe_http_error(exc: Exception) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP {exc.response.status_code}"
    if isinstance(exc, httpx.ConnectError):
        return f"connection refused: {exc}"
    if isinstance(exc, httpx.TimeoutException):
        return "timeout"
    return str(exc)


__all__ = [
    "Command",
    "CommandResult",
    "CommandTransport",
    "extract_token",
]
