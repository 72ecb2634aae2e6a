from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from . import commands
from .transport import CommandTransport

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class RecordedRequest:
    endpoint: str
    payload: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)


class SimulatedTransport(CommandTransport):
    """Command transport answered in-process after a short delay.

    Requests still go through ``httpx`` so headers, JSON encoding and result
    mapping are exercised exactly as they are against a real controller.
    """

    def __init__(
        self,
        *,
        connect_delay: float = 0.5,
        command_delay: float = 0.1,
        token: str = "simulated-token",
        command_timeout: float = 10.0,
        retries: int = 1,
    ) -> None:
        super().__init__(
            timeout=max(command_timeout, 1.0),
            command_timeout=command_timeout,
            retries=retries,
            http_transport=httpx.MockTransport(self._respond),
        )
        self.connect_delay = connect_delay
        self.command_delay = command_delay
        self.token = token
        self.unreachable = False
        self.failures: dict[str, int] = {}
        self.requests: list[RecordedRequest] = []

    @property
    def sent_commands(self) -> list[RecordedRequest]:
        return [request for request in self.requests if request.endpoint != commands.TAKE_CONTROL]

    def fail_endpoint(self, endpoint: str, status_code: int = 500) -> None:
        self.failures[endpoint] = status_code

    async def _respond(self, request: httpx.Request) -> httpx.Response:
        endpoint = request.url.path
        raw = request.content or b"{}"
        try:
            payload = json.loads(raw)
        except ValueError:
            payload = {}
        self.requests.append(
            RecordedRequest(
                endpoint=endpoint,
                payload=payload if isinstance(payload, dict) else {},
                headers=dict(request.headers),
            )
        )

        is_handshake = endpoint == commands.TAKE_CONTROL
        await asyncio.sleep(self.connect_delay if is_handshake else self.command_delay)

        if self.unreachable:
            raise httpx.ConnectError("simulated controller unreachable", request=request)

        status_code = self.failures.get(endpoint)
        if status_code:
            logger.debug("scope.simulated.failure", endpoint=endpoint, status_code=status_code)
            return httpx.Response(status_code, json={"code": status_code, "endpoint": endpoint})

        if is_handshake:
            return httpx.Response(200, json={"token": self.token})
        return httpx.Response(200, json={"code": 0})
