from __future__ import annotations


class TelescopeError(RuntimeError):
    """Base class for telescope session failures."""


class NotConnectedError(TelescopeError):
    """Raised when a command is attempted without an active connection."""

    def __init__(self, action: str) -> None:
        super().__init__(f"Cannot {action}: not connected to telescope")
        self.action = action


class InvalidArgumentError(TelescopeError, ValueError):
    """Raised for out-of-range hosts, ports, coordinates or imaging parameters."""


class ConnectionFailedError(TelescopeError):
    """Raised when the controller handshake does not complete."""

    def __init__(self, host: str, port: int, reason: str) -> None:
        super().__init__(f"Connection to {host}:{port} failed: {reason}")
        self.host = host
        self.port = port
        self.reason = reason


class CommandSubmissionError(TelescopeError):
    """Raised when a command could not be dispatched at all."""

    def __init__(self, endpoint: str, reason: str) -> None:
        super().__init__(f"Command {endpoint} not dispatched: {reason}")
        self.endpoint = endpoint
        self.reason = reason


__all__ = [
    "TelescopeError",
    "NotConnectedError",
    "InvalidArgumentError",
    "ConnectionFailedError",
    "CommandSubmissionError",
]
