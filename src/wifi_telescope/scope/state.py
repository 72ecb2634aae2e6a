from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional


@dataclass
class ConnectionMemory:
    last_host: Optional[str] = None
    last_port: Optional[int] = None
    last_error: Optional[str] = None


@dataclass
class StateStore:
    path: Path
    state: ConnectionMemory = field(default_factory=ConnectionMemory)

    def load(self) -> ConnectionMemory:
        if not self.path.exists():
            return self.state

        try:
            with self.path.open("r", encoding="utf-8") as stream:
                data = json.load(stream)
        except json.JSONDecodeError:
            return self.state

        if not isinstance(data, dict):
            return self.state

        raw_host = data.get("last_host")
        host = raw_host.strip() if isinstance(raw_host, str) else ""

        raw_port = data.get("last_port")
        port: Optional[int] = None
        if isinstance(raw_port, int) and not isinstance(raw_port, bool) and 1 <= raw_port <= 65535:
            port = raw_port

        raw_error = data.get("last_error")

        self.state = ConnectionMemory(
            last_host=host or None,
            last_port=port,
            last_error=raw_error if isinstance(raw_error, str) else None,
        )
        return self.state

    def save(self, state: ConnectionMemory) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8") as stream:
            json.dump(asdict(state), stream, indent=2)
        self.state = state

    def record_connection(self, host: str, port: int) -> ConnectionMemory:
        self.state.last_host = host
        self.state.last_port = port
        self.state.last_error = None
        self.save(self.state)
        return self.state

    def record_error(self, message: str) -> ConnectionMemory:
        self.state.last_error = message
        self.save(self.state)
        return self.state


def create_state_store(directory: Path) -> StateStore:
    store = StateStore(path=Path(directory) / "connection.json")
    store.load()
    return store
