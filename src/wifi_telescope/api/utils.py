from __future__ import annotations

from itertools import count
from threading import Lock
from typing import Any, TypeVar

from fastapi import HTTPException, Request

T = TypeVar("T")

_server_transaction_counter = count(1)
_transaction_lock = Lock()
_UINT32_MAX = 4294967295


def scope_response(
    value: Any = None,
    *,
    error_number: int = 0,
    error_message: str = "",
) -> dict[str, Any]:
    """Wrap a value in the control API response envelope."""
    payload: dict[str, Any] = {
        "ServerTransactionID": _next_server_transaction_id(),
        "ErrorNumber": error_number,
        "ErrorMessage": error_message,
    }
    if value is not None:
        payload["Value"] = value
    return payload


def _next_server_transaction_id() -> int:
    global _server_transaction_counter
    with _transaction_lock:
        current = next(_server_transaction_counter)
        if current > _UINT32_MAX:
            _server_transaction_counter = count(1)
            current = next(_server_transaction_counter)
    return current


def _cast(value: Any, expected_type: type[T]) -> T:
    if isinstance(value, bool) and expected_type is not bool:
        raise ValueError("boolean given for a non-boolean parameter")
    if isinstance(value, expected_type):
        return value
    if expected_type is bool:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in {"true", "1", "yes", "on"}:
                return True  # type: ignore[return-value]
            if lowered in {"false", "0", "no", "off"}:
                return False  # type: ignore[return-value]
        return expected_type(value)  # type: ignore[arg-type]
    if expected_type is float and isinstance(value, str):
        return float(value.replace(",", "."))  # type: ignore[return-value]
    return expected_type(value)  # type: ignore[arg-type]


async def _read_body(request: Request) -> dict[str, Any]:
    content_type = request.headers.get("content-type", "").lower()
    if "application/json" in content_type:
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Malformed JSON body") from None
        return body if isinstance(body, dict) else {}

    if "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
        form = await request.form()
        return dict(form)
    return {}


async def resolve_parameter(
    request: Request,
    name: str,
    expected_type: type[T],
    *,
    required: bool = True,
    default: Any = None,
) -> Any:
    """Look a parameter up in the query string, then in a JSON or form body."""
    raw: Any = request.query_params.get(name)
    if raw is None:
        body = await _read_body(request)
        raw = body.get(name)

    if raw is None:
        if required:
            raise HTTPException(status_code=400, detail=f"{name} parameter required")
        return default

    try:
        return _cast(raw, expected_type)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid value for parameter {name}") from exc
