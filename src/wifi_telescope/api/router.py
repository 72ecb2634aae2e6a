from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict
from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Request

from ..scope.errors import CommandSubmissionError, InvalidArgumentError, NotConnectedError
from ..scope.session import TelescopeSession, get_session
from .utils import resolve_parameter, scope_response

logger = structlog.get_logger(__name__)

router = APIRouter()


def _status_value(session: TelescopeSession) -> dict[str, Any]:
    value = session.status.as_dict()
    value["connected"] = session.is_connected
    value["pose"] = asdict(session.pose)
    value["in_flight"] = session.transport.in_flight
    return value


def _invoke(endpoint: str, action: Callable[[], bool]) -> dict[str, Any]:
    try:
        submitted = action()
    except NotConnectedError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except InvalidArgumentError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not submitted:
        error = CommandSubmissionError(endpoint, "transport refused the command")
        logger.warning("api.scope.command.not_submitted", endpoint=endpoint)
        raise HTTPException(status_code=503, detail=str(error))
    return scope_response(value=True)


@router.get("/status")
async def get_status():
    return scope_response(value=_status_value(get_session()))


@router.post("/connect")
async def post_connect(request: Request):
    session = get_session()
    host = await resolve_parameter(request, "host", str, required=False)
    port = await resolve_parameter(request, "port", int, required=False)
    wait = await resolve_parameter(request, "wait", bool, required=False, default=False)
    timeout = await resolve_parameter(request, "timeout", float, required=False, default=None)

    try:
        started = session.connect(host, port)
    except InvalidArgumentError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if started and wait:
        await session.wait_connected(timeout=timeout)

    value = _status_value(session)
    value["started"] = started
    if wait and started and not session.is_connected:
        return scope_response(
            value=value,
            error_number=1,
            error_message=session.last_error or "connection not established",
        )
    return scope_response(value=value)


@router.post("/disconnect")
async def post_disconnect():
    session = get_session()
    changed = session.disconnect()
    value = _status_value(session)
    value["changed"] = changed
    return scope_response(value=value)


@router.post("/goto")
async def post_goto(request: Request):
    session = get_session()
    ra = await resolve_parameter(request, "ra", float)
    dec = await resolve_parameter(request, "dec", float)
    name = await resolve_parameter(request, "name", str, required=False, default="")
    return _invoke("goto", lambda: session.goto_coordinates(ra, dec, name))


@router.post("/observation/start")
async def post_start_observation(request: Request):
    session = get_session()
    ra = await resolve_parameter(request, "ra", float)
    dec = await resolve_parameter(request, "dec", float)
    name = await resolve_parameter(request, "name", str)
    exposure = await resolve_parameter(request, "exposure", float, required=False)
    gain = await resolve_parameter(request, "gain", float, required=False)
    return _invoke(
        "observation/start",
        lambda: session.start_observation(ra, dec, name, exposure_seconds=exposure, gain=gain),
    )


@router.post("/observation/stop")
async def post_stop_observation():
    session = get_session()
    return _invoke("observation/stop", session.stop_observation)


@router.post("/park")
async def post_park():
    session = get_session()
    return _invoke("park", session.park)


@router.post("/focus")
async def post_focus():
    session = get_session()
    return _invoke("focus", session.focus)


@router.post("/openarm")
async def post_open_arm():
    session = get_session()
    return _invoke("openarm", session.open_arm)


@router.post("/takecontrol")
async def post_take_control():
    session = get_session()
    return _invoke("takecontrol", session.take_control)


@router.post("/autoinit")
async def post_auto_init(request: Request):
    session = get_session()
    latitude = await resolve_parameter(request, "latitude", float, required=False)
    longitude = await resolve_parameter(request, "longitude", float, required=False)
    return _invoke("autoinit", lambda: session.auto_initialize(latitude, longitude))
