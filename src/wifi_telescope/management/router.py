from __future__ import annotations

from fastapi import APIRouter

from ..api.utils import scope_response
from ..scope import commands

SERVER_DESCRIPTION = {
    "ServerName": "WiFi Telescope Bridge",
    "Manufacturer": "Astro Tools",
    "ManufacturerVersion": "0.1.0",
    "Location": "Observatory",
}

router = APIRouter()


@router.get("/health")
def healthcheck() -> dict[str, str]:
    """Basic health endpoint for monitoring and tests."""
    return {"status": "ok"}


@router.get("/v1/description")
def get_description():
    return scope_response(value=SERVER_DESCRIPTION)


@router.get("/v1/endpoints")
def get_controller_endpoints():
    endpoints = [
        commands.TAKE_CONTROL,
        commands.GO_ABSOLUTE,
        commands.START_OBSERVATION,
        commands.STOP_OBSERVATION,
        commands.PARK,
        commands.ADJUST_FOCUS,
        commands.OPEN_FOR_MAINTENANCE,
        commands.START_AUTO_INIT,
    ]
    return scope_response(value=endpoints)
