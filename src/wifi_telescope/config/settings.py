from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration for the WiFi telescope bridge."""

    model_config = SettingsConfigDict(env_prefix="WIFI_TELESCOPE_", env_file=".env", extra="allow")

    http_host: str = "127.0.0.1"
    http_port: int = 11112

    state_directory: Path = Path("var")

    telescope_host: str = "10.0.0.1"
    telescope_port: int = 8082
    telescope_scheme: str = "http"

    http_timeout_seconds: float = 5.0
    http_retries: int = 3
    command_timeout_seconds: float = 10.0
    status_interval_seconds: float = 2.0

    default_exposure_seconds: float = 30.0
    default_gain: float = 20.0

    site_latitude: float = 0.0
    site_longitude: float = 0.0

    force_simulation: bool = False
    simulated_connect_delay_seconds: float = 0.5
    simulated_command_delay_seconds: float = 0.1


def load_settings(config_path: Optional[str]) -> Settings:
    """Load settings optionally layering a YAML profile file."""
    settings = Settings()
    if config_path:
        from .yaml_loader import load_yaml_settings

        return load_yaml_settings(settings, config_path)
    return settings
