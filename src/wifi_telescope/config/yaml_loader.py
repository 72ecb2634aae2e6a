from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .settings import Settings


def _read_profile(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as stream:
        data = yaml.safe_load(stream)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file must contain a mapping: {path}")

    # profiles may spell keys the way the CLI flags do
    profile = {str(key).strip().replace("-", "_"): value for key, value in data.items()}
    unknown = sorted(set(profile) - set(Settings.model_fields))
    if unknown:
        raise ValueError(f"Unknown settings in {path}: {', '.join(unknown)}")
    return profile


def load_yaml_settings(base_settings: Settings, config_path: str | Path) -> Settings:
    """Layer a YAML profile over settings already resolved from the environment.

    Only fields set explicitly on ``base_settings`` are carried over, so the
    profile wins over defaults and the result still reports which fields
    were chosen by the user.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    merged = base_settings.model_dump(exclude_unset=True)
    merged.update(_read_profile(path))
    try:
        return Settings(**merged)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(part) for part in error["loc"]) for error in exc.errors())
        raise ValueError(f"Invalid settings in {path}: {fields}") from exc
