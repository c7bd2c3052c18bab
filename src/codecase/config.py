"""Load engine settings from an optional YAML file."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

CONFIG_ENV_VAR = "CODECASE_CONFIG"
DEFAULT_DATA_DIR = Path(".codecase")
DEFAULT_CONFIG_PATH = DEFAULT_DATA_DIR / "config.yaml"


@dataclass(frozen=True)
class Settings:
    """Resolved runtime settings."""

    data_dir: Path = DEFAULT_DATA_DIR
    quiescence_ms: int = 1000
    html_balance_tolerance: int = 2
    store_timeout_seconds: float = 5.0
    starting_points: int = 0
    log_level: str = "WARNING"

    @property
    def db_path(self) -> Path:
        """SQLite database location inside the data directory."""
        return self.data_dir / "profiles.db"

    @property
    def quiescence_seconds(self) -> float:
        return self.quiescence_ms / 1000.0


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML mapping from disk."""
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config file must contain a mapping at root: {path}")
    return raw


def _coerce_setting(key: str, value: Any) -> Any:
    """Validate and convert one raw YAML value."""
    if key == "data_dir":
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"Config key '{key}' must be a non-empty string.")
        return Path(value)
    if key in {"quiescence_ms", "html_balance_tolerance", "starting_points"}:
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValueError(f"Config key '{key}' must be a non-negative integer.")
        return value
    if key == "store_timeout_seconds":
        if isinstance(value, bool) or not isinstance(value, int | float) or value <= 0:
            raise ValueError(f"Config key '{key}' must be a positive number.")
        return float(value)
    if key == "log_level":
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"Config key '{key}' must be a logging level name.")
        return value.strip().upper()
    raise ValueError(f"Unknown config key '{key}'.")


def settings_from_mapping(raw: dict[str, Any], base: Settings | None = None) -> Settings:
    """Build settings from a raw mapping, rejecting unknown keys."""
    known = {item.name for item in fields(Settings)}
    updates: dict[str, Any] = {}
    for key, value in raw.items():
        name = str(key)
        if name not in known:
            raise ValueError(f"Unknown config key '{name}'.")
        updates[name] = _coerce_setting(name, value)
    return replace(base or Settings(), **updates)


def resolve_config_path(explicit: Path | str | None = None) -> Path | None:
    """Pick the config file: explicit path, then env var, then the default location."""
    if explicit:
        return Path(explicit)
    from_env = os.environ.get(CONFIG_ENV_VAR, "").strip()
    if from_env:
        return Path(from_env)
    if DEFAULT_CONFIG_PATH.exists():
        return DEFAULT_CONFIG_PATH
    return None


def load_settings(path: Path | str | None = None) -> Settings:
    """Return settings from the resolved config file, or defaults when there is none."""
    config_path = resolve_config_path(path)
    if config_path is None:
        return Settings()
    return settings_from_mapping(_load_yaml(config_path))
