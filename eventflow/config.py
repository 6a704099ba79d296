"""Global configuration for EventFlow."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

ENV_PREFIX = "EVENTFLOW_"

DEFAULTS: dict[str, Any] = {
    "app_host": "0.0.0.0",
    "app_port": 8000,
    "enable_scheduler": True,
    "notifications_enabled": True,
    "events_per_page": 20,
    "admin_list_limit": 100,
    "seed_users": 8,
    "seed_events_per_user": 2,
    "seed_guests_per_event": 4,
    "seed_reports": 5,
}

TYPE_CASTERS: dict[str, Callable[[Any], Any]] = {
    "app_host": str,
    "app_port": int,
    "enable_scheduler": bool,
    "notifications_enabled": bool,
    "events_per_page": int,
    "admin_list_limit": int,
    "seed_users": int,
    "seed_events_per_user": int,
    "seed_guests_per_event": int,
    "seed_reports": int,
}


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    data_dir: Path
    database_path: Path
    app_host: str
    app_port: int
    enable_scheduler: bool
    notifications_enabled: bool
    events_per_page: int
    admin_list_limit: int
    seed_users: int
    seed_events_per_user: int
    seed_guests_per_event: int
    seed_reports: int
    config_path: Path

    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.database_path}"


def _boolify(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"Cannot parse boolean value from {value!r}")


def _cast_value(key: str, value: Any) -> Any:
    if key not in TYPE_CASTERS:
        return value
    caster = TYPE_CASTERS[key]
    if caster is bool:
        return _boolify(value)
    return caster(value)


def _load_toml_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {}
    with config_path.open("rb") as handle:
        return tomllib.load(handle)


def _config_layered_value(key: str, *, toml_config: dict[str, Any]) -> Any:
    """Resolve ``key`` from the environment, then TOML, then defaults."""
    env_key = f"{ENV_PREFIX}{key.upper()}"
    if env_key in os.environ:
        return _cast_value(key, os.environ[env_key])
    if key in toml_config:
        return _cast_value(key, toml_config[key])
    return DEFAULTS[key]


def _resolve_paths(
    *,
    base_dir: Path,
    data_dir: str | Path | None,
    database_path: str | Path | None,
) -> tuple[Path, Path, Path]:
    resolved_base = Path(base_dir)
    resolved_data = Path(data_dir) if data_dir else resolved_base / "data"
    if not resolved_data.is_absolute():
        resolved_data = resolved_base / resolved_data
    resolved_db = (
        Path(database_path) if database_path else resolved_data / "eventflow.db"
    )
    if not resolved_db.is_absolute():
        resolved_db = resolved_base / resolved_db
    return resolved_base, resolved_data, resolved_db


def load_settings(config_override: Path | None = None) -> Settings:
    base_dir = Path(os.getenv(f"{ENV_PREFIX}BASE_DIR", Path.cwd()))
    env_config = os.getenv(f"{ENV_PREFIX}CONFIG")
    config_path = Path(config_override or env_config or base_dir / "eventflow.toml")
    toml_config = _load_toml_config(config_path)

    base_dir_value, data_dir_value, database_path_value = _resolve_paths(
        base_dir=base_dir,
        data_dir=os.getenv(f"{ENV_PREFIX}DATA_DIR", toml_config.get("data_dir")),
        database_path=os.getenv(f"{ENV_PREFIX}DB", toml_config.get("database_path")),
    )

    layered = {
        key: _config_layered_value(key, toml_config=toml_config) for key in DEFAULTS
    }
    settings = Settings(
        base_dir=base_dir_value,
        data_dir=data_dir_value,
        database_path=database_path_value,
        config_path=config_path,
        **layered,
    )
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    return settings


def settings_as_dict(settings: Settings) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "base_dir": str(settings.base_dir),
        "data_dir": str(settings.data_dir),
        "database_path": str(settings.database_path),
    }
    for key in DEFAULTS:
        payload[key] = getattr(settings, key)
    return payload


def _toml_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def write_config_file(config: dict[str, Any], *, path: Path) -> None:
    lines = ["# EventFlow configuration\n"]
    for key in sorted(config.keys()):
        lines.append(f"{key} = {_toml_literal(config[key])}\n")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(lines), encoding="utf-8")


def update_config_file(updates: dict[str, Any], *, path: Path | None = None) -> Settings:
    """Merge ``updates`` into the TOML file and reload module settings.

    Unknown keys are ignored so stale CLI flags cannot corrupt the file.
    """
    current_settings = settings if "settings" in globals() else load_settings()
    target_path = path or current_settings.config_path
    merged = {**_load_toml_config(target_path)}
    for key, value in updates.items():
        if key not in DEFAULTS:
            continue
        merged[key] = _cast_value(key, value)
    write_config_file(merged, path=target_path)
    new_settings = load_settings(target_path)
    globals()["settings"] = new_settings
    return new_settings


settings = load_settings()
