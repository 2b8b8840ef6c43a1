from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .errors import ConfigError

DEFAULT_CONFIG_PATH = Path("~/.config/cursor-chat/config.json").expanduser()
DEFAULT_DATA_DIR = Path("~/.cursor-chat-handler")

CONFIG_ENV_OVERRIDES = {
    "data_dir": "CURSOR_CHAT_DATA_DIR",
    "cursor_dir": "CURSOR_CHAT_CURSOR_DIR",
    "origin_db_path": "CURSOR_CHAT_ORIGIN_DB",
    "sync_enabled": "CURSOR_CHAT_SYNC_ENABLED",
    "sync_interval_s": "CURSOR_CHAT_SYNC_INTERVAL_S",
    "auto_restore": "CURSOR_CHAT_AUTO_RESTORE",
    "restore_factor": "CURSOR_CHAT_RESTORE_FACTOR",
    "restore_min_local": "CURSOR_CHAT_RESTORE_MIN_LOCAL",
    "max_storage_gb": "CURSOR_CHAT_MAX_STORAGE_GB",
    "include_empty": "CURSOR_CHAT_INCLUDE_EMPTY",
}

_INT_KEYS = {"sync_interval_s", "restore_min_local", "max_storage_gb"}
_FLOAT_KEYS = {"restore_factor"}
_BOOL_KEYS = {"sync_enabled", "auto_restore", "include_empty"}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("CURSOR_CHAT_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class CursorChatConfig:
    data_dir: str = str(DEFAULT_DATA_DIR)
    # Cursor's own config dir; discovered from the usual platform locations when unset.
    cursor_dir: str | None = None
    # Explicit global state.vscdb; wins over cursor_dir discovery.
    origin_db_path: str | None = None
    sync_enabled: bool = True
    sync_interval_s: int = 120
    auto_restore: bool = True
    # Restore when origin_count * restore_factor < local_count.
    restore_factor: float = 2.0
    restore_min_local: int = 2
    max_storage_gb: int = 10
    include_empty: bool = False

    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()

    def storage_db_path(self) -> Path:
        return self.data_path() / "storage.db"

    def daemon_log_path(self) -> Path:
        return self.data_path() / "sync-daemon.log"

    def max_storage_bytes(self) -> int:
        return int(self.max_storage_gb) * 1024 * 1024 * 1024


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    if value.lower() in {"1", "true", "yes", "on"}:
        return True
    if value.lower() in {"0", "false", "off", "no"}:
        return False
    return default


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _parse_float(value: object, default: float, *, key: str) -> float:
    if value is None:
        return default
    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    if parsed <= 0:
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    return parsed


def _coerce_bool(value: object, default: bool, *, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return _parse_bool(value, default)
    warnings.warn(f"Invalid bool for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return default


def load_config(path: Path | None = None) -> CursorChatConfig:
    """Defaults, then the JSON config file, then ``CURSOR_CHAT_*`` overrides."""

    cfg = CursorChatConfig()
    config_path = get_config_path(path)
    if config_path.exists():
        raw = config_path.read_text()
        if raw.strip():
            try:
                data = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise ConfigError(f"invalid config json in {config_path}: {exc}") from exc
            if not isinstance(data, dict):
                raise ConfigError(f"config must be an object: {config_path}")
            cfg = _apply_dict(cfg, data)
    cfg = _apply_env(cfg)
    return cfg


def _apply_value(cfg: CursorChatConfig, key: str, value: object) -> None:
    if key in _INT_KEYS:
        setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
    elif key in _FLOAT_KEYS:
        setattr(cfg, key, _parse_float(value, getattr(cfg, key), key=key))
    elif key in _BOOL_KEYS:
        setattr(cfg, key, _coerce_bool(value, getattr(cfg, key), key=key))
    elif key == "data_dir" and not value:
        return
    elif value is None or isinstance(value, str):
        setattr(cfg, key, value or None)
    else:
        warnings.warn(f"Invalid value for {key}: {value!r}", RuntimeWarning, stacklevel=2)


def _apply_dict(cfg: CursorChatConfig, data: dict[str, Any]) -> CursorChatConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        _apply_value(cfg, key, value)
    return cfg


def _apply_env(cfg: CursorChatConfig) -> CursorChatConfig:
    for key, value in get_env_overrides().items():
        _apply_value(cfg, key, value)
    return cfg
