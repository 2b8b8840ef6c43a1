from __future__ import annotations

import logging
from pathlib import Path

from .config import CursorChatConfig
from .errors import StoreNotFoundError

logger = logging.getLogger(__name__)

# Relative to the home directory, checked in order.
CURSOR_CONFIG_PATHS = (
    ".config/Cursor",
    "Library/Application Support/Cursor",
    ".cursor",
)
GLOBAL_STORAGE_PATH = Path("User/globalStorage")
WORKSPACE_STORAGE_PATH = Path("User/workspaceStorage")
STATE_DB_NAME = "state.vscdb"


def find_cursor_config_dir(config: CursorChatConfig) -> Path:
    if config.cursor_dir:
        configured = Path(config.cursor_dir).expanduser()
        if configured.is_dir():
            return configured
        raise StoreNotFoundError(configured)
    home = Path.home()
    for candidate in CURSOR_CONFIG_PATHS:
        full_path = home / candidate
        if full_path.is_dir():
            logger.debug("found cursor config at %s", full_path)
            return full_path
    raise StoreNotFoundError(home / CURSOR_CONFIG_PATHS[0])


def global_db_path(config: CursorChatConfig) -> Path:
    """Expected location of the global state database; it may not exist."""

    if config.origin_db_path:
        return Path(config.origin_db_path).expanduser()
    return find_cursor_config_dir(config) / GLOBAL_STORAGE_PATH / STATE_DB_NAME


def find_global_db(config: CursorChatConfig) -> Path:
    path = global_db_path(config)
    if not path.is_file():
        raise StoreNotFoundError(path)
    return path


def find_state_databases(config: CursorChatConfig) -> list[Path]:
    if config.origin_db_path:
        return [find_global_db(config)]

    databases: list[Path] = []
    config_dir = find_cursor_config_dir(config)
    global_db = config_dir / GLOBAL_STORAGE_PATH / STATE_DB_NAME
    if global_db.is_file():
        databases.append(global_db)
    workspace_dir = config_dir / WORKSPACE_STORAGE_PATH
    if workspace_dir.is_dir():
        try:
            entries = sorted(workspace_dir.iterdir())
        except OSError as exc:
            logger.warning("failed to read workspace storage %s: %s", workspace_dir, exc)
            entries = []
        for entry in entries:
            db_path = entry / STATE_DB_NAME
            if db_path.is_file():
                databases.append(db_path)
    if not databases:
        raise StoreNotFoundError(global_db)
    return databases
