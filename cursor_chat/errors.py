from __future__ import annotations

from pathlib import Path


class CursorChatError(Exception):
    """Base class for every failure this package reports."""


class StoreNotFoundError(CursorChatError):
    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        super().__init__(f"cursor database not found at: {self.path}")


class StoreAccessError(CursorChatError):
    def __init__(self, message: str, path: Path | str | None = None) -> None:
        self.message = message
        self.path = Path(path) if path is not None else None
        if self.path is not None:
            super().__init__(f"database error ({self.path}): {message}")
        else:
            super().__init__(f"database error: {message}")


class RecordParseError(CursorChatError):
    def __init__(self, message: str, key: str | None = None) -> None:
        self.message = message
        self.key = key
        super().__init__(f"{key}: {message}" if key else message)


class LocalPersistenceError(CursorChatError):
    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"local storage error: {message}")


class RestoreItemError(CursorChatError):
    def __init__(self, composer_id: str, message: str) -> None:
        self.composer_id = composer_id
        self.message = message
        super().__init__(f"failed to restore {composer_id[:8]}: {message}")


class ConfigError(CursorChatError, ValueError):
    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)
