from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path

from .errors import StoreAccessError, StoreNotFoundError

logger = logging.getLogger(__name__)

KV_TABLE = "cursorDiskKV"
BUBBLE_PREFIX = "bubbleId:"
COMPOSER_PREFIX = "composerData:"


@dataclass
class KvEntry:
    key: str
    value: bytes


def _escape_like(prefix: str) -> str:
    return prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _as_bytes(value: object) -> bytes:
    if value is None:
        return b""
    if isinstance(value, bytes):
        return value
    if isinstance(value, memoryview):
        return value.tobytes()
    return str(value).encode("utf-8")


class KvReader:
    """Read-only view over a Cursor ``state.vscdb`` key-value table."""

    def __init__(self, conn: sqlite3.Connection, path: Path) -> None:
        self.conn = conn
        self.path = path

    @classmethod
    def open(cls, path: Path | str) -> KvReader:
        db_path = Path(path).expanduser()
        if not db_path.is_file():
            raise StoreNotFoundError(db_path)
        try:
            conn = sqlite3.connect(f"{db_path.resolve().as_uri()}?mode=ro", uri=True)
            conn.execute("PRAGMA query_only = ON")
            conn.execute("PRAGMA temp_store = MEMORY")
        except sqlite3.Error as exc:
            raise StoreAccessError(str(exc), db_path) from exc
        return cls(conn, db_path)

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> KvReader:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def fetch_composers(self) -> list[KvEntry]:
        return self.fetch_by_prefix(COMPOSER_PREFIX)

    def fetch_bubbles(self) -> list[KvEntry]:
        return self.fetch_by_prefix(BUBBLE_PREFIX)

    def count_composers(self) -> int:
        try:
            row = self.conn.execute(
                f"SELECT COUNT(*) FROM {KV_TABLE} WHERE key LIKE ? ESCAPE '\\'",
                (f"{_escape_like(COMPOSER_PREFIX)}%",),
            ).fetchone()
        except sqlite3.Error as exc:
            raise StoreAccessError(str(exc), self.path) from exc
        return int(row[0] or 0)

    def fetch_by_prefix(self, prefix: str) -> list[KvEntry]:
        try:
            cursor = self.conn.execute(
                f"SELECT key, value FROM {KV_TABLE} WHERE key LIKE ? ESCAPE '\\'",
                (f"{_escape_like(prefix)}%",),
            )
        except sqlite3.Error as exc:
            raise StoreAccessError(str(exc), self.path) from exc
        entries: list[KvEntry] = []
        while True:
            try:
                row = cursor.fetchone()
            except sqlite3.Error as exc:
                raise StoreAccessError(str(exc), self.path) from exc
            if row is None:
                break
            key, value = row
            if not isinstance(key, str):
                logger.warning("skipping non-text key under prefix %s", prefix)
                continue
            entries.append(KvEntry(key=key, value=_as_bytes(value)))
        logger.debug("fetched %d entries with prefix %r", len(entries), prefix)
        return entries
