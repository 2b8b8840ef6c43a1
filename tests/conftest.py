from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any

import pytest

from cursor_chat.config import CONFIG_ENV_OVERRIDES, CursorChatConfig


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CURSOR_CHAT_CONFIG", str(tmp_path / "config.json"))
    for env_var in CONFIG_ENV_OVERRIDES.values():
        monkeypatch.delenv(env_var, raising=False)


class OriginDb:
    """Fake Cursor ``state.vscdb`` with a ``cursorDiskKV`` table."""

    def __init__(self, path: Path) -> None:
        self.path = path
        conn = sqlite3.connect(path)
        conn.execute("CREATE TABLE IF NOT EXISTS cursorDiskKV (key TEXT PRIMARY KEY, value BLOB)")
        conn.commit()
        conn.close()

    def put_raw(self, key: str, value: bytes | str) -> None:
        conn = sqlite3.connect(self.path)
        conn.execute("INSERT OR REPLACE INTO cursorDiskKV (key, value) VALUES (?, ?)", (key, value))
        conn.commit()
        conn.close()

    def add_composer(self, composer_id: str, **fields: Any) -> None:
        payload = {"_v": 10, "composerId": composer_id}
        payload.update(fields)
        self.put_raw(f"composerData:{composer_id}", json.dumps(payload).encode("utf-8"))

    def add_bubble(
        self, composer_id: str, bubble_id: str, text: str, bubble_type: int = 1, **fields: Any
    ) -> None:
        payload = {"_v": 10, "bubbleId": bubble_id, "type": bubble_type, "text": text}
        payload.update(fields)
        self.put_raw(
            f"bubbleId:{composer_id}:{bubble_id}", json.dumps(payload).encode("utf-8")
        )

    def delete_prefix(self, prefix: str) -> None:
        conn = sqlite3.connect(self.path)
        conn.execute("DELETE FROM cursorDiskKV WHERE substr(key, 1, ?) = ?", (len(prefix), prefix))
        conn.commit()
        conn.close()

    def get(self, key: str) -> bytes | None:
        conn = sqlite3.connect(self.path)
        row = conn.execute("SELECT value FROM cursorDiskKV WHERE key = ?", (key,)).fetchone()
        conn.close()
        return row[0] if row else None


@pytest.fixture
def origin_db(tmp_path: Path) -> OriginDb:
    path = tmp_path / "cursor" / "User" / "globalStorage" / "state.vscdb"
    path.parent.mkdir(parents=True)
    return OriginDb(path)


@pytest.fixture
def config(tmp_path: Path, origin_db: OriginDb) -> CursorChatConfig:
    return CursorChatConfig(
        data_dir=str(tmp_path / "data"),
        origin_db_path=str(origin_db.path),
    )
