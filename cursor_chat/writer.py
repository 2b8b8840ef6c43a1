from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any

from .errors import RestoreItemError, StoreAccessError
from .kv_reader import BUBBLE_PREFIX, COMPOSER_PREFIX, KV_TABLE
from .models import Bubble, Conversation
from .parser import to_millis

logger = logging.getLogger(__name__)

SCHEMA_VERSION_MARKER = 10
# Cursor waits on its own locks; keep ours short enough not to stall it.
BUSY_TIMEOUT_S = 5.0

# Structural placeholders Cursor expects on every composer, even when empty.
COMPOSER_CONTEXT_KEYS = (
    "composers",
    "quotes",
    "selectedCommits",
    "selectedPullRequests",
    "selectedImages",
    "folderSelections",
    "fileSelections",
    "selections",
    "terminalSelections",
    "selectedDocs",
    "externalLinks",
    "cursorRules",
    "cursorCommands",
    "uiElementSelections",
    "consoleLogs",
)


def composer_key(composer_id: str) -> str:
    return f"{COMPOSER_PREFIX}{composer_id}"


def bubble_key(composer_id: str, bubble_id: str) -> str:
    return f"{BUBBLE_PREFIX}{composer_id}:{bubble_id}"


def composer_payload(conversation: Conversation) -> dict[str, Any]:
    created_at = conversation.created_at
    return {
        "_v": SCHEMA_VERSION_MARKER,
        "composerId": conversation.composer_id,
        "createdAt": to_millis(created_at) if created_at is not None else None,
        "modelConfig": {
            "modelName": conversation.model_config.model_name,
            "maxMode": conversation.model_config.max_mode,
        },
        "unifiedMode": conversation.unified_mode,
        "richText": "",
        "text": "",
        "hasLoaded": True,
        "status": "none",
        "context": {key: [] for key in COMPOSER_CONTEXT_KEYS},
    }


def bubble_payload(bubble: Bubble) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "_v": SCHEMA_VERSION_MARKER,
        "bubbleId": bubble.bubble_id,
        "type": int(bubble.bubble_type),
        "text": bubble.text,
        "createdAt": bubble.created_at.isoformat() if bubble.created_at is not None else None,
        "isAgentic": bubble.is_agentic,
        "tokenCount": {
            "inputTokens": bubble.token_count.input_tokens,
            "outputTokens": bubble.token_count.output_tokens,
        },
    }
    if bubble.thinking is not None:
        payload["thinking"] = {
            "text": bubble.thinking.text,
            "signature": bubble.thinking.signature,
        }
    if bubble.thinking_duration_ms is not None:
        payload["thinkingDurationMs"] = bubble.thinking_duration_ms
    return payload


def serialize_composer(conversation: Conversation) -> bytes:
    return json.dumps(composer_payload(conversation), ensure_ascii=False).encode("utf-8")


def serialize_bubble(bubble: Bubble) -> bytes:
    return json.dumps(bubble_payload(bubble), ensure_ascii=False).encode("utf-8")


class CursorWriter:
    """Writes conversations back into Cursor's ``cursorDiskKV`` table."""

    def __init__(self, conn: sqlite3.Connection, path: Path) -> None:
        self.conn = conn
        self.path = path

    @classmethod
    def open(cls, path: Path | str) -> CursorWriter:
        db_path = Path(path).expanduser()
        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(db_path, timeout=BUSY_TIMEOUT_S)
            conn.execute(
                f"CREATE TABLE IF NOT EXISTS {KV_TABLE} (key TEXT PRIMARY KEY, value BLOB)"
            )
            conn.commit()
        except (OSError, sqlite3.Error) as exc:
            raise StoreAccessError(str(exc), db_path) from exc
        return cls(conn, db_path)

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> CursorWriter:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def restore_conversation(self, conversation: Conversation) -> None:
        rows = [(composer_key(conversation.composer_id), serialize_composer(conversation))]
        rows.extend(
            (bubble_key(conversation.composer_id, bubble.bubble_id), serialize_bubble(bubble))
            for bubble in conversation.bubbles
        )
        try:
            with self.conn:
                self.conn.executemany(
                    f"INSERT OR REPLACE INTO {KV_TABLE} (key, value) VALUES (?, ?)", rows
                )
        except sqlite3.Error as exc:
            raise RestoreItemError(conversation.composer_id, str(exc)) from exc
        logger.debug(
            "restored conversation %s (%d bubbles)",
            conversation.composer_id[:8],
            len(conversation.bubbles),
        )

    def conversation_count(self) -> int:
        try:
            row = self.conn.execute(
                f"SELECT COUNT(*) FROM {KV_TABLE} WHERE substr(key, 1, ?) = ?",
                (len(COMPOSER_PREFIX), COMPOSER_PREFIX),
            ).fetchone()
        except sqlite3.Error as exc:
            raise StoreAccessError(str(exc), self.path) from exc
        return int(row[0] or 0)

    def is_empty(self) -> bool:
        return self.conversation_count() == 0
