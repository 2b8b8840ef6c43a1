from __future__ import annotations

import datetime as dt
import logging
import sqlite3
from pathlib import Path
from typing import Any

from . import db
from .errors import LocalPersistenceError
from .models import (
    Bubble,
    BubbleType,
    Conversation,
    ModelConfig,
    SyncState,
    ThinkingBlock,
    TokenCount,
    WorkspaceInfo,
)
from .parser import parse_timestamp

logger = logging.getLogger(__name__)


def _iso(value: dt.datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.UTC)
    # Fixed width keeps lexical ORDER BY consistent with chronological order.
    return value.astimezone(dt.UTC).isoformat(timespec="microseconds")


class ChatStore:
    """Local SQLite copy of Cursor conversations.

    Conversations are keyed by ``composer_id`` and bubbles by their owning
    conversation plus ``bubble_id``; every write is an idempotent upsert so a
    sync can be repeated safely.
    """

    def __init__(
        self,
        db_path: Path | str,
        *,
        check_same_thread: bool = True,
    ):
        self.db_path = Path(db_path).expanduser()
        try:
            self.conn = db.connect(self.db_path, check_same_thread=check_same_thread)
            db.initialize_schema(self.conn)
        except sqlite3.Error as exc:
            raise LocalPersistenceError(f"cannot open {self.db_path}: {exc}") from exc

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> ChatStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def get_or_create_workspace(self, info: WorkspaceInfo, *, commit: bool = True) -> int:
        path_text = str(info.path) if info.path is not None else None
        try:
            if path_text is not None:
                row = self.conn.execute(
                    "SELECT id FROM workspaces WHERE path = ?", (path_text,)
                ).fetchone()
            else:
                row = self.conn.execute(
                    """
                    SELECT id FROM workspaces
                    WHERE path IS NULL AND name = ? AND cursor_path IS ?
                    ORDER BY id LIMIT 1
                    """,
                    (info.name, info.cursor_path),
                ).fetchone()
            if row is not None:
                return int(row["id"])
            cur = self.conn.execute(
                "INSERT INTO workspaces (name, path, cursor_path) VALUES (?, ?, ?)",
                (info.name, path_text, info.cursor_path),
            )
            if commit:
                self.conn.commit()
        except sqlite3.Error as exc:
            raise LocalPersistenceError(f"workspace {info.name}: {exc}") from exc
        return int(cur.lastrowid or 0)

    def upsert_conversation(
        self,
        conversation: Conversation,
        workspace_id: int | None = None,
        content_hash: str | None = None,
        *,
        commit: bool = True,
    ) -> int:
        try:
            self.conn.execute(
                """
                INSERT INTO conversations
                    (composer_id, workspace_id, title, model_name, max_mode,
                     unified_mode, created_at, content_hash)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(composer_id) DO UPDATE SET
                    workspace_id = COALESCE(excluded.workspace_id, conversations.workspace_id),
                    title = excluded.title,
                    model_name = excluded.model_name,
                    max_mode = excluded.max_mode,
                    unified_mode = excluded.unified_mode,
                    created_at = excluded.created_at,
                    updated_at = datetime('now'),
                    content_hash = excluded.content_hash
                """,
                (
                    conversation.composer_id,
                    workspace_id,
                    conversation.title,
                    conversation.model_config.model_name,
                    int(conversation.model_config.max_mode),
                    conversation.unified_mode,
                    _iso(conversation.created_at),
                    content_hash,
                ),
            )
            row = self.conn.execute(
                "SELECT id FROM conversations WHERE composer_id = ?",
                (conversation.composer_id,),
            ).fetchone()
            if commit:
                self.conn.commit()
        except sqlite3.Error as exc:
            raise LocalPersistenceError(f"conversation {conversation.composer_id}: {exc}") from exc
        return int(row["id"])

    def upsert_bubble(self, bubble: Bubble, conversation_id: int, *, commit: bool = True) -> None:
        thinking = bubble.thinking
        try:
            self.conn.execute(
                """
                INSERT INTO bubbles
                    (bubble_id, conversation_id, bubble_type, text, created_at,
                     thinking_text, thinking_signature, thinking_duration_ms,
                     input_tokens, output_tokens, is_agentic)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(conversation_id, bubble_id) DO UPDATE SET
                    bubble_type = excluded.bubble_type,
                    text = excluded.text,
                    created_at = excluded.created_at,
                    thinking_text = excluded.thinking_text,
                    thinking_signature = excluded.thinking_signature,
                    thinking_duration_ms = excluded.thinking_duration_ms,
                    input_tokens = excluded.input_tokens,
                    output_tokens = excluded.output_tokens,
                    is_agentic = excluded.is_agentic
                """,
                (
                    bubble.bubble_id,
                    conversation_id,
                    int(bubble.bubble_type),
                    bubble.text,
                    _iso(bubble.created_at),
                    thinking.text if thinking is not None else None,
                    thinking.signature if thinking is not None else None,
                    bubble.thinking_duration_ms,
                    int(bubble.token_count.input_tokens),
                    int(bubble.token_count.output_tokens),
                    int(bubble.is_agentic),
                ),
            )
            if commit:
                self.conn.commit()
        except sqlite3.Error as exc:
            raise LocalPersistenceError(f"bubble {bubble.bubble_id}: {exc}") from exc

    def save_conversation(
        self,
        conversation: Conversation,
        *,
        workspace: WorkspaceInfo | None = None,
        content_hash: str | None = None,
    ) -> int:
        """Upsert a conversation and all of its bubbles as one transaction."""

        try:
            workspace_id = (
                self.get_or_create_workspace(workspace, commit=False)
                if workspace is not None
                else None
            )
            conversation_id = self.upsert_conversation(
                conversation, workspace_id, content_hash, commit=False
            )
            for bubble in conversation.bubbles:
                self.upsert_bubble(bubble, conversation_id, commit=False)
            self.conn.commit()
        except LocalPersistenceError:
            self.conn.rollback()
            raise
        except sqlite3.Error as exc:
            self.conn.rollback()
            raise LocalPersistenceError(f"conversation {conversation.composer_id}: {exc}") from exc
        return conversation_id

    def delete_conversation(self, composer_id: str) -> bool:
        try:
            cur = self.conn.execute(
                "DELETE FROM conversations WHERE composer_id = ?", (composer_id,)
            )
            self.conn.commit()
        except sqlite3.Error as exc:
            raise LocalPersistenceError(f"conversation {composer_id}: {exc}") from exc
        return cur.rowcount > 0

    @staticmethod
    def _row_to_conversation(row: sqlite3.Row) -> Conversation:
        return Conversation(
            composer_id=row["composer_id"],
            title=row["title"] or "",
            created_at=parse_timestamp(row["created_at"]),
            model_config=ModelConfig(
                model_name=row["model_name"] or "",
                max_mode=bool(row["max_mode"]),
            ),
            unified_mode=row["unified_mode"] or "",
        )

    @staticmethod
    def _row_to_bubble(row: sqlite3.Row) -> Bubble:
        thinking = None
        if row["thinking_text"] is not None:
            thinking = ThinkingBlock(
                text=row["thinking_text"], signature=row["thinking_signature"]
            )
        return Bubble(
            bubble_id=row["bubble_id"],
            bubble_type=BubbleType.from_code(row["bubble_type"]),
            text=row["text"] or "",
            created_at=parse_timestamp(row["created_at"]),
            thinking=thinking,
            thinking_duration_ms=row["thinking_duration_ms"],
            token_count=TokenCount(
                input_tokens=int(row["input_tokens"] or 0),
                output_tokens=int(row["output_tokens"] or 0),
            ),
            is_agentic=bool(row["is_agentic"]),
        )

    def _fetchone(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Row | None:
        try:
            return self.conn.execute(sql, params).fetchone()
        except sqlite3.Error as exc:
            raise LocalPersistenceError(f"query failed: {exc}") from exc

    def _fetchall(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        try:
            return self.conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise LocalPersistenceError(f"query failed: {exc}") from exc

    def _bubbles_for_row(self, conversation_row_id: int) -> list[Bubble]:
        rows = self._fetchall(
            """
            SELECT bubble_id, bubble_type, text, created_at,
                   thinking_text, thinking_signature, thinking_duration_ms,
                   input_tokens, output_tokens, is_agentic
            FROM bubbles
            WHERE conversation_id = ?
            ORDER BY created_at ASC, id ASC
            """,
            (conversation_row_id,),
        )
        return [self._row_to_bubble(row) for row in rows]

    def get_bubbles(self, composer_id: str) -> list[Bubble]:
        row = self._fetchone("SELECT id FROM conversations WHERE composer_id = ?", (composer_id,))
        if row is None:
            return []
        return self._bubbles_for_row(int(row["id"]))

    def get_conversations(self, workspace_name: str | None = None) -> list[Conversation]:
        columns = (
            "c.id, c.composer_id, c.title, c.model_name, c.max_mode, c.unified_mode, c.created_at"
        )
        if workspace_name is not None:
            rows = self._fetchall(
                f"""
                SELECT {columns}
                FROM conversations c
                JOIN workspaces w ON c.workspace_id = w.id
                WHERE w.name = ?
                ORDER BY c.created_at DESC, c.id ASC
                """,
                (workspace_name,),
            )
        else:
            rows = self._fetchall(
                f"""
                SELECT {columns}
                FROM conversations c
                ORDER BY c.created_at DESC, c.id ASC
                """
            )
        conversations: list[Conversation] = []
        for row in rows:
            conversation = self._row_to_conversation(row)
            conversation.bubbles = self._bubbles_for_row(int(row["id"]))
            conversations.append(conversation)
        return conversations

    def get_conversation(self, composer_id: str) -> Conversation | None:
        """Look up by full id, falling back to a unique id prefix."""

        row = self._fetchone("SELECT * FROM conversations WHERE composer_id = ?", (composer_id,))
        if row is None:
            like = composer_id.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            rows = self._fetchall(
                "SELECT * FROM conversations WHERE composer_id LIKE ? ESCAPE '\\' LIMIT 2",
                (f"{like}%",),
            )
            if len(rows) != 1:
                return None
            row = rows[0]
        conversation = self._row_to_conversation(row)
        conversation.bubbles = self._bubbles_for_row(int(row["id"]))
        return conversation

    def get_conversation_hash(self, composer_id: str) -> str | None:
        row = self._fetchone(
            "SELECT content_hash FROM conversations WHERE composer_id = ?", (composer_id,)
        )
        if row is None:
            return None
        return row["content_hash"]

    def get_workspaces(self) -> list[WorkspaceInfo]:
        rows = self._fetchall("SELECT name, path, cursor_path FROM workspaces ORDER BY name, id")
        return [
            WorkspaceInfo(
                name=row["name"],
                path=Path(row["path"]) if row["path"] is not None else None,
                cursor_path=row["cursor_path"],
            )
            for row in rows
        ]

    def get_conversation_count(self) -> int:
        row = self._fetchone("SELECT COUNT(*) AS n FROM conversations")
        return int(row["n"] or 0) if row is not None else 0

    def get_message_count(self) -> int:
        row = self._fetchone("SELECT COUNT(*) AS n FROM bubbles")
        return int(row["n"] or 0) if row is not None else 0

    def get_storage_size(self) -> int:
        total = 0
        for suffix in ("", "-wal"):
            path = Path(f"{self.db_path}{suffix}")
            try:
                total += path.stat().st_size
            except FileNotFoundError:
                continue
        return total

    def get_sync_state(self) -> SyncState:
        row = self._fetchone(
            """
            SELECT last_sync, last_hash, conversation_count, message_count,
                   storage_bytes, is_syncing, last_error
            FROM sync_state WHERE id = 1
            """
        )
        if row is None:
            return SyncState()
        return SyncState(
            last_sync=parse_timestamp(row["last_sync"]),
            last_hash=row["last_hash"],
            conversation_count=int(row["conversation_count"] or 0),
            message_count=int(row["message_count"] or 0),
            storage_bytes=int(row["storage_bytes"] or 0),
            is_syncing=bool(row["is_syncing"]),
            last_error=row["last_error"],
        )

    def update_sync_state(self, state: SyncState) -> None:
        try:
            self.conn.execute(
                """
                INSERT INTO sync_state(id, last_sync, last_hash, conversation_count,
                    message_count, storage_bytes, is_syncing, last_error)
                VALUES (1, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    last_sync = excluded.last_sync,
                    last_hash = excluded.last_hash,
                    conversation_count = excluded.conversation_count,
                    message_count = excluded.message_count,
                    storage_bytes = excluded.storage_bytes,
                    is_syncing = excluded.is_syncing,
                    last_error = excluded.last_error
                """,
                (
                    _iso(state.last_sync),
                    state.last_hash,
                    int(state.conversation_count),
                    int(state.message_count),
                    int(state.storage_bytes),
                    int(state.is_syncing),
                    state.last_error,
                ),
            )
            self.conn.commit()
        except sqlite3.Error as exc:
            raise LocalPersistenceError(f"sync state: {exc}") from exc

    def stats(self) -> dict[str, Any]:
        return {
            "conversations": self.get_conversation_count(),
            "messages": self.get_message_count(),
            "workspaces": len(self.get_workspaces()),
            "storage_bytes": self.get_storage_size(),
        }
