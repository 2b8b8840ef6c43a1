from __future__ import annotations

import sqlite3
from pathlib import Path

SCHEMA_VERSION = 1


def connect(db_path: Path | str, check_same_thread: bool = True) -> sqlite3.Connection:
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=check_same_thread)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        conn.execute("PRAGMA journal_mode = WAL")
    except sqlite3.OperationalError:
        conn.execute("PRAGMA journal_mode = DELETE")
    conn.execute("PRAGMA synchronous = NORMAL")
    return conn


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS workspaces (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            path TEXT UNIQUE,
            cursor_path TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS conversations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            composer_id TEXT UNIQUE NOT NULL,
            workspace_id INTEGER REFERENCES workspaces(id),
            title TEXT NOT NULL DEFAULT '',
            model_name TEXT NOT NULL DEFAULT '',
            max_mode INTEGER NOT NULL DEFAULT 0,
            unified_mode TEXT NOT NULL DEFAULT '',
            created_at TEXT,
            updated_at TEXT NOT NULL DEFAULT (datetime('now')),
            content_hash TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_conversations_workspace ON conversations(workspace_id);
        CREATE INDEX IF NOT EXISTS idx_conversations_created ON conversations(created_at DESC);

        CREATE TABLE IF NOT EXISTS bubbles (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            bubble_id TEXT NOT NULL,
            conversation_id INTEGER NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
            bubble_type INTEGER NOT NULL,
            text TEXT NOT NULL DEFAULT '',
            created_at TEXT,
            thinking_text TEXT,
            thinking_signature TEXT,
            thinking_duration_ms INTEGER,
            input_tokens INTEGER NOT NULL DEFAULT 0,
            output_tokens INTEGER NOT NULL DEFAULT 0,
            is_agentic INTEGER NOT NULL DEFAULT 0,
            UNIQUE (conversation_id, bubble_id)
        );
        CREATE INDEX IF NOT EXISTS idx_bubbles_created ON bubbles(created_at);

        CREATE TABLE IF NOT EXISTS sync_state (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            last_sync TEXT,
            last_hash TEXT,
            conversation_count INTEGER NOT NULL DEFAULT 0,
            message_count INTEGER NOT NULL DEFAULT 0,
            storage_bytes INTEGER NOT NULL DEFAULT 0,
            is_syncing INTEGER NOT NULL DEFAULT 0,
            last_error TEXT
        );
        INSERT OR IGNORE INTO sync_state (id) VALUES (1);
        """
    )
    conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
    conn.commit()
