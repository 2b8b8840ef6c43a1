from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any


class BubbleType(enum.IntEnum):
    UNKNOWN = 0
    USER = 1
    ASSISTANT = 2

    @classmethod
    def from_code(cls, value: Any) -> BubbleType:
        if isinstance(value, bool):
            return cls.UNKNOWN
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            return cls.UNKNOWN

    def label(self) -> str:
        return self.name.capitalize()


@dataclass
class ThinkingBlock:
    text: str = ""
    signature: str | None = None


@dataclass
class TokenCount:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class Bubble:
    bubble_id: str
    bubble_type: BubbleType = BubbleType.UNKNOWN
    text: str = ""
    created_at: dt.datetime | None = None
    thinking: ThinkingBlock | None = None
    thinking_duration_ms: int | None = None
    token_count: TokenCount = field(default_factory=TokenCount)
    is_agentic: bool = False


@dataclass
class ModelConfig:
    model_name: str = ""
    max_mode: bool = False


def _bubble_sort_key(bubble: Bubble) -> tuple[int, dt.datetime]:
    # Undated bubbles sort first; sorted() is stable so discovery order breaks ties.
    if bubble.created_at is None:
        return (0, dt.datetime.min.replace(tzinfo=dt.UTC))
    return (1, bubble.created_at)


@dataclass
class Conversation:
    composer_id: str
    title: str = ""
    created_at: dt.datetime | None = None
    model_config: ModelConfig = field(default_factory=ModelConfig)
    unified_mode: str = ""
    bubbles: list[Bubble] = field(default_factory=list)

    TITLE_FALLBACK = "conversa"
    TITLE_MAX_CHARS = 50
    TITLE_MAX_WORDS = 8

    def sort_bubbles(self) -> None:
        self.bubbles = sorted(self.bubbles, key=_bubble_sort_key)

    def preview(self) -> str:
        if not self.bubbles:
            return "[Empty conversation]"
        return self.bubbles[0].text

    def generate_title(self) -> str:
        """Build a snake_case title from the first user message."""

        first_user = next(
            (b.text for b in self.bubbles if b.bubble_type == BubbleType.USER),
            self.TITLE_FALLBACK,
        )
        cleaned = "".join(
            ch for ch in first_user if ch.isalnum() or ch.isspace() or ch in {"-", "_"}
        )
        if len(cleaned) > self.TITLE_MAX_CHARS:
            cut = cleaned[: self.TITLE_MAX_CHARS]
            space = cut.rfind(" ")
            cleaned = cut[:space] if space >= 0 else cut
        words = cleaned.split()[: self.TITLE_MAX_WORDS]
        return "_".join(words).lower()

    def filename(self) -> str:
        return f"{self.composer_id[:8]}_{self.generate_title()}"

    def message_count(self) -> int:
        return len(self.bubbles)

    def user_message_count(self) -> int:
        return sum(1 for b in self.bubbles if b.bubble_type == BubbleType.USER)

    def assistant_message_count(self) -> int:
        return sum(1 for b in self.bubbles if b.bubble_type == BubbleType.ASSISTANT)


@dataclass
class WorkspaceInfo:
    name: str = "unknown"
    path: Path | None = None
    cursor_path: str | None = None

    @classmethod
    def from_uri(cls, uri: str) -> WorkspaceInfo:
        path = Path(uri[len("file://") :]) if uri.startswith("file://") else None
        name = PurePosixPath(str(path)).name if path is not None else ""
        return cls(name=name or "unknown", path=path)

    @classmethod
    def from_path(cls, path: Path | str, cursor_path: str | None = None) -> WorkspaceInfo:
        resolved = Path(path)
        return cls(name=resolved.name or "unknown", path=resolved, cursor_path=cursor_path)


@dataclass
class SyncState:
    last_sync: dt.datetime | None = None
    last_hash: str | None = None
    conversation_count: int = 0
    message_count: int = 0
    storage_bytes: int = 0
    is_syncing: bool = False
    last_error: str | None = None

    def with_sync_time(self) -> SyncState:
        self.last_sync = dt.datetime.now(dt.UTC)
        return self

    def syncing(self) -> SyncState:
        self.is_syncing = True
        return self

    def completed(self) -> SyncState:
        self.is_syncing = False
        self.last_error = None
        return self

    def with_error(self, error: str, *, still_syncing: bool = False) -> SyncState:
        self.last_error = error
        self.is_syncing = still_syncing
        return self


@dataclass
class ExtractionStats:
    conversation_count: int = 0
    total_bubbles: int = 0
    user_messages: int = 0
    assistant_messages: int = 0
    skipped_entries: int = 0


@dataclass
class RestoreResult:
    restored_conversations: int = 0
    restored_messages: int = 0
    failed_conversations: int = 0
    cursor_db_path: Path | None = None
