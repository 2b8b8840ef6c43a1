from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from pathlib import Path

from .config import CursorChatConfig
from .cursor_paths import global_db_path
from .errors import RestoreItemError, StoreNotFoundError
from .extractor import matches_any_filter
from .models import Conversation, RestoreResult
from .store import ChatStore
from .writer import CursorWriter

logger = logging.getLogger(__name__)


def should_restore(
    local_count: int,
    origin_count: int,
    *,
    factor: float = 2.0,
    min_local: int = 2,
) -> bool:
    """Reset heuristic: origin holds far fewer conversations than the local copy.

    With the default factor this means strictly less than half. ``min_local``
    keeps tiny stores (one local conversation against an empty origin) from
    counting as a reset.
    """

    if local_count < max(min_local, 1):
        return False
    return origin_count * factor < local_count


class RestoreService:
    def __init__(self, config: CursorChatConfig, *, store: ChatStore | None = None) -> None:
        self.config = config
        self._store = store

    def cursor_db_path(self) -> Path:
        return global_db_path(self.config)

    def _open_store(self) -> tuple[ChatStore, bool]:
        if self._store is not None:
            return self._store, False
        storage_path = self.config.storage_db_path()
        if not storage_path.exists():
            raise StoreNotFoundError(storage_path)
        return ChatStore(storage_path), True

    def needs_restore(self) -> bool:
        if self._store is None and not self.config.storage_db_path().exists():
            return False
        store, owned = self._open_store()
        try:
            local_count = store.get_conversation_count()
        finally:
            if owned:
                store.close()
        if local_count == 0:
            return False

        cursor_db = self.cursor_db_path()
        if not cursor_db.exists():
            logger.info("cursor database missing at %s; restore needed", cursor_db)
            return True
        with CursorWriter.open(cursor_db) as writer:
            origin_count = writer.conversation_count()

        needs = should_restore(
            local_count,
            origin_count,
            factor=self.config.restore_factor,
            min_local=self.config.restore_min_local,
        )
        if needs:
            logger.info(
                "cursor appears to have been reset (local=%d, cursor=%d)",
                local_count,
                origin_count,
            )
        return needs

    def cursor_is_empty(self) -> bool:
        cursor_db = self.cursor_db_path()
        if not cursor_db.exists():
            return True
        with CursorWriter.open(cursor_db) as writer:
            return writer.is_empty()

    def _restore(self, conversations: Iterable[Conversation]) -> RestoreResult:
        cursor_db = self.cursor_db_path()
        result = RestoreResult(cursor_db_path=cursor_db)
        logger.info("starting restore into %s", cursor_db)
        with CursorWriter.open(cursor_db) as writer:
            for conversation in conversations:
                try:
                    writer.restore_conversation(conversation)
                except RestoreItemError as exc:
                    result.failed_conversations += 1
                    logger.warning("failed to restore conversation: %s", exc)
                    continue
                result.restored_conversations += 1
                result.restored_messages += len(conversation.bubbles)
        logger.info(
            "restore completed: %d conversations, %d messages, %d failed",
            result.restored_conversations,
            result.restored_messages,
            result.failed_conversations,
        )
        return result

    def restore_all(self) -> RestoreResult:
        store, owned = self._open_store()
        try:
            conversations = store.get_conversations()
        finally:
            if owned:
                store.close()
        return self._restore(conversations)

    def restore_by_ids(self, ids: Sequence[str]) -> RestoreResult:
        store, owned = self._open_store()
        try:
            conversations = [
                c for c in store.get_conversations() if matches_any_filter(c.composer_id, ids)
            ]
        finally:
            if owned:
                store.close()
        return self._restore(conversations)

    def auto_restore_if_needed(self) -> RestoreResult | None:
        """Run a full restore when the origin looks reset; ``None`` otherwise."""

        if not self.needs_restore():
            return None
        logger.info("auto-restore triggered")
        return self.restore_all()
