from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from .config import CursorChatConfig
from .cursor_paths import find_global_db
from .errors import LocalPersistenceError, StoreAccessError, StoreNotFoundError
from .extractor import ExtractOptions, extract_from_path
from .fingerprint import fingerprint
from .models import Conversation, ExtractionStats, SyncState, WorkspaceInfo
from .store import ChatStore

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    synced_conversations: int = 0
    skipped_conversations: int = 0
    synced_messages: int = 0
    duration_s: float = 0.0
    extraction: ExtractionStats = field(default_factory=ExtractionStats)
    state: SyncState = field(default_factory=SyncState)


@dataclass
class StorageInfo:
    current_bytes: int
    max_bytes: int
    usage_percent: float
    conversation_count: int
    message_count: int


class SyncService:
    """One-way sync from Cursor's global database into the local store."""

    def __init__(self, config: CursorChatConfig, *, store: ChatStore | None = None) -> None:
        self.config = config
        self._owns_store = store is None
        self.store = store or ChatStore(config.storage_db_path())

    def close(self) -> None:
        if self._owns_store:
            self.store.close()

    def __enter__(self) -> SyncService:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _record_failure(self, error: Exception, *, still_syncing: bool) -> None:
        state = self.store.get_sync_state().with_error(str(error), still_syncing=still_syncing)
        self.store.update_sync_state(state)

    def sync(self) -> SyncReport:
        """Run one sync cycle.

        Origin lookup or read failures clear the syncing flag and record the
        error. Local write failures leave ``is_syncing`` set so the interrupted
        cycle is visible until the next cycle finishes.
        """

        logger.info("starting sync")
        state = self.store.get_sync_state()
        if state.is_syncing:
            logger.warning(
                "previous sync did not finish cleanly: %s", state.last_error or "interrupted"
            )
        self.store.update_sync_state(state.syncing())

        try:
            report = self._run_cycle()
        except (StoreNotFoundError, StoreAccessError) as exc:
            logger.error("sync failed: %s", exc)
            self._record_failure(exc, still_syncing=False)
            raise
        except LocalPersistenceError as exc:
            logger.error("sync aborted by local storage failure: %s", exc)
            try:
                self._record_failure(exc, still_syncing=True)
            except LocalPersistenceError:
                logger.exception("could not record sync failure")
            raise
        return report

    def _run_cycle(self) -> SyncReport:
        started = time.monotonic()
        origin = find_global_db(self.config)
        extraction = extract_from_path(
            origin, ExtractOptions(include_empty=self.config.include_empty)
        )
        report = SyncReport(extraction=extraction.stats)
        for conversation in extraction.conversations:
            workspace = extraction.workspaces.get(conversation.composer_id)
            if self._sync_conversation(conversation, workspace):
                report.synced_conversations += 1
                report.synced_messages += len(conversation.bubbles)
            else:
                report.skipped_conversations += 1
        report.duration_s = time.monotonic() - started

        state = SyncState(
            conversation_count=self.store.get_conversation_count(),
            message_count=self.store.get_message_count(),
            storage_bytes=self.store.get_storage_size(),
        )
        state.with_sync_time().completed()
        self.store.update_sync_state(state)
        report.state = state
        logger.info(
            "sync completed: %d synced, %d unchanged, %d messages in %.0f ms",
            report.synced_conversations,
            report.skipped_conversations,
            report.synced_messages,
            report.duration_s * 1000,
        )
        return report

    def _sync_conversation(
        self, conversation: Conversation, workspace: WorkspaceInfo | None
    ) -> bool:
        content_hash = fingerprint(conversation)
        if self.store.get_conversation_hash(conversation.composer_id) == content_hash:
            logger.debug("skipping unchanged conversation %s", conversation.composer_id[:8])
            return False
        self.store.save_conversation(conversation, workspace=workspace, content_hash=content_hash)
        return True

    def get_state(self) -> SyncState:
        return self.store.get_sync_state()

    def get_conversations(self, workspace: str | None = None) -> list[Conversation]:
        return self.store.get_conversations(workspace)

    def get_workspaces(self) -> list[WorkspaceInfo]:
        return self.store.get_workspaces()

    def check_storage_limits(self) -> bool:
        return self.store.get_storage_size() < self.config.max_storage_bytes()

    def get_storage_info(self) -> StorageInfo:
        current = self.store.get_storage_size()
        maximum = self.config.max_storage_bytes()
        return StorageInfo(
            current_bytes=current,
            max_bytes=maximum,
            usage_percent=(current / maximum * 100.0) if maximum else 0.0,
            conversation_count=self.store.get_conversation_count(),
            message_count=self.store.get_message_count(),
        )
