from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from cursor_chat.config import CursorChatConfig
from cursor_chat.errors import LocalPersistenceError, StoreNotFoundError
from cursor_chat.store import ChatStore
from cursor_chat.sync import SyncService

if TYPE_CHECKING:
    from conftest import OriginDb


def _seed(origin_db: OriginDb, count: int = 3) -> None:
    for index in range(count):
        composer_id = f"conv-{index}"
        origin_db.add_composer(composer_id, createdAt=1700000000000 + index)
        origin_db.add_bubble(composer_id, "b1", f"question {index}", bubble_type=1)
        origin_db.add_bubble(composer_id, "b2", f"answer {index}", bubble_type=2)


def test_sync_copies_conversations(config: CursorChatConfig, origin_db: OriginDb) -> None:
    _seed(origin_db)
    origin_db.add_bubble("conv-0", "b3", "", bubble_type=2)

    with SyncService(config) as service:
        report = service.sync()
        state = service.get_state()
        conversations = service.get_conversations()

    assert report.synced_conversations == 3
    assert report.skipped_conversations == 0
    assert report.synced_messages == 6
    assert state.conversation_count == 3
    assert state.message_count == 6
    assert state.storage_bytes > 0
    assert state.last_sync is not None
    assert state.is_syncing is False
    assert state.last_error is None
    assert [c.composer_id for c in conversations] == ["conv-2", "conv-1", "conv-0"]


def test_second_sync_skips_unchanged(config: CursorChatConfig, origin_db: OriginDb) -> None:
    _seed(origin_db)
    with SyncService(config) as service:
        service.sync()
        report = service.sync()

    assert report.synced_conversations == 0
    assert report.skipped_conversations == 3
    assert report.state.conversation_count == 3


def test_changed_conversation_resyncs(config: CursorChatConfig, origin_db: OriginDb) -> None:
    _seed(origin_db)
    with SyncService(config) as service:
        service.sync()
        origin_db.add_bubble("conv-1", "b3", "one more thing", bubble_type=1)
        report = service.sync()
        bubbles = service.store.get_bubbles("conv-1")

    assert report.synced_conversations == 1
    assert report.skipped_conversations == 2
    assert [b.text for b in bubbles][-1] == "one more thing"


def test_workspace_recorded_during_sync(config: CursorChatConfig, origin_db: OriginDb) -> None:
    origin_db.add_composer("c1", createdAt=1700000000000)
    origin_db.add_bubble("c1", "b1", "hello", workspaceUris=["file:///work/site"])

    with SyncService(config) as service:
        service.sync()
        assert [w.name for w in service.get_workspaces()] == ["site"]
        assert [c.composer_id for c in service.get_conversations("site")] == ["c1"]


def test_missing_origin_records_error(tmp_path: Path) -> None:
    config = CursorChatConfig(
        data_dir=str(tmp_path / "data"),
        origin_db_path=str(tmp_path / "missing" / "state.vscdb"),
    )
    with SyncService(config) as service:
        with pytest.raises(StoreNotFoundError):
            service.sync()
        state = service.get_state()

    assert state.is_syncing is False
    assert state.last_error is not None
    assert "not found" in state.last_error


def test_persistence_failure_leaves_sync_flag(
    config: CursorChatConfig, origin_db: OriginDb, monkeypatch: pytest.MonkeyPatch
) -> None:
    _seed(origin_db)

    def _fail(*_args: object, **_kwargs: object) -> int:
        raise LocalPersistenceError("disk full")

    with SyncService(config) as service:
        monkeypatch.setattr(service.store, "save_conversation", _fail)
        with pytest.raises(LocalPersistenceError):
            service.sync()
        state = service.get_state()

    assert state.is_syncing is True
    assert state.last_error == "local storage error: disk full"

    with SyncService(config) as service:
        report = service.sync()

    assert report.synced_conversations == 3
    assert report.state.is_syncing is False
    assert report.state.last_error is None


def test_shared_store_is_not_closed(config: CursorChatConfig, origin_db: OriginDb) -> None:
    _seed(origin_db, 1)
    store = ChatStore(config.storage_db_path())
    with SyncService(config, store=store) as service:
        service.sync()

    assert store.get_conversation_count() == 1
    store.close()


def test_storage_info(config: CursorChatConfig, origin_db: OriginDb) -> None:
    _seed(origin_db, 2)
    config.max_storage_gb = 1
    with SyncService(config) as service:
        service.sync()
        info = service.get_storage_info()
        within = service.check_storage_limits()

    assert info.max_bytes == 1024 * 1024 * 1024
    assert info.current_bytes > 0
    assert 0.0 < info.usage_percent < 1.0
    assert info.conversation_count == 2
    assert info.message_count == 4
    assert within is True


def test_local_read_failure_is_recorded(config: CursorChatConfig, origin_db: OriginDb) -> None:
    _seed(origin_db, 1)
    with SyncService(config) as service:
        service.sync()
        service.store.conn.execute(
            "ALTER TABLE conversations RENAME COLUMN content_hash TO stale_hash"
        )
        with pytest.raises(LocalPersistenceError, match="query failed"):
            service.sync()
        state = service.get_state()

    assert state.is_syncing is True
    assert state.last_error is not None
    assert "query failed" in state.last_error
