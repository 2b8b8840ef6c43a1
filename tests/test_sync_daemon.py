import threading
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from cursor_chat import sync_daemon
from cursor_chat.config import CursorChatConfig
from cursor_chat.store import ChatStore
from cursor_chat.sync_daemon import run_sync_daemon, run_sync_tick

if TYPE_CHECKING:
    from conftest import OriginDb


def test_tick_syncs_conversations(config: CursorChatConfig, origin_db: "OriginDb") -> None:
    origin_db.add_composer("c1", createdAt=1700000000000)
    origin_db.add_bubble("c1", "b1", "hello")

    result = run_sync_tick(config)

    assert result.error is None
    assert result.restore is None
    assert result.sync is not None
    assert result.sync.synced_conversations == 1
    with ChatStore(config.storage_db_path()) as store:
        assert store.get_sync_state().conversation_count == 1


def test_tick_never_raises_and_logs_failure(tmp_path: Path) -> None:
    config = CursorChatConfig(
        data_dir=str(tmp_path / "data"),
        origin_db_path=str(tmp_path / "missing" / "state.vscdb"),
        auto_restore=False,
    )

    result = run_sync_tick(config)

    assert result.error is not None
    assert "not found" in result.error
    log_text = config.daemon_log_path().read_text()
    assert "StoreNotFoundError" in log_text
    with ChatStore(config.storage_db_path()) as store:
        state = store.get_sync_state()
    assert state.is_syncing is False
    assert state.last_error is not None


def test_tick_restores_reset_origin(config: CursorChatConfig, origin_db: "OriginDb") -> None:
    for index in range(4):
        origin_db.add_composer(f"c{index}", createdAt=1700000000000 + index)
        origin_db.add_bubble(f"c{index}", "b1", f"hello {index}")
    assert run_sync_tick(config).sync is not None

    origin_db.delete_prefix("composerData:")
    origin_db.delete_prefix("bubbleId:")
    result = run_sync_tick(config)

    assert result.restore is not None
    assert result.restore.restored_conversations == 4
    assert result.sync is not None
    assert result.sync.skipped_conversations == 4


def test_tick_survives_restore_failure(
    config: CursorChatConfig, origin_db: "OriginDb", monkeypatch: pytest.MonkeyPatch
) -> None:
    def _boom(self: object) -> None:
        raise RuntimeError("restore exploded")

    monkeypatch.setattr(sync_daemon.RestoreService, "auto_restore_if_needed", _boom)
    origin_db.add_composer("c1", createdAt=1700000000000)
    origin_db.add_bubble("c1", "b1", "hello")

    result = run_sync_tick(config)

    assert result.error is None
    assert result.sync is not None
    assert "restore exploded" in config.daemon_log_path().read_text()


def test_daemon_stops_on_event(config: CursorChatConfig, monkeypatch: pytest.MonkeyPatch) -> None:
    stop = threading.Event()
    ticks: list[CursorChatConfig] = []

    def _tick(cfg: CursorChatConfig) -> None:
        ticks.append(cfg)
        stop.set()

    monkeypatch.setattr(sync_daemon, "run_sync_tick", _tick)

    run_sync_daemon(config, stop_event=stop)

    assert ticks == [config]


def test_daemon_skips_work_when_already_stopped(
    config: CursorChatConfig, monkeypatch: pytest.MonkeyPatch
) -> None:
    stop = threading.Event()
    stop.set()
    calls: list[int] = []
    monkeypatch.setattr(sync_daemon, "run_sync_tick", lambda cfg: calls.append(1))

    run_sync_daemon(config, stop_event=stop)

    assert calls == []
