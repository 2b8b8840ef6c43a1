from __future__ import annotations

import datetime as dt
import logging
import threading
import traceback
from dataclasses import dataclass
from pathlib import Path

from .config import CursorChatConfig
from .models import RestoreResult
from .restore import RestoreService
from .store import ChatStore
from .sync import SyncReport, SyncService

logger = logging.getLogger(__name__)


@dataclass
class TickResult:
    restore: RestoreResult | None = None
    sync: SyncReport | None = None
    error: str | None = None


def run_sync_tick(config: CursorChatConfig) -> TickResult:
    """Auto-restore check followed by one sync cycle; never raises."""

    result = TickResult()
    store = None
    try:
        store = ChatStore(config.storage_db_path())
        if config.auto_restore:
            try:
                result.restore = RestoreService(config, store=store).auto_restore_if_needed()
            except Exception:
                logger.exception("auto-restore check failed")
                _append_sync_daemon_log(config.daemon_log_path(), traceback.format_exc())
        result.sync = SyncService(config, store=store).sync()
    except Exception as exc:
        result.error = str(exc)
        logger.exception("sync tick failed")
        _append_sync_daemon_log(config.daemon_log_path(), traceback.format_exc())
    finally:
        if store is not None:
            store.close()
    return result


def run_sync_daemon(
    config: CursorChatConfig,
    *,
    stop_event: threading.Event | None = None,
    run_immediately: bool = True,
) -> None:
    """Run sync ticks on a fixed interval until ``stop_event`` is set.

    Ticks run sequentially on this thread, so cycles never overlap.
    """

    stop = stop_event or threading.Event()
    interval_s = max(1, int(config.sync_interval_s))
    logger.info("sync daemon started (interval %ds)", interval_s)
    if run_immediately and not stop.is_set():
        run_sync_tick(config)
    while not stop.wait(interval_s):
        run_sync_tick(config)
    logger.info("sync daemon stopped")


def _append_sync_daemon_log(log_path: Path, message: str) -> None:
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        ts = dt.datetime.now(dt.UTC).isoformat()
        with log_path.open("a", encoding="utf-8", errors="ignore") as handle:
            handle.write(f"\n[{ts}]\n{message}\n")
    except OSError:
        logger.warning("could not write sync daemon log %s", log_path)
