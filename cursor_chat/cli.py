from __future__ import annotations

import logging
from typing import List, Optional

import typer
from rich import print
from rich.markup import escape

from . import __version__
from .config import CursorChatConfig, get_config_path, load_config
from .cursor_paths import find_state_databases, global_db_path
from .errors import ConfigError, CursorChatError
from .restore import RestoreService
from .store import ChatStore
from .sync import SyncService
from .sync_daemon import run_sync_daemon

app = typer.Typer(help="cursor-chat: keep a local copy of Cursor chat history")
sync_app = typer.Typer(help="Sync Cursor conversations into local storage")
app.add_typer(sync_app, name="sync")

PREVIEW_CHARS = 60


def _config(data_dir: str | None) -> CursorChatConfig:
    try:
        cfg = load_config()
    except ConfigError as exc:
        print(f"[red]Config error: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    if data_dir:
        cfg.data_dir = data_dir
    return cfg


@app.callback()
def main_options(
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="More logging"),
) -> None:
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@app.command()
def version() -> None:
    """Print the installed version."""

    print(__version__)


@sync_app.command("now")
def sync_now(
    data_dir: str = typer.Option(None, help="Override the data directory"),
) -> None:
    """Run a single sync cycle."""

    cfg = _config(data_dir)
    try:
        with SyncService(cfg) as service:
            report = service.sync()
    except CursorChatError as exc:
        print(f"[red]Sync failed: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    print(
        f"[green]Synced {report.synced_conversations} conversations[/green] "
        f"({report.skipped_conversations} unchanged, {report.synced_messages} messages)"
    )
    stats = report.extraction
    print(
        f"- Cursor: {stats.conversation_count} conversations, "
        f"{stats.user_messages} user / {stats.assistant_messages} assistant messages"
    )
    if stats.skipped_entries:
        print(f"[yellow]- Skipped {stats.skipped_entries} unreadable entries[/yellow]")


@sync_app.command("status")
def sync_status(
    data_dir: str = typer.Option(None, help="Override the data directory"),
) -> None:
    """Show the persisted sync state."""

    cfg = _config(data_dir)
    with ChatStore(cfg.storage_db_path()) as store:
        state = store.get_sync_state()
        stats = store.stats()
    last_sync = state.last_sync.isoformat() if state.last_sync else "never"
    print(f"- Storage: {cfg.storage_db_path()}")
    print(f"- Last sync: {last_sync}")
    print(f"- Conversations: {state.conversation_count}")
    print(f"- Messages: {state.message_count}")
    print(f"- Workspaces: {stats['workspaces']}")
    print(f"- Storage bytes: {state.storage_bytes}")
    if state.is_syncing:
        print("[yellow]- Sync in progress (or interrupted)[/yellow]")
    if state.last_error:
        print(f"[red]- Last error: {state.last_error}[/red]")


@sync_app.command("daemon")
def sync_daemon(
    data_dir: str = typer.Option(None, help="Override the data directory"),
    interval_s: Optional[int] = typer.Option(None, help="Sync interval in seconds"),
) -> None:
    """Run the sync loop in the foreground."""

    cfg = _config(data_dir)
    if interval_s is not None:
        cfg.sync_interval_s = interval_s
    if not cfg.sync_enabled:
        print("[yellow]Sync is disabled in config[/yellow]")
        raise typer.Exit(code=1)
    print(f"[green]Sync daemon running every {cfg.sync_interval_s}s[/green]")
    try:
        run_sync_daemon(cfg)
    except KeyboardInterrupt:
        print("Stopped")


@app.command()
def restore(
    conversation_id: Optional[List[str]] = typer.Option(
        None, "--id", help="Restore only conversations matching this id (repeatable)"
    ),
    auto: bool = typer.Option(False, help="Only restore when Cursor looks reset"),
    data_dir: str = typer.Option(None, help="Override the data directory"),
) -> None:
    """Write stored conversations back into Cursor's database."""

    cfg = _config(data_dir)
    service = RestoreService(cfg)
    try:
        if auto:
            result = service.auto_restore_if_needed()
            if result is None:
                print("Cursor database looks intact; nothing to restore")
                return
        elif conversation_id:
            result = service.restore_by_ids(conversation_id)
        else:
            result = service.restore_all()
    except CursorChatError as exc:
        print(f"[red]Restore failed: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    print(
        f"[green]Restored {result.restored_conversations} conversations[/green] "
        f"({result.restored_messages} messages) into {result.cursor_db_path}"
    )
    if result.failed_conversations:
        print(f"[yellow]{result.failed_conversations} conversations failed[/yellow]")
        raise typer.Exit(code=1)


@app.command("list")
def list_conversations(
    workspace: str = typer.Option(None, help="Only conversations from this workspace"),
    limit: int = typer.Option(20, help="Maximum conversations to show"),
    data_dir: str = typer.Option(None, help="Override the data directory"),
) -> None:
    """List stored conversations, newest first."""

    cfg = _config(data_dir)
    with ChatStore(cfg.storage_db_path()) as store:
        conversations = store.get_conversations(workspace)
    for conversation in conversations[:limit]:
        created = conversation.created_at.date().isoformat() if conversation.created_at else "-"
        preview = escape(" ".join(conversation.preview().split())[:PREVIEW_CHARS])
        print(f"{conversation.filename()}|{created}|{conversation.message_count()}|{preview}")


@app.command()
def workspaces(
    data_dir: str = typer.Option(None, help="Override the data directory"),
) -> None:
    """List workspaces seen during sync."""

    cfg = _config(data_dir)
    with ChatStore(cfg.storage_db_path()) as store:
        rows = store.get_workspaces()
    for info in rows:
        print(f"{info.name}|{info.path or '-'}")


@app.command()
def paths(
    data_dir: str = typer.Option(None, help="Override the data directory"),
) -> None:
    """Show the database paths in use."""

    cfg = _config(data_dir)
    print(f"- Config: {get_config_path()}")
    print(f"- Storage: {cfg.storage_db_path()}")
    try:
        print(f"- Cursor global db: {global_db_path(cfg)}")
        for path in find_state_databases(cfg):
            print(f"  - {path}")
    except CursorChatError as exc:
        print(f"[yellow]- Cursor: {exc}[/yellow]")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
