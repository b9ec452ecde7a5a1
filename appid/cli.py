"""
CLI for category ids and request-document backups.

Usage:
    appid assign "Pomodoro timer" -d "25 minute focus sessions"
    appid list
    appid watch
"""

import json
import os
import signal
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .allocator import IdAllocator
from .backup import BackupArchive
from .config import get_store_path, load_or_create_config, save_config, StoreConfig
from .errors import AppIdError
from .guard import DocumentGuard
from .logging_config import configure_ops_log, configure_quiet_mode, enable_debug_mode
from .recovery import RecoveryEngine
from .types import Request


if os.environ.get("APPID_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"appid {version('appid')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _store_callback(value: Optional[Path]):
    global _store_override
    if value is not None:
        _store_override = value


app = typer.Typer(
    name="appid",
    help="Stable category ids for work requests, with request-file backup.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="APPID_STORE_PATH",
        help="Path to the store directory",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Stable category ids for work requests, with request-file backup."""


def _get_config() -> StoreConfig:
    config = load_or_create_config(get_store_path(_store_override))
    configure_ops_log(config.path)
    return config


def _echo(data, text: str) -> None:
    if _json_output:
        typer.echo(json.dumps(data, ensure_ascii=False, indent=2))
    else:
        typer.echo(text)


@app.command()
def init():
    """Create appid.toml with defaults in the store directory."""
    created = load_or_create_config(get_store_path(_store_override))
    _echo({"config": str(created.config_path)}, f"Config: {created.config_path}")


@app.command()
def assign(
    title: Annotated[str, typer.Argument(help="Request title")],
    description: Annotated[str, typer.Option(
        "--description", "-d", help="Request description",
    )] = "",
    requirement: Annotated[Optional[list[str]], typer.Option(
        "--requirement", "-r", help="Requirement line (repeatable); used when no description",
    )] = None,
):
    """Print the category id for a request, registering a new category if needed."""
    allocator = IdAllocator.from_config(_get_config())
    request = Request(title=title, description=description, requirements=requirement or [])
    try:
        app_id = allocator.assign(request)
    except AppIdError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    _echo({"title": title, "id": app_id}, app_id)


@app.command("list")
def list_cmd():
    """List registered categories."""
    allocator = IdAllocator.from_config(_get_config())
    categories = allocator.list_categories()
    if _json_output:
        typer.echo(json.dumps({
            key: {
                "id": e.id,
                "displayName": e.display_name,
                "keywords": e.keywords,
                "createdDate": e.created_date,
            }
            for key, e in categories.items()
        }, ensure_ascii=False, indent=2))
        return
    for key, entry in categories.items():
        typer.echo(f"{entry.id}  {entry.display_name}  [{', '.join(entry.keywords)}]")


@app.command()
def stats():
    """Show registry and backup statistics."""
    config = _get_config()
    data = {
        "registry": IdAllocator.from_config(config).stats(),
        "backups": BackupArchive.from_config(config).stats(),
        "watching_file": str(config.watch_path),
    }
    if _json_output:
        typer.echo(json.dumps(data, ensure_ascii=False, indent=2))
        return
    reg, bak = data["registry"], data["backups"]
    typer.echo(f"Categories:    {reg['total_types']} (next id {reg['next_id']})")
    typer.echo(f"Last updated:  {reg['last_updated']}")
    typer.echo(f"Backups:       {bak['total_backups']} in {bak['backup_directory']}")
    typer.echo(f"Latest backup: {bak['latest_timestamp'] or '-'}")
    typer.echo(f"Watching:      {data['watching_file']}")


@app.command()
def backup():
    """Snapshot the request document now."""
    config = _get_config()
    snap = BackupArchive.from_config(config).snapshot_file(config.watch_path, "manual")
    if snap is None:
        typer.echo(f"Error: {config.watch_path} not found", err=True)
        raise typer.Exit(1)
    _echo(
        {"timestamp": snap.timestamp, "contentHash": snap.content_hash},
        f"Backup created at {snap.timestamp}",
    )


@app.command()
def restore(
    force: Annotated[bool, typer.Option(
        "--force", "-f", help="Overwrite the document even if it exists",
    )] = False,
):
    """Restore the request document from the latest backup."""
    config = _get_config()
    engine = RecoveryEngine.from_config(config)
    if config.watch_path.exists() and not force:
        typer.echo(f"{config.watch_path} exists; use --force to overwrite", err=True)
        raise typer.Exit(1)
    try:
        snap = engine.restore()
    except AppIdError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    _echo({"restored_from": snap.timestamp}, f"Restored from backup of {snap.timestamp}")


@app.command()
def watch():
    """Watch the request document; back it up on change, restore it on delete."""
    config = _get_config()
    guard = DocumentGuard.from_config(config)
    watcher = guard.watcher(emit_initial=config.backup.emit_initial)

    def handle_signal(signum, frame):
        watcher.stop()

    signal.signal(signal.SIGTERM, handle_signal)
    typer.echo(f"Watching {config.watch_path} (Ctrl-C to stop)", err=True)
    watcher.start()
    try:
        watcher.join()
    except KeyboardInterrupt:
        pass
    finally:
        watcher.stop()


@app.command("config")
def config_cmd(
    lock_timeout: Annotated[Optional[float], typer.Option(
        "--lock-timeout", help="Seconds to wait for the registry lock",
    )] = None,
    max_snapshots: Annotated[Optional[int], typer.Option(
        "--max-snapshots", help="History snapshots to keep (0 = all)",
    )] = None,
):
    """Show or update store configuration."""
    config = _get_config()
    if lock_timeout is not None:
        config.lock.timeout = lock_timeout
    if max_snapshots is not None:
        config.backup.max_snapshots = max_snapshots
    if lock_timeout is not None or max_snapshots is not None:
        save_config(config)
    typer.echo(config.config_path.read_text(encoding="utf-8"))


# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="appid CLI", store_path=_store_override)
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
