"""CLI commands for Timekeeper using Typer."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
import time
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from timekeeper import __version__
from timekeeper.core.config import Config, get_config

# Orchestrator imports are deferred: the window sampler pulls in PyObjC,
# which must not be loaded in the process that spawns the daemon.


def _get_daemon_pid(config: Config) -> int | None:
    """Get daemon PID without importing PyObjC modules."""
    pid_file = config.data_dir / "daemon.pid"
    if not pid_file.exists():
        return None
    try:
        pid = int(pid_file.read_text().strip())
        os.kill(pid, 0)
        return pid
    except (ValueError, OSError):
        pid_file.unlink(missing_ok=True)
        return None


def _is_daemon_running(config: Config) -> bool:
    return _get_daemon_pid(config) is not None


app = typer.Typer(
    name="timekeeper",
    help="Desktop activity tracking with cloud sync.",
    add_completion=False,
)

console = Console()


def setup_logging(log_level: str, log_file: Path | None = None) -> None:
    """Configure logging for the application."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )

    # Reduce noise from external libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def format_uptime(seconds: float) -> str:
    """Format uptime in human-readable format."""
    if seconds < 60:
        return f"{seconds:.0f}s"
    elif seconds < 3600:
        return f"{seconds / 60:.0f}m"
    elif seconds < 86400:
        return f"{seconds / 3600:.1f}h"
    else:
        return f"{seconds / 86400:.1f}d"


def format_duration(seconds: int) -> str:
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes:02d}m"
    return f"{minutes}m {secs:02d}s"


def _run_with_store(config: Config, fn):
    """Open the local database, run ``fn(store)`` and close it again."""

    async def runner():
        from timekeeper.storage.activity_store import ActivityStore
        from timekeeper.storage.database import init_database

        db = await init_database(config.db_path)
        try:
            return await fn(ActivityStore(db))
        finally:
            await db.close()

    return asyncio.run(runner())


@app.command()
def start(
    foreground: bool = typer.Option(
        False,
        "--foreground",
        "-f",
        help="Run in foreground instead of as daemon",
    ),
    log_level: str = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Log level (DEBUG, INFO, WARNING, ERROR); defaults to the configured level",
    ),
) -> None:
    """Start the Timekeeper daemon."""
    config = get_config()
    log_level = log_level or config.log_level

    if _is_daemon_running(config):
        pid = _get_daemon_pid(config)
        console.print(f"[yellow]Daemon already running (PID: {pid})[/yellow]")
        raise typer.Exit(1)

    if foreground:
        setup_logging(log_level)
        console.print("[green]Starting Timekeeper in foreground...[/green]")
        console.print("Press Ctrl+C to stop\n")

        from timekeeper.core.orchestrator import run_daemon

        try:
            asyncio.run(run_daemon(config))
        except KeyboardInterrupt:
            console.print("\n[yellow]Stopped[/yellow]")
        return

    # A fresh interpreter instead of fork(); AppKit does not survive fork()
    console.print("[green]Starting Timekeeper daemon...[/green]")

    log_path = config.log_dir / "daemon.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)

    with open(log_path, "a") as log_file:
        subprocess.Popen(
            [sys.executable, "-m", "timekeeper", "start", "--foreground", "--log-level", log_level],
            stdin=subprocess.DEVNULL,
            stdout=log_file,
            stderr=log_file,
            start_new_session=True,
        )

    time.sleep(1.5)

    if _is_daemon_running(config):
        console.print(f"[green]Daemon started (PID: {_get_daemon_pid(config)})[/green]")
        console.print(f"Logs: {log_path}")
    else:
        console.print("[red]Failed to start daemon - check logs[/red]")
        raise typer.Exit(1)


@app.command()
def stop() -> None:
    """Stop the Timekeeper daemon."""
    config = get_config()

    pid = _get_daemon_pid(config)
    if pid is None:
        console.print("[yellow]Daemon is not running[/yellow]")
        return

    console.print(f"[yellow]Stopping daemon (PID: {pid})...[/yellow]")

    try:
        os.kill(pid, signal.SIGTERM)

        # Shutdown includes a bounded sync on close
        for _ in range(int(config.sync.close_timeout_seconds) + 5):
            time.sleep(1)
            if not _is_daemon_running(config):
                console.print("[green]Daemon stopped[/green]")
                return

        console.print("[yellow]Daemon not responding, forcing shutdown...[/yellow]")
        os.kill(pid, signal.SIGKILL)
        time.sleep(1)

        if _is_daemon_running(config):
            console.print("[red]Failed to stop daemon[/red]")
            raise typer.Exit(1)
        console.print("[green]Daemon stopped (forced)[/green]")

    except ProcessLookupError:
        console.print("[green]Daemon stopped[/green]")
        (config.data_dir / "daemon.pid").unlink(missing_ok=True)


@app.command()
def status() -> None:
    """Show daemon status, queue size and last sync."""
    config = get_config()
    pid = _get_daemon_pid(config)

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="cyan")
    table.add_column("Value")

    if pid is None:
        table.add_row("Status", "[red bold]STOPPED[/red bold]")
    else:
        table.add_row("Status", "[green bold]RUNNING[/green bold]")
        table.add_row("PID", str(pid))
        started = (config.data_dir / "daemon.pid").stat().st_mtime
        table.add_row("Uptime", format_uptime(time.time() - started))

    if config.db_path.exists():

        async def read_state(store):
            return (
                await store.activity_count(),
                await store.queue_size(),
                await store.quarantine_size(),
                await store.get_last_sync_time(),
                await store.db.get_size_mb(),
            )

        try:
            count, queued, quarantined, last_sync, size_mb = _run_with_store(config, read_state)
            table.add_row("Activities", str(count))
            table.add_row("Pending sync", str(queued))
            if quarantined:
                table.add_row("Unreadable", f"[yellow]{quarantined} queue entries set aside[/yellow]")
            table.add_row("Database size", f"{size_mb:.1f} MB")
            table.add_row("Last sync", last_sync.isoformat() if last_sync else "never")
        except Exception as e:
            table.add_row("Database", f"[red]{e}[/red]")

    table.add_row(
        "Sync",
        "configured" if config.sync.is_configured else "[yellow]not configured[/yellow]",
    )
    table.add_row("Database", str(config.db_path))
    table.add_row("Logs", str(config.log_dir / "daemon.log"))

    border = "green" if pid else "red"
    console.print(Panel(table, title="Timekeeper Status", border_style=border))


@app.command()
def sync() -> None:
    """Push the pending queue to the backend now."""
    config = get_config()

    # A running daemon owns the queue; ask it to push instead of racing it
    pid = _get_daemon_pid(config)
    if pid is not None:
        os.kill(pid, signal.SIGUSR1)
        console.print(f"[green]Sync requested from running daemon (PID: {pid})[/green]")
        console.print("Run 'timekeeper status' to see when it completes.")
        return

    setup_logging("WARNING")

    async def push(store):
        from timekeeper.sync.device import DeviceIdentity
        from timekeeper.sync.sync_engine import SyncEngine, SyncTrigger

        device = DeviceIdentity.for_this_machine(await store.get_or_create_device_id())
        engine = SyncEngine(config.sync, store, device)
        return await engine.push(SyncTrigger.MANUAL)

    result = _run_with_store(config, push)

    if result.success:
        console.print(f"[green]Synced {result.synced} activities[/green]")
        return
    if result.not_configured:
        console.print(f"[yellow]{result.error}[/yellow]")
        console.print("Set TIMEKEEPER_SYNC__URL, TIMEKEEPER_SYNC__TOKEN and TIMEKEEPER_SYNC__GATEWAY_KEY")
    elif result.rate_limited:
        wait = f" (retry after {result.retry_after:.0f}s)" if result.retry_after else ""
        console.print(f"[yellow]Rate limited{wait}[/yellow]")
    elif result.auth_error:
        console.print(f"[red]Sync token rejected: {result.error}[/red]")
        console.print("Generate a new token and update your configuration.")
    else:
        console.print(f"[red]Sync failed: {result.error}[/red]")
    raise typer.Exit(1)


@app.command()
def queue() -> None:
    """Show activities waiting to be synced."""
    config = get_config()

    async def read_queue(store):
        return await store.get_sync_queue()

    snapshot = _run_with_store(config, read_queue)

    if not snapshot.activities:
        console.print("[green]Sync queue is empty[/green]")
        return

    table = Table(title=f"Pending sync ({len(snapshot)})", header_style="bold cyan")
    table.add_column("Start")
    table.add_column("App")
    table.add_column("Duration", justify="right")
    table.add_column("Category")

    for activity in snapshot.activities:
        table.add_row(
            activity.start_time.strftime("%Y-%m-%d %H:%M"),
            activity.application_name,
            format_duration(activity.duration),
            activity.category_id,
        )
    console.print(table)


@app.command()
def activities(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of activities to show"),
) -> None:
    """Show recent activities from the local log."""
    config = get_config()

    async def read_recent(store):
        return await store.recent_activities(limit)

    recent = _run_with_store(config, read_recent)

    if not recent:
        console.print("[yellow]No activities recorded yet[/yellow]")
        return

    table = Table(title="Recent activities", header_style="bold cyan")
    table.add_column("Start")
    table.add_column("App")
    table.add_column("Title", overflow="ellipsis", max_width=50)
    table.add_column("Duration", justify="right")
    table.add_column("Category")

    for activity in recent:
        app_name = f"[dim]{activity.application_name}[/dim]" if activity.is_idle else activity.application_name
        table.add_row(
            activity.start_time.strftime("%Y-%m-%d %H:%M"),
            app_name,
            activity.window_title,
            format_duration(activity.duration),
            activity.category_id,
        )
    console.print(table)


@app.command()
def categorize(
    app_name: str = typer.Argument(..., help="Application name"),
    title: str = typer.Argument("", help="Window title"),
) -> None:
    """Show how an app/title pair would be categorized."""
    from timekeeper.core.orchestrator import build_categorizer

    categorizer = build_categorizer(get_config())
    result = categorizer.categorize(app_name, title)
    category = categorizer.get_category(result.category_id)
    name = category.name if category else result.category_id

    console.print(f"[bold]{name}[/bold] ({result.category_id}), confidence {result.confidence}")


@app.command()
def rules() -> None:
    """List categorization rules in evaluation order."""
    from timekeeper.core.orchestrator import build_categorizer

    categorizer = build_categorizer(get_config())

    table = Table(title="Categorization rules", header_style="bold cyan")
    table.add_column("#", justify="right")
    table.add_column("Type")
    table.add_column("Match")
    table.add_column("Pattern")
    table.add_column("Category")

    for index, rule in enumerate(categorizer.rules):
        table.add_row(str(index), rule.type, rule.match_type, rule.pattern, rule.category_id)
    console.print(table)


@app.command()
def logs(
    lines: int = typer.Option(50, "--lines", "-n", help="Number of lines to show"),
) -> None:
    """View daemon logs."""
    config = get_config()
    log_file = config.log_dir / "daemon.log"

    if not log_file.exists():
        console.print("[yellow]No log file found. Start the daemon first.[/yellow]")
        raise typer.Exit(1)

    with open(log_file) as f:
        for line in f.readlines()[-lines:]:
            console.print(line.rstrip())


@app.command(name="config-show")
def config_show() -> None:
    """Show current configuration."""
    config = get_config()

    table = Table(title="Timekeeper Configuration", show_header=True, header_style="bold cyan")
    table.add_column("Setting")
    table.add_column("Value")

    table.add_row("[bold]Paths[/bold]", "")
    table.add_row("  Data Directory", str(config.data_dir))
    table.add_row("  Log Directory", str(config.log_dir))
    table.add_row("  Config File", str(config.config_file))
    table.add_row("  Database", str(config.db_path))

    tracking = config.tracking
    table.add_row("[bold]Tracking[/bold]", "")
    table.add_row("  Poll Interval", f"{tracking.poll_interval_ms}ms")
    table.add_row("  Idle Threshold", f"{tracking.idle_threshold_seconds}s")
    table.add_row("  Min Activity", f"{tracking.min_activity_duration_seconds}s")
    table.add_row("  Switch Debounce", f"{tracking.switch_debounce_seconds}s")
    table.add_row("  Auto Categorize", str(tracking.auto_categorize))
    table.add_row("  Excluded Apps", ", ".join(tracking.exclude_apps) or "-")
    table.add_row("  Excluded Titles", ", ".join(tracking.exclude_titles) or "-")

    sync_config = config.sync
    table.add_row("[bold]Sync[/bold]", "")
    table.add_row("  URL", sync_config.url or "[yellow]Not Set[/yellow]")
    table.add_row("  Token", "***" if sync_config.token else "[yellow]Not Set[/yellow]")
    table.add_row("  Gateway Key", "***" if sync_config.gateway_key else "[yellow]Not Set[/yellow]")
    table.add_row("  Auto Sync", str(sync_config.settings.auto_sync_enabled))
    table.add_row("  Interval", f"{sync_config.settings.sync_interval_minutes} min")
    table.add_row("  On Startup / Idle / Close", " / ".join(
        str(v) for v in (
            sync_config.settings.sync_on_startup,
            sync_config.settings.sync_on_idle,
            sync_config.settings.sync_on_close,
        )
    ))

    table.add_row("[bold]Storage[/bold]", "")
    table.add_row("  Retention", f"{config.storage.retention_days} days")

    console.print(table)


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"Timekeeper v{__version__}")


if __name__ == "__main__":
    app()
