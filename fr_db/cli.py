from __future__ import annotations

import json
import sqlite3
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .db import connect, ensure_user, init_db
from .repositories import AppSettingsRepository, ImageRepository, UserRepository, UserSettingsRepository
from .scheduler import BackgroundJob
from .settings import Settings, load_settings
from .tasks.base import TaskContext
from .tasks.stale_images import STALE_REMOVED_KEY, StaleImagesRemovalTask
from .watcher import request_stale_scan

app = typer.Typer(
    add_completion=False,
    help="fr_db: face-recognition image index maintenance",
    rich_markup_mode="rich",
)
console = Console()


def _open_db(s: Settings) -> sqlite3.Connection:
    conn = connect(s.FR_DB_PATH)
    init_db(conn)
    return conn


def _build_job(conn: sqlite3.Connection, s: Settings) -> BackgroundJob:
    return BackgroundJob(s, [StaleImagesRemovalTask.from_settings(conn, s)])


def _context_factory(conn: sqlite3.Connection, user: str | None, sync: bool):
    def _make() -> TaskContext:
        return TaskContext(eligible_users=UserRepository(conn).eligible_users(user), sync_mode=sync)

    return _make


@app.command("init", help="[bold cyan]I[/bold cyan]nitialize the database")
def init(
    user: Annotated[
        Optional[list[str]],
        typer.Option("--user", "-u", help="Register a user (repeatable)"),
    ] = None,
):
    """Create the schema and optionally register users."""
    s = load_settings()
    conn = _open_db(s)
    for uid in user or []:
        ensure_user(conn, uid)
    conn.commit()
    console.print(f"[green]✓[/green] Database ready at [cyan]{s.FR_DB_PATH}[/cyan]")


@app.command("status", help="[bold cyan]S[/bold cyan]how per-user sweep state")
def status(
    json_out: Annotated[bool, typer.Option("--json", help="Machine-readable output")] = False,
):
    s = load_settings()
    conn = _open_db(s)
    settings = UserSettingsRepository(conn)
    images = ImageRepository(conn)
    model = AppSettingsRepository(conn).get_current_face_model()

    rows = []
    for uid in UserRepository(conn).eligible_users():
        rows.append(
            {
                "user": uid,
                "images": images.count_for_user(uid, model),
                "needs_stale_scan": settings.get_need_remove_stale_images(uid),
                "last_checked": settings.get_last_stale_image_checked(uid),
            }
        )

    if json_out:
        print(json.dumps({"model": model, "users": rows}, indent=2))
        return

    table = Table(title=f"Stale image sweep (model {model})")
    table.add_column("User", style="cyan")
    table.add_column("Images", justify="right")
    table.add_column("Needs sweep")
    table.add_column("Checkpoint", justify="right")
    for r in rows:
        table.add_row(
            r["user"],
            str(r["images"]),
            "[yellow]yes[/yellow]" if r["needs_stale_scan"] else "no",
            str(r["last_checked"]),
        )
    console.print(table)


@app.command("stale-scan", help="[bold cyan]R[/bold cyan]emove images whose file is gone or excluded")
def stale_scan(
    user: Annotated[Optional[str], typer.Option("--user", "-u", help="Only sweep this user")] = None,
    sync: Annotated[
        bool,
        typer.Option("--sync/--no-sync", help="Sweep every user, even those not flagged"),
    ] = False,
    timeout: Annotated[
        Optional[int],
        typer.Option(help="Stop after this many seconds (0 = no limit)"),
    ] = None,
):
    """Run the stale image removal task once."""
    from .logging import setup_logging

    s = load_settings()
    log_file = setup_logging(s)
    conn = _open_db(s)

    job = _build_job(conn, s)
    try:
        result = job.run(_context_factory(conn, user, sync)(), timeout=timeout)
    except Exception as e:  # noqa: BLE001 - reported to the user, full trace is in the log
        console.print(f"[red]✗ Stale sweep failed:[/red] {e}")
        console.print(f"[dim]See {log_file}. The next run resumes from the last saved checkpoint.[/dim]")
        raise typer.Exit(code=1)

    removed = int(result.property_bag.get(STALE_REMOVED_KEY, 0))
    state = "[yellow]stopped (time budget)[/yellow]" if result.timed_out else "[green]complete[/green]"
    console.print(
        Panel.fit(
            f"Removed: [bold]{removed}[/bold] stale images\n"
            f"State:   {state}\n"
            f"Logs:    [cyan]{log_file}[/cyan]",
            title="[bold green]Stale image sweep[/bold green]",
        )
    )


@app.command("request-scan", help="Flag a user for a fresh full sweep")
def request_scan(
    user: Annotated[str, typer.Argument(help="User id")],
):
    s = load_settings()
    conn = _open_db(s)
    request_stale_scan(conn, user)
    console.print(f"[green]✓[/green] Full stale sweep requested for [cyan]{user}[/cyan]")


@app.command("worker", help="Run maintenance tasks periodically")
def worker(
    interval: Annotated[
        Optional[int],
        typer.Option(help="Seconds between runs (default: FR_WORKER_POLL_SEC)"),
    ] = None,
):
    from .logging import setup_logging

    s = load_settings()
    log_file = setup_logging(s)
    conn = _open_db(s)

    console.print(
        Panel.fit(
            f"[bold]Worker starting...[/bold]\n\n"
            f"  Interval: [cyan]{interval or s.FR_WORKER_POLL_SEC}s[/cyan]\n"
            f"  Logs:     [cyan]{log_file}[/cyan]\n\n"
            f"[dim]Press CTRL+C to stop[/dim]",
            title="[bold green]fr_db worker[/bold green]",
        )
    )
    try:
        _build_job(conn, s).run_forever(_context_factory(conn, None, False), interval)
    except KeyboardInterrupt:
        console.print("Worker shutting down.")


def main() -> None:
    app()
