"""
Check CLI Commands

Commands for managing check definitions and reading result history.
A running engine picks changes up on its next reconciliation pass.
"""

from __future__ import annotations

import asyncio
from typing import Annotated

import structlog
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from pulsewatch.config import settings
from pulsewatch.engine import Check, CheckStatus, SqliteCheckStore, validate_check
from pulsewatch.errors import InvalidCheckError, StoreError

logger = structlog.get_logger(__name__)
console = Console()

app = typer.Typer(
    name="check",
    help="Manage monitored endpoints",
    no_args_is_help=True,
)

DbOption = Annotated[
    str,
    typer.Option("--db", help="SQLite database path (defaults to PULSEWATCH_DATABASE_PATH)"),
]


def _parse_interval(interval: str) -> int:
    """Parse interval string (e.g., '30s', '5m', '1h') to seconds."""
    interval = interval.lower().strip()

    if interval.endswith("s"):
        return int(interval[:-1])
    elif interval.endswith("m"):
        return int(interval[:-1]) * 60
    elif interval.endswith("h"):
        return int(interval[:-1]) * 3600
    else:
        # Assume seconds
        return int(interval)


def _format_interval(seconds: int) -> str:
    """Format seconds as human-readable interval."""
    if seconds < 60:
        return f"{seconds}s"
    elif seconds < 3600:
        minutes, remaining = divmod(seconds, 60)
        return f"{minutes}m {remaining}s" if remaining else f"{minutes}m"
    else:
        hours, remaining = divmod(seconds, 3600)
        minutes = remaining // 60
        return f"{hours}h {minutes}m" if minutes else f"{hours}h"


def _status_label(status: CheckStatus | None) -> str:
    return {
        CheckStatus.UP: "[green]●[/green] UP",
        CheckStatus.DOWN: "[red]✗[/red] DOWN",
    }.get(status, "[dim]○[/dim] pending")


async def _find_check(store: SqliteCheckStore, check_id: str) -> Check:
    """Find a check by ID or unique ID prefix."""
    check = await store.get_check(check_id)
    if check:
        return check

    matches = [c for c in await store.list_checks() if c.id.startswith(check_id)]
    if len(matches) == 1:
        return matches[0]
    if matches:
        console.print(f"[red]Ambiguous check ID: {check_id}[/red]")
    else:
        console.print(f"[red]Check not found: {check_id}[/red]")
    raise typer.Exit(1)


@app.command("add")
def add_check(
    url: Annotated[str, typer.Argument(help="URL to probe")],
    name: Annotated[str, typer.Option("--name", "-n", help="Check name")] = "",
    interval: Annotated[
        str,
        typer.Option("--interval", "-i", help="Probe interval (e.g., 30s, 5m, 1h)"),
    ] = "60s",
    alert_email: Annotated[str, typer.Option("--alert-email", help="Address notified on status change")] = "",
    db: DbOption = "",
) -> None:
    """
    Register a new check.

    Examples:
        pulsewatch check add https://example.com
        pulsewatch check add https://api.example.com/health -n api -i 30s
    """
    try:
        interval_seconds = _parse_interval(interval)
    except ValueError:
        console.print(f"[red]Invalid interval: {interval}[/red]")
        raise typer.Exit(1)

    if interval_seconds < settings.min_interval_seconds:
        console.print(f"[red]Interval must be at least {settings.min_interval_seconds}s[/red]")
        raise typer.Exit(1)

    check = Check(
        name=name or url,
        url=url,
        interval_seconds=interval_seconds,
        alert_email=alert_email or None,
    )

    try:
        validate_check(check)
    except InvalidCheckError as e:
        console.print(f"[red]{e.reason}[/red]")
        raise typer.Exit(1)

    async def _add():
        async with SqliteCheckStore(db or settings.database_path) as store:
            await store.create_check(check)

    try:
        asyncio.run(_add())
    except StoreError as e:
        console.print(f"[red]Could not save check: {e}[/red]")
        raise typer.Exit(1)

    console.print(Panel(
        f"[green]✓ Check created[/green]\n\n"
        f"[cyan]ID:[/cyan] {check.id}\n"
        f"[cyan]Name:[/cyan] {check.name}\n"
        f"[cyan]URL:[/cyan] {check.url}\n"
        f"[cyan]Interval:[/cyan] {_format_interval(interval_seconds)}",
        title="New Check",
        border_style="green",
    ))


@app.command("list")
def list_checks(
    active: Annotated[bool, typer.Option("--active", help="Only show active checks")] = False,
    db: DbOption = "",
) -> None:
    """List checks with their last known status."""
    async def _list():
        async with SqliteCheckStore(db or settings.database_path) as store:
            checks = await store.list_checks(active_only=active)

        if not checks:
            console.print("[dim]No checks found.[/dim]")
            return

        table = Table(title="Checks", border_style="cyan")
        table.add_column("ID", style="dim", width=12)
        table.add_column("Name", style="cyan")
        table.add_column("URL", style="white")
        table.add_column("Interval")
        table.add_column("Active", justify="center")
        table.add_column("Status", justify="center")
        table.add_column("Last Checked")

        for check in sorted(checks, key=lambda c: c.name):
            table.add_row(
                check.id[:12],
                check.name[:30],
                check.url[:50],
                _format_interval(check.interval_seconds),
                "yes" if check.is_active else "[yellow]paused[/yellow]",
                _status_label(check.last_status),
                check.last_checked_at.strftime("%Y-%m-%d %H:%M:%S UTC") if check.last_checked_at else "-",
            )

        console.print(table)
        console.print(f"\n[dim]Total: {len(checks)} checks[/dim]")

    asyncio.run(_list())


@app.command("results")
def show_results(
    check_id: Annotated[str, typer.Argument(help="Check ID (or partial ID)")],
    limit: Annotated[int, typer.Option("--limit", "-l", help="Number of results")] = 20,
    db: DbOption = "",
) -> None:
    """Show recent probe results for a check, newest first."""
    async def _results():
        async with SqliteCheckStore(db or settings.database_path) as store:
            check = await _find_check(store, check_id)
            results = await store.list_results(check.id, limit=limit)

        if not results:
            console.print(f"[dim]No results yet for {check.name}.[/dim]")
            return

        table = Table(title=f"Results: {check.name}", border_style="cyan")
        table.add_column("Checked At")
        table.add_column("Status", justify="center")
        table.add_column("HTTP", justify="right")
        table.add_column("Latency", justify="right")
        table.add_column("Error", style="red")

        for result in results:
            table.add_row(
                result.checked_at.strftime("%Y-%m-%d %H:%M:%S"),
                _status_label(result.status),
                str(result.http_status) if result.http_status is not None else "-",
                f"{result.latency_ms} ms" if result.latency_ms is not None else "-",
                result.error or "",
            )

        console.print(table)

    asyncio.run(_results())


def _set_active(check_id: str, is_active: bool, db: str) -> None:
    async def _update():
        async with SqliteCheckStore(db or settings.database_path) as store:
            check = await _find_check(store, check_id)
            await store.set_active(check.id, is_active)
            return check

    check = asyncio.run(_update())
    if is_active:
        console.print(f"[green]Check resumed: {check.name}[/green]")
    else:
        console.print(f"[yellow]Check paused: {check.name}[/yellow]")


@app.command("pause")
def pause_check(
    check_id: Annotated[str, typer.Argument(help="Check ID to pause")],
    db: DbOption = "",
) -> None:
    """Stop probing a check without deleting its history."""
    _set_active(check_id, False, db)


@app.command("resume")
def resume_check(
    check_id: Annotated[str, typer.Argument(help="Check ID to resume")],
    db: DbOption = "",
) -> None:
    """Resume a paused check."""
    _set_active(check_id, True, db)


@app.command("remove")
def remove_check(
    check_id: Annotated[str, typer.Argument(help="Check ID to delete")],
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Skip confirmation"),
    ] = False,
    db: DbOption = "",
) -> None:
    """Delete a check and its result history."""
    async def _remove():
        async with SqliteCheckStore(db or settings.database_path) as store:
            check = await _find_check(store, check_id)

            if not force:
                confirm = typer.confirm(f"Delete check '{check.name}' and its history?")
                if not confirm:
                    raise typer.Abort()

            await store.delete_check(check.id)
            console.print(f"[red]Check deleted: {check.name}[/red]")

    asyncio.run(_remove())
