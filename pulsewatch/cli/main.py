"""
Pulsewatch CLI Main Entry Point

The main Typer application that assembles all command groups.
"""

import asyncio
import logging
import signal
from typing import Annotated

import structlog
import typer
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from pulsewatch import __version__

# Configure structlog
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.dev.ConsoleRenderer(colors=True),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)
console = Console()

# Create the main app
app = typer.Typer(
    name="pulsewatch",
    help="Pulsewatch - uptime monitoring for HTTP endpoints",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(
            Panel(
                Text.from_markup(
                    f"[bold cyan]Pulsewatch[/bold cyan] v{__version__}\n"
                    "[dim]Uptime monitoring for HTTP endpoints[/dim]"
                ),
                title="Version",
                border_style="cyan",
            )
        )
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable verbose output.",
        ),
    ] = False,
) -> None:
    """
    Pulsewatch - uptime monitoring for HTTP endpoints

    Register checks, run the engine, and read probe history.
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(message)s")


# Import and register sub-commands
from pulsewatch.cli.check import app as check_app

app.add_typer(check_app, name="check", help="Manage monitored endpoints")


@app.command()
def run(
    db: Annotated[
        str,
        typer.Option("--db", help="SQLite database path (defaults to PULSEWATCH_DATABASE_PATH)"),
    ] = "",
    concurrency: Annotated[
        int,
        typer.Option("--concurrency", "-c", help="Maximum simultaneous probes"),
    ] = 0,
) -> None:
    """
    Run the monitoring engine in the foreground.

    Probes every active check on its interval until interrupted.
    Use Ctrl+C (or SIGTERM) to stop; in-flight probes are drained first.

    Example:
        pulsewatch run
        pulsewatch run --db /var/lib/pulsewatch/uptime.db -c 50
    """
    from pulsewatch.config import EngineSettings
    from pulsewatch.engine import SqliteCheckStore, log_transition
    from pulsewatch.engine.service import MonitorEngine
    from pulsewatch.errors import StoreUnavailableError

    overrides = {}
    if db:
        overrides["database_path"] = db
    if concurrency > 0:
        overrides["concurrency_limit"] = concurrency
    engine_settings = EngineSettings(**overrides)

    async def _run():
        store = SqliteCheckStore(engine_settings.database_path)
        engine = MonitorEngine(store=store, settings=engine_settings)
        engine.bus.register_handler(log_transition)

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                pass  # Windows: Ctrl+C arrives as KeyboardInterrupt

        try:
            await engine.start()
        except StoreUnavailableError as e:
            console.print(f"[red]Cannot start: {e}[/red]")
            await store.close()
            raise typer.Exit(1)

        console.print(Panel(
            f"[green]Monitoring engine started[/green]\n\n"
            f"[cyan]Database:[/cyan] {engine_settings.database_path}\n"
            f"[cyan]Active checks:[/cyan] {len(engine.scheduler.registered_ids())}\n"
            f"[cyan]Concurrency:[/cyan] {engine_settings.concurrency_limit}\n"
            f"[cyan]Changes applied within:[/cyan] {engine.registry.staleness_bound:g}s\n"
            f"[dim]Press Ctrl+C to stop[/dim]",
            title="Pulsewatch",
            border_style="green",
        ))

        try:
            await stop.wait()
        finally:
            await engine.stop()
            await store.close()
            console.print("[yellow]Monitoring engine stopped[/yellow]")

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")


@app.command()
def info() -> None:
    """Show the effective engine configuration."""
    from rich.table import Table

    from pulsewatch.config import settings

    table = Table(title="Pulsewatch Configuration", show_header=False, border_style="cyan")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Version", __version__)
    for key, value in settings.model_dump().items():
        table.add_row(key, str(value.value if hasattr(value, "value") else value))
    table.add_row("effective_drain_timeout", f"{settings.effective_drain_timeout:g}")

    console.print(table)


if __name__ == "__main__":
    app()
