"""CLI interface for spelunk."""

import logging
import os
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from spelunk import __version__
from spelunk.cache import DiskCache, ScanCache, SessionCache, clear_disk_cache
from spelunk.config import CONFIG_FILE, Settings, load_settings
from spelunk.coordinator import ScanCoordinator
from spelunk.display import console, show_scanning_progress, show_volume_report
from spelunk.errors import SpelunkError
from spelunk.export import export_csv, export_json
from spelunk.navigator import LocationMenu, Navigator
from spelunk.primitives import expand_path
from spelunk.terminal import TerminalController

logger = logging.getLogger("spelunk")

# Create Typer app
app = typer.Typer(
    name="spelunk",
    help="Interactive disk space explorer - find what is filling your disk",
    add_completion=False,
)
cache_app = typer.Typer(help="Manage the on-disk scan cache.")
app.add_typer(cache_app, name="cache")


def configure_logging(verbose: bool = False) -> None:
    """Send spelunk logs to stderr through rich."""
    handler = RichHandler(
        console=Console(stderr=True),
        show_path=verbose,
        rich_tracebacks=verbose,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.handlers = [handler]
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.propagate = False


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"spelunk version {__version__}")
        raise typer.Exit()


def _resolve_directory(path: Optional[str]) -> str:
    target = expand_path(path or "~")
    if not target.exists():
        console.print(f"[red]Error: {target} does not exist[/red]")
        raise typer.Exit(1)
    if not target.is_dir():
        console.print(f"[red]Error: {target} is not a directory[/red]")
        raise typer.Exit(1)
    return os.path.abspath(target)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging on stderr."),
) -> None:
    """spelunk - interactive disk space explorer."""
    configure_logging(verbose)
    # If no command specified, launch the explorer
    if ctx.invoked_subcommand is None:
        ctx.invoke(explore, path=None, dry_run=False)


@app.command()
def explore(
    path: Optional[str] = typer.Argument(None, help="Directory to start in (default: location menu)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Simulate deletes without removing anything"),
) -> None:
    """Browse directories by size and delete what you don't need."""
    start = _resolve_directory(path) if path else None

    if not sys.stdin.isatty() or not sys.stdout.isatty():
        console.print("[red]Error: explore needs an interactive terminal[/red]")
        console.print("[dim]Run [bold]spelunk analyze[/bold] for a non-interactive report[/dim]")
        raise typer.Exit(1)

    settings = load_settings()
    coordinator = ScanCoordinator(settings)
    disk = DiskCache(settings.cache_dir, settings.cache_ttl_seconds)
    terminal = TerminalController(sys.stdin.fileno(), sys.stdout.fileno())

    def navigator_for(start_path: str) -> Navigator:
        # Each session gets its own temporary cache directory
        return Navigator(
            start_path,
            ScanCache(SessionCache(), disk),
            coordinator,
            console=console,
            settings=settings,
            terminal=terminal,
            dry_run=dry_run,
        )

    try:
        if start is not None:
            navigator_for(start).run()
        else:
            LocationMenu(navigator_for, console=console, terminal=terminal).run()
    except SpelunkError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@app.command()
def analyze(
    path: Optional[str] = typer.Argument(None, help="Directory to analyze (default: home)"),
    refresh: bool = typer.Option(False, "--refresh", help="Ignore cached results and rescan"),
    json_file: Optional[Path] = typer.Option(None, "--json", help="Export results to a JSON file"),
    csv_file: Optional[Path] = typer.Option(None, "--csv", help="Export results to a CSV file"),
) -> None:
    """Analyze disk usage: top directories, large files and hotspots."""
    target = _resolve_directory(path)
    settings = load_settings()
    disk = DiskCache(settings.cache_dir, settings.cache_ttl_seconds)

    with SessionCache() as session:
        cache = ScanCache(session, disk)
        scan = None if refresh else cache.get_volume(target)
        cached = scan is not None

        if scan is None:
            console.print(f"[bold blue]Analyzing {target}...[/bold blue]\n")
            coordinator = ScanCoordinator(settings)
            try:
                with show_scanning_progress() as progress:
                    task = progress.add_task("Scanning directories...", total=None)

                    def update_progress(done: int, total: int) -> None:
                        progress.update(task, completed=done, total=total)

                    scan = coordinator.scan_volume(target, progress=update_progress)
            except SpelunkError as e:
                console.print(f"[red]Error: {e}[/red]")
                raise typer.Exit(1)
            cache.put_volume(target, scan)

    show_volume_report(scan, cached=cached)

    try:
        if json_file:
            export_json(scan, json_file)
            console.print(f"[green]✓ Exported to {json_file}[/green]")
        if csv_file:
            export_csv(scan, csv_file)
            console.print(f"[green]✓ Exported to {csv_file}[/green]")
    except OSError as e:
        console.print(f"[red]Export failed: {e}[/red]")
        raise typer.Exit(1)

    if cached:
        console.print("[dim]Run [bold]spelunk analyze --refresh[/bold] to rescan[/dim]")


@app.command()
def config() -> None:
    """Show the active configuration."""
    settings = load_settings()
    defaults = Settings()

    table = Table(title="Configuration", show_header=True, header_style="bold")
    table.add_column("Setting", style="bold")
    table.add_column("Value", justify="right")
    table.add_column("Description", style="dim")

    for name, field in Settings.model_fields.items():
        value = getattr(settings, name)
        shown = str(value)
        if value != getattr(defaults, name):
            shown = f"[yellow]{shown}[/yellow]"
        table.add_row(name, shown, field.description or "")

    console.print(table)
    console.print(f"\n[dim]Config file: {CONFIG_FILE}[/dim]")


@cache_app.command("clear")
def cache_clear() -> None:
    """Remove all cached volume scans."""
    settings = load_settings()
    removed = clear_disk_cache(settings.cache_dir)
    noun = "entry" if removed == 1 else "entries"
    console.print(f"[green]✓ Removed {removed} cached {noun}[/green]")


if __name__ == "__main__":
    app()
