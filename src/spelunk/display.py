"""Rich terminal display for spelunk."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table
from rich.text import Text

from spelunk.hotspots import DEFAULT_HOTSPOT_LIMIT
from spelunk.models import (
    DeleteOutcome,
    DirectoryEntry,
    EntryBase,
    FileCategory,
    FileEntry,
    VolumeScan,
    human_size,
)

if TYPE_CHECKING:
    from spelunk.navigator import NavigatorState

console = Console()

# Rows shown per section of the volume report
REPORT_LIMIT = 10

BADGE_DIR = "📁"
BADGE_FILE = "📄"

CATEGORY_BADGES = {
    FileCategory.BUNDLE: ("📦", "yellow"),
    FileCategory.MEDIA: ("🎬", "yellow"),
    FileCategory.DOCUMENT: ("📄", ""),
    FileCategory.LOG: ("📋", "dim"),
    FileCategory.APP: ("📱", ""),
    FileCategory.OTHER: (BADGE_FILE, ""),
}

# Directory colour thresholds (binary units)
HUGE_DIR_BYTES = 10 * 1024**3
BIG_DIR_BYTES = 1024**3

NAME_WIDTH = 50


def shorten_home(path: str) -> str:
    """Replace the home directory prefix with ~."""
    home = os.path.expanduser("~")
    if path == home:
        return "~"
    if path.startswith(home + "/"):
        return "~" + path[len(home):]
    return path


def entry_badge(entry: EntryBase) -> tuple[str, str]:
    """Get badge and colour for a listing entry."""
    if isinstance(entry, DirectoryEntry):
        if entry.size_bytes > HUGE_DIR_BYTES:
            return BADGE_DIR, "red"
        if entry.size_bytes > BIG_DIR_BYTES:
            return BADGE_DIR, "yellow"
        return BADGE_DIR, "blue"
    if isinstance(entry, FileEntry):
        return CATEGORY_BADGES.get(entry.category, (BADGE_FILE, ""))
    return BADGE_FILE, ""


def size_bar(size_bytes: int, max_bytes: int, width: int = 10) -> str:
    """Proportional bar of ``width`` cells."""
    if max_bytes <= 0:
        filled = 0
    else:
        filled = min(width, max(0, size_bytes * width // max_bytes))
    return "█" * filled + "░" * (width - filled)


def _truncate(name: str, width: int = NAME_WIDTH) -> str:
    if len(name) > width:
        return name[: width - 3] + "..."
    return name


def _size_label(entry: EntryBase) -> str:
    if entry.error and entry.size_bytes == 0:
        return "?"
    label = entry.size_human
    if entry.is_estimated:
        label = "~" + label
    return label


def render_listing(state: NavigatorState) -> Group:
    """Build one frame of the navigator: header, page, pager, status, help."""
    header = Text.assemble(
        ("Disk space explorer", "bold"),
        ("  >  ", "dim"),
        (shorten_home(state.current_path), "blue"),
    )

    table = Table(show_header=False, box=None, padding=(0, 1), expand=False)
    table.add_column("", width=2)
    table.add_column("", width=2)
    table.add_column("Size", justify="right", width=10)
    table.add_column("Name")

    visible = state.visible
    page_end = min(state.scroll_offset + state.page_size, len(visible))
    for idx in range(state.scroll_offset, page_end):
        entry = visible[idx]
        badge, color = entry_badge(entry)
        name = _truncate(entry.name)
        if isinstance(entry, DirectoryEntry):
            name += "/"
        selected = idx == state.cursor
        style = "reverse" if selected else ""
        table.add_row(
            "[green]▶[/green]" if selected else "",
            badge,
            Text(_size_label(entry), style=color or ""),
            Text(name, style=style),
        )

    parts = [header, Text(""), table, Text("")]

    if not visible:
        parts.insert(2, Text("  (empty)", style="dim"))

    if len(visible) > state.page_size:
        parts.append(
            Text(
                f"  Showing {state.scroll_offset + 1}-{page_end} of {len(visible)} items",
                style="dim",
            )
        )
    if state.partial:
        parts.append(Text("  Scan hit the time limit; some sizes are estimates", style="yellow"))
    if state.status:
        parts.append(Text.from_markup(f"  {state.status}"))

    parts.append(Text(""))
    parts.append(
        Text(
            "  ↑/↓ Navigate | Enter Open | ← Back | d Delete | r Refresh | "
            "f Files | o Finder | q Quit",
            style="dim",
        )
    )
    return Group(*parts)


def render_delete_confirm(entry: EntryBase, elevated: bool) -> Panel:
    """Confirmation panel shown before a delete."""
    kind = "folder" if isinstance(entry, DirectoryEntry) else "file"
    lines = [
        f"[bold]Delete {kind}:[/bold] {escape(shorten_home(entry.path))}",
        f"[bold]Size:[/bold] {entry.size_human}",
    ]
    if elevated:
        lines.append("[yellow]Admin access is required; you will be asked for your password.[/yellow]")
    lines.append("")
    lines.append("[red]This cannot be undone.[/red]")
    lines.append("[dim]Press Enter to delete, Esc to cancel[/dim]")
    return Panel("\n".join(lines), title="[bold red]Confirm delete[/bold red]", border_style="red")


def describe_outcome(outcome: DeleteOutcome) -> str:
    """One-line status message for a delete outcome."""
    name = escape(os.path.basename(outcome.path.rstrip("/")) or outcome.path)
    if outcome.cancelled:
        return "[dim]Delete cancelled[/dim]"
    if outcome.success:
        if outcome.dry_run:
            return f"[yellow]Dry run: would free {outcome.freed_human} ({name})[/yellow]"
        return f"[green]✓ Deleted {name}, freed {outcome.freed_human}[/green]"
    reasons = "; ".join(outcome.reasons) if outcome.reasons else (outcome.error or "unknown error")
    return f"[red]✗ Could not delete {name}[/red] [dim]({reasons})[/dim]"


def show_volume_report(scan: VolumeScan, cached: bool = False) -> None:
    """Display the whole-tree analysis of one root."""
    title = f"Disk usage: {escape(shorten_home(scan.path))}"
    if cached:
        title += " [dim](cached)[/dim]"
    console.print(Panel(title, expand=False, border_style="blue"))
    console.print()

    directories = scan.directories.entries[:REPORT_LIMIT]
    if directories:
        total = scan.directories.total_bytes or 1
        max_size = directories[0].size_bytes
        table = Table(title="Top Directories", show_header=True, header_style="bold")
        table.add_column("Size", justify="right", style="blue")
        table.add_column("", no_wrap=True)
        table.add_column("%", justify="right")
        table.add_column("Path")
        for entry in directories:
            badge, _ = entry_badge(entry)
            table.add_row(
                _size_label(entry),
                size_bar(entry.size_bytes, max_size),
                f"{entry.size_bytes * 100 / total:.1f}",
                f"{badge} {escape(shorten_home(entry.path))}",
            )
        console.print(table)
        console.print()

    if not scan.search_available:
        console.print("[yellow]Note: file size search unavailable, showing directories only[/yellow]")
        console.print()
    else:
        _show_file_section("Large Files", scan.large_files)
        _show_file_section("Medium Files", scan.medium_files)

    if scan.hotspots:
        console.print("[bold]Hotspots[/bold]")
        for hotspot in scan.hotspots[:DEFAULT_HOTSPOT_LIMIT]:
            noun = "file" if hotspot.file_count == 1 else "files"
            console.print(
                f"  {BADGE_DIR} {escape(shorten_home(hotspot.directory))}  "
                f"[yellow]{hotspot.size_human}[/yellow] in {hotspot.file_count} large {noun}"
            )
        console.print()

    if scan.partial:
        console.print("[yellow]Some directory sizes are estimates (scan was cut short)[/yellow]")


def _show_file_section(title: str, hits: list) -> None:
    if not hits:
        return
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("Size", justify="right", style="yellow")
    table.add_column("", no_wrap=True)
    table.add_column("Name")
    table.add_column("Location", style="dim")
    max_size = hits[0].size_bytes
    for hit in hits[:REPORT_LIMIT]:
        badge, _ = entry_badge(FileEntry(path=hit.path, size_bytes=hit.size_bytes))
        table.add_row(
            hit.size_human,
            size_bar(hit.size_bytes, max_size),
            f"{badge} {escape(_truncate(os.path.basename(hit.path), 40))}",
            escape(shorten_home(os.path.dirname(hit.path))),
        )
    console.print(table)
    console.print()


def show_location_menu(locations: list[tuple[str, str]], cursor: int) -> Group:
    """Build the location picker frame."""
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column("", width=2)
    table.add_column("Location")
    table.add_column("Path", style="dim")
    for idx, (label, path) in enumerate(locations):
        selected = idx == cursor
        table.add_row(
            "[green]▶[/green]" if selected else "",
            Text(label, style="reverse" if selected else "bold"),
            escape(shorten_home(path)),
        )
    return Group(
        Text("Disk space explorer", style="bold blue"),
        Text(""),
        table,
        Text(""),
        Text("  ↑/↓ Navigate | Enter Explore | q Quit", style="dim"),
    )


def show_scanning_progress() -> Progress:
    """Create progress bar for scanning."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    )
