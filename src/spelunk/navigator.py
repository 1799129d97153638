"""Interactive drill-down navigator.

All mutable session state lives in one :class:`NavigatorState`. The
transition functions below are pure: they take a state and return a new
one. :class:`Navigator` wires them to key presses, scans, deletes and
rendering.
"""

from __future__ import annotations

import contextlib
import glob
import logging
import os
from dataclasses import dataclass, field, replace
from enum import Enum, auto
from typing import Callable, Optional

from rich.console import Console, RenderableType
from rich.markup import escape

from spelunk.cache import ScanCache
from spelunk.config import Settings
from spelunk.coordinator import ScanCoordinator
from spelunk.deletion import DeletionWorkflow
from spelunk.display import (
    describe_outcome,
    render_delete_confirm,
    render_listing,
    shorten_home,
    show_location_menu,
)
from spelunk.display import console as default_console
from spelunk.errors import Inaccessible, NotFound
from spelunk.models import DirectoryEntry, EntryBase, FileEntry, ScanResult
from spelunk.primitives import open_path, request_privilege
from spelunk.terminal import (
    BACKSPACE,
    DELETE,
    DOWN,
    END,
    ENTER,
    ESC,
    HOME,
    LEFT,
    PGDN,
    PGUP,
    RIGHT,
    UP,
    TerminalController,
    drain_pending_input,
    read_key,
)

logger = logging.getLogger(__name__)

KeySource = Callable[[], str]


class Phase(Enum):
    """States of the navigator state machine."""

    LISTING = auto()
    SCANNING = auto()
    CONFIRMING_DELETE = auto()
    ERROR = auto()


class ViewMode(Enum):
    """Which entries of the listing are shown."""

    ALL = auto()
    FILES = auto()


class DrillResult(Enum):
    """How a navigator session ended."""

    QUIT = auto()  # User aborted; callers should exit too
    RETURNED = auto()  # Backed out of the root; caller resumes


# Key bindings
MOVE_UP_KEYS = {UP, "k"}
MOVE_DOWN_KEYS = {DOWN, "j"}
PAGE_UP_KEYS = {PGUP}
PAGE_DOWN_KEYS = {PGDN, " "}
TOP_KEYS = {HOME, "g"}
BOTTOM_KEYS = {END, "G"}
OPEN_KEYS = {ENTER, RIGHT, "l"}
BACK_KEYS = {LEFT, "h", BACKSPACE}
DELETE_KEYS = {"d", "D", DELETE}
REFRESH_KEYS = {"r", "R"}
REVEAL_KEYS = {"o", "O"}
VIEW_KEYS = {"f", "F"}
QUIT_KEYS = {"q", "Q", ESC}


@dataclass
class NavigatorState:
    """
    Everything the navigator knows about the session.

    Invariants (whenever ``visible`` is non-empty):
    ``cursor < len(visible)`` and
    ``scroll_offset <= cursor < scroll_offset + page_size``.
    """

    current_path: str
    path_stack: list[str] = field(default_factory=list)
    cursor: int = 0
    scroll_offset: int = 0
    items: list[EntryBase] = field(default_factory=list)
    view_mode: ViewMode = ViewMode.ALL
    page_size: int = 15
    phase: Phase = Phase.SCANNING
    status: str = ""
    partial: bool = False
    # Path to select once the next listing arrives (set when backing out)
    focus: Optional[str] = None

    @property
    def visible(self) -> list[EntryBase]:
        if self.view_mode == ViewMode.FILES:
            return [e for e in self.items if isinstance(e, FileEntry)]
        return self.items

    @property
    def selected(self) -> Optional[EntryBase]:
        visible = self.visible
        if 0 <= self.cursor < len(visible):
            return visible[self.cursor]
        return None

    @property
    def at_root(self) -> bool:
        return not self.path_stack

    def is_placeholder(self, entry: EntryBase) -> bool:
        """The synthetic entry standing for the current directory itself."""
        return entry.path == self.current_path


# ─────────────────────────────────────────────────────────────────────────────
# Transitions
# ─────────────────────────────────────────────────────────────────────────────


def _clamped(state: NavigatorState, cursor: int, scroll_offset: Optional[int] = None) -> NavigatorState:
    count = len(state.visible)
    cursor = max(0, min(cursor, count - 1)) if count else 0
    scroll = state.scroll_offset if scroll_offset is None else scroll_offset
    scroll = max(0, min(scroll, max(0, count - state.page_size)))
    if cursor < scroll:
        scroll = cursor
    elif cursor >= scroll + state.page_size:
        scroll = cursor - state.page_size + 1
    return replace(state, cursor=cursor, scroll_offset=scroll)


def move_cursor(state: NavigatorState, delta: int) -> NavigatorState:
    """Move the cursor by ``delta`` rows, scrolling as needed."""
    return _clamped(state, state.cursor + delta)


def page(state: NavigatorState, direction: int) -> NavigatorState:
    """Scroll one page up (-1) or down (+1)."""
    step = direction * state.page_size
    return _clamped(state, state.cursor + step, state.scroll_offset + step)


def jump(state: NavigatorState, to_end: bool) -> NavigatorState:
    return _clamped(state, len(state.visible) - 1 if to_end else 0)


def toggle_view(state: NavigatorState) -> NavigatorState:
    mode = ViewMode.FILES if state.view_mode == ViewMode.ALL else ViewMode.ALL
    return _clamped(replace(state, view_mode=mode), 0, 0)


def open_selected(state: NavigatorState) -> Optional[NavigatorState]:
    """
    Descend into the selected directory.

    Returns:
        New state in the SCANNING phase, or None if the selection is not a
        directory that can be opened
    """
    entry = state.selected
    if not isinstance(entry, DirectoryEntry) or state.is_placeholder(entry):
        return None
    return replace(
        state,
        path_stack=[*state.path_stack, state.current_path],
        current_path=entry.path,
        cursor=0,
        scroll_offset=0,
        items=[],
        phase=Phase.SCANNING,
        status="",
        partial=False,
        focus=None,
    )


def go_back(state: NavigatorState) -> Optional[NavigatorState]:
    """
    Pop the path stack.

    Returns:
        New state in the SCANNING phase for the parent, or None when the
        stack is empty and control belongs to the caller
    """
    if not state.path_stack:
        return None
    return replace(
        state,
        path_stack=state.path_stack[:-1],
        current_path=state.path_stack[-1],
        cursor=0,
        scroll_offset=0,
        items=[],
        phase=Phase.SCANNING,
        status="",
        partial=False,
        focus=state.current_path,
    )


def apply_listing(state: NavigatorState, result: ScanResult) -> NavigatorState:
    """Install a finished scan and return to the LISTING phase."""
    new_state = replace(
        state,
        items=list(result.entries),
        partial=result.partial,
        phase=Phase.LISTING,
        focus=None,
    )
    cursor = state.cursor
    if state.focus is not None:
        for idx, entry in enumerate(new_state.visible):
            if entry.path == state.focus:
                cursor = idx
                break
    return _clamped(new_state, cursor)


def repair_after_delete(state: NavigatorState) -> NavigatorState:
    """
    Keep the cursor in bounds once the deleted entry is gone.

    The listing still holds the deleted entry; the cursor moves to where
    the new last item will be if the deleted one was last.
    """
    cursor = max(0, min(state.cursor, len(state.visible) - 2))
    return replace(_clamped(state, cursor), phase=Phase.SCANNING)


def placeholder_items(path: str) -> list[EntryBase]:
    """A single entry standing for ``path`` itself, so an empty root stays navigable."""
    return [DirectoryEntry(path=path, size_bytes=0)]


# ─────────────────────────────────────────────────────────────────────────────
# Interactive session
# ─────────────────────────────────────────────────────────────────────────────


def terminal_keys(terminal: TerminalController) -> KeySource:
    """Key source reading from the controller's stdin."""
    return lambda: read_key(terminal.stdin_fd)


class Navigator:
    """One drill-down session starting at ``start_path``."""

    def __init__(
        self,
        start_path: str,
        cache: ScanCache,
        coordinator: ScanCoordinator,
        deletion: Optional[DeletionWorkflow] = None,
        keys: Optional[KeySource] = None,
        console: Optional[Console] = None,
        settings: Optional[Settings] = None,
        terminal: Optional[TerminalController] = None,
        opener: Callable[[str], bool] = open_path,
        dry_run: bool = False,
    ):
        if keys is None and terminal is None:
            raise ValueError("Navigator needs a terminal or a key source")
        self.settings = settings or coordinator.settings
        self.cache = cache
        self.coordinator = coordinator
        self.deletion = deletion or DeletionWorkflow(elevate=self._elevate, dry_run=dry_run)
        self.console = console or default_console
        self.terminal = terminal
        self._keys = keys or terminal_keys(terminal)
        self._opener = opener
        self.state = NavigatorState(
            current_path=os.path.abspath(start_path),
            page_size=self.settings.page_size,
        )

    def run(self) -> DrillResult:
        """Run until the user quits or backs out of the starting directory."""
        try:
            with self._tui():
                return self._loop()
        except KeyboardInterrupt:
            return DrillResult.QUIT
        finally:
            self.cache.close()

    # ── loop ────────────────────────────────────────────────────────────────

    def _tui(self):
        if self.terminal is not None and not self.terminal.active:
            return self.terminal.raw_mode()
        return contextlib.nullcontext()

    def _loop(self) -> DrillResult:
        while True:
            if self.state.phase == Phase.SCANNING:
                self._scan()
                continue

            self._show(render_listing(self.state))
            # Status messages are shown once
            self.state = replace(self.state, status="")

            key = self._keys()
            if not key:
                # stdin closed
                return DrillResult.QUIT
            result = self.handle_key(key)
            if result is not None:
                return result

    def handle_key(self, key: str) -> Optional[DrillResult]:
        """Apply one key press. Returns a DrillResult when the session ends."""
        state = self.state

        if key in QUIT_KEYS:
            return DrillResult.QUIT
        if key in MOVE_UP_KEYS:
            self.state = move_cursor(state, -1)
        elif key in MOVE_DOWN_KEYS:
            self.state = move_cursor(state, 1)
        elif key in PAGE_UP_KEYS:
            self.state = page(state, -1)
        elif key in PAGE_DOWN_KEYS:
            self.state = page(state, 1)
        elif key in TOP_KEYS:
            self.state = jump(state, to_end=False)
        elif key in BOTTOM_KEYS:
            self.state = jump(state, to_end=True)
        elif key in VIEW_KEYS:
            self.state = toggle_view(state)
        elif key in BACK_KEYS:
            parent = go_back(state)
            if parent is None:
                return DrillResult.RETURNED
            self.state = parent
        elif key in OPEN_KEYS:
            self._open(state.selected)
        elif key in DELETE_KEYS:
            self._delete_selected()
        elif key in REFRESH_KEYS:
            self.cache.invalidate(state.current_path)
            self.state = replace(state, phase=Phase.SCANNING, focus=None)
        elif key in REVEAL_KEYS:
            self._reveal()
        return None

    def _show(self, renderable: RenderableType) -> None:
        self.console.clear()
        self.console.print(renderable)

    @contextlib.contextmanager
    def _suspended(self):
        if self.terminal is None:
            yield
        else:
            with self.terminal.suspended():
                yield

    def _drain(self) -> None:
        if self.terminal is not None:
            dropped = drain_pending_input(self.terminal.stdin_fd)
            if dropped:
                logger.debug("Dropped %d bytes typed during scan", dropped)

    # ── scanning ────────────────────────────────────────────────────────────

    def _scan_listing(self, path: str) -> ScanResult:
        name = escape(shorten_home(path))
        self.console.clear()
        with self.console.status(f"Scanning {name}...", spinner="dots") as status:

            def progress(done: int, total: int) -> None:
                status.update(f"Scanning {name}... {done}/{total}")

            try:
                return self.coordinator.list_directory(path, progress=progress)
            finally:
                self._drain()

    def _scan(self) -> None:
        path = self.state.current_path
        listing = self.cache.get(path)
        if listing is None:
            try:
                listing = self._scan_listing(path)
            except NotFound:
                self._recover(path, f"[red]Not found:[/red] {escape(shorten_home(path))}")
                return
            except Inaccessible as e:
                logger.debug("Cannot read %s: %s", path, e)
                self._recover(path, f"[red]Cannot read:[/red] {escape(shorten_home(path))}")
                return
            if listing.entries:
                self.cache.put(path, listing)
        else:
            logger.debug("Session cache hit for %s", path)

        if not listing.entries:
            listing = self._handle_empty(path, listing)
            if listing is None:
                return

        status = self.state.status
        self.state = replace(apply_listing(self.state, listing), status=status)

    def _recover(self, path: str, message: str) -> None:
        """Leave a directory that vanished or cannot be read."""
        self.state = replace(self.state, phase=Phase.ERROR, status=message)
        self.cache.invalidate(path)
        if self.state.path_stack:
            # The parent listing still shows the missing entry
            self.cache.invalidate(self.state.path_stack[-1])
            self.state = replace(go_back(self.state), status=message)
        else:
            self.state = replace(
                apply_listing(self.state, ScanResult(path=path, entries=placeholder_items(path))),
                status=message,
            )

    def _handle_empty(self, path: str, listing: ScanResult) -> Optional[ScanResult]:
        if self._offer_retry(path):
            self.cache.invalidate(path)
            try:
                listing = self._scan_listing(path)
            except (NotFound, Inaccessible) as e:
                self._recover(path, f"[red]Cannot read:[/red] {escape(shorten_home(path))} ({e})")
                return None
            if listing.entries:
                self.cache.put(path, listing)
                return listing

        if self.state.path_stack:
            message = f"[yellow]Empty directory:[/yellow] {escape(shorten_home(path))}"
            self.state = replace(go_back(self.state), status=message)
            return None
        return ScanResult(path=path, entries=placeholder_items(path))

    def _offer_retry(self, path: str) -> bool:
        self._show(
            f"[yellow]{escape(shorten_home(path))} appears empty.[/yellow]\n\n"
            "[dim]Press r to retry, any other key to continue[/dim]"
        )
        return self._keys() in REFRESH_KEYS

    # ── actions ─────────────────────────────────────────────────────────────

    def _open(self, entry: Optional[EntryBase]) -> None:
        if entry is None or self.state.is_placeholder(entry):
            self.state = replace(self.state, status="[dim]Nothing to open[/dim]")
            return
        if isinstance(entry, DirectoryEntry):
            opened = open_selected(self.state)
            if opened is not None:
                self.state = opened
            return
        if self._opener(entry.path):
            self.state = replace(self.state, status=f"Opened {escape(entry.name)}")
        else:
            self.state = replace(self.state, status=f"[red]Could not open {escape(entry.name)}[/red]")

    def _reveal(self) -> None:
        path = self.state.current_path
        if self._opener(path):
            self.state = replace(self.state, status=f"Opened {escape(shorten_home(path))} in Finder")
        else:
            self.state = replace(self.state, status="[red]Could not open Finder[/red]")

    def _elevate(self) -> None:
        with self._suspended():
            self.console.print("[yellow]Admin access required[/yellow]")
            request_privilege()

    def _confirm_delete(self, entry: EntryBase, elevated: bool) -> bool:
        self.state = replace(self.state, phase=Phase.CONFIRMING_DELETE)
        self._show(render_delete_confirm(entry, elevated))
        while True:
            key = self._keys()
            if key == ENTER:
                return True
            if not key or key in QUIT_KEYS or key in {"n", "N"}:
                return False

    def _delete_selected(self) -> None:
        entry = self.state.selected
        if entry is None or self.state.is_placeholder(entry):
            self.state = replace(self.state, status="[dim]Nothing to delete[/dim]")
            return

        outcome = self.deletion.execute(entry, self._confirm_delete)
        message = describe_outcome(outcome)

        if outcome.success and not outcome.dry_run:
            self._invalidate_after_delete(entry.path)
            self.state = replace(repair_after_delete(self.state), status=message)
        else:
            self.state = replace(self.state, phase=Phase.LISTING, status=message)

    def _invalidate_after_delete(self, target: str) -> None:
        self.cache.invalidate_tree(target)
        self.cache.invalidate_ancestors(target)


# ─────────────────────────────────────────────────────────────────────────────
# Location menu
# ─────────────────────────────────────────────────────────────────────────────


def default_locations() -> list[tuple[str, str]]:
    """Starting points offered by the location menu, existing ones only."""
    home = os.path.expanduser("~")
    candidates = [
        ("Home", home),
        ("Downloads", os.path.join(home, "Downloads")),
        ("Applications", "/Applications"),
        ("User Library", os.path.join(home, "Library")),
        ("System Library", "/Library"),
    ]
    for volume in sorted(glob.glob("/Volumes/*")):
        if os.path.isdir(volume) and not os.path.islink(volume):
            candidates.append((os.path.basename(volume), volume))
    return [(label, path) for label, path in candidates if os.path.isdir(path)]


class LocationMenu:
    """Caller-level menu; resumes whenever a navigator backs out of its root."""

    def __init__(
        self,
        navigator_factory: Callable[[str], Navigator],
        keys: Optional[KeySource] = None,
        console: Optional[Console] = None,
        terminal: Optional[TerminalController] = None,
        locations: Optional[list[tuple[str, str]]] = None,
    ):
        if keys is None and terminal is None:
            raise ValueError("LocationMenu needs a terminal or a key source")
        self._factory = navigator_factory
        self._keys = keys or terminal_keys(terminal)
        self.console = console or default_console
        self.terminal = terminal
        self.locations = default_locations() if locations is None else locations
        self.cursor = 0

    def run(self) -> DrillResult:
        """Show the menu until the user quits."""
        if not self.locations:
            self.console.print("[red]No locations available[/red]")
            return DrillResult.QUIT
        try:
            if self.terminal is not None and not self.terminal.active:
                with self.terminal.raw_mode():
                    return self._loop()
            return self._loop()
        except KeyboardInterrupt:
            return DrillResult.QUIT

    def _loop(self) -> DrillResult:
        while True:
            self.console.clear()
            self.console.print(show_location_menu(self.locations, self.cursor))
            key = self._keys()
            if not key or key in QUIT_KEYS:
                return DrillResult.QUIT
            if key in MOVE_UP_KEYS:
                self.cursor = max(0, self.cursor - 1)
            elif key in MOVE_DOWN_KEYS:
                self.cursor = min(len(self.locations) - 1, self.cursor + 1)
            elif key in OPEN_KEYS:
                _, path = self.locations[self.cursor]
                logger.debug("Exploring %s from location menu", path)
                if self._factory(path).run() == DrillResult.QUIT:
                    return DrillResult.QUIT
