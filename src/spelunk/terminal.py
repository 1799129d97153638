"""Terminal control and key decoding for the interactive navigator.

Owns the cbreak-mode lifecycle, alternate-screen switching and cursor
visibility, and translates raw bytes from stdin into key tokens.
"""

from __future__ import annotations

import contextlib
import os
import select
import termios
import tty

ESC_SEQUENCE_TIMEOUT_MS = 25

UP = "UP"
DOWN = "DOWN"
LEFT = "LEFT"
RIGHT = "RIGHT"
ENTER = "ENTER"
ESC = "ESC"
BACKSPACE = "BACKSPACE"
DELETE = "DELETE"
PGUP = "PGUP"
PGDN = "PGDN"
HOME = "HOME"
END = "END"

_PENDING_BYTES: list[bytes] = []

# ESC [ <digit> ~ sequences
_TILDE_KEYS = {
    b"1": HOME,
    b"3": DELETE,
    b"4": END,
    b"5": PGUP,
    b"6": PGDN,
    b"7": HOME,
    b"8": END,
}


class TerminalController:
    def __init__(self, stdin_fd: int, stdout_fd: int) -> None:
        self.stdin_fd = stdin_fd
        self.stdout_fd = stdout_fd
        self._saved_tty_state = termios.tcgetattr(stdin_fd)
        self._active = False

    def enable_tui_mode(self) -> None:
        # cbreak keeps output post-processing so rich can render normally
        tty.setcbreak(self.stdin_fd, termios.TCSAFLUSH)
        # Enter alternate screen and hide cursor.
        os.write(self.stdout_fd, b"\x1b[?1049h\x1b[?25l")
        self._active = True

    def disable_tui_mode(self) -> None:
        # Show cursor and restore the main screen buffer.
        os.write(self.stdout_fd, b"\x1b[?25h\x1b[?1049l")
        termios.tcsetattr(self.stdin_fd, termios.TCSAFLUSH, self._saved_tty_state)
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    @contextlib.contextmanager
    def raw_mode(self):
        try:
            self.enable_tui_mode()
            yield
        finally:
            self.disable_tui_mode()

    @contextlib.contextmanager
    def suspended(self):
        """Temporarily hand the terminal back in cooked mode (sudo, pagers)."""
        was_active = self._active
        if was_active:
            self.disable_tui_mode()
        try:
            yield
        finally:
            if was_active:
                self.enable_tui_mode()


def _read_ready_byte(fd: int, timeout_ms: int) -> bytes | None:
    ready, _, _ = select.select([fd], [], [], max(0.0, timeout_ms / 1000.0))
    if not ready:
        return None
    ch = os.read(fd, 1)
    if not ch:
        return None
    return ch


def read_key(fd: int, timeout_ms: int | None = None) -> str:
    """Block for one key and return its token ("" on timeout or EOF)."""
    if _PENDING_BYTES:
        ch = _PENDING_BYTES.pop(0)
    else:
        if timeout_ms is not None:
            ready, _, _ = select.select([fd], [], [], max(0.0, timeout_ms / 1000.0))
            if not ready:
                return ""

        ch = os.read(fd, 1)
        if not ch:
            return ""

    if ch in {b"\x08", b"\x7f"}:
        return BACKSPACE
    if ch in {b"\r", b"\n"}:
        return ENTER
    if ch == b"\x03":
        raise KeyboardInterrupt

    if ch != b"\x1b":
        return ch.decode("utf-8", errors="replace")

    # Escape / arrow key sequences.
    seq = _read_ready_byte(fd, ESC_SEQUENCE_TIMEOUT_MS)
    if seq is None:
        return ESC
    if seq not in {b"[", b"O"}:
        _PENDING_BYTES.append(seq)
        return ESC
    seq = _read_ready_byte(fd, ESC_SEQUENCE_TIMEOUT_MS)
    if seq is None:
        return ESC
    if seq == b"A":
        return UP
    if seq == b"B":
        return DOWN
    if seq == b"C":
        return RIGHT
    if seq == b"D":
        return LEFT
    if seq == b"H":
        return HOME
    if seq == b"F":
        return END
    if seq in _TILDE_KEYS:
        tail = _read_ready_byte(fd, ESC_SEQUENCE_TIMEOUT_MS)
        if tail == b"~":
            return _TILDE_KEYS[seq]
    return ESC


def drain_pending_input(fd: int) -> int:
    """Discard keystrokes typed while the UI was busy. Returns bytes dropped."""
    _PENDING_BYTES.clear()
    dropped = 0
    while True:
        ready, _, _ = select.select([fd], [], [], 0)
        if not ready:
            return dropped
        chunk = os.read(fd, 1024)
        if not chunk:
            return dropped
        dropped += len(chunk)
