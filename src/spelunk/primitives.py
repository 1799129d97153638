"""System primitives: recursive sizing, size search, delete, privilege.

Each primitive talks to the OS (``du``, ``mdfind``, ``rm``, ``sudo``) and
signals problems by raising from :mod:`spelunk.errors`. Recovery policy
lives in the callers.
"""

import logging
import os
import shutil
import subprocess
import threading
import time
from pathlib import Path
from typing import Iterator

from spelunk.errors import (
    DeleteFailed,
    Inaccessible,
    NotFound,
    PrivilegeDenied,
    ProbeTimeout,
    SearchUnavailable,
)
from spelunk.models import FileHit

logger = logging.getLogger(__name__)

# How often a running probe checks its deadline and cancel flag
POLL_INTERVAL = 0.05


def expand_path(path: str) -> Path:
    """Expand ~ and environment variables in path."""
    return Path(os.path.expanduser(os.path.expandvars(path)))


def optimal_workers(kind: str = "default") -> int:
    """Worker count for a kind of work, derived from logical CPUs."""
    cpu_cores = os.cpu_count() or 4
    if kind in ("scan", "io"):
        return cpu_cores * 2
    if kind == "compute":
        return cpu_cores
    return cpu_cores + 2


def _check_interrupt(cancel_event: threading.Event | None, deadline: float | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise ProbeTimeout("cancelled")
    if deadline is not None and time.monotonic() >= deadline:
        raise ProbeTimeout("budget exceeded")


def _walk_size(
    path: str,
    cancel_event: threading.Event | None,
    deadline: float | None,
) -> int:
    """In-process recursive size used when ``du`` is not installed."""
    total_size = 0
    pending = [path]

    while pending:
        _check_interrupt(cancel_event, deadline)
        current = pending.pop()
        try:
            with os.scandir(current) as entries:
                for entry in entries:
                    try:
                        if entry.is_file(follow_symlinks=False):
                            total_size += entry.stat(follow_symlinks=False).st_size
                        elif entry.is_dir(follow_symlinks=False):
                            pending.append(entry.path)
                    except OSError:
                        continue
        except PermissionError:
            if current == path:
                raise Inaccessible(f"Permission denied: {path}")
        except OSError as e:
            if current == path:
                raise Inaccessible(str(e)) from e

    return total_size


def scan_directory_size(
    path: str,
    cancel_event: threading.Event | None = None,
    timeout: float | None = None,
) -> int:
    """
    Recursive size of a directory via ``du -sk``.

    The subprocess is killed and reaped if the timeout passes or the cancel
    event is set, so no ``du`` outlives the call.

    Args:
        path: Directory to measure
        cancel_event: Optional event that aborts the measurement when set
        timeout: Wall-clock budget in seconds (None = unbounded)

    Returns:
        Size in bytes

    Raises:
        ProbeTimeout: Budget exceeded or cancelled
        NotFound: Path does not exist
        Inaccessible: du produced no usable output
    """
    if not os.path.lexists(path):
        raise NotFound(path)

    deadline = time.monotonic() + timeout if timeout is not None else None
    du = shutil.which("du")
    if du is None:
        return _walk_size(path, cancel_event, deadline)

    proc = subprocess.Popen(
        [du, "-sk", path],
        stdout=subprocess.PIPE,
        stderr=subprocess.DEVNULL,
        text=True,
    )
    try:
        while True:
            try:
                stdout, _ = proc.communicate(timeout=POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                _check_interrupt(cancel_event, deadline)
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()
            logger.debug("Killed du for %s", path)

    # du exits non-zero when some children are unreadable but still prints a total
    first_line = stdout.strip().splitlines()[0] if stdout.strip() else ""
    try:
        return int(first_line.split()[0]) * 1024
    except (IndexError, ValueError):
        raise Inaccessible(f"du reported nothing for {path}")


def shallow_size(path: str) -> int:
    """Sum of file sizes directly inside ``path`` (no recursion)."""
    total = 0
    try:
        with os.scandir(path) as entries:
            for entry in entries:
                try:
                    if entry.is_file(follow_symlinks=False):
                        total += entry.stat(follow_symlinks=False).st_size
                except OSError:
                    continue
    except OSError:
        return 0
    return total


def search_by_size(
    root: str,
    min_bytes: int,
    max_bytes: int | None = None,
) -> Iterator[FileHit]:
    """
    Lazily yield files under ``root`` sized within [min_bytes, max_bytes).

    Backed by the Spotlight index (``mdfind``). Results that are no longer
    regular files by the time they are read are skipped.

    Raises:
        SearchUnavailable: mdfind is not installed
    """
    mdfind = shutil.which("mdfind")
    if mdfind is None:
        raise SearchUnavailable("mdfind not found")

    query = f"kMDItemFSSize >= {min_bytes}"
    if max_bytes is not None:
        query += f" && kMDItemFSSize < {max_bytes}"

    return _search_results(mdfind, root, query)


def _search_results(mdfind: str, root: str, query: str) -> Iterator[FileHit]:
    proc = subprocess.Popen(
        [mdfind, "-onlyin", root, query],
        stdout=subprocess.PIPE,
        stderr=subprocess.DEVNULL,
        text=True,
    )
    try:
        for line in proc.stdout:
            file_path = line.rstrip("\n")
            if not file_path:
                continue
            try:
                st = os.stat(file_path, follow_symlinks=False)
            except OSError:
                continue
            if not os.path.isfile(file_path) or os.path.islink(file_path):
                continue
            yield FileHit(path=file_path, size_bytes=st.st_size)
    finally:
        if proc.poll() is None:
            proc.kill()
        proc.wait()
        if proc.stdout is not None:
            proc.stdout.close()


def delete_path(path: str, elevated: bool = False) -> None:
    """
    Recursively delete a file or directory.

    A target that is already gone counts as success.

    Raises:
        DeleteFailed: The path still exists after the attempt
    """
    if not os.path.lexists(path):
        return

    if elevated:
        result = subprocess.run(
            ["sudo", "rm", "-rf", path],
            capture_output=True,
            text=True,
        )
        if result.returncode != 0 and os.path.lexists(path):
            raise DeleteFailed(result.stderr.strip() or f"sudo rm exited {result.returncode}")
        return

    try:
        if os.path.isdir(path) and not os.path.islink(path):
            shutil.rmtree(path)
        else:
            os.unlink(path)
    except FileNotFoundError:
        return
    except OSError as e:
        raise DeleteFailed(str(e)) from e


def request_privilege() -> None:
    """
    Make sure sudo credentials are cached, asking the user if needed.

    Must be called with the terminal in cooked mode so the password prompt
    is usable.

    Raises:
        PrivilegeDenied: sudo is missing or authentication failed
    """
    if shutil.which("sudo") is None:
        raise PrivilegeDenied("sudo not available")

    if subprocess.run(["sudo", "-n", "true"], capture_output=True).returncode == 0:
        return

    if subprocess.run(["sudo", "-v"]).returncode != 0:
        raise PrivilegeDenied("Admin access denied")


def open_path(path: str) -> bool:
    """Hand a path to the desktop opener (Finder on macOS)."""
    opener = shutil.which("open") or shutil.which("xdg-open")
    if opener is None:
        return False
    try:
        return (
            subprocess.run(
                [opener, path],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=10,
            ).returncode
            == 0
        )
    except (subprocess.TimeoutExpired, OSError):
        return False
