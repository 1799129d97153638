"""Confirmed, privilege-aware deletion of a listing entry."""

import logging
import os
from pathlib import Path
from typing import Callable

from spelunk.errors import DeleteFailed, PrivilegeDenied
from spelunk.models import DeleteOutcome, DirectoryEntry, FileEntry
from spelunk.primitives import delete_path, expand_path, request_privilege

logger = logging.getLogger(__name__)

# Paths that should NEVER be deleted, even with admin rights
BLOCKED_PATHS = [
    "/",
    "~",
    "~/Documents",
    "~/Desktop",
    "~/Library",
    "/System",
    "/Library",
    "/Applications",
    "/Users",
    "/Volumes",
    "/usr",
    "/bin",
    "/sbin",
    "/var",
    "/private",
    "/etc",
]

# Shown when a delete fails; exact OS errors are not mapped
FAILURE_REASONS = [
    "File is being used by another application",
    "Insufficient permissions",
    "System protection (SIP) prevents deletion",
]

ConfirmCallback = Callable[[DirectoryEntry | FileEntry, bool], bool]


def is_path_safe(path: str) -> bool:
    """
    Check if a path may be deleted.

    Args:
        path: Absolute path to check

    Returns:
        False for the filesystem root, the home directory and other
        blocked locations, True otherwise
    """
    path_str = os.path.abspath(path).rstrip("/") or "/"
    for blocked in BLOCKED_PATHS:
        blocked_expanded = str(expand_path(blocked)).rstrip("/") or "/"
        if path_str == blocked_expanded:
            return False
    return path_str != str(Path.home())


def needs_privilege(path: str) -> bool:
    """True if the entry or its parent directory is not writable by us."""
    parent = os.path.dirname(os.path.abspath(path))
    return not os.access(path, os.W_OK) or not os.access(parent, os.W_OK)


class DeletionWorkflow:
    """Confirmation, privilege check and delete for one entry at a time."""

    def __init__(
        self,
        delete: Callable[..., None] = delete_path,
        elevate: Callable[[], None] = request_privilege,
        dry_run: bool = False,
    ):
        self._delete = delete
        self._elevate = elevate
        self.dry_run = dry_run

    def execute(self, entry: DirectoryEntry | FileEntry, confirm: ConfirmCallback) -> DeleteOutcome:
        """
        Delete ``entry`` after explicit confirmation.

        Args:
            entry: Listing entry to delete
            confirm: callback(entry, needs_privilege) -> bool; nothing is
                deleted unless it returns True

        Returns:
            DeleteOutcome; ``bytes_freed`` is the size already known from
            the listing
        """
        path = entry.path

        if not is_path_safe(path):
            return DeleteOutcome(
                path=path,
                success=False,
                error=f"Blocked path: {path}",
                reasons=["Protected location"],
            )

        elevated = needs_privilege(path) if os.path.lexists(path) else False

        if not confirm(entry, elevated):
            return DeleteOutcome(path=path, success=False, cancelled=True)

        if elevated and not self.dry_run:
            try:
                self._elevate()
            except PrivilegeDenied as e:
                logger.info("Privilege elevation refused for %s", path)
                return DeleteOutcome(
                    path=path,
                    success=False,
                    elevated=True,
                    error=str(e) or "Admin access denied",
                    reasons=["Admin access denied"],
                )

        if self.dry_run:
            logger.info("Dry run: would delete %s (%s)", path, entry.size_human)
            return DeleteOutcome(
                path=path,
                success=True,
                bytes_freed=entry.size_bytes,
                elevated=elevated,
                dry_run=True,
            )

        try:
            self._delete(path, elevated=elevated)
        except DeleteFailed as e:
            logger.warning("Delete of %s failed: %s", path, e)
            return DeleteOutcome(
                path=path,
                success=False,
                elevated=elevated,
                error=str(e),
                reasons=list(FAILURE_REASONS),
            )

        logger.info("Deleted %s (%s)", path, entry.size_human)
        return DeleteOutcome(path=path, success=True, bytes_freed=entry.size_bytes, elevated=elevated)
