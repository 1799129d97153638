"""Concurrent directory listing and whole-tree analysis."""

import logging
import os
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Iterable, TypeVar

from spelunk.config import Settings
from spelunk.errors import Inaccessible, NotFound, SearchUnavailable
from spelunk.hotspots import aggregate
from spelunk.models import DirectoryEntry, FileEntry, FileHit, ScanResult, VolumeScan, sort_key
from spelunk.primitives import optimal_workers, scan_directory_size, search_by_size
from spelunk.probe import SizeScanner, estimate, probe

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]
SizeSearcher = Callable[[str, int, int | None], Iterable[FileHit]]

T = TypeVar("T")

_UNSET = object()


def pool_size(settings: Settings) -> int:
    """I/O worker count clamped to the configured range."""
    return max(settings.min_workers, min(settings.max_workers, optimal_workers("io")))


class ScanCoordinator:
    """
    Fans size probes out over a thread pool and merges the results.

    At most one scan per path runs at a time: a request for a path that is
    already being scanned waits for that scan and shares its result.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        scan: SizeScanner = scan_directory_size,
        search: SizeSearcher = search_by_size,
        workers: int | None = None,
    ):
        self.settings = settings or Settings()
        self.workers = workers or pool_size(self.settings)
        self._scan = scan
        self._search = search
        self._inflight: dict[tuple[str, str], Future] = {}
        self._lock = threading.Lock()

    # ─────────────────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────────────────

    def list_directory(
        self,
        path: str,
        max_items: int | None = None,
        progress: ProgressCallback | None = None,
        budget=_UNSET,
    ) -> ScanResult:
        """
        List the immediate children of ``path`` with sizes.

        Args:
            path: Directory to list
            max_items: Keep only the largest N entries (default: settings.max_items)
            progress: Optional callback(done, total) as directory probes finish
            budget: Per-directory probe budget (default: settings.probe_budget_seconds)

        Returns:
            ScanResult sorted by size descending, ties by path; ``partial``
            is set when the scan ceiling forced cancellation

        Raises:
            NotFound: Path does not exist
            Inaccessible: Path cannot be read
        """
        path = os.path.abspath(path)
        if max_items is None:
            max_items = self.settings.max_items
        if budget is _UNSET:
            budget = self.settings.probe_budget_seconds

        return self._run_once(
            ("list", path, max_items, budget),
            lambda: self._list_directory(
                path,
                max_items=max_items,
                progress=progress,
                budget=budget,
                ceiling=self.settings.scan_ceiling_seconds,
            ),
        )

    def scan_volume(self, path: str, progress: ProgressCallback | None = None) -> VolumeScan:
        """
        Whole-tree analysis of ``path``.

        Runs the large-file search, the medium-file search and a full
        (unbudgeted, untruncated) directory listing concurrently, then
        derives hotspots from the large files. A missing search primitive
        leaves the file sections empty.
        """
        path = os.path.abspath(path)
        return self._run_once(("volume", path), lambda: self._scan_volume(path, progress))

    # ─────────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────────

    def _run_once(self, key: tuple, work: Callable[[], T]) -> T:
        with self._lock:
            future = self._inflight.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[key] = future

        if not owner:
            logger.debug("Waiting for in-flight %s scan of %s", key[0], key[1])
            return future.result().model_copy(deep=True)

        try:
            result = work()
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._inflight.pop(key, None)

    def _children(self, path: str) -> tuple[list[str], list[str]]:
        if not os.path.lexists(path):
            raise NotFound(path)
        if not os.path.isdir(path):
            raise Inaccessible(f"Not a directory: {path}")

        dirs: list[str] = []
        files: list[str] = []
        try:
            with os.scandir(path) as entries:
                for entry in entries:
                    try:
                        if entry.is_dir(follow_symlinks=False):
                            dirs.append(entry.path)
                        elif entry.is_file(follow_symlinks=False):
                            files.append(entry.path)
                    except OSError:
                        continue
        except FileNotFoundError:
            raise NotFound(path)
        except OSError as e:
            raise Inaccessible(str(e)) from e
        return dirs, files

    @staticmethod
    def _stat_files(files: list[str], cancel_event: threading.Event) -> list[FileEntry]:
        entries = []
        for file_path in files:
            if cancel_event.is_set():
                break
            try:
                size = os.stat(file_path, follow_symlinks=False).st_size
                entries.append(FileEntry(path=file_path, size_bytes=size))
            except FileNotFoundError:
                continue
            except OSError as e:
                entries.append(FileEntry(path=file_path, size_bytes=0, error=str(e)))
        return entries

    def _list_directory(
        self,
        path: str,
        max_items: int | None,
        progress: ProgressCallback | None,
        budget: float | None,
        ceiling: float | None,
    ) -> ScanResult:
        dirs, files = self._children(path)
        cancel_event = threading.Event()
        deadline = time.monotonic() + ceiling if ceiling is not None else None
        total = len(dirs)
        done_count = 0
        partial = False

        entries: list[DirectoryEntry | FileEntry] = []

        logger.debug("Listing %s: %d dirs, %d files, %d workers", path, len(dirs), len(files), self.workers)

        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            file_future = executor.submit(self._stat_files, files, cancel_event)
            future_to_dir = {
                executor.submit(probe, d, budget, cancel_event, self._scan): d for d in dirs
            }
            pending: set[Future] = set(future_to_dir) | {file_future}

            while pending:
                timeout = None
                if deadline is not None:
                    timeout = deadline - time.monotonic()
                    if timeout <= 0:
                        partial = True
                        break
                done, pending = wait(pending, timeout=timeout, return_when=FIRST_COMPLETED)
                for future in done:
                    if future is not file_future:
                        done_count += 1
                        if progress:
                            progress(done_count, total)

            if partial:
                logger.info("Scan of %s hit the %.0fs ceiling, cancelling %d probes", path, ceiling, len(pending))
                cancel_event.set()
                for future in pending:
                    future.cancel()
                # Running probes kill their subprocess and return estimates
                wait(pending)

        for future, dir_path in future_to_dir.items():
            # Probes cancelled before they started still get a shallow estimate
            result = estimate(dir_path) if future.cancelled() else future.result()
            entries.append(
                DirectoryEntry(
                    path=dir_path,
                    size_bytes=result.size_bytes,
                    certainty=result.certainty,
                    error=result.error,
                )
            )
        if file_future.cancelled():
            entries.extend(self._stat_files(files, threading.Event()))
        else:
            entries.extend(file_future.result())

        # Truncate only after the full sort so nothing is reported out of order
        entries.sort(key=sort_key)
        if max_items is not None:
            entries = entries[:max_items]

        return ScanResult(path=path, entries=entries, partial=partial)

    def _collect_hits(self, root: str, min_bytes: int, max_bytes: int | None) -> tuple[list[FileHit], bool]:
        try:
            hits = list(self._search(root, min_bytes, max_bytes))
        except SearchUnavailable as e:
            logger.debug("Size search unavailable (%s), directory-only scan", e)
            return [], False
        except OSError as e:
            logger.debug("Size search under %s failed: %s", root, e)
            return [], True
        hits.sort(key=lambda h: (-h.size_bytes, h.path))
        return hits, True

    def _scan_volume(self, path: str, progress: ProgressCallback | None) -> VolumeScan:
        large_bytes = self.settings.large_file_bytes
        medium_bytes = self.settings.medium_file_bytes

        with ThreadPoolExecutor(max_workers=3) as executor:
            large_future = executor.submit(self._collect_hits, path, large_bytes, None)
            medium_future = executor.submit(self._collect_hits, path, medium_bytes, large_bytes)
            listing_future = executor.submit(
                self._list_directory,
                path,
                max_items=None,
                progress=progress,
                budget=None,
                ceiling=None,
            )
            large_files, large_available = large_future.result()
            medium_files, medium_available = medium_future.result()
            directories = listing_future.result()

        return VolumeScan(
            path=path,
            large_files=large_files,
            medium_files=medium_files,
            directories=directories,
            hotspots=aggregate(large_files),
            search_available=large_available and medium_available,
        )
