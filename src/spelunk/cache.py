"""Session and on-disk caches for scan results."""

import hashlib
import logging
import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from spelunk.models import CacheRecord, ScanResult, VolumeScan

logger = logging.getLogger(__name__)

# Bump when the on-disk layout changes; older records read as misses
CACHE_VERSION = 1
DEFAULT_TTL = 3600  # 1 hour


def path_key(path: str) -> str:
    """Stable hash of an absolute path."""
    return hashlib.md5(os.path.abspath(path).encode("utf-8")).hexdigest()


def _is_within(path: str, root: str) -> bool:
    root = root.rstrip("/") or "/"
    return path == root or path.startswith(root if root == "/" else root + "/")


class SessionCache:
    """
    Per-session listings, keyed by absolute path.

    Listings live in memory and are mirrored as JSON into a private
    temporary directory that is removed by :meth:`close`.
    """

    def __init__(self, prefix: str = "spelunk-"):
        self._entries: dict[str, ScanResult] = {}
        self.directory = Path(tempfile.mkdtemp(prefix=prefix))

    def __enter__(self) -> "SessionCache":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _mirror_file(self, path: str) -> Path:
        return self.directory / f"{path_key(path)}.json"

    def get(self, path: str) -> ScanResult | None:
        path = os.path.abspath(path)
        result = self._entries.get(path)
        if result is None:
            mirror = self._mirror_file(path)
            if not mirror.exists():
                return None
            try:
                result = ScanResult.model_validate_json(mirror.read_text())
            except (OSError, ValidationError) as e:
                logger.debug("Dropping unreadable session record for %s: %s", path, e)
                mirror.unlink(missing_ok=True)
                return None
            self._entries[path] = result
        return result.model_copy(deep=True)

    def put(self, path: str, result: ScanResult) -> None:
        path = os.path.abspath(path)
        self._entries[path] = result.model_copy(deep=True)
        try:
            self._mirror_file(path).write_text(result.model_dump_json())
        except OSError as e:
            logger.debug("Could not mirror session record for %s: %s", path, e)

    def invalidate(self, path: str) -> None:
        path = os.path.abspath(path)
        self._entries.pop(path, None)
        try:
            self._mirror_file(path).unlink(missing_ok=True)
        except OSError:
            pass

    def invalidate_tree(self, path: str) -> None:
        """Drop ``path`` and every cached descendant."""
        path = os.path.abspath(path)
        for cached in [p for p in self._entries if _is_within(p, path)]:
            self.invalidate(cached)
        self.invalidate(path)

    def clear(self) -> None:
        for cached in list(self._entries):
            self.invalidate(cached)

    def close(self) -> None:
        """Forget all listings and remove the session directory."""
        self._entries.clear()
        shutil.rmtree(self.directory, ignore_errors=True)

    def __contains__(self, path: str) -> bool:
        return self.get(path) is not None

    def __len__(self) -> int:
        return len(self._entries)


class DiskCache:
    """
    Whole-volume scans persisted across invocations.

    One JSON file per scanned root, named by the hash of its absolute path.
    A record is valid while its age is under the TTL. Expired files are not
    reclaimed; they are overwritten by the next scan of the same root.
    """

    def __init__(
        self,
        cache_dir: Path,
        ttl_seconds: int = DEFAULT_TTL,
        clock: Callable[[], float] = time.time,
    ):
        self.cache_dir = Path(cache_dir)
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def cache_file(self, path: str) -> Path:
        return self.cache_dir / f"scan_{path_key(path)}.json"

    def get(self, path: str) -> VolumeScan | None:
        cache_file = self.cache_file(path)
        if not cache_file.exists():
            return None

        try:
            record = CacheRecord.model_validate_json(cache_file.read_text())
        except (OSError, ValidationError) as e:
            logger.debug("Ignoring unreadable cache file %s: %s", cache_file, e)
            return None

        if record.version != CACHE_VERSION or record.key != path_key(path):
            return None

        age = self._clock() - record.created_at
        if age >= self.ttl_seconds:
            logger.debug("Cache for %s expired (%.0fs old)", path, age)
            return None

        logger.debug("Cache hit for %s (%.0fs old)", path, age)
        return record.payload

    def put(self, path: str, scan: VolumeScan) -> bool:
        record = CacheRecord(
            version=CACHE_VERSION,
            key=path_key(path),
            path=os.path.abspath(path),
            created_at=self._clock(),
            payload=scan,
        )
        cache_file = self.cache_file(path)
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            tmp_file = cache_file.with_suffix(".tmp")
            tmp_file.write_text(record.model_dump_json())
            os.replace(tmp_file, cache_file)
            return True
        except OSError as e:
            logger.warning("Could not write cache %s: %s", cache_file, e)
            return False

    def invalidate(self, path: str) -> None:
        try:
            self.cache_file(path).unlink(missing_ok=True)
        except OSError as e:
            logger.debug("Could not remove cache for %s: %s", path, e)


def clear_disk_cache(cache_dir: Path) -> int:
    """Remove every scan record in ``cache_dir``. Returns the count removed."""
    removed = 0
    if not Path(cache_dir).is_dir():
        return 0
    for cache_file in Path(cache_dir).glob("scan_*.json"):
        try:
            cache_file.unlink()
            removed += 1
        except OSError:
            continue
    return removed


class ScanCache:
    """
    Both tiers behind one interface.

    Directory listings go to the session tier; whole-volume scans go to
    the disk tier. :meth:`invalidate` clears a path from both.
    """

    def __init__(self, session: SessionCache, disk: DiskCache | None = None):
        self.session = session
        self.disk = disk

    def get(self, path: str) -> ScanResult | None:
        return self.session.get(path)

    def put(self, path: str, result: ScanResult) -> None:
        self.session.put(path, result)

    def get_volume(self, path: str) -> VolumeScan | None:
        if self.disk is None:
            return None
        return self.disk.get(path)

    def put_volume(self, path: str, scan: VolumeScan) -> None:
        if self.disk is not None:
            self.disk.put(path, scan)

    def invalidate(self, path: str) -> None:
        self.session.invalidate(path)
        if self.disk is not None:
            self.disk.invalidate(path)

    def invalidate_tree(self, path: str) -> None:
        self.session.invalidate_tree(path)
        if self.disk is not None:
            self.disk.invalidate(path)

    def invalidate_ancestors(self, path: str) -> None:
        """Drop every listing and volume scan whose tree contains ``path``."""
        parent = os.path.dirname(os.path.abspath(path))
        while True:
            self.invalidate(parent)
            if parent == os.path.dirname(parent):
                break
            parent = os.path.dirname(parent)

    def close(self) -> None:
        self.session.close()
