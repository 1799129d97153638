"""Tests for the scan coordinator."""

import os
import threading
import time
from unittest.mock import patch

import pytest

from spelunk.config import Settings
from spelunk.coordinator import ScanCoordinator, pool_size
from spelunk.errors import Inaccessible, NotFound, ProbeTimeout, SearchUnavailable
from spelunk.models import DirectoryEntry, FileEntry, FileHit, SizeCertainty

MB = 1_000_000
GB = 1_000_000_000


def sized_scanner(sizes):
    """Fake recursive scan keyed by directory name."""

    def scan(path, cancel_event=None, timeout=None):
        return sizes[os.path.basename(path)]

    return scan


def no_search(root, min_bytes, max_bytes=None):
    raise SearchUnavailable("mdfind not found")


@pytest.fixture
def three_dirs(tmp_path):
    for name in ("small", "medium", "big"):
        (tmp_path / name).mkdir()
    return tmp_path


SIZES = {"small": 10 * MB, "medium": 500 * MB, "big": 2 * GB}


class TestPoolSize:
    def test_clamped_to_minimum(self):
        with patch("spelunk.primitives.os.cpu_count", return_value=2):
            assert pool_size(Settings()) == 12

    def test_clamped_to_maximum(self):
        with patch("spelunk.primitives.os.cpu_count", return_value=64):
            assert pool_size(Settings()) == 24

    def test_in_range(self):
        with patch("spelunk.primitives.os.cpu_count", return_value=8):
            assert pool_size(Settings()) == 16


class TestListDirectory:
    def test_max_items_keeps_largest_in_order(self, three_dirs):
        coordinator = ScanCoordinator(scan=sized_scanner(SIZES), search=no_search, workers=4)
        result = coordinator.list_directory(str(three_dirs), max_items=2)
        assert [e.name for e in result.entries] == ["big", "medium"]
        assert [e.size_bytes for e in result.entries] == [2 * GB, 500 * MB]
        assert not result.partial

    def test_includes_files(self, three_dirs):
        (three_dirs / "notes.txt").write_bytes(b"n" * 1234)
        coordinator = ScanCoordinator(scan=sized_scanner(SIZES), search=no_search, workers=4)
        result = coordinator.list_directory(str(three_dirs))
        files = [e for e in result.entries if isinstance(e, FileEntry)]
        assert [(f.name, f.size_bytes) for f in files] == [("notes.txt", 1234)]
        assert isinstance(result.entries[0], DirectoryEntry)

    def test_ties_broken_by_path(self, tmp_path):
        for name in ("b", "a", "c"):
            (tmp_path / name).mkdir()
        coordinator = ScanCoordinator(
            scan=sized_scanner({"a": 5, "b": 5, "c": 5}), search=no_search, workers=4
        )
        result = coordinator.list_directory(str(tmp_path))
        assert [e.name for e in result.entries] == ["a", "b", "c"]

    def test_deterministic_across_runs(self, three_dirs):
        coordinator = ScanCoordinator(scan=sized_scanner(SIZES), search=no_search, workers=4)
        first = coordinator.list_directory(str(three_dirs))
        second = coordinator.list_directory(str(three_dirs))
        assert [e.path for e in first.entries] == [e.path for e in second.entries]

    def test_uses_default_max_items(self, tmp_path):
        for i in range(5):
            (tmp_path / f"d{i}").mkdir()
        settings = Settings(max_items=3)
        coordinator = ScanCoordinator(
            settings, scan=sized_scanner({f"d{i}": i + 1 for i in range(5)}), search=no_search, workers=4
        )
        assert len(coordinator.list_directory(str(tmp_path))) == 3

    def test_progress_reported(self, three_dirs):
        calls = []
        coordinator = ScanCoordinator(scan=sized_scanner(SIZES), search=no_search, workers=4)
        coordinator.list_directory(str(three_dirs), progress=lambda done, total: calls.append((done, total)))
        assert calls[-1] == (3, 3)
        assert len(calls) == 3

    def test_missing_path(self, tmp_path):
        coordinator = ScanCoordinator(scan=sized_scanner({}), search=no_search, workers=2)
        with pytest.raises(NotFound):
            coordinator.list_directory(str(tmp_path / "gone"))

    def test_file_path_is_inaccessible(self, tmp_path):
        target = tmp_path / "file.txt"
        target.write_text("x")
        coordinator = ScanCoordinator(scan=sized_scanner({}), search=no_search, workers=2)
        with pytest.raises(Inaccessible):
            coordinator.list_directory(str(target))

    def test_unreadable_child_reported_with_error(self, tmp_path):
        (tmp_path / "locked").mkdir()

        def scan(path, cancel_event=None, timeout=None):
            raise Inaccessible("Permission denied")

        coordinator = ScanCoordinator(scan=scan, search=no_search, workers=2)
        result = coordinator.list_directory(str(tmp_path))
        assert result.entries[0].size_bytes == 0
        assert result.entries[0].error == "Permission denied"

    def test_ceiling_marks_partial_and_estimates(self, tmp_path):
        (tmp_path / "fast").mkdir()
        slow = tmp_path / "slow"
        slow.mkdir()
        (slow / "top.bin").write_bytes(b"s" * 300)

        def scan(path, cancel_event=None, timeout=None):
            if path.endswith("slow"):
                cancel_event.wait(5)
                raise ProbeTimeout("cancelled")
            return 100

        settings = Settings(scan_ceiling_seconds=0.2)
        coordinator = ScanCoordinator(settings, scan=scan, search=no_search, workers=4)
        start = time.monotonic()
        result = coordinator.list_directory(str(tmp_path))
        assert time.monotonic() - start < 4

        assert result.partial
        by_name = {e.name: e for e in result.entries}
        assert by_name["fast"].certainty == SizeCertainty.DEFINITE
        assert by_name["slow"].certainty == SizeCertainty.ESTIMATED
        assert by_name["slow"].size_bytes == 300

    def test_ceiling_keeps_directories_never_probed(self, tmp_path):
        for name in ("a", "b", "c"):
            (tmp_path / name).mkdir()
            (tmp_path / name / "top.bin").write_bytes(b"x" * 10)

        def scan(path, cancel_event=None, timeout=None):
            cancel_event.wait(5)
            raise ProbeTimeout("cancelled")

        settings = Settings(scan_ceiling_seconds=0.2)
        coordinator = ScanCoordinator(settings, scan=scan, search=no_search, workers=1)
        result = coordinator.list_directory(str(tmp_path))

        assert result.partial
        assert sorted(e.name for e in result.entries) == ["a", "b", "c"]
        for entry in result.entries:
            assert entry.certainty == SizeCertainty.ESTIMATED
            assert entry.size_bytes == 10

    def test_concurrent_requests_share_one_scan(self, tmp_path):
        (tmp_path / "only").mkdir()
        started = threading.Event()
        release = threading.Event()
        calls = []

        def scan(path, cancel_event=None, timeout=None):
            calls.append(path)
            started.set()
            release.wait(5)
            return 42

        coordinator = ScanCoordinator(scan=scan, search=no_search, workers=2)
        results = []

        def run():
            results.append(coordinator.list_directory(str(tmp_path), budget=None))

        first = threading.Thread(target=run)
        first.start()
        assert started.wait(5)
        second = threading.Thread(target=run)
        second.start()
        time.sleep(0.2)
        release.set()
        first.join(5)
        second.join(5)

        assert len(calls) == 1
        assert len(results) == 2
        assert results[0].entries == results[1].entries
        assert results[0] is not results[1]

    def test_concurrent_requests_with_other_limits_scan_separately(self, tmp_path):
        (tmp_path / "only").mkdir()
        release = threading.Event()
        calls = []

        def scan(path, cancel_event=None, timeout=None):
            calls.append(path)
            release.wait(5)
            return 42

        coordinator = ScanCoordinator(scan=scan, search=no_search, workers=2)
        threads = [
            threading.Thread(target=coordinator.list_directory, args=(str(tmp_path),), kwargs={"max_items": n})
            for n in (1, 5)
        ]
        for thread in threads:
            thread.start()
        deadline = time.monotonic() + 5
        while len(calls) < 2 and time.monotonic() < deadline:
            time.sleep(0.01)
        release.set()
        for thread in threads:
            thread.join(5)

        assert len(calls) == 2


class TestScanVolume:
    def test_search_unavailable_degrades(self, three_dirs):
        coordinator = ScanCoordinator(scan=sized_scanner(SIZES), search=no_search, workers=4)
        scan = coordinator.scan_volume(str(three_dirs))
        assert scan.large_files == []
        assert scan.medium_files == []
        assert scan.hotspots == []
        assert not scan.search_available
        assert [e.name for e in scan.directories.entries] == ["big", "medium", "small"]

    def test_sections_and_hotspots(self, three_dirs):
        large = [
            FileHit(path=str(three_dirs / "big" / "a.iso"), size_bytes=3 * GB),
            FileHit(path=str(three_dirs / "big" / "b.iso"), size_bytes=2 * GB),
            FileHit(path=str(three_dirs / "medium" / "c.mov"), size_bytes=4 * GB),
        ]
        medium = [FileHit(path=str(three_dirs / "small" / "d.pdf"), size_bytes=200 * MB)]
        thresholds = []

        def search(root, min_bytes, max_bytes=None):
            thresholds.append((min_bytes, max_bytes))
            return iter(large if max_bytes is None else medium)

        coordinator = ScanCoordinator(scan=sized_scanner(SIZES), search=search, workers=4)
        scan = coordinator.scan_volume(str(three_dirs))

        assert scan.search_available
        assert [h.size_bytes for h in scan.large_files] == [4 * GB, 3 * GB, 2 * GB]
        assert scan.medium_files == medium
        assert sorted(thresholds, key=str) == sorted([(GB, None), (100 * MB, GB)], key=str)
        assert scan.hotspots[0].directory == str(three_dirs / "big")
        assert scan.hotspots[0].total_bytes == 5 * GB
        assert scan.hotspots[0].file_count == 2

    def test_volume_listing_is_not_truncated(self, tmp_path):
        for i in range(5):
            (tmp_path / f"d{i}").mkdir()
        settings = Settings(max_items=2)
        coordinator = ScanCoordinator(
            settings, scan=sized_scanner({f"d{i}": i + 1 for i in range(5)}), search=no_search, workers=4
        )
        assert len(coordinator.scan_volume(str(tmp_path)).directories) == 5
