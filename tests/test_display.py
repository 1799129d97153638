"""Tests for display module."""

import os
from io import StringIO
from unittest.mock import patch

import pytest
from rich.console import Console

from spelunk.display import (
    BADGE_DIR,
    BADGE_FILE,
    describe_outcome,
    entry_badge,
    render_delete_confirm,
    render_listing,
    shorten_home,
    show_location_menu,
    show_volume_report,
    size_bar,
)
from spelunk.models import (
    DeleteOutcome,
    DirectoryEntry,
    FileEntry,
    FileHit,
    HotspotEntry,
    ScanResult,
    SizeCertainty,
    VolumeScan,
)
from spelunk.navigator import NavigatorState, apply_listing

GIB = 1024**3


def render(renderable):
    console = Console(file=StringIO(), width=160, color_system=None)
    console.print(renderable)
    return console.file.getvalue()


@pytest.fixture
def recorded():
    console = Console(file=StringIO(), width=200, color_system=None)
    with patch("spelunk.display.console", console):
        yield console


def listing_state(count, page_size=15, status="", partial=False):
    entries = [DirectoryEntry(path=f"/data/dir{i:02d}", size_bytes=1000 * (count - i)) for i in range(count)]
    state = NavigatorState(current_path="/data", page_size=page_size, status=status)
    return apply_listing(state, ScanResult(path="/data", entries=entries, partial=partial))


class TestEntryBadge:
    def test_huge_directory_red(self):
        assert entry_badge(DirectoryEntry(path="/a", size_bytes=11 * GIB)) == (BADGE_DIR, "red")

    def test_big_directory_yellow(self):
        assert entry_badge(DirectoryEntry(path="/a", size_bytes=2 * GIB)) == (BADGE_DIR, "yellow")

    def test_small_directory_blue(self):
        assert entry_badge(DirectoryEntry(path="/a", size_bytes=10)) == (BADGE_DIR, "blue")

    def test_file_by_category(self):
        assert entry_badge(FileEntry(path="/a/disk.iso", size_bytes=1)) == ("📦", "yellow")
        assert entry_badge(FileEntry(path="/a/system.log", size_bytes=1)) == ("📋", "dim")

    def test_plain_file(self):
        assert entry_badge(FileEntry(path="/a/notes", size_bytes=1)) == (BADGE_FILE, "")


class TestSizeBar:
    def test_half(self):
        assert size_bar(5, 10) == "█████░░░░░"

    def test_full(self):
        assert size_bar(10, 10, width=4) == "████"

    def test_zero_max(self):
        assert size_bar(5, 0, width=3) == "░░░"

    def test_never_overflows(self):
        assert len(size_bar(50, 10)) == 10


class TestShortenHome:
    def test_home_itself(self):
        assert shorten_home(os.path.expanduser("~")) == "~"

    def test_inside_home(self):
        home = os.path.expanduser("~")
        assert shorten_home(home + "/Downloads") == "~/Downloads"

    def test_sibling_prefix_untouched(self):
        home = os.path.expanduser("~")
        assert shorten_home(home + "x/file") == home + "x/file"


class TestDescribeOutcome:
    def test_success(self):
        outcome = DeleteOutcome(path="/data/old.iso", success=True, bytes_freed=2_500_000_000)
        message = describe_outcome(outcome)
        assert "Deleted old.iso" in message
        assert "2.5 GB" in message

    def test_cancelled(self):
        outcome = DeleteOutcome(path="/data/old.iso", success=False, cancelled=True)
        assert "cancelled" in describe_outcome(outcome)

    def test_failure_lists_reasons(self):
        outcome = DeleteOutcome(
            path="/data/busy", success=False, error="Resource busy", reasons=["File in use"]
        )
        message = describe_outcome(outcome)
        assert "Could not delete busy" in message
        assert "File in use" in message

    def test_dry_run(self):
        outcome = DeleteOutcome(path="/data/x", success=True, bytes_freed=3000, dry_run=True)
        assert "Dry run" in describe_outcome(outcome)

    def test_markup_in_name_escaped(self):
        outcome = DeleteOutcome(path="/data/[red]x", success=True)
        assert "[red]x" in render(describe_outcome(outcome))


class TestRenderListing:
    def test_header_and_rows(self):
        output = render(render_listing(listing_state(3)))
        assert "Disk space explorer" in output
        assert "/data" in output
        assert "dir00/" in output
        assert "▶" in output

    def test_pager_shown_when_paged(self):
        output = render(render_listing(listing_state(20, page_size=5)))
        assert "Showing 1-5 of 20 items" in output
        assert "dir05" not in output

    def test_no_pager_for_single_page(self):
        assert "Showing" not in render(render_listing(listing_state(3)))

    def test_estimates_marked(self):
        state = apply_listing(
            NavigatorState(current_path="/data"),
            ScanResult(
                path="/data",
                entries=[
                    DirectoryEntry(
                        path="/data/slow", size_bytes=2000, certainty=SizeCertainty.ESTIMATED
                    )
                ],
                partial=True,
            ),
        )
        output = render(render_listing(state))
        assert "~2.0 KB" in output
        assert "time limit" in output

    def test_unreadable_size(self):
        state = apply_listing(
            NavigatorState(current_path="/data"),
            ScanResult(
                path="/data",
                entries=[DirectoryEntry(path="/data/locked", size_bytes=0, error="Permission denied")],
            ),
        )
        assert "?" in render(render_listing(state))

    def test_status_markup(self):
        output = render(render_listing(listing_state(1, status="[red]Not found:[/red] /gone")))
        assert "Not found: /gone" in output

    def test_empty(self):
        state = NavigatorState(current_path="/data")
        assert "(empty)" in render(render_listing(state))

    def test_help_bar(self):
        output = render(render_listing(listing_state(1)))
        assert "d Delete" in output
        assert "q Quit" in output


class TestRenderDeleteConfirm:
    def test_folder(self):
        output = render(render_delete_confirm(DirectoryEntry(path="/data/old", size_bytes=5000), False))
        assert "Delete folder" in output
        assert "5.0 KB" in output
        assert "Admin access" not in output

    def test_elevated_file(self):
        output = render(render_delete_confirm(FileEntry(path="/data/a.iso", size_bytes=1), True))
        assert "Delete file" in output
        assert "Admin access" in output


class TestShowVolumeReport:
    def make_scan(self, **kwargs):
        return VolumeScan(
            path="/data",
            directories=ScanResult(
                path="/data",
                entries=[
                    DirectoryEntry(path="/data/movies", size_bytes=8_000_000_000),
                    DirectoryEntry(path="/data/music", size_bytes=2_000_000_000),
                ],
            ),
            **kwargs,
        )

    def test_sections(self, recorded):
        scan = self.make_scan(
            large_files=[FileHit(path="/data/movies/a.mov", size_bytes=5_000_000_000)],
            medium_files=[FileHit(path="/data/music/b.flac", size_bytes=200_000_000)],
            hotspots=[HotspotEntry(directory="/data/movies", total_bytes=5_000_000_000, file_count=1)],
        )
        show_volume_report(scan)
        output = recorded.file.getvalue()
        assert "Top Directories" in output
        assert "80.0" in output
        assert "Large Files" in output
        assert "a.mov" in output
        assert "Medium Files" in output
        assert "Hotspots" in output
        assert "in 1 large file" in output

    def test_search_unavailable(self, recorded):
        show_volume_report(self.make_scan(search_available=False))
        output = recorded.file.getvalue()
        assert "showing directories only" in output
        assert "Large Files" not in output

    def test_cached_title(self, recorded):
        show_volume_report(self.make_scan(), cached=True)
        assert "(cached)" in recorded.file.getvalue()


class TestShowLocationMenu:
    def test_lists_locations(self):
        output = render(show_location_menu([("Home", "/home/u"), ("Downloads", "/home/u/dl")], 1))
        assert "Home" in output
        assert "Downloads" in output
        assert "▶" in output
