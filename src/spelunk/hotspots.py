"""Group large-file hits into hotspot directories."""

import os
from typing import Iterable

from spelunk.models import FileHit, HotspotEntry

# The report shows this many hotspots
DEFAULT_HOTSPOT_LIMIT = 8


def aggregate(hits: Iterable[FileHit]) -> list[HotspotEntry]:
    """
    Group file hits by immediate parent directory.

    Pure function: the input is not modified and the result depends only
    on the multiset of hits, not their order.

    Args:
        hits: Files with their sizes

    Returns:
        HotspotEntry per parent directory, largest total first, ties by
        directory path
    """
    totals: dict[str, list[int]] = {}
    for hit in hits:
        directory = os.path.dirname(hit.path)
        if not directory:
            continue
        bucket = totals.setdefault(directory, [0, 0])
        bucket[0] += hit.size_bytes
        bucket[1] += 1

    hotspots = [
        HotspotEntry(directory=directory, total_bytes=size, file_count=count)
        for directory, (size, count) in totals.items()
    ]
    hotspots.sort(key=lambda h: (-h.total_bytes, h.directory))
    return hotspots


def top_hotspots(hits: Iterable[FileHit], limit: int = DEFAULT_HOTSPOT_LIMIT) -> list[HotspotEntry]:
    """The ``limit`` largest hotspots."""
    return aggregate(hits)[:limit]
