"""Export a volume scan to CSV or JSON."""

import csv
import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from spelunk.models import VolumeScan, human_size

logger = logging.getLogger(__name__)

CSV_HEADER = ["Size (Bytes)", "Size (Human)", "Kind", "Path"]


def export_csv(scan: VolumeScan, output_file: Path) -> int:
    """
    Write the directory listing and large files of ``scan`` as CSV.

    Args:
        scan: Completed volume scan
        output_file: Destination file (overwritten)

    Returns:
        Number of data rows written
    """
    rows = 0
    with open(output_file, "w", newline="") as f:
        writer = csv.writer(f, quoting=csv.QUOTE_NONNUMERIC)
        writer.writerow(CSV_HEADER)
        for entry in scan.directories.entries:
            writer.writerow([entry.size_bytes, entry.size_human, entry.kind, entry.path])
            rows += 1
        for hit in scan.large_files:
            writer.writerow([hit.size_bytes, hit.size_human, "large_file", hit.path])
            rows += 1
    logger.info("Exported %d rows to %s", rows, output_file)
    return rows


def scan_to_dict(scan: VolumeScan) -> dict:
    """Export-friendly view of a scan."""
    return {
        "scan_date": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "target_path": scan.path,
        "partial": scan.partial,
        "directories": [
            {
                "size": entry.size_bytes,
                "size_human": entry.size_human,
                "kind": entry.kind,
                "estimated": entry.is_estimated,
                "path": entry.path,
            }
            for entry in scan.directories.entries
        ],
        "large_files": [
            {"size": hit.size_bytes, "size_human": hit.size_human, "path": hit.path}
            for hit in scan.large_files
        ],
        "hotspots": [
            {
                "directory": h.directory,
                "size": h.total_bytes,
                "size_human": human_size(h.total_bytes),
                "file_count": h.file_count,
            }
            for h in scan.hotspots
        ],
    }


def export_json(scan: VolumeScan, output_file: Path) -> None:
    """Write ``scan`` as a JSON document."""
    with open(output_file, "w") as f:
        json.dump(scan_to_dict(scan), f, indent=2)
    logger.info("Exported scan of %s to %s", scan.path, output_file)
