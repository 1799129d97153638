"""Data models for spelunk."""

import os
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, computed_field


def human_size(size_bytes: int) -> str:
    """Human-readable size string (decimal units like macOS)."""
    if size_bytes >= 1000**4:
        return f"{size_bytes / 1000**4:.1f} TB"
    elif size_bytes >= 1000**3:
        return f"{size_bytes / 1000**3:.1f} GB"
    elif size_bytes >= 1000**2:
        return f"{size_bytes / 1000**2:.1f} MB"
    elif size_bytes >= 1000:
        return f"{size_bytes / 1000:.1f} KB"
    else:
        return f"{size_bytes} B"


class SizeCertainty(str, Enum):
    """How a size was obtained."""

    DEFINITE = "definite"  # Full recursive measurement finished in budget
    ESTIMATED = "estimated"  # Shallow estimate after a timeout


class FileCategory(str, Enum):
    """Coarse file category derived from the extension."""

    BUNDLE = "bundle"
    MEDIA = "media"
    DOCUMENT = "document"
    LOG = "log"
    APP = "app"
    OTHER = "other"


EXTENSION_CATEGORIES: dict[str, FileCategory] = {
    **{ext: FileCategory.BUNDLE for ext in ("dmg", "iso", "pkg", "zip", "tar", "gz", "rar", "7z")},
    **{
        ext: FileCategory.MEDIA
        for ext in ("mov", "mp4", "avi", "mkv", "webm", "jpg", "jpeg", "png", "gif", "heic")
    },
    **{ext: FileCategory.DOCUMENT for ext in ("pdf", "key", "ppt", "pptx")},
    "log": FileCategory.LOG,
    "app": FileCategory.APP,
}


def categorize(path: str) -> FileCategory:
    """Map a file path to its category by extension."""
    name = os.path.basename(path)
    if "." not in name:
        return FileCategory.OTHER
    ext = name.rsplit(".", 1)[1].lower()
    return EXTENSION_CATEGORIES.get(ext, FileCategory.OTHER)


class EntryBase(BaseModel):
    """Fields shared by directory and file entries."""

    path: str = Field(..., description="Absolute path of the entry")
    size_bytes: int = Field(0, ge=0, description="Size in bytes (0 = unknown)")
    certainty: SizeCertainty = Field(
        SizeCertainty.DEFINITE, description="Whether the size is measured or estimated"
    )
    error: Optional[str] = Field(None, description="Why the size could not be measured")

    @property
    def name(self) -> str:
        """Last path component."""
        return os.path.basename(self.path.rstrip("/")) or self.path

    @property
    def size_human(self) -> str:
        """Human-readable size string."""
        return human_size(self.size_bytes)

    @property
    def is_estimated(self) -> bool:
        return self.certainty == SizeCertainty.ESTIMATED


class DirectoryEntry(EntryBase):
    """A directory in a listing. Its size is an approximation."""

    kind: Literal["directory"] = "directory"
    file_count: Optional[int] = Field(None, description="Number of files, when known")


class FileEntry(EntryBase):
    """A regular file in a listing."""

    kind: Literal["file"] = "file"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def category(self) -> FileCategory:
        """Category derived from the file extension."""
        return categorize(self.path)


Entry = Annotated[Union[DirectoryEntry, FileEntry], Field(discriminator="kind")]


def sort_key(entry: EntryBase) -> tuple[int, str]:
    """Total order: size descending, then path ascending."""
    return (-entry.size_bytes, entry.path)


class ScanResult(BaseModel):
    """Ordered listing of a directory's immediate children."""

    path: str = Field(..., description="Directory that was listed")
    entries: list[Entry] = Field(default_factory=list)
    partial: bool = Field(False, description="True if the scan ceiling cut probing short")
    scanned_at: datetime = Field(default_factory=datetime.now)

    def model_post_init(self, __context) -> None:
        self.entries.sort(key=sort_key)

    @property
    def total_bytes(self) -> int:
        return sum(e.size_bytes for e in self.entries)

    def __len__(self) -> int:
        return len(self.entries)


class FileHit(BaseModel):
    """A file reported by the size search."""

    path: str
    size_bytes: int = Field(..., ge=0)

    @property
    def size_human(self) -> str:
        return human_size(self.size_bytes)


class HotspotEntry(BaseModel):
    """A directory holding a concentration of large files."""

    directory: str = Field(..., description="Parent directory of the grouped files")
    total_bytes: int = Field(..., ge=0)
    file_count: int = Field(..., ge=0)

    @property
    def size_human(self) -> str:
        return human_size(self.total_bytes)


class VolumeScan(BaseModel):
    """Whole-tree analysis bundle for one scanned root."""

    path: str = Field(..., description="Root that was scanned")
    large_files: list[FileHit] = Field(default_factory=list)
    medium_files: list[FileHit] = Field(default_factory=list)
    directories: ScanResult
    hotspots: list[HotspotEntry] = Field(default_factory=list)
    search_available: bool = Field(True, description="False if the size search was missing")
    scanned_at: datetime = Field(default_factory=datetime.now)

    @property
    def partial(self) -> bool:
        return self.directories.partial


class CacheRecord(BaseModel):
    """On-disk record for one scanned root."""

    version: int
    key: str = Field(..., description="Stable hash of the absolute path")
    path: str
    created_at: float = Field(..., description="Unix timestamp of creation")
    payload: VolumeScan


class DeleteOutcome(BaseModel):
    """Result of a delete action from the navigator."""

    path: str
    success: bool
    bytes_freed: int = Field(0, description="Size known from the listing, not re-measured")
    elevated: bool = Field(False, description="Whether admin privileges were used")
    cancelled: bool = Field(False, description="User declined the confirmation")
    dry_run: bool = Field(False, description="Whether this was a dry run")
    error: Optional[str] = None
    reasons: list[str] = Field(default_factory=list, description="Likely causes of failure")

    @property
    def freed_human(self) -> str:
        return human_size(self.bytes_freed)
