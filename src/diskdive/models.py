"""Data models for diskdive."""

from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

# Size of an entry whose measurement has not completed yet
PENDING_SIZE = -1


def format_size(size_bytes: int) -> str:
    """Human-readable size string (decimal units like macOS)."""
    if size_bytes < 0:
        return "..."
    if size_bytes >= 1000**4:
        return f"{size_bytes / (1000**4):.1f} TB"
    elif size_bytes >= 1000**3:
        return f"{size_bytes / (1000**3):.1f} GB"
    elif size_bytes >= 1000**2:
        return f"{size_bytes / (1000**2):.1f} MB"
    elif size_bytes >= 1000:
        return f"{size_bytes / 1000:.1f} KB"
    else:
        return f"{size_bytes} B"


class DirEntry(BaseModel):
    """An immediate child of a scanned directory, or an overview target."""

    name: str = Field(..., description="Display name")
    path: str = Field(..., description="Absolute path")
    size: int = Field(PENDING_SIZE, description="Size in bytes, -1 while not yet measured")
    is_dir: bool = Field(False, description="Whether the entry is a directory")
    last_access: Optional[datetime] = Field(None, description="Last access/modify hint")

    @property
    def pending(self) -> bool:
        """Whether the size is still being measured."""
        return self.size < 0

    @property
    def size_human(self) -> str:
        return format_size(self.size)


class FileEntry(BaseModel):
    """One of the largest individual files found in a subtree."""

    name: str = Field(..., description="File name")
    path: str = Field(..., description="Absolute path")
    size: int = Field(..., description="Size in bytes")

    @property
    def size_human(self) -> str:
        return format_size(self.size)


class ScanResult(BaseModel):
    """Result of scanning one directory tree."""

    entries: list[DirEntry] = Field(default_factory=list, description="Children, largest first")
    large_files: list[FileEntry] = Field(
        default_factory=list, description="Largest files in the subtree, largest first"
    )
    total_size: int = Field(0, description="Total bytes of the subtree")
    total_files: int = Field(0, description="Number of files counted")

    @property
    def size_human(self) -> str:
        return format_size(self.total_size)


class CacheEntry(BaseModel):
    """A cached scan result together with its freshness data."""

    path: str = Field(..., description="Subject path")
    result: ScanResult
    mod_time: float = Field(..., description="Subject mtime recorded when the scan started")
    scan_time: datetime = Field(default_factory=datetime.now)
    dirty: bool = Field(False, description="Set when a deletion made the totals stale")

    def is_fresh(self, current_mod_time: float) -> bool:
        """Usable only while not dirty and the subject has not been modified since."""
        return not self.dirty and current_mod_time <= self.mod_time


class HistoryEntry(BaseModel):
    """Snapshot of a previous view, pushed when descending into a directory."""

    path: str
    entries: list[DirEntry] = Field(default_factory=list)
    large_files: list[FileEntry] = Field(default_factory=list)
    total_size: int = 0
    total_files: int = 0
    cursor: int = 0
    offset: int = 0
    large_cursor: int = 0
    large_offset: int = 0
    selected: set[str] = Field(default_factory=set)
    large_selected: set[str] = Field(default_factory=set)
    dirty: bool = False
    is_overview: bool = False


class DeleteOutcome(BaseModel):
    """Aggregate result of a deletion batch."""

    removed: list[str] = Field(default_factory=list, description="Paths no longer present")
    item_count: int = Field(0, description="Items counted for progress display")
    errors: list[str] = Field(default_factory=list, description="Per-path error messages")

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def partial(self) -> bool:
        """Some paths failed but others were removed."""
        return bool(self.errors) and bool(self.removed)

    @property
    def error_summary(self) -> Optional[str]:
        """First few errors joined for a one-line status."""
        if not self.errors:
            return None
        if len(self.errors) == 1:
            return self.errors[0]
        return "; ".join(self.errors[:3])


def display_path(path: str) -> str:
    """Shorten the home directory prefix to ~."""
    home = str(Path.home())
    if path == home:
        return "~"
    if path.startswith(home + "/"):
        return "~" + path[len(home):]
    return path
