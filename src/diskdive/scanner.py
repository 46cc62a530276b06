"""Directory tree scanning for diskdive."""

import heapq
import logging
import os
import stat
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Optional

from diskdive.errors import ScanError
from diskdive.models import DirEntry, FileEntry, ScanResult

logger = logging.getLogger(__name__)

DEFAULT_LARGE_FILE_COUNT = 20
DEFAULT_MAX_WORKERS = min(16, (os.cpu_count() or 4) * 2)


class ScanProgress:
    """
    Live counters for a running scan.

    Writers are scan workers; the UI only reads. Increments are guarded by a
    lock, reads are plain attribute access and never block.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.files = 0
        self.dirs = 0
        self.bytes = 0
        self.current_path = ""
        self._cancelled = threading.Event()

    def add(self, files: int = 0, dirs: int = 0, size: int = 0, path: str | None = None) -> None:
        with self._lock:
            self.files += files
            self.dirs += dirs
            self.bytes += size
            if path is not None:
                self.current_path = path

    def snapshot(self) -> tuple[int, int, int]:
        """Return (files, dirs, bytes)."""
        return self.files, self.dirs, self.bytes

    def cancel(self) -> None:
        """Ask running walkers to stop early; used when the program exits."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()


class _Tally:
    """Worker-local accumulator for one subtree."""

    __slots__ = ("size", "files", "dirs", "largest")

    def __init__(self) -> None:
        self.size = 0
        self.files = 0
        self.dirs = 0
        self.largest: list[tuple[int, str]] = []


def _push_large(heap: list[tuple[int, str]], capacity: int, size: int, path: str) -> None:
    """Keep the `capacity` largest (size, path) pairs in a min-heap."""
    if capacity <= 0 or size <= 0:
        return
    item = (size, path)
    if len(heap) < capacity:
        heapq.heappush(heap, item)
    elif item > heap[0]:
        heapq.heapreplace(heap, item)


def _access_hint(st: os.stat_result) -> datetime:
    return datetime.fromtimestamp(max(st.st_atime, st.st_mtime))


def _walk_tree(
    path: str,
    root_dev: int,
    progress: ScanProgress,
    large_file_count: int,
) -> _Tally:
    """
    Sum every regular file below `path`.

    Uses an explicit stack and os.scandir. Symlinks are not followed and
    directories on another device are skipped. Unreadable nodes are skipped.
    """
    tally = _Tally()
    stack = [path]

    while stack:
        if progress.cancelled:
            break
        current = stack.pop()
        try:
            with os.scandir(current) as it:
                children = list(it)
        except OSError as e:
            logger.debug("Skipping unreadable directory %s: %s", current, e)
            continue

        files = 0
        size_sum = 0
        for entry in children:
            try:
                st = entry.stat(follow_symlinks=False)
            except OSError:
                continue

            if stat.S_ISDIR(st.st_mode):
                if st.st_dev == root_dev:
                    stack.append(entry.path)
            elif stat.S_ISREG(st.st_mode):
                files += 1
                size_sum += st.st_size
                _push_large(tally.largest, large_file_count, st.st_size, entry.path)

        tally.files += files
        tally.size += size_sum
        tally.dirs += 1
        progress.add(files=files, dirs=1, size=size_sum, path=current)

    return tally


def scan_path(
    root: str,
    progress: Optional[ScanProgress] = None,
    *,
    large_file_count: int = DEFAULT_LARGE_FILE_COUNT,
    max_workers: Optional[int] = None,
) -> ScanResult:
    """
    Scan a directory and size each of its immediate children.

    Child directories are walked concurrently on a bounded thread pool, each
    worker with its own accumulator; results are merged after all workers
    finish. The walk stays on the filesystem of `root`.

    Args:
        root: Directory to scan
        progress: Optional live counters, updated while scanning
        large_file_count: How many of the largest files to keep
        max_workers: Thread pool size (default: DEFAULT_MAX_WORKERS)

    Returns:
        ScanResult with non-empty entries and large files sorted largest first

    Raises:
        ScanError: If the root is missing, not a directory or unreadable
    """
    root = os.path.abspath(root)
    progress = progress if progress is not None else ScanProgress()

    try:
        root_stat = os.stat(root)
    except OSError as e:
        raise ScanError(root, e.strerror or str(e)) from e
    if not stat.S_ISDIR(root_stat.st_mode):
        raise ScanError(root, "not a directory")

    try:
        with os.scandir(root) as it:
            children = list(it)
    except OSError as e:
        raise ScanError(root, e.strerror or str(e)) from e

    root_dev = root_stat.st_dev
    entries: list[DirEntry] = []
    largest: list[tuple[int, str]] = []
    subdirs: list[tuple[os.DirEntry, os.stat_result]] = []
    total_files = 0

    progress.add(dirs=1, path=root)

    for child in children:
        try:
            st = child.stat(follow_symlinks=False)
        except OSError:
            continue

        if stat.S_ISDIR(st.st_mode):
            if st.st_dev == root_dev:
                subdirs.append((child, st))
        elif stat.S_ISREG(st.st_mode):
            entries.append(
                DirEntry(
                    name=child.name,
                    path=child.path,
                    size=st.st_size,
                    is_dir=False,
                    last_access=_access_hint(st),
                )
            )
            total_files += 1
            _push_large(largest, large_file_count, st.st_size, child.path)
            progress.add(files=1, size=st.st_size)

    if subdirs:
        workers = max(1, min(max_workers or DEFAULT_MAX_WORKERS, len(subdirs)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(_walk_tree, child.path, root_dev, progress, large_file_count): (
                    child,
                    st,
                )
                for child, st in subdirs
            }
            for future in as_completed(futures):
                child, st = futures[future]
                tally = future.result()
                entries.append(
                    DirEntry(
                        name=child.name,
                        path=child.path,
                        size=tally.size,
                        is_dir=True,
                        last_access=_access_hint(st),
                    )
                )
                total_files += tally.files
                for size, path in tally.largest:
                    _push_large(largest, large_file_count, size, path)

    # Empty children carry no signal
    entries = [e for e in entries if e.size > 0]
    entries.sort(key=lambda e: (-e.size, e.name))

    large_files = [
        FileEntry(name=os.path.basename(path), path=path, size=size)
        for size, path in sorted(largest, key=lambda item: (-item[0], item[1]))
    ]

    return ScanResult(
        entries=entries,
        large_files=large_files,
        total_size=sum(e.size for e in entries),
        total_files=total_files,
    )


def measure_size(path: str, progress: Optional[ScanProgress] = None) -> int:
    """
    Total size in bytes of a file or directory tree.

    Raises:
        ScanError: If the path cannot be read
    """
    try:
        st = os.stat(path)
    except OSError as e:
        raise ScanError(path, e.strerror or str(e)) from e
    if not stat.S_ISDIR(st.st_mode):
        return st.st_size
    return scan_path(path, progress, large_file_count=0).total_size
