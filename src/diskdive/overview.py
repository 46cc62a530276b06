"""Whole-disk overview: top-level targets and their bounded measurement."""

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor, wait
from pathlib import Path
from typing import Optional

from diskdive.cache import ResultCache
from diskdive.errors import ScanError
from diskdive.models import PENDING_SIZE, DirEntry
from diskdive.scanner import ScanProgress, measure_size

logger = logging.getLogger(__name__)

OVERVIEW_ROOT = "/"
MAX_CONCURRENT_OVERVIEW = 3
DEFAULT_VOLUMES_ROOT = "/Volumes"

SYSTEM_TARGETS = [
    ("Applications", "/Applications"),
    ("System Library", "/Library"),
]


def has_useful_volume_mounts(path: str) -> bool:
    """
    Whether `path` holds at least one real mounted volume.

    Hidden names and symlinks (the synthetic link back to the boot volume)
    do not count.
    """
    try:
        names = os.listdir(path)
    except OSError:
        return False

    for name in names:
        if name.startswith("."):
            continue
        full = os.path.join(path, name)
        try:
            if os.path.islink(full):
                continue
            if os.path.isdir(full):
                return True
        except OSError:
            continue
    return False


def create_overview_entries(
    home: Optional[str] = None,
    volumes_root: str = DEFAULT_VOLUMES_ROOT,
    system_targets: Optional[list[tuple[str, str]]] = None,
) -> list[DirEntry]:
    """
    Build the overview target list, every size pending.

    Home and ~/Library are listed separately so the library tree is not
    counted twice. System targets are only listed when they exist.
    """
    if home is None:
        home = os.environ.get("HOME") or str(Path.home())
    if system_targets is None:
        system_targets = SYSTEM_TARGETS

    entries: list[DirEntry] = []

    if home:
        entries.append(DirEntry(name="Home", path=home, is_dir=True, size=PENDING_SIZE))
        user_library = os.path.join(home, "Library")
        if os.path.isdir(user_library):
            entries.append(
                DirEntry(name="App Library", path=user_library, is_dir=True, size=PENDING_SIZE)
            )

    for name, path in system_targets:
        if os.path.isdir(path):
            entries.append(DirEntry(name=name, path=path, is_dir=True, size=PENDING_SIZE))

    if has_useful_volume_mounts(volumes_root):
        entries.append(DirEntry(name="Volumes", path=volumes_root, is_dir=True, size=PENDING_SIZE))

    return entries


def sum_known_sizes(entries: list[DirEntry]) -> int:
    """Sum of entries whose size is known."""
    return sum(e.size for e in entries if e.size > 0)


def has_pending(entries: list[DirEntry]) -> bool:
    return any(e.size < 0 for e in entries)


def sort_entries_by_size(entries: list[DirEntry]) -> None:
    """Stable in-place sort, largest first."""
    entries.sort(key=lambda e: e.size, reverse=True)


def measure_overview_size(path: str, progress: Optional[ScanProgress] = None) -> int:
    """
    Measure one overview target.

    Raises:
        ScanError: If the target cannot be read
    """
    started = time.monotonic()
    size = measure_size(path, progress)
    logger.debug("Measured %s: %d bytes in %.1fs", path, size, time.monotonic() - started)
    return size


class OverviewScheduler:
    """
    Tracks which overview targets are being measured.

    `next_batch` hands out pending targets only while fewer than `limit`
    probes are in flight, so total parallelism never exceeds the limit.
    """

    def __init__(self, limit: int = MAX_CONCURRENT_OVERVIEW):
        self.limit = max(1, limit)
        self.in_flight: set[str] = set()

    @property
    def busy(self) -> bool:
        return bool(self.in_flight)

    def next_batch(self, entries: list[DirEntry]) -> list[int]:
        """Indices of pending entries to start now; marks them in flight."""
        available = self.limit - len(self.in_flight)
        batch: list[int] = []
        for index, entry in enumerate(entries):
            if available <= 0:
                break
            if entry.size < 0 and entry.path not in self.in_flight:
                self.in_flight.add(entry.path)
                batch.append(index)
                available -= 1
        return batch

    def finish(self, path: str) -> None:
        self.in_flight.discard(path)


def prefetch_overview_cache(
    cache: ResultCache,
    entries: Optional[list[DirEntry]] = None,
    timeout: float = 30.0,
    limit: int = MAX_CONCURRENT_OVERVIEW,
    progress: Optional[ScanProgress] = None,
) -> int:
    """
    Warm the durable overview size cache before the interactive session.

    Measures targets that have no fresh persisted size, at most `limit` at a
    time, and writes results to disk only. Stops waiting after `timeout`
    seconds; measurements still running are then cancelled and discarded.

    Returns:
        Number of sizes written
    """
    if entries is None:
        entries = create_overview_entries()

    todo = [e.path for e in entries if cache.load_overview_size(e.path) is None]
    if not todo:
        return 0

    progress = progress if progress is not None else ScanProgress()
    written = 0
    executor = ThreadPoolExecutor(max_workers=max(1, limit), thread_name_prefix="prefetch")
    try:
        futures = {executor.submit(measure_overview_size, path, progress): path for path in todo}
        done, not_done = wait(futures, timeout=timeout)
        if progress.cancelled:
            # Stopped from outside: finished sizes may be partial
            return 0
        if not_done:
            progress.cancel()
        for future in done:
            path = futures[future]
            try:
                size = future.result()
            except ScanError as e:
                logger.debug("Prefetch skipped %s: %s", path, e)
                continue
            if cache.save_overview_size(path, size):
                written += 1
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    logger.info("Overview prefetch stored %d of %d sizes", written, len(todo))
    return written
