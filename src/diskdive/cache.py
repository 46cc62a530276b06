"""Scan result cache with an optional on-disk layer."""

import hashlib
import logging
import os
import threading
import time
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ValidationError

from diskdive.models import CacheEntry, ScanResult

logger = logging.getLogger(__name__)

# Overview sizes are measured over whole trees whose root mtime says little
OVERVIEW_CACHE_TTL = 7 * 24 * 3600


class _SizeRecord(BaseModel):
    """Small durable record: an overview size or a last known file count."""

    path: str
    value: int
    recorded_at: float


def _mod_time(path: str) -> Optional[float]:
    try:
        return os.stat(path).st_mtime
    except OSError:
        return None


class ResultCache:
    """
    Last scan result per path, validated against the path's mtime.

    The in-memory map is meant to be touched only by the control loop.
    The disk methods are safe to call from worker threads: they never touch
    the map, and every failure is swallowed and reported as a miss or a
    no-op, since the cache is purely an optimization.
    """

    def __init__(
        self,
        cache_dir: Optional[Path] = None,
        persist: bool = True,
        overview_ttl: float = OVERVIEW_CACHE_TTL,
    ):
        self._entries: dict[str, CacheEntry] = {}
        self.cache_dir = Path(cache_dir) if cache_dir is not None else None
        self.persist = persist and self.cache_dir is not None
        self.overview_ttl = overview_ttl

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path: str) -> bool:
        return path in self._entries

    # -------------------------------------------------------------------------
    # In-memory layer
    # -------------------------------------------------------------------------

    def get(self, path: str) -> tuple[Optional[CacheEntry], bool]:
        """
        Look up the cached scan of `path`.

        Returns:
            Tuple of (entry, hit). Dirty entries and entries whose subject has
            been modified (or removed) since the scan are misses.
        """
        entry = self._entries.get(path)
        if entry is None:
            return None, False

        current = _mod_time(path)
        if current is None or not entry.is_fresh(current):
            logger.debug("Stale cache entry for %s", path)
            self._entries.pop(path, None)
            return None, False

        return entry, True

    def put(self, path: str, result: ScanResult, mod_time: Optional[float] = None) -> CacheEntry:
        """Store a scan result. `mod_time` should be taken before the scan started."""
        if mod_time is None:
            mod_time = _mod_time(path) or 0.0
        entry = CacheEntry(path=path, result=result, mod_time=mod_time)
        self._entries[path] = entry
        return entry

    def invalidate(self, path: str) -> None:
        """Forget `path` in memory and on disk."""
        self._entries.pop(path, None)
        self._unlink(self._record_file("scans", path))

    def invalidate_tree(self, path: str) -> None:
        """Invalidate `path` and every ancestor directory, whose totals include it."""
        current = os.path.abspath(path)
        while True:
            self.invalidate(current)
            parent = os.path.dirname(current)
            if parent == current:
                break
            current = parent

    def mark_all_dirty(self) -> None:
        """Flag every in-memory entry stale."""
        for entry in self._entries.values():
            entry.dirty = True

    # -------------------------------------------------------------------------
    # Disk layer
    # -------------------------------------------------------------------------

    def _record_file(self, kind: str, path: str) -> Optional[Path]:
        if not self.persist:
            return None
        digest = hashlib.sha256(path.encode("utf-8", "surrogateescape")).hexdigest()[:32]
        return self.cache_dir / kind / f"{digest}.json"

    def _write(self, target: Optional[Path], payload: str) -> bool:
        if target is None:
            return False
        tmp = target.with_suffix(f".{os.getpid()}.{threading.get_ident()}.tmp")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(payload, encoding="utf-8")
            os.replace(tmp, target)
            return True
        except OSError as e:
            logger.debug("Cache write failed for %s: %s", target, e)
            self._unlink(tmp)
            return False

    def _unlink(self, target: Optional[Path]) -> None:
        if target is None:
            return
        try:
            target.unlink(missing_ok=True)
        except OSError as e:
            logger.debug("Cache removal failed for %s: %s", target, e)

    def _read_record(self, kind: str, path: str) -> Optional[_SizeRecord]:
        target = self._record_file(kind, path)
        if target is None:
            return None
        try:
            record = _SizeRecord.model_validate_json(target.read_text(encoding="utf-8"))
        except (OSError, ValueError, ValidationError):
            return None
        if record.path != path:
            return None
        return record

    def load_from_disk(self, path: str) -> Optional[CacheEntry]:
        """Read a persisted scan of `path`, or None if missing, unreadable or stale."""
        target = self._record_file("scans", path)
        if target is None:
            return None
        try:
            entry = CacheEntry.model_validate_json(target.read_text(encoding="utf-8"))
        except (OSError, ValueError, ValidationError):
            return None

        current = _mod_time(path)
        if entry.path != path or current is None or not entry.is_fresh(current):
            return None
        return entry

    def save_to_disk(self, path: str, entry: CacheEntry) -> bool:
        """Persist a scan and its file count. Returns False when nothing was written."""
        saved = self._write(self._record_file("scans", path), entry.model_dump_json())
        if entry.result.total_files > 0:
            record = _SizeRecord(path=path, value=entry.result.total_files, recorded_at=time.time())
            self._write(self._record_file("counts", path), record.model_dump_json())
        return saved

    def peek_total_files(self, path: str) -> int:
        """Last known file count of `path`; only a progress-bar hint."""
        record = self._read_record("counts", path)
        return record.value if record else 0

    def load_overview_size(self, path: str) -> Optional[int]:
        record = self._read_record("overview", path)
        if record is None or time.time() - record.recorded_at > self.overview_ttl:
            return None
        return record.value

    def save_overview_size(self, path: str, size: int) -> bool:
        record = _SizeRecord(path=path, value=size, recorded_at=time.time())
        return self._write(self._record_file("overview", path), record.model_dump_json())

    def invalidate_overview_size(self, path: str) -> None:
        self._unlink(self._record_file("overview", path))
