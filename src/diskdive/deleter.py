"""Recoverable deletion: move paths to the system trash."""

import logging
import os
import subprocess
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable, Iterable, Optional

from send2trash import send2trash

from diskdive.errors import TrashError, TrashTimeoutError
from diskdive.models import DeleteOutcome

logger = logging.getLogger(__name__)

TRASH_TIMEOUT = 30.0


class DeleteProgress:
    """Items counted so far in a deletion batch; written by the worker, read by the UI."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.count = 0

    def add(self, n: int = 1) -> None:
        with self._lock:
            self.count += n


def _escape_applescript(path: str) -> str:
    return path.replace("\\", "\\\\").replace('"', '\\"')


def _finder_trash(path: str, timeout: float) -> None:
    script = f'tell application "Finder" to delete POSIX file "{_escape_applescript(path)}"'
    try:
        result = subprocess.run(
            ["osascript", "-e", script],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise TrashTimeoutError("timeout moving to Trash") from e
    except OSError as e:
        raise TrashError(f"failed to move to Trash: {e}") from e

    if result.returncode != 0:
        output = (result.stderr or result.stdout).strip()
        raise TrashError(f"failed to move to Trash: {output}")


def _send2trash(path: str, timeout: float) -> None:
    # send2trash has no timeout of its own
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="trash")
    try:
        future = executor.submit(send2trash, path)
        future.result(timeout=timeout)
    except FutureTimeout as e:
        raise TrashTimeoutError("timeout moving to Trash") from e
    except OSError as e:
        raise TrashError(f"failed to move to Trash: {e}") from e
    finally:
        executor.shutdown(wait=False)


def move_to_trash(path: str, timeout: float = TRASH_TIMEOUT) -> None:
    """
    Move a file or directory to the trash.

    Uses Finder on macOS so "Put Back" works, send2trash elsewhere.

    Raises:
        TrashTimeoutError: If the operation takes longer than `timeout`
        TrashError: If the trash refused the path
    """
    path = os.path.abspath(path)
    if sys.platform == "darwin":
        _finder_trash(path, timeout)
    else:
        _send2trash(path, timeout)


def sort_deepest_first(paths: Iterable[str]) -> list[str]:
    """Deduplicate and order paths so children come before their ancestors."""
    unique = sorted(set(paths))
    return sorted(unique, key=lambda p: p.count(os.sep), reverse=True)


def count_items(path: str, progress: Optional[DeleteProgress] = None) -> int:
    """
    Count the files under `path` for progress display.

    The count is cosmetic: unreadable directories are skipped silently.
    """
    if not os.path.isdir(path) or os.path.islink(path):
        if progress is not None:
            progress.add(1)
        return 1

    count = 0
    for _, _, filenames in os.walk(path, onerror=lambda e: None):
        count += len(filenames)
        if progress is not None and filenames:
            progress.add(len(filenames))
    return count


def delete_paths(
    paths: Iterable[str],
    progress: Optional[DeleteProgress] = None,
    *,
    timeout: float = TRASH_TIMEOUT,
    trash: Callable[..., None] = move_to_trash,
) -> DeleteOutcome:
    """
    Move many paths to the trash, deepest first.

    A path that no longer exists counts as removed. Failures are collected
    per path and do not stop the batch.

    Args:
        paths: Absolute paths to delete
        progress: Optional counter of items processed
        timeout: Per-path trash timeout in seconds
        trash: Function performing the move, trash(path, timeout=...)

    Returns:
        DeleteOutcome with removed paths, item count and errors
    """
    outcome = DeleteOutcome()

    for path in sort_deepest_first(paths):
        try:
            os.lstat(path)
        except FileNotFoundError:
            outcome.removed.append(path)
            continue
        except OSError as e:
            outcome.errors.append(f"{os.path.basename(path)}: {e.strerror or e}")
            continue

        count = count_items(path, progress)

        try:
            trash(path, timeout=timeout)
        except TrashError as e:
            if not os.path.lexists(path):
                # Gone by other means while we were counting
                outcome.removed.append(path)
                continue
            logger.warning("Could not trash %s: %s", path, e)
            outcome.errors.append(f"{os.path.basename(path)}: {e}")
            continue

        logger.info("Moved to trash: %s (%d items)", path, count)
        outcome.removed.append(path)
        outcome.item_count += count

    return outcome
