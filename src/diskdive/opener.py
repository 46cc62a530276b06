"""Open paths with the OS file opener or reveal them in the file manager."""

import logging
import os
import subprocess
import sys

from diskdive.errors import OpenError

logger = logging.getLogger(__name__)

OPEN_TIMEOUT = 10.0
MAX_BATCH_OPEN = 20


def open_command(path: str, reveal: bool = False) -> list[str]:
    """Command line that opens (or reveals) `path` on this platform."""
    if sys.platform == "darwin":
        return ["open", "-R", path] if reveal else ["open", path]
    # No portable "select in file manager": open the containing folder instead
    target = os.path.dirname(path) if reveal else path
    return ["xdg-open", target]


def open_path(path: str, reveal: bool = False, timeout: float = OPEN_TIMEOUT) -> None:
    """
    Open or reveal one path.

    Raises:
        OpenError: If the opener is missing, fails or times out
    """
    command = open_command(path, reveal)
    try:
        result = subprocess.run(command, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise OpenError(f"timeout opening {os.path.basename(path)}") from e
    except OSError as e:
        raise OpenError(f"cannot run {command[0]}: {e}") from e

    if result.returncode != 0:
        output = (result.stderr or result.stdout).strip()
        raise OpenError(f"{command[0]} failed for {os.path.basename(path)}: {output}")


def open_paths(paths: list[str], reveal: bool = False, timeout: float = OPEN_TIMEOUT) -> list[str]:
    """Open every path; returns the error messages of those that failed."""
    errors = []
    for path in paths:
        try:
            open_path(path, reveal=reveal, timeout=timeout)
        except OpenError as e:
            logger.warning("%s", e)
            errors.append(str(e))
    return errors
