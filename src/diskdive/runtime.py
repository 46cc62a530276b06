"""Background execution of explorer commands.

Every method here runs on a worker thread and turns one command into at most
one message. Expected failures are folded into the message's `error` field so
nothing raises back into the control loop.
"""

import logging
import os
from typing import Callable, Optional

from diskdive.cache import ResultCache
from diskdive.config import Settings
from diskdive.dedup import SingleFlight
from diskdive.deleter import delete_paths
from diskdive.errors import ScanError
from diskdive.messages import (
    Command,
    DeleteCommand,
    DeleteFinished,
    Message,
    OpenCommand,
    OpenFinished,
    OverviewProbeCommand,
    OverviewSizeMeasured,
    SaveOverviewSizeCommand,
    SaveScanCommand,
    ScanCommand,
    ScanFinished,
)
from diskdive.models import DeleteOutcome
from diskdive.opener import open_paths
from diskdive.overview import measure_overview_size
from diskdive.scanner import scan_path

logger = logging.getLogger(__name__)


def failure_message(command: Command, error: str) -> Optional[Message]:
    """The message reporting that `command` failed with `error`."""
    if isinstance(command, ScanCommand):
        return ScanFinished(path=command.path, error=error, generation=command.generation)
    if isinstance(command, OverviewProbeCommand):
        return OverviewSizeMeasured(path=command.path, index=command.index, error=error)
    if isinstance(command, DeleteCommand):
        return DeleteFinished(outcome=DeleteOutcome(errors=[error]), paths=command.paths)
    if isinstance(command, OpenCommand):
        return OpenFinished(errors=(error,), reveal=command.reveal)
    return None


class CommandRunner:
    """Runs the slow side of explorer commands."""

    def __init__(
        self,
        cache: ResultCache,
        settings: Optional[Settings] = None,
        flights: Optional[SingleFlight] = None,
        scan: Callable = scan_path,
        measure: Callable = measure_overview_size,
        delete: Callable = delete_paths,
        open_: Callable = open_paths,
    ):
        self.cache = cache
        self.settings = settings or Settings()
        self.flights = flights or SingleFlight()
        self._scan = scan
        self._measure = measure
        self._delete = delete
        self._open = open_

    def is_background(self, command: Command) -> bool:
        return isinstance(
            command,
            (
                ScanCommand,
                OverviewProbeCommand,
                DeleteCommand,
                OpenCommand,
                SaveScanCommand,
                SaveOverviewSizeCommand,
            ),
        )

    def run(self, command: Command) -> Optional[Message]:
        """Execute `command`; unexpected errors come back as failure messages."""
        try:
            return self._dispatch(command)
        except Exception as e:
            logger.exception("Background command failed: %r", command)
            return failure_message(command, str(e))

    def _dispatch(self, command: Command) -> Optional[Message]:
        if isinstance(command, ScanCommand):
            return self.scan(command)
        if isinstance(command, OverviewProbeCommand):
            return self.probe(command)
        if isinstance(command, DeleteCommand):
            return self.delete(command)
        if isinstance(command, OpenCommand):
            return self.open(command)
        if isinstance(command, SaveScanCommand):
            self.cache.save_to_disk(command.path, command.entry)
            return None
        if isinstance(command, SaveOverviewSizeCommand):
            self.cache.save_overview_size(command.path, command.size)
            return None
        logger.debug("Not a background command: %r", command)
        return None

    def scan(self, command: ScanCommand) -> ScanFinished:
        """Serve from the durable cache, else run (or join) a scan of the path."""
        path = command.path
        cached = self.cache.load_from_disk(path)
        if cached is not None:
            logger.debug("Disk cache hit for %s", path)
            return ScanFinished(
                path=path,
                result=cached.result,
                mod_time=cached.mod_time,
                from_cache=True,
                generation=command.generation,
            )

        def run_scan():
            # Stamped before walking, so every joined request gets the same mtime
            mod_time = os.stat(path).st_mtime
            result = self._scan(
                path,
                command.progress,
                large_file_count=self.settings.large_file_count,
                max_workers=self.settings.scan_workers,
            )
            return mod_time, result

        try:
            (mod_time, result), shared = self.flights.do((path, command.generation), run_scan)
        except ScanError as e:
            logger.info("Scan of %s failed: %s", path, e.reason)
            return ScanFinished(path=path, error=e.reason, generation=command.generation)
        except OSError as e:
            logger.info("Scan of %s failed: %s", path, e)
            return ScanFinished(
                path=path, error=e.strerror or str(e), generation=command.generation
            )

        if shared:
            logger.debug("Scan of %s was shared with another request", path)
        return ScanFinished(
            path=path, result=result, mod_time=mod_time, generation=command.generation
        )

    def probe(self, command: OverviewProbeCommand) -> OverviewSizeMeasured:
        try:
            size = self._measure(command.path, command.progress)
        except ScanError as e:
            return OverviewSizeMeasured(path=command.path, index=command.index, error=e.reason)
        except OSError as e:
            return OverviewSizeMeasured(path=command.path, index=command.index, error=str(e))
        return OverviewSizeMeasured(path=command.path, index=command.index, size=size)

    def delete(self, command: DeleteCommand) -> DeleteFinished:
        outcome = self._delete(
            command.paths, command.progress, timeout=self.settings.trash_timeout
        )
        return DeleteFinished(outcome=outcome, paths=command.paths)

    def open(self, command: OpenCommand) -> OpenFinished:
        errors = self._open(
            list(command.paths), reveal=command.reveal, timeout=self.settings.open_timeout
        )
        return OpenFinished(errors=tuple(errors), reveal=command.reveal)
