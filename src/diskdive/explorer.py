"""Navigation, selection and deletion state for the interactive explorer.

`Explorer` owns every piece of mutable UI state. It is driven one message at a
time through `handle`, which applies the transition and returns the commands
the runtime should execute in the background. It never does slow I/O itself.
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Union

from diskdive.cache import ResultCache
from diskdive.config import Settings
from diskdive.deleter import DeleteProgress
from diskdive.messages import (
    Command,
    DeleteCommand,
    DeleteFinished,
    KeyPress,
    Message,
    OpenCommand,
    OpenFinished,
    OverviewProbeCommand,
    OverviewSizeMeasured,
    QuitCommand,
    Resize,
    SaveOverviewSizeCommand,
    SaveScanCommand,
    ScanCommand,
    ScanFinished,
    Tick,
    TickCommand,
)
from diskdive.models import (
    DirEntry,
    FileEntry,
    HistoryEntry,
    ScanResult,
    display_path,
    format_size,
)
from diskdive.overview import (
    OVERVIEW_ROOT,
    OverviewScheduler,
    create_overview_entries,
    has_pending,
    sort_entries_by_size,
    sum_known_sizes,
)
from diskdive.scanner import ScanProgress

logger = logging.getLogger(__name__)

SPINNER_FRAMES = ["⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏"]

DEFAULT_VIEWPORT = 12
# Rows taken by header, progress, column titles, status and help
DIRECTORY_CHROME_ROWS = 9
LARGE_FILES_CHROME_ROWS = 10

Item = Union[DirEntry, FileEntry]


def calculate_viewport(height: int, large_files: bool = False) -> int:
    """Number of list rows that fit in a terminal `height` rows tall."""
    if height <= 0:
        return DEFAULT_VIEWPORT
    reserved = LARGE_FILES_CHROME_ROWS if large_files else DIRECTORY_CHROME_ROWS
    return max(height - reserved, 1)


class ViewMode(str, Enum):
    """What the explorer is currently showing."""

    OVERVIEW = "overview"
    DIRECTORY = "directory"
    LARGE_FILES = "large_files"
    DELETE_CONFIRM = "delete_confirm"
    DELETING = "deleting"


@dataclass
class ListCursor:
    """Cursor, scroll offset and path-keyed selection of one list."""

    cursor: int = 0
    offset: int = 0
    selected: set[str] = field(default_factory=set)

    def clamp(self, length: int, viewport: int) -> None:
        """Keep the cursor inside [0, length) and visible in the viewport."""
        if length <= 0:
            self.cursor = 0
            self.offset = 0
            return
        self.cursor = min(max(self.cursor, 0), length - 1)
        max_offset = max(length - viewport, 0)
        self.offset = min(max(self.offset, 0), max_offset)
        if self.cursor < self.offset:
            self.offset = self.cursor
        if self.cursor >= self.offset + viewport:
            self.offset = self.cursor - viewport + 1

    def move(self, delta: int, length: int, viewport: int) -> None:
        self.cursor += delta
        self.clamp(length, viewport)

    def toggle(self, path: str) -> bool:
        """Flip membership of `path`; returns True if it is now selected."""
        if path in self.selected:
            self.selected.discard(path)
            return False
        self.selected.add(path)
        return True


def _is_within(path: str, root: str) -> bool:
    root = root.rstrip(os.sep) or os.sep
    return path == root or path.startswith(root if root == os.sep else root + os.sep)


class Explorer:
    """State machine behind the interactive explorer."""

    def __init__(
        self,
        path: Optional[str],
        cache: ResultCache,
        settings: Optional[Settings] = None,
        overview_targets: Optional[Callable[[], list[DirEntry]]] = None,
    ):
        self.settings = settings or Settings()
        self.cache = cache

        self.is_overview = path is None
        self.path = OVERVIEW_ROOT if path is None else path

        self.entries: list[DirEntry] = []
        self.large_files: list[FileEntry] = []
        self.total_size = 0
        self.total_files = 0
        self.last_total_files = 0

        self.dir_view = ListCursor()
        self.large_view = ListCursor()
        self.show_large_files = False
        self.history: list[HistoryEntry] = []

        self.status = "Preparing scan..."
        self.scanning = False
        self.scan_progress = ScanProgress()
        self._awaiting_first_result = False
        # Bumped by every deletion; scans started earlier are discarded
        self.scan_generation = 0

        if overview_targets is None:
            volumes_root = self.settings.volumes_root
            overview_targets = lambda: create_overview_entries(volumes_root=volumes_root)
        self._overview_targets_factory = overview_targets
        self._overview_targets: Optional[list[DirEntry]] = None
        self.overview_sizes: dict[str, int] = {}
        self.overview_progress = ScanProgress()
        self.scheduler = OverviewScheduler(self.settings.overview_concurrency)

        self.delete_confirm = False
        self.delete_target: Optional[DirEntry] = None
        self.deleting = False
        self.delete_progress: Optional[DeleteProgress] = None

        self.spinner = 0
        self.width = 0
        self.height = 0

    # -------------------------------------------------------------------------
    # Derived state
    # -------------------------------------------------------------------------

    @property
    def in_overview_mode(self) -> bool:
        return self.is_overview and self.path == OVERVIEW_ROOT

    @property
    def overview_targets(self) -> list[DirEntry]:
        if self._overview_targets is None:
            self._overview_targets = self._overview_targets_factory()
        return self._overview_targets

    @property
    def mode(self) -> ViewMode:
        if self.deleting:
            return ViewMode.DELETING
        if self.delete_confirm:
            return ViewMode.DELETE_CONFIRM
        if self.in_overview_mode:
            return ViewMode.OVERVIEW
        if self.show_large_files:
            return ViewMode.LARGE_FILES
        return ViewMode.DIRECTORY

    @property
    def busy(self) -> bool:
        """Whether any background work is outstanding (drives the tick)."""
        if self.scanning or self.deleting:
            return True
        return self.in_overview_mode and (self.scheduler.busy or has_pending(self.entries))

    @property
    def spinner_frame(self) -> str:
        return SPINNER_FRAMES[self.spinner % len(SPINNER_FRAMES)]

    def viewport(self, large_files: Optional[bool] = None) -> int:
        if large_files is None:
            large_files = self.show_large_files
        return calculate_viewport(self.height, large_files)

    def current_list(self) -> tuple[list[Item], ListCursor]:
        """The list on screen and its cursor state."""
        if self.show_large_files:
            return self.large_files, self.large_view
        return self.entries, self.dir_view

    def visible_rows(self) -> list[tuple[int, Item]]:
        items, view = self.current_list()
        end = view.offset + self.viewport()
        return list(enumerate(items))[view.offset:end]

    def selection_size(self) -> int:
        items, view = self.current_list()
        return sum(i.size for i in items if i.path in view.selected and i.size > 0)

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def start(self) -> list[Command]:
        """Commands to run when the session begins."""
        if self.in_overview_mode:
            self._hydrate_overview()
            commands = self._schedule_overview()
            if commands:
                self.status = "Checking system folders..."
            else:
                self.status = "Ready"
            return commands

        self.last_total_files = self.cache.peek_total_files(self.path)
        self._awaiting_first_result = False
        return self._begin_scan(self.path)

    def handle(self, message: Message) -> list[Command]:
        """Apply one message and return the follow-up commands."""
        if isinstance(message, KeyPress):
            return self._on_key(message.key)
        if isinstance(message, Tick):
            return self._on_tick()
        if isinstance(message, ScanFinished):
            return self._on_scan_finished(message)
        if isinstance(message, OverviewSizeMeasured):
            return self._on_overview_measured(message)
        if isinstance(message, DeleteFinished):
            return self._on_delete_finished(message)
        if isinstance(message, OpenFinished):
            return self._on_open_finished(message)
        if isinstance(message, Resize):
            self.width = message.width
            self.height = message.height
            self._clamp_views()
            return []
        logger.debug("Ignoring unknown message %r", message)
        return []

    # -------------------------------------------------------------------------
    # Keys
    # -------------------------------------------------------------------------

    def _on_key(self, key: str) -> list[Command]:
        if key == "ctrl+c":
            return [QuitCommand()]
        if self.delete_confirm:
            return self._on_confirm_key(key)
        if self.deleting:
            return [QuitCommand()] if key == "q" else []

        if key == "q":
            return [QuitCommand()]
        if key == "escape":
            if self.show_large_files:
                self.show_large_files = False
                return []
            return [QuitCommand()]
        if key in ("up", "k"):
            self._move(-1)
        elif key in ("down", "j"):
            self._move(1)
        elif key in ("enter", "right", "l"):
            if not self.show_large_files:
                return self._enter_selected()
        elif key in ("left", "h", "b"):
            return self._go_back()
        elif key == "r":
            return self._refresh()
        elif key in ("t", "T"):
            self._toggle_large_files()
        elif key in ("space", " "):
            self._toggle_selection()
        elif key in ("o", "O"):
            return self._open(reveal=False)
        elif key in ("f", "F"):
            return self._open(reveal=True)
        elif key in ("delete", "backspace"):
            self._request_delete()
        return []

    def _on_confirm_key(self, key: str) -> list[Command]:
        if key == "enter":
            return self._confirm_delete()
        if key in ("escape", "q"):
            self.status = "Cancelled"
            self.delete_confirm = False
            self.delete_target = None
        return []

    def _move(self, delta: int) -> None:
        items, view = self.current_list()
        view.move(delta, len(items), self.viewport())

    # -------------------------------------------------------------------------
    # Navigation
    # -------------------------------------------------------------------------

    def _snapshot(self) -> HistoryEntry:
        return HistoryEntry(
            path=self.path,
            entries=list(self.entries),
            large_files=list(self.large_files),
            total_size=self.total_size,
            total_files=self.total_files,
            cursor=self.dir_view.cursor,
            offset=self.dir_view.offset,
            large_cursor=self.large_view.cursor,
            large_offset=self.large_view.offset,
            selected=set(self.dir_view.selected),
            large_selected=set(self.large_view.selected),
            is_overview=self.is_overview,
        )

    def _enter_selected(self) -> list[Command]:
        if not self.entries:
            return []
        self.dir_view.clamp(len(self.entries), self.viewport())
        selected = self.entries[self.dir_view.cursor]

        if not selected.is_dir:
            self.status = f"File: {selected.name} ({format_size(selected.size)})"
            return []

        self.history.append(self._snapshot())
        self.path = selected.path
        self.is_overview = False
        self.show_large_files = False
        self.dir_view = ListCursor()
        self.large_view = ListCursor()

        cached, hit = self.cache.get(self.path)
        if hit:
            self._apply_result(cached.result)
            self.scanning = False
            self.status = f"Cached view for {display_path(self.path)}"
            return []

        self.entries = []
        self.large_files = []
        self.total_size = 0
        self.total_files = 0
        self.status = "Scanning..."
        self.last_total_files = self.cache.peek_total_files(self.path)
        self._awaiting_first_result = True
        return self._begin_scan(self.path)

    def _go_back(self) -> list[Command]:
        if self.show_large_files:
            self.show_large_files = False
            return []

        if not self.history:
            if not self.in_overview_mode:
                return self._switch_to_overview()
            return []

        last = self.history.pop()
        self._awaiting_first_result = False
        self.path = last.path
        self.is_overview = last.is_overview
        self.show_large_files = False
        self.dir_view = ListCursor(last.cursor, last.offset)
        self.large_view = ListCursor(last.large_cursor, last.large_offset)

        if last.is_overview:
            # Sizes measured meanwhile live in overview_sizes, not in the snapshot
            self.scanning = False
            self._hydrate_overview()
            self.status = "Ready"
            return self._schedule_overview()

        if last.dirty:
            cached, hit = self.cache.get(self.path)
            if hit:
                self._apply_result(cached.result)
                self.scanning = False
                self.status = f"Scanned {format_size(self.total_size)}"
                return []

            self.entries = []
            self.large_files = []
            self.total_size = 0
            self.status = "Scanning..."
            if last.total_files > 0:
                self.last_total_files = last.total_files
            return self._begin_scan(self.path)

        self.dir_view.selected = set(last.selected)
        self.large_view.selected = set(last.large_selected)
        self.entries = list(last.entries)
        self.large_files = list(last.large_files)
        self.total_size = last.total_size
        self.total_files = last.total_files
        self._clamp_views()
        self.scanning = False
        self.status = f"Scanned {format_size(self.total_size)}"
        return []

    def _switch_to_overview(self) -> list[Command]:
        self.is_overview = True
        self.path = OVERVIEW_ROOT
        self.scanning = False
        self._awaiting_first_result = False
        self.show_large_files = False
        self.large_files = []
        self.dir_view = ListCursor()
        self.large_view = ListCursor()
        self.delete_confirm = False
        self.delete_target = None
        self._hydrate_overview()
        commands = self._schedule_overview()
        if not commands and not self.busy:
            self.status = "Ready"
        return commands

    def _refresh(self) -> list[Command]:
        if self.in_overview_mode:
            self.overview_sizes.clear()
            for target in self.overview_targets:
                self.cache.invalidate_overview_size(target.path)
            self._hydrate_overview()
            for entry in self.entries:
                entry.size = -1
            self.total_size = 0
            commands = self._schedule_overview()
            self.status = "Refreshing..."
            return commands

        self.cache.invalidate(self.path)
        self.status = "Refreshing..."
        if self.total_files > 0:
            self.last_total_files = self.total_files
        return self._begin_scan(self.path)

    def _toggle_large_files(self) -> None:
        if self.in_overview_mode:
            return
        self.show_large_files = not self.show_large_files
        self._clamp_views()
        self.status = self._selection_status()

    # -------------------------------------------------------------------------
    # Selection, open and reveal
    # -------------------------------------------------------------------------

    def _selection_status(self) -> str:
        _, view = self.current_list()
        if view.selected:
            return f"{len(view.selected)} selected ({format_size(self.selection_size())})"
        return f"Scanned {format_size(self.total_size)}"

    def _toggle_selection(self) -> None:
        if self.in_overview_mode:
            return
        items, view = self.current_list()
        if not items:
            return
        view.clamp(len(items), self.viewport())
        view.toggle(items[view.cursor].path)
        self.status = self._selection_status()

    def _open(self, reveal: bool) -> list[Command]:
        items, view = self.current_list()
        if not items:
            return []
        limit = self.settings.open_batch_limit
        verb = "reveal" if reveal else "open"

        if view.selected:
            count = len(view.selected)
            if count > limit:
                self.status = f"Too many items to {verb} (max {limit}, selected {count})"
                return []
            paths = tuple(sorted(view.selected))
            if reveal:
                self.status = f"Showing {count} items in file manager..."
            else:
                self.status = f"Opening {count} items..."
        else:
            view.clamp(len(items), self.viewport())
            item = items[view.cursor]
            paths = (item.path,)
            if reveal:
                self.status = f"Showing {item.name} in file manager..."
            else:
                self.status = f"Opening {item.name}..."

        return [OpenCommand(paths=paths, reveal=reveal)]

    def _on_open_finished(self, message: OpenFinished) -> list[Command]:
        if message.errors:
            self.status = f"Failed to {'reveal' if message.reveal else 'open'}: {message.errors[0]}"
        return []

    # -------------------------------------------------------------------------
    # Deletion
    # -------------------------------------------------------------------------

    def _request_delete(self) -> None:
        if self.in_overview_mode:
            return
        items, view = self.current_list()
        if not items:
            return

        target: Optional[Item] = None
        if view.selected:
            # Representative item for the confirmation prompt
            target = next((i for i in items if i.path in view.selected), None)
            if target is None:
                path = sorted(view.selected)[0]
                target = DirEntry(name=os.path.basename(path), path=path, size=0)
        else:
            view.clamp(len(items), self.viewport())
            target = items[view.cursor]

        if isinstance(target, FileEntry):
            target = DirEntry(name=target.name, path=target.path, size=target.size, is_dir=False)
        self.delete_target = target
        self.delete_confirm = True

    def pending_delete_paths(self) -> list[str]:
        _, view = self.current_list()
        if view.selected:
            return sorted(view.selected)
        if self.delete_target is not None:
            return [self.delete_target.path]
        return []

    def _confirm_delete(self) -> list[Command]:
        paths = self.pending_delete_paths()
        self.delete_confirm = False
        self.delete_target = None

        if not paths:
            self.status = "Nothing to delete"
            return []

        self.deleting = True
        self.delete_progress = DeleteProgress()
        if len(paths) == 1:
            self.status = f"Deleting {os.path.basename(paths[0])}..."
        else:
            self.status = f"Deleting {len(paths)} items..."
        return [DeleteCommand(paths=tuple(paths), progress=self.delete_progress), TickCommand()]

    def _on_delete_finished(self, message: DeleteFinished) -> list[Command]:
        outcome = message.outcome
        self.deleting = False
        self.delete_progress = None
        self.dir_view.selected.clear()
        self.large_view.selected.clear()

        for path in outcome.removed:
            self._remove_from_view(path)
            self.cache.invalidate_tree(path)
            for target in self.overview_targets:
                if _is_within(path, target.path) or _is_within(target.path, path):
                    self.overview_sizes.pop(target.path, None)
                    self.cache.invalidate_overview_size(target.path)

        if outcome.errors and outcome.removed:
            self.status = (
                f"Deleted {outcome.item_count} items, {len(outcome.errors)} failed: "
                f"{outcome.error_summary}"
            )
        elif outcome.errors:
            self.status = f"Failed to delete: {outcome.error_summary}"
        else:
            self.status = f"Deleted {outcome.item_count} items"

        if not outcome.removed:
            return []

        for entry in self.history:
            entry.dirty = True
        self.cache.mark_all_dirty()
        self.scan_generation += 1

        if self.in_overview_mode:
            self._hydrate_overview()
            return self._schedule_overview()
        return self._begin_scan(self.path)

    def _remove_from_view(self, path: str) -> None:
        """Drop `path` (and anything under it) from the lists and shrink totals."""
        removed_size = 0
        kept_entries = []
        for entry in self.entries:
            if _is_within(entry.path, path):
                removed_size += max(entry.size, 0)
            else:
                kept_entries.append(entry)

        file_size = 0
        kept_files = []
        for item in self.large_files:
            if _is_within(item.path, path):
                if item.path == path:
                    file_size = item.size
            else:
                kept_files.append(item)

        if not removed_size and file_size:
            # A file deeper down: shrink the child that contained it
            for i, entry in enumerate(kept_entries):
                if _is_within(path, entry.path):
                    kept_entries[i] = entry.model_copy(
                        update={"size": max(entry.size - file_size, 0)}
                    )
                    break
            removed_size = file_size

        self.entries = kept_entries
        self.large_files = kept_files
        self.total_size = max(self.total_size - removed_size, 0)
        self._clamp_views()

    # -------------------------------------------------------------------------
    # Scans
    # -------------------------------------------------------------------------

    def _begin_scan(self, path: str) -> list[Command]:
        self.scanning = True
        self.scan_progress = ScanProgress()
        return [
            ScanCommand(path=path, progress=self.scan_progress, generation=self.scan_generation),
            TickCommand(),
        ]

    def _apply_result(self, result: ScanResult) -> None:
        self.entries = [e for e in result.entries if e.size > 0]
        self.large_files = list(result.large_files)
        self.total_size = result.total_size
        self.total_files = result.total_files

        # Selection is path-keyed: keep members that are still listed
        self.dir_view.selected &= {e.path for e in self.entries}
        self.large_view.selected &= {f.path for f in self.large_files}
        self._clamp_views()

    def _on_scan_finished(self, message: ScanFinished) -> list[Command]:
        commands: list[Command] = []

        if message.generation < self.scan_generation:
            logger.debug("Discarding scan of %s started before a deletion", message.path)
            return commands

        if message.result is not None and message.error is None:
            entry = self.cache.put(message.path, message.result, message.mod_time)
            if not message.from_cache:
                commands.append(SaveScanCommand(path=message.path, entry=entry))

        if message.path != self.path or self.in_overview_mode:
            # The user moved on; the result only feeds the cache
            return commands

        self.scanning = False

        if message.error is not None or message.result is None:
            error = message.error or "no result"
            if self._awaiting_first_result and self.history:
                self._awaiting_first_result = False
                previous = self.history.pop()
                self._restore_snapshot(previous)
            self.status = f"Scan failed: {error}"
            return commands

        self._awaiting_first_result = False
        self._apply_result(message.result)
        self.status = f"Scanned {format_size(self.total_size)}"

        if self.total_size > 0 and any(t.path == self.path for t in self.overview_targets):
            self.overview_sizes[self.path] = self.total_size
            commands.append(SaveOverviewSizeCommand(path=self.path, size=self.total_size))
        return commands

    def _restore_snapshot(self, snapshot: HistoryEntry) -> None:
        self.path = snapshot.path
        self.is_overview = snapshot.is_overview
        self.entries = list(snapshot.entries)
        self.large_files = list(snapshot.large_files)
        self.total_size = snapshot.total_size
        self.total_files = snapshot.total_files
        self.dir_view = ListCursor(snapshot.cursor, snapshot.offset, set(snapshot.selected))
        self.large_view = ListCursor(
            snapshot.large_cursor, snapshot.large_offset, set(snapshot.large_selected)
        )
        self._clamp_views()

    # -------------------------------------------------------------------------
    # Overview
    # -------------------------------------------------------------------------

    def _hydrate_overview(self) -> None:
        """Rebuild overview entries from known sizes; unknown ones stay pending."""
        self.entries = [target.model_copy() for target in self.overview_targets]
        for entry in self.entries:
            if entry.path in self.overview_sizes:
                entry.size = self.overview_sizes[entry.path]
                continue
            size = self.cache.load_overview_size(entry.path)
            if size is not None:
                entry.size = size
                self.overview_sizes[entry.path] = size
        self.total_size = sum_known_sizes(self.entries)
        self._clamp_views()

    def _schedule_overview(self) -> list[Command]:
        if not self.in_overview_mode:
            return []

        batch = self.scheduler.next_batch(self.entries)
        if not batch:
            if not has_pending(self.entries) and not self.scheduler.busy:
                sort_entries_by_size(self.entries)
                self._clamp_views()
                self.status = "Ready"
            return []

        remaining = sum(1 for e in self.entries if e.size < 0)
        if len(batch) == 1:
            self.status = f"Scanning {self.entries[batch[0]].name}... ({remaining} left)"
        else:
            self.status = f"Scanning {len(batch)} directories... ({remaining} left)"

        commands: list[Command] = [
            OverviewProbeCommand(path=self.entries[i].path, index=i, progress=self.overview_progress)
            for i in batch
        ]
        commands.append(TickCommand())
        return commands

    def _on_overview_measured(self, message: OverviewSizeMeasured) -> list[Command]:
        self.scheduler.finish(message.path)
        commands: list[Command] = []

        if message.error is None:
            self.overview_sizes[message.path] = message.size
            commands.append(SaveOverviewSizeCommand(path=message.path, size=message.size))

        if not self.in_overview_mode:
            return commands

        for entry in self.entries:
            if entry.path == message.path:
                entry.size = message.size if message.error is None else 0
                break
        self.total_size = sum_known_sizes(self.entries)

        commands.extend(self._schedule_overview())
        if message.error is not None:
            self.status = f"Unable to measure {display_path(message.path)}: {message.error}"
        return commands

    # -------------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------------

    def _on_tick(self) -> list[Command]:
        if not self.busy:
            return []
        self.spinner = (self.spinner + 1) % len(SPINNER_FRAMES)
        if self.deleting and self.delete_progress is not None:
            count = self.delete_progress.count
            if count > 0:
                self.status = f"Moving to Trash... {count:,} items"
        return [TickCommand()]

    def _clamp_views(self) -> None:
        self.dir_view.clamp(len(self.entries), self.viewport(False))
        self.large_view.clamp(len(self.large_files), self.viewport(True))
