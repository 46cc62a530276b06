"""Custom widgets for the diskdive TUI."""

import os

from rich.markup import escape
from textual.widgets import Static

from diskdive.explorer import Explorer, ViewMode
from diskdive.models import DirEntry, FileEntry, display_path, format_size

BAR_WIDTH = 20
NAME_WIDTH = 48


def size_bar(size: int, total: int, width: int = BAR_WIDTH) -> str:
    """Proportional bar for `size` out of `total`."""
    if size <= 0 or total <= 0:
        return f"[dim]{'░' * width}[/dim]"
    filled = min(int(width * size / total), width)
    if filled == 0:
        filled = 1
    empty = width - filled

    ratio = size / total
    if ratio >= 0.5:
        color = "red"
    elif ratio >= 0.2:
        color = "yellow"
    else:
        color = "green"
    return f"[{color}]{'█' * filled}[/{color}][dim]{'░' * empty}[/dim]"


def _truncate(text: str, width: int) -> str:
    if len(text) <= width:
        return text
    return "…" + text[-(width - 1):]


def render_header(explorer: Explorer) -> str:
    if explorer.in_overview_mode:
        title = "Overview"
    else:
        title = display_path(explorer.path)
    total = format_size(explorer.total_size)
    if explorer.show_large_files:
        return f"[bold]{escape(title)}[/bold]  [dim]largest files[/dim]  [cyan]{total}[/cyan]"
    return f"[bold]{escape(title)}[/bold]  [cyan]{total}[/cyan]"


def render_progress(explorer: Explorer) -> str:
    """Live counters while a scan is running; empty otherwise."""
    if not explorer.scanning:
        return ""

    files, dirs, size = explorer.scan_progress.snapshot()
    line = (
        f"[cyan]{explorer.spinner_frame}[/cyan] "
        f"{files:,} files, {dirs:,} dirs, {format_size(size)}"
    )

    expected = explorer.last_total_files
    if expected > 0:
        percent = min(files / expected * 100, 99.0)
        filled = int(BAR_WIDTH * percent / 100)
        line += f"  [cyan]{'█' * filled}[/cyan][dim]{'░' * (BAR_WIDTH - filled)}[/dim] {percent:.0f}%"

    current = explorer.scan_progress.current_path
    if current:
        line += f"\n[dim]{escape(_truncate(display_path(current), NAME_WIDTH + 20))}[/dim]"
    return line


def render_row(explorer: Explorer, index: int, item, selected: set[str]) -> str:
    """One list row: cursor, selection mark, bar, percent, size and name."""
    _, view = explorer.current_list()
    marker = "[bold cyan]▶[/bold cyan]" if index == view.cursor else " "
    mark = "[green]●[/green]" if item.path in selected else "[dim]○[/dim]"

    total = explorer.total_size
    if isinstance(item, DirEntry) and item.pending:
        bar = f"[dim]{'░' * BAR_WIDTH}[/dim]"
        percent = "   "
        size = f"[dim]{explorer.spinner_frame} ...[/dim]"
    else:
        bar = size_bar(item.size, total)
        percent = f"{item.size / total * 100:3.0f}" if total > 0 else "  0"
        size = format_size(item.size)

    if isinstance(item, FileEntry):
        name = display_path(item.path) if explorer.show_large_files else item.name
    else:
        name = item.name + ("/" if item.is_dir else "")
    name = escape(_truncate(name, NAME_WIDTH))
    if isinstance(item, DirEntry) and item.is_dir:
        name = f"[bold]{name}[/bold]"

    return f"{marker} {mark} {bar} {percent}% {size:>10}  {name}"


def render_rows(explorer: Explorer) -> str:
    items, view = explorer.current_list()
    if not items:
        if explorer.scanning:
            return "[dim]Scanning...[/dim]"
        if explorer.show_large_files:
            return "[dim]No large files found[/dim]"
        return "[dim]Empty directory[/dim]"
    return "\n".join(
        render_row(explorer, index, item, view.selected)
        for index, item in explorer.visible_rows()
    )


def render_confirm(explorer: Explorer) -> str:
    paths = explorer.pending_delete_paths()
    if len(paths) > 1:
        what = f"{len(paths)} items ({format_size(explorer.selection_size())})"
    elif explorer.delete_target is not None:
        target = explorer.delete_target
        what = f"{escape(target.name)} ({format_size(max(target.size, 0))})"
    else:
        what = escape(os.path.basename(paths[0])) if paths else "nothing"
    return f"[bold red]Move {what} to Trash?[/bold red] Enter to confirm, Esc to cancel"


def render_status(explorer: Explorer) -> str:
    if explorer.mode == ViewMode.DELETE_CONFIRM:
        return render_confirm(explorer)
    if explorer.mode == ViewMode.DELETING:
        return f"[yellow]{explorer.spinner_frame} {escape(explorer.status)}[/yellow]"
    if explorer.status.startswith(("Scan failed", "Failed", "Unable", "Too many")):
        return f"[red]{escape(explorer.status)}[/red]"
    return f"[dim]{escape(explorer.status)}[/dim]"


def render_explorer(explorer: Explorer) -> str:
    """Full screen body for the current explorer state."""
    parts = [render_header(explorer)]
    progress = render_progress(explorer)
    if progress:
        parts.append(progress)
    parts.append("")
    parts.append(render_rows(explorer))
    parts.append("")
    parts.append(render_status(explorer))
    return "\n".join(parts)


class ExplorerView(Static):
    """Renders the explorer state as a single block of rich markup."""

    def __init__(self, explorer: Explorer, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.explorer = explorer

    def redraw(self) -> None:
        self.update(render_explorer(self.explorer))
